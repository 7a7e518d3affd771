"""Sync engine: three-way reconciliation between the vault and a GitHub branch.

The ``SyncEngine`` compares three views of every tracked path:

* the **remote manifest**, committed to the branch alongside the files;
* the **local manifest** kept by the ``MetadataStore``;
* the **actual local content**, hashed fresh on every pass.

A pass then:

1. Fetches the remote tree and the remote manifest.
2. Detects conflicts (paths changed on both sides) and resolves them
   through the configured ``ConflictResolver``.
3. Determines one action per remaining path (upload, download,
   delete_local, delete_remote) using tombstone timestamps for
   delete/edit races.
4. Applies downloads and local deletions directly on disk.
5. Commits uploads, remote deletions and the updated manifest as a single
   Git commit (tree, commit, ref update).

A pass with no actions never commits.  Passes are serialised by a
``SyncGate``; a trigger arriving while one runs returns a skipped report.
Per-file local I/O failures are recorded in the report and do not abort
the pass.  Any other error aborts it before the branch moves.
"""

from __future__ import annotations

import base64
import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Awaitable, Callable, Iterator

from ..config import Config
from ..core.async_utils import gather_limited, run_sync, run_sync_limited
from ..core.client import EmptyRepositoryError, GitHubClient
from ..vault import Vault
from .blobs import git_blob_sha, is_plain_text
from .listener import excluded_paths
from .models import (
    ConflictFile,
    ConflictResolution,
    FileMetadata,
    Metadata,
    NewTreeItem,
    RepoContent,
    SyncAction,
    SyncActionType,
    SyncKind,
    SyncReport,
    SyncResult,
    TreeItem,
    now_ms,
)
from .resolver import ConflictResolutionError, ConflictResolver
from .state import MetadataStore

logger = logging.getLogger(__name__)

__all__ = [
    "ConflictResolutionError",
    "ManifestMissingError",
    "SyncEngine",
    "SyncGate",
    "UnsafeSyncError",
]

BOOTSTRAP_MESSAGE = "First sync"


class UnsafeSyncError(Exception):
    """Both the vault and the remote have content at first sync."""


class ManifestMissingError(Exception):
    """The remote branch has no manifest, so it cannot be reconciled."""


class GateState(Enum):
    IDLE = "idle"
    RUNNING = "running"


class SyncGate:
    """Capacity-one gate shared by every sync entry point.

    ``try_enter()`` checks and flips the state without yielding to the
    event loop, so two triggers can never both get in.
    """

    def __init__(self) -> None:
        self._state = GateState.IDLE

    @property
    def state(self) -> GateState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is GateState.RUNNING

    def try_enter(self) -> bool:
        if self._state is GateState.RUNNING:
            return False
        self._state = GateState.RUNNING
        return True

    def leave(self) -> None:
        self._state = GateState.IDLE

    @contextmanager
    def hold(self) -> Iterator[bool]:
        """Yield ``True`` while holding the gate, ``False`` if it was taken."""
        if not self.try_enter():
            yield False
            return
        try:
            yield True
        finally:
            self.leave()


@dataclass
class _PassOutcome:
    results: list[SyncResult] = field(default_factory=list)
    conflicts: list[str] = field(default_factory=list)
    commit_sha: str | None = None


def _utc_now() -> str:
    return datetime.now(timezone.utc).isoformat()


def _decode_text(content: bytes) -> str:
    return content.decode("utf-8", errors="replace")


class SyncEngine:
    """Reconcile one vault with one GitHub branch.

    Args:
        client: GitHub client for the target repository and branch.
        vault: Local vault.
        store: The vault's metadata store.
        config: Live configuration.
        resolver: Conflict policy implementation.
    """

    def __init__(
        self,
        client: GitHubClient,
        vault: Vault,
        store: MetadataStore,
        config: Config,
        resolver: ConflictResolver,
    ) -> None:
        self.client = client
        self.vault = vault
        self.store = store
        self.config = config
        self.resolver = resolver
        self.gate = SyncGate()
        self.last_report: SyncReport | None = None
        self._excluded = excluded_paths(config.config_dir)

    @property
    def manifest_path(self) -> str:
        return self.store.manifest_path

    @property
    def needs_first_sync(self) -> bool:
        """No commit has been made from this vault yet."""
        return self.store.data.last_sync is None

    def _in_config_dir(self, path: str) -> bool:
        return path.startswith(self.config.config_dir + "/")

    # ------------------------------------------------------------------
    # Entry points
    # ------------------------------------------------------------------

    async def run(self) -> SyncReport:
        """Run a first sync or a regular sync, whichever is due."""
        if self.needs_first_sync:
            return await self.first_sync()
        return await self.sync()

    async def sync(self) -> SyncReport:
        """Reconcile local and remote changes.  Never raises."""
        return await self._guarded(SyncKind.SYNC, self._sync_pass)

    async def first_sync(self) -> SyncReport:
        """Populate an empty side from the other.  Never raises."""
        return await self._guarded(SyncKind.FIRST_SYNC, self._first_sync_pass)

    async def _guarded(
        self, kind: SyncKind, body: Callable[[], Awaitable[_PassOutcome]]
    ) -> SyncReport:
        started_at = _utc_now()
        with self.gate.hold() as entered:
            if not entered:
                logger.info("Sync already in progress, skipping %s", kind.value)
                return SyncReport(
                    kind=kind,
                    started_at=started_at,
                    completed_at=_utc_now(),
                    skipped=True,
                )
            logger.info("Starting %s", kind.value)
            try:
                outcome = await body()
            except Exception as exc:
                logger.error("%s failed: %s", kind.value, exc, exc_info=True)
                report = SyncReport(
                    kind=kind,
                    started_at=started_at,
                    completed_at=_utc_now(),
                    success=False,
                    error=str(exc),
                )
            else:
                report = SyncReport(
                    kind=kind,
                    started_at=started_at,
                    completed_at=_utc_now(),
                    commit_sha=outcome.commit_sha,
                    conflicts=outcome.conflicts,
                    results=outcome.results,
                )
                logger.info("%s done: %d action(s)", kind.value, len(outcome.results))
        self.last_report = report
        return report

    # ------------------------------------------------------------------
    # Metadata management
    # ------------------------------------------------------------------

    async def load_metadata(self) -> None:
        """Load the manifest, seeding it from the vault the first time.

        A fresh manifest tracks every file in the vault (the config dir
        only when it is synced) with no known remote SHA, plus the
        manifest itself.
        """
        await self.store.load()
        if self.store.data.files:
            return
        logger.info("Manifest is empty, scanning vault")
        files = await run_sync(self._scan_vault)
        now = now_ms()
        for path in files:
            self.store.put(FileMetadata(path=path, last_modified=now))
        self.store.put(FileMetadata(path=self.manifest_path, last_modified=now))
        await self.store.save()
        logger.info("Tracking %d file(s)", len(self.store.data.files))

    def _scan_vault(self) -> list[str]:
        files: list[str] = []
        pending = [""]
        while pending:
            folder = pending.pop()
            if folder == self.config.config_dir and not self.config.sync_config_dir:
                continue
            found, subfolders = self.vault.list(folder)
            files.extend(
                f for f in found
                if f not in self._excluded and f != self.manifest_path
            )
            pending.extend(subfolders)
        return sorted(files)

    def _scan_config_dir(self) -> list[str]:
        if not self.vault.exists(self.config.config_dir):
            return []
        return self.vault.walk(self.config.config_dir)

    async def add_config_dir_to_metadata(self) -> int:
        """Start tracking every file in the config dir.  Returns the count added."""
        files = await run_sync(self._scan_config_dir)
        now = now_ms()
        added = 0
        for path in files:
            if path in self._excluded or path == self.manifest_path:
                continue
            if self.store.get(path) is None:
                self.store.put(FileMetadata(path=path, last_modified=now))
                added += 1
        await self.store.save()
        logger.info("Added %d config dir file(s) to the manifest", added)
        return added

    async def remove_config_dir_from_metadata(self) -> int:
        """Stop tracking the config dir, except the manifest.

        Returns the number of entries removed.
        """
        paths = [
            p for p in self.store.data.files
            if self._in_config_dir(p) and p != self.manifest_path
        ]
        for path in paths:
            self.store.remove(path)
        await self.store.save()
        logger.info("Removed %d config dir file(s) from the manifest", len(paths))
        return len(paths)

    async def set_sync_config_dir(self, enabled: bool) -> int:
        """Toggle config dir syncing and update the manifest to match."""
        if enabled == self.config.sync_config_dir:
            return 0
        self.config.sync_config_dir = enabled
        if enabled:
            return await self.add_config_dir_to_metadata()
        return await self.remove_config_dir_from_metadata()

    async def reset_metadata(self) -> None:
        """Forget all sync state, on disk too."""
        self.store.reset()
        await self.store.save()
        logger.info("Manifest reset")

    # ------------------------------------------------------------------
    # File helpers
    # ------------------------------------------------------------------

    async def calculate_sha(self, path: str) -> str | None:
        """Git blob SHA of the file as it is on disk, ``None`` if missing."""
        try:
            content = await run_sync(self.vault.read_binary, path)
        except FileNotFoundError:
            return None
        return git_blob_sha(content)

    async def _fresh_shas(self, paths: list[str]) -> dict[str, str | None]:
        shas = await gather_limited([self.calculate_sha(p) for p in paths])
        return dict(zip(paths, shas))

    async def download_file(self, item: TreeItem, last_modified: int) -> bool:
        """Write the remote blob to disk.  Returns ``False`` if already current."""
        entry = self.store.get(item.path)
        if (
            entry is not None
            and entry.sha == item.sha
            and not entry.deleted
            and await self.calculate_sha(item.path) == item.sha
        ):
            return False
        content = await run_sync_limited(self.client.get_blob, item.sha)
        await run_sync(self.vault.write_binary, item.path, content)
        self.store.put(
            FileMetadata(
                path=item.path,
                sha=item.sha,
                dirty=False,
                just_downloaded=True,
                last_modified=last_modified,
            )
        )
        await self.store.save()
        logger.debug("Downloaded %s", item.path)
        return True

    async def delete_local_file(self, path: str) -> None:
        """Remove a file from disk and tombstone its entry."""
        try:
            await run_sync(self.vault.remove, path)
        except FileNotFoundError:
            logger.debug("%s already gone locally", path)
        entry = self.store.get(path)
        if entry is None:
            entry = FileMetadata(path=path)
            self.store.put(entry)
        entry.mark_deleted(now_ms())
        await self.store.save()
        logger.debug("Deleted %s locally", path)

    async def _read_for_upload(self, path: str) -> bytes:
        return await run_sync(self.vault.read_binary, path)

    # ------------------------------------------------------------------
    # Reconciliation
    # ------------------------------------------------------------------

    async def find_conflicts(
        self,
        remote_files: dict[str, FileMetadata],
        local_shas: dict[str, str | None] | None = None,
    ) -> list[ConflictFile]:
        """Paths changed on both sides since the last sync.

        A path conflicts only when the remote SHA moved away from the
        cached one, the actual local SHA moved away from the cached one,
        and the two changes did not land on the same content.  Paths
        tombstoned on both sides and files missing on disk never conflict.
        """
        local_files = self.store.data.files
        common = [
            p for p in remote_files
            if p in local_files and p != self.manifest_path
        ]
        if local_shas is None:
            local_shas = await self._fresh_shas(common)

        paths: list[str] = []
        for path in common:
            remote, local = remote_files[path], local_files[path]
            if (remote.deleted and local.deleted) or remote.sha is None:
                continue
            actual = local_shas.get(path)
            if actual is None:
                continue
            remote_changed = remote.sha != local.sha
            local_changed = actual != local.sha
            if remote_changed and local_changed and actual != remote.sha:
                paths.append(path)

        async def load(path: str) -> ConflictFile:
            remote_sha = remote_files[path].sha
            assert remote_sha is not None
            remote_raw = await run_sync_limited(self.client.get_blob, remote_sha)
            local_text = await run_sync(self.vault.read, path)
            return ConflictFile(
                file_path=path,
                remote_content=_decode_text(remote_raw),
                local_content=local_text,
            )

        return await gather_limited([load(p) for p in sorted(paths)])

    async def determine_sync_actions(
        self,
        remote_files: dict[str, FileMetadata],
        local_files: dict[str, FileMetadata],
        conflict_paths: list[str] | set[str],
        local_shas: dict[str, str | None] | None = None,
    ) -> list[SyncAction]:
        """One action per path that needs one.

        Conflicting paths and the manifest are skipped.  For paths
        tracked on both sides:

        * same content on both sides: nothing;
        * remote tombstone vs local edit: the later timestamp wins
          (``delete_local`` or ``upload``), equal timestamps do nothing;
        * local tombstone vs remote edit: likewise (``download`` or
          ``delete_remote``);
        * otherwise ``upload`` if the local file moved away from its
          cached SHA, else ``download``.

        Remote-only paths are downloaded and local-only paths uploaded,
        unless tombstoned.
        """
        skip = set(conflict_paths) | {self.manifest_path}
        common = [p for p in remote_files if p in local_files and p not in skip]
        if local_shas is None:
            local_shas = await self._fresh_shas(common)

        actions: list[SyncAction] = []

        def add(kind: SyncActionType, path: str) -> None:
            actions.append(SyncAction(type=kind, file_path=path))

        for path in common:
            remote, local = remote_files[path], local_files[path]
            if remote.deleted and local.deleted:
                continue
            local_sha = local_shas.get(path)
            if local_sha is not None and local_sha == remote.sha:
                continue

            if remote.deleted:
                assert remote.deleted_at is not None
                if remote.deleted_at > local.last_modified:
                    add(SyncActionType.DELETE_LOCAL, path)
                elif local.last_modified > remote.deleted_at:
                    add(SyncActionType.UPLOAD, path)
                continue

            if local.deleted:
                assert local.deleted_at is not None
                if remote.last_modified > local.deleted_at:
                    add(SyncActionType.DOWNLOAD, path)
                elif local.deleted_at > remote.last_modified:
                    add(SyncActionType.DELETE_REMOTE, path)
                continue

            if local_sha is not None and local_sha != local.sha:
                add(SyncActionType.UPLOAD, path)
            else:
                add(SyncActionType.DOWNLOAD, path)

        for path, remote in remote_files.items():
            if path in local_files or path in skip:
                continue
            if not remote.deleted:
                add(SyncActionType.DOWNLOAD, path)

        for path, local in local_files.items():
            if path in remote_files or path in skip:
                continue
            if not local.deleted:
                add(SyncActionType.UPLOAD, path)

        if not self.config.sync_config_dir:
            actions = [
                a for a in actions
                if not self._in_config_dir(a.file_path)
                or a.file_path == self.manifest_path
            ]
        return actions

    # ------------------------------------------------------------------
    # Steady-state pass
    # ------------------------------------------------------------------

    async def _fetch_remote_metadata(self, remote: RepoContent) -> Metadata:
        item = remote.files.get(self.manifest_path)
        if item is None:
            raise ManifestMissingError(
                f"Remote manifest {self.manifest_path} is missing"
            )
        raw = await run_sync_limited(self.client.get_blob, item.sha)
        if not raw.strip():
            return Metadata()
        return Metadata.model_validate_json(raw)

    async def _sync_pass(self) -> _PassOutcome:
        remote = await run_sync_limited(self.client.get_repo_content)
        remote_meta = await self._fetch_remote_metadata(remote)
        remote_files = remote_meta.files
        local_files = self.store.data.files

        common = [
            p for p in remote_files
            if p in local_files and p != self.manifest_path
        ]
        local_shas = await self._fresh_shas(common)

        conflicts = await self.find_conflicts(remote_files, local_shas)
        conflict_actions: list[SyncAction] = []
        resolutions: list[ConflictResolution] = []
        if conflicts:
            logger.warning(
                "Found %d conflict(s): %s",
                len(conflicts),
                ", ".join(c.file_path for c in conflicts),
            )
            outcome = await self.resolver.resolve(conflicts)
            conflict_actions = list(outcome.actions)
            resolutions = list(outcome.resolutions)

        actions = await self.determine_sync_actions(
            remote_files,
            local_files,
            {c.file_path for c in conflicts},
            local_shas,
        )
        actions.extend(conflict_actions)
        outcome = _PassOutcome(conflicts=[c.file_path for c in conflicts])

        if not actions:
            logger.info("Nothing to sync")
            return outcome
        logger.info(
            "Actions to sync: %s",
            ", ".join(f"{a.type.value} {a.file_path}" for a in actions),
        )

        by_type: dict[SyncActionType, list[str]] = {t: [] for t in SyncActionType}
        for action in actions:
            by_type[action.type].append(action.file_path)

        resolved = {r.file_path: r.content for r in resolutions}
        uploads, results = await self._collect_uploads(
            by_type[SyncActionType.UPLOAD], resolved
        )
        deletions = [
            p for p in by_type[SyncActionType.DELETE_REMOTE] if p in remote.files
        ]

        local_results = await gather_limited(
            [
                self._apply_download(
                    remote, path, remote_files[path].last_modified
                )
                for path in by_type[SyncActionType.DOWNLOAD]
            ]
            + [
                self._apply_local_delete(path)
                for path in by_type[SyncActionType.DELETE_LOCAL]
            ]
        )
        results.extend(local_results)

        outcome.commit_sha = await self.commit_sync(
            uploads, deletions, remote.sha, resolutions
        )
        results.extend(
            SyncResult(file_path=p, action=SyncActionType.UPLOAD, success=True)
            for p in uploads
        )
        results.extend(
            SyncResult(
                file_path=p, action=SyncActionType.DELETE_REMOTE, success=True
            )
            for p in by_type[SyncActionType.DELETE_REMOTE]
        )
        outcome.results = results
        return outcome

    async def _collect_uploads(
        self, paths: list[str], resolved: dict[str, str]
    ) -> tuple[dict[str, bytes], list[SyncResult]]:
        """Read upload content.  Unreadable files are dropped and reported."""

        async def read(path: str) -> bytes | OSError:
            if path in resolved:
                return resolved[path].encode("utf-8")
            try:
                return await self._read_for_upload(path)
            except OSError as exc:
                return exc

        contents = await gather_limited([read(p) for p in paths])
        uploads: dict[str, bytes] = {}
        failures: list[SyncResult] = []
        for path, content in zip(paths, contents):
            if isinstance(content, OSError):
                logger.error("Cannot read %s for upload: %s", path, content)
                failures.append(
                    SyncResult(
                        file_path=path,
                        action=SyncActionType.UPLOAD,
                        success=False,
                        error=str(content),
                    )
                )
            else:
                uploads[path] = content
        return uploads, failures

    async def _apply_download(
        self, remote: RepoContent, path: str, last_modified: int
    ) -> SyncResult:
        item = remote.files.get(path)
        if item is None:
            return SyncResult(
                file_path=path,
                action=SyncActionType.DOWNLOAD,
                success=False,
                error="listed in the remote manifest but missing from the tree",
            )
        try:
            await self.download_file(item, last_modified)
        except OSError as exc:
            logger.error("Cannot write %s: %s", path, exc)
            return SyncResult(
                file_path=path,
                action=SyncActionType.DOWNLOAD,
                success=False,
                error=str(exc),
            )
        return SyncResult(file_path=path, action=SyncActionType.DOWNLOAD, success=True)

    async def _apply_local_delete(self, path: str) -> SyncResult:
        try:
            await self.delete_local_file(path)
        except OSError as exc:
            logger.error("Cannot delete %s: %s", path, exc)
            return SyncResult(
                file_path=path,
                action=SyncActionType.DELETE_LOCAL,
                success=False,
                error=str(exc),
            )
        return SyncResult(
            file_path=path, action=SyncActionType.DELETE_LOCAL, success=True
        )

    # ------------------------------------------------------------------
    # First sync
    # ------------------------------------------------------------------

    def _vault_is_empty(self) -> bool:
        files, folders = self.vault.list("")
        return not files and all(f == self.config.config_dir for f in folders)

    def _remote_is_empty(self, remote: RepoContent) -> bool:
        return not any(
            p != self.manifest_path and not self._in_config_dir(p)
            for p in remote.files
        )

    async def _first_sync_pass(self) -> _PassOutcome:
        try:
            remote = await run_sync_limited(self.client.get_repo_content)
        except EmptyRepositoryError:
            logger.info("Remote repository is empty, creating the manifest")
            # The tree API needs an existing commit to build on
            await run_sync_limited(
                self.client.create_file,
                self.manifest_path,
                "",
                BOOTSTRAP_MESSAGE,
            )
            remote = await run_sync_limited(self.client.get_repo_content)

        vault_empty = await run_sync(self._vault_is_empty)
        remote_empty = self._remote_is_empty(remote)
        if not vault_empty and not remote_empty:
            raise UnsafeSyncError(
                "Both the vault and the remote repository have files; "
                "refusing to sync them without shared history"
            )
        if remote_empty:
            return await self._first_sync_from_local(remote)
        return await self._first_sync_from_remote(remote)

    async def _first_sync_from_remote(self, remote: RepoContent) -> _PassOutcome:
        logger.info("First sync from remote files")
        now = now_ms()
        to_download = [
            path for path in remote.files
            if path != self.manifest_path
            and path not in self._excluded
            and (self.config.sync_config_dir or not self._in_config_dir(path))
        ]
        results = await gather_limited(
            [self._apply_download(remote, p, now) for p in to_download]
        )

        # Anything already tracked locally that the remote does not have
        candidates = [
            path for path, entry in self.store.data.files.items()
            if not entry.deleted
            and path != self.manifest_path
            and (path not in remote.files or entry.sha != remote.files[path].sha)
        ]
        uploads, failures = await self._collect_uploads(candidates, {})
        results.extend(failures)

        commit_sha = await self.commit_sync(uploads, [], remote.sha)
        results.extend(
            SyncResult(file_path=p, action=SyncActionType.UPLOAD, success=True)
            for p in uploads
        )
        return _PassOutcome(results=results, commit_sha=commit_sha)

    async def _first_sync_from_local(self, remote: RepoContent) -> _PassOutcome:
        logger.info("First sync from local files")
        candidates = [
            path for path, entry in self.store.data.files.items()
            if not entry.deleted and path != self.manifest_path
        ]
        uploads, results = await self._collect_uploads(candidates, {})
        commit_sha = await self.commit_sync(uploads, [], remote.sha)
        results.extend(
            SyncResult(file_path=p, action=SyncActionType.UPLOAD, success=True)
            for p in uploads
        )
        return _PassOutcome(results=results, commit_sha=commit_sha)

    # ------------------------------------------------------------------
    # Commit assembly
    # ------------------------------------------------------------------

    async def _tree_entry(self, path: str, content: bytes) -> NewTreeItem:
        """Inline text, or upload a blob and reference it by SHA."""
        if is_plain_text(path, content):
            sha = git_blob_sha(content)
            item = NewTreeItem.with_content(path, content.decode("utf-8"))
        else:
            encoded = base64.b64encode(content).decode("ascii")
            sha = await run_sync_limited(self.client.create_blob, encoded)
            item = NewTreeItem.with_sha(path, sha)

        entry = self.store.get(path)
        if entry is None:
            entry = FileMetadata(path=path)
            self.store.put(entry)
        entry.sha = sha
        entry.dirty = False
        return item

    async def commit_sync(
        self,
        uploads: dict[str, bytes],
        deletions: list[str],
        base_tree: str,
        resolutions: list[ConflictResolution] | None = None,
    ) -> str:
        """Commit uploads, deletions and the manifest on top of *base_tree*.

        Manifest changes made here are rolled back if any remote call
        fails, so a failed pass leaves the local state as it found it.
        Resolved conflict content is written to disk only after the
        branch has moved.

        Returns:
            SHA of the new commit.
        """
        resolutions = resolutions or []
        sync_time = now_ms()
        data = self.store.data
        touched = set(uploads) | set(deletions) | {r.file_path for r in resolutions}
        undo = {
            p: data.files[p].model_copy() for p in touched if p in data.files
        }
        previous_last_sync = data.last_sync

        try:
            data.last_sync = sync_time
            for resolution in resolutions:
                entry = data.files.get(resolution.file_path)
                if entry is not None:
                    entry.last_modified = sync_time

            items = await gather_limited(
                [self._tree_entry(p, c) for p, c in uploads.items()]
            )
            items.extend(NewTreeItem.deletion(p) for p in deletions)

            if self.store.get(self.manifest_path) is None:
                self.store.put(
                    FileMetadata(path=self.manifest_path, last_modified=sync_time)
                )
            # The manifest never carries a SHA in the tree: its content is
            # the manifest as of this commit.
            items.append(NewTreeItem.with_content(self.manifest_path, data.to_json()))

            tree_sha = await run_sync_limited(self.client.create_tree, items, base_tree)
            head_sha = await run_sync_limited(self.client.get_branch_head_sha)
            commit_sha = await run_sync_limited(
                self.client.create_commit,
                self.config.commit_message,
                tree_sha,
                head_sha,
            )
            await run_sync_limited(self.client.update_branch_head, commit_sha)
        except BaseException:
            data.last_sync = previous_last_sync
            for path in touched:
                if path in undo:
                    data.files[path] = undo[path]
                else:
                    data.files.pop(path, None)
            raise

        logger.info("Committed %s", commit_sha)
        for resolution in resolutions:
            try:
                await run_sync(
                    self.vault.write, resolution.file_path, resolution.content
                )
            except OSError:
                logger.exception(
                    "Committed %s but could not write it locally",
                    resolution.file_path,
                )
                continue
            entry = data.files[resolution.file_path]
            entry.last_modified = sync_time
            entry.just_downloaded = True
        await self.store.save()
        return commit_sha
