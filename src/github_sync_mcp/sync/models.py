"""Pydantic models for the vault sync engine.

Defines the data contracts shared across all sync modules:

- ``FileMetadata`` / ``Metadata``: the persisted manifest.
- ``TreeItem`` / ``RepoContent``: a snapshot of the remote tree.
- ``NewTreeItem``: one entry of a tree-creation request.
- ``SyncActionType`` / ``SyncAction``: what a reconciliation pass decided.
- ``ConflictFile`` / ``ConflictResolution``: the conflict exchange.
- ``SyncResult`` / ``SyncReport``: the outcome of one sync attempt.

Manifest models are mutable because the metadata store owns a single
in-memory instance that the listener and engine update in place.  Every
other model is frozen.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    computed_field,
    model_serializer,
    model_validator,
)
from pydantic.alias_generators import to_camel


def now_ms() -> int:
    """Current wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


# ---------------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------------


class FileMetadata(BaseModel):
    """Sync state of one tracked path.

    A tombstone is an entry whose ``deleted_at`` is set.  ``deleted`` is
    derived from it, so the two can never disagree.  On the wire both are
    written (``deleted``/``deletedAt``) and an inconsistent pair is
    rejected on load.

    Attributes:
        path: Vault-relative POSIX path.
        sha: Git blob SHA last known to be on the remote, ``None`` until
            the first push.
        dirty: Local change pending upload.
        just_downloaded: The next create/modify event for this path is an
            echo of an engine write and must be ignored.
        last_modified: Local edit time (epoch ms).
        deleted_at: Tombstone time (epoch ms), ``None`` while the file is
            active.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    path: str
    sha: str | None = None
    dirty: bool = False
    just_downloaded: bool = False
    last_modified: int = Field(default_factory=now_ms)
    deleted_at: int | None = None

    @model_validator(mode="before")
    @classmethod
    def _check_tombstone(cls, data: Any) -> Any:
        if not isinstance(data, dict) or "deleted" not in data:
            return data
        data = dict(data)
        deleted = bool(data.pop("deleted"))
        deleted_at = data.get("deletedAt", data.get("deleted_at"))
        if deleted and deleted_at is None:
            raise ValueError(
                f"File '{data.get('path')}' is deleted but has no deletedAt"
            )
        if not deleted and deleted_at is not None:
            raise ValueError(
                f"File '{data.get('path')}' has deletedAt but is not deleted"
            )
        return data

    @computed_field  # type: ignore[prop-decorator]
    @property
    def deleted(self) -> bool:
        return self.deleted_at is not None

    @model_serializer(mode="wrap")
    def _drop_empty_tombstone(self, handler):
        data = handler(self)
        for key in ("deletedAt", "deleted_at"):
            if key in data and data[key] is None:
                del data[key]
        return data

    def mark_deleted(self, at: int | None = None) -> None:
        """Turn the entry into a tombstone."""
        self.deleted_at = at if at is not None else now_ms()

    def revive(self, at: int | None = None) -> None:
        """Clear the tombstone and record *at* as the edit time."""
        self.deleted_at = None
        self.last_modified = at if at is not None else now_ms()


class Metadata(BaseModel):
    """The manifest: every tracked path plus the last commit time.

    Attributes:
        last_sync: Time of the last successful commit (epoch ms).
        files: Mapping of path to ``FileMetadata``.
    """

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True
    )

    last_sync: int | None = None
    files: dict[str, FileMetadata] = Field(default_factory=dict)

    def to_json(self) -> str:
        """Serialise with the wire field names."""
        return self.model_dump_json(by_alias=True)


# ---------------------------------------------------------------------------
# Remote tree
# ---------------------------------------------------------------------------


class TreeItem(BaseModel):
    """One blob of the remote tree as returned by the tree listing."""

    path: str
    mode: str = "100644"
    type: str = "blob"
    sha: str
    url: str | None = None
    size: int | None = None

    model_config = {"frozen": True}


class RepoContent(BaseModel):
    """Snapshot of the remote branch: its tree SHA and every blob in it."""

    sha: str
    files: dict[str, TreeItem] = {}

    model_config = {"frozen": True}


class NewTreeItem(BaseModel):
    """One entry of a tree-creation request.

    Exactly one of three shapes is valid: inline ``content`` (text
    only), a ``sha`` reference to an existing blob, or neither, which
    deletes the path from the base tree.
    """

    path: str
    mode: str = "100644"
    type: str = "blob"
    sha: str | None = None
    content: str | None = None

    model_config = {"frozen": True}

    @model_validator(mode="after")
    def _content_xor_sha(self) -> NewTreeItem:
        if self.content is not None and self.sha is not None:
            raise ValueError(
                f"Tree entry '{self.path}' cannot carry both content and sha"
            )
        return self

    @classmethod
    def from_remote(cls, item: TreeItem) -> NewTreeItem:
        return cls(path=item.path, mode=item.mode, type=item.type, sha=item.sha)

    @classmethod
    def with_content(cls, path: str, content: str) -> NewTreeItem:
        return cls(path=path, content=content)

    @classmethod
    def with_sha(cls, path: str, sha: str) -> NewTreeItem:
        return cls(path=path, sha=sha)

    @classmethod
    def deletion(cls, path: str) -> NewTreeItem:
        return cls(path=path)

    @property
    def is_deletion(self) -> bool:
        return self.content is None and self.sha is None

    def to_request(self) -> dict[str, Any]:
        """Render the entry as the tree-creation API expects it.

        A deletion is sent with an explicit ``"sha": null``.
        """
        entry: dict[str, Any] = {
            "path": self.path,
            "mode": self.mode,
            "type": self.type,
        }
        if self.content is not None:
            entry["content"] = self.content
        else:
            entry["sha"] = self.sha
        return entry


# ---------------------------------------------------------------------------
# Reconciliation
# ---------------------------------------------------------------------------


class SyncActionType(str, Enum):
    """Possible outcomes of reconciling one path."""

    UPLOAD = "upload"
    DOWNLOAD = "download"
    DELETE_LOCAL = "delete_local"
    DELETE_REMOTE = "delete_remote"


class SyncAction(BaseModel):
    """A decision for one path, valid for a single reconciliation pass."""

    type: SyncActionType
    file_path: str

    model_config = {"frozen": True}


class ConflictFile(BaseModel):
    """A path changed on both sides since the last sync."""

    file_path: str
    remote_content: str
    local_content: str

    model_config = {"frozen": True}


class ConflictResolution(BaseModel):
    """The content chosen for a conflicting path."""

    file_path: str
    content: str

    model_config = {"frozen": True}


# ---------------------------------------------------------------------------
# Reporting
# ---------------------------------------------------------------------------


class SyncKind(str, Enum):
    """Which entry point produced a report."""

    SYNC = "sync"
    FIRST_SYNC = "first_sync"


class SyncResult(BaseModel):
    """Result of applying one action.

    Attributes:
        file_path: Vault-relative path.
        action: The action that was applied.
        success: Whether the action succeeded.
        error: Error message if the action failed.
    """

    file_path: str
    action: SyncActionType
    success: bool
    error: str | None = None

    model_config = {"frozen": True}


class SyncReport(BaseModel):
    """Aggregate outcome of one sync attempt.

    Attributes:
        kind: ``sync`` or ``first_sync``.
        started_at: ISO 8601 timestamp when the attempt started.
        completed_at: ISO 8601 timestamp when it finished.
        success: ``False`` when the pass aborted.
        skipped: ``True`` when another pass was already running.
        error: Message of the error that aborted the pass.
        commit_sha: SHA of the commit created, if any.
        conflicts: Paths that were in conflict.
        results: Per-action results.
    """

    kind: SyncKind
    started_at: str
    completed_at: str | None = None
    success: bool = True
    skipped: bool = False
    error: str | None = None
    commit_sha: str | None = None
    conflicts: list[str] = []
    results: list[SyncResult] = []

    model_config = {"frozen": True}

    def _by_action(self, action: SyncActionType) -> list[SyncResult]:
        return [r for r in self.results if r.action == action]

    @property
    def uploaded(self) -> list[SyncResult]:
        """Results where action is UPLOAD."""
        return self._by_action(SyncActionType.UPLOAD)

    @property
    def downloaded(self) -> list[SyncResult]:
        """Results where action is DOWNLOAD."""
        return self._by_action(SyncActionType.DOWNLOAD)

    @property
    def deleted_local(self) -> list[SyncResult]:
        """Results where action is DELETE_LOCAL."""
        return self._by_action(SyncActionType.DELETE_LOCAL)

    @property
    def deleted_remote(self) -> list[SyncResult]:
        """Results where action is DELETE_REMOTE."""
        return self._by_action(SyncActionType.DELETE_REMOTE)

    @property
    def errors(self) -> list[SyncResult]:
        """Results where success is False."""
        return [r for r in self.results if not r.success]

    def summary(self) -> str:
        """Format a short human-readable summary of the attempt."""
        if self.skipped:
            return f"{self.kind.value}: skipped, another sync is running"
        if not self.success:
            return f"{self.kind.value}: failed: {self.error}"
        lines = [
            f"{self.kind.value}: "
            + ("nothing to sync" if not self.results else "done"),
            f"  Uploaded:       {len(self.uploaded)}",
            f"  Downloaded:     {len(self.downloaded)}",
            f"  Deleted local:  {len(self.deleted_local)}",
            f"  Deleted remote: {len(self.deleted_remote)}",
            f"  Conflicts:      {len(self.conflicts)}",
            f"  Errors:         {len(self.errors)}",
        ]
        return "\n".join(lines)
