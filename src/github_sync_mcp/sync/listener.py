"""Change listener: turns local file-system events into manifest updates.

Events arrive as ``VaultEvent`` messages on an ``asyncio.Queue``;
``ChangeListener.run()`` drains it one event at a time.  Nothing here
touches the network.  The listener only records local intent (dirty
flags, edit times, tombstones) for the next sync pass to act on.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from enum import Enum

from ..config import Config
from .models import FileMetadata, now_ms
from .state import MetadataStore

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    CREATE = "create"
    MODIFY = "modify"
    DELETE = "delete"
    RENAME = "rename"


@dataclass(frozen=True)
class VaultEvent:
    """One local change.

    Attributes:
        kind: What happened.
        path: Vault-relative path (the new path for renames).
        old_path: Previous path, renames only.
        is_directory: Folder events are ignored.
    """

    kind: EventKind
    path: str
    old_path: str | None = None
    is_directory: bool = False


def excluded_paths(config_dir: str) -> frozenset[str]:
    """Host state files that are never synced."""
    return frozenset(
        {
            f"{config_dir}/workspace.json",
            f"{config_dir}/workspace-mobile.json",
        }
    )


class ChangeListener:
    """Maintain per-file sync state from local events.

    Args:
        store: The metadata store to update.
        config: Live configuration; ``sync_config_dir`` is re-read on every
            event so toggling it takes effect immediately.
    """

    def __init__(self, store: MetadataStore, config: Config) -> None:
        self.store = store
        self.config = config
        self.queue: asyncio.Queue[VaultEvent] = asyncio.Queue()
        self._excluded = excluded_paths(config.config_dir)

    def is_syncable(self, path: str) -> bool:
        """Whether changes to *path* should be tracked."""
        if path in self._excluded:
            return False
        if path == self.store.manifest_path:
            return True
        if path.startswith(self.config.config_dir + "/"):
            return self.config.sync_config_dir
        return True

    def post(self, event: VaultEvent) -> None:
        """Enqueue an event.  Must be called from the event loop thread."""
        self.queue.put_nowait(event)

    async def run(self) -> None:
        """Drain the queue forever.  Cancel the task to stop."""
        while True:
            event = await self.queue.get()
            try:
                await self.handle(event)
            except Exception:
                logger.exception(
                    "Failed to handle %s event for %s",
                    event.kind.value,
                    event.path,
                )
            finally:
                self.queue.task_done()

    async def handle(self, event: VaultEvent) -> None:
        """Apply one event to the manifest."""
        if event.is_directory:
            return
        match event.kind:
            case EventKind.CREATE | EventKind.MODIFY:
                if self.is_syncable(event.path):
                    await self._on_write(event.path)
            case EventKind.DELETE:
                if self.is_syncable(event.path):
                    await self._on_delete(event.path)
            case EventKind.RENAME:
                await self._on_rename(event.path, event.old_path)

    async def _on_write(self, path: str) -> None:
        entry = self.store.get(path)
        if entry is not None and entry.just_downloaded:
            # Echo of an engine write
            entry.just_downloaded = False
            await self.store.save()
            return

        now = now_ms()
        if entry is None:
            entry = FileMetadata(path=path, dirty=True, last_modified=now)
            self.store.put(entry)
            logger.debug("Tracking new file %s", path)
        else:
            if entry.deleted:
                entry.revive(now)
                logger.debug("Revived %s", path)
            entry.dirty = True
            entry.last_modified = now
        await self.store.save()

    async def _on_delete(self, path: str) -> None:
        entry = self.store.get(path)
        if entry is None:
            logger.debug("Ignoring delete of untracked %s", path)
            return
        if entry.deleted:
            return
        entry.mark_deleted(now_ms())
        await self.store.save()

    async def _on_rename(self, path: str, old_path: str | None) -> None:
        if self.is_syncable(path):
            await self._on_write(path)
        if old_path is not None and self.is_syncable(old_path):
            await self._on_delete(old_path)
