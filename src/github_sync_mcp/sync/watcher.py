"""File-system watcher feeding the change listener.

A ``watchdog`` observer reports events on its own thread.  They are
handed to the event loop with ``call_soon_threadsafe``, coalesced per
path for a short debounce window and then posted to the listener queue.
Coalescing folds the burst of events an editor (or a download) produces
into one logical change.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict

from watchdog.events import (
    FileSystemEvent,
    FileSystemEventHandler,
    FileSystemMovedEvent,
)
from watchdog.observers import Observer

from ..core.async_utils import run_sync
from ..vault import Vault
from .listener import ChangeListener, EventKind, VaultEvent
from .state import TEMP_PREFIX, TEMP_SUFFIX

logger = logging.getLogger(__name__)

DEFAULT_DEBOUNCE = 0.5


class EventCoalescer:
    """Per-path event buffer that folds redundant events.

    * create then delete: both dropped.
    * delete then create: one modify.
    * create then modify: stays a create.
    * anything else: the newer event replaces the older one and moves to
      the back of the order.

    Renames are split into a create at the new path and a delete at the
    old path before folding.
    """

    def __init__(self) -> None:
        self._events: OrderedDict[str, VaultEvent] = OrderedDict()

    def __len__(self) -> int:
        return len(self._events)

    def push(self, event: VaultEvent) -> None:
        if event.kind is EventKind.RENAME:
            self.push(VaultEvent(EventKind.CREATE, event.path))
            if event.old_path is not None:
                self.push(VaultEvent(EventKind.DELETE, event.old_path))
            return

        previous = self._events.pop(event.path, None)
        if previous is None:
            self._events[event.path] = event
            return

        if previous.kind is EventKind.CREATE:
            if event.kind is EventKind.DELETE:
                return
            if event.kind is EventKind.MODIFY:
                self._events[event.path] = previous
                return
        if previous.kind is EventKind.DELETE and event.kind is EventKind.CREATE:
            self._events[event.path] = VaultEvent(EventKind.MODIFY, event.path)
            return
        self._events[event.path] = event

    def flush(self) -> list[VaultEvent]:
        """Return buffered events in order and clear the buffer."""
        events = list(self._events.values())
        self._events.clear()
        return events


class _ObserverHandler(FileSystemEventHandler):
    """Translate watchdog callbacks into ``VaultEvent`` objects."""

    def __init__(self, watcher: VaultWatcher) -> None:
        self.watcher = watcher

    def on_created(self, event: FileSystemEvent) -> None:
        self._forward(EventKind.CREATE, event)

    def on_modified(self, event: FileSystemEvent) -> None:
        self._forward(EventKind.MODIFY, event)

    def on_deleted(self, event: FileSystemEvent) -> None:
        self._forward(EventKind.DELETE, event)

    def on_moved(self, event: FileSystemMovedEvent) -> None:
        self._forward(EventKind.RENAME, event)

    def _forward(self, kind: EventKind, event: FileSystemEvent) -> None:
        if event.is_directory:
            return
        watcher = self.watcher
        path = watcher.to_vault_path(event.src_path)
        if kind is EventKind.RENAME:
            dest = watcher.to_vault_path(event.dest_path)
            vault_event = _rename_event(path, dest)
        elif path is None:
            return
        else:
            vault_event = VaultEvent(kind, path)
        if vault_event is not None:
            watcher.submit_threadsafe(vault_event)


def _rename_event(old: str | None, new: str | None) -> VaultEvent | None:
    """A move with one ignored endpoint degrades to a create or a delete."""
    if old is None and new is None:
        return None
    if old is None:
        return VaultEvent(EventKind.CREATE, new)  # type: ignore[arg-type]
    if new is None:
        return VaultEvent(EventKind.DELETE, old)
    return VaultEvent(EventKind.RENAME, new, old_path=old)


class VaultWatcher:
    """Watch a vault directory and feed a ``ChangeListener``.

    Args:
        vault: The watched vault.
        listener: Receives the coalesced events.
        debounce: Seconds to buffer events before posting them.
    """

    def __init__(
        self,
        vault: Vault,
        listener: ChangeListener,
        debounce: float = DEFAULT_DEBOUNCE,
    ) -> None:
        self.vault = vault
        self.listener = listener
        self.debounce = debounce
        self.coalescer = EventCoalescer()
        self._loop: asyncio.AbstractEventLoop | None = None
        self._observer: Observer | None = None
        self._flush_task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._observer is not None

    def to_vault_path(self, absolute: str | bytes) -> str | None:
        """Vault-relative path for an event, or ``None`` if it is ignored.

        Ignored: anything outside the vault, the manifest (written by the
        store, never by the user) and the store's temp files.
        """
        if isinstance(absolute, bytes):
            absolute = absolute.decode("utf-8", errors="surrogateescape")
        try:
            path = self.vault.relative(absolute)
        except ValueError:
            return None
        if not path or path == self.listener.store.manifest_path:
            return None
        name = path.rsplit("/", 1)[-1]
        if name.startswith(TEMP_PREFIX) and name.endswith(TEMP_SUFFIX):
            return None
        return path

    def submit_threadsafe(self, event: VaultEvent) -> None:
        """Hand an event from the observer thread to the event loop."""
        if self._loop is None or self._loop.is_closed():
            return
        self._loop.call_soon_threadsafe(self.coalescer.push, event)

    def start(self) -> None:
        """Start observing.  Must be called from a running event loop."""
        if self._observer is not None:
            raise RuntimeError("Watcher is already running")
        self._loop = asyncio.get_running_loop()
        observer = Observer()
        observer.schedule(
            _ObserverHandler(self), str(self.vault.root), recursive=True
        )
        observer.start()
        self._observer = observer
        self._flush_task = asyncio.create_task(self._flush_loop())
        logger.info("Watching %s", self.vault.root)

    async def stop(self) -> None:
        """Stop observing and post whatever is still buffered."""
        observer, self._observer = self._observer, None
        if observer is not None:
            observer.stop()
            await run_sync(observer.join, 5)
        if self._flush_task is not None:
            self._flush_task.cancel()
            try:
                await self._flush_task
            except asyncio.CancelledError:
                pass
            self._flush_task = None
        self.flush()
        logger.info("Stopped watching %s", self.vault.root)

    def flush(self) -> int:
        """Post buffered events to the listener.  Returns the count."""
        events = self.coalescer.flush()
        for event in events:
            self.listener.post(event)
        return len(events)

    async def _flush_loop(self) -> None:
        while True:
            await asyncio.sleep(self.debounce)
            self.flush()
