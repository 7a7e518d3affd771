"""Metadata store: durable owner of the sync manifest.

The manifest lives inside the vault at
``<config_dir>/github-sync-metadata.json`` and is itself a tracked file,
so a fresh clone of the remote carries enough state to resume syncing.

Key design choices:

* **Single owner** -- the store holds the one in-memory ``Metadata``
  instance.  The listener and engine mutate it in place and then call
  ``save()``.
* **FIFO writes** -- ``save()`` serialises the current state at call time
  and queues the write behind every earlier one, so concurrent saves
  never interleave.
* **Atomic writes** -- each write goes to a temp file in the same
  directory and is moved into place with ``os.replace()``.
"""

from __future__ import annotations

import asyncio
import logging
import os
import tempfile
from pathlib import Path

from ..core.async_utils import run_sync
from .models import FileMetadata, Metadata

logger = logging.getLogger(__name__)

MANIFEST_FILE_NAME = "github-sync-metadata.json"
TEMP_PREFIX = ".github-sync-metadata."
TEMP_SUFFIX = ".tmp"


def manifest_path(config_dir: str) -> str:
    """Vault-relative path of the manifest for *config_dir*."""
    return f"{config_dir}/{MANIFEST_FILE_NAME}"


def _write_atomic(target: Path, payload: str) -> None:
    target.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(target.parent), prefix=TEMP_PREFIX, suffix=TEMP_SUFFIX
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(payload)
        os.replace(tmp_path, target)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


class MetadataStore:
    """Load, save, and reset the manifest of one vault.

    Args:
        vault_root: Absolute path of the vault directory.
        config_dir: Vault-relative name of the host config directory.
    """

    def __init__(self, vault_root: Path, config_dir: str) -> None:
        self.config_dir = config_dir
        self.manifest_path = manifest_path(config_dir)
        self._file = Path(vault_root) / self.manifest_path
        self.data = Metadata()
        self._write_lock = asyncio.Lock()

    # ------------------------------------------------------------------
    # Persistence
    # ------------------------------------------------------------------

    async def load(self) -> Metadata:
        """Read the manifest from disk.

        An absent or empty file yields an empty manifest.  A malformed
        file raises ``ValueError``.
        """
        self.data = await run_sync(self._read)
        logger.debug(
            "Loaded manifest with %d entries", len(self.data.files)
        )
        return self.data

    def _read(self) -> Metadata:
        if not self._file.exists():
            return Metadata()
        raw = self._file.read_text(encoding="utf-8")
        if not raw.strip():
            return Metadata()
        return Metadata.model_validate_json(raw)

    def save(self) -> asyncio.Future[None]:
        """Queue a write of the current in-memory state.

        The state is serialised now, so mutations made after this call
        belong to a later save.  The returned future resolves once this
        write and every write queued before it have completed, and
        carries the write's exception if it failed.  Callers that do not
        await it still get the write.
        """
        payload = self.data.to_json()
        return asyncio.ensure_future(self._write(payload))

    async def _write(self, payload: str) -> None:
        # asyncio.Lock wakes waiters in FIFO order.
        async with self._write_lock:
            try:
                await run_sync(_write_atomic, self._file, payload)
            except OSError:
                logger.exception("Failed to write manifest %s", self._file)
                raise

    def reset(self) -> None:
        """Replace the in-memory manifest with an empty one."""
        self.data = Metadata()

    # ------------------------------------------------------------------
    # Entry helpers
    # ------------------------------------------------------------------

    def get(self, path: str) -> FileMetadata | None:
        """Return the entry for *path*, or ``None`` if untracked."""
        return self.data.files.get(path)

    def put(self, entry: FileMetadata) -> None:
        """Upsert *entry* under its own path."""
        self.data.files[entry.path] = entry

    def remove(self, path: str) -> None:
        """Drop *path* from the manifest.  No-op if absent."""
        self.data.files.pop(path, None)
