"""Vault: path-confined file I/O over the local synced directory.

Every path taken or returned here is a vault-relative POSIX string
(``notes/a.md``), the same form used as manifest keys and remote tree
paths.  The empty string names the vault root.  Paths that would resolve
outside the root are rejected with ``ValueError``.

All methods are blocking; async callers go through ``run_sync()``.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path, PurePosixPath

from charset_normalizer import from_bytes

logger = logging.getLogger(__name__)


class Vault:
    """File-system boundary for one vault directory.

    Args:
        root: Vault directory.
        config_dir: Vault-relative name of the host config directory.
    """

    def __init__(self, root: Path | str, config_dir: str = ".obsidian") -> None:
        self.root = Path(root).expanduser().resolve()
        self.config_dir = config_dir

    # =========================================================================
    # Path handling
    # =========================================================================

    def resolve(self, path: str) -> Path:
        """Map a vault-relative path to an absolute one.

        Raises:
            ValueError: If *path* is absolute or escapes the vault root.
        """
        rel = PurePosixPath(path)
        if rel.is_absolute():
            raise ValueError(f"Path must be relative to the vault: {path}")
        resolved = (self.root / rel).resolve()
        if not resolved.is_relative_to(self.root):
            raise ValueError(f"Path is outside the vault: {path}")
        return resolved

    def relative(self, absolute: Path | str) -> str:
        """Inverse of ``resolve()``: absolute path to vault-relative POSIX."""
        rel = Path(absolute).resolve().relative_to(self.root)
        return rel.as_posix() if rel.parts else ""

    def _join(self, folder: str, name: str) -> str:
        return f"{folder}/{name}" if folder else name

    # =========================================================================
    # Queries
    # =========================================================================

    def exists(self, path: str) -> bool:
        return self.resolve(path).exists()

    def list(self, path: str = "") -> tuple[list[str], list[str]]:
        """List the direct children of a folder.

        Returns:
            Tuple of (files, folders), each a sorted list of vault-relative
            paths.
        """
        folder = self.resolve(path)
        files: list[str] = []
        folders: list[str] = []
        with os.scandir(folder) as entries:
            for entry in entries:
                child = self._join(path, entry.name)
                if entry.is_dir(follow_symlinks=False):
                    folders.append(child)
                elif entry.is_file():
                    files.append(child)
        return sorted(files), sorted(folders)

    def walk(self, path: str = "") -> list[str]:
        """Return every file below *path*, recursively."""
        files: list[str] = []
        pending = [path]
        while pending:
            folder = pending.pop()
            found, subfolders = self.list(folder)
            files.extend(found)
            pending.extend(subfolders)
        return sorted(files)

    # =========================================================================
    # Read / write
    # =========================================================================

    def read_binary(self, path: str) -> bytes:
        return self.resolve(path).read_bytes()

    def read(self, path: str) -> str:
        """Read a file as text, detecting its encoding.

        Empty files and files whose encoding cannot be detected are
        decoded as UTF-8 (with replacement characters where needed).
        """
        raw = self.read_binary(path)
        if not raw:
            return ""
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError:
            pass
        best = from_bytes(raw).best()
        if best is None:
            return raw.decode("utf-8", errors="replace")
        return str(best)

    def write_binary(self, path: str, content: bytes) -> int:
        """Write bytes, creating parent folders.  Returns the byte count."""
        target = self.resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_bytes(content)
        return len(content)

    def write(self, path: str, content: str) -> int:
        """Write text as UTF-8, creating parent folders."""
        return self.write_binary(path, content.encode("utf-8"))

    def mkdir(self, path: str) -> None:
        self.resolve(path).mkdir(parents=True, exist_ok=True)

    def remove(self, path: str) -> None:
        """Delete a file.

        Raises:
            FileNotFoundError: If the file does not exist.
        """
        self.resolve(path).unlink()
        logger.debug("Removed %s", path)
