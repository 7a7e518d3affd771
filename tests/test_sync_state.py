"""Tests for the manifest store.

Covers:
- Load returns an empty manifest when the file is missing or blank
- Malformed manifests raise
- Save writes atomically and leaves no temp files behind
- Save/load round-trip preserves all fields and wire names
- Saves complete in call order with the state captured at call time
- get/put/remove/reset
"""

from __future__ import annotations

import asyncio
import json
from pathlib import Path

import pytest

from github_sync_mcp.sync.models import FileMetadata, Metadata
from github_sync_mcp.sync.state import (
    MANIFEST_FILE_NAME,
    TEMP_PREFIX,
    MetadataStore,
    manifest_path,
)


def _manifest_file(root: Path) -> Path:
    return root / ".obsidian" / MANIFEST_FILE_NAME


class TestMetadataStoreLoad:
    async def test_load_missing_file_is_empty(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")

        data = await store.load()

        assert data.last_sync is None
        assert data.files == {}
        assert store.data is data

    async def test_load_blank_file_is_empty(self, tmp_path: Path):
        target = _manifest_file(tmp_path)
        target.parent.mkdir()
        target.write_text("  \n", encoding="utf-8")
        store = MetadataStore(tmp_path, ".obsidian")

        assert (await store.load()).files == {}

    async def test_load_malformed_file_raises(self, tmp_path: Path):
        target = _manifest_file(tmp_path)
        target.parent.mkdir()
        target.write_text("{not json", encoding="utf-8")
        store = MetadataStore(tmp_path, ".obsidian")

        with pytest.raises(ValueError):
            await store.load()

    async def test_load_reads_wire_format(self, tmp_path: Path):
        target = _manifest_file(tmp_path)
        target.parent.mkdir()
        target.write_text(
            json.dumps(
                {
                    "lastSync": 1700000000000,
                    "files": {
                        "a.md": {
                            "path": "a.md",
                            "sha": "abc",
                            "dirty": False,
                            "justDownloaded": True,
                            "lastModified": 1,
                        },
                        "b.md": {
                            "path": "b.md",
                            "sha": None,
                            "dirty": False,
                            "justDownloaded": False,
                            "lastModified": 2,
                            "deleted": True,
                            "deletedAt": 3,
                        },
                    },
                }
            ),
            encoding="utf-8",
        )
        store = MetadataStore(tmp_path, ".obsidian")

        data = await store.load()

        assert data.last_sync == 1700000000000
        assert data.files["a.md"].just_downloaded
        assert not data.files["a.md"].deleted
        assert data.files["b.md"].deleted_at == 3


class TestMetadataStoreSave:
    async def test_save_creates_file(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.put(FileMetadata(path="a.md", sha="abc", last_modified=5))

        await store.save()

        assert _manifest_file(tmp_path).exists()
        leftovers = [
            p.name
            for p in _manifest_file(tmp_path).parent.iterdir()
            if p.name.startswith(TEMP_PREFIX)
        ]
        assert leftovers == []

    async def test_round_trip(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.data.last_sync = 99
        store.put(
            FileMetadata(
                path="notes/a.md",
                sha="abc",
                dirty=True,
                just_downloaded=True,
                last_modified=10,
            )
        )
        store.put(FileMetadata(path="gone.md", last_modified=1, deleted_at=20))
        await store.save()

        fresh = MetadataStore(tmp_path, ".obsidian")
        data = await fresh.load()

        assert data == store.data

    async def test_saved_json_uses_camel_case(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.data.last_sync = 1
        store.put(FileMetadata(path="a.md", last_modified=1))
        await store.save()

        raw = json.loads(_manifest_file(tmp_path).read_text(encoding="utf-8"))

        assert raw["lastSync"] == 1
        entry = raw["files"]["a.md"]
        assert entry["justDownloaded"] is False
        assert entry["lastModified"] == 1
        assert entry["deleted"] is False
        assert "deletedAt" not in entry

    async def test_saves_apply_in_order_with_snapshot(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.data.last_sync = 1
        first = store.save()
        store.data.last_sync = 2
        second = store.save()
        # Mutation after the last save is not written
        store.data.last_sync = 3

        await asyncio.gather(first, second)

        on_disk = Metadata.model_validate_json(
            _manifest_file(tmp_path).read_text(encoding="utf-8")
        )
        assert on_disk.last_sync == 2

    async def test_unawaited_save_still_writes(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.data.last_sync = 7
        store.save()

        await store.save()

        assert _manifest_file(tmp_path).exists()


class TestMetadataStoreEntries:
    def test_manifest_path(self, tmp_path: Path):
        store = MetadataStore(tmp_path, "cfg")
        assert store.manifest_path == f"cfg/{MANIFEST_FILE_NAME}"
        assert manifest_path(".obsidian") == f".obsidian/{MANIFEST_FILE_NAME}"

    def test_put_get_remove(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        entry = FileMetadata(path="a.md")

        store.put(entry)
        assert store.get("a.md") is entry

        store.remove("a.md")
        assert store.get("a.md") is None
        store.remove("a.md")

    def test_put_replaces(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.put(FileMetadata(path="a.md", sha="one"))
        store.put(FileMetadata(path="a.md", sha="two"))

        assert store.get("a.md").sha == "two"
        assert len(store.data.files) == 1

    def test_reset(self, tmp_path: Path):
        store = MetadataStore(tmp_path, ".obsidian")
        store.data.last_sync = 5
        store.put(FileMetadata(path="a.md"))

        store.reset()

        assert store.data.last_sync is None
        assert store.data.files == {}
