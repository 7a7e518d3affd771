"""Tests for sync data models: manifest wire format, tree entries, reports."""

from __future__ import annotations

import json

import pytest
from pydantic import ValidationError

from github_sync_mcp.sync.models import (
    FileMetadata,
    Metadata,
    NewTreeItem,
    SyncActionType,
    SyncKind,
    SyncReport,
    SyncResult,
    TreeItem,
)


class TestFileMetadata:
    def test_defaults(self):
        entry = FileMetadata(path="a.md")
        assert entry.sha is None
        assert not entry.dirty
        assert not entry.just_downloaded
        assert not entry.deleted
        assert entry.last_modified > 0

    def test_deleted_follows_deleted_at(self):
        entry = FileMetadata(path="a.md", last_modified=1)
        entry.mark_deleted(50)
        assert entry.deleted
        assert entry.deleted_at == 50

        entry.revive(60)
        assert not entry.deleted
        assert entry.deleted_at is None
        assert entry.last_modified == 60

    def test_accepts_camel_case(self):
        entry = FileMetadata.model_validate(
            {"path": "a.md", "justDownloaded": True, "lastModified": 7}
        )
        assert entry.just_downloaded
        assert entry.last_modified == 7

    def test_deleted_without_timestamp_rejected(self):
        with pytest.raises(ValidationError, match="no deletedAt"):
            FileMetadata.model_validate({"path": "a.md", "deleted": True})

    def test_timestamp_without_deleted_rejected(self):
        with pytest.raises(ValidationError, match="not deleted"):
            FileMetadata.model_validate(
                {"path": "a.md", "deleted": False, "deletedAt": 5}
            )

    def test_tombstone_dump(self):
        entry = FileMetadata(path="a.md", last_modified=1, deleted_at=9)
        dumped = entry.model_dump(by_alias=True)
        assert dumped["deleted"] is True
        assert dumped["deletedAt"] == 9

    def test_active_dump_omits_deleted_at(self):
        dumped = FileMetadata(path="a.md", last_modified=1).model_dump(
            by_alias=True
        )
        assert dumped["deleted"] is False
        assert "deletedAt" not in dumped


class TestMetadata:
    def test_to_json_wire_names(self):
        meta = Metadata(
            last_sync=3,
            files={"a.md": FileMetadata(path="a.md", sha="x", last_modified=2)},
        )
        raw = json.loads(meta.to_json())
        assert raw == {
            "lastSync": 3,
            "files": {
                "a.md": {
                    "path": "a.md",
                    "sha": "x",
                    "dirty": False,
                    "justDownloaded": False,
                    "lastModified": 2,
                    "deleted": False,
                }
            },
        }

    def test_parse_round_trip(self):
        meta = Metadata(
            last_sync=None,
            files={
                "gone.md": FileMetadata(
                    path="gone.md", last_modified=1, deleted_at=2
                )
            },
        )
        assert Metadata.model_validate_json(meta.to_json()) == meta


class TestNewTreeItem:
    def test_content_and_sha_are_exclusive(self):
        with pytest.raises(ValidationError, match="both content and sha"):
            NewTreeItem(path="a.md", content="x", sha="abc")

    def test_content_request(self):
        item = NewTreeItem.with_content("a.md", "hello")
        assert item.to_request() == {
            "path": "a.md",
            "mode": "100644",
            "type": "blob",
            "content": "hello",
        }
        assert not item.is_deletion

    def test_sha_request(self):
        item = NewTreeItem.with_sha("a.png", "abc")
        assert item.to_request()["sha"] == "abc"
        assert "content" not in item.to_request()

    def test_deletion_sends_null_sha(self):
        item = NewTreeItem.deletion("a.md")
        assert item.is_deletion
        request = item.to_request()
        assert "sha" in request
        assert request["sha"] is None

    def test_from_remote(self):
        remote = TreeItem(path="a.md", sha="abc", mode="100755")
        item = NewTreeItem.from_remote(remote)
        assert item.sha == "abc"
        assert item.mode == "100755"


class TestSyncReport:
    def _report(self, **kwargs) -> SyncReport:
        return SyncReport(kind=SyncKind.SYNC, started_at="t0", **kwargs)

    def test_grouping(self):
        report = self._report(
            results=[
                SyncResult(
                    file_path="a", action=SyncActionType.UPLOAD, success=True
                ),
                SyncResult(
                    file_path="b", action=SyncActionType.DOWNLOAD, success=True
                ),
                SyncResult(
                    file_path="c",
                    action=SyncActionType.DELETE_LOCAL,
                    success=False,
                    error="busy",
                ),
                SyncResult(
                    file_path="d",
                    action=SyncActionType.DELETE_REMOTE,
                    success=True,
                ),
            ]
        )
        assert [r.file_path for r in report.uploaded] == ["a"]
        assert [r.file_path for r in report.downloaded] == ["b"]
        assert [r.file_path for r in report.deleted_local] == ["c"]
        assert [r.file_path for r in report.deleted_remote] == ["d"]
        assert [r.file_path for r in report.errors] == ["c"]

    def test_summary_nothing_to_sync(self):
        assert "nothing to sync" in self._report().summary()

    def test_summary_skipped(self):
        assert "skipped" in self._report(skipped=True).summary()

    def test_summary_failed(self):
        summary = self._report(success=False, error="boom").summary()
        assert summary == "sync: failed: boom"

    def test_frozen(self):
        report = self._report()
        with pytest.raises(ValidationError):
            report.success = False
