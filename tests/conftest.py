"""Shared pytest fixtures for github-sync-mcp tests."""

from __future__ import annotations

import base64
from pathlib import Path
from unittest.mock import MagicMock

import pytest
from dotenv import load_dotenv

from github_sync_mcp.config import Config
from github_sync_mcp.core.client import EmptyRepositoryError, GitHubAPIError
from github_sync_mcp.sync.blobs import git_blob_sha
from github_sync_mcp.sync.engine import SyncEngine
from github_sync_mcp.sync.models import (
    FileMetadata,
    Metadata,
    NewTreeItem,
    RepoContent,
    TreeItem,
)
from github_sync_mcp.sync.resolver import OverwriteRemoteResolver
from github_sync_mcp.sync.state import MANIFEST_FILE_NAME, MetadataStore
from github_sync_mcp.vault import Vault

load_dotenv()

MANIFEST = f".obsidian/{MANIFEST_FILE_NAME}"


def pytest_addoption(parser):
    """Add custom CLI options for test filtering."""
    parser.addoption(
        "--run-live",
        action="store_true",
        default=False,
        help="Run tests that require a live GitHub repository",
    )


def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line(
        "markers", "live: mark test as requiring a live GitHub repository"
    )


def pytest_collection_modifyitems(config, items):
    """Skip live tests unless --run-live is passed."""
    if config.getoption("--run-live"):
        return
    skip_live = pytest.mark.skip(reason="need --run-live option to run")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


@pytest.fixture
def mock_config(tmp_path: Path):
    """Create a Config pointing at a temp vault."""
    return Config(
        token="ghp_test",
        owner="octocat",
        repo="notes",
        vault_path=str(tmp_path),
    )


@pytest.fixture
def mock_github_client(mock_config):
    """Create a mock GitHubClient instance for testing."""
    from github_sync_mcp.core.client import GitHubClient

    client = MagicMock(spec=GitHubClient)
    client.config = mock_config
    return client


# ---------------------------------------------------------------------------
# In-memory GitHub
# ---------------------------------------------------------------------------


class FakeGitHub:
    """In-memory stand-in for ``GitHubClient`` backed by dicts.

    The branch is a ``path -> blob sha`` mapping.  Trees and commits get
    sequential ids so tests can assert on them.  Set ``fail_on`` to a
    method name to make that call raise a 500.
    """

    def __init__(self) -> None:
        self.blobs: dict[str, bytes] = {}
        self.branch: dict[str, str] = {}
        self.tree_sha = "tree-0"
        self.head = "commit-0"
        self.empty = False
        self.trees: dict[str, dict[str, str]] = {"tree-0": {}}
        self.commits: dict[str, tuple[str, str, str]] = {}
        self.tree_requests: list[list[NewTreeItem]] = []
        self.created_blobs: list[str] = []
        self.calls: list[str] = []
        self.fail_on: str | None = None

    # -- seeding helpers ---------------------------------------------------

    def put(self, path: str, content: bytes | str) -> str:
        """Place a file on the branch without a commit."""
        raw = content.encode("utf-8") if isinstance(content, str) else content
        sha = git_blob_sha(raw)
        self.blobs[sha] = raw
        self.branch[path] = sha
        self.trees[self.tree_sha] = dict(self.branch)
        return sha

    def put_manifest(self, metadata: Metadata) -> str:
        return self.put(MANIFEST, metadata.to_json())

    def read(self, path: str) -> bytes:
        return self.blobs[self.branch[path]]

    def manifest(self) -> Metadata:
        return Metadata.model_validate_json(self.read(MANIFEST))

    @property
    def commit_count(self) -> int:
        return len(self.commits)

    # -- client surface ----------------------------------------------------

    def _record(self, name: str) -> None:
        self.calls.append(name)
        if self.fail_on == name:
            raise GitHubAPIError(500, f"{name} failed", transient=True)

    def validate_connection(self) -> str:
        self._record("validate_connection")
        return "octocat/notes"

    def get_repo_content(self) -> RepoContent:
        self._record("get_repo_content")
        if self.empty:
            raise EmptyRepositoryError(409, "Git Repository is empty.")
        return RepoContent(
            sha=self.tree_sha,
            files={
                p: TreeItem(path=p, sha=s) for p, s in self.branch.items()
            },
        )

    def get_blob(self, sha: str) -> bytes:
        self._record("get_blob")
        return self.blobs[sha]

    def create_blob(self, content_b64: str) -> str:
        self._record("create_blob")
        raw = base64.b64decode(content_b64)
        sha = git_blob_sha(raw)
        self.blobs[sha] = raw
        self.created_blobs.append(sha)
        return sha

    def create_file(self, path: str, content: str, message: str) -> None:
        self._record("create_file")
        self.empty = False
        self.put(path, content)
        self._commit(message, self.tree_sha)

    def create_tree(self, items: list[NewTreeItem], base_tree: str) -> str:
        self._record("create_tree")
        self.tree_requests.append(list(items))
        tree = dict(self.trees[base_tree])
        for item in items:
            if item.is_deletion:
                tree.pop(item.path, None)
            elif item.content is not None:
                raw = item.content.encode("utf-8")
                sha = git_blob_sha(raw)
                self.blobs[sha] = raw
                tree[item.path] = sha
            else:
                assert item.sha in self.blobs, f"unknown blob {item.sha}"
                tree[item.path] = item.sha
        sha = f"tree-{len(self.trees)}"
        self.trees[sha] = tree
        return sha

    def get_branch_head_sha(self) -> str:
        self._record("get_branch_head_sha")
        return self.head

    def create_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        self._record("create_commit")
        return self._new_commit(message, tree_sha, parent_sha)

    def update_branch_head(self, sha: str) -> None:
        self._record("update_branch_head")
        tree_sha = self.commits[sha][0]
        self.head = sha
        self.tree_sha = tree_sha
        self.branch = dict(self.trees[tree_sha])

    def _new_commit(self, message: str, tree_sha: str, parent_sha: str) -> str:
        sha = f"commit-{len(self.commits) + 1}"
        self.commits[sha] = (tree_sha, parent_sha, message)
        return sha

    def _commit(self, message: str, tree_sha: str) -> None:
        sha = self._new_commit(message, tree_sha, self.head)
        self.head = sha


@pytest.fixture
def fake_github():
    return FakeGitHub()


@pytest.fixture
def vault(tmp_path: Path) -> Vault:
    return Vault(tmp_path, ".obsidian")


@pytest.fixture
def store(vault: Vault) -> MetadataStore:
    return MetadataStore(vault.root, ".obsidian")


@pytest.fixture
def make_engine(fake_github, vault, store, mock_config):
    """Factory fixture building a SyncEngine on the fake remote."""

    def _make(resolver=None, **config_overrides) -> SyncEngine:
        for key, value in config_overrides.items():
            setattr(mock_config, key, value)
        return SyncEngine(
            fake_github,
            vault,
            store,
            mock_config,
            resolver or OverwriteRemoteResolver(),
        )

    return _make


@pytest.fixture
def synced_file():
    """Factory building a manifest entry in sync with *content*."""

    def _create(path: str, content: bytes | str, **fields) -> FileMetadata:
        raw = content.encode("utf-8") if isinstance(content, str) else content
        fields.setdefault("last_modified", 1000)
        return FileMetadata(path=path, sha=git_blob_sha(raw), **fields)

    return _create
