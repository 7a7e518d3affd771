import base64
from unittest.mock import Mock, patch

import pytest
import requests

from github_sync_mcp.config import Config
from github_sync_mcp.core.client import (
    API_VERSION,
    EmptyRepositoryError,
    GitHubAPIError,
    GitHubClient,
    RateLimitError,
    _error_from_response,
)
from github_sync_mcp.sync.models import NewTreeItem

REPO_URL = "https://api.github.com/repos/octocat/notes"


def _response(status=200, body=None, headers=None, reason="OK"):
    """Build a stand-in for requests.Response."""
    response = Mock()
    response.status_code = status
    response.ok = 200 <= status < 300
    response.reason = reason
    response.headers = headers or {}
    if body is None:
        response.content = b""
        response.text = ""
        response.json.side_effect = ValueError("no body")
    else:
        response.content = b"{...}"
        response.text = str(body)
        response.json.return_value = body
    return response


@pytest.fixture
def client(mock_config):
    return GitHubClient(mock_config)


# ---------------------------------------------------------------------------
# Session and URL construction
# ---------------------------------------------------------------------------


def test_repo_url_construction(client):
    assert client.repo_url == REPO_URL


def test_repo_url_with_enterprise_api(tmp_path):
    config = Config(
        token="t",
        owner="team",
        repo="vault",
        api_url="https://ghe.example.com/api/v3",
        vault_path=str(tmp_path),
    )
    assert (
        GitHubClient(config).repo_url
        == "https://ghe.example.com/api/v3/repos/team/vault"
    )


def test_session_headers(client):
    headers = client.session.headers
    assert headers["Authorization"] == "Bearer ghp_test"
    assert headers["Accept"] == "application/vnd.github+json"
    assert headers["X-GitHub-Api-Version"] == API_VERSION


def test_session_is_reused_per_thread(client):
    assert client.session is client.session


# ---------------------------------------------------------------------------
# Read calls
# ---------------------------------------------------------------------------


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_validate_connection(mock_request, client):
    mock_request.return_value = _response(body={"full_name": "octocat/notes"})

    assert client.validate_connection() == "octocat/notes"
    args, kwargs = mock_request.call_args
    assert args == ("GET", REPO_URL)
    assert kwargs["timeout"] == (10, 60)


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_repo_content(mock_request, client):
    mock_request.return_value = _response(
        body={
            "sha": "tree123",
            "truncated": False,
            "tree": [
                {"path": "notes", "type": "tree", "sha": "d1", "mode": "040000"},
                {
                    "path": "notes/a.md",
                    "type": "blob",
                    "sha": "b1",
                    "mode": "100644",
                    "size": 12,
                },
                {"path": "pic.png", "type": "blob", "sha": "b2"},
            ],
        }
    )

    content = client.get_repo_content()

    assert content.sha == "tree123"
    assert sorted(content.files) == ["notes/a.md", "pic.png"]
    assert content.files["notes/a.md"].size == 12
    args, kwargs = mock_request.call_args
    assert args == ("GET", f"{REPO_URL}/git/trees/main")
    assert kwargs["params"] == {"recursive": "1"}


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_repo_content_quotes_branch(mock_request, mock_config):
    mock_config.branch = "sync/vault"
    mock_request.return_value = _response(body={"sha": "t", "tree": []})

    GitHubClient(mock_config).get_repo_content()

    assert mock_request.call_args[0][1].endswith("/git/trees/sync%2Fvault")


@pytest.mark.parametrize("status", [404, 409])
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_repo_content_empty_repository(mock_request, client, status):
    mock_request.return_value = _response(
        status, body={"message": "Git Repository is empty."}
    )

    with pytest.raises(EmptyRepositoryError) as exc_info:
        client.get_repo_content()
    assert exc_info.value.status == status


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_blob_decodes_base64(mock_request, client):
    raw = b"\x89PNG\r\n\x00binary"
    mock_request.return_value = _response(
        body={
            "sha": "b1",
            "encoding": "base64",
            # GitHub wraps base64 at 60 columns
            "content": base64.encodebytes(raw).decode("ascii"),
        }
    )

    assert client.get_blob("b1") == raw
    assert mock_request.call_args[0][1] == f"{REPO_URL}/git/blobs/b1"


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_blob_utf8_encoding(mock_request, client):
    mock_request.return_value = _response(
        body={"encoding": "utf-8", "content": "héllo"}
    )
    assert client.get_blob("b1") == "héllo".encode("utf-8")


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_get_branch_head_sha(mock_request, client):
    mock_request.return_value = _response(
        body={"ref": "refs/heads/main", "object": {"sha": "c1"}}
    )

    assert client.get_branch_head_sha() == "c1"
    assert mock_request.call_args[0][1] == f"{REPO_URL}/git/ref/heads/main"


# ---------------------------------------------------------------------------
# Write calls
# ---------------------------------------------------------------------------


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_create_blob(mock_request, client):
    mock_request.return_value = _response(201, body={"sha": "newblob"})

    assert client.create_blob("AAEC") == "newblob"
    args, kwargs = mock_request.call_args
    assert args == ("POST", f"{REPO_URL}/git/blobs")
    assert kwargs["json"] == {"content": "AAEC", "encoding": "base64"}


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_create_tree_serialises_entries(mock_request, client):
    mock_request.return_value = _response(201, body={"sha": "tree2"})
    items = [
        NewTreeItem.with_content("a.md", "text"),
        NewTreeItem.with_sha("b.png", "blob1"),
        NewTreeItem.deletion("c.md"),
    ]

    assert client.create_tree(items, "tree1") == "tree2"
    body = mock_request.call_args[1]["json"]
    assert body["base_tree"] == "tree1"
    assert body["tree"] == [
        {"path": "a.md", "mode": "100644", "type": "blob", "content": "text"},
        {"path": "b.png", "mode": "100644", "type": "blob", "sha": "blob1"},
        {"path": "c.md", "mode": "100644", "type": "blob", "sha": None},
    ]


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_create_commit(mock_request, client):
    mock_request.return_value = _response(201, body={"sha": "c2"})

    assert client.create_commit("Sync", "tree2", "c1") == "c2"
    args, kwargs = mock_request.call_args
    assert args == ("POST", f"{REPO_URL}/git/commits")
    assert kwargs["json"] == {
        "message": "Sync",
        "tree": "tree2",
        "parents": ["c1"],
    }


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_update_branch_head(mock_request, client):
    mock_request.return_value = _response(body={"object": {"sha": "c2"}})

    client.update_branch_head("c2")

    args, kwargs = mock_request.call_args
    assert args == ("PATCH", f"{REPO_URL}/git/refs/heads/main")
    assert kwargs["json"] == {"sha": "c2", "force": False}


@patch("github_sync_mcp.core.client.requests.Session.request")
def test_create_file(mock_request, client):
    mock_request.return_value = _response(201, body={"content": {}})

    client.create_file(
        ".obsidian/github-sync-metadata.json", "", "First sync"
    )

    args, kwargs = mock_request.call_args
    assert args == (
        "PUT",
        f"{REPO_URL}/contents/.obsidian/github-sync-metadata.json",
    )
    assert kwargs["json"] == {
        "message": "First sync",
        "content": "",
        "branch": "main",
    }


# ---------------------------------------------------------------------------
# Retries
# ---------------------------------------------------------------------------


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_retries_server_errors_with_backoff(mock_request, mock_sleep, client):
    mock_request.side_effect = [
        _response(502, body={"message": "Bad gateway"}),
        _response(503, body={"message": "Unavailable"}),
        _response(body={"full_name": "octocat/notes"}),
    ]

    assert client.validate_connection() == "octocat/notes"
    assert mock_request.call_count == 3
    assert [c.args[0] for c in mock_sleep.call_args_list] == [1.0, 2.0]


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_gives_up_after_max_retries(mock_request, mock_sleep, client):
    mock_request.return_value = _response(500, body={"message": "Oops"})

    with pytest.raises(GitHubAPIError) as exc_info:
        client.get_blob("b1")

    assert exc_info.value.status == 500
    assert exc_info.value.transient
    assert mock_request.call_count == client.config.max_retries + 1


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_rate_limit_honours_retry_after(mock_request, mock_sleep, client):
    mock_request.side_effect = [
        _response(
            429, body={"message": "Too many"}, headers={"Retry-After": "7"}
        ),
        _response(201, body={"sha": "b"}),
    ]

    assert client.create_blob("AA==") == "b"
    mock_sleep.assert_called_once_with(7.0)


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_retries_connection_errors(mock_request, mock_sleep, client):
    mock_request.side_effect = [
        requests.ConnectionError("reset"),
        _response(body={"sha": "t", "tree": []}),
    ]

    assert client.get_repo_content().sha == "t"
    assert mock_sleep.call_count == 1


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_connection_error_after_retries(mock_request, mock_sleep, client):
    mock_request.side_effect = requests.Timeout("slow")

    with pytest.raises(GitHubAPIError) as exc_info:
        client.validate_connection()
    assert exc_info.value.status == 0


@pytest.mark.parametrize(
    "call",
    [
        lambda c: c.create_commit("m", "t", "p"),
        lambda c: c.update_branch_head("c"),
        lambda c: c.create_file("a.md", "x", "m"),
    ],
)
@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_non_idempotent_calls_are_not_retried(
    mock_request, mock_sleep, client, call
):
    mock_request.return_value = _response(502, body={"message": "Bad gateway"})

    with pytest.raises(GitHubAPIError):
        call(client)

    assert mock_request.call_count == 1
    mock_sleep.assert_not_called()


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_client_errors_are_not_retried(mock_request, mock_sleep, client):
    mock_request.return_value = _response(
        422, body={"message": "Reference update failed"}
    )

    with pytest.raises(GitHubAPIError) as exc_info:
        client.create_tree([], "t")

    assert exc_info.value.status == 422
    assert not exc_info.value.transient
    assert mock_request.call_count == 1


@patch("github_sync_mcp.core.client.time.sleep")
@patch("github_sync_mcp.core.client.requests.Session.request")
def test_zero_retries(mock_request, mock_sleep, mock_config):
    mock_config.max_retries = 0
    mock_request.return_value = _response(503, body={"message": "x"})

    with pytest.raises(GitHubAPIError):
        GitHubClient(mock_config).get_blob("b")
    assert mock_request.call_count == 1


# ---------------------------------------------------------------------------
# Error classification
# ---------------------------------------------------------------------------


def test_error_message_from_json():
    error = _error_from_response(
        _response(404, body={"message": "Not Found"}, reason="Not Found")
    )
    assert error.status == 404
    assert error.message == "Not Found"
    assert str(error) == "GitHub API error 404: Not Found"


def test_error_message_without_json():
    response = _response(502, reason="Bad Gateway")
    response.text = "<html>bad gateway</html>"
    error = _error_from_response(response)
    assert error.message == "<html>bad gateway</html>"
    assert error.transient


def test_secondary_rate_limit_403():
    error = _error_from_response(
        _response(
            403,
            body={"message": "You have exceeded a secondary rate limit"},
        )
    )
    assert isinstance(error, RateLimitError)


def test_primary_rate_limit_403_header():
    error = _error_from_response(
        _response(
            403,
            body={"message": "Forbidden"},
            headers={"X-RateLimit-Remaining": "0"},
        )
    )
    assert isinstance(error, RateLimitError)


def test_plain_403_is_permission_error():
    error = _error_from_response(
        _response(403, body={"message": "Resource not accessible"})
    )
    assert not isinstance(error, RateLimitError)
    assert not error.transient


@pytest.mark.live
def test_live_validate_connection():
    """Check credentials against the real API (needs GITHUB_* env vars)."""
    from github_sync_mcp.config import load_config

    client = GitHubClient(load_config())
    assert "/" in client.validate_connection()
