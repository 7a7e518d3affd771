"""Tests for mcp/tools/errors.py: error response builders and utilities.

Covers:
- build_error_response() structure and format
- translate_github_error() status-specific error mapping
- format_timestamp() for various input types
"""

from datetime import datetime

import mcp.types as types
import pytest

from github_sync_mcp.core.client import (
    EmptyRepositoryError,
    GitHubAPIError,
    RateLimitError,
)
from github_sync_mcp.mcp.tools.errors import (
    build_error_response,
    format_timestamp,
    translate_github_error,
)


def _get_error_text(result: types.CallToolResult) -> str:
    """Extract text from first content item with type narrowing for Pyright."""
    content = result.content[0]
    assert isinstance(content, types.TextContent)
    return content.text


# ---------------------------------------------------------------------------
# build_error_response tests
# ---------------------------------------------------------------------------


class TestBuildErrorResponse:
    """Tests for build_error_response()."""

    def test_returns_error_result(self):
        result = build_error_response("not_found", "Not found", "Try again")
        assert isinstance(result, types.CallToolResult)
        assert result.isError is True
        assert len(result.content) == 1

    def test_error_format(self):
        """Text format is 'Error ({type}): {message}\\n\\nAction: {action}'."""
        result = build_error_response(
            "conflict", "Branch moved", "Run vault_sync again."
        )
        assert _get_error_text(result) == (
            "Error (conflict): Branch moved\n\nAction: Run vault_sync again."
        )


# ---------------------------------------------------------------------------
# translate_github_error tests
# ---------------------------------------------------------------------------


class TestTranslateGitHubError:
    """Tests for translate_github_error()."""

    @pytest.mark.parametrize(
        ("error", "error_type", "hint"),
        [
            (GitHubAPIError(401, "Bad credentials"), "permission_denied", "GITHUB_TOKEN"),
            (GitHubAPIError(403, "Forbidden"), "permission_denied", "access"),
            (GitHubAPIError(404, "Not Found"), "not_found", "GITHUB_BRANCH"),
            (GitHubAPIError(409, "Conflict"), "conflict", "vault_sync"),
            (GitHubAPIError(422, "Update is not a fast forward"), "validation_error", "vault_sync_status"),
            (GitHubAPIError(502, "Bad Gateway", transient=True), "server_error", "Retry later"),
            (GitHubAPIError(0, "Connection reset", transient=True), "server_error", "Retry later"),
        ],
    )
    def test_status_mapping(self, error, error_type, hint):
        text = _get_error_text(translate_github_error(error))
        assert text.startswith(f"Error ({error_type}):")
        assert hint in text

    def test_rate_limit_wins_over_status(self):
        result = translate_github_error(
            RateLimitError(403, "API rate limit exceeded", retry_after=30)
        )
        text = _get_error_text(result)
        assert text.startswith("Error (rate_limited):")
        assert "rate limit window" in text

    def test_subclass_maps_by_status(self):
        result = translate_github_error(EmptyRepositoryError(409, "Git Repository is empty."))
        assert _get_error_text(result).startswith("Error (conflict):")

    def test_message_includes_status(self):
        result = translate_github_error(GitHubAPIError(404, "Not Found"))
        assert "GitHub API error 404: Not Found" in _get_error_text(result)
        assert result.isError is True


# ---------------------------------------------------------------------------
# format_timestamp tests
# ---------------------------------------------------------------------------


class TestFormatTimestamp:
    """Tests for format_timestamp()."""

    def test_none_is_never(self):
        assert format_timestamp(None) == "never"

    def test_epoch_millis(self):
        assert format_timestamp(1_700_000_000_000) == "2023-11-14 22:13:20 UTC"

    def test_float_millis(self):
        assert format_timestamp(0.0) == "1970-01-01 00:00:00 UTC"

    def test_datetime(self):
        assert format_timestamp(datetime(2024, 1, 2, 3, 4, 5)) == "2024-01-02 03:04:05"

    def test_other_values_stringified(self):
        assert format_timestamp("yesterday") == "yesterday"
