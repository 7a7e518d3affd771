"""Error response builders and shared utilities for MCP tool handlers.

This module provides structured error responses with corrective actions
to help AI agents recover from errors without human intervention, plus
shared formatting utilities used across tool modules.
"""

from datetime import datetime, timezone
from typing import Any

import mcp.types as types

from ...core.client import GitHubAPIError, RateLimitError


def build_error_response(
    error_type: str, message: str, corrective_action: str
) -> types.CallToolResult:
    """Build a structured error response with corrective action.

    Args:
        error_type: Error category (not_found, permission_denied, conflict,
            rate_limited, validation_error, server_error)
        message: Human-readable error description
        corrective_action: Specific action the agent can take to resolve the error

    Returns:
        CallToolResult with isError=True

    Examples:
        >>> build_error_response("not_found", "Branch not found", "Check GITHUB_BRANCH.")
        CallToolResult(content=[TextContent(...)], isError=True)
    """
    error_text = f"Error ({error_type}): {message}\n\nAction: {corrective_action}"

    return types.CallToolResult(
        content=[types.TextContent(type="text", text=error_text)],
        isError=True,
    )


# ---------------------------------------------------------------------------
# Shared formatting utilities
# ---------------------------------------------------------------------------


def format_timestamp(timestamp: Any) -> str:
    """Format timestamp for display.

    Handles datetime objects and epoch milliseconds (the unit used by the
    manifest).  ``None`` means "never".

    Args:
        timestamp: datetime, int/float epoch milliseconds, or other value

    Returns:
        Formatted date string (YYYY-MM-DD HH:MM:SS UTC)
    """
    match timestamp:
        case None:
            return "never"
        case datetime() as dt:
            return dt.strftime("%Y-%m-%d %H:%M:%S")
        case int() | float() as ms:
            dt = datetime.fromtimestamp(ms / 1000, tz=timezone.utc)
            return dt.strftime("%Y-%m-%d %H:%M:%S UTC")
        case _:
            return str(timestamp)


# ---------------------------------------------------------------------------
# GitHub error translation
# ---------------------------------------------------------------------------

_STATUS_ACTIONS: dict[str, str] = {
    "auth": "Check GITHUB_TOKEN: it must be valid and not expired.",
    "permission": "Grant the token read/write access to repository contents.",
    "not_found": "Check GITHUB_OWNER, GITHUB_REPO and GITHUB_BRANCH.",
    "conflict": "The branch moved during the sync. Run vault_sync again.",
    "invalid": "The request was rejected by GitHub. Run vault_sync_status and retry.",
    "rate_limited": "Wait for the rate limit window to reset, then retry.",
    "server": "GitHub is unavailable. Retry later.",
}


def translate_github_error(error: GitHubAPIError) -> types.CallToolResult:
    """Translate a GitHub API error to a structured error response.

    Args:
        error: The error raised by ``GitHubClient``.

    Returns:
        CallToolResult with isError=True and corrective action
    """
    message = f"GitHub API error {error.status}: {error.message}"

    match error:
        case RateLimitError():
            return build_error_response(
                "rate_limited", message, _STATUS_ACTIONS["rate_limited"]
            )
        case GitHubAPIError(status=401):
            return build_error_response(
                "permission_denied", message, _STATUS_ACTIONS["auth"]
            )
        case GitHubAPIError(status=403):
            return build_error_response(
                "permission_denied", message, _STATUS_ACTIONS["permission"]
            )
        case GitHubAPIError(status=404):
            return build_error_response(
                "not_found", message, _STATUS_ACTIONS["not_found"]
            )
        case GitHubAPIError(status=409):
            return build_error_response(
                "conflict", message, _STATUS_ACTIONS["conflict"]
            )
        case GitHubAPIError(status=422):
            return build_error_response(
                "validation_error", message, _STATUS_ACTIONS["invalid"]
            )
        case _:
            return build_error_response(
                "server_error", message, _STATUS_ACTIONS["server"]
            )
