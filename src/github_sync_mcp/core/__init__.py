"""GitHub client and async helpers shared by the sync engine and the MCP server."""

from .async_utils import run_sync
from .client import GitHubClient

__all__ = ["GitHubClient", "run_sync"]
