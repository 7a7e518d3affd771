"""MCP tool handlers for vault sync operations.

This package contains MCP tool implementations that wrap the sync engine
with async handlers, report formatting, and structured error responses.
"""

from .errors import build_error_response
from .registry import ToolRegistry, ToolSpec, load_permissions_file
from .sync import SYNC_SPECS, SYNC_TOOLS

ALL_SPECS: list[ToolSpec] = list(SYNC_SPECS)

__all__ = [
    "build_error_response",
    # Registry
    "ToolSpec",
    "ToolRegistry",
    "load_permissions_file",
    # Spec lists
    "ALL_SPECS",
    "SYNC_SPECS",
    "SYNC_TOOLS",
]
