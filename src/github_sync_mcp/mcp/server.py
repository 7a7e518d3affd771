"""MCP Server for GitHub vault sync using stdio transport.

This module implements the Model Context Protocol server that lets AI
agents keep a local notes vault in sync with a GitHub repository.

Transport: stdio (for Claude Desktop/Code integration)
Protocol: JSON-RPC 2.0 over MCP
"""

import argparse
import asyncio
import logging
import sys

import mcp.server.stdio
import mcp.types as types
from mcp.server import NotificationOptions, Server
from mcp.server.models import InitializationOptions

from .. import __version__
from ..config_loader import ensure_config
from ..core.async_utils import run_sync
from ..logger import DEFAULT_LOG_FILE, setup_logging
from ..version import check_version_consistency
from .lifespan import ServerContext, server_lifespan
from .tools import (
    ALL_SPECS,
    ToolRegistry,
    build_error_response,
    load_permissions_file,
)
from .tools.registry import ToolSpec

logger = logging.getLogger(__name__)

# Initialize server instance
server = Server("github-sync-mcp")

# Global context instance (initialized in main)
_context: ServerContext | None = None

# Global registry instance (initialized in main)
_registry: ToolRegistry | None = None


# ---------------------------------------------------------------------------
# Ping tool (always available, no permission required)
# ---------------------------------------------------------------------------


async def _handle_ping(
    ctx: ServerContext, args: dict
) -> types.CallToolResult:
    """Handle ping tool: test GitHub connectivity."""
    try:
        full_name = await run_sync(ctx.client.validate_connection)
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=(
                        f"GitHub sync server connected to {full_name} "
                        f"(branch {ctx.config.branch}). Version: {__version__}"
                    ),
                )
            ]
        )
    except Exception as e:
        return types.CallToolResult(
            content=[
                types.TextContent(
                    type="text",
                    text=f"GitHub connection failed: {e}. Check GITHUB_TOKEN, GITHUB_OWNER, GITHUB_REPO.",
                )
            ],
            isError=True,
        )


PING_SPEC = ToolSpec(
    tool=types.Tool(
        name="ping",
        description="Test GitHub connectivity and return the synced repository",
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    permissions=frozenset(),
    handler=_handle_ping,
)


# ---------------------------------------------------------------------------
# Global accessors
# ---------------------------------------------------------------------------


def get_context() -> ServerContext:
    """Get the global ServerContext instance.

    Raises:
        RuntimeError: If the context is not initialized
    """
    if _context is None:
        raise RuntimeError(
            "ServerContext not initialized. Server lifespan not started."
        )
    return _context


def set_context(ctx: ServerContext | None) -> None:
    """Set the global ServerContext instance, or None to clear."""
    global _context
    _context = ctx


def get_registry() -> ToolRegistry:
    """Get the global ToolRegistry instance.

    Raises:
        RuntimeError: If registry is not initialized
    """
    if _registry is None:
        raise RuntimeError("ToolRegistry not initialized.")
    return _registry


def set_registry(registry: ToolRegistry | None) -> None:
    """Set the global ToolRegistry instance, or None to clear."""
    global _registry
    _registry = registry


# ---------------------------------------------------------------------------
# MCP protocol handlers
# ---------------------------------------------------------------------------


@server.list_tools()
async def handle_list_tools() -> list[types.Tool]:
    """List available sync tools.

    Returns all registered (and permitted) tools from the ToolRegistry.
    """
    return get_registry().list_tools()


@server.call_tool()
async def handle_call_tool(
    name: str, arguments: dict | None
) -> types.CallToolResult:
    """Handle tool execution via ToolRegistry dispatch.

    Args:
        name: The name of the tool to execute.
        arguments: Tool arguments (optional).

    Returns:
        CallToolResult with tool output content and optional isError flag.
    """
    ctx = get_context()
    try:
        return await get_registry().call_tool(name, arguments, ctx)
    except ValueError as e:
        # Unknown or filtered-out tool name
        return build_error_response(
            "unknown_tool",
            str(e),
            "Use list_tools to see available tools.",
        )


# ---------------------------------------------------------------------------
# Server lifecycle
# ---------------------------------------------------------------------------


def build_registry(permissions_file: str | None = None) -> ToolRegistry:
    """Build the tool registry, filtered by *permissions_file* if given."""
    allowed_permissions = None
    if permissions_file:
        allowed_permissions = load_permissions_file(permissions_file)
        logger.info(
            "Loaded %d permissions from %s",
            len(allowed_permissions),
            permissions_file,
        )

    all_specs = [PING_SPEC] + ALL_SPECS
    registry = ToolRegistry(all_specs, allowed_permissions)
    logger.info(
        "Registered %d tools (of %d total)",
        registry.tool_count(),
        len(all_specs),
    )

    if permissions_file:
        print(
            f"Permissions file: {permissions_file} "
            f"({registry.tool_count()} of {len(all_specs)} tools enabled)",
            file=sys.stderr,
        )
    return registry


async def main(config_overrides: dict | None = None):
    """Run the MCP server with stdio transport.

    This function sets up logging for MCP mode (file only, never stdout),
    starts the sync components via the lifespan manager, and serves tools
    over stdio for JSON-RPC communication.

    Args:
        config_overrides: Optional dict with config values to override
            (token, owner, repo, branch, vault, debug, log_file, permissions_file)
    """
    overrides = config_overrides or {}

    # Must run BEFORE stdio_server so nothing reaches stdout
    setup_logging(
        mode="mcp",
        debug=overrides.get("debug", False),
        log_file=overrides.get("log_file"),
    )

    # Version check (non-blocking warning for stale installs)
    is_consistent, message = check_version_consistency()
    if not is_consistent:
        logger.warning(message)
        sys.stderr.write(f"⚠️  Warning: {message}\n")
    else:
        logger.info(message)

    set_registry(build_registry(overrides.get("permissions_file")))

    try:
        async with server_lifespan(
            config_overrides=config_overrides
        ) as ctx:
            set_context(ctx)
            async with mcp.server.stdio.stdio_server() as (
                read_stream,
                write_stream,
            ):
                init_options = InitializationOptions(
                    server_name="github-sync-mcp",
                    server_version=__version__,
                    capabilities=server.get_capabilities(
                        notification_options=NotificationOptions(),
                        experimental_capabilities={},
                    ),
                )
                await server.run(
                    read_stream, write_stream, init_options
                )
    finally:
        set_context(None)
        set_registry(None)


def run() -> None:
    """Entry point that handles errors gracefully and parses CLI arguments."""
    parser = argparse.ArgumentParser(
        description="GitHub Sync MCP Server - keep a local vault in sync with a GitHub repository",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Run with default config (from .env or config.yml)
  github-sync-mcp

  # Sync a vault directory with a repository
  github-sync-mcp --owner octocat --repo notes --vault ~/notes

  # Use a different branch
  github-sync-mcp --owner octocat --repo notes --branch vault

  # Custom log file location
  github-sync-mcp --log-file /var/log/github-sync-mcp.log

  # Read-only deployment (status and conflicts only)
  github-sync-mcp --permissions-file /etc/github-sync/read-only.permissions

  # Write a commented starter config and exit
  github-sync-mcp --init-config

Note: This server uses stdio transport for JSON-RPC communication with MCP clients.
All user-facing messages are written to stderr. Do not pipe stdin/stdout manually.
        """,
    )

    parser.add_argument(
        "--owner",
        help="Override repository owner (takes precedence over GITHUB_OWNER env var and config files)",
    )
    parser.add_argument(
        "--repo",
        help="Override repository name (takes precedence over GITHUB_REPO env var and config files)",
    )
    parser.add_argument(
        "--branch",
        help="Override branch to sync (default: main)",
    )
    parser.add_argument(
        "--vault",
        help="Vault directory to sync (default: current directory)",
    )
    parser.add_argument(
        "--token",
        help="Override GitHub token"
        " (visible in process list; prefer GITHUB_TOKEN env var for security)",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging",
    )
    parser.add_argument(
        "--log-file",
        default=DEFAULT_LOG_FILE,
        help=f"Log file path (default: {DEFAULT_LOG_FILE})",
    )
    parser.add_argument(
        "--permissions-file",
        help="Path to permissions file restricting available tools. "
        "Format: one permission per line (VAULT_READ, VAULT_SYNC, VAULT_ADMIN), # for comments. "
        "If not specified, all tools are available.",
    )
    parser.add_argument(
        "--init-config",
        action="store_true",
        help="Write a commented starter config file if none exists, then exit",
    )
    parser.add_argument(
        "--version",
        action="version",
        version=f"github-sync-mcp version {__version__}",
    )

    args = parser.parse_args()

    if args.init_config:
        path = ensure_config()
        print(f"Config file: {path}", file=sys.stderr)
        return

    # Build config overrides dict from CLI args
    config_overrides = {}
    for key in ("owner", "repo", "branch", "vault", "token"):
        value = getattr(args, key)
        if value:
            config_overrides[key] = value
    if args.debug:
        config_overrides["debug"] = True
    if args.log_file:
        config_overrides["log_file"] = args.log_file
    if args.permissions_file:
        config_overrides["permissions_file"] = args.permissions_file

    # Log config overrides to stderr (before stdio transport starts)
    if config_overrides:
        override_keys = [
            k for k in config_overrides.keys() if k != "token"
        ]
        print(
            f"Config overrides from CLI: {', '.join(override_keys)}",
            file=sys.stderr,
        )

    try:
        asyncio.run(
            main(
                config_overrides=config_overrides
                if config_overrides
                else None
            )
        )
    except RuntimeError:
        # Error already printed to stderr by lifespan manager
        sys.exit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.", file=sys.stderr)
        sys.exit(0)


if __name__ == "__main__":
    run()
