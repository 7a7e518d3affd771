"""MCP tool handlers for vault synchronization.

Defines the sync command surface:

- ``vault_sync`` -- run a sync (a first sync until one has succeeded).
- ``vault_sync_status`` -- manifest and scheduler summary.
- ``vault_conflicts`` -- conflicts waiting for an answer, as diffs.
- ``vault_resolve_conflicts`` -- answer (or abort) the waiting conflicts.
- ``vault_reset_metadata`` -- forget all sync state and rescan the vault.
- ``vault_config_dir_sync`` -- include or exclude the config directory.

Under the ``ask`` conflict policy a pass stops on conflicts until they
are answered.  ``vault_sync`` never blocks on that: it returns the
conflicts and the pass keeps waiting in the background until
``vault_resolve_conflicts`` answers them.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import mcp.types as types
from pydantic import ValidationError

from ...sync.models import ConflictFile, ConflictResolution, SyncReport
from ...sync.reporter import (
    format_conflicts,
    format_sync_report,
    report_to_json,
)
from .errors import build_error_response, format_timestamp
from .registry import VAULT_ADMIN, VAULT_READ, VAULT_SYNC, ToolSpec

if TYPE_CHECKING:
    from ..lifespan import ServerContext

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Tool definitions
# ---------------------------------------------------------------------------


SYNC_TOOLS: list[types.Tool] = [
    types.Tool(
        name="vault_sync",
        description=(
            "Synchronize the local vault with the GitHub repository in one "
            "commit. Runs a first sync automatically until one has succeeded. "
            "If files changed on both sides and the conflict policy is 'ask', "
            "returns the conflicts instead of a report; answer them with "
            "vault_resolve_conflicts."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "first": {
                    "type": "boolean",
                    "default": False,
                    "description": (
                        "Force a first sync (one side must be empty)"
                    ),
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="vault_sync_status",
        description=(
            "Show sync state: repository, last sync time, tracked and "
            "changed files, pending conflicts, schedule and last report."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="vault_conflicts",
        description=(
            "List files waiting for conflict resolution with a unified diff "
            "(remote -> local) for each."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=True,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="vault_resolve_conflicts",
        description=(
            "Answer pending conflicts with the final content of every "
            "conflicting file, then finish the sync. The content is uploaded "
            "and written to the vault once the commit succeeds. Set 'abort' "
            "to cancel the sync instead."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=False,
            openWorldHint=True,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "resolutions": {
                    "type": "array",
                    "description": "One entry per conflicting file",
                    "items": {
                        "type": "object",
                        "properties": {
                            "file_path": {"type": "string"},
                            "content": {"type": "string"},
                        },
                        "required": ["file_path", "content"],
                    },
                },
                "abort": {
                    "type": "boolean",
                    "default": False,
                    "description": "Cancel the waiting sync; nothing is committed",
                },
            },
            "required": [],
        },
    ),
    types.Tool(
        name="vault_reset_metadata",
        description=(
            "Forget all sync state and rebuild the manifest from the vault. "
            "The next vault_sync will be a first sync."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=True,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {},
            "required": [],
        },
    ),
    types.Tool(
        name="vault_config_dir_sync",
        description=(
            "Include or exclude the vault's config directory (e.g. .obsidian) "
            "from syncing. The manifest itself is always synced."
        ),
        annotations=types.ToolAnnotations(
            readOnlyHint=False,
            destructiveHint=False,
            idempotentHint=True,
            openWorldHint=False,
        ),
        inputSchema={
            "type": "object",
            "properties": {
                "enabled": {
                    "type": "boolean",
                    "description": "Whether to sync the config directory",
                },
            },
            "required": ["enabled"],
        },
    ),
]


# ---------------------------------------------------------------------------
# Shared helpers
# ---------------------------------------------------------------------------


def _report_result(report: SyncReport) -> types.CallToolResult:
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_sync_report(report))],
        structuredContent=report_to_json(report),
        isError=not report.success,
    )


def _conflicts_result(conflicts: list[ConflictFile]) -> types.CallToolResult:
    text = (
        format_conflicts(conflicts)
        + "\n\nThe sync is waiting. Call vault_resolve_conflicts with the "
        "final content of every file listed above, or with abort=true."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={
            "status": "conflicts_pending",
            "conflicts": [c.model_dump() for c in conflicts],
        },
    )


async def _await_pass(
    ctx: ServerContext, task: asyncio.Task
) -> SyncReport | list[ConflictFile]:
    """Wait for *task* to finish or to stop on conflicts, whichever is first."""
    while True:
        if ctx.channel.has_pending:
            return ctx.channel.pending()
        waiter = asyncio.ensure_future(ctx.channel.wait_for_request())
        try:
            done, _ = await asyncio.wait(
                {task, waiter}, return_when=asyncio.FIRST_COMPLETED
            )
        finally:
            waiter.cancel()
        if task in done:
            if ctx.sync_task is task:
                ctx.sync_task = None
            return task.result()
        # The event may still be set by a request that was just answered
        await asyncio.sleep(0)


async def _finish(ctx: ServerContext, task: asyncio.Task) -> types.CallToolResult:
    outcome = await _await_pass(ctx, task)
    if isinstance(outcome, SyncReport):
        return _report_result(outcome)
    return _conflicts_result(outcome)


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


async def _handle_vault_sync(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_sync`` tool."""
    if ctx.channel.has_pending:
        return _conflicts_result(ctx.channel.pending())

    task = ctx.sync_task
    if task is None or task.done():
        if args.get("first", False):
            task = asyncio.create_task(ctx.engine.first_sync())
        else:
            task = asyncio.create_task(ctx.engine.run())
        ctx.sync_task = task
    return await _finish(ctx, task)


async def _handle_vault_sync_status(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_sync_status`` tool."""
    config = ctx.config
    data = ctx.store.data
    entries = list(data.files.values())
    tracked = sum(1 for e in entries if not e.deleted)
    changed = sum(1 for e in entries if e.dirty and not e.deleted)
    deleted = sum(1 for e in entries if e.deleted)
    pending = len(ctx.channel.pending())
    if ctx.scheduler.running:
        schedule = f"every {ctx.scheduler.interval_minutes} minute(s)"
    else:
        schedule = "manual"

    lines = [
        f"Sync status for {config.owner}/{config.repo}@{config.branch}",
        f"  Vault:         {ctx.vault.root}",
        f"  Last sync:     {format_timestamp(data.last_sync)}",
        f"  Tracked files: {tracked}",
        f"  Changed:       {changed}",
        f"  Deleted:       {deleted}",
        f"  Conflicts:     {pending} ({config.conflict_handling})",
        f"  Config dir:    {config.config_dir} "
        f"({'synced' if config.sync_config_dir else 'not synced'})",
        f"  Schedule:      {schedule}",
        f"  Watching:      {'yes' if ctx.watcher and ctx.watcher.running else 'no'}",
        f"  Sync running:  {'yes' if ctx.engine.gate.running else 'no'}",
    ]
    last_report = ctx.engine.last_report
    if last_report is not None:
        lines.extend(["", "Last report:", format_sync_report(last_report)])

    structured = {
        "owner": config.owner,
        "repo": config.repo,
        "branch": config.branch,
        "vault": str(ctx.vault.root),
        "last_sync": data.last_sync,
        "needs_first_sync": ctx.engine.needs_first_sync,
        "tracked_files": tracked,
        "changed_files": changed,
        "deleted_files": deleted,
        "pending_conflicts": pending,
        "conflict_handling": config.conflict_handling,
        "sync_config_dir": config.sync_config_dir,
        "interval_minutes": ctx.scheduler.interval_minutes,
        "sync_running": ctx.engine.gate.running,
        "last_report": report_to_json(last_report) if last_report else None,
    }

    return types.CallToolResult(
        content=[types.TextContent(type="text", text="\n".join(lines))],
        structuredContent=structured,
    )


async def _handle_vault_conflicts(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_conflicts`` tool."""
    conflicts = ctx.channel.pending()
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=format_conflicts(conflicts))],
        structuredContent={"conflicts": [c.model_dump() for c in conflicts]},
    )


async def _handle_vault_resolve_conflicts(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_resolve_conflicts`` tool.

    Returns the finished sync report when the waiting pass was started by
    ``vault_sync``; a pass started by the scheduler reports through
    ``vault_sync_status``.
    """
    if not ctx.channel.has_pending:
        return build_error_response(
            "not_found",
            "No conflicts are waiting for resolution.",
            "Run vault_sync; it returns conflicts when there are any.",
        )

    if args.get("abort", False):
        ctx.channel.cancel("Conflict resolution was aborted")
    else:
        raw = args.get("resolutions")
        if not raw:
            raise ValueError(
                "resolutions is required unless abort is true"
            )
        try:
            resolutions = [ConflictResolution(**item) for item in raw]
        except (TypeError, ValidationError) as e:
            raise ValueError(f"Invalid resolutions: {e}") from e
        # Raises ConflictResolutionError (a ValueError); the pass keeps waiting
        ctx.channel.respond(resolutions)

    task = ctx.sync_task
    if task is None:
        text = (
            "Conflict answer delivered to the background sync. "
            "Use vault_sync_status to see its report."
        )
        return types.CallToolResult(
            content=[types.TextContent(type="text", text=text)],
            structuredContent={"status": "delivered"},
        )
    return await _finish(ctx, task)


async def _handle_vault_reset_metadata(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_reset_metadata`` tool."""
    if ctx.engine.gate.running:
        return build_error_response(
            "conflict",
            "A sync is running.",
            "Wait for it to finish (see vault_sync_status), then retry.",
        )
    await ctx.engine.reset_metadata()
    await ctx.engine.load_metadata()
    count = len(ctx.store.data.files)
    return types.CallToolResult(
        content=[
            types.TextContent(
                type="text",
                text=(
                    f"Manifest reset. Tracking {count} file(s). "
                    "The next vault_sync will be a first sync."
                ),
            )
        ],
        structuredContent={"tracked_files": count},
    )


async def _handle_vault_config_dir_sync(
    ctx: ServerContext, args: dict[str, Any]
) -> types.CallToolResult:
    """Handle the ``vault_config_dir_sync`` tool."""
    enabled = args.get("enabled")
    if not isinstance(enabled, bool):
        raise ValueError("enabled must be true or false")
    if ctx.engine.gate.running:
        return build_error_response(
            "conflict",
            "A sync is running.",
            "Wait for it to finish (see vault_sync_status), then retry.",
        )
    changed =await ctx.engine.set_sync_config_dir(enabled)
    verb = "added to" if enabled else "removed from"
    text = (
        f"Config directory {ctx.config.config_dir} is "
        f"{'now' if enabled else 'no longer'} synced; "
        f"{changed} file(s) {verb} the manifest."
    )
    return types.CallToolResult(
        content=[types.TextContent(type="text", text=text)],
        structuredContent={"enabled": enabled, "changed": changed},
    )


# ToolSpec list for registry-based dispatch
SYNC_SPECS: list[ToolSpec] = [
    ToolSpec(
        tool=SYNC_TOOLS[0],
        permissions=frozenset({VAULT_SYNC}),
        handler=_handle_vault_sync,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[1],
        permissions=frozenset({VAULT_READ}),
        handler=_handle_vault_sync_status,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[2],
        permissions=frozenset({VAULT_READ}),
        handler=_handle_vault_conflicts,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[3],
        permissions=frozenset({VAULT_SYNC}),
        handler=_handle_vault_resolve_conflicts,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[4],
        permissions=frozenset({VAULT_ADMIN}),
        handler=_handle_vault_reset_metadata,
    ),
    ToolSpec(
        tool=SYNC_TOOLS[5],
        permissions=frozenset({VAULT_ADMIN}),
        handler=_handle_vault_config_dir_sync,
    ),
]
