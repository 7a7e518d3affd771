"""Sync report formatting functions.

Provides human-readable and machine-readable output for sync operations:

- ``format_sync_report`` -- full post-sync summary.
- ``format_conflicts`` -- unified diffs for conflict review.
- ``report_to_json`` -- structured dict for MCP tool output.
"""

from __future__ import annotations

import difflib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .models import ConflictFile, SyncReport, SyncResult

_KIND_LABELS = {
    "sync": "Sync",
    "first_sync": "First sync",
}

# ------------------------------------------------------------------
# Human-readable report
# ------------------------------------------------------------------


def _section(title: str, results: list[SyncResult]) -> list[str]:
    ok = [r for r in results if r.success]
    if not ok:
        return []
    return [title, *(f"  {r.file_path}" for r in ok), ""]


def format_sync_report(report: SyncReport) -> str:
    """Format a complete sync report as human-readable text.

    Sections are only included when they contain at least one result.

    Args:
        report: The completed sync report.

    Returns:
        Multi-line formatted string.
    """
    label = _KIND_LABELS.get(report.kind.value, report.kind.value)
    lines: list[str] = []

    if report.skipped:
        return f"{label} skipped: another sync is already running."

    lines.append(f"{label} report")
    lines.append(f"Started: {report.started_at}")
    if report.completed_at:
        lines.append(f"Completed: {report.completed_at}")
    lines.append("")

    if not report.success:
        lines.append(f"FAILED: {report.error}")
        lines.append("No changes were committed.")
        return "\n".join(lines).rstrip()

    if not report.results and not report.commit_sha:
        lines.append("Nothing to sync.")
        return "\n".join(lines).rstrip()

    succeeded = len(report.results) - len(report.errors)
    lines.append(
        f"Synced {succeeded} files: "
        f"{len(report.uploaded)} uploaded, "
        f"{len(report.downloaded)} downloaded, "
        f"{len(report.deleted_local)} deleted locally, "
        f"{len(report.deleted_remote)} deleted remotely, "
        f"{len(report.conflicts)} conflicts, {len(report.errors)} errors"
    )
    if report.commit_sha:
        lines.append(f"Commit: {report.commit_sha}")
    lines.append("")

    lines.extend(_section("Uploaded:", report.uploaded))
    lines.extend(_section("Downloaded:", report.downloaded))
    lines.extend(_section("Deleted locally:", report.deleted_local))
    lines.extend(_section("Deleted remotely:", report.deleted_remote))

    if report.conflicts:
        lines.append("Conflicts:")
        for path in report.conflicts:
            lines.append(f"  {path}")
        lines.append("")

    if report.errors:
        lines.append("Errors:")
        for r in report.errors:
            lines.append(f"  {r.action.value} {r.file_path}: {r.error}")
        lines.append("")

    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# Conflict diff
# ------------------------------------------------------------------


def format_conflict_diff(conflict: ConflictFile) -> str:
    """Unified diff from the remote version to the local one."""
    diff = difflib.unified_diff(
        conflict.remote_content.splitlines(keepends=True),
        conflict.local_content.splitlines(keepends=True),
        fromfile=f"remote: {conflict.file_path}",
        tofile=f"local: {conflict.file_path}",
    )
    diff_text = "".join(diff)
    return diff_text.rstrip() if diff_text else "(no textual differences)"


def format_conflicts(conflicts: list[ConflictFile]) -> str:
    """Format pending conflicts for review, one diff per file.

    Args:
        conflicts: Conflicts awaiting resolution.

    Returns:
        Multi-line formatted string.
    """
    if not conflicts:
        return "No pending conflicts."
    lines = [f"{len(conflicts)} conflicting file(s):", ""]
    for conflict in conflicts:
        lines.append(f"Conflict: {conflict.file_path}")
        lines.append("")
        lines.append(format_conflict_diff(conflict))
        lines.append("")
    return "\n".join(lines).rstrip()


# ------------------------------------------------------------------
# JSON output
# ------------------------------------------------------------------


def report_to_json(report: SyncReport) -> dict:
    """Convert a sync report to a structured dict for JSON serialisation.

    Suitable for MCP ``structuredContent`` output.

    Args:
        report: The sync report.

    Returns:
        Dict with status, counts, and per-result details.
    """
    results_list = []
    for r in report.results:
        entry: dict = {
            "file_path": r.file_path,
            "action": r.action.value,
            "success": r.success,
        }
        if r.error:
            entry["error"] = r.error
        results_list.append(entry)

    return {
        "kind": report.kind.value,
        "success": report.success,
        "skipped": report.skipped,
        "error": report.error,
        "commit_sha": report.commit_sha,
        "started_at": report.started_at,
        "completed_at": report.completed_at,
        "counts": {
            "total": len(report.results),
            "uploaded": len(report.uploaded),
            "downloaded": len(report.downloaded),
            "deleted_local": len(report.deleted_local),
            "deleted_remote": len(report.deleted_remote),
            "conflicts": len(report.conflicts),
            "errors": len(report.errors),
        },
        "conflicts": list(report.conflicts),
        "results": results_list,
    }
