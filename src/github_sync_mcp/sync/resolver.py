"""Conflict resolution policies for the sync engine.

A conflict is a path edited on both sides since the last sync.  The
engine never merges content itself; it hands the conflicting pairs to a
resolver, which turns them into sync actions:

- ``AskResolver``: asks an external party (the MCP client, through the
  ``ConflictChannel``) for the final content of every file and uploads
  it.
- ``OverwriteLocalResolver``: the remote version wins (download).
- ``OverwriteRemoteResolver``: the local version wins (upload).

The ``create_resolver()`` factory maps the ``conflict_handling`` setting
to a resolver instance.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Protocol

from .models import (
    ConflictFile,
    ConflictResolution,
    SyncAction,
    SyncActionType,
)

logger = logging.getLogger(__name__)

ResolveCallback = Callable[
    [list[ConflictFile]], Awaitable[list[ConflictResolution]]
]


class ConflictResolutionError(ValueError):
    """Resolutions do not match the conflicts they answer."""


@dataclass(frozen=True)
class ConflictOutcome:
    """Actions replacing the conflicting paths, plus any chosen content.

    Attributes:
        actions: One action per conflicting path.
        resolutions: Content to upload and, after the commit, write
            locally.  Empty unless the content came from outside.
    """

    actions: list[SyncAction] = field(default_factory=list)
    resolutions: list[ConflictResolution] = field(default_factory=list)


def validate_resolutions(
    conflicts: list[ConflictFile], resolutions: list[ConflictResolution]
) -> None:
    """Require exactly one resolution per conflicting path.

    Raises:
        ConflictResolutionError: On a missing, duplicate or unknown path.
    """
    expected = {c.file_path for c in conflicts}
    seen: set[str] = set()
    for resolution in resolutions:
        if resolution.file_path not in expected:
            raise ConflictResolutionError(
                f"'{resolution.file_path}' is not a conflicting file"
            )
        if resolution.file_path in seen:
            raise ConflictResolutionError(
                f"'{resolution.file_path}' was resolved more than once"
            )
        seen.add(resolution.file_path)
    missing = sorted(expected - seen)
    if missing:
        raise ConflictResolutionError(
            f"Missing resolution for: {', '.join(missing)}"
        )


class ConflictResolver(Protocol):
    """Protocol that all conflict resolvers must satisfy."""

    async def resolve(self, conflicts: list[ConflictFile]) -> ConflictOutcome:
        """Decide the outcome for every conflicting path."""
        ...  # pragma: no cover


class AskResolver:
    """Ask an external party for the final content of each file.

    The sync pass is suspended until *callback* returns.
    """

    def __init__(self, callback: ResolveCallback) -> None:
        self.callback = callback

    async def resolve(self, conflicts: list[ConflictFile]) -> ConflictOutcome:
        logger.info(
            "Waiting for resolution of %d conflicting file(s)", len(conflicts)
        )
        resolutions = list(await self.callback(list(conflicts)))
        validate_resolutions(conflicts, resolutions)
        return ConflictOutcome(
            actions=[
                SyncAction(type=SyncActionType.UPLOAD, file_path=r.file_path)
                for r in resolutions
            ],
            resolutions=resolutions,
        )


class OverwriteLocalResolver:
    """Always keep the remote version."""

    async def resolve(self, conflicts: list[ConflictFile]) -> ConflictOutcome:
        return ConflictOutcome(
            actions=[
                SyncAction(type=SyncActionType.DOWNLOAD, file_path=c.file_path)
                for c in conflicts
            ]
        )


class OverwriteRemoteResolver:
    """Always keep the local version."""

    async def resolve(self, conflicts: list[ConflictFile]) -> ConflictOutcome:
        return ConflictOutcome(
            actions=[
                SyncAction(type=SyncActionType.UPLOAD, file_path=c.file_path)
                for c in conflicts
            ]
        )


def create_resolver(
    policy: str, callback: ResolveCallback | None = None
) -> ConflictResolver:
    """Create the resolver for a ``conflict_handling`` policy.

    Args:
        policy: ``"ask"``, ``"overwriteLocal"`` or ``"overwriteRemote"``.
        callback: Required for ``"ask"``.

    Raises:
        ValueError: Unknown policy, or ``"ask"`` without a callback.
    """
    if policy == "ask":
        if callback is None:
            raise ValueError("The 'ask' policy needs a resolution callback")
        return AskResolver(callback)
    if policy == "overwriteLocal":
        return OverwriteLocalResolver()
    if policy == "overwriteRemote":
        return OverwriteRemoteResolver()
    raise ValueError(
        f"Unknown conflict policy: '{policy}'. Valid policies: "
        "['ask', 'overwriteLocal', 'overwriteRemote']"
    )
