"""Request/response exchange between a sync pass and whoever resolves conflicts.

The sync pass calls ``request()`` and is suspended on a future.  A tool
handler (running as another task on the same loop) reads ``pending()``,
and answers with ``respond()``, which wakes the pass up.  At most one
request is outstanding at a time, matching the single sync guard.
"""

from __future__ import annotations

import asyncio
import logging

from .models import ConflictFile, ConflictResolution
from .resolver import ConflictResolutionError, validate_resolutions

logger = logging.getLogger(__name__)


class ConflictChannel:
    def __init__(self) -> None:
        self._future: asyncio.Future[list[ConflictResolution]] | None = None
        self._conflicts: list[ConflictFile] = []
        self._published = asyncio.Event()

    @property
    def has_pending(self) -> bool:
        return self._future is not None and not self._future.done()

    def pending(self) -> list[ConflictFile]:
        """Conflicts awaiting an answer (empty if none)."""
        return list(self._conflicts) if self.has_pending else []

    async def request(
        self, conflicts: list[ConflictFile]
    ) -> list[ConflictResolution]:
        """Publish *conflicts* and wait for their resolutions.

        Raises:
            RuntimeError: If another request is still pending.
            ConflictResolutionError: If the request is cancelled.
        """
        if self.has_pending:
            raise RuntimeError("A conflict request is already pending")
        self._future = asyncio.get_running_loop().create_future()
        self._conflicts = list(conflicts)
        self._published.set()
        try:
            return await self._future
        finally:
            self._published.clear()
            self._future = None
            self._conflicts = []

    async def wait_for_request(self) -> list[ConflictFile]:
        """Block until a request is published, then return its conflicts."""
        await self._published.wait()
        return self.pending()

    def respond(self, resolutions: list[ConflictResolution]) -> None:
        """Answer the pending request.

        Invalid answers are rejected and the request stays pending, so
        the caller can try again.

        Raises:
            RuntimeError: If nothing is pending.
            ConflictResolutionError: If *resolutions* does not cover every
                conflicting path exactly once.
        """
        if not self.has_pending:
            raise RuntimeError("No conflicts are waiting for resolution")
        validate_resolutions(self._conflicts, resolutions)
        assert self._future is not None
        self._future.set_result(list(resolutions))
        logger.info("Received %d conflict resolution(s)", len(resolutions))

    def cancel(self, reason: str = "Conflict resolution was cancelled") -> bool:
        """Fail the pending request.  Returns ``False`` if none was pending."""
        if not self.has_pending:
            return False
        assert self._future is not None
        self._future.set_exception(ConflictResolutionError(reason))
        logger.info("Cancelled pending conflict request: %s", reason)
        return True
