"""Per-project cancellation tokens."""

from __future__ import annotations

import asyncio
import logging
import threading

from buildpilot.core.errors import BuildCancelledError

logger = logging.getLogger(__name__)


class CancellationToken:
    """Cooperative cancellation flag observed at every suspension point."""

    def __init__(self, project_id: str) -> None:
        self.project_id = project_id
        self._event = asyncio.Event()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    def cancel(self) -> None:
        self._event.set()

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise BuildCancelledError(self.project_id)

    async def wait(self) -> None:
        await self._event.wait()

    async def sleep(self, seconds: float) -> None:
        """Sleep for ``seconds`` unless cancelled first.

        Raises ``BuildCancelledError`` if the token is cancelled before or
        during the wait.
        """
        self.raise_if_cancelled()
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except TimeoutError:
            return
        self.raise_if_cancelled()


class CancellationRegistry:
    """At most one live cancellation token per project."""

    def __init__(self) -> None:
        self._tokens: dict[str, CancellationToken] = {}
        self._lock = threading.Lock()

    def start(self, project_id: str) -> CancellationToken:
        """Cancel any running build for the project and issue a fresh token."""
        token = CancellationToken(project_id)
        with self._lock:
            previous = self._tokens.pop(project_id, None)
            self._tokens[project_id] = token
        if previous is not None:
            logger.info("Superseding active build for project %s", project_id)
            previous.cancel()
        return token

    def stop(self, project_id: str) -> bool:
        """Cancel and forget the project's token. Returns False when idle."""
        with self._lock:
            token = self._tokens.pop(project_id, None)
        if token is None:
            return False
        token.cancel()
        return True

    def release(self, project_id: str, token: CancellationToken) -> None:
        """Forget ``token`` once its build has finished, unless superseded."""
        with self._lock:
            if self._tokens.get(project_id) is token:
                del self._tokens[project_id]

    def get(self, project_id: str) -> CancellationToken | None:
        with self._lock:
            return self._tokens.get(project_id)

    def is_active(self, project_id: str) -> bool:
        return self.get(project_id) is not None

    def active_count(self) -> int:
        with self._lock:
            return len(self._tokens)
