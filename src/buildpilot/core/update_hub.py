"""Fan out persisted project snapshots to live subscribers."""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from buildpilot.models.project import Project

logger = logging.getLogger(__name__)

# Maximum queued snapshots per subscriber before the oldest is dropped
MAX_PENDING_UPDATES = 100


class ProjectUpdateHub:
    """Per-project subscriber queues fed by the build state listener."""

    def __init__(self, max_pending: int = MAX_PENDING_UPDATES) -> None:
        self._subscribers: dict[str, list[asyncio.Queue[dict[str, Any]]]] = {}
        self._max_pending = max_pending

    def subscribe(self, project_id: str) -> asyncio.Queue[dict[str, Any]]:
        queue: asyncio.Queue[dict[str, Any]] = asyncio.Queue(maxsize=self._max_pending)
        self._subscribers.setdefault(project_id, []).append(queue)
        return queue

    def unsubscribe(self, project_id: str, queue: asyncio.Queue[dict[str, Any]]) -> None:
        queues = self._subscribers.get(project_id, [])
        if queue in queues:
            queues.remove(queue)
        if not queues:
            self._subscribers.pop(project_id, None)

    def subscriber_count(self, project_id: str) -> int:
        return len(self._subscribers.get(project_id, []))

    def publish(self, project: Project) -> None:
        """State listener: called synchronously after every persisted mutation."""
        queues = self._subscribers.get(project.id)
        if not queues:
            return
        snapshot = project.model_dump(mode="json")
        for queue in queues:
            if queue.full():
                queue.get_nowait()
                logger.debug("Dropped stale update for project %s", project.id)
            queue.put_nowait(snapshot)
