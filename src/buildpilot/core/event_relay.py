"""Best-effort relay of build lifecycle events and audit log entries."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine
from datetime import UTC
from typing import Any, TypeAlias

import httpx

from buildpilot.config import VERSION
from buildpilot.db.store import SQLiteStore
from buildpilot.models.events import Actor, BuildEvent, EventType, LogLevel, SystemLog, WebhookDelivery

logger = logging.getLogger(__name__)

Sleeper: TypeAlias = Callable[[float], Awaitable[None]]

_PY_LEVELS = {
    LogLevel.INFO: logging.INFO,
    LogLevel.WARNING: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
    LogLevel.CRITICAL: logging.CRITICAL,
}

RESPONSE_BODY_LIMIT = 1000


class EventRelay:
    """Fire-and-forget sink for lifecycle events and audit logs.

    Every write runs as a background task; failures are logged and dropped so
    they can never fail a build.
    """

    def __init__(
        self,
        store: SQLiteStore,
        *,
        webhook_url: str = "",
        environment: str = "production",
        max_attempts: int = 3,
        timeout_seconds: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        sleeper: Sleeper | None = None,
    ) -> None:
        self._store = store
        self._webhook_url = webhook_url
        self._environment = environment
        self._max_attempts = max(1, max_attempts)
        self._timeout = timeout_seconds
        self._transport = transport
        self._sleep = sleeper or asyncio.sleep
        self._pending: set[asyncio.Task[None]] = set()

    def emit(
        self,
        event_type: EventType,
        data: dict[str, Any] | None = None,
        *,
        project_id: str,
        actor: Actor | None = None,
        context: dict[str, Any] | None = None,
    ) -> BuildEvent:
        event = BuildEvent(
            project_id=project_id,
            event_type=event_type,
            payload=dict(data or {}),
            actor=actor or Actor(),
        )
        self._spawn(self._deliver(event, context or {}))
        return event

    def log(
        self,
        level: LogLevel,
        source: str,
        message: str,
        project_id: str | None = None,
        meta: dict[str, Any] | None = None,
    ) -> SystemLog:
        entry = SystemLog(
            level=level,
            source=source,
            message=message,
            project_id=project_id,
            meta=dict(meta or {}),
        )
        logger.log(_PY_LEVELS[level], "[%s] %s (project=%s)", source, message, project_id)
        self._spawn(self._write_log(entry))
        return entry

    async def drain(self) -> None:
        """Wait for every pending background write to finish."""
        while self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def envelope(self, event: BuildEvent, context: dict[str, Any]) -> dict[str, Any]:
        return {
            "event": {
                "id": event.id,
                "type": event.event_type.value,
                "timestamp": event.timestamp.astimezone(UTC).isoformat(),
            },
            "actor": event.actor.model_dump(),
            "context": {"project_id": event.project_id, **context},
            "data": event.payload,
            "meta": {
                "environment": self._environment,
                "source": "buildpilot",
                "version": VERSION,
            },
        }

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _deliver(self, event: BuildEvent, context: dict[str, Any]) -> None:
        try:
            await self._store.append_event(event)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record event %s", event.event_type.value, exc_info=True)

        if not self._webhook_url:
            return

        payload = self.envelope(event, context)
        for attempt in range(1, self._max_attempts + 1):
            delivered = await self._post(event, payload, attempt)
            if delivered:
                logger.debug("Webhook sent: %s", event.event_type.value)
                return
            if attempt < self._max_attempts:
                await self._sleep(float(2**attempt))
        logger.error(
            "Dropped event %s after %d attempts", event.event_type.value, self._max_attempts
        )

    async def _post(self, event: BuildEvent, payload: dict[str, Any], attempt: int) -> bool:
        status_code = 0
        body = ""
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(self._webhook_url, json=payload)
            status_code = response.status_code
            body = response.text
        except httpx.HTTPError as exc:
            body = str(exc)
            logger.warning(
                "Webhook network error for %s (attempt %d): %s",
                event.event_type.value,
                attempt,
                exc,
            )

        try:
            await self._store.append_webhook_delivery(
                WebhookDelivery(
                    event_id=event.id,
                    event_type=event.event_type,
                    attempt=attempt,
                    status_code=status_code,
                    response_body=body[:RESPONSE_BODY_LIMIT],
                )
            )
        except Exception:  # noqa: BLE001
            logger.warning("Failed to record webhook delivery", exc_info=True)

        if 200 <= status_code < 300:
            return True
        if status_code:
            logger.warning(
                "Webhook delivery failed (%d) for %s, attempt %d",
                status_code,
                event.event_type.value,
                attempt,
            )
        return False

    async def _write_log(self, entry: SystemLog) -> None:
        try:
            await self._store.append_log(entry)
        except Exception:  # noqa: BLE001
            logger.warning("Failed to write audit log entry", exc_info=True)
