"""Async SQLite persistence for buildpilot models."""

from __future__ import annotations

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import datetime
from pathlib import Path
from typing import Protocol

import aiosqlite

from buildpilot.db.migrations import apply_migrations
from buildpilot.models.events import (
    Actor,
    BuildEvent,
    EventType,
    LogLevel,
    SystemLog,
    WebhookDelivery,
)
from buildpilot.models.project import BuildState, GeneratedCode, Message, Project, ProjectStatus


class ProjectStore(Protocol):
    """Load/save semantics the orchestrator needs from persistence."""

    async def get_project(self, project_id: str) -> Project | None: ...

    async def save_project(self, project: Project) -> None: ...


class SQLiteStore:
    """Data access layer for projects, lifecycle events, and audit logs."""

    def __init__(self, db_path: Path) -> None:
        self._db_path = db_path

    @asynccontextmanager
    async def connection(self) -> AsyncIterator[aiosqlite.Connection]:
        conn = await aiosqlite.connect(self._db_path)
        conn.row_factory = aiosqlite.Row
        try:
            await apply_migrations(conn)
            yield conn
        finally:
            await conn.close()

    async def save_project(self, project: Project) -> None:
        project.touch()
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO projects(
                    id,
                    owner_id,
                    owner_email,
                    name,
                    code,
                    messages,
                    status,
                    build_state,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    owner_id=excluded.owner_id,
                    owner_email=excluded.owner_email,
                    name=excluded.name,
                    code=excluded.code,
                    messages=excluded.messages,
                    status=excluded.status,
                    build_state=excluded.build_state,
                    updated_at=excluded.updated_at
                """,
                (
                    project.id,
                    project.owner_id,
                    project.owner_email,
                    project.name,
                    project.code.model_dump_json(),
                    json.dumps([message.model_dump(mode="json") for message in project.messages]),
                    project.status.value,
                    project.build_state.model_dump_json() if project.build_state else None,
                    project.created_at.isoformat(),
                    project.updated_at.isoformat(),
                ),
            )
            await conn.commit()

    async def list_projects(self, *, owner_id: str | None = None) -> list[Project]:
        query = "SELECT * FROM projects"
        params: tuple[str, ...] = ()
        if owner_id:
            query += " WHERE owner_id = ?"
            params = (owner_id,)
        query += " ORDER BY created_at ASC"
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [self._project_from_row(row) for row in rows]

    async def get_project(self, project_id: str) -> Project | None:
        async with self.connection() as conn:
            cursor = await conn.execute("SELECT * FROM projects WHERE id = ?", (project_id,))
            row = await cursor.fetchone()
        if row is None:
            return None
        return self._project_from_row(row)

    async def delete_project(self, project_id: str) -> None:
        async with self.connection() as conn:
            await conn.execute("DELETE FROM projects WHERE id = ?", (project_id,))
            await conn.commit()

    async def append_event(self, event: BuildEvent) -> None:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO build_events(id, project_id, event_type, payload, actor, timestamp)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (
                    event.id,
                    event.project_id,
                    event.event_type.value,
                    json.dumps(event.payload),
                    event.actor.model_dump_json(),
                    event.timestamp.isoformat(),
                ),
            )
            await conn.commit()

    async def list_events(
        self,
        *,
        project_id: str | None = None,
        event_type: EventType | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
    ) -> list[BuildEvent]:
        query = "SELECT * FROM build_events WHERE 1 = 1"
        params: list[str] = []

        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)

        if event_type:
            query += " AND event_type = ?"
            params.append(event_type.value)

        if since:
            query += " AND timestamp >= ?"
            params.append(since.isoformat())

        if until:
            query += " AND timestamp <= ?"
            params.append(until.isoformat())

        query += " ORDER BY timestamp ASC"

        async with self.connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()

        return [self._event_from_row(row) for row in rows]

    async def append_log(self, entry: SystemLog) -> None:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO system_logs(id, level, source, message, project_id, meta, timestamp)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    entry.id,
                    entry.level.value,
                    entry.source,
                    entry.message,
                    entry.project_id,
                    json.dumps(entry.meta),
                    entry.timestamp.isoformat(),
                ),
            )
            await conn.commit()

    async def list_logs(
        self,
        *,
        project_id: str | None = None,
        level: LogLevel | None = None,
        limit: int = 100,
    ) -> list[SystemLog]:
        query = "SELECT * FROM system_logs WHERE 1 = 1"
        params: list[str | int] = []
        if project_id:
            query += " AND project_id = ?"
            params.append(project_id)
        if level:
            query += " AND level = ?"
            params.append(level.value)
        query += " ORDER BY timestamp DESC LIMIT ?"
        params.append(limit)

        async with self.connection() as conn:
            cursor = await conn.execute(query, tuple(params))
            rows = await cursor.fetchall()
        return [self._log_from_row(row) for row in rows]

    async def append_webhook_delivery(self, delivery: WebhookDelivery) -> None:
        async with self.connection() as conn:
            await conn.execute(
                """
                INSERT INTO webhook_deliveries(
                    id, event_id, event_type, attempt, status_code, response_body, timestamp
                )
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    delivery.id,
                    delivery.event_id,
                    delivery.event_type.value,
                    delivery.attempt,
                    delivery.status_code,
                    delivery.response_body,
                    delivery.timestamp.isoformat(),
                ),
            )
            await conn.commit()

    async def list_webhook_deliveries(self, *, event_id: str | None = None) -> list[WebhookDelivery]:
        query = "SELECT * FROM webhook_deliveries"
        params: tuple[str, ...] = ()
        if event_id:
            query += " WHERE event_id = ?"
            params = (event_id,)
        query += " ORDER BY timestamp ASC, attempt ASC"
        async with self.connection() as conn:
            cursor = await conn.execute(query, params)
            rows = await cursor.fetchall()
        return [
            WebhookDelivery(
                id=str(row["id"]),
                event_id=str(row["event_id"]),
                event_type=EventType(str(row["event_type"])),
                attempt=int(row["attempt"]),
                status_code=int(row["status_code"]),
                response_body=str(row["response_body"]),
                timestamp=datetime.fromisoformat(str(row["timestamp"])),
            )
            for row in rows
        ]

    @staticmethod
    def _project_from_row(row: aiosqlite.Row) -> Project:
        build_state = row["build_state"]
        return Project(
            id=str(row["id"]),
            owner_id=str(row["owner_id"]),
            owner_email=str(row["owner_email"]) if row["owner_email"] else None,
            name=str(row["name"]),
            code=GeneratedCode.model_validate_json(str(row["code"])),
            messages=[Message.model_validate(item) for item in json.loads(str(row["messages"]))],
            status=ProjectStatus(str(row["status"])),
            build_state=BuildState.model_validate_json(str(build_state)) if build_state else None,
            created_at=datetime.fromisoformat(str(row["created_at"])),
            updated_at=datetime.fromisoformat(str(row["updated_at"])),
        )

    @staticmethod
    def _event_from_row(row: aiosqlite.Row) -> BuildEvent:
        return BuildEvent(
            id=str(row["id"]),
            project_id=str(row["project_id"]),
            event_type=EventType(str(row["event_type"])),
            payload=json.loads(str(row["payload"])),
            actor=Actor.model_validate_json(str(row["actor"])),
            timestamp=datetime.fromisoformat(str(row["timestamp"])),
        )

    @staticmethod
    def _log_from_row(row: aiosqlite.Row) -> SystemLog:
        return SystemLog(
            id=str(row["id"]),
            level=LogLevel(str(row["level"])),
            source=str(row["source"]),
            message=str(row["message"]),
            project_id=str(row["project_id"]) if row["project_id"] else None,
            meta=json.loads(str(row["meta"])),
            timestamp=datetime.fromisoformat(str(row["timestamp"])),
        )
