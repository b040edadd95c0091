"""Project event and audit log routes."""

from __future__ import annotations

from datetime import datetime

from fastapi import APIRouter, Depends, HTTPException, Query, status

from buildpilot.api.deps import get_project_manager, get_store
from buildpilot.api.routes.common import require_project
from buildpilot.api.schemas.events import EventResponse, EventsResponse, LogResponse, LogsResponse
from buildpilot.core.project_manager import ProjectManager
from buildpilot.db.store import SQLiteStore
from buildpilot.models.events import EventType, LogLevel

router = APIRouter(prefix="/api/v1/projects/{project_id}", tags=["events"])


@router.get("/events", response_model=EventsResponse)
async def list_project_events(
    project_id: str,
    event_type: str | None = None,
    since: datetime | None = Query(default=None),
    until: datetime | None = Query(default=None),
    manager: ProjectManager = Depends(get_project_manager),
    store: SQLiteStore = Depends(get_store),
) -> EventsResponse:
    await require_project(project_id, manager)

    parsed_event_type: EventType | None = None
    if event_type is not None:
        try:
            parsed_event_type = EventType(event_type)
        except ValueError as exc:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Invalid event_type",
            ) from exc

    events = await store.list_events(
        project_id=project_id,
        event_type=parsed_event_type,
        since=since,
        until=until,
    )
    return EventsResponse(
        items=[
            EventResponse(
                id=event.id,
                event_type=event.event_type.value,
                payload=event.payload,
                timestamp=event.timestamp,
            )
            for event in events
        ]
    )


@router.get("/logs", response_model=LogsResponse)
async def list_project_logs(
    project_id: str,
    level: str | None = None,
    limit: int = Query(default=100, ge=1, le=1000),
    manager: ProjectManager = Depends(get_project_manager),
    store: SQLiteStore = Depends(get_store),
) -> LogsResponse:
    await require_project(project_id, manager)

    parsed_level: LogLevel | None = None
    if level is not None:
        try:
            parsed_level = LogLevel(level)
        except ValueError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid level") from exc

    logs = await store.list_logs(project_id=project_id, level=parsed_level, limit=limit)
    return LogsResponse(
        items=[
            LogResponse(
                id=entry.id,
                level=entry.level.value,
                source=entry.source,
                message=entry.message,
                meta=entry.meta,
                timestamp=entry.timestamp,
            )
            for entry in logs
        ]
    )
