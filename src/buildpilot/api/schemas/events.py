"""Event and audit log API schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel


class EventResponse(BaseModel):
    """Event record payload."""

    id: str
    event_type: str
    payload: dict[str, Any]
    timestamp: datetime


class EventsResponse(BaseModel):
    """Collection of events."""

    items: list[EventResponse]


class LogResponse(BaseModel):
    id: str
    level: str
    source: str
    message: str
    meta: dict[str, Any]
    timestamp: datetime


class LogsResponse(BaseModel):
    items: list[LogResponse]
