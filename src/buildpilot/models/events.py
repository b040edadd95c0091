"""Lifecycle event and audit log models."""

from __future__ import annotations

from datetime import UTC, datetime
from enum import Enum
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, Field


class EventType(str, Enum):
    """Lifecycle events mirrored to the notification sink."""

    PROJECT_CREATED = "project.created"
    BUILD_STARTED = "build.started"
    BUILD_PHASE_STARTED = "build.phase_started"
    BUILD_PHASE_COMPLETED = "build.phase_completed"
    BUILD_FAILED = "build.failed"
    BUILD_COMPLETED = "build.completed"


class LogLevel(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"
    CRITICAL = "critical"


class Actor(BaseModel):
    """User on whose behalf an event is emitted."""

    user_id: str = "anonymous"
    email: str = "anonymous@buildpilot.local"


class BuildEvent(BaseModel):
    """Append-only lifecycle event record."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    project_id: str
    event_type: EventType
    payload: dict[str, Any] = Field(default_factory=dict)
    actor: Actor = Field(default_factory=Actor)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class SystemLog(BaseModel):
    """Audit log entry for recoverable and fatal build errors."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    level: LogLevel
    source: str
    message: str
    project_id: str | None = None
    meta: dict[str, Any] = Field(default_factory=dict)
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))


class WebhookDelivery(BaseModel):
    """One delivery attempt of an event envelope to the webhook sink."""

    id: str = Field(default_factory=lambda: str(uuid4()))
    event_id: str
    event_type: EventType
    attempt: int
    status_code: int
    response_body: str
    timestamp: datetime = Field(default_factory=lambda: datetime.now(UTC))
