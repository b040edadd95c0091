"""Project lifecycle management."""

from __future__ import annotations

from dataclasses import dataclass

from buildpilot.core.event_relay import EventRelay
from buildpilot.core.sequencer import actor_for
from buildpilot.db.store import SQLiteStore
from buildpilot.models.events import EventType
from buildpilot.models.project import Project


@dataclass(slots=True)
class CreateProjectInput:
    """Input payload for project creation."""

    owner_id: str
    name: str = "New Project"
    owner_email: str | None = None


class ProjectManager:
    """Manage registered projects."""

    def __init__(self, store: SQLiteStore, relay: EventRelay | None = None) -> None:
        self._store = store
        self._relay = relay

    async def create(self, payload: CreateProjectInput) -> Project:
        project = Project(
            owner_id=payload.owner_id,
            owner_email=payload.owner_email,
            name=payload.name,
        )
        await self._store.save_project(project)
        if self._relay is not None:
            self._relay.emit(
                EventType.PROJECT_CREATED,
                {"name": project.name},
                project_id=project.id,
                actor=actor_for(project),
            )
        return project

    async def list(self, owner_id: str | None = None) -> list[Project]:
        return await self._store.list_projects(owner_id=owner_id)

    async def get(self, project_id: str) -> Project | None:
        return await self._store.get_project(project_id)

    async def delete(self, project_id: str) -> None:
        await self._store.delete_project(project_id)
