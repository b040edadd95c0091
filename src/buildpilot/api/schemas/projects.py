"""Project API schemas."""

from __future__ import annotations

from pydantic import BaseModel

from buildpilot.models.project import Project


class CreateProjectRequest(BaseModel):
    """Payload for creating a project."""

    owner_id: str
    name: str = "New Project"
    owner_email: str | None = None


class ProjectsResponse(BaseModel):
    """Collection response for projects."""

    items: list[Project]
