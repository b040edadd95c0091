"""Build API schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field

from buildpilot.models.project import BuildState, ProjectStatus


class TriggerBuildRequest(BaseModel):
    """A new user instruction for the project."""

    prompt: str = Field(min_length=1)
    images: list[str] = Field(default_factory=list)


class BuildAcceptedResponse(BaseModel):
    project_id: str
    status: ProjectStatus
    phased: bool


class StopBuildResponse(BaseModel):
    stopped: bool


class BuildStateResponse(BaseModel):
    project_id: str
    status: ProjectStatus
    active: bool
    build_state: BuildState | None
