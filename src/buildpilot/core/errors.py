"""Domain exception hierarchy for build orchestration."""

from __future__ import annotations


class BuildPilotError(RuntimeError):
    """Base for all orchestration errors."""


class BuildCancelledError(BuildPilotError):
    """The build's cancellation token was triggered."""

    def __init__(self, project_id: str) -> None:
        super().__init__(f"Build cancelled for project {project_id}")
        self.project_id = project_id


class GenerationError(BuildPilotError):
    """A generation attempt failed."""


class PlanningError(BuildPilotError):
    """The phase planner could not produce a plan."""


class ProjectNotFoundError(BuildPilotError):
    def __init__(self, project_id: str) -> None:
        super().__init__(f"Project not found: {project_id}")
        self.project_id = project_id


class BuildConflictError(BuildPilotError):
    """The requested build operation is incompatible with the project state."""
