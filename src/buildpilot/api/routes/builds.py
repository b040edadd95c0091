"""Build control routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from buildpilot.api.deps import get_build_trigger, get_project_manager, get_registry
from buildpilot.api.routes.common import require_project
from buildpilot.api.schemas.builds import (
    BuildAcceptedResponse,
    BuildStateResponse,
    StopBuildResponse,
    TriggerBuildRequest,
)
from buildpilot.core.build_trigger import BuildTrigger
from buildpilot.core.cancellation import CancellationRegistry
from buildpilot.core.errors import BuildCancelledError, BuildConflictError, ProjectNotFoundError
from buildpilot.core.project_manager import ProjectManager
from buildpilot.models.project import Project

router = APIRouter(prefix="/api/v1/projects/{project_id}/builds", tags=["builds"])


def _accepted(project: Project) -> BuildAcceptedResponse:
    state = project.build_state
    return BuildAcceptedResponse(
        project_id=project.id,
        status=project.status,
        phased=state is not None and not state.is_flat,
    )


@router.post("", status_code=status.HTTP_202_ACCEPTED, response_model=BuildAcceptedResponse)
async def trigger_build(
    project_id: str,
    request: TriggerBuildRequest,
    manager: ProjectManager = Depends(get_project_manager),
    trigger: BuildTrigger = Depends(get_build_trigger),
) -> BuildAcceptedResponse:
    project = await require_project(project_id, manager)
    try:
        await trigger.trigger_build(project, request.prompt, request.images)
    except BuildCancelledError as exc:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Superseded by a newer build",
        ) from exc
    return _accepted(project)


@router.delete("", response_model=StopBuildResponse)
async def stop_build(
    project_id: str,
    trigger: BuildTrigger = Depends(get_build_trigger),
) -> StopBuildResponse:
    return StopBuildResponse(stopped=await trigger.stop_build(project_id))


@router.post("/retry", status_code=status.HTTP_202_ACCEPTED, response_model=BuildAcceptedResponse)
async def retry_build(
    project_id: str,
    trigger: BuildTrigger = Depends(get_build_trigger),
    manager: ProjectManager = Depends(get_project_manager),
) -> BuildAcceptedResponse:
    try:
        await trigger.retry_last(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except (BuildConflictError, BuildCancelledError) as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _accepted(await require_project(project_id, manager))


@router.post("/resume", status_code=status.HTTP_202_ACCEPTED, response_model=BuildAcceptedResponse)
async def resume_build(
    project_id: str,
    trigger: BuildTrigger = Depends(get_build_trigger),
    manager: ProjectManager = Depends(get_project_manager),
) -> BuildAcceptedResponse:
    try:
        await trigger.resume_build(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BuildConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
    return _accepted(await require_project(project_id, manager))


@router.get("/state", response_model=BuildStateResponse)
async def get_build_state(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
    registry: CancellationRegistry = Depends(get_registry),
) -> BuildStateResponse:
    project = await require_project(project_id, manager)
    return BuildStateResponse(
        project_id=project.id,
        status=project.status,
        active=registry.is_active(project.id),
        build_state=project.build_state,
    )


@router.delete("/state", status_code=status.HTTP_204_NO_CONTENT)
async def clear_build_state(
    project_id: str,
    trigger: BuildTrigger = Depends(get_build_trigger),
) -> None:
    try:
        await trigger.clear_build_state(project_id)
    except ProjectNotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except BuildConflictError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc
