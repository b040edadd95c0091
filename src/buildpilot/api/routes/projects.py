"""Project routes."""

from __future__ import annotations

from fastapi import APIRouter, Depends, status

from buildpilot.api.deps import get_project_manager
from buildpilot.api.routes.common import require_project
from buildpilot.api.schemas.projects import CreateProjectRequest, ProjectsResponse
from buildpilot.core.project_manager import CreateProjectInput, ProjectManager
from buildpilot.models.project import Project

router = APIRouter(prefix="/api/v1/projects", tags=["projects"])


@router.get("", response_model=ProjectsResponse)
async def list_projects(
    owner_id: str | None = None,
    manager: ProjectManager = Depends(get_project_manager),
) -> ProjectsResponse:
    return ProjectsResponse(items=await manager.list(owner_id))


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_project(
    request: CreateProjectRequest,
    manager: ProjectManager = Depends(get_project_manager),
) -> dict[str, str]:
    project = await manager.create(
        CreateProjectInput(
            owner_id=request.owner_id,
            name=request.name,
            owner_email=request.owner_email,
        )
    )
    return {"id": project.id}


@router.get("/{project_id}")
async def get_project(
    project_id: str, manager: ProjectManager = Depends(get_project_manager)
) -> dict[str, Project]:
    return {"project": await require_project(project_id, manager)}


@router.delete("/{project_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_project(
    project_id: str,
    manager: ProjectManager = Depends(get_project_manager),
) -> None:
    await manager.delete(project_id)
