"""
Public portfolio endpoints - no authentication
"""

from fastapi import APIRouter, Depends, Query
from typing import Optional

from app.core.exceptions import ValidationError
from app.schemas.project import ProjectResponse, ProjectListResponse, ProjectDetailResponse
from app.services.project_service import ProjectService, get_project_service
from app.api.endpoints.projects import to_file_response

router = APIRouter()


@router.get("/view-by-roll", response_model=ProjectListResponse)
async def view_by_roll(
    roll_number: Optional[str] = Query(None, alias="rollNumber"),
    service: ProjectService = Depends(get_project_service),
):
    """All projects of one student, newest first; empty list when there are none"""
    roll_number = (roll_number or "").strip()
    if not roll_number:
        raise ValidationError("Roll number is required", field="rollNumber")

    projects = await service.list_by_roll_number(roll_number)
    return ProjectListResponse(
        projects=[ProjectResponse.model_validate(p) for p in projects]
    )


@router.get("/{project_id}", response_model=ProjectDetailResponse)
async def get_public_project(
    project_id: str,
    service: ProjectService = Depends(get_project_service),
):
    project, files = await service.get_detail(project_id)
    return ProjectDetailResponse(
        project=ProjectResponse.model_validate(project),
        files=[to_file_response(f, service.storage) for f in files],
    )
