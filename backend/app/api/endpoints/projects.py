from fastapi import APIRouter, Depends, File, Form, UploadFile, status
from typing import List, Optional

from app.core.config import settings
from app.models.project_file import ProjectFile
from app.models.user import User
from app.modules.auth.dependencies import get_current_user
from app.schemas.auth import MessageResponse
from app.schemas.project import (
    ProjectUpdate,
    ProjectResponse,
    ProjectFileResponse,
    ProjectEnvelope,
    ProjectFilesEnvelope,
    ProjectFileEnvelope,
)
from app.services.project_service import IncomingFile, ProjectService, get_project_service
from app.services.storage_service import BlobStore

router = APIRouter()


async def read_upload(upload: Optional[UploadFile]) -> Optional[IncomingFile]:
    """
    Read one multipart part; a part without a filename means no file was chosen.

    At most one byte past MAX_FILE_SIZE_BYTES is read, which is enough for
    validate_file to reject the part without holding all of it in memory.
    Chunked requests carry no Content-Length for the size middleware to check.
    """
    if upload is None or not upload.filename:
        return None
    content = await upload.read(settings.MAX_FILE_SIZE_BYTES + 1)
    return IncomingFile(filename=upload.filename, content=content, content_type=upload.content_type)


async def read_uploads(uploads: Optional[List[UploadFile]]) -> List[IncomingFile]:
    files = []
    for upload in uploads or []:
        incoming = await read_upload(upload)
        if incoming is not None:
            files.append(incoming)
    return files


def to_file_response(row: ProjectFile, storage: BlobStore) -> ProjectFileResponse:
    response = ProjectFileResponse.model_validate(row)
    response.url = storage.url_for(row.storage_key)
    return response


@router.post("/create", response_model=ProjectEnvelope, status_code=status.HTTP_201_CREATED)
async def create_project(
    name: Optional[str] = Form(None),
    description: Optional[str] = Form(None),
    project_files: Optional[List[UploadFile]] = File(None, alias="projectFiles"),
    file_titles: Optional[List[str]] = Form(None, alias="fileTitle_projectFiles"),
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """Create a project together with its files (multipart form)"""
    files = await read_uploads(project_files)
    project = await service.create_project(current_user, name, description, files, file_titles)
    return ProjectEnvelope(
        message="Project created successfully!",
        project=ProjectResponse.model_validate(project),
    )


@router.put("/{project_id}", response_model=ProjectEnvelope)
async def update_project(
    project_id: str,
    project_data: ProjectUpdate,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    project = await service.update_project(current_user, project_id, project_data)
    return ProjectEnvelope(
        message="Project updated successfully",
        project=ProjectResponse.model_validate(project),
    )


@router.delete("/{project_id}", response_model=MessageResponse)
async def delete_project(
    project_id: str,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """Delete a project, its file records and (best effort) their blobs"""
    await service.delete_project(current_user, project_id)
    return MessageResponse(message="Project deleted successfully")


# ========== File Management Endpoints ==========

@router.post("/add-files/{project_id}", response_model=ProjectFilesEnvelope, status_code=status.HTTP_201_CREATED)
async def add_files(
    project_id: str,
    new_project_files: Optional[List[UploadFile]] = File(None, alias="newProjectFiles"),
    file_titles: Optional[List[str]] = Form(None, alias="fileTitle_newProjectFiles"),
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    files = await read_uploads(new_project_files)
    rows = await service.add_files(current_user, project_id, files, file_titles)
    return ProjectFilesEnvelope(
        message="Files added successfully",
        files=[to_file_response(row, service.storage) for row in rows],
    )


@router.delete("/delete-file/{file_id}", response_model=MessageResponse)
async def delete_file(
    file_id: str,
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    await service.delete_file(current_user, file_id)
    return MessageResponse(message="File deleted successfully")


@router.post("/replace-file/{file_id}", response_model=ProjectFileEnvelope)
async def replace_file(
    file_id: str,
    new_file: Optional[UploadFile] = File(None, alias="newFile"),
    file_name: Optional[str] = Form(None, alias="fileName"),
    version: Optional[int] = Form(None),
    current_user: User = Depends(get_current_user),
    service: ProjectService = Depends(get_project_service),
):
    """
    Replace the bytes and title of a file; the file id stays the same.
    Pass `version` to fail with a conflict if someone else changed it first.
    """
    incoming = await read_upload(new_file)
    row = await service.replace_file(current_user, file_id, file_name, incoming, version)
    return ProjectFileEnvelope(
        message="File replaced successfully",
        file=to_file_response(row, service.storage),
    )
