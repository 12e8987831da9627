from pydantic import BaseModel, ConfigDict, Field
from typing import Optional, List
from datetime import datetime


class ProjectUpdate(BaseModel):
    """Partial update; a blank name keeps the current one"""
    name: Optional[str] = Field(None, max_length=255)
    description: Optional[str] = None


class ProjectResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: Optional[str] = None
    user_id: str
    roll_number: str
    created_at: datetime
    updated_at: Optional[datetime] = None


class ProjectFileResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    original_name: str
    storage_key: str
    content_type: Optional[str] = None
    size_bytes: int
    version: int
    project_id: str
    user_id: str
    created_at: datetime
    updated_at: Optional[datetime] = None
    url: Optional[str] = None


class ProjectEnvelope(BaseModel):
    success: bool = True
    message: str
    project: ProjectResponse


class ProjectFilesEnvelope(BaseModel):
    success: bool = True
    message: str
    files: List[ProjectFileResponse]


class ProjectFileEnvelope(BaseModel):
    success: bool = True
    message: str
    file: ProjectFileResponse


class ProjectListResponse(BaseModel):
    success: bool = True
    projects: List[ProjectResponse]


class ProjectDetailResponse(BaseModel):
    success: bool = True
    project: ProjectResponse
    files: List[ProjectFileResponse]
