# Re-export all models for convenient imports
from app.models.user import User
from app.models.project import Project
from app.models.project_file import ProjectFile

__all__ = [
    "User",
    "Project",
    "ProjectFile",
]
