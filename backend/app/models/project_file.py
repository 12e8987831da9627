from sqlalchemy import Column, String, Integer, Index
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import id_column, owner_column, created_column, updated_column


class ProjectFile(Base):
    """
    Project File model - stores file metadata in the database
    Actual bytes live in the blob store under storage_key

    Replacing a file rewrites the row in place; `version` is SQLAlchemy's
    version counter, so a concurrent writer holding a stale row fails with
    StaleDataError instead of overwriting.
    """
    __tablename__ = "project_files"

    __table_args__ = (
        Index('ix_project_files_project_id', 'project_id'),
        Index('ix_project_files_user_id', 'user_id'),
    )

    id = id_column()
    project_id = owner_column("projects")
    user_id = owner_column("users")

    # Display
    title = Column(String(255), nullable=False)
    original_name = Column(String(255), nullable=False)

    # Storage
    storage_key = Column(String(255), nullable=False)
    content_type = Column(String(255), nullable=True)
    size_bytes = Column(Integer, default=0, nullable=False)

    version = Column(Integer, nullable=False)

    # Timestamps
    created_at = created_column()
    updated_at = updated_column()

    # Relationships
    project = relationship("Project", back_populates="files")
    user = relationship("User")

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self):
        return f"<ProjectFile {self.title} ({self.storage_key})>"
