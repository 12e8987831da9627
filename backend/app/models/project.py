from sqlalchemy import Column, String, Text, Index
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import id_column, owner_column, created_column, updated_column


class Project(Base):
    """
    Student project.

    roll_number is copied from the owner at creation so public portfolio
    lookups never join users; reconcile_roll_numbers() repairs drift.
    Ownership checks always use user_id.
    """
    __tablename__ = "projects"

    __table_args__ = (
        Index('ix_projects_user_id', 'user_id'),
        Index('ix_projects_roll_created', 'roll_number', 'created_at'),  # Public portfolio listing
    )

    id = id_column()
    user_id = owner_column("users")

    name = Column(String(255), nullable=False)
    description = Column(Text, nullable=True)
    roll_number = Column(String(100), nullable=False)

    # Timestamps
    created_at = created_column()
    updated_at = updated_column()

    # Relationships
    user = relationship("User", back_populates="projects")
    files = relationship(
        "ProjectFile",
        back_populates="project",
        cascade="all, delete-orphan",
        order_by="ProjectFile.created_at",
    )

    def __repr__(self):
        return f"<Project {self.name}>"
