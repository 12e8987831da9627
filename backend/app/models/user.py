from sqlalchemy import Column, String, DateTime
from sqlalchemy.orm import relationship

from app.core.database import Base
from app.core.types import id_column, created_column, updated_column


class User(Base):
    """
    Registered student.

    username, email, roll_number and mobile_number are each unique and are
    checked in that order at registration. roll_number doubles as the key of
    the public portfolio.
    """
    __tablename__ = "users"

    id = id_column()
    username = Column(String(100), unique=True, index=True, nullable=False)
    email = Column(String(255), unique=True, index=True, nullable=False)
    hashed_password = Column(String(255), nullable=False)

    college = Column(String(255), nullable=False)
    branch = Column(String(255), nullable=False)
    roll_number = Column(String(100), unique=True, index=True, nullable=False)
    mobile_number = Column(String(10), unique=True, nullable=False)

    # bcrypt hash of the outstanding reset token, if any
    reset_token_hash = Column(String(255), nullable=True)
    reset_token_expires = Column(DateTime, nullable=True)

    created_at = created_column()
    updated_at = updated_column()

    projects = relationship("Project", back_populates="user", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<User {self.username} ({self.roll_number})>"
