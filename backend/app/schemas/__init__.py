# Pydantic schemas
from app.schemas.auth import (
    UserRegister,
    UserLogin,
    ForgotPasswordRequest,
    ResetPasswordRequest,
    UserResponse,
    AuthResponse,
    UserDetailsResponse,
    ForgotPasswordResponse,
    MessageResponse,
)
from app.schemas.project import (
    ProjectUpdate,
    ProjectResponse,
    ProjectFileResponse,
    ProjectEnvelope,
    ProjectFilesEnvelope,
    ProjectFileEnvelope,
    ProjectListResponse,
    ProjectDetailResponse,
)
