"""
Plote - Error types
===================

Raise these from services and dependencies instead of HTTPException so the
API layer maps every failure to the same `{"success": false, "message": ...}`
body and the right status code.

Usage:
    from app.core.exceptions import ProjectNotFoundError, AuthorizationError

    if not project:
        raise ProjectNotFoundError(project_id)
    if project.user_id != user.id:
        raise AuthorizationError("Not authorized to modify this project")
"""

from typing import Optional, Any, Dict, List


class PloteError(Exception):
    """Base exception for all Plote errors"""

    status_code: int = 500

    def __init__(
        self,
        message: str,
        code: str = "INTERNAL_ERROR",
        details: Optional[Dict[str, Any]] = None,
        status_code: Optional[int] = None
    ):
        self.message = message
        self.code = code
        self.details = details or {}
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)

    def log_fields(self) -> Dict[str, Any]:
        """`extra` for log records; never sent to clients"""
        return {"error_code": self.code, "error_details": self.details}


# ============================================
# Authentication & Authorization Errors
# ============================================

class AuthenticationError(PloteError):
    """User authentication failed"""

    status_code = 401

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message, code="AUTH_FAILED")


class InvalidTokenError(AuthenticationError):
    """JWT token is invalid, expired or of the wrong type"""

    def __init__(self, message: str = "Not authorized, token failed"):
        super().__init__(message)
        self.code = "INVALID_TOKEN"


class AuthorizationError(PloteError):
    """User not authorized for this action"""

    status_code = 403

    def __init__(self, message: str = "Not authorized"):
        super().__init__(message, code="NOT_AUTHORIZED")


# ============================================
# Resource Errors (404-type)
# ============================================

class ResourceNotFoundError(PloteError):
    """Base class for not found errors"""

    status_code = 404

    def __init__(self, resource_type: str, resource_id: str, message: Optional[str] = None):
        super().__init__(
            message or f"{resource_type} not found",
            code=f"{resource_type.upper().replace(' ', '_')}_NOT_FOUND",
            details={"resource_type": resource_type, "resource_id": resource_id}
        )


class ProjectNotFoundError(ResourceNotFoundError):
    """Project not found"""

    def __init__(self, project_id: str):
        super().__init__("Project", project_id)


class ProjectFileNotFoundError(ResourceNotFoundError):
    """Project file not found"""

    def __init__(self, file_id: str):
        super().__init__("File", file_id)


class UserNotFoundError(ResourceNotFoundError):
    """User not found"""

    def __init__(self, identifier: str):
        super().__init__("User", identifier)


# ============================================
# Validation Errors (400-type)
# ============================================

class ValidationError(PloteError):
    """Input validation failed"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="VALIDATION_ERROR", details=details)


class InvalidFileTypeError(ValidationError):
    """File type not allowed"""

    def __init__(self, filename: str, allowed_types: List[str]):
        super().__init__(
            f"File type of '{filename}' not allowed. Allowed: {', '.join(allowed_types)}"
        )
        self.code = "INVALID_FILE_TYPE"
        self.details = {"filename": filename, "allowed_types": allowed_types}


class FileTooLargeError(ValidationError):
    """File exceeds the per-file size cap"""

    def __init__(self, filename: str, max_size_mb: int):
        super().__init__(f"File '{filename}' exceeds the {max_size_mb}MB limit")
        self.code = "FILE_TOO_LARGE"
        self.details = {"filename": filename, "max_size_mb": max_size_mb}


class ConflictError(PloteError):
    """Duplicate registration field or stale write"""

    status_code = 400

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(message, code="CONFLICT", details=details)


# ============================================
# Storage Errors
# ============================================

class StorageError(PloteError):
    """Storage operation failed"""

    status_code = 500

    def __init__(self, message: str):
        super().__init__(message, code="STORAGE_ERROR")


class UpstreamStorageError(StorageError):
    """Blob store rejected or timed out on an upload"""

    def __init__(self, key: str = "", message: str = "Upload failed"):
        super().__init__(f"File storage failed: {message}")
        self.code = "UPSTREAM_STORAGE_ERROR"
        if key:
            self.details["key"] = key


# ============================================
# Response body
# ============================================

def error_response(error: PloteError) -> Dict[str, Any]:
    """Convert exception to API error response format; codes stay server side"""
    return {
        "success": False,
        "message": error.message,
    }
