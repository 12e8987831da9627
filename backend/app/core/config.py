from pydantic_settings import BaseSettings
from typing import List, Any
from pathlib import Path
import json


def parse_cors_origins(v: Any) -> List[str]:
    """Parse CORS origins from string or list"""
    if isinstance(v, list):
        return v
    if isinstance(v, str):
        # Try JSON parsing first
        if v.startswith('['):
            try:
                return json.loads(v)
            except json.JSONDecodeError:
                pass
        # Fall back to comma-separated
        return [origin.strip() for origin in v.split(',') if origin.strip()]
    return []


def parse_extensions(v: Any) -> List[str]:
    """Parse allowed extensions from string or list, normalized to lowercase without dots"""
    if isinstance(v, list):
        items = v
    elif isinstance(v, str):
        items = None
        if v.startswith('['):
            try:
                items = json.loads(v)
            except json.JSONDecodeError:
                pass
        if items is None:
            items = v.split(',')
    else:
        return []
    return [str(ext).strip().lower().lstrip('.') for ext in items if str(ext).strip()]


class Settings(BaseSettings):
    """Application settings - all configurable via environment variables"""

    # ==========================================
    # Application
    # ==========================================
    APP_NAME: str = "Plote"
    ENVIRONMENT: str = "development"
    DEBUG: bool = False
    API_PREFIX: str = "/api"

    # Server Configuration
    SERVER_HOST: str = "0.0.0.0"
    SERVER_PORT: int = 5000

    # ==========================================
    # Database
    # ==========================================
    DATABASE_URL: str
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20
    DB_POOL_TIMEOUT: int = 30
    DB_POOL_RECYCLE: int = 1800  # 30 minutes
    DB_ECHO: bool = False

    # ==========================================
    # Authentication
    # ==========================================
    JWT_SECRET_KEY: str
    JWT_ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 60  # 1 hour
    PASSWORD_RESET_EXPIRE_MINUTES: int = 60
    BCRYPT_ROUNDS: int = 12  # 4 for tests (fast), 12 for prod (secure)

    # ==========================================
    # Frontend / public URLs
    # ==========================================
    FRONTEND_URL: str = "http://localhost:5173"
    PUBLIC_BASE_URL: str = "http://localhost:5000"

    # ==========================================
    # CORS (stored as comma-separated string, parsed to list)
    # ==========================================
    CORS_ORIGINS_STR: str = "http://localhost:5173,http://127.0.0.1:5173"

    @property
    def CORS_ORIGINS(self) -> List[str]:
        """Parse CORS origins from comma-separated string, always including the frontend"""
        origins = parse_cors_origins(self.CORS_ORIGINS_STR)
        if self.FRONTEND_URL and self.FRONTEND_URL not in origins:
            origins.append(self.FRONTEND_URL)
        return origins

    # ==========================================
    # Storage Configuration
    # ==========================================
    STORAGE_MODE: str = "local"  # "local" or "s3"
    UPLOAD_DIR: str = "uploads"

    # AWS S3 / S3-compatible (MinIO, Supabase storage S3 gateway, ...)
    AWS_ACCESS_KEY_ID: str = ""
    AWS_SECRET_ACCESS_KEY: str = ""
    AWS_REGION: str = "us-east-1"
    S3_BUCKET_NAME: str = ""
    S3_ENDPOINT_URL: str = ""  # Empty means AWS
    STORAGE_URL_EXPIRY: int = 3600  # 1 hour

    # Blob operation bounds
    STORAGE_TIMEOUT_SECONDS: float = 30.0
    STORAGE_MAX_RETRIES: int = 3

    # ==========================================
    # File Upload
    # ==========================================
    MAX_FILES_PER_UPLOAD: int = 10
    MAX_FILE_SIZE_MB: int = 10
    ALLOWED_EXTENSIONS_STR: str = (
        "pdf,doc,docx,ppt,pptx,xls,xlsx,csv,txt,md,zip,rar,7z,"
        "png,jpg,jpeg,gif,svg,mp4,"
        "py,ipynb,java,c,cpp,h,js,jsx,ts,tsx,html,css,json,sql"
    )

    @property
    def ALLOWED_EXTENSIONS(self) -> List[str]:
        """Parse allowed extensions from comma-separated string ("*" allows everything)"""
        return parse_extensions(self.ALLOWED_EXTENSIONS_STR)

    @property
    def MAX_FILE_SIZE_BYTES(self) -> int:
        return self.MAX_FILE_SIZE_MB * 1024 * 1024

    @property
    def MAX_REQUEST_SIZE_BYTES(self) -> int:
        """Largest multipart body accepted: every file at the cap plus 1MB of form overhead"""
        return self.MAX_FILES_PER_UPLOAD * self.MAX_FILE_SIZE_BYTES + 1024 * 1024

    # ==========================================
    # Rate Limiting
    # ==========================================
    RATE_LIMIT_ENABLED: bool = True
    RATE_LIMIT_PER_MINUTE: int = 60
    RATE_LIMIT_STORAGE_URI: str = "memory://"  # e.g. redis://localhost:6379/1

    # ==========================================
    # Logging
    # ==========================================
    LOG_LEVEL: str = "INFO"
    LOG_FILE: str = "logs/app.log"

    class Config:
        env_file = ".env"
        case_sensitive = True
        extra = "ignore"  # Ignore extra fields in .env that aren't defined in Settings

    @property
    def UPLOAD_PATH(self) -> Path:
        return Path(self.UPLOAD_DIR).resolve()


settings = Settings()
