"""
Plote - Application entry point

Startup order: configuration checks, database engine and tables, blob store,
rate limit backend. Both the database and the blob store hang off app.state
so tests can swap them per test.
"""
from contextlib import asynccontextmanager
from typing import List, Tuple

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException

from app.api.router import api_router
from app.core.config import settings
from app.core.database import Database
from app.core.exceptions import PloteError, error_response
from app.core.logging_config import logger
from app.core.middleware import (
    RequestLoggingMiddleware,
    SecurityHeadersMiddleware,
    RequestSizeLimitMiddleware,
)
from app.core.rate_limiter import limiter, rate_limit_exceeded_handler, check_rate_limit_storage
from app.services.storage_service import build_blob_store


STORAGE_MODES = ("local", "s3")


def _config_problems() -> Tuple[List[str], List[str]]:
    """(fatal, advisory) configuration problems"""
    mode = settings.STORAGE_MODE.lower()
    fatal = [
        message for broken, message in (
            (not settings.DATABASE_URL, "DATABASE_URL is not set"),
            (settings.JWT_SECRET_KEY in ("", "CHANGE_ME"), "JWT_SECRET_KEY is not set or using default value"),
            (mode not in STORAGE_MODES, f"STORAGE_MODE must be 'local' or 's3', got '{settings.STORAGE_MODE}'"),
            (mode == "s3" and not settings.S3_BUCKET_NAME, "S3_BUCKET_NAME is required when STORAGE_MODE=s3"),
        ) if broken
    ]
    advisory = [
        message for suspicious, message in (
            (settings.ENVIRONMENT == "production" and len(settings.JWT_SECRET_KEY) < 32,
             "JWT_SECRET_KEY is shorter than 32 characters"),
            (not settings.RATE_LIMIT_ENABLED, "RATE_LIMIT_ENABLED=false, auth endpoints are not rate limited"),
        ) if suspicious
    ]
    return fatal, advisory


async def validate_critical_config() -> bool:
    """Refuse to start on broken configuration; log the merely suspicious"""
    fatal, advisory = _config_problems()
    for problem in fatal:
        logger.critical(f"[Startup] {problem}")
    if fatal:
        raise RuntimeError(f"Invalid configuration: {'; '.join(fatal)}")

    for problem in advisory:
        logger.warning(f"[Startup] {problem}")
    logger.info("[Startup] Configuration OK")
    return True


async def ensure_database_ready(database: Database) -> bool:
    """Create missing tables; a failure is logged and startup continues"""
    try:
        await database.create_all()
    except Exception as e:
        logger.error(f"[Startup] Could not create tables: {e}", exc_info=True)
        return False
    return True


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info(
        f"[Startup] {settings.APP_NAME} ({settings.ENVIRONMENT}), storage={settings.STORAGE_MODE}"
    )
    await validate_critical_config()

    database = Database.from_settings(settings)
    app.state.db = database
    if not await ensure_database_ready(database):
        logger.warning("[Startup] Continuing without a verified schema")

    storage = build_blob_store(settings)
    await storage.prepare()
    app.state.storage = storage

    if settings.RATE_LIMIT_ENABLED:
        await check_rate_limit_storage()

    yield

    logger.info(f"[Shutdown] Closing {settings.APP_NAME}")
    await storage.close()
    await database.dispose()


app = FastAPI(
    title=settings.APP_NAME,
    description="Student project portfolio backend",
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    openapi_url="/openapi.json",
    lifespan=lifespan,
    # a 307 to the slashed path loses CORS headers in browsers
    redirect_slashes=False,
)

app.state.limiter = limiter
app.add_exception_handler(RateLimitExceeded, rate_limit_exceeded_handler)

# Starlette runs the last added middleware first: CORS, size cap, headers, logging
app.add_middleware(RequestLoggingMiddleware)
app.add_middleware(SecurityHeadersMiddleware)
app.add_middleware(RequestSizeLimitMiddleware, max_size=settings.MAX_REQUEST_SIZE_BYTES)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-Request-ID", "X-Response-Time"],
)


# Every error leaves as {"success": false, "message": ...}
@app.exception_handler(PloteError)
async def plote_exception_handler(request: Request, exc: PloteError):
    if exc.status_code >= 500:
        logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}", **exc.log_fields())
    else:
        logger.info(f"{request.method} {request.url.path} rejected: {exc.message}", extra=exc.log_fields())
    return JSONResponse(status_code=exc.status_code, content=error_response(exc))


@app.exception_handler(RequestValidationError)
async def validation_exception_handler(request: Request, exc: RequestValidationError):
    """First failing field only, as '<field>: <reason>'"""
    errors = exc.errors()
    if not errors:
        return JSONResponse(status_code=400, content={"success": False, "message": "Invalid request"})

    first = errors[0]
    field = ".".join(str(part) for part in first.get("loc", ()) if part not in ("body", "query", "path"))
    message = f"{field}: {first.get('msg')}" if field else str(first.get("msg"))
    return JSONResponse(status_code=400, content={"success": False, "message": message})


@app.exception_handler(StarletteHTTPException)
async def http_exception_handler(request: Request, exc: StarletteHTTPException):
    return JSONResponse(
        status_code=exc.status_code,
        content={"success": False, "message": str(exc.detail)},
        headers=getattr(exc, "headers", None),
    )


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.log_error_with_context(exc, context=f"{request.method} {request.url.path}")
    return JSONResponse(
        status_code=500,
        content={
            "success": False,
            "message": str(exc) if settings.DEBUG else "Internal server error",
        }
    )


@app.get("/", tags=["Root"])
async def root():
    return {
        "message": f"{settings.APP_NAME}. Backend API is running!",
        "docs": "/docs",
        "health": f"{settings.API_PREFIX}/health",
    }


app.include_router(api_router, prefix=settings.API_PREFIX)

# In local mode the blob URLs point back at this mount
if settings.STORAGE_MODE.lower() == "local":
    app.mount("/uploads", StaticFiles(directory=settings.UPLOAD_PATH, check_dir=False), name="uploads")


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "app.main:app",
        host=settings.SERVER_HOST,
        port=settings.SERVER_PORT,
        reload=settings.DEBUG,
    )
