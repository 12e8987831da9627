"""
Plote - HTTP Middleware

Every request gets a correlation id (taken from X-Request-ID or generated),
the project id found in its path is put on the logging context, and the
response carries X-Request-ID and X-Response-Time. Health checks, docs and
blob downloads are served without access log lines.
"""

import time
from typing import Callable, Dict, FrozenSet
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.requests import Request
from starlette.responses import Response, JSONResponse
from starlette.types import ASGIApp

from app.core.logging_config import (
    logger,
    set_request_id,
    set_user_id,
    set_project_id,
    generate_request_id,
)


QUIET_PATHS: FrozenSet[str] = frozenset({
    "/",
    "/api/health",
    "/favicon.ico",
    "/docs",
    "/redoc",
    "/openapi.json",
})
SKIP_LOGGING_PATHS = QUIET_PATHS

# Route segments under /projects/ that are verbs, not project ids
_PROJECT_ROUTE_VERBS = {"create", "delete-file", "replace-file", "view-by-roll", ""}

SLOW_REQUEST_MS = 1000

SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
}


def should_skip_logging(path: str) -> bool:
    return path in QUIET_PATHS or path.startswith("/uploads/")


def extract_project_id(path: str) -> str:
    """Project id from /projects/<id>, /projects/add-files/<id> or /public-projects/<id>"""
    marker = next((m for m in ("/public-projects/", "/projects/") if m in path), None)
    if marker is None:
        return ""

    segments = path.split(marker, 1)[1].split("/")
    if segments[0] == "add-files":
        return segments[1] if len(segments) > 1 else ""
    return "" if segments[0] in _PROJECT_ROUTE_VERBS else segments[0]


def _clear_context() -> None:
    set_request_id("")
    set_user_id("")
    set_project_id("")


class RequestLoggingMiddleware(BaseHTTPMiddleware):
    """Correlation ids, log context and one access line per request"""

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        request_id = request.headers.get("X-Request-ID") or generate_request_id()
        set_request_id(request_id)

        method, path = request.method, request.url.path
        project_id = extract_project_id(path)
        if project_id:
            set_project_id(project_id)

        quiet = should_skip_logging(path)
        if not quiet:
            logger.debug(
                f"{method} {path} started",
                extra={
                    "event_type": "http_request_start",
                    "client_ip": request.client.host if request.client else "unknown",
                    "user_agent": request.headers.get("user-agent", ""),
                    "content_length": request.headers.get("content-length", 0),
                }
            )

        started = time.perf_counter()
        try:
            response = await call_next(request)
        except Exception as exc:
            elapsed = (time.perf_counter() - started) * 1000
            logger.error(
                f"{method} {path} raised {type(exc).__name__} after {elapsed:.2f}ms",
                exc_info=True,
                extra={
                    "event_type": "http_request_error",
                    "http_method": method,
                    "http_path": path,
                    "duration_ms": elapsed,
                }
            )
            raise
        else:
            elapsed = (time.perf_counter() - started) * 1000
            response.headers["X-Request-ID"] = request_id
            response.headers["X-Response-Time"] = f"{elapsed:.2f}ms"

            if not quiet:
                logger.log_request(method, path, response.status_code, elapsed)
                if elapsed > SLOW_REQUEST_MS:
                    logger.warning(
                        f"Slow request: {method} {path} took {elapsed:.2f}ms",
                        extra={"event_type": "slow_request", "duration_ms": elapsed}
                    )
            return response
        finally:
            _clear_context()


class SecurityHeadersMiddleware(BaseHTTPMiddleware):

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        response = await call_next(request)
        response.headers.update(SECURITY_HEADERS)
        return response


class RequestSizeLimitMiddleware(BaseHTTPMiddleware):
    """
    Rejects bodies whose declared Content-Length exceeds max_size with 413.

    Multipart uploads are also capped per file by the project service; this
    stops a request before the form parser reads it.
    """

    def __init__(self, app: ASGIApp, max_size: int = 10 * 1024 * 1024):
        super().__init__(app)
        self.max_size = max_size

    def _declared_size(self, request: Request) -> int:
        value = request.headers.get("content-length", "")
        return int(value) if value.isdigit() else 0

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        size = self._declared_size(request)
        if size <= self.max_size:
            return await call_next(request)

        logger.warning(
            f"Rejected {request.url.path}: body of {size} bytes over the {self.max_size} byte cap",
            extra={"event_type": "request_too_large", "content_length": size, "max_size": self.max_size}
        )
        limit_mb = self.max_size // (1024 * 1024)
        return JSONResponse(
            status_code=413,
            content={
                "success": False,
                "message": f"Request body too large. Maximum size is {limit_mb}MB",
            }
        )


__all__ = [
    "RequestLoggingMiddleware",
    "SecurityHeadersMiddleware",
    "RequestSizeLimitMiddleware",
    "should_skip_logging",
    "extract_project_id",
    "SKIP_LOGGING_PATHS",
    "SECURITY_HEADERS",
]
