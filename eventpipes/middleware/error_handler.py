"""Turns exceptions escaping the routes into JSON error bodies."""
from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware
import structlog
from .correlation import get_correlation_id
from ..errors import CacheUnavailable, PipeError, SourceUnavailable, TransformError

log = structlog.get_logger()

# Most specific first; any other PipeError is a 500
STATUS_BY_ERROR: list[tuple[type[PipeError], int]] = [
    (SourceUnavailable, 503),
    (CacheUnavailable, 503),
    (TransformError, 422),
]


def status_for(exc: PipeError) -> int:
    for error_type, status in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return status
    return 500


def _error_body(request: Request, error: str, message: str) -> dict:
    return {
        "error": error,
        "message": message,
        "correlation_id": get_correlation_id(),
        "path": request.url.path,
    }


class ErrorHandlerMiddleware(BaseHTTPMiddleware):
    async def dispatch(self, request: Request, call_next):
        try:
            return await call_next(request)
        except PipeError as exc:
            status = status_for(exc)
            log.warning("http.pipe_error", error=str(exc), error_type=type(exc).__name__, status=status)
            return JSONResponse(status_code=status, content=_error_body(request, type(exc).__name__, str(exc)))
        except Exception as exc:
            log.error("http.unhandled_error", error=str(exc), error_type=type(exc).__name__, exc_info=True)
            return JSONResponse(
                status_code=500,
                content=_error_body(request, "InternalServerError", "An unexpected error occurred"),
            )
