"""Correlation IDs for producer requests, carried into the structured logs."""
import uuid
from contextvars import ContextVar
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
import structlog

CORRELATION_HEADER = "X-Correlation-ID"

correlation_id_var: ContextVar[str] = ContextVar("correlation_id", default="")


class CorrelationMiddleware(BaseHTTPMiddleware):
    """
    Reuses the caller's X-Correlation-ID or mints one, binds it to the log
    context for the request, and echoes it on the response.
    """

    async def dispatch(self, request: Request, call_next):
        correlation_id = request.headers.get(CORRELATION_HEADER) or uuid.uuid4().hex
        correlation_id_var.set(correlation_id)
        request.state.correlation_id = correlation_id

        with structlog.contextvars.bound_contextvars(
            correlation_id=correlation_id,
            http_method=request.method,
            http_path=request.url.path,
        ):
            response = await call_next(request)

        response.headers[CORRELATION_HEADER] = correlation_id
        return response


def get_correlation_id() -> str:
    return correlation_id_var.get()
