"""Request size validation for producer endpoints."""
from fastapi import Request
from starlette.middleware.base import BaseHTTPMiddleware
from starlette.responses import JSONResponse
import structlog
from ..config import get_settings

log = structlog.get_logger()
settings = get_settings()


def _too_large(size: int, path: str) -> JSONResponse:
    log.warning("payload.too_large", size=size, max_size=settings.MAX_PAYLOAD_SIZE, path=path)
    return JSONResponse(
        status_code=413,
        content={
            "error": "PayloadTooLarge",
            "message": f"Request payload exceeds maximum size of {settings.MAX_PAYLOAD_SIZE} bytes",
            "max_size": settings.MAX_PAYLOAD_SIZE,
            "received_size": size,
        },
    )


class PayloadSizeMiddleware(BaseHTTPMiddleware):
    """Rejects POST bodies larger than MAX_PAYLOAD_SIZE with 413."""

    async def dispatch(self, request: Request, call_next):
        if request.method == "POST":
            content_length = request.headers.get("content-length")
            if content_length and int(content_length) > settings.MAX_PAYLOAD_SIZE:
                return _too_large(int(content_length), request.url.path)

            body = await request.body()
            if len(body) > settings.MAX_PAYLOAD_SIZE:
                return _too_large(len(body), request.url.path)

        return await call_next(request)
