"""
eventpipes - routes queue and stream events into an idempotent processor.

Features:
- Queue pipe and stream pipe feeding one cache-backed processor
- Producer endpoints for both sources
- Structured logging with correlation IDs
- Health checks (liveness and readiness) and JSON metrics
"""
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from .config import get_settings
from .logging import setup_logging, get_logger
from .api.router import router
from .middleware.correlation import CorrelationMiddleware
from .middleware.error_handler import ErrorHandlerMiddleware
from .middleware.validation import PayloadSizeMiddleware
from .metrics.collector import collector
from .health import HealthChecker
from .services.pipeline import PipelineService

VERSION = "0.1.0"

settings = get_settings()

setup_logging(json_output=settings.LOG_JSON, level=settings.LOG_LEVEL, service_name="eventpipes")
logger = get_logger()

pipeline = PipelineService.from_settings(settings)
health_checker = HealthChecker(pipeline, service_name="eventpipes", version=VERSION)

app = FastAPI(
    title="eventpipes",
    version=VERSION,
    description="Queue and stream pipes into an idempotent, cache-backed event processor",
)
app.state.pipeline = pipeline

# Added last runs first: correlation ID, then error handling, then size checks
app.add_middleware(PayloadSizeMiddleware)
app.add_middleware(ErrorHandlerMiddleware)
app.add_middleware(CorrelationMiddleware)

app.include_router(router)


@app.get("/health")
async def health():
    """Liveness probe."""
    logger.debug("health_check_liveness")
    return health_checker.liveness()


@app.get("/health/ready")
async def health_ready():
    """
    Readiness probe.

    Returns:
        200: Cache and both sources reachable
        503: Service is not ready
    """
    logger.debug("health_check_readiness")
    result = await health_checker.readiness()
    status_code = 200 if result["status"] == "ready" else 503
    return JSONResponse(result, status_code=status_code)


@app.get("/metrics")
async def metrics():
    """In-process counters, gauges and histogram summaries."""
    return collector.get_metrics()


@app.on_event("startup")
async def startup_event():
    logger.info(
        "service_starting",
        version=VERSION,
        env=settings.ENV,
        source_backend=settings.SOURCE_BACKEND,
        cache_backend=settings.CACHE_BACKEND,
    )
    if settings.PIPES_ENABLED:
        await pipeline.start()


@app.on_event("shutdown")
async def shutdown_event():
    logger.info("service_stopping")
    await pipeline.stop()


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "eventpipes.main:app",
        host="0.0.0.0",
        port=settings.SERVICE_PORT,
    )
