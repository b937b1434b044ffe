"""
Liveness and readiness for the pipes service.

Readiness covers what a pipe needs to make progress: the cache endpoint the
processor writes to, both sources, and enough local disk and memory.
"""
from datetime import datetime, timezone
from typing import Any, Callable, Dict
import time
import psutil
from .logging import get_logger
from .services.pipeline import PipelineService

logger = get_logger()

GB = 1024**3
MB = 1024**2


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _threshold_status(available: float, minimum: float) -> str:
    """Error below the minimum, warning below twice the minimum."""
    if available < minimum:
        return "error"
    if available < minimum * 2:
        return "warning"
    return "ok"


class HealthChecker:
    def __init__(self, pipeline: PipelineService, service_name: str = "eventpipes", version: str = "0.1.0"):
        self.pipeline = pipeline
        self.service_name = service_name
        self.version = version

    def _base(self, status: str) -> Dict[str, Any]:
        return {
            "status": status,
            "service": self.service_name,
            "version": self.version,
            "timestamp": _now(),
        }

    def liveness(self) -> Dict[str, Any]:
        return self._base("ok")

    async def readiness(self) -> Dict[str, Any]:
        """
        Check the cache, both sources, disk and memory.

        Any check reporting "error" makes the service "not_ready"; warnings do
        not. Per-pipe stats are included for operators.
        """
        checks = await self._check_backends()
        checks["disk_space"] = self._resource_check("disk_space", self._disk)
        checks["memory"] = self._resource_check("memory", self._memory)

        ready = all(check["status"] != "error" for check in checks.values())
        result = self._base("ready" if ready else "not_ready")
        result["checks"] = checks
        result["pipes"] = self.pipeline.stats()
        return result

    async def _check_backends(self) -> Dict[str, Dict[str, Any]]:
        start = time.monotonic()
        try:
            results = await self.pipeline.health()
        except Exception as e:
            logger.warning("health.backends_failed", error=str(e))
            return {"backends": {"status": "error", "error": str(e)}}

        latency_ms = round((time.monotonic() - start) * 1000, 2)
        checks = {}
        for name, healthy in results.items():
            if healthy:
                checks[name] = {"status": "ok", "latency_ms": latency_ms}
            else:
                logger.warning("health.backend_unreachable", backend=name)
                checks[name] = {"status": "error"}
        return checks

    def _resource_check(self, name: str, probe: Callable[[], Dict[str, Any]]) -> Dict[str, Any]:
        try:
            return probe()
        except Exception as e:
            logger.warning("health.resource_check_failed", check=name, error=str(e))
            return {"status": "error", "error": str(e)}

    @staticmethod
    def _disk(min_free_gb: float = 1.0) -> Dict[str, Any]:
        disk = psutil.disk_usage("/")
        free_gb = disk.free / GB
        return {
            "status": _threshold_status(free_gb, min_free_gb),
            "available_gb": round(free_gb, 2),
            "total_gb": round(disk.total / GB, 2),
            "used_percent": disk.percent,
        }

    @staticmethod
    def _memory(min_available_mb: float = 50.0) -> Dict[str, Any]:
        memory = psutil.virtual_memory()
        available_mb = memory.available / MB
        return {
            "status": _threshold_status(available_mb, min_available_mb),
            "available_mb": round(available_mb, 2),
            "total_mb": round(memory.total / MB, 2),
            "used_percent": memory.percent,
        }
