"""
Health, readiness and metrics endpoints.

Response bodies follow the "Health Check Response Format for HTTP APIs"
draft: an overall ``status`` of pass / warn / fail plus per-component
``checks``. Readiness answers 503 only when a check fails outright.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from sqlalchemy.exc import SQLAlchemyError
from typing import Awaitable, Callable, Dict, Any, Iterable, Optional
from datetime import datetime, timezone
from enum import Enum
import os
import time
import asyncio
import psutil
import logging

logger = logging.getLogger(__name__)

ExtraCheck = Callable[[], Awaitable[Dict[str, Any]]]

def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")

class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"

class ServiceHealth:
    def __init__(
        self,
        service_name: str,
        version: str = "1.0.0",
        engine: Optional[Engine] = None,
        required_env: Iterable[str] = (),
        extra_checks: Optional[Dict[str, ExtraCheck]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine = engine
        self.required_env = tuple(required_env)
        self.extra_checks = dict(extra_checks or {})
        self.start_time = time.time()
        self.checks_performed = 0
        self.last_check_time = None

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        async def health_check() -> Dict[str, Any]:
            """Liveness for load balancers; touches no dependency."""
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now()
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        async def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        async def readiness() -> JSONResponse:
            checks = await self._perform_readiness_checks()
            overall_status = self._calculate_overall_status(checks)
            status_code = (status.HTTP_503_SERVICE_UNAVAILABLE if overall_status == HealthStatus.FAIL
                           else status.HTTP_200_OK)
            return JSONResponse(status_code=status_code, content={
                "status": overall_status,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "checks": checks,
                "serviceId": self.service_name,
                "description": f"{self.service_name} service",
                "timestamp": _now()
            })

        @router.get("/health/startup")
        async def startup():
            checks = {
                "database:migrations": await asyncio.to_thread(self._check_migrations),
                "config:environment": self._check_environment(),
            }
            if self._calculate_overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks}
                )
            return {"status": "started", "checks": checks}

        @router.get("/metrics")
        async def metrics() -> Dict[str, Any]:
            process = psutil.Process()
            memory = process.memory_info()
            return {
                "service": self.service_name,
                "version": self.version,
                "uptime_seconds": time.time() - self.start_time,
                "checks_performed": self.checks_performed,
                "timestamp": _now(),
                "system": {
                    "memory_rss_bytes": memory.rss,
                    "memory_vms_bytes": memory.vms,
                    "cpu_percent": process.cpu_percent(),
                    "num_threads": process.num_threads()
                }
            }

        return router

    async def _perform_readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        self.last_check_time = time.time()

        checks = {"database:connectivity": await asyncio.to_thread(self._check_database)}
        for name, check in self.extra_checks.items():
            checks[name] = await check()
        checks["storage:disk_space"] = self._check_threshold(
            lambda: psutil.disk_usage('/').free / (1024 ** 3), fail_below=1, warn_below=5, unit="GB")
        checks["system:memory"] = self._check_threshold(
            lambda: psutil.virtual_memory().available / (1024 ** 2), fail_below=100, warn_below=500, unit="MB")
        return checks

    def _check_database(self) -> Dict[str, Any]:
        if self.engine is None:
            return {"status": HealthStatus.WARN, "componentType": "datastore",
                    "output": "No database configured", "time": _now()}
        start_time = time.perf_counter()
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
        except SQLAlchemyError as e:
            logger.error(f"Database health check failed: {e}")
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _now()}
        return {
            "status": HealthStatus.PASS,
            "componentType": "datastore",
            "observedValue": f"{(time.perf_counter() - start_time) * 1000:.2f}",
            "observedUnit": "ms",
            "time": _now()
        }

    def _check_threshold(self, observe: Callable[[], float], fail_below: float, warn_below: float,
                         unit: str) -> Dict[str, Any]:
        try:
            value = observe()
        except (OSError, psutil.Error) as e:
            return {"status": HealthStatus.WARN, "componentType": "system", "output": str(e), "time": _now()}
        if value < fail_below:
            status_val = HealthStatus.FAIL
        elif value < warn_below:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return {
            "status": status_val,
            "componentType": "system",
            "observedValue": f"{value:.2f}",
            "observedUnit": unit,
            "time": _now()
        }

    def _check_migrations(self) -> Dict[str, Any]:
        if self.engine is None:
            return {"status": HealthStatus.WARN, "componentType": "datastore",
                    "output": "No database configured", "time": _now()}
        try:
            exists = inspect(self.engine).has_table("alembic_version")
        except SQLAlchemyError as e:
            return {"status": HealthStatus.FAIL, "componentType": "datastore", "output": str(e), "time": _now()}
        if exists:
            return {"status": HealthStatus.PASS, "componentType": "datastore", "time": _now()}
        return {"status": HealthStatus.WARN, "componentType": "datastore",
                "output": "Migrations table not found", "time": _now()}

    def _check_environment(self) -> Dict[str, Any]:
        missing = [var for var in self.required_env if not os.getenv(var)]
        if missing:
            return {
                "status": HealthStatus.FAIL,
                "componentType": "configuration",
                "output": f"Missing environment variables: {', '.join(missing)}",
                "time": _now()
            }
        return {"status": HealthStatus.PASS, "componentType": "configuration", "time": _now()}

    def _calculate_overall_status(self, checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
