"""
Health and metrics endpoints.

Follows the "Health Check Response Format for HTTP APIs" draft: every check
reports pass/warn/fail and the overall status is the worst of them. Only a
failing check makes the service unready; warnings are reported but do not
take the pod out of rotation.
"""

from fastapi import APIRouter, status
from fastapi.responses import JSONResponse
from sqlalchemy import inspect, text
from sqlalchemy.engine import Engine
from typing import Any, Callable, Dict, Optional
import os
import time
import redis
from datetime import datetime, timezone
from enum import Enum
import psutil
import logging

logger = logging.getLogger(__name__)


class HealthStatus(str, Enum):
    PASS = "pass"
    FAIL = "fail"
    WARN = "warn"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


def _result(status_val: HealthStatus, component: str, **fields) -> Dict[str, Any]:
    return {"status": status_val, "componentType": component, "time": _now(), **fields}


class ServiceHealth:
    """
    Probe endpoints for one service.

    Args:
        service_name: Reported service id
        version: Reported version
        engine_provider: Returns the SQLAlchemy engine the service actually uses
        redis_url: Checked (as a warning-only dependency) when set
        required_settings: Returns the settings that must be non-empty before startup completes
    """

    def __init__(
        self,
        service_name: str,
        version: str,
        engine_provider: Callable[[], Engine],
        redis_url: Optional[str] = None,
        required_settings: Optional[Callable[[], Dict[str, Any]]] = None,
    ):
        self.service_name = service_name
        self.version = version
        self.engine_provider = engine_provider
        self.redis_url = redis_url
        self.required_settings = required_settings or (lambda: {})
        self.start_time = time.time()
        self.checks_performed = 0

    def create_health_router(self) -> APIRouter:
        router = APIRouter(tags=["health"])

        @router.get("/health", status_code=status.HTTP_200_OK)
        def health_check() -> Dict[str, Any]:
            return {
                "status": HealthStatus.PASS,
                "service": self.service_name,
                "version": self.version,
                "releaseId": os.getenv("RELEASE_ID", "unknown"),
                "timestamp": _now(),
            }

        @router.get("/health/live", status_code=status.HTTP_200_OK)
        def liveness() -> Dict[str, Any]:
            return {"status": "alive"}

        @router.get("/health/ready")
        def readiness() -> JSONResponse:
            checks = self.readiness_checks()
            overall = self.overall_status(checks)
            code = status.HTTP_503_SERVICE_UNAVAILABLE if overall == HealthStatus.FAIL else status.HTTP_200_OK
            return JSONResponse(
                status_code=code,
                content={
                    "status": overall.value,
                    "version": self.version,
                    "releaseId": os.getenv("RELEASE_ID", "unknown"),
                    "serviceId": self.service_name,
                    "checks": checks,
                    "timestamp": _now(),
                },
            )

        @router.get("/health/startup")
        def startup() -> JSONResponse:
            checks = self.startup_checks()
            if self.overall_status(checks) == HealthStatus.FAIL:
                return JSONResponse(
                    status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                    content={"status": "starting", "checks": checks},
                )
            return JSONResponse(content={"status": "started", "checks": checks})

        @router.get("/metrics")
        def metrics() -> Dict[str, Any]:
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
                    "num_threads": process.num_threads(),
                },
            }

        return router

    def readiness_checks(self) -> Dict[str, Dict[str, Any]]:
        self.checks_performed += 1
        checks = {"database:connectivity": self.check_database()}
        if self.redis_url:
            checks["cache:connectivity"] = self.check_redis()
        checks["storage:disk_space"] = self.check_disk_space()
        return checks

    def startup_checks(self) -> Dict[str, Dict[str, Any]]:
        return {
            "database:migrations": self.check_migrations(),
            "config:settings": self.check_settings(),
        }

    def check_database(self) -> Dict[str, Any]:
        try:
            start = time.perf_counter()
            with self.engine_provider().connect() as conn:
                conn.execute(text("SELECT 1")).fetchone()
            elapsed = (time.perf_counter() - start) * 1000
            return _result(HealthStatus.PASS, "datastore", observedValue=f"{elapsed:.2f}", observedUnit="ms")
        except Exception as e:
            logger.error(f"Database health check failed: {e}")
            return _result(HealthStatus.FAIL, "datastore", output=str(e))

    def check_redis(self) -> Dict[str, Any]:
        try:
            start = time.perf_counter()
            redis.from_url(self.redis_url, socket_connect_timeout=1).ping()
            elapsed = (time.perf_counter() - start) * 1000
            return _result(HealthStatus.PASS, "cache", observedValue=f"{elapsed:.2f}", observedUnit="ms")
        except redis.RedisError as e:
            # The token cache falls back to process memory
            return _result(HealthStatus.WARN, "cache", output=str(e))

    def check_disk_space(self) -> Dict[str, Any]:
        try:
            free_gb = psutil.disk_usage('/').free / (1024 ** 3)
        except OSError as e:
            return _result(HealthStatus.WARN, "system", output=str(e))
        if free_gb < 1:
            status_val = HealthStatus.FAIL
        elif free_gb < 5:
            status_val = HealthStatus.WARN
        else:
            status_val = HealthStatus.PASS
        return _result(status_val, "system", observedValue=f"{free_gb:.2f}", observedUnit="GB")

    def check_migrations(self) -> Dict[str, Any]:
        try:
            if inspect(self.engine_provider()).has_table("alembic_version"):
                return _result(HealthStatus.PASS, "datastore")
            return _result(HealthStatus.WARN, "datastore", output="Migrations table not found")
        except Exception as e:
            return _result(HealthStatus.FAIL, "datastore", output=str(e))

    def check_settings(self) -> Dict[str, Any]:
        missing = sorted(name for name, value in self.required_settings().items() if not value)
        if missing:
            return _result(HealthStatus.FAIL, "configuration", output=f"Missing settings: {', '.join(missing)}")
        return _result(HealthStatus.PASS, "configuration")

    @staticmethod
    def overall_status(checks: Dict[str, Dict[str, Any]]) -> HealthStatus:
        statuses = [check.get("status", HealthStatus.PASS) for check in checks.values()]
        if HealthStatus.FAIL in statuses:
            return HealthStatus.FAIL
        if HealthStatus.WARN in statuses:
            return HealthStatus.WARN
        return HealthStatus.PASS
