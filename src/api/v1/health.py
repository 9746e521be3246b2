"""Health check endpoints for CampusDesk API v1.

Liveness and readiness probes for Cloud Run / Kubernetes.  Readiness
checks the complaint store, the stats cache and the notification worker.
"""

from __future__ import annotations

import time

import structlog
from fastapi import APIRouter, Request
from pydantic import BaseModel

from src.services.access_scope import COMPLAINTS

logger: structlog.stdlib.BoundLogger = structlog.get_logger(__name__)

router = APIRouter(prefix="/health", tags=["health"])


class HealthResponse(BaseModel):
    status: str
    version: str
    uptime_seconds: float


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, str]


@router.get("", response_model=HealthResponse)
async def health_check(request: Request) -> HealthResponse:
    """Liveness probe; does not touch downstream dependencies."""
    start_time: float = getattr(request.app.state, "start_time", time.time())
    return HealthResponse(
        status="healthy",
        version=request.app.version,
        uptime_seconds=round(time.time() - start_time, 2),
    )


@router.get("/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request) -> ReadinessResponse:
    """Readiness probe.

    The store is the only hard dependency; a cache on its in-memory
    fallback or a stopped notification worker reports ``degraded``.
    """
    checks: dict[str, str] = {}
    all_ok = True

    store = getattr(request.app.state, "store", None)
    if store is not None:
        try:
            await store.query(COMPLAINTS, limit=1)
            checks["store"] = "ok"
        except Exception as exc:
            checks["store"] = f"error: {exc!s}"
            all_ok = False
    else:
        checks["store"] = "not_configured"
        all_ok = False

    cache = getattr(request.app.state, "cache", None)
    if cache is not None:
        try:
            checks["cache"] = f"ok ({cache.backend_name})" if await cache.ping() else "degraded"
        except Exception as exc:
            checks["cache"] = f"error: {exc!s}"
    else:
        checks["cache"] = "not_configured"

    worker = getattr(request.app.state, "notification_worker", None)
    if worker is not None and worker.running:
        checks["notifications"] = "ok"
    else:
        checks["notifications"] = "stopped"

    triage = getattr(request.app.state, "triage", None)
    checks["triage"] = "ok" if triage is not None and triage.enabled else "fallback_only"

    status = "ready" if all_ok else "degraded"
    logger.info("health.readiness_check", status=status, checks=checks)
    return ReadinessResponse(status=status, checks=checks)
