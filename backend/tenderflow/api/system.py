"""System status and metrics endpoints."""

from __future__ import annotations

import time
from typing import Any

import redis
from fastapi import APIRouter, Depends

from tenderflow.config import get_settings
from tenderflow.deps import get_executor, get_progress_store
from tenderflow.services.progress_store import ProgressStore
from tenderflow.services.unit_executor import StreamingUnitExecutor

router = APIRouter()
settings = get_settings()


def _check_redis() -> dict[str, Any]:
    """Check Redis connectivity and basic info."""
    t0 = time.time()
    try:
        r = redis.Redis.from_url(settings.REDIS_URL, socket_timeout=3)
        info = r.info("server")
        ping = r.ping()
        latency_ms = round((time.time() - t0) * 1000, 1)
        return {
            "status": "ok" if ping else "error",
            "latency_ms": latency_ms,
            "version": info.get("redis_version", "unknown"),
        }
    except Exception as e:
        return {
            "status": "error",
            "error": str(e),
        }


@router.get("/system/status")
async def system_status():
    """Progress backend health. Without it, runs still work but cannot resume."""
    backend = settings.PROGRESS_BACKEND.lower()
    if backend == "redis":
        progress = _check_redis()
    else:
        progress = {"status": "ok", "durable": False}
    progress["backend"] = backend
    return {
        "app": settings.APP_NAME,
        "workflow_base_url": settings.WORKFLOW_BASE_URL,
        "workflow_key_configured": bool(settings.WORKFLOW_API_KEY),
        "progress": progress,
    }


@router.get("/metrics/batch")
async def batch_metrics(
    executor: StreamingUnitExecutor = Depends(get_executor),
    store: ProgressStore = Depends(get_progress_store),
):
    """Executor usage counters and progress-store failure counters."""
    return {"executor": executor.get_metrics(), "progress": store.get_metrics()}
