"""
Health check endpoints.
"""

import time
from typing import Any

from fastapi import APIRouter, Query, Request

router = APIRouter()

# Server start time for uptime calculation
_start_time = time.time()


@router.get("/health")
async def health_check(
    request: Request,
    detailed: bool = Query(False, description="Include runtime and session information"),
) -> dict[str, Any]:
    """
    Health check endpoint.

    Returns basic status, or detailed info if requested.
    """
    basic = {
        "status": "ok",
        "timestamp": int(time.time() * 1000),
    }

    if not detailed:
        return basic

    runtime = getattr(request.app.state, "runtime", None)
    registry = getattr(request.app.state, "registry", None)
    runtime_info: dict[str, Any] = {}
    if runtime is not None:
        await runtime.is_available()
        runtime_info = runtime.health_info()

    return {
        **basic,
        "runtime": runtime_info,
        "sessions": len(registry) if registry is not None else 0,
        "uptime": time.time() - _start_time,
        "version": "0.1.0",
    }
