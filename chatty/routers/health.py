"""
Health check endpoints
"""

import asyncio
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from chatty.database import get_store
from chatty.errors import ChatError
from chatty.services.telemetry import get_counters_snapshot
from chatty.services.websocket import ws_manager

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic liveness probe - returns healthy if the service is running"""
    return {"status": "healthy"}


@router.get("/health/store")
async def store_health_check(store=Depends(get_store)):
    """Document store connectivity check"""
    try:
        await store.ping()
        return {"status": "healthy", "store": "connected"}
    except ChatError as e:
        return {"status": "unhealthy", "store": e.code}


@router.get("/health/ready")
async def readiness_check(store=Depends(get_store)):
    """
    Kubernetes-style readiness probe.
    Returns 200 if all dependencies are healthy, 503 otherwise.
    """
    checks = {}
    all_healthy = True

    try:
        await asyncio.wait_for(store.ping(), timeout=5.0)
        checks["store"] = "healthy"
    except asyncio.TimeoutError:
        checks["store"] = "timeout"
        all_healthy = False
    except ChatError as e:
        checks["store"] = f"unhealthy: {e.code}"
        all_healthy = False

    response_data = {
        "status": "healthy" if all_healthy else "unhealthy",
        "checks": checks,
        "connections": ws_manager.get_stats(),
        "counters": get_counters_snapshot(),
        "timestamp": datetime.now(timezone.utc).isoformat()
    }

    if all_healthy:
        return response_data
    else:
        return JSONResponse(status_code=503, content=response_data)
