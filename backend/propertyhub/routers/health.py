"""Health check endpoints for load balancers and monitoring."""

from datetime import datetime

from fastapi import APIRouter, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from propertyhub.auth.cache import InMemoryPermissionCache, RedisPermissionCache
from propertyhub.config import settings
from propertyhub.database import async_session
from propertyhub.utils.cache import ping_redis

router = APIRouter(tags=["health"])


@router.get("/health")
async def health_check():
    """Lightweight health check for load balancer (no DB/Redis check)."""
    return {
        "status": "ok",
        "service": "PropertyHub",
        "timestamp": datetime.utcnow().isoformat(),
        "environment": settings.environment,
    }


@router.get("/health/ready")
async def readiness_check(request: Request):
    """Readiness check: database, plus Redis when it backs the permission cache.

    Returns 503 if any required dependency is unhealthy.
    """
    checks = {
        "service": "ok",
        "database": "unknown",
        "permission_cache": "unknown",
    }
    overall_healthy = True

    factory = getattr(request.app.state, "session_factory", async_session)
    try:
        async with factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except (SQLAlchemyError, OSError) as e:
        checks["database"] = f"error: {str(e)[:100]}"
        overall_healthy = False

    cache = request.app.state.auth.cache
    if isinstance(cache, RedisPermissionCache):
        if await ping_redis():
            checks["permission_cache"] = "ok"
        else:
            checks["permission_cache"] = "error: redis unreachable"
            overall_healthy = False
    elif isinstance(cache, InMemoryPermissionCache):
        stats = cache.stats()
        checks["permission_cache"] = (
            f"ok (memory, {stats['entries']} entries, "
            f"{stats['hits']} hits, {stats['misses']} misses)"
        )

    return JSONResponse(
        status_code=status.HTTP_200_OK if overall_healthy else status.HTTP_503_SERVICE_UNAVAILABLE,
        content={
            "status": "healthy" if overall_healthy else "unhealthy",
            "service": "PropertyHub",
            "checks": checks,
            "timestamp": datetime.utcnow().isoformat(),
        },
    )
