"""Simple health and readiness endpoints."""

from __future__ import annotations

import logging
from typing import Any

from fastapi import APIRouter, HTTPException, status
from redis.exceptions import RedisError
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError

from company_importer.core.config import get_settings
from company_importer.db.session import engine
from company_importer.utils.redis_client import create_redis_client

logger = logging.getLogger(__name__)
router = APIRouter(prefix="/health", tags=["health"])

SERVICE_NAME = "company-importer-api"


@router.get("/live", summary="Liveness check")
async def live() -> dict[str, str]:
    """Indicates API process is running."""
    return {"status": "ok", "service": SERVICE_NAME}


def _check_database() -> dict[str, str]:
    try:
        with engine.connect() as conn:
            conn.execute(text("SELECT 1")).fetchone()
    except SQLAlchemyError as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Database connection failed: {str(e)}"}
    return {"status": "healthy", "message": "Database connection successful"}


def _check_redis(url: str) -> dict[str, str]:
    try:
        client = create_redis_client(url, decode_responses=True, socket_connect_timeout=2)
        client.ping()
        client.close()
    except RedisError as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        return {"status": "unhealthy", "message": f"Redis connection failed: {str(e)}"}
    return {"status": "healthy", "message": "Redis connection successful"}


@router.get("/ready", summary="Readiness check")
async def ready() -> dict[str, Any]:
    """Check the database, plus Redis when sessions or workers depend on it.

    Used by load balancers to determine if traffic should be routed to this instance.
    """
    settings = get_settings()
    checks: dict[str, Any] = {
        "status": "ok",
        "service": SERVICE_NAME,
        "checks": {"database": _check_database()},
    }

    if settings.import_session_backend == "redis":
        checks["checks"]["redis"] = _check_redis(settings.redis_url)
    if settings.import_executor == "celery":
        checks["checks"]["celery_broker"] = _check_redis(
            settings.celery_broker_url or settings.redis_url
        )

    if any(check["status"] != "healthy" for check in checks["checks"].values()):
        checks["status"] = "unhealthy"
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=checks,
        )

    return checks
