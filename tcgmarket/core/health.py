"""
Health check utilities for the marketplace service.

The database is always required. Redis is only checked when it backs the
report rate limiter; otherwise it is reported as skipped.
"""
import asyncio
from typing import Any, Dict

from sqlalchemy import text

from tcgmarket.core.config import get_settings
from tcgmarket.core.database import get_db_session_context
from tcgmarket.core.logging import get_logger
from tcgmarket.core.redis_client import get_redis

settings = get_settings()
logger = get_logger(__name__)


async def check_database() -> Dict[str, Any]:
    """
    Check the database connection.

    Returns:
        Dict with status and details
    """
    try:
        async with get_db_session_context() as session:
            result = await session.execute(text("SELECT 1"))
            result.scalar()

            return {
                "status": "healthy",
                "message": "Database connection successful",
            }
    except Exception as e:
        logger.error(f"Database health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "message": f"Database connection failed: {str(e)}",
            "error": str(e),
        }


async def check_redis() -> Dict[str, Any]:
    """
    Check Redis connection when the Redis rate-limit backend is configured.

    Returns:
        Dict with status and details
    """
    if settings.REPORT_RATE_LIMIT_BACKEND != "redis":
        return {
            "status": "skipped",
            "message": "Redis not configured for this deployment",
        }

    try:
        redis = await get_redis()
        if not redis:
            return {
                "status": "unhealthy",
                "message": "Redis client not available",
            }

        await redis.ping()

        return {
            "status": "healthy",
            "message": "Redis connection successful",
        }
    except Exception as e:
        logger.error(f"Redis health check failed: {e}", exc_info=True)
        return {
            "status": "unhealthy",
            "message": f"Redis connection failed: {str(e)}",
            "error": str(e),
        }


async def get_health_status() -> Dict[str, Any]:
    """
    Get aggregated health status for all components.

    Returns:
        Dict with overall status and component statuses
    """
    database_status, redis_status = await asyncio.gather(
        check_database(),
        check_redis(),
        return_exceptions=True,
    )

    if isinstance(database_status, Exception):
        database_status = {
            "status": "unhealthy",
            "message": f"Database check raised exception: {str(database_status)}",
        }

    if isinstance(redis_status, Exception):
        redis_status = {
            "status": "unhealthy",
            "message": f"Redis check raised exception: {str(redis_status)}",
        }

    component_statuses = [
        database_status.get("status"),
        redis_status.get("status"),
    ]

    if any(status == "unhealthy" for status in component_statuses):
        overall_status = "unhealthy"
    else:
        overall_status = "healthy"

    return {
        "status": overall_status,
        "service": settings.APP_NAME,
        "version": settings.APP_VERSION,
        "components": {
            "database": database_status,
            "redis": redis_status,
        },
    }
