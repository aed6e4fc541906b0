from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.orm import Session
import logging
import time

from ... import deps
from ....core.cache import CacheManager

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("")
def get_health(
    db: Session = Depends(deps.get_db),
    cache_manager: CacheManager = Depends(deps.get_cache),
):
    """Database, cache and host status - no authentication required"""
    health_status = {
        "status": "healthy",
        "timestamp": time.time(),
        "service": "exam-engine-api",
        "services": {}
    }

    try:
        db.execute(text("SELECT 1"))
        health_status["services"]["database"] = "healthy"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        health_status["services"]["database"] = f"error: {str(e)}"
        health_status["status"] = "unhealthy"

    if cache_manager.enabled:
        health_status["services"]["cache"] = "healthy" if cache_manager.health_check() else "unhealthy"
    else:
        health_status["services"]["cache"] = "disabled"

    try:
        import psutil
        health_status["system"] = {
            "cpu_percent": psutil.cpu_percent(interval=0),
            "memory_percent": psutil.virtual_memory().percent,
            "disk_percent": psutil.disk_usage('/').percent
        }
    except Exception as e:
        health_status["system"] = f"error: {str(e)}"

    return health_status
