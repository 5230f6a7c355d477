"""
Health check endpoints.

Provides:
- /health - Basic liveness check (is the app running?)
- /ready - Readiness check (is the game store reachable?)
- /metrics - Live table counts
"""

import json
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Response

logger = logging.getLogger(__name__)

router = APIRouter(tags=["health"])

# Service references (set during app initialization)
_db_pool = None
_table_manager = None


def set_health_dependencies(db_pool=None, table_manager=None):
    """Set dependencies for health checks."""
    global _db_pool, _table_manager
    _db_pool = db_pool
    _table_manager = table_manager


@router.get("/health")
async def health_check():
    """
    Basic liveness check - is the app running?

    This endpoint should always return 200 if the process is alive.
    """
    return {
        "status": "ok",
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - can the app record finished games?

    Returns 503 if the database is configured but unreachable.
    """
    checks = {}
    overall_healthy = True

    if _db_pool is not None:
        try:
            async with _db_pool.acquire() as conn:
                await conn.fetchval("SELECT 1")
            checks["database"] = {"status": "ok"}
        except Exception as e:
            logger.warning(f"Database health check failed: {e}")
            checks["database"] = {"status": "error", "message": str(e)}
            overall_healthy = False
    else:
        checks["database"] = {"status": "not_configured"}

    status_code = 200 if overall_healthy else 503
    return Response(
        content=json.dumps({
            "status": "ok" if overall_healthy else "degraded",
            "checks": checks,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }),
        status_code=status_code,
        media_type="application/json",
    )


@router.get("/metrics")
async def metrics():
    """Live table and player counts."""
    metrics_data = {
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }

    if _table_manager is not None:
        tables = list(_table_manager.tables.values())
        metrics_data.update({
            "active_tables": len(tables),
            "games_in_progress": sum(1 for t in tables if t.game.running),
            "total_players": sum(len(t.game.players) for t in tables),
            "total_spectators": sum(len(t.spectators) for t in tables),
        })

    return metrics_data
