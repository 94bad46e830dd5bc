from datetime import datetime, timezone
import logging
import sqlite3

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from expense_manager.core.security import get_app_settings
from expense_manager.db.dal import Database

router = APIRouter(tags=["health"])
logger = logging.getLogger("expense_manager.health")


@router.get("/health", summary="Service and database health")
def health(request: Request):
    settings = get_app_settings(request)
    db = Database(settings.db_path, busy_timeout=settings.db_busy_timeout_seconds)
    timestamp = datetime.now(timezone.utc).isoformat()
    try:
        db.ping()
    except sqlite3.Error:
        logger.exception("health check failed")
        return JSONResponse(
            status_code=503,
            content={
                "success": False,
                "message": "Service unhealthy",
                "database": "disconnected",
                "timestamp": timestamp,
            },
        )
    return {
        "success": True,
        "message": "Service healthy",
        "database": "connected",
        "timestamp": timestamp,
    }
