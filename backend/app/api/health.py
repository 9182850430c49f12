"""Health check endpoints."""

import json

from fastapi import APIRouter, Response, status
from sqlalchemy import text

from backend.app.core.database import crm_engine, engine

router = APIRouter()


@router.get("/health")
async def health_check():
    """Basic health check endpoint."""
    return {"status": "healthy"}


@router.get("/ready")
async def readiness_check():
    """
    Readiness check - verify dependencies are available.
    Fails if either database is down.
    """
    health_status = {
        "status": "ready",
        "checks": {
            "database": "unknown",
            "crm_database": "unknown",
        }
    }

    for check, db_engine in (("database", engine), ("crm_database", crm_engine)):
        try:
            async with db_engine.connect() as conn:
                await conn.execute(text("SELECT 1"))
            health_status["checks"][check] = "ok"
        except Exception as e:
            health_status["checks"][check] = f"failed: {str(e)}"
            health_status["status"] = "not_ready"

    if health_status["status"] != "ready":
        return Response(
            content=json.dumps(health_status),
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            media_type="application/json"
        )

    return health_status
