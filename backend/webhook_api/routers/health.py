"""
Liveness (/api/health) and dependency status (/api/health/detailed).
"""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse
from sqlalchemy import text
from sqlalchemy.orm import Session

from shared.config.settings import settings
from shared.infrastructure.db import get_db
from shared.utils.health import (
    HealthStatus,
    aggregate_health_checks,
    health_check_with_timeout,
)
from webhook_api.services.payments.circuit_breaker import get_all_breaker_stats


router = APIRouter(prefix="/api", tags=["health"])

SERVICE_NAME = "webhook-api"


@router.get("/health")
def health_check():
    """Liveness only; touches no dependency."""
    return {
        "status": HealthStatus.HEALTHY.value,
        "service": SERVICE_NAME,
        "environment": settings.environment,
    }


@health_check_with_timeout(timeout=3.0, component="database")
async def check_database_health(db: Session) -> dict:
    db.execute(text("SELECT 1"))
    return {"dialect": db.get_bind().dialect.name}


@router.get("/health/detailed")
async def detailed_health_check(db: Session = Depends(get_db)):
    """
    Database connectivity plus circuit breaker state of every payment provider.

    Returns 503 Service Unavailable if the database is down. An open breaker
    reports "degraded" but keeps 200: the webhooks still answer (with 503).
    """
    health_results = await aggregate_health_checks([check_database_health(db)])
    breakers = get_all_breaker_stats()

    checks = {
        "service": SERVICE_NAME,
        "environment": settings.environment,
        "status": health_results["status"],
        "dependencies": health_results["components"],
        "circuit_breakers": breakers,
    }

    if health_results["status"] != HealthStatus.HEALTHY.value:
        return JSONResponse(content=checks, status_code=503)

    if any(stats["state"] != "closed" for stats in breakers.values()):
        checks["status"] = HealthStatus.DEGRADED.value
    return checks
