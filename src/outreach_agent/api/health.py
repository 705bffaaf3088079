"""Health check endpoints."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from outreach_agent import __version__
from outreach_agent.api.rate_limits import RateLimits, limiter
from outreach_agent.config import Settings
from outreach_agent.core.retry import get_circuit_breaker_status
from outreach_agent.dependencies import get_app_session_factory, get_app_settings


router = APIRouter()


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    timestamp: str
    version: str
    instance_id: str
    environment: str
    checks: dict[str, Any]


@router.get("/health")
@limiter.limit(RateLimits.HEALTH)
async def health_check(
    request: Request,
    settings: Annotated[Settings, Depends(get_app_settings)],
    session_factory: Annotated[
        async_sessionmaker[AsyncSession], Depends(get_app_session_factory)
    ],
) -> HealthResponse:
    """Perform health check.

    Components checked:
    - Database: Connectivity test via SELECT 1
    - Schedulers: State and metrics of the reminder and campaign loops
    - Telephony: Provider circuit breakers
    """
    loops = getattr(request.app.state, "loops", {})

    checks: dict[str, Any] = {
        "api": "ok",
        "database": await _check_database(session_factory),
        "schedulers": {name: loop.get_status() for name, loop in loops.items()},
        "telephony": {
            "provider": settings.telephony.provider,
            "circuit_breakers": get_circuit_breaker_status(),
        },
        "conversation": "enabled" if settings.conversation.enabled else "disabled",
    }

    return HealthResponse(
        status=_determine_overall_status(checks),
        timestamp=datetime.now(timezone.utc).isoformat(),
        version=__version__,
        instance_id=settings.instance_id,
        environment=settings.environment,
        checks=checks,
    )


async def _check_database(
    session_factory: async_sessionmaker[AsyncSession],
) -> str | dict[str, Any]:
    """Check database connectivity.

    Returns:
        "ok" if connected, error details otherwise
    """
    try:
        async with session_factory() as session:
            result = await session.execute(text("SELECT 1"))
            result.fetchone()
        return "ok"
    except Exception as e:
        return {
            "status": "error",
            "message": str(e),
        }


def _determine_overall_status(checks: dict[str, Any]) -> str:
    """Determine overall health status from component checks.

    Returns:
        "unhealthy" if the database is unreachable, "degraded" if a
        scheduler is not running or a circuit is open, else "healthy"
    """
    if checks["database"] != "ok":
        return "unhealthy"

    for status in checks["schedulers"].values():
        if not status.get("is_running"):
            return "degraded"

    for breaker in checks["telephony"]["circuit_breakers"].values():
        if breaker.get("state") != "closed":
            return "degraded"

    return "healthy"
