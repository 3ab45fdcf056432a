"""
Status API routes - Health checks for AutoNest dependencies.

Public endpoints (no auth). /v1/status is cached to limit upstream checks.
"""

import asyncio
import time
from datetime import UTC, datetime
from enum import Enum

import httpx
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from structlog import get_logger

from autonest.api.dependencies import get_context
from autonest.context import AppContext
from autonest.exceptions import ConfigurationError

logger = get_logger(__name__)
router = APIRouter(tags=["status"])

CHECK_TIMEOUT = 5.0  # seconds
DEGRADED_LATENCY_THRESHOLD = 1000  # ms

# Cache last result for 10 seconds
_status_cache: dict[str, tuple[datetime, "ServiceStatusResponse"]] = {}
_CACHE_TTL_SECONDS = 10


class StatusLevel(str, Enum):
    """Status levels for health checks."""

    OPERATIONAL = "operational"
    DEGRADED = "degraded"
    OUTAGE = "outage"


class HealthResponse(BaseModel):
    """Response for /health."""

    status: str
    database: str
    timestamp: str


class ProviderStatus(BaseModel):
    """Status of a single provider."""

    status: StatusLevel
    latency_ms: int | None = None
    last_check: str = Field(..., description="ISO 8601 timestamp")
    message: str | None = None


class ServiceStatusResponse(BaseModel):
    """Response for /v1/status endpoint."""

    service: str = "autonest"
    status: StatusLevel
    timestamp: str = Field(..., description="ISO 8601 timestamp")
    version: str
    providers: dict[str, ProviderStatus]


def _level_for_latency(latency_ms: int) -> StatusLevel:
    if latency_ms > DEGRADED_LATENCY_THRESHOLD:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


async def check_database(
    session_factory: async_sessionmaker[AsyncSession] | None,
) -> ProviderStatus:
    """Check database connectivity."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    if session_factory is None:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async with session_factory() as session:
            await session.execute(text("SELECT 1"))
    except (SQLAlchemyError, OSError) as e:
        logger.warning("database_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    level = _level_for_latency(latency_ms)
    return ProviderStatus(
        status=level,
        latency_ms=latency_ms,
        last_check=timestamp,
        message="High latency" if level == StatusLevel.DEGRADED else None,
    )


async def check_paypal(base_url: str, configured: bool) -> ProviderStatus:
    """Check PayPal REST API reachability."""
    start = time.perf_counter()
    timestamp = datetime.now(UTC).isoformat()

    if not configured:
        return ProviderStatus(
            status=StatusLevel.OPERATIONAL,
            latency_ms=0,
            last_check=timestamp,
            message="Not configured",
        )

    try:
        async with httpx.AsyncClient(timeout=CHECK_TIMEOUT) as client:
            # Unauthenticated token request; 401 means the endpoint is reachable
            response = await client.post(f"{base_url}/v1/oauth2/token")
    except httpx.TimeoutException:
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=int(CHECK_TIMEOUT * 1000),
            last_check=timestamp,
            message="Timeout",
        )
    except httpx.HTTPError as e:
        logger.warning("paypal_health_check_failed", error=str(e))
        return ProviderStatus(
            status=StatusLevel.OUTAGE,
            latency_ms=None,
            last_check=timestamp,
            message="Connection failed",
        )

    latency_ms = int((time.perf_counter() - start) * 1000)
    if response.status_code in (200, 400, 401):
        level = _level_for_latency(latency_ms)
        return ProviderStatus(
            status=level,
            latency_ms=latency_ms,
            last_check=timestamp,
            message="High latency" if level == StatusLevel.DEGRADED else None,
        )

    return ProviderStatus(
        status=StatusLevel.DEGRADED,
        latency_ms=latency_ms,
        last_check=timestamp,
        message=f"Unexpected status: {response.status_code}",
    )


def calculate_overall_status(providers: dict[str, ProviderStatus]) -> StatusLevel:
    """Calculate overall service status from provider statuses."""
    statuses = [p.status for p in providers.values()]

    if StatusLevel.OUTAGE in statuses:
        return StatusLevel.OUTAGE
    if StatusLevel.DEGRADED in statuses:
        return StatusLevel.DEGRADED
    return StatusLevel.OPERATIONAL


@router.get("/health", response_model=HealthResponse)
async def health_check(context: AppContext = Depends(get_context)) -> HealthResponse:
    """
    Health check for load balancer.

    Verifies database connectivity.
    """
    try:
        async with context.sessions()() as session:
            await session.execute(text("SELECT 1"))
    except ConfigurationError as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "not configured",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc
    except (SQLAlchemyError, OSError) as exc:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail={
                "status": "unhealthy",
                "database": "disconnected",
                "error": str(exc),
                "timestamp": datetime.now(UTC).isoformat(),
            },
        ) from exc

    return HealthResponse(
        status="healthy",
        database="connected",
        timestamp=datetime.now(UTC).isoformat(),
    )


@router.get("/v1/status", response_model=ServiceStatusResponse)
async def get_status(context: AppContext = Depends(get_context)) -> ServiceStatusResponse:
    """
    Get AutoNest service status.

    Checks the database and PayPal concurrently. Cached for 10 seconds.
    """
    cache_key = "status"
    now = datetime.now(UTC)

    if cache_key in _status_cache:
        cached_time, cached_response = _status_cache[cache_key]
        age_seconds = (now - cached_time).total_seconds()
        if age_seconds < _CACHE_TTL_SECONDS:
            logger.debug("status_cache_hit", age_seconds=age_seconds)
            return cached_response

    settings = context.settings
    database_status, paypal_status = await asyncio.gather(
        check_database(context.session_factory),
        check_paypal(
            settings.paypal_base_url,
            configured=bool(settings.paypal_client_id and settings.paypal_client_secret),
        ),
    )

    providers = {
        "database": database_status,
        "paypal": paypal_status,
    }

    response = ServiceStatusResponse(
        status=calculate_overall_status(providers),
        timestamp=now.isoformat(),
        version=settings.api_version,
        providers=providers,
    )

    _status_cache[cache_key] = (now, response)

    return response
