"""Security monitoring endpoints (admin only, enforced by the route policy)."""

from fastapi import APIRouter, Depends, Query, Request

from vipbar.api.deps import get_security_state
from vipbar.core.rate_limit import API_RATE_LIMIT, limiter
from vipbar.core.state import SecurityState
from vipbar.schemas.security import (
    SecurityEventListResponse,
    SecurityEventResponse,
    SecurityStatsResponse,
)
from vipbar.services.security_monitor import Severity

router = APIRouter(prefix="/security", tags=["security"])


@router.get("/events", response_model=SecurityEventListResponse)
@limiter.limit(API_RATE_LIMIT)
async def list_security_events(
    request: Request,
    limit: int = Query(100, ge=1, le=1000),
    severity: Severity | None = Query(None),
    state: SecurityState = Depends(get_security_state),
) -> SecurityEventListResponse:
    """Most recent security events first."""
    events = state.monitor.get_events(limit=limit, severity=severity)
    return SecurityEventListResponse(
        events=[SecurityEventResponse(**event.to_dict()) for event in events],
        total=len(events),
    )


@router.get("/stats", response_model=SecurityStatsResponse)
@limiter.limit(API_RATE_LIMIT)
async def get_security_stats(
    request: Request,
    state: SecurityState = Depends(get_security_state),
) -> SecurityStatsResponse:
    return SecurityStatsResponse(**state.monitor.get_stats())
