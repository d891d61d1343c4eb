"""Health check endpoint.

Unauthenticated. With no credential store configured the service still
serves demo sign-ins, so it reports healthy with the database marked
``not_configured``.
"""

from fastapi import APIRouter, Depends, Response, status
from pydantic import BaseModel

from vipbar.api.deps import get_security_state
from vipbar.core.database import check_db_connection
from vipbar.core.state import SecurityState

router = APIRouter(tags=["health"])


class HealthResponse(BaseModel):
    """Health check response."""

    status: str
    version: str
    database: str
    demo_mode: bool


@router.get(
    "/health",
    response_model=HealthResponse,
    responses={
        status.HTTP_200_OK: {"description": "Service is healthy"},
        status.HTTP_503_SERVICE_UNAVAILABLE: {"description": "Service is unhealthy"},
    },
)
async def health_check(
    response: Response,
    state: SecurityState = Depends(get_security_state),
) -> HealthResponse:
    """
    Health check endpoint.

    Returns 503 if a configured database is unreachable.
    """
    if state.session_maker is None:
        database = "not_configured"
        healthy = True
    else:
        healthy = await check_db_connection(state.session_maker)
        database = "connected" if healthy else "disconnected"

    # Set appropriate status code for container orchestration
    if not healthy:
        response.status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    return HealthResponse(
        status="healthy" if healthy else "unhealthy",
        version=state.settings.app_version,
        database=database,
        demo_mode=state.settings.demo_mode_enabled,
    )
