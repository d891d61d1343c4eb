"""VIP Bar API Router - aggregates the /api routes."""

from fastapi import APIRouter

from vipbar.api import auth, security

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

api_router.include_router(auth.router)
api_router.include_router(security.router)
