"""Client Portal API Router - aggregates all API routes."""

from fastapi import APIRouter

from portal.api import admin, admin_auth, client_auth

# Main API router - all routes will be prefixed with /api
api_router = APIRouter(prefix="/api")

# Include routers
api_router.include_router(admin_auth.router)
api_router.include_router(client_auth.router)
api_router.include_router(admin.router)
