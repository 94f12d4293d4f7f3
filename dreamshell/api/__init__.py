"""
API routes for the dreamshell server.
"""

from fastapi import APIRouter

from dreamshell.api import health, sessions

# Create main API router
api_router = APIRouter(prefix="/api")

api_router.include_router(health.router, tags=["health"])
api_router.include_router(sessions.router, tags=["sessions"])
