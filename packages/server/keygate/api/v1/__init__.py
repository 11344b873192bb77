"""
API v1 Router

Everything lives under /api/auth. Google sign-in routes are included only when
the deployment has Google client credentials.
"""

from fastapi import APIRouter

from keygate.core.config import Settings

from . import auth, google


def build_router(settings: Settings) -> APIRouter:
    router = APIRouter()
    router.include_router(auth.router, prefix="/auth", tags=["Authentication"])
    if settings.google_oauth_enabled:
        router.include_router(google.router, prefix="/auth", tags=["Google OAuth"])
    return router
