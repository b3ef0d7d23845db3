"""
API v1 Router

Verification endpoints are mounted under /verifications.
"""

from fastapi import APIRouter
from . import verifications

router = APIRouter()

router.include_router(verifications.router, prefix="/verifications", tags=["Verifications"])


@router.get("/", tags=["API"])
async def api_root():
    """API root: returns version and available endpoints."""
    return {
        "api": "v1",
        "version": "0.1.0",
        "endpoints": [
            "/verifications/submit",
            "/verifications/submit-by-crop",
            "/verifications/{id}",
            "/verifications/user/{userId}",
            "/verifications/user/{userId}/current-status",
            "/verifications/crop/{cropId}",
            "/verifications/admin/{status}",
        ],
    }
