"""
Reviewer authorization.

Admin endpoints (photo review, finalize, location correction, listings) are
guarded by a shared API key sent in ``X-API-Key``. When no key is configured
the guard is disabled, which is the local development default.
"""

from __future__ import annotations

import secrets
from typing import Optional

import structlog
from fastapi import Depends, HTTPException
from fastapi.security import APIKeyHeader

from app.core.config import Settings, get_settings

log = structlog.get_logger()

api_key_header = APIKeyHeader(name="X-API-Key", auto_error=False)


def verify_reviewer_key(presented: Optional[str], expected: str) -> bool:
    """Constant-time comparison; an empty expected key disables the check."""
    if not expected:
        return True
    if not presented:
        return False
    return secrets.compare_digest(presented.encode(), expected.encode())


async def require_reviewer(
    api_key: Optional[str] = Depends(api_key_header),
    settings: Settings = Depends(get_settings),
) -> None:
    if not verify_reviewer_key(api_key, settings.reviewer_api_key):
        log.warning("auth.reviewer_rejected", key_present=api_key is not None)
        raise HTTPException(status_code=401, detail="Invalid or missing reviewer API key")
