"""
Human-readable request identifiers.

Format: ``OR<D><T><YY><HH><MM><RRRR>``
- D, T: first letter of district / taluk, ``X`` when absent
- YY, HH, MM: two-digit year, 24h hour and minute in the configured timezone
- RRRR: random suffix in 1000-9999

Ids are not guaranteed unique on their own. The pre-insert existence check is a
fast path; the unique index on ``verifications.request_id`` is the real guard.
"""

from __future__ import annotations

import random
import re
from datetime import datetime, timezone
from typing import Callable, Optional
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.verification import Verification

REQUEST_ID_PREFIX = "OR"
REQUEST_ID_PATTERN = re.compile(r"^OR[A-Z]{2}\d{2}[0-2]\d[0-5]\d[1-9]\d{3}$")
DEFAULT_MAX_ATTEMPTS = 10


def _initial(value: Optional[str]) -> str:
    value = (value or "").strip()
    if value and value[0].isascii() and value[0].isalpha():
        return value[0].upper()
    return "X"


def format_request_id(district: Optional[str], taluk: Optional[str], moment: datetime, suffix: int) -> str:
    return (
        f"{REQUEST_ID_PREFIX}{_initial(district)}{_initial(taluk)}"
        f"{moment:%y}{moment:%H}{moment:%M}{suffix:04d}"
    )


class RequestIdGenerator:
    """Builds candidate ids and checks them against the store."""

    def __init__(
        self,
        tz_name: str = "Asia/Kolkata",
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        rng: Optional[random.Random] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.tz = ZoneInfo(tz_name)
        self.max_attempts = max_attempts
        self._rng = rng or random.SystemRandom()
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def generate(self, district: Optional[str] = None, taluk: Optional[str] = None) -> str:
        moment = self._clock()
        if moment.tzinfo is not None:
            moment = moment.astimezone(self.tz)
        return format_request_id(district, taluk, moment, self._rng.randint(1000, 9999))

    async def is_unique(self, session: AsyncSession, candidate: str) -> bool:
        result = await session.execute(
            select(Verification.id).where(Verification.request_id == candidate).limit(1)
        )
        return result.first() is None
