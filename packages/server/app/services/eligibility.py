"""
Submission eligibility.

A user's latest record decides whether they may submit again:
- no record: allowed
- pending: blocked, the request is under review
- approved: blocked, the user is already verified
- rejected: allowed; the next submission creates a new record
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.verification import Verification
from cropverify_shared.schemas.common import VerificationStatus

BLOCK_MESSAGES: dict[VerificationStatus, str] = {
    VerificationStatus.PENDING: "Your request is under review by the support team.",
    VerificationStatus.APPROVED: "Cannot submit new request. You are already verified.",
}
UNKNOWN_STATUS_MESSAGE = "Unknown status. Please contact support."


@dataclass(frozen=True)
class Eligibility:
    can_submit: bool
    block_reason: Optional[str] = None
    latest: Optional[Verification] = None

    @property
    def is_resubmission(self) -> bool:
        return self.latest is not None and self.latest.status == VerificationStatus.REJECTED.value


async def latest_verification(session: AsyncSession, user_id: str) -> Optional[Verification]:
    result = await session.execute(
        select(Verification)
        .where(Verification.user_id == user_id)
        .order_by(Verification.created_at.desc())
        .limit(1)
    )
    return result.scalars().first()


def evaluate_latest(latest: Optional[Verification]) -> Eligibility:
    if latest is None:
        return Eligibility(can_submit=True)
    try:
        status = VerificationStatus(latest.status)
    except ValueError:
        return Eligibility(can_submit=False, block_reason=UNKNOWN_STATUS_MESSAGE, latest=latest)
    if status is VerificationStatus.REJECTED:
        return Eligibility(can_submit=True, latest=latest)
    return Eligibility(can_submit=False, block_reason=BLOCK_MESSAGES[status], latest=latest)


async def evaluate(session: AsyncSession, user_id: str) -> Eligibility:
    """Read-only eligibility check for ``user_id``."""
    return evaluate_latest(await latest_verification(session, user_id))
