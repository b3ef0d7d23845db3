"""Per-photo review state within a single verification record."""

from __future__ import annotations

import uuid
from collections import defaultdict
from typing import Iterable, Sequence

from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.models.verification_photo import VerificationPhoto
from cropverify_shared.schemas.common import PhotoStatus
from cropverify_shared.schemas.verifications import PhotoSummary


def apply_review(photos: Sequence[VerificationPhoto], approved_ids: Iterable[str]) -> None:
    """Approve the listed photos and reject every other one.

    Unknown ids are ignored. The result depends only on ``approved_ids``, so
    repeating a review with the same set is a no-op.
    """
    approved = {str(pid).strip().lower() for pid in approved_ids}
    for photo in photos:
        if str(photo.id) in approved:
            photo.status = PhotoStatus.APPROVED.value
        else:
            photo.status = PhotoStatus.REJECTED.value


def summarize(photos: Sequence[VerificationPhoto]) -> PhotoSummary:
    counts = defaultdict(int)
    for photo in photos:
        counts[photo.status] += 1
    return PhotoSummary(
        total=len(photos),
        approved=counts[PhotoStatus.APPROVED.value],
        rejected=counts[PhotoStatus.REJECTED.value],
        pending=counts[PhotoStatus.PENDING.value],
    )


def has_approved_photo(photos: Sequence[VerificationPhoto]) -> bool:
    return any(p.status == PhotoStatus.APPROVED.value for p in photos)


async def get_photos(session: AsyncSession, verification_id: uuid.UUID) -> list[VerificationPhoto]:
    result = await session.execute(
        select(VerificationPhoto)
        .where(VerificationPhoto.verification_id == verification_id)
        .order_by(VerificationPhoto.position)
    )
    return list(result.scalars().all())


async def get_photos_for(
    session: AsyncSession, verification_ids: Sequence[uuid.UUID]
) -> dict[uuid.UUID, list[VerificationPhoto]]:
    """Photos for many records in one query, keyed by record id."""
    grouped: dict[uuid.UUID, list[VerificationPhoto]] = defaultdict(list)
    if not verification_ids:
        return grouped
    result = await session.execute(
        select(VerificationPhoto)
        .where(VerificationPhoto.verification_id.in_(verification_ids))
        .order_by(VerificationPhoto.verification_id, VerificationPhoto.position)
    )
    for photo in result.scalars().all():
        grouped[photo.verification_id].append(photo)
    return grouped
