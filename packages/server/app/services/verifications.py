"""
Verification read side: lookups, enrichment and admin search.

Writes go through ``app.services.lifecycle.VerificationLifecycle``.
"""

from __future__ import annotations

import math
import uuid
from datetime import datetime, time, timezone
from typing import Sequence, Union

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from app.core.errors import NotFound
from app.models.verification import Verification
from app.models.verification_photo import VerificationPhoto
from app.services.eligibility import evaluate_latest, latest_verification
from app.services.photo_review import get_photos, get_photos_for, summarize
from cropverify_shared.schemas.common import Pagination
from cropverify_shared.schemas.verifications import (
    CurrentStatusRead,
    LatestVerification,
    LocationRead,
    PhotoRead,
    VerificationFilter,
    VerificationPage,
    VerificationRead,
)

# Columns matched case-insensitively by substring in admin search
PARTIAL_MATCH_FIELDS = ("phone", "full_name", "crop_name", "village", "taluk", "district")


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def get_verification_or_404(
    session: AsyncSession, verification_id: Union[str, uuid.UUID]
) -> Verification:
    try:
        key = verification_id if isinstance(verification_id, uuid.UUID) else uuid.UUID(str(verification_id))
    except ValueError:
        raise NotFound("Verification request not found")
    record = await session.get(Verification, key)
    if record is None:
        raise NotFound("Verification request not found")
    return record


def to_read(record: Verification, photos: Sequence[VerificationPhoto]) -> VerificationRead:
    """Convert a Verification row and its photos to the API read model."""
    return VerificationRead(
        id=record.id,
        request_id=record.request_id,
        user_id=record.user_id,
        crop_id=record.crop_id,
        crop_name=record.crop_name,
        full_name=record.full_name,
        phone=record.phone,
        village=record.village,
        taluk=record.taluk,
        district=record.district,
        quantity=record.quantity,
        variety=record.variety,
        moisture=record.moisture,
        will_dry=record.will_dry,
        photos=[PhotoRead(id=p.id, url=p.url, status=p.status) for p in photos],
        photo_summary=summarize(photos),
        location=LocationRead(
            coordinates=[record.longitude, record.latitude],
            location_type=record.location_type,
        ),
        status=record.status,
        rejection_reason=record.rejection_reason,
        rejection_notes=record.rejection_notes,
        reviewed_at=record.reviewed_at,
        reviewed_by=record.reviewed_by,
        created_at=record.created_at,
        updated_at=record.updated_at,
    )


async def enrich_verification(session: AsyncSession, record: Verification) -> VerificationRead:
    return to_read(record, await get_photos(session, record.id))


async def enrich_verifications(
    session: AsyncSession, records: Sequence[Verification]
) -> list[VerificationRead]:
    photos = await get_photos_for(session, [r.id for r in records])
    return [to_read(r, photos.get(r.id, [])) for r in records]


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def list_for_user(session: AsyncSession, user_id: str) -> list[VerificationRead]:
    result = await session.execute(
        select(Verification)
        .where(Verification.user_id == user_id)
        .order_by(Verification.created_at.desc())
    )
    return await enrich_verifications(session, list(result.scalars().all()))


async def list_for_crop(session: AsyncSession, crop_id: str) -> list[VerificationRead]:
    result = await session.execute(
        select(Verification)
        .where(Verification.crop_id == crop_id)
        .order_by(Verification.created_at.desc())
    )
    return await enrich_verifications(session, list(result.scalars().all()))


async def current_status(session: AsyncSession, user_id: str) -> CurrentStatusRead:
    """The user's latest record and whether a new submission is allowed."""
    latest = await latest_verification(session, user_id)
    eligibility = evaluate_latest(latest)
    if latest is None:
        return CurrentStatusRead(has_verification=False, can_submit=True)

    photos = await get_photos(session, latest.id)
    return CurrentStatusRead(
        has_verification=True,
        can_submit=eligibility.can_submit,
        block_message=eligibility.block_reason,
        verification=LatestVerification(
            id=latest.id,
            request_id=latest.request_id,
            status=latest.status,
            rejection_reason=latest.rejection_reason,
            photo_summary=summarize(photos),
            created_at=latest.created_at,
            reviewed_at=latest.reviewed_at,
        ),
    )


# ---------------------------------------------------------------------------
# Admin search
# ---------------------------------------------------------------------------


def build_search_statement(filters: VerificationFilter):
    """SELECT for the admin listing; each filter narrows independently."""
    stmt = select(Verification)

    if filters.status:
        stmt = stmt.where(Verification.status == filters.status.value)
    if filters.user_id:
        stmt = stmt.where(Verification.user_id == filters.user_id)

    for name in PARTIAL_MATCH_FIELDS:
        value = getattr(filters, name)
        if value:
            stmt = stmt.where(getattr(Verification, name).icontains(value, autoescape=True))

    if filters.from_date:
        start = datetime.combine(filters.from_date, time.min, tzinfo=timezone.utc)
        stmt = stmt.where(Verification.created_at >= start)
    if filters.to_date:
        end = datetime.combine(filters.to_date, time.max, tzinfo=timezone.utc)
        stmt = stmt.where(Verification.created_at <= end)

    return stmt


async def search_verifications(
    session: AsyncSession,
    filters: VerificationFilter,
    page: int = 1,
    limit: int = 10,
) -> VerificationPage:
    stmt = build_search_statement(filters)

    total = (
        await session.execute(select(func.count()).select_from(stmt.subquery()))
    ).scalar_one()

    result = await session.execute(
        stmt.order_by(Verification.created_at.desc())
        .offset((page - 1) * limit)
        .limit(limit)
    )
    requests = await enrich_verifications(session, list(result.scalars().all()))

    total_pages = math.ceil(total / limit) if total else 0
    return VerificationPage(
        requests=requests,
        pagination=Pagination(
            current_page=page,
            total_pages=total_pages,
            total_requests=total,
            requests_per_page=limit,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        ),
        applied_filters=filters.applied(),
    )
