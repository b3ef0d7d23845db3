"""
Verification endpoints: submission, lookups, admin review and finalize.

Lifecycle: pending -> approved | rejected (finalize, once).
- Submission is blocked while the user's latest record is pending or approved.
- Photo review approves the listed photos and rejects the rest (pending only).
- Approval requires at least one approved photo and a location type.
- Location type can be corrected at any time.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.auth import require_reviewer
from app.core.collaborators import get_lifecycle
from app.core.database import get_session
from app.core.errors import ValidationFailed
from app.services.lifecycle import VerificationLifecycle
from app.services.storage import PhotoUpload
from app.services.verifications import (
    current_status,
    enrich_verification,
    get_verification_or_404,
    list_for_crop,
    list_for_user,
    search_verifications,
)
from cropverify_shared.schemas.common import APIResponse, VerificationStatus
from cropverify_shared.schemas.verifications import (
    CropSubmission,
    DirectSubmission,
    FinalizeRequest,
    LocationTypeUpdate,
    ReviewImagesRequest,
    VerificationFilter,
)

router = APIRouter()

ADMIN_STATUSES = ("pending", "approved", "rejected", "all")


async def _read_photos(photos: Optional[List[UploadFile]], max_bytes: int) -> list[PhotoUpload]:
    """Read each upload, stopping one byte past the size limit."""
    uploads = []
    for index, f in enumerate(photos or [], start=1):
        if f.size is not None and f.size > max_bytes:
            raise ValidationFailed(f"Photo {index} exceeds {max_bytes} bytes")
        data = await f.read(max_bytes + 1)
        if len(data) > max_bytes:
            raise ValidationFailed(f"Photo {index} exceeds {max_bytes} bytes")
        uploads.append(
            PhotoUpload(
                filename=f.filename or "photo",
                content_type=f.content_type or "application/octet-stream",
                data=data,
            )
        )
    return uploads


def _parse_day(value: Optional[str]) -> Optional[date]:
    """Lenient date parsing; unparseable values are ignored."""
    if not value or not value.strip():
        return None
    value = value.strip()
    try:
        return date.fromisoformat(value[:10])
    except ValueError:
        pass
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date()
    except ValueError:
        return None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


@router.post("/submit", response_model=APIResponse)
async def submit_endpoint(
    user_id: Optional[str] = Form(None, alias="userId"),
    crop_id: Optional[str] = Form(None, alias="cropId"),
    crop_name: Optional[str] = Form(None, alias="cropName"),
    full_name: Optional[str] = Form(None, alias="fullName"),
    phone: Optional[str] = Form(None),
    village: Optional[str] = Form(None),
    taluk: Optional[str] = Form(None),
    district: Optional[str] = Form(None),
    quantity: Optional[str] = Form(None),
    variety: Optional[str] = Form(None),
    moisture: Optional[str] = Form(None),
    will_dry: Optional[str] = Form(None, alias="willDry"),
    location: Optional[str] = Form(None),
    photos: Optional[List[UploadFile]] = File(None),
    lifecycle: VerificationLifecycle = Depends(get_lifecycle),
    session: AsyncSession = Depends(get_session),
):
    """Submit crop photos with caller-supplied user and crop identity."""
    submission = DirectSubmission(
        user_id=user_id,
        crop_id=crop_id,
        crop_name=crop_name,
        full_name=full_name,
        phone=phone,
        village=village,
        taluk=taluk,
        district=district,
        quantity=quantity,
        variety=variety,
        moisture=moisture,
        will_dry=will_dry,
        location=location,
    )
    uploads = await _read_photos(photos, lifecycle.max_photo_bytes)
    result = await lifecycle.submit_direct(session, submission, uploads)
    return APIResponse(message="Verification submitted successfully", data=result)


@router.post("/submit-by-crop", response_model=APIResponse)
async def submit_by_crop_endpoint(
    crop_id: Optional[str] = Form(None, alias="cropId"),
    location: Optional[str] = Form(None),
    photos: Optional[List[UploadFile]] = File(None),
    lifecycle: VerificationLifecycle = Depends(get_lifecycle),
    session: AsyncSession = Depends(get_session),
):
    """Submit crop photos; the owner and farm details come from the crop directory."""
    submission = CropSubmission(crop_id=crop_id, location=location)
    uploads = await _read_photos(photos, lifecycle.max_photo_bytes)
    result = await lifecycle.submit_for_crop(session, submission, uploads)
    return APIResponse(message="Verification submitted successfully", data=result)


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


@router.get(
    "/admin/{status}",
    response_model=APIResponse,
    dependencies=[Depends(require_reviewer)],
)
async def admin_list_endpoint(
    status: str,
    user_id: Optional[str] = Query(None, alias="userId"),
    phone: Optional[str] = Query(None),
    full_name: Optional[str] = Query(None, alias="fullName"),
    crop_name: Optional[str] = Query(None, alias="cropName"),
    village: Optional[str] = Query(None),
    taluk: Optional[str] = Query(None),
    district: Optional[str] = Query(None),
    from_date: Optional[str] = Query(None, alias="fromDate"),
    to_date: Optional[str] = Query(None, alias="toDate"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    session: AsyncSession = Depends(get_session),
):
    """Paginated admin listing, newest first, with combinable filters."""
    if status not in ADMIN_STATUSES:
        raise ValidationFailed(f"Invalid status. Allowed: {', '.join(ADMIN_STATUSES)}")

    filters = VerificationFilter(
        status=None if status == "all" else VerificationStatus(status),
        user_id=user_id,
        phone=phone,
        full_name=full_name,
        crop_name=crop_name,
        village=village,
        taluk=taluk,
        district=district,
        from_date=_parse_day(from_date),
        to_date=_parse_day(to_date),
    )
    result = await search_verifications(session, filters, page=page, limit=limit)
    label = "All" if status == "all" else status.capitalize()
    return APIResponse(message=f"{label} requests fetched successfully", data=result)


@router.get("/user/{user_id}/current-status", response_model=APIResponse)
async def current_status_endpoint(
    user_id: str,
    session: AsyncSession = Depends(get_session),
):
    """Whether the user may submit, and their latest record."""
    result = await current_status(session, user_id)
    message = "Current status fetched successfully" if result.has_verification else "No verification requests found"
    return APIResponse(message=message, data=result)


@router.get("/user/{user_id}", response_model=APIResponse)
async def list_user_endpoint(
    user_id: str,
    session: AsyncSession = Depends(get_session),
):
    """All of a user's records, newest first."""
    return APIResponse(data=await list_for_user(session, user_id))


@router.get("/crop/{crop_id}", response_model=APIResponse)
async def list_crop_endpoint(
    crop_id: str,
    session: AsyncSession = Depends(get_session),
):
    """All records submitted for a crop, newest first."""
    return APIResponse(data=await list_for_crop(session, crop_id))


@router.get("/{verification_id}", response_model=APIResponse)
async def get_verification_endpoint(
    verification_id: str,
    session: AsyncSession = Depends(get_session),
):
    """A single record with its photo summary."""
    record = await get_verification_or_404(session, verification_id)
    return APIResponse(data=await enrich_verification(session, record))


# ---------------------------------------------------------------------------
# Review
# ---------------------------------------------------------------------------


@router.patch(
    "/{verification_id}/review-images",
    response_model=APIResponse,
    dependencies=[Depends(require_reviewer)],
)
async def review_images_endpoint(
    verification_id: str,
    body: ReviewImagesRequest,
    lifecycle: VerificationLifecycle = Depends(get_lifecycle),
    session: AsyncSession = Depends(get_session),
):
    """Approve the listed photos and reject every other photo on the record."""
    result = await lifecycle.review_photos(session, verification_id, body.approved_photo_ids)
    return APIResponse(message="Image review completed successfully", data=result)


@router.patch(
    "/{verification_id}/finalize",
    response_model=APIResponse,
    dependencies=[Depends(require_reviewer)],
)
async def finalize_endpoint(
    verification_id: str,
    body: FinalizeRequest,
    lifecycle: VerificationLifecycle = Depends(get_lifecycle),
    session: AsyncSession = Depends(get_session),
):
    """Approve or reject a pending record. Irreversible."""
    result = await lifecycle.finalize(session, verification_id, body)
    return APIResponse(message=f"Verification request {result.status.value} successfully", data=result)


@router.patch(
    "/{verification_id}/update-location-type",
    response_model=APIResponse,
    dependencies=[Depends(require_reviewer)],
)
async def update_location_type_endpoint(
    verification_id: str,
    body: LocationTypeUpdate,
    lifecycle: VerificationLifecycle = Depends(get_lifecycle),
    session: AsyncSession = Depends(get_session),
):
    """Correct the farm/village classification of the submitted coordinate."""
    result = await lifecycle.update_location_type(session, verification_id, body.location_type)
    return APIResponse(message="Location type updated successfully", data=result)
