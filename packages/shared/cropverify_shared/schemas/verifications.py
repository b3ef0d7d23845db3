"""Verification request schemas shared by the server and API clients."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import UUID4, Field, field_validator

from .common import (
    CamelModel,
    LocationType,
    Pagination,
    PhotoStatus,
    RejectionReason,
    VerificationStatus,
)


# ---------------------------------------------------------------------------
# Location
# ---------------------------------------------------------------------------

class GeoPoint(CamelModel):
    """Submitted coordinate. Both components are required."""
    lat: float = Field(ge=-90, le=90)
    lng: float = Field(ge=-180, le=180)


class LocationRead(CamelModel):
    type: str = "Point"
    coordinates: List[float]  # [lng, lat]
    location_type: Optional[LocationType] = None


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

class FarmerDetails(CamelModel):
    """Free-text descriptive fields, fixed at creation."""
    full_name: Optional[str] = None
    phone: Optional[str] = None
    village: Optional[str] = None
    taluk: Optional[str] = None
    district: Optional[str] = None
    quantity: Optional[str] = None
    variety: Optional[str] = None
    moisture: Optional[str] = None
    will_dry: Optional[str] = None


class DirectSubmission(FarmerDetails):
    """Submission where the caller supplies the owning user and crop."""
    user_id: Optional[str] = None
    crop_id: Optional[str] = None
    crop_name: Optional[str] = None
    # JSON string or mapping carrying lat/lng; parsed by the lifecycle
    location: Optional[Any] = None


class CropSubmission(CamelModel):
    """Submission where user and farm details come from the crop directory."""
    crop_id: Optional[str] = None
    location: Optional[Any] = None


# ---------------------------------------------------------------------------
# Read models
# ---------------------------------------------------------------------------

class PhotoRead(CamelModel):
    id: UUID4
    url: str
    status: PhotoStatus


class PhotoSummary(CamelModel):
    total: int = 0
    approved: int = 0
    rejected: int = 0
    pending: int = 0


class VerificationRead(FarmerDetails):
    id: UUID4
    request_id: str
    user_id: str
    crop_id: str
    crop_name: str
    photos: List[PhotoRead] = Field(default_factory=list)
    photo_summary: PhotoSummary = Field(default_factory=PhotoSummary)
    location: LocationRead
    status: VerificationStatus
    rejection_reason: Optional[RejectionReason] = None
    rejection_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = None
    reviewed_by: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class SubmissionRead(VerificationRead):
    is_resubmission: bool = False


class ConflictDetail(CamelModel):
    """Prior record context returned when a submission is blocked."""
    existing_request_id: UUID4
    request_id: str
    status: VerificationStatus
    created_at: datetime
    approved_at: Optional[datetime] = None
    can_submit: bool = False


class LatestVerification(CamelModel):
    id: UUID4
    request_id: str
    status: VerificationStatus
    rejection_reason: Optional[RejectionReason] = None
    photo_summary: PhotoSummary
    created_at: datetime
    reviewed_at: Optional[datetime] = None


class CurrentStatusRead(CamelModel):
    has_verification: bool
    can_submit: bool
    block_message: Optional[str] = None
    verification: Optional[LatestVerification] = None


# ---------------------------------------------------------------------------
# Review / finalize / location correction
# ---------------------------------------------------------------------------

class ReviewImagesRequest(CamelModel):
    """Body for PATCH /verifications/{id}/review-images."""
    approved_photo_ids: List[str]


class ReviewImagesRead(CamelModel):
    id: UUID4
    photos: List[PhotoRead]
    summary: PhotoSummary


class FinalizeRequest(CamelModel):
    """Body for PATCH /verifications/{id}/finalize."""
    status: Optional[VerificationStatus] = None
    rejection_reason: Optional[RejectionReason] = None
    rejection_notes: Optional[str] = None
    reviewed_by: Optional[str] = None
    location_type: Optional[LocationType] = None


class LocationTypeUpdate(CamelModel):
    """Body for PATCH /verifications/{id}/update-location-type."""
    location_type: LocationType


class LocationTypeRead(CamelModel):
    id: UUID4
    location_type: LocationType
    coordinates: List[float]


# ---------------------------------------------------------------------------
# Admin listing
# ---------------------------------------------------------------------------

class VerificationFilter(CamelModel):
    """Admin listing filters. Every field is optional and combinable."""
    status: Optional[VerificationStatus] = None
    user_id: Optional[str] = None
    phone: Optional[str] = None
    full_name: Optional[str] = None
    crop_name: Optional[str] = None
    village: Optional[str] = None
    taluk: Optional[str] = None
    district: Optional[str] = None
    from_date: Optional[date] = None
    to_date: Optional[date] = None

    @field_validator(
        "user_id", "phone", "full_name", "crop_name", "village", "taluk", "district",
        mode="before",
    )
    @classmethod
    def _strip_blank(cls, value: Any) -> Any:
        if isinstance(value, str):
            value = value.strip()
            return value or None
        return value

    def applied(self) -> Dict[str, Any]:
        """The filters actually in effect, keyed by wire name."""
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"status"}, mode="json")


class VerificationPage(CamelModel):
    requests: List[VerificationRead]
    pagination: Pagination
    applied_filters: Dict[str, Any] = Field(default_factory=dict)
