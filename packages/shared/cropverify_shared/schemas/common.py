from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Snake-case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class VerificationStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

# Statuses that block a new submission for the same user
OPEN_STATUSES: tuple["VerificationStatus", ...] = (
    VerificationStatus.PENDING,
    VerificationStatus.APPROVED,
)

class PhotoStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"

class LocationType(str, Enum):
    FARM = "farm"
    VILLAGE = "village"

class RejectionReason(str, Enum):
    POOR_PHOTO_QUALITY = "poor_photo_quality"
    FACE_NOT_VISIBLE = "face_not_visible"
    INCORRECT_LOCATION = "incorrect_location"
    INSUFFICIENT_PHOTOS = "insufficient_photos"
    DUPLICATE_REQUEST = "duplicate_request"
    CROP_MISMATCH = "crop_mismatch"
    FAKE_OR_MANIPULATED = "fake_or_manipulated"
    INCOMPLETE_INFORMATION = "incomplete_information"
    SUSPICIOUS_ACTIVITY = "suspicious_activity"
    PHOTO_TOO_DARK = "photo_too_dark"
    PHOTO_NOT_CLEAR = "photo_not_clear"
    PHOTO_NOT_FOCUSED = "photo_not_focused"
    PARTIAL_CROP_VISIBLE = "partial_crop_visible"
    CAMERA_ANGLE_INCORRECT = "camera_angle_incorrect"
    PHOTO_CONTAINS_OBSTRUCTIONS = "photo_contains_obstructions"
    WRONG_CROP_UPLOADED = "wrong_crop_uploaded"
    CROP_STAGE_MISMATCH = "crop_stage_mismatch"
    CROP_AREA_NOT_CLEAR = "crop_area_not_clear"
    CROP_NOT_IDENTIFIABLE = "crop_not_identifiable"
    OTHER = "other"

class Pagination(CamelModel):
    current_page: int
    total_pages: int
    total_requests: int
    requests_per_page: int
    has_next_page: bool
    has_prev_page: bool

class APIResponse(CamelModel):
    status_code: int = 200
    message: Optional[str] = None
    data: Optional[Any] = None

class ErrorResponse(CamelModel):
    status_code: int
    message: str
    error: Optional[str] = None
    data: Optional[Any] = None
