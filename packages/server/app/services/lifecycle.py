"""
Verification lifecycle: submission, photo review, finalize, location correction.

State machine for a record:
    pending --finalize(approved)--> approved
    pending --finalize(rejected)--> rejected
Terminal states never change status again. Photo review only runs while the
record is pending; location correction runs in any state.

External collaborators (object storage, crop directory, notifier) are passed in
at construction so each can be replaced independently.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import Any, Iterable, Optional, Sequence, Union

import structlog
from pydantic import ValidationError
from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.core.errors import (
    DependencyFailed,
    GenerationExhausted,
    InvalidState,
    PreconditionFailed,
    SubmissionConflict,
    UploadFailed,
    ValidationFailed,
)
from app.models.base import utcnow
from app.models.verification import Verification
from app.models.verification_photo import VerificationPhoto
from app.services.crop_directory import CropDirectory
from app.services.eligibility import Eligibility, evaluate
from app.services.notifications import (
    ApprovalNotice,
    NotificationResult,
    Notifier,
    RejectionNotice,
)
from app.services.photo_review import apply_review, get_photos, has_approved_photo, summarize
from app.services.request_ids import RequestIdGenerator
from app.services.storage import ObjectStorage, PhotoUpload, StoredObject
from app.services.verifications import get_verification_or_404, to_read
from cropverify_shared.schemas.common import (
    LocationType,
    PhotoStatus,
    RejectionReason,
    VerificationStatus,
)
from cropverify_shared.schemas.verifications import (
    ConflictDetail,
    CropSubmission,
    DirectSubmission,
    FarmerDetails,
    FinalizeRequest,
    GeoPoint,
    LocationTypeRead,
    PhotoRead,
    ReviewImagesRead,
    SubmissionRead,
    VerificationRead,
)

log = structlog.get_logger()

DEFAULT_MAX_PHOTOS = 3
DEFAULT_MAX_PHOTO_BYTES = 5 * 1024 * 1024


# ---------------------------------------------------------------------------
# Input parsing
# ---------------------------------------------------------------------------


def parse_location(raw: Any) -> GeoPoint:
    """Accept a GeoPoint, a mapping, or a JSON string carrying ``lat`` and ``lng``."""
    if isinstance(raw, GeoPoint):
        return raw
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw) if raw else None
        except ValueError:
            raise ValidationFailed("Invalid location data")
    if not isinstance(raw, dict):
        raise ValidationFailed("Invalid location data")
    try:
        return GeoPoint.model_validate(raw)
    except ValidationError:
        raise ValidationFailed("Invalid location data")


def _blank(value: Optional[str]) -> bool:
    return value is None or not str(value).strip()


def conflict_from(eligibility: Eligibility) -> SubmissionConflict:
    latest = eligibility.latest
    approved = latest.status == VerificationStatus.APPROVED.value
    detail = ConflictDetail(
        existing_request_id=latest.id,
        request_id=latest.request_id,
        status=latest.status,
        created_at=latest.created_at,
        approved_at=latest.reviewed_at if approved else None,
    )
    return SubmissionConflict(eligibility.block_reason or "Submission not allowed", data=detail)


# ---------------------------------------------------------------------------
# Lifecycle controller
# ---------------------------------------------------------------------------


class VerificationLifecycle:
    """The only write path for verification records."""

    def __init__(
        self,
        storage: ObjectStorage,
        crops: CropDirectory,
        notifier: Notifier,
        request_ids: RequestIdGenerator,
        *,
        max_photos: int = DEFAULT_MAX_PHOTOS,
        max_photo_bytes: int = DEFAULT_MAX_PHOTO_BYTES,
        upload_timeout: float = 30.0,
        lookup_timeout: float = 10.0,
        notify_timeout: float = 10.0,
    ):
        self._storage = storage
        self._crops = crops
        self._notifier = notifier
        self._request_ids = request_ids
        self._max_photos = max_photos
        self._max_photo_bytes = max_photo_bytes
        self._upload_timeout = upload_timeout
        self._lookup_timeout = lookup_timeout
        self._notify_timeout = notify_timeout

    @property
    def max_photo_bytes(self) -> int:
        return self._max_photo_bytes

    # --- Submission ---

    async def submit_direct(
        self,
        session: AsyncSession,
        submission: DirectSubmission,
        photos: Sequence[PhotoUpload],
    ) -> SubmissionRead:
        """Submit with caller-supplied user and crop identity."""
        if any(_blank(v) for v in (submission.user_id, submission.crop_id, submission.crop_name)) or not photos:
            raise ValidationFailed("Missing required fields: userId, cropId, cropName, or photos")
        self._check_photos(photos)

        details = FarmerDetails.model_validate(
            submission.model_dump(include=set(FarmerDetails.model_fields))
        )
        return await self._submit(
            session,
            user_id=submission.user_id.strip(),
            crop_id=submission.crop_id.strip(),
            crop_name=submission.crop_name.strip(),
            details=details,
            raw_location=submission.location,
            photos=photos,
        )

    async def submit_for_crop(
        self,
        session: AsyncSession,
        submission: CropSubmission,
        photos: Sequence[PhotoUpload],
    ) -> SubmissionRead:
        """Submit for a crop; owner and farm details come from the crop directory."""
        if _blank(submission.crop_id) or not photos:
            raise ValidationFailed("Missing required fields: cropId or photos")
        self._check_photos(photos)

        crop_id = submission.crop_id.strip()
        try:
            crop = await asyncio.wait_for(self._crops.get_crop(crop_id), timeout=self._lookup_timeout)
        except asyncio.TimeoutError:
            log.error("crop_directory.timeout", crop_id=crop_id)
            raise DependencyFailed("Crop lookup timed out") from None

        details = FarmerDetails(
            full_name=crop.owner.name,
            phone=crop.owner.phone,
            village=crop.farm.village,
            taluk=crop.farm.taluk,
            district=crop.farm.district,
            quantity=crop.quantity_label,
            variety=crop.variety,
            moisture=crop.moisture,
            will_dry=crop.dry_intent,
        )
        return await self._submit(
            session,
            user_id=crop.owner.id,
            crop_id=crop_id,
            crop_name=crop.crop_name,
            details=details,
            raw_location=submission.location,
            photos=photos,
        )

    def _check_photos(self, photos: Sequence[PhotoUpload]) -> None:
        if len(photos) > self._max_photos:
            raise ValidationFailed(f"At most {self._max_photos} photos may be submitted")
        for index, photo in enumerate(photos, start=1):
            if not photo.data:
                raise ValidationFailed(f"Photo {index} is empty")
            if len(photo.data) > self._max_photo_bytes:
                raise ValidationFailed(f"Photo {index} exceeds {self._max_photo_bytes} bytes")
            if photo.content_type and not photo.content_type.startswith("image/"):
                raise ValidationFailed(f"Photo {index} is not an image")

    async def _submit(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        crop_id: str,
        crop_name: str,
        details: FarmerDetails,
        raw_location: Any,
        photos: Sequence[PhotoUpload],
    ) -> SubmissionRead:
        eligibility = await evaluate(session, user_id)
        if not eligibility.can_submit:
            log.info("verification.blocked", user_id=user_id, status=eligibility.latest.status)
            raise conflict_from(eligibility)
        # Read before any rollback can expire the prior record
        is_resubmission = eligibility.is_resubmission
        previous_id = eligibility.latest.id if eligibility.latest else None

        point = parse_location(raw_location)

        log.info("photos.uploading", user_id=user_id, count=len(photos))
        stored = await self._upload_all(user_id, photos)

        record, photo_rows = await self._persist(
            session,
            user_id=user_id,
            crop_id=crop_id,
            crop_name=crop_name,
            details=details,
            point=point,
            stored=stored,
        )

        log.info(
            "verification.submitted",
            verification_id=str(record.id),
            request_id=record.request_id,
            user_id=user_id,
            photos=len(photo_rows),
        )
        if is_resubmission:
            log.info(
                "verification.resubmission",
                user_id=user_id,
                verification_id=str(record.id),
                previous_id=str(previous_id),
            )

        read = to_read(record, photo_rows)
        return SubmissionRead(**read.model_dump(), is_resubmission=is_resubmission)

    async def _upload_one(self, user_id: str, index: int, photo: PhotoUpload) -> StoredObject:
        public_id = f"verification_{int(time.time() * 1000)}_{user_id}_{index}"
        try:
            return await asyncio.wait_for(
                self._storage.upload(photo.data, public_id=public_id, content_type=photo.content_type),
                timeout=self._upload_timeout,
            )
        except asyncio.TimeoutError:
            raise UploadFailed(f"Upload of photo {index + 1} timed out") from None

    async def _upload_all(self, user_id: str, photos: Sequence[PhotoUpload]) -> list[StoredObject]:
        """Upload every photo concurrently; any failure fails the whole batch."""
        results = await asyncio.gather(
            *(self._upload_one(user_id, i, p) for i, p in enumerate(photos)),
            return_exceptions=True,
        )
        for index, result in enumerate(results):
            if isinstance(result, BaseException):
                log.warning(
                    "photos.upload_failed",
                    user_id=user_id,
                    photo=index + 1,
                    error=str(result),
                )
                if isinstance(result, UploadFailed):
                    raise result
                if not isinstance(result, Exception):
                    raise result
                raise UploadFailed(f"Failed to upload photo {index + 1}") from result
        return list(results)

    async def _persist(
        self,
        session: AsyncSession,
        *,
        user_id: str,
        crop_id: str,
        crop_name: str,
        details: FarmerDetails,
        point: GeoPoint,
        stored: Sequence[StoredObject],
    ) -> tuple[Verification, list[VerificationPhoto]]:
        for attempt in range(1, self._request_ids.max_attempts + 1):
            request_id = self._request_ids.generate(details.district, details.taluk)
            if not await self._request_ids.is_unique(session, request_id):
                log.warning("request_id.collision", request_id=request_id, attempt=attempt, stage="precheck")
                continue

            record = Verification(
                request_id=request_id,
                user_id=user_id,
                crop_id=crop_id,
                crop_name=crop_name,
                **details.model_dump(),
                longitude=point.lng,
                latitude=point.lat,
                status=VerificationStatus.PENDING.value,
            )
            session.add(record)
            try:
                await session.flush()
            except IntegrityError:
                await session.rollback()
                if not await self._request_ids.is_unique(session, request_id):
                    log.warning("request_id.collision", request_id=request_id, attempt=attempt, stage="insert")
                    continue
                # Lost a race with a concurrent submission for the same user
                eligibility = await evaluate(session, user_id)
                if not eligibility.can_submit:
                    raise conflict_from(eligibility)
                raise

            photo_rows = [
                VerificationPhoto(
                    verification_id=record.id,
                    position=position,
                    url=obj.url,
                    storage_id=obj.identifier,
                    status=PhotoStatus.PENDING.value,
                )
                for position, obj in enumerate(stored)
            ]
            session.add_all(photo_rows)
            await session.commit()
            return record, photo_rows

        log.error("request_id.exhausted", user_id=user_id, attempts=self._request_ids.max_attempts)
        raise GenerationExhausted("Failed to generate unique requestId")

    # --- Photo review ---

    async def review_photos(
        self,
        session: AsyncSession,
        verification_id: Union[str, uuid.UUID],
        approved_photo_ids: Iterable[str],
    ) -> ReviewImagesRead:
        """Approve the listed photos, reject the rest. Pending records only."""
        record = await get_verification_or_404(session, verification_id)
        if record.status != VerificationStatus.PENDING.value:
            raise InvalidState(f"Cannot review images. Request is already {record.status}")

        photos = await get_photos(session, record.id)
        apply_review(photos, approved_photo_ids)
        record.updated_at = utcnow()
        session.add_all([record, *photos])
        await session.commit()

        summary = summarize(photos)
        log.info(
            "photos.reviewed",
            verification_id=str(record.id),
            approved=summary.approved,
            rejected=summary.rejected,
        )
        return ReviewImagesRead(
            id=record.id,
            photos=[PhotoRead(id=p.id, url=p.url, status=p.status) for p in photos],
            summary=summary,
        )

    # --- Finalize ---

    async def finalize(
        self,
        session: AsyncSession,
        verification_id: Union[str, uuid.UUID],
        decision: FinalizeRequest,
    ) -> VerificationRead:
        """Apply the one-way pending -> approved/rejected transition, then notify."""
        status = decision.status
        if status not in (VerificationStatus.APPROVED, VerificationStatus.REJECTED):
            raise ValidationFailed("Status must be 'approved' or 'rejected'")
        if status is VerificationStatus.REJECTED and decision.rejection_reason is None:
            raise ValidationFailed("Rejection reason is required when rejecting a request")
        if status is VerificationStatus.APPROVED and decision.location_type is None:
            raise ValidationFailed("locationType (farm/village) is required when approving a request")

        record = await get_verification_or_404(session, verification_id)
        if record.status != VerificationStatus.PENDING.value:
            raise InvalidState(f"Request is already {record.status}")

        photos = await get_photos(session, record.id)
        if status is VerificationStatus.APPROVED and not has_approved_photo(photos):
            raise PreconditionFailed("Cannot approve request. At least one photo must be approved first.")

        now = utcnow()
        changes: dict[str, Any] = {"status": status.value, "reviewed_at": now, "updated_at": now}
        if decision.reviewed_by:
            changes["reviewed_by"] = decision.reviewed_by
        if status is VerificationStatus.REJECTED:
            changes["rejection_reason"] = decision.rejection_reason.value
            changes["rejection_notes"] = decision.rejection_notes
        else:
            changes["location_type"] = decision.location_type.value

        # Conditional on status so two concurrent finalizes cannot both win
        result = await session.execute(
            update(Verification)
            .where(
                Verification.id == record.id,
                Verification.status == VerificationStatus.PENDING.value,
            )
            .values(**changes)
        )
        if result.rowcount != 1:
            await session.rollback()
            current = await get_verification_or_404(session, record.id)
            raise InvalidState(f"Request is already {current.status}")
        await session.commit()
        await session.refresh(record)

        log.info(
            "verification.finalized",
            verification_id=str(record.id),
            request_id=record.request_id,
            status=record.status,
            reviewed_by=record.reviewed_by,
        )
        read = to_read(record, photos)
        await self.notify_outcome(record)
        return read

    async def notify_outcome(self, record: Verification) -> Optional[NotificationResult]:
        """Best-effort farmer notification; never raises."""
        if _blank(record.phone):
            log.info("notification.skipped", verification_id=str(record.id), reason="no_phone")
            return None
        try:
            if record.status == VerificationStatus.APPROVED.value:
                call = self._notifier.notify_approval(
                    ApprovalNotice(
                        phone=record.phone,
                        full_name=record.full_name,
                        request_id=record.request_id,
                        crop_name=record.crop_name,
                        reviewed_at=record.reviewed_at,
                    )
                )
            elif record.status == VerificationStatus.REJECTED.value:
                call = self._notifier.notify_rejection(
                    RejectionNotice(
                        phone=record.phone,
                        full_name=record.full_name,
                        request_id=record.request_id,
                        crop_name=record.crop_name,
                        crop_id=record.crop_id,
                        rejection_reason=RejectionReason(record.rejection_reason),
                        rejection_notes=record.rejection_notes,
                    )
                )
            else:
                return None
            result = await asyncio.wait_for(call, timeout=self._notify_timeout)
        except Exception:
            log.exception("notification.failed", verification_id=str(record.id))
            return None

        if not result.success:
            log.warning("notification.failed", verification_id=str(record.id), error=result.error)
        return result

    # --- Location correction ---

    async def update_location_type(
        self,
        session: AsyncSession,
        verification_id: Union[str, uuid.UUID],
        location_type: Union[LocationType, str, None],
    ) -> LocationTypeRead:
        """Reclassify the coordinate without touching the review decision."""
        try:
            location_type = LocationType(location_type)
        except ValueError:
            raise ValidationFailed("locationType must be 'farm' or 'village'")

        record = await get_verification_or_404(session, verification_id)
        record.location_type = location_type.value
        record.updated_at = utcnow()
        session.add(record)
        await session.commit()

        log.info(
            "verification.location_type_updated",
            verification_id=str(record.id),
            location_type=location_type.value,
        )
        return LocationTypeRead(
            id=record.id,
            location_type=location_type,
            coordinates=[record.longitude, record.latitude],
        )
