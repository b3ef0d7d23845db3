"""
Lifecycle tests: submission gating, photo review, finalize and location correction.

Runs against in-memory SQLite with fake storage, crop directory and notifier.
"""

from __future__ import annotations

import random

import pytest
from sqlalchemy import func
from sqlmodel import select

from app.core.errors import (
    DependencyFailed,
    GenerationExhausted,
    InvalidState,
    NotFound,
    PreconditionFailed,
    SubmissionConflict,
    UploadFailed,
    ValidationFailed,
)
from app.models.verification import Verification
from app.models.verification_photo import VerificationPhoto
from app.services import lifecycle as lifecycle_module
from app.services.eligibility import Eligibility, evaluate
from app.services.lifecycle import VerificationLifecycle, parse_location
from app.services.request_ids import REQUEST_ID_PATTERN, RequestIdGenerator
from conftest import FIXED_NOW, FakeCropDirectory, FakeNotifier, FakeStorage, SAMPLE_CROP, make_photos
from cropverify_shared.schemas.common import LocationType, RejectionReason, VerificationStatus
from cropverify_shared.schemas.verifications import (
    CropSubmission,
    DirectSubmission,
    FinalizeRequest,
    GeoPoint,
)


def direct(user_id: str = "user-1", **overrides) -> DirectSubmission:
    fields = dict(
        user_id=user_id,
        crop_id="crop-1",
        crop_name="Ragi",
        full_name="Manjunath",
        phone="9876543210",
        village="Hosahalli",
        taluk="Malur",
        district="Kolar",
        location={"lat": 12.97, "lng": 77.59},
    )
    fields.update(overrides)
    return DirectSubmission(**fields)


async def count_rows(session, model) -> int:
    return (await session.execute(select(func.count()).select_from(model))).scalar_one()


APPROVE = FinalizeRequest(status=VerificationStatus.APPROVED, location_type=LocationType.FARM, reviewed_by="rev-1")
REJECT = FinalizeRequest(
    status=VerificationStatus.REJECTED,
    rejection_reason=RejectionReason.PHOTO_TOO_DARK,
    rejection_notes="retake in daylight",
)


async def approve_first_photo(lifecycle, session, record):
    await lifecycle.review_photos(session, record.id, [str(record.photos[0].id)])


# ---------------------------------------------------------------------------
# Location parsing
# ---------------------------------------------------------------------------


class TestParseLocation:
    def test_json_string(self):
        point = parse_location('{"lat": 12.5, "lng": 77.25}')
        assert point == GeoPoint(lat=12.5, lng=77.25)

    def test_mapping(self):
        assert parse_location({"lat": 0, "lng": 0}).lat == 0

    def test_invalid_json_rejected(self):
        with pytest.raises(ValidationFailed, match="Invalid location data"):
            parse_location("not-json")

    def test_missing_component_rejected(self):
        with pytest.raises(ValidationFailed):
            parse_location({"lat": 12.5})

    def test_out_of_range_rejected(self):
        with pytest.raises(ValidationFailed):
            parse_location({"lat": 95, "lng": 77})

    def test_absent_rejected(self):
        with pytest.raises(ValidationFailed):
            parse_location(None)


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------


class TestSubmitDirect:
    async def test_creates_pending_record_with_pending_photos(self, lifecycle, session):
        result = await lifecycle.submit_direct(session, direct(), make_photos(2))

        assert result.status == VerificationStatus.PENDING
        assert result.is_resubmission is False
        assert REQUEST_ID_PATTERN.match(result.request_id)
        assert result.request_id.startswith("ORKM251405")
        assert [p.status.value for p in result.photos] == ["pending", "pending"]
        assert result.photo_summary.total == 2
        assert result.photo_summary.pending == 2
        assert result.location.coordinates == [77.59, 12.97]
        assert result.location.location_type is None
        assert await count_rows(session, Verification) == 1
        assert await count_rows(session, VerificationPhoto) == 2

    async def test_photos_keep_input_order(self, lifecycle, session):
        result = await lifecycle.submit_direct(session, direct(), make_photos(3))
        assert [p.url.rsplit("_", 1)[-1] for p in result.photos] == ["0.jpg", "1.jpg", "2.jpg"]

    @pytest.mark.parametrize("missing", ["user_id", "crop_id", "crop_name"])
    async def test_missing_identity_rejected(self, lifecycle, session, missing):
        with pytest.raises(ValidationFailed, match="Missing required fields"):
            await lifecycle.submit_direct(session, direct(**{missing: "  "}), make_photos(1))
        assert await count_rows(session, Verification) == 0

    async def test_no_photos_rejected(self, lifecycle, session):
        with pytest.raises(ValidationFailed):
            await lifecycle.submit_direct(session, direct(), [])

    async def test_too_many_photos_rejected(self, lifecycle, session):
        with pytest.raises(ValidationFailed, match="At most 3"):
            await lifecycle.submit_direct(session, direct(), make_photos(4))

    async def test_oversized_photo_rejected(self, storage, crops, notifier, request_ids, session):
        lifecycle = VerificationLifecycle(storage, crops, notifier, request_ids, max_photo_bytes=10)
        with pytest.raises(ValidationFailed, match="exceeds"):
            await lifecycle.submit_direct(session, direct(), make_photos(1, size=11))
        assert storage.uploads == []

    async def test_non_image_rejected(self, lifecycle, session):
        with pytest.raises(ValidationFailed, match="not an image"):
            await lifecycle.submit_direct(session, direct(), make_photos(1, content_type="text/plain"))

    async def test_invalid_location_rejected_before_upload(self, lifecycle, storage, session):
        with pytest.raises(ValidationFailed, match="Invalid location data"):
            await lifecycle.submit_direct(session, direct(location="{bad"), make_photos(1))
        assert storage.uploads == []

    async def test_failed_upload_persists_nothing(self, crops, notifier, request_ids, session):
        lifecycle = VerificationLifecycle(FakeStorage(fail_indexes={1}), crops, notifier, request_ids)
        with pytest.raises(UploadFailed, match="photo 2"):
            await lifecycle.submit_direct(session, direct(), make_photos(3))
        assert await count_rows(session, Verification) == 0
        assert await count_rows(session, VerificationPhoto) == 0


class TestSubmissionGate:
    async def test_pending_blocks_new_submission(self, lifecycle, session):
        first = await lifecycle.submit_direct(session, direct(), make_photos(1))

        with pytest.raises(SubmissionConflict) as excinfo:
            await lifecycle.submit_direct(session, direct(), make_photos(1))

        assert excinfo.value.message == "Your request is under review by the support team."
        detail = excinfo.value.data
        assert detail.existing_request_id == first.id
        assert detail.request_id == first.request_id
        assert detail.status == VerificationStatus.PENDING
        assert detail.can_submit is False
        assert await count_rows(session, Verification) == 1

    async def test_approved_blocks_new_submission(self, lifecycle, session):
        first = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await approve_first_photo(lifecycle, session, first)
        await lifecycle.finalize(session, first.id, APPROVE)

        with pytest.raises(SubmissionConflict) as excinfo:
            await lifecycle.submit_direct(session, direct(), make_photos(1))

        assert excinfo.value.message == "Cannot submit new request. You are already verified."
        assert excinfo.value.data.approved_at is not None
        assert await count_rows(session, Verification) == 1

    async def test_rejected_allows_resubmission_as_new_record(self, lifecycle, session):
        first = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await lifecycle.finalize(session, first.id, REJECT)

        second = await lifecycle.submit_direct(session, direct(), make_photos(2))

        assert second.id != first.id
        assert second.request_id != first.request_id
        assert second.is_resubmission is True
        assert second.status == VerificationStatus.PENDING
        old = await session.get(Verification, first.id)
        assert old.status == "rejected"
        assert old.rejection_reason == "photo_too_dark"
        assert await count_rows(session, Verification) == 2

    async def test_other_users_are_independent(self, lifecycle, session):
        await lifecycle.submit_direct(session, direct("user-1"), make_photos(1))
        result = await lifecycle.submit_direct(session, direct("user-2"), make_photos(1))
        assert result.user_id == "user-2"

    async def test_open_record_index_stops_racing_submission(self, lifecycle, session, monkeypatch):
        first = await lifecycle.submit_direct(session, direct(), make_photos(1))

        # The first eligibility read misses the open record, as a concurrent request would
        calls = []

        async def stale_then_real(session, user_id):
            calls.append(user_id)
            if len(calls) == 1:
                return Eligibility(can_submit=True)
            return await evaluate(session, user_id)

        monkeypatch.setattr(lifecycle_module, "evaluate", stale_then_real)

        with pytest.raises(SubmissionConflict) as excinfo:
            await lifecycle.submit_direct(session, direct(), make_photos(1))

        assert len(calls) == 2
        assert excinfo.value.data.request_id == first.request_id
        assert await count_rows(session, Verification) == 1
        assert await count_rows(session, VerificationPhoto) == 1


class TestSubmitForCrop:
    async def test_details_come_from_crop_directory(self, lifecycle, session):
        submission = CropSubmission(crop_id="crop-1", location='{"lat": 13.1, "lng": 78.1}')
        result = await lifecycle.submit_for_crop(session, submission, make_photos(1))

        assert result.user_id == "owner-1"
        assert result.crop_name == "Ragi"
        assert result.full_name == "Manjunath"
        assert result.district == "Kolar"
        assert result.quantity == "12 quintal"
        assert result.will_dry == "yes"

    async def test_unknown_crop(self, lifecycle, session):
        with pytest.raises(NotFound):
            await lifecycle.submit_for_crop(session, CropSubmission(crop_id="nope", location={"lat": 1, "lng": 1}), make_photos(1))

    async def test_missing_crop_id(self, lifecycle, session):
        with pytest.raises(ValidationFailed):
            await lifecycle.submit_for_crop(session, CropSubmission(location={"lat": 1, "lng": 1}), make_photos(1))

    async def test_lookup_timeout(self, storage, notifier, request_ids, session):
        slow = FakeCropDirectory({"crop-1": SAMPLE_CROP}, delay=1.0)
        lifecycle = VerificationLifecycle(storage, slow, notifier, request_ids, lookup_timeout=0.01)
        with pytest.raises(DependencyFailed):
            await lifecycle.submit_for_crop(session, CropSubmission(crop_id="crop-1", location={"lat": 1, "lng": 1}), make_photos(1))


class TestRequestIdRetries:
    async def test_exhausted_when_every_candidate_collides(self, storage, crops, notifier, session):
        class ConstantRandom(random.Random):
            def randint(self, a, b):
                return 4242

        ids = RequestIdGenerator(max_attempts=3, rng=ConstantRandom(), clock=lambda: FIXED_NOW)
        lifecycle = VerificationLifecycle(storage, crops, notifier, ids)

        first = await lifecycle.submit_direct(session, direct("user-1"), make_photos(1))
        assert first.request_id == "ORKM2514054242"

        with pytest.raises(GenerationExhausted, match="Failed to generate unique requestId"):
            await lifecycle.submit_direct(session, direct("user-2"), make_photos(1))
        assert await count_rows(session, Verification) == 1

    async def test_collision_at_insert_retries_with_new_id(self, storage, crops, notifier, session):
        class SequenceRandom(random.Random):
            def __init__(self, values):
                super().__init__()
                self.values = iter(values)

            def randint(self, a, b):
                return next(self.values)

        class StalePrecheck(RequestIdGenerator):
            stale_checks = 0

            async def is_unique(self, session, candidate):
                if self.stale_checks:
                    self.stale_checks -= 1
                    return True
                return await super().is_unique(session, candidate)

        ids = StalePrecheck(rng=SequenceRandom([4242, 4242, 5555]), clock=lambda: FIXED_NOW)
        lifecycle = VerificationLifecycle(storage, crops, notifier, ids)
        await lifecycle.submit_direct(session, direct("user-1"), make_photos(1))

        # The pre-insert check misses the existing id; the unique index catches it
        ids.stale_checks = 1
        second = await lifecycle.submit_direct(session, direct("user-2"), make_photos(1))

        assert second.request_id == "ORKM2514055555"
        assert second.user_id == "user-2"
        assert await count_rows(session, Verification) == 2
        assert await count_rows(session, VerificationPhoto) == 2


# ---------------------------------------------------------------------------
# Photo review
# ---------------------------------------------------------------------------


class TestReviewPhotos:
    async def test_listed_photos_approved_rest_rejected(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(3))
        keep = [str(record.photos[0].id), str(record.photos[2].id)]

        result = await lifecycle.review_photos(session, record.id, keep)

        assert [p.status.value for p in result.photos] == ["approved", "rejected", "approved"]
        assert result.summary.approved == 2
        assert result.summary.rejected == 1
        assert result.summary.pending == 0

    async def test_empty_list_rejects_all(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(3))
        result = await lifecycle.review_photos(session, record.id, [])
        assert result.summary.rejected == 3
        assert result.summary.pending == 0

    async def test_unknown_ids_ignored(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(2))
        result = await lifecycle.review_photos(session, record.id, ["not-a-photo", str(record.photos[1].id)])
        assert [p.status.value for p in result.photos] == ["rejected", "approved"]

    async def test_repeat_review_is_idempotent(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(2))
        keep = [str(record.photos[1].id)]
        first = await lifecycle.review_photos(session, record.id, keep)
        second = await lifecycle.review_photos(session, record.id, keep)
        assert first.photos == second.photos

    async def test_later_review_replaces_earlier(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(2))
        await lifecycle.review_photos(session, record.id, [str(record.photos[0].id)])
        result = await lifecycle.review_photos(session, record.id, [str(record.photos[1].id)])
        assert [p.status.value for p in result.photos] == ["rejected", "approved"]

    async def test_finalized_record_cannot_be_reviewed(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await lifecycle.finalize(session, record.id, REJECT)
        with pytest.raises(InvalidState, match="Cannot review images. Request is already rejected"):
            await lifecycle.review_photos(session, record.id, [])

    async def test_unknown_record(self, lifecycle, session):
        with pytest.raises(NotFound):
            await lifecycle.review_photos(session, "not-a-uuid", [])


# ---------------------------------------------------------------------------
# Finalize
# ---------------------------------------------------------------------------


class TestFinalize:
    async def test_approve(self, lifecycle, notifier, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(2))
        await approve_first_photo(lifecycle, session, record)

        result = await lifecycle.finalize(session, record.id, APPROVE)

        assert result.status == VerificationStatus.APPROVED
        assert result.location.location_type == LocationType.FARM
        assert result.reviewed_by == "rev-1"
        assert result.reviewed_at is not None
        assert len(notifier.approvals) == 1
        assert notifier.approvals[0].request_id == record.request_id

    async def test_reject(self, lifecycle, notifier, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))

        result = await lifecycle.finalize(session, record.id, REJECT)

        assert result.status == VerificationStatus.REJECTED
        assert result.rejection_reason == RejectionReason.PHOTO_TOO_DARK
        assert result.rejection_notes == "retake in daylight"
        assert notifier.rejections[0].rejection_reason is RejectionReason.PHOTO_TOO_DARK

    async def test_approve_requires_approved_photo(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(2))
        with pytest.raises(PreconditionFailed):
            await lifecycle.finalize(session, record.id, APPROVE)

        await lifecycle.review_photos(session, record.id, [])
        with pytest.raises(PreconditionFailed):
            await lifecycle.finalize(session, record.id, APPROVE)

        stored = await session.get(Verification, record.id)
        assert stored.status == "pending"

    async def test_approve_requires_location_type(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await approve_first_photo(lifecycle, session, record)
        with pytest.raises(ValidationFailed, match="locationType"):
            await lifecycle.finalize(session, record.id, FinalizeRequest(status=VerificationStatus.APPROVED))

    async def test_reject_requires_reason(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        with pytest.raises(ValidationFailed, match="Rejection reason is required"):
            await lifecycle.finalize(session, record.id, FinalizeRequest(status=VerificationStatus.REJECTED))

        stored = await session.get(Verification, record.id)
        assert stored.status == "pending"
        assert stored.reviewed_at is None

    @pytest.mark.parametrize("status", [None, VerificationStatus.PENDING])
    async def test_target_status_must_be_terminal(self, lifecycle, session, status):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        with pytest.raises(ValidationFailed, match="approved' or 'rejected"):
            await lifecycle.finalize(session, record.id, FinalizeRequest(status=status))

    async def test_finalize_happens_once(self, lifecycle, notifier, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await approve_first_photo(lifecycle, session, record)
        await lifecycle.finalize(session, record.id, APPROVE)

        with pytest.raises(InvalidState, match="Request is already approved"):
            await lifecycle.finalize(session, record.id, REJECT)
        with pytest.raises(InvalidState):
            await lifecycle.finalize(session, record.id, APPROVE)

        stored = await session.get(Verification, record.id)
        assert stored.status == "approved"
        assert stored.rejection_reason is None
        assert len(notifier.approvals) == 1
        assert notifier.rejections == []

    async def test_unknown_record(self, lifecycle, session):
        with pytest.raises(NotFound):
            await lifecycle.finalize(session, "00000000-0000-4000-8000-000000000000", REJECT)

    async def test_notification_failure_does_not_fail_finalize(self, storage, crops, request_ids, session):
        lifecycle = VerificationLifecycle(storage, crops, FakeNotifier(fail=True), request_ids)
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))

        result = await lifecycle.finalize(session, record.id, REJECT)

        assert result.status == VerificationStatus.REJECTED
        assert (await session.get(Verification, record.id)).status == "rejected"

    async def test_no_phone_skips_notification(self, lifecycle, notifier, session):
        record = await lifecycle.submit_direct(session, direct(phone=None), make_photos(1))
        await lifecycle.finalize(session, record.id, REJECT)
        assert notifier.rejections == []


# ---------------------------------------------------------------------------
# Location correction
# ---------------------------------------------------------------------------


class TestUpdateLocationType:
    async def test_correct_after_approval(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        await approve_first_photo(lifecycle, session, record)
        await lifecycle.finalize(session, record.id, APPROVE)

        result = await lifecycle.update_location_type(session, record.id, "village")

        assert result.location_type == LocationType.VILLAGE
        assert result.coordinates == [77.59, 12.97]
        stored = await session.get(Verification, record.id)
        assert stored.location_type == "village"
        assert stored.status == "approved"

    async def test_allowed_while_pending(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        result = await lifecycle.update_location_type(session, record.id, LocationType.FARM)
        assert result.location_type == LocationType.FARM
        assert (await session.get(Verification, record.id)).status == "pending"

    async def test_invalid_value(self, lifecycle, session):
        record = await lifecycle.submit_direct(session, direct(), make_photos(1))
        with pytest.raises(ValidationFailed, match="farm' or 'village"):
            await lifecycle.update_location_type(session, record.id, "city")

    async def test_unknown_record(self, lifecycle, session):
        with pytest.raises(NotFound):
            await lifecycle.update_location_type(session, "00000000-0000-4000-8000-000000000000", "farm")
