"""
Farmer notifications over WhatsApp flows (Chatrace).

Each notification upserts the contact with the flow's field values and then
triggers the configured flow. Delivery is best-effort: HTTP failures come back
as an unsuccessful ``NotificationResult`` instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Optional, Protocol

import httpx
import structlog

from app.services.crop_directory import bare_crop_id
from cropverify_shared.schemas.common import RejectionReason

log = structlog.get_logger()

DEFAULT_NAME = "Farmer"

# Kannada / English text shown to the farmer for each rejection reason
REJECTION_REASON_MESSAGES: dict[RejectionReason, str] = {
    RejectionReason.POOR_PHOTO_QUALITY: "ಫೋಟೋ ಗುಣಮಟ್ಟ ಕಳಪೆಯಾಗಿದೆ / Poor photo quality",
    RejectionReason.FACE_NOT_VISIBLE: "ಮುಖ ಸ್ಪಷ್ಟವಾಗಿ ಕಾಣುತ್ತಿಲ್ಲ / Face not visible",
    RejectionReason.INCORRECT_LOCATION: "ತಪ್ಪು ಸ್ಥಳ / Incorrect location",
    RejectionReason.INSUFFICIENT_PHOTOS: "ಸಾಕಷ್ಟು ಫೋಟೋಗಳಿಲ್ಲ / Insufficient photos",
    RejectionReason.DUPLICATE_REQUEST: "ನಕಲಿ ವಿನಂತಿ / Duplicate request",
    RejectionReason.CROP_MISMATCH: "ಬೆಳೆ ಹೊಂದಿಕೆಯಾಗುತ್ತಿಲ್ಲ / Crop mismatch",
    RejectionReason.FAKE_OR_MANIPULATED: "ನಕಲಿ ಅಥವಾ ಬದಲಾಯಿಸಿದ ಫೋಟೋ / Fake or manipulated",
    RejectionReason.INCOMPLETE_INFORMATION: "ಅಪೂರ್ಣ ಮಾಹಿತಿ / Incomplete information",
    RejectionReason.SUSPICIOUS_ACTIVITY: "ಸಂಶಯಾಸ್ಪದ ಚಟುವಟಿಕೆ / Suspicious activity",
    RejectionReason.PHOTO_TOO_DARK: "ಫೋಟೋ ತುಂಬಾ ಗಾಢವಾಗಿದೆ / Photo too dark",
    RejectionReason.PHOTO_NOT_CLEAR: "ಫೋಟೋ ಸ್ಪಷ್ಟವಾಗಿಲ್ಲ / Photo not clear",
    RejectionReason.PHOTO_NOT_FOCUSED: "ಫೋಟೋ ಕೇಂದ್ರೀಕೃತವಾಗಿಲ್ಲ / Photo not focused",
    RejectionReason.PARTIAL_CROP_VISIBLE: "ಭಾಗಶಃ ಬೆಳೆ ಮಾತ್ರ ಕಾಣುತ್ತಿದೆ / Partial crop visible",
    RejectionReason.CAMERA_ANGLE_INCORRECT: "ಕ್ಯಾಮೆರಾ ಕೋನ ತಪ್ಪಾಗಿದೆ / Camera angle incorrect",
    RejectionReason.PHOTO_CONTAINS_OBSTRUCTIONS: "ಫೋಟೋದಲ್ಲಿ ಅಡೆತಡೆಗಳಿವೆ / Photo contains obstructions",
    RejectionReason.WRONG_CROP_UPLOADED: "ತಪ್ಪು ಬೆಳೆ ಅಪ್ಲೋಡ್ ಮಾಡಲಾಗಿದೆ / Wrong crop uploaded",
    RejectionReason.CROP_STAGE_MISMATCH: "ಬೆಳೆಯ ಹಂತ ಹೊಂದಿಕೆಯಾಗುತ್ತಿಲ್ಲ / Crop stage mismatch",
    RejectionReason.CROP_AREA_NOT_CLEAR: "ಬೆಳೆ ಪ್ರದೇಶ ಸ್ಪಷ್ಟವಾಗಿಲ್ಲ / Crop area not clear",
    RejectionReason.CROP_NOT_IDENTIFIABLE: "ಬೆಳೆಯನ್ನು ಗುರುತಿಸಲಾಗುತ್ತಿಲ್ಲ / Crop not identifiable",
    RejectionReason.OTHER: "ಇತರ ಕಾರಣ / Other reason",
}


@dataclass(frozen=True)
class ApprovalNotice:
    phone: str
    full_name: Optional[str]
    request_id: str
    crop_name: str
    reviewed_at: datetime


@dataclass(frozen=True)
class RejectionNotice:
    phone: str
    full_name: Optional[str]
    request_id: str
    crop_name: str
    crop_id: str
    rejection_reason: RejectionReason
    rejection_notes: Optional[str] = None


@dataclass(frozen=True)
class NotificationResult:
    success: bool
    data: Any = None
    error: Any = None


class Notifier(Protocol):
    async def notify_approval(self, notice: ApprovalNotice) -> NotificationResult:
        ...

    async def notify_rejection(self, notice: RejectionNotice) -> NotificationResult:
        ...


def normalize_phone(phone: str, country_code: str = "91") -> str:
    """Digits only, country code prefixed when missing, then ``+``."""
    digits = re.sub(r"\D", "", phone)
    if not digits.startswith(country_code):
        digits = f"{country_code}{digits}"
    return f"+{digits}"


def _field(name: str, value: Any) -> dict[str, Any]:
    return {"action": "set_field_value", "field_name": name, "value": value}


class ChatraceNotifier:
    """Triggers WhatsApp approval/rejection flows through the Chatrace API."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_url: str,
        api_key: str,
        approval_flow_id: str,
        rejection_flow_id: str,
        country_code: str = "91",
        timeout: float = 10.0,
    ):
        self._client = client
        self._api_url = api_url.rstrip("/")
        self._api_key = api_key
        self._approval_flow_id = approval_flow_id
        self._rejection_flow_id = rejection_flow_id
        self._country_code = country_code
        self._timeout = timeout

    def approval_payload(self, notice: ApprovalNotice) -> dict[str, Any]:
        name = notice.full_name or DEFAULT_NAME
        return self._contact(
            notice.phone,
            name,
            [
                _field("full_name", name),
                _field("Crop_Name", notice.crop_name),
                _field("request_status", "approved"),
                _field("request_date", notice.reviewed_at.isoformat()),
                _field("request_id", notice.request_id),
            ],
            self._approval_flow_id,
        )

    def rejection_payload(self, notice: RejectionNotice) -> dict[str, Any]:
        name = notice.full_name or DEFAULT_NAME
        reason = REJECTION_REASON_MESSAGES.get(notice.rejection_reason, notice.rejection_reason.value)
        if notice.rejection_notes:
            reason = f"{reason}: {notice.rejection_notes}"
        return self._contact(
            notice.phone,
            name,
            [
                _field("full_name", name),
                _field("Crop_Name", notice.crop_name),
                _field("request_id", notice.request_id),
                _field("rejected_reason", reason),
                _field("verification_link", bare_crop_id(notice.crop_id)),
                _field("phone", notice.phone),
            ],
            self._rejection_flow_id,
        )

    def _contact(
        self, phone: str, name: str, fields: list[dict[str, Any]], flow_id: str
    ) -> dict[str, Any]:
        return {
            "phone": normalize_phone(phone, self._country_code),
            "first_name": name,
            "last_name": "farmer",
            "actions": [*fields, {"action": "send_flow", "flow_id": int(flow_id)}],
        }

    async def notify_approval(self, notice: ApprovalNotice) -> NotificationResult:
        if not self._approval_flow_id:
            return self._disabled("approval")
        return await self._send("approval", self.approval_payload(notice))

    async def notify_rejection(self, notice: RejectionNotice) -> NotificationResult:
        if not self._rejection_flow_id:
            return self._disabled("rejection")
        return await self._send("rejection", self.rejection_payload(notice))

    def _disabled(self, kind: str) -> NotificationResult:
        log.info("notification.disabled", kind=kind)
        return NotificationResult(success=False, error="notifications not configured")

    async def _send(self, kind: str, payload: dict[str, Any]) -> NotificationResult:
        if not self._api_key:
            return self._disabled(kind)
        try:
            resp = await self._client.post(
                f"{self._api_url}/users",
                json=payload,
                headers={"X-ACCESS-TOKEN": self._api_key},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            log.error("notification.gateway_error", kind=kind, status=exc.response.status_code)
            return NotificationResult(success=False, error=exc.response.text)
        except (httpx.HTTPError, ValueError) as exc:
            log.error("notification.gateway_unreachable", kind=kind, error=str(exc))
            return NotificationResult(success=False, error=str(exc))

        if isinstance(body, dict) and body.get("error"):
            log.error("notification.gateway_rejected", kind=kind, error=body["error"])
            return NotificationResult(success=False, error=body["error"])

        log.info("notification.sent", kind=kind, phone_suffix=payload["phone"][-4:])
        return NotificationResult(success=True, data=body)
