"""
Crop directory lookup.

The crop-keyed submission derives the owning user and the farm's location
fields from the external crop service instead of trusting the caller.
"""

from __future__ import annotations

from typing import Optional, Protocol

import httpx
import structlog
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel

from app.core.errors import DependencyFailed, NotFound

log = structlog.get_logger()


class _CropModel(BaseModel):
    # Upstream crop records send numeric quantity, moisture and ids as JSON numbers
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class CropOwner(_CropModel):
    id: str
    name: Optional[str] = None
    phone: Optional[str] = None


class CropFarm(_CropModel):
    village: Optional[str] = None
    taluk: Optional[str] = None
    district: Optional[str] = None


class CropDetails(_CropModel):
    crop_name: str
    owner: CropOwner
    farm: CropFarm = Field(default_factory=CropFarm)
    quantity: Optional[str] = None
    measure: Optional[str] = None
    variety: Optional[str] = None
    moisture: Optional[str] = None
    dry_intent: Optional[str] = None

    @property
    def quantity_label(self) -> Optional[str]:
        """Quantity with its unit, e.g. ``"12 quintal"``."""
        if self.quantity is None:
            return None
        return f"{self.quantity} {self.measure}".strip() if self.measure else self.quantity


class CropDirectory(Protocol):
    async def get_crop(self, crop_id: str) -> CropDetails:
        ...


def bare_crop_id(crop_id: str) -> str:
    """Crop ids sometimes arrive as links; keep only the last path segment."""
    return crop_id.rstrip("/").split("/")[-1]


class HttpCropDirectory:
    """Crop lookups against the crop directory REST service."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        base_url: str,
        token: str = "",
        timeout: float = 10.0,
    ):
        self._client = client
        self._base_url = base_url.rstrip("/")
        self._token = token
        self._timeout = timeout

    async def get_crop(self, crop_id: str) -> CropDetails:
        crop_id = bare_crop_id(crop_id)
        headers = {"Authorization": f"Bearer {self._token}"} if self._token else {}
        try:
            resp = await self._client.get(
                f"{self._base_url}/crops/{crop_id}",
                headers=headers,
                timeout=self._timeout,
            )
        except httpx.HTTPError as exc:
            log.error("crop_directory.unreachable", crop_id=crop_id, error=str(exc))
            raise DependencyFailed("Crop directory unreachable") from exc

        if resp.status_code == 404:
            raise NotFound("Crop not found")
        if resp.is_error:
            log.error("crop_directory.error", crop_id=crop_id, status=resp.status_code)
            raise DependencyFailed(f"Crop directory error ({resp.status_code})")

        body = resp.json()
        # Some deployments wrap the crop in a {data: ...} envelope
        if isinstance(body, dict) and isinstance(body.get("data"), dict):
            body = body["data"]
        try:
            return CropDetails.model_validate(body)
        except ValidationError as exc:
            log.error("crop_directory.malformed", crop_id=crop_id, errors=exc.error_count())
            raise DependencyFailed("Crop directory returned an unusable crop record") from exc
