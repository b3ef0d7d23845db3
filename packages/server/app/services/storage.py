"""
Object storage for verification photos.

Photos are pushed to Cloudinary's signed upload API; the service only keeps the
returned URL and public id and never reads the bytes back.
"""

from __future__ import annotations

import hashlib
import time
from dataclasses import dataclass
from typing import Optional, Protocol

import httpx
import structlog

from app.core.errors import UploadFailed

log = structlog.get_logger()

UPLOAD_TRANSFORMATION = "c_limit,h_1024,w_1024/q_auto:good"


@dataclass(frozen=True)
class PhotoUpload:
    """One photo file received with a submission."""
    filename: str
    content_type: str
    data: bytes


@dataclass(frozen=True)
class StoredObject:
    url: str
    identifier: str


class ObjectStorage(Protocol):
    async def upload(self, data: bytes, *, public_id: str, content_type: str) -> StoredObject:
        ...


def sign_params(params: dict[str, str], api_secret: str) -> str:
    """Cloudinary request signature: SHA-1 over sorted ``k=v`` pairs plus the secret."""
    to_sign = "&".join(f"{key}={params[key]}" for key in sorted(params) if params[key] != "")
    return hashlib.sha1(f"{to_sign}{api_secret}".encode()).hexdigest()


class CloudinaryStorage:
    """Signed uploads into a single Cloudinary folder."""

    def __init__(
        self,
        client: httpx.AsyncClient,
        cloud_name: str,
        api_key: str,
        api_secret: str,
        folder: str = "farm-verifications",
        base_url: str = "https://api.cloudinary.com/v1_1",
        timeout: float = 30.0,
        clock=time.time,
    ):
        self._client = client
        self._cloud_name = cloud_name
        self._api_key = api_key
        self._api_secret = api_secret
        self._folder = folder
        self._base_url = base_url.rstrip("/")
        self._timeout = timeout
        self._clock = clock

    @property
    def upload_url(self) -> str:
        return f"{self._base_url}/{self._cloud_name}/image/upload"

    async def upload(self, data: bytes, *, public_id: str, content_type: str) -> StoredObject:
        if not self._cloud_name or not self._api_key:
            raise UploadFailed("Object storage is not configured")

        params = {
            "folder": self._folder,
            "public_id": public_id,
            "timestamp": str(int(self._clock())),
            "transformation": UPLOAD_TRANSFORMATION,
        }
        form = {
            **params,
            "api_key": self._api_key,
            "signature": sign_params(params, self._api_secret),
        }
        try:
            resp = await self._client.post(
                self.upload_url,
                data=form,
                files={"file": (public_id, data, content_type)},
                timeout=self._timeout,
            )
            resp.raise_for_status()
            body = resp.json()
        except httpx.HTTPStatusError as exc:
            log.error("storage.upload_rejected", status=exc.response.status_code, public_id=public_id)
            raise UploadFailed(f"Photo upload rejected ({exc.response.status_code})") from exc
        except httpx.HTTPError as exc:
            log.error("storage.upload_unreachable", public_id=public_id, error=str(exc))
            raise UploadFailed("Photo storage unreachable") from exc

        url: Optional[str] = body.get("secure_url") or body.get("url")
        if not url:
            raise UploadFailed("Photo storage returned no URL")
        return StoredObject(url=url, identifier=body.get("public_id", public_id))
