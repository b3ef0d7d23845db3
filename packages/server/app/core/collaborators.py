"""
Construction of the lifecycle controller and its external collaborators.

Endpoints receive the controller through the ``get_lifecycle`` dependency;
tests override that dependency with in-memory fakes.
"""

from __future__ import annotations

import httpx
from fastapi import Depends

from app.core.config import Settings, get_settings
from app.core.http import get_http_client
from app.services.crop_directory import HttpCropDirectory
from app.services.lifecycle import VerificationLifecycle
from app.services.notifications import ChatraceNotifier
from app.services.request_ids import RequestIdGenerator
from app.services.storage import CloudinaryStorage


def build_lifecycle(settings: Settings, client: httpx.AsyncClient) -> VerificationLifecycle:
    return VerificationLifecycle(
        storage=CloudinaryStorage(
            client,
            cloud_name=settings.storage_cloud_name,
            api_key=settings.storage_api_key,
            api_secret=settings.storage_api_secret,
            folder=settings.storage_folder,
            base_url=settings.storage_base_url,
            timeout=settings.storage_timeout_seconds,
        ),
        crops=HttpCropDirectory(
            client,
            base_url=settings.crop_directory_url,
            token=settings.crop_directory_token,
            timeout=settings.crop_directory_timeout_seconds,
        ),
        notifier=ChatraceNotifier(
            client,
            api_url=settings.notify_api_url,
            api_key=settings.notify_api_key,
            approval_flow_id=settings.notify_flow_id_approval,
            rejection_flow_id=settings.notify_flow_id_rejection,
            country_code=settings.notify_country_code,
            timeout=settings.notify_timeout_seconds,
        ),
        request_ids=RequestIdGenerator(
            tz_name=settings.request_id_timezone,
            max_attempts=settings.request_id_max_attempts,
        ),
        max_photos=settings.max_photos,
        max_photo_bytes=settings.max_photo_bytes,
        upload_timeout=settings.storage_timeout_seconds,
        lookup_timeout=settings.crop_directory_timeout_seconds,
        notify_timeout=settings.notify_timeout_seconds,
    )


async def get_lifecycle(settings: Settings = Depends(get_settings)) -> VerificationLifecycle:
    """FastAPI dependency for the verification lifecycle controller."""
    return build_lifecycle(settings, await get_http_client())
