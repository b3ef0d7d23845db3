"""
Shared fixtures: in-memory SQLite, fake collaborators, and an ASGI client.
"""

from __future__ import annotations

import asyncio
import os
import random
from datetime import datetime, timezone

os.environ.setdefault("CV_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("CV_LOG_FORMAT", "text")
os.environ.setdefault("CV_LOG_LEVEL", "warning")

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import app.models  # noqa: F401  populate metadata
from app.core.collaborators import get_lifecycle
from app.core.database import get_session
from app.core.errors import NotFound, UploadFailed
from app.main import app as fastapi_app
from app.services.crop_directory import CropDetails
from app.services.lifecycle import VerificationLifecycle
from app.services.notifications import ApprovalNotice, NotificationResult, RejectionNotice
from app.services.request_ids import RequestIdGenerator
from app.services.storage import PhotoUpload, StoredObject

# 14:05 in Asia/Kolkata
FIXED_NOW = datetime(2025, 6, 1, 8, 35, tzinfo=timezone.utc)


# ---------------------------------------------------------------------------
# Fake collaborators
# ---------------------------------------------------------------------------


class FakeStorage:
    """Records uploads; fails the upload whose index is in ``fail_indexes``."""

    def __init__(self, fail_indexes=()):
        self.fail_indexes = set(fail_indexes)
        self.uploads: list[str] = []

    async def upload(self, data: bytes, *, public_id: str, content_type: str) -> StoredObject:
        index = int(public_id.rsplit("_", 1)[-1])
        if index in self.fail_indexes:
            raise UploadFailed(f"Failed to upload photo {index + 1}")
        self.uploads.append(public_id)
        return StoredObject(url=f"https://img.test/{public_id}.jpg", identifier=public_id)


class FakeCropDirectory:
    def __init__(self, crops=None, delay: float = 0.0):
        self.crops: dict[str, CropDetails] = dict(crops or {})
        self.delay = delay

    async def get_crop(self, crop_id: str) -> CropDetails:
        if self.delay:
            await asyncio.sleep(self.delay)
        if crop_id not in self.crops:
            raise NotFound("Crop not found")
        return self.crops[crop_id]


class FakeNotifier:
    def __init__(self, fail: bool = False):
        self.fail = fail
        self.approvals: list[ApprovalNotice] = []
        self.rejections: list[RejectionNotice] = []

    async def notify_approval(self, notice: ApprovalNotice) -> NotificationResult:
        if self.fail:
            raise RuntimeError("gateway down")
        self.approvals.append(notice)
        return NotificationResult(success=True)

    async def notify_rejection(self, notice: RejectionNotice) -> NotificationResult:
        if self.fail:
            raise RuntimeError("gateway down")
        self.rejections.append(notice)
        return NotificationResult(success=True)


def make_photos(count: int = 2, size: int = 64, content_type: str = "image/jpeg") -> list[PhotoUpload]:
    return [
        PhotoUpload(filename=f"photo{i}.jpg", content_type=content_type, data=b"\xff" * size)
        for i in range(count)
    ]


SAMPLE_CROP = CropDetails.model_validate(
    {
        "cropName": "Ragi",
        "owner": {"id": "owner-1", "name": "Manjunath", "phone": "9876543210"},
        "farm": {"village": "Hosahalli", "taluk": "Malur", "district": "Kolar"},
        "quantity": "12",
        "measure": "quintal",
        "variety": "GPU-28",
        "moisture": "12%",
        "dryIntent": "yes",
    }
)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
async def session(engine):
    factory = sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    async with factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Lifecycle
# ---------------------------------------------------------------------------


@pytest.fixture
def storage():
    return FakeStorage()


@pytest.fixture
def crops():
    return FakeCropDirectory({"crop-1": SAMPLE_CROP})


@pytest.fixture
def notifier():
    return FakeNotifier()


@pytest.fixture
def request_ids():
    return RequestIdGenerator(rng=random.Random(7), clock=lambda: FIXED_NOW)


@pytest.fixture
def lifecycle(storage, crops, notifier, request_ids):
    return VerificationLifecycle(storage, crops, notifier, request_ids, lookup_timeout=1.0)


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------


@pytest.fixture
async def client(session, lifecycle):
    async def _session_override():
        yield session

    fastapi_app.dependency_overrides[get_session] = _session_override
    fastapi_app.dependency_overrides[get_lifecycle] = lambda: lifecycle
    async with AsyncClient(transport=ASGITransport(app=fastapi_app), base_url="http://test") as ac:
        yield ac
    fastapi_app.dependency_overrides.clear()
