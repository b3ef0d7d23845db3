"""Verification request model."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from cropverify_shared.schemas.common import OPEN_STATUSES

from .base import TimestampMixin, UUIDMixin

# At most one open (pending or approved) record per user; rejected history is unbounded.
OPEN_RECORD_PREDICATE = "status IN ({})".format(", ".join(f"'{s.value}'" for s in OPEN_STATUSES))


class Verification(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "verifications"
    __table_args__ = (
        sa.Index(
            "uq_verifications_user_open",
            "user_id",
            unique=True,
            postgresql_where=sa.text(OPEN_RECORD_PREDICATE),
            sqlite_where=sa.text(OPEN_RECORD_PREDICATE),
        ),
    )

    request_id: str = Field(nullable=False, unique=True, index=True, max_length=32)
    user_id: str = Field(nullable=False, index=True)
    crop_id: str = Field(nullable=False, index=True)
    crop_name: str = Field(nullable=False)

    full_name: Optional[str] = None
    phone: Optional[str] = None
    village: Optional[str] = None
    taluk: Optional[str] = None
    district: Optional[str] = None
    quantity: Optional[str] = None
    variety: Optional[str] = None
    moisture: Optional[str] = None
    will_dry: Optional[str] = None

    longitude: float = Field(nullable=False)
    latitude: float = Field(nullable=False)
    location_type: Optional[str] = None  # farm | village

    status: str = Field(nullable=False, default="pending", index=True)  # pending | approved | rejected
    rejection_reason: Optional[str] = None
    rejection_notes: Optional[str] = None
    reviewed_at: Optional[datetime] = Field(default=None, sa_type=sa.DateTime(timezone=True))
    reviewed_by: Optional[str] = None
