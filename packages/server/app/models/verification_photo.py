"""Photo evidence attached to a verification request."""

import uuid
from typing import Optional

from sqlmodel import Field, SQLModel

from .base import UUIDMixin


class VerificationPhoto(UUIDMixin, SQLModel, table=True):
    __tablename__ = "verification_photos"

    verification_id: uuid.UUID = Field(foreign_key="verifications.id", nullable=False, index=True)
    position: int = Field(nullable=False)  # input order at submission
    url: str = Field(nullable=False)
    storage_id: Optional[str] = None  # object storage public id
    status: str = Field(nullable=False, default="pending")  # pending | approved | rejected
