"""Verification requests and their photos.

Revision ID: 0001_verifications
Revises:
Create Date: 2026-10-19 09:00:00.000000
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision: str = "0001_verifications"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

OPEN_RECORD_PREDICATE = "status IN ('pending', 'approved')"


def upgrade() -> None:
    op.create_table(
        "verifications",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column("request_id", sa.String(length=32), nullable=False),
        sa.Column("user_id", sa.Text(), nullable=False),
        sa.Column("crop_id", sa.Text(), nullable=False),
        sa.Column("crop_name", sa.Text(), nullable=False),
        sa.Column("full_name", sa.Text(), nullable=True),
        sa.Column("phone", sa.Text(), nullable=True),
        sa.Column("village", sa.Text(), nullable=True),
        sa.Column("taluk", sa.Text(), nullable=True),
        sa.Column("district", sa.Text(), nullable=True),
        sa.Column("quantity", sa.Text(), nullable=True),
        sa.Column("variety", sa.Text(), nullable=True),
        sa.Column("moisture", sa.Text(), nullable=True),
        sa.Column("will_dry", sa.Text(), nullable=True),
        sa.Column("longitude", sa.Float(), nullable=False),
        sa.Column("latitude", sa.Float(), nullable=False),
        sa.Column("location_type", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
        sa.Column("rejection_reason", sa.Text(), nullable=True),
        sa.Column("rejection_notes", sa.Text(), nullable=True),
        sa.Column("reviewed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("reviewed_by", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.text("now()")),
    )
    op.create_index("ix_verifications_id", "verifications", ["id"])
    op.create_index("ix_verifications_request_id", "verifications", ["request_id"], unique=True)
    op.create_index("ix_verifications_user_id", "verifications", ["user_id"])
    op.create_index("ix_verifications_crop_id", "verifications", ["crop_id"])
    op.create_index("ix_verifications_status", "verifications", ["status"])
    op.create_index("ix_verifications_created_at", "verifications", ["created_at"])
    # One open record per user; concurrent submissions that pass the
    # eligibility read still cannot both insert.
    op.create_index(
        "uq_verifications_user_open",
        "verifications",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text(OPEN_RECORD_PREDICATE),
    )

    op.create_table(
        "verification_photos",
        sa.Column("id", postgresql.UUID(as_uuid=True), primary_key=True),
        sa.Column(
            "verification_id",
            postgresql.UUID(as_uuid=True),
            sa.ForeignKey("verifications.id"),
            nullable=False,
        ),
        sa.Column("position", sa.Integer(), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("storage_id", sa.Text(), nullable=True),
        sa.Column("status", sa.Text(), nullable=False, server_default="pending"),
    )
    op.create_index("ix_verification_photos_id", "verification_photos", ["id"])
    op.create_index("ix_verification_photos_verification_id", "verification_photos", ["verification_id"])


def downgrade() -> None:
    op.drop_index("ix_verification_photos_verification_id", table_name="verification_photos")
    op.drop_index("ix_verification_photos_id", table_name="verification_photos")
    op.drop_table("verification_photos")

    op.drop_index("uq_verifications_user_open", table_name="verifications")
    for name in ("created_at", "status", "crop_id", "user_id", "request_id", "id"):
        op.drop_index(f"ix_verifications_{name}", table_name="verifications")
    op.drop_table("verifications")
