# SQLModel definitions, imported here to ensure metadata is populated for Alembic.
from .base import UUIDMixin, TimestampMixin  # noqa: F401
from .verification import Verification  # noqa: F401
from .verification_photo import VerificationPhoto  # noqa: F401
