"""User model."""

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_recon.database import Base
from ledger_recon.models.base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, Base):
    """Application user (authentication handled elsewhere)."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    hashed_password: Mapped[str] = mapped_column(String(255), nullable=False)
