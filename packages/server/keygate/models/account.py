"""Account model."""

from datetime import datetime
from typing import Optional

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import IntIdMixin, TimestampMixin


class Account(IntIdMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "accounts"
    __table_args__ = (
        sa.CheckConstraint(
            "(reset_otp IS NULL AND otp_created_at IS NULL AND otp_expires_at IS NULL)"
            " OR (reset_otp IS NOT NULL AND otp_created_at IS NOT NULL AND otp_expires_at IS NOT NULL)",
            name="ck_accounts_reset_challenge_complete",
        ),
        sa.CheckConstraint("provider IN ('local', 'google')", name="ck_accounts_provider"),
    )

    email: str = Field(nullable=False, unique=True, index=True)
    name: str = Field(nullable=False)
    password_hash: Optional[str] = Field(default=None)  # bcrypt; null for Google-only accounts
    google_id: Optional[str] = Field(default=None, unique=True, index=True)
    provider: str = Field(default="local", nullable=False)  # local | google
    email_verified: bool = Field(default=False, nullable=False)
    profile_picture: Optional[str] = Field(default=None)
    # Password reset challenge: all three set or all three null.
    reset_otp: Optional[str] = Field(default=None, max_length=6)
    otp_created_at: Optional[datetime] = Field(
        default=None, sa_type=sa.DateTime(timezone=True)
    )
    otp_expires_at: Optional[datetime] = Field(
        default=None, sa_type=sa.DateTime(timezone=True)
    )
    password_updated_at: Optional[datetime] = Field(
        default=None, sa_type=sa.DateTime(timezone=True)
    )
