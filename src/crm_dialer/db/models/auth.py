"""User profile and campaign configuration models."""
from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import Boolean, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from crm_dialer.db.base import Base, TimestampMixin, UUIDMixin, UTCDateTime
from crm_dialer.domain import Campaign, Role, Tone


class ProfileModel(Base, UUIDMixin, TimestampMixin):
    """Dashboard user profile.

    Holds the role, the campaign the user works, and the Google OAuth tokens
    used to push booked appointments into their calendar.
    """

    __tablename__ = "profiles"

    email: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    role: Mapped[str] = mapped_column(String(20), nullable=False, default=Role.USER.value)
    assigned_campaign: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=Campaign.RESIDENTIAL.value,
        index=True,
    )

    google_refresh_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_access_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    google_token_expiry: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)

    @property
    def is_admin(self) -> bool:
        """Whether the profile has the admin role."""
        return self.role == Role.ADMIN.value

    @property
    def calendar_connected(self) -> bool:
        """Whether a Google refresh token is stored."""
        return bool(self.google_refresh_token)

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary (tokens are never exposed)."""
        return {
            "id": str(self.id),
            "email": self.email,
            "full_name": self.full_name,
            "role": self.role,
            "assigned_campaign": self.assigned_campaign,
            "calendar_connected": self.calendar_connected,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class CampaignConfigModel(Base, UUIDMixin, TimestampMixin):
    """Per-campaign operating configuration."""

    __tablename__ = "campaign_configs"

    campaign: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    calling_hours_start: Mapped[str] = mapped_column(String(5), nullable=False, default="09:00")
    calling_hours_end: Mapped[str] = mapped_column(String(5), nullable=False, default="18:00")
    tone: Mapped[str] = mapped_column(String(20), nullable=False, default=Tone.DIRECT.value)
    voicemail_message: Mapped[str] = mapped_column(Text, nullable=False, default="")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "campaign": self.campaign,
            "name": self.name,
            "is_active": self.is_active,
            "calling_hours": {
                "start": self.calling_hours_start,
                "end": self.calling_hours_end,
            },
            "tone": self.tone,
            "voicemail_message": self.voicemail_message,
        }
