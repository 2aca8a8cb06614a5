"""CRM ORM Models.

Contains models for lead management:
- Contact: a prospect record with pipeline status
- DoNotCall: numbers that must never be dialled
"""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Boolean, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_dialer.db.base import Base, TimestampMixin, UUIDMixin, UTCDateTime, UUIDType, utcnow
from crm_dialer.domain import LeadStatus

if TYPE_CHECKING:
    from crm_dialer.db.models.core import AppointmentModel, CallLogModel


class ContactModel(Base, UUIDMixin, TimestampMixin):
    """Contact (lead) ORM model."""

    __tablename__ = "contacts"

    # Owner profile; null for contacts created by system imports
    user_id: Mapped[UUID | None] = mapped_column(
        UUIDType(),
        ForeignKey("profiles.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    first_name: Mapped[str] = mapped_column(String(255), nullable=False)
    last_name: Mapped[str] = mapped_column(String(255), nullable=False, default="")

    phone_number: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)

    address: Mapped[str | None] = mapped_column(String(500), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)
    state: Mapped[str | None] = mapped_column(String(50), nullable=True)
    zip: Mapped[str | None] = mapped_column(String(20), nullable=True)

    source: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
        default=LeadStatus.NOT_CALLED.value,
        index=True,
    )

    total_calls: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_contacted_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    last_outcome: Mapped[str | None] = mapped_column(String(255), nullable=True)

    tcpa_acknowledged: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    call_logs: Mapped[list["CallLogModel"]] = relationship(
        "CallLogModel",
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="noload",
    )
    appointments: Mapped[list["AppointmentModel"]] = relationship(
        "AppointmentModel",
        back_populates="contact",
        cascade="all, delete-orphan",
        lazy="noload",
    )

    __table_args__ = (
        Index("ix_contacts_owner_status", "user_id", "status"),
    )

    @property
    def full_name(self) -> str:
        """First and last name joined."""
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def full_address(self) -> str | None:
        """Mailing address for booking notes, or None when no street is on file."""
        if not self.address:
            return None
        return f"{self.address}, {self.city or ''}, {self.state or ''} {self.zip or ''}".rstrip()

    @property
    def dial_address(self) -> str:
        """Address parts joined for the voice agent's context."""
        parts = [p for p in (self.address, self.city, self.state, self.zip) if p]
        return ", ".join(parts) if parts else "Address Not Available"

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "user_id": str(self.user_id) if self.user_id else None,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "phone_number": self.phone_number,
            "email": self.email,
            "address": self.address,
            "city": self.city,
            "state": self.state,
            "zip": self.zip,
            "source": self.source,
            "status": self.status,
            "total_calls": self.total_calls,
            "last_contacted_at": (
                self.last_contacted_at.isoformat() if self.last_contacted_at else None
            ),
            "last_outcome": self.last_outcome,
            "tcpa_acknowledged": self.tcpa_acknowledged,
            "notes": self.notes,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class DoNotCallModel(Base, UUIDMixin):
    """Do-not-call list entry keyed by normalised phone number."""

    __tablename__ = "dnc_list"

    phone_number: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        unique=True,
        index=True,
        comment="Last ten digits",
    )
    reason: Mapped[str | None] = mapped_column(String(255), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "phone_number": self.phone_number,
            "reason": self.reason,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
