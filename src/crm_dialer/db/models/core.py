"""Call log and appointment ORM models."""
from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_dialer.db.base import Base, TimestampMixin, UUIDMixin, UTCDateTime, UUIDType, utcnow
from crm_dialer.domain import AppointmentStatus, Sentiment

if TYPE_CHECKING:
    from crm_dialer.db.models.crm import ContactModel


class CallLogModel(Base, UUIDMixin):
    """Completed call record, written by the end-of-call webhook or imports."""

    __tablename__ = "call_logs"

    contact_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    vapi_call_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)

    duration: Mapped[int] = mapped_column(Integer, nullable=False, default=0, comment="Seconds")
    outcome: Mapped[str] = mapped_column(String(255), nullable=False, default="Completed")
    sentiment: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=Sentiment.NEUTRAL.value,
    )
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    recording_url: Mapped[str | None] = mapped_column(String(1000), nullable=True, index=True)
    cost: Mapped[float] = mapped_column(Float, nullable=False, default=0.0)

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(),
        nullable=False,
        default=utcnow,
        index=True,
    )

    contact: Mapped["ContactModel"] = relationship(
        "ContactModel",
        back_populates="call_logs",
        lazy="noload",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "contact_id": str(self.contact_id),
            "vapi_call_id": self.vapi_call_id,
            "duration": self.duration,
            "outcome": self.outcome,
            "sentiment": self.sentiment,
            "transcript": self.transcript,
            "recording_url": self.recording_url,
            "cost": self.cost,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


class AppointmentModel(Base, UUIDMixin, TimestampMixin):
    """Appointment booked by the voice agent or an operator."""

    __tablename__ = "appointments"

    contact_id: Mapped[UUID] = mapped_column(
        UUIDType(),
        ForeignKey("contacts.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    scheduled_at: Mapped[datetime] = mapped_column(
        "datetime",
        UTCDateTime(),
        nullable=False,
        index=True,
    )
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=AppointmentStatus.SCHEDULED.value,
    )
    google_event_id: Mapped[str | None] = mapped_column(String(255), nullable=True)

    contact: Mapped["ContactModel"] = relationship(
        "ContactModel",
        back_populates="appointments",
        lazy="noload",
    )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": str(self.id),
            "contact_id": str(self.contact_id),
            "datetime": self.scheduled_at.isoformat() if self.scheduled_at else None,
            "notes": self.notes,
            "status": self.status,
            "google_event_id": self.google_event_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
