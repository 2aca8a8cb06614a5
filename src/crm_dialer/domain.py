"""Shared domain enums."""

from __future__ import annotations

from enum import Enum


class LeadStatus(str, Enum):
    """Pipeline status of a contact."""

    NOT_CALLED = "Not Called"
    ATTEMPTED = "Attempted"
    CONNECTED = "Connected"
    NO_ANSWER = "No Answer"
    NOT_INTERESTED = "Not Interested"
    CALL_BACK_LATER = "Call Back Later"
    APPOINTMENT_BOOKED = "Appointment Booked"
    DO_NOT_CALL = "Do Not Call"


class Sentiment(str, Enum):
    """Call sentiment as reported by the voice-AI analysis."""

    POSITIVE = "Positive"
    NEUTRAL = "Neutral"
    NEGATIVE = "Negative"

    @classmethod
    def parse(cls, value: str | None) -> "Sentiment":
        """Parse a sentiment string leniently, defaulting to Neutral."""
        if not value:
            return cls.NEUTRAL
        for member in cls:
            if member.value.lower() == str(value).strip().lower():
                return member
        return cls.NEUTRAL


class Role(str, Enum):
    """Dashboard user role."""

    ADMIN = "admin"
    USER = "user"


class Campaign(str, Enum):
    """Agent persona / script variant selected per call."""

    RESIDENTIAL = "residential"
    B2B = "b2b"
    STAFFING = "staffing"

    @classmethod
    def parse(cls, value: str | None) -> "Campaign":
        """Parse a campaign name, defaulting to residential."""
        if not value:
            return cls.RESIDENTIAL
        try:
            return cls(str(value).strip().lower())
        except ValueError:
            return cls.RESIDENTIAL


class AppointmentStatus(str, Enum):
    """Appointment lifecycle status."""

    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no_show"


class Tone(str, Enum):
    """Vocal profile tone for a campaign."""

    FRIENDLY = "Friendly"
    DIRECT = "Direct"
    CONSERVATIVE = "Conservative"
