"""Outbound calling compliance.

Two checks gate every dial:
- Do-not-call: the number is on the DNC list or the contact is marked Do Not Call
- Calling window: local time is inside both the federal 08:00-21:00 window
  and the campaign's own calling hours
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, time, timezone
from typing import Protocol
from zoneinfo import ZoneInfo

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.config import ComplianceSettings
from crm_dialer.core.exceptions import CallingWindowError, DoNotCallError, ValidationError
from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.dnc import DoNotCallRepository
from crm_dialer.domain import LeadStatus

log = get_logger(__name__)


class HasCallingHours(Protocol):
    calling_hours_start: str
    calling_hours_end: str


def parse_hhmm(value: str) -> time:
    """Parse an "HH:MM" string.

    Raises:
        ValidationError: If the value is not a valid time of day
    """
    try:
        hours, minutes = value.strip().split(":")
        return time(int(hours), int(minutes))
    except (AttributeError, ValueError) as e:
        raise ValidationError(f"Invalid time '{value}', expected HH:MM", cause=e) from e


@dataclass(frozen=True)
class CallingWindow:
    """Effective daily window in a local timezone."""

    start: time
    end: time
    timezone: str

    def contains(self, now: datetime) -> bool:
        """Whether ``now`` falls inside the window (start inclusive, end exclusive)."""
        if now.tzinfo is None:
            now = now.replace(tzinfo=timezone.utc)
        local = now.astimezone(ZoneInfo(self.timezone)).time()
        return self.start <= local < self.end

    def describe(self) -> str:
        return f"{self.start:%H:%M}-{self.end:%H:%M} {self.timezone}"


def effective_window(
    campaign_config: HasCallingHours | None,
    settings: ComplianceSettings,
) -> CallingWindow:
    """Intersect the federal window with the campaign's calling hours.

    An empty intersection yields a window where start >= end, which
    contains no time of day.
    """
    start = parse_hhmm(settings.window_start)
    end = parse_hhmm(settings.window_end)

    if campaign_config is not None:
        start = max(start, parse_hhmm(campaign_config.calling_hours_start))
        end = min(end, parse_hhmm(campaign_config.calling_hours_end))

    return CallingWindow(start=start, end=end, timezone=settings.timezone)


def is_within_calling_window(
    now: datetime,
    campaign_config: HasCallingHours | None,
    settings: ComplianceSettings,
) -> bool:
    """Check whether a call may be placed at ``now``.

    Always true when enforcement is disabled.
    """
    if not settings.enforce_calling_window:
        return True
    return effective_window(campaign_config, settings).contains(now)


def ensure_calling_window(
    now: datetime,
    campaign_config: HasCallingHours | None,
    settings: ComplianceSettings,
) -> None:
    """Raise CallingWindowError when outside the permitted window."""
    if is_within_calling_window(now, campaign_config, settings):
        return

    window = effective_window(campaign_config, settings)
    log.info("Call blocked outside calling window", window=window.describe())
    raise CallingWindowError(
        f"Calls are only permitted between {window.describe()}",
        details={
            "window_start": f"{window.start:%H:%M}",
            "window_end": f"{window.end:%H:%M}",
            "timezone": window.timezone,
        },
    )


async def ensure_not_blocked(session: AsyncSession, contact: ContactModel) -> None:
    """Raise DoNotCallError when the contact must not be dialled."""
    if contact.status == LeadStatus.DO_NOT_CALL.value:
        raise DoNotCallError(
            f"Contact {contact.id} is marked Do Not Call",
            details={"contact_id": str(contact.id)},
        )

    if await DoNotCallRepository(session).is_blocked(contact.phone_number):
        raise DoNotCallError(
            "Number is on the do-not-call list",
            details={"contact_id": str(contact.id)},
        )

