"""Push booked appointments into the campaign owner's Google Calendar."""

from __future__ import annotations

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.core import AppointmentModel
from crm_dialer.db.models.auth import ProfileModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.profiles import ProfileRepository
from crm_dialer.integrations.google_calendar import GoogleCalendarClient, GoogleOAuthClient

log = get_logger(__name__)


def event_summary(contact: ContactModel) -> str:
    """Calendar event title for a booking."""
    return f"Demo with {contact.first_name or 'Lead'} {contact.last_name or ''}".rstrip()


async def sync_appointment(
    session: AsyncSession,
    calendar: GoogleCalendarClient,
    appointment: AppointmentModel,
    contact: ContactModel,
    campaign: str,
) -> str | None:
    """Create a calendar event for an appointment.

    The event goes to the first profile assigned to the campaign that has
    connected Google. The event id and refreshed access token are stored.

    Returns:
        Google event id, or None when no profile has a connected calendar

    Raises:
        CalendarIntegrationError: If the Calendar API call fails
    """
    profile = await ProfileRepository(session).find_calendar_owner(campaign)
    if profile is None or not profile.google_refresh_token:
        log.info("No connected calendar for campaign", campaign=campaign)
        return None

    event = await calendar.create_event(
        refresh_token=profile.google_refresh_token,
        summary=event_summary(contact),
        description=appointment.notes or "",
        start=appointment.scheduled_at,
    )

    appointment.google_event_id = event.id
    if event.access_token:
        profile.google_access_token = event.access_token
        profile.google_token_expiry = event.token_expiry
    await session.flush()

    log.info(
        "Appointment synced to calendar",
        appointment_id=str(appointment.id),
        profile_id=str(profile.id),
        event_id=event.id,
    )
    return event.id


async def connect_google_account(
    session: AsyncSession,
    oauth: GoogleOAuthClient,
    code: str,
) -> ProfileModel | None:
    """Finish the OAuth flow and store the tokens on the matching profile.

    The Google account's email must match an existing profile. A missing
    refresh token (re-consent without ``prompt=consent``) keeps the stored one.

    Returns:
        The updated profile, or None when no profile has that email

    Raises:
        CalendarIntegrationError: If the code exchange or userinfo call fails
    """
    tokens = await oauth.exchange_code(code)
    userinfo = await oauth.get_userinfo(tokens.access_token)
    email = userinfo.get("email") or ""

    profile = await ProfileRepository(session).find_by_email(email) if email else None
    if profile is None:
        log.warning("Google account has no matching profile", email=email)
        return None

    if tokens.refresh_token:
        profile.google_refresh_token = tokens.refresh_token
    profile.google_access_token = tokens.access_token
    profile.google_token_expiry = tokens.expiry
    await session.flush()

    log.info("Google calendar connected", profile_id=str(profile.id))
    return profile
