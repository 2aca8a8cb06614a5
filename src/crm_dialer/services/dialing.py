"""Single-call dial and batch session wiring."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.campaigns import get_campaign_config
from crm_dialer.config import Settings
from crm_dialer.core.exceptions import ForbiddenError
from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.db.repositories.dnc import DoNotCallRepository
from crm_dialer.db.session import get_db_context
from crm_dialer.domain import Campaign, LeadStatus
from crm_dialer.integrations.vapi import VapiCall, VapiClient
from crm_dialer.services.batch_dialer import ActiveCall, BatchConfig, BatchDialer, BatchProgress
from crm_dialer.services.compliance import ensure_calling_window, ensure_not_blocked

log = get_logger(__name__)


@dataclass
class DialResult:
    """Result of a single dial."""

    contact_id: UUID
    vapi_call_id: str
    status: str | None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "contact_id": str(self.contact_id),
            "vapi_call_id": self.vapi_call_id,
            "status": self.status,
        }


def mark_dialed(contact: ContactModel, now: datetime | None = None) -> None:
    """Record that a call was placed to the contact.

    Not Called becomes Attempted; later statuses are left alone.
    """
    if contact.status == LeadStatus.NOT_CALLED.value:
        contact.status = LeadStatus.ATTEMPTED.value
    contact.last_contacted_at = now or datetime.now(timezone.utc)


def ensure_owner(contact: ContactModel, owner_id: UUID | None) -> None:
    """Raise ForbiddenError when a scoped user touches someone else's contact."""
    if owner_id is not None and contact.user_id != owner_id:
        raise ForbiddenError("Contact belongs to another user")


async def dial_contact(
    session: AsyncSession,
    vapi: VapiClient,
    settings: Settings,
    contact_id: UUID | str,
    campaign: Campaign | str | None = None,
    owner_id: UUID | None = None,
    now: datetime | None = None,
) -> DialResult:
    """Place a single outbound call.

    Args:
        session: Database session (caller commits)
        vapi: Vapi client
        settings: Application settings (compliance section)
        contact_id: Contact to call
        campaign: Persona to use
        owner_id: Restrict to contacts owned by this profile
        now: Current time (for the calling-window check)

    Raises:
        RecordNotFoundError: Unknown contact
        DoNotCallError: Number is blocked or contact is Do Not Call
        CallingWindowError: Outside permitted hours
        VapiError: Vapi rejected the call
    """
    now = now or datetime.now(timezone.utc)
    campaign = campaign if isinstance(campaign, Campaign) else Campaign.parse(campaign)

    contact = await ContactRepository(session).get_or_raise(contact_id)
    ensure_owner(contact, owner_id)
    await ensure_not_blocked(session, contact)

    config = await get_campaign_config(session, campaign)
    ensure_calling_window(now, config, settings.compliance)

    call: VapiCall = await vapi.create_call(
        contact.phone_number,
        contact.first_name,
        contact.dial_address,
        campaign,
    )

    mark_dialed(contact, now)
    await session.flush()

    log.info(
        "Call initiated",
        contact_id=str(contact.id),
        vapi_call_id=call.id,
        campaign=campaign.value,
    )
    return DialResult(contact_id=contact.id, vapi_call_id=call.id, status=call.status)


async def start_batch(
    session: AsyncSession,
    dialer: BatchDialer,
    settings: Settings,
    *,
    contact_ids: list[UUID] | None = None,
    status_filter: str | None = None,
    concurrency: int | None = None,
    campaign: Campaign | str | None = None,
    owner_id: UUID | None = None,
) -> BatchProgress:
    """Select contacts and start a batch session.

    Without explicit IDs or a status filter, contacts that have never been
    called are selected.
    """
    campaign = campaign if isinstance(campaign, Campaign) else Campaign.parse(campaign)
    if not contact_ids and not status_filter:
        status_filter = LeadStatus.NOT_CALLED.value

    contacts = await ContactRepository(session).list_for_dialing(
        contact_ids=contact_ids,
        status=status_filter,
        owner_id=owner_id,
    )
    blocked = await DoNotCallRepository(session).blocked_numbers()
    campaign_config = await get_campaign_config(session, campaign)

    config = BatchConfig.from_settings(
        settings.dialer,
        concurrency=concurrency,
        campaign=campaign,
        calling_hours_start=campaign_config.calling_hours_start,
        calling_hours_end=campaign_config.calling_hours_end,
    )
    return await dialer.start(contacts, config, blocked_numbers=blocked)


async def record_batch_call_placed(call: ActiveCall) -> None:
    """Dialer callback: mark the contact as dialled in its own session."""
    async with get_db_context() as session:
        contact = await ContactRepository(session).get(call.contact_id)
        if contact is not None:
            mark_dialed(contact)
