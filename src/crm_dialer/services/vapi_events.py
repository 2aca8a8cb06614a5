"""Vapi server-message handling.

Vapi posts every server message to one webhook as ``{"message": {...}}``:
- tool-calls: the assistant books an appointment or corrects an address
- end-of-call-report: final transcript, recording and cost for a call
- status-update: call lifecycle changes (queued, ringing, in-progress, ...)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from typing import Any
from zoneinfo import ZoneInfo

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.core import AppointmentModel, CallLogModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.domain import AppointmentStatus, Campaign, LeadStatus, Sentiment
from crm_dialer.integrations.google_calendar import GoogleCalendarClient
from crm_dialer.integrations.vapi import campaign_of, duration_of, recording_url_of
from crm_dialer.services.batch_dialer import BatchDialer
from crm_dialer.services.calendar_sync import sync_appointment

log = get_logger(__name__)

MESSAGE_TOOL_CALLS = "tool-calls"
MESSAGE_END_OF_CALL = "end-of-call-report"
MESSAGE_STATUS_UPDATE = "status-update"

NO_TRANSCRIPT = "No transcript available"
NO_TOOL_RESPONSE = {"message": "No tool executed"}


def parse_tool_arguments(raw: Any) -> dict[str, Any]:
    """Tool arguments arrive as a dict or a JSON string; anything else is {}."""
    if isinstance(raw, dict):
        return raw
    if isinstance(raw, str):
        try:
            parsed = json.loads(raw)
        except json.JSONDecodeError:
            log.warning("Unparsable tool arguments", arguments=raw[:200])
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return {}


def parse_booking_datetime(value: Any, default_timezone: str) -> datetime:
    """Parse the assistant's ISO-8601 booking time.

    Times without an offset are taken as local to ``default_timezone``.

    Raises:
        ValueError: If the value is not an ISO-8601 datetime
    """
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"Invalid datetime '{value}'")
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError as e:
        raise ValueError(f"Invalid datetime '{value}'") from e
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=ZoneInfo(default_timezone))
    return parsed


def customer_number_of(message: dict[str, Any]) -> str | None:
    call = message.get("call") or {}
    customer = call.get("customer") or message.get("customer") or {}
    return customer.get("number")


def booking_notes(contact: ContactModel, email: str | None, notes: str | None) -> str:
    """Notes stored on the appointment and the calendar event."""
    address = contact.full_address or "Address Not on File"
    return f"Email: {email or 'Not Provided'}\nAddress: {address}\n\n{notes or ''}"


def next_status_after_call(current: str, duration: int) -> str:
    """Pipeline status after a call ends.

    Booked and Do Not Call contacts keep their status; Connected is never
    downgraded to Attempted.
    """
    if current in (LeadStatus.APPOINTMENT_BOOKED.value, LeadStatus.DO_NOT_CALL.value):
        return current
    new_status = LeadStatus.CONNECTED.value if duration > 0 else LeadStatus.ATTEMPTED.value
    if current == LeadStatus.CONNECTED.value and new_status == LeadStatus.ATTEMPTED.value:
        return current
    return new_status


class VapiEventHandler:
    """Processes Vapi server messages against the CRM.

    Usage:
        handler = VapiEventHandler(session, dialer=dialer, calendar=calendar)
        response_body = await handler.handle(payload)
    """

    def __init__(
        self,
        session: AsyncSession,
        *,
        dialer: BatchDialer | None = None,
        calendar: GoogleCalendarClient | None = None,
        default_timezone: str = "America/New_York",
    ) -> None:
        self._session = session
        self._contacts = ContactRepository(session)
        self._dialer = dialer
        self._calendar = calendar
        self._default_timezone = default_timezone

    async def handle(self, body: dict[str, Any]) -> dict[str, Any]:
        """Dispatch a webhook body by message type."""
        message = body.get("message") or {}
        message_type = message.get("type")

        if message_type == MESSAGE_TOOL_CALLS:
            return await self.handle_tool_calls(message)
        if message_type == MESSAGE_END_OF_CALL:
            return await self.handle_end_of_call_report(message)
        if message_type == MESSAGE_STATUS_UPDATE:
            return self.handle_status_update(message)

        log.debug("Ignoring Vapi message", message_type=message_type)
        return dict(NO_TOOL_RESPONSE)

    # ========================================================================
    # Tool Calls
    # ========================================================================

    async def handle_tool_calls(self, message: dict[str, Any]) -> dict[str, Any]:
        tool_calls = message.get("toolCalls") or message.get("toolCallList") or []
        if not tool_calls:
            return dict(NO_TOOL_RESPONSE)

        tool_call = tool_calls[0]
        function = tool_call.get("function") or {}
        name = function.get("name")
        args = parse_tool_arguments(function.get("arguments"))

        log.info(
            "Vapi tool call",
            tool=name,
            tool_call_id=tool_call.get("id"),
            vapi_call_id=(message.get("call") or {}).get("id"),
        )

        if name == "book_appointment":
            result = await self.book_appointment(message, args)
        elif name == "update_address":
            result = await self.update_address(message, args)
        else:
            result = f"Error: Unknown tool {name}."

        return {"results": [{"toolCallId": tool_call.get("id"), "result": result}]}

    async def book_appointment(self, message: dict[str, Any], args: dict[str, Any]) -> str:
        """Book an appointment for the caller and sync it to the calendar."""
        contact = await self._contacts.find_by_phone(customer_number_of(message))
        if contact is None:
            return "Error: Contact not found in database."

        email = args.get("email")
        if email:
            contact.email = email

        notes = booking_notes(contact, email, args.get("notes"))

        try:
            scheduled_at = parse_booking_datetime(args.get("datetime"), self._default_timezone)
        except ValueError as e:
            log.warning("Appointment insert failed", contact_id=str(contact.id), error=str(e))
            return f"Error: {e}"

        appointment = AppointmentModel(
            contact_id=contact.id,
            scheduled_at=scheduled_at,
            notes=notes,
            status=AppointmentStatus.SCHEDULED.value,
        )
        try:
            self._session.add(appointment)
            await self._session.flush()
        except SQLAlchemyError as e:
            await self._session.rollback()
            log.warning("Appointment insert failed", contact_id=str(contact.id), error=str(e))
            return f"Error: {e}"

        contact.status = LeadStatus.APPOINTMENT_BOOKED.value
        await self._session.flush()

        log.info(
            "Appointment booked",
            contact_id=str(contact.id),
            appointment_id=str(appointment.id),
            scheduled_at=scheduled_at.isoformat(),
        )

        if self._calendar is not None:
            campaign = campaign_of(message.get("call") or {}) or Campaign.RESIDENTIAL.value
            try:
                await sync_appointment(self._session, self._calendar, appointment, contact, campaign)
            except Exception as e:
                # Bookings stand even when the calendar is unreachable
                log.error("Calendar sync failed", appointment_id=str(appointment.id), error=str(e))

        return "Appointment booked successfully."

    async def update_address(self, message: dict[str, Any], args: dict[str, Any]) -> str:
        """Replace the contact's street address with the one confirmed on the call."""
        contact = await self._contacts.find_by_phone(customer_number_of(message))
        if contact is None:
            return "Error: Contact not found."

        new_address = args.get("new_address")
        contact.address = new_address
        await self._session.flush()

        log.info("Contact address updated", contact_id=str(contact.id))
        return f"Address updated to {new_address}. Proceed."

    # ========================================================================
    # Call Reports
    # ========================================================================

    async def handle_end_of_call_report(self, message: dict[str, Any]) -> dict[str, Any]:
        """Log the finished call and advance the contact's status."""
        call = message.get("call") or {}
        vapi_call_id = call.get("id")

        contact = await self._contacts.find_by_phone(customer_number_of(message))
        if contact is None:
            log.warning(
                "End-of-call report for unknown contact",
                vapi_call_id=vapi_call_id,
                phone=customer_number_of(message),
            )
        else:
            self._record_call(contact, message, call)
            await self._session.flush()

        if self._dialer is not None:
            self._dialer.handle_call_ended(vapi_call_id)

        return {"success": True}

    def _record_call(
        self,
        contact: ContactModel,
        message: dict[str, Any],
        call: dict[str, Any],
    ) -> CallLogModel:
        duration = duration_of(call) or duration_of(message)
        outcome = call.get("endedReason") or message.get("endedReason") or "Completed"
        analysis = message.get("analysis") or {}
        artifact = message.get("artifact") or {}

        try:
            cost = float(message.get("cost") or call.get("cost") or 0.0)
        except (TypeError, ValueError):
            cost = 0.0

        log_entry = CallLogModel(
            contact_id=contact.id,
            vapi_call_id=call.get("id"),
            duration=duration,
            outcome=outcome,
            recording_url=recording_url_of(message) or recording_url_of(call),
            transcript=(
                message.get("transcript")
                or artifact.get("transcript")
                or message.get("summary")
                or analysis.get("summary")
                or NO_TRANSCRIPT
            ),
            sentiment=Sentiment.parse(analysis.get("sentiment")).value,
            cost=cost,
        )
        self._session.add(log_entry)

        contact.total_calls = (contact.total_calls or 0) + 1
        contact.last_outcome = outcome

        new_status = next_status_after_call(contact.status, duration)
        if new_status != contact.status:
            contact.status = new_status
            contact.last_contacted_at = datetime.now(timezone.utc)

        log.info(
            "Call logged",
            contact_id=str(contact.id),
            vapi_call_id=call.get("id"),
            duration=duration,
            outcome=outcome,
            status=contact.status,
        )
        return log_entry

    def handle_status_update(self, message: dict[str, Any]) -> dict[str, Any]:
        """Forward a call status change to the batch dialer."""
        call = message.get("call") or {}
        vapi_call_id = call.get("id")
        status = message.get("status") or call.get("status")

        tracked = False
        if self._dialer is not None:
            tracked = self._dialer.handle_status_update(vapi_call_id, status)

        log.debug("Vapi status update", vapi_call_id=vapi_call_id, status=status, tracked=tracked)
        return {"success": True}
