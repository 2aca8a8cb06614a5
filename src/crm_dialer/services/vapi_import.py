"""Backfill call logs from Vapi call history."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.core import CallLogModel
from crm_dialer.db.repositories.calls import CallLogRepository
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.domain import Sentiment
from crm_dialer.integrations.vapi import VapiClient

log = get_logger(__name__)

IMPORTED_TRANSCRIPT = "Imported from Vapi History"


@dataclass
class VapiImportResult:
    total: int = 0
    imported: int = 0
    skipped_existing: int = 0
    unmatched: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total": self.total,
            "imported": self.imported,
            "skipped_existing": self.skipped_existing,
            "unmatched": self.unmatched,
        }


async def import_vapi_calls(
    session: AsyncSession,
    vapi: VapiClient,
    limit: int = 1000,
) -> VapiImportResult:
    """Import recorded Vapi calls that are not yet logged.

    The recording URL is the dedupe key. Calls without a recording are
    ignored; calls without a resolvable contact are counted as unmatched.
    """
    calls = await vapi.list_calls(limit=limit)
    call_logs = CallLogRepository(session)
    contacts = ContactRepository(session)

    result = VapiImportResult(total=len(calls))

    for call in calls:
        if not call.recording_url:
            continue

        if await call_logs.exists_by_recording_url(call.recording_url):
            result.skipped_existing += 1
            continue

        contact = await contacts.find_by_phone(call.customer_number) if call.customer_number else None
        if contact is None:
            result.unmatched += 1
            log.info("Skipping Vapi call without matching contact", vapi_call_id=call.id)
            continue

        await call_logs.create(
            CallLogModel(
                contact_id=contact.id,
                vapi_call_id=call.id,
                duration=call.duration,
                outcome=call.ended_reason or "Completed",
                recording_url=call.recording_url,
                transcript=call.transcript or call.summary or IMPORTED_TRANSCRIPT,
                sentiment=Sentiment.parse(call.sentiment).value,
                cost=call.cost,
                created_at=call.created_at or datetime.now(timezone.utc),
            )
        )
        result.imported += 1

    log.info("Vapi history import finished", **result.to_dict())
    return result
