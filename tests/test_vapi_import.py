"""Tests for backfilling call logs from Vapi history."""

from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest
from sqlalchemy import select

from crm_dialer.core.retry import RetryConfig
from crm_dialer.db.models.core import CallLogModel
from crm_dialer.integrations.vapi import VapiClient
from crm_dialer.services.vapi_import import IMPORTED_TRANSCRIPT, import_vapi_calls

NO_WAIT = RetryConfig(max_attempts=1, base_delay=0.0, max_delay=0.0, jitter=0.0)

HISTORY = [
    # No recording: ignored
    {"id": "v-0", "customer": {"number": "+16175550100"}},
    # Already logged
    {"id": "v-1", "recordingUrl": "https://rec.example/1", "customer": {"number": "+16175550100"}},
    {
        "id": "v-2",
        "recordingUrl": "https://rec.example/2",
        "customer": {"number": "+1 (617) 555-0100"},
        "endedReason": "customer-ended-call",
        "duration": 74,
        "cost": 0.31,
        "transcript": "AI: Hi Jane ...",
        "analysis": {"sentiment": "positive"},
        "createdAt": "2024-05-01T14:00:00.000Z",
    },
    {
        "id": "v-3",
        "recordingUrl": "https://rec.example/3",
        "customer": {"number": "6175550100"},
        "createdAt": "2024-05-02T09:30:00.000Z",
    },
    # No contact with this number
    {"id": "v-4", "recordingUrl": "https://rec.example/4", "customer": {"number": "+12125550000"}},
    # No customer number at all
    {"id": "v-5", "recordingUrl": "https://rec.example/5"},
]


def history_client(calls: list[dict], seen: list[httpx.Request] | None = None) -> VapiClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(request)
        return httpx.Response(200, json=calls)

    return VapiClient(
        api_key="test-key",
        phone_number_id="pn-123",
        retry_config=NO_WAIT,
        transport=httpx.MockTransport(handler),
    )


class TestImportVapiCalls:
    """History import into call logs."""

    @pytest.mark.asyncio
    async def test_import_counts(self, db_session, call_log_repository, sample_contact):
        await call_log_repository.create(
            CallLogModel(contact_id=sample_contact.id, recording_url="https://rec.example/1")
        )
        seen: list[httpx.Request] = []
        vapi = history_client(HISTORY, seen)

        try:
            result = await import_vapi_calls(db_session, vapi, limit=250)
        finally:
            await vapi.close()

        assert result.to_dict() == {
            "total": 6,
            "imported": 2,
            "skipped_existing": 1,
            "unmatched": 2,
        }
        assert seen[0].url.path == "/call"
        assert seen[0].url.params["limit"] == "250"

    @pytest.mark.asyncio
    async def test_imported_log_fields(self, db_session, sample_contact):
        vapi = history_client(HISTORY)
        try:
            await import_vapi_calls(db_session, vapi)
        finally:
            await vapi.close()

        rows = await db_session.execute(
            select(CallLogModel).where(CallLogModel.vapi_call_id.in_(["v-2", "v-3"]))
        )
        logs = {log.vapi_call_id: log for log in rows.scalars()}

        full = logs["v-2"]
        assert full.contact_id == sample_contact.id
        assert full.outcome == "customer-ended-call"
        assert full.duration == 74
        assert full.cost == pytest.approx(0.31)
        assert full.transcript == "AI: Hi Jane ..."
        assert full.sentiment == "Positive"
        assert full.created_at == datetime(2024, 5, 1, 14, 0, tzinfo=timezone.utc)

        bare = logs["v-3"]
        assert bare.transcript == IMPORTED_TRANSCRIPT
        assert bare.outcome == "Completed"
        assert bare.sentiment == "Neutral"
        assert bare.created_at == datetime(2024, 5, 2, 9, 30, tzinfo=timezone.utc)

    @pytest.mark.asyncio
    async def test_second_run_imports_nothing(self, db_session, sample_contact):
        vapi = history_client(HISTORY)
        try:
            first = await import_vapi_calls(db_session, vapi)
            second = await import_vapi_calls(db_session, vapi)
        finally:
            await vapi.close()

        assert first.imported == 2
        assert second.imported == 0
        assert second.skipped_existing == 2
