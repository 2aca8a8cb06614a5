"""Tests for the Vapi REST client."""

from __future__ import annotations

import json

import httpx
import pytest

from crm_dialer.core.exceptions import VapiError
from crm_dialer.core.retry import RetryConfig
from crm_dialer.integrations.vapi import (
    VapiCall,
    VapiClient,
    campaign_of,
    duration_of,
    recording_url_of,
)

NO_WAIT = RetryConfig(max_attempts=3, base_delay=0.0, max_delay=0.0, jitter=0.0)


def make_client(handler, **kwargs) -> VapiClient:
    return VapiClient(
        api_key=kwargs.pop("api_key", "test-key"),
        phone_number_id=kwargs.pop("phone_number_id", "pn-123"),
        retry_config=NO_WAIT,
        transport=httpx.MockTransport(handler),
        **kwargs,
    )


class TestPayloadHelpers:
    """Field extraction from call payloads."""

    def test_recording_url_prefers_mono_then_artifact(self):
        assert recording_url_of({"recordingUrl": "a", "stereoRecordingUrl": "b"}) == "a"
        assert recording_url_of({"stereoRecordingUrl": "b"}) == "b"
        assert recording_url_of({"artifact": {"recordingUrl": "c"}}) == "c"
        assert recording_url_of({}) is None

    def test_duration_from_field_or_timestamps(self):
        assert duration_of({"duration": 42.6}) == 43
        assert duration_of(
            {"startedAt": "2024-06-03T15:00:00.000Z", "endedAt": "2024-06-03T15:01:30.000Z"}
        ) == 90
        assert duration_of({}) == 0

    def test_campaign_from_metadata(self):
        assert campaign_of({"metadata": {"campaign": "b2b"}}) == "b2b"
        assert campaign_of({"assistant": {"metadata": {"campaign": "staffing"}}}) == "staffing"
        assert campaign_of({}) is None

    def test_call_from_api(self):
        call = VapiCall.from_api(
            {
                "id": "call-1",
                "status": "ended",
                "endedReason": "customer-ended-call",
                "cost": "0.42",
                "customer": {"number": "+16175550100"},
                "artifact": {"transcript": "AI: Hello", "recordingUrl": "https://r/1.wav"},
                "analysis": {"summary": "Booked", "sentiment": "Positive"},
                "createdAt": "2024-06-03T15:00:00Z",
            }
        )
        assert call.is_ended
        assert call.cost == pytest.approx(0.42)
        assert call.transcript == "AI: Hello"
        assert call.recording_url == "https://r/1.wav"
        assert call.customer_number == "+16175550100"
        assert call.created_at is not None and call.created_at.tzinfo is not None


class TestCreateCall:
    """POST /call."""

    @pytest.mark.asyncio
    async def test_payload_uses_persona_overrides(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["path"] = request.url.path
            captured["auth"] = request.headers["Authorization"]
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "call-1", "status": "queued"})

        client = make_client(handler)
        call = await client.create_call("(617) 555-0100", "Jane", "12 Elm St", "b2b")
        await client.close()

        assert call.id == "call-1"
        assert call.status == "queued"
        assert captured["path"] == "/call"
        assert captured["auth"] == "Bearer test-key"

        body = captured["body"]
        assert body["phoneNumberId"] == "pn-123"
        assert body["customer"] == {"number": "+16175550100", "name": "Jane"}
        assert body["assistant"]["metadata"] == {"campaign": "b2b"}
        assert body["assistant"]["firstMessage"] == "Hello, is this Jane?"

    @pytest.mark.asyncio
    async def test_stored_assistant_id(self):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["body"] = json.loads(request.content)
            return httpx.Response(201, json={"id": "call-2", "status": "queued"})

        client = make_client(handler, assistant_id="asst-9")
        await client.create_call("6175550100", "Jane", "12 Elm St")
        await client.close()

        assert captured["body"]["assistant"] == {
            "assistantId": "asst-9",
            "metadata": {"campaign": "residential"},
        }

    @pytest.mark.asyncio
    async def test_missing_configuration(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise AssertionError("no request expected")

        client = make_client(handler, api_key="")
        with pytest.raises(VapiError, match="API key"):
            await client.create_call("6175550100", "Jane", "x")
        await client.close()

        client = make_client(handler, phone_number_id="")
        with pytest.raises(VapiError, match="phone number"):
            await client.create_call("6175550100", "Jane", "x")
        await client.close()

    @pytest.mark.asyncio
    async def test_client_error_message_is_surfaced(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            return httpx.Response(400, json={"message": ["customer.number must be E.164"]})

        client = make_client(handler)
        with pytest.raises(VapiError) as exc_info:
            await client.create_call("123", "Jane", "x")
        await client.close()

        assert exc_info.value.message == "customer.number must be E.164"
        assert exc_info.value.details == {"status_code": 400}
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_server_errors_are_retried(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) < 3:
                return httpx.Response(503, json={"message": "busy"})
            return httpx.Response(201, json={"id": "call-3", "status": "queued"})

        client = make_client(handler)
        call = await client.create_call("6175550100", "Jane", "x")
        await client.close()

        assert call.id == "call-3"
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_rate_limit_waits_for_retry_after(self):
        attempts = []

        def handler(request: httpx.Request) -> httpx.Response:
            attempts.append(1)
            if len(attempts) == 1:
                return httpx.Response(429, headers={"Retry-After": "0"}, json={"message": "slow down"})
            return httpx.Response(201, json={"id": "call-4", "status": "queued"})

        client = make_client(handler)
        call = await client.create_call("6175550100", "Jane", "x")
        await client.close()

        assert call.id == "call-4"
        assert len(attempts) == 2

    @pytest.mark.asyncio
    async def test_persistent_server_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(500, json={"message": "internal"})

        client = make_client(handler)
        with pytest.raises(VapiError) as exc_info:
            await client.create_call("6175550100", "Jane", "x")
        await client.close()

        assert exc_info.value.details["status_code"] == 500


class TestCallHistory:
    @pytest.mark.asyncio
    async def test_get_and_list_calls(self):
        def handler(request: httpx.Request) -> httpx.Response:
            if request.url.path == "/call/call-1":
                return httpx.Response(200, json={"id": "call-1", "status": "in-progress"})
            assert request.url.params["limit"] == "50"
            return httpx.Response(200, json=[{"id": "a"}, {"id": "b"}])

        client = make_client(handler)
        call = await client.get_call("call-1")
        calls = await client.list_calls(limit=50)
        await client.close()

        assert call.status == "in-progress"
        assert [c.id for c in calls] == ["a", "b"]
