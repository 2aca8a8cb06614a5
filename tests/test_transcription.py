"""Tests for transcription, call summaries and re-transcribing call logs."""

from __future__ import annotations

import json

import httpx
import pytest

from crm_dialer.core.exceptions import TranscriptionError, ValidationError
from crm_dialer.db.models.core import CallLogModel
from crm_dialer.integrations.transcription import TranscriptionClient, parse_summary
from crm_dialer.services.transcripts import transcribe_call_log


def openai_handler(summary_content: str = '{"outcome": "Booked", "sentiment": "Positive"}'):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/v1/audio/transcriptions":
            assert b"whisper-1" in request.content
            return httpx.Response(200, json={"text": "Hello, this is Prime Shield."})
        if request.url.path == "/v1/chat/completions":
            body = json.loads(request.content)
            assert body["model"] == "gpt-4o-mini"
            return httpx.Response(
                200,
                json={"choices": [{"message": {"content": summary_content}}]},
            )
        return httpx.Response(404)

    return handler


def make_client(handler, api_key: str = "sk-test") -> TranscriptionClient:
    return TranscriptionClient(api_key=api_key, transport=httpx.MockTransport(handler))


class TestParseSummary:
    def test_json_inside_prose(self):
        text = 'Here you go:\n```json\n{"outcome": "Not interested", "sentiment": "Negative", "objections": ["price"]}\n```'
        summary = parse_summary(text)

        assert summary["outcome"] == "Not interested"
        assert summary["sentiment"] == "Negative"
        assert summary["objections"] == ["price"]
        assert summary["appointmentDetails"] is None

    @pytest.mark.parametrize("text", [None, "", "no json here", "{broken", "[1, 2]"])
    def test_fallback(self, text):
        assert parse_summary(text) == {
            "outcome": "Unknown",
            "sentiment": "Neutral",
            "objections": [],
            "appointmentDetails": None,
        }


class TestTranscriptionClient:
    """Whisper and chat completion requests."""

    @pytest.mark.asyncio
    async def test_transcribe_and_summarize(self):
        client = make_client(openai_handler())

        transcript = await client.transcribe(b"RIFF....", "call.wav")
        summary = await client.summarize(transcript)
        await client.close()

        assert transcript == "Hello, this is Prime Shield."
        assert summary["outcome"] == "Booked"
        assert summary["sentiment"] == "Positive"

    @pytest.mark.asyncio
    async def test_missing_api_key(self):
        client = make_client(openai_handler(), api_key="")
        with pytest.raises(TranscriptionError, match="API key"):
            await client.transcribe(b"x")
        await client.close()

    @pytest.mark.asyncio
    async def test_api_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(401, text="invalid key")

        client = make_client(handler)
        with pytest.raises(TranscriptionError) as exc_info:
            await client.transcribe(b"x")
        await client.close()

        assert "401" in exc_info.value.message
        assert exc_info.value.details == {"status_code": 401}


class TestTranscribeCallLog:
    """Download, transcribe and store."""

    @pytest.mark.asyncio
    async def test_transcript_and_sentiment_stored(self, db_session, sample_contact):
        call_log = CallLogModel(
            contact_id=sample_contact.id,
            duration=60,
            recording_url="https://storage.vapi.ai/abc/recording.wav",
        )
        db_session.add(call_log)
        await db_session.flush()

        def recording_handler(request: httpx.Request) -> httpx.Response:
            assert request.url.host == "storage.vapi.ai"
            return httpx.Response(200, content=b"RIFF....")

        client = make_client(openai_handler())
        result = await transcribe_call_log(
            db_session,
            client,
            str(call_log.id),
            summarize=True,
            transport=httpx.MockTransport(recording_handler),
        )
        await client.close()

        assert result["transcript"] == "Hello, this is Prime Shield."
        assert result["summary"]["outcome"] == "Booked"
        assert call_log.transcript == "Hello, this is Prime Shield."
        assert call_log.sentiment == "Positive"

    @pytest.mark.asyncio
    async def test_call_without_recording(self, db_session, sample_contact):
        call_log = CallLogModel(contact_id=sample_contact.id, duration=0)
        db_session.add(call_log)
        await db_session.flush()

        client = make_client(openai_handler())
        with pytest.raises(ValidationError):
            await transcribe_call_log(db_session, client, str(call_log.id))
        await client.close()

    @pytest.mark.asyncio
    async def test_download_failure(self, db_session, sample_contact):
        call_log = CallLogModel(contact_id=sample_contact.id, recording_url="https://storage.vapi.ai/gone.wav")
        db_session.add(call_log)
        await db_session.flush()

        client = make_client(openai_handler())
        with pytest.raises(TranscriptionError, match="download failed"):
            await transcribe_call_log(
                db_session,
                client,
                str(call_log.id),
                transport=httpx.MockTransport(lambda request: httpx.Response(404)),
            )
        await client.close()
