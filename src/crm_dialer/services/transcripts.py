"""Re-transcribe recorded calls."""

from __future__ import annotations

from typing import Any
from urllib.parse import urlparse

import httpx
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.exceptions import TranscriptionError, ValidationError
from crm_dialer.core.logging import get_logger
from crm_dialer.db.repositories.calls import CallLogRepository
from crm_dialer.domain import Sentiment
from crm_dialer.integrations.transcription import TranscriptionClient

log = get_logger(__name__)


async def download_recording(
    url: str,
    timeout: float = 60.0,
    transport: httpx.AsyncBaseTransport | None = None,
) -> tuple[bytes, str]:
    """Fetch a recording and return its bytes and file name."""
    async with httpx.AsyncClient(timeout=timeout, transport=transport, follow_redirects=True) as client:
        try:
            response = await client.get(url)
            response.raise_for_status()
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Recording download failed: {e}", cause=e) from e

    filename = urlparse(url).path.rsplit("/", 1)[-1] or "recording.wav"
    return response.content, filename


async def transcribe_call_log(
    session: AsyncSession,
    client: TranscriptionClient,
    call_log_id: str,
    summarize: bool = False,
    transport: httpx.AsyncBaseTransport | None = None,
) -> dict[str, Any]:
    """Transcribe a call's recording and store the transcript.

    With ``summarize`` the summary's sentiment is stored as well.

    Raises:
        RecordNotFoundError: Unknown call log
        ValidationError: The call has no recording
        TranscriptionError: Download or transcription failed
    """
    call_log = await CallLogRepository(session).get_or_raise(call_log_id)
    if not call_log.recording_url:
        raise ValidationError("Call has no recording", details={"call_log_id": str(call_log.id)})

    audio, filename = await download_recording(call_log.recording_url, transport=transport)
    transcript = await client.transcribe(audio, filename)
    call_log.transcript = transcript

    result: dict[str, Any] = {"call_log_id": str(call_log.id), "transcript": transcript}

    if summarize:
        summary = await client.summarize(transcript)
        call_log.sentiment = Sentiment.parse(summary.get("sentiment")).value
        result["summary"] = summary

    await session.flush()
    log.info("Call transcribed", call_log_id=str(call_log.id), chars=len(transcript))
    return result
