"""OpenAI transcription and call summary client."""

from __future__ import annotations

import json
import re
from typing import Any

import httpx

from crm_dialer.config import OpenAISettings
from crm_dialer.core.exceptions import TranscriptionError
from crm_dialer.core.logging import get_logger

log = get_logger(__name__)

SUMMARY_PROMPT = """\
Analyze the following sales call transcript.
Return ONLY a JSON object with these keys:
- "outcome": one short phrase describing how the call ended
- "sentiment": "Positive", "Neutral" or "Negative"
- "objections": list of objections the prospect raised
- "appointmentDetails": date/time and notes if an appointment was booked, else null

Transcript:
{transcript}
"""

FALLBACK_SUMMARY: dict[str, Any] = {
    "outcome": "Unknown",
    "sentiment": "Neutral",
    "objections": [],
    "appointmentDetails": None,
}

_JSON_BLOCK = re.compile(r"\{.*\}", re.DOTALL)


def parse_summary(text: str | None) -> dict[str, Any]:
    """Extract the first JSON object from a model reply.

    Returns the fallback summary if nothing parseable is found.
    """
    if not text:
        return dict(FALLBACK_SUMMARY)

    match = _JSON_BLOCK.search(text)
    if not match:
        return dict(FALLBACK_SUMMARY)

    try:
        data = json.loads(match.group(0))
    except json.JSONDecodeError:
        return dict(FALLBACK_SUMMARY)

    if not isinstance(data, dict):
        return dict(FALLBACK_SUMMARY)

    return {
        "outcome": data.get("outcome") or FALLBACK_SUMMARY["outcome"],
        "sentiment": data.get("sentiment") or FALLBACK_SUMMARY["sentiment"],
        "objections": data.get("objections") or [],
        "appointmentDetails": data.get("appointmentDetails"),
    }


class TranscriptionClient:
    """Whisper transcription and chat-completion summaries."""

    def __init__(
        self,
        api_key: str,
        base_url: str = "https://api.openai.com",
        transcription_model: str = "whisper-1",
        summary_model: str = "gpt-4o-mini",
        timeout: float = 120.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.api_key = api_key
        self.transcription_model = transcription_model
        self.summary_model = summary_model
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={"Authorization": f"Bearer {api_key}"},
        )

    @classmethod
    def from_settings(cls, settings: OpenAISettings, **kwargs: Any) -> "TranscriptionClient":
        return cls(
            api_key=settings.api_key,
            base_url=settings.base_url,
            transcription_model=settings.transcription_model,
            summary_model=settings.summary_model,
            timeout=settings.timeout,
            **kwargs,
        )

    async def close(self) -> None:
        await self._client.aclose()

    def _require_key(self) -> None:
        if not self.api_key:
            raise TranscriptionError("Missing OpenAI API key (CRM_OPENAI__API_KEY)")

    async def transcribe(self, audio: bytes, filename: str = "audio.wav") -> str:
        """Transcribe an audio file.

        Args:
            audio: Raw audio bytes
            filename: File name (the extension tells the API the format)

        Returns:
            Transcript text

        Raises:
            TranscriptionError: On missing key or a failed request
        """
        self._require_key()
        log.info("Transcribing audio", filename=filename, size_kb=round(len(audio) / 1024, 1))

        try:
            response = await self._client.post(
                "/v1/audio/transcriptions",
                data={"model": self.transcription_model},
                files={"file": (filename, audio)},
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Transcription request failed: {e}", cause=e) from e

        if response.is_error:
            raise TranscriptionError(
                f"OpenAI API Error: {response.status_code} - {response.text}",
                details={"status_code": response.status_code},
            )

        return response.json().get("text", "")

    async def summarize(self, transcript: str) -> dict[str, Any]:
        """Summarize a call transcript into outcome, sentiment and objections."""
        self._require_key()

        try:
            response = await self._client.post(
                "/v1/chat/completions",
                json={
                    "model": self.summary_model,
                    "messages": [
                        {"role": "user", "content": SUMMARY_PROMPT.format(transcript=transcript)}
                    ],
                    "temperature": 0,
                },
            )
        except httpx.HTTPError as e:
            raise TranscriptionError(f"Summary request failed: {e}", cause=e) from e

        if response.is_error:
            raise TranscriptionError(
                f"OpenAI API Error: {response.status_code} - {response.text}",
                details={"status_code": response.status_code},
            )

        try:
            content = response.json()["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError, ValueError):
            log.warning("Unexpected summary response shape")
            return dict(FALLBACK_SUMMARY)

        return parse_summary(content)
