"""Vapi voice-AI platform client.

Vapi places the outbound call, runs the conversation and reports back via
webhooks. This client covers the REST side:
- POST /call to start an outbound call
- GET /call/{id} to poll call state
- GET /call to list call history

API Documentation: https://docs.vapi.ai/api-reference
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Any

import httpx

from crm_dialer.campaigns import build_assistant_overrides
from crm_dialer.config import Settings
from crm_dialer.core.exceptions import VapiError
from crm_dialer.core.logging import get_logger
from crm_dialer.core.phone import to_e164
from crm_dialer.core.retry import (
    CircuitOpen,
    RetryConfig,
    UpstreamHTTPError,
    get_circuit_breaker,
    raise_for_retryable_status,
    retry_async,
)
from crm_dialer.domain import Campaign

log = get_logger(__name__)


# Vapi call statuses
STATUS_QUEUED = "queued"
STATUS_RINGING = "ringing"
STATUS_IN_PROGRESS = "in-progress"
STATUS_FORWARDING = "forwarding"
STATUS_ENDED = "ended"


def parse_timestamp(value: Any) -> datetime | None:
    """Parse an ISO-8601 timestamp as reported by Vapi ("...Z" suffix allowed)."""
    if not value or not isinstance(value, str):
        return None
    try:
        return datetime.fromisoformat(value.replace("Z", "+00:00"))
    except ValueError:
        return None


def recording_url_of(data: dict[str, Any]) -> str | None:
    """Recording URL from a call or report payload.

    Prefers the mono recording, falls back to stereo, and also looks
    under ``artifact`` where newer payloads put them.
    """
    artifact = data.get("artifact") or {}
    for source in (data, artifact):
        url = source.get("recordingUrl") or source.get("stereoRecordingUrl")
        if url:
            return url
    return None


def duration_of(data: dict[str, Any]) -> int:
    """Call duration in whole seconds.

    Uses ``duration`` when reported, else ``endedAt - startedAt``, else 0.
    """
    duration = data.get("duration") or data.get("durationSeconds")
    if duration:
        try:
            return max(0, int(round(float(duration))))
        except (TypeError, ValueError):
            pass

    started = parse_timestamp(data.get("startedAt"))
    ended = parse_timestamp(data.get("endedAt"))
    if started and ended:
        return max(0, int((ended - started).total_seconds()))
    return 0


def campaign_of(data: dict[str, Any]) -> str | None:
    """Campaign name carried in call metadata, if any."""
    for holder in (
        data.get("metadata"),
        (data.get("assistant") or {}).get("metadata"),
        (data.get("assistantOverrides") or {}).get("metadata"),
    ):
        if holder and holder.get("campaign"):
            return str(holder["campaign"])
    return None


@dataclass
class VapiCall:
    """A call as reported by Vapi."""

    id: str
    status: str | None = None
    ended_reason: str | None = None
    duration: int = 0
    cost: float = 0.0
    recording_url: str | None = None
    transcript: str | None = None
    summary: str | None = None
    sentiment: str | None = None
    customer_number: str | None = None
    campaign: str | None = None
    created_at: datetime | None = None

    @property
    def is_ended(self) -> bool:
        return self.status == STATUS_ENDED

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "VapiCall":
        """Build from a Vapi call object."""
        artifact = data.get("artifact") or {}
        analysis = data.get("analysis") or {}
        customer = data.get("customer") or {}

        try:
            cost = float(data.get("cost") or 0.0)
        except (TypeError, ValueError):
            cost = 0.0

        return cls(
            id=str(data.get("id", "")),
            status=data.get("status"),
            ended_reason=data.get("endedReason"),
            duration=duration_of(data),
            cost=cost,
            recording_url=recording_url_of(data),
            transcript=data.get("transcript") or artifact.get("transcript"),
            summary=data.get("summary") or analysis.get("summary"),
            sentiment=analysis.get("sentiment"),
            customer_number=customer.get("number"),
            campaign=campaign_of(data),
            created_at=parse_timestamp(data.get("createdAt")),
        )


class VapiClient:
    """Async client for the Vapi REST API.

    Every request goes through a shared circuit breaker and is retried on
    transport errors and 5xx responses. 4xx responses fail immediately.

    Usage:
        client = VapiClient.from_settings(settings)
        call = await client.create_call("+16175550100", "Jane", "1 Main St", "residential")
        await client.close()
    """

    def __init__(
        self,
        api_key: str,
        phone_number_id: str,
        assistant_id: str = "",
        base_url: str = "https://api.vapi.ai",
        timeout: float = 30.0,
        retry_config: RetryConfig | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize Vapi client.

        Args:
            api_key: Vapi private API key
            phone_number_id: Vapi phone number to call from
            assistant_id: Stored assistant to use instead of persona overrides
            base_url: API base URL
            timeout: HTTP request timeout
            retry_config: Retry policy (defaults to 3 attempts)
            transport: Optional httpx transport (used by tests)
        """
        self.api_key = api_key
        self.phone_number_id = phone_number_id
        self.assistant_id = assistant_id
        self._retry_config = retry_config or RetryConfig(max_attempts=3, base_delay=0.5, max_delay=5.0)
        self._breaker = get_circuit_breaker("vapi_api", failure_threshold=5, reset_timeout=60.0)
        self._client = httpx.AsyncClient(
            base_url=base_url,
            timeout=timeout,
            transport=transport,
            headers={
                "Authorization": f"Bearer {api_key}",
                "Content-Type": "application/json",
            },
        )

    @classmethod
    def from_settings(cls, settings: Settings, **kwargs: Any) -> "VapiClient":
        """Create a client from application settings."""
        return cls(
            api_key=settings.vapi.api_key,
            phone_number_id=settings.vapi.phone_number_id,
            assistant_id=settings.vapi.assistant_id,
            base_url=settings.vapi.base_url,
            timeout=settings.vapi.timeout,
            **kwargs,
        )

    @property
    def is_configured(self) -> bool:
        return bool(self.api_key and self.phone_number_id)

    async def close(self) -> None:
        """Close the underlying HTTP client."""
        await self._client.aclose()

    # ========================================================================
    # Transport
    # ========================================================================

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        response = await self._client.request(method, path, **kwargs)
        return raise_for_retryable_status(response)

    async def _request(
        self,
        method: str,
        path: str,
        *,
        default_error: str = "Vapi request failed",
        **kwargs: Any,
    ) -> Any:
        """Send a request and return the decoded JSON body.

        Raises:
            VapiError: On missing configuration, open circuit, transport
                failure or a non-2xx response
        """
        if not self.api_key:
            raise VapiError("Missing Vapi API key (CRM_VAPI__API_KEY)")

        try:
            async with self._breaker:
                response = await retry_async(
                    self._send, method, path, config=self._retry_config, **kwargs
                )
        except CircuitOpen as e:
            raise VapiError("Vapi is temporarily unavailable", cause=e) from e
        except UpstreamHTTPError as e:
            response = e.response
        except httpx.HTTPError as e:
            log.error("Vapi request failed", method=method, path=path, error=str(e))
            raise VapiError(f"Vapi request failed: {e}", cause=e) from e

        if response.is_error:
            message = default_error
            try:
                body = response.json()
                if isinstance(body, dict) and body.get("message"):
                    message = body["message"]
                    if isinstance(message, list):
                        message = "; ".join(str(m) for m in message)
            except ValueError:
                pass

            log.warning(
                "Vapi request rejected",
                method=method,
                path=path,
                status_code=response.status_code,
                message=message,
            )
            raise VapiError(str(message), details={"status_code": response.status_code})

        return response.json()

    # ========================================================================
    # Calls
    # ========================================================================

    def build_call_payload(
        self,
        phone_number: str,
        first_name: str,
        address: str,
        campaign: Campaign | str | None = None,
    ) -> dict[str, Any]:
        """Build the POST /call body."""
        campaign = campaign if isinstance(campaign, Campaign) else Campaign.parse(campaign)

        if self.assistant_id:
            assistant: dict[str, Any] = {
                "assistantId": self.assistant_id,
                "metadata": {"campaign": campaign.value},
            }
        else:
            assistant = build_assistant_overrides(campaign, first_name, address)

        return {
            "phoneNumberId": self.phone_number_id,
            "customer": {
                "number": to_e164(phone_number),
                "name": first_name,
            },
            "assistant": assistant,
        }

    async def create_call(
        self,
        phone_number: str,
        first_name: str,
        address: str,
        campaign: Campaign | str | None = None,
    ) -> VapiCall:
        """Start an outbound call.

        Args:
            phone_number: Number to dial (any format, sent as E.164)
            first_name: Contact first name for the greeting
            address: Comma-joined address parts for the agent's context
            campaign: Campaign persona

        Returns:
            The queued call

        Raises:
            VapiError: If Vapi is not configured or rejects the call
        """
        if not self.phone_number_id:
            raise VapiError("Missing Vapi phone number ID (CRM_VAPI__PHONE_NUMBER_ID)")

        payload = self.build_call_payload(phone_number, first_name, address, campaign)
        data = await self._request(
            "POST",
            "/call",
            json=payload,
            default_error="Failed to initiate call",
        )
        call = VapiCall.from_api(data)

        log.info(
            "Outbound call created",
            vapi_call_id=call.id,
            status=call.status,
            campaign=payload["assistant"].get("metadata", {}).get("campaign"),
        )
        return call

    async def get_call(self, call_id: str) -> VapiCall:
        """Fetch the current state of a call."""
        data = await self._request("GET", f"/call/{call_id}")
        return VapiCall.from_api(data)

    async def list_calls(self, limit: int = 100) -> list[VapiCall]:
        """List recent calls from Vapi history."""
        data = await self._request("GET", "/call", params={"limit": limit})
        items = data if isinstance(data, list) else data.get("results", [])
        return [VapiCall.from_api(item) for item in items]
