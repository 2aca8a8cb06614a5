"""Google OAuth and Calendar Integration.

Each dashboard user connects their own Google account (offline access).
The stored refresh token is later used to push booked appointments into
that user's primary calendar.

OAuth endpoints are called with httpx; calendar writes go through the
Calendar v3 API client with google-auth user credentials, which refresh
the access token themselves.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any
from urllib.parse import urlencode

import httpx
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build

from crm_dialer.config import GoogleSettings
from crm_dialer.core.exceptions import CalendarIntegrationError
from crm_dialer.core.logging import get_logger

log = get_logger(__name__)

AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_URL = "https://oauth2.googleapis.com/token"
USERINFO_URL = "https://www.googleapis.com/oauth2/v1/userinfo"

OAUTH_SCOPES = [
    "https://www.googleapis.com/auth/calendar",
    "https://www.googleapis.com/auth/userinfo.email",
]


@dataclass
class GoogleTokens:
    """Tokens returned by the authorization-code exchange."""

    access_token: str
    refresh_token: str | None
    expires_in: int

    @property
    def expiry(self) -> datetime:
        return datetime.now(timezone.utc) + timedelta(seconds=self.expires_in)


@dataclass
class CalendarEvent:
    """Result of a calendar insert."""

    id: str
    html_link: str | None = None
    access_token: str | None = None
    token_expiry: datetime | None = None


class GoogleOAuthClient:
    """OAuth 2.0 web-server flow for connecting a user's calendar.

    Usage:
        oauth = GoogleOAuthClient.from_settings(settings.google)
        url = oauth.authorization_url()
        tokens = await oauth.exchange_code(code)
        userinfo = await oauth.get_userinfo(tokens.access_token)
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self._timeout = timeout
        self._transport = transport

    @classmethod
    def from_settings(cls, settings: GoogleSettings, **kwargs: Any) -> "GoogleOAuthClient":
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            redirect_uri=settings.redirect_uri,
            **kwargs,
        )

    def authorization_url(self, state: str | None = None) -> str:
        """Build the consent-screen URL.

        Raises:
            CalendarIntegrationError: If no client ID is configured
        """
        if not self.client_id:
            raise CalendarIntegrationError("Missing GOOGLE_CLIENT_ID")

        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(OAUTH_SCOPES),
            "access_type": "offline",
            "prompt": "consent",
        }
        if state:
            params["state"] = state
        return f"{AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> GoogleTokens:
        """Exchange an authorization code for tokens.

        Raises:
            CalendarIntegrationError: On missing config or a token error
        """
        if not code or not self.client_id or not self.client_secret:
            raise CalendarIntegrationError("Missing config or code")

        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.post(
                    TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                tokens = response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise CalendarIntegrationError(f"Token exchange failed: {e}", cause=e) from e

        if tokens.get("error") or response.is_error:
            raise CalendarIntegrationError(
                tokens.get("error_description") or tokens.get("error") or "Token exchange failed"
            )

        return GoogleTokens(
            access_token=tokens["access_token"],
            refresh_token=tokens.get("refresh_token"),
            expires_in=int(tokens.get("expires_in") or 3600),
        )

    async def get_userinfo(self, access_token: str) -> dict[str, Any]:
        """Fetch the connected account's profile (email)."""
        async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
            try:
                response = await client.get(
                    USERINFO_URL,
                    params={"alt": "json"},
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPError, ValueError) as e:
                raise CalendarIntegrationError(f"Userinfo request failed: {e}", cause=e) from e


def build_event_body(
    summary: str,
    description: str,
    start: datetime,
    duration_minutes: int = 30,
) -> dict[str, Any]:
    """Build a Calendar v3 event resource."""
    if start.tzinfo is None:
        start = start.replace(tzinfo=timezone.utc)
    end = start + timedelta(minutes=duration_minutes)
    return {
        "summary": summary,
        "description": description,
        "start": {"dateTime": start.isoformat()},
        "end": {"dateTime": end.isoformat()},
    }


class GoogleCalendarClient:
    """Writes events into a connected user's calendar."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        calendar_id: str = "primary",
        event_duration_minutes: int = 30,
        max_retries: int = 3,
        retry_base_delay: float = 1.0,
    ):
        """Initialize calendar client.

        Args:
            client_id: OAuth client ID the refresh tokens were issued to
            client_secret: OAuth client secret
            calendar_id: Target calendar ("primary" for the user's own)
            event_duration_minutes: Length of booked events
            max_retries: Max attempts for rate-limited/transient failures
            retry_base_delay: Base delay for exponential backoff
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.calendar_id = calendar_id
        self.event_duration_minutes = event_duration_minutes
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay

    @classmethod
    def from_settings(cls, settings: GoogleSettings) -> "GoogleCalendarClient":
        return cls(
            client_id=settings.client_id,
            client_secret=settings.client_secret,
            calendar_id=settings.calendar_id,
            event_duration_minutes=settings.event_duration_minutes,
        )

    def _credentials(self, refresh_token: str) -> Credentials:
        return Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URL,
            client_id=self.client_id,
            client_secret=self.client_secret,
            scopes=OAUTH_SCOPES,
        )

    async def _execute_with_retry(self, operation: str, request: Any) -> Any:
        """Execute a Google API request with exponential backoff.

        Raises:
            CalendarIntegrationError: If the request fails or retries run out
        """
        last_error: Exception | None = None

        for attempt in range(self._max_retries):
            try:
                return await asyncio.to_thread(request.execute)

            except Exception as e:
                last_error = e
                error_str = str(e)

                if "429" in error_str or "Rate Limit" in error_str or any(
                    code in error_str for code in ("500", "502", "503", "504")
                ):
                    delay = self._retry_base_delay * (2**attempt)
                    log.warning(
                        "Calendar request failed, retrying",
                        operation=operation,
                        attempt=attempt + 1,
                        delay=delay,
                        error=error_str,
                    )
                    await asyncio.sleep(delay)
                    continue

                raise CalendarIntegrationError(f"{operation} failed: {e}", cause=e) from e

        raise CalendarIntegrationError(
            f"{operation} failed after {self._max_retries} retries: {last_error}",
            cause=last_error,
        )

    async def create_event(
        self,
        refresh_token: str,
        summary: str,
        description: str,
        start: datetime,
    ) -> CalendarEvent:
        """Insert an event into the user's calendar.

        Args:
            refresh_token: The user's stored Google refresh token
            summary: Event title
            description: Event body
            start: Event start (end is start + event duration)

        Returns:
            Created event with the refreshed access token
        """
        if not self.client_id or not self.client_secret:
            raise CalendarIntegrationError("Missing Google credentials in environment")

        credentials = self._credentials(refresh_token)
        service = build("calendar", "v3", credentials=credentials, cache_discovery=False)
        body = build_event_body(summary, description, start, self.event_duration_minutes)

        request = service.events().insert(calendarId=self.calendar_id, body=body)
        event = await self._execute_with_retry("create_event", request)

        expiry = credentials.expiry
        if expiry is not None and expiry.tzinfo is None:
            expiry = expiry.replace(tzinfo=timezone.utc)

        log.info("Calendar event created", event_id=event.get("id"), link=event.get("htmlLink"))

        return CalendarEvent(
            id=event.get("id", ""),
            html_link=event.get("htmlLink"),
            access_token=credentials.token,
            token_expiry=expiry,
        )
