"""Tests for Google OAuth and calendar event creation."""

from __future__ import annotations

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch
from urllib.parse import parse_qs, urlparse

import httpx
import pytest

from crm_dialer.core.exceptions import CalendarIntegrationError
from crm_dialer.integrations.google_calendar import (
    GoogleCalendarClient,
    GoogleOAuthClient,
    build_event_body,
)
from crm_dialer.services.calendar_sync import connect_google_account


def oauth_client(handler=None, **kwargs) -> GoogleOAuthClient:
    transport = httpx.MockTransport(handler) if handler else None
    return GoogleOAuthClient(
        client_id=kwargs.get("client_id", "client-123"),
        client_secret=kwargs.get("client_secret", "secret-456"),
        redirect_uri="http://localhost:8080/api/v1/integrations/google/callback",
        transport=transport,
    )


def google_handler(email: str = "agent@example.com", refresh_token: str | None = "refresh-1"):
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.host == "oauth2.googleapis.com":
            form = parse_qs(request.content.decode())
            assert form["grant_type"] == ["authorization_code"]
            assert form["code"] == ["auth-code"]
            tokens = {"access_token": "access-1", "expires_in": 3599}
            if refresh_token:
                tokens["refresh_token"] = refresh_token
            return httpx.Response(200, json=tokens)
        assert request.headers["Authorization"] == "Bearer access-1"
        return httpx.Response(200, json={"email": email})

    return handler


class TestOAuth:
    """Consent URL and code exchange."""

    def test_authorization_url_requests_offline_access(self):
        url = oauth_client().authorization_url(state="abc")
        params = parse_qs(urlparse(url).query)

        assert params["client_id"] == ["client-123"]
        assert params["access_type"] == ["offline"]
        assert params["prompt"] == ["consent"]
        assert params["state"] == ["abc"]
        assert "https://www.googleapis.com/auth/calendar" in params["scope"][0]

    def test_authorization_url_without_client_id(self):
        with pytest.raises(CalendarIntegrationError, match="GOOGLE_CLIENT_ID"):
            oauth_client(client_id="").authorization_url()

    @pytest.mark.asyncio
    async def test_exchange_code(self):
        tokens = await oauth_client(google_handler()).exchange_code("auth-code")

        assert tokens.access_token == "access-1"
        assert tokens.refresh_token == "refresh-1"
        assert tokens.expiry > datetime.now(timezone.utc)

    @pytest.mark.asyncio
    async def test_exchange_code_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                400,
                json={"error": "invalid_grant", "error_description": "Bad Request"},
            )

        with pytest.raises(CalendarIntegrationError, match="Bad Request"):
            await oauth_client(handler).exchange_code("auth-code")

    @pytest.mark.asyncio
    async def test_exchange_requires_code(self):
        with pytest.raises(CalendarIntegrationError):
            await oauth_client().exchange_code("")


class TestConnectAccount:
    """Storing tokens on the matching profile."""

    @pytest.mark.asyncio
    async def test_tokens_stored_on_profile(self, db_session, sample_profile):
        profile = await connect_google_account(db_session, oauth_client(google_handler()), "auth-code")

        assert profile is not None
        assert profile.id == sample_profile.id
        assert profile.google_refresh_token == "refresh-1"
        assert profile.google_access_token == "access-1"
        assert profile.calendar_connected

    @pytest.mark.asyncio
    async def test_missing_refresh_token_keeps_stored_one(self, db_session, sample_profile):
        sample_profile.google_refresh_token = "old-refresh"
        await db_session.flush()

        handler = google_handler(refresh_token=None)
        profile = await connect_google_account(db_session, oauth_client(handler), "auth-code")

        assert profile.google_refresh_token == "old-refresh"
        assert profile.google_access_token == "access-1"

    @pytest.mark.asyncio
    async def test_unknown_google_account(self, db_session, sample_profile):
        handler = google_handler(email="stranger@example.com")
        assert await connect_google_account(db_session, oauth_client(handler), "auth-code") is None


class TestCalendarEvents:
    """Event insert through the Calendar v3 client."""

    def test_event_body(self):
        start = datetime(2024, 6, 5, 14, 0, tzinfo=timezone.utc)
        body = build_event_body("Demo with Jane Doe", "notes", start, duration_minutes=45)

        assert body["summary"] == "Demo with Jane Doe"
        assert body["start"] == {"dateTime": "2024-06-05T14:00:00+00:00"}
        assert body["end"] == {"dateTime": "2024-06-05T14:45:00+00:00"}

    @pytest.mark.asyncio
    async def test_create_event(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.return_value = {
            "id": "evt-1",
            "htmlLink": "https://calendar.google.com/event?eid=evt-1",
        }
        client = GoogleCalendarClient("client-123", "secret-456", retry_base_delay=0.0)

        with patch("crm_dialer.integrations.google_calendar.build", return_value=service) as build:
            event = await client.create_event(
                refresh_token="refresh-1",
                summary="Demo with Jane Doe",
                description="notes",
                start=datetime(2024, 6, 5, 14, 0, tzinfo=timezone.utc),
            )

        assert event.id == "evt-1"
        credentials = build.call_args.kwargs["credentials"]
        assert credentials.refresh_token == "refresh-1"
        insert_kwargs = service.events.return_value.insert.call_args.kwargs
        assert insert_kwargs["calendarId"] == "primary"
        assert insert_kwargs["body"]["summary"] == "Demo with Jane Doe"

    @pytest.mark.asyncio
    async def test_rate_limited_requests_are_retried(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.side_effect = [
            Exception("429 Rate Limit Exceeded"),
            {"id": "evt-2"},
        ]
        client = GoogleCalendarClient("client-123", "secret-456", retry_base_delay=0.0)

        with patch("crm_dialer.integrations.google_calendar.build", return_value=service):
            event = await client.create_event("refresh-1", "s", "d", datetime.now(timezone.utc))

        assert event.id == "evt-2"

    @pytest.mark.asyncio
    async def test_other_errors_fail_fast(self):
        service = MagicMock()
        service.events.return_value.insert.return_value.execute.side_effect = Exception("403 Forbidden")
        client = GoogleCalendarClient("client-123", "secret-456", retry_base_delay=0.0)

        with patch("crm_dialer.integrations.google_calendar.build", return_value=service):
            with pytest.raises(CalendarIntegrationError, match="403"):
                await client.create_event("refresh-1", "s", "d", datetime.now(timezone.utc))

    @pytest.mark.asyncio
    async def test_missing_credentials(self):
        client = GoogleCalendarClient("", "")
        with pytest.raises(CalendarIntegrationError):
            await client.create_event("refresh-1", "s", "d", datetime.now(timezone.utc))
