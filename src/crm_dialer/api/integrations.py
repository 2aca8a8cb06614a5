"""Google Calendar connect flow.

Opened in the browser, so responses are redirects and plain text.
"""

from fastapi import APIRouter
from fastapi.responses import PlainTextResponse, RedirectResponse

from crm_dialer.core.exceptions import CalendarIntegrationError
from crm_dialer.core.logging import get_logger
from crm_dialer.dependencies import DatabaseDep, OAuthDep
from crm_dialer.services.calendar_sync import connect_google_account

log = get_logger(__name__)

router = APIRouter()


@router.get("/integrations/google/connect", response_model=None)
async def google_connect(
    oauth: OAuthDep,
    state: str | None = None,
) -> RedirectResponse | PlainTextResponse:
    """Redirect to Google's consent screen (offline access)."""
    try:
        url = oauth.authorization_url(state=state)
    except CalendarIntegrationError as e:
        log.error("Google connect unavailable", error=e.message)
        return PlainTextResponse(e.message, status_code=500)
    return RedirectResponse(url, status_code=302)


@router.get("/integrations/google/callback", response_model=None)
async def google_callback(
    db: DatabaseDep,
    oauth: OAuthDep,
    code: str | None = None,
    error: str | None = None,
) -> PlainTextResponse:
    """Store the user's Google tokens on their profile."""
    if error:
        return PlainTextResponse(f"Google authorization failed: {error}", status_code=400)
    if not code:
        return PlainTextResponse("Missing authorization code", status_code=400)

    try:
        profile = await connect_google_account(db, oauth, code)
    except CalendarIntegrationError as e:
        log.error("Google callback failed", error=e.message)
        return PlainTextResponse(f"Google connection failed: {e.message}", status_code=500)

    if profile is None:
        return PlainTextResponse(
            "No user profile matches this Google account. Sign up first, then connect your calendar.",
            status_code=404,
        )
    return PlainTextResponse("Google Calendar connected. You can close this window.")
