"""Vapi server-message webhook.

Vapi posts tool calls, end-of-call reports and status updates to a single
URL. Responses to tool calls are read back to the caller by the assistant.

Security:
- Signature or shared-secret check (see webhook_security.py)
"""

from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.api.webhook_security import verify_vapi_request
from crm_dialer.config import Settings
from crm_dialer.core.exceptions import InvalidSignatureError
from crm_dialer.core.logging import bind_call_context, clear_call_context, get_logger
from crm_dialer.dependencies import (
    BatchDialerDep,
    CalendarDep,
    DatabaseDep,
    SettingsDep,
    get_app_settings,
)
from crm_dialer.services.vapi_events import VapiEventHandler

log = get_logger(__name__)

router = APIRouter()


async def validate_vapi_webhook(
    request: Request,
    settings: Settings = Depends(get_app_settings),
) -> None:
    """Dependency rejecting unsigned Vapi requests with 403.

    Usage:
        @router.post("/webhooks/vapi")
        async def vapi_webhook(_: None = Depends(validate_vapi_webhook)):
            ...
    """
    try:
        await verify_vapi_request(request, settings)
    except InvalidSignatureError:
        log.warning("Invalid Vapi webhook signature", path=str(request.url.path))
        raise


@router.post("/webhooks/vapi")
@limiter.limit(RateLimits.WEBHOOK)
async def vapi_webhook(
    request: Request,
    db: DatabaseDep,
    dialer: BatchDialerDep,
    calendar: CalendarDep,
    settings: SettingsDep,
    _: None = Depends(validate_vapi_webhook),
) -> Any:
    """Handle a Vapi server message.

    Unknown message types are acknowledged with ``{"message": "No tool executed"}``.
    Unexpected failures return 500 with ``{"error": message}``.
    """
    try:
        body = await request.json()
        if not isinstance(body, dict):
            raise ValueError("Webhook body must be a JSON object")

        message = body.get("message") or {}
        bind_call_context(
            vapi_call_id=(message.get("call") or {}).get("id"),
            message_type=message.get("type"),
        )

        handler = VapiEventHandler(
            db,
            dialer=dialer,
            calendar=calendar,
            default_timezone=settings.compliance.timezone,
        )
        return await handler.handle(body)
    except Exception as e:
        await db.rollback()
        log.error("Vapi webhook failed", error=str(e), exc_info=True)
        return JSONResponse(status_code=500, content={"error": str(e)})
    finally:
        clear_call_context()
