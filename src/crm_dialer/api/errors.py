"""Exception handlers and request tagging for the HTTP API.

Every error response is a JSON object with at least ``error`` and
``message``. Domain errors use their upper-case ``error_code``; framework
errors use a lower-case type derived from the status.
"""

from __future__ import annotations

from uuid import uuid4

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.base import BaseHTTPMiddleware

from crm_dialer.config import get_settings
from crm_dialer.core.exceptions import CRMDialerError
from crm_dialer.core.logging import bind_call_context, get_logger

log = get_logger(__name__)

REQUEST_ID_HEADER = "X-Request-ID"

ERROR_TYPES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    405: "method_not_allowed",
    409: "conflict",
    422: "validation_error",
    429: "rate_limit_exceeded",
    502: "bad_gateway",
    503: "service_unavailable",
}


def error_type(status_code: int) -> str:
    if status_code >= 500 and status_code not in ERROR_TYPES:
        return "internal_error"
    return ERROR_TYPES.get(status_code, "error")


class RequestIdMiddleware(BaseHTTPMiddleware):
    """Tag each request with an id, echo it back and put it on log lines.

    A caller-supplied ``X-Request-ID`` is reused so that webhook retries
    from Vapi can be followed across deliveries.
    """

    async def dispatch(self, request: Request, call_next):
        request_id = request.headers.get(REQUEST_ID_HEADER) or uuid4().hex
        request.state.request_id = request_id
        bind_call_context(request_id=request_id)
        response = await call_next(request)
        response.headers[REQUEST_ID_HEADER] = request_id
        return response


def _on_rate_limited(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    log.info("Rate limit hit", path=request.url.path, limit=str(exc.detail))
    return JSONResponse(
        status_code=429,
        content={
            "error": "rate_limit_exceeded",
            "message": "Too many requests. Please try again later.",
            "detail": str(exc.detail),
        },
    )


def _on_http_error(request: Request, exc: StarletteHTTPException) -> JSONResponse:
    return JSONResponse(
        status_code=exc.status_code,
        content={
            "error": error_type(exc.status_code),
            "message": str(exc.detail),
            "status_code": exc.status_code,
        },
        headers=getattr(exc, "headers", None),
    )


def _on_invalid_request(request: Request, exc: RequestValidationError) -> JSONResponse:
    details = [
        {
            "field": ".".join(str(part) for part in err["loc"] if part != "body") or "request",
            "message": err["msg"],
            "type": err["type"],
        }
        for err in exc.errors()
    ]
    return JSONResponse(
        status_code=422,
        content={"error": "validation_error", "message": "Request validation failed", "details": details},
    )


def _on_domain_error(request: Request, exc: CRMDialerError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("Request failed", error=str(exc), path=request.url.path)
    else:
        log.info("Request rejected", error_code=exc.error_code, path=request.url.path)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


def _on_unexpected(request: Request, exc: Exception) -> JSONResponse:
    log.exception(
        "Unhandled exception",
        error_type=type(exc).__name__,
        method=request.method,
        path=request.url.path,
    )
    message = str(exc) if get_settings().debug else "An internal error occurred"
    return JSONResponse(status_code=500, content={"error": "internal_error", "message": message})


def register_error_handlers(app: FastAPI) -> None:
    app.add_exception_handler(RateLimitExceeded, _on_rate_limited)
    app.add_exception_handler(RequestValidationError, _on_invalid_request)
    app.add_exception_handler(StarletteHTTPException, _on_http_error)
    app.add_exception_handler(CRMDialerError, _on_domain_error)
    app.add_exception_handler(Exception, _on_unexpected)
