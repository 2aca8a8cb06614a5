"""Dependency Injection for the CRM dialer.

Provides FastAPI dependency functions for shared clients and the batch
dialer. Tests swap them via ``app.dependency_overrides`` or
``reset_dependencies()``.

Thread Safety:
    All singleton factories use threading.Lock() to prevent race conditions
    during concurrent initialization.

Usage:
    from crm_dialer.dependencies import VapiDep

    @router.post("/calls")
    async def dial(vapi: VapiDep):
        ...
"""

from __future__ import annotations

import threading
from typing import Annotated, AsyncGenerator

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.config import Settings, get_settings
from crm_dialer.db.session import get_db as _get_db
from crm_dialer.integrations.google_calendar import GoogleCalendarClient, GoogleOAuthClient
from crm_dialer.integrations.transcription import TranscriptionClient
from crm_dialer.integrations.vapi import VapiClient
from crm_dialer.services.batch_dialer import BatchDialer
from crm_dialer.services.dialing import record_batch_call_placed


# =============================================================================
# Thread-Safe Singleton Locks
# =============================================================================

_vapi_lock = threading.Lock()
_dialer_lock = threading.Lock()
_transcription_lock = threading.Lock()


# =============================================================================
# Settings Dependency
# =============================================================================


def get_app_settings() -> Settings:
    """Get application settings.

    Returns cached settings instance.
    """
    return get_settings()


SettingsDep = Annotated[Settings, Depends(get_app_settings)]


# =============================================================================
# Database Dependencies
# =============================================================================


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """Get database session for request.

    Yields session that auto-commits on success, rolls back on error.
    """
    async for session in _get_db():
        yield session


DatabaseDep = Annotated[AsyncSession, Depends(get_db)]


# =============================================================================
# Integration Clients
# =============================================================================

_vapi_client_instance: VapiClient | None = None
_batch_dialer_instance: BatchDialer | None = None
_transcription_client_instance: TranscriptionClient | None = None


def get_vapi_client() -> VapiClient:
    """Get Vapi client singleton.

    Thread-safe via double-checked locking pattern.
    """
    global _vapi_client_instance

    if _vapi_client_instance is None:
        with _vapi_lock:
            if _vapi_client_instance is None:
                _vapi_client_instance = VapiClient.from_settings(get_settings())

    return _vapi_client_instance


VapiDep = Annotated[VapiClient, Depends(get_vapi_client)]


def get_batch_dialer() -> BatchDialer:
    """Get the process-wide batch dialer.

    Thread-safe via double-checked locking pattern.
    """
    global _batch_dialer_instance

    if _batch_dialer_instance is None:
        with _dialer_lock:
            if _batch_dialer_instance is None:
                settings = get_settings()
                dialer = BatchDialer(
                    get_vapi_client(),
                    compliance=settings.compliance,
                    settings=settings.dialer,
                )
                dialer.on_call_placed = record_batch_call_placed
                _batch_dialer_instance = dialer

    return _batch_dialer_instance


BatchDialerDep = Annotated[BatchDialer, Depends(get_batch_dialer)]


def peek_batch_dialer() -> BatchDialer | None:
    """The batch dialer if one was created, without creating it."""
    return _batch_dialer_instance


def get_transcription_client() -> TranscriptionClient:
    """Get OpenAI transcription client singleton."""
    global _transcription_client_instance

    if _transcription_client_instance is None:
        with _transcription_lock:
            if _transcription_client_instance is None:
                _transcription_client_instance = TranscriptionClient.from_settings(
                    get_settings().openai
                )

    return _transcription_client_instance


TranscriptionDep = Annotated[TranscriptionClient, Depends(get_transcription_client)]


def get_calendar_client() -> GoogleCalendarClient | None:
    """Get the Google Calendar client, or None when Google is not configured."""
    settings = get_settings()
    if not settings.google.is_configured:
        return None
    return GoogleCalendarClient.from_settings(settings.google)


CalendarDep = Annotated[GoogleCalendarClient | None, Depends(get_calendar_client)]


def get_oauth_client() -> GoogleOAuthClient:
    """Get the Google OAuth client for the connect flow."""
    return GoogleOAuthClient.from_settings(get_settings().google)


OAuthDep = Annotated[GoogleOAuthClient, Depends(get_oauth_client)]


# =============================================================================
# Lifecycle
# =============================================================================


async def shutdown_dependencies() -> None:
    """Stop the dialer and close HTTP clients (application shutdown)."""
    if _batch_dialer_instance is not None:
        await _batch_dialer_instance.shutdown()
    if _vapi_client_instance is not None:
        await _vapi_client_instance.close()
    if _transcription_client_instance is not None:
        await _transcription_client_instance.close()
    reset_dependencies()


def reset_dependencies() -> None:
    """Reset all cached dependencies.

    Useful for testing to ensure clean state between tests.
    """
    global _vapi_client_instance, _batch_dialer_instance, _transcription_client_instance

    with _vapi_lock:
        _vapi_client_instance = None
    with _dialer_lock:
        _batch_dialer_instance = None
    with _transcription_lock:
        _transcription_client_instance = None
