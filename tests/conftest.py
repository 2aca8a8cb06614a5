"""Pytest configuration and fixtures for CRM dialer tests."""

from __future__ import annotations

import os
import sys
from datetime import datetime, timezone
from pathlib import Path
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

# Set test environment
os.environ["CRM_ENVIRONMENT"] = "development"
os.environ["CRM_DEBUG"] = "true"
os.environ["CRM_DATABASE__URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["CRM_JWT_SECRET_KEY"] = "test-secret-key-for-unit-tests-only"
os.environ["CRM_COMPLIANCE__ENFORCE_CALLING_WINDOW"] = "false"
os.environ["CRM_VAPI__WEBHOOK_SECRET"] = ""


# ============================================================================
# Fakes
# ============================================================================


class FakeVapi:
    """Stands in for VapiClient in dialer tests.

    Calls get sequential ids ("call-1", "call-2", ...). Numbers listed in
    ``fail_numbers`` are rejected with a VapiError.
    """

    def __init__(self, fail_numbers: set[str] | None = None):
        self.placed: list[dict] = []
        self.statuses: dict[str, str] = {}
        self.polled: list[str] = []
        self.fail_numbers = fail_numbers or set()

    async def create_call(self, phone_number, first_name, address, campaign=None):
        from crm_dialer.core.exceptions import VapiError
        from crm_dialer.integrations.vapi import VapiCall

        if phone_number in self.fail_numbers:
            raise VapiError("Customer number is invalid")

        call_id = f"call-{len(self.placed) + 1}"
        self.placed.append(
            {
                "id": call_id,
                "phone_number": phone_number,
                "first_name": first_name,
                "address": address,
                "campaign": campaign,
            }
        )
        return VapiCall(id=call_id, status="queued")

    async def get_call(self, call_id):
        from crm_dialer.integrations.vapi import VapiCall

        self.polled.append(call_id)
        return VapiCall(id=call_id, status=self.statuses.get(call_id, "in-progress"))


class FakeClock:
    """Settable UTC clock."""

    def __init__(self, now: datetime | None = None):
        self.now = now or datetime(2024, 6, 3, 15, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        from datetime import timedelta

        self.now = self.now + timedelta(seconds=seconds)


@pytest.fixture
def fake_vapi():
    return FakeVapi()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def batch_dialer(fake_vapi, clock):
    """Batch dialer with calling-window enforcement off and a fixed clock."""
    from crm_dialer.config import ComplianceSettings, DialerSettings
    from crm_dialer.services.batch_dialer import BatchDialer

    return BatchDialer(
        fake_vapi,
        compliance=ComplianceSettings(enforce_calling_window=False),
        settings=DialerSettings(max_concurrency=10),
        clock=clock,
    )


@pytest.fixture(autouse=True)
def _reset_circuit_breakers():
    from crm_dialer.core.retry import reset_circuit_breakers

    reset_circuit_breakers()
    yield
    reset_circuit_breakers()


# ============================================================================
# Async Database Fixtures
# ============================================================================


@pytest_asyncio.fixture(scope="function")
async def db_engine():
    """Create test database engine with in-memory SQLite.

    Creates a fresh database for each test function.
    """
    from sqlalchemy.ext.asyncio import create_async_engine
    from sqlalchemy.pool import StaticPool

    from crm_dialer.db.base import Base
    # Import all models to register them with Base metadata
    from crm_dialer.db.models import (  # noqa: F401
        AppointmentModel,
        CallLogModel,
        CampaignConfigModel,
        ContactModel,
        DoNotCallModel,
        ProfileModel,
    )

    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest_asyncio.fixture(scope="function")
async def db_session(db_engine) -> AsyncGenerator:
    """Create test database session.

    Provides a session that rolls back after each test.
    """
    from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

    async_session_factory = async_sessionmaker(
        db_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )

    async with async_session_factory() as session:
        yield session
        await session.rollback()


@pytest_asyncio.fixture
async def contact_repository(db_session):
    from crm_dialer.db.repositories.contacts import ContactRepository

    return ContactRepository(db_session)


@pytest_asyncio.fixture
async def dnc_repository(db_session):
    from crm_dialer.db.repositories.dnc import DoNotCallRepository

    return DoNotCallRepository(db_session)


@pytest_asyncio.fixture
async def call_log_repository(db_session):
    from crm_dialer.db.repositories.calls import CallLogRepository

    return CallLogRepository(db_session)


@pytest_asyncio.fixture
async def appointment_repository(db_session):
    from crm_dialer.db.repositories.calls import AppointmentRepository

    return AppointmentRepository(db_session)


@pytest_asyncio.fixture
async def profile_repository(db_session):
    from crm_dialer.db.repositories.profiles import ProfileRepository

    return ProfileRepository(db_session)


@pytest_asyncio.fixture
async def sample_profile(db_session, profile_repository):
    """A regular user working the residential campaign."""
    from crm_dialer.db.models.auth import ProfileModel

    profile = ProfileModel(
        id=uuid4(),
        email="agent@example.com",
        full_name="Alex Agent",
        role="user",
        assigned_campaign="residential",
    )
    await profile_repository.create(profile)
    await db_session.commit()
    return profile


@pytest_asyncio.fixture
async def admin_profile(db_session, profile_repository):
    from crm_dialer.db.models.auth import ProfileModel

    profile = ProfileModel(
        id=uuid4(),
        email="admin@example.com",
        full_name="Ada Admin",
        role="admin",
        assigned_campaign="residential",
    )
    await profile_repository.create(profile)
    await db_session.commit()
    return profile


@pytest_asyncio.fixture
async def sample_contact(db_session, contact_repository, sample_profile):
    """A contact owned by ``sample_profile``."""
    from crm_dialer.db.models.crm import ContactModel

    contact = ContactModel(
        id=uuid4(),
        user_id=sample_profile.id,
        first_name="Jane",
        last_name="Doe",
        phone_number="(617) 555-0100",
        address="12 Elm St",
        city="Boston",
        state="MA",
        zip="02118",
        status="Not Called",
        total_calls=0,
    )
    await contact_repository.create(contact)
    await db_session.commit()
    return contact


# ============================================================================
# API Fixtures
# ============================================================================


@pytest.fixture
def user_headers(sample_profile):
    from crm_dialer.api.auth import create_access_token

    token = create_access_token(str(sample_profile.id), role="user")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers(admin_profile):
    from crm_dialer.api.auth import create_access_token

    token = create_access_token(str(admin_profile.id), role="admin")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def app(db_session, batch_dialer):
    """Application wired to the test session and a fake dialer.

    Rate limiting is disabled.
    """
    from crm_dialer.api.rate_limits import limiter
    from crm_dialer.dependencies import get_batch_dialer, get_db, reset_dependencies
    from crm_dialer.main import create_app

    app = create_app()

    async def override_get_db():
        try:
            yield db_session
            await db_session.commit()
        except Exception:
            await db_session.rollback()
            raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_batch_dialer] = lambda: batch_dialer

    limiter.enabled = False
    yield app
    limiter.enabled = True
    app.dependency_overrides.clear()
    reset_dependencies()


@pytest_asyncio.fixture
async def client(app):
    """HTTP client against the test application."""
    from httpx import ASGITransport, AsyncClient

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
