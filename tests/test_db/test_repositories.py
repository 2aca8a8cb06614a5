"""Tests for database repositories."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from uuid import uuid4

import pytest

from crm_dialer.core.exceptions import RecordNotFoundError
from crm_dialer.db.models.core import AppointmentModel, CallLogModel
from crm_dialer.db.models.crm import ContactModel


def make_contact(first_name: str, phone: str, **kwargs) -> ContactModel:
    return ContactModel(
        id=uuid4(),
        first_name=first_name,
        last_name=kwargs.pop("last_name", "Test"),
        phone_number=phone,
        status=kwargs.pop("status", "Not Called"),
        total_calls=0,
        **kwargs,
    )


# ============================================================================
# Contact Repository Tests
# ============================================================================


class TestContactRepository:
    """Tests for ContactRepository."""

    @pytest.mark.asyncio
    async def test_get_or_raise(self, contact_repository, sample_contact):
        found = await contact_repository.get_or_raise(sample_contact.id)
        assert found.first_name == "Jane"

        with pytest.raises(RecordNotFoundError) as exc_info:
            await contact_repository.get_or_raise(uuid4())
        assert exc_info.value.message.startswith("Contact ")

    @pytest.mark.asyncio
    async def test_get_with_malformed_id(self, contact_repository):
        assert await contact_repository.get("not-a-uuid") is None

    @pytest.mark.asyncio
    async def test_search_by_name_phone_and_status(self, db_session, contact_repository):
        await contact_repository.create_multi(
            [
                make_contact("Jane", "(617) 555-0100"),
                make_contact("John", "617-555-0101", status="Connected"),
                make_contact("Ann", "212-555-0199"),
            ]
        )

        assert {c.first_name for c in await contact_repository.search(query="JA")} == {"Jane"}
        assert {c.first_name for c in await contact_repository.search(query="212")} == {"Ann"}
        connected = await contact_repository.search(status="Connected")
        assert [c.first_name for c in connected] == ["John"]
        assert await contact_repository.count_filtered(status="Not Called") == 2

    @pytest.mark.asyncio
    async def test_search_wildcards_are_literal(self, contact_repository):
        await contact_repository.create_multi(
            [
                make_contact("50% Off", "617-555-0110"),
                make_contact("5000 Club", "617-555-0111"),
                make_contact("Mary_Ann", "617-555-0112"),
                make_contact("MaryJane", "617-555-0113"),
            ]
        )

        assert [c.first_name for c in await contact_repository.search(query="50%")] == ["50% Off"]
        assert [c.first_name for c in await contact_repository.search(query="y_a")] == ["Mary_Ann"]
        assert await contact_repository.count_filtered(query="%") == 1

    @pytest.mark.asyncio
    async def test_column_filters_on_contacts(self, contact_repository, sample_contact):
        assert await contact_repository.count(status="Not Called") == 1
        found = await contact_repository.find_one(phone_number=sample_contact.phone_number)
        assert found.id == sample_contact.id

    @pytest.mark.asyncio
    async def test_owner_scope(self, contact_repository, sample_contact, sample_profile):
        await contact_repository.create(make_contact("Other", "555-123-4567"))

        mine = await contact_repository.search(owner_id=sample_profile.id)
        assert [c.id for c in mine] == [sample_contact.id]
        assert await contact_repository.count_filtered() == 2

    @pytest.mark.asyncio
    async def test_find_by_phone_exact_match(self, contact_repository, sample_contact):
        await contact_repository.create(make_contact("Near", "(718) 555-0100"))

        found = await contact_repository.find_by_phone("+16175550100")
        assert found is not None
        assert found.id == sample_contact.id

        assert await contact_repository.find_by_phone("+16175559999") is None
        assert await contact_repository.find_by_phone("") is None

    @pytest.mark.asyncio
    async def test_list_for_dialing_preserves_requested_order(self, contact_repository):
        created = await contact_repository.create_multi(
            [make_contact(name, f"617-555-01{i:02d}") for i, name in enumerate(["A", "B", "C"])]
        )
        ids = [created[2].id, created[0].id]

        contacts = await contact_repository.list_for_dialing(contact_ids=ids)
        assert [c.first_name for c in contacts] == ["C", "A"]

    @pytest.mark.asyncio
    async def test_count_by_status(self, contact_repository):
        await contact_repository.create_multi(
            [
                make_contact("A", "617-555-0100"),
                make_contact("B", "617-555-0101", status="Appointment Booked"),
                make_contact("C", "617-555-0102", status="Appointment Booked"),
            ]
        )
        assert await contact_repository.count_by_status() == {
            "Not Called": 1,
            "Appointment Booked": 2,
        }

    @pytest.mark.asyncio
    async def test_delete_with_history(
        self, db_session, contact_repository, call_log_repository, appointment_repository, sample_contact
    ):
        db_session.add(CallLogModel(contact_id=sample_contact.id, duration=30, cost=0.1))
        db_session.add(
            AppointmentModel(
                contact_id=sample_contact.id,
                scheduled_at=datetime.now(timezone.utc) + timedelta(days=1),
            )
        )
        await db_session.flush()

        assert await contact_repository.delete_with_history(sample_contact.id)
        assert await contact_repository.get(sample_contact.id) is None
        assert await call_log_repository.count() == 0
        assert await appointment_repository.count() == 0
        assert not await contact_repository.delete_with_history(uuid4())


# ============================================================================
# Do-Not-Call Repository Tests
# ============================================================================


class TestDoNotCallRepository:
    """Tests for DoNotCallRepository."""

    @pytest.mark.asyncio
    async def test_add_is_idempotent_and_normalised(self, dnc_repository):
        first = await dnc_repository.add("(617) 555-0100", reason="Asked")
        second = await dnc_repository.add("+1 617 555 0100")

        assert first.id == second.id
        assert first.phone_number == "6175550100"
        assert await dnc_repository.count() == 1

    @pytest.mark.asyncio
    async def test_add_without_digits(self, dnc_repository):
        assert await dnc_repository.add("n/a") is None

    @pytest.mark.asyncio
    async def test_is_blocked_and_remove(self, dnc_repository):
        await dnc_repository.add("617-555-0100")

        assert await dnc_repository.is_blocked("+16175550100")
        assert await dnc_repository.blocked_numbers() == {"6175550100"}

        assert await dnc_repository.remove("(617) 555-0100")
        assert not await dnc_repository.is_blocked("6175550100")
        assert not await dnc_repository.remove("6175550100")


# ============================================================================
# Call Log and Appointment Repository Tests
# ============================================================================


class TestCallLogRepository:
    """Tests for CallLogRepository."""

    @pytest.mark.asyncio
    async def test_scoped_listing_and_cost(
        self, db_session, call_log_repository, contact_repository, sample_contact, sample_profile
    ):
        other = await contact_repository.create(make_contact("Other", "212-555-0100"))
        db_session.add_all(
            [
                CallLogModel(contact_id=sample_contact.id, duration=60, cost=0.25),
                CallLogModel(contact_id=sample_contact.id, duration=0, cost=0.0),
                CallLogModel(contact_id=other.id, duration=120, cost=0.5),
            ]
        )
        await db_session.flush()

        assert await call_log_repository.count_logs() == 3
        assert await call_log_repository.count_logs(owner_id=sample_profile.id) == 2
        assert len(await call_log_repository.list_logs(contact_id=other.id)) == 1
        assert await call_log_repository.total_cost() == pytest.approx(0.75)
        assert await call_log_repository.total_cost(owner_id=sample_profile.id) == pytest.approx(0.25)

    @pytest.mark.asyncio
    async def test_exists_by_recording_url(self, db_session, call_log_repository, sample_contact):
        db_session.add(
            CallLogModel(
                contact_id=sample_contact.id,
                recording_url="https://storage.vapi.ai/rec-1.wav",
            )
        )
        await db_session.flush()

        assert await call_log_repository.exists_by_recording_url("https://storage.vapi.ai/rec-1.wav")
        assert not await call_log_repository.exists_by_recording_url("https://storage.vapi.ai/rec-2.wav")


class TestAppointmentRepository:
    """Tests for AppointmentRepository."""

    @pytest.mark.asyncio
    async def test_list_with_contacts_upcoming(
        self, db_session, appointment_repository, sample_contact
    ):
        now = datetime.now(timezone.utc)
        db_session.add_all(
            [
                AppointmentModel(contact_id=sample_contact.id, scheduled_at=now - timedelta(days=1)),
                AppointmentModel(contact_id=sample_contact.id, scheduled_at=now + timedelta(days=2)),
                AppointmentModel(
                    contact_id=sample_contact.id,
                    scheduled_at=now + timedelta(days=1),
                    status="cancelled",
                ),
            ]
        )
        await db_session.flush()

        upcoming = await appointment_repository.list_with_contacts(upcoming_after=now)
        assert len(upcoming) == 2
        assert upcoming[0][0].scheduled_at < upcoming[1][0].scheduled_at
        assert upcoming[0][1].id == sample_contact.id

        assert await appointment_repository.count_filtered(status="cancelled") == 1
        assert await appointment_repository.count_filtered() == 3


class TestProfileRepository:
    """Tests for ProfileRepository."""

    @pytest.mark.asyncio
    async def test_find_by_email_case_insensitive(self, profile_repository, sample_profile):
        found = await profile_repository.find_by_email("  Agent@Example.COM ")
        assert found is not None
        assert found.id == sample_profile.id

    @pytest.mark.asyncio
    async def test_find_calendar_owner(self, db_session, profile_repository, sample_profile, admin_profile):
        assert await profile_repository.find_calendar_owner("residential") is None

        admin_profile.google_refresh_token = "refresh-token"
        await db_session.flush()

        owner = await profile_repository.find_calendar_owner("residential")
        assert owner is not None
        assert owner.id == admin_profile.id
        assert await profile_repository.find_calendar_owner("b2b") is None
