"""Tests for dashboard metrics and cost reporting."""

from __future__ import annotations

from datetime import date, datetime, timedelta, timezone
from types import SimpleNamespace
from uuid import uuid4

import pytest

from crm_dialer.db.models.core import CallLogModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.services.reporting import (
    build_cost_report,
    call_cost,
    cost_report,
    daily_counts,
    dashboard_metrics,
    looks_like_voicemail,
)


def call(duration: int, cost: float = 0.0, transcript: str | None = None) -> SimpleNamespace:
    return SimpleNamespace(duration=duration, cost=cost, transcript=transcript)


class TestCostReport:
    """Spend aggregation."""

    def test_recorded_cost_or_estimate(self):
        assert call_cost(call(120, cost=0.5)) == 0.5
        assert call_cost(call(120)) == pytest.approx(0.40)
        assert call_cost(call(0)) == 0.0

    def test_voicemail_detection(self):
        assert looks_like_voicemail("Please record your message after the tone")
        assert looks_like_voicemail("Forwarded to VOICEMAIL")
        assert not looks_like_voicemail("Hi, yes I'm interested")
        assert not looks_like_voicemail(None)

    def test_build_cost_report(self):
        report = build_cost_report(
            [
                call(60, cost=0.30, transcript="Great, see you Tuesday"),
                call(30, cost=0.10, transcript="The person you are calling is not available"),
                call(0, cost=0.0, transcript=None),
            ]
        )
        data = report.to_dict()

        assert data["total_cost"] == 0.4
        assert data["billed_calls"] == 2
        assert data["billed_minutes"] == 1.5
        assert data["avg_cost_per_call"] == 0.2
        assert data["voicemail_count"] == 1
        assert data["voicemail_cost"] == 0.1
        assert data["voicemail_share_percent"] == 25

    def test_empty_report(self):
        data = build_cost_report([]).to_dict()
        assert data["total_cost"] == 0
        assert data["billed_calls"] == 0
        assert data["avg_cost_per_call"] == 0
        assert data["voicemail_share_percent"] == 0


class TestDailyCounts:
    def test_seven_day_window_oldest_first(self):
        today = date(2024, 6, 9)
        stamps = [
            datetime(2024, 6, 9, 10, tzinfo=timezone.utc),
            datetime(2024, 6, 9, 11, tzinfo=timezone.utc),
            datetime(2024, 6, 3, 9, tzinfo=timezone.utc),
            datetime(2024, 6, 1, 9, tzinfo=timezone.utc),
        ]
        days = daily_counts(stamps, today)

        assert len(days) == 7
        assert days[0]["date"] == "2024-06-03"
        assert days[0]["count"] == 1
        assert days[-1] == {"day": "Sun", "date": "2024-06-09", "count": 2}
        assert sum(d["count"] for d in days) == 3


class TestDashboardMetrics:
    """Dashboard numbers from the database."""

    @pytest.mark.asyncio
    async def test_metrics_scoped_by_owner(self, db_session, contact_repository, sample_contact, sample_profile):
        sample_contact.status = "Appointment Booked"
        other = await contact_repository.create(
            ContactModel(
                id=uuid4(),
                first_name="Other",
                last_name="Lead",
                phone_number="212-555-0100",
                status="Not Called",
                total_calls=0,
            )
        )
        now = datetime.now(timezone.utc)
        db_session.add_all(
            [
                CallLogModel(contact_id=sample_contact.id, duration=60, cost=0.5, created_at=now),
                CallLogModel(contact_id=sample_contact.id, duration=30, cost=0.3, created_at=now),
                CallLogModel(
                    contact_id=other.id,
                    duration=45,
                    cost=0.2,
                    created_at=now - timedelta(days=30),
                ),
            ]
        )
        await db_session.flush()

        metrics = (await dashboard_metrics(db_session, now=now)).to_dict()
        assert metrics["total_calls"] == 3
        assert metrics["appointments_booked"] == 1
        assert metrics["conversion_rate"] == 33.3
        assert metrics["cost_per_booking"] == 1.0
        assert metrics["total_cost"] == 1.0
        assert sum(d["count"] for d in metrics["daily_call_stats"]) == 2

        mine = (await dashboard_metrics(db_session, owner_id=sample_profile.id, now=now)).to_dict()
        assert mine["total_calls"] == 2
        assert mine["conversion_rate"] == 50.0
        assert mine["status_breakdown"] == {"Appointment Booked": 1}

    @pytest.mark.asyncio
    async def test_empty_dashboard(self, db_session):
        metrics = await dashboard_metrics(db_session)
        assert metrics.total_calls == 0
        assert metrics.conversion_rate == 0.0
        assert metrics.cost_per_booking == 0.0
        assert len(metrics.daily_call_stats) == 7

    @pytest.mark.asyncio
    async def test_cost_report_from_database(self, db_session, sample_contact):
        db_session.add(CallLogModel(contact_id=sample_contact.id, duration=300, cost=0.0))
        await db_session.flush()

        report = await cost_report(db_session)
        assert report.billed_calls == 1
        assert report.total_cost == pytest.approx(1.0)
