"""Dashboard metrics and call cost reporting."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Any, Iterable, Protocol
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.db.repositories.calls import CallLogRepository
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.domain import LeadStatus

log = get_logger(__name__)

# Blended Vapi + telephony + LLM rate for calls without a recorded cost
ESTIMATED_RATE_PER_MINUTE = 0.20

VOICEMAIL_MARKERS = ("voicemail", "record your message", "not available")

DASHBOARD_DAYS = 7


# =============================================================================
# Dashboard
# =============================================================================


@dataclass
class DashboardMetrics:
    """Headline numbers for the dashboard."""

    total_calls: int
    appointments_booked: int
    conversion_rate: float
    cost_per_booking: float
    daily_call_stats: list[dict[str, Any]]
    status_breakdown: dict[str, int] = field(default_factory=dict)
    total_cost: float = 0.0

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_calls": self.total_calls,
            "appointments_booked": self.appointments_booked,
            "conversion_rate": self.conversion_rate,
            "cost_per_booking": self.cost_per_booking,
            "total_cost": self.total_cost,
            "daily_call_stats": self.daily_call_stats,
            "status_breakdown": self.status_breakdown,
        }


def daily_counts(
    timestamps: Iterable[datetime],
    today: date,
    days: int = DASHBOARD_DAYS,
) -> list[dict[str, Any]]:
    """Bucket timestamps into the last ``days`` days, oldest first."""
    window = [today - timedelta(days=offset) for offset in range(days - 1, -1, -1)]
    counts = {day: 0 for day in window}
    for ts in timestamps:
        day = ts.astimezone(timezone.utc).date() if ts.tzinfo else ts.date()
        if day in counts:
            counts[day] += 1
    return [{"day": day.strftime("%a"), "date": day.isoformat(), "count": counts[day]} for day in window]


async def dashboard_metrics(
    session: AsyncSession,
    owner_id: UUID | None = None,
    now: datetime | None = None,
) -> DashboardMetrics:
    """Compute dashboard metrics, optionally scoped to one owner."""
    now = now or datetime.now(timezone.utc)
    calls = CallLogRepository(session)
    contacts = ContactRepository(session)

    total_calls = await calls.count_logs(owner_id=owner_id)
    breakdown = await contacts.count_by_status(owner_id=owner_id)
    booked = breakdown.get(LeadStatus.APPOINTMENT_BOOKED.value, 0)
    total_cost = await calls.total_cost(owner_id=owner_id)

    today = now.astimezone(timezone.utc).date()
    since = datetime.combine(today - timedelta(days=DASHBOARD_DAYS - 1), datetime.min.time(), tzinfo=timezone.utc)
    timestamps = await calls.created_since(since, owner_id=owner_id)

    return DashboardMetrics(
        total_calls=total_calls,
        appointments_booked=booked,
        conversion_rate=round(booked / total_calls * 100, 1) if total_calls else 0.0,
        cost_per_booking=round(total_cost / booked, 2) if booked else 0.0,
        daily_call_stats=daily_counts(timestamps, today),
        status_breakdown=breakdown,
        total_cost=round(total_cost, 2),
    )


# =============================================================================
# Cost Report
# =============================================================================


class CostedCall(Protocol):
    duration: int
    cost: float
    transcript: str | None


@dataclass
class CostReport:
    """Spend breakdown across call logs."""

    total_cost: float = 0.0
    billed_calls: int = 0
    billed_minutes: float = 0.0
    avg_cost_per_call: float = 0.0
    voicemail_count: int = 0
    voicemail_cost: float = 0.0
    voicemail_minutes: float = 0.0
    voicemail_share_percent: float = 0.0
    estimated_rate_per_minute: float = ESTIMATED_RATE_PER_MINUTE

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_cost": round(self.total_cost, 2),
            "billed_calls": self.billed_calls,
            "billed_minutes": round(self.billed_minutes, 1),
            "avg_cost_per_call": round(self.avg_cost_per_call, 2),
            "voicemail_count": self.voicemail_count,
            "voicemail_cost": round(self.voicemail_cost, 2),
            "voicemail_minutes": round(self.voicemail_minutes, 1),
            "voicemail_share_percent": round(self.voicemail_share_percent),
            "estimated_rate_per_minute": self.estimated_rate_per_minute,
        }


def call_cost(call: CostedCall, rate_per_minute: float = ESTIMATED_RATE_PER_MINUTE) -> float:
    """Recorded cost when present, else duration times the estimated rate."""
    if call.cost and call.cost > 0:
        return call.cost
    return (call.duration or 0) / 60 * rate_per_minute


def looks_like_voicemail(transcript: str | None) -> bool:
    text = (transcript or "").lower()
    return any(marker in text for marker in VOICEMAIL_MARKERS)


def build_cost_report(
    call_logs: Iterable[CostedCall],
    rate_per_minute: float = ESTIMATED_RATE_PER_MINUTE,
) -> CostReport:
    """Aggregate spend across call logs.

    Billed calls are those with a positive duration. Voicemails are the
    billed calls whose transcript mentions a voicemail greeting.
    """
    report = CostReport(estimated_rate_per_minute=rate_per_minute)

    for call in call_logs:
        cost = call_cost(call, rate_per_minute)
        minutes = (call.duration or 0) / 60
        report.total_cost += cost
        report.billed_minutes += minutes

        if (call.duration or 0) <= 0:
            continue

        report.billed_calls += 1
        if looks_like_voicemail(call.transcript):
            report.voicemail_count += 1
            report.voicemail_cost += cost
            report.voicemail_minutes += minutes

    report.avg_cost_per_call = report.total_cost / (report.billed_calls or 1)
    if report.total_cost > 0:
        report.voicemail_share_percent = report.voicemail_cost / report.total_cost * 100
    return report


async def cost_report(session: AsyncSession) -> CostReport:
    """Build the cost report over all call logs."""
    logs = await CallLogRepository(session).all_for_report()
    report = build_cost_report(logs)
    log.info(
        "Cost report built",
        calls=len(logs),
        billed_calls=report.billed_calls,
        total_cost=round(report.total_cost, 2),
    )
    return report
