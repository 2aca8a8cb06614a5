"""Batch Outbound Dialer (Power Dial).

Runs one parallel-dial session at a time:
- Pending queue of contacts in the order they were selected
- Concurrency cap on simultaneously active calls
- Per-call lifecycle driven by Vapi status webhooks, polling and a
  maximum-duration timeout
- Calling window enforcement (pending calls are held, never dropped)
"""
from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Iterable, Protocol
from uuid import UUID, uuid4

from crm_dialer.config import ComplianceSettings, DialerSettings
from crm_dialer.core.exceptions import BatchError
from crm_dialer.core.logging import get_logger
from crm_dialer.core.phone import normalize_phone
from crm_dialer.domain import Campaign, LeadStatus
from crm_dialer.integrations.vapi import (
    STATUS_ENDED,
    STATUS_FORWARDING,
    STATUS_IN_PROGRESS,
    STATUS_QUEUED,
    STATUS_RINGING,
    VapiCall,
)
from crm_dialer.services.compliance import is_within_calling_window

log = get_logger(__name__)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class BatchStatus(str, Enum):
    """Batch session status."""

    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    ABORTED = "aborted"


class ActiveCallStatus(str, Enum):
    """Lifecycle of a call occupying a concurrency slot."""

    INITIALIZING = "Initializing"
    DIALING = "Dialing"
    CONNECTED = "Connected"
    WRAPPING_UP = "Wrapping Up"


# Vapi call status to slot status; "ended" releases the slot instead
VAPI_STATUS_MAP: dict[str, ActiveCallStatus] = {
    STATUS_QUEUED: ActiveCallStatus.INITIALIZING,
    STATUS_RINGING: ActiveCallStatus.DIALING,
    STATUS_IN_PROGRESS: ActiveCallStatus.CONNECTED,
    STATUS_FORWARDING: ActiveCallStatus.CONNECTED,
}


class CallPlacer(Protocol):
    """The subset of VapiClient the dialer needs."""

    async def create_call(
        self,
        phone_number: str,
        first_name: str,
        address: str,
        campaign: Campaign | str | None = None,
    ) -> VapiCall: ...

    async def get_call(self, call_id: str) -> VapiCall: ...


@dataclass
class BatchConfig:
    """Settings for one batch session."""

    concurrency: int = 3
    campaign: Campaign = Campaign.RESIDENTIAL
    poll_interval_seconds: float = 15.0
    max_call_duration_seconds: int = 900
    status_poll_enabled: bool = True
    tick_interval_seconds: float = 1.0

    # Campaign calling hours, intersected with the federal window
    calling_hours_start: str = "09:00"
    calling_hours_end: str = "18:00"

    @classmethod
    def from_settings(cls, settings: DialerSettings, **overrides: Any) -> "BatchConfig":
        values: dict[str, Any] = {
            "concurrency": settings.default_concurrency,
            "poll_interval_seconds": settings.poll_interval_seconds,
            "max_call_duration_seconds": settings.max_call_duration_seconds,
            "status_poll_enabled": settings.status_poll_enabled,
            "tick_interval_seconds": settings.tick_interval_seconds,
        }
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)

    def validate(self, max_concurrency: int) -> None:
        """Raise BatchError if the concurrency is out of range."""
        if not 1 <= self.concurrency <= max_concurrency:
            raise BatchError(
                f"Concurrency must be between 1 and {max_concurrency}",
                details={"concurrency": self.concurrency},
            )


@dataclass
class QueuedContact:
    """A contact waiting for a free slot."""

    contact_id: UUID
    name: str
    first_name: str
    phone_number: str
    address: str

    @classmethod
    def from_contact(cls, contact: Any) -> "QueuedContact":
        return cls(
            contact_id=contact.id,
            name=contact.full_name,
            first_name=contact.first_name,
            phone_number=contact.phone_number,
            address=contact.dial_address,
        )


@dataclass
class ActiveCall:
    """A call occupying a concurrency slot."""

    contact_id: UUID
    name: str
    phone_number: str
    status: ActiveCallStatus = ActiveCallStatus.INITIALIZING
    vapi_call_id: str | None = None
    started_at: datetime = field(default_factory=_utcnow)
    last_update_at: datetime = field(default_factory=_utcnow)
    slot_id: UUID = field(default_factory=uuid4)

    def duration(self, now: datetime | None = None) -> int:
        """Seconds since the call was started."""
        return max(0, int(((now or _utcnow()) - self.started_at).total_seconds()))

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        return {
            "contact_id": str(self.contact_id),
            "name": self.name,
            "phone_number": self.phone_number,
            "vapi_call_id": self.vapi_call_id,
            "status": self.status.value,
            "started_at": self.started_at.isoformat(),
            "duration": self.duration(now),
        }


@dataclass
class BatchProgress:
    """Snapshot of the current session."""

    status: BatchStatus
    total: int = 0
    completed: int = 0
    failed: int = 0
    pending: int = 0
    skipped: int = 0
    timed_out: int = 0
    active: list[ActiveCall] = field(default_factory=list)
    campaign: str | None = None
    concurrency: int = 0
    within_calling_window: bool = True
    started_at: datetime | None = None
    finished_at: datetime | None = None

    @property
    def percent(self) -> float:
        """Completed share of the batch, 0 when empty."""
        if self.total == 0:
            return 0.0
        return round(self.completed / self.total * 100, 1)

    def to_dict(self, now: datetime | None = None) -> dict[str, Any]:
        return {
            "status": self.status.value,
            "total": self.total,
            "completed": self.completed,
            "failed": self.failed,
            "pending": self.pending,
            "skipped": self.skipped,
            "timed_out": self.timed_out,
            "percent": self.percent,
            "active": [call.to_dict(now) for call in self.active],
            "campaign": self.campaign,
            "concurrency": self.concurrency,
            "within_calling_window": self.within_calling_window,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }


class BatchDialer:
    """Parallel outbound dialer for one batch session at a time.

    Usage:
        dialer = BatchDialer(vapi_client, settings.compliance, settings.dialer)
        await dialer.start(contacts, BatchConfig(concurrency=3))

        # From the webhook handler
        dialer.handle_status_update(vapi_call_id, "in-progress")
        dialer.handle_call_ended(vapi_call_id)

        progress = dialer.progress()
    """

    def __init__(
        self,
        vapi: CallPlacer,
        compliance: ComplianceSettings | None = None,
        settings: DialerSettings | None = None,
        clock: Callable[[], datetime] = _utcnow,
    ) -> None:
        """Initialize batch dialer.

        Args:
            vapi: Client used to place and poll calls
            compliance: Calling window settings
            settings: Dialer limits (max concurrency)
            clock: Source of the current time (UTC-aware)
        """
        self._vapi = vapi
        self._compliance = compliance or ComplianceSettings()
        self._settings = settings or DialerSettings()
        self._clock = clock

        self._status = BatchStatus.IDLE
        self._config = BatchConfig()
        self._pending: deque[QueuedContact] = deque()
        self._active: dict[UUID, ActiveCall] = {}
        self._by_vapi_id: dict[str, UUID] = {}

        self._total = 0
        self._completed = 0
        self._failed = 0
        self._skipped = 0
        self._timed_out = 0
        self._started_at: datetime | None = None
        self._finished_at: datetime | None = None
        self._holding = False

        self._loop_task: asyncio.Task | None = None

        # Persists the call log for a placed call
        self.on_call_placed: Callable[[ActiveCall], Awaitable[None]] | None = None

    # ========== State ==========

    @property
    def status(self) -> BatchStatus:
        return self._status

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def is_active(self) -> bool:
        """Whether a session is running or paused."""
        return self._status in (BatchStatus.RUNNING, BatchStatus.PAUSED)

    @property
    def active_count(self) -> int:
        return len(self._active)

    def progress(self) -> BatchProgress:
        """Get a snapshot of the current session."""
        return BatchProgress(
            status=self._status,
            total=self._total,
            completed=self._completed,
            failed=self._failed,
            pending=len(self._pending),
            skipped=self._skipped,
            timed_out=self._timed_out,
            active=list(self._active.values()),
            campaign=self._config.campaign.value if self._status != BatchStatus.IDLE else None,
            concurrency=self._config.concurrency,
            within_calling_window=self._within_window(self._clock()),
            started_at=self._started_at,
            finished_at=self._finished_at,
        )

    def _reset_session(self) -> None:
        self._pending.clear()
        self._active.clear()
        self._by_vapi_id.clear()
        self._total = 0
        self._completed = 0
        self._failed = 0
        self._skipped = 0
        self._timed_out = 0
        self._started_at = None
        self._finished_at = None
        self._holding = False

    # ========== Lifecycle ==========

    async def start(
        self,
        contacts: Iterable[Any],
        config: BatchConfig,
        blocked_numbers: set[str] | None = None,
        run_loop: bool = True,
    ) -> BatchProgress:
        """Start a batch session.

        Contacts marked Do Not Call or whose number is in ``blocked_numbers``
        are counted as skipped instead of being queued.

        Args:
            contacts: Contact models (or QueuedContact) in dial order
            config: Session configuration
            blocked_numbers: Normalised numbers on the do-not-call list
            run_loop: Start the background scheduling loop

        Raises:
            BatchError: If a session is already running or config is invalid
        """
        if self.is_active:
            raise BatchError("A batch session is already in progress")

        config.validate(self._settings.max_concurrency)
        blocked = blocked_numbers or set()

        # A finished session's loop may still be sleeping
        await self._cancel_loop()

        self._reset_session()
        self._config = config

        for contact in contacts:
            if isinstance(contact, QueuedContact):
                queued = contact
            else:
                if contact.status == LeadStatus.DO_NOT_CALL.value:
                    self._skipped += 1
                    continue
                queued = QueuedContact.from_contact(contact)

            if normalize_phone(queued.phone_number) in blocked:
                self._skipped += 1
                continue
            self._pending.append(queued)

        self._total = len(self._pending)
        self._started_at = self._clock()
        self._status = BatchStatus.RUNNING

        log.info(
            "Batch started",
            total=self._total,
            skipped=self._skipped,
            concurrency=config.concurrency,
            campaign=config.campaign.value,
        )

        if self._total == 0:
            self._finish(BatchStatus.COMPLETED)
        elif run_loop:
            self._loop_task = asyncio.create_task(self._run_loop())

        return self.progress()

    def pause(self) -> BatchProgress:
        """Stop firing new calls; active calls continue."""
        if self._status != BatchStatus.RUNNING:
            raise BatchError(f"Cannot pause a batch that is {self._status.value}")
        self._status = BatchStatus.PAUSED
        log.info("Batch paused", pending=len(self._pending), active=len(self._active))
        return self.progress()

    def resume(self) -> BatchProgress:
        """Resume firing calls."""
        if self._status != BatchStatus.PAUSED:
            raise BatchError(f"Cannot resume a batch that is {self._status.value}")
        self._status = BatchStatus.RUNNING
        log.info("Batch resumed", pending=len(self._pending))
        return self.progress()

    async def abort(self) -> BatchProgress:
        """Drop pending calls and stop tracking active ones."""
        if not self.is_active:
            raise BatchError(f"Cannot abort a batch that is {self._status.value}")

        dropped = len(self._pending)
        untracked = len(self._active)
        self._pending.clear()
        self._active.clear()
        self._by_vapi_id.clear()
        self._finish(BatchStatus.ABORTED)
        await self._cancel_loop()

        log.info("Batch aborted", dropped_pending=dropped, untracked_active=untracked)
        return self.progress()

    async def shutdown(self) -> None:
        """Stop the scheduling loop (application shutdown)."""
        if self.is_active:
            self._pending.clear()
            self._active.clear()
            self._by_vapi_id.clear()
            self._finish(BatchStatus.ABORTED)
        await self._cancel_loop()

    async def _cancel_loop(self) -> None:
        task = self._loop_task
        self._loop_task = None
        if task is None or task is asyncio.current_task():
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    def _finish(self, status: BatchStatus) -> None:
        self._status = status
        self._finished_at = self._clock()
        if status == BatchStatus.COMPLETED:
            log.info(
                "Batch completed",
                total=self._total,
                completed=self._completed,
                failed=self._failed,
                timed_out=self._timed_out,
            )

    # ========== Webhook Events ==========

    def _lookup(self, vapi_call_id: str | None) -> ActiveCall | None:
        if not vapi_call_id:
            return None
        slot_id = self._by_vapi_id.get(vapi_call_id)
        return self._active.get(slot_id) if slot_id else None

    def handle_status_update(self, vapi_call_id: str | None, vapi_status: str | None) -> bool:
        """Apply a Vapi status-update event.

        Returns:
            True if the call belongs to the current session
        """
        call = self._lookup(vapi_call_id)
        if call is None:
            return False

        if vapi_status == STATUS_ENDED:
            return self.handle_call_ended(vapi_call_id)

        new_status = VAPI_STATUS_MAP.get(vapi_status or "")
        call.last_update_at = self._clock()
        if new_status is not None and new_status != call.status:
            log.debug(
                "Active call status changed",
                vapi_call_id=vapi_call_id,
                old_status=call.status.value,
                new_status=new_status.value,
            )
            call.status = new_status
        return True

    def handle_call_ended(self, vapi_call_id: str | None) -> bool:
        """Release the slot held by an ended call.

        Returns:
            True if the call belongs to the current session
        """
        call = self._lookup(vapi_call_id)
        if call is None:
            return False

        call.status = ActiveCallStatus.WRAPPING_UP
        self._release(call, "ended")
        return True

    def _release(self, call: ActiveCall, reason: str) -> None:
        self._active.pop(call.slot_id, None)
        if call.vapi_call_id:
            self._by_vapi_id.pop(call.vapi_call_id, None)

        if reason == "failed":
            self._failed += 1
        else:
            self._completed += 1
            if reason == "timeout":
                self._timed_out += 1

        log.info(
            "Call slot released",
            contact_id=str(call.contact_id),
            vapi_call_id=call.vapi_call_id,
            reason=reason,
            active=len(self._active),
            pending=len(self._pending),
        )

        self._check_completion()

    def _check_completion(self) -> None:
        if self._status == BatchStatus.RUNNING and not self._pending and not self._active:
            self._finish(BatchStatus.COMPLETED)

    # ========== Main Loop ==========

    async def _run_loop(self) -> None:
        """Scheduling loop; one tick per interval until the batch ends."""
        log.info("Batch loop started")

        while self.is_active and asyncio.current_task() is self._loop_task:
            try:
                await self.tick()
            except asyncio.CancelledError:
                break
            except Exception as e:
                log.error("Batch loop error", error=str(e))

            if not self.is_active:
                break
            await asyncio.sleep(self._config.tick_interval_seconds)

        log.info("Batch loop ended", status=self._status.value)

    def _within_window(self, now: datetime) -> bool:
        return is_within_calling_window(now, self._config, self._compliance)

    async def tick(self) -> None:
        """Run one scheduling pass.

        Expires overdue calls, polls stale ones, then fills free slots
        from the pending queue when running and inside the calling window.
        """
        if not self.is_active:
            return

        now = self._clock()
        self._expire_overdue(now)

        if self._config.status_poll_enabled:
            await self._poll_stale(now)

        if self._status != BatchStatus.RUNNING:
            return

        self._check_completion()
        if self._status != BatchStatus.RUNNING or not self._pending:
            return

        if not self._within_window(now):
            if not self._holding:
                log.info("Outside calling window, holding pending calls", pending=len(self._pending))
                self._holding = True
            return
        self._holding = False

        free = self._config.concurrency - len(self._active)
        if free <= 0:
            return

        placing: list[ActiveCall] = []
        queued_by_slot: dict[UUID, QueuedContact] = {}
        while free > 0 and self._pending:
            queued = self._pending.popleft()
            call = ActiveCall(
                contact_id=queued.contact_id,
                name=queued.name,
                phone_number=queued.phone_number,
                started_at=now,
                last_update_at=now,
            )
            self._active[call.slot_id] = call
            queued_by_slot[call.slot_id] = queued
            placing.append(call)
            free -= 1

        await asyncio.gather(*(self._place_call(call, queued_by_slot[call.slot_id]) for call in placing))

    async def _place_call(self, call: ActiveCall, queued: QueuedContact) -> None:
        try:
            result = await self._vapi.create_call(
                queued.phone_number,
                queued.first_name,
                queued.address,
                self._config.campaign,
            )
        except Exception as e:
            log.warning(
                "Batch call failed to start",
                contact_id=str(queued.contact_id),
                error=str(e),
            )
            if call.slot_id in self._active:
                self._release(call, "failed")
            return

        if call.slot_id not in self._active:
            # Aborted while the request was in flight
            return

        call.vapi_call_id = result.id
        call.status = ActiveCallStatus.DIALING
        call.last_update_at = self._clock()
        self._by_vapi_id[result.id] = call.slot_id

        log.info(
            "Batch call placed",
            contact_id=str(queued.contact_id),
            vapi_call_id=result.id,
            active=len(self._active),
        )

        if self.on_call_placed:
            try:
                await self.on_call_placed(call)
            except Exception as e:
                log.error("Call placed callback failed", error=str(e))

    def _expire_overdue(self, now: datetime) -> None:
        limit = self._config.max_call_duration_seconds
        for call in list(self._active.values()):
            if call.vapi_call_id and call.duration(now) >= limit:
                log.warning(
                    "Call exceeded max duration, releasing",
                    vapi_call_id=call.vapi_call_id,
                    duration=call.duration(now),
                )
                call.status = ActiveCallStatus.WRAPPING_UP
                self._release(call, "timeout")

    async def _poll_stale(self, now: datetime) -> None:
        interval = self._config.poll_interval_seconds
        for call in list(self._active.values()):
            if not call.vapi_call_id:
                continue
            if (now - call.last_update_at).total_seconds() < interval:
                continue

            call.last_update_at = now
            try:
                state = await self._vapi.get_call(call.vapi_call_id)
            except Exception as e:
                log.warning("Call status poll failed", vapi_call_id=call.vapi_call_id, error=str(e))
                continue

            if call.slot_id not in self._active:
                continue
            if state.is_ended:
                self.handle_call_ended(call.vapi_call_id)
            else:
                self.handle_status_update(call.vapi_call_id, state.status)
