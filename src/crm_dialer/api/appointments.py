"""Appointment endpoints."""

from datetime import datetime, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from crm_dialer.api.auth import AuthenticatedUser, CurrentUser, owner_scope
from crm_dialer.api.pagination import (
    DEFAULT_PAGE,
    DEFAULT_PAGE_SIZE,
    PageParam,
    PageSizeParam,
    PaginationMeta,
    calculate_offset,
)
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.core.logging import get_logger
from crm_dialer.db.models.core import AppointmentModel
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.calls import AppointmentRepository
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.dependencies import DatabaseDep
from crm_dialer.domain import AppointmentStatus
from crm_dialer.services.dialing import ensure_owner

log = get_logger(__name__)

router = APIRouter()


class Appointment(BaseModel):
    """Appointment with its contact's name and phone."""

    id: UUID
    contact_id: UUID
    contact_name: str | None = None
    phone_number: str | None = None
    # Serialised under the column name "datetime"
    scheduled_at: datetime = Field(serialization_alias="datetime")
    notes: str | None = None
    status: str
    google_event_id: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_model(cls, model: AppointmentModel, contact: ContactModel | None = None) -> "Appointment":
        return cls(
            id=model.id,
            contact_id=model.contact_id,
            contact_name=contact.full_name if contact else None,
            phone_number=contact.phone_number if contact else None,
            scheduled_at=model.scheduled_at,
            notes=model.notes,
            status=model.status,
            google_event_id=model.google_event_id,
            created_at=model.created_at,
        )


class AppointmentListResponse(BaseModel):
    appointments: list[Appointment]
    pagination: PaginationMeta


class AppointmentUpdate(BaseModel):
    status: AppointmentStatus | None = None
    notes: str | None = None


async def get_appointment_repository(db: DatabaseDep) -> AppointmentRepository:
    """Get appointment repository instance."""
    return AppointmentRepository(db)


AppointmentRepoDep = Annotated[AppointmentRepository, Depends(get_appointment_repository)]


async def _load_owned(
    db: DatabaseDep,
    repo: AppointmentRepository,
    appointment_id: UUID,
    user: AuthenticatedUser,
) -> tuple[AppointmentModel, ContactModel | None]:
    appointment = await repo.get_or_raise(appointment_id)
    contact = await ContactRepository(db).get(appointment.contact_id)
    if contact is not None:
        ensure_owner(contact, owner_scope(user))
    return appointment, contact


@router.get("/appointments", response_model=AppointmentListResponse)
@limiter.limit(RateLimits.READ)
async def list_appointments(
    request: Request,
    repo: AppointmentRepoDep,
    user: CurrentUser,
    upcoming: bool = False,
    status: AppointmentStatus | None = None,
    page: PageParam = DEFAULT_PAGE,
    page_size: PageSizeParam = DEFAULT_PAGE_SIZE,
) -> AppointmentListResponse:
    """List appointments soonest first.

    Args:
        upcoming: Only appointments from now on
        status: Filter by appointment status
    """
    owner_id = owner_scope(user)
    upcoming_after = datetime.now(timezone.utc) if upcoming else None
    status_value = status.value if status else None

    rows = await repo.list_with_contacts(
        upcoming_after=upcoming_after,
        status=status_value,
        owner_id=owner_id,
        skip=calculate_offset(page, page_size),
        limit=page_size,
    )
    total = await repo.count_filtered(
        upcoming_after=upcoming_after,
        status=status_value,
        owner_id=owner_id,
    )

    return AppointmentListResponse(
        appointments=[Appointment.from_model(a, c) for a, c in rows],
        pagination=PaginationMeta.from_params(page, page_size, total),
    )


@router.get("/appointments/{appointment_id}", response_model=Appointment)
@limiter.limit(RateLimits.READ)
async def get_appointment(
    request: Request,
    appointment_id: UUID,
    repo: AppointmentRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> Appointment:
    appointment, contact = await _load_owned(db, repo, appointment_id, user)
    return Appointment.from_model(appointment, contact)


@router.patch("/appointments/{appointment_id}", response_model=Appointment)
@limiter.limit(RateLimits.WRITE)
async def update_appointment(
    request: Request,
    appointment_id: UUID,
    data: AppointmentUpdate,
    repo: AppointmentRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> Appointment:
    """Update an appointment's status or notes."""
    appointment, contact = await _load_owned(db, repo, appointment_id, user)

    if data.status is not None:
        appointment.status = data.status.value
    if data.notes is not None:
        appointment.notes = data.notes
    await db.flush()

    log.info("Appointment updated", appointment_id=str(appointment.id), status=appointment.status)
    return Appointment.from_model(appointment, contact)


@router.delete("/appointments/{appointment_id}")
@limiter.limit(RateLimits.WRITE)
async def delete_appointment(
    request: Request,
    appointment_id: UUID,
    repo: AppointmentRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> dict[str, str]:
    appointment, _ = await _load_owned(db, repo, appointment_id, user)
    await repo.delete(appointment.id)
    return {"status": "deleted", "id": str(appointment_id)}
