"""Contact and Do-Not-Call Endpoints.

Contacts are scoped to their owner: admins see every contact, users only
their own. Setting a contact's status to Do Not Call also blocks its number.
"""
from datetime import datetime
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, File, Request, UploadFile
from pydantic import BaseModel, Field, field_validator
from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.api.auth import CurrentUser, owner_scope
from crm_dialer.api.pagination import (
    DEFAULT_PAGE,
    DEFAULT_PAGE_SIZE,
    MAX_BULK_SIZE,
    BulkLimitParam,
    PageParam,
    PageSizeParam,
    PaginationMeta,
    calculate_offset,
)
from crm_dialer.api.rate_limits import RateLimits, limiter
from crm_dialer.core.exceptions import ValidationError
from crm_dialer.core.logging import get_logger
from crm_dialer.core.phone import normalize_phone
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.db.repositories.dnc import DoNotCallRepository
from crm_dialer.dependencies import DatabaseDep
from crm_dialer.domain import LeadStatus
from crm_dialer.services.csv_import import import_csv
from crm_dialer.services.dialing import ensure_owner

log = get_logger(__name__)

router = APIRouter()

DNC_REASON_STATUS = "Marked Do Not Call"


# ============================================================================
# Pydantic Schemas
# ============================================================================


class ContactCreate(BaseModel):
    """Schema for creating a contact."""

    first_name: str = Field(..., min_length=1)
    last_name: str = ""
    phone_number: str
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    source: str | None = "manual"
    status: LeadStatus = LeadStatus.NOT_CALLED
    tcpa_acknowledged: bool = False
    notes: str | None = None

    @field_validator("phone_number")
    @classmethod
    def _has_digits(cls, value: str) -> str:
        if not normalize_phone(value):
            raise ValueError("phone_number must contain digits")
        return value.strip()


class ContactUpdate(BaseModel):
    """Partial contact update."""

    first_name: str | None = None
    last_name: str | None = None
    phone_number: str | None = None
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    source: str | None = None
    status: LeadStatus | None = None
    tcpa_acknowledged: bool | None = None
    notes: str | None = None


class Contact(BaseModel):
    """Contact schema for API responses."""

    id: UUID
    user_id: UUID | None = None
    first_name: str
    last_name: str
    full_name: str
    phone_number: str
    email: str | None = None
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    full_address: str | None = None
    source: str | None = None
    status: str
    total_calls: int = 0
    last_contacted_at: datetime | None = None
    last_outcome: str | None = None
    tcpa_acknowledged: bool = False
    notes: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}

    @classmethod
    def from_model(cls, model: ContactModel) -> "Contact":
        """Create schema from ORM model."""
        return cls(
            id=model.id,
            user_id=model.user_id,
            first_name=model.first_name,
            last_name=model.last_name,
            full_name=model.full_name,
            phone_number=model.phone_number,
            email=model.email,
            address=model.address,
            city=model.city,
            state=model.state,
            zip=model.zip,
            full_address=model.full_address,
            source=model.source,
            status=model.status,
            total_calls=model.total_calls or 0,
            last_contacted_at=model.last_contacted_at,
            last_outcome=model.last_outcome,
            tcpa_acknowledged=model.tcpa_acknowledged,
            notes=model.notes,
            created_at=model.created_at,
        )


class ContactListResponse(BaseModel):
    """Paginated contact list."""

    contacts: list[Contact]
    pagination: PaginationMeta


class BulkCreateRequest(BaseModel):
    contacts: list[ContactCreate] = Field(..., min_length=1, max_length=MAX_BULK_SIZE)


class DoNotCallEntry(BaseModel):
    """Do-not-call list entry."""

    phone_number: str
    reason: str | None = None
    created_at: datetime | None = None

    model_config = {"from_attributes": True}


class DoNotCallCreate(BaseModel):
    phone_number: str
    reason: str | None = None


# ============================================================================
# Dependencies
# ============================================================================


async def get_contact_repository(db: DatabaseDep) -> ContactRepository:
    """Get contact repository instance."""
    return ContactRepository(db)


async def get_dnc_repository(db: DatabaseDep) -> DoNotCallRepository:
    """Get do-not-call repository instance."""
    return DoNotCallRepository(db)


ContactRepoDep = Annotated[ContactRepository, Depends(get_contact_repository)]
DncRepoDep = Annotated[DoNotCallRepository, Depends(get_dnc_repository)]


async def _load_owned(repo: ContactRepository, contact_id: UUID, user: CurrentUser) -> ContactModel:
    contact = await repo.get_or_raise(contact_id)
    ensure_owner(contact, owner_scope(user))
    return contact


async def _block_if_do_not_call(session: AsyncSession, contact: ContactModel) -> None:
    if contact.status == LeadStatus.DO_NOT_CALL.value:
        await DoNotCallRepository(session).add(contact.phone_number, reason=DNC_REASON_STATUS)
        log.info("Contact added to do-not-call list", contact_id=str(contact.id))


def _new_contact(data: ContactCreate, owner_id: UUID | None) -> ContactModel:
    values: dict[str, Any] = data.model_dump()
    values["status"] = data.status.value
    return ContactModel(user_id=owner_id, total_calls=0, **values)


# ============================================================================
# Contact Endpoints
# ============================================================================


@router.get("/contacts", response_model=ContactListResponse)
@limiter.limit(RateLimits.READ)
async def list_contacts(
    request: Request,
    repo: ContactRepoDep,
    user: CurrentUser,
    status: LeadStatus | None = None,
    search: str | None = None,
    page: PageParam = DEFAULT_PAGE,
    page_size: PageSizeParam = DEFAULT_PAGE_SIZE,
) -> ContactListResponse:
    """List contacts, newest first.

    Args:
        status: Filter by pipeline status
        search: Case-insensitive match on first name, last name or phone
        page: Page number
        page_size: Results per page
    """
    owner_id = owner_scope(user)
    status_value = status.value if status else None

    contacts = await repo.search(
        query=search,
        status=status_value,
        owner_id=owner_id,
        skip=calculate_offset(page, page_size),
        limit=page_size,
    )
    total = await repo.count_filtered(query=search, status=status_value, owner_id=owner_id)

    return ContactListResponse(
        contacts=[Contact.from_model(c) for c in contacts],
        pagination=PaginationMeta.from_params(page, page_size, total),
    )


@router.get("/contacts/{contact_id}", response_model=Contact)
@limiter.limit(RateLimits.READ)
async def get_contact(
    request: Request,
    contact_id: UUID,
    repo: ContactRepoDep,
    user: CurrentUser,
) -> Contact:
    """Get a contact by ID."""
    return Contact.from_model(await _load_owned(repo, contact_id, user))


@router.post("/contacts", response_model=Contact, status_code=201)
@limiter.limit(RateLimits.WRITE)
async def create_contact(
    request: Request,
    data: ContactCreate,
    repo: ContactRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> Contact:
    """Create a contact owned by the caller."""
    contact = await repo.create(_new_contact(data, _owner_id_for_create(user)))
    await _block_if_do_not_call(db, contact)

    log.info("Contact created", contact_id=str(contact.id))
    return Contact.from_model(contact)


@router.post("/contacts/bulk", response_model=list[Contact], status_code=201)
@limiter.limit(RateLimits.WRITE)
async def bulk_create_contacts(
    request: Request,
    data: BulkCreateRequest,
    repo: ContactRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> list[Contact]:
    """Create many contacts in one transaction."""
    owner_id = _owner_id_for_create(user)
    created = await repo.create_multi([_new_contact(item, owner_id) for item in data.contacts])
    for contact in created:
        await _block_if_do_not_call(db, contact)

    log.info("Contacts bulk created", count=len(created))
    return [Contact.from_model(c) for c in created]


@router.post("/contacts/import")
@limiter.limit(RateLimits.WRITE)
async def import_contacts(
    request: Request,
    db: DatabaseDep,
    user: CurrentUser,
    file: UploadFile = File(...),
) -> dict[str, Any]:
    """Import contacts from an uploaded CSV (comma or semicolon separated).

    Numbers on the do-not-call list are skipped.
    """
    raw = await file.read()
    try:
        text = raw.decode("utf-8")
    except UnicodeDecodeError:
        text = raw.decode("latin-1")

    result = await import_csv(
        db,
        text,
        owner_id=_owner_id_for_create(user),
        source=file.filename or "csv",
    )
    if result.parsed == 0:
        raise ValidationError(
            "No valid contacts found in file",
            details={"filename": file.filename},
        )
    return result.to_dict()


@router.patch("/contacts/{contact_id}", response_model=Contact)
@limiter.limit(RateLimits.WRITE)
async def update_contact(
    request: Request,
    contact_id: UUID,
    data: ContactUpdate,
    repo: ContactRepoDep,
    db: DatabaseDep,
    user: CurrentUser,
) -> Contact:
    """Partially update a contact."""
    contact = await _load_owned(repo, contact_id, user)

    changes = data.model_dump(exclude_unset=True)
    if "status" in changes:
        if changes["status"] is None:
            raise ValidationError("status cannot be null")
        changes["status"] = LeadStatus(changes["status"]).value
    if "phone_number" in changes and not normalize_phone(changes["phone_number"]):
        raise ValidationError("phone_number must contain digits")

    for key, value in changes.items():
        setattr(contact, key, value)
    await db.flush()
    await _block_if_do_not_call(db, contact)

    return Contact.from_model(contact)


@router.delete("/contacts/{contact_id}")
@limiter.limit(RateLimits.WRITE)
async def delete_contact(
    request: Request,
    contact_id: UUID,
    repo: ContactRepoDep,
    user: CurrentUser,
) -> dict[str, str]:
    """Delete a contact with its call logs and appointments."""
    contact = await _load_owned(repo, contact_id, user)
    await repo.delete_with_history(contact.id)

    log.info("Contact deleted", contact_id=str(contact_id))
    return {"status": "deleted", "id": str(contact_id)}


def _owner_id_for_create(user: CurrentUser) -> UUID | None:
    # Admin-created contacts belong to the admin as well
    try:
        return UUID(user.id)
    except ValueError:
        return owner_scope(user)


# ============================================================================
# Do-Not-Call Endpoints
# ============================================================================


@router.get("/dnc", response_model=list[DoNotCallEntry])
@limiter.limit(RateLimits.READ)
async def list_do_not_call(
    request: Request,
    repo: DncRepoDep,
    user: CurrentUser,
    page: PageParam = DEFAULT_PAGE,
    limit: BulkLimitParam = 100,
) -> list[DoNotCallEntry]:
    """List blocked numbers."""
    entries = await repo.list_entries(skip=calculate_offset(page, limit), limit=limit)
    return [DoNotCallEntry.model_validate(e) for e in entries]


@router.post("/dnc", response_model=DoNotCallEntry, status_code=201)
@limiter.limit(RateLimits.WRITE)
async def add_do_not_call(
    request: Request,
    data: DoNotCallCreate,
    repo: DncRepoDep,
    user: CurrentUser,
) -> DoNotCallEntry:
    """Block a number (idempotent)."""
    entry = await repo.add(data.phone_number, reason=data.reason)
    if entry is None:
        raise ValidationError("phone_number must contain digits")

    log.info("Number added to do-not-call list", user_id=user.id)
    return DoNotCallEntry.model_validate(entry)


@router.delete("/dnc/{phone_number}")
@limiter.limit(RateLimits.WRITE)
async def remove_do_not_call(
    request: Request,
    phone_number: str,
    repo: DncRepoDep,
    user: CurrentUser,
) -> dict[str, Any]:
    """Unblock a number."""
    removed = await repo.remove(phone_number)
    return {"status": "removed" if removed else "not_found", "phone_number": normalize_phone(phone_number)}
