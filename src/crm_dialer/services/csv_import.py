"""Contact list import from CSV exports.

Lead lists arrive from spreadsheets, CRMs and list brokers with wildly
different headers and delimiters, so parsing is deliberately forgiving:
headers are mapped by keyword, the delimiter is sniffed from the header
line, and rows are kept as long as they have a name or a phone number.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from crm_dialer.core.logging import get_logger
from crm_dialer.core.phone import normalize_phone
from crm_dialer.db.models.crm import ContactModel
from crm_dialer.db.repositories.contacts import ContactRepository
from crm_dialer.db.repositories.dnc import DoNotCallRepository
from crm_dialer.domain import LeadStatus

log = get_logger(__name__)

UNKNOWN_FIRST_NAME = "Unknown"
UNKNOWN_LAST_NAME = "Prospect"
MIN_PHONE_LENGTH = 6


@dataclass
class ContactDraft:
    """A parsed, not yet persisted, contact row."""

    first_name: str = ""
    last_name: str = ""
    phone_number: str = ""
    address: str | None = None
    city: str | None = None
    state: str | None = None
    zip: str | None = None
    notes: str | None = None
    status: str = LeadStatus.NOT_CALLED.value
    tcpa_acknowledged: bool = True

    def to_model(self, owner_id: UUID | None = None, source: str = "csv") -> ContactModel:
        return ContactModel(
            user_id=owner_id,
            first_name=self.first_name,
            last_name=self.last_name,
            phone_number=self.phone_number,
            address=self.address or None,
            city=self.city or None,
            state=self.state or None,
            zip=self.zip or None,
            notes=self.notes or None,
            status=self.status,
            tcpa_acknowledged=self.tcpa_acknowledged,
            source=source,
        )


@dataclass
class ImportResult:
    """Outcome of a CSV import."""

    parsed: int = 0
    imported: int = 0
    skipped_dnc: int = 0
    contact_ids: list[UUID] = field(default_factory=list)

    def to_dict(self) -> dict[str, int]:
        return {
            "parsed": self.parsed,
            "imported": self.imported,
            "skipped_dnc": self.skipped_dnc,
        }


# =============================================================================
# Parsing
# =============================================================================


def detect_delimiter(header_line: str) -> str:
    """Pick ';' or tab when either outnumbers commas in the header."""
    commas = header_line.count(",")
    if header_line.count(";") > commas:
        return ";"
    if header_line.count("\t") > commas:
        return "\t"
    return ","


def _clean_field(raw: str) -> str:
    value = raw.strip()
    if len(value) >= 2 and value.startswith('"') and value.endswith('"'):
        value = value[1:-1].replace('""', '"')
    return value


def split_line(line: str, delimiter: str) -> list[str]:
    """Split a line on the delimiter, ignoring delimiters inside quotes."""
    fields: list[str] = []
    start = 0
    in_quotes = False

    for i, char in enumerate(line):
        if char == '"':
            in_quotes = not in_quotes
        elif char == delimiter and not in_quotes:
            fields.append(_clean_field(line[start:i]))
            start = i + 1

    fields.append(_clean_field(line[start:]))
    return fields


# Checked in order; first match wins
_HEADER_RULES: list[tuple[str, Callable[[str], bool]]] = [
    ("first_name", lambda h: "first" in h or h in ("firstname", "fname", "name", "full name")),
    ("last_name", lambda h: "last" in h or h in ("lastname", "lname")),
    (
        "phone_number",
        lambda h: "phone" in h or h in ("mobile", "cell", "number") or "contact" in h or "tel" in h,
    ),
    ("address", lambda h: "addres" in h or h in ("street", "location") or "addr" in h),
    ("city", lambda h: h == "city"),
    ("state", lambda h: h == "state"),
    ("zip", lambda h: h == "zip" or "postal" in h or "code" in h),
    ("notes", lambda h: h in ("notes", "description", "info")),
]


def map_header(header: str) -> str | None:
    """Map a CSV column header to a contact field, or None to ignore it."""
    h = header.strip().lower()
    for field_name, matches in _HEADER_RULES:
        if matches(h):
            return field_name
    return None


def parse_csv(text: str) -> list[ContactDraft]:
    """Parse CSV text into contact drafts.

    Args:
        text: Raw file content (BOM and CRLF tolerated)

    Returns:
        Drafts for every row with a name or a plausible phone number
    """
    content = text.lstrip("\ufeff").strip()
    lines = content.replace("\r\n", "\n").replace("\r", "\n").split("\n")
    lines = [line for line in lines if line.strip()]
    if len(lines) < 2:
        return []

    delimiter = detect_delimiter(lines[0])
    fields = [map_header(h) for h in split_line(lines[0], delimiter)]

    drafts: list[ContactDraft] = []
    for line in lines[1:]:
        values = split_line(line, delimiter)
        draft = ContactDraft()

        for index, value in enumerate(values):
            if index < len(fields) and fields[index]:
                setattr(draft, fields[index], value)

        # A "Full Name" column lands in first_name
        if draft.first_name and not draft.last_name and " " in draft.first_name:
            first, _, rest = draft.first_name.partition(" ")
            draft.first_name = first
            draft.last_name = rest.strip()

        has_name = bool(
            (draft.first_name and draft.first_name != UNKNOWN_FIRST_NAME)
            or (draft.last_name and draft.last_name != UNKNOWN_LAST_NAME)
        )
        has_phone = len(draft.phone_number) >= MIN_PHONE_LENGTH
        if not has_name and not has_phone:
            continue

        draft.first_name = draft.first_name or UNKNOWN_FIRST_NAME
        draft.last_name = draft.last_name or UNKNOWN_LAST_NAME
        drafts.append(draft)

    return drafts


# =============================================================================
# Import
# =============================================================================


async def import_drafts(
    session: AsyncSession,
    drafts: list[ContactDraft],
    owner_id: UUID | None = None,
    source: str = "csv",
) -> ImportResult:
    """Insert drafts, skipping numbers on the do-not-call list."""
    result = ImportResult(parsed=len(drafts))
    if not drafts:
        return result

    blocked = await DoNotCallRepository(session).blocked_numbers()

    models: list[ContactModel] = []
    for draft in drafts:
        normalized = normalize_phone(draft.phone_number)
        if normalized and normalized in blocked:
            result.skipped_dnc += 1
            continue
        models.append(draft.to_model(owner_id=owner_id, source=source))

    created = await ContactRepository(session).create_multi(models)
    result.imported = len(created)
    result.contact_ids = [c.id for c in created]

    log.info(
        "Contacts imported",
        parsed=result.parsed,
        imported=result.imported,
        skipped_dnc=result.skipped_dnc,
        owner_id=str(owner_id) if owner_id else None,
    )
    return result


async def import_csv(
    session: AsyncSession,
    text: str,
    owner_id: UUID | None = None,
    source: str = "csv",
) -> ImportResult:
    """Parse CSV text and bulk-insert the contacts.

    Args:
        session: Database session (caller commits)
        text: Raw CSV content
        owner_id: Profile that owns the imported contacts
        source: Provenance label stored on each contact

    Returns:
        Counts of parsed, imported and DNC-skipped rows
    """
    return await import_drafts(session, parse_csv(text), owner_id=owner_id, source=source)
