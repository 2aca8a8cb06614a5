"""Pagination defaults shared by list endpoints."""

from typing import Annotated

from fastapi import Query
from pydantic import BaseModel, Field


DEFAULT_PAGE = 1
DEFAULT_PAGE_SIZE = 20
MAX_PAGE_SIZE = 100

# Bulk contact creation and DNC listing
MAX_BULK_SIZE = 500


PageParam = Annotated[
    int,
    Query(ge=1, description="Page number (1-indexed)"),
]

PageSizeParam = Annotated[
    int,
    Query(ge=1, le=MAX_PAGE_SIZE, description=f"Results per page (max {MAX_PAGE_SIZE})"),
]

BulkLimitParam = Annotated[
    int,
    Query(ge=1, le=MAX_BULK_SIZE, description=f"Maximum results (max {MAX_BULK_SIZE})"),
]


class PaginationMeta(BaseModel):
    """Pagination metadata for list responses."""

    page: int = Field(..., description="Current page number")
    page_size: int = Field(..., description="Number of items per page")
    total: int = Field(..., description="Total number of items")
    total_pages: int = Field(..., description="Total number of pages")
    has_next: bool
    has_prev: bool

    @classmethod
    def from_params(cls, page: int, page_size: int, total: int) -> "PaginationMeta":
        total_pages = (total + page_size - 1) // page_size if page_size > 0 else 0
        return cls(
            page=page,
            page_size=page_size,
            total=total,
            total_pages=total_pages,
            has_next=page < total_pages,
            has_prev=page > 1,
        )


def calculate_offset(page: int, page_size: int) -> int:
    """Offset for a 1-indexed page."""
    return (page - 1) * page_size
