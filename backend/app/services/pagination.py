"""Page requests and paginated results shared by list endpoints."""

import math
from dataclasses import dataclass, field
from typing import Generic, TypeVar

from app.config import settings
from app.errors import ValidationError

T = TypeVar("T")

DEFAULT_PAGE = 1


@dataclass(frozen=True)
class PageRequest:
    page: int = DEFAULT_PAGE
    limit: int = 10
    # Return everything on one page
    skip: bool = False

    @classmethod
    def from_query(
        cls,
        page: int | None = None,
        limit: int | None = None,
        skip: bool | None = None,
        *,
        default_limit: int | None = None,
        max_limit: int | None = None,
    ) -> "PageRequest":
        default_limit = default_limit or settings.report_default_page_size
        max_limit = max_limit or settings.report_max_page_size
        page = DEFAULT_PAGE if page is None else page
        limit = default_limit if limit is None else limit

        if page < 1:
            raise ValidationError("Page number must be greater than 0")
        if limit < 1 or limit > max_limit:
            raise ValidationError(f"Limit must be between 1 and {max_limit}")
        return cls(page=page, limit=limit, skip=bool(skip))

    @property
    def offset(self) -> int:
        return 0 if self.skip else (self.page - 1) * self.limit

    @property
    def take(self) -> int | None:
        """Row limit for the query; ``None`` means no limit."""
        return None if self.skip else self.limit


@dataclass(frozen=True)
class PaginationMeta:
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_previous_page: bool


@dataclass(frozen=True)
class PaginatedResult(Generic[T]):
    meta: PaginationMeta
    data: list[T] = field(default_factory=list)


def total_pages(total: int, limit: int) -> int:
    if total == 0:
        return 0
    return math.ceil(total / limit)


def paginate(data: list[T], total: int, request: PageRequest) -> PaginatedResult[T]:
    """Wrap one page of *data*; a page past the last one is a ValidationError."""
    if request.skip:
        meta = PaginationMeta(
            page=1,
            limit=total,
            total=total,
            total_pages=1,
            has_next_page=False,
            has_previous_page=False,
        )
        return PaginatedResult(meta=meta, data=data)

    pages = total_pages(total, request.limit)
    if total > 0 and request.page > pages:
        raise ValidationError(f"Page {request.page} exceeds total pages ({pages})")

    meta = PaginationMeta(
        page=request.page,
        limit=request.limit,
        total=total,
        total_pages=pages,
        has_next_page=request.page < pages,
        has_previous_page=request.page > 1,
    )
    return PaginatedResult(meta=meta, data=data)


def split_page(totals: list[int], request: PageRequest) -> list[tuple[int, int | None]]:
    """Offset/limit per source when paging over sources concatenated in order.

    Returns one ``(offset, limit)`` per entry of *totals*; a limit of 0 means the
    source contributes nothing to this page, ``None`` means no limit.
    """
    remaining_offset = request.offset
    remaining_take = request.take
    slices: list[tuple[int, int | None]] = []
    for total in totals:
        offset = min(remaining_offset, total)
        available = total - offset
        if remaining_take is None:
            take = None if available > 0 else 0
        else:
            take = min(remaining_take, available)
            remaining_take -= take
        slices.append((offset, take))
        remaining_offset -= offset
    return slices
