"""Pagination for history endpoints (analyses and ledger entries).

``page`` is 1-indexed; ``per_page`` defaults to 20 and is capped at 100.
Routers take the ``Pagination`` dependency and build the response meta
with ``PaginationParams.meta(total)``.
"""

from dataclasses import dataclass
from typing import Annotated

from fastapi import Depends, Query

from messagemind.core.responses import PaginationMeta

DEFAULT_PER_PAGE = 20
MAX_PER_PAGE = 100


@dataclass(frozen=True)
class PaginationParams:
    """Validated page window.

    Attributes:
        page: Current page number (1-indexed).
        per_page: Number of items per page.
    """

    page: int
    per_page: int

    @property
    def offset(self) -> int:
        """Rows to skip (0 for page 1)."""
        return (self.page - 1) * self.per_page

    @property
    def limit(self) -> int:
        return self.per_page

    def meta(self, total: int) -> PaginationMeta:
        """Response metadata for a page out of ``total`` matching rows."""
        return PaginationMeta(total=total, page=self.page, per_page=self.per_page)


def pagination_params(
    page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
    per_page: int = Query(
        default=DEFAULT_PER_PAGE,
        ge=1,
        le=MAX_PER_PAGE,
        description=f"Items per page (max {MAX_PER_PAGE})",
    ),
) -> PaginationParams:
    """FastAPI dependency for the page window of a history listing."""
    return PaginationParams(page=page, per_page=per_page)


Pagination = Annotated[PaginationParams, Depends(pagination_params)]
