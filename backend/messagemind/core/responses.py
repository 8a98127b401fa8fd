"""JSON envelopes shared by every endpoint.

    success:     {"data": ...}
    history:     {"data": [...], "meta": {total, page, per_page, total_pages}}
    failure:     {"error": {"code", "message", "details"}}
"""

from typing import Generic, TypeVar

from pydantic import BaseModel, computed_field
from starlette.responses import JSONResponse

T = TypeVar("T")


class PaginationMeta(BaseModel):
    """Where a history page sits; ``page`` is 1-indexed."""

    total: int
    page: int
    per_page: int

    @computed_field  # type: ignore[prop-decorator]
    @property
    def total_pages(self) -> int:
        """Pages needed for ``total`` rows (0 for an empty history)."""
        return -(-self.total // self.per_page)


class DataResponse(BaseModel, Generic[T]):
    data: T


class ListResponse(BaseModel, Generic[T]):
    data: list[T]
    meta: PaginationMeta


class ErrorBody(BaseModel):
    """``details`` carries structured context such as the credit shortfall."""

    code: str
    message: str
    details: list[dict] | None = None


class ErrorEnvelope(BaseModel):
    error: ErrorBody


def error_response(
    status_code: int,
    code: str,
    message: str,
    *,
    details: list[dict] | None = None,
    headers: dict[str, str] | None = None,
) -> JSONResponse:
    """Render the failure envelope with ``status_code``."""
    envelope = ErrorEnvelope(error=ErrorBody(code=code, message=message, details=details))
    return JSONResponse(status_code=status_code, content=envelope.model_dump(), headers=headers)
