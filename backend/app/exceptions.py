from __future__ import annotations

from typing import TYPE_CHECKING, Optional, Sequence

from pydantic import BaseModel

if TYPE_CHECKING:
    from .schemas import RatingChangeEvent


class ProblemDetail(BaseModel):
    """RFC 7807 compliant error response."""

    type: str = "about:blank"
    title: str
    detail: Optional[str] = None
    status: int
    instance: Optional[str] = None
    code: str


class DomainException(Exception):
    """Base class for domain-specific exceptions."""

    def __init__(
        self,
        status_code: int,
        title: str,
        *,
        code: str,
        detail: str | None = None,
        type_: str = "about:blank",
    ) -> None:
        super().__init__(detail or title)
        self.status_code = status_code
        self.title = title
        self.detail = detail
        self.type = type_
        self.code = code

    def to_problem(self, instance: str | None = None) -> ProblemDetail:
        return ProblemDetail(
            type=self.type,
            title=self.title,
            detail=self.detail,
            status=self.status_code,
            instance=instance,
            code=self.code,
        )


class MatchNotFound(DomainException):
    def __init__(self, match_id: str) -> None:
        super().__init__(
            status_code=404,
            title="Match not found",
            detail=f"match '{match_id}' not found",
            code="match_not_found",
        )
        self.match_id = match_id


class SettlementPersistenceError(DomainException):
    """A store write failed part-way through a settlement.

    Records written before the failure stay written. ``applied`` lists the
    rating changes whose player records were durably saved.
    """

    def __init__(
        self,
        match_id: str | None,
        applied: Sequence["RatingChangeEvent"] = (),
        *,
        detail: str | None = None,
    ) -> None:
        super().__init__(
            status_code=503,
            title="Settlement incomplete",
            detail=detail
            or f"could not persist settlement for match '{match_id or '-'}'",
            code="settlement_persistence_failed",
        )
        self.match_id = match_id
        self.applied = list(applied)
