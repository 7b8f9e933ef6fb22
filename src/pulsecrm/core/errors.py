"""Domain errors surfaced to API callers.

Services raise these directly; FastAPI renders them as ``{"detail": ...}``
with the matching status code. A cross-tenant reference is reported exactly
like a missing one (NotFound).
"""

from __future__ import annotations

from fastapi import HTTPException, status


class NotFound(HTTPException):
    def __init__(self, detail: str = "Not found") -> None:
        super().__init__(status_code=status.HTTP_404_NOT_FOUND, detail=detail)


class BadRequest(HTTPException):
    def __init__(self, detail: str = "Bad request") -> None:
        super().__init__(status_code=status.HTTP_400_BAD_REQUEST, detail=detail)


class Forbidden(HTTPException):
    def __init__(self, detail: str = "Forbidden") -> None:
        super().__init__(status_code=status.HTTP_403_FORBIDDEN, detail=detail)


class SchemaUpgradePending(BadRequest):
    """An optional column or table the request needs has not been created yet."""

    def __init__(self, feature: str) -> None:
        self.feature = feature
        super().__init__(
            f"Database schema upgrade pending ({feature}). Please retry shortly."
        )
