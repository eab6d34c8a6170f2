"""Error taxonomy for the inbox services.

Every failure a caller can act on is an :class:`InboxError` carrying a stable
``code`` and whether retrying the same operation may succeed.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class InboxError(Exception):
    code: str
    detail: str
    status_code: int = 400
    retryable: bool = False

    def __str__(self) -> str:
        return self.detail

    def to_payload(self) -> dict[str, Any]:
        return {"error": self.detail, "code": self.code, "retryable": self.retryable}


class NotFoundError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=404)


class InboxValidationError(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=400)


class ConfigurationError(InboxError):
    """A provider credential is missing."""

    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=500)


class TransportError(InboxError):
    """The provider could not be reached or refused the send."""

    def __init__(self, code: str, detail: str, status_code: int = 502):
        super().__init__(code=code, detail=detail, status_code=status_code, retryable=True)


class MissingContactInfo(InboxError):
    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=422)


class DecodeError(InboxError):
    """A stored row does not decode into a domain record."""

    def __init__(self, code: str, detail: str):
        super().__init__(code=code, detail=detail, status_code=422)


class PersistenceError(InboxError):
    def __init__(self, detail: str):
        super().__init__(code="persistence_failed", detail=detail, status_code=500, retryable=True)


def wrap_persistence_error(exc: Exception) -> InboxError:
    """Pass inbox errors through and wrap anything else raised by the store."""
    if isinstance(exc, InboxError):
        return exc
    return PersistenceError(str(exc) or "Persistence failed")
