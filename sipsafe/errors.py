"""Exceptions and the typed result handed across collaborator boundaries."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


class SipSafeError(Exception):
    pass


class CollaboratorError(SipSafeError):
    """A network or storage collaborator could not complete a call."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class AnalyticsUnavailable(SipSafeError):
    """Neither the remote aggregation nor the local fallback produced analytics."""


class InvalidContact(SipSafeError, ValueError):
    pass


@dataclass(frozen=True)
class CollaboratorResult:
    ok: bool
    reason: str = ""
    value: Any = None

    @classmethod
    def success(cls, value: Any = None) -> CollaboratorResult:
        return cls(ok=True, value=value)

    @classmethod
    def failure(cls, reason: str) -> CollaboratorResult:
        return cls(ok=False, reason=reason)

    def to_dict(self) -> dict[str, Any]:
        return {"ok": self.ok, "reason": self.reason or None}
