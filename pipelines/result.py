"""Explicit success/failure values threaded through the sync pipeline."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class FailureKind(str, Enum):
    """Categories of absorbed or escalated failures."""

    SOURCE_UNAVAILABLE = "source_unavailable"
    UNPARSEABLE_DATE = "unparseable_date"
    UNKNOWN_CODE = "unknown_code"
    INVALID_VALUE = "invalid_value"
    MISSING_FIELD = "missing_field"
    LOOKUP_FAILED = "lookup_failed"
    WRITE_FAILED = "write_failed"
    AUDIT_LOG_FAILED = "audit_log_failed"


@dataclass(frozen=True)
class Result(Generic[T]):
    """Either a value or a ``FailureKind`` with a human-readable message."""

    value: T | None = None
    kind: FailureKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.kind is None

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: FailureKind, message: str) -> "Result[T]":
        return cls(kind=kind, message=message)

    def unwrap(self) -> T:
        if self.kind is not None:
            raise ValueError(f"{self.kind.value}: {self.message}")
        return self.value  # type: ignore[return-value]


__all__ = ["FailureKind", "Result"]
