"""
Result type returned by every saga operation.

Expected failures (bad input, empty cart, unavailable store or channel) travel
back as values; callers decide whether to answer an HTTP request, acknowledge a
message, or ask the channel for redelivery.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Generic, TypeVar

T = TypeVar("T")


class ErrorKind(str, Enum):
    VALIDATION = "ValidationError"
    EMPTY_CART = "EmptyCartError"
    STORAGE = "StorageError"
    PUBLISH = "PublishError"

    @property
    def retryable(self) -> bool:
        # Only infrastructure failures are worth a redelivery.
        return self in (ErrorKind.STORAGE, ErrorKind.PUBLISH)


@dataclass(frozen=True)
class Failure:
    kind: ErrorKind
    message: str

    def to_payload(self) -> dict[str, str]:
        return {"errorKind": self.kind.value, "message": self.message}


@dataclass(frozen=True)
class Result(Generic[T]):
    value: T | None = None
    error: Failure | None = None

    @property
    def ok(self) -> bool:
        return self.error is None

    @property
    def retryable(self) -> bool:
        return self.error is not None and self.error.kind.retryable

    @classmethod
    def success(cls, value: T | None = None) -> "Result[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "Result[T]":
        return cls(error=Failure(kind=kind, message=message))
