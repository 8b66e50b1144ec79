from enum import Enum
from typing import Generic, Optional, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class ErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    FORBIDDEN = "forbidden"
    CONFLICT = "conflict"
    VALIDATION_FAILED = "validation_failed"


class ServiceError(BaseModel):
    kind: ErrorKind
    message: str


class ServiceResult(Generic[T]):
    """Outcome of a service call.

    Expected failures (missing record, access denied, slot taken, bad input)
    come back as a ``ServiceError`` instead of being raised.
    """

    __slots__ = ("value", "error")

    def __init__(self, value: Optional[T] = None, error: Optional[ServiceError] = None):
        self.value = value
        self.error = error

    @property
    def ok(self) -> bool:
        return self.error is None

    @classmethod
    def success(cls, value: Optional[T] = None) -> "ServiceResult[T]":
        return cls(value=value)

    @classmethod
    def failure(cls, kind: ErrorKind, message: str) -> "ServiceResult[T]":
        return cls(error=ServiceError(kind=kind, message=message))

    def __repr__(self):
        if self.ok:
            return f"<ServiceResult(ok, value={self.value!r})>"
        return f"<ServiceResult(error={self.error.kind.value}, message='{self.error.message}')>"
