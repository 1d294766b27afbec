"""Result types returned by every public SDK operation."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, ClassVar, Generic, TypeVar, Union

T = TypeVar("T")


@dataclass(frozen=True)
class ErrorDescription:
    """Human-readable description of a failed call."""

    message: str
    details: dict[str, Any] | None = None
    guidance: str | None = None

    def __str__(self) -> str:
        return self.message


@dataclass(frozen=True)
class ApiSuccess(Generic[T]):
    """A call that produced a 2xx response and a decoded payload."""

    success: ClassVar[bool] = True
    error: ClassVar[None] = None
    cause: ClassVar[None] = None

    status: int
    data: T


@dataclass(frozen=True)
class ApiFailure:
    """A call that failed; ``status`` is 0 when no response was received.

    ``fatal`` is set for server errors (5xx) that persisted through every
    retry attempt.
    """

    success: ClassVar[bool] = False
    data: ClassVar[None] = None

    status: int
    error: ErrorDescription
    cause: BaseException | None = None
    fatal: bool = False


ApiResult = Union[ApiSuccess[T], ApiFailure]


def ok(status: int, data: T) -> ApiSuccess[T]:
    """Build a success result."""
    return ApiSuccess(status=status, data=data)


def err(
    status: int,
    error: ErrorDescription | str,
    cause: BaseException | None = None,
    *,
    fatal: bool = False,
) -> ApiFailure:
    """Build a failure result.  A plain string is wrapped in an ErrorDescription."""
    if isinstance(error, str):
        error = ErrorDescription(message=error)
    return ApiFailure(status=status, error=error, cause=cause, fatal=fatal)
