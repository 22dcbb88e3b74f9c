from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Generic, TypeVar, Union

from reviewflow.core.errors import ReviewflowError


T = TypeVar("T")


@dataclass(frozen=True)
class Success(Generic[T]):
    key: str
    value: T


@dataclass(frozen=True)
class Failure:
    key: str
    code: str
    message: str


UnitResult = Union[Success[T], Failure]


def failure_from_exception(key: str, exc: BaseException) -> Failure:
    # Map domain errors to their stable code; anything else is INTERNAL_ERROR.
    if isinstance(exc, ReviewflowError):
        return Failure(key=key, code=exc.code, message=str(exc) or exc.__class__.__name__)
    if isinstance(exc, TimeoutError):
        return Failure(key=key, code="TIMEOUT", message="Operation timed out")
    return Failure(key=key, code="INTERNAL_ERROR", message=str(exc) or exc.__class__.__name__)


async def isolate(key: str, func: Callable[[], Awaitable[Any]]) -> UnitResult[Any]:
    """Run one unit of work and return a tagged result instead of raising.

    Cancellation is not a unit failure and still propagates.
    """
    try:
        value = await func()
    except Exception as exc:  # noqa: BLE001 - every unit failure is collected, never raised
        return failure_from_exception(key, exc)
    return Success(key=key, value=value)
