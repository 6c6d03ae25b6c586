"""
Result pattern for Query Surface operations.

Every service operation answers with one of three shapes: a found value,
an explicit not-found, or a failure carrying the error and its kind.
Callers branch on the status instead of mixing ``None`` checks with
exception handling.
"""

import functools
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Generic, Optional, TypeVar

from .errors import InvariantViolation, LessonbookError, StoreUnavailable, ValidationFailed


T = TypeVar('T')


class ResultStatus(Enum):
    """Status of a Result."""
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILURE = "failure"


class ErrorKind(Enum):
    """Kind of failure carried by a failed Result."""
    VALIDATION = "validation"
    STORE_UNAVAILABLE = "store_unavailable"
    INVARIANT = "invariant"


def _kind_of(error: LessonbookError) -> ErrorKind:
    if isinstance(error, ValidationFailed):
        return ErrorKind.VALIDATION
    if isinstance(error, StoreUnavailable):
        return ErrorKind.STORE_UNAVAILABLE
    if isinstance(error, InvariantViolation):
        return ErrorKind.INVARIANT
    return ErrorKind.STORE_UNAVAILABLE


@dataclass
class Result(Generic[T]):
    """
    Unified outcome of a service call.

    Attributes:
        status: FOUND, NOT_FOUND or FAILURE
        value: The value when found
        error: The exception that caused a failure
        kind: The failure kind when failed

    Examples:
        >>> result = Result.found(42)
        >>> result.is_found
        True
        >>> Result.not_found().unwrap_or(0)
        0
    """

    status: ResultStatus
    value: Optional[T] = None
    error: Optional[LessonbookError] = None
    kind: Optional[ErrorKind] = None

    @property
    def is_found(self) -> bool:
        return self.status == ResultStatus.FOUND

    @property
    def is_not_found(self) -> bool:
        return self.status == ResultStatus.NOT_FOUND

    @property
    def is_failure(self) -> bool:
        return self.status == ResultStatus.FAILURE

    @classmethod
    def found(cls, value: T) -> 'Result[T]':
        return cls(status=ResultStatus.FOUND, value=value)

    @classmethod
    def not_found(cls) -> 'Result[T]':
        return cls(status=ResultStatus.NOT_FOUND)

    @classmethod
    def failure(cls, error: LessonbookError) -> 'Result[T]':
        return cls(status=ResultStatus.FAILURE, error=error, kind=_kind_of(error))

    @classmethod
    def of_optional(cls, value: Optional[T]) -> 'Result[T]':
        """Wrap a store lookup: ``None`` becomes not-found."""
        return cls.not_found() if value is None else cls.found(value)

    def unwrap(self) -> T:
        """
        Return the found value.

        Raises:
            LookupError: If the result is not-found
            LessonbookError: The carried error if the result is a failure
        """
        if self.is_failure:
            raise self.error
        if self.is_not_found:
            raise LookupError("Cannot unwrap a not-found result")
        return self.value

    def unwrap_or(self, default: T) -> T:
        return self.value if self.is_found else default


def returns_result(func: Callable[..., 'Result[T]']) -> Callable[..., 'Result[T]']:
    """Turn lessonbook errors raised by ``func`` into failed Results.

    Anything that is not a ``LessonbookError`` propagates unchanged.
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        try:
            return func(*args, **kwargs)
        except LessonbookError as exc:
            return Result.failure(exc)
    return wrapper
