"""
Result monad: Railway-Oriented Programming for the integration core.

A Result[T] is either Success(value) or Failure(FailureDescription).
Adapters never raise into the business layer: each stage returns a Result
and `flat_map` short-circuits on the first failure.

    credential ──▶ authenticate ──▶ post request ──▶ parse ──▶ Result[T]
         │              │                │             │
         └──────────────┴────────────────┴─────────────┴──▶ Failure(code, message)

Every combinator is written once on the base class in terms of `either`;
the two tracks only decide which branch runs.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any, Generic, TypeVar

from railway.failure import ErrorCode, FailureDescription

T = TypeVar("T")
U = TypeVar("U")
R = TypeVar("R")


class Result(Generic[T]):
    """
    Base of the two tracks.

        >>> Result.success(41).map(lambda x: x + 1).value()
        42
        >>> Result.failure(ErrorCode.VALIDATION_ERROR, "bad").map(lambda x: x + 1).is_failure()
        True
    """

    __slots__ = ()

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        """Fold the Result: exactly one of the two callables runs."""
        raise NotImplementedError

    # ──────────────────────── Introspection ────────────────────────

    def is_success(self) -> bool:
        return self.either(lambda _: True, lambda _: False)

    def is_failure(self) -> bool:
        return not self.is_success()

    def value(self) -> T:
        """Extract the success value. Raises ValueError on a Failure."""

        def _no_value(err: FailureDescription) -> T:
            raise ValueError(f"Cannot get value from a Failure: {err.message}")

        return self.either(lambda v: v, _no_value)

    def error(self) -> FailureDescription:
        """Extract the failure description. Raises ValueError on a Success."""

        def _no_error(v: T) -> FailureDescription:
            raise ValueError(f"Cannot get error from a Success: {v!r}")

        return self.either(_no_error, lambda err: err)

    # ──────────────────────── Transformations ────────────────────────

    def map(self, mapper: Callable[[T], U]) -> Result[U]:
        return self.either(lambda v: Success(mapper(v)), Failure)

    def flat_map(self, mapper: Callable[[T], Result[U]]) -> Result[U]:
        """Chain a Result-returning stage. The stage is skipped on failure."""
        return self.either(mapper, Failure)

    def map_failure(
        self, mapper: Callable[[FailureDescription], FailureDescription]
    ) -> Result[T]:
        return self.either(lambda _: self, lambda err: Failure(mapper(err)))

    def ensure(
        self,
        predicate: Callable[[T], bool],
        code: ErrorCode,
        message: str | Callable[[T], str],
    ) -> Result[T]:
        """
        Keep the value only if `predicate` holds, otherwise fail with `code`.

        `message` may be a callable receiving the value, for messages that
        need to quote it.
        """

        def _check(v: T) -> Result[T]:
            if predicate(v):
                return self
            return Result.failure(code, message(v) if callable(message) else message)

        return self.flat_map(_check)

    # ──────────────────────── Side effects ────────────────────────

    def peek(self, action: Callable[[T], Any]) -> Result[T]:
        self.either(action, lambda _: None)
        return self

    def peek_failure(self, action: Callable[[FailureDescription], Any]) -> Result[T]:
        self.either(lambda _: None, action)
        return self

    def get_or_else(self, default: T) -> T:
        return self.either(lambda v: v, lambda _: default)

    # ──────────────────────── Factories ────────────────────────

    @staticmethod
    def success(value: T) -> Result[T]:
        return Success(value)

    @staticmethod
    def failure(
        code: ErrorCode,
        message: str,
        exception: BaseException | None = None,
    ) -> Result[Any]:
        return Failure(FailureDescription(code=code, message=message, exception=exception))

    @staticmethod
    def failure_from(error: FailureDescription) -> Result[Any]:
        return Failure(error)

    @staticmethod
    def from_computation(
        computation: Callable[[], T],
        error_code: ErrorCode,
        error_message: str,
    ) -> Result[T]:
        """
        Run a computation that may raise and capture any exception as a Failure.

        The exception text is appended to `error_message` so the caller sees
        the actionable cause (e.g. which PEM block failed to parse).
        """
        try:
            return Success(computation())
        except Exception as e:
            return Result.failure(error_code, f"{error_message}: {e}", e)

    @staticmethod
    def from_optional(
        value: T | None,
        error_message: str,
        error_code: ErrorCode,
    ) -> Result[T]:
        if value is None:
            return Result.failure(error_code, error_message)
        return Success(value)

    def __bool__(self) -> bool:
        return self.is_success()


class Success(Result[T]):
    """The success track. Wraps a non-None value."""

    __slots__ = ("_value",)
    __match_args__ = ("_value",)

    def __init__(self, value: T) -> None:
        if value is None:
            raise TypeError("Success value must not be None")
        self._value = value

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        return on_success(self._value)

    def __repr__(self) -> str:
        return f"Success({self._value!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Success):
            return NotImplemented
        return bool(self._value == other._value)

    def __hash__(self) -> int:
        return hash(("Success", self._value))


class Failure(Result[T]):
    """The failure track. Wraps a FailureDescription; equality ignores its timestamp."""

    __slots__ = ("_error",)
    __match_args__ = ("_error",)

    def __init__(self, error: FailureDescription) -> None:
        if error is None:
            raise TypeError("Failure error must not be None")
        self._error = error

    def either(
        self,
        on_success: Callable[[T], R],
        on_failure: Callable[[FailureDescription], R],
    ) -> R:
        return on_failure(self._error)

    def _key(self) -> tuple[ErrorCode, str]:
        return (self._error.code, self._error.message)

    def __repr__(self) -> str:
        return f"Failure({self._error.code.value}: {self._error.message!r})"

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Failure):
            return NotImplemented
        return self._key() == other._key()

    def __hash__(self) -> int:
        return hash(("Failure", *self._key()))
