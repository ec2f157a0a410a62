"""
Test assertions for Result values.

    result = authenticator.authenticate("wsfe", credential)
    ticket = ResultAssertions.assert_success(result)

    error = ResultAssertions.assert_failure(result, ErrorCode.RESPONSE_PARSE_FAILURE)
"""

from __future__ import annotations

from typing import NoReturn, TypeVar

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")


def _suffix(note: str) -> str:
    return f" ({note})" if note else ""


class ResultAssertions:
    """Assertions that report the other track's content when they fail."""

    @staticmethod
    def assert_success(result: Result[T], message: str = "") -> T:
        """Return the success value, or fail the test showing the error code and message."""
        return result.either(
            lambda value: value,
            lambda error: _fail(
                f"expected Success, got Failure {error.code.value}: "
                f"{error.message!r}{_suffix(message)}"
            ),
        )

    @staticmethod
    def assert_failure(
        result: Result[T],
        expected_code: ErrorCode | None = None,
        message: str = "",
    ) -> FailureDescription:
        """Return the failure description, checking its code when one is given."""
        error = result.either(
            lambda value: _fail(f"expected Failure, got Success {value!r}{_suffix(message)}"),
            lambda failure: failure,
        )
        if expected_code is not None and error.code is not expected_code:
            _fail(
                f"expected {expected_code.value}, got {error.code.value}: "
                f"{error.message!r}{_suffix(message)}"
            )
        return error

    @staticmethod
    def assert_failure_message_contains(result: Result[T], substring: str) -> None:
        """Case-insensitive substring check on the failure message."""
        error = ResultAssertions.assert_failure(result)
        if substring.lower() not in error.message.lower():
            _fail(f"failure message {error.message!r} does not contain {substring!r}")


def _fail(text: str) -> NoReturn:
    raise AssertionError(text)
