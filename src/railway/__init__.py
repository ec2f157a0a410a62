"""
Railway-Oriented Programming (ROP) primitives.

    from railway import ErrorCode, Result

    def parse_number(raw: str) -> Result[int]:
        if not raw.isdigit():
            return Result.failure(ErrorCode.RESPONSE_PARSE_FAILURE, f"not a number: {raw!r}")
        return Result.success(int(raw))
"""

from railway.assertions import ResultAssertions
from railway.failure import ErrorCode, FailureDescription
from railway.result import Failure, Result, Success

__all__ = [
    "Result",
    "Success",
    "Failure",
    "ErrorCode",
    "FailureDescription",
    "ResultAssertions",
]
