"""
HTTP integration: ErrorCode to status mapping and FastAPI responses.

    @app.post("/invoices/last-number")
    async def last_number(body: LastNumberBody) -> JSONResponse:
        result = await asyncio.to_thread(_services.last_number, body.invoice_type)
        return build_fastapi_response(result.map(_sequence_json))

Local problems with the caller's input are 4xx, problems with our own
credential or code tables are 500, and anything the authority (or the
path to it) did wrong is 5xx in the gateway range.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, TypeVar

from fastapi.responses import JSONResponse

from railway.failure import ErrorCode, FailureDescription
from railway.result import Result

T = TypeVar("T")

INTERNAL_ERROR_STATUS = 500


class HttpStatusMapper:
    _CODE_TO_STATUS: dict[ErrorCode, int] = {
        ErrorCode.VALIDATION_ERROR: 400,
        ErrorCode.AUTHORITY_FAULT: 422,
        ErrorCode.RESPONSE_PARSE_FAILURE: 502,
        ErrorCode.NETWORK_FAILURE: 504,
    }

    @classmethod
    def map_error_code(cls, code: ErrorCode) -> int:
        """Configuration, certificate and signing problems all fall through to 500."""
        return cls._CODE_TO_STATUS.get(code, INTERNAL_ERROR_STATUS)


@dataclass(frozen=True, slots=True)
class ErrorResponse:
    """
    Standardised error body.

        {
            "success": false,
            "error_code": "AUTHORITY_FAULT",
            "message": "600: ValidacionDeToken: No validaron las firmas digitales",
            "retryable": false,
            "timestamp": "2026-02-17T10:30:00+00:00"
        }
    """

    error_code: str
    message: str
    retryable: bool
    timestamp: str
    success: bool = False

    @classmethod
    def from_failure(cls, failure: FailureDescription) -> ErrorResponse:
        return cls(
            error_code=failure.code.value,
            message=failure.message,
            retryable=failure.code.is_retryable,
            timestamp=failure.timestamp.isoformat(),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def _success_body(value: Any) -> dict[str, Any]:
    return {"success": True, "data": value}


def build_response(result: Result[T], success_status: int = 200) -> tuple[Any, int]:
    """(body, status) for either track, independent of the web framework."""
    return result.either(
        lambda value: (_success_body(value), success_status),
        lambda error: (
            ErrorResponse.from_failure(error).to_dict(),
            HttpStatusMapper.map_error_code(error.code),
        ),
    )


def build_fastapi_response(result: Result[T], success_status: int = 200) -> JSONResponse:
    body, status = build_response(result, success_status)
    return JSONResponse(content=body, status_code=status)
