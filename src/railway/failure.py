"""
Failure description: structured error information for the failure track.

Every failure that leaves an adapter carries one of the ErrorCode values
below, so a caller can decide whether to re-offer a request (transport
problems) or demand manual correction (bad certificate, business rejection).
"""

from __future__ import annotations

import traceback
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum, unique


@unique
class ErrorCode(Enum):
    """
    Error taxonomy for authority integration failures.

    Local errors fail before any network attempt; remote errors are only
    produced after a request was sent.
    """

    # --- Local, detected before contacting the authority ---
    CONFIGURATION_MISSING = "CONFIGURATION_MISSING"
    """No usable credential was supplied (missing certificate, key or tax id)."""

    CERTIFICATE_INVALID = "CERTIFICATE_INVALID"
    """Certificate or private key is unparsable, or the key does not match the certificate."""

    SIGNING_FAILURE = "SIGNING_FAILURE"
    """The CMS signature over the login ticket could not be produced."""

    VALIDATION_ERROR = "VALIDATION_ERROR"
    """Request data violates a local invariant (totals, tax id length, ...)."""

    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    """Internal identifier has no authority code (unmapped invoice type or tax rate)."""

    # --- Remote ---
    NETWORK_FAILURE = "NETWORK_FAILURE"
    """Transport-level failure: timeout, connection reset, non-SOAP HTTP error."""

    AUTHORITY_FAULT = "AUTHORITY_FAULT"
    """The remote service explicitly rejected the request; message kept verbatim."""

    RESPONSE_PARSE_FAILURE = "RESPONSE_PARSE_FAILURE"
    """Response did not contain the expected fields in any recognised shape."""

    @property
    def is_retryable(self) -> bool:
        """Only transport failures may be retried by the caller."""
        return self is ErrorCode.NETWORK_FAILURE

    @property
    def is_local(self) -> bool:
        return self in _LOCAL_CODES


_LOCAL_CODES = frozenset(
    {
        ErrorCode.CONFIGURATION_MISSING,
        ErrorCode.CERTIFICATE_INVALID,
        ErrorCode.SIGNING_FAILURE,
        ErrorCode.VALIDATION_ERROR,
        ErrorCode.CONFIGURATION_ERROR,
    }
)


@dataclass(frozen=True, slots=True)
class FailureDescription:
    """
    Immutable failure descriptor carrying error code, message, optional exception and timestamp.

    >>> desc = FailureDescription(ErrorCode.AUTHORITY_FAULT, "10016: numero no correlativo")
    >>> desc.code
    <ErrorCode.AUTHORITY_FAULT: 'AUTHORITY_FAULT'>
    """

    code: ErrorCode
    message: str
    exception: BaseException | None = field(default=None, repr=False)
    timestamp: datetime = field(default_factory=lambda: datetime.now(UTC))

    def full_stack_trace(self) -> str:
        """Message followed by the formatted exception chain, if any."""
        if self.exception is None:
            return self.message
        tb = "".join(
            traceback.format_exception(
                type(self.exception), self.exception, self.exception.__traceback__
            )
        )
        return f"{self.message}\n{tb}"
