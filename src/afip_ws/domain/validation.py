"""
Local invoice validation: runs before any network call.

A request that fails here is never sent: the authority would reject it,
and a rejected submission still consumes a round-trip and may be read as
an attempt on that invoice number.
"""

from __future__ import annotations

from decimal import Decimal

from railway import ErrorCode, Result

from afip_ws.domain.models import InvoiceAuthorizationRequest

ROUNDING_TOLERANCE = Decimal("0.01")


def _close(a: Decimal, b: Decimal) -> bool:
    return abs(a - b) <= ROUNDING_TOLERANCE


def _breakdown_base(request: InvoiceAuthorizationRequest) -> Decimal:
    return sum((line.base_amount for line in request.tax_breakdown), Decimal("0"))


def _breakdown_tax(request: InvoiceAuthorizationRequest) -> Decimal:
    return sum((line.tax_amount for line in request.tax_breakdown), Decimal("0"))


def _amounts_non_negative(request: InvoiceAuthorizationRequest) -> bool:
    amounts = [request.net_amount, request.tax_amount, request.total_amount]
    for line in request.tax_breakdown:
        amounts.extend([line.base_amount, line.tax_amount])
    return all(amount >= 0 for amount in amounts)


def _rates_unique(request: InvoiceAuthorizationRequest) -> bool:
    rates = [Decimal(line.tax_rate) for line in request.tax_breakdown]
    return len(rates) == len(set(rates))


def validate_invoice(request: InvoiceAuthorizationRequest) -> Result[InvoiceAuthorizationRequest]:
    """
    Check the totals invariants of an aggregated invoice.

    - net + tax ≈ total
    - Σ breakdown.base ≈ net and Σ breakdown.tax ≈ tax
    - an empty breakdown is accepted only when the tax amount is zero
    """
    return (
        Result.success(request)
        .ensure(
            lambda r: r.point_of_sale >= 1,
            ErrorCode.VALIDATION_ERROR,
            lambda r: f"Point of sale must be positive, got {r.point_of_sale}",
        )
        .ensure(
            lambda r: r.invoice_number >= 1,
            ErrorCode.VALIDATION_ERROR,
            lambda r: f"Invoice number must be positive, got {r.invoice_number}",
        )
        .ensure(
            _amounts_non_negative,
            ErrorCode.VALIDATION_ERROR,
            "Invoice amounts must not be negative",
        )
        .ensure(
            lambda r: _close(r.net_amount + r.tax_amount, r.total_amount),
            ErrorCode.VALIDATION_ERROR,
            lambda r: (
                f"Net {r.net_amount} + tax {r.tax_amount} does not match "
                f"total {r.total_amount}"
            ),
        )
        .ensure(
            lambda r: bool(r.tax_breakdown) or r.tax_amount == 0,
            ErrorCode.VALIDATION_ERROR,
            "Tax breakdown is required when the tax amount is not zero",
        )
        .ensure(
            _rates_unique,
            ErrorCode.VALIDATION_ERROR,
            "Tax breakdown must have one line per rate",
        )
        .ensure(
            lambda r: not r.tax_breakdown or _close(_breakdown_base(r), r.net_amount),
            ErrorCode.VALIDATION_ERROR,
            lambda r: (
                f"Tax breakdown bases sum to {_breakdown_base(r)}, "
                f"expected net {r.net_amount}"
            ),
        )
        .ensure(
            lambda r: not r.tax_breakdown or _close(_breakdown_tax(r), r.tax_amount),
            ErrorCode.VALIDATION_ERROR,
            lambda r: (
                f"Tax breakdown taxes sum to {_breakdown_tax(r)}, "
                f"expected tax {r.tax_amount}"
            ),
        )
    )
