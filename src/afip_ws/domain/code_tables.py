"""
Code tables: fixed mappings between internal identifiers and authority codes.

These tables are part of the wire contract and must not be edited casually:
the invoicing service validates every numeric code it receives.
"""

from __future__ import annotations

import re
from decimal import Decimal

from railway import ErrorCode, Result

from afip_ws.domain.models import PersonKind

INVOICE_TYPE_CODES: dict[str, int] = {
    "factura_a": 1,
    "nota_debito_a": 2,
    "nota_credito_a": 3,
    "recibo_a": 4,
    "factura_b": 6,
    "nota_debito_b": 7,
    "nota_credito_b": 8,
    "recibo_b": 9,
    "factura_c": 11,
    "nota_debito_c": 12,
    "nota_credito_c": 13,
    "recibo_c": 15,
}

_INVOICE_TYPES_BY_CODE: dict[int, str] = {code: name for name, code in INVOICE_TYPE_CODES.items()}

# "C" documents are issued by non-VAT-registered sellers and carry no VAT array.
NO_VAT_INVOICE_CODES: frozenset[int] = frozenset({11, 12, 13, 15})

TAX_RATE_CODES: dict[Decimal, int] = {
    Decimal("0"): 3,
    Decimal("2.5"): 9,
    Decimal("5"): 8,
    Decimal("10.5"): 4,
    Decimal("21"): 5,
    Decimal("27"): 6,
}

_TAX_RATES_BY_CODE: dict[int, Decimal] = {code: rate for rate, code in TAX_RATE_CODES.items()}

ENTITY_TAX_ID_PREFIXES: frozenset[str] = frozenset({"30", "33", "34"})

_NON_DIGITS = re.compile(r"[-\s]")


def invoice_type_code(invoice_type: str) -> Result[int]:
    return Result.from_optional(
        INVOICE_TYPE_CODES.get(invoice_type),
        f"Invoice type {invoice_type!r} has no authority code",
        ErrorCode.CONFIGURATION_ERROR,
    )


def invoice_type_for_code(code: int) -> Result[str]:
    return Result.from_optional(
        _INVOICE_TYPES_BY_CODE.get(code),
        f"Authority invoice code {code} is not supported",
        ErrorCode.CONFIGURATION_ERROR,
    )


def tax_rate_code(rate: Decimal) -> Result[int]:
    # Decimal("21.00") and Decimal("21") hash equal, so normalisation is implicit.
    return Result.from_optional(
        TAX_RATE_CODES.get(Decimal(rate)),
        f"Tax rate {rate}% has no authority code",
        ErrorCode.CONFIGURATION_ERROR,
    )


def tax_rate_for_code(code: int) -> Result[Decimal]:
    return Result.from_optional(
        _TAX_RATES_BY_CODE.get(code),
        f"Authority tax rate code {code} is not supported",
        ErrorCode.CONFIGURATION_ERROR,
    )


def carries_vat(type_code: int) -> bool:
    return type_code not in NO_VAT_INVOICE_CODES


def normalize_tax_id(raw: str) -> Result[str]:
    """Strip dashes/spaces and require exactly 11 digits."""
    cleaned = _NON_DIGITS.sub("", raw or "")
    if len(cleaned) != 11 or not cleaned.isdigit():
        return Result.failure(
            ErrorCode.VALIDATION_ERROR,
            f"Tax id must have 11 digits, got {raw!r}",
        )
    return Result.success(cleaned)


def person_kind_from_tax_id(tax_id: str) -> PersonKind:
    """Infer person kind from the two-digit tax id prefix."""
    if tax_id[:2] in ENTITY_TAX_ID_PREFIXES:
        return PersonKind.ENTITY
    return PersonKind.INDIVIDUAL


def parse_invoice_reference(reference: str) -> Result[int]:
    """
    Extract the invoice number from a `PPPP-NNNNNNNN` reference.

    >>> parse_invoice_reference("0001-00000123").value()
    123
    """
    _, sep, number = reference.strip().partition("-")
    if not sep or not number.isdigit() or int(number) < 1:
        return Result.failure(
            ErrorCode.VALIDATION_ERROR,
            f"Invoice reference must look like PPPP-NNNNNNNN, got {reference!r}",
        )
    return Result.success(int(number))
