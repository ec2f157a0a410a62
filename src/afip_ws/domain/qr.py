"""
QR payload builder for authorized invoices.

The authority's scheme (version 1) is a compact JSON object, base64-encoded
and appended to a fixed URL:

    https://www.afip.gob.ar/fe/qr/?p=<base64(json)>

JSON field names follow the published scheme:

    ver, fecha, cuit, ptoVta, tipoCmp, nroCmp, importe, moneda, ctz,
    tipoDocRec, nroDocRec, tipoCodAut, codAut
"""

from __future__ import annotations

import base64
import json
from decimal import Decimal
from typing import Any

from railway import ErrorCode, Result

from afip_ws.domain.code_tables import invoice_type_code, normalize_tax_id
from afip_ws.domain.models import (
    Authorized,
    CertificateCredential,
    InvoiceAuthorizationRequest,
    QrPayload,
)

QR_SCHEME_VERSION = 1
QR_BASE_URL = "https://www.afip.gob.ar/fe/qr/"
CAE_AUTHORIZATION_METHOD = "E"


def _number(amount: Decimal) -> int | float:
    """Render integral decimals as JSON integers, others as floats."""
    if amount == amount.to_integral_value():
        return int(amount)
    return float(amount)


def build_qr(
    invoice: InvoiceAuthorizationRequest,
    credential: CertificateCredential,
    authorization: Authorized,
) -> Result[QrPayload]:
    """The issuer tax id may arrive formatted ("20-12345678-9"); it is normalised first."""
    return normalize_tax_id(credential.tax_id).flat_map(
        lambda tax_id: _payload(invoice, tax_id, authorization)
    )


def _payload(
    invoice: InvoiceAuthorizationRequest, tax_id: str, authorization: Authorized
) -> Result[QrPayload]:
    return invoice_type_code(invoice.invoice_type).ensure(
        lambda _: authorization.authorization_code.isdigit(),
        ErrorCode.VALIDATION_ERROR,
        f"CAE must be numeric, got {authorization.authorization_code!r}",
    ).map(
        lambda type_code: QrPayload(
            version=QR_SCHEME_VERSION,
            issue_date=invoice.issue_date,
            tax_id=int(tax_id),
            point_of_sale=invoice.point_of_sale,
            invoice_type_code=type_code,
            invoice_number=invoice.invoice_number,
            total_amount=invoice.total_amount,
            currency_code=invoice.currency_code,
            currency_rate=invoice.currency_rate,
            buyer_doc_type=invoice.buyer_doc_type,
            buyer_doc_number=invoice.buyer_doc_number,
            authorization_method=CAE_AUTHORIZATION_METHOD,
            authorization_code=int(authorization.authorization_code),
        )
    )


def qr_fields(payload: QrPayload) -> dict[str, Any]:
    return {
        "ver": payload.version,
        "fecha": payload.issue_date.isoformat(),
        "cuit": payload.tax_id,
        "ptoVta": payload.point_of_sale,
        "tipoCmp": payload.invoice_type_code,
        "nroCmp": payload.invoice_number,
        "importe": _number(payload.total_amount),
        "moneda": payload.currency_code,
        "ctz": _number(payload.currency_rate),
        "tipoDocRec": payload.buyer_doc_type,
        "nroDocRec": payload.buyer_doc_number,
        "tipoCodAut": payload.authorization_method,
        "codAut": payload.authorization_code,
    }


def qr_json(payload: QrPayload) -> str:
    return json.dumps(qr_fields(payload), separators=(",", ":"))


def encode_qr(payload: QrPayload) -> str:
    return base64.b64encode(qr_json(payload).encode("utf-8")).decode("ascii")


def qr_url(payload: QrPayload) -> str:
    return f"{QR_BASE_URL}?p={encode_qr(payload)}"


def decode_qr(encoded: str) -> dict[str, Any]:
    """Inverse of `encode_qr`, for verification and display."""
    decoded: dict[str, Any] = json.loads(base64.b64decode(encoded))
    return decoded
