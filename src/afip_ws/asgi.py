"""
FastAPI + Uvicorn ASGI application.

Exposes the four authority operations as JSON endpoints. Every handler
delegates to FiscalServices in a worker thread (the clients block on
HTTP) and converts the Result with the railway HTTP mapping.

Entry point for production: uvicorn afip_ws.asgi:app --host 0.0.0.0 --port 8000
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import date
from decimal import Decimal
from typing import Any

import structlog
from fastapi import FastAPI
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from railway import Result
from railway.http_support import ErrorResponse, HttpStatusMapper, build_fastapi_response

from afip_ws import __version__
from afip_ws.adapters.qr_image import render_qr_png_base64
from afip_ws.config import AppSettings
from afip_ws.domain.models import (
    FINAL_CONSUMER_DOC_TYPE,
    Authorized,
    InvoiceAuthorizationRequest,
    InvoiceAuthorizationResult,
    QrPayload,
    SequenceQuery,
    TaxBreakdownLine,
    TaxpayerRecord,
)
from afip_ws.domain.qr import encode_qr, qr_fields, qr_url
from afip_ws.main import configure_structlog, create_services
from afip_ws.workflows import FiscalServices, person_kind_fallback

# ─────────────────────── Global State ───────────────────────
# Set during startup; tests assign _services directly.

_services: FiscalServices | None = None
_error_message: str | None = None
log = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Load settings and wire the services on startup."""
    global _services, _error_message

    try:
        settings = AppSettings()
    except Exception as e:
        _error_message = f"Configuration error: {e}"
        log.error("asgi.startup_error", error=_error_message)
        raise

    configure_structlog(settings.log_level)
    _services = create_services(settings)
    log.info(
        "asgi.startup_complete",
        version=__version__,
        credential_configured=settings.credential is not None,
    )

    yield

    log.info("asgi.shutdown_complete")


app = FastAPI(
    title="afip-ws",
    description="Tax authority integration: taxpayer lookup, invoice sequence, CAE and QR",
    version=__version__,
    lifespan=lifespan,
)


# ─────────────────────── Request bodies ───────────────────────


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class TaxpayerLookupBody(_CamelModel):
    tax_id: str


class LastNumberBody(_CamelModel):
    invoice_type: str
    point_of_sale: int | None = Field(default=None, ge=1)


class TaxLineBody(_CamelModel):
    tax_rate: Decimal
    base_amount: Decimal
    tax_amount: Decimal


class InvoiceBody(_CamelModel):
    point_of_sale: int
    invoice_type: str
    invoice_number: int
    issue_date: date
    net_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    tax_breakdown: list[TaxLineBody] = Field(default_factory=list)
    buyer_doc_type: int = FINAL_CONSUMER_DOC_TYPE
    buyer_doc_number: int = 0
    concept: int = 1
    currency_code: str = "PES"
    currency_rate: Decimal = Decimal("1")

    def to_domain(self) -> InvoiceAuthorizationRequest:
        return InvoiceAuthorizationRequest(
            point_of_sale=self.point_of_sale,
            invoice_type=self.invoice_type,
            invoice_number=self.invoice_number,
            issue_date=self.issue_date,
            net_amount=self.net_amount,
            tax_amount=self.tax_amount,
            total_amount=self.total_amount,
            tax_breakdown=tuple(
                TaxBreakdownLine(line.tax_rate, line.base_amount, line.tax_amount)
                for line in self.tax_breakdown
            ),
            buyer_doc_type=self.buyer_doc_type,
            buyer_doc_number=self.buyer_doc_number,
            concept=self.concept,
            currency_code=self.currency_code,
            currency_rate=self.currency_rate,
        )


class QrBody(_CamelModel):
    invoice: InvoiceBody
    authorization_code: str = Field(pattern=r"^\d{14}$")
    authorization_expiration: date
    include_image: bool = False


# ─────────────────────── Presenters ───────────────────────


def _taxpayer_json(record: TaxpayerRecord) -> dict[str, Any]:
    address = record.fiscal_address
    return {
        "taxId": record.tax_id,
        "legalName": record.legal_name,
        "givenName": record.given_name,
        "familyName": record.family_name,
        "personKind": record.person_kind.value,
        "taxCategory": record.tax_category.value,
        "monotributoCategory": record.monotributo_category,
        "fiscalAddress": {
            "street": address.street,
            "number": address.number,
            "locality": address.locality,
            "province": address.province,
            "postalCode": address.postal_code,
        },
        "source": record.source,
        "warning": record.warning,
    }


def _sequence_json(query: SequenceQuery) -> dict[str, Any]:
    return {
        "lastAuthorizedNumber": query.last_authorized_number,
        "nextNumber": query.next_number,
        "pointOfSale": query.point_of_sale,
        "invoiceTypeCode": query.invoice_type_code,
        "environment": query.environment.value,
    }


def _authorization_json(outcome: InvoiceAuthorizationResult) -> dict[str, Any]:
    match outcome:
        case Authorized():
            return {
                "status": "authorized",
                "authorizationCode": outcome.authorization_code,
                "expirationDate": outcome.expiration_date.isoformat(),
                "observations": list(outcome.observations),
            }
        case _:
            return {
                "status": "rejected",
                "reason": outcome.reason,
                "codes": list(outcome.codes),
                "duplicate": outcome.duplicate,
                "authorizationCode": outcome.authorization_code,
                "expirationDate": (
                    outcome.expiration_date.isoformat() if outcome.expiration_date else None
                ),
            }


def _qr_json(payload: QrPayload, include_image: bool) -> Result[dict[str, Any]]:
    body: dict[str, Any] = {
        "url": qr_url(payload),
        "encoded": encode_qr(payload),
        "payload": qr_fields(payload),
        "image": None,
    }
    if not include_image:
        return Result.success(body)
    return render_qr_png_base64(payload).map(lambda image: {**body, "image": image})


def _unavailable() -> JSONResponse:
    return JSONResponse(
        status_code=503,
        content={"status": "unavailable", "reason": _error_message or "Services not initialized"},
    )


# ─────────────────────── Routes ───────────────────────


@app.get("/health")
async def health() -> JSONResponse:
    """Liveness: 200 once services are wired, 503 if startup failed."""
    if _error_message:
        return JSONResponse(
            status_code=503, content={"status": "unhealthy", "error": _error_message}
        )
    if _services is None:
        return JSONResponse(status_code=503, content={"status": "starting"})
    return JSONResponse(status_code=200, content={"status": "healthy", "version": __version__})


@app.post("/taxpayers/lookup")
async def lookup_taxpayer(body: TaxpayerLookupBody) -> JSONResponse:
    """
    Look up a taxpayer in the registry.

    On failure the body still carries a prefix-based person-kind hint
    under `fallback`, explicitly labeled with its source.
    """
    if _services is None:
        return _unavailable()

    result = await asyncio.to_thread(_services.lookup_taxpayer, body.tax_id)
    if result.is_success():
        return build_fastapi_response(result.map(_taxpayer_json))

    error = result.error()
    fallback = person_kind_fallback(body.tax_id)
    content = ErrorResponse.from_failure(error).to_dict()
    content["error"] = error.message
    content["fallback"] = (
        {"personKind": fallback.person_kind.value, "source": fallback.source}
        if fallback is not None
        else None
    )
    return JSONResponse(status_code=HttpStatusMapper.map_error_code(error.code), content=content)


@app.post("/invoices/last-number")
async def last_number(body: LastNumberBody) -> JSONResponse:
    if _services is None:
        return _unavailable()
    result = await asyncio.to_thread(_services.last_number, body.invoice_type, body.point_of_sale)
    return build_fastapi_response(result.map(_sequence_json))


@app.post("/invoices/authorize")
async def authorize_invoice(body: InvoiceBody) -> JSONResponse:
    """
    Request a CAE for one aggregated invoice.

    A business rejection is a 200 with `status: rejected`; only transport,
    parsing and local validation problems use error statuses.
    """
    if _services is None:
        return _unavailable()
    log.info(
        "asgi.authorize_requested",
        invoice_type=body.invoice_type,
        invoice_number=body.invoice_number,
    )
    result = await asyncio.to_thread(_services.authorize, body.to_domain())
    return build_fastapi_response(result.map(_authorization_json))


@app.post("/invoices/qr")
async def invoice_qr(body: QrBody) -> JSONResponse:
    if _services is None:
        return _unavailable()
    authorized = Authorized(
        authorization_code=body.authorization_code,
        expiration_date=body.authorization_expiration,
    )
    result = (
        await asyncio.to_thread(_services.build_qr, body.invoice.to_domain(), authorized)
    ).flat_map(lambda payload: _qr_json(payload, body.include_image))
    return build_fastapi_response(result)

