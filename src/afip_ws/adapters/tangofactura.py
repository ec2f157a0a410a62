"""
Public taxpayer lookup via the TangoFactura REST mirror of the registry.

Adapter layer: a JSON GET that needs no certificate and no access ticket,
used after the official registry in the lookup chain:

    GET {url}?cuit=<11 digits>
      → {"Contribuyente": {"RazonSocial", "TipoResponsable", "Domicilio",
                           "Localidad", "Provincia", "CodigoPostal"},
         "errorGetData": false, "errorMessage": null}

Records carry source="tangofactura" and a warning: the mirror is neither
authoritative nor current.
"""

from __future__ import annotations

from typing import Any

import httpx
import structlog
from railway import ErrorCode, Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from afip_ws.adapters.padron import normalize_province, split_street_address
from afip_ws.adapters.soap import TRANSIENT_ERRORS
from afip_ws.domain.code_tables import person_kind_from_tax_id
from afip_ws.domain.models import (
    CertificateCredential,
    FiscalAddress,
    PersonKind,
    TaxCategory,
    TaxpayerRecord,
)

log = structlog.get_logger()

TANGOFACTURA_URL = "https://afip.tangofactura.com/Rest/GetContribuyente"
ALTERNATIVE_SOURCE_WARNING = (
    "Official registry unavailable; data obtained from an alternative public source"
)

# Descriptions and short codes the mirror uses for TipoResponsable.
RESPONSIBLE_TYPES: tuple[tuple[frozenset[str], TaxCategory], ...] = (
    (
        frozenset({"RESPONSABLE INSCRIPTO", "IVA RESPONSABLE INSCRIPTO", "RI", "1"}),
        TaxCategory.REGISTERED,
    ),
    (
        frozenset({"MONOTRIBUTO", "MONOTRIBUTISTA", "RESPONSABLE MONOTRIBUTO", "MT", "6"}),
        TaxCategory.MONOTRIBUTO,
    ),
    (frozenset({"EXENTO", "IVA EXENTO", "IVA SUJETO EXENTO", "EX", "4"}), TaxCategory.EXEMPT),
)


def derive_responsible_type(raw: str | None) -> TaxCategory:
    """
    Map a TipoResponsable value to a tax category.

    >>> derive_responsible_type("Responsable Inscripto").name
    'REGISTERED'
    >>> derive_responsible_type("No Responsable").name
    'FINAL_CONSUMER'
    """
    value = (raw or "").strip().upper()
    for known, category in RESPONSIBLE_TYPES:
        if value in known:
            return category
    return TaxCategory.FINAL_CONSUMER


def _field(data: dict[str, Any], name: str) -> str:
    """Read `Name` or `name`; the mirror has served both spellings."""
    value = data.get(name, data.get(name[0].lower() + name[1:]))
    return "" if value is None else str(value).strip()


def parse_contribuyente(payload: Any, tax_id: str) -> Result[TaxpayerRecord]:
    if not isinstance(payload, dict):
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Public registry answer for {tax_id} is not a JSON object",
        )
    if payload.get("errorGetData") or payload.get("error"):
        message = payload.get("errorMessage") or payload.get("error")
        return Result.failure(
            ErrorCode.AUTHORITY_FAULT,
            f"Public registry has no data for {tax_id}: {message}",
        )

    contributor = payload.get("Contribuyente") or payload.get("contribuyente")
    if not isinstance(contributor, dict):
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Public registry answer for {tax_id} has no Contribuyente",
        )

    legal_name = _field(contributor, "RazonSocial")
    if not legal_name:
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Public registry answer for {tax_id} carries no name",
        )

    person_kind = person_kind_from_tax_id(tax_id)
    given_name: str | None = None
    family_name: str | None = None
    if person_kind is PersonKind.INDIVIDUAL:
        # "APELLIDO NOMBRES": family name first.
        family_name, _, rest = legal_name.partition(" ")
        given_name = rest.strip() or None

    street, number = split_street_address(_field(contributor, "Domicilio"))
    return Result.success(
        TaxpayerRecord(
            tax_id=tax_id,
            legal_name=legal_name,
            person_kind=person_kind,
            tax_category=derive_responsible_type(_field(contributor, "TipoResponsable")),
            fiscal_address=FiscalAddress(
                street=street,
                number=number,
                locality=_field(contributor, "Localidad"),
                province=normalize_province(_field(contributor, "Provincia")),
                postal_code=_field(contributor, "CodigoPostal"),
            ),
            given_name=given_name,
            family_name=family_name,
            source="tangofactura",
            warning=ALTERNATIVE_SOURCE_WARNING,
        )
    )


class TangoFacturaTaxpayerProvider:
    """
    Lookup strategy backed by the public TangoFactura mirror.

    Ignores the credential; the mirror is anonymous.
    """

    name = "tangofactura"

    def __init__(self, url: str = TANGOFACTURA_URL, timeout: float = 30.0) -> None:
        self._url = url
        self._timeout = timeout

    def lookup(self, tax_id: str, credential: CertificateCredential) -> Result[TaxpayerRecord]:
        log.info("tangofactura.lookup_started", tax_id=tax_id)
        return (
            Result.from_computation(
                lambda: self._do_get(tax_id),
                ErrorCode.NETWORK_FAILURE,
                f"Public registry request for {tax_id} failed",
            )
            .flat_map(
                lambda response: Result.from_computation(
                    response.json,
                    ErrorCode.RESPONSE_PARSE_FAILURE,
                    f"Public registry answer for {tax_id} is not JSON",
                )
            )
            .flat_map(lambda payload: parse_contribuyente(payload, tax_id))
            .peek(lambda _: log.info("tangofactura.lookup_succeeded", tax_id=tax_id))
            .peek_failure(
                lambda error: log.warning(
                    "tangofactura.lookup_failed",
                    tax_id=tax_id,
                    error_code=error.code.value,
                    message=error.message,
                )
            )
        )

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=0.1, max=2),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    def _do_get(self, tax_id: str) -> httpx.Response:
        """HTTP GET with one retry; exceptions caught by from_computation."""
        with httpx.Client(timeout=self._timeout) as client:
            response = client.get(
                self._url,
                params={"cuit": tax_id},
                headers={"Accept": "application/json"},
            )
            response.raise_for_status()
            return response
