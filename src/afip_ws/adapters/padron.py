"""
Taxpayer registry client (Padron A5): getPersona over SOAP 1.1.

Adapter layer: given an access ticket for `ws_sr_padron_a5`, posts a
getPersona request and normalises the answer into a TaxpayerRecord:

  datosGenerales
    ├── tipoPersona        FISICA → individual, JURIDICA → entity
    ├── nombre / apellido  individuals
    ├── razonSocial        entities
    └── domicilioFiscal    direccion, localidad, descripcionProvincia, codPostal
  impuesto*                idImpuesto + estado, scanned for the VAT standing
  categoriaMonotributo     simplified-regime category, when present

An `errorConstancia` block without `datosGenerales` is the authority
refusing the lookup (unknown id, inactive taxpayer) and becomes
AUTHORITY_FAULT with its messages verbatim.
"""

from __future__ import annotations

import re

import structlog
from lxml import etree
from railway import ErrorCode, Result

from afip_ws.adapters.soap import (
    child_text,
    find_first,
    find_text,
    iter_named,
    soap_envelope,
    sub,
)
from afip_ws.domain.code_tables import person_kind_from_tax_id
from afip_ws.domain.models import (
    AccessTicket,
    CertificateCredential,
    FiscalAddress,
    PersonKind,
    TaxCategory,
    TaxpayerRecord,
)
from afip_ws.domain.ports import AccessTicketProvider, SoapTransport
from afip_ws.endpoints import LOGIN_SERVICE_NAME_REGISTRY, PADRON_A5, ServiceEndpoint

log = structlog.get_logger()

_STREET_AND_NUMBER = re.compile(r"^(.+?)\s+(\d+)$")
NO_STREET_NUMBER = "S/N"

PROVINCE_NAMES: dict[str, str] = {
    "CIUDAD AUTONOMA BUENOS AIRES": "Ciudad Autónoma de Buenos Aires",
    "BUENOS AIRES": "Buenos Aires",
    "CATAMARCA": "Catamarca",
    "CHACO": "Chaco",
    "CHUBUT": "Chubut",
    "CORDOBA": "Córdoba",
    "CORRIENTES": "Corrientes",
    "ENTRE RIOS": "Entre Ríos",
    "FORMOSA": "Formosa",
    "JUJUY": "Jujuy",
    "LA PAMPA": "La Pampa",
    "LA RIOJA": "La Rioja",
    "MENDOZA": "Mendoza",
    "MISIONES": "Misiones",
    "NEUQUEN": "Neuquén",
    "RIO NEGRO": "Río Negro",
    "SALTA": "Salta",
    "SAN JUAN": "San Juan",
    "SAN LUIS": "San Luis",
    "SANTA CRUZ": "Santa Cruz",
    "SANTA FE": "Santa Fe",
    "SANTIAGO DEL ESTERO": "Santiago del Estero",
    "TIERRA DEL FUEGO": "Tierra del Fuego",
    "TUCUMAN": "Tucumán",
}

# Highest priority first. VAT registration (30, 32) outranks the simplified
# regime (20), which outranks VAT exemption (34).
TAX_CATEGORY_PRIORITY: tuple[tuple[frozenset[int], TaxCategory], ...] = (
    (frozenset({30, 32}), TaxCategory.REGISTERED),
    (frozenset({20}), TaxCategory.MONOTRIBUTO),
    (frozenset({34}), TaxCategory.EXEMPT),
)

ACTIVE_REGISTRATION = "ACTIVO"


# ─────────────────────── Normalisation helpers ───────────────────────


def normalize_province(description: str | None) -> str:
    if not description:
        return ""
    return PROVINCE_NAMES.get(description.strip().upper(), description.strip())


def split_street_address(line: str | None) -> tuple[str, str]:
    """
    Split a combined address line into (street, number).

    >>> split_street_address("AV CORRIENTES 1234")
    ('AV CORRIENTES', '1234')
    >>> split_street_address("RUTA 9 KM 40")
    ('RUTA 9 KM 40', 'S/N')
    """
    if not line:
        return "", ""
    match = _STREET_AND_NUMBER.match(line.strip())
    if match:
        return match.group(1).strip(), match.group(2)
    return line.strip(), NO_STREET_NUMBER


def active_registrations(root: etree._Element) -> set[int]:
    """idImpuesto values of registrations that are active (or carry no estado)."""
    ids: set[int] = set()
    for registration in iter_named(root, "impuesto"):
        raw_id = child_text(registration, "idImpuesto")
        if raw_id is None or not raw_id.isdigit():
            continue
        status = child_text(registration, "estado") or child_text(registration, "estadoImpuesto")
        if status is not None and status.upper() != ACTIVE_REGISTRATION:
            continue
        ids.add(int(raw_id))
    return ids


def derive_tax_category(registration_ids: set[int]) -> TaxCategory:
    for known_ids, category in TAX_CATEGORY_PRIORITY:
        if registration_ids & known_ids:
            return category
    return TaxCategory.FINAL_CONSUMER


def _monotributo_category(root: etree._Element) -> str | None:
    element = find_first(root, "categoriaMonotributo")
    if element is None:
        return None
    described = find_text(element, "descripcionCategoria")
    if described is not None:
        return described
    text = (element.text or "").strip()
    return text or None


def _fiscal_address(general: etree._Element) -> FiscalAddress:
    address = find_first(general, "domicilioFiscal")
    if address is None:
        return FiscalAddress()
    street, number = split_street_address(child_text(address, "direccion"))
    return FiscalAddress(
        street=street,
        number=number,
        locality=child_text(address, "localidad") or "",
        province=normalize_province(child_text(address, "descripcionProvincia")),
        postal_code=child_text(address, "codPostal") or "",
    )


def _person_kind(raw: str | None, tax_id: str) -> PersonKind:
    match (raw or "").upper():
        case "FISICA":
            return PersonKind.INDIVIDUAL
        case "JURIDICA":
            return PersonKind.ENTITY
        case _:
            return person_kind_from_tax_id(tax_id)


def _constancy_errors(root: etree._Element) -> list[str]:
    messages: list[str] = []
    for block in iter_named(root, "errorConstancia"):
        for error in iter_named(block, "error"):
            text = (error.text or "").strip()
            if text:
                messages.append(text)
    return messages


# ─────────────────────── Response parsing ───────────────────────


def parse_persona_response(root: etree._Element, tax_id: str) -> Result[TaxpayerRecord]:
    general = find_first(root, "datosGenerales")
    if general is None:
        errors = _constancy_errors(root)
        if errors:
            return Result.failure(ErrorCode.AUTHORITY_FAULT, "; ".join(errors))
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Registry response for {tax_id} has no datosGenerales",
        )

    person_kind = _person_kind(child_text(general, "tipoPersona"), tax_id)
    given_name = child_text(general, "nombre")
    family_name = child_text(general, "apellido")
    company_name = child_text(general, "razonSocial")

    if person_kind is PersonKind.INDIVIDUAL:
        legal_name = " ".join(part for part in (family_name, given_name) if part)
    else:
        legal_name = company_name or given_name or ""
        given_name = family_name = None

    if not legal_name:
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Registry response for {tax_id} carries no name",
        )

    tax_category = derive_tax_category(active_registrations(root))
    monotributo_category = (
        _monotributo_category(root) if tax_category is TaxCategory.MONOTRIBUTO else None
    )

    return Result.success(
        TaxpayerRecord(
            tax_id=tax_id,
            legal_name=legal_name,
            person_kind=person_kind,
            tax_category=tax_category,
            fiscal_address=_fiscal_address(general),
            given_name=given_name,
            family_name=family_name,
            monotributo_category=monotributo_category,
        )
    )


def persona_envelope(
    tax_id: str,
    access_ticket: AccessTicket,
    credential: CertificateCredential,
    endpoint: ServiceEndpoint = PADRON_A5,
) -> bytes:
    # Only the operation element is namespaced; its children are not.
    operation = etree.Element(
        f"{{{endpoint.namespace}}}getPersona", nsmap={"a5": endpoint.namespace}
    )
    sub(operation, "token", access_ticket.token)
    sub(operation, "sign", access_ticket.sign)
    sub(operation, "cuitRepresentada", credential.tax_id)
    sub(operation, "idPersona", tax_id)
    return soap_envelope(operation, endpoint.soap_version)


# ─────────────────────── Client ───────────────────────


class PadronRegistryClient:
    """Query the taxpayer registry with an already-obtained access ticket."""

    def __init__(self, transport: SoapTransport, endpoint: ServiceEndpoint = PADRON_A5) -> None:
        self._transport = transport
        self._endpoint = endpoint

    def lookup_taxpayer(
        self,
        tax_id: str,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[TaxpayerRecord]:
        log.info("padron.lookup_started", tax_id=tax_id, environment=credential.environment)
        return (
            self._transport.call(
                self._endpoint.url_for(credential.environment),
                persona_envelope(tax_id, access_ticket, credential, self._endpoint),
                soap_action="",
                version=self._endpoint.soap_version,
            )
            .flat_map(lambda root: parse_persona_response(root, tax_id))
            .peek(
                lambda record: log.info(
                    "padron.lookup_succeeded",
                    tax_id=tax_id,
                    person_kind=record.person_kind.value,
                    tax_category=record.tax_category.value,
                )
            )
            .peek_failure(
                lambda error: log.warning(
                    "padron.lookup_failed",
                    tax_id=tax_id,
                    error_code=error.code.value,
                    message=error.message,
                )
            )
        )


class RegistryTaxpayerProvider:
    """
    Lookup strategy backed by the official registry.

    Obtains the registry ticket itself, so it can sit in a provider chain
    next to strategies that need no ticket at all.
    """

    name = "registry"

    def __init__(self, authenticator: AccessTicketProvider, client: PadronRegistryClient) -> None:
        self._authenticator = authenticator
        self._client = client

    def lookup(self, tax_id: str, credential: CertificateCredential) -> Result[TaxpayerRecord]:
        return self._authenticator.authenticate(LOGIN_SERVICE_NAME_REGISTRY, credential).flat_map(
            lambda ticket: self._client.lookup_taxpayer(tax_id, ticket, credential)
        )
