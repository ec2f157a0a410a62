"""
Electronic invoicing clients (WSFEv1) over SOAP 1.2.

Adapter layer: two operations sharing the same Auth block:

  FECompUltimoAutorizado(PtoVta, CbteTipo)          → last authorized number
  FECAESolicitar(FeCabReq, FeDetReq/FECAEDetRequest) → CAE or rejection

Every element of the request lives in the service namespace (prefix `ar`).

Authorization outcome, by FECAEDetResponse/Resultado:
  A → Authorized(CAE, CAEFchVto)
  R → Rejected(reason from Obs/Err, duplicate when the number was already processed)
  Reproceso=S → Rejected(duplicate, echoed CAE), or Authorized when it answers
                our own resend of a submission whose reply was lost
  absent, with Errors/Err → AUTHORITY_FAULT
  anything else           → RESPONSE_PARSE_FAILURE
"""

from __future__ import annotations

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal

import structlog
from lxml import etree
from railway import ErrorCode, FailureDescription, Result

from afip_ws.adapters.soap import (
    child_text,
    find_first,
    find_text,
    is_transient_failure,
    iter_named,
    soap_envelope,
)
from afip_ws.domain.code_tables import carries_vat, invoice_type_code, tax_rate_code
from afip_ws.domain.models import (
    AccessTicket,
    Authorized,
    CertificateCredential,
    InvoiceAuthorizationRequest,
    InvoiceAuthorizationResult,
    Rejected,
)
from afip_ws.domain.ports import SoapTransport
from afip_ws.domain.validation import validate_invoice
from afip_ws.endpoints import WSFE, ServiceEndpoint

log = structlog.get_logger()

AUTHORITY_DATE_FORMAT = "%Y%m%d"
CENTS = Decimal("0.01")

# Authority code for "invoice number already processed / out of sequence".
DUPLICATE_SUBMISSION_CODES: frozenset[int] = frozenset({10016})

# Concepts 2 (services) and 3 (goods and services) require service dates.
SERVICE_CONCEPTS: frozenset[int] = frozenset({2, 3})

type AuthorityMessage = tuple[int | None, str]


# ─────────────────────── Formatting ───────────────────────


def format_amount(amount: Decimal) -> str:
    """
    >>> format_amount(Decimal("1000.5"))
    '1000.50'
    """
    return str(Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP))


def format_authority_date(value: date) -> str:
    return value.strftime(AUTHORITY_DATE_FORMAT)


def parse_authority_date(text: str) -> date:
    return datetime.strptime(text, AUTHORITY_DATE_FORMAT).date()


class _RequestBuilder:
    """Build namespaced request elements under the `ar` prefix."""

    def __init__(self, namespace: str) -> None:
        self._ns = namespace

    def root(self, operation: str) -> etree._Element:
        return etree.Element(f"{{{self._ns}}}{operation}", nsmap={"ar": self._ns})

    def child(self, parent: etree._Element, tag: str, text: object | None = None) -> etree._Element:
        element = etree.SubElement(parent, f"{{{self._ns}}}{tag}")
        if text is not None:
            element.text = str(text)
        return element

    def auth(
        self, parent: etree._Element, ticket: AccessTicket, credential: CertificateCredential
    ) -> None:
        auth = self.child(parent, "Auth")
        self.child(auth, "Token", ticket.token)
        self.child(auth, "Sign", ticket.sign)
        self.child(auth, "Cuit", credential.tax_id)


# ─────────────────────── Response helpers ───────────────────────


def _messages(root: etree._Element, tag: str) -> list[AuthorityMessage]:
    """(code, message) pairs from every `tag` element (Err, Obs, Evt)."""
    messages: list[AuthorityMessage] = []
    for node in iter_named(root, tag):
        raw_code = child_text(node, "Code")
        code = int(raw_code) if raw_code is not None and raw_code.isdigit() else None
        messages.append((code, child_text(node, "Msg") or ""))
    return messages


def _describe(messages: list[AuthorityMessage]) -> str:
    return "; ".join(f"{code}: {msg}" if code is not None else msg for code, msg in messages)


# ─────────────────────── Last authorized number ───────────────────────


def last_number_envelope(
    point_of_sale: int,
    invoice_type_code: int,
    access_ticket: AccessTicket,
    credential: CertificateCredential,
    endpoint: ServiceEndpoint = WSFE,
) -> bytes:
    build = _RequestBuilder(endpoint.namespace)
    operation = build.root("FECompUltimoAutorizado")
    build.auth(operation, access_ticket, credential)
    build.child(operation, "PtoVta", point_of_sale)
    build.child(operation, "CbteTipo", invoice_type_code)
    return soap_envelope(operation, endpoint.soap_version)


def parse_last_number_response(root: etree._Element) -> Result[int]:
    errors = _messages(root, "Err")
    if errors:
        return Result.failure(ErrorCode.AUTHORITY_FAULT, _describe(errors))
    raw = find_text(root, "CbteNro")
    if raw is None or not raw.isdigit():
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            f"Last-number response carries no usable CbteNro (got {raw!r})",
        )
    return Result.success(int(raw))


class WsfeSequenceClient:
    """Ask the invoicing service for the last number it authorized."""

    def __init__(self, transport: SoapTransport, endpoint: ServiceEndpoint = WSFE) -> None:
        self._transport = transport
        self._endpoint = endpoint

    def last_authorized_number(
        self,
        point_of_sale: int,
        invoice_type_code: int,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[int]:
        return (
            self._transport.call(
                self._endpoint.url_for(credential.environment),
                last_number_envelope(
                    point_of_sale, invoice_type_code, access_ticket, credential, self._endpoint
                ),
                soap_action=f"{self._endpoint.namespace}FECompUltimoAutorizado",
                version=self._endpoint.soap_version,
            )
            .flat_map(parse_last_number_response)
            .peek(
                lambda number: log.info(
                    "wsfe.last_number",
                    point_of_sale=point_of_sale,
                    invoice_type_code=invoice_type_code,
                    last_number=number,
                )
            )
        )


# ─────────────────────── Authorization ───────────────────────


def _resolve_rate_codes(request: InvoiceAuthorizationRequest) -> Result[tuple[int, ...]]:
    codes: list[int] = []
    for line in request.tax_breakdown:
        resolved = tax_rate_code(line.tax_rate)
        if resolved.is_failure():
            return Result.failure_from(resolved.error())
        codes.append(resolved.value())
    return Result.success(tuple(codes))


def authorization_envelope(
    request: InvoiceAuthorizationRequest,
    type_code: int,
    rate_codes: tuple[int, ...],
    access_ticket: AccessTicket,
    credential: CertificateCredential,
    endpoint: ServiceEndpoint = WSFE,
) -> bytes:
    build = _RequestBuilder(endpoint.namespace)
    operation = build.root("FECAESolicitar")
    build.auth(operation, access_ticket, credential)

    batch = build.child(operation, "FeCAEReq")
    header = build.child(batch, "FeCabReq")
    build.child(header, "CantReg", 1)
    build.child(header, "PtoVta", request.point_of_sale)
    build.child(header, "CbteTipo", type_code)

    detail = build.child(build.child(batch, "FeDetReq"), "FECAEDetRequest")
    issue_date = format_authority_date(request.issue_date)
    build.child(detail, "Concepto", request.concept)
    build.child(detail, "DocTipo", request.buyer_doc_type)
    build.child(detail, "DocNro", request.buyer_doc_number)
    build.child(detail, "CbteDesde", request.invoice_number)
    build.child(detail, "CbteHasta", request.invoice_number)
    build.child(detail, "CbteFch", issue_date)
    build.child(detail, "ImpTotal", format_amount(request.total_amount))
    build.child(detail, "ImpTotConc", format_amount(Decimal("0")))
    build.child(detail, "ImpNeto", format_amount(request.net_amount))
    build.child(detail, "ImpOpEx", format_amount(Decimal("0")))
    build.child(detail, "ImpIVA", format_amount(request.tax_amount))
    build.child(detail, "ImpTrib", format_amount(Decimal("0")))
    if request.concept in SERVICE_CONCEPTS:
        build.child(detail, "FchServDesde", issue_date)
        build.child(detail, "FchServHasta", issue_date)
        build.child(detail, "FchVtoPago", issue_date)
    build.child(detail, "MonId", request.currency_code)
    build.child(detail, "MonCotiz", request.currency_rate)

    if carries_vat(type_code) and request.tax_breakdown:
        vat = build.child(detail, "Iva")
        for line, rate_code in zip(request.tax_breakdown, rate_codes, strict=True):
            rate = build.child(vat, "AlicIva")
            build.child(rate, "Id", rate_code)
            build.child(rate, "BaseImp", format_amount(line.base_amount))
            build.child(rate, "Importe", format_amount(line.tax_amount))

    return soap_envelope(operation, endpoint.soap_version)


def parse_authorization_response(
    root: etree._Element, *, resubmitted: bool = False
) -> Result[InvoiceAuthorizationResult]:
    """
    Classify a FECAESolicitar answer.

    `resubmitted` marks the answer to this client's own resend after a lost
    reply. A reprocessed approval then belongs to the same submission and is
    returned as Authorized; otherwise it is a duplicate that keeps the echoed CAE.
    """
    detail = find_first(root, "FECAEDetResponse")
    outcome = child_text(detail, "Resultado") if detail is not None else None
    if outcome is None:
        outcome = find_text(root, "Resultado")

    errors = _messages(root, "Err")
    observations = _messages(root, "Obs")
    reprocessed = find_text(root, "Reproceso") == "S"
    codes = tuple(code for code, _ in errors + observations if code is not None)
    duplicate_reason = _describe(observations + errors) or "Invoice number was already processed"

    if reprocessed and outcome == "A":
        first = _authorized(detail, observations)
        if resubmitted:
            return first
        return Result.success(
            first.either(
                lambda cae: Rejected(
                    reason=duplicate_reason,
                    codes=codes,
                    duplicate=True,
                    authorization_code=cae.authorization_code,
                    expiration_date=cae.expiration_date,
                ),
                lambda _: Rejected(reason=duplicate_reason, codes=codes, duplicate=True),
            )
        )

    if reprocessed or (outcome == "R" and DUPLICATE_SUBMISSION_CODES.intersection(codes)):
        return Result.success(Rejected(reason=duplicate_reason, codes=codes, duplicate=True))

    match outcome:
        case "A":
            return _authorized(detail, observations)
        case "R":
            return Result.success(
                Rejected(
                    reason=_describe(observations + errors) or "Rejected without a stated reason",
                    codes=codes,
                )
            )
        case None if errors:
            return Result.failure(ErrorCode.AUTHORITY_FAULT, _describe(errors))
        case _:
            return Result.failure(
                ErrorCode.RESPONSE_PARSE_FAILURE,
                f"Authorization response has unexpected Resultado {outcome!r}",
            )


def _authorized(
    detail: etree._Element | None, observations: list[AuthorityMessage]
) -> Result[Authorized]:
    code = child_text(detail, "CAE") if detail is not None else None
    raw_expiration = child_text(detail, "CAEFchVto") if detail is not None else None
    if code is None or raw_expiration is None:
        return Result.failure(
            ErrorCode.RESPONSE_PARSE_FAILURE,
            "Authorized response lacks CAE or CAEFchVto",
        )
    return Result.from_computation(
        lambda: parse_authority_date(raw_expiration),
        ErrorCode.RESPONSE_PARSE_FAILURE,
        f"Unreadable CAEFchVto {raw_expiration!r}",
    ).map(
        lambda expiration: Authorized(
            authorization_code=code,
            expiration_date=expiration,
            observations=tuple(msg for _, msg in observations),
        )
    )


class WsfeAuthorizationClient:
    """
    Submit one aggregated invoice for a CAE.

    Validation and code lookups run first; a request that fails them never
    reaches the network.
    """

    def __init__(self, transport: SoapTransport, endpoint: ServiceEndpoint = WSFE) -> None:
        self._transport = transport
        self._endpoint = endpoint

    def authorize(
        self,
        request: InvoiceAuthorizationRequest,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[InvoiceAuthorizationResult]:
        return (
            validate_invoice(request)
            .flat_map(lambda valid: invoice_type_code(valid.invoice_type))
            .ensure(
                lambda type_code: carries_vat(type_code) or request.tax_amount == 0,
                ErrorCode.VALIDATION_ERROR,
                lambda type_code: (
                    f"Invoice type {type_code} carries no VAT "
                    f"but tax amount is {request.tax_amount}"
                ),
            )
            .flat_map(
                lambda type_code: _resolve_rate_codes(request).flat_map(
                    lambda rate_codes: self._submit(
                        request, type_code, rate_codes, access_ticket, credential
                    )
                )
            )
            .peek(lambda outcome: _log_outcome(request, outcome))
        )

    def _submit(
        self,
        request: InvoiceAuthorizationRequest,
        type_code: int,
        rate_codes: tuple[int, ...],
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[InvoiceAuthorizationResult]:
        log.info(
            "wsfe.authorization_submitted",
            point_of_sale=request.point_of_sale,
            invoice_type_code=type_code,
            invoice_number=request.invoice_number,
        )
        envelope = authorization_envelope(
            request, type_code, rate_codes, access_ticket, credential, self._endpoint
        )
        return self._post(envelope, credential).either(
            parse_authorization_response,
            lambda error: self._resubmit(envelope, credential, request, error),
        )

    def _post(self, envelope: bytes, credential: CertificateCredential) -> Result[etree._Element]:
        return self._transport.call(
            self._endpoint.url_for(credential.environment),
            envelope,
            soap_action=f"{self._endpoint.namespace}FECAESolicitar",
            version=self._endpoint.soap_version,
            retry=False,
        )

    def _resubmit(
        self,
        envelope: bytes,
        credential: CertificateCredential,
        request: InvoiceAuthorizationRequest,
        error: FailureDescription,
    ) -> Result[InvoiceAuthorizationResult]:
        """Send the same envelope once more after a lost reply."""
        if not is_transient_failure(error):
            return Result.failure_from(error)
        log.warning(
            "wsfe.authorization_resubmitted",
            invoice_number=request.invoice_number,
            error=error.message,
        )
        return self._post(envelope, credential).flat_map(
            lambda root: parse_authorization_response(root, resubmitted=True)
        )


def _log_outcome(request: InvoiceAuthorizationRequest, outcome: InvoiceAuthorizationResult) -> None:
    match outcome:
        case Authorized():
            log.info(
                "wsfe.authorized",
                invoice_number=request.invoice_number,
                expiration_date=outcome.expiration_date.isoformat(),
            )
        case Rejected(duplicate=True):
            log.warning("wsfe.duplicate_submission", invoice_number=request.invoice_number)
        case Rejected():
            log.warning(
                "wsfe.rejected", invoice_number=request.invoice_number, reason=outcome.reason
            )
