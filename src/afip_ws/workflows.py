"""
Workflows: the ROP pipelines behind each inbound operation.

No I/O happens here; every side effect goes through an injected port.

  taxpayer lookup:   normalise tax id → load credential → provider chain
  last number:       type code → load credential → wsfe ticket → FECompUltimoAutorizado
  authorization:     load credential → wsfe ticket → FECAESolicitar
  QR:                load credential → build payload

Each stage returns Result[T]; the first failure short-circuits the rest.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog
from railway import ErrorCode, Result

from afip_ws.domain.code_tables import invoice_type_code, normalize_tax_id, person_kind_from_tax_id
from afip_ws.domain.models import (
    Authorized,
    CertificateCredential,
    InvoiceAuthorizationRequest,
    InvoiceAuthorizationResult,
    PersonKindFallback,
    QrPayload,
    SequenceQuery,
    TaxpayerRecord,
)
from afip_ws.domain.ports import (
    AccessTicketProvider,
    CredentialStore,
    InvoiceAuthorizationService,
    InvoiceSequenceService,
    TaxpayerProvider,
)
from afip_ws.domain.qr import build_qr
from afip_ws.endpoints import LOGIN_SERVICE_NAME_INVOICING

log = structlog.get_logger()


class TaxpayerLookupChain:
    """
    Ordered provider strategies, tried until one succeeds.

    When every strategy fails, the first strategy's failure is returned:
    it is the most authoritative source and its error is the one to act on.
    """

    def __init__(self, providers: Sequence[TaxpayerProvider]) -> None:
        self._providers = tuple(providers)

    def lookup(self, tax_id: str, credential: CertificateCredential) -> Result[TaxpayerRecord]:
        first_failure: Result[TaxpayerRecord] | None = None
        for provider in self._providers:
            result = provider.lookup(tax_id, credential)
            if result.is_success():
                return result
            log.info(
                "lookup.provider_failed",
                provider=provider.name,
                tax_id=tax_id,
                error_code=result.error().code.value,
            )
            if first_failure is None:
                first_failure = result
        if first_failure is not None:
            return first_failure
        return Result.failure(ErrorCode.CONFIGURATION_ERROR, "No taxpayer providers configured")


def person_kind_fallback(raw_tax_id: str) -> PersonKindFallback | None:
    """Prefix-based person kind, or None when the tax id itself is malformed."""
    return normalize_tax_id(raw_tax_id).either(
        lambda tax_id: PersonKindFallback(
            tax_id=tax_id, person_kind=person_kind_from_tax_id(tax_id)
        ),
        lambda _: None,
    )


def run_taxpayer_lookup(
    raw_tax_id: str,
    credentials: CredentialStore,
    chain: TaxpayerLookupChain,
) -> Result[TaxpayerRecord]:
    return normalize_tax_id(raw_tax_id).flat_map(
        lambda tax_id: credentials.load().flat_map(
            lambda credential: chain.lookup(tax_id, credential)
        )
    )


def run_last_number_query(
    invoice_type: str,
    credentials: CredentialStore,
    authenticator: AccessTicketProvider,
    sequence: InvoiceSequenceService,
    point_of_sale: int | None = None,
) -> Result[SequenceQuery]:
    """
    Ask for the last authorized number of `invoice_type`.

    `point_of_sale` defaults to the credential's configured point of sale.
    The caller uses `next_number` as the number of its next submission.
    """

    def _query(type_code: int, credential: CertificateCredential) -> Result[SequenceQuery]:
        pos = point_of_sale if point_of_sale is not None else credential.point_of_sale
        return (
            authenticator.authenticate(LOGIN_SERVICE_NAME_INVOICING, credential)
            .flat_map(
                lambda ticket: sequence.last_authorized_number(pos, type_code, ticket, credential)
            )
            .map(
                lambda last: SequenceQuery(
                    last_authorized_number=last,
                    point_of_sale=pos,
                    invoice_type_code=type_code,
                    environment=credential.environment,
                )
            )
        )

    return invoice_type_code(invoice_type).flat_map(
        lambda type_code: credentials.load().flat_map(
            lambda credential: _query(type_code, credential)
        )
    )


def run_invoice_authorization(
    request: InvoiceAuthorizationRequest,
    credentials: CredentialStore,
    authenticator: AccessTicketProvider,
    authorization: InvoiceAuthorizationService,
) -> Result[InvoiceAuthorizationResult]:
    return credentials.load().flat_map(
        lambda credential: authenticator.authenticate(
            LOGIN_SERVICE_NAME_INVOICING, credential
        ).flat_map(lambda ticket: authorization.authorize(request, ticket, credential))
    )


def run_qr_build(
    invoice: InvoiceAuthorizationRequest,
    authorized: Authorized,
    credentials: CredentialStore,
) -> Result[QrPayload]:
    return credentials.load().flat_map(
        lambda credential: build_qr(invoice, credential, authorized)
    )


@dataclass(frozen=True, slots=True)
class FiscalServices:
    """The wired ports, bound once at the composition root."""

    credentials: CredentialStore
    authenticator: AccessTicketProvider
    taxpayers: TaxpayerLookupChain
    sequence: InvoiceSequenceService
    authorization: InvoiceAuthorizationService

    def lookup_taxpayer(self, raw_tax_id: str) -> Result[TaxpayerRecord]:
        return run_taxpayer_lookup(raw_tax_id, self.credentials, self.taxpayers)

    def last_number(
        self, invoice_type: str, point_of_sale: int | None = None
    ) -> Result[SequenceQuery]:
        return run_last_number_query(
            invoice_type, self.credentials, self.authenticator, self.sequence, point_of_sale
        )

    def authorize(self, request: InvoiceAuthorizationRequest) -> Result[InvoiceAuthorizationResult]:
        return run_invoice_authorization(
            request, self.credentials, self.authenticator, self.authorization
        )

    def build_qr(
        self, invoice: InvoiceAuthorizationRequest, authorized: Authorized
    ) -> Result[QrPayload]:
        return run_qr_build(invoice, authorized, self.credentials)
