"""
Ports: Protocol-based interfaces for infrastructure adapters.

The workflows depend only on these contracts; adapters satisfy them
structurally. Credentials are always passed in explicitly so several
accounts and environments can be served by one process.

Call chain for every authority operation:
  1. CredentialStore        → CertificateCredential
  2. AccessTicketProvider   → AccessTicket (cached, single-flight per service)
  3. business client        → typed result (taxpayer, last number, authorization)
"""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol, runtime_checkable

from railway.result import Result

from afip_ws.domain.models import (
    AccessTicket,
    CertificateCredential,
    InvoiceAuthorizationRequest,
    InvoiceAuthorizationResult,
    LoginTicketRequest,
    TaxpayerRecord,
)

if TYPE_CHECKING:
    from lxml import etree

    from afip_ws.adapters.soap import SoapVersion


@runtime_checkable
class CredentialStore(Protocol):
    """Port: supply the stored certificate/key pair and account parameters."""

    def load(self) -> Result[CertificateCredential]: ...


@runtime_checkable
class TicketSigner(Protocol):
    """Port: produce the base64 CMS blob for a login ticket."""

    def sign(
        self, ticket: LoginTicketRequest, credential: CertificateCredential
    ) -> Result[str]: ...


@runtime_checkable
class SoapTransport(Protocol):
    """Port: POST a SOAP envelope and return the parsed response document."""

    def call(
        self,
        url: str,
        envelope: bytes,
        *,
        soap_action: str,
        version: SoapVersion,
        timeout: float | None = None,
        retry: bool = True,
    ) -> Result[etree._Element]: ...


@runtime_checkable
class AccessTicketProvider(Protocol):
    """Port: obtain (or reuse) an access ticket for a named remote service."""

    def authenticate(
        self, service_name: str, credential: CertificateCredential
    ) -> Result[AccessTicket]: ...


@runtime_checkable
class TaxpayerProvider(Protocol):
    """
    Port: one strategy in the taxpayer lookup chain.

    Strategies are tried in priority order until one succeeds.
    """

    name: str

    def lookup(self, tax_id: str, credential: CertificateCredential) -> Result[TaxpayerRecord]: ...


@runtime_checkable
class InvoiceSequenceService(Protocol):
    """Port: report the last authorized invoice number."""

    def last_authorized_number(
        self,
        point_of_sale: int,
        invoice_type_code: int,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[int]: ...


@runtime_checkable
class InvoiceAuthorizationService(Protocol):
    """Port: submit an aggregated invoice for a CAE."""

    def authorize(
        self,
        request: InvoiceAuthorizationRequest,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> Result[InvoiceAuthorizationResult]: ...
