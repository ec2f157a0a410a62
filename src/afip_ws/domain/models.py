"""
Domain models: immutable value objects exchanged with the authority clients.

All models are frozen dataclasses. Amounts are Decimal end to end; they are
only rendered to text when a SOAP body or QR payload is serialised.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import StrEnum

# Document type for an unidentified final consumer; CUIT is 80.
FINAL_CONSUMER_DOC_TYPE = 99


class Environment(StrEnum):
    """Authority environment. Both expose identical protocols."""

    TEST = "test"
    PRODUCTION = "production"


class PersonKind(StrEnum):
    INDIVIDUAL = "individual"
    ENTITY = "entity"


class TaxCategory(StrEnum):
    """VAT standing of a taxpayer, as derived from its active registrations."""

    REGISTERED = "Responsable Inscripto"
    MONOTRIBUTO = "Monotributista"
    EXEMPT = "Exento"
    FINAL_CONSUMER = "Consumidor Final"


@dataclass(frozen=True, slots=True)
class CertificateCredential:
    """
    Certificate/key pair plus account parameters, supplied by a collaborator.

    PEM material is excluded from repr so it never reaches a log line.
    """

    certificate_pem: str = field(repr=False)
    private_key_pem: str = field(repr=False)
    tax_id: str
    environment: Environment = Environment.TEST
    point_of_sale: int = 1


@dataclass(frozen=True, slots=True)
class LoginTicketRequest:
    """The TRA: a request for access to `service_name` bound to a time window."""

    unique_id: int
    generation_time: datetime
    expiration_time: datetime
    service_name: str


@dataclass(frozen=True, slots=True)
class AccessTicket:
    """Short-lived {token, sign} pair issued by the login service."""

    token: str = field(repr=False)
    sign: str = field(repr=False)
    service_name: str
    obtained_at: datetime
    valid_until: datetime

    def is_valid_at(self, moment: datetime) -> bool:
        return moment < self.valid_until


@dataclass(frozen=True, slots=True)
class FiscalAddress:
    street: str = ""
    number: str = ""
    locality: str = ""
    province: str = ""
    postal_code: str = ""


@dataclass(frozen=True, slots=True)
class TaxpayerRecord:
    """Normalised registry record for a taxpayer."""

    tax_id: str
    legal_name: str
    person_kind: PersonKind
    tax_category: TaxCategory
    fiscal_address: FiscalAddress = field(default_factory=FiscalAddress)
    given_name: str | None = None
    family_name: str | None = None
    monotributo_category: str | None = None
    source: str = "registry"
    # Set when the record comes from a non-authoritative source.
    warning: str | None = None


@dataclass(frozen=True, slots=True)
class PersonKindFallback:
    """
    Person kind inferred from the tax id prefix alone.

    Produced only when the registry could not be consulted; it is a hint,
    never a verified record.
    """

    tax_id: str
    person_kind: PersonKind
    source: str = "tax-id-prefix"


@dataclass(frozen=True, slots=True)
class TaxBreakdownLine:
    """Aggregated amounts for one VAT rate (`tax_rate` is a percentage, e.g. 21)."""

    tax_rate: Decimal
    base_amount: Decimal
    tax_amount: Decimal


@dataclass(frozen=True, slots=True)
class InvoiceAuthorizationRequest:
    """
    Pre-aggregated invoice submitted for authorization.

    `invoice_type` is the internal identifier (e.g. "factura_b"); the numeric
    authority code is resolved through the code tables.
    """

    point_of_sale: int
    invoice_type: str
    invoice_number: int
    issue_date: date
    net_amount: Decimal
    tax_amount: Decimal
    total_amount: Decimal
    tax_breakdown: tuple[TaxBreakdownLine, ...] = ()
    buyer_doc_type: int = FINAL_CONSUMER_DOC_TYPE
    buyer_doc_number: int = 0
    concept: int = 1
    currency_code: str = "PES"
    currency_rate: Decimal = Decimal("1")


@dataclass(frozen=True, slots=True)
class Authorized:
    """The authority issued a CAE for the invoice."""

    authorization_code: str
    expiration_date: date
    observations: tuple[str, ...] = ()

    @property
    def is_authorized(self) -> bool:
        return True


@dataclass(frozen=True, slots=True)
class Rejected:
    """
    The authority refused the invoice.

    `duplicate` is set when the rejection means the number was already
    processed; the caller must not re-offer the same number. When the
    authority echoes the CAE it issued the first time, it is kept here.
    """

    reason: str
    codes: tuple[int, ...] = ()
    duplicate: bool = False
    authorization_code: str | None = None
    expiration_date: date | None = None

    @property
    def is_authorized(self) -> bool:
        return False


type InvoiceAuthorizationResult = Authorized | Rejected


@dataclass(frozen=True, slots=True)
class SequenceQuery:
    """Answer to a last-authorized-number query."""

    last_authorized_number: int
    point_of_sale: int
    invoice_type_code: int
    environment: Environment

    @property
    def next_number(self) -> int:
        return self.last_authorized_number + 1


@dataclass(frozen=True, slots=True)
class QrPayload:
    """Compliance QR content for an authorized invoice."""

    version: int
    issue_date: date
    tax_id: int
    point_of_sale: int
    invoice_type_code: int
    invoice_number: int
    total_amount: Decimal
    currency_code: str
    currency_rate: Decimal
    buyer_doc_type: int
    buyer_doc_number: int
    authorization_method: str
    authorization_code: int
