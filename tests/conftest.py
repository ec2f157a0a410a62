"""
Shared test fixtures for the afip-ws test suite.

Certificates and keys are generated once per session with `cryptography`;
no test touches the network or a real authority endpoint.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, rsa
from cryptography.x509.oid import NameOID

from afip_ws.domain.models import AccessTicket, CertificateCredential, Environment

FIXED_NOW = datetime(2025, 1, 15, 13, 0, 0, tzinfo=UTC)
TAX_ID = "20123456789"

SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP12_NS = "http://www.w3.org/2003/05/soap-envelope"


class FakeClock:
    """Deterministic clock; call it like `utc_now`, move it with `advance`."""

    def __init__(self, now: datetime = FIXED_NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, delta: timedelta) -> None:
        self.now = self.now + delta


def make_certificate_pem(
    key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey,
    not_before: datetime = datetime(2024, 1, 1, tzinfo=UTC),
    not_after: datetime = datetime(2030, 1, 1, tzinfo=UTC),
) -> str:
    """Self-signed certificate shaped like the ones the authority issues."""
    name = x509.Name(
        [
            x509.NameAttribute(NameOID.COUNTRY_NAME, "AR"),
            x509.NameAttribute(NameOID.ORGANIZATION_NAME, "Comercio de Prueba"),
            x509.NameAttribute(NameOID.COMMON_NAME, "facturacion"),
            x509.NameAttribute(NameOID.SERIAL_NUMBER, f"CUIT {TAX_ID}"),
        ]
    )
    certificate = (
        x509.CertificateBuilder()
        .subject_name(name)
        .issuer_name(name)
        .public_key(key.public_key())
        .serial_number(x509.random_serial_number())
        .not_valid_before(not_before)
        .not_valid_after(not_after)
        .sign(key, hashes.SHA256())
    )
    return certificate.public_bytes(serialization.Encoding.PEM).decode("ascii")


def private_key_pem(key: rsa.RSAPrivateKey | ec.EllipticCurvePrivateKey) -> str:
    return key.private_bytes(
        serialization.Encoding.PEM,
        serialization.PrivateFormat.PKCS8,
        serialization.NoEncryption(),
    ).decode("ascii")


def soap_response(body: str, soap_ns: str = SOAP11_NS) -> str:
    """Wrap a body fragment in a SOAP envelope of the given namespace."""
    return (
        '<?xml version="1.0" encoding="UTF-8"?>'
        f'<soap:Envelope xmlns:soap="{soap_ns}"><soap:Body>{body}</soap:Body></soap:Envelope>'
    )


@pytest.fixture(scope="session")
def rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def other_rsa_key() -> rsa.RSAPrivateKey:
    return rsa.generate_private_key(public_exponent=65537, key_size=2048)


@pytest.fixture(scope="session")
def certificate_pem(rsa_key: rsa.RSAPrivateKey) -> str:
    return make_certificate_pem(rsa_key)


@pytest.fixture()
def credential(certificate_pem: str, rsa_key: rsa.RSAPrivateKey) -> CertificateCredential:
    return CertificateCredential(
        certificate_pem=certificate_pem,
        private_key_pem=private_key_pem(rsa_key),
        tax_id=TAX_ID,
        environment=Environment.TEST,
        point_of_sale=1,
    )


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def access_ticket() -> AccessTicket:
    return AccessTicket(
        token="T0KEN",
        sign="S1GN",
        service_name="wsfe",
        obtained_at=FIXED_NOW,
        valid_until=FIXED_NOW + timedelta(hours=11),
    )
