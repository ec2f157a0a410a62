"""
CMS/PKCS#7 ticket signer: wraps the TRA in a SignedData envelope.

Adapter layer: implements the TicketSigner port using:
  - cryptography (PyCA): PEM loading, key/certificate pairing, RSA PKCS#1 v1.5 signing
  - asn1crypto: SignedData / SignerInfo construction and DER serialisation

Pipeline:
  LoginTicketRequest
    → lxml: render TRA document (UTF-8 bytes)
    → authenticated attributes: content-type, signing-time, message-digest (SHA-256)
    → cryptography: sign DER(attributes) with the private key, verify with the certificate
    → asn1crypto: ContentInfo(signed_data) with the TRA as encapsulated content
    → base64 text for the login SOAP call

Certificate problems (unparsable PEM, non-RSA key, key not matching the
certificate, expired certificate) are CERTIFICATE_INVALID; anything that
goes wrong after both halves loaded is SIGNING_FAILURE.
"""

from __future__ import annotations

import base64
import hashlib
from datetime import datetime

import structlog
from asn1crypto import algos, cms, core
from asn1crypto import x509 as asn1_x509
from cryptography import x509
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import padding, rsa
from railway import ErrorCode, Result

from afip_ws.domain.models import CertificateCredential, LoginTicketRequest
from afip_ws.domain.ticket import Clock, render_ticket_xml, utc_now

log = structlog.get_logger()

type KeyPair = tuple[x509.Certificate, rsa.RSAPrivateKey]


# ─────────────────────── PEM loading ───────────────────────


def _normalize_pem(pem: str) -> bytes:
    """Collapse CRLF/CR line endings; pasted PEM blocks often carry them."""
    return pem.replace("\r\n", "\n").replace("\r", "\n").strip().encode("ascii")


def _spki(public_key: rsa.RSAPublicKey) -> bytes:
    return public_key.public_bytes(
        serialization.Encoding.DER,
        serialization.PublicFormat.SubjectPublicKeyInfo,
    )


def load_key_pair(credential: CertificateCredential, now: datetime) -> KeyPair:
    """
    Load and cross-check the certificate and private key.

    Raises ValueError with an actionable message on any mismatch.
    """
    certificate = x509.load_pem_x509_certificate(_normalize_pem(credential.certificate_pem))
    private_key = serialization.load_pem_private_key(
        _normalize_pem(credential.private_key_pem),
        password=None,
    )
    if not isinstance(private_key, rsa.RSAPrivateKey):
        raise ValueError(f"Only RSA private keys are supported, got {type(private_key).__name__}")

    cert_key = certificate.public_key()
    if not isinstance(cert_key, rsa.RSAPublicKey) or _spki(cert_key) != _spki(
        private_key.public_key()
    ):
        raise ValueError("Private key does not correspond to the certificate")

    if now >= certificate.not_valid_after_utc:
        raise ValueError(
            f"Certificate expired on {certificate.not_valid_after_utc.isoformat()}"
        )
    return certificate, private_key


# ─────────────────────── CMS construction ───────────────────────


def _signed_attributes(content: bytes, signing_time: datetime) -> cms.CMSAttributes:
    """Authenticated attributes, ordered as DER requires for a SET OF."""
    attributes = [
        cms.CMSAttribute(
            {"type": cms.CMSAttributeType("content_type"), "values": ("data",)}
        ),
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("signing_time"),
                "values": (cms.Time({"utc_time": core.UTCTime(signing_time)}),),
            }
        ),
        cms.CMSAttribute(
            {
                "type": cms.CMSAttributeType("message_digest"),
                "values": (hashlib.sha256(content).digest(),),
            }
        ),
    ]
    return cms.CMSAttributes(sorted(attributes, key=lambda attr: attr.dump()))


def build_signed_data(content: bytes, key_pair: KeyPair, signing_time: datetime) -> bytes:
    """Return DER-encoded ContentInfo(SignedData) carrying `content`."""
    certificate, private_key = key_pair
    signed_attrs = _signed_attributes(content, signing_time)
    to_sign = signed_attrs.dump()

    signature = private_key.sign(to_sign, padding.PKCS1v15(), hashes.SHA256())
    if len(signature) != private_key.key_size // 8:
        raise ValueError(f"Signature has unexpected length {len(signature)}")
    # Raises InvalidSignature; the public half equals the certificate's key (load_key_pair).
    private_key.public_key().verify(signature, to_sign, padding.PKCS1v15(), hashes.SHA256())

    asn1_cert = asn1_x509.Certificate.load(certificate.public_bytes(serialization.Encoding.DER))
    signer_info = cms.SignerInfo(
        {
            "version": "v1",
            "sid": cms.SignerIdentifier(
                {
                    "issuer_and_serial_number": cms.IssuerAndSerialNumber(
                        {
                            "issuer": asn1_cert.issuer,
                            "serial_number": asn1_cert.serial_number,
                        }
                    )
                }
            ),
            "digest_algorithm": algos.DigestAlgorithm({"algorithm": "sha256"}),
            "signed_attrs": signed_attrs,
            "signature_algorithm": algos.SignedDigestAlgorithm({"algorithm": "rsassa_pkcs1v15"}),
            "signature": signature,
        }
    )

    signed_data = cms.SignedData(
        {
            "version": "v1",
            "digest_algorithms": cms.DigestAlgorithms(
                [algos.DigestAlgorithm({"algorithm": "sha256"})]
            ),
            "encap_content_info": cms.EncapsulatedContentInfo(
                {"content_type": "data", "content": content}
            ),
            "certificates": cms.CertificateSet(
                [cms.CertificateChoices({"certificate": asn1_cert})]
            ),
            "signer_infos": cms.SignerInfos([signer_info]),
        }
    )
    return cms.ContentInfo({"content_type": "signed_data", "content": signed_data}).dump()


# ─────────────────────── Public signer class ───────────────────────


class CmsTicketSigner:
    """
    Sign login tickets with the credential's certificate and key.

    Implements the TicketSigner port. The returned text is the base64 of
    the DER ContentInfo, ready to embed in the login request.
    """

    def __init__(self, clock: Clock = utc_now) -> None:
        self._clock = clock

    def sign(self, ticket: LoginTicketRequest, credential: CertificateCredential) -> Result[str]:
        now = self._clock()
        return (
            Result.from_computation(
                lambda: load_key_pair(credential, now),
                ErrorCode.CERTIFICATE_INVALID,
                "Certificate or private key rejected",
            )
            .flat_map(
                lambda key_pair: Result.from_computation(
                    lambda: build_signed_data(render_ticket_xml(ticket), key_pair, now),
                    ErrorCode.SIGNING_FAILURE,
                    "Failed to sign login ticket",
                )
            )
            .ensure(
                lambda der: len(der) > 0,
                ErrorCode.SIGNING_FAILURE,
                "Signing produced an empty CMS structure",
            )
            .map(lambda der: base64.b64encode(der).decode("ascii"))
            .peek(
                lambda blob: log.info(
                    "cms.ticket_signed",
                    service=ticket.service_name,
                    unique_id=ticket.unique_id,
                    size_chars=len(blob),
                )
            )
        )
