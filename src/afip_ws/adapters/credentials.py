"""
File-backed credential store.

Reads the PEM files named in settings on every `load`, so a rotated
certificate is picked up without a restart. Nothing read here is logged.
"""

from __future__ import annotations

from pathlib import Path

import structlog
from railway import ErrorCode, Result

from afip_ws.config import CredentialSettings
from afip_ws.domain.models import CertificateCredential

log = structlog.get_logger()


def _read_pem(path: Path, label: str) -> Result[str]:
    return Result.from_computation(
        lambda: path.read_text(encoding="ascii"),
        ErrorCode.CONFIGURATION_MISSING,
        f"Cannot read {label} at {path}",
    ).ensure(
        lambda text: "-----BEGIN" in text,
        ErrorCode.CONFIGURATION_MISSING,
        f"{label.capitalize()} at {path} is not PEM",
    )


class FileCredentialStore:
    """Implements the CredentialStore port from CredentialSettings."""

    def __init__(self, settings: CredentialSettings | None) -> None:
        self._settings = settings

    def load(self) -> Result[CertificateCredential]:
        settings = self._settings
        if settings is None:
            return Result.failure(
                ErrorCode.CONFIGURATION_MISSING,
                "No credential configured (set CREDENTIAL__CERTIFICATE_PATH, "
                "CREDENTIAL__PRIVATE_KEY_PATH and CREDENTIAL__TAX_ID)",
            )
        return (
            _read_pem(settings.certificate_path, "certificate")
            .flat_map(
                lambda certificate: _read_pem(settings.private_key_path, "private key").map(
                    lambda private_key: CertificateCredential(
                        certificate_pem=certificate,
                        private_key_pem=private_key,
                        tax_id=settings.tax_id,
                        environment=settings.environment,
                        point_of_sale=settings.point_of_sale,
                    )
                )
            )
            .peek_failure(
                lambda error: log.error("credentials.load_failed", message=error.message)
            )
        )
