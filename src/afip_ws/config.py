"""
Configuration: typed, validated settings loaded from environment/.env.

Only AppSettings is a BaseSettings instance. Sub-settings are plain BaseModel
classes populated via env_nested_delimiter="__", so CREDENTIAL__TAX_ID maps
to credential.tax_id and ENDPOINTS__WSFE_TEST_URL to endpoints.wsfe_test_url.

The credential block is optional: a process without it starts normally and
reports CONFIGURATION_MISSING on the first call that needs the authority.
"""

from __future__ import annotations

from datetime import timedelta
from pathlib import Path

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from afip_ws.domain.models import Environment

_ENV_FILE = Path(__file__).parent.parent.parent / ".env"


class CredentialSettings(BaseModel):
    """Where to find the account's certificate/key pair, plus account parameters."""

    certificate_path: Path = Field(description="PEM-encoded X.509 certificate")
    private_key_path: Path = Field(description="PEM-encoded RSA private key (unencrypted)")
    tax_id: str = Field(description="Tax id (CUIT) of the account the certificate belongs to")
    point_of_sale: int = Field(default=1, ge=1, le=99999)
    environment: Environment = Field(default=Environment.TEST)

    @field_validator("tax_id")
    @classmethod
    def strip_separators(cls, value: str) -> str:
        cleaned = value.replace("-", "").replace(" ", "")
        if len(cleaned) != 11 or not cleaned.isdigit():
            raise ValueError(f"tax_id must have 11 digits, got {value!r}")
        return cleaned


class EndpointSettings(BaseModel):
    """Optional URL overrides; unset fields keep the authority's published URLs."""

    wsaa_test_url: str | None = None
    wsaa_production_url: str | None = None
    padron_test_url: str | None = None
    padron_production_url: str | None = None
    wsfe_test_url: str | None = None
    wsfe_production_url: str | None = None
    tangofactura_url: str | None = None


class AppSettings(BaseSettings):
    """
    Root application settings.

    Load order (highest priority first):
      1. Environment variables
      2. .env file
      3. Default values
    """

    model_config = SettingsConfigDict(
        env_file=_ENV_FILE,
        env_file_encoding="utf-8",
        env_nested_delimiter="__",
        extra="ignore",
    )

    credential: CredentialSettings | None = None
    endpoints: EndpointSettings = Field(default_factory=lambda: EndpointSettings())

    http_timeout_seconds: float = Field(default=30.0, gt=0)
    ticket_default_lifetime_seconds: int = Field(default=600, ge=60)
    ticket_refresh_margin_seconds: int = Field(default=60, ge=0)
    log_level: str = Field(default="INFO")
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000, ge=1, le=65535)

    @property
    def ticket_default_lifetime(self) -> timedelta:
        return timedelta(seconds=self.ticket_default_lifetime_seconds)

    @property
    def ticket_refresh_margin(self) -> timedelta:
        return timedelta(seconds=self.ticket_refresh_margin_seconds)
