"""
Unit tests for the main module: composition root.

Tests verify structlog configuration and the wiring logic
without making real HTTP calls.
"""

from __future__ import annotations

from datetime import timedelta

import pytest
import structlog
from railway import ErrorCode, ResultAssertions

from afip_ws.adapters.padron import RegistryTaxpayerProvider
from afip_ws.adapters.tangofactura import TangoFacturaTaxpayerProvider
from afip_ws.adapters.wsaa import WsaaAuthenticator
from afip_ws.adapters.wsfe import WsfeAuthorizationClient, WsfeSequenceClient
from afip_ws.config import AppSettings, EndpointSettings
from afip_ws.main import configure_structlog, create_services
from afip_ws.workflows import FiscalServices


class TestConfigureStructlog:
    @pytest.mark.parametrize("level", ["WARNING", "INFO", "NONEXISTENT"])
    def test_configures_without_error(self, level: str) -> None:
        """
        GIVEN a valid or unknown level name
        WHEN configure_structlog is called
        THEN structlog is configured (unknown names fall back to INFO).
        """
        configure_structlog(level)
        assert structlog.get_logger() is not None


class TestCreateServices:
    @pytest.fixture()
    def settings(self) -> AppSettings:
        return AppSettings(  # type: ignore[call-arg]
            _env_file=None,
            ticket_default_lifetime_seconds=300,
            endpoints=EndpointSettings(wsfe_test_url="http://localhost:9000/wsfe"),
        )

    def test_wires_every_port(self, settings: AppSettings) -> None:
        services = create_services(settings)

        assert isinstance(services, FiscalServices)
        assert isinstance(services.authenticator, WsaaAuthenticator)
        assert isinstance(services.sequence, WsfeSequenceClient)
        assert isinstance(services.authorization, WsfeAuthorizationClient)

    def test_registry_then_public_mirror(self, settings: AppSettings) -> None:
        services = create_services(settings)

        providers = services.taxpayers._providers
        assert [provider.name for provider in providers] == ["registry", "tangofactura"]
        assert isinstance(providers[0], RegistryTaxpayerProvider)
        assert isinstance(providers[1], TangoFacturaTaxpayerProvider)

    def test_endpoint_override_and_ticket_lifetime(self, settings: AppSettings) -> None:
        services = create_services(settings)

        assert services.sequence._endpoint.test_url == "http://localhost:9000/wsfe"
        assert services.authenticator._default_lifetime == timedelta(seconds=300)

    def test_missing_credential_surfaces_on_use(self, settings: AppSettings) -> None:
        """
        GIVEN no credential block in settings
        WHEN an operation needing the authority runs
        THEN it fails with CONFIGURATION_MISSING instead of failing startup.
        """
        services = create_services(settings)

        result = services.last_number("factura_b")

        ResultAssertions.assert_failure(result, ErrorCode.CONFIGURATION_MISSING)
