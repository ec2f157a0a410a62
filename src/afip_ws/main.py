"""
Application entry point: wires dependencies and starts the HTTP server.

Composition root: creates concrete adapters and binds them into
FiscalServices. This is the ONLY place where concrete classes are
instantiated; everything else depends on Protocol interfaces.

Responsibilities:
  1. Configure structlog
  2. Load and validate configuration from environment
  3. Create adapters (transport, signer, login client, registry providers, invoicing clients)
  4. Serve the FastAPI app with uvicorn
"""

from __future__ import annotations

import logging
import sys

import structlog
import uvicorn

from afip_ws import __version__
from afip_ws.adapters.cms_signer import CmsTicketSigner
from afip_ws.adapters.credentials import FileCredentialStore
from afip_ws.adapters.padron import PadronRegistryClient, RegistryTaxpayerProvider
from afip_ws.adapters.soap import HttpSoapTransport
from afip_ws.adapters.tangofactura import TANGOFACTURA_URL, TangoFacturaTaxpayerProvider
from afip_ws.adapters.wsaa import WsaaAuthenticator
from afip_ws.adapters.wsfe import WsfeAuthorizationClient, WsfeSequenceClient
from afip_ws.config import AppSettings
from afip_ws.endpoints import PADRON_A5, WSAA, WSFE, with_overrides
from afip_ws.workflows import FiscalServices, TaxpayerLookupChain


def configure_structlog(log_level: str = "INFO") -> None:
    """Configure structlog with a console renderer and level filtering."""
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            structlog.processors.add_log_level,
            structlog.processors.StackInfoRenderer(),
            structlog.dev.set_exc_info,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.dev.ConsoleRenderer(),
        ],
        wrapper_class=structlog.make_filtering_bound_logger(
            getattr(logging, log_level.upper(), logging.INFO)
        ),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def create_services(settings: AppSettings) -> FiscalServices:
    """Instantiate all concrete adapters from application settings."""
    overrides = settings.endpoints
    wsaa = with_overrides(WSAA, overrides.wsaa_test_url, overrides.wsaa_production_url)
    padron = with_overrides(PADRON_A5, overrides.padron_test_url, overrides.padron_production_url)
    wsfe = with_overrides(WSFE, overrides.wsfe_test_url, overrides.wsfe_production_url)

    transport = HttpSoapTransport(timeout=settings.http_timeout_seconds)
    authenticator = WsaaAuthenticator(
        signer=CmsTicketSigner(),
        transport=transport,
        endpoint=wsaa,
        default_lifetime=settings.ticket_default_lifetime,
        refresh_margin=settings.ticket_refresh_margin,
    )
    registry = RegistryTaxpayerProvider(authenticator, PadronRegistryClient(transport, padron))
    public_registry = TangoFacturaTaxpayerProvider(
        overrides.tangofactura_url or TANGOFACTURA_URL, timeout=settings.http_timeout_seconds
    )

    return FiscalServices(
        credentials=FileCredentialStore(settings.credential),
        authenticator=authenticator,
        taxpayers=TaxpayerLookupChain([registry, public_registry]),
        sequence=WsfeSequenceClient(transport, wsfe),
        authorization=WsfeAuthorizationClient(transport, wsfe),
    )


def main() -> None:
    """Load settings, configure logging and serve the API."""
    try:
        settings = AppSettings()
    except Exception as e:
        print(f"FATAL: Configuration error: {e}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    configure_structlog(settings.log_level)
    log = structlog.get_logger()
    log.info(
        "app.starting",
        version=__version__,
        log_level=settings.log_level,
        credential_configured=settings.credential is not None,
        environment=settings.credential.environment if settings.credential else None,
    )

    uvicorn.run(
        "afip_ws.asgi:app",
        host=settings.host,
        port=settings.port,
        reload=False,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
