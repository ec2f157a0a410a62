"""
Authority endpoints and wire constants per service family.

Each family has one URL per environment, its own operation namespace and
its own SOAP version.
"""

from __future__ import annotations

from dataclasses import dataclass

from afip_ws.adapters.soap import SoapVersion
from afip_ws.domain.models import Environment

LOGIN_SERVICE_NAME_REGISTRY = "ws_sr_padron_a5"
LOGIN_SERVICE_NAME_INVOICING = "wsfe"


@dataclass(frozen=True, slots=True)
class ServiceEndpoint:
    test_url: str
    production_url: str
    namespace: str
    soap_version: SoapVersion

    def url_for(self, environment: Environment) -> str:
        if environment is Environment.PRODUCTION:
            return self.production_url
        return self.test_url


WSAA = ServiceEndpoint(
    test_url="https://wsaahomo.afip.gov.ar/ws/services/LoginCms",
    production_url="https://wsaa.afip.gov.ar/ws/services/LoginCms",
    namespace="http://wsaa.view.sua.dvadac.desein.afip.gov",
    soap_version=SoapVersion.V11,
)

PADRON_A5 = ServiceEndpoint(
    test_url="https://awshomo.afip.gov.ar/sr-padron/webservices/personaServiceA5",
    production_url="https://aws.afip.gov.ar/sr-padron/webservices/personaServiceA5",
    namespace="http://a5.soap.ws.server.puc.sr/",
    soap_version=SoapVersion.V11,
)

WSFE = ServiceEndpoint(
    test_url="https://wswhomo.afip.gov.ar/wsfev1/service.asmx",
    production_url="https://servicios1.afip.gov.ar/wsfev1/service.asmx",
    namespace="http://ar.gov.afip.dif.FEV1/",
    soap_version=SoapVersion.V12,
)


def with_overrides(
    endpoint: ServiceEndpoint,
    test_url: str | None = None,
    production_url: str | None = None,
) -> ServiceEndpoint:
    return ServiceEndpoint(
        test_url=test_url or endpoint.test_url,
        production_url=production_url or endpoint.production_url,
        namespace=endpoint.namespace,
        soap_version=endpoint.soap_version,
    )
