"""
Login service client (WSAA): trades a signed TRA for an access ticket.

Adapter layer: implements the AccessTicketProvider port:
  - build TRA → CmsTicketSigner → loginCms SOAP 1.1 call → parse {token, sign}
  - in-memory cache keyed by (environment, tax id, service)
  - single-flight: concurrent callers for the same key wait for the one
    login in progress instead of starting their own

The login service answers the same request in several textual shapes; the
ticket document may be inline XML, or the text of `loginCmsReturn` holding
a second document (CDATA-wrapped or XML-escaped). After parsing, CDATA and
escaped text both surface as element text, so two strategies cover the
three shapes. Embedded documents must be well-formed.

The login service refuses a new ticket while one issued for the same
service is still valid (`coe.alreadyAuthenticated`); that fault surfaces
as AUTHORITY_FAULT with its text intact.
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from datetime import datetime, timedelta

import structlog
from lxml import etree
from railway import ErrorCode, Result

from afip_ws.adapters.soap import (
    find_first,
    find_text,
    parse_xml,
    soap_envelope,
)
from afip_ws.domain.models import AccessTicket, CertificateCredential, Environment
from afip_ws.domain.ports import SoapTransport, TicketSigner
from afip_ws.domain.ticket import AUTHORITY_TZ, Clock, build_ticket, utc_now
from afip_ws.endpoints import WSAA, ServiceEndpoint

log = structlog.get_logger()

DEFAULT_TICKET_LIFETIME = timedelta(minutes=10)
DEFAULT_REFRESH_MARGIN = timedelta(seconds=60)

type _CacheKey = tuple[Environment, str, str]


# ─────────────────────── Response parsing ───────────────────────


def _inline_document(root: etree._Element) -> etree._Element | None:
    if find_first(root, "token") is not None:
        return root
    return None


def _embedded_document(root: etree._Element) -> etree._Element | None:
    for element in root.iter():
        text = element.text if isinstance(element.tag, str) else None
        if not text or "<" not in text:
            continue
        try:
            inner = parse_xml(text)
        except etree.XMLSyntaxError:
            log.debug("wsaa.embedded_document_malformed", element=element.tag)
            continue
        if find_first(inner, "token") is not None:
            return inner
    return None


_DOCUMENT_STRATEGIES: tuple[Callable[[etree._Element], etree._Element | None], ...] = (
    _inline_document,
    _embedded_document,
)


def _parse_expiration(text: str | None) -> datetime | None:
    if text is None:
        return None
    try:
        moment = datetime.fromisoformat(text)
    except ValueError:
        return None
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=AUTHORITY_TZ)
    return moment


def parse_login_response(
    root: etree._Element,
    service_name: str,
    obtained_at: datetime,
    default_lifetime: timedelta = DEFAULT_TICKET_LIFETIME,
    refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
) -> Result[AccessTicket]:
    """
    Extract the access ticket from a loginCms response document.

    `valid_until` is the authority's expirationTime minus `refresh_margin`;
    when the response carries no usable expiration, `obtained_at +
    default_lifetime` is used instead.
    """
    for strategy in _DOCUMENT_STRATEGIES:
        document = strategy(root)
        if document is None:
            continue
        token = find_text(document, "token")
        sign = find_text(document, "sign")
        if token is None or sign is None:
            continue

        expiration = _parse_expiration(find_text(document, "expirationTime"))
        if expiration is None:
            valid_until = obtained_at + default_lifetime
        else:
            valid_until = max(expiration - refresh_margin, obtained_at)
        return Result.success(
            AccessTicket(
                token=token,
                sign=sign,
                service_name=service_name,
                obtained_at=obtained_at,
                valid_until=valid_until,
            )
        )

    return Result.failure(
        ErrorCode.RESPONSE_PARSE_FAILURE,
        "Login response carries no token/sign pair",
    )


def login_envelope(signed_cms: str, endpoint: ServiceEndpoint = WSAA) -> bytes:
    operation = etree.Element(
        f"{{{endpoint.namespace}}}loginCms", nsmap={"wsaa": endpoint.namespace}
    )
    etree.SubElement(operation, f"{{{endpoint.namespace}}}in0").text = signed_cms
    return soap_envelope(operation, endpoint.soap_version)


# ─────────────────────── Authenticator ───────────────────────


class WsaaAuthenticator:
    """
    Obtain and cache access tickets per (environment, tax id, service).

    Thread-safe. At most one login is in flight per key; other callers
    for that key block until it finishes and then read the cache. A
    failed login leaves the cache untouched, so the next caller retries.
    """

    def __init__(
        self,
        signer: TicketSigner,
        transport: SoapTransport,
        endpoint: ServiceEndpoint = WSAA,
        clock: Clock = utc_now,
        default_lifetime: timedelta = DEFAULT_TICKET_LIFETIME,
        refresh_margin: timedelta = DEFAULT_REFRESH_MARGIN,
    ) -> None:
        self._signer = signer
        self._transport = transport
        self._endpoint = endpoint
        self._clock = clock
        self._default_lifetime = default_lifetime
        self._refresh_margin = refresh_margin
        self._cache: dict[_CacheKey, AccessTicket] = {}
        self._in_flight: set[_CacheKey] = set()
        self._condition = threading.Condition()

    def authenticate(
        self, service_name: str, credential: CertificateCredential
    ) -> Result[AccessTicket]:
        key: _CacheKey = (credential.environment, credential.tax_id, service_name)

        with self._condition:
            while True:
                cached = self._cache.get(key)
                if cached is not None and cached.is_valid_at(self._clock()):
                    log.debug("wsaa.ticket_cache_hit", service=service_name)
                    return Result.success(cached)
                if key not in self._in_flight:
                    self._in_flight.add(key)
                    break
                self._condition.wait()

        result: Result[AccessTicket] | None = None
        try:
            result = self._login(service_name, credential)
            return result
        finally:
            with self._condition:
                if result is not None and result.is_success():
                    self._cache[key] = result.value()
                self._in_flight.discard(key)
                self._condition.notify_all()

    def _login(self, service_name: str, credential: CertificateCredential) -> Result[AccessTicket]:
        url = self._endpoint.url_for(credential.environment)
        log.info("wsaa.login_started", service=service_name, environment=credential.environment)
        ticket = build_ticket(service_name, self._clock)

        return (
            self._signer.sign(ticket, credential)
            .flat_map(
                lambda signed_cms: self._transport.call(
                    url,
                    login_envelope(signed_cms, self._endpoint),
                    soap_action="",
                    version=self._endpoint.soap_version,
                )
            )
            .flat_map(
                lambda root: parse_login_response(
                    root,
                    service_name,
                    obtained_at=self._clock(),
                    default_lifetime=self._default_lifetime,
                    refresh_margin=self._refresh_margin,
                )
            )
            .peek(
                lambda access: log.info(
                    "wsaa.ticket_acquired",
                    service=service_name,
                    valid_until=access.valid_until.isoformat(),
                )
            )
            .peek_failure(
                lambda error: log.warning(
                    "wsaa.login_failed",
                    service=service_name,
                    error_code=error.code.value,
                    message=error.message,
                )
            )
        )
