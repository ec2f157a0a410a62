"""
SOAP transport adapter: envelope construction, HTTP POST and response triage.

Adapter layer: shared by the login, registry and invoicing clients:
  - lxml: envelope building and hardened response parsing (no entities, no network)
  - httpx: one short-lived client per call with an explicit timeout
  - tenacity: exactly one silent retry on timeouts and network errors, unless the
    caller asks for a single attempt and retries on its own terms

Response triage, in order:
  1. body is not well-formed XML  → RESPONSE_PARSE_FAILURE
                                    (NETWORK_FAILURE if the HTTP status is an error)
  2. body carries a SOAP Fault    → AUTHORITY_FAULT (fault text verbatim)
  3. HTTP status is an error      → NETWORK_FAILURE
  4. otherwise                    → Success(parsed root element)
"""

from __future__ import annotations

from collections.abc import Iterator
from enum import StrEnum

import httpx
import structlog
from lxml import etree
from railway import ErrorCode, FailureDescription, Result
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

log = structlog.get_logger()

SOAP11_NS = "http://schemas.xmlsoap.org/soap/envelope/"
SOAP12_NS = "http://www.w3.org/2003/05/soap-envelope"

TRANSIENT_ERRORS: tuple[type[httpx.HTTPError], ...] = (httpx.TimeoutException, httpx.NetworkError)

_PARSER = etree.XMLParser(
    resolve_entities=False,
    no_network=True,
    remove_blank_text=True,
    huge_tree=False,
)


class SoapVersion(StrEnum):
    V11 = "1.1"
    V12 = "1.2"


# ─────────────────────── XML helpers ───────────────────────


def parse_xml(data: bytes | str) -> etree._Element:
    """Parse a document with the hardened parser. Raises etree.XMLSyntaxError."""
    raw = data.encode("utf-8") if isinstance(data, str) else data
    return etree.fromstring(raw.strip(), parser=_PARSER)


def local_name(element: etree._Element) -> str:
    if not isinstance(element.tag, str):
        # comments and processing instructions
        return ""
    return etree.QName(element).localname


def iter_named(root: etree._Element, name: str) -> Iterator[etree._Element]:
    """Yield every descendant-or-self element whose local name is `name`."""
    for element in root.iter():
        if local_name(element) == name:
            yield element


def find_first(root: etree._Element, name: str) -> etree._Element | None:
    return next(iter_named(root, name), None)


def find_text(root: etree._Element, name: str) -> str | None:
    """Stripped text of the first `name` element; None when absent or blank."""
    element = find_first(root, name)
    if element is None or element.text is None:
        return None
    text = element.text.strip()
    return text or None


def child_text(parent: etree._Element, name: str) -> str | None:
    """Like find_text, but only among direct children of `parent`."""
    for child in parent:
        if local_name(child) == name:
            text = (child.text or "").strip()
            return text or None
    return None


def sub(parent: etree._Element, tag: str, text: object | None = None) -> etree._Element:
    element = etree.SubElement(parent, tag)
    if text is not None:
        element.text = str(text)
    return element


def soap_envelope(payload: etree._Element, version: SoapVersion) -> bytes:
    """Wrap an operation element in a SOAP envelope of the given version."""
    ns = SOAP11_NS if version is SoapVersion.V11 else SOAP12_NS
    envelope = etree.Element(f"{{{ns}}}Envelope", nsmap={"soapenv": ns})
    etree.SubElement(envelope, f"{{{ns}}}Header")
    body = etree.SubElement(envelope, f"{{{ns}}}Body")
    body.append(payload)
    return etree.tostring(envelope, xml_declaration=True, encoding="UTF-8")


def soap_fault_message(root: etree._Element) -> str | None:
    """Return the text of a SOAP 1.1 or 1.2 Fault, or None when there is none."""
    fault = find_first(root, "Fault")
    if fault is None:
        return None
    code = find_text(fault, "faultcode") or find_text(fault, "Value")
    reason = find_text(fault, "faultstring") or find_text(fault, "Text")
    parts = [part for part in (code, reason) if part]
    return ": ".join(parts) if parts else "SOAP fault without description"


# ─────────────────────── Transport ───────────────────────


class HttpSoapTransport:
    """
    POST SOAP envelopes and return the parsed response document.

    All transport exceptions are captured into Result failures; nothing
    raises past `call`.
    """

    def __init__(self, timeout: float = 30.0) -> None:
        self._timeout = timeout

    def call(
        self,
        url: str,
        envelope: bytes,
        *,
        soap_action: str,
        version: SoapVersion,
        timeout: float | None = None,
        retry: bool = True,
    ) -> Result[etree._Element]:
        """
        POST `envelope` and triage the answer.

        With `retry=False` a transient error surfaces after one attempt, so a
        caller that must know whether its request was resent can retry itself.
        """
        headers = _headers(soap_action, version)
        effective_timeout = timeout if timeout is not None else self._timeout
        post = self._do_post if retry else self._post_once
        try:
            response = post(url, envelope, headers, effective_timeout)
        except httpx.TimeoutException as e:
            log.warning("soap.timeout", url=url, timeout_seconds=effective_timeout)
            return Result.failure(
                ErrorCode.NETWORK_FAILURE,
                f"Timed out after {effective_timeout}s calling {url}",
                e,
            )
        except httpx.HTTPError as e:
            log.warning("soap.transport_error", url=url, error=str(e))
            return Result.failure(
                ErrorCode.NETWORK_FAILURE,
                f"Transport error calling {url}: {e}",
                e,
            )
        return _interpret(url, response)

    @retry(
        stop=stop_after_attempt(2),
        wait=wait_exponential(multiplier=1, min=0.1, max=2),
        retry=retry_if_exception_type(TRANSIENT_ERRORS),
        reraise=True,
    )
    def _do_post(
        self,
        url: str,
        envelope: bytes,
        headers: dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        """HTTP call with one retry; exceptions are mapped by `call`."""
        return self._post_once(url, envelope, headers, timeout)

    def _post_once(
        self,
        url: str,
        envelope: bytes,
        headers: dict[str, str],
        timeout: float,
    ) -> httpx.Response:
        with httpx.Client(timeout=timeout) as client:
            response = client.post(url, content=envelope, headers=headers)
            log.debug("soap.response", url=url, status=response.status_code)
            return response


def is_transient_failure(error: FailureDescription) -> bool:
    """True when `error` came from a timeout or connection problem, not from a reply."""
    return error.code is ErrorCode.NETWORK_FAILURE and isinstance(
        error.exception, TRANSIENT_ERRORS
    )


def _headers(soap_action: str, version: SoapVersion) -> dict[str, str]:
    if version is SoapVersion.V11:
        return {
            "Content-Type": "text/xml; charset=utf-8",
            "SOAPAction": f'"{soap_action}"',
        }
    return {
        "Content-Type": f'application/soap+xml; charset=utf-8; action="{soap_action}"',
        "SOAPAction": soap_action,
    }


def _interpret(url: str, response: httpx.Response) -> Result[etree._Element]:
    try:
        root = parse_xml(response.content)
    except etree.XMLSyntaxError as e:
        if response.is_success:
            return Result.failure(
                ErrorCode.RESPONSE_PARSE_FAILURE,
                f"Response from {url} is not well-formed XML",
                e,
            )
        return Result.failure(
            ErrorCode.NETWORK_FAILURE,
            f"HTTP {response.status_code} from {url}",
        )

    fault = soap_fault_message(root)
    if fault is not None:
        log.warning("soap.fault", url=url, status=response.status_code, fault=fault)
        return Result.failure(ErrorCode.AUTHORITY_FAULT, fault)

    if not response.is_success:
        return Result.failure(
            ErrorCode.NETWORK_FAILURE,
            f"HTTP {response.status_code} from {url}",
        )
    return Result.success(root)
