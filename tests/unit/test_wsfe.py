"""
Unit tests for the invoicing clients (WSFEv1).

Uses respx to mock the invoicing endpoint (never makes real HTTP requests).

Test categories:
  - Last number: CbteNro parsing, Errors → AUTHORITY_FAULT, missing → RESPONSE_PARSE_FAILURE
  - Request body: Auth block, header, detail amounts, VAT array, C-class omission
  - Outcomes: A → Authorized, R → Rejected, Reproceso/10016 → duplicate (CAE echoed)
  - Lost replies: one resend; a reprocessed answer to it is Authorized
  - Local checks: validation and unmapped codes never reach the network
"""

from __future__ import annotations

from datetime import date
from decimal import Decimal

import httpx
import pytest
import respx
from lxml import etree
from railway import ErrorCode, ResultAssertions

from afip_ws.adapters.soap import HttpSoapTransport, parse_xml
from afip_ws.adapters.wsfe import (
    WsfeAuthorizationClient,
    WsfeSequenceClient,
    format_amount,
    parse_authorization_response,
)
from afip_ws.domain.models import (
    FINAL_CONSUMER_DOC_TYPE,
    AccessTicket,
    Authorized,
    CertificateCredential,
    InvoiceAuthorizationRequest,
    Rejected,
    TaxBreakdownLine,
)
from afip_ws.endpoints import WSFE
from tests.conftest import SOAP12_NS, soap_response

WSFE_URL = WSFE.test_url
NS = WSFE.namespace


def _wsfe_response(body: str) -> str:
    return soap_response(body, SOAP12_NS)


def _last_number_response(inner: str) -> str:
    return _wsfe_response(
        f'<FECompUltimoAutorizadoResponse xmlns="{NS}"><FECompUltimoAutorizadoResult>'
        f"{inner}</FECompUltimoAutorizadoResult></FECompUltimoAutorizadoResponse>"
    )


def _cae_response(
    result: str,
    detail_extra: str = "",
    reproceso: str = "N",
    errors: str = "",
    with_detail: bool = True,
) -> str:
    detail = (
        "<FeDetResp><FECAEDetResponse><Concepto>1</Concepto><DocTipo>99</DocTipo>"
        "<DocNro>0</DocNro><CbteDesde>146</CbteDesde><CbteHasta>146</CbteHasta>"
        f"<CbteFch>20250115</CbteFch><Resultado>{result}</Resultado>{detail_extra}"
        "</FECAEDetResponse></FeDetResp>"
        if with_detail
        else ""
    )
    return _wsfe_response(
        f'<FECAESolicitarResponse xmlns="{NS}"><FECAESolicitarResult>'
        "<FeCabResp><Cuit>20123456789</Cuit><PtoVta>1</PtoVta><CbteTipo>6</CbteTipo>"
        f"<FchProceso>20250115100005</FchProceso><CantReg>1</CantReg>"
        f"<Resultado>{result}</Resultado><Reproceso>{reproceso}</Reproceso></FeCabResp>"
        f"{detail}{errors}</FECAESolicitarResult></FECAESolicitarResponse>"
    )


AUTHORIZED_DETAIL = "<CAE>75034567890123</CAE><CAEFchVto>20250125</CAEFchVto>"


def _invoice(**overrides: object) -> InvoiceAuthorizationRequest:
    fields: dict[str, object] = {
        "point_of_sale": 1,
        "invoice_type": "factura_b",
        "invoice_number": 146,
        "issue_date": date(2025, 1, 15),
        "net_amount": Decimal("1000"),
        "tax_amount": Decimal("210"),
        "total_amount": Decimal("1210"),
        "tax_breakdown": (TaxBreakdownLine(Decimal("21"), Decimal("1000"), Decimal("210")),),
    }
    fields.update(overrides)
    return InvoiceAuthorizationRequest(**fields)  # type: ignore[arg-type]


@pytest.fixture()
def transport() -> HttpSoapTransport:
    return HttpSoapTransport(timeout=5)


@pytest.fixture()
def sequence_client(transport: HttpSoapTransport) -> WsfeSequenceClient:
    return WsfeSequenceClient(transport)


@pytest.fixture()
def authorization_client(transport: HttpSoapTransport) -> WsfeAuthorizationClient:
    return WsfeAuthorizationClient(transport)


def _sent(route: respx.Route) -> etree._Element:
    return etree.fromstring(route.calls.last.request.content)


def _text(root: etree._Element, path: str) -> str | None:
    """Find by a slash-separated path of local names in the service namespace."""
    xpath = ".//" + "/".join(f"{{{NS}}}{part}" for part in path.split("/"))
    return root.findtext(xpath)


# ─────────────────────── Last authorized number ───────────────────────


class TestLastAuthorizedNumber:
    @respx.mock
    def test_returns_cbte_nro(
        self,
        sequence_client: WsfeSequenceClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        """
        GIVEN the service reports 145 as last number for PtoVta 1 / type 6
        WHEN the client queries it
        THEN it returns 145 and the request carried Auth, PtoVta and CbteTipo.
        """
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(
                200,
                text=_last_number_response(
                    "<PtoVta>1</PtoVta><CbteTipo>6</CbteTipo><CbteNro>145</CbteNro>"
                ),
            )
        )

        result = sequence_client.last_authorized_number(1, 6, access_ticket, credential)

        assert ResultAssertions.assert_success(result) == 145
        sent = _sent(route)
        assert _text(sent, "Auth/Token") == "T0KEN"
        assert _text(sent, "Auth/Sign") == "S1GN"
        assert _text(sent, "Auth/Cuit") == credential.tax_id
        assert _text(sent, "FECompUltimoAutorizado/PtoVta") == "1"
        assert _text(sent, "FECompUltimoAutorizado/CbteTipo") == "6"
        assert "FECompUltimoAutorizado" in route.calls.last.request.headers["Content-Type"]

    @respx.mock
    def test_zero_when_nothing_authorized_yet(
        self,
        sequence_client: WsfeSequenceClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_last_number_response("<CbteNro>0</CbteNro>"))
        )
        result = sequence_client.last_authorized_number(1, 6, access_ticket, credential)
        assert ResultAssertions.assert_success(result) == 0

    @respx.mock
    def test_errors_are_authority_fault(
        self,
        sequence_client: WsfeSequenceClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        respx.post(WSFE_URL).mock(
            return_value=httpx.Response(
                200,
                text=_last_number_response(
                    "<CbteNro>0</CbteNro><Errors><Err><Code>600</Code>"
                    "<Msg>ValidacionDeToken: No validaron las firmas digitales</Msg>"
                    "</Err></Errors>"
                ),
            )
        )

        result = sequence_client.last_authorized_number(1, 6, access_ticket, credential)

        error = ResultAssertions.assert_failure(result, ErrorCode.AUTHORITY_FAULT)
        assert error.message == "600: ValidacionDeToken: No validaron las firmas digitales"

    @respx.mock
    def test_missing_number_is_parse_failure(
        self,
        sequence_client: WsfeSequenceClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_last_number_response("<PtoVta>1</PtoVta>"))
        )
        result = sequence_client.last_authorized_number(1, 6, access_ticket, credential)
        ResultAssertions.assert_failure(result, ErrorCode.RESPONSE_PARSE_FAILURE)


# ─────────────────────── Authorization request ───────────────────────


class TestAuthorizationRequestBody:
    @respx.mock
    def test_header_and_detail(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        authorization_client.authorize(_invoice(), access_ticket, credential)

        sent = _sent(route)
        assert sent.tag == f"{{{SOAP12_NS}}}Envelope"
        assert _text(sent, "FeCabReq/CantReg") == "1"
        assert _text(sent, "FeCabReq/PtoVta") == "1"
        assert _text(sent, "FeCabReq/CbteTipo") == "6"
        detail = "FECAEDetRequest/"
        assert _text(sent, detail + "Concepto") == "1"
        assert _text(sent, detail + "DocTipo") == str(FINAL_CONSUMER_DOC_TYPE)
        assert _text(sent, detail + "DocNro") == "0"
        assert _text(sent, detail + "CbteDesde") == "146"
        assert _text(sent, detail + "CbteHasta") == "146"
        assert _text(sent, detail + "CbteFch") == "20250115"
        assert _text(sent, detail + "ImpTotal") == "1210.00"
        assert _text(sent, detail + "ImpNeto") == "1000.00"
        assert _text(sent, detail + "ImpIVA") == "210.00"
        assert _text(sent, detail + "ImpTotConc") == "0.00"
        assert _text(sent, detail + "MonId") == "PES"
        assert _text(sent, detail + "Iva/AlicIva/Id") == "5"
        assert _text(sent, detail + "Iva/AlicIva/BaseImp") == "1000.00"
        assert _text(sent, detail + "Iva/AlicIva/Importe") == "210.00"
        assert sent.find(f".//{{{NS}}}FchServDesde") is None

    @respx.mock
    def test_one_iva_element_with_a_line_per_rate(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )
        invoice = _invoice(
            net_amount=Decimal("1500"),
            tax_amount=Decimal("262.50"),
            total_amount=Decimal("1762.50"),
            tax_breakdown=(
                TaxBreakdownLine(Decimal("21"), Decimal("1000"), Decimal("210")),
                TaxBreakdownLine(Decimal("10.5"), Decimal("500"), Decimal("52.50")),
            ),
        )

        authorization_client.authorize(invoice, access_ticket, credential)

        sent = _sent(route)
        assert len(sent.findall(f".//{{{NS}}}Iva")) == 1
        ids = [e.text for e in sent.findall(f".//{{{NS}}}AlicIva/{{{NS}}}Id")]
        assert ids == ["5", "4"]

    @respx.mock
    def test_c_class_invoice_has_no_vat_array(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )
        invoice = _invoice(
            invoice_type="factura_c",
            net_amount=Decimal("1000"),
            tax_amount=Decimal("0"),
            total_amount=Decimal("1000"),
            tax_breakdown=(),
        )

        result = authorization_client.authorize(invoice, access_ticket, credential)

        ResultAssertions.assert_success(result)
        sent = _sent(route)
        assert _text(sent, "FeCabReq/CbteTipo") == "11"
        assert sent.find(f".//{{{NS}}}Iva") is None

    @respx.mock
    def test_service_concept_sends_service_dates(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        authorization_client.authorize(_invoice(concept=2), access_ticket, credential)

        sent = _sent(route)
        assert _text(sent, "FECAEDetRequest/FchServDesde") == "20250115"
        assert _text(sent, "FECAEDetRequest/FchVtoPago") == "20250115"


# ─────────────────────── Authorization outcomes ───────────────────────


class TestAuthorizationOutcomes:
    @respx.mock
    def test_approved_returns_cae_and_expiry(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        """
        GIVEN the service approves the invoice (Resultado A)
        WHEN the response is parsed
        THEN an Authorized result carries the CAE and its expiration date.
        """
        respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        outcome = ResultAssertions.assert_success(
            authorization_client.authorize(_invoice(), access_ticket, credential)
        )

        assert isinstance(outcome, Authorized)
        assert outcome.authorization_code == "75034567890123"
        assert outcome.expiration_date == date(2025, 1, 25)

    def test_approved_with_observations(self) -> None:
        detail = (
            AUTHORIZED_DETAIL + "<Observaciones><Obs><Code>10217</Code>"
            "<Msg>El credito fiscal discriminado no es computable</Msg></Obs></Observaciones>"
        )
        outcome = ResultAssertions.assert_success(
            parse_authorization_response(parse_xml(_cae_response("A", detail)))
        )
        assert isinstance(outcome, Authorized)
        assert outcome.observations == ("El credito fiscal discriminado no es computable",)

    def test_rejected_carries_observation_reason(self) -> None:
        detail = (
            "<Observaciones><Obs><Code>10048</Code>"
            "<Msg>El campo ImpTotal no coincide con la suma</Msg></Obs></Observaciones>"
        )
        outcome = ResultAssertions.assert_success(
            parse_authorization_response(parse_xml(_cae_response("R", detail)))
        )

        assert isinstance(outcome, Rejected)
        assert outcome.reason == "10048: El campo ImpTotal no coincide con la suma"
        assert outcome.codes == (10048,)
        assert outcome.duplicate is False

    def test_out_of_sequence_code_is_duplicate(self) -> None:
        detail = (
            "<Observaciones><Obs><Code>10016</Code>"
            "<Msg>El numero o fecha del comprobante no se corresponde con el proximo a "
            "autorizar</Msg></Obs></Observaciones>"
        )
        outcome = ResultAssertions.assert_success(
            parse_authorization_response(parse_xml(_cae_response("R", detail)))
        )

        assert isinstance(outcome, Rejected)
        assert outcome.duplicate is True

    @respx.mock
    def test_resubmission_is_reported_as_duplicate_every_time(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        """
        GIVEN number 146 was already authorized
        WHEN the same invoice is submitted twice more
        THEN each answer is Rejected(duplicate=True) carrying the first CAE,
             never a second Authorized result.
        """
        respx.post(WSFE_URL).mock(
            return_value=httpx.Response(
                200, text=_cae_response("A", AUTHORIZED_DETAIL, reproceso="S")
            )
        )

        for _ in range(2):
            outcome = ResultAssertions.assert_success(
                authorization_client.authorize(_invoice(), access_ticket, credential)
            )
            assert isinstance(outcome, Rejected)
            assert outcome.duplicate is True
            assert outcome.authorization_code == "75034567890123"
            assert outcome.expiration_date == date(2025, 1, 25)

    def test_reprocessed_rejection_has_no_echoed_cae(self) -> None:
        outcome = ResultAssertions.assert_success(
            parse_authorization_response(parse_xml(_cae_response("R", reproceso="S")))
        )

        assert isinstance(outcome, Rejected)
        assert outcome.duplicate is True
        assert outcome.authorization_code is None

    def test_errors_without_result_are_authority_fault(self) -> None:
        errors = (
            "<Errors><Err><Code>501</Code><Msg>Error interno de aplicacion</Msg></Err></Errors>"
        )
        body = _wsfe_response(
            f'<FECAESolicitarResponse xmlns="{NS}"><FECAESolicitarResult>{errors}'
            "</FECAESolicitarResult></FECAESolicitarResponse>"
        )
        result = parse_authorization_response(parse_xml(body))

        ResultAssertions.assert_failure(result, ErrorCode.AUTHORITY_FAULT)
        ResultAssertions.assert_failure_message_contains(result, "501: Error interno")

    def test_approved_without_cae_is_parse_failure(self) -> None:
        result = parse_authorization_response(parse_xml(_cae_response("A")))
        ResultAssertions.assert_failure(result, ErrorCode.RESPONSE_PARSE_FAILURE)

    def test_unreadable_expiry_is_parse_failure(self) -> None:
        detail = "<CAE>75034567890123</CAE><CAEFchVto>2025-13-45</CAEFchVto>"
        result = parse_authorization_response(parse_xml(_cae_response("A", detail)))
        ResultAssertions.assert_failure(result, ErrorCode.RESPONSE_PARSE_FAILURE)

    def test_unknown_result_is_parse_failure(self) -> None:
        result = parse_authorization_response(parse_xml(_cae_response("P")))
        ResultAssertions.assert_failure(result, ErrorCode.RESPONSE_PARSE_FAILURE)


# ─────────────────────── Lost replies ───────────────────────


class TestLostReply:
    @respx.mock
    def test_reprocessed_answer_to_own_resend_is_authorized(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        """
        GIVEN the first submission times out after reaching the service
        WHEN the client resends and the service answers Reproceso=S with the CAE
        THEN the caller gets Authorized with that CAE, not a duplicate rejection.
        """
        route = respx.post(WSFE_URL).mock(
            side_effect=[
                httpx.ReadTimeout("reply lost"),
                httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL, reproceso="S")),
            ]
        )

        outcome = ResultAssertions.assert_success(
            authorization_client.authorize(_invoice(), access_ticket, credential)
        )

        assert isinstance(outcome, Authorized)
        assert outcome.authorization_code == "75034567890123"
        assert outcome.expiration_date == date(2025, 1, 25)
        assert route.call_count == 2

    @respx.mock
    def test_resend_sends_the_same_invoice(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            side_effect=[
                httpx.ConnectError("reset"),
                httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL)),
            ]
        )

        authorization_client.authorize(_invoice(), access_ticket, credential)

        first, second = (call.request.content for call in route.calls)
        assert first == second

    @respx.mock
    def test_two_lost_replies_are_network_failure(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(side_effect=httpx.ReadTimeout("reply lost"))

        result = authorization_client.authorize(_invoice(), access_ticket, credential)

        ResultAssertions.assert_failure(result, ErrorCode.NETWORK_FAILURE)
        assert route.call_count == 2

    @respx.mock
    def test_http_error_status_is_not_resent(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(return_value=httpx.Response(503, text="Unavailable"))

        result = authorization_client.authorize(_invoice(), access_ticket, credential)

        ResultAssertions.assert_failure(result, ErrorCode.NETWORK_FAILURE)
        assert route.call_count == 1


# ─────────────────────── Local checks ───────────────────────


class TestLocalChecksBeforeNetwork:
    @respx.mock
    def test_totals_mismatch_never_reaches_the_service(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        result = authorization_client.authorize(
            _invoice(total_amount=Decimal("1300")), access_ticket, credential
        )

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        assert not route.called

    @respx.mock
    def test_unmapped_invoice_type(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        result = authorization_client.authorize(
            _invoice(invoice_type="factura_m"), access_ticket, credential
        )

        ResultAssertions.assert_failure(result, ErrorCode.CONFIGURATION_ERROR)
        assert not route.called

    @respx.mock
    def test_unmapped_tax_rate(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )
        invoice = _invoice(
            tax_amount=Decimal("190"),
            total_amount=Decimal("1190"),
            tax_breakdown=(TaxBreakdownLine(Decimal("19"), Decimal("1000"), Decimal("190")),),
        )

        result = authorization_client.authorize(invoice, access_ticket, credential)

        ResultAssertions.assert_failure(result, ErrorCode.CONFIGURATION_ERROR)
        assert not route.called

    @respx.mock
    def test_c_class_with_tax_is_rejected_locally(
        self,
        authorization_client: WsfeAuthorizationClient,
        access_ticket: AccessTicket,
        credential: CertificateCredential,
    ) -> None:
        route = respx.post(WSFE_URL).mock(
            return_value=httpx.Response(200, text=_cae_response("A", AUTHORIZED_DETAIL))
        )

        result = authorization_client.authorize(
            _invoice(invoice_type="factura_c"), access_ticket, credential
        )

        ResultAssertions.assert_failure(result, ErrorCode.VALIDATION_ERROR)
        assert not route.called


class TestFormatAmount:
    @pytest.mark.parametrize(
        ("amount", "expected"),
        [
            (Decimal("1000"), "1000.00"),
            (Decimal("1000.5"), "1000.50"),
            (Decimal("0.005"), "0.01"),
            (Decimal("262.499"), "262.50"),
        ],
    )
    def test_two_decimals_half_up(self, amount: Decimal, expected: str) -> None:
        assert format_amount(amount) == expected
