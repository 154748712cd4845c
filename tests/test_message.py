import pytest

from sipstack.message import (
    Header,
    Method,
    Request,
    Response,
    StatusKind,
    Via,
    header_param,
    make_ack,
    make_request,
    make_response,
    status_kind,
)
from sipstack.types import SipError

VIA_TEXT = "SIP/2.0/TLS sip.restsend.com:5061;branch=z9hG4bKnashd92"


def _request():
    return Request(
        method=Method.INVITE,
        uri="sip:bob@example.com",
        headers=[
            Header("Via", VIA_TEXT),
            Header("CSeq", "1 INVITE"),
            Header("From", "Alice <sip:alice@example.com>;tag=1928301774"),
            Header("To", "Bob <sip:bob@example.com>"),
            Header("Call-ID", "abc@example.com"),
            Header("Max-Forwards", "70"),
            Header("Contact", "<sip:alice@example.com>"),
        ],
    )


def test_via_round_trip_and_branch():
    via = Via.parse(VIA_TEXT)
    assert str(via) == VIA_TEXT
    assert via.branch() == "z9hG4bKnashd92"
    assert via.transport == "TLS"
    assert via.host_with_port == "sip.restsend.com:5061"


def test_via_without_branch():
    via = Via.parse("SIP/2.0/UDP test.example.com:5060;rport")
    assert via.branch() is None
    assert str(via) == "SIP/2.0/UDP test.example.com:5060;rport"


@pytest.mark.parametrize("text", ["garbage", "SIP/2.0 host", "SIP/2.0/UDP ;branch=x"])
def test_via_invalid(text):
    with pytest.raises(SipError):
        Via.parse(text)


def test_status_kind():
    assert status_kind(100) is StatusKind.PROVISIONAL
    assert status_kind(200) is StatusKind.SUCCESSFUL
    assert status_kind(481) is StatusKind.REQUEST_FAILURE
    assert status_kind(603) is StatusKind.GLOBAL_FAILURE
    with pytest.raises(ValueError):
        status_kind(700)


def test_header_param_ignores_uri_params():
    value = "Bob <sip:bob@example.com;transport=udp>;tag=abc"
    assert header_param(value, "tag") == "abc"
    assert header_param(value, "transport") is None
    assert header_param("sip:bob@example.com", "tag") is None


def test_method_parse_case_insensitive():
    assert Method("register") is Method.REGISTER
    assert str(Method.INVITE) == "INVITE"


def test_header_lookup_and_unique_push():
    req = _request()
    assert req.header("call-id") == "abc@example.com"
    req.unique_push(Header("CSeq", "2 INVITE"))
    assert req.header("CSeq") == "2 INVITE"
    assert [h.name for h in req.headers].count("CSeq") == 1
    assert req.headers[-1] == Header("CSeq", "2 INVITE")
    with pytest.raises(SipError):
        req.header("Authorization")


def test_compact_header_names():
    req = Request(method=Method.OPTIONS, uri="sip:example.com", headers=[Header("v", VIA_TEXT)])
    assert req.header("Via") == VIA_TEXT


def test_make_request_header_order():
    req = make_request(
        Method.INVITE,
        "sip:bob@example.com",
        Via.parse(VIA_TEXT),
        "Alice <sip:alice@example.com>;tag=1",
        "Bob <sip:bob@example.com>",
        1,
        "agent",
        "example.org",
    )
    assert [h.name for h in req.headers] == [
        "Via", "Call-ID", "From", "To", "CSeq", "Max-Forwards", "User-Agent",
    ]
    assert req.header("CSeq") == "1 INVITE"
    assert req.header("Max-Forwards") == "70"
    assert req.header("Call-ID").endswith("@example.org")
    assert req.header("Via") == VIA_TEXT


def test_make_response_filters_headers():
    req = _request()
    resp = make_response(req, 200, "agent", b"v=0")
    names = [h.name for h in resp.headers]
    assert "Contact" not in names
    assert names[-1] == "User-Agent"
    assert resp.header("User-Agent") == "agent"
    assert resp.header("Via") == VIA_TEXT
    assert resp.body == b"v=0"
    assert resp.kind is StatusKind.SUCCESSFUL


def test_make_ack():
    resp = make_response(_request(), 486, "agent")
    ack = make_ack("sip:bob@example.com", resp, "agent")
    assert ack.method is Method.ACK
    assert ack.uri == "sip:bob@example.com"
    assert ack.header("Call-ID") == "abc@example.com"
    assert ack.body == b""


def test_wire_rendering():
    req = Request(method=Method.REGISTER, uri="sip:example.com", headers=[Header("Via", VIA_TEXT)])
    text = str(req)
    assert text.startswith("REGISTER sip:example.com SIP/2.0\r\n")
    assert f"Via: {VIA_TEXT}\r\n" in text
    assert text.endswith("\r\n\r\n")
    resp = Response(status_code=200, headers=[Header("Via", VIA_TEXT)])
    assert str(resp).startswith("SIP/2.0 200 OK\r\n")