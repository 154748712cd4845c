import pytest

from sipstack.context import (
    Connection,
    EndpointOptions,
    EventKind,
    TransactionContext,
    TransactionEvent,
)
from sipstack.message import Header, Method, Request, Response
from sipstack.types import TimerKind, TransactionTimer


def _request(method=Method.INVITE):
    return Request(
        method=method,
        uri="sip:bob@example.com",
        headers=[
            Header("Via", "SIP/2.0/UDP test.example.com:5060;branch=z9hG4bKnashds"),
            Header("CSeq", f"1 {method}"),
            Header("From", "Alice <sip:alice@example.com>;tag=1928301774"),
            Header("To", "Bob <sip:bob@example.com>"),
            Header("Call-ID", "callid-1@example.com"),
            Header("Max-Forwards", "70"),
            Header("Contact", "<sip:alice@example.com>"),
        ],
    )


class _Tagger:
    def before_send(self, message):
        message.unique_push(Header("X-Out", "yes"))
        return message

    def after_received(self, message):
        message.unique_push(Header("X-In", "yes"))
        return message


@pytest.mark.asyncio
async def test_connection_records_sent_messages():
    conn = Connection("127.0.0.1:5060")
    req = _request()
    await conn.send(req, "127.0.0.1:5070")
    await conn.send(req)
    assert conn.sent == [(req, "127.0.0.1:5070"), (req, None)]
    assert conn.reliable is False


@pytest.mark.asyncio
async def test_connection_calls_sync_and_async_sinks():
    seen = []

    def sync_sink(message, destination):
        seen.append(("sync", message, destination))

    async def async_sink(message, destination):
        seen.append(("async", message, destination))

    sync_conn = Connection("a", sink=sync_sink)
    async_conn = Connection("b", reliable=True, sink=async_sink)
    first = _request()
    second = _request(Method.REGISTER)
    await sync_conn.send(first, "d1")
    await async_conn.send(second, "d2")

    assert sync_conn.reliable is False
    assert async_conn.reliable is True
    assert [(tag, dest) for tag, _, dest in seen] == [("sync", "d1"), ("async", "d2")]
    assert seen[0][1] is first
    assert seen[1][1] is second


def test_options_defaults_follow_rfc_timers():
    options = EndpointOptions()
    assert options.t1 == 0.5
    assert options.t1x64 == 64 * options.t1
    assert options.timerb == options.t1x64
    assert options.callid_suffix is None


def test_options_reject_negative_values():
    with pytest.raises(ValueError):
        EndpointOptions(t1=-1.0)


def test_event_constructors_set_kind_and_payload():
    req = _request()
    conn = Connection("x")
    received = TransactionEvent.received(req, conn)
    assert received.kind is EventKind.RECEIVED
    assert received.message is req and received.connection is conn

    timer = TransactionTimer(TimerKind.B, "key")
    fired = TransactionEvent.timer_fired(timer)
    assert fired.kind is EventKind.TIMER and fired.timer == timer

    resp = Response(status_code=200)
    respond = TransactionEvent.respond_with(resp)
    assert respond.kind is EventKind.RESPOND and respond.message is resp

    assert TransactionEvent.terminate().kind is EventKind.TERMINATE


def test_event_validation():
    with pytest.raises(ValueError):
        TransactionEvent(EventKind.RECEIVED)
    with pytest.raises(ValueError):
        TransactionEvent(EventKind.TIMER)
    with pytest.raises(ValueError):
        TransactionEvent(EventKind.RESPOND, message=_request())
    with pytest.raises(ValueError):
        TransactionEvent(EventKind.TERMINATE, message=_request())


def test_attach_and_detach_transaction():
    ctx = TransactionContext("sipstack-test")
    sender = object()
    ctx.attach_transaction("k1", sender)
    assert ctx.transactions == {"k1": sender}
    assert "k1" not in ctx.finished_transactions

    resp = Response(status_code=200)
    ctx.detach_transaction("k1", resp)
    assert ctx.transactions == {}
    assert ctx.finished_transactions["k1"] is resp

    ctx.attach_transaction("k1", sender)
    assert "k1" not in ctx.finished_transactions


def test_make_response_keeps_dialog_headers_and_user_agent():
    ctx = TransactionContext("sipstack-test")
    req = _request()
    resp = ctx.make_response(req, 200, b"v=0")
    names = [h.name for h in resp.headers]
    assert "Contact" not in names
    assert resp.header("User-Agent") == "sipstack-test"
    assert resp.header("Call-ID") == "callid-1@example.com"
    assert resp.body == b"v=0"
    assert resp.status_code == 200


def test_make_ack_builds_ack_request():
    ctx = TransactionContext("sipstack-test")
    resp = ctx.make_response(_request(), 486)
    ack = ctx.make_ack("sip:bob@example.com", resp)
    assert ack.method is Method.ACK
    assert ack.uri == "sip:bob@example.com"
    assert ack.header("From") == "Alice <sip:alice@example.com>;tag=1928301774"
    assert ack.header("User-Agent") == "sipstack-test"


def test_prepare_without_inspector_returns_same_message():
    ctx = TransactionContext("ua")
    req = _request()
    assert ctx.prepare_outgoing(req) is req
    assert ctx.prepare_incoming(req) is req


def test_prepare_with_inspector():
    ctx = TransactionContext("ua", inspector=_Tagger())
    out = ctx.prepare_outgoing(_request())
    incoming = ctx.prepare_incoming(_request())
    assert out.header("X-Out") == "yes"
    assert incoming.header("X-In") == "yes"


def test_context_timers_are_usable():
    ctx = TransactionContext("ua", EndpointOptions(t1=0.25))
    timer = TransactionTimer(TimerKind.A, "k", ctx.options.t1)
    task_id = ctx.timers.timeout(ctx.options.t1, timer)
    assert len(ctx.timers) == 1
    assert ctx.timers.cancel(task_id) == timer
    assert len(ctx.timers) == 0