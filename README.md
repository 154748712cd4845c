# sipstack

sipstack is a SIP transaction layer for asyncio. It follows the client and
server transaction state machines of RFC 3261 section 17 and has no
dependencies outside the standard library.

## Modules

- `sipstack.types` holds the shared types. These are `TransactionState`,
  `TransactionType`, `TimerKind`, `TransactionTimer` and the errors `SipError`
  and `TransactionError`. It also has helpers that make random identifiers:
  `random_text`, `make_via_branch` (a `z9hG4bK` value), `make_call_id` and
  `make_tag`.
- `sipstack.timer` provides `Timer`, a thread-safe queue of values that fall
  due at given `time.monotonic()` deadlines. Its methods are `timeout`,
  `timeout_at`, `cancel` and `poll`, and `len()` gives the number of pending
  tasks.
- `sipstack.message` provides `Method`, `StatusKind`, `Header`, `Via`,
  `Request` and `Response`. It also has the builders `make_request`,
  `make_response` and `make_ack`, plus `status_kind` and `header_param`.
- `sipstack.key` provides `TransactionRole` and `TransactionKey`.
- `sipstack.context` provides `Connection`, `EndpointOptions`, `EventKind`,
  `TransactionEvent` and `TransactionContext`.
- `sipstack.transaction` provides `Transaction`, the state machine itself.

## Installation

```
pip install .
```

## Messages and transaction keys

```python
from sipstack.key import TransactionKey, TransactionRole
from sipstack.message import Header, Method, Request

request = Request(
    method=Method.REGISTER,
    uri="sips:example.com",
    headers=[
        Header("Via", "SIP/2.0/TLS sip.example.com:5061;branch=z9hG4bKnashd92"),
        Header("CSeq", "2 REGISTER"),
        Header("From", "Bob <sips:bob@example.com>;tag=ja743ks76zlflH"),
        Header("Call-ID", "call-1@example.com"),
    ],
)
key = TransactionKey.from_request(request, TransactionRole.CLIENT)
print(key)  # c.REGISTER_2_call-1@example.com_ja743ks76zlflH_z9hG4bKnashd92
```

A key is built from five parts: the role, the method, the CSeq number, the
Call-ID, the From tag, and the Via branch. If the Via has no branch, the key
uses the Via host and port and ends in `.2543`. When the role is
`TransactionRole.SERVER`, an ACK or CANCEL is keyed as INVITE, so it matches the
transaction of its INVITE. A missing From tag raises `SipError`, and so does a
malformed Via or CSeq.

Header lookups ignore case and accept compact forms, so `v` finds `Via`.
`unique_push` replaces every header of the same name. `str(request)` renders the
message in wire format.

The builders work as follows:

- `make_request` adds Via, Call-ID, From, To, CSeq, Max-Forwards (70) and
  User-Agent, in that order.
- `make_response` copies Via, Call-ID, From, To, Max-Forwards and CSeq from the
  request, then adds User-Agent.
- `make_ack` does the same as `make_response`, but starting from a response.

## Timers

```python
import time
from sipstack.timer import Timer

timer = Timer()
task_id = timer.timeout(0.5, "retransmit")   # ids start at 1
timer.cancel(task_id)                        # -> "retransmit"; None if unknown
timer.timeout(0.0, "due now")
timer.poll(time.monotonic())                 # -> ["due now"], earliest first
```

## Transactions

A `TransactionContext` holds the user agent string and the `EndpointOptions`.
The options are `t1`, `t4`, `t1x64` and `timerb` (all in seconds) and
`callid_suffix`. The context also holds the shared `Timer` and the registry of
live transactions. That registry is `context.transactions`, which maps each
`TransactionKey` to the transaction's event queue. It also keeps
`context.finished_transactions`, which holds the last message of each closed
transaction. You can pass an optional inspector to the context. It is any
object with `before_send(message)` and `after_received(message)`, and it sees
every message that goes out and every message handed to the caller.

A `Connection` records each message it sends in `sent`. If you give it a
`sink` callable, it also calls that sink, and awaits the result when it is
awaitable. Set `reliable=True` for stream transports. On a reliable transport,
timer G is not started, and timer A is left alone when the client enters
Trying.

Here is a server transaction:

```python
from sipstack.context import Connection, EndpointOptions, TransactionContext
from sipstack.transaction import Transaction

context = TransactionContext("my-agent", EndpointOptions(), None)
connection = Connection("127.0.0.1:5060")
tx = Transaction.new_server(key, request, context, connection)
await tx.send_trying()     # 100 Trying
await tx.reply(200)        # adds a To tag if missing; non-INVITE -> Terminated
```

`reply_with(status_code, headers, body)` adds extra headers and a body to the
reply. `respond(response)` sends a response that you built yourself.

A client transaction is created with `Transaction.new_client`, and it needs a
connection. Call `await tx.send()` first. It sets Content-Length, sends the
request and moves to Trying. After that, call `await tx.receive()` in a loop;
it returns each response and returns `None` once the transaction terminates.

- A final response to a client INVITE that arrives with a connection triggers
  an automatic ACK.
- `send_cancel(cancel)` is valid on a client INVITE while it is in Calling,
  Trying or Proceeding.

Steps that are used wrongly raise `TransactionError`. Examples are `send` on a
server transaction, `respond` on a client one, and a transition that is not
allowed.

Call `tx.close()` when you are done with a transaction, or use it as a context
manager. Closing cancels the transaction's timers and detaches it from the
context.

## What the package does not do

The package has no transport and no endpoint loop:

- It opens no sockets and does no DNS lookup. It cannot parse messages from
  wire text.
- It does not dispatch incoming messages or fired timers by itself.

The application must provide a `Connection` that actually delivers messages.
It must parse incoming traffic into `Request` and `Response` objects. It must
also feed events to each transaction's queue, for example:

```python
import time
from sipstack.context import TransactionEvent

# incoming message for a known transaction
context.transactions[key].put_nowait(TransactionEvent.received(message, connection))

# fired timers
for fired in context.timers.poll(time.monotonic()):
    queue = context.transactions.get(fired.key)
    if queue is not None:
        queue.put_nowait(TransactionEvent.timer_fired(fired))
```

## Tests

```
pip install .[test]
pytest
```