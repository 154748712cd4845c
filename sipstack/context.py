"""Shared state and services that transactions rely on."""

from __future__ import annotations

import enum
import inspect
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Optional, Union

from . import message as _message
from .message import Request, Response
from .timer import Timer
from .types import TransactionTimer

SipMessage = Union[Request, Response]
Sink = Callable[[SipMessage, Optional[str]], Optional[Awaitable[None]]]


@dataclass(eq=False)
class Connection:
    """A transport connection that transactions send messages through.

    Every sent message is recorded in ``sent`` together with its explicit
    destination; if a ``sink`` is given it is called as well and awaited
    when it returns an awaitable.
    """

    address: str
    reliable: bool = False
    sink: Optional[Sink] = None
    sent: list[tuple[SipMessage, Optional[str]]] = field(default_factory=list)

    async def send(self, message: SipMessage, destination: str | None = None) -> None:
        """Send ``message``, to ``destination`` when the transport needs one."""
        self.sent.append((message, destination))
        if self.sink is not None:
            result = self.sink(message, destination)
            if inspect.isawaitable(result):
                await result


@dataclass
class EndpointOptions:
    """Timer values in seconds and identifier settings."""

    t1: float = 0.5
    t4: float = 5.0
    t1x64: float = 32.0
    timerb: float = 32.0
    callid_suffix: str | None = None

    def __post_init__(self) -> None:
        for name in ("t1", "t4", "t1x64", "timerb"):
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative")


class EventKind(enum.Enum):
    """What a transaction event carries."""

    RECEIVED = "Received"
    TIMER = "Timer"
    RESPOND = "Respond"
    TERMINATE = "Terminate"


@dataclass(frozen=True)
class TransactionEvent:
    """An event delivered to a transaction's queue."""

    kind: EventKind
    message: Optional[SipMessage] = None
    connection: Optional[Connection] = None
    timer: Optional[TransactionTimer] = None

    def __post_init__(self) -> None:
        if self.kind is EventKind.RECEIVED and self.message is None:
            raise ValueError("a received event needs a message")
        if self.kind is EventKind.RESPOND and not isinstance(self.message, Response):
            raise ValueError("a respond event needs a response")
        if self.kind is EventKind.TIMER and self.timer is None:
            raise ValueError("a timer event needs a timer")
        if self.kind is not EventKind.TIMER and self.timer is not None:
            raise ValueError(f"a {self.kind.value} event carries no timer")
        if self.kind is EventKind.TERMINATE and self.message is not None:
            raise ValueError("a terminate event carries no message")

    @classmethod
    def received(
        cls, message: SipMessage, connection: Connection | None = None
    ) -> TransactionEvent:
        return cls(EventKind.RECEIVED, message=message, connection=connection)

    @classmethod
    def timer_fired(cls, timer: TransactionTimer) -> TransactionEvent:
        return cls(EventKind.TIMER, timer=timer)

    @classmethod
    def respond_with(cls, response: Response) -> TransactionEvent:
        return cls(EventKind.RESPOND, message=response)

    @classmethod
    def terminate(cls) -> TransactionEvent:
        return cls(EventKind.TERMINATE)


class TransactionContext:
    """Timers, options, message builders and the registry of live transactions.

    ``inspector`` may be any object with ``before_send(message)`` and
    ``after_received(message)`` methods returning the message to use.
    """

    def __init__(
        self,
        user_agent: str,
        options: EndpointOptions | None = None,
        inspector: Any = None,
    ) -> None:
        self.user_agent = user_agent
        self.options = options if options is not None else EndpointOptions()
        self.inspector = inspector
        self.timers: Timer[TransactionTimer] = Timer()
        self.transactions: dict[Any, Any] = {}
        self.finished_transactions: dict[Any, Optional[SipMessage]] = {}
        self._lock = threading.Lock()

    def attach_transaction(self, key: Any, sender: Any) -> None:
        """Register the event sender of a live transaction under ``key``."""
        with self._lock:
            self.transactions[key] = sender
            self.finished_transactions.pop(key, None)

    def detach_transaction(self, key: Any, last_message: SipMessage | None = None) -> None:
        """Forget a live transaction, remembering its last message for retransmits."""
        with self._lock:
            self.transactions.pop(key, None)
            self.finished_transactions[key] = last_message

    def make_response(
        self, request: Request, status_code: int, body: bytes | None = None
    ) -> Response:
        """Build a response to ``request`` carrying this endpoint's User-Agent."""
        return _message.make_response(request, status_code, self.user_agent, body)

    def make_ack(self, uri: str, response: Response) -> Request:
        """Build an ACK for ``response`` carrying this endpoint's User-Agent."""
        return _message.make_ack(uri, response, self.user_agent)

    def prepare_outgoing(self, message: SipMessage) -> SipMessage:
        """Pass an outgoing message through the inspector, if there is one."""
        if self.inspector is None:
            return message
        return self.inspector.before_send(message)

    def prepare_incoming(self, message: SipMessage) -> SipMessage:
        """Pass an incoming message through the inspector, if there is one."""
        if self.inspector is None:
            return message
        return self.inspector.after_received(message)