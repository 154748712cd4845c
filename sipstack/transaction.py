"""SIP client and server transactions driven by events and timers."""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from .context import Connection, EventKind, SipMessage, TransactionContext, TransactionEvent
from .key import TransactionKey
from .message import Header, Method, Request, Response, StatusKind, header_param
from .types import (
    SipError,
    TimerKind,
    TransactionError,
    TransactionState,
    TransactionTimer,
    TransactionType,
    make_tag,
)

logger = logging.getLogger(__name__)

_S = TransactionState

_ALLOWED_TRANSITIONS = {
    _S.CALLING: frozenset({_S.TRYING, _S.PROCEEDING, _S.COMPLETED, _S.TERMINATED}),
    _S.TRYING: frozenset(
        {_S.TRYING, _S.PROCEEDING, _S.COMPLETED, _S.CONFIRMED, _S.TERMINATED}
    ),
    _S.PROCEEDING: frozenset({_S.COMPLETED, _S.CONFIRMED, _S.TERMINATED}),
    _S.COMPLETED: frozenset({_S.CONFIRMED, _S.TERMINATED}),
    _S.CONFIRMED: frozenset({_S.TERMINATED}),
    _S.TERMINATED: frozenset(),
}

_RECOVERABLE = (SipError, OSError)


class Transaction:
    """One SIP transaction, client or server, and its state machine.

    Events (received messages, fired timers, responses to send and
    termination) arrive on the ``events`` queue and are processed by
    :meth:`receive`, which returns the messages meant for the user.
    """

    def __init__(
        self,
        transaction_type: TransactionType,
        key: TransactionKey,
        original: Request,
        context: TransactionContext,
        connection: Optional[Connection] = None,
    ) -> None:
        self.transaction_type = transaction_type
        self.key = key
        self.original = original
        self.context = context
        self.connection = connection
        self.destination: Optional[str] = None
        self.state = TransactionState.CALLING
        self.last_response: Optional[Response] = None
        self.last_ack: Optional[Request] = None
        self.events: asyncio.Queue[TransactionEvent] = asyncio.Queue()
        self.timer_a: Optional[int] = None
        self.timer_b: Optional[int] = None
        self.timer_d: Optional[int] = None
        self.timer_k: Optional[int] = None
        self.timer_g: Optional[int] = None
        self._cleaned_up = False
        logger.info("transaction created: %s", key)
        context.attach_transaction(key, self.events)

    @classmethod
    def new_client(
        cls,
        key: TransactionKey,
        original: Request,
        context: TransactionContext,
        connection: Optional[Connection] = None,
    ) -> Transaction:
        """Create a client transaction for an outgoing request."""
        if original.method is Method.INVITE:
            tx_type = TransactionType.CLIENT_INVITE
        else:
            tx_type = TransactionType.CLIENT_NON_INVITE
        return cls(tx_type, key, original, context, connection)

    @classmethod
    def new_server(
        cls,
        key: TransactionKey,
        original: Request,
        context: TransactionContext,
        connection: Optional[Connection] = None,
    ) -> Transaction:
        """Create a server transaction for an incoming request."""
        if original.method in (Method.INVITE, Method.ACK):
            tx_type = TransactionType.SERVER_INVITE
        else:
            tx_type = TransactionType.SERVER_NON_INVITE
        return cls(tx_type, key, original, context, connection)

    def _error(self, message: str) -> TransactionError:
        return TransactionError(message, self.key)

    def _require_connection(self) -> Connection:
        if self.connection is None:
            raise self._error("no connection found")
        return self.connection

    async def send(self) -> None:
        """Send the original request of a client transaction."""
        if not self.transaction_type.is_client:
            raise self._error("send is only valid for client transactions")
        connection = self._require_connection()
        self.original.unique_push(Header("Content-Length", str(len(self.original.body))))
        outgoing = self.context.prepare_outgoing(self.original)
        await connection.send(outgoing, self.destination)
        self._transition(TransactionState.TRYING)

    async def reply_with(
        self,
        status_code: int,
        headers: Optional[list[Header]] = None,
        body: Optional[bytes] = None,
    ) -> None:
        """Respond with ``status_code``, extra headers and an optional body.

        Non-provisional responses get a To tag if the request had none.
        """
        if Response(status_code=status_code).kind is not StatusKind.PROVISIONAL:
            to = self.original.header("To")
            if header_param(to, "tag") is None:
                self.original.unique_push(Header("To", f"{to};tag={make_tag()}"))
        response = self.context.make_response(self.original, status_code, body)
        response.headers.extend(headers or [])
        await self.respond(response)

    async def reply(self, status_code: int) -> None:
        """Respond with a bare ``status_code``."""
        await self.reply_with(status_code)

    async def respond(self, response: Response) -> None:
        """Send ``response`` from a server transaction."""
        if not self.transaction_type.is_server:
            raise self._error("respond is only valid for server transactions")
        if response.kind is StatusKind.PROVISIONAL:
            if response.status_code == 100:
                new_state = TransactionState.TRYING
            else:
                new_state = TransactionState.PROCEEDING
        elif self.transaction_type is TransactionType.SERVER_INVITE:
            new_state = TransactionState.COMPLETED
        else:
            new_state = TransactionState.TERMINATED
        self._check_transition(new_state)
        connection = self._require_connection()
        outgoing = self.context.prepare_outgoing(response)
        logger.debug("%s responding with %s", self.key, outgoing)
        await connection.send(outgoing, self.destination)
        if isinstance(outgoing, Response):
            self.last_response = outgoing
        self._transition(new_state)

    def _check_transition(self, target: TransactionState) -> None:
        if target not in _ALLOWED_TRANSITIONS[self.state]:
            raise self._error(f"invalid state transition from {self.state} to {target}")

    async def send_cancel(self, cancel: Request) -> None:
        """Send a CANCEL for a pending client INVITE transaction."""
        if self.transaction_type is not TransactionType.CLIENT_INVITE:
            raise self._error("send_cancel is only valid for client invite transactions")
        if self.state not in (
            TransactionState.CALLING,
            TransactionState.TRYING,
            TransactionState.PROCEEDING,
        ):
            raise self._error(f"invalid state for sending CANCEL {self.state}")
        if self.connection is not None:
            outgoing = self.context.prepare_outgoing(cancel)
            await self.connection.send(outgoing, self.destination)
        self._transition(TransactionState.COMPLETED)

    async def _send_ack(self) -> None:
        if self.transaction_type is not TransactionType.CLIENT_INVITE:
            raise self._error("send_ack is only valid for client invite transactions")
        connection = self._require_connection()
        if self.state is not TransactionState.COMPLETED:
            raise self._error(f"invalid state for sending ACK {self.state}")
        if self.last_ack is not None:
            ack: SipMessage = self.last_ack
        elif self.last_response is not None:
            ack = self.context.make_ack(self.original.uri, self.last_response)
        else:
            raise self._error("no last response found to send ACK")
        outgoing = self.context.prepare_outgoing(ack)
        await connection.send(outgoing, self.destination)
        if isinstance(outgoing, Request):
            self.last_ack = outgoing
        self._transition(TransactionState.TERMINATED)

    async def receive(self) -> Optional[SipMessage]:
        """Process events until a message for the user arrives.

        Returns None once the transaction is told to terminate.
        """
        while True:
            event = await self.events.get()
            if event.kind is EventKind.RECEIVED:
                message = event.message
                if isinstance(message, Request):
                    result = await self._on_received_request(message, event.connection)
                else:
                    result = await self._on_received_response(message, event.connection)
                if result is not None:
                    return self.context.prepare_incoming(result)
            elif event.kind is EventKind.TIMER:
                try:
                    await self._on_timer(event.timer)
                except _RECOVERABLE as exc:
                    logger.debug("%s timer handling failed: %s", self.key, exc)
            elif event.kind is EventKind.RESPOND:
                try:
                    await self.respond(event.message)
                except _RECOVERABLE as exc:
                    logger.debug("%s respond failed: %s", self.key, exc)
            else:
                logger.info("%s received terminate event", self.key)
                return None

    async def send_trying(self) -> None:
        """Send a 100 Trying for a server transaction."""
        response = self.context.make_response(self.original, 100)
        await self.respond(response)

    def is_terminated(self) -> bool:
        return self.state is TransactionState.TERMINATED

    def _inform_tu_response(self, response: Response) -> None:
        self.events.put_nowait(TransactionEvent.received(response))

    async def _send_quietly(self, message: SipMessage) -> None:
        if self.connection is None:
            return
        outgoing = self.context.prepare_outgoing(message)
        try:
            await self.connection.send(outgoing, self.destination)
        except _RECOVERABLE as exc:
            logger.debug("%s send failed: %s", self.key, exc)

    async def _on_received_request(
        self, request: Request, connection: Optional[Connection]
    ) -> Optional[SipMessage]:
        if self.transaction_type.is_client:
            return None
        if self.connection is None and connection is not None:
            self.connection = connection

        if request.method is Method.CANCEL:
            if self.state in (
                TransactionState.PROCEEDING,
                TransactionState.TRYING,
                TransactionState.COMPLETED,
            ):
                await self._send_quietly(self.context.make_response(request, 200))
                return request
            await self._send_quietly(self.context.make_response(request, 481))
            return None

        if self.state in (TransactionState.TRYING, TransactionState.PROCEEDING):
            if self.last_response is not None:
                try:
                    await self.respond(self.last_response)
                except _RECOVERABLE as exc:
                    logger.debug("%s retransmission failed: %s", self.key, exc)
        elif self.state is TransactionState.COMPLETED and request.method is Method.ACK:
            try:
                self._transition(TransactionState.CONFIRMED)
            except _RECOVERABLE as exc:
                logger.debug("%s confirm failed: %s", self.key, exc)
            return request
        return None

    async def _on_received_response(
        self, response: Response, connection: Optional[Connection]
    ) -> Optional[SipMessage]:
        if self.transaction_type.is_server:
            return None
        need_ack = False
        if response.kind is StatusKind.PROVISIONAL:
            if response.status_code == 100:
                new_state = TransactionState.TRYING
            else:
                new_state = TransactionState.PROCEEDING
        elif self.transaction_type is TransactionType.CLIENT_INVITE:
            need_ack = connection is not None
            new_state = TransactionState.COMPLETED
        else:
            new_state = TransactionState.TERMINATED

        if new_state not in _ALLOWED_TRANSITIONS[self.state]:
            return None
        if self.state is new_state:
            return None

        self.last_response = response
        try:
            self._transition(new_state)
        except _RECOVERABLE as exc:
            logger.debug("%s transition failed: %s", self.key, exc)
        if need_ack:
            try:
                await self._send_ack()
            except _RECOVERABLE as exc:
                logger.debug("%s ACK failed: %s", self.key, exc)
        return response

    async def _on_timer(self, timer: TransactionTimer) -> None:
        options = self.context.options
        if self.state is TransactionState.TRYING:
            if not self.transaction_type.is_client:
                return
            if timer.kind is TimerKind.A:
                if self.connection is not None:
                    outgoing = self.context.prepare_outgoing(self.original)
                    await self.connection.send(outgoing, self.destination)
                duration = min(timer.duration * 2, options.t1x64)
                self.timer_a = self.context.timers.timeout(
                    duration, TransactionTimer(TimerKind.A, timer.key, duration)
                )
            elif timer.kind is TimerKind.B:
                self._inform_tu_response(self.context.make_response(self.original, 408))
        elif self.state is TransactionState.PROCEEDING:
            if timer.kind is TimerKind.B:
                self._inform_tu_response(self.context.make_response(self.original, 408))
        elif self.state is TransactionState.COMPLETED:
            if timer.kind is TimerKind.G:
                if self.last_response is not None and self.connection is not None:
                    outgoing = self.context.prepare_outgoing(self.last_response)
                    await self.connection.send(outgoing, self.destination)
                duration = min(timer.duration * 2, options.t1x64)
                self.timer_g = self.context.timers.timeout(
                    duration, TransactionTimer(TimerKind.G, timer.key, duration)
                )
            elif timer.kind is TimerKind.D:
                self._transition(TransactionState.TERMINATED)
        elif self.state is TransactionState.CONFIRMED:
            if timer.kind is TimerKind.K:
                self._transition(TransactionState.TERMINATED)

    def _cancel_timer(self, timer_id: Optional[int]) -> None:
        if timer_id is not None:
            self.context.timers.cancel(timer_id)

    def _transition(self, state: TransactionState) -> TransactionState:
        if self.state is state:
            return state
        options = self.context.options
        timers = self.context.timers
        if state is TransactionState.TRYING:
            connection = self._require_connection()
            if self.transaction_type.is_client and not connection.reliable:
                self._cancel_timer(self.timer_a)
                self.timer_a = None
            self._cancel_timer(self.timer_b)
            self.timer_b = timers.timeout(
                options.timerb, TransactionTimer(TimerKind.B, self.key)
            )
        elif state is TransactionState.PROCEEDING:
            self._cancel_timer(self.timer_a)
            self.timer_a = None
            self._cancel_timer(self.timer_b)
            self.timer_b = timers.timeout(
                options.timerb, TransactionTimer(TimerKind.B, self.key)
            )
        elif state is TransactionState.COMPLETED:
            self._cancel_timer(self.timer_a)
            self._cancel_timer(self.timer_b)
            self.timer_a = self.timer_b = None
            if self.transaction_type is TransactionType.SERVER_INVITE:
                connection = self._require_connection()
                if not connection.reliable:
                    self.timer_g = timers.timeout(
                        options.t1, TransactionTimer(TimerKind.G, self.key, options.t1)
                    )
            self.timer_d = timers.timeout(
                options.t1x64, TransactionTimer(TimerKind.D, self.key)
            )
        elif state is TransactionState.CONFIRMED:
            self._cleanup_timers()
            self.timer_k = timers.timeout(options.t4, TransactionTimer(TimerKind.K, self.key))
        elif state is TransactionState.TERMINATED:
            self._cleanup()
            self.events.put_nowait(TransactionEvent.terminate())
        logger.debug("%s transition: %s -> %s", self.key, self.state, state)
        self.state = state
        return state

    def _cleanup_timers(self) -> None:
        for timer_id in (self.timer_a, self.timer_b, self.timer_d, self.timer_k, self.timer_g):
            self._cancel_timer(timer_id)
        self.timer_a = self.timer_b = self.timer_d = self.timer_k = self.timer_g = None

    def _cleanup(self) -> None:
        if self._cleaned_up:
            return
        self._cleaned_up = True
        self._cleanup_timers()
        last_message: Optional[SipMessage] = None
        if self.transaction_type is TransactionType.CLIENT_INVITE:
            last_message, self.last_ack = self.last_ack, None
        elif self.transaction_type is TransactionType.SERVER_NON_INVITE:
            last_message, self.last_response = self.last_response, None
        self.context.detach_transaction(self.key, last_message)

    def close(self) -> None:
        """Cancel timers and detach the transaction from its context."""
        self._cleanup()
        logger.info("transaction closed: %s state=%s", self.key, self.state)

    def __enter__(self) -> Transaction:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()