"""Transaction keys identifying client and server transactions."""

from __future__ import annotations

import enum
from dataclasses import dataclass

from .message import Method, Request, Response, Via, header_param
from .types import SipError


class TransactionRole(enum.Enum):
    """Which side of a transaction a key belongs to."""

    CLIENT = "c"
    SERVER = "s"

    def __str__(self) -> str:
        return self.value


def _parse_cseq(value: str) -> tuple[int, Method]:
    parts = value.split()
    if len(parts) != 2:
        raise SipError(f"invalid CSeq header: {value!r}")
    number, method_name = parts
    try:
        seq = int(number)
    except ValueError:
        raise SipError(f"invalid CSeq number: {number!r}") from None
    if not 0 <= seq <= 0xFFFFFFFF:
        raise SipError(f"CSeq number out of range: {seq}")
    try:
        method = Method(method_name)
    except ValueError:
        raise SipError(f"unknown CSeq method: {method_name!r}") from None
    return seq, method


def _from_tag(message: Request | Response) -> str:
    tag = header_param(message.header("From"), "tag")
    if tag is None:
        raise SipError("from tags missing")
    return tag


@dataclass(frozen=True)
class TransactionKey:
    """An opaque, hashable transaction identifier."""

    value: str

    @classmethod
    def from_request(cls, request: Request, role: TransactionRole) -> TransactionKey:
        """Key of the transaction that ``request`` belongs to."""
        via = Via.parse(request.header("Via"))
        method = request.method
        if role is TransactionRole.SERVER and method in (Method.ACK, Method.CANCEL):
            method = Method.INVITE
        from_tag = _from_tag(request)
        call_id = request.header("Call-ID").strip()
        seq, _ = _parse_cseq(request.header("CSeq"))
        return cls.build_key(role, via, method, seq, from_tag, call_id)

    @classmethod
    def from_response(cls, response: Response, role: TransactionRole) -> TransactionKey:
        """Key of the transaction that ``response`` belongs to."""
        via = Via.parse(response.header("Via"))
        seq, method = _parse_cseq(response.header("CSeq"))
        from_tag = _from_tag(response)
        call_id = response.header("Call-ID").strip()
        return cls.build_key(role, via, method, seq, from_tag, call_id)

    @classmethod
    def build_key(
        cls,
        role: TransactionRole,
        via: Via,
        method: Method,
        cseq: int,
        from_tag: str,
        call_id: str,
    ) -> TransactionKey:
        """Compose a key; without a branch the RFC 2543 form is used."""
        prefix = f"{role}.{method}_{cseq}_{call_id}_{from_tag}"
        branch = via.branch()
        if branch is not None:
            return cls(f"{prefix}_{branch}")
        return cls(f"{prefix}_{via.host_with_port}.2543")

    def __str__(self) -> str:
        return self.value