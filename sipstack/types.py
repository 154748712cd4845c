"""Transaction states, types, timers, errors and identifier helpers."""

from __future__ import annotations

import enum
import secrets
import string
from dataclasses import dataclass
from typing import Any

TO_TAG_LEN = 8
BRANCH_LEN = 12
CNONCE_LEN = 8
CALL_ID_LEN = 22

BRANCH_MAGIC_COOKIE = "z9hG4bK"
DEFAULT_CALL_ID_DOMAIN = "restsend.com"

_ALPHANUMERIC = string.ascii_letters + string.digits


class SipError(Exception):
    """Base error of the SIP stack."""


class TransactionError(SipError):
    """An error bound to a specific transaction."""

    def __init__(self, message: str, key: Any) -> None:
        super().__init__(message)
        self.message = message
        self.key = key

    def __str__(self) -> str:
        return f"{self.message}: {self.key}"


class TransactionState(enum.Enum):
    """States of the transaction state machines."""

    CALLING = "Calling"
    TRYING = "Trying"
    PROCEEDING = "Proceeding"
    COMPLETED = "Completed"
    CONFIRMED = "Confirmed"
    TERMINATED = "Terminated"

    def __str__(self) -> str:
        return self.value


class TransactionType(enum.Enum):
    """The four kinds of SIP transaction."""

    CLIENT_INVITE = "ClientInvite"
    CLIENT_NON_INVITE = "ClientNonInvite"
    SERVER_INVITE = "ServerInvite"
    SERVER_NON_INVITE = "ServerNonInvite"

    def __str__(self) -> str:
        return self.value

    @property
    def is_client(self) -> bool:
        return self in (TransactionType.CLIENT_INVITE, TransactionType.CLIENT_NON_INVITE)

    @property
    def is_server(self) -> bool:
        return not self.is_client


class TimerKind(enum.Enum):
    """Transaction timer names."""

    A = "TimerA"
    B = "TimerB"
    D = "TimerD"
    E = "TimerE"
    F = "TimerF"
    K = "TimerK"
    G = "TimerG"
    CLEANUP = "TimerCleanup"

    @property
    def carries_duration(self) -> bool:
        return self in (TimerKind.A, TimerKind.G)


@dataclass(frozen=True)
class TransactionTimer:
    """A fired or scheduled timer for one transaction.

    Timers A and G carry the current retransmission interval in seconds.
    """

    kind: TimerKind
    key: Any
    duration: float | None = None

    def __post_init__(self) -> None:
        if self.kind.carries_duration and self.duration is None:
            raise ValueError(f"{self.kind.value} requires a duration")
        if not self.kind.carries_duration and self.duration is not None:
            raise ValueError(f"{self.kind.value} takes no duration")

    def __str__(self) -> str:
        if self.duration is not None:
            millis = int(round(self.duration * 1_000_000)) // 1000
            return f"{self.kind.value}: {self.key} {millis}"
        return f"{self.kind.value}: {self.key}"


def random_text(count: int) -> str:
    """Return ``count`` random ASCII letters and digits."""
    return "".join(secrets.choice(_ALPHANUMERIC) for _ in range(count))


def make_via_branch() -> str:
    """Return a new RFC 3261 Via branch value."""
    return BRANCH_MAGIC_COOKIE + random_text(BRANCH_LEN)


def make_call_id(domain: str | None = None) -> str:
    """Return a new Call-ID of the form ``random@domain``."""
    return f"{random_text(CALL_ID_LEN)}@{domain or DEFAULT_CALL_ID_DOMAIN}"


def make_tag() -> str:
    """Return a new From/To tag."""
    return random_text(TO_TAG_LEN)