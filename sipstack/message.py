"""SIP methods, headers, Via values, requests, responses and their builders."""

from __future__ import annotations

import enum
from dataclasses import dataclass, field

from .types import SipError, make_call_id

SIP_VERSION = "SIP/2.0"
MAX_FORWARDS = 70

_COMPACT_NAMES = {
    "v": "via",
    "f": "from",
    "t": "to",
    "i": "call-id",
    "l": "content-length",
    "m": "contact",
    "c": "content-type",
    "k": "supported",
    "s": "subject",
    "e": "content-encoding",
}

_DIALOG_HEADERS = frozenset({"via", "call-id", "from", "to", "max-forwards", "cseq"})

_REASONS = {
    100: "Trying",
    180: "Ringing",
    181: "Call Is Being Forwarded",
    182: "Queued",
    183: "Session Progress",
    200: "OK",
    202: "Accepted",
    300: "Multiple Choices",
    301: "Moved Permanently",
    302: "Moved Temporarily",
    305: "Use Proxy",
    380: "Alternative Service",
    400: "Bad Request",
    401: "Unauthorized",
    402: "Payment Required",
    403: "Forbidden",
    404: "Not Found",
    405: "Method Not Allowed",
    406: "Not Acceptable",
    407: "Proxy Authentication Required",
    408: "Request Timeout",
    410: "Gone",
    413: "Request Entity Too Large",
    414: "Request-URI Too Long",
    415: "Unsupported Media Type",
    416: "Unsupported URI Scheme",
    420: "Bad Extension",
    421: "Extension Required",
    423: "Interval Too Brief",
    480: "Temporarily Unavailable",
    481: "Call/Transaction Does Not Exist",
    482: "Loop Detected",
    483: "Too Many Hops",
    484: "Address Incomplete",
    485: "Ambiguous",
    486: "Busy Here",
    487: "Request Terminated",
    488: "Not Acceptable Here",
    491: "Request Pending",
    493: "Undecipherable",
    500: "Server Internal Error",
    501: "Not Implemented",
    502: "Bad Gateway",
    503: "Service Unavailable",
    504: "Server Time-out",
    505: "Version Not Supported",
    513: "Message Too Large",
    600: "Busy Everywhere",
    603: "Decline",
    604: "Does Not Exist Anywhere",
    606: "Not Acceptable",
}


def _canonical(name: str) -> str:
    lowered = name.strip().lower()
    return _COMPACT_NAMES.get(lowered, lowered)


class Method(enum.Enum):
    """SIP request methods."""

    INVITE = "INVITE"
    ACK = "ACK"
    BYE = "BYE"
    CANCEL = "CANCEL"
    REGISTER = "REGISTER"
    OPTIONS = "OPTIONS"
    INFO = "INFO"
    MESSAGE = "MESSAGE"
    NOTIFY = "NOTIFY"
    SUBSCRIBE = "SUBSCRIBE"
    REFER = "REFER"
    PRACK = "PRACK"
    UPDATE = "UPDATE"
    PUBLISH = "PUBLISH"

    @classmethod
    def _missing_(cls, value: object) -> Method | None:
        if isinstance(value, str):
            wanted = value.strip().upper()
            for member in cls:
                if member.value == wanted:
                    return member
        return None

    def __str__(self) -> str:
        return self.value


class StatusKind(enum.Enum):
    """The class of a SIP status code."""

    PROVISIONAL = 1
    SUCCESSFUL = 2
    REDIRECTION = 3
    REQUEST_FAILURE = 4
    SERVER_FAILURE = 5
    GLOBAL_FAILURE = 6


def status_kind(status_code: int) -> StatusKind:
    """Return the class of ``status_code``; it must lie in 100..699."""
    if not 100 <= status_code <= 699:
        raise ValueError(f"invalid SIP status code {status_code}")
    return StatusKind(status_code // 100)


def header_param(value: str, name: str) -> str | None:
    """Return a header parameter such as ``tag``, ignoring URI parameters.

    A parameter without a value gives an empty string; a missing one gives None.
    """
    close = value.rfind(">")
    if close >= 0:
        tail = value[close + 1 :]
    else:
        semi = value.find(";")
        if semi < 0:
            return None
        tail = value[semi:]
    wanted = name.strip().lower()
    for part in tail.split(";"):
        part = part.strip()
        if not part:
            continue
        key, eq, val = part.partition("=")
        if key.strip().lower() == wanted:
            return val.strip().strip('"') if eq else ""
    return None


@dataclass(frozen=True)
class Header:
    """One header line: a name and its raw value."""

    name: str
    value: str

    def matches(self, name: str) -> bool:
        """Whether this header has ``name``, ignoring case and compact forms."""
        return _canonical(self.name) == _canonical(name)

    def __str__(self) -> str:
        return f"{self.name}: {self.value}"


@dataclass
class Via:
    """A single Via value: protocol, sent-by address and parameters."""

    transport: str
    host_with_port: str
    params: list[tuple[str, str | None]] = field(default_factory=list)
    version: str = SIP_VERSION

    @classmethod
    def parse(cls, text: str) -> Via:
        """Parse the first entry of a Via header value."""
        first = text.split(",", 1)[0].strip()
        parts = first.split(None, 1)
        if len(parts) != 2:
            raise SipError(f"invalid Via header: {text!r}")
        protocol, rest = parts
        pieces = protocol.split("/")
        if len(pieces) != 3 or not all(piece.strip() for piece in pieces):
            raise SipError(f"invalid Via protocol: {protocol!r}")
        name, version, transport = (piece.strip() for piece in pieces)
        segments = [segment.strip() for segment in rest.split(";")]
        host = segments[0]
        if not host:
            raise SipError(f"Via header has no sent-by: {text!r}")
        params: list[tuple[str, str | None]] = []
        for segment in segments[1:]:
            if not segment:
                continue
            key, eq, val = segment.partition("=")
            params.append((key.strip(), val.strip() if eq else None))
        return cls(
            transport=transport,
            host_with_port=host,
            params=params,
            version=f"{name}/{version}",
        )

    def branch(self) -> str | None:
        """Return the branch parameter, if any."""
        for key, val in self.params:
            if key.lower() == "branch":
                return val
        return None

    def __str__(self) -> str:
        rendered = "".join(
            f";{key}" if val is None else f";{key}={val}" for key, val in self.params
        )
        return f"{self.version}/{self.transport} {self.host_with_port}{rendered}"


class _HeaderList:
    headers: list[Header]
    body: bytes

    def header(self, name: str) -> str:
        """Return the value of the first header called ``name``."""
        for item in self.headers:
            if item.matches(name):
                return item.value
        raise SipError(f"missing {name} header")

    def unique_push(self, header: Header) -> None:
        """Replace every header of the same name with ``header``, placed last."""
        self.headers = [item for item in self.headers if not item.matches(header.name)]
        self.headers.append(header)

    def _render(self, start_line: str) -> str:
        lines = [start_line, *(str(item) for item in self.headers)]
        return "\r\n".join(lines) + "\r\n\r\n" + self.body.decode("utf-8", errors="replace")


@dataclass
class Request(_HeaderList):
    """A SIP request."""

    method: Method
    uri: str
    headers: list[Header] = field(default_factory=list)
    body: bytes = b""
    version: str = SIP_VERSION

    def header(self, name: str) -> str:
        return super().header(name)

    def unique_push(self, header: Header) -> None:
        super().unique_push(header)

    def __str__(self) -> str:
        return self._render(f"{self.method} {self.uri} {self.version}")


@dataclass
class Response(_HeaderList):
    """A SIP response."""

    status_code: int
    headers: list[Header] = field(default_factory=list)
    body: bytes = b""
    version: str = SIP_VERSION
    reason: str | None = None

    @property
    def reason_phrase(self) -> str:
        if self.reason is not None:
            return self.reason
        return _REASONS.get(self.status_code, "")

    @property
    def kind(self) -> StatusKind:
        return status_kind(self.status_code)

    def header(self, name: str) -> str:
        return super().header(name)

    def unique_push(self, header: Header) -> None:
        super().unique_push(header)

    def __str__(self) -> str:
        phrase = self.reason_phrase
        start = f"{self.version} {self.status_code}"
        return self._render(f"{start} {phrase}" if phrase else start)


def _dialog_headers(headers: list[Header]) -> list[Header]:
    return [item for item in headers if _canonical(item.name) in _DIALOG_HEADERS]


def make_request(
    method: Method,
    uri: str,
    via: Via | str,
    from_: str,
    to: str,
    seq: int,
    user_agent: str,
    callid_suffix: str | None = None,
) -> Request:
    """Build a request carrying the mandatory headers in RFC 3261 order."""
    headers = [
        Header("Via", str(via)),
        Header("Call-ID", make_call_id(callid_suffix)),
        Header("From", from_),
        Header("To", to),
        Header("CSeq", f"{seq} {method}"),
        Header("Max-Forwards", str(MAX_FORWARDS)),
        Header("User-Agent", user_agent),
    ]
    return Request(method=method, uri=uri, headers=headers)


def make_response(
    request: Request,
    status_code: int,
    user_agent: str,
    body: bytes | None = None,
) -> Response:
    """Build a response copying the request's transaction and dialog headers."""
    response = Response(
        status_code=status_code,
        headers=_dialog_headers(request.headers),
        body=body or b"",
        version=request.version,
    )
    response.unique_push(Header("User-Agent", user_agent))
    return response


def make_ack(uri: str, response: Response, user_agent: str) -> Request:
    """Build an ACK for ``response`` addressed to ``uri``."""
    ack = Request(method=Method.ACK, uri=uri, headers=_dialog_headers(response.headers))
    ack.unique_push(Header("User-Agent", user_agent))
    return ack