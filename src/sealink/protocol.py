"""
sealink.protocol
SEA 消息格式：三种消息类型、payload 转义、单行编码/解码。

    \\sea.0 RECEIVER SENDER action [%PAYLOAD]
    \\sea.1 RECEIVER SENDER part_count id action
    \\sea.2 RECEIVER SENDER index id %PAYLOAD
"""
from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import List, Optional, Union

# Preludes
PRELUDE_STEM = r"\sea."
PRELUDE_SINGLE = r"\sea.0"
PRELUDE_ANNOUNCE = r"\sea.1"
PRELUDE_PART = r"\sea.2"

PAYLOAD_MARKER = "%"

# Actions
ACT_REQUEST = "req"
ACT_RESPONSE = "res"
ACT_THANKS = "ty"
ACT_WELCOME = "yw"
ACT_NO_PROBLEM = "np"

# 只有 req/res 必须带 payload
PAYLOAD_ACTIONS = frozenset({ACT_REQUEST, ACT_RESPONSE})

U32_MAX = 0xFFFFFFFF
U32_DIGITS = len(str(U32_MAX))

_ESCAPES = {0x5C: "\\\\", 0x0A: "\\n", 0x0D: "\\r"}
_UNESCAPES = {"\\": 0x5C, "n": 0x0A, "r": 0x0D}
_HEX_DIGITS = frozenset("0123456789abcdefABCDEF")
_DEC_DIGITS = frozenset("0123456789")


class DecodeErrorReason(enum.Enum):
    EMPTY_INPUT = "empty input"
    UNKNOWN_PRELUDE = "unknown prelude"
    MISSING_FIELD = "missing field"
    MALFORMED_INTEGER = "malformed integer"
    MALFORMED_PAYLOAD = "malformed payload"
    UNEXPECTED_FIELD = "unexpected field"


class DecodeError(ValueError):
    """A transport line that is not a valid SEA message. Always recoverable."""

    def __init__(
        self,
        reason: DecodeErrorReason,
        field: Optional[Union[int, str]] = None,
        detail: str = "",
    ):
        self.reason = reason
        self.field = field
        msg = reason.value
        if field is not None:
            msg += f" (field {field})"
        if detail:
            msg += f": {detail}"
        super().__init__(msg)


def escape_byte(b: int) -> str:
    if b in _ESCAPES:
        return _ESCAPES[b]
    if 0x20 <= b <= 0x7E:
        return chr(b)
    return f"\\x{b:02x}"


def escape_payload(data: bytes) -> str:
    """bytes -> 可打印 ASCII；结果中不会出现换行，字符数即线路字节数。"""
    return "".join(escape_byte(b) for b in data)


def unescape_payload(text: str) -> bytes:
    out = bytearray()
    i = 0
    n = len(text)
    while i < n:
        ch = text[i]
        if ch != "\\":
            try:
                out += ch.encode("utf-8")
            except UnicodeEncodeError:
                raise DecodeError(DecodeErrorReason.MALFORMED_PAYLOAD, "payload", f"unencodable character at {i}")
            i += 1
            continue
        if i + 1 >= n:
            raise DecodeError(DecodeErrorReason.MALFORMED_PAYLOAD, "payload", "dangling backslash")
        nxt = text[i + 1]
        if nxt in _UNESCAPES:
            out.append(_UNESCAPES[nxt])
            i += 2
        elif nxt == "x":
            hh = text[i + 2:i + 4]
            if len(hh) != 2 or not set(hh) <= _HEX_DIGITS:
                raise DecodeError(DecodeErrorReason.MALFORMED_PAYLOAD, "payload", f"bad hex escape at {i}")
            out.append(int(hh, 16))
            i += 4
        else:
            raise DecodeError(DecodeErrorReason.MALFORMED_PAYLOAD, "payload", f"unknown escape \\{nxt}")
    return bytes(out)


def line_length(line: str) -> int:
    """线路上的字节数（peer 名可能含非 ASCII 字符）。"""
    return len(line.encode("utf-8"))


def check_token(name: str, value: str) -> None:
    if not isinstance(value, str) or not value:
        raise ValueError(f"{name} must be a non-empty string")
    if PAYLOAD_MARKER in value or any(c.isspace() for c in value):
        raise ValueError(f"{name} must not contain whitespace or '%': {value!r}")


def check_u32(name: str, value: int, minimum: int = 0) -> None:
    if not minimum <= value <= U32_MAX:
        raise ValueError(f"{name} out of range: {value}")


@dataclass
class Single:
    action: str
    payload: Optional[bytes] = None  # None: 行中没有 '%'；b"": 有 '%' 但为空


@dataclass
class PartAnnouncement:
    action: str
    transfer_id: str
    part_count: int


@dataclass
class Part:
    transfer_id: str
    index: int
    payload: bytes
    width: int = field(default=1, compare=False)  # index 补零宽度，同一传输内固定


PayloadKind = Union[Single, PartAnnouncement, Part]


@dataclass
class ProtocolMessage:
    sender: str
    receiver: str
    kind: PayloadKind

    def encode(self) -> str:
        return encode_message(self)

    @staticmethod
    def decode(line: str) -> "ProtocolMessage":
        return decode_line(line)


def encode_message(msg: ProtocolMessage) -> str:
    check_token("receiver", msg.receiver)
    check_token("sender", msg.sender)
    kind = msg.kind

    if isinstance(kind, Single):
        check_token("action", kind.action)
        head = f"{PRELUDE_SINGLE} {msg.receiver} {msg.sender} {kind.action}"
        if kind.payload is None:
            if kind.action in PAYLOAD_ACTIONS:
                raise ValueError(f"{kind.action} requires a payload")
            return head
        return f"{head} {PAYLOAD_MARKER}{escape_payload(kind.payload)}"

    if isinstance(kind, PartAnnouncement):
        check_token("action", kind.action)
        check_token("transfer_id", kind.transfer_id)
        check_u32("part_count", kind.part_count, minimum=1)
        return (
            f"{PRELUDE_ANNOUNCE} {msg.receiver} {msg.sender} "
            f"{kind.part_count} {kind.transfer_id} {kind.action}"
        )

    if isinstance(kind, Part):
        check_token("transfer_id", kind.transfer_id)
        check_u32("index", kind.index)
        if kind.width < 1:
            raise ValueError(f"index width must be positive: {kind.width}")
        return (
            f"{PRELUDE_PART} {msg.receiver} {msg.sender} "
            f"{kind.index:0{kind.width}d} {kind.transfer_id} "
            f"{PAYLOAD_MARKER}{escape_payload(kind.payload)}"
        )

    raise TypeError(f"unknown message kind: {kind!r}")


def _field(fields: List[str], i: int) -> str:
    if i >= len(fields):
        raise DecodeError(DecodeErrorReason.MISSING_FIELD, i)
    return fields[i]


def _parse_u32(fields: List[str], i: int, minimum: int = 0) -> int:
    text = _field(fields, i)
    if not set(text) <= _DEC_DIGITS:
        raise DecodeError(DecodeErrorReason.MALFORMED_INTEGER, i, repr(text))
    if len(text) > U32_DIGITS:
        raise DecodeError(DecodeErrorReason.MALFORMED_INTEGER, i, f"{len(text)} digits")
    value = int(text)
    if not minimum <= value <= U32_MAX:
        raise DecodeError(DecodeErrorReason.MALFORMED_INTEGER, i, f"{value} out of range")
    return value


def _no_extra(fields: List[str], count: int) -> None:
    if len(fields) > count:
        raise DecodeError(DecodeErrorReason.UNEXPECTED_FIELD, count, repr(fields[count]))


def decode_line(line: str) -> ProtocolMessage:
    """一行文本 -> ProtocolMessage；任何格式问题都抛出 DecodeError。"""
    line = line.rstrip("\r\n")
    if not line.strip():
        raise DecodeError(DecodeErrorReason.EMPTY_INPUT)

    header, marker, raw = line.partition(PAYLOAD_MARKER)
    fields = header.split()
    if not fields:
        raise DecodeError(DecodeErrorReason.MISSING_FIELD, 0)

    prelude = fields[0]
    if prelude not in (PRELUDE_SINGLE, PRELUDE_ANNOUNCE, PRELUDE_PART):
        raise DecodeError(DecodeErrorReason.UNKNOWN_PRELUDE, 0, repr(prelude))

    receiver = _field(fields, 1)
    sender = _field(fields, 2)

    if prelude == PRELUDE_SINGLE:
        action = _field(fields, 3)
        _no_extra(fields, 4)
        if not marker:
            if action in PAYLOAD_ACTIONS:
                raise DecodeError(DecodeErrorReason.MISSING_FIELD, "payload", f"{action} requires a payload")
            return ProtocolMessage(sender=sender, receiver=receiver, kind=Single(action=action))
        return ProtocolMessage(
            sender=sender, receiver=receiver, kind=Single(action=action, payload=unescape_payload(raw))
        )

    if prelude == PRELUDE_ANNOUNCE:
        part_count = _parse_u32(fields, 3, minimum=1)
        transfer_id = _field(fields, 4)
        action = _field(fields, 5)
        _no_extra(fields, 6)
        if marker:
            raise DecodeError(DecodeErrorReason.UNEXPECTED_FIELD, "payload")
        return ProtocolMessage(
            sender=sender,
            receiver=receiver,
            kind=PartAnnouncement(action=action, transfer_id=transfer_id, part_count=part_count),
        )

    index_text = _field(fields, 3)
    index = _parse_u32(fields, 3)
    transfer_id = _field(fields, 4)
    _no_extra(fields, 5)
    if not marker:
        raise DecodeError(DecodeErrorReason.MISSING_FIELD, "payload")
    return ProtocolMessage(
        sender=sender,
        receiver=receiver,
        kind=Part(transfer_id=transfer_id, index=index, payload=unescape_payload(raw), width=len(index_text)),
    )
