"""
sealink.chunking
拆分：编码后超过传输行长度上限的消息，拆成一条 announcement + 若干 part。

容量按“转义后”的字符数计算，转义序列不会被切断；index 在同一传输内按固定宽度补零，
所以每个 part 的开销相同，容量不会因为后面的 index 变长而被高估。
"""
from __future__ import annotations

import enum
import secrets
import string
from typing import List, Optional

from .protocol import (
    Part,
    PartAnnouncement,
    ProtocolMessage,
    Single,
    encode_message,
    escape_byte,
    line_length,
)

DEFAULT_ID_LENGTH = 8
ID_ALPHABET = string.ascii_uppercase + string.digits


class ChunkingConfigReason(enum.Enum):
    CAPACITY_NON_POSITIVE = "no room for payload in a part"
    ANNOUNCEMENT_TOO_LONG = "announcement exceeds transport limit"
    HEADER_TOO_LONG = "message without payload exceeds transport limit"


class ChunkingConfigError(ValueError):
    """transport limit 容不下帧头（peer 名、transfer id 太长）。属于调用方配置错误，不重试。"""

    def __init__(self, reason: ChunkingConfigReason, detail: str = ""):
        self.reason = reason
        super().__init__(f"{reason.value}: {detail}" if detail else reason.value)


def new_transfer_id(length: int = DEFAULT_ID_LENGTH) -> str:
    if length < 1:
        raise ValueError("transfer id length must be positive")
    return "".join(secrets.choice(ID_ALPHABET) for _ in range(length))


def part_capacity(sender: str, receiver: str, transfer_id: str, transport_limit: int, width: int) -> int:
    """单个 part 可携带的转义后 payload 字符数（编码行必须严格小于 transport_limit）。"""
    empty = ProtocolMessage(sender=sender, receiver=receiver, kind=Part(transfer_id, 0, b"", width=width))
    return transport_limit - 1 - line_length(encode_message(empty))


def chunk_payload(payload: bytes, capacity: int) -> List[bytes]:
    if capacity <= 0:
        raise ChunkingConfigError(ChunkingConfigReason.CAPACITY_NON_POSITIVE, f"capacity={capacity}")
    chunks = []
    start = 0
    used = 0
    for i, b in enumerate(payload):
        w = len(escape_byte(b))
        if w > capacity:
            raise ChunkingConfigError(
                ChunkingConfigReason.CAPACITY_NON_POSITIVE,
                f"byte 0x{b:02x} needs {w} chars, capacity={capacity}",
            )
        if used + w > capacity:
            chunks.append(payload[start:i])
            start = i
            used = 0
        used += w
    if start < len(payload):
        chunks.append(payload[start:])
    return chunks


def split(
    sender: str,
    receiver: str,
    action: str,
    payload: Optional[bytes],
    transport_limit: int,
    transfer_id: Optional[str] = None,
    id_length: int = DEFAULT_ID_LENGTH,
) -> List[ProtocolMessage]:
    """
    返回按发送顺序排列的消息。放得下就只有一条 Single；
    否则为 [PartAnnouncement, Part(0), Part(1), ...]。
    """
    single = ProtocolMessage(sender=sender, receiver=receiver, kind=Single(action=action, payload=payload))
    if line_length(encode_message(single)) < transport_limit:
        return [single]

    if payload is None:
        # 拆分后无法区分“没有 payload”和“空 payload”
        raise ChunkingConfigError(ChunkingConfigReason.HEADER_TOO_LONG, f"limit={transport_limit}")
    if transfer_id is None:
        transfer_id = new_transfer_id(id_length)

    width = 1
    while True:
        capacity = part_capacity(sender, receiver, transfer_id, transport_limit, width)
        chunks = chunk_payload(payload, capacity) or [b""]
        if len(str(len(chunks) - 1)) <= width:
            break
        width += 1

    announcement = ProtocolMessage(
        sender=sender,
        receiver=receiver,
        kind=PartAnnouncement(action=action, transfer_id=transfer_id, part_count=len(chunks)),
    )
    if line_length(encode_message(announcement)) >= transport_limit:
        raise ChunkingConfigError(ChunkingConfigReason.ANNOUNCEMENT_TOO_LONG, f"limit={transport_limit}")

    messages = [announcement]
    for index, chunk in enumerate(chunks):
        messages.append(
            ProtocolMessage(
                sender=sender,
                receiver=receiver,
                kind=Part(transfer_id=transfer_id, index=index, payload=chunk, width=width),
            )
        )
    return messages
