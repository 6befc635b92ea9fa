"""
sealink.assembler
接收端重组：按 (sender, receiver, transfer_id) 收集 part，收齐后按 index 顺序拼接。

- 乱序、重复到达都可以容忍（重复的 part 保留第一次收到的数据）。
- 长时间没有进展的传输会被淘汰，避免 announcement 之后再无下文时内存无限增长。
"""
from __future__ import annotations

import enum
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Tuple

from .protocol import Part, PartAnnouncement, ProtocolMessage, Single

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TIMEOUT = 120.0  # seconds

TransferKey = Tuple[str, str, str]  # (sender, receiver, transfer_id)


class ReassemblyErrorReason(enum.Enum):
    UNKNOWN_TRANSFER = "unknown transfer"
    INDEX_OUT_OF_RANGE = "index out of range"


class ReassemblyError(ValueError):
    """只针对出错的那一帧；对应的传输（如果存在）不受影响。"""

    def __init__(self, reason: ReassemblyErrorReason, key: TransferKey, index: int):
        self.reason = reason
        self.key = key
        self.index = index
        super().__init__(f"{reason.value}: transfer={key[2]} from={key[0]} index={index}")


@dataclass
class TransferState:
    action: str
    expected_parts: int
    created_at: float
    touched_at: float
    received: Dict[int, bytes] = field(default_factory=dict)

    def is_complete(self) -> bool:
        return len(self.received) == self.expected_parts

    def missing(self) -> List[int]:
        return [i for i in range(self.expected_parts) if i not in self.received]

    def join(self) -> bytes:
        return b"".join(self.received[i] for i in range(self.expected_parts))


@dataclass
class Completed:
    sender: str
    receiver: str
    action: str
    payload: Optional[bytes]
    transfer_id: Optional[str] = None  # None: 来自单条 Single 消息


class Assembler:
    def __init__(
        self,
        idle_timeout: float = DEFAULT_IDLE_TIMEOUT,
        max_transfers: Optional[int] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        if max_transfers is not None and max_transfers < 1:
            raise ValueError("max_transfers must be positive")
        self.idle_timeout = idle_timeout
        self.max_transfers = max_transfers
        self._clock = clock
        self._lock = threading.Lock()
        self._transfers: Dict[TransferKey, TransferState] = {}

    def __len__(self) -> int:
        with self._lock:
            return len(self._transfers)

    def pending(self) -> List[TransferKey]:
        with self._lock:
            return list(self._transfers)

    def missing(self, key: TransferKey) -> Optional[List[int]]:
        with self._lock:
            st = self._transfers.get(key)
            return st.missing() if st is not None else None

    def feed(self, msg: ProtocolMessage) -> Optional[Completed]:
        """
        处理一条已解码的消息。Single 直接返回 Completed；
        announcement 返回 None；part 在收齐时返回 Completed，否则 None。
        """
        kind = msg.kind
        if isinstance(kind, Single):
            return Completed(sender=msg.sender, receiver=msg.receiver, action=kind.action, payload=kind.payload)
        if isinstance(kind, PartAnnouncement):
            with self._lock:
                self._evict_expired_locked()
                self._announce_locked(msg, kind)
            return None
        if isinstance(kind, Part):
            with self._lock:
                self._evict_expired_locked()
                return self._add_part_locked(msg, kind)
        raise TypeError(f"unknown message kind: {kind!r}")

    def evict_expired(self) -> List[TransferKey]:
        """可以由定时任务调用；feed() 每次也会顺带检查。"""
        with self._lock:
            return self._evict_expired_locked()

    def _evict_expired_locked(self) -> List[TransferKey]:
        now = self._clock()
        expired = [k for k, st in self._transfers.items() if now - st.touched_at > self.idle_timeout]
        for k in expired:
            st = self._transfers.pop(k)
            logger.warning(
                "abandoned transfer %s from %s: %d/%d parts after %.1fs idle",
                k[2], k[0], len(st.received), st.expected_parts, now - st.touched_at,
            )
        return expired

    def _announce_locked(self, msg: ProtocolMessage, ann: PartAnnouncement) -> None:
        key = (msg.sender, msg.receiver, ann.transfer_id)
        now = self._clock()
        st = self._transfers.get(key)
        if st is not None:
            if st.expected_parts == ann.part_count and st.action == ann.action:
                st.touched_at = now
                return
            logger.warning("transfer %s from %s re-announced with different shape, restarting", key[2], key[0])
            del self._transfers[key]
        elif self.max_transfers is not None and len(self._transfers) >= self.max_transfers:
            oldest = min(self._transfers, key=lambda k: self._transfers[k].touched_at)
            del self._transfers[oldest]
            logger.warning("transfer table full, dropped %s from %s", oldest[2], oldest[0])
        self._transfers[key] = TransferState(
            action=ann.action, expected_parts=ann.part_count, created_at=now, touched_at=now
        )
        logger.debug("transfer %s from %s: expecting %d parts", key[2], key[0], ann.part_count)

    def _add_part_locked(self, msg: ProtocolMessage, part: Part) -> Optional[Completed]:
        key = (msg.sender, msg.receiver, part.transfer_id)
        st = self._transfers.get(key)
        if st is None:
            raise ReassemblyError(ReassemblyErrorReason.UNKNOWN_TRANSFER, key, part.index)
        if part.index >= st.expected_parts:
            raise ReassemblyError(ReassemblyErrorReason.INDEX_OUT_OF_RANGE, key, part.index)

        st.touched_at = self._clock()
        st.received.setdefault(part.index, part.payload)
        if not st.is_complete():
            return None

        del self._transfers[key]
        payload = st.join()
        logger.debug("transfer %s from %s complete: %d bytes", key[2], key[0], len(payload))
        return Completed(
            sender=msg.sender,
            receiver=msg.receiver,
            action=st.action,
            payload=payload,
            transfer_id=part.transfer_id,
        )
