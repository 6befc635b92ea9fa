"""
sealink.node
SEA 节点：解码传输行 -> 重组 -> 按 action 分发；发送时经 split 拆分。

transport 只需要 send(peer, line) / receive() -> (peer, line)；
storage 只需要 lookup(identifier) -> Optional[bytes]。
"""
from __future__ import annotations

import logging
import time
from typing import Callable, Dict, Optional

from .assembler import Assembler, Completed, ReassemblyError
from .chunking import split
from .config import NodeConfig
from .protocol import (
    ACT_NO_PROBLEM,
    ACT_REQUEST,
    ACT_RESPONSE,
    ACT_THANKS,
    ACT_WELCOME,
    PRELUDE_STEM,
    DecodeError,
    ProtocolMessage,
)

logger = logging.getLogger(__name__)


class Node:
    def __init__(
        self,
        config: NodeConfig,
        transport,
        storage=None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config
        self.transport = transport
        self.storage = storage
        self._clock = clock
        self.assembler = Assembler(
            idle_timeout=config.idle_timeout,
            max_transfers=config.max_transfers,
            clock=clock,
        )
        self._service_times: Dict[str, float] = {}

    @property
    def name(self) -> str:
        return self.config.name

    def send(self, peer: str, receiver: str, action: str, payload: Optional[bytes] = None) -> int:
        """发送一条逻辑消息，返回实际写出的行数。"""
        messages = split(
            self.name,
            receiver,
            action,
            payload,
            self.config.transport_limit,
            id_length=self.config.id_length,
        )
        for msg in messages:
            self.transport.send(peer, msg.encode())
        return len(messages)

    def request(self, peer: str, receiver: str, resource: str) -> int:
        return self.send(peer, receiver, ACT_REQUEST, resource.encode("utf-8"))

    def handle_line(self, peer: str, line: str) -> Optional[Completed]:
        if not line.startswith(PRELUDE_STEM):
            return None
        try:
            msg = ProtocolMessage.decode(line)
        except DecodeError as e:
            logger.warning("dropping malformed line from %s: %s", peer, e)
            return None
        if msg.receiver != self.name:
            return None
        try:
            completed = self.assembler.feed(msg)
        except ReassemblyError as e:
            logger.warning("dropping frame from %s: %s", peer, e)
            return None
        if completed is not None:
            self._dispatch(peer, completed)
        return completed

    def _dispatch(self, peer: str, c: Completed) -> None:
        if c.action == ACT_REQUEST:
            self._serve(peer, c)
        elif c.action == ACT_THANKS:
            self._acknowledge(peer, c)
        else:
            size = len(c.payload) if c.payload is not None else 0
            logger.info("%s from %s (%d bytes)", c.action, c.sender, size)

    def _serve(self, peer: str, c: Completed) -> None:
        if self.storage is None:
            logger.info("no storage configured, ignoring request from %s", c.sender)
            return
        started = self._clock()
        identifier = (c.payload or b"").decode("utf-8", errors="replace")
        data = self.storage.lookup(identifier)
        if data is None:
            logger.info("%s requested unknown resource %r", c.sender, identifier)
            return
        lines = self.send(peer, c.sender, ACT_RESPONSE, data)
        self._service_times[c.sender] = self._clock() - started
        logger.info("served %r to %s: %d bytes in %d lines", identifier, c.sender, len(data), lines)

    def _acknowledge(self, peer: str, c: Completed) -> None:
        elapsed = self._service_times.pop(c.sender, None)
        if elapsed is not None and elapsed < self.config.fast_ack_threshold:
            self.send(peer, c.sender, ACT_NO_PROBLEM)
        else:
            self.send(peer, c.sender, ACT_WELCOME)

    def wait_for(self, action: str, sender: Optional[str] = None) -> Completed:
        """阻塞读取传输，直到收到指定 action 的完整消息。"""
        while True:
            peer, line = self.transport.receive()
            c = self.handle_line(peer, line)
            if c is not None and c.action == action and (sender is None or c.sender == sender):
                return c

    def serve_forever(self) -> None:
        while True:
            peer, line = self.transport.receive()
            self.handle_line(peer, line)
