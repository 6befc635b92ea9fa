"""
sealink.config
节点参数。命令行入口通过 add_arguments / from_args 构造 NodeConfig。
"""
from __future__ import annotations

import argparse
from dataclasses import dataclass
from typing import Optional

from .assembler import DEFAULT_IDLE_TIMEOUT
from .chunking import DEFAULT_ID_LENGTH
from .protocol import check_token

# IRC 每行 512 字节（含 CRLF）；服务器中继时还会加上
# ":nick!user@host PRIVMSG #chan :" 前缀，SEA 行本身要留出这部分余量
IRC_LINE_LIMIT = 510
RELAY_PREFIX_ALLOWANCE = 110
DEFAULT_TRANSPORT_LIMIT = IRC_LINE_LIMIT - RELAY_PREFIX_ALLOWANCE
FAST_ACK_THRESHOLD = 0.05  # 50 ms 内处理完的请求，用 np 代替 yw


@dataclass
class NodeConfig:
    name: str
    transport_limit: int = DEFAULT_TRANSPORT_LIMIT
    id_length: int = DEFAULT_ID_LENGTH
    idle_timeout: float = DEFAULT_IDLE_TIMEOUT
    max_transfers: Optional[int] = None
    fast_ack_threshold: float = FAST_ACK_THRESHOLD

    def __post_init__(self) -> None:
        check_token("name", self.name)
        if self.transport_limit < 1:
            raise ValueError("transport_limit must be positive")
        if self.id_length < 1:
            raise ValueError("id_length must be positive")
        if self.idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")


def add_arguments(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--host", default="127.0.0.1")
    ap.add_argument("--port", type=int, default=6667)
    ap.add_argument("--nick", required=True, help="SEA peer name, also used as the chat nick")
    ap.add_argument("--channel", action="append", default=[], help="channel to join (repeatable)")
    ap.add_argument("--transport-limit", type=int, default=DEFAULT_TRANSPORT_LIMIT)
    ap.add_argument("--id-length", type=int, default=DEFAULT_ID_LENGTH)
    ap.add_argument("--idle-timeout", type=float, default=DEFAULT_IDLE_TIMEOUT)
    ap.add_argument("--log-level", default="INFO")


def from_args(args: argparse.Namespace) -> NodeConfig:
    return NodeConfig(
        name=args.nick,
        transport_limit=args.transport_limit,
        id_length=args.id_length,
        idle_timeout=args.idle_timeout,
    )
