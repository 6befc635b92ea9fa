"""
sealink.transport
基于 TCP socket 的聊天传输：按行收发，只实现 SEA 需要的 IRC 子集
（NICK/USER/JOIN、PRIVMSG、PING/PONG）。
"""
from __future__ import annotations

import logging
import socket
from typing import Iterable, List, Optional, Tuple

logger = logging.getLogger(__name__)

CHANNEL_PREFIXES = "#&"


def parse_chat_line(raw: str) -> Tuple[Optional[str], str, List[str]]:
    """':prefix COMMAND a b :trailing' -> (prefix, COMMAND, [a, b, trailing])"""
    prefix = None
    if raw.startswith(":"):
        prefix, _, raw = raw[1:].partition(" ")
    trailing = None
    if raw.startswith(":"):
        raw, trailing = "", raw[1:]
    elif " :" in raw:
        raw, trailing = raw.split(" :", 1)
    parts = raw.split()
    command = parts[0].upper() if parts else ""
    params = parts[1:]
    if trailing is not None:
        params.append(trailing)
    return prefix, command, params


class ChatSocket:
    def __init__(self, sock: socket.socket, encoding: str = "utf-8"):
        self.sock = sock
        self.encoding = encoding
        self.buf = b""
        self.nick: Optional[str] = None

    def send_raw(self, line: str) -> None:
        if "\r" in line or "\n" in line:
            raise ValueError("line must not contain CR or LF")
        self.sock.sendall(line.encode(self.encoding) + b"\r\n")

    def recv_raw(self) -> str:
        while True:
            idx = self.buf.find(b"\n")
            if idx >= 0:
                raw, self.buf = self.buf[:idx], self.buf[idx + 1:]
                return raw.rstrip(b"\r").decode(self.encoding, errors="replace")
            chunk = self.sock.recv(4096)
            if not chunk:
                raise EOFError("connection closed")
            self.buf += chunk

    def register(self, nick: str, channels: Iterable[str] = ()) -> None:
        self.nick = nick
        self.send_raw(f"NICK {nick}")
        self.send_raw(f"USER {nick} 0 * :{nick}")
        for ch in channels:
            self.send_raw(f"JOIN {ch}")

    def send(self, peer: str, line: str) -> None:
        self.send_raw(f"PRIVMSG {peer} :{line}")

    def receive(self) -> Tuple[str, str]:
        """阻塞直到收到一条 PRIVMSG，返回 (回复目标, 文本)。PING 自动回复。"""
        while True:
            raw = self.recv_raw()
            prefix, command, params = parse_chat_line(raw)
            if command == "PING":
                self.send_raw(f"PONG :{params[-1]}" if params else "PONG")
                continue
            if command == "PRIVMSG" and len(params) == 2:
                target, text = params
                nick = prefix.split("!", 1)[0] if prefix else ""
                reply_to = target if target[:1] in CHANNEL_PREFIXES else nick
                return reply_to, text
            logger.debug("ignoring chat line: %s", raw)
