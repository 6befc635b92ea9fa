"""
sealink.server
演示服务器：连接聊天服务器，按请求提供目录中的文件。
"""
from __future__ import annotations

import argparse
import logging
import socket

from .config import add_arguments, from_args
from .node import Node
from .storage import DirectoryStorage
from .transport import ChatSocket


def main() -> None:
    ap = argparse.ArgumentParser()
    add_arguments(ap)
    ap.add_argument("--directory", required=True, help="directory of served resources")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = from_args(args)
    storage = DirectoryStorage(args.directory)

    with socket.create_connection((args.host, args.port)) as sock:
        chat = ChatSocket(sock)
        chat.register(config.name, args.channel)
        print(f"[server] {config.name} serving {storage.root} via {args.host}:{args.port}")

        node = Node(config, chat, storage=storage)
        try:
            node.serve_forever()
        except EOFError:
            print("[server] connection closed")


if __name__ == "__main__":
    main()
