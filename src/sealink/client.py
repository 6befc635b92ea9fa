"""
sealink.client
演示客户端：向指定节点请求一个资源，输出内容，然后道谢。
"""
from __future__ import annotations

import argparse
import logging
import socket
import sys

from .config import add_arguments, from_args
from .node import Node
from .protocol import ACT_RESPONSE, ACT_THANKS
from .transport import ChatSocket


def main() -> None:
    ap = argparse.ArgumentParser()
    add_arguments(ap)
    ap.add_argument("--server-name", required=True, help="SEA name of the serving peer")
    ap.add_argument("--resource", required=True, help="resource identifier, e.g. /helloworld.txt")
    ap.add_argument("--to", help="chat target to send to (default: first --channel, else --server-name)")
    ap.add_argument("--output", help="write the resource here instead of stdout")
    ap.add_argument("--no-thanks", action="store_true")
    args = ap.parse_args()

    logging.basicConfig(level=args.log_level.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    config = from_args(args)
    target = args.to or (args.channel[0] if args.channel else args.server_name)

    with socket.create_connection((args.host, args.port)) as sock:
        chat = ChatSocket(sock)
        chat.register(config.name, args.channel)
        node = Node(config, chat)

        lines = node.request(target, args.server_name, args.resource)
        print(f"[client] requested {args.resource} from {args.server_name} ({lines} line(s))", file=sys.stderr)

        res = node.wait_for(ACT_RESPONSE, sender=args.server_name)
        data = res.payload or b""
        print(f"[client] received {len(data)} bytes", file=sys.stderr)
        if args.output:
            with open(args.output, "wb") as f:
                f.write(data)
        else:
            sys.stdout.buffer.write(data)
            sys.stdout.flush()

        if not args.no_thanks:
            node.send(target, args.server_name, ACT_THANKS)


if __name__ == "__main__":
    main()
