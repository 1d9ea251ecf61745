"""
Client process entry point: one exchange with the server, then exit.
"""
import argparse
import sys
from typing import Optional

import structlog
from pydantic import ValidationError

from udsfsm.config import Settings
from udsfsm.logging import setup_logging
from udsfsm.client.machine import ClientMachine

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Unix domain socket client")
    parser.add_argument("--socket-path", help="Server socket path")
    parser.add_argument("--message", help="Message to send")
    parser.add_argument("--buffer-size", type=int, help="Receive buffer capacity in bytes")
    parser.add_argument("--timeout", type=float, help="Exchange timeout in seconds")
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "socket_path": args.socket_path,
        "message": args.message,
        "buffer_size": args.buffer_size,
        "exchange_timeout_sec": args.timeout,
        "log_level": args.log_level,
    }
    return Settings(**{k: v for k, v in overrides.items() if v is not None})


def main(argv: Optional[list] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        settings = load_settings(args)
    except ValidationError as e:
        print(f"Invalid configuration: {e}", file=sys.stderr)
        return 2

    setup_logging("client", settings)

    machine = ClientMachine(settings)
    report = machine.run()

    if report.failed:
        print(f"Error: {report.error}, shutting down.", file=sys.stderr)
    else:
        print(f"Received: {machine.reply.decode('utf-8', errors='replace')}")
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
