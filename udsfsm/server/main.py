"""
Server process entry point

Binds the configured socket path and serves clients one at a time until
interrupted (Ctrl-C), until --max-connections clients have been served, or
until an unrecoverable socket error.
"""
import argparse
import sys
from typing import Optional

import structlog
from pydantic import ValidationError

from udsfsm.config import Settings
from udsfsm.logging import setup_logging
from udsfsm.server.machine import ServerMachine

logger = structlog.get_logger()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Unix domain socket ACK server")
    parser.add_argument("--socket-path", help="Filesystem path to bind")
    parser.add_argument("--buffer-size", type=int, help="Receive buffer capacity in bytes")
    parser.add_argument("--backlog", type=int, help="Pending connection queue length")
    parser.add_argument(
        "--max-connections",
        type=int,
        help="Shut down after serving this many clients (0 = unlimited)",
    )
    parser.add_argument(
        "--keep-serving",
        action="store_true",
        default=None,
        help="Return to accept after a failed client exchange instead of exiting",
    )
    parser.add_argument("--log-level", help="DEBUG, INFO, WARNING, ERROR")
    return parser


def load_settings(args: argparse.Namespace) -> Settings:
    overrides = {
        "socket_path": args.socket_path,
        "buffer_size": args.buffer_size,
        "backlog": args.backlog,
        "max_connections": args.max_connections,
        "keep_serving_on_client_error": args.keep_serving,
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

    setup_logging("server", settings)
    logger.info("server_starting", path=settings.socket_path, buffer_size=settings.buffer_size)

    report = ServerMachine(settings).run(install_signal_handlers=True)
    if report.failed:
        print(f"Error: {report.error}, shutting down.", file=sys.stderr)

    logger.info(
        "server_stopped",
        final_state=report.final_state,
        exchanges=len(report.exchanges),
        exit_code=report.exit_code,
    )
    return report.exit_code


if __name__ == "__main__":
    raise SystemExit(main())
