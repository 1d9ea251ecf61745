"""
Per-run state shared by every handler of one machine.

A socket attribute of None means "absent": nothing to close, read or
write. close_* helpers are idempotent and only ever touch what is open.
"""
from __future__ import annotations

import socket
from dataclasses import dataclass, field
from typing import Callable, List, Optional

from udsfsm.config import Settings
from udsfsm.engine import transport
from udsfsm.exceptions import UdsFsmError
from udsfsm.models import Exchange


@dataclass
class ClientContext:
    settings: Settings
    sock: Optional[socket.socket] = None
    address: str = ""
    error: Optional[UdsFsmError] = None
    exchanges: List[Exchange] = field(default_factory=list)

    def close_socket(self) -> bool:
        if self.sock is None:
            return False
        transport.close(self.sock)
        self.sock = None
        return True


@dataclass
class ServerContext:
    settings: Settings
    server_sock: Optional[socket.socket] = None
    client_sock: Optional[socket.socket] = None
    address: str = ""
    backlog: int = 5
    error: Optional[UdsFsmError] = None
    exchanges: List[Exchange] = field(default_factory=list)
    bound: bool = False
    served: int = 0
    client_errors: int = 0
    stop_requested: bool = False
    accepting: bool = False
    on_listening: Optional[Callable[["ServerContext"], None]] = field(default=None, repr=False)

    def __post_init__(self) -> None:
        self.backlog = self.settings.backlog

    @property
    def limit_reached(self) -> bool:
        limit = self.settings.max_connections
        return limit > 0 and self.served >= limit

    def close_client(self) -> bool:
        if self.client_sock is None:
            return False
        transport.close(self.client_sock)
        self.client_sock = None
        return True

    def close_server(self) -> bool:
        """Close the listening socket; remove the socket file only if this run created it."""
        if self.server_sock is None:
            return False
        transport.close(self.server_sock)
        self.server_sock = None
        if self.bound:
            transport.unlink(self.address)
            self.bound = False
        return True
