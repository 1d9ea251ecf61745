"""
Core data models
"""
from datetime import datetime
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field


class ServerState(str, Enum):
    """Server state machine states"""

    START = "start"
    INIT = "init"
    BIND = "bind"
    LISTEN = "listen"
    ACCEPT = "accept"
    HANDLE = "handle"
    CLEANUP = "cleanup"
    ERROR = "error"
    SHUTDOWN = "shutdown"
    EXIT = "exit"


class ClientState(str, Enum):
    """Client state machine states"""

    START = "start"
    INIT = "init"
    CONNECT = "connect"
    PROCESS = "process"
    CLEANUP = "cleanup"
    ERROR = "error"
    EXIT = "exit"


class Role(str, Enum):
    SERVER = "server"
    CLIENT = "client"


class Exchange(BaseModel):
    """One request/response cycle as seen by one side"""

    received: bytes = b""
    sent: bytes = b""
    truncated: bool = False
    error: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.utcnow)

    @property
    def ok(self) -> bool:
        return self.error is None


class RunReport(BaseModel):
    """Outcome of one state machine run"""

    role: Role
    final_state: str
    history: List[str] = Field(default_factory=list)
    transition_coverage: Dict[str, int] = Field(default_factory=dict)
    exchanges: List[Exchange] = Field(default_factory=list)
    error: Optional[str] = None
    error_type: Optional[str] = None

    @property
    def failed(self) -> bool:
        return "error" in self.history

    @property
    def exit_code(self) -> int:
        return 1 if self.failed else 0
