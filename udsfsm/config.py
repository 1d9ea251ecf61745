"""
Runtime configuration
"""
from pathlib import Path

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings shared by the server and client processes"""

    # Socket
    socket_path: str = "/tmp/example.sock"
    backlog: int = Field(default=5, ge=1)

    # Exchange
    buffer_size: int = Field(default=1024, ge=2)  # includes the NUL terminator
    message: str = "Hello, World!!"
    ack: str = "ACK"
    exchange_timeout_sec: float = Field(default=5.0, gt=0)
    idle_gap_sec: float = Field(default=0.1, gt=0)  # quiet period that ends a message

    # Server loop behaviour
    keep_serving_on_client_error: bool = False
    max_connections: int = Field(default=0, ge=0)  # 0 = serve until stopped

    # Logging
    project_root: Path = Path(__file__).parent.parent
    log_dir: Path = project_root / "logs"
    log_level: str = "INFO"
    log_to_file: bool = True

    model_config = SettingsConfigDict(env_prefix="UDSFSM_", env_file=".env", frozen=True)

    @property
    def message_bytes(self) -> bytes:
        return self.message.encode("utf-8")

    @property
    def ack_bytes(self) -> bytes:
        return self.ack.encode("utf-8")
