"""
Fixed-capacity exchange buffer

One buffer is opened per exchange and released on every exit path:

    with ExchangeBuffer(settings.buffer_size) as buf:
        transport.receive(sock, buf, settings.idle_gap_sec)
        payload = buf.payload

The last slot is reserved for a NUL terminator, so at most capacity - 1
payload bytes are ever stored. Anything beyond that is not copied; the
buffer only records that it was truncated.
"""
from __future__ import annotations

from typing import Optional

from udsfsm.exceptions import InvariantViolation


class ExchangeBuffer:
    def __init__(self, capacity: int):
        if capacity < 2:
            raise InvariantViolation(
                "Buffer capacity must leave room for payload and terminator",
                details={"capacity": capacity},
            )
        self.capacity = capacity
        self._data: Optional[bytearray] = None
        self.length = 0
        self.truncated = False

    def __enter__(self) -> "ExchangeBuffer":
        self._data = bytearray(self.capacity)
        self.length = 0
        self.truncated = False
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()

    @property
    def is_open(self) -> bool:
        return self._data is not None

    @property
    def limit(self) -> int:
        """Maximum payload size"""
        return self.capacity - 1

    @property
    def remaining(self) -> int:
        return self.limit - self.length

    @property
    def full(self) -> bool:
        return self.remaining == 0

    def append(self, chunk: bytes) -> int:
        """Copy as much of chunk as fits and keep the data terminated.

        Returns the number of bytes stored. Bytes that do not fit set the
        truncated flag.
        """
        data = self._require_open()
        take = min(len(chunk), self.remaining)
        data[self.length:self.length + take] = chunk[:take]
        self.length += take
        data[self.length] = 0
        if take < len(chunk):
            self.truncated = True
        return take

    def mark_truncated(self) -> None:
        self.truncated = True

    @property
    def payload(self) -> bytes:
        data = self._require_open()
        return bytes(data[:self.length])

    @property
    def raw(self) -> bytes:
        """Payload plus its NUL terminator"""
        data = self._require_open()
        return bytes(data[:self.length + 1])

    def release(self) -> None:
        if self._data is not None:
            self._data[:] = bytes(self.capacity)
            self._data = None

    def _require_open(self) -> bytearray:
        if self._data is None:
            raise InvariantViolation("Exchange buffer used outside its scope")
        return self._data
