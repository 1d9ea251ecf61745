"""
Unix Domain Socket Wrappers

One function per socket call. Each either succeeds or raises a typed
TransportError subclass with the errno in ``details``; none of them
retries, loops over connections, or decides what happens next. That is
left to the state handlers.

The only multi-call helpers are send_all (sendall) and receive, which
drains a socket into an ExchangeBuffer until EOF, a full buffer, or a
quiet gap after some data has arrived.
"""
import errno
import os
import socket
import sys
from typing import Optional

import structlog

from udsfsm.engine.buffer import ExchangeBuffer
from udsfsm.exceptions import (
    AcceptError,
    AddressInUseError,
    BindError,
    ConnectError,
    ConnectionRefusedError as PeerRefusedError,
    ListenError,
    PeerClosedError,
    ReceiveError,
    ReceiveTimeoutError,
    SendError,
    SocketCreateError,
    TransportError,
)

logger = structlog.get_logger()

# sizeof(sockaddr_un.sun_path), terminator included
SUN_PATH_MAX = 108 if sys.platform.startswith("linux") else 104

RECV_CHUNK = 4096

_REFUSED_ERRNOS = (errno.ECONNREFUSED, errno.ENOENT)


def _details(exc: OSError, **extra) -> dict:
    details = {"errno": exc.errno, "error": exc.strerror or str(exc)}
    details.update(extra)
    return details


def make_address(path: str) -> str:
    """
    Build a sun_path value for the given filesystem path.

    Paths longer than the platform limit are cut down to fit, the same way
    a bounded string copy into sockaddr_un would; this is logged, not
    raised.
    """
    raw = os.fsencode(path)
    limit = SUN_PATH_MAX - 1
    if len(raw) > limit:
        logger.warning(
            "socket_path_truncated",
            path=path,
            length=len(raw),
            limit=limit,
        )
        raw = raw[:limit]
    return os.fsdecode(raw)


def open_socket() -> socket.socket:
    """Create an AF_UNIX stream socket."""
    try:
        return socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
    except OSError as e:
        raise SocketCreateError(f"socket: {e.strerror or e}", details=_details(e))


def bind(sock: socket.socket, address: str) -> None:
    try:
        sock.bind(address)
    except OSError as e:
        if e.errno == errno.EADDRINUSE:
            raise AddressInUseError(
                f"bind: address already in use: {address}",
                details=_details(e, path=address),
            )
        raise BindError(f"bind: {e.strerror or e}: {address}", details=_details(e, path=address))


def listen(sock: socket.socket, backlog: int) -> None:
    try:
        sock.listen(backlog)
    except OSError as e:
        raise ListenError(f"listen: {e.strerror or e}", details=_details(e, backlog=backlog))


def accept(sock: socket.socket) -> socket.socket:
    """
    Block until a client connects.

    Signals whose handlers return normally are retried by the interpreter;
    a handler that raises (see ShutdownRequested) aborts the call and the
    exception propagates unchanged.
    """
    try:
        client, _ = sock.accept()
    except OSError as e:
        raise AcceptError(f"accept: {e.strerror or e}", details=_details(e))
    return client


def connect(sock: socket.socket, address: str) -> None:
    try:
        sock.connect(address)
    except OSError as e:
        if e.errno in _REFUSED_ERRNOS:
            raise PeerRefusedError(
                f"connect: no server listening on {address}",
                details=_details(e, path=address),
            )
        raise ConnectError(f"connect: {e.strerror or e}: {address}", details=_details(e, path=address))


def set_timeout(sock: socket.socket, timeout_sec: Optional[float]) -> None:
    try:
        sock.settimeout(timeout_sec)
    except OSError as e:
        raise TransportError(f"settimeout: {e.strerror or e}", details=_details(e))


def send_all(sock: socket.socket, data: bytes) -> int:
    """Write every byte of data or raise SendError."""
    try:
        sock.sendall(data)
    except socket.timeout:
        raise SendError("write: timed out", details={"data_size": len(data)})
    except OSError as e:
        raise SendError(f"write: {e.strerror or e}", details=_details(e, data_size=len(data)))
    return len(data)


def shutdown_write(sock: socket.socket) -> None:
    """Signal end-of-message to the peer."""
    try:
        sock.shutdown(socket.SHUT_WR)
    except OSError as e:
        raise SendError(f"shutdown: {e.strerror or e}", details=_details(e))


def receive(
    sock: socket.socket,
    buffer: ExchangeBuffer,
    idle_timeout: Optional[float] = None,
) -> int:
    """
    Drain sock into buffer.

    Stops when the peer shuts down its write side, when the buffer holds
    capacity - 1 bytes, or when a read times out after at least one byte
    arrived. A full buffer with more data pending is flagged as truncated;
    the extra bytes are left unread.

    The socket's own timeout bounds the wait for the first byte. Once data
    has arrived, idle_timeout (when given) takes over, so a peer that writes
    and then waits for the reply without half-closing ends its message by
    going quiet. The original socket timeout is restored on return.

    Returns:
        Number of payload bytes stored

    Raises:
        PeerClosedError: EOF before any data
        ReceiveTimeoutError: Timeout before any data
        ReceiveError: Any other read failure before any data
    """
    previous = sock.gettimeout() if idle_timeout is not None else None
    try:
        return _drain(sock, buffer, idle_timeout)
    finally:
        if idle_timeout is not None:
            sock.settimeout(previous)


def _drain(sock: socket.socket, buffer: ExchangeBuffer, idle_timeout: Optional[float]) -> int:
    while not buffer.full:
        try:
            chunk = sock.recv(min(buffer.remaining, RECV_CHUNK))
        except socket.timeout:
            if buffer.length == 0:
                raise ReceiveTimeoutError("read: timed out waiting for data")
            logger.debug("receive_idle_end", received=buffer.length)
            return buffer.length
        except OSError as e:
            if buffer.length == 0:
                raise ReceiveError(f"read: {e.strerror or e}", details=_details(e))
            # Peer went away after sending; what arrived is the message.
            logger.debug("receive_error_after_data", received=buffer.length, error=str(e))
            return buffer.length

        if not chunk:
            if buffer.length == 0:
                raise PeerClosedError("read: connection closed by peer before any data")
            return buffer.length

        if buffer.length == 0 and idle_timeout is not None:
            sock.settimeout(idle_timeout)
        buffer.append(chunk)

    if _has_pending(sock):
        buffer.mark_truncated()
        logger.warning("receive_truncated", limit=buffer.limit)
    return buffer.length


def _has_pending(sock: socket.socket) -> bool:
    previous = sock.gettimeout()
    try:
        sock.settimeout(0.0)
        return bool(sock.recv(1, socket.MSG_PEEK))
    except (BlockingIOError, InterruptedError):
        return False
    except OSError as e:
        logger.debug("pending_probe_failed", error=str(e))
        return False
    finally:
        sock.settimeout(previous)


def close(sock: socket.socket) -> None:
    """Close a socket. Failures are logged, never raised."""
    try:
        sock.close()
    except OSError as e:
        logger.warning("socket_close_failed", error=str(e), error_type=type(e).__name__)


def unlink(path: str) -> bool:
    """Remove the socket file. Returns True if something was removed."""
    try:
        os.unlink(path)
    except FileNotFoundError:
        logger.debug("socket_file_already_gone", path=path)
        return False
    except OSError as e:
        logger.warning("socket_unlink_failed", path=path, error=str(e))
        return False
    return True
