"""
Server state machine

Serves one client at a time over a Unix domain socket:

    INIT -> BIND -> LISTEN -> ACCEPT -> HANDLE -> CLEANUP -> ACCEPT ...

Any socket failure goes to ERROR, which closes whatever is open (client
first, then the listening socket), removes the socket file if this run
bound it, logs the error and exits. SHUTDOWN is the clean exit taken on
SIGINT or once max_connections clients have been served.

By default a failed exchange with one client terminates the server, as a
failed accept does. With keep_serving_on_client_error the failure is
logged and the machine goes through CLEANUP back to ACCEPT instead.
"""
from __future__ import annotations

import signal
from typing import Callable, Optional

import structlog

from udsfsm.config import Settings
from udsfsm.engine import transport
from udsfsm.engine.buffer import ExchangeBuffer
from udsfsm.engine.context import ServerContext
from udsfsm.engine.fsm import StateMachine, Transition, TransitionTable
from udsfsm.exceptions import ShutdownRequested, TransportError
from udsfsm.models import Exchange, Role, RunReport, ServerState

logger = structlog.get_logger()

S = ServerState


def _text(payload: bytes) -> str:
    return payload.decode("utf-8", errors="replace")


def init_state(ctx: ServerContext) -> ServerState:
    try:
        ctx.server_sock = transport.open_socket()
    except TransportError as e:
        ctx.error = e
        return S.ERROR

    ctx.address = transport.make_address(ctx.settings.socket_path)
    return S.BIND


def bind_state(ctx: ServerContext) -> ServerState:
    try:
        transport.bind(ctx.server_sock, ctx.address)
    except TransportError as e:
        ctx.error = e
        return S.ERROR

    ctx.bound = True
    logger.debug("socket_bound", path=ctx.address)
    return S.LISTEN


def listen_state(ctx: ServerContext) -> ServerState:
    try:
        transport.listen(ctx.server_sock, ctx.backlog)
    except TransportError as e:
        ctx.error = e
        return S.ERROR

    logger.info("server_listening", path=ctx.address, backlog=ctx.backlog)
    if ctx.on_listening is not None:
        ctx.on_listening(ctx)
    return S.ACCEPT


def accept_state(ctx: ServerContext) -> ServerState:
    if ctx.stop_requested:
        return S.SHUTDOWN

    client = None
    try:
        ctx.accepting = True
        client = transport.accept(ctx.server_sock)
        ctx.accepting = False
    except ShutdownRequested:
        if client is not None:
            transport.close(client)
        logger.info("accept_interrupted", path=ctx.address)
        return S.SHUTDOWN
    except TransportError as e:
        ctx.error = e
        return S.ERROR
    finally:
        ctx.accepting = False

    if ctx.stop_requested:
        transport.close(client)
        return S.SHUTDOWN

    ctx.client_sock = client
    logger.debug("connection_accepted", path=ctx.address, served=ctx.served)
    return S.HANDLE


def handle_state(ctx: ServerContext) -> ServerState:
    settings = ctx.settings
    exchange = Exchange()
    ctx.exchanges.append(exchange)

    try:
        transport.set_timeout(ctx.client_sock, settings.exchange_timeout_sec)
        with ExchangeBuffer(settings.buffer_size) as buf:
            transport.receive(ctx.client_sock, buf, settings.idle_gap_sec)
            exchange.received = buf.payload
            exchange.truncated = buf.truncated

        logger.info(
            "message_received",
            payload=_text(exchange.received),
            size=len(exchange.received),
            truncated=exchange.truncated,
        )

        transport.send_all(ctx.client_sock, settings.ack_bytes)
        exchange.sent = settings.ack_bytes
    except TransportError as e:
        exchange.error = e.message
        return _client_failed(ctx, e)

    return S.CLEANUP


def _client_failed(ctx: ServerContext, error: TransportError) -> ServerState:
    if not ctx.settings.keep_serving_on_client_error:
        ctx.error = error
        return S.ERROR

    ctx.client_errors += 1
    logger.warning(
        "client_exchange_failed",
        error=error.message,
        error_type=type(error).__name__,
        client_errors=ctx.client_errors,
    )
    return S.CLEANUP


def cleanup_state(ctx: ServerContext) -> ServerState:
    ctx.close_client()
    ctx.served += 1

    if ctx.stop_requested or ctx.limit_reached:
        return S.SHUTDOWN
    return S.ACCEPT


def error_state(ctx: ServerContext) -> ServerState:
    ctx.close_client()
    ctx.close_server()

    error = ctx.error
    logger.error(
        "server_error",
        error=error.message if error else "unknown error",
        error_type=type(error).__name__ if error else None,
        details=error.details if error else {},
        action="shutting_down",
    )
    return S.EXIT


def shutdown_state(ctx: ServerContext) -> ServerState:
    ctx.close_client()
    ctx.close_server()
    logger.info("server_shutdown", path=ctx.address, served=ctx.served, client_errors=ctx.client_errors)
    return S.EXIT


def build_server_table() -> TransitionTable:
    return TransitionTable([
        Transition(S.START, S.INIT, init_state),
        Transition(S.INIT, S.BIND, bind_state),
        Transition(S.INIT, S.ERROR, error_state),
        Transition(S.BIND, S.LISTEN, listen_state),
        Transition(S.BIND, S.ERROR, error_state),
        Transition(S.LISTEN, S.ACCEPT, accept_state),
        Transition(S.LISTEN, S.ERROR, error_state),
        Transition(S.ACCEPT, S.HANDLE, handle_state),
        Transition(S.ACCEPT, S.ERROR, error_state),
        Transition(S.ACCEPT, S.SHUTDOWN, shutdown_state),
        Transition(S.HANDLE, S.CLEANUP, cleanup_state),
        Transition(S.HANDLE, S.ERROR, error_state),
        Transition(S.CLEANUP, S.ACCEPT, accept_state),
        Transition(S.CLEANUP, S.ERROR, error_state),
        Transition(S.CLEANUP, S.SHUTDOWN, shutdown_state),
        Transition(S.ERROR, S.EXIT, None),
        Transition(S.SHUTDOWN, S.EXIT, None),
    ])


class InterruptHandler:
    """
    SIGINT handling for one server run.

    The handler only records the request, except while the machine is
    blocked in accept(): there it raises ShutdownRequested so the call is
    abandoned instead of being transparently restarted. It raises at most
    once per accept call; a repeated interrupt only sets the flag again.
    Must be entered from the main thread.
    """

    def __init__(self, ctx: ServerContext):
        self.ctx = ctx
        self._previous = None

    def __enter__(self) -> "InterruptHandler":
        self._previous = signal.signal(signal.SIGINT, self.handle)
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        signal.signal(signal.SIGINT, self._previous)

    def handle(self, signum, frame) -> None:
        self.ctx.stop_requested = True
        if self.ctx.accepting:
            self.ctx.accepting = False
            raise ShutdownRequested("Interrupted while waiting for a connection")


class ServerMachine:
    """
    Runs the server state machine with a fresh context.

    Args:
        settings: Shared configuration, read-only
        on_listening: Called once the socket is accepting connections
    """

    def __init__(
        self,
        settings: Settings,
        on_listening: Optional[Callable[[ServerContext], None]] = None,
    ):
        self.settings = settings
        self.context = ServerContext(settings=settings, on_listening=on_listening)
        self.machine = StateMachine("server-fsm", build_server_table())

    def request_stop(self) -> None:
        """Finish the current exchange (if any) and shut down at the next ACCEPT or CLEANUP."""
        self.context.stop_requested = True

    def stop(self) -> None:
        """
        Request a stop from another thread and wake a blocked accept().

        The wake-up connection is closed without sending anything; the
        server drops it and goes to SHUTDOWN.
        """
        self.request_stop()
        ctx = self.context
        if not ctx.bound:
            return

        try:
            sock = transport.open_socket()
        except TransportError as e:
            logger.warning("stop_wakeup_failed", error=e.message)
            return
        try:
            transport.connect(sock, ctx.address)
        except TransportError as e:
            logger.debug("stop_wakeup_failed", error=e.message)
        finally:
            transport.close(sock)

    def run(self, install_signal_handlers: bool = False) -> RunReport:
        ctx = self.context
        if install_signal_handlers:
            with InterruptHandler(ctx):
                run = self.machine.run(ctx, S.START, S.INIT)
        else:
            run = self.machine.run(ctx, S.START, S.INIT)

        return RunReport(
            role=Role.SERVER,
            final_state=run.final_state.value,
            history=[state.value for state in run.history],
            transition_coverage=dict(run.coverage),
            exchanges=list(ctx.exchanges),
            error=ctx.error.message if ctx.error else None,
            error_type=type(ctx.error).__name__ if ctx.error else None,
        )
