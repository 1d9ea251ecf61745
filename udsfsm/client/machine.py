"""
Client state machine: connect once, send one message, read one reply.

    INIT -> CONNECT -> PROCESS -> CLEANUP -> EXIT

INIT, CONNECT and PROCESS route any socket failure to ERROR, which closes
the socket if one was created and logs the error.
"""
from __future__ import annotations

import structlog

from udsfsm.config import Settings
from udsfsm.engine import transport
from udsfsm.engine.buffer import ExchangeBuffer
from udsfsm.engine.context import ClientContext
from udsfsm.engine.fsm import StateMachine, Transition, TransitionTable
from udsfsm.exceptions import TransportError
from udsfsm.models import ClientState, Exchange, Role, RunReport

logger = structlog.get_logger()

C = ClientState


def init_state(ctx: ClientContext) -> ClientState:
    try:
        ctx.sock = transport.open_socket()
        transport.set_timeout(ctx.sock, ctx.settings.exchange_timeout_sec)
    except TransportError as e:
        ctx.error = e
        return C.ERROR

    ctx.address = transport.make_address(ctx.settings.socket_path)
    return C.CONNECT


def connect_state(ctx: ClientContext) -> ClientState:
    try:
        transport.connect(ctx.sock, ctx.address)
    except TransportError as e:
        ctx.error = e
        return C.ERROR

    logger.debug("client_connected", path=ctx.address)
    return C.PROCESS


def process_state(ctx: ClientContext) -> ClientState:
    settings = ctx.settings
    exchange = Exchange()
    ctx.exchanges.append(exchange)

    try:
        transport.send_all(ctx.sock, settings.message_bytes)
        exchange.sent = settings.message_bytes
        transport.shutdown_write(ctx.sock)

        with ExchangeBuffer(settings.buffer_size) as buf:
            transport.receive(ctx.sock, buf, settings.idle_gap_sec)
            exchange.received = buf.payload
            exchange.truncated = buf.truncated
    except TransportError as e:
        exchange.error = e.message
        ctx.error = e
        return C.ERROR

    logger.info(
        "reply_received",
        payload=exchange.received.decode("utf-8", errors="replace"),
        size=len(exchange.received),
    )
    return C.CLEANUP


def cleanup_state(ctx: ClientContext) -> ClientState:
    ctx.close_socket()
    return C.EXIT


def error_state(ctx: ClientContext) -> ClientState:
    ctx.close_socket()

    error = ctx.error
    logger.error(
        "client_error",
        error=error.message if error else "unknown error",
        error_type=type(error).__name__ if error else None,
        details=error.details if error else {},
        action="shutting_down",
    )
    return C.EXIT


def build_client_table() -> TransitionTable:
    return TransitionTable([
        Transition(C.START, C.INIT, init_state),
        Transition(C.INIT, C.CONNECT, connect_state),
        Transition(C.INIT, C.ERROR, error_state),
        Transition(C.CONNECT, C.PROCESS, process_state),
        Transition(C.CONNECT, C.ERROR, error_state),
        Transition(C.PROCESS, C.CLEANUP, cleanup_state),
        Transition(C.PROCESS, C.ERROR, error_state),
        Transition(C.CLEANUP, C.EXIT, None),
        Transition(C.ERROR, C.EXIT, None),
    ])


class ClientMachine:
    def __init__(self, settings: Settings):
        self.settings = settings
        self.context = ClientContext(settings=settings)
        self.machine = StateMachine("client-fsm", build_client_table())

    @property
    def reply(self) -> bytes:
        """Reply of the last successful exchange, empty if there was none"""
        for exchange in reversed(self.context.exchanges):
            if exchange.ok:
                return exchange.received
        return b""

    def run(self) -> RunReport:
        ctx = self.context
        run = self.machine.run(ctx, C.START, C.INIT)

        return RunReport(
            role=Role.CLIENT,
            final_state=run.final_state.value,
            history=[state.value for state in run.history],
            transition_coverage=dict(run.coverage),
            exchanges=list(ctx.exchanges),
            error=ctx.error.message if ctx.error else None,
            error_type=type(ctx.error).__name__ if ctx.error else None,
        )
