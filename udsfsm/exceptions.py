"""
Exception hierarchy for the socket state machines

Every fallible socket operation raises one of these instead of returning a
status code. State handlers catch TransportError, park it on the run
context and move to their ERROR state. All custom exceptions inherit from
UdsFsmError so callers can catch the whole family with one except clause.
"""
from typing import Optional


class UdsFsmError(Exception):
    """
    Base exception for all udsfsm errors.

    Carries a human readable message plus a details dict (errno, path,
    byte counts) for structured logging.
    """
    def __init__(self, message: str, details: Optional[dict] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


# Socket and Transport Errors

class TransportError(UdsFsmError):
    """
    Socket operation failures.

    Base class for everything a socket wrapper can raise. State handlers
    route these to ERROR.
    """
    pass


class SocketCreateError(TransportError):
    """socket() failed."""
    pass


class BindError(TransportError):
    """bind() failed (permission denied, bad path, ...)."""
    pass


class AddressInUseError(BindError):
    """Socket path already exists (EADDRINUSE)."""
    pass


class ListenError(TransportError):
    """listen() failed."""
    pass


class AcceptError(TransportError):
    """accept() failed."""
    pass


class ConnectError(TransportError):
    """connect() failed."""
    pass


class ConnectionRefusedError(ConnectError):
    """Nobody is listening on the path (ECONNREFUSED / ENOENT)."""
    pass


class SendError(TransportError):
    """Failed to write to the peer."""
    pass


class ReceiveError(TransportError):
    """Failed to read from the peer."""
    pass


class ReceiveTimeoutError(ReceiveError):
    """Nothing arrived before the exchange timeout."""
    pass


class PeerClosedError(ReceiveError):
    """Peer closed the connection before sending anything."""
    pass


# State Machine Errors

class StateMachineError(UdsFsmError):
    """
    State machine configuration errors.

    These indicate a broken transition table, not a runtime failure, and
    are never routed to an ERROR state.
    """
    pass


class StateTransitionError(StateMachineError):
    """A handler returned a state with no matching transition."""
    def __init__(self, message: str, source: str, target: str):
        super().__init__(message, {"source": source, "target": target})
        self.source = source
        self.target = target


class ShutdownRequested(UdsFsmError):
    """
    Interrupt received while the server was blocked in accept().

    Raised from the SIGINT handler, caught by the ACCEPT state.
    """
    pass


class InvariantViolation(UdsFsmError):
    """
    Internal invariant violated.

    Indicates a bug (duplicate transitions, closing an absent socket...).
    """
    pass
