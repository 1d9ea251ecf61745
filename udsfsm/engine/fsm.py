"""
Table-driven state machine driver

The driver knows nothing about sockets. It is handed a transition table
of (source, target, handler) triples and a starting pair, and then:

1. Looks up the transition registered for (source -> target)
2. Stops if that transition carries no handler (the exit marker)
3. Otherwise calls the handler with the shared context
4. Treats the returned state as the next target, with the old target
   becoming the new source

Adding a state means adding rows to a table and a handler function; the
driver itself never changes. A handler returning a state that has no row
for (current -> returned) is a programming error and raises
StateTransitionError instead of being routed anywhere.

Usage Example:
-------------
    table = TransitionTable([
        Transition(State.START, State.INIT, init_state),
        Transition(State.INIT, State.EXIT, None),
    ])
    run = StateMachine("demo", table).run(ctx, State.START, State.INIT)
    run.final_state  # State.EXIT
"""
from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Optional, Tuple

import structlog

from udsfsm.exceptions import InvariantViolation, StateTransitionError

logger = structlog.get_logger()

Handler = Callable[[Any], Enum]


@dataclass(frozen=True)
class Transition:
    """One allowed move; handler None marks an exit transition"""

    source: Enum
    target: Enum
    handler: Optional[Handler]

    @property
    def key(self) -> str:
        return f"{self.source.value}->{self.target.value}"


class TransitionTable:
    """Indexes transitions by (source, target)"""

    def __init__(self, transitions: Iterable[Transition]):
        self._transitions: Dict[Tuple[Enum, Enum], Transition] = {}
        for transition in transitions:
            pair = (transition.source, transition.target)
            if pair in self._transitions:
                raise InvariantViolation(
                    f"Duplicate transition {transition.key}",
                    details={"transition": transition.key},
                )
            self._transitions[pair] = transition

    def __len__(self) -> int:
        return len(self._transitions)

    def __iter__(self):
        return iter(self._transitions.values())

    def lookup(self, source: Enum, target: Enum) -> Transition:
        try:
            return self._transitions[(source, target)]
        except KeyError:
            raise StateTransitionError(
                f"No transition from {source.value} to {target.value}",
                source=source.value,
                target=target.value,
            ) from None

    def targets_from(self, source: Enum) -> List[Enum]:
        return [t.target for t in self._transitions.values() if t.source == source]


@dataclass
class MachineRun:
    """Bookkeeping for a single run of a state machine"""

    name: str
    final_state: Optional[Enum] = None
    history: List[Enum] = field(default_factory=list)
    coverage: Counter = field(default_factory=Counter)

    @property
    def steps(self) -> int:
        return len(self.history)

    def visited(self, state: Enum) -> bool:
        return state in self.history


class StateMachine:
    """
    Drives a TransitionTable against a context object.

    Args:
        name: Label used in log events
        table: Allowed transitions and their handlers
    """

    def __init__(self, name: str, table: TransitionTable):
        self.name = name
        self.table = table

    def run(self, context: Any, source: Enum, target: Enum) -> MachineRun:
        """
        Run until an exit transition is reached.

        Args:
            context: Passed unchanged to every handler
            source: Pseudo-state the machine starts from
            target: First real state

        Returns:
            MachineRun with history, coverage and the final state

        Raises:
            StateTransitionError: A handler returned an unregistered state
        """
        run = MachineRun(name=self.name)

        while True:
            transition = self.table.lookup(source, target)
            run.coverage[transition.key] += 1
            run.history.append(target)

            if transition.handler is None:
                run.final_state = target
                logger.debug("fsm_exit", machine=self.name, state=target.value, steps=run.steps)
                return run

            logger.debug("fsm_enter", machine=self.name, source=source.value, state=target.value)
            next_state = transition.handler(context)
            source, target = target, next_state
