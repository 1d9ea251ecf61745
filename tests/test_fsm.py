"""
Tests for the table-driven state machine driver.
"""
from enum import Enum

import pytest

from udsfsm.engine.fsm import MachineRun, StateMachine, Transition, TransitionTable
from udsfsm.exceptions import InvariantViolation, StateTransitionError


class Light(str, Enum):
    START = "start"
    RED = "red"
    GREEN = "green"
    BROKEN = "broken"
    EXIT = "exit"


class Counter:
    def __init__(self, cycles: int):
        self.cycles = cycles
        self.calls = []


def red(ctx: Counter) -> Light:
    ctx.calls.append("red")
    if ctx.cycles == 0:
        return Light.EXIT
    return Light.GREEN


def green(ctx: Counter) -> Light:
    ctx.calls.append("green")
    ctx.cycles -= 1
    return Light.RED


def broken(ctx: Counter) -> Light:
    return Light.GREEN


def _table(*extra: Transition) -> TransitionTable:
    return TransitionTable([
        Transition(Light.START, Light.RED, red),
        Transition(Light.RED, Light.GREEN, green),
        Transition(Light.GREEN, Light.RED, red),
        Transition(Light.RED, Light.EXIT, None),
        *extra,
    ])


class TestTransitionTable:
    """Tests for TransitionTable."""

    def test_lookup_returns_registered_transition(self):
        """Test that lookup finds a registered pair."""
        table = _table()
        transition = table.lookup(Light.RED, Light.GREEN)
        assert transition.handler is green
        assert transition.key == "red->green"

    def test_lookup_unknown_pair_raises(self):
        """Test that lookup of an unknown pair raises StateTransitionError."""
        table = _table()
        with pytest.raises(StateTransitionError) as exc_info:
            table.lookup(Light.GREEN, Light.EXIT)
        assert exc_info.value.source == "green"
        assert exc_info.value.target == "exit"

    def test_duplicate_transition_rejected(self):
        """Test that a duplicate row is rejected."""
        with pytest.raises(InvariantViolation, match="red->green"):
            _table(Transition(Light.RED, Light.GREEN, red))

    def test_targets_from(self):
        """Test that targets_from lists every destination of a state."""
        table = _table()
        assert set(table.targets_from(Light.RED)) == {Light.GREEN, Light.EXIT}
        assert len(table) == 4


class TestStateMachine:
    """Tests for the StateMachine driver."""

    def test_runs_until_exit_transition(self):
        """Test that the driver stops at a handler-less row."""
        ctx = Counter(cycles=2)
        run = StateMachine("lights", _table()).run(ctx, Light.START, Light.RED)

        assert isinstance(run, MachineRun)
        assert run.final_state is Light.EXIT
        assert ctx.calls == ["red", "green", "red", "green", "red"]

    def test_history_and_coverage(self):
        """Test that history and transition coverage are recorded."""
        run = StateMachine("lights", _table()).run(Counter(cycles=1), Light.START, Light.RED)

        assert run.history == [Light.RED, Light.GREEN, Light.RED, Light.EXIT]
        assert run.steps == 4
        assert run.coverage["start->red"] == 1
        assert run.coverage["red->green"] == 1
        assert run.coverage["green->red"] == 1
        assert run.coverage["red->exit"] == 1
        assert run.visited(Light.GREEN)
        assert not run.visited(Light.BROKEN)

    def test_unregistered_return_state_raises(self):
        """Test that a handler returning an unregistered state raises."""
        table = TransitionTable([
            Transition(Light.START, Light.BROKEN, broken),
        ])
        with pytest.raises(StateTransitionError):
            StateMachine("broken", table).run(Counter(0), Light.START, Light.BROKEN)

    def test_new_state_needs_only_table_rows(self):
        """Test that a new state works with table rows alone."""
        def detour(ctx: Counter) -> Light:
            ctx.calls.append("broken")
            return Light.EXIT

        def red_then_break(ctx: Counter) -> Light:
            ctx.calls.append("red")
            return Light.BROKEN

        table = TransitionTable([
            Transition(Light.START, Light.RED, red_then_break),
            Transition(Light.RED, Light.BROKEN, detour),
            Transition(Light.BROKEN, Light.EXIT, None),
        ])
        ctx = Counter(0)
        run = StateMachine("detour", table).run(ctx, Light.START, Light.RED)

        assert run.final_state is Light.EXIT
        assert ctx.calls == ["red", "broken"]

    def test_handler_receives_same_context(self):
        """Test that every handler sees the same context object."""
        seen = []

        def record(ctx):
            seen.append(ctx)
            return Light.EXIT

        table = TransitionTable([
            Transition(Light.START, Light.RED, record),
            Transition(Light.RED, Light.EXIT, None),
        ])
        ctx = object()
        StateMachine("ctx", table).run(ctx, Light.START, Light.RED)
        assert seen == [ctx]
