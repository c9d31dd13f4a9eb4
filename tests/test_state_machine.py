from __future__ import annotations

from keyrbac.domain.state_machine import (
    RECONCILE_ALLOWED_TRANSITIONS,
    TERMINAL_STATES,
    ReconcileState,
    can_reconcile_transition,
)


def test_happy_path_is_allowed() -> None:
    path = [
        ReconcileState.FETCHING,
        ReconcileState.AUTHORIZING_UPDATE,
        ReconcileState.DIFFING,
        ReconcileState.AUTHORIZING_DISCONNECT,
        ReconcileState.DISCONNECTING,
        ReconcileState.AUTHORIZING_CREATE,
        ReconcileState.CREATING,
        ReconcileState.AUTHORIZING_CONNECT,
        ReconcileState.CONNECTING,
        ReconcileState.EMITTING,
        ReconcileState.DONE,
    ]
    for source, target in zip(path, path[1:]):
        assert can_reconcile_transition(source, target), (source, target)


def test_noop_goes_straight_to_emitting() -> None:
    assert can_reconcile_transition(ReconcileState.DIFFING, ReconcileState.EMITTING)


def test_mutation_classes_cannot_run_out_of_order() -> None:
    assert not can_reconcile_transition(ReconcileState.CONNECTING, ReconcileState.AUTHORIZING_DISCONNECT)
    assert not can_reconcile_transition(ReconcileState.CREATING, ReconcileState.EMITTING)
    assert not can_reconcile_transition(ReconcileState.FETCHING, ReconcileState.DIFFING)


def test_not_found_states() -> None:
    assert can_reconcile_transition(ReconcileState.FETCHING, ReconcileState.SUBJECT_NOT_FOUND)
    assert can_reconcile_transition(ReconcileState.DIFFING, ReconcileState.ENTITY_NOT_FOUND)
    assert not can_reconcile_transition(ReconcileState.CONNECTING, ReconcileState.ENTITY_NOT_FOUND)


def test_terminal_states_have_no_exits() -> None:
    for state in TERMINAL_STATES:
        assert RECONCILE_ALLOWED_TRANSITIONS[state] == set()
    assert set(RECONCILE_ALLOWED_TRANSITIONS) == set(ReconcileState)
