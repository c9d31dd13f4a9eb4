from __future__ import annotations

from enum import StrEnum


class ReconcileState(StrEnum):
    FETCHING = "FETCHING"
    AUTHORIZING_UPDATE = "AUTHORIZING_UPDATE"
    DIFFING = "DIFFING"
    AUTHORIZING_DISCONNECT = "AUTHORIZING_DISCONNECT"
    DISCONNECTING = "DISCONNECTING"
    AUTHORIZING_CREATE = "AUTHORIZING_CREATE"
    CREATING = "CREATING"
    AUTHORIZING_CONNECT = "AUTHORIZING_CONNECT"
    CONNECTING = "CONNECTING"
    EMITTING = "EMITTING"
    DONE = "DONE"
    SUBJECT_NOT_FOUND = "SUBJECT_NOT_FOUND"
    ENTITY_NOT_FOUND = "ENTITY_NOT_FOUND"
    AUTHORIZATION_DENIED = "AUTHORIZATION_DENIED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


TERMINAL_STATES: frozenset[ReconcileState] = frozenset(
    {
        ReconcileState.DONE,
        ReconcileState.SUBJECT_NOT_FOUND,
        ReconcileState.ENTITY_NOT_FOUND,
        ReconcileState.AUTHORIZATION_DENIED,
        ReconcileState.INTERNAL_ERROR,
    }
)

_AFTER_DIFF = {
    ReconcileState.AUTHORIZING_DISCONNECT,
    ReconcileState.AUTHORIZING_CREATE,
    ReconcileState.AUTHORIZING_CONNECT,
    ReconcileState.EMITTING,
}

RECONCILE_ALLOWED_TRANSITIONS: dict[ReconcileState, set[ReconcileState]] = {
    ReconcileState.FETCHING: {
        ReconcileState.AUTHORIZING_UPDATE,
        ReconcileState.SUBJECT_NOT_FOUND,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.AUTHORIZING_UPDATE: {
        ReconcileState.DIFFING,
        ReconcileState.AUTHORIZATION_DENIED,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.DIFFING: {
        *_AFTER_DIFF,
        ReconcileState.ENTITY_NOT_FOUND,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.AUTHORIZING_DISCONNECT: {
        ReconcileState.DISCONNECTING,
        ReconcileState.AUTHORIZATION_DENIED,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.DISCONNECTING: {
        ReconcileState.AUTHORIZING_CREATE,
        ReconcileState.AUTHORIZING_CONNECT,
        ReconcileState.EMITTING,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.AUTHORIZING_CREATE: {
        ReconcileState.CREATING,
        ReconcileState.AUTHORIZATION_DENIED,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.CREATING: {
        ReconcileState.AUTHORIZING_CONNECT,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.AUTHORIZING_CONNECT: {
        ReconcileState.CONNECTING,
        ReconcileState.AUTHORIZATION_DENIED,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.CONNECTING: {
        ReconcileState.EMITTING,
        ReconcileState.INTERNAL_ERROR,
    },
    ReconcileState.EMITTING: {ReconcileState.DONE},
    ReconcileState.DONE: set(),
    ReconcileState.SUBJECT_NOT_FOUND: set(),
    ReconcileState.ENTITY_NOT_FOUND: set(),
    ReconcileState.AUTHORIZATION_DENIED: set(),
    ReconcileState.INTERNAL_ERROR: set(),
}


def can_reconcile_transition(source: ReconcileState, target: ReconcileState) -> bool:
    return target in RECONCILE_ALLOWED_TRANSITIONS.get(source, set())
