from __future__ import annotations

from dataclasses import dataclass

PERM_WILDCARD = "*"

ACTION_UPDATE_KEY = "update_key"
ACTION_READ_KEY = "read_key"
ACTION_CREATE_PERMISSION = "create_permission"
ACTION_ADD_PERMISSION_TO_KEY = "add_permission_to_key"
ACTION_REMOVE_PERMISSION_FROM_KEY = "remove_permission_from_key"
ACTION_CREATE_ROLE = "create_role"
ACTION_ADD_ROLE_TO_KEY = "add_role_to_key"
ACTION_REMOVE_ROLE_FROM_KEY = "remove_role_from_key"


@dataclass(frozen=True, slots=True)
class Or:
    operands: tuple[PermissionQuery, ...]


@dataclass(frozen=True, slots=True)
class And:
    operands: tuple[PermissionQuery, ...]


PermissionQuery = str | Or | And


@dataclass(frozen=True, slots=True)
class Decision:
    valid: bool
    message: str = ""


def or_(*operands: PermissionQuery) -> Or:
    return Or(tuple(operands))


def and_(*operands: PermissionQuery) -> And:
    return And(tuple(operands))


def api_permission(api_id: str, action: str) -> str:
    return f"api.{api_id}.{action}"


def rbac_permission(action: str) -> str:
    return f"rbac.*.{action}"


def update_key_query(api_id: str) -> Or:
    return or_(
        PERM_WILDCARD,
        api_permission("*", ACTION_UPDATE_KEY),
        api_permission(api_id, ACTION_UPDATE_KEY),
    )


def read_key_query(api_id: str) -> Or:
    return or_(
        PERM_WILDCARD,
        api_permission("*", ACTION_READ_KEY),
        api_permission(api_id, ACTION_READ_KEY),
    )


def rbac_query(action: str) -> Or:
    """Wildcard or the workspace-wide rbac permission for ``action``."""
    return or_(PERM_WILDCARD, rbac_permission(action))


def describe_query(query: PermissionQuery) -> str:
    if isinstance(query, str):
        return query
    joiner = " OR " if isinstance(query, Or) else " AND "
    return "(" + joiner.join(describe_query(item) for item in query.operands) + ")"
