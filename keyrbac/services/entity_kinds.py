from __future__ import annotations

from dataclasses import dataclass
from typing import Any

from keyrbac.domain.models import KeyPermission, KeyRole, Permission, Role
from keyrbac.domain.permissions import (
    ACTION_ADD_PERMISSION_TO_KEY,
    ACTION_ADD_ROLE_TO_KEY,
    ACTION_CREATE_PERMISSION,
    ACTION_CREATE_ROLE,
    ACTION_REMOVE_PERMISSION_FROM_KEY,
    ACTION_REMOVE_ROLE_FROM_KEY,
    PermissionQuery,
    rbac_query,
)
from keyrbac.infra.ids import PERMISSION_PREFIX, ROLE_PREFIX


@dataclass(frozen=True)
class EntityKind:
    """Everything that differs between reconciling permissions and roles."""

    name: str
    entity_model: Any
    binding_model: Any
    binding_entity_field: str
    id_prefix: str
    disconnect_query: PermissionQuery
    create_query: PermissionQuery
    connect_query: PermissionQuery

    @property
    def disconnect_event(self) -> str:
        return f"authorization.disconnect_{self.name}_and_key"

    @property
    def connect_event(self) -> str:
        return f"authorization.connect_{self.name}_and_key"

    @property
    def create_event(self) -> str:
        return f"{self.name}.create"


PERMISSION_KIND = EntityKind(
    name="permission",
    entity_model=Permission,
    binding_model=KeyPermission,
    binding_entity_field="permission_id",
    id_prefix=PERMISSION_PREFIX,
    disconnect_query=rbac_query(ACTION_REMOVE_PERMISSION_FROM_KEY),
    create_query=rbac_query(ACTION_CREATE_PERMISSION),
    connect_query=rbac_query(ACTION_ADD_PERMISSION_TO_KEY),
)

ROLE_KIND = EntityKind(
    name="role",
    entity_model=Role,
    binding_model=KeyRole,
    binding_entity_field="role_id",
    id_prefix=ROLE_PREFIX,
    disconnect_query=rbac_query(ACTION_REMOVE_ROLE_FROM_KEY),
    create_query=rbac_query(ACTION_CREATE_ROLE),
    connect_query=rbac_query(ACTION_ADD_ROLE_TO_KEY),
)
