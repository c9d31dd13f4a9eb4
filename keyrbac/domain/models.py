from __future__ import annotations

from datetime import UTC, datetime
from typing import Any
from uuid import uuid4

from pydantic import BaseModel, ConfigDict, model_validator
from pydantic import Field as PydanticField
from sqlalchemy import JSON, Column, ForeignKeyConstraint, Index, UniqueConstraint
from sqlmodel import Field, SQLModel


def now_utc() -> datetime:
    return datetime.now(UTC)


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"
    __table_args__ = (Index("ix_audit_logs_workspace_event", "workspace_id", "event"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    workspace_id: str = Field(index=True)
    event: str
    actor_type: str
    actor_id: str | None = Field(default=None, index=True)
    description: str
    ts: datetime = Field(default_factory=now_utc, index=True)
    resources: list[dict[str, Any]] = Field(
        default_factory=list,
        sa_column=Column(JSON, nullable=False),
    )
    context: dict[str, Any] = Field(
        default_factory=dict,
        sa_column=Column(JSON, nullable=False),
    )


class Workspace(SQLModel, table=True):
    __tablename__ = "workspaces"

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    name: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Api(SQLModel, table=True):
    __tablename__ = "apis"
    __table_args__ = (UniqueConstraint("workspace_id", "id", name="uq_apis_workspace_id_id"),)

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    name: str
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Key(SQLModel, table=True):
    __tablename__ = "keys"
    __table_args__ = (
        UniqueConstraint("workspace_id", "id", name="uq_keys_workspace_id_id"),
        ForeignKeyConstraint(
            ["workspace_id", "api_id"],
            ["apis.workspace_id", "apis.id"],
            ondelete="CASCADE",
        ),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    api_id: str = Field(index=True)
    name: str | None = None
    hash: str = Field(index=True, unique=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)
    deleted_at: datetime | None = Field(default=None, index=True)


class Permission(SQLModel, table=True):
    __tablename__ = "permissions"
    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uq_permissions_workspace_name"),
        UniqueConstraint("workspace_id", "id", name="uq_permissions_workspace_id_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class Role(SQLModel, table=True):
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("workspace_id", "name", name="uq_roles_workspace_name"),
        UniqueConstraint("workspace_id", "id", name="uq_roles_workspace_id_id"),
    )

    id: str = Field(default_factory=lambda: str(uuid4()), primary_key=True)
    workspace_id: str = Field(foreign_key="workspaces.id", index=True)
    name: str = Field(index=True)
    description: str | None = None
    created_at: datetime = Field(default_factory=now_utc, index=True)


class KeyPermission(SQLModel, table=True):
    __tablename__ = "key_permissions"
    __table_args__ = (
        ForeignKeyConstraint(
            ["workspace_id", "key_id"],
            ["keys.workspace_id", "keys.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["workspace_id", "permission_id"],
            ["permissions.workspace_id", "permissions.id"],
            ondelete="CASCADE",
        ),
        Index("ix_key_permissions_workspace_key", "workspace_id", "key_id"),
    )

    workspace_id: str = Field(primary_key=True)
    key_id: str = Field(primary_key=True)
    permission_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class KeyRole(SQLModel, table=True):
    __tablename__ = "key_roles"
    __table_args__ = (
        ForeignKeyConstraint(
            ["workspace_id", "key_id"],
            ["keys.workspace_id", "keys.id"],
            ondelete="CASCADE",
        ),
        ForeignKeyConstraint(
            ["workspace_id", "role_id"],
            ["roles.workspace_id", "roles.id"],
            ondelete="CASCADE",
        ),
        Index("ix_key_roles_workspace_key", "workspace_id", "key_id"),
    )

    workspace_id: str = Field(primary_key=True)
    key_id: str = Field(primary_key=True)
    role_id: str = Field(primary_key=True)
    created_at: datetime = Field(default_factory=now_utc, index=True)


class ORMReadModel(BaseModel):
    model_config = ConfigDict(from_attributes=True)


class EntityRef(BaseModel):
    """One item of a desired set: an existing entity by id, or one by name.

    When both ``id`` and ``name`` are present the id is used. ``create`` only
    applies to name references.
    """

    id: str | None = PydanticField(default=None, min_length=3)
    name: str | None = PydanticField(default=None, min_length=1)
    create: bool = False

    @model_validator(mode="after")
    def _require_id_or_name(self) -> EntityRef:
        if self.id is None and self.name is None:
            raise ValueError("either id or name is required")
        return self


class SetPermissionsRequest(BaseModel):
    permissions: list[EntityRef]


class SetRolesRequest(BaseModel):
    roles: list[EntityRef]


class BoundEntityRead(ORMReadModel):
    id: str
    name: str
