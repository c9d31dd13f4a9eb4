from __future__ import annotations

from collections.abc import Generator, Iterable
from datetime import UTC, datetime
from pathlib import Path

import pytest
from sqlalchemy.engine import Engine
from sqlmodel import Session, SQLModel, select

from keyrbac.domain.errors import AuthorizationDeniedError, InternalError, NotFoundError
from keyrbac.domain.models import Api, AuditLog, Key, KeyPermission, KeyRole, Permission, Role, Workspace
from keyrbac.domain.permissions import Decision, PermissionQuery, describe_query
from keyrbac.domain.reconcile import ById, ByName
from keyrbac.domain.state_machine import ReconcileState
from keyrbac.infra import db
from keyrbac.infra.audit import DbAuditSink
from keyrbac.infra.background import BackgroundTaskRegistry
from keyrbac.infra.ids import PrefixedIdAllocator
from keyrbac.infra.rbac import RbacDecider
from keyrbac.services.binding_store import SqlBindingStore
from keyrbac.services.entity_kinds import PERMISSION_KIND, ROLE_KIND
from keyrbac.services.reconciliation_service import (
    CallerContext,
    KeyBindingReconciler,
    ReconcileDependencies,
)

UPDATE_KEY = "api.api_1.update_key"
REMOVE = "rbac.*.remove_permission_from_key"
CREATE = "rbac.*.create_permission"
ADD = "rbac.*.add_permission_to_key"


class RecordingDecider:
    def __init__(self, fail: bool = False) -> None:
        self._inner = RbacDecider()
        self._fail = fail
        self.queries: list[str] = []

    def evaluate(self, query: PermissionQuery, held: Iterable[str]) -> Decision:
        self.queries.append(describe_query(query))
        if self._fail:
            raise ConnectionError("decider unavailable")
        return self._inner.evaluate(query, held)


class FakeCache:
    def __init__(self, fail: bool = False) -> None:
        self._fail = fail
        self.invalidated: list[tuple[str, str | None]] = []

    def invalidate(self, key_id: str, key_hash: str | None = None) -> None:
        if self._fail:
            raise ConnectionError("redis unavailable")
        self.invalidated.append((key_id, key_hash))


@pytest.fixture()
def test_engine(monkeypatch: pytest.MonkeyPatch, tmp_path: Path) -> Generator[Engine, None, None]:
    db_path = tmp_path / "reconcile_test.db"
    engine = db.build_engine(f"sqlite:///{db_path}")
    SQLModel.metadata.create_all(engine)
    monkeypatch.setattr(db, "engine", engine)
    _seed(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def registry() -> Generator[BackgroundTaskRegistry, None, None]:
    background = BackgroundTaskRegistry(max_workers=2, max_pending=16)
    yield background
    background.shutdown(timeout=5)


def _seed(engine: Engine) -> None:
    with Session(engine) as session:
        session.add(Workspace(id="ws_1", name="acme"))
        session.add(Workspace(id="ws_2", name="globex"))
        session.commit()
        session.add(Api(id="api_1", workspace_id="ws_1", name="payments"))
        session.add(Api(id="api_2", workspace_id="ws_2", name="billing"))
        session.commit()
        session.add(Key(id="key_1", workspace_id="ws_1", api_id="api_1", name="ci", hash="hash_1"))
        session.add(
            Key(
                id="key_gone",
                workspace_id="ws_1",
                api_id="api_1",
                hash="hash_gone",
                deleted_at=datetime.now(UTC),
            )
        )
        session.add(Key(id="key_2", workspace_id="ws_2", api_id="api_2", hash="hash_2"))
        session.add(Permission(id="perm_read", workspace_id="ws_1", name="read"))
        session.add(Permission(id="perm_write", workspace_id="ws_1", name="write"))
        session.add(Permission(id="perm_foreign", workspace_id="ws_2", name="foreign"))
        session.add(Role(id="role_ops", workspace_id="ws_1", name="ops"))
        session.add(Role(id="role_dev", workspace_id="ws_1", name="dev"))
        session.commit()
        session.add(KeyPermission(workspace_id="ws_1", key_id="key_1", permission_id="perm_read"))
        session.add(KeyRole(workspace_id="ws_1", key_id="key_1", role_id="role_ops"))
        session.commit()


def _caller(*permissions: str) -> CallerContext:
    return CallerContext(
        workspace_id="ws_1",
        actor_id="root_key_1",
        permissions=permissions,
        location="10.0.0.1",
        user_agent="pytest",
    )


def _deps(
    registry: BackgroundTaskRegistry,
    decider: RecordingDecider | None = None,
    cache: FakeCache | None = None,
) -> ReconcileDependencies:
    return ReconcileDependencies(
        store=SqlBindingStore(),
        decider=decider or RecordingDecider(),
        cache=cache or FakeCache(),
        audit=DbAuditSink(),
        ids=PrefixedIdAllocator(),
        background=registry,
    )


def _bound_permissions(engine: Engine, key_id: str = "key_1") -> set[str]:
    with Session(engine) as session:
        rows = session.exec(select(KeyPermission).where(KeyPermission.key_id == key_id)).all()
    return {row.permission_id for row in rows}


def _audit_events(engine: Engine) -> list[str]:
    with Session(engine) as session:
        rows = session.exec(select(AuditLog)).all()
    return sorted(row.event for row in rows)


def test_replace_by_name_disconnects_and_connects(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    cache = FakeCache()
    reconciler = KeyBindingReconciler(_deps(registry, cache=cache), PERMISSION_KIND)

    result = reconciler.reconcile(_caller("*"), "key_1", [ByName("write")])

    assert [(item.id, item.name) for item in result.entities] == [("perm_write", "write")]
    assert _bound_permissions(test_engine) == {"perm_write"}
    assert reconciler.last_state == ReconcileState.DONE
    assert registry.drain(timeout=5)
    assert cache.invalidated == [("key_1", "hash_1")]
    assert _audit_events(test_engine) == [
        "authorization.connect_permission_and_key",
        "authorization.disconnect_permission_and_key",
    ]


def test_create_missing_name_and_connect(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    decider = RecordingDecider()
    reconciler = KeyBindingReconciler(_deps(registry, decider=decider), PERMISSION_KIND)

    result = reconciler.reconcile(
        _caller(UPDATE_KEY, CREATE, ADD),
        "key_1",
        [ById("perm_read"), ByName("deploy", create=True)],
    )

    names = [item.name for item in result.entities]
    assert names == ["deploy", "read"]
    created = result.created[0]
    assert created.id.startswith("perm_")
    assert _bound_permissions(test_engine) == {"perm_read", created.id}
    assert decider.queries == [
        "(* OR api.*.update_key OR api.api_1.update_key)",
        "(* OR rbac.*.create_permission)",
        "(* OR rbac.*.add_permission_to_key)",
    ]
    assert registry.drain(timeout=5)
    assert _audit_events(test_engine) == [
        "authorization.connect_permission_and_key",
        "permission.create",
    ]
    with Session(test_engine) as session:
        row = session.exec(select(AuditLog).where(AuditLog.event == "permission.create")).one()
    assert row.actor_type == "key"
    assert row.actor_id == "root_key_1"
    assert row.context == {"location": "10.0.0.1", "user_agent": "pytest"}


def test_missing_name_without_create_mutates_nothing(
    test_engine: Engine, registry: BackgroundTaskRegistry
) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), PERMISSION_KIND)

    with pytest.raises(NotFoundError, match="permission deploy not found and not allowed to create"):
        reconciler.reconcile(_caller("*"), "key_1", [ByName("deploy")])

    assert reconciler.last_state == ReconcileState.ENTITY_NOT_FOUND
    assert _bound_permissions(test_engine) == {"perm_read"}
    assert registry.drain(timeout=5)
    assert _audit_events(test_engine) == []


def test_second_identical_call_is_a_noop(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    cache = FakeCache()
    decider = RecordingDecider()
    reconciler = KeyBindingReconciler(_deps(registry, decider=decider, cache=cache), PERMISSION_KIND)
    desired = [ById("perm_read"), ByName("write")]

    reconciler.reconcile(_caller("*"), "key_1", desired)
    assert registry.drain(timeout=5)
    events_after_first = _audit_events(test_engine)
    decider.queries.clear()

    second = reconciler.reconcile(_caller("*"), "key_1", desired)

    assert second.plan.is_empty
    assert [item.name for item in second.entities] == ["read", "write"]
    assert decider.queries == ["(* OR api.*.update_key OR api.api_1.update_key)"]
    assert registry.drain(timeout=5)
    assert _audit_events(test_engine) == events_after_first
    assert len(cache.invalidated) == 1


def test_only_non_empty_classes_are_authorized(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    decider = RecordingDecider()
    reconciler = KeyBindingReconciler(_deps(registry, decider=decider), PERMISSION_KIND)

    reconciler.reconcile(_caller(UPDATE_KEY, ADD), "key_1", [ByName("read"), ByName("write")])

    assert _bound_permissions(test_engine) == {"perm_read", "perm_write"}
    assert "(* OR rbac.*.remove_permission_from_key)" not in decider.queries
    assert "(* OR rbac.*.create_permission)" not in decider.queries


def test_update_key_denial_stops_before_diffing(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), PERMISSION_KIND)

    with pytest.raises(AuthorizationDeniedError) as exc_info:
        reconciler.reconcile(_caller(REMOVE, ADD), "key_1", [ByName("write")])

    assert "api.api_1.update_key" in exc_info.value.message
    assert reconciler.last_state == ReconcileState.AUTHORIZATION_DENIED
    assert _bound_permissions(test_engine) == {"perm_read"}


def test_late_denial_keeps_earlier_disconnect(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), PERMISSION_KIND)

    with pytest.raises(AuthorizationDeniedError, match="rbac.\\*.add_permission_to_key"):
        reconciler.reconcile(_caller(UPDATE_KEY, REMOVE), "key_1", [ByName("write")])

    assert _bound_permissions(test_engine) == set()
    assert registry.drain(timeout=5)
    assert _audit_events(test_engine) == ["authorization.disconnect_permission_and_key"]


def test_decider_failure_is_internal_and_mutates_nothing(
    test_engine: Engine, registry: BackgroundTaskRegistry
) -> None:
    reconciler = KeyBindingReconciler(_deps(registry, decider=RecordingDecider(fail=True)), PERMISSION_KIND)

    with pytest.raises(InternalError):
        reconciler.reconcile(_caller("*"), "key_1", [ByName("write")])

    assert reconciler.last_state == ReconcileState.INTERNAL_ERROR
    assert _bound_permissions(test_engine) == {"perm_read"}


def test_cache_failure_does_not_fail_the_call(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    reconciler = KeyBindingReconciler(_deps(registry, cache=FakeCache(fail=True)), PERMISSION_KIND)

    result = reconciler.reconcile(_caller("*"), "key_1", [])

    assert result.entities == []
    assert _bound_permissions(test_engine) == set()
    assert registry.drain(timeout=5)
    assert registry.failures == 1
    assert _audit_events(test_engine) == ["authorization.disconnect_permission_and_key"]


@pytest.mark.parametrize("key_id", ["key_gone", "key_2", "key_missing"])
def test_unknown_deleted_or_foreign_key_is_not_found(
    test_engine: Engine,
    registry: BackgroundTaskRegistry,
    key_id: str,
) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), PERMISSION_KIND)

    with pytest.raises(NotFoundError, match=f"key {key_id} not found"):
        reconciler.reconcile(_caller("*"), key_id, [])

    assert reconciler.last_state == ReconcileState.SUBJECT_NOT_FOUND


def test_entity_of_other_workspace_is_not_found(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), PERMISSION_KIND)

    with pytest.raises(NotFoundError, match="permission perm_foreign not found"):
        reconciler.reconcile(_caller("*"), "key_1", [ById("perm_foreign")])

    assert _bound_permissions(test_engine) == {"perm_read"}


def test_roles_run_through_the_same_pipeline(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    decider = RecordingDecider()
    reconciler = KeyBindingReconciler(_deps(registry, decider=decider), ROLE_KIND)

    result = reconciler.reconcile(
        _caller(UPDATE_KEY, "rbac.*.remove_role_from_key", "rbac.*.add_role_to_key"),
        "key_1",
        [ByName("dev")],
    )

    assert [(item.id, item.name) for item in result.entities] == [("role_dev", "dev")]
    assert decider.queries[1:] == [
        "(* OR rbac.*.remove_role_from_key)",
        "(* OR rbac.*.add_role_to_key)",
    ]
    assert registry.drain(timeout=5)
    assert _audit_events(test_engine) == [
        "authorization.connect_role_and_key",
        "authorization.disconnect_role_and_key",
    ]


def test_list_bound_requires_read_key(test_engine: Engine, registry: BackgroundTaskRegistry) -> None:
    reconciler = KeyBindingReconciler(_deps(registry), ROLE_KIND)

    assert [item.name for item in reconciler.list_bound(_caller("api.*.read_key"), "key_1")] == ["ops"]
    with pytest.raises(AuthorizationDeniedError):
        reconciler.list_bound(_caller(UPDATE_KEY), "key_1")
    with pytest.raises(NotFoundError):
        reconciler.list_bound(_caller("*"), "key_gone")
