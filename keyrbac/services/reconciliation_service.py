"""Desired-state reconciliation of the permissions and roles bound to a key.

One call of :meth:`KeyBindingReconciler.reconcile` reads the key, the requested
entities and the current bindings, diffs them, and then authorizes and applies
each non-empty mutation class in order: disconnect, create, connect. Each class
commits on its own, so a denial on a later class leaves earlier classes
applied. Cache invalidation and audit records go to the background registry.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from typing import ParamSpec, Protocol, TypeVar

from sqlalchemy.exc import SQLAlchemyError

from keyrbac.domain.errors import (
    AuthorizationDeniedError,
    InternalError,
    NotFoundError,
    ReconcileError,
)
from keyrbac.domain.permissions import (
    Decision,
    PermissionQuery,
    describe_query,
    read_key_query,
    update_key_query,
)
from keyrbac.domain.reconcile import (
    CurrentBinding,
    DesiredItem,
    DesiredSet,
    EntityRecord,
    MutationPlan,
    plan_mutations,
)
from keyrbac.domain.state_machine import ReconcileState, can_reconcile_transition
from keyrbac.infra.audit import AuditEvent, AuditResource, DbAuditSink
from keyrbac.infra.background import BackgroundTaskRegistry
from keyrbac.infra.cache import RedisKeyCache
from keyrbac.infra.ids import PrefixedIdAllocator
from keyrbac.infra.rbac import RbacDecider
from keyrbac.services.binding_store import KeyRecord, SqlBindingStore
from keyrbac.services.entity_kinds import EntityKind

logger = logging.getLogger(__name__)

P = ParamSpec("P")
T = TypeVar("T")

ROOT_KEY_ACTOR = "key"


class BindingStore(Protocol):
    def find_live_key(self, workspace_id: str, key_id: str) -> KeyRecord | None: ...

    def find_entities(
        self,
        kind: EntityKind,
        workspace_id: str,
        ids: Sequence[str],
        names: Sequence[str],
    ) -> list[EntityRecord]: ...

    def list_bindings(self, kind: EntityKind, workspace_id: str, key_id: str) -> list[CurrentBinding]: ...

    def insert_entities(self, kind: EntityKind, workspace_id: str, entities: Sequence[EntityRecord]) -> None: ...

    def delete_bindings(
        self,
        kind: EntityKind,
        workspace_id: str,
        key_id: str,
        entity_ids: Sequence[str],
    ) -> None: ...

    def insert_bindings(
        self,
        kind: EntityKind,
        workspace_id: str,
        key_id: str,
        entity_ids: Sequence[str],
    ) -> None: ...


class AuthorizationDecider(Protocol):
    def evaluate(self, query: PermissionQuery, held: Iterable[str]) -> Decision: ...


class KeyCacheInvalidator(Protocol):
    def invalidate(self, key_id: str, key_hash: str | None = None) -> None: ...


class AuditSink(Protocol):
    def append(self, events: list[AuditEvent]) -> None: ...


class IdAllocator(Protocol):
    def new(self, prefix: str) -> str: ...


@dataclass(frozen=True, slots=True)
class CallerContext:
    workspace_id: str
    actor_id: str | None
    permissions: tuple[str, ...]
    location: str | None = None
    user_agent: str | None = None


@dataclass(frozen=True, slots=True)
class ReconcileResult:
    entities: list[EntityRecord]
    plan: MutationPlan
    created: list[EntityRecord]


@dataclass
class ReconcileDependencies:
    store: BindingStore
    decider: AuthorizationDecider
    cache: KeyCacheInvalidator
    audit: AuditSink
    ids: IdAllocator
    background: BackgroundTaskRegistry

    @classmethod
    def default(cls, background: BackgroundTaskRegistry) -> ReconcileDependencies:
        return cls(
            store=SqlBindingStore(),
            decider=RbacDecider(),
            cache=RedisKeyCache(),
            audit=DbAuditSink(),
            ids=PrefixedIdAllocator(),
            background=background,
        )


class AuthorizationGate:
    def __init__(self, decider: AuthorizationDecider) -> None:
        self._decider = decider

    def require(self, query: PermissionQuery, held: Sequence[str]) -> None:
        try:
            decision = self._decider.evaluate(query, held)
        except Exception as exc:
            raise InternalError("unable to evaluate permissions") from exc
        if not decision.valid:
            logger.info("authorization denied for %s: %s", describe_query(query), decision.message)
            raise AuthorizationDeniedError(decision.message)


class EntityProvisioner:
    def __init__(self, store: BindingStore, ids: IdAllocator) -> None:
        self._store = store
        self._ids = ids

    def provision(self, kind: EntityKind, workspace_id: str, names: Sequence[str]) -> list[EntityRecord]:
        created = [EntityRecord(id=self._ids.new(kind.id_prefix), name=name) for name in names]
        self._store.insert_entities(kind, workspace_id, created)
        return created


class BindingSyncer:
    def __init__(self, store: BindingStore) -> None:
        self._store = store

    def disconnect(self, kind: EntityKind, key: KeyRecord, entity_ids: Sequence[str]) -> None:
        self._store.delete_bindings(kind, key.workspace_id, key.id, entity_ids)

    def connect(self, kind: EntityKind, key: KeyRecord, entity_ids: Sequence[str]) -> None:
        self._store.insert_bindings(kind, key.workspace_id, key.id, entity_ids)


class SideEffectEmitter:
    """Hands cache invalidation and audit writes to the background registry."""

    def __init__(
        self,
        cache: KeyCacheInvalidator,
        audit: AuditSink,
        background: BackgroundTaskRegistry,
    ) -> None:
        self._cache = cache
        self._audit = audit
        self._background = background

    def emit(self, key: KeyRecord, events: list[AuditEvent]) -> None:
        if not events:
            return
        self._background.submit(
            f"invalidate key cache {key.id}",
            self._cache.invalidate,
            key.id,
            key.hash,
        )
        self._background.submit(f"audit {len(events)} events for key {key.id}", self._audit.append, events)


class _Run:
    def __init__(self, kind: EntityKind, key_id: str) -> None:
        self.kind = kind
        self.key_id = key_id
        self.state = ReconcileState.FETCHING

    def advance(self, target: ReconcileState) -> None:
        if not can_reconcile_transition(self.state, target):
            raise InternalError(f"invalid reconcile transition {self.state} -> {target}")
        logger.debug("reconcile %s for key %s: %s -> %s", self.kind.name, self.key_id, self.state, target)
        self.state = target

    def fail(self, exc: ReconcileError) -> None:
        if isinstance(exc, NotFoundError):
            target = (
                ReconcileState.SUBJECT_NOT_FOUND
                if self.state == ReconcileState.FETCHING
                else ReconcileState.ENTITY_NOT_FOUND
            )
        elif isinstance(exc, AuthorizationDeniedError):
            target = ReconcileState.AUTHORIZATION_DENIED
        else:
            target = ReconcileState.INTERNAL_ERROR
        if can_reconcile_transition(self.state, target):
            self.state = target
        else:
            logger.error("reconcile %s for key %s failed in state %s", self.kind.name, self.key_id, self.state)
            self.state = ReconcileState.INTERNAL_ERROR


class KeyBindingReconciler:
    def __init__(self, deps: ReconcileDependencies, kind: EntityKind) -> None:
        self.kind = kind
        self._store = deps.store
        self._gate = AuthorizationGate(deps.decider)
        self._provisioner = EntityProvisioner(deps.store, deps.ids)
        self._syncer = BindingSyncer(deps.store)
        self._emitter = SideEffectEmitter(deps.cache, deps.audit, deps.background)
        self.last_state: ReconcileState | None = None

    def list_bound(self, caller: CallerContext, key_id: str) -> list[EntityRecord]:
        key = self._storage(self._store.find_live_key, caller.workspace_id, key_id)
        if key is None:
            raise NotFoundError(f"key {key_id} not found")
        self._gate.require(read_key_query(key.api_id), caller.permissions)
        bindings = self._storage(self._store.list_bindings, self.kind, key.workspace_id, key.id)
        return _sorted([EntityRecord(id=item.entity_id, name=item.entity_name) for item in bindings])

    def reconcile(
        self,
        caller: CallerContext,
        key_id: str,
        desired_items: Iterable[DesiredItem],
    ) -> ReconcileResult:
        run = _Run(self.kind, key_id)
        desired = DesiredSet.from_items(desired_items)
        key: KeyRecord | None = None
        events: list[AuditEvent] = []
        try:
            key, current_entities, current_bindings = self._fetch(caller, key_id, desired)
            if key is None:
                raise NotFoundError(f"key {key_id} not found")

            run.advance(ReconcileState.AUTHORIZING_UPDATE)
            self._gate.require(update_key_query(key.api_id), caller.permissions)

            run.advance(ReconcileState.DIFFING)
            plan = plan_mutations(
                kind=self.kind.name,
                current_bindings=current_bindings,
                current_entities=current_entities,
                desired=desired,
            )
            logger.debug(
                "reconcile %s for key %s: disconnect=%d create=%d connect=%d",
                self.kind.name,
                key.id,
                len(plan.to_disconnect),
                len(plan.to_create),
                len(plan.to_connect),
            )

            if plan.to_disconnect:
                run.advance(ReconcileState.AUTHORIZING_DISCONNECT)
                self._gate.require(self.kind.disconnect_query, caller.permissions)
                run.advance(ReconcileState.DISCONNECTING)
                self._storage(
                    self._syncer.disconnect,
                    self.kind,
                    key,
                    [item.entity_id for item in plan.to_disconnect],
                )
                events.extend(self._disconnect_event(caller, key, item) for item in plan.to_disconnect)

            created: list[EntityRecord] = []
            if plan.to_create:
                run.advance(ReconcileState.AUTHORIZING_CREATE)
                self._gate.require(self.kind.create_query, caller.permissions)
                run.advance(ReconcileState.CREATING)
                created = self._storage(self._provisioner.provision, self.kind, key.workspace_id, plan.to_create)
                events.extend(self._create_event(caller, key, item) for item in created)

            to_connect = [*plan.to_connect, *created]
            if to_connect:
                run.advance(ReconcileState.AUTHORIZING_CONNECT)
                self._gate.require(self.kind.connect_query, caller.permissions)
                run.advance(ReconcileState.CONNECTING)
                self._storage(self._syncer.connect, self.kind, key, [item.id for item in to_connect])
                events.extend(self._connect_event(caller, key, item) for item in to_connect)

            run.advance(ReconcileState.EMITTING)
            self._emitter.emit(key, events)
            run.advance(ReconcileState.DONE)
            return ReconcileResult(
                entities=_sorted([*plan.resolved, *created]),
                plan=plan,
                created=created,
            )
        except ReconcileError as exc:
            run.fail(exc)
            # mutations committed before the failure still get their audit trail
            if key is not None and events:
                self._emitter.emit(key, events)
            raise
        finally:
            self.last_state = run.state

    def _fetch(
        self,
        caller: CallerContext,
        key_id: str,
        desired: DesiredSet,
    ) -> tuple[KeyRecord | None, list[EntityRecord], list[CurrentBinding]]:
        workspace_id = caller.workspace_id
        with ThreadPoolExecutor(max_workers=3, thread_name_prefix="keyrbac-fetch") as pool:
            key_future = pool.submit(self._store.find_live_key, workspace_id, key_id)
            entities_future = pool.submit(
                self._store.find_entities,
                self.kind,
                workspace_id,
                desired.ids,
                desired.names,
            )
            bindings_future = pool.submit(self._store.list_bindings, self.kind, workspace_id, key_id)
            try:
                return key_future.result(), entities_future.result(), bindings_future.result()
            except SQLAlchemyError as exc:
                raise InternalError(f"unable to load {self.kind.name} bindings") from exc

    def _storage(self, func: Callable[P, T], *args: P.args, **kwargs: P.kwargs) -> T:
        try:
            return func(*args, **kwargs)
        except SQLAlchemyError as exc:
            raise InternalError(f"storage error while reconciling {self.kind.name}s") from exc

    def _key_resource(self, key: KeyRecord) -> AuditResource:
        return AuditResource(type="key", id=key.id, name=key.name)

    def _entity_resource(self, entity_id: str, name: str) -> AuditResource:
        return AuditResource(type=self.kind.name, id=entity_id, name=name)

    def _event(
        self,
        caller: CallerContext,
        key: KeyRecord,
        event: str,
        description: str,
        resources: tuple[AuditResource, ...],
    ) -> AuditEvent:
        return AuditEvent(
            workspace_id=key.workspace_id,
            event=event,
            actor_type=ROOT_KEY_ACTOR,
            actor_id=caller.actor_id,
            description=description,
            resources=resources,
            context={"location": caller.location, "user_agent": caller.user_agent},
        )

    def _disconnect_event(self, caller: CallerContext, key: KeyRecord, binding: CurrentBinding) -> AuditEvent:
        return self._event(
            caller,
            key,
            self.kind.disconnect_event,
            f"Removed {self.kind.name} {binding.entity_name} from key {key.id}",
            (self._key_resource(key), self._entity_resource(binding.entity_id, binding.entity_name)),
        )

    def _create_event(self, caller: CallerContext, key: KeyRecord, entity: EntityRecord) -> AuditEvent:
        return self._event(
            caller,
            key,
            self.kind.create_event,
            f"Created {self.kind.name} {entity.name} ({entity.id})",
            (self._entity_resource(entity.id, entity.name),),
        )

    def _connect_event(self, caller: CallerContext, key: KeyRecord, entity: EntityRecord) -> AuditEvent:
        return self._event(
            caller,
            key,
            self.kind.connect_event,
            f"Added {self.kind.name} {entity.name} to key {key.id}",
            (self._key_resource(key), self._entity_resource(entity.id, entity.name)),
        )


def _sorted(entities: Iterable[EntityRecord]) -> list[EntityRecord]:
    return sorted(entities, key=lambda item: (item.name, item.id))
