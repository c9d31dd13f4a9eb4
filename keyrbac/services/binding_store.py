from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

from sqlalchemy import and_, delete, or_
from sqlmodel import Session, col, select

from keyrbac.domain.models import Key, now_utc
from keyrbac.domain.reconcile import CurrentBinding, EntityRecord
from keyrbac.infra.db import get_engine
from keyrbac.services.entity_kinds import EntityKind


@dataclass(frozen=True, slots=True)
class KeyRecord:
    id: str
    workspace_id: str
    api_id: str
    name: str | None
    hash: str


class SqlBindingStore:
    """Workspace-scoped reads and bulk writes behind key reconciliation.

    Every method opens its own session, so reads can run on separate threads.
    Each write method is a single transaction.
    """

    def _session(self) -> Session:
        return Session(get_engine(), expire_on_commit=False)

    def find_live_key(self, workspace_id: str, key_id: str) -> KeyRecord | None:
        with self._session() as session:
            statement = (
                select(Key)
                .where(Key.id == key_id)
                .where(Key.workspace_id == workspace_id)
                .where(col(Key.deleted_at).is_(None))
            )
            key = session.exec(statement).first()
        if key is None:
            return None
        return KeyRecord(
            id=key.id,
            workspace_id=key.workspace_id,
            api_id=key.api_id,
            name=key.name,
            hash=key.hash,
        )

    def find_entities(
        self,
        kind: EntityKind,
        workspace_id: str,
        ids: Sequence[str],
        names: Sequence[str],
    ) -> list[EntityRecord]:
        model = kind.entity_model
        conditions = []
        if ids:
            conditions.append(col(model.id).in_(list(ids)))
        if names:
            conditions.append(col(model.name).in_(list(names)))
        if not conditions:
            return []
        with self._session() as session:
            statement = select(model).where(model.workspace_id == workspace_id).where(or_(*conditions))
            rows = session.exec(statement).all()
        return [EntityRecord(id=row.id, name=row.name) for row in rows]

    def list_bindings(self, kind: EntityKind, workspace_id: str, key_id: str) -> list[CurrentBinding]:
        model = kind.entity_model
        binding = kind.binding_model
        entity_id_column = getattr(binding, kind.binding_entity_field)
        with self._session() as session:
            statement = (
                select(model.id, model.name)
                .join(
                    binding,
                    and_(
                        entity_id_column == model.id,
                        binding.workspace_id == model.workspace_id,
                    ),
                )
                .where(binding.workspace_id == workspace_id)
                .where(binding.key_id == key_id)
            )
            rows = session.exec(statement).all()
        return [CurrentBinding(entity_id=entity_id, entity_name=name) for entity_id, name in rows]

    def insert_entities(self, kind: EntityKind, workspace_id: str, entities: Sequence[EntityRecord]) -> None:
        with self._session() as session:
            session.add_all(
                kind.entity_model(id=item.id, workspace_id=workspace_id, name=item.name)
                for item in entities
            )
            session.commit()

    def delete_bindings(
        self,
        kind: EntityKind,
        workspace_id: str,
        key_id: str,
        entity_ids: Sequence[str],
    ) -> None:
        binding = kind.binding_model
        entity_id_column = getattr(binding, kind.binding_entity_field)
        with self._session() as session:
            session.execute(
                delete(binding)
                .where(binding.workspace_id == workspace_id)
                .where(binding.key_id == key_id)
                .where(col(entity_id_column).in_(list(entity_ids)))
            )
            session.commit()

    def insert_bindings(
        self,
        kind: EntityKind,
        workspace_id: str,
        key_id: str,
        entity_ids: Sequence[str],
    ) -> None:
        created_at = now_utc()
        with self._session() as session:
            session.add_all(
                kind.binding_model(
                    workspace_id=workspace_id,
                    key_id=key_id,
                    created_at=created_at,
                    **{kind.binding_entity_field: entity_id},
                )
                for entity_id in entity_ids
            )
            session.commit()
