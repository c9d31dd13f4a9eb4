"""Desired-set diffing for key bindings.

Everything in this module is pure: it turns the current bindings of a key, the
entities that matched the request and the request itself into a
:class:`MutationPlan`. Storage and authorization happen elsewhere.
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import assert_never

from keyrbac.domain.errors import NotFoundError, ValidationError
from keyrbac.domain.models import EntityRef


@dataclass(frozen=True, slots=True)
class ById:
    id: str


@dataclass(frozen=True, slots=True)
class ByName:
    name: str
    create: bool = False


DesiredItem = ById | ByName


@dataclass(frozen=True, slots=True)
class EntityRecord:
    id: str
    name: str


@dataclass(frozen=True, slots=True)
class CurrentBinding:
    entity_id: str
    entity_name: str


@dataclass(frozen=True, slots=True)
class DesiredSet:
    ids: tuple[str, ...]
    names: tuple[str, ...]
    creatable: frozenset[str]

    @classmethod
    def from_items(cls, items: Iterable[DesiredItem]) -> DesiredSet:
        ids: dict[str, None] = {}
        names: dict[str, None] = {}
        creatable: set[str] = set()
        for item in items:
            if isinstance(item, ById):
                ids[item.id] = None
            elif isinstance(item, ByName):
                names[item.name] = None
                if item.create:
                    creatable.add(item.name)
            else:
                assert_never(item)
        return cls(ids=tuple(ids), names=tuple(names), creatable=frozenset(creatable))


@dataclass(frozen=True, slots=True)
class MutationPlan:
    to_disconnect: tuple[CurrentBinding, ...]
    to_create: tuple[str, ...]
    to_connect: tuple[EntityRecord, ...]
    # existing entities the key ends up bound to, created ones excluded
    resolved: tuple[EntityRecord, ...]

    @property
    def is_empty(self) -> bool:
        return not (self.to_disconnect or self.to_create or self.to_connect)


def desired_items_from_refs(refs: Iterable[EntityRef]) -> list[DesiredItem]:
    items: list[DesiredItem] = []
    for ref in refs:
        if ref.id is not None:
            items.append(ById(ref.id))
        elif ref.name is not None:
            if not ref.name.strip():
                raise ValidationError("name must not be blank")
            items.append(ByName(ref.name, create=ref.create))
    return items


def plan_mutations(
    *,
    kind: str,
    current_bindings: Sequence[CurrentBinding],
    current_entities: Sequence[EntityRecord],
    desired: DesiredSet,
) -> MutationPlan:
    """Compute the disconnect / create / connect sets for one key.

    Ids must already exist. Unknown names are only scheduled for creation when
    the request allowed it. An empty desired set disconnects everything.
    """
    wanted_ids = set(desired.ids)
    wanted_names = set(desired.names)

    to_disconnect = tuple(
        binding
        for binding in current_bindings
        if binding.entity_id not in wanted_ids and binding.entity_name not in wanted_names
    )

    found_ids = {entity.id for entity in current_entities}
    found_names = {entity.name for entity in current_entities}

    for entity_id in desired.ids:
        if entity_id not in found_ids:
            raise NotFoundError(f"{kind} {entity_id} not found")

    to_create: list[str] = []
    for name in desired.names:
        if name in found_names:
            continue
        if name not in desired.creatable:
            raise NotFoundError(f"{kind} {name} not found and not allowed to create")
        to_create.append(name)

    resolved: dict[str, EntityRecord] = {}
    for entity in current_entities:
        if entity.id in wanted_ids or entity.name in wanted_names:
            resolved.setdefault(entity.id, entity)

    bound_ids = {binding.entity_id for binding in current_bindings}
    to_connect = tuple(entity for entity in resolved.values() if entity.id not in bound_ids)

    return MutationPlan(
        to_disconnect=to_disconnect,
        to_create=tuple(to_create),
        to_connect=to_connect,
        resolved=tuple(resolved.values()),
    )
