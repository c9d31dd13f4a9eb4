from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from sqlmodel import Session

from keyrbac.domain.models import AuditLog
from keyrbac.infra.db import get_engine


@dataclass(frozen=True, slots=True)
class AuditResource:
    type: str
    id: str
    name: str | None = None
    meta: dict[str, Any] = field(default_factory=dict)

    def as_dict(self) -> dict[str, Any]:
        return {"type": self.type, "id": self.id, "name": self.name, "meta": dict(self.meta)}


@dataclass(frozen=True, slots=True)
class AuditEvent:
    workspace_id: str
    event: str
    actor_type: str
    actor_id: str | None
    description: str
    resources: tuple[AuditResource, ...] = ()
    context: dict[str, Any] = field(default_factory=dict)


def write_audit_logs(events: list[AuditEvent]) -> None:
    if not events:
        return
    with Session(get_engine()) as session:
        session.add_all(
            AuditLog(
                workspace_id=item.workspace_id,
                event=item.event,
                actor_type=item.actor_type,
                actor_id=item.actor_id,
                description=item.description,
                resources=[resource.as_dict() for resource in item.resources],
                context=dict(item.context),
            )
            for item in events
        )
        session.commit()


class DbAuditSink:
    def append(self, events: list[AuditEvent]) -> None:
        write_audit_logs(events)
