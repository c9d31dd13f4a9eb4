"""Default permission decider.

Evaluates a permission query tree against the flat list of permissions a
caller holds. Leaves match by exact string, so ``*`` and ``rbac.*.x`` are
literal permission names rather than patterns.
"""

from __future__ import annotations

from collections.abc import Iterable

from keyrbac.domain.permissions import And, Decision, Or, PermissionQuery


class PermissionQueryError(ValueError):
    pass


class RbacDecider:
    def evaluate(self, query: PermissionQuery, held: Iterable[str]) -> Decision:
        held_set = {item for item in held if isinstance(item, str)}
        return self._evaluate(query, held_set)

    def _evaluate(self, query: PermissionQuery, held: set[str]) -> Decision:
        if isinstance(query, str):
            if not query:
                raise PermissionQueryError("empty permission in query")
            if query in held:
                return Decision(valid=True)
            return Decision(valid=False, message=f"Missing permission: '{query}'")

        if not isinstance(query, (Or, And)):
            raise PermissionQueryError(f"unsupported query node: {type(query).__name__}")
        if not query.operands:
            raise PermissionQueryError("query operator without operands")

        if isinstance(query, Or):
            for operand in query.operands:
                if self._evaluate(operand, held).valid:
                    return Decision(valid=True)
            return Decision(
                valid=False,
                message=(
                    f"Missing one of these permissions: {_leaves(query)}, "
                    f"have: {sorted(held)}"
                ),
            )

        for operand in query.operands:
            decision = self._evaluate(operand, held)
            if not decision.valid:
                return decision
        return Decision(valid=True)


def _leaves(query: PermissionQuery) -> list[str]:
    if isinstance(query, str):
        return [query]
    return [leaf for operand in query.operands for leaf in _leaves(operand)]
