from __future__ import annotations

from uuid import uuid4

PERMISSION_PREFIX = "perm"
ROLE_PREFIX = "role"


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex}"


class PrefixedIdAllocator:
    def new(self, prefix: str) -> str:
        return new_id(prefix)
