from __future__ import annotations

import os
from dataclasses import dataclass
from datetime import UTC, datetime, timedelta
from typing import Any

import jwt

JWT_SECRET = os.getenv("JWT_SECRET", "dev-secret-change-me")
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
JWT_EXPIRES_MIN = int(os.getenv("JWT_EXPIRES_MIN", "60"))


class InvalidTokenError(ValueError):
    pass


@dataclass(frozen=True, slots=True)
class RootKeyClaims:
    """Identity of the root key calling the API and what it may do."""

    root_key_id: str | None
    workspace_id: str
    permissions: tuple[str, ...]


def create_access_token(
    *,
    root_key_id: str,
    workspace_id: str,
    permissions: list[str] | None = None,
    expires_minutes: int | None = None,
) -> str:
    issued_at = datetime.now(UTC)
    lifetime = timedelta(minutes=expires_minutes or JWT_EXPIRES_MIN)
    return jwt.encode(
        {
            "sub": root_key_id,
            "tenant_id": workspace_id,
            "permissions": permissions or [],
            "iat": int(issued_at.timestamp()),
            "exp": int((issued_at + lifetime).timestamp()),
        },
        JWT_SECRET,
        algorithm=JWT_ALGORITHM,
    )


def decode_access_token(token: str) -> dict[str, Any]:
    try:
        decoded = jwt.decode(token, JWT_SECRET, algorithms=[JWT_ALGORITHM])
    except jwt.PyJWTError as exc:
        raise InvalidTokenError(str(exc)) from exc
    if not isinstance(decoded, dict):
        raise InvalidTokenError("token payload is not an object")
    return decoded


def parse_root_key_claims(claims: dict[str, Any]) -> RootKeyClaims:
    workspace_id = claims.get("tenant_id")
    if not isinstance(workspace_id, str) or not workspace_id:
        raise InvalidTokenError("token has no workspace")
    subject = claims.get("sub")
    permissions = claims.get("permissions")
    if not isinstance(permissions, list):
        permissions = []
    return RootKeyClaims(
        root_key_id=subject if isinstance(subject, str) else None,
        workspace_id=workspace_id,
        # non-string entries are ignored rather than rejected
        permissions=tuple(item for item in permissions if isinstance(item, str)),
    )
