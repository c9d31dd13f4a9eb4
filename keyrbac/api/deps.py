from __future__ import annotations

from typing import Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from keyrbac.infra.auth import InvalidTokenError, RootKeyClaims, decode_access_token, parse_root_key_claims
from keyrbac.infra.background import BackgroundTaskRegistry
from keyrbac.services.reconciliation_service import CallerContext, ReconcileDependencies

bearer_scheme = HTTPBearer()


def get_current_claims(
    request: Request,
    credentials: HTTPAuthorizationCredentials = Depends(bearer_scheme),
) -> RootKeyClaims:
    try:
        claims = parse_root_key_claims(decode_access_token(credentials.credentials))
    except InvalidTokenError as exc:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token",
        ) from exc
    request.state.claims = claims
    return claims


def get_caller(
    request: Request,
    claims: Annotated[RootKeyClaims, Depends(get_current_claims)],
) -> CallerContext:
    return CallerContext(
        workspace_id=claims.workspace_id,
        actor_id=claims.root_key_id,
        permissions=claims.permissions,
        location=request.client.host if request.client is not None else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_background_registry(request: Request) -> BackgroundTaskRegistry:
    return request.app.state.background


def get_reconcile_dependencies(
    background: Annotated[BackgroundTaskRegistry, Depends(get_background_registry)],
) -> ReconcileDependencies:
    return ReconcileDependencies.default(background)
