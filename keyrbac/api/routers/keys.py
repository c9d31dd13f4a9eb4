from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status

from keyrbac.api.deps import get_caller, get_reconcile_dependencies
from keyrbac.domain.errors import (
    AuthorizationDeniedError,
    InternalError,
    NotFoundError,
    ReconcileError,
    ValidationError,
)
from keyrbac.domain.models import BoundEntityRead, SetPermissionsRequest, SetRolesRequest
from keyrbac.domain.reconcile import EntityRecord, desired_items_from_refs
from keyrbac.services.entity_kinds import PERMISSION_KIND, ROLE_KIND
from keyrbac.services.reconciliation_service import (
    CallerContext,
    KeyBindingReconciler,
    ReconcileDependencies,
)

router = APIRouter()


def get_permission_reconciler(
    deps: Annotated[ReconcileDependencies, Depends(get_reconcile_dependencies)],
) -> KeyBindingReconciler:
    return KeyBindingReconciler(deps, PERMISSION_KIND)


def get_role_reconciler(
    deps: Annotated[ReconcileDependencies, Depends(get_reconcile_dependencies)],
) -> KeyBindingReconciler:
    return KeyBindingReconciler(deps, ROLE_KIND)


Caller = Annotated[CallerContext, Depends(get_caller)]
PermissionReconciler = Annotated[KeyBindingReconciler, Depends(get_permission_reconciler)]
RoleReconciler = Annotated[KeyBindingReconciler, Depends(get_role_reconciler)]


def _handle_reconcile_error(exc: ReconcileError) -> None:
    if isinstance(exc, NotFoundError):
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    if isinstance(exc, AuthorizationDeniedError):
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail=exc.message) from exc
    if isinstance(exc, ValidationError):
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    if isinstance(exc, InternalError):
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc)) from exc
    raise exc


def _read(entities: list[EntityRecord]) -> list[BoundEntityRead]:
    return [BoundEntityRead.model_validate(item) for item in entities]


@router.get("/{key_id}/permissions", response_model=list[BoundEntityRead])
def list_key_permissions(key_id: str, caller: Caller, reconciler: PermissionReconciler) -> list[BoundEntityRead]:
    try:
        return _read(reconciler.list_bound(caller, key_id))
    except ReconcileError as exc:
        _handle_reconcile_error(exc)
        raise


@router.put("/{key_id}/permissions", response_model=list[BoundEntityRead])
def set_key_permissions(
    key_id: str,
    payload: SetPermissionsRequest,
    caller: Caller,
    reconciler: PermissionReconciler,
) -> list[BoundEntityRead]:
    try:
        result = reconciler.reconcile(caller, key_id, desired_items_from_refs(payload.permissions))
        return _read(result.entities)
    except ReconcileError as exc:
        _handle_reconcile_error(exc)
        raise


@router.get("/{key_id}/roles", response_model=list[BoundEntityRead])
def list_key_roles(key_id: str, caller: Caller, reconciler: RoleReconciler) -> list[BoundEntityRead]:
    try:
        return _read(reconciler.list_bound(caller, key_id))
    except ReconcileError as exc:
        _handle_reconcile_error(exc)
        raise


@router.put("/{key_id}/roles", response_model=list[BoundEntityRead])
def set_key_roles(
    key_id: str,
    payload: SetRolesRequest,
    caller: Caller,
    reconciler: RoleReconciler,
) -> list[BoundEntityRead]:
    try:
        result = reconciler.reconcile(caller, key_id, desired_items_from_refs(payload.roles))
        return _read(result.entities)
    except ReconcileError as exc:
        _handle_reconcile_error(exc)
        raise
