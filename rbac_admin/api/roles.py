"""Roles API router — role tree, grants, and effective permissions."""

from typing import List

from fastapi import APIRouter, Depends, status
from sqlalchemy.orm import Session

from rbac_admin.db.session import get_db
from rbac_admin.schemas.schemas import (
    RoleCreate, RoleUpdate, ParentUpdate, RoleOut, RoleNode,
    GrantRequest, GrantOut, CopyPermissionsRequest, CountResponse,
    RolePermissionsOut, MessageResponse,
)
from rbac_admin.services.hierarchy_service import hierarchy_service
from rbac_admin.services.permission_resolver import permission_resolver
from rbac_admin.services.role_store import role_store
from rbac_admin.core.security import (
    Principal,
    require_settings_create,
    require_settings_delete,
    require_settings_edit,
    require_settings_view,
)

router = APIRouter(prefix="/roles", tags=["roles"])


@router.get("/", response_model=List[RoleOut])
async def list_roles(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    """List roles with the number of users assigned to each."""
    return [
        RoleOut(
            id=role.id, name=role.name, description=role.description,
            parent_role_id=role.parent_role_id, user_count=count,
            created_at=role.created_at,
        )
        for role, count in role_store.list_roles(db)
    ]


@router.post("/", response_model=RoleOut, status_code=status.HTTP_201_CREATED)
async def create_role(
    body: RoleCreate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_create),
):
    """Create a role, optionally under a parent."""
    role = hierarchy_service.create_role(
        db, principal.user_id, body.name, body.description, body.parent_role_id,
    )
    return RoleOut.model_validate(role)


@router.get("/hierarchy", response_model=List[RoleNode])
async def get_hierarchy(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    """Return the role forest for tree display."""
    return hierarchy_service.get_hierarchy(db)


@router.post("/copy-permissions", response_model=CountResponse)
async def copy_permissions(
    body: CopyPermissionsRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Copy one role's direct grants onto another."""
    copied = hierarchy_service.copy_permissions(
        db, principal.user_id, body.source_role_id, body.target_role_id,
    )
    return CountResponse(message=f"Copied {copied} permission(s)", count=copied)


@router.get("/{role_id}", response_model=RoleOut)
async def get_role(
    role_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    """Get a single role."""
    role = role_store.get_role(db, role_id)
    out = RoleOut.model_validate(role)
    out.user_count = role_store.count_users(db, role_id)
    return out


@router.put("/{role_id}", response_model=RoleOut)
async def update_role(
    role_id: int,
    body: RoleUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Rename a role or change its description."""
    role = hierarchy_service.update_role(
        db, principal.user_id, role_id, body.name, body.description,
    )
    return RoleOut.model_validate(role)


@router.delete("/{role_id}", response_model=MessageResponse)
async def delete_role(
    role_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_delete),
):
    """Delete a role that has no users and no child roles."""
    hierarchy_service.delete_role(db, principal.user_id, role_id)
    return MessageResponse(message="Role deleted")


@router.put("/{role_id}/parent", response_model=RoleOut)
async def update_parent(
    role_id: int,
    body: ParentUpdate,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Move a role under another parent, or to the top level with null."""
    role = hierarchy_service.reparent(db, principal.user_id, role_id, body.parent_role_id)
    return RoleOut.model_validate(role)


@router.get("/{role_id}/permissions", response_model=RolePermissionsOut)
async def get_role_permissions(
    role_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    """Effective permissions of a role, including inherited ones."""
    role_store.get_role(db, role_id)
    return RolePermissionsOut(
        role_id=role_id,
        features=permission_resolver.describe(db, role_id),
    )


@router.post("/{role_id}/acl", response_model=GrantOut, status_code=status.HTTP_201_CREATED)
async def grant_permission(
    role_id: int,
    body: GrantRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Grant a role one permission on one feature."""
    hierarchy_service.grant_permission(
        db, principal.user_id, role_id, body.feature_id, body.permission_id,
    )
    return GrantOut(role_id=role_id, feature_id=body.feature_id, permission_id=body.permission_id)


@router.delete("/{role_id}/acl", response_model=CountResponse)
async def revoke_permission(
    role_id: int,
    body: GrantRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Revoke a direct grant. Revoking an absent grant is not an error."""
    removed = hierarchy_service.revoke_permission(
        db, principal.user_id, role_id, body.feature_id, body.permission_id,
    )
    return CountResponse(message=f"Revoked {removed} permission(s)", count=removed)


@router.post("/{role_id}/grant-full-access", response_model=CountResponse)
async def grant_full_access(
    role_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_edit),
):
    """Grant the role every permission on every feature."""
    added = hierarchy_service.grant_full_access(db, principal.user_id, role_id)
    return CountResponse(message=f"Added {added} permission(s)", count=added)
