"""Access API router — "what can I do" queries for the calling role."""

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from rbac_admin.db.session import get_db
from rbac_admin.schemas.schemas import AccessCheckOut, RolePermissionsOut
from rbac_admin.services.access_guard import access_guard
from rbac_admin.services.permission_resolver import permission_resolver
from rbac_admin.core.security import Principal, get_current_principal

router = APIRouter(prefix="/access", tags=["access"])


@router.get("/me", response_model=RolePermissionsOut)
async def my_permissions(
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Effective permissions of the caller's role, for building menus."""
    return RolePermissionsOut(
        role_id=principal.role_id,
        features=permission_resolver.describe(db, principal.role_id),
    )


@router.get("/check", response_model=AccessCheckOut)
async def check_access(
    feature: str = Query(..., min_length=1),
    permission: str = Query(..., min_length=1),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
):
    """Report whether the caller may use a feature permission.

    Unknown feature or permission names answer 404 rather than allowed=false.
    """
    allowed = access_guard.check(db, principal.role_id, feature, permission)
    return AccessCheckOut(
        role_id=principal.role_id, feature=feature, permission=permission, allowed=allowed,
    )
