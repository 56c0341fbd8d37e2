"""Catalog API router — read-only listings of features and permissions."""

from typing import List

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from rbac_admin.db.session import get_db
from rbac_admin.schemas.schemas import FeatureOut, PermissionOut
from rbac_admin.services.acl_store import acl_store
from rbac_admin.core.security import Principal, require_settings_view

router = APIRouter(tags=["catalog"])


@router.get("/features", response_model=List[FeatureOut])
async def list_features(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    return [FeatureOut.model_validate(f) for f in acl_store.list_all_features(db)]


@router.get("/permissions", response_model=List[PermissionOut])
async def list_permissions(
    db: Session = Depends(get_db),
    principal: Principal = Depends(require_settings_view),
):
    return [PermissionOut.model_validate(p) for p in acl_store.list_all_permissions(db)]
