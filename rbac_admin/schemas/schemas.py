"""Pydantic schemas for API request/response serialization."""

from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime


# ---- Common ----
class MessageResponse(BaseModel):
    message: str


# ---- Role ----
class RoleCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = None
    parent_role_id: Optional[int] = None

class RoleUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = None

class ParentUpdate(BaseModel):
    parent_role_id: Optional[int] = None

class RoleOut(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    parent_role_id: Optional[int] = None
    user_count: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True

class RoleNode(BaseModel):
    id: int
    name: str
    description: Optional[str] = None
    parent_role_id: Optional[int] = None
    children: List["RoleNode"] = []

RoleNode.model_rebuild()


# ---- Feature / Permission ----
class FeatureOut(BaseModel):
    id: int
    name: str
    route: Optional[str] = None
    icon: Optional[str] = None

    class Config:
        from_attributes = True

class PermissionOut(BaseModel):
    id: int
    name: str

    class Config:
        from_attributes = True


# ---- ACL ----
class GrantRequest(BaseModel):
    feature_id: int
    permission_id: int

class GrantOut(BaseModel):
    role_id: int
    feature_id: int
    permission_id: int

class CopyPermissionsRequest(BaseModel):
    source_role_id: int
    target_role_id: int

class CountResponse(BaseModel):
    message: str
    count: int


# ---- Effective permissions ----
class EffectivePermissionOut(BaseModel):
    id: int
    name: str
    inherited: bool
    granted_by_role_id: int
    granted_by_role_name: Optional[str] = None

class EffectiveFeatureOut(BaseModel):
    id: int
    name: str
    route: Optional[str] = None
    icon: Optional[str] = None
    permissions: List[EffectivePermissionOut]

class RolePermissionsOut(BaseModel):
    role_id: int
    features: List[EffectiveFeatureOut]

class AccessCheckOut(BaseModel):
    role_id: int
    feature: str
    permission: str
    allowed: bool
