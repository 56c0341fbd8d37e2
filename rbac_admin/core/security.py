"""JWT verification and RBAC authorization dependencies."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jose import JWTError, jwt
from sqlalchemy.orm import Session

from rbac_admin.core.config import settings
from rbac_admin.core.exceptions import ResourceNotFoundError, forbidden, not_found, unauthorized
from rbac_admin.db.session import get_db
from rbac_admin.services.access_guard import access_guard

# JWT bearer scheme
security_scheme = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as seen by the authorization layer."""
    user_id: int
    role_id: int


def decode_token(token: str) -> dict:
    """Decode and validate a JWT token."""
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
        return payload
    except JWTError:
        raise unauthorized("Invalid or expired token")


async def get_current_principal(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security_scheme),
) -> Principal:
    """Extract user id and role id from the JWT Bearer token."""
    if credentials is None:
        raise unauthorized()
    payload = decode_token(credentials.credentials)
    user_id = payload.get("sub")
    role_id = payload.get("role_id")
    if user_id is None or role_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )
    try:
        return Principal(user_id=int(user_id), role_id=int(role_id))
    except (TypeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token payload",
        )


class RequireAccess:
    """Dependency that checks the caller's role holds a feature permission."""

    def __init__(self, feature: str, permission: str):
        self.feature = feature
        self.permission = permission

    def __call__(
        self,
        principal: Principal = Depends(get_current_principal),
        db: Session = Depends(get_db),
    ) -> Principal:
        try:
            allowed = access_guard.check(db, principal.role_id, self.feature, self.permission)
        except ResourceNotFoundError as e:
            raise not_found(e.message)
        if not allowed:
            raise forbidden(
                f"Role {principal.role_id} lacks '{self.permission}' on '{self.feature}'"
            )
        return principal


# Convenience dependency factories for the admin API
require_settings_view = RequireAccess(settings.SETTINGS_FEATURE, "View")
require_settings_edit = RequireAccess(settings.SETTINGS_FEATURE, "Edit")
require_settings_create = RequireAccess(settings.SETTINGS_FEATURE, "Create")
require_settings_delete = RequireAccess(settings.SETTINGS_FEATURE, "Delete")
