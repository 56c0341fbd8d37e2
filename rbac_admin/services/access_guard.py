"""Access guard — the single place authorization decisions are made."""

import logging
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_admin.core.exceptions import ResourceNotFoundError
from rbac_admin.services.acl_store import acl_store
from rbac_admin.services.permission_resolver import PermissionResolver, permission_resolver

logger = logging.getLogger("rbac_admin.guard")


class AccessGuard:
    """Answers allow/deny for a (role, feature name, permission name) triple."""

    def __init__(self, resolver: Optional[PermissionResolver] = None):
        self.resolver = resolver or permission_resolver

    def check(self, db: Session, role_id: int, feature_name: str, permission_name: str) -> bool:
        """Return True to allow, False to deny.

        Raises:
            ResourceNotFoundError: The feature or permission name is unknown.
                This is a configuration problem, not a denial.
        """
        try:
            feature = acl_store.find_feature_by_name(db, feature_name)
            permission = acl_store.find_permission_by_name(db, permission_name)
        except SQLAlchemyError:
            logger.exception("Storage failure resolving %s/%s", feature_name, permission_name)
            return False

        if feature is None:
            raise ResourceNotFoundError(f"Feature '{feature_name}' not found")
        if permission is None:
            raise ResourceNotFoundError(f"Permission '{permission_name}' not found")

        allowed = self.resolver.has_access(db, role_id, feature.id, permission.id)
        if not allowed:
            logger.info("Denied role %s: %s/%s", role_id, feature_name, permission_name)
        return allowed


access_guard = AccessGuard()
