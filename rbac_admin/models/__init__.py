"""Models package — import all models so Alembic can discover them."""

from rbac_admin.models.role import Role
from rbac_admin.models.user import User
from rbac_admin.models.feature import Feature
from rbac_admin.models.permission import Permission
from rbac_admin.models.acl import ACL
from rbac_admin.models.audit_log import AuditLog

__all__ = ["Role", "User", "Feature", "Permission", "ACL", "AuditLog"]
