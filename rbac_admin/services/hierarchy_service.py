"""Hierarchy service — validated role-tree mutations and bulk ACL operations.

Every write runs in the caller's session and is committed here. On success
the resolver cache is invalidated and an audit record is queued; on failure
the transaction is rolled back and nothing is audited.
"""

import logging
from collections import deque
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Mapping, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_admin.core.exceptions import (
    InvalidOperationError,
    RBACError,
    ResourceConflictError,
    ResourceNotFoundError,
    StorageError,
)
from rbac_admin.models.acl import ACL
from rbac_admin.models.role import Role
from rbac_admin.services.acl_store import acl_store
from rbac_admin.services.audit_service import AuditService, audit_service
from rbac_admin.services.permission_resolver import PermissionResolver, permission_resolver
from rbac_admin.services.role_store import role_store

logger = logging.getLogger("rbac_admin.hierarchy")


def would_create_cycle(
    parents: Mapping[int, Optional[int]], role_id: int, new_parent_id: Optional[int],
) -> bool:
    """True if making ``new_parent_id`` the parent of ``role_id`` closes a loop.

    That is the case when the new parent is the role itself or sits anywhere
    in the subtree rooted at the role. The subtree is walked breadth-first
    over ``parents`` (id -> parent id).
    """
    if new_parent_id is None:
        return False
    if new_parent_id == role_id:
        return True

    children: Dict[int, List[int]] = {}
    for child_id, parent_id in parents.items():
        if parent_id is not None:
            children.setdefault(parent_id, []).append(child_id)

    visited = {role_id}
    queue = deque([role_id])
    while queue:
        current = queue.popleft()
        for child_id in children.get(current, ()):
            if child_id == new_parent_id:
                return True
            if child_id not in visited:
                visited.add(child_id)
                queue.append(child_id)
    return False


def _role_snapshot(role: Role) -> Dict[str, Any]:
    return {
        "name": role.name,
        "description": role.description,
        "parent_role_id": role.parent_role_id,
    }


class HierarchyService:
    """Role creation, re-parenting, deletion, and bulk grants."""

    def __init__(
        self,
        resolver: Optional[PermissionResolver] = None,
        audit: Optional[AuditService] = None,
    ):
        self.resolver = resolver or permission_resolver
        self.audit = audit or audit_service

    @contextmanager
    def _transaction(self, db: Session) -> Iterator[None]:
        try:
            yield
            db.commit()
        except RBACError:
            db.rollback()
            raise
        except SQLAlchemyError as e:
            db.rollback()
            logger.error("Role hierarchy write failed: %s", e)
            raise StorageError("Role store is unavailable") from e
        self.resolver.invalidate()

    def _notify(self, actor_id: Optional[int], action: str, role_id: int, **kwargs: Any) -> None:
        try:
            self.audit.notify(
                actor_id=actor_id,
                action=action,
                resource_type="role",
                resource_id=role_id,
                **kwargs,
            )
        except Exception:
            logger.exception("Audit notification failed for role %s", role_id)

    # ---- Tree shape ----

    def create_role(
        self,
        db: Session,
        actor_id: Optional[int],
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
    ) -> Role:
        """Create a role, optionally under an existing parent."""
        with self._transaction(db):
            if parent_id is not None:
                # Keep the parent row from disappearing before commit.
                role_store.parent_map(db, lock=True)
            role = role_store.create_role(db, name, description, parent_id)
        logger.info("Role %s (%s) created under %s", role.id, role.name, parent_id)
        self._notify(
            actor_id, "CREATE", role.id,
            description=f"Created role {role.name}",
            new_value=_role_snapshot(role),
        )
        return role

    def update_role(
        self,
        db: Session,
        actor_id: Optional[int],
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        """Rename a role or change its description. The parent is not touched."""
        with self._transaction(db):
            before = _role_snapshot(role_store.get_role(db, role_id))
            role = role_store.update_role(db, role_id, name, description)
        self._notify(
            actor_id, "UPDATE", role_id,
            description=f"Updated role {role.name}",
            old_value=before,
            new_value=_role_snapshot(role),
        )
        return role

    def reparent(
        self,
        db: Session,
        actor_id: Optional[int],
        role_id: int,
        new_parent_id: Optional[int],
    ) -> Role:
        """Move a role under a new parent, or make it a root with None.

        Raises:
            InvalidOperationError: Self-parenting, or the new parent is a
                descendant of the role.
            ResourceNotFoundError: The role or the new parent does not exist.
        """
        if new_parent_id is not None and new_parent_id == role_id:
            raise InvalidOperationError("Role cannot be its own parent")

        with self._transaction(db):
            parents = role_store.parent_map(db, lock=True)
            if role_id not in parents:
                raise ResourceNotFoundError(f"Role {role_id} not found")
            if new_parent_id is not None and new_parent_id not in parents:
                raise ResourceNotFoundError(f"Parent role {new_parent_id} not found")
            if would_create_cycle(parents, role_id, new_parent_id):
                raise InvalidOperationError(
                    f"Circular reference: role {new_parent_id} is a descendant of role {role_id}"
                )
            old_parent_id = parents[role_id]
            role = role_store.set_parent(db, role_id, new_parent_id)

        logger.info("Role %s re-parented: %s -> %s", role_id, old_parent_id, new_parent_id)
        self._notify(
            actor_id, "UPDATE", role_id,
            description=f"Changed parent of role {role.name}",
            old_value={"parent_role_id": old_parent_id},
            new_value={"parent_role_id": new_parent_id},
        )
        return role

    def delete_role(self, db: Session, actor_id: Optional[int], role_id: int) -> None:
        """Delete a role and its grants.

        Raises:
            ResourceConflictError: Users are assigned to the role, or other
                roles have it as parent.
        """
        with self._transaction(db):
            role_store.parent_map(db, lock=True)
            role = role_store.get_role(db, role_id)
            before = _role_snapshot(role)
            users = role_store.count_users(db, role_id)
            if users:
                raise ResourceConflictError(
                    f"Role '{role.name}' is still assigned to {users} user(s)"
                )
            children = role_store.count_children(db, role_id)
            if children:
                raise ResourceConflictError(
                    f"Role '{role.name}' still has {children} child role(s); "
                    "remove or re-parent them first"
                )
            removed = acl_store.delete_for_role(db, role_id)
            role_store.delete_role(db, role_id)

        logger.info("Role %s deleted with %s grant(s)", role_id, removed)
        self._notify(
            actor_id, "DELETE", role_id,
            description=f"Deleted role {before['name']}",
            old_value=before,
        )

    def get_hierarchy(self, db: Session) -> List[Dict[str, Any]]:
        """All roles as a forest of nested ``children`` lists.

        Roles whose parent is missing are shown as roots. Each role appears at
        most once even if the stored parent links are corrupted.
        """
        roles = db.query(Role).order_by(Role.id).all()
        by_id = {role.id: role for role in roles}
        children: Dict[int, List[Role]] = {}
        roots: List[Role] = []
        for role in roles:
            if role.parent_role_id is None or role.parent_role_id not in by_id:
                roots.append(role)
            else:
                children.setdefault(role.parent_role_id, []).append(role)

        def node(role: Role) -> Dict[str, Any]:
            return {
                "id": role.id,
                "name": role.name,
                "description": role.description,
                "parent_role_id": role.parent_role_id,
                "children": [],
            }

        forest = []
        visited = set()
        for root in roots:
            root_node = node(root)
            forest.append(root_node)
            visited.add(root.id)
            stack = [(root, root_node)]
            while stack:
                current, current_node = stack.pop()
                for child in children.get(current.id, ()):
                    if child.id in visited:
                        continue
                    visited.add(child.id)
                    child_node = node(child)
                    current_node["children"].append(child_node)
                    stack.append((child, child_node))
        return forest

    # ---- Grants ----

    def grant_permission(
        self,
        db: Session,
        actor_id: Optional[int],
        role_id: int,
        feature_id: int,
        permission_id: int,
    ) -> ACL:
        """Add one direct grant.

        Raises:
            ResourceNotFoundError: Unknown role, feature or permission.
            ResourceAlreadyExistsError: The role already holds this grant.
        """
        with self._transaction(db):
            role = role_store.get_role(db, role_id)
            self._require_feature_and_permission(db, feature_id, permission_id)
            entry = acl_store.grant(db, role_id, feature_id, permission_id)
        self._notify(
            actor_id, "UPDATE", role_id,
            description=f"Granted permission {permission_id} on feature {feature_id} to {role.name}",
            new_value={"feature_id": feature_id, "permission_id": permission_id},
        )
        return entry

    def revoke_permission(
        self,
        db: Session,
        actor_id: Optional[int],
        role_id: int,
        feature_id: int,
        permission_id: int,
    ) -> int:
        """Remove one direct grant. Returns 0 if the role did not hold it."""
        with self._transaction(db):
            role = role_store.get_role(db, role_id)
            removed = acl_store.revoke(db, role_id, feature_id, permission_id)
        if removed:
            self._notify(
                actor_id, "UPDATE", role_id,
                description=f"Revoked permission {permission_id} on feature {feature_id} from {role.name}",
                old_value={"feature_id": feature_id, "permission_id": permission_id},
            )
        return removed

    def grant_full_access(self, db: Session, actor_id: Optional[int], role_id: int) -> int:
        """Directly grant every (feature, permission) pair the role lacks.

        Inherited grants do not count as covered. Returns the number of
        grants inserted; a repeated call returns 0.
        """
        with self._transaction(db):
            role = role_store.get_role(db, role_id)
            existing = acl_store.grant_set(db, role_id)
            features = acl_store.list_all_features(db)
            permissions = acl_store.list_all_permissions(db)
            added = 0
            for feature in features:
                for permission in permissions:
                    if (feature.id, permission.id) in existing:
                        continue
                    if acl_store.grant_if_absent(db, role_id, feature.id, permission.id):
                        added += 1

        logger.info("Granted full access to role %s: %s new grant(s)", role_id, added)
        if added:
            self._notify(
                actor_id, "UPDATE", role_id,
                description=f"Granted full access to role {role.name}",
                new_value={"added": added},
            )
        return added

    def copy_permissions(
        self,
        db: Session,
        actor_id: Optional[int],
        source_role_id: int,
        target_role_id: int,
    ) -> int:
        """Copy the source role's direct grants onto the target role.

        Inherited grants of the source are not copied and the target keeps
        everything it already has. Returns the number of grants inserted.
        """
        with self._transaction(db):
            source = role_store.get_role(db, source_role_id)
            target = role_store.get_role(db, target_role_id)
            existing = acl_store.grant_set(db, target_role_id)
            copied = 0
            for feature_id, permission_id in acl_store.list_grants(db, source_role_id):
                if (feature_id, permission_id) in existing:
                    continue
                if acl_store.grant_if_absent(db, target_role_id, feature_id, permission_id):
                    copied += 1

        logger.info(
            "Copied %s grant(s) from role %s to role %s", copied, source_role_id, target_role_id,
        )
        if copied:
            self._notify(
                actor_id, "UPDATE", target_role_id,
                description=f"Copied permissions from role {source.name} to role {target.name}",
                new_value={
                    "source_role_id": source_role_id,
                    "target_role_id": target_role_id,
                    "copied": copied,
                },
            )
        return copied

    @staticmethod
    def _require_feature_and_permission(db: Session, feature_id: int, permission_id: int) -> None:
        if acl_store.get_feature(db, feature_id) is None:
            raise ResourceNotFoundError(f"Feature {feature_id} not found")
        if acl_store.get_permission(db, permission_id) is None:
            raise ResourceNotFoundError(f"Permission {permission_id} not found")


hierarchy_service = HierarchyService()
