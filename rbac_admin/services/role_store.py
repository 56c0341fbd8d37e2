"""Role tree store — persistence of roles and their parent links.

Methods flush but never commit: the caller owns the transaction so that a
validation read and the write that depends on it land in the same unit of
work.
"""

from typing import Dict, List, Optional, Tuple

from sqlalchemy import func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbac_admin.core.exceptions import (
    ResourceAlreadyExistsError,
    ResourceNotFoundError,
    ValidationError,
)
from rbac_admin.models.role import Role
from rbac_admin.models.user import User


class RoleTreeStore:
    """Reads and writes the role forest."""

    @staticmethod
    def get_role(db: Session, role_id: int) -> Role:
        """Get a role by id.

        Raises:
            ResourceNotFoundError: If no role has this id.
        """
        role = db.get(Role, role_id)
        if role is None:
            raise ResourceNotFoundError(f"Role {role_id} not found")
        return role

    @staticmethod
    def find_by_name(db: Session, name: str) -> Optional[Role]:
        return db.query(Role).filter(Role.name == name).first()

    @staticmethod
    def get_parent(db: Session, role_id: int) -> Optional[Role]:
        """Return the parent role, or None for a root."""
        role = RoleTreeStore.get_role(db, role_id)
        if role.parent_role_id is None:
            return None
        return db.get(Role, role.parent_role_id)

    @staticmethod
    def get_parent_id(db: Session, role_id: int) -> Tuple[bool, Optional[int]]:
        """Single-column lookup used by the ancestor walk.

        Returns (exists, parent_role_id).
        """
        row = db.query(Role.parent_role_id).filter(Role.id == role_id).first()
        if row is None:
            return False, None
        return True, row[0]

    @staticmethod
    def get_children(db: Session, role_id: int) -> List[Role]:
        return (
            db.query(Role)
            .filter(Role.parent_role_id == role_id)
            .order_by(Role.id)
            .all()
        )

    @staticmethod
    def list_roles(db: Session) -> List[Tuple[Role, int]]:
        """All roles with the number of users assigned to each."""
        counts = (
            db.query(User.role_id, func.count(User.id))
            .group_by(User.role_id)
            .all()
        )
        by_role = {role_id: count for role_id, count in counts}
        roles = db.query(Role).order_by(Role.id).all()
        return [(role, by_role.get(role.id, 0)) for role in roles]

    @staticmethod
    def parent_map(db: Session, lock: bool = False) -> Dict[int, Optional[int]]:
        """Map every role id to its parent id.

        With ``lock=True`` the rows are selected FOR UPDATE, so no other
        writer can move a parent pointer until the current transaction ends.
        """
        query = db.query(Role.id, Role.parent_role_id)
        if lock:
            query = query.with_for_update()
        return {role_id: parent_id for role_id, parent_id in query.all()}

    @staticmethod
    def count_users(db: Session, role_id: int) -> int:
        return db.query(func.count(User.id)).filter(User.role_id == role_id).scalar() or 0

    @staticmethod
    def count_children(db: Session, role_id: int) -> int:
        return (
            db.query(func.count(Role.id))
            .filter(Role.parent_role_id == role_id)
            .scalar()
            or 0
        )

    @staticmethod
    def create_role(
        db: Session,
        name: str,
        description: Optional[str] = None,
        parent_id: Optional[int] = None,
    ) -> Role:
        """Insert a role. The name must be non-empty and unique.

        Raises:
            ValidationError: If the name is blank.
            ResourceAlreadyExistsError: If the name is taken.
            ResourceNotFoundError: If ``parent_id`` does not exist.
        """
        name = (name or "").strip()
        if not name:
            raise ValidationError("Role name must not be empty")
        if RoleTreeStore.find_by_name(db, name) is not None:
            raise ResourceAlreadyExistsError(f"Role '{name}' already exists")
        if parent_id is not None:
            RoleTreeStore.get_role(db, parent_id)

        role = Role(name=name, description=description, parent_role_id=parent_id)
        db.add(role)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError(f"Role '{name}' already exists")
        return role

    @staticmethod
    def update_role(
        db: Session,
        role_id: int,
        name: Optional[str] = None,
        description: Optional[str] = None,
    ) -> Role:
        """Rename a role and/or change its description."""
        role = RoleTreeStore.get_role(db, role_id)
        if name is not None:
            name = name.strip()
            if not name:
                raise ValidationError("Role name must not be empty")
            clash = (
                db.query(Role)
                .filter(Role.name == name, Role.id != role_id)
                .first()
            )
            if clash is not None:
                raise ResourceAlreadyExistsError(f"Role '{name}' already exists")
            role.name = name
        if description is not None:
            role.description = description
        db.flush()
        return role

    @staticmethod
    def set_parent(db: Session, role_id: int, parent_id: Optional[int]) -> Role:
        """Write the parent pointer. Callers validate acyclicity first."""
        role = RoleTreeStore.get_role(db, role_id)
        role.parent_role_id = parent_id
        db.flush()
        return role

    @staticmethod
    def delete_role(db: Session, role_id: int) -> None:
        role = RoleTreeStore.get_role(db, role_id)
        db.delete(role)
        db.flush()


role_store = RoleTreeStore()
