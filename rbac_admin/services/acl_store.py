"""ACL store — direct (role, feature, permission) grants."""

from typing import Iterable, List, Optional, Set, Tuple

from sqlalchemy import insert
from sqlalchemy.dialects import mysql, postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from rbac_admin.core.exceptions import ResourceAlreadyExistsError
from rbac_admin.models.acl import ACL
from rbac_admin.models.feature import Feature
from rbac_admin.models.permission import Permission

Grant = Tuple[int, int]  # (feature_id, permission_id)


def _insert_ignore(db: Session):
    """Build an INSERT on the acl table that skips rows hitting uq_acl_grant."""
    dialect = db.get_bind().dialect.name
    if dialect == "mysql":
        return mysql.insert(ACL.__table__).prefix_with("IGNORE")
    if dialect == "sqlite":
        return sqlite.insert(ACL.__table__).on_conflict_do_nothing()
    if dialect == "postgresql":
        return postgresql.insert(ACL.__table__).on_conflict_do_nothing()
    return insert(ACL.__table__)


class ACLStore:
    """Reads and writes grants. Never commits."""

    @staticmethod
    def list_grants(db: Session, role_id: int) -> List[Grant]:
        rows = (
            db.query(ACL.feature_id, ACL.permission_id)
            .filter(ACL.role_id == role_id)
            .order_by(ACL.id)
            .all()
        )
        return [(feature_id, permission_id) for feature_id, permission_id in rows]

    @staticmethod
    def list_grants_for_roles(db: Session, role_ids: Iterable[int]) -> List[Tuple[int, int, int]]:
        """(role_id, feature_id, permission_id) for every grant of the given roles."""
        role_ids = list(role_ids)
        if not role_ids:
            return []
        rows = (
            db.query(ACL.role_id, ACL.feature_id, ACL.permission_id)
            .filter(ACL.role_id.in_(role_ids))
            .order_by(ACL.id)
            .all()
        )
        return [tuple(row) for row in rows]

    @staticmethod
    def has_grant(db: Session, role_id: int, feature_id: int, permission_id: int) -> bool:
        row = (
            db.query(ACL.id)
            .filter(
                ACL.role_id == role_id,
                ACL.feature_id == feature_id,
                ACL.permission_id == permission_id,
            )
            .first()
        )
        return row is not None

    @staticmethod
    def grant(db: Session, role_id: int, feature_id: int, permission_id: int) -> ACL:
        """Insert one grant, relying on the unique constraint for duplicates.

        Raises:
            ResourceAlreadyExistsError: If the triple is already present.
        """
        entry = ACL(role_id=role_id, feature_id=feature_id, permission_id=permission_id)
        db.add(entry)
        try:
            db.flush()
        except IntegrityError:
            db.rollback()
            raise ResourceAlreadyExistsError(
                f"Role {role_id} already holds permission {permission_id} on feature {feature_id}"
            )
        return entry

    @staticmethod
    def grant_if_absent(db: Session, role_id: int, feature_id: int, permission_id: int) -> bool:
        """Insert a grant unless it exists. Returns True when a row was written."""
        stmt = _insert_ignore(db).values(
            role_id=role_id, feature_id=feature_id, permission_id=permission_id,
        )
        result = db.execute(stmt)
        return result.rowcount == 1

    @staticmethod
    def revoke(db: Session, role_id: int, feature_id: int, permission_id: int) -> int:
        """Remove a grant; absent grants are a no-op. Returns rows removed."""
        return (
            db.query(ACL)
            .filter(
                ACL.role_id == role_id,
                ACL.feature_id == feature_id,
                ACL.permission_id == permission_id,
            )
            .delete(synchronize_session=False)
        )

    @staticmethod
    def delete_for_role(db: Session, role_id: int) -> int:
        return (
            db.query(ACL)
            .filter(ACL.role_id == role_id)
            .delete(synchronize_session=False)
        )

    @staticmethod
    def list_all_features(db: Session) -> List[Feature]:
        return db.query(Feature).order_by(Feature.id).all()

    @staticmethod
    def list_all_permissions(db: Session) -> List[Permission]:
        return db.query(Permission).order_by(Permission.id).all()

    @staticmethod
    def get_feature(db: Session, feature_id: int) -> Optional[Feature]:
        return db.get(Feature, feature_id)

    @staticmethod
    def get_permission(db: Session, permission_id: int) -> Optional[Permission]:
        return db.get(Permission, permission_id)

    @staticmethod
    def find_feature_by_name(db: Session, name: str) -> Optional[Feature]:
        return db.query(Feature).filter(Feature.name == name).first()

    @staticmethod
    def find_permission_by_name(db: Session, name: str) -> Optional[Permission]:
        return db.query(Permission).filter(Permission.name == name).first()

    @staticmethod
    def grant_set(db: Session, role_id: int) -> Set[Grant]:
        return set(ACLStore.list_grants(db, role_id))


acl_store = ACLStore()
