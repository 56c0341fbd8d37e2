"""ACL model: one direct (role, feature, permission) grant."""

from sqlalchemy import Column, Integer, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship
from rbac_admin.db.base import Base


class ACL(Base):
    """Direct grant. The triple is unique; duplicates surface as IntegrityError."""
    __tablename__ = "acl"
    __table_args__ = (
        UniqueConstraint("role_id", "feature_id", "permission_id", name="uq_acl_grant"),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    role_id = Column(Integer, ForeignKey("roles.id"), nullable=False, index=True)
    feature_id = Column(Integer, ForeignKey("features.id"), nullable=False, index=True)
    permission_id = Column(Integer, ForeignKey("permissions.id"), nullable=False)

    feature = relationship("Feature", lazy="joined")
    permission = relationship("Permission", lazy="joined")
