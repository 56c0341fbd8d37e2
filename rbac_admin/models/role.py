"""Role model for hierarchical RBAC."""

from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, func
from sqlalchemy.orm import relationship
from rbac_admin.db.base import Base


class Role(Base):
    """Named permission scope, optionally inheriting from one parent role.

    Parent links form a forest. Acyclicity is enforced by the hierarchy
    service, not by the database.
    """
    __tablename__ = "roles"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    parent_role_id = Column(Integer, ForeignKey("roles.id"), nullable=True, index=True)
    created_at = Column(DateTime, server_default=func.now(), nullable=False)
    updated_at = Column(DateTime, server_default=func.now(), onupdate=func.now(), nullable=False)

    parent = relationship("Role", remote_side=[id], lazy="select")
