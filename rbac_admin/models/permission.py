"""Permission model: an action kind such as View or Edit."""

from sqlalchemy import Column, Integer, String
from rbac_admin.db.base import Base


class Permission(Base):
    __tablename__ = "permissions"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(50), unique=True, nullable=False, index=True)
