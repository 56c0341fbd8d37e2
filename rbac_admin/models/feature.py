"""Feature model: a protected capability area."""

from sqlalchemy import Column, Integer, String
from rbac_admin.db.base import Base


class Feature(Base):
    __tablename__ = "features"

    id = Column(Integer, primary_key=True, autoincrement=True)
    name = Column(String(100), unique=True, nullable=False, index=True)
    route = Column(String(255), nullable=True)
    icon = Column(String(100), nullable=True)
