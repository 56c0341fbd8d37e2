"""Shared pytest fixtures for backend tests."""

import os

os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("DEBUG", "false")
os.environ.setdefault("RBAC_CACHE_ENABLED", "false")

from typing import Dict, Optional

import pytest
from fastapi.testclient import TestClient
from jose import jwt
from sqlalchemy.orm import sessionmaker

from rbac_admin.core.config import settings
from rbac_admin.db.base import Base
from rbac_admin.db.session import build_engine, get_db
from rbac_admin.models import ACL, Feature, Permission, Role, User
from rbac_admin.services.hierarchy_service import HierarchyService, hierarchy_service
from rbac_admin.services.permission_resolver import PermissionResolver, permission_resolver


class RecordingAudit:
    """Stands in for the audit notifier and keeps every call."""

    def __init__(self):
        self.calls = []

    def notify(self, **kwargs):
        self.calls.append(kwargs)
        return None


@pytest.fixture()
def engine(tmp_path):
    """File-backed SQLite database, one per test."""
    engine = build_engine(f"sqlite:///{tmp_path / 'rbac.sqlite'}")
    Base.metadata.create_all(engine)
    yield engine
    engine.dispose()


@pytest.fixture()
def session_factory(engine):
    return sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def audit():
    return RecordingAudit()


@pytest.fixture()
def resolver():
    return PermissionResolver(cache_enabled=False)


@pytest.fixture()
def service(resolver, audit):
    return HierarchyService(resolver=resolver, audit=audit)


@pytest.fixture()
def catalog(db) -> Dict[str, Dict[str, int]]:
    """Features and permissions used across the tests, keyed by name."""
    features = [
        Feature(name="Dashboard", route="/dashboard", icon="dashboard"),
        Feature(name="Branches", route="/branches", icon="building"),
        Feature(name="Settings", route="/settings", icon="cog"),
    ]
    permissions = [Permission(name=n) for n in ("View", "Create", "Edit", "Delete")]
    db.add_all(features + permissions)
    db.commit()
    return {
        "features": {f.name: f.id for f in features},
        "permissions": {p.name: p.id for p in permissions},
    }


def add_role(db, name: str, parent: Optional[Role] = None) -> Role:
    role = Role(name=name, parent_role_id=parent.id if parent else None)
    db.add(role)
    db.commit()
    return role


def add_grant(db, role: Role, feature_id: int, permission_id: int) -> None:
    db.add(ACL(role_id=role.id, feature_id=feature_id, permission_id=permission_id))
    db.commit()


def add_user(db, role: Role, email: str = "user@example.com") -> User:
    user = User(email=email, full_name="Test User", role_id=role.id)
    db.add(user)
    db.commit()
    return user


@pytest.fixture()
def chain(db, catalog):
    """Root -> Mid -> Leaf with Root=(Dashboard, View) and Mid=(Branches, Edit)."""
    f, p = catalog["features"], catalog["permissions"]
    root = add_role(db, "Root")
    mid = add_role(db, "Mid", parent=root)
    leaf = add_role(db, "Leaf", parent=mid)
    add_grant(db, root, f["Dashboard"], p["View"])
    add_grant(db, mid, f["Branches"], p["Edit"])
    return {"root": root.id, "mid": mid.id, "leaf": leaf.id}


def make_token(user_id: int, role_id: int) -> str:
    return jwt.encode(
        {"sub": str(user_id), "role_id": role_id},
        settings.JWT_SECRET,
        algorithm=settings.JWT_ALGORITHM,
    )


def auth_headers(user_id: int, role_id: int) -> Dict[str, str]:
    return {"Authorization": f"Bearer {make_token(user_id, role_id)}"}


@pytest.fixture()
def client(session_factory, audit, monkeypatch):
    """API client bound to the per-test database."""
    from rbac_admin.main import app

    def _get_db():
        session = session_factory()
        try:
            yield session
        finally:
            session.close()

    monkeypatch.setattr(hierarchy_service, "audit", audit)
    monkeypatch.setattr(permission_resolver, "_cache_enabled", False)
    app.dependency_overrides[get_db] = _get_db
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture()
def admin(db, catalog):
    """A role with full access to every feature plus a user holding it."""
    role = add_role(db, "Administrator")
    for feature_id in catalog["features"].values():
        for permission_id in catalog["permissions"].values():
            add_grant(db, role, feature_id, permission_id)
    user = add_user(db, role, email="admin@example.com")
    return {"role_id": role.id, "user_id": user.id, "headers": auth_headers(user.id, role.id)}
