"""Tests for the grant store."""

import pytest

from conftest import add_role
from rbac_admin.core.exceptions import ResourceAlreadyExistsError
from rbac_admin.services.acl_store import acl_store


def test_grant_rejects_duplicate_triple(db, catalog):
    f, p = catalog["features"], catalog["permissions"]
    role = add_role(db, "Clerk")
    role_id = role.id

    acl_store.grant(db, role_id, f["Dashboard"], p["View"])
    db.commit()

    with pytest.raises(ResourceAlreadyExistsError):
        acl_store.grant(db, role_id, f["Dashboard"], p["View"])
    assert acl_store.list_grants(db, role_id) == [(f["Dashboard"], p["View"])]


def test_grant_if_absent_inserts_once(db, catalog):
    f, p = catalog["features"], catalog["permissions"]
    role_id = add_role(db, "Clerk").id

    assert acl_store.grant_if_absent(db, role_id, f["Branches"], p["Edit"]) is True
    assert acl_store.grant_if_absent(db, role_id, f["Branches"], p["Edit"]) is False
    db.commit()

    assert acl_store.list_grants(db, role_id) == [(f["Branches"], p["Edit"])]


def test_revoke_absent_grant_is_noop(db, catalog):
    f, p = catalog["features"], catalog["permissions"]
    role_id = add_role(db, "Clerk").id

    assert acl_store.revoke(db, role_id, f["Branches"], p["Edit"]) == 0


def test_lookup_by_name(db, catalog):
    assert acl_store.find_feature_by_name(db, "Settings").route == "/settings"
    assert acl_store.find_permission_by_name(db, "Delete") is not None
    assert acl_store.find_feature_by_name(db, "Missing") is None


def test_list_catalog(db, catalog):
    assert [f.name for f in acl_store.list_all_features(db)] == ["Dashboard", "Branches", "Settings"]
    assert [p.name for p in acl_store.list_all_permissions(db)] == ["View", "Create", "Edit", "Delete"]
