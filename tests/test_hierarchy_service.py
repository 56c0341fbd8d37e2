"""Tests for role-tree mutations and bulk grant operations."""

import fakeredis
import pytest
import redis

from conftest import add_grant, add_role, add_user
from rbac_admin.core.exceptions import (
    InvalidOperationError,
    ResourceAlreadyExistsError,
    ResourceConflictError,
    ResourceNotFoundError,
    ValidationError,
)
from rbac_admin.models import ACL, Role
from rbac_admin.services.acl_store import ACLStore, acl_store
from rbac_admin.services.cache_service import CacheService
from rbac_admin.services.hierarchy_service import HierarchyService, would_create_cycle
from rbac_admin.services.permission_resolver import PermissionResolver


# ---- would_create_cycle ----

def test_cycle_detection_on_parent_map():
    parents = {1: None, 2: 1, 3: 2, 4: 3, 5: None}

    assert would_create_cycle(parents, 1, 1) is True
    for descendant in (2, 3, 4):
        assert would_create_cycle(parents, 1, descendant) is True
    assert would_create_cycle(parents, 1, 5) is False
    assert would_create_cycle(parents, 4, 1) is False
    assert would_create_cycle(parents, 3, None) is False


# ---- reparent ----

def test_reparent_rejects_self(db, chain, service):
    with pytest.raises(InvalidOperationError, match="own parent"):
        service.reparent(db, 1, chain["mid"], chain["mid"])


@pytest.mark.parametrize("descendant", ["mid", "leaf"])
def test_reparent_rejects_every_descendant(db, chain, service, descendant):
    with pytest.raises(InvalidOperationError, match="Circular reference"):
        service.reparent(db, 1, chain["root"], chain[descendant])

    assert db.get(Role, chain["root"]).parent_role_id is None


def test_reparent_rejects_deep_descendant(db, service):
    roles = [add_role(db, "Level0")]
    for depth in range(1, 8):
        roles.append(add_role(db, f"Level{depth}", parent=roles[-1]))

    for role in roles[1:]:
        with pytest.raises(InvalidOperationError):
            service.reparent(db, 1, roles[0].id, role.id)


def test_reparent_unknown_parent(db, chain, service):
    with pytest.raises(ResourceNotFoundError):
        service.reparent(db, 1, chain["leaf"], 9999)


def test_reparent_unknown_role(db, chain, service):
    with pytest.raises(ResourceNotFoundError):
        service.reparent(db, 1, 9999, chain["root"])


def test_reparent_moves_role_and_changes_inheritance(db, catalog, chain, service, resolver, audit):
    f, p = catalog["features"], catalog["permissions"]

    service.reparent(db, 7, chain["leaf"], chain["root"])

    assert db.get(Role, chain["leaf"]).parent_role_id == chain["root"]
    assert resolver.has_access(db, chain["leaf"], f["Branches"], p["Edit"]) is False
    assert resolver.has_access(db, chain["leaf"], f["Dashboard"], p["View"]) is True
    assert audit.calls[-1]["action"] == "UPDATE"
    assert audit.calls[-1]["actor_id"] == 7
    assert audit.calls[-1]["old_value"] == {"parent_role_id": chain["mid"]}
    assert audit.calls[-1]["new_value"] == {"parent_role_id": chain["root"]}


def test_reparent_to_none_makes_root(db, chain, service):
    service.reparent(db, 1, chain["leaf"], None)

    assert db.get(Role, chain["leaf"]).parent_role_id is None


def test_moving_a_subtree_sideways_is_allowed(db, chain, service):
    other = add_role(db, "Other")

    service.reparent(db, 1, chain["mid"], other.id)

    assert db.get(Role, chain["mid"]).parent_role_id == other.id
    assert db.get(Role, chain["leaf"]).parent_role_id == chain["mid"]


# ---- create / update ----

def test_create_role_with_parent(db, chain, service, audit):
    role = service.create_role(db, 1, "Auditor", "Read only", parent_id=chain["root"])

    assert role.id is not None
    assert role.parent_role_id == chain["root"]
    assert audit.calls[-1]["action"] == "CREATE"
    assert audit.calls[-1]["resource_id"] == role.id


def test_create_role_duplicate_name(db, chain, service):
    with pytest.raises(ResourceAlreadyExistsError):
        service.create_role(db, 1, "Root")


def test_create_role_blank_name(db, service):
    with pytest.raises(ValidationError):
        service.create_role(db, 1, "   ")


def test_create_role_unknown_parent(db, service):
    with pytest.raises(ResourceNotFoundError):
        service.create_role(db, 1, "Orphan", parent_id=42)

    assert db.query(Role).filter(Role.name == "Orphan").first() is None


def test_update_role_rename(db, chain, service, audit):
    role = service.update_role(db, 1, chain["leaf"], name="Clerk")

    assert role.name == "Clerk"
    assert audit.calls[-1]["old_value"]["name"] == "Leaf"


def test_update_role_rename_clash(db, chain, service):
    with pytest.raises(ResourceAlreadyExistsError):
        service.update_role(db, 1, chain["leaf"], name="Root")


# ---- delete ----

def test_delete_blocked_by_user(db, chain, service):
    add_user(db, db.get(Role, chain["leaf"]))

    with pytest.raises(ResourceConflictError):
        service.delete_role(db, 1, chain["leaf"])


def test_delete_blocked_by_child_role(db, chain, service):
    with pytest.raises(ResourceConflictError, match="child role"):
        service.delete_role(db, 1, chain["mid"])

    assert db.get(Role, chain["mid"]) is not None


def test_delete_removes_role_and_grants(db, catalog, chain, service, audit):
    f, p = catalog["features"], catalog["permissions"]
    add_grant(db, db.get(Role, chain["leaf"]), f["Settings"], p["View"])

    service.delete_role(db, 3, chain["leaf"])

    assert db.get(Role, chain["leaf"]) is None
    assert db.query(ACL).filter(ACL.role_id == chain["leaf"]).count() == 0
    assert audit.calls[-1]["action"] == "DELETE"
    assert audit.calls[-1]["old_value"]["name"] == "Leaf"


def test_delete_unknown_role(db, service):
    with pytest.raises(ResourceNotFoundError):
        service.delete_role(db, 1, 404)


# ---- grant full access ----

def test_grant_full_access_is_idempotent(db, catalog, chain, service, resolver):
    total = len(catalog["features"]) * len(catalog["permissions"])

    # Leaf inherits two pairs; they do not count as covered.
    assert service.grant_full_access(db, 1, chain["leaf"]) == total
    assert service.grant_full_access(db, 1, chain["leaf"]) == 0

    effective = resolver.resolve(db, chain["leaf"])
    for feature_id in catalog["features"].values():
        assert set(effective[feature_id]) == set(catalog["permissions"].values())
        assert set(effective[feature_id].values()) == {chain["leaf"]}


def test_grant_full_access_skips_existing_direct_grants(db, catalog, chain, service):
    total = len(catalog["features"]) * len(catalog["permissions"])

    assert service.grant_full_access(db, 1, chain["root"]) == total - 1


def test_grant_full_access_unknown_role(db, catalog, service):
    with pytest.raises(ResourceNotFoundError):
        service.grant_full_access(db, 1, 555)


# ---- copy permissions ----

def test_copy_permissions_keeps_target_grants(db, catalog, chain, service):
    f, p = catalog["features"], catalog["permissions"]
    target = add_role(db, "Target")
    add_grant(db, target, f["Settings"], p["Delete"])

    assert service.copy_permissions(db, 1, chain["mid"], target.id) == 1
    assert service.copy_permissions(db, 1, chain["mid"], target.id) == 0

    assert acl_store.grant_set(db, target.id) == {
        (f["Settings"], p["Delete"]),
        (f["Branches"], p["Edit"]),
    }


def test_copy_permissions_ignores_inherited_grants(db, catalog, chain, service):
    target = add_role(db, "Target")

    # Leaf has no direct grants of its own.
    assert service.copy_permissions(db, 1, chain["leaf"], target.id) == 0
    assert acl_store.list_grants(db, target.id) == []


def test_copy_permissions_unknown_role(db, chain, service):
    with pytest.raises(ResourceNotFoundError):
        service.copy_permissions(db, 1, chain["mid"], 888)


# ---- single grants ----

def test_grant_permission_duplicate(db, catalog, chain, service):
    f, p = catalog["features"], catalog["permissions"]

    with pytest.raises(ResourceAlreadyExistsError):
        service.grant_permission(db, 1, chain["root"], f["Dashboard"], p["View"])


def test_grant_permission_unknown_feature(db, catalog, chain, service):
    with pytest.raises(ResourceNotFoundError):
        service.grant_permission(db, 1, chain["root"], 999, catalog["permissions"]["View"])


def test_grant_then_revoke(db, catalog, chain, service, resolver):
    f, p = catalog["features"], catalog["permissions"]

    service.grant_permission(db, 1, chain["leaf"], f["Settings"], p["Edit"])
    assert resolver.has_access(db, chain["leaf"], f["Settings"], p["Edit"]) is True

    assert service.revoke_permission(db, 1, chain["leaf"], f["Settings"], p["Edit"]) == 1
    assert service.revoke_permission(db, 1, chain["leaf"], f["Settings"], p["Edit"]) == 0
    assert resolver.has_access(db, chain["leaf"], f["Settings"], p["Edit"]) is False


# ---- hierarchy view ----

def test_get_hierarchy_nests_children(db, chain, service):
    add_role(db, "Standalone")

    forest = service.get_hierarchy(db)

    assert [node["name"] for node in forest] == ["Root", "Standalone"]
    mid = forest[0]["children"][0]
    assert mid["name"] == "Mid"
    assert [child["name"] for child in mid["children"]] == ["Leaf"]
    assert forest[1]["children"] == []


def test_get_hierarchy_with_corrupted_cycle(db, service):
    a = add_role(db, "A")
    b = add_role(db, "B", parent=a)
    a.parent_role_id = b.id
    db.commit()

    assert service.get_hierarchy(db) == []


# ---- side effects ----

def test_writes_invalidate_cache(db, catalog, chain, audit):
    f, p = catalog["features"], catalog["permissions"]
    cache = CacheService(client=fakeredis.FakeRedis(decode_responses=True))
    resolver = PermissionResolver(cache=cache, cache_enabled=True)
    service = HierarchyService(resolver=resolver, audit=audit)

    assert resolver.has_access(db, chain["leaf"], f["Settings"], p["View"]) is False
    service.grant_permission(db, 1, chain["root"], f["Settings"], p["View"])

    assert resolver.has_access(db, chain["leaf"], f["Settings"], p["View"]) is True


def test_revoke_denies_even_when_cache_bump_fails(db, catalog, chain, audit, monkeypatch):
    f, p = catalog["features"], catalog["permissions"]
    client = fakeredis.FakeRedis(decode_responses=True)
    resolver = PermissionResolver(cache=CacheService(client=client), cache_enabled=True)
    service = HierarchyService(resolver=resolver, audit=audit)
    assert resolver.has_access(db, chain["leaf"], f["Branches"], p["Edit"]) is True

    incr = client.incr
    redis_down = [True]

    def flaky_incr(*args, **kwargs):
        if redis_down[0]:
            raise redis.ConnectionError("connection refused")
        return incr(*args, **kwargs)

    monkeypatch.setattr(client, "incr", flaky_incr)
    removed = service.revoke_permission(db, 1, chain["mid"], f["Branches"], p["Edit"])

    assert removed == 1
    assert resolver.has_access(db, chain["leaf"], f["Branches"], p["Edit"]) is False

    redis_down[0] = False
    assert resolver.has_access(db, chain["leaf"], f["Branches"], p["Edit"]) is False
    assert resolver.has_access(db, chain["leaf"], f["Dashboard"], p["View"]) is True


def test_revoke_committed_during_resolution_is_not_cached(
    db, session_factory, catalog, chain, audit, monkeypatch,
):
    f, p = catalog["features"], catalog["permissions"]
    resolver = PermissionResolver(
        cache=CacheService(client=fakeredis.FakeRedis(decode_responses=True)),
        cache_enabled=True,
    )
    service = HierarchyService(resolver=resolver, audit=audit)
    read_grants = ACLStore.list_grants_for_roles
    revoked = []

    def read_then_revoke(session, role_ids):
        grants = read_grants(session, role_ids)
        if not revoked:
            other = session_factory()
            try:
                revoked.append(
                    service.revoke_permission(other, 1, chain["mid"], f["Branches"], p["Edit"])
                )
            finally:
                other.close()
        return grants

    monkeypatch.setattr(ACLStore, "list_grants_for_roles", staticmethod(read_then_revoke))
    resolver.resolve(db, chain["leaf"])
    monkeypatch.undo()

    fresh = session_factory()
    try:
        assert revoked == [1]
        assert resolver.has_access(fresh, chain["leaf"], f["Branches"], p["Edit"]) is False
    finally:
        fresh.close()


def test_failed_write_is_not_audited(db, chain, service, audit):
    with pytest.raises(InvalidOperationError):
        service.reparent(db, 1, chain["root"], chain["leaf"])

    assert audit.calls == []


def test_audit_failure_does_not_abort_operation(db, chain, resolver):
    class BrokenAudit:
        def notify(self, **kwargs):
            raise RuntimeError("audit backend down")

    service = HierarchyService(resolver=resolver, audit=BrokenAudit())

    role = service.create_role(db, 1, "StillCreated")

    assert db.get(Role, role.id) is not None
