"""Permission resolver — effective grants of a role across its ancestor chain.

A role's effective permissions are its own grants plus every ancestor's.
Each (feature, permission) pair is tagged with the closest role in the chain
that grants it; that tag only feeds "inherited from" explanations and never
changes the allow/deny answer.
"""

import logging
import time
from typing import Any, Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_admin.core.config import settings
from rbac_admin.models.feature import Feature
from rbac_admin.models.permission import Permission
from rbac_admin.models.role import Role
from rbac_admin.services.acl_store import acl_store
from rbac_admin.services.cache_service import CacheService, cache_service
from rbac_admin.services.role_store import role_store

logger = logging.getLogger("rbac_admin.resolver")

# feature_id -> {permission_id: id of the closest role granting it}
EffectivePermissions = Dict[int, Dict[int, int]]

CACHE_PREFIX = "rbac:effective:"
# Bumped on every write; cached resolutions live under the generation they were read in.
GENERATION_KEY = f"{CACHE_PREFIX}generation"


class PermissionResolver:
    """Walks parent links and unions grants."""

    def __init__(self, cache: Optional[CacheService] = None, cache_enabled: Optional[bool] = None):
        self.cache = cache or cache_service
        self._cache_enabled = cache_enabled
        # Set when a generation bump failed; the cache is skipped until one succeeds.
        self._cache_stale = False

    @property
    def cache_enabled(self) -> bool:
        if self._cache_enabled is not None:
            return self._cache_enabled
        return settings.RBAC_CACHE_ENABLED

    def _generation(self) -> Optional[str]:
        """Current cache generation, or None when the cache must not be used."""
        if self._cache_stale:
            if self.cache.incr(GENERATION_KEY) is None:
                return None
            logger.info("Permission cache generation bumped; cache back in use")
            self._cache_stale = False
        generation = self.cache.get(GENERATION_KEY)
        if generation is None:
            # Seed from the clock so a lost counter never revisits an old generation.
            self.cache.set_if_absent(GENERATION_KEY, str(time.time_ns()))
            generation = self.cache.get(GENERATION_KEY)
        return generation

    def _read_cached(self, generation: str, role_id: int) -> Optional[EffectivePermissions]:
        cached = self.cache.get_json(f"{CACHE_PREFIX}{generation}:{role_id}")
        if cached is None:
            return None
        try:
            return {
                int(feature_id): {int(p): int(r) for p, r in perms.items()}
                for feature_id, perms in cached.items()
            }
        except (AttributeError, TypeError, ValueError):
            logger.warning("Discarding malformed cache entry for role %s", role_id)
            return None

    def ancestor_chain(self, db: Session, role_id: int) -> List[int]:
        """Role ids from ``role_id`` up to its root, nearest first.

        Returns an empty list for an unknown role. Stops on the first
        revisited id, so corrupted parent data cannot loop forever.
        """
        chain: List[int] = []
        visited = set()
        current: Optional[int] = role_id
        while current is not None and current not in visited:
            exists, parent_id = role_store.get_parent_id(db, current)
            if not exists:
                break
            visited.add(current)
            chain.append(current)
            current = parent_id
        if current is not None and current in visited:
            logger.warning("Cycle in role parents detected at role %s", current)
        return chain

    def resolve(self, db: Session, role_id: int) -> EffectivePermissions:
        """Effective permission map for a role. Unknown roles resolve to {}."""
        generation = self._generation() if self.cache_enabled else None
        if generation is not None:
            cached = self._read_cached(generation, role_id)
            if cached is not None:
                return cached

        chain = self.ancestor_chain(db, role_id)
        rank = {rid: index for index, rid in enumerate(chain)}
        grants = acl_store.list_grants_for_roles(db, chain)
        grants.sort(key=lambda grant: rank[grant[0]])

        result: EffectivePermissions = {}
        for owner_id, feature_id, permission_id in grants:
            perms = result.setdefault(feature_id, {})
            if permission_id not in perms:
                perms[permission_id] = owner_id

        if generation is not None and chain:
            # A write that landed after the generation was read has bumped it; skip the store.
            self.cache.set_json_if_unchanged(
                GENERATION_KEY,
                generation,
                f"{CACHE_PREFIX}{generation}:{role_id}",
                result,
                settings.RBAC_CACHE_TTL_SECONDS,
            )
        return result

    def has_access(self, db: Session, role_id: int, feature_id: int, permission_id: int) -> bool:
        """True iff the pair is granted to the role or any ancestor.

        Fails closed: unknown roles and storage errors both answer False.
        """
        try:
            if self.cache_enabled:
                effective = self.resolve(db, role_id)
                return permission_id in effective.get(feature_id, {})

            visited = set()
            current: Optional[int] = role_id
            while current is not None and current not in visited:
                exists, parent_id = role_store.get_parent_id(db, current)
                if not exists:
                    return False
                if acl_store.has_grant(db, current, feature_id, permission_id):
                    return True
                visited.add(current)
                current = parent_id
            return False
        except SQLAlchemyError:
            logger.exception("Storage failure while checking access for role %s", role_id)
            return False

    def describe(self, db: Session, role_id: int) -> List[Dict[str, Any]]:
        """Effective permissions laid out for display, one entry per feature."""
        effective = self.resolve(db, role_id)
        if not effective:
            return []

        feature_ids = list(effective)
        permission_ids = {p for perms in effective.values() for p in perms}
        owner_ids = {r for perms in effective.values() for r in perms.values()}

        features = {f.id: f for f in db.query(Feature).filter(Feature.id.in_(feature_ids))}
        permissions = {
            p.id: p for p in db.query(Permission).filter(Permission.id.in_(permission_ids))
        }
        owners = {
            r.id: r.name for r in db.query(Role.id, Role.name).filter(Role.id.in_(owner_ids))
        }

        out = []
        for feature_id in sorted(feature_ids):
            feature = features.get(feature_id)
            if feature is None:
                continue
            out.append({
                "id": feature.id,
                "name": feature.name,
                "route": feature.route,
                "icon": feature.icon,
                "permissions": [
                    {
                        "id": permission_id,
                        "name": permissions[permission_id].name,
                        "inherited": owner_id != role_id,
                        "granted_by_role_id": owner_id,
                        "granted_by_role_name": owners.get(owner_id),
                    }
                    for permission_id, owner_id in sorted(effective[feature_id].items())
                    if permission_id in permissions
                ],
            })
        return out

    def invalidate(self) -> None:
        """Retire every cached resolution. Called after any ACL or hierarchy write.

        Bumps the generation counter so older entries are never read again;
        they expire on their TTL. If Redis rejects the bump, this process stops
        reading the cache until a later bump succeeds.
        """
        if not self.cache_enabled:
            return
        if self.cache.incr(GENERATION_KEY) is None:
            logger.warning("Could not bump permission cache generation; bypassing cache")
            self._cache_stale = True


permission_resolver = PermissionResolver()
