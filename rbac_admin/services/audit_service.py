"""Audit service — fire-and-forget audit trail for role and ACL mutations."""

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Callable, Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from rbac_admin.core.config import settings
from rbac_admin.models.audit_log import AuditLog

logger = logging.getLogger("rbac_admin.audit")


class AuditService:
    """Records immutable audit log entries off the request path.

    Each entry is written on a worker thread with its own session. A failed
    write is logged and dropped; it never reaches the caller.
    """

    def __init__(
        self,
        session_factory: Optional[Callable[[], Session]] = None,
        max_workers: Optional[int] = None,
    ):
        self._session_factory = session_factory
        self._executor = ThreadPoolExecutor(
            max_workers=max_workers or settings.AUDIT_WORKERS,
            thread_name_prefix="audit",
        )

    @property
    def session_factory(self) -> Callable[[], Session]:
        if self._session_factory is None:
            from rbac_admin.db.session import SessionLocal
            self._session_factory = SessionLocal
        return self._session_factory

    def notify(
        self,
        actor_id: Optional[int],
        action: str,
        resource_type: str,
        resource_id: Optional[Any] = None,
        description: Optional[str] = None,
        old_value: Optional[Any] = None,
        new_value: Optional[Any] = None,
    ) -> Optional[Future]:
        """Queue an audit record. Returns the future, or None if it could not be queued.

        Args:
            action: CREATE, UPDATE or DELETE.
            resource_type: role or acl.
        """
        entry = {
            "actor_id": actor_id,
            "action": action,
            "resource_type": resource_type,
            "resource_id": str(resource_id) if resource_id is not None else None,
            "description": description,
            "old_value_json": json.dumps(old_value, default=str) if old_value is not None else None,
            "new_value_json": json.dumps(new_value, default=str) if new_value is not None else None,
        }
        try:
            return self._executor.submit(self._write, entry)
        except RuntimeError:
            logger.warning("Audit executor unavailable, dropping %s %s", action, resource_type)
            return None

    def _write(self, entry: dict) -> Optional[int]:
        db = self.session_factory()
        try:
            record = AuditLog(**entry)
            db.add(record)
            db.commit()
            return record.id
        except SQLAlchemyError as e:
            db.rollback()
            logger.warning("Failed to write audit log %s: %s", entry.get("action"), e)
            return None
        finally:
            db.close()

    def shutdown(self, wait: bool = True) -> None:
        self._executor.shutdown(wait=wait)


audit_service = AuditService()
