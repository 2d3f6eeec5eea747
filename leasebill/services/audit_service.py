from __future__ import annotations

import logging

from leasebill.models.audit_log import AuditLog
from leasebill.models.context import OperationContext
from leasebill.repositories.base import AuditLogRepository

logger = logging.getLogger(__name__)


class AuditService:
    def __init__(self, repo: AuditLogRepository) -> None:
        self.repo = repo

    def log(
        self,
        event_type: str,
        *,
        ctx: OperationContext | None = None,
        entity_type: str = "",
        entity_id: int | None = None,
        entity_uuid: str = "",
        previous_state: dict | None = None,
        new_state: dict | None = None,
        metadata: dict | None = None,
    ) -> AuditLog:
        """Create an audit log entry. Raises on failure."""
        ctx = ctx or OperationContext.system(source="system")
        audit_log = AuditLog(
            event_type=event_type,
            actor_id=ctx.actor_id,
            actor_username=ctx.actor_username,
            source=ctx.source,
            entity_type=entity_type,
            entity_id=entity_id,
            entity_uuid=entity_uuid,
            previous_state=previous_state,
            new_state=new_state,
            metadata=metadata or {},
            created_at=ctx.now(),
        )
        result = self.repo.create(audit_log)
        logger.info(
            "Audit logged: event=%s actor=%s entity=%s/%s",
            event_type,
            ctx.actor_label,
            entity_type,
            entity_id,
        )
        return result

    def safe_log(self, *args, **kwargs) -> AuditLog | None:
        """Create an audit log entry, swallowing any exceptions."""
        try:
            return self.log(*args, **kwargs)
        except Exception:
            logger.exception("Failed to write audit log")
            return None

    def list_by_entity(self, entity_type: str, entity_id: int) -> list[AuditLog]:
        return self.repo.list_by_entity(entity_type, entity_id)

    def list_recent(self, limit: int = 50) -> list[AuditLog]:
        return self.repo.list_recent(limit)
