import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy.exc import SQLAlchemyError

from app.tillbook.core.errors import json_safe
from app.tillbook.core.logging import log_json
from app.tillbook.db.models import AuditEvent
from app.tillbook.repos.audit import AuditRepository

logger = logging.getLogger(__name__)


@dataclass
class AuditEventPayload:
    business_id: str
    user_id: str | None
    trace_id: str | None
    actor: str
    action: str
    entity_type: str | None
    entity_id: str | None
    before: dict | None
    after: dict | None
    metadata: dict | None
    result: str
    actor_role: str | None = None

    def to_model(self) -> AuditEvent:
        metadata = {"actor_role": self.actor_role, **(self.metadata or {})}
        return AuditEvent(
            business_id=self.business_id,
            user_id=self.user_id,
            trace_id=self.trace_id,
            actor=self.actor,
            action=self.action,
            entity_type=self.entity_type or "unknown",
            entity_id=self.entity_id,
            before_payload=json_safe(self.before),
            after_payload=json_safe(self.after),
            event_metadata=json_safe(metadata),
            result=self.result,
            created_at=datetime.utcnow(),
        )


class AuditService:
    """Best-effort audit trail; a failed write is logged and never blocks the till."""

    def __init__(self, db):
        self.repo = AuditRepository(db)

    def record_event(self, payload: AuditEventPayload) -> None:
        try:
            self.repo.add(payload.to_model())
        except SQLAlchemyError as exc:
            self.repo.db.rollback()
            log_json(
                logger,
                {
                    "event": "audit_write_failed",
                    "action": payload.action,
                    "trace_id": payload.trace_id,
                    "business_id": payload.business_id,
                    "entity_id": payload.entity_id,
                    "error_class": type(exc).__name__,
                },
                level=logging.ERROR,
            )
