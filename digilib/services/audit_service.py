# digilib/services/audit_service.py
from typing import Any, Dict

from sqlalchemy.orm import Session

from digilib.data.models.audit_event import AuditEventModel
from digilib.repos.audit_repo import AuditRepo
from digilib.utils.clock import Clock, utcnow
from digilib.utils.logging import get_logger

logger = get_logger(__name__)


class DbAuditSink:
    """Dziennik audytu w tabeli audit_events, tylko dopisywanie."""

    def __init__(self, db: Session, clock: Clock = utcnow):
        self.repo = AuditRepo(db)
        self.clock = clock

    def record(
        self,
        actor: str,
        action: str,
        entity_type: str,
        entity_id: str | None,
        outcome: str,
        metadata: Dict[str, Any] | None = None,
    ) -> None:
        self.repo.append(
            AuditEventModel(
                actor=actor,
                action=action,
                entity_type=entity_type,
                entity_id=entity_id,
                outcome=outcome,
                details=metadata or {},
                created_at=self.clock(),
            )
        )
        logger.info(f"[AUDIT] {actor} {action} {entity_type}:{entity_id} -> {outcome}")
