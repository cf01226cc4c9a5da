# blueprints/audit/services.py
from __future__ import annotations
import logging
from typing import Any, Dict, List, Optional

from extensions import db
from models import AuditLog

log = logging.getLogger(__name__)


def record_event(*, action: str, entity: str, entity_id: Optional[str],
                 user_id: Optional[str] = None, payload: Optional[Dict[str, Any]] = None) -> AuditLog:
    """Записать событие в audit_logs в текущей транзакции (коммит делает вызывающий)."""
    entry = AuditLog(user_id=user_id, action=action, entity=entity, entity_id=entity_id, payload=payload or {})
    db.session.add(entry)
    log.info("%s %s %s", action, entity, entity_id, extra={"event": "audit"})
    return entry


def events_for(entity: str, entity_id: str) -> List[AuditLog]:
    return (
        AuditLog.query
        .filter_by(entity=entity, entity_id=entity_id)
        .order_by(AuditLog.created_at.asc(), AuditLog.id.asc())
        .all()
    )
