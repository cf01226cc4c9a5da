# blueprints/refresh/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

from extensions import db
from models import RefreshIntent, RefreshStatus, EDITABLE_REFRESH_STATUSES, utcnow
from blueprints.audit.services import record_event
from blueprints.conflicts.errors import NotFound, RefreshLocked
from blueprints.conflicts.schemas import RefreshIntentIn
from blueprints.conflicts.services import ConflictResult, ensure_approvable, revalidate_conflicts
from blueprints.conflicts.store import Dispatcher, notify_impacted_booking_owners

log = logging.getLogger(__name__)

# изменение любого из этих полей требует пересчёта конфликтов
WINDOW_FIELDS = ("entity_type", "entity_id", "planned_date", "planned_end_date",
                 "estimated_downtime_minutes", "impact_type")
EDITABLE_FIELDS = WINDOW_FIELDS + ("entity_name", "reason")


@dataclass
class RefreshOutcome:
    intent: RefreshIntent
    result: Optional[ConflictResult]


def _get(refresh_intent_id: str) -> RefreshIntent:
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)
    return intent


def create_refresh_intent(**fields) -> RefreshOutcome:
    """Создать интент и сразу снять снимок конфликтов (одна транзакция)."""
    data = RefreshIntentIn(**fields)
    intent = RefreshIntent(**data.model_dump())
    db.session.add(intent)
    db.session.flush()
    result = revalidate_conflicts(intent.id)
    log.info("refresh intent created", extra={"event": "refresh_created", "refresh_intent_id": intent.id,
                                              "conflict_flag": result.conflict_flag.value})
    return RefreshOutcome(intent=intent, result=result)


def update_refresh_intent(refresh_intent_id: str, **changes) -> RefreshOutcome:
    """Правка DRAFT/REQUESTED интента; при смене окна или воздействия конфликты пересчитываются."""
    intent = _get(refresh_intent_id)
    if intent.intent_status not in EDITABLE_REFRESH_STATUSES:
        raise RefreshLocked(f"refresh intent is {intent.intent_status.value}", refresh_intent_id=intent.id)

    unknown = set(changes) - set(EDITABLE_FIELDS)
    if unknown:
        raise ValueError(f"unknown fields: {', '.join(sorted(unknown))}")

    current: Dict[str, Any] = {
        "entity_type": intent.entity_type, "entity_id": intent.entity_id,
        "entity_name": intent.entity_name, "planned_date": intent.planned_date,
        "planned_end_date": intent.planned_end_date, "impact_type": intent.impact_type,
        "estimated_downtime_minutes": intent.estimated_downtime_minutes, "reason": intent.reason,
        "requested_by_user_id": intent.requested_by_user_id, "intent_status": intent.intent_status,
    }
    data = RefreshIntentIn(**{**current, **changes})

    window_changed = False
    for name in EDITABLE_FIELDS:
        new = getattr(data, name)
        if new != current[name]:
            setattr(intent, name, new)
            window_changed = window_changed or name in WINDOW_FIELDS

    if not window_changed:
        db.session.commit()
        return RefreshOutcome(intent=intent, result=None)
    return RefreshOutcome(intent=intent, result=revalidate_conflicts(intent.id))


def approve_refresh_intent(refresh_intent_id: str, actor_id: str, *, force: bool = False,
                           notes: Optional[str] = None,
                           dispatcher: Optional[Dispatcher] = None) -> RefreshIntent:
    """
    Одобрение по решению вызывающего. Перед одобрением конфликты пересчитываются;
    MAJOR без force не пропускается. После одобрения владельцы задетых броней уведомляются.
    """
    intent = _get(refresh_intent_id)
    if intent.intent_status not in EDITABLE_REFRESH_STATUSES:
        raise RefreshLocked(f"refresh intent is {intent.intent_status.value}", refresh_intent_id=intent.id)

    intent = ensure_approvable(intent.id, force=force, actor_id=actor_id, notes=notes)
    intent.intent_status = RefreshStatus.APPROVED
    intent.approved_by_user_id = actor_id
    intent.approved_at = utcnow()
    intent.approval_notes = notes
    record_event(action="REFRESH_APPROVED", entity="RefreshIntent", entity_id=intent.id, user_id=actor_id,
                 payload={"conflict_flag": intent.conflict_flag.value, "forced": bool(force)})
    db.session.commit()

    notify_impacted_booking_owners(intent.id, dispatcher)
    return intent
