# blueprints/conflicts/store.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, Iterable, List, Optional

from flask import current_app
from sqlalchemy import case, delete
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    Booking, BookingPriority, BookingStatus, Conflict, ConflictType, RefreshIntent,
    ResolutionStatus, Severity, NOTIFIABLE_RESOLUTIONS, TERMINAL_RESOLUTIONS, utcnow,
)
from blueprints.audit.services import record_event
from .errors import InvalidResolution, NotFound
from .schemas import UnresolvedFilterIn

log = logging.getLogger(__name__)

# поля, которые переживают пересчёт в режиме CONFLICT_PRESERVE_RESOLUTIONS
_RESOLUTION_FIELDS = (
    "resolution_status", "resolved_by_user_id", "resolved_at", "resolution_notes",
    "booking_owner_notified", "notification_sent_at",
)


# ===== DTO =====
@dataclass
class DetectedConflict:
    """Пересечение рефреша с бронью до записи в БД (плюс контекст брони для ответа)."""
    booking_id: str
    severity: Severity
    overlap_start: datetime
    overlap_end: datetime
    overlap_minutes: int
    booking_is_critical: bool = False
    booking_priority: Optional[BookingPriority] = None
    conflict_type: ConflictType = ConflictType.OVERLAP
    title: Optional[str] = None
    booking_status: Optional[BookingStatus] = None
    start_datetime: Optional[datetime] = None
    end_datetime: Optional[datetime] = None
    requested_by_user_id: Optional[str] = None
    owning_group_id: Optional[str] = None
    owning_group_name: Optional[str] = None


Dispatcher = Callable[[RefreshIntent, List[Dict[str, Any]]], Any]


def _val(e):
    return e.value if e is not None and hasattr(e, "value") else e


# ===== запись =====
def store_conflicts(refresh_intent_id: str, conflicts: Iterable[DetectedConflict], *, commit: bool = True) -> int:
    """
    Полная замена конфликтов интента: delete + insert в одной транзакции.
    Повторная запись того же набора даёт по одной строке на (интент, бронь).
    Ошибка БД откатывает транзакцию целиком и пробрасывается.
    """
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)

    unique: Dict[str, DetectedConflict] = {}
    for c in conflicts:
        unique.setdefault(c.booking_id, c)

    preserve = bool(current_app.config.get("CONFLICT_PRESERVE_RESOLUTIONS", False))

    try:
        previous: Dict[str, Dict[str, Any]] = {}
        if preserve:
            for row in Conflict.query.filter_by(refresh_intent_id=refresh_intent_id).all():
                if row.resolution_status == ResolutionStatus.UNRESOLVED:
                    continue
                snap = {f: getattr(row, f) for f in _RESOLUTION_FIELDS}
                snap["window"] = (row.overlap_start, row.overlap_end)
                previous[row.booking_id] = snap

        db.session.execute(
            delete(Conflict).where(Conflict.refresh_intent_id == refresh_intent_id),
            execution_options={"synchronize_session": "fetch"},
        )

        kept = 0
        for c in unique.values():
            row = Conflict(
                refresh_intent_id=refresh_intent_id,
                booking_id=c.booking_id,
                conflict_type=c.conflict_type,
                severity=c.severity,
                resolution_status=ResolutionStatus.UNRESOLVED,
                overlap_start=c.overlap_start,
                overlap_end=c.overlap_end,
                overlap_minutes=c.overlap_minutes,
                booking_is_critical=bool(c.booking_is_critical),
                booking_priority=c.booking_priority,
                auto_detected=True,
            )
            snap = previous.get(c.booking_id)
            # решение сохраняем, только если окно пересечения не сдвинулось
            if snap and snap["window"] == (c.overlap_start, c.overlap_end):
                for f in _RESOLUTION_FIELDS:
                    setattr(row, f, snap[f])
                kept += 1
            db.session.add(row)

        db.session.flush()
        db.session.expire(intent, ["conflicts"])
        if commit:
            db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("store conflicts failed", extra={"event": "store_conflicts_failed",
                                                       "refresh_intent_id": refresh_intent_id})
        raise

    log.info("stored %s conflicts (%s resolutions kept)", len(unique), kept,
             extra={"event": "store_conflicts", "refresh_intent_id": refresh_intent_id})
    return len(unique)


def resolve_conflict(conflict_id: str, resolution_status, resolver_id: str,
                     notes: Optional[str] = None) -> Conflict:
    try:
        status = ResolutionStatus(_val(resolution_status))
    except ValueError:
        raise InvalidResolution(f"invalid resolution: {resolution_status!r}",
                                resolution_status=str(resolution_status)) from None
    if status not in TERMINAL_RESOLUTIONS:
        # UNRESOLVED выставляет только детектор
        raise InvalidResolution(f"invalid resolution: {status.value}", resolution_status=status.value)

    conflict = db.session.get(Conflict, conflict_id)
    if conflict is None:
        raise NotFound("conflict not found", conflict_id=conflict_id)

    previous = conflict.resolution_status
    conflict.resolution_status = status
    conflict.resolved_by_user_id = resolver_id
    conflict.resolved_at = utcnow()
    conflict.resolution_notes = notes
    record_event(
        action="CONFLICT_RESOLVED", entity="Conflict", entity_id=conflict.id, user_id=resolver_id,
        payload={"from": previous.value, "to": status.value, "notes": notes,
                 "refresh_intent_id": conflict.refresh_intent_id, "booking_id": conflict.booking_id},
    )
    db.session.commit()
    log.info("conflict resolved as %s", status.value,
             extra={"event": "conflict_resolved", "conflict_id": conflict.id,
                    "refresh_intent_id": conflict.refresh_intent_id})
    return conflict


# ===== чтение =====
def conflict_view(conflict: Conflict, intent: RefreshIntent, booking: Booking) -> Dict[str, Any]:
    group = booking.owning_group
    return {
        "conflict_id": conflict.id,
        "refresh_intent_id": conflict.refresh_intent_id,
        "booking_id": conflict.booking_id,
        "conflict_type": conflict.conflict_type.value,
        "severity": conflict.severity.value,
        "resolution_status": conflict.resolution_status.value,
        "overlap_start": conflict.overlap_start,
        "overlap_end": conflict.overlap_end,
        "overlap_minutes": conflict.overlap_minutes,
        "booking_is_critical": conflict.booking_is_critical,
        "booking_priority": _val(conflict.booking_priority),
        "resolved_by_user_id": conflict.resolved_by_user_id,
        "resolved_at": conflict.resolved_at,
        "resolution_notes": conflict.resolution_notes,
        "booking_owner_notified": conflict.booking_owner_notified,
        "entity_type": intent.entity_type.value,
        "entity_id": intent.entity_id,
        "entity_name": intent.entity_name,
        "planned_date": intent.planned_date,
        "planned_end_date": intent.planned_end_date,
        "intent_status": intent.intent_status.value,
        "impact_type": intent.impact_type.value,
        "booking_title": booking.title,
        "booking_start": booking.start_datetime,
        "booking_end": booking.end_datetime,
        "booking_status": booking.booking_status.value,
        "booking_owner": booking.requested_by_user_id,
        "owning_group_id": booking.owning_group_id,
        "booking_group_name": group.name if group else None,
    }


def get_unresolved_conflicts(entity_type=None, severity=None, group_id=None) -> List[Dict[str, Any]]:
    """Нерешённые конфликты с контекстом брони и рефреша: по дате рефреша, затем от HIGH к LOW."""
    f = UnresolvedFilterIn(entity_type=entity_type, severity=_val(severity), group_id=group_id)

    severity_rank = case(
        (Conflict.severity == Severity.HIGH, 3),
        (Conflict.severity == Severity.MEDIUM, 2),
        else_=1,
    )
    q = (
        db.session.query(Conflict, RefreshIntent, Booking)
        .join(RefreshIntent, Conflict.refresh_intent_id == RefreshIntent.id)
        .join(Booking, Conflict.booking_id == Booking.id)
        .filter(Conflict.resolution_status == ResolutionStatus.UNRESOLVED)
    )
    if f.entity_type is not None:
        q = q.filter(RefreshIntent.entity_type == f.entity_type)
    if f.severity:
        q = q.filter(Conflict.severity == Severity(f.severity))
    if f.group_id:
        q = q.filter(Booking.owning_group_id == f.group_id)

    rows = q.order_by(RefreshIntent.planned_date.asc(), severity_rank.desc(), Conflict.id.asc()).all()
    return [conflict_view(c, ri, b) for c, ri, b in rows]


def get_conflict_details(refresh_intent_id: str) -> List[Dict[str, Any]]:
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)
    rows = (
        db.session.query(Conflict, Booking)
        .join(Booking, Conflict.booking_id == Booking.id)
        .filter(Conflict.refresh_intent_id == refresh_intent_id)
        .order_by(Booking.start_datetime.asc(), Booking.id.asc())
        .all()
    )
    return [conflict_view(c, intent, b) for c, b in rows]


# ===== уведомления =====
def notify_impacted_booking_owners(refresh_intent_id: str, dispatcher: Optional[Dispatcher] = None) -> Dict[str, Any]:
    """
    Отметить владельцев задетых броней как уведомлённых и отдать получателей диспетчеру.
    Падение диспетчера не откатывает отметки.
    """
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)

    rows = (
        db.session.query(Conflict, Booking)
        .join(Booking, Conflict.booking_id == Booking.id)
        .filter(
            Conflict.refresh_intent_id == refresh_intent_id,
            Conflict.resolution_status.in_(list(NOTIFIABLE_RESOLUTIONS)),
            Conflict.booking_owner_notified.is_(False),
        )
        .order_by(Booking.start_datetime.asc())
        .all()
    )

    now = utcnow()
    recipients: List[Dict[str, Any]] = []
    for conflict, booking in rows:
        conflict.booking_owner_notified = True
        conflict.notification_sent_at = now
        recipients.append({
            "user_id": booking.requested_by_user_id,
            "booking_id": booking.id,
            "booking_title": booking.title,
            "conflict_id": conflict.id,
            "severity": conflict.severity.value,
        })
    db.session.commit()

    if dispatcher is not None and recipients:
        try:
            dispatcher(intent, recipients)
        except Exception:
            log.warning("notification dispatch failed", exc_info=True,
                        extra={"event": "notify_failed", "refresh_intent_id": refresh_intent_id})

    return {"notified": len(recipients), "recipients": recipients}
