# blueprints/conflicts/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Sequence, Tuple

from flask import current_app
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    ConflictFlag, ImpactType, RefreshIntent, ResolutionStatus, Severity,
    CONFIRMED_BOOKING_STATUSES, refresh_window, utcnow,
)
from blueprints.audit.services import record_event
from .errors import AcknowledgementRequired, ForceApprovalRequired, NotFound
from .overlap import minutes_between
from .resources import bookings_on_resource, find_overlapping_bookings, find_overlapping_refreshes
from .schemas import (
    BookingConflictCheckIn, RefreshCheckIn, RefreshesForBookingIn, SlotRequestIn, to_utc_naive,
)
from .severity import aggregate_flag, booking_side_severity, classify, impact_description, is_destructive
from .store import DetectedConflict, store_conflicts

log = logging.getLogger(__name__)

ACTION_DESTRUCTIVE = "Consider adjusting your booking time or selecting a different environment"
ACTION_CAUTION = "Proceed with caution - a refresh is scheduled during your booking"


# ===== DTO =====
@dataclass
class BookingOverlap:
    resource_type: str
    resource_ref_id: str
    conflicting_booking_id: str
    conflicting_booking_title: str
    conflicting_status: str
    conflicting_start: datetime
    conflicting_end: datetime
    overlap_start: datetime
    overlap_end: datetime
    overlap_minutes: int


@dataclass
class RefreshWarning:
    refresh_intent_id: str
    entity_type: str
    entity_id: str
    entity_name: Optional[str]
    intent_status: str
    impact_type: str
    planned_date: datetime
    planned_end_date: Optional[datetime]
    window_end: datetime
    estimated_downtime_minutes: Optional[int]
    reason: Optional[str]
    overlap_start: datetime
    overlap_end: datetime
    overlap_minutes: int
    severity: Severity
    impact_description: str


@dataclass
class BookingRefreshCheck:
    has_conflicts: bool
    has_destructive_refresh: bool
    refresh_conflicts: List[RefreshWarning]
    warning_level: str                  # HIGH / MEDIUM / NONE
    suggested_action: Optional[str]


@dataclass
class ConflictResult:
    has_conflicts: bool
    conflict_flag: ConflictFlag
    conflict_summary: Dict[str, Any]
    conflicts: List[DetectedConflict]
    impacted_teams: List[str]
    window_start: datetime
    window_end: datetime
    can_proceed_without_override: bool = True
    requires_force_approval: bool = False


@dataclass
class Slot:
    start: datetime
    end: datetime
    available_minutes: int


@dataclass
class SlotSuggestion:
    slots: List[Slot] = field(default_factory=list)
    range_start: Optional[datetime] = None
    range_end: Optional[datetime] = None


def _default_downtime() -> int:
    return int(current_app.config.get("REFRESH_DEFAULT_DOWNTIME_MINUTES", 60))


def _as_resource(r) -> Any:
    # принимаем dict, pydantic-модель или строку booking_resources
    if isinstance(r, dict) or hasattr(r, "model_dump"):
        return r
    return {
        "resource_type": r.resource_type,
        "resource_ref_id": r.resource_ref_id,
        "source_env_instance_id": getattr(r, "source_env_instance_id", None),
        "logical_role": getattr(r, "logical_role", None),
    }


# ===== бронь ↔ бронь =====
def check_conflicts_for_booking(resources: Iterable, start: datetime, end: datetime,
                                exclude_booking_id: Optional[str] = None) -> List[BookingOverlap]:
    """Другие брони на тех же ресурсах, пересекающие окно. Только чтение."""
    params = BookingConflictCheckIn(
        start=start, end=end,
        resources=[_as_resource(r) for r in (resources or [])],
        exclude_booking_id=exclude_booking_id,
    )
    out: List[BookingOverlap] = []
    for res in params.resources:
        hits = find_overlapping_bookings(res.resource_type, res.resource_ref_id,
                                         params.start, params.end, params.exclude_booking_id)
        for hit in hits:
            b = hit.booking
            out.append(BookingOverlap(
                resource_type=res.resource_type.value,
                resource_ref_id=res.resource_ref_id,
                conflicting_booking_id=b.id,
                conflicting_booking_title=b.title,
                conflicting_status=b.booking_status.value,
                conflicting_start=b.start_datetime,
                conflicting_end=b.end_datetime,
                overlap_start=hit.overlap_start,
                overlap_end=hit.overlap_end,
                overlap_minutes=hit.overlap_minutes,
            ))
    return out


# ===== бронь ↔ рефреш =====
def check_refreshes_for_booking(start: datetime, end: datetime,
                                environment_instance_ids: Sequence[str] = (),
                                booking_id: Optional[str] = None) -> BookingRefreshCheck:
    """Одобренные/запланированные рефреши в окне брони. Двухуровневая серьёзность: HIGH / LOW."""
    params = RefreshesForBookingIn(start=start, end=end,
                                   environment_instance_ids=list(environment_instance_ids or []),
                                   booking_id=booking_id)
    hits = find_overlapping_refreshes(params.start, params.end, params.environment_instance_ids,
                                      default_minutes=_default_downtime())

    warnings: List[RefreshWarning] = []
    for hit in hits:
        ri = hit.refresh
        warnings.append(RefreshWarning(
            refresh_intent_id=ri.id,
            entity_type=ri.entity_type.value,
            entity_id=ri.entity_id,
            entity_name=ri.entity_name,
            intent_status=ri.intent_status.value,
            impact_type=ri.impact_type.value,
            planned_date=ri.planned_date,
            planned_end_date=ri.planned_end_date,
            window_end=hit.window_end,
            estimated_downtime_minutes=ri.estimated_downtime_minutes,
            reason=ri.reason,
            overlap_start=hit.overlap_start,
            overlap_end=hit.overlap_end,
            overlap_minutes=hit.overlap_minutes,
            severity=booking_side_severity(ri.impact_type),
            impact_description=impact_description(ri.impact_type),
        ))

    has_conflicts = bool(warnings)
    has_destructive = any(is_destructive(w.impact_type) for w in warnings)
    if has_destructive:
        level, action = "HIGH", ACTION_DESTRUCTIVE
    elif has_conflicts:
        level, action = "MEDIUM", ACTION_CAUTION
    else:
        level, action = "NONE", None

    if has_conflicts:
        log.info("booking window overlaps %s refresh(es)", len(warnings),
                 extra={"event": "booking_refresh_overlap", "booking_id": booking_id})
    return BookingRefreshCheck(
        has_conflicts=has_conflicts,
        has_destructive_refresh=has_destructive,
        refresh_conflicts=warnings,
        warning_level=level,
        suggested_action=action,
    )


def require_acknowledgement(check: BookingRefreshCheck, acknowledged: bool) -> None:
    """Бронь поверх разрушающего рефреша только с явным подтверждением."""
    if check.has_destructive_refresh and not acknowledged:
        raise AcknowledgementRequired(
            "booking overlaps a destructive refresh; acknowledgement required",
            refresh_intent_ids=[w.refresh_intent_id for w in check.refresh_conflicts],
        )


# ===== рефреш ↔ брони =====
def check_conflicts_for_refresh(*, entity_type, entity_id: str, planned_date: datetime,
                                planned_end_date: Optional[datetime] = None,
                                impact_type=ImpactType.DATA_OVERWRITE,
                                estimated_downtime_minutes: Optional[int] = None,
                                refresh_intent_id: Optional[str] = None) -> ConflictResult:
    """
    Подтверждённые брони (Approved/Active), пересекающие окно рефреша на сущности.
    Ничего не пишет; запись делает revalidate_conflicts.
    """
    params = RefreshCheckIn(
        entity_type=entity_type, entity_id=entity_id,
        planned_date=planned_date, planned_end_date=planned_end_date,
        impact_type=impact_type, estimated_downtime_minutes=estimated_downtime_minutes,
        refresh_intent_id=refresh_intent_id,
    )
    w_start, w_end = refresh_window(params.planned_date, params.planned_end_date,
                                    params.estimated_downtime_minutes, _default_downtime())

    hits = find_overlapping_bookings(params.entity_type, params.entity_id, w_start, w_end,
                                     statuses=CONFIRMED_BOOKING_STATUSES)
    conflicts: List[DetectedConflict] = []
    for hit in hits:
        b = hit.booking
        conflicts.append(DetectedConflict(
            booking_id=b.id,
            severity=classify(params.impact_type, b.booking_status, b.booking_priority, b.is_critical_booking),
            overlap_start=hit.overlap_start,
            overlap_end=hit.overlap_end,
            overlap_minutes=hit.overlap_minutes,
            booking_is_critical=b.is_critical_booking,
            booking_priority=b.booking_priority,
            title=b.title,
            booking_status=b.booking_status,
            start_datetime=b.start_datetime,
            end_datetime=b.end_datetime,
            requested_by_user_id=b.requested_by_user_id,
            owning_group_id=b.owning_group_id,
            owning_group_name=b.owning_group.name if b.owning_group else None,
        ))

    flag = aggregate_flag(c.severity for c in conflicts)
    impacted_teams: List[str] = []
    for c in conflicts:
        if c.owning_group_id and c.owning_group_id not in impacted_teams:
            impacted_teams.append(c.owning_group_id)

    major = sum(1 for c in conflicts if c.severity == Severity.HIGH)
    summary = {
        "total_conflicts": len(conflicts),
        "major_conflicts": major,
        "minor_conflicts": len(conflicts) - major,
        "affected_bookings": [c.booking_id for c in conflicts],
        "impacted_teams": impacted_teams,
        "refresh_window": {"start": w_start.isoformat(), "end": w_end.isoformat()},
        "impact_type": params.impact_type,
        "checked_at": utcnow().isoformat(),
    }
    if conflicts:
        log.info("refresh window overlaps %s confirmed booking(s)", len(conflicts),
                 extra={"event": "refresh_conflicts", "refresh_intent_id": refresh_intent_id,
                        "conflict_flag": flag.value, "impact_type": params.impact_type})
    return ConflictResult(
        has_conflicts=bool(conflicts),
        conflict_flag=flag,
        conflict_summary=summary,
        conflicts=conflicts,
        impacted_teams=impacted_teams,
        window_start=w_start,
        window_end=w_end,
        can_proceed_without_override=flag != ConflictFlag.MAJOR,
        requires_force_approval=flag == ConflictFlag.MAJOR,
    )


def revalidate_conflicts(refresh_intent_id: str) -> ConflictResult:
    """Пересчитать конфликты интента по текущему окну, перезаписать их и флаг одной транзакцией."""
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)

    result = check_conflicts_for_refresh(
        entity_type=intent.entity_type,
        entity_id=intent.entity_id,
        planned_date=intent.planned_date,
        planned_end_date=intent.planned_end_date,
        impact_type=intent.impact_type,
        estimated_downtime_minutes=intent.estimated_downtime_minutes,
        refresh_intent_id=intent.id,
    )
    store_conflicts(intent.id, result.conflicts, commit=False)
    intent.conflict_flag = result.conflict_flag
    intent.conflict_summary = result.conflict_summary
    intent.impacted_teams = result.impacted_teams
    try:
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("revalidate failed", extra={"event": "revalidate_failed",
                                                  "refresh_intent_id": refresh_intent_id})
        raise
    return result


def ensure_approvable(refresh_intent_id: str, force: bool = False, actor_id: Optional[str] = None,
                      notes: Optional[str] = None, *, revalidate: bool = True) -> RefreshIntent:
    """
    Гейт одобрения: MAJOR без force → ForceApprovalRequired.
    С force все UNRESOLVED конфликты становятся OVERRIDE_APPROVED, пишется FORCE_APPROVAL.
    """
    if revalidate:
        revalidate_conflicts(refresh_intent_id)
    intent = db.session.get(RefreshIntent, refresh_intent_id)
    if intent is None:
        raise NotFound("refresh intent not found", refresh_intent_id=refresh_intent_id)
    if intent.conflict_flag != ConflictFlag.MAJOR:
        return intent
    if not force:
        raise ForceApprovalRequired("refresh has MAJOR conflicts; force approval required",
                                    refresh_intent_id=intent.id)

    now = utcnow()
    overridden: List[str] = []
    for c in intent.conflicts:
        if c.resolution_status != ResolutionStatus.UNRESOLVED:
            continue
        c.resolution_status = ResolutionStatus.OVERRIDE_APPROVED
        c.resolved_by_user_id = actor_id
        c.resolved_at = now
        c.resolution_notes = notes
        overridden.append(c.id)
    record_event(
        action="FORCE_APPROVAL", entity="RefreshIntent", entity_id=intent.id, user_id=actor_id,
        payload={"conflict_flag": intent.conflict_flag.value, "overridden": overridden, "notes": notes},
    )
    db.session.commit()
    log.info("force approval over %s conflict(s)", len(overridden),
             extra={"event": "force_approval", "refresh_intent_id": intent.id, "conflict_flag": "MAJOR"})
    return intent


# ===== свободные окна =====
def scan_free_slots(busy: Iterable[Tuple[datetime, datetime]], range_start: datetime, range_end: datetime,
                    duration_minutes: int, limit: int = 5) -> List[Slot]:
    """Проход по занятым окнам в порядке начала; курсор сдвигается на max(курсор, конец брони)."""
    need = timedelta(minutes=duration_minutes)
    slots: List[Slot] = []
    cursor = range_start
    for b_start, b_end in sorted(busy):
        if len(slots) >= limit:
            break
        if b_start - cursor >= need:
            slots.append(Slot(start=cursor, end=cursor + need,
                              available_minutes=minutes_between(cursor, b_start)))
        cursor = max(cursor, b_end)
    if len(slots) < limit and range_end - cursor >= need:
        slots.append(Slot(start=cursor, end=cursor + need,
                          available_minutes=minutes_between(cursor, range_end)))
    return slots


def suggest_slots(entity_type, entity_id: str, duration_minutes: int = 60,
                  lookahead_days: Optional[int] = None, now: Optional[datetime] = None) -> SlotSuggestion:
    cfg = current_app.config
    params = SlotRequestIn(
        entity_type=entity_type, entity_id=entity_id, duration_minutes=duration_minutes,
        lookahead_days=lookahead_days or int(cfg.get("SLOT_LOOKAHEAD_DAYS", 7)),
    )
    range_start = to_utc_naive(now) if now is not None else utcnow()
    range_end = range_start + timedelta(days=params.lookahead_days)

    bookings = bookings_on_resource(params.entity_type, params.entity_id, range_start, range_end)
    slots = scan_free_slots(
        ((b.start_datetime, b.end_datetime) for b in bookings),
        range_start, range_end, params.duration_minutes,
        limit=int(cfg.get("SLOT_MAX_SUGGESTIONS", 5)),
    )
    return SlotSuggestion(slots=slots, range_start=range_start, range_end=range_end)
