# blueprints/bookings/services.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Tuple

from flask import current_app
from sqlalchemy import delete, select
from sqlalchemy.exc import SQLAlchemyError

from extensions import db
from models import (
    Booking, BookingPriority, BookingResource, BookingStatus, ComponentBookingStatus, Conflict,
    InfraComponent, RefreshIntent, ResourceBookingStatus, ResourceConflictStatus, ResourceType,
    CLOSED_BOOKING_STATUSES, CONFIRMED_BOOKING_STATUSES, OPEN_REFRESH_STATUSES, TENTATIVE_BOOKING_STATUSES,
)
from blueprints.audit.services import record_event
from blueprints.conflicts.errors import BookingLocked, InvalidStatus, NotFound
from blueprints.conflicts.resources import apply_component_status, find_overlapping_refreshes, resource_kind
from blueprints.conflicts.schemas import BookingIn, to_utc_naive
from blueprints.conflicts.services import (
    BookingOverlap, BookingRefreshCheck, check_conflicts_for_booking,
    check_refreshes_for_booking, require_acknowledgement, revalidate_conflicts,
)

log = logging.getLogger(__name__)

# допустимые переходы статуса брони
TRANSITIONS: Dict[BookingStatus, frozenset] = {
    BookingStatus.REQUESTED: frozenset({BookingStatus.PENDING_APPROVAL, BookingStatus.APPROVED, BookingStatus.CANCELLED}),
    BookingStatus.PENDING_APPROVAL: frozenset({BookingStatus.REQUESTED, BookingStatus.APPROVED, BookingStatus.CANCELLED}),
    BookingStatus.APPROVED: frozenset({BookingStatus.ACTIVE, BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.ACTIVE: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
}

# статус брони → (статус строк booking_resources, статус инфраструктурных компонентов)
RESOURCE_EFFECTS = {
    BookingStatus.APPROVED: (ResourceBookingStatus.RESERVED, ComponentBookingStatus.RESERVED),
    BookingStatus.ACTIVE: (ResourceBookingStatus.ACTIVE, ComponentBookingStatus.IN_USE),
    BookingStatus.COMPLETED: (ResourceBookingStatus.RELEASED, ComponentBookingStatus.AVAILABLE),
    BookingStatus.CANCELLED: (ResourceBookingStatus.RELEASED, ComponentBookingStatus.AVAILABLE),
}

NO_REFRESH_CHECK = BookingRefreshCheck(
    has_conflicts=False, has_destructive_refresh=False, refresh_conflicts=[],
    warning_level="NONE", suggested_action=None,
)


@dataclass
class BookingOutcome:
    booking: Booking
    conflicts: List[BookingOverlap]
    refresh_check: BookingRefreshCheck


def _field(r, name: str):
    return r.get(name) if isinstance(r, dict) else getattr(r, name, None)


def instance_ids_for(resources: Iterable) -> List[str]:
    """Экземпляры окружений, которые задевает набор ресурсов брони."""
    out: List[str] = []

    def add(i: Optional[str]):
        if i and i not in out:
            out.append(i)

    for r in resources:
        rtype = ResourceType(_field(r, "resource_type"))
        ref_id = _field(r, "resource_ref_id")
        source = _field(r, "source_env_instance_id")
        add(source)
        if rtype == ResourceType.INFRA_COMPONENT:
            comp = db.session.get(InfraComponent, ref_id)
            add(comp.env_instance_id if comp else None)
        else:
            for i in resource_kind(rtype).contained_instance_ids(ref_id):
                add(i)
    return out


def _refresh_check(resources, start: datetime, end: datetime, booking_id: Optional[str] = None) -> BookingRefreshCheck:
    inst_ids = instance_ids_for(resources)
    if not inst_ids:
        # без экземпляров фильтр по сущности пуст: не предупреждаем обо всех рефрешах подряд
        return NO_REFRESH_CHECK
    return check_refreshes_for_booking(start, end, inst_ids, booking_id=booking_id)


def apply_resource_conflicts(booking: Booking, overlaps: Iterable[BookingOverlap]) -> bool:
    """Пометить строки booking_resources, на которых есть пересечения. True, если есть хоть одно."""
    first: Dict[tuple, BookingOverlap] = {}
    for o in overlaps:
        first.setdefault((o.resource_type, o.resource_ref_id), o)
    for res in booking.resources:
        hit = first.get((res.resource_type.value, res.resource_ref_id))
        res.resource_conflict_status = (
            ResourceConflictStatus.POTENTIAL_CONFLICT if hit else ResourceConflictStatus.NONE
        )
        res.conflicting_booking_id = hit.conflicting_booking_id if hit else None
    has = bool(first)
    booking.conflict_status = ResourceConflictStatus.POTENTIAL_CONFLICT if has else ResourceConflictStatus.NONE
    return has


def create_booking(*, title: str, start: datetime, end: datetime, requested_by_user_id: str,
                   resources: Iterable, description: Optional[str] = None,
                   booking_priority: BookingPriority = BookingPriority.NORMAL,
                   is_critical_booking: bool = False, owning_group_id: Optional[str] = None,
                   acknowledge_refresh_conflicts: bool = False) -> BookingOutcome:
    """
    Создать бронь: проверки пересечений и вставка в одной транзакции.
    Пересечение с другими бронями → PendingApproval + PotentialConflict.
    Разрушающий рефреш в окне требует acknowledge_refresh_conflicts.
    """
    data = BookingIn(
        title=title, start=start, end=end, requested_by_user_id=requested_by_user_id,
        resources=list(resources), description=description, booking_priority=booking_priority,
        is_critical_booking=is_critical_booking, owning_group_id=owning_group_id,
    )
    try:
        overlaps = check_conflicts_for_booking(data.resources, data.start, data.end)
        refresh_check = _refresh_check(data.resources, data.start, data.end)
        require_acknowledgement(refresh_check, acknowledge_refresh_conflicts)

        booking = Booking(
            title=data.title, description=data.description,
            start_datetime=data.start, end_datetime=data.end,
            booking_priority=data.booking_priority, is_critical_booking=data.is_critical_booking,
            requested_by_user_id=data.requested_by_user_id, owning_group_id=data.owning_group_id,
        )
        for r in data.resources:
            booking.resources.append(BookingResource(
                resource_type=r.resource_type, resource_ref_id=r.resource_ref_id,
                source_env_instance_id=r.source_env_instance_id, logical_role=r.logical_role,
            ))
        has_conflicts = apply_resource_conflicts(booking, overlaps)
        booking.booking_status = BookingStatus.PENDING_APPROVAL if has_conflicts else BookingStatus.REQUESTED
        if refresh_check.has_conflicts:
            booking.conflict_notes = refresh_check.suggested_action

        db.session.add(booking)
        db.session.flush()
        record_event(
            action="BOOKING_CREATED", entity="Booking", entity_id=booking.id, user_id=data.requested_by_user_id,
            payload={"conflicts": len(overlaps), "refresh_warning": refresh_check.warning_level,
                     "acknowledged": bool(acknowledge_refresh_conflicts)},
        )
        db.session.commit()
    except SQLAlchemyError:
        db.session.rollback()
        log.exception("create booking failed", extra={"event": "create_booking_failed"})
        raise

    log.info("booking created as %s", booking.booking_status.value,
             extra={"event": "booking_created", "booking_id": booking.id})
    return BookingOutcome(booking=booking, conflicts=overlaps, refresh_check=refresh_check)


def _get(booking_id: str) -> Booking:
    booking = db.session.get(Booking, booking_id)
    if booking is None:
        raise NotFound("booking not found", booking_id=booking_id)
    return booking


def intents_touching(booking: Booking, windows: Iterable[Tuple[datetime, datetime]] = ()) -> List[str]:
    """
    Открытые интенты, чей снимок конфликтов зависит от брони: уже ссылаются на неё
    или пересекают одно из окон (старое/новое). По сущности не фильтруем: пересчёт идемпотентен.
    """
    ids: List[str] = list(db.session.execute(
        select(Conflict.refresh_intent_id).where(Conflict.booking_id == booking.id).distinct()
    ).scalars())
    default = int(current_app.config.get("REFRESH_DEFAULT_DOWNTIME_MINUTES", 60))
    for start, end in windows:
        for hit in find_overlapping_refreshes(start, end, statuses=OPEN_REFRESH_STATUSES,
                                              default_minutes=default):
            if hit.refresh.id not in ids:
                ids.append(hit.refresh.id)
    if not ids:
        return []
    open_ids = set(db.session.execute(
        select(RefreshIntent.id).where(
            RefreshIntent.id.in_(ids),
            RefreshIntent.intent_status.in_(list(OPEN_REFRESH_STATUSES)),
        )
    ).scalars())
    return [i for i in ids if i in open_ids]


def _revalidate_all(intent_ids: Iterable[str]) -> None:
    for intent_id in intent_ids:
        revalidate_conflicts(intent_id)


def change_booking_status(booking_id: str, status, actor_id: Optional[str] = None,
                          conflict_notes: Optional[str] = None) -> Booking:
    """
    Смена статуса с побочными эффектами на ресурсах (Reserved / InUse / Available).
    Затронутые интенты рефреша пересчитываются после коммита.
    """
    try:
        new_status = BookingStatus(status.value if isinstance(status, BookingStatus) else status)
    except ValueError:
        raise InvalidStatus(f"invalid booking status: {status!r}", status=str(status)) from None

    booking = _get(booking_id)
    old_status = booking.booking_status
    if new_status == old_status:
        return booking
    if new_status not in TRANSITIONS[old_status]:
        raise InvalidStatus(f"cannot move booking from {old_status.value} to {new_status.value}",
                            booking_id=booking.id, status=new_status.value)

    booking.booking_status = new_status
    if new_status == BookingStatus.APPROVED:
        booking.approved_by_user_id = actor_id
    if conflict_notes:
        booking.conflict_notes = conflict_notes

    effect = RESOURCE_EFFECTS.get(new_status)
    if effect:
        res_status, comp_status = effect
        for res in booking.resources:
            res.resource_booking_status = res_status
        apply_component_status(booking, comp_status)

    record_event(
        action="BOOKING_STATUS_CHANGE", entity="Booking", entity_id=booking.id, user_id=actor_id,
        payload={"from": old_status.value, "to": new_status.value},
    )
    db.session.commit()
    log.info("booking %s -> %s", old_status.value, new_status.value,
             extra={"event": "booking_status_change", "booking_id": booking.id})

    _revalidate_all(intents_touching(booking, [(booking.start_datetime, booking.end_datetime)]))
    return booking


def update_booking_window(booking_id: str, start: datetime, end: datetime,
                          actor_id: Optional[str] = None,
                          acknowledge_refresh_conflicts: bool = False) -> BookingOutcome:
    """
    Перенос окна брони с теми же проверками, что и при создании:
    неподтверждённая бронь с пересечениями уходит в PendingApproval, без них возвращается в Requested.
    Интенты рефреша, задетые старым или новым окном, пересчитываются.
    """
    booking = _get(booking_id)
    if booking.booking_status in CLOSED_BOOKING_STATUSES:
        raise BookingLocked("cannot modify completed or cancelled booking", booking_id=booking.id)

    overlaps = check_conflicts_for_booking(booking.resources, start, end, exclude_booking_id=booking.id)
    # окно уже проверено pydantic-схемой внутри check_conflicts_for_booking
    new_start, new_end = to_utc_naive(start), to_utc_naive(end)
    refresh_check = _refresh_check(booking.resources, new_start, new_end, booking_id=booking.id)
    require_acknowledgement(refresh_check, acknowledge_refresh_conflicts)

    old_window = (booking.start_datetime, booking.end_datetime)
    booking.start_datetime = new_start
    booking.end_datetime = new_end
    has_conflicts = apply_resource_conflicts(booking, overlaps)
    if booking.booking_status in TENTATIVE_BOOKING_STATUSES:
        booking.booking_status = BookingStatus.PENDING_APPROVAL if has_conflicts else BookingStatus.REQUESTED
    if refresh_check.has_conflicts:
        booking.conflict_notes = refresh_check.suggested_action
    record_event(
        action="BOOKING_WINDOW_CHANGE", entity="Booking", entity_id=booking.id, user_id=actor_id,
        payload={"start": new_start.isoformat(), "end": new_end.isoformat(), "conflicts": len(overlaps)},
    )
    db.session.commit()

    _revalidate_all(intents_touching(booking, [old_window, (new_start, new_end)]))
    return BookingOutcome(booking=booking, conflicts=overlaps, refresh_check=refresh_check)


def delete_booking(booking_id: str, actor_id: Optional[str] = None) -> List[str]:
    """
    Удалить бронь (кроме Active). Конфликты с ней удаляются, затронутые интенты пересчитываются.
    Возвращает id пересчитанных интентов.
    """
    booking = _get(booking_id)
    if booking.booking_status == BookingStatus.ACTIVE:
        raise BookingLocked("cannot delete an active booking", booking_id=booking.id)

    intent_ids = intents_touching(booking)

    if booking.booking_status in CONFIRMED_BOOKING_STATUSES:
        apply_component_status(booking, ComponentBookingStatus.AVAILABLE)
    db.session.execute(
        delete(Conflict).where(Conflict.booking_id == booking.id),
        execution_options={"synchronize_session": "fetch"},
    )
    record_event(action="BOOKING_DELETED", entity="Booking", entity_id=booking.id, user_id=actor_id,
                 payload={"title": booking.title, "status": booking.booking_status.value})
    db.session.delete(booking)
    db.session.commit()
    log.info("booking deleted", extra={"event": "booking_deleted", "booking_id": booking_id})

    _revalidate_all(intent_ids)
    return intent_ids
