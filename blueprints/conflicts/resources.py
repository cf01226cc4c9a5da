# blueprints/conflicts/resources.py
from __future__ import annotations
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from sqlalchemy import and_, false, or_, select

from extensions import db
from models import (
    Booking, BookingResource, ComponentBookingStatus, EnvironmentInstance,
    InfraComponent, InstanceBookingStatus, RefreshIntent, ResourceType,
    CLOSED_BOOKING_STATUSES, SCHEDULED_REFRESH_STATUSES,
)
from .errors import UnknownResourceType
from .overlap import minutes_between, overlap_window, overlaps

log = logging.getLogger(__name__)


# ===== результаты поиска =====
@dataclass
class OverlapResult:
    booking: Booking
    overlap_start: datetime
    overlap_end: datetime
    overlap_minutes: int


@dataclass
class RefreshOverlap:
    refresh: RefreshIntent
    window_start: datetime
    window_end: datetime
    overlap_start: datetime
    overlap_end: datetime
    overlap_minutes: int


# ===== виды ресурсов =====
class ResourceKind:
    """
    Вид ресурса в иерархии Environment → EnvironmentInstance → InfraComponent.

    Бронь задевает ресурс, если она сделана на сам ресурс, на объемлющий ресурс
    (бронь целого окружения покрывает его экземпляры) или на что-то внутри него.
    """
    resource_type: ResourceType

    def contained_instance_ids(self, ref_id: str) -> List[str]:
        return []

    def enclosing(self, ref_id: str) -> List[Tuple[ResourceType, str]]:
        return []

    def booking_resource_clause(self, ref_id: str):
        clauses = [_exact(self.resource_type, ref_id)]
        clauses += [_exact(rt, rid) for rt, rid in self.enclosing(ref_id)]
        inst_ids = self.contained_instance_ids(ref_id)
        if inst_ids:
            clauses.append(_instance_scope(inst_ids))
        return or_(*clauses)


class EnvironmentKind(ResourceKind):
    resource_type = ResourceType.ENVIRONMENT

    def contained_instance_ids(self, ref_id: str) -> List[str]:
        rows = db.session.execute(
            select(EnvironmentInstance.id).where(EnvironmentInstance.environment_id == ref_id)
        ).scalars().all()
        return list(rows)


class EnvironmentInstanceKind(ResourceKind):
    resource_type = ResourceType.ENVIRONMENT_INSTANCE

    def contained_instance_ids(self, ref_id: str) -> List[str]:
        return [ref_id]

    def enclosing(self, ref_id: str) -> List[Tuple[ResourceType, str]]:
        inst = db.session.get(EnvironmentInstance, ref_id)
        if not inst:
            return []
        return [(ResourceType.ENVIRONMENT, inst.environment_id)]


class InfraComponentKind(ResourceKind):
    resource_type = ResourceType.INFRA_COMPONENT

    def enclosing(self, ref_id: str) -> List[Tuple[ResourceType, str]]:
        comp = db.session.get(InfraComponent, ref_id)
        if not comp:
            return []
        inst = db.session.get(EnvironmentInstance, comp.env_instance_id)
        out = [(ResourceType.ENVIRONMENT_INSTANCE, comp.env_instance_id)]
        if inst:
            out.append((ResourceType.ENVIRONMENT, inst.environment_id))
        return out


class ComponentInstanceKind(ResourceKind):
    # компоненты приложений вне иерархии окружений: только точное совпадение
    resource_type = ResourceType.COMPONENT_INSTANCE


RESOURCE_KINDS: Dict[ResourceType, ResourceKind] = {
    k.resource_type: k for k in (
        EnvironmentKind(), EnvironmentInstanceKind(), InfraComponentKind(), ComponentInstanceKind(),
    )
}


def resource_kind(resource_type) -> ResourceKind:
    try:
        return RESOURCE_KINDS[ResourceType(resource_type)]
    except (ValueError, KeyError):
        raise UnknownResourceType(f"unknown resource type: {resource_type!r}",
                                  resource_type=str(resource_type)) from None


def _exact(resource_type: ResourceType, ref_id: str):
    return and_(BookingResource.resource_type == resource_type,
                BookingResource.resource_ref_id == ref_id)


def _instance_scope(inst_ids: Sequence[str]):
    """Всё, что забронировано внутри указанных экземпляров окружения."""
    comp_ids = select(InfraComponent.id).where(InfraComponent.env_instance_id.in_(inst_ids))
    return or_(
        and_(BookingResource.resource_type == ResourceType.ENVIRONMENT_INSTANCE,
             BookingResource.resource_ref_id.in_(inst_ids)),
        BookingResource.source_env_instance_id.in_(inst_ids),
        and_(BookingResource.resource_type == ResourceType.INFRA_COMPONENT,
             BookingResource.resource_ref_id.in_(comp_ids)),
    )


# ===== поиск пересечений =====
def find_overlapping_bookings(resource_type, resource_id: str,
                              window_start: datetime, window_end: datetime,
                              exclude_booking_id: Optional[str] = None,
                              *, statuses: Optional[Iterable] = None) -> List[OverlapResult]:
    """
    Брони на ресурсе (с учётом иерархии), чьё окно пересекает [window_start, window_end).
    statuses=None: все, кроме Completed/Cancelled.
    """
    kind = resource_kind(resource_type)
    if window_start >= window_end:
        return []

    q = (
        Booking.query
        .join(BookingResource, BookingResource.booking_id == Booking.id)
        .filter(
            kind.booking_resource_clause(resource_id),
            Booking.start_datetime < window_end,
            Booking.end_datetime > window_start,
        )
    )
    if statuses is None:
        q = q.filter(Booking.booking_status.not_in(list(CLOSED_BOOKING_STATUSES)))
    else:
        q = q.filter(Booking.booking_status.in_(list(statuses)))
    if exclude_booking_id:
        q = q.filter(Booking.id != exclude_booking_id)

    out: List[OverlapResult] = []
    for b in q.distinct().order_by(Booking.start_datetime.asc(), Booking.id.asc()).all():
        if not overlaps(window_start, window_end, b.start_datetime, b.end_datetime):
            continue
        o_start, o_end = overlap_window(window_start, window_end, b.start_datetime, b.end_datetime)
        out.append(OverlapResult(
            booking=b, overlap_start=o_start, overlap_end=o_end,
            overlap_minutes=minutes_between(o_start, o_end),
        ))
    return out


def find_overlapping_refreshes(window_start: datetime, window_end: datetime,
                               environment_instance_ids: Sequence[str] = (),
                               *, statuses: Iterable = SCHEDULED_REFRESH_STATUSES,
                               default_minutes: int = 60) -> List[RefreshOverlap]:
    """
    Рефреши в статусах statuses, чьё окно пересекает окно брони.
    Пустой список экземпляров: без фильтра по сущности.
    """
    if window_start >= window_end:
        return []

    q = RefreshIntent.query.filter(
        RefreshIntent.intent_status.in_(list(statuses)),
        RefreshIntent.planned_date < window_end,
    )
    inst_ids = list(environment_instance_ids or [])
    if inst_ids:
        env_ids = select(EnvironmentInstance.environment_id).where(EnvironmentInstance.id.in_(inst_ids))
        comp_ids = select(InfraComponent.id).where(InfraComponent.env_instance_id.in_(inst_ids))
        q = q.filter(or_(
            and_(RefreshIntent.entity_type == ResourceType.ENVIRONMENT_INSTANCE,
                 RefreshIntent.entity_id.in_(inst_ids)),
            and_(RefreshIntent.entity_type == ResourceType.ENVIRONMENT,
                 RefreshIntent.entity_id.in_(env_ids)),
            and_(RefreshIntent.entity_type == ResourceType.INFRA_COMPONENT,
                 RefreshIntent.entity_id.in_(comp_ids)),
        ))

    out: List[RefreshOverlap] = []
    # конец окна может быть вычисляемым (planned_date + downtime), поэтому добиваем фильтр в Python
    for ri in q.order_by(RefreshIntent.planned_date.asc(), RefreshIntent.id.asc()).all():
        r_start, r_end = ri.window(default_minutes)
        if not overlaps(window_start, window_end, r_start, r_end):
            continue
        o_start, o_end = overlap_window(window_start, window_end, r_start, r_end)
        out.append(RefreshOverlap(
            refresh=ri, window_start=r_start, window_end=r_end,
            overlap_start=o_start, overlap_end=o_end,
            overlap_minutes=minutes_between(o_start, o_end),
        ))
    return out


def bookings_on_resource(resource_type, resource_id: str,
                         range_start: datetime, range_end: datetime) -> List[Booking]:
    """Незакрытые брони на ресурсе в диапазоне, по возрастанию начала (для поиска окон)."""
    return [r.booking for r in find_overlapping_bookings(resource_type, resource_id, range_start, range_end)]


# ===== статусы занятости ресурсов =====
def instance_booking_status(component_statuses: Iterable[ComponentBookingStatus]) -> InstanceBookingStatus:
    """Свёртка по компонентам экземпляра: все InUse → FullyBooked, хоть один InUse/Reserved → PartiallyBooked."""
    statuses = list(component_statuses)
    if statuses and all(s == ComponentBookingStatus.IN_USE for s in statuses):
        return InstanceBookingStatus.FULLY_BOOKED
    if any(s in (ComponentBookingStatus.IN_USE, ComponentBookingStatus.RESERVED) for s in statuses):
        return InstanceBookingStatus.PARTIALLY_BOOKED
    return InstanceBookingStatus.AVAILABLE


def recompute_instance_statuses(instance_ids: Optional[Iterable[str]] = None) -> Dict[str, InstanceBookingStatus]:
    """Пересчитать booking_status экземпляров. Идемпотентно; коммит за вызывающим."""
    q = EnvironmentInstance.query
    if instance_ids is not None:
        ids = list(instance_ids)
        q = q.filter(EnvironmentInstance.id.in_(ids) if ids else false())
    out: Dict[str, InstanceBookingStatus] = {}
    for inst in q.all():
        status = instance_booking_status(c.booking_status for c in inst.components)
        if inst.booking_status != status:
            inst.booking_status = status
        out[inst.id] = status
    return out


def apply_component_status(booking: Booking, status: ComponentBookingStatus) -> Dict[str, InstanceBookingStatus]:
    """Проставить статус инфраструктурным компонентам брони и пересчитать их экземпляры."""
    touched: set[str] = set()
    for res in booking.resources:
        if res.resource_type != ResourceType.INFRA_COMPONENT:
            continue
        comp = db.session.get(InfraComponent, res.resource_ref_id)
        if not comp:
            log.warning("booking %s references missing infra component %s", booking.id, res.resource_ref_id,
                        extra={"booking_id": booking.id})
            continue
        comp.booking_status = status
        comp.current_booking_id = None if status == ComponentBookingStatus.AVAILABLE else booking.id
        touched.add(comp.env_instance_id)
    db.session.flush()
    return recompute_instance_statuses(touched)
