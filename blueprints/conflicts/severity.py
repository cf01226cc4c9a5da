# blueprints/conflicts/severity.py
from __future__ import annotations
import enum
import logging
from typing import Iterable, Optional, TypeVar

from models import (
    BookingPriority, BookingStatus, ConflictFlag, ImpactType, Severity,
    CONFIRMED_BOOKING_STATUSES, DESTRUCTIVE_IMPACTS,
)

log = logging.getLogger(__name__)

E = TypeVar("E", bound=enum.Enum)

HIGH_PRIORITIES = frozenset({BookingPriority.HIGH, BookingPriority.CRITICAL})

IMPACT_DESCRIPTIONS = {
    ImpactType.DATA_OVERWRITE: "This refresh will overwrite data. Your test data may be affected.",
    ImpactType.DOWNTIME_REQUIRED: "This refresh will cause downtime. Your test data may be affected.",
    ImpactType.SCHEMA_CHANGE: "This refresh will modify schema. Your test data may be affected.",
    ImpactType.READ_ONLY: "This refresh is read-only. Impact should be minimal.",
    ImpactType.CONFIG_CHANGE: "This refresh is config-only. Impact should be minimal.",
}


def _coerce(enum_cls: type[E], value) -> Optional[E]:
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        return None


def is_destructive(impact_type) -> bool:
    """Неизвестный тип воздействия считаем разрушающим (в сторону большей серьёзности)."""
    impact = _coerce(ImpactType, impact_type)
    if impact is None:
        log.warning("unknown impact type %r, treated as destructive", impact_type,
                    extra={"event": "unknown_impact_type", "impact_type": str(impact_type)})
        return True
    return impact in DESTRUCTIVE_IMPACTS


def classify(impact_type, booking_status, booking_priority, is_critical_booking: bool) -> Severity:
    """
    Серьёзность конфликта рефреш/бронь. Правила по порядку, первое совпадение:
      1. разрушающее + Approved/Active + (критичная или приоритет High/Critical) → HIGH
      2. разрушающее + Active → HIGH
      3. разрушающее + Approved/Active → MEDIUM
      4. неразрушающее + Approved/Active + критичная → MEDIUM
      5. иначе → LOW
    """
    destructive = is_destructive(impact_type)
    status = _coerce(BookingStatus, booking_status)
    priority = _coerce(BookingPriority, booking_priority)
    confirmed = status in CONFIRMED_BOOKING_STATUSES
    critical = bool(is_critical_booking)

    if destructive and confirmed and (critical or priority in HIGH_PRIORITIES):
        return Severity.HIGH
    if destructive and status == BookingStatus.ACTIVE:
        return Severity.HIGH
    if destructive and confirmed:
        return Severity.MEDIUM
    if not destructive and confirmed and critical:
        return Severity.MEDIUM
    return Severity.LOW


def aggregate_flag(severities: Iterable) -> ConflictFlag:
    """MAJOR при любом HIGH, MINOR при MEDIUM/LOW, NONE для пустого набора."""
    seen = {_coerce(Severity, s) for s in severities}
    if Severity.HIGH in seen:
        return ConflictFlag.MAJOR
    if seen & {Severity.MEDIUM, Severity.LOW}:
        return ConflictFlag.MINOR
    return ConflictFlag.NONE


def booking_side_severity(impact_type) -> Severity:
    # у новой брони ещё нет статуса/приоритета: только два уровня
    return Severity.HIGH if is_destructive(impact_type) else Severity.LOW


def impact_description(impact_type) -> str:
    impact = _coerce(ImpactType, impact_type)
    if impact is None:
        return "This refresh has an unknown impact type. Treat it as destructive."
    return IMPACT_DESCRIPTIONS[impact]
