from __future__ import annotations
import enum
import uuid
from datetime import datetime, UTC

from sqlalchemy import Enum


def utcnow() -> datetime:
    """Текущее время в UTC без tzinfo (так храним все метки в БД)."""
    return datetime.now(UTC).replace(tzinfo=None)


def new_id() -> str:
    return str(uuid.uuid4())


def enum_type(enum_cls: type[enum.Enum]) -> Enum:
    # храним value ("PendingApproval"), а не имя члена; CHECK вместо нативного типа
    return Enum(
        enum_cls,
        values_callable=lambda e: [m.value for m in e],
        native_enum=False,
        validate_strings=True,
        length=32,
    )


# ---------- Enums ----------
class ResourceType(str, enum.Enum):
    ENVIRONMENT = "Environment"
    ENVIRONMENT_INSTANCE = "EnvironmentInstance"
    INFRA_COMPONENT = "InfraComponent"
    COMPONENT_INSTANCE = "ComponentInstance"


class BookingStatus(str, enum.Enum):
    REQUESTED = "Requested"
    PENDING_APPROVAL = "PendingApproval"
    APPROVED = "Approved"
    ACTIVE = "Active"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"


class BookingPriority(str, enum.Enum):
    LOW = "Low"
    NORMAL = "Normal"
    HIGH = "High"
    CRITICAL = "Critical"


class ImpactType(str, enum.Enum):
    DATA_OVERWRITE = "DATA_OVERWRITE"
    DOWNTIME_REQUIRED = "DOWNTIME_REQUIRED"
    SCHEMA_CHANGE = "SCHEMA_CHANGE"
    READ_ONLY = "READ_ONLY"
    CONFIG_CHANGE = "CONFIG_CHANGE"


class RefreshStatus(str, enum.Enum):
    DRAFT = "DRAFT"
    REQUESTED = "REQUESTED"
    APPROVED = "APPROVED"
    SCHEDULED = "SCHEDULED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"
    ROLLED_BACK = "ROLLED_BACK"


class ConflictFlag(str, enum.Enum):
    NONE = "NONE"
    MINOR = "MINOR"
    MAJOR = "MAJOR"


class ConflictType(str, enum.Enum):
    OVERLAP = "OVERLAP"


class Severity(str, enum.Enum):
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"


class ResolutionStatus(str, enum.Enum):
    UNRESOLVED = "UNRESOLVED"
    ACKNOWLEDGED = "ACKNOWLEDGED"
    BOOKING_MOVED = "BOOKING_MOVED"
    REFRESH_MOVED = "REFRESH_MOVED"
    OVERRIDE_APPROVED = "OVERRIDE_APPROVED"
    DISMISSED = "DISMISSED"


class ResourceConflictStatus(str, enum.Enum):
    NONE = "None"
    POTENTIAL_CONFLICT = "PotentialConflict"


class ResourceBookingStatus(str, enum.Enum):
    RESERVED = "Reserved"
    ACTIVE = "Active"
    RELEASED = "Released"


class ComponentBookingStatus(str, enum.Enum):
    AVAILABLE = "Available"
    RESERVED = "Reserved"
    IN_USE = "InUse"


class InstanceBookingStatus(str, enum.Enum):
    AVAILABLE = "Available"
    PARTIALLY_BOOKED = "PartiallyBooked"
    FULLY_BOOKED = "FullyBooked"


# ---------- Status groups ----------
CONFIRMED_BOOKING_STATUSES = frozenset({BookingStatus.APPROVED, BookingStatus.ACTIVE})
TENTATIVE_BOOKING_STATUSES = frozenset({BookingStatus.REQUESTED, BookingStatus.PENDING_APPROVAL})
CLOSED_BOOKING_STATUSES = frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED})

DESTRUCTIVE_IMPACTS = frozenset({
    ImpactType.DATA_OVERWRITE, ImpactType.DOWNTIME_REQUIRED, ImpactType.SCHEMA_CHANGE,
})

# рефреши, о которых предупреждаем при бронировании
SCHEDULED_REFRESH_STATUSES = frozenset({
    RefreshStatus.APPROVED, RefreshStatus.SCHEDULED, RefreshStatus.IN_PROGRESS,
})
EDITABLE_REFRESH_STATUSES = frozenset({RefreshStatus.DRAFT, RefreshStatus.REQUESTED})
# интенты, чей снимок конфликтов ещё актуален
OPEN_REFRESH_STATUSES = EDITABLE_REFRESH_STATUSES | SCHEDULED_REFRESH_STATUSES

# всё, кроме UNRESOLVED, ставится только явным действием
TERMINAL_RESOLUTIONS = frozenset(set(ResolutionStatus) - {ResolutionStatus.UNRESOLVED})
NOTIFIABLE_RESOLUTIONS = frozenset({
    ResolutionStatus.UNRESOLVED, ResolutionStatus.ACKNOWLEDGED, ResolutionStatus.OVERRIDE_APPROVED,
})
