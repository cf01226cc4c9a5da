from extensions import db

from .common import (
    BookingPriority, BookingStatus, ComponentBookingStatus, ConflictFlag, ConflictType,
    ImpactType, InstanceBookingStatus, RefreshStatus, ResolutionStatus,
    ResourceBookingStatus, ResourceConflictStatus, ResourceType, Severity,
    CLOSED_BOOKING_STATUSES, CONFIRMED_BOOKING_STATUSES, DESTRUCTIVE_IMPACTS,
    EDITABLE_REFRESH_STATUSES, NOTIFIABLE_RESOLUTIONS, OPEN_REFRESH_STATUSES, SCHEDULED_REFRESH_STATUSES,
    TENTATIVE_BOOKING_STATUSES, TERMINAL_RESOLUTIONS,
    new_id, utcnow,
)
from .environment import Environment, EnvironmentInstance, InfraComponent, UserGroup
from .booking import Booking, BookingResource
from .refresh import RefreshIntent, refresh_window
from .conflict import Conflict
from .audit import AuditLog
