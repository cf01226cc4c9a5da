# blueprints/conflicts/schemas.py
from __future__ import annotations
from datetime import datetime, UTC
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from models import BookingPriority, ImpactType, RefreshStatus, ResourceType


def to_utc_naive(value: datetime) -> datetime:
    # в БД всё лежит в UTC без tzinfo
    if value.tzinfo is not None:
        return value.astimezone(UTC).replace(tzinfo=None)
    return value


class _Window(BaseModel):
    start: datetime
    end: datetime

    @field_validator("start", "end")
    @classmethod
    def _naive_utc(cls, v: datetime) -> datetime:
        return to_utc_naive(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.end <= self.start:
            raise ValueError("end must be > start")
        return self


# ---------- Resources ----------
class ResourceRefIn(BaseModel):
    resource_type: ResourceType
    resource_ref_id: str = Field(min_length=1, max_length=36)
    source_env_instance_id: Optional[str] = Field(None, max_length=36)
    logical_role: Optional[str] = Field(None, max_length=100)


# ---------- Booking side ----------
class BookingConflictCheckIn(_Window):
    resources: List[ResourceRefIn] = Field(default_factory=list)
    exclude_booking_id: Optional[str] = None


class RefreshesForBookingIn(_Window):
    environment_instance_ids: List[str] = Field(default_factory=list)
    booking_id: Optional[str] = None


class BookingIn(_Window):
    title: str = Field(min_length=1, max_length=255)
    description: Optional[str] = None
    booking_priority: BookingPriority = BookingPriority.NORMAL
    is_critical_booking: bool = False
    requested_by_user_id: str = Field(min_length=1, max_length=64)
    owning_group_id: Optional[str] = None
    resources: List[ResourceRefIn] = Field(min_length=1)


# ---------- Refresh side ----------
class RefreshCheckIn(BaseModel):
    entity_type: ResourceType
    entity_id: str = Field(min_length=1, max_length=36)
    planned_date: datetime
    planned_end_date: Optional[datetime] = None
    # неизвестный тип не отвергаем: классификатор трактует его как разрушающий
    impact_type: str = ImpactType.DATA_OVERWRITE.value
    estimated_downtime_minutes: Optional[int] = Field(None, ge=1)
    refresh_intent_id: Optional[str] = None

    @field_validator("planned_date", "planned_end_date")
    @classmethod
    def _naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v) if v is not None else None

    @field_validator("impact_type", mode="before")
    @classmethod
    def _impact_value(cls, v):
        return v.value if isinstance(v, ImpactType) else str(v)

    @model_validator(mode="after")
    def check_range(self):
        if self.planned_end_date is not None and self.planned_end_date <= self.planned_date:
            raise ValueError("planned_end_date must be > planned_date")
        return self


class RefreshIntentIn(BaseModel):
    entity_type: ResourceType
    entity_id: str = Field(min_length=1, max_length=36)
    entity_name: Optional[str] = Field(None, max_length=255)
    planned_date: datetime
    planned_end_date: Optional[datetime] = None
    impact_type: ImpactType = ImpactType.DATA_OVERWRITE
    estimated_downtime_minutes: Optional[int] = Field(None, ge=1)
    reason: Optional[str] = None
    requested_by_user_id: str = Field(min_length=1, max_length=64)
    intent_status: RefreshStatus = RefreshStatus.REQUESTED

    @field_validator("planned_date", "planned_end_date")
    @classmethod
    def _naive_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc_naive(v) if v is not None else None

    @model_validator(mode="after")
    def check_range(self):
        if self.planned_end_date is not None and self.planned_end_date <= self.planned_date:
            raise ValueError("planned_end_date must be > planned_date")
        return self


# ---------- Slots ----------
class SlotRequestIn(BaseModel):
    entity_type: ResourceType
    entity_id: str = Field(min_length=1, max_length=36)
    duration_minutes: int = Field(60, gt=0)
    lookahead_days: int = Field(7, gt=0, le=365)


# ---------- Filters ----------
class UnresolvedFilterIn(BaseModel):
    entity_type: Optional[ResourceType] = None
    severity: Optional[str] = Field(None, pattern="^(LOW|MEDIUM|HIGH)$")
    group_id: Optional[str] = None
