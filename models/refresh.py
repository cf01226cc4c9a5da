from __future__ import annotations
from datetime import datetime, timedelta

from sqlalchemy import DateTime, Integer, JSON, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extensions import db
from .common import (
    ConflictFlag, ImpactType, RefreshStatus, ResourceType, enum_type, new_id, utcnow,
)


def refresh_window(planned_date: datetime, planned_end_date: datetime | None,
                   estimated_downtime_minutes: int | None, default_minutes: int = 60) -> tuple[datetime, datetime]:
    """Окно рефреша: planned_end_date или planned_date + оценка простоя."""
    if planned_end_date is not None:
        return planned_date, planned_end_date
    minutes = estimated_downtime_minutes if estimated_downtime_minutes is not None else default_minutes
    return planned_date, planned_date + timedelta(minutes=minutes)


class RefreshIntent(db.Model):
    __tablename__ = "refresh_intents"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    entity_type: Mapped[ResourceType] = mapped_column(enum_type(ResourceType), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
    entity_name: Mapped[str | None] = mapped_column(String(255))
    intent_status: Mapped[RefreshStatus] = mapped_column(
        enum_type(RefreshStatus), default=RefreshStatus.REQUESTED, nullable=False
    )
    planned_date: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    planned_end_date: Mapped[datetime | None] = mapped_column(DateTime)
    impact_type: Mapped[ImpactType] = mapped_column(
        enum_type(ImpactType), default=ImpactType.DATA_OVERWRITE, nullable=False
    )
    estimated_downtime_minutes: Mapped[int | None] = mapped_column(Integer)
    reason: Mapped[str | None] = mapped_column(Text)
    requested_by_user_id: Mapped[str] = mapped_column(String(64), nullable=False)

    conflict_flag: Mapped[ConflictFlag] = mapped_column(
        enum_type(ConflictFlag), default=ConflictFlag.NONE, nullable=False
    )
    conflict_summary: Mapped[dict | None] = mapped_column(JSON)
    impacted_teams: Mapped[list | None] = mapped_column(JSON)

    approved_by_user_id: Mapped[str | None] = mapped_column(String(64))
    approved_at: Mapped[datetime | None] = mapped_column(DateTime)
    approval_notes: Mapped[str | None] = mapped_column(Text)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    # конфликт принадлежит интенту: удаляется вместе с ним
    conflicts = relationship(
        "Conflict", back_populates="refresh_intent",
        cascade="all, delete-orphan",
    )

    def window(self, default_minutes: int = 60) -> tuple[datetime, datetime]:
        return refresh_window(self.planned_date, self.planned_end_date,
                              self.estimated_downtime_minutes, default_minutes)

    def __repr__(self):
        return f"<RefreshIntent {self.entity_type.value}:{self.entity_id} {self.intent_status.value}>"
