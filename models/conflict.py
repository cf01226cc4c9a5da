from __future__ import annotations
from datetime import datetime

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extensions import db
from .common import (
    BookingPriority, ConflictType, ResolutionStatus, Severity, enum_type, new_id, utcnow,
)


class Conflict(db.Model):
    __tablename__ = "refresh_booking_conflicts"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    refresh_intent_id: Mapped[str] = mapped_column(
        ForeignKey("refresh_intents.id", ondelete="CASCADE"), nullable=False, index=True
    )
    booking_id: Mapped[str] = mapped_column(
        ForeignKey("environment_bookings.id", ondelete="CASCADE"), nullable=False, index=True
    )
    conflict_type: Mapped[ConflictType] = mapped_column(
        enum_type(ConflictType), default=ConflictType.OVERLAP, nullable=False
    )
    severity: Mapped[Severity] = mapped_column(enum_type(Severity), nullable=False)
    resolution_status: Mapped[ResolutionStatus] = mapped_column(
        enum_type(ResolutionStatus), default=ResolutionStatus.UNRESOLVED, nullable=False
    )
    overlap_start: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    overlap_end: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    overlap_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # снимок брони на момент обнаружения
    booking_is_critical: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    booking_priority: Mapped[BookingPriority | None] = mapped_column(enum_type(BookingPriority))
    auto_detected: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    resolved_by_user_id: Mapped[str | None] = mapped_column(String(64))
    resolved_at: Mapped[datetime | None] = mapped_column(DateTime)
    resolution_notes: Mapped[str | None] = mapped_column(Text)

    booking_owner_notified: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    notification_sent_at: Mapped[datetime | None] = mapped_column(DateTime)

    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    refresh_intent = relationship("RefreshIntent", back_populates="conflicts")
    # ссылается на бронь, но не владеет ею
    booking = relationship("Booking")

    __table_args__ = (
        UniqueConstraint("refresh_intent_id", "booking_id", name="uq_conflict_intent_booking"),
    )

    def __repr__(self):
        return f"<Conflict {self.refresh_intent_id}/{self.booking_id} {self.severity.value}>"
