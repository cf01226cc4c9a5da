from __future__ import annotations
from datetime import datetime

from sqlalchemy import Boolean, CheckConstraint, DateTime, ForeignKey, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extensions import db
from .common import (
    BookingPriority, BookingStatus, ResourceBookingStatus, ResourceConflictStatus,
    ResourceType, enum_type, new_id, utcnow,
)


class Booking(db.Model):
    __tablename__ = "environment_bookings"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text)
    start_datetime: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    end_datetime: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    booking_status: Mapped[BookingStatus] = mapped_column(
        enum_type(BookingStatus), default=BookingStatus.REQUESTED, nullable=False
    )
    booking_priority: Mapped[BookingPriority] = mapped_column(
        enum_type(BookingPriority), default=BookingPriority.NORMAL, nullable=False
    )
    is_critical_booking: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    conflict_status: Mapped[ResourceConflictStatus] = mapped_column(
        enum_type(ResourceConflictStatus), default=ResourceConflictStatus.NONE, nullable=False
    )
    conflict_notes: Mapped[str | None] = mapped_column(Text)
    requested_by_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    approved_by_user_id: Mapped[str | None] = mapped_column(String(64))
    owning_group_id: Mapped[str | None] = mapped_column(ForeignKey("user_groups.id", ondelete="SET NULL"))
    created_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    resources = relationship("BookingResource", back_populates="booking", cascade="all, delete-orphan")
    owning_group = relationship("UserGroup")

    __table_args__ = (
        CheckConstraint("start_datetime < end_datetime", name="ck_booking_window"),
        Index("ix_booking_window", "start_datetime", "end_datetime"),
    )

    def __repr__(self):
        return f"<Booking {self.title} {self.booking_status.value}>"


class BookingResource(db.Model):
    __tablename__ = "booking_resources"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    booking_id: Mapped[str] = mapped_column(ForeignKey("environment_bookings.id", ondelete="CASCADE"), nullable=False, index=True)
    resource_type: Mapped[ResourceType] = mapped_column(enum_type(ResourceType), nullable=False)
    resource_ref_id: Mapped[str] = mapped_column(String(36), nullable=False)
    # экземпляр окружения, из которого взят ресурс (для компонентов)
    source_env_instance_id: Mapped[str | None] = mapped_column(String(36), index=True)
    logical_role: Mapped[str | None] = mapped_column(String(100))
    resource_conflict_status: Mapped[ResourceConflictStatus] = mapped_column(
        enum_type(ResourceConflictStatus), default=ResourceConflictStatus.NONE, nullable=False
    )
    conflicting_booking_id: Mapped[str | None] = mapped_column(String(36))
    resource_booking_status: Mapped[ResourceBookingStatus | None] = mapped_column(enum_type(ResourceBookingStatus))

    booking = relationship("Booking", back_populates="resources")

    __table_args__ = (
        Index("ix_booking_resource_ref", "resource_type", "resource_ref_id"),
    )
