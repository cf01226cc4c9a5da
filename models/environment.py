from __future__ import annotations
from datetime import datetime

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from extensions import db
from .common import ComponentBookingStatus, InstanceBookingStatus, enum_type, new_id, utcnow


class Environment(db.Model):
    __tablename__ = "environments"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    instances = relationship("EnvironmentInstance", back_populates="environment", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<Environment {self.name}>"


class EnvironmentInstance(db.Model):
    __tablename__ = "environment_instances"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    environment_id: Mapped[str] = mapped_column(ForeignKey("environments.id", ondelete="CASCADE"), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    booking_status: Mapped[InstanceBookingStatus] = mapped_column(
        enum_type(InstanceBookingStatus), default=InstanceBookingStatus.AVAILABLE, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    environment = relationship("Environment", back_populates="instances")
    components = relationship("InfraComponent", back_populates="instance", cascade="all, delete-orphan")

    def __repr__(self):
        return f"<EnvironmentInstance {self.name}>"


class InfraComponent(db.Model):
    __tablename__ = "infra_components"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    env_instance_id: Mapped[str] = mapped_column(ForeignKey("environment_instances.id", ondelete="CASCADE"), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    booking_status: Mapped[ComponentBookingStatus] = mapped_column(
        enum_type(ComponentBookingStatus), default=ComponentBookingStatus.AVAILABLE, nullable=False
    )
    current_booking_id: Mapped[str | None] = mapped_column(String(36))
    updated_at: Mapped[datetime] = mapped_column(default=utcnow, onupdate=utcnow, nullable=False)

    instance = relationship("EnvironmentInstance", back_populates="components")

    __table_args__ = (
        Index("ix_infra_component_instance", "env_instance_id"),
    )


class UserGroup(db.Model):
    __tablename__ = "user_groups"
    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
    name: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    def __repr__(self):
        return f"<UserGroup {self.name}>"
