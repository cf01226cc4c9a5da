"""
Idempotent seed-скрипт с демо-бронями и рефрешами.
Запуск:
  python seed.py --reset   # дропнуть и пересоздать БД + демо-данные
  python seed.py           # мягкое наполнение недостающих данных (idempotent)
"""
from datetime import timedelta
import argparse

from app import create_app, _seed_from_config
from extensions import db
from models import (
    Booking, BookingPriority, BookingStatus, EnvironmentInstance, ImpactType,
    RefreshIntent, ResourceType, UserGroup, utcnow,
)
from blueprints.bookings.services import change_booking_status, create_booking
from blueprints.refresh.services import create_refresh_intent


def get_or_create_group(name: str) -> UserGroup:
    g = UserGroup.query.filter_by(name=name).first()
    if g:
        return g
    g = UserGroup(name=name)
    db.session.add(g)
    db.session.commit()
    return g


def seed_demo_bookings():
    """Активная критичная бронь на первом экземпляре + одобренная на втором."""
    if Booking.query.count():
        return {}
    instances = EnvironmentInstance.query.order_by(EnvironmentInstance.name.asc()).all()
    if len(instances) < 2:
        return {}

    qa = get_or_create_group("QA")
    perf = get_or_create_group("Performance")
    day = utcnow().replace(hour=0, minute=0, second=0, microsecond=0) + timedelta(days=1)

    first = instances[0]
    regression = create_booking(
        title="Regression run", start=day + timedelta(hours=10), end=day + timedelta(hours=14),
        requested_by_user_id="demo-qa", owning_group_id=qa.id,
        booking_priority=BookingPriority.CRITICAL, is_critical_booking=True,
        resources=[{"resource_type": ResourceType.INFRA_COMPONENT, "resource_ref_id": c.id,
                    "source_env_instance_id": first.id} for c in first.components],
    ).booking
    change_booking_status(regression.id, BookingStatus.APPROVED, actor_id="demo-admin")
    change_booking_status(regression.id, BookingStatus.ACTIVE, actor_id="demo-admin")

    second = instances[1]
    load = create_booking(
        title="Load test", start=day + timedelta(hours=9), end=day + timedelta(hours=11),
        requested_by_user_id="demo-perf", owning_group_id=perf.id,
        resources=[{"resource_type": ResourceType.ENVIRONMENT_INSTANCE, "resource_ref_id": second.id}],
    ).booking
    change_booking_status(load.id, BookingStatus.APPROVED, actor_id="demo-admin")
    return {"first": first, "second": second, "day": day}


def seed_demo_refreshes(ctx):
    if not ctx or RefreshIntent.query.count():
        return
    day = ctx["day"]
    create_refresh_intent(
        entity_type=ResourceType.ENVIRONMENT_INSTANCE, entity_id=ctx["first"].id,
        entity_name=ctx["first"].name, planned_date=day + timedelta(hours=12),
        planned_end_date=day + timedelta(hours=13), impact_type=ImpactType.DATA_OVERWRITE,
        reason="Monthly production copy", requested_by_user_id="demo-dba",
    )
    create_refresh_intent(
        entity_type=ResourceType.ENVIRONMENT_INSTANCE, entity_id=ctx["second"].id,
        entity_name=ctx["second"].name, planned_date=day + timedelta(hours=10),
        estimated_downtime_minutes=30, impact_type=ImpactType.READ_ONLY,
        reason="Index statistics refresh", requested_by_user_id="demo-dba",
    )


def main():
    parser = argparse.ArgumentParser()
    parser.add_argument("--reset", action="store_true", help="drop + create + full seed (demo)")
    args = parser.parse_args()

    app = create_app("dev")
    with app.app_context():
        if args.reset:
            db.drop_all()
        db.create_all()
    # окружения из DEMO_ENVIRONMENTS
    _seed_from_config(app)
    with app.app_context():
        ctx = seed_demo_bookings()
        seed_demo_refreshes(ctx)
        print(f"bookings: {Booking.query.count()}, refresh intents: {RefreshIntent.query.count()}")


if __name__ == "__main__":
    main()
