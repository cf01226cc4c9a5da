from __future__ import annotations
from datetime import datetime, timedelta, timezone

import pytest
from pydantic import ValidationError

from app import create_app
from extensions import db
from models import (
    Booking, BookingResource, BookingStatus, Environment, EnvironmentInstance, ImpactType,
    InfraComponent, RefreshIntent, RefreshStatus, ResourceConflictStatus, ResourceType, Severity,
)
from blueprints.conflicts.errors import AcknowledgementRequired
from blueprints.conflicts.services import (
    ACTION_CAUTION, ACTION_DESTRUCTIVE, check_conflicts_for_booking, check_refreshes_for_booking,
)
from blueprints.bookings.services import create_booking, instance_ids_for, update_booking_window

DAY = datetime(2030, 1, 7)


def at(h: float) -> datetime:
    return DAY + timedelta(hours=h)


@pytest.fixture()
def app_ctx():
    app = create_app("test")
    with app.app_context():
        db.create_all()
        env = Environment(name="SIT")
        x = EnvironmentInstance(environment=env, name="SIT-1")
        EnvironmentInstance(environment=env, name="SIT-2")
        InfraComponent(instance=x, name="SIT-1/app")
        db.session.add(env)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


def _inst(name="SIT-1"):
    return EnvironmentInstance.query.filter_by(name=name).one()


def _refresh(impact, start, end=None, status=RefreshStatus.SCHEDULED, entity=None):
    x = _inst()
    etype, eid = entity or (ResourceType.ENVIRONMENT_INSTANCE, x.id)
    ri = RefreshIntent(entity_type=etype, entity_id=eid, entity_name="r", intent_status=status,
                       planned_date=start, planned_end_date=end, impact_type=impact,
                       requested_by_user_id="dba")
    db.session.add(ri)
    db.session.commit()
    return ri


def _existing(title, start, end, status=BookingStatus.REQUESTED, inst=None):
    inst = inst or _inst()
    b = Booking(title=title, start_datetime=start, end_datetime=end, booking_status=status,
                requested_by_user_id="someone")
    b.resources.append(BookingResource(resource_type=ResourceType.ENVIRONMENT_INSTANCE, resource_ref_id=inst.id))
    db.session.add(b)
    db.session.commit()
    return b


def _res(inst=None):
    inst = inst or _inst()
    return [{"resource_type": "EnvironmentInstance", "resource_ref_id": inst.id}]


def test_read_only_refresh_is_advisory(app_ctx):
    x = _inst()
    ri = _refresh(ImpactType.READ_ONLY, at(10), at(10.5))

    chk = check_refreshes_for_booking(at(9), at(11), [x.id])
    assert chk.has_conflicts is True
    assert chk.has_destructive_refresh is False
    assert chk.warning_level == "MEDIUM"
    assert chk.suggested_action == ACTION_CAUTION
    [w] = chk.refresh_conflicts
    assert w.refresh_intent_id == ri.id
    assert w.severity == Severity.LOW
    assert "read-only" in w.impact_description
    assert w.overlap_minutes == 30

    out = create_booking(title="smoke", start=at(9), end=at(11), requested_by_user_id="qa", resources=_res())
    assert out.booking.booking_status == BookingStatus.REQUESTED
    assert out.refresh_check.warning_level == "MEDIUM"
    assert out.booking.conflict_notes == ACTION_CAUTION


def test_destructive_refresh_needs_acknowledgement(app_ctx):
    x = _inst()
    _refresh(ImpactType.DATA_OVERWRITE, at(10), at(11), status=RefreshStatus.APPROVED)

    chk = check_refreshes_for_booking(at(9), at(12), [x.id])
    assert chk.has_destructive_refresh is True
    assert chk.warning_level == "HIGH"
    assert chk.suggested_action == ACTION_DESTRUCTIVE
    assert chk.refresh_conflicts[0].severity == Severity.HIGH

    with pytest.raises(AcknowledgementRequired):
        create_booking(title="e2e", start=at(9), end=at(12), requested_by_user_id="qa", resources=_res())
    assert Booking.query.count() == 0

    out = create_booking(title="e2e", start=at(9), end=at(12), requested_by_user_id="qa",
                         resources=_res(), acknowledge_refresh_conflicts=True)
    assert out.booking.conflict_notes == ACTION_DESTRUCTIVE
    assert Booking.query.count() == 1


def test_no_refresh_no_warning(app_ctx):
    x = _inst()
    _refresh(ImpactType.DATA_OVERWRITE, at(10), at(11), status=RefreshStatus.DRAFT)
    _refresh(ImpactType.DATA_OVERWRITE, at(10), at(11), status=RefreshStatus.COMPLETED)
    _refresh(ImpactType.DATA_OVERWRITE, at(11), at(12))  # касается конца окна
    chk = check_refreshes_for_booking(at(9), at(11), [x.id])
    assert (chk.has_conflicts, chk.warning_level, chk.suggested_action) == (False, "NONE", None)


def test_parent_environment_refresh_warns(app_ctx):
    env = Environment.query.one()
    _refresh(ImpactType.DOWNTIME_REQUIRED, at(10), None,
             entity=(ResourceType.ENVIRONMENT, env.id))
    chk = check_refreshes_for_booking(at(10.5), at(12), [_inst().id])
    assert chk.has_destructive_refresh is True
    # окно без конца: 60 минут по умолчанию
    assert chk.refresh_conflicts[0].window_end == at(11)
    # на соседнем экземпляре того же окружения тоже
    assert check_refreshes_for_booking(at(10.5), at(12), [_inst("SIT-2").id]).has_conflicts is True


def test_booking_vs_booking_overlaps(app_ctx):
    other = _existing("other", at(9), at(11))
    _existing("cancelled", at(9), at(11), status=BookingStatus.CANCELLED)

    [o] = check_conflicts_for_booking(_res(), at(10), at(12))
    assert o.conflicting_booking_id == other.id
    assert o.resource_type == "EnvironmentInstance"
    assert (o.overlap_start, o.overlap_end, o.overlap_minutes) == (at(10), at(11), 60)

    assert check_conflicts_for_booking(_res(), at(10), at(12), exclude_booking_id=other.id) == []
    assert check_conflicts_for_booking(_res(), at(11), at(12)) == []
    assert check_conflicts_for_booking([], at(10), at(12)) == []


def test_create_booking_marks_potential_conflict(app_ctx):
    other = _existing("other", at(9), at(11))
    y = _inst("SIT-2")
    out = create_booking(title="mine", start=at(10), end=at(12), requested_by_user_id="qa",
                         resources=_res() + _res(y))
    b = out.booking
    assert b.booking_status == BookingStatus.PENDING_APPROVAL
    assert b.conflict_status == ResourceConflictStatus.POTENTIAL_CONFLICT
    by_ref = {r.resource_ref_id: r for r in b.resources}
    assert by_ref[_inst().id].resource_conflict_status == ResourceConflictStatus.POTENTIAL_CONFLICT
    assert by_ref[_inst().id].conflicting_booking_id == other.id
    assert by_ref[y.id].resource_conflict_status == ResourceConflictStatus.NONE
    assert by_ref[y.id].conflicting_booking_id is None


def test_create_booking_normalizes_aware_datetimes(app_ctx):
    tz = timezone(timedelta(hours=2))
    out = create_booking(title="tz", start=datetime(2030, 1, 7, 12, 0, tzinfo=tz),
                         end=datetime(2030, 1, 7, 13, 0, tzinfo=tz),
                         requested_by_user_id="qa", resources=_res())
    assert out.booking.start_datetime == at(10)
    assert out.booking.start_datetime.tzinfo is None


def test_invalid_booking_input(app_ctx):
    with pytest.raises(ValidationError):
        check_conflicts_for_booking(_res(), at(12), at(12))
    with pytest.raises(ValidationError):
        check_conflicts_for_booking([{"resource_type": "Server", "resource_ref_id": "s1"}], at(10), at(12))
    with pytest.raises(ValidationError):
        create_booking(title="no resources", start=at(10), end=at(12), requested_by_user_id="qa", resources=[])


def test_instance_ids_for_resources(app_ctx):
    env = Environment.query.one()
    x, y = _inst(), _inst("SIT-2")
    comp = x.components[0]
    assert instance_ids_for([{"resource_type": "InfraComponent", "resource_ref_id": comp.id}]) == [x.id]
    assert sorted(instance_ids_for([{"resource_type": "Environment", "resource_ref_id": env.id}])) == sorted([x.id, y.id])
    assert instance_ids_for([{"resource_type": "ComponentInstance", "resource_ref_id": "ci-1"}]) == []


def test_component_instance_booking_is_not_warned_about_unrelated_refreshes(app_ctx):
    _refresh(ImpactType.DATA_OVERWRITE, at(10), at(11))
    out = create_booking(title="ci", start=at(9), end=at(12), requested_by_user_id="qa",
                         resources=[{"resource_type": "ComponentInstance", "resource_ref_id": "ci-1"}])
    assert out.refresh_check.has_conflicts is False


def test_update_window_rechecks_and_clears_tags(app_ctx):
    _existing("other", at(9), at(11))
    mine = create_booking(title="mine", start=at(10), end=at(12), requested_by_user_id="qa", resources=_res()).booking
    assert mine.conflict_status == ResourceConflictStatus.POTENTIAL_CONFLICT

    out = update_booking_window(mine.id, at(11), at(13), actor_id="qa")
    assert out.conflicts == []
    assert out.booking.start_datetime == at(11)
    assert out.booking.conflict_status == ResourceConflictStatus.NONE
    assert out.booking.resources[0].conflicting_booking_id is None

    _refresh(ImpactType.SCHEMA_CHANGE, at(14), at(15))
    with pytest.raises(AcknowledgementRequired):
        update_booking_window(mine.id, at(13), at(16))
    assert db.session.get(Booking, mine.id).start_datetime == at(11)
