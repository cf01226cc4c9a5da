from __future__ import annotations
from datetime import datetime, timedelta

import pytest

from app import create_app
from extensions import db
from models import (
    Booking, BookingResource, BookingStatus, ComponentBookingStatus, Environment,
    EnvironmentInstance, ImpactType, InfraComponent, InstanceBookingStatus,
    RefreshIntent, RefreshStatus, ResourceType,
)
from blueprints.conflicts.errors import UnknownResourceType
from blueprints.conflicts.resources import (
    apply_component_status, find_overlapping_bookings, find_overlapping_refreshes,
    instance_booking_status, recompute_instance_statuses, resource_kind,
)

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
        y = EnvironmentInstance(environment=env, name="SIT-2")
        InfraComponent(instance=x, name="SIT-1/app")
        InfraComponent(instance=x, name="SIT-1/db")
        InfraComponent(instance=y, name="SIT-2/app")
        db.session.add(env)
        db.session.commit()
        yield app
        db.session.remove()
        db.drop_all()


def _ids():
    env = Environment.query.one()
    x = EnvironmentInstance.query.filter_by(name="SIT-1").one()
    y = EnvironmentInstance.query.filter_by(name="SIT-2").one()
    return env, x, y


def _booking(title, start, end, resources, status=BookingStatus.APPROVED):
    b = Booking(title=title, start_datetime=start, end_datetime=end,
                booking_status=status, requested_by_user_id="u1")
    for rtype, rid, *src in resources:
        b.resources.append(BookingResource(resource_type=rtype, resource_ref_id=rid,
                                           source_env_instance_id=src[0] if src else None))
    db.session.add(b)
    db.session.commit()
    return b


def _titles(results):
    return [r.booking.title for r in results]


def test_environment_search_includes_contained_instances_and_components(app_ctx):
    env, x, y = _ids()
    comp = x.components[0]
    _booking("on-x", at(10), at(12), [(ResourceType.ENVIRONMENT_INSTANCE, x.id)])
    _booking("on-comp", at(10), at(12), [(ResourceType.INFRA_COMPONENT, comp.id)])
    _booking("on-y", at(10), at(12), [(ResourceType.ENVIRONMENT_INSTANCE, y.id)])

    found = _titles(find_overlapping_bookings(ResourceType.ENVIRONMENT, env.id, at(11), at(13)))
    assert sorted(found) == ["on-comp", "on-x", "on-y"]

    on_x = _titles(find_overlapping_bookings("EnvironmentInstance", x.id, at(11), at(13)))
    assert sorted(on_x) == ["on-comp", "on-x"]


def test_booking_on_environment_covers_its_instances(app_ctx):
    env, x, _ = _ids()
    _booking("whole-env", at(8), at(18), [(ResourceType.ENVIRONMENT, env.id)])
    assert _titles(find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(9), at(10))) == ["whole-env"]
    comp = x.components[0]
    assert _titles(find_overlapping_bookings(ResourceType.INFRA_COMPONENT, comp.id, at(9), at(10))) == ["whole-env"]


def test_component_instance_is_exact_match_only(app_ctx):
    _booking("ci", at(9), at(10), [(ResourceType.COMPONENT_INSTANCE, "ci-1")])
    assert _titles(find_overlapping_bookings("ComponentInstance", "ci-1", at(9), at(11))) == ["ci"]
    assert find_overlapping_bookings("ComponentInstance", "ci-2", at(9), at(11)) == []


def test_overlap_metadata_and_half_open(app_ctx):
    _, x, _ = _ids()
    _booking("a", at(10), at(14), [(ResourceType.ENVIRONMENT_INSTANCE, x.id)])
    [hit] = find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(12), at(15))
    assert (hit.overlap_start, hit.overlap_end, hit.overlap_minutes) == (at(12), at(14), 120)
    assert find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(14), at(15)) == []
    assert find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(12), at(12)) == []


def test_status_filter_and_exclude(app_ctx):
    _, x, _ = _ids()
    keep = _booking("keep", at(10), at(11), [(ResourceType.ENVIRONMENT_INSTANCE, x.id)], BookingStatus.REQUESTED)
    _booking("done", at(10), at(11), [(ResourceType.ENVIRONMENT_INSTANCE, x.id)], BookingStatus.COMPLETED)
    _booking("gone", at(10), at(11), [(ResourceType.ENVIRONMENT_INSTANCE, x.id)], BookingStatus.CANCELLED)

    assert _titles(find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(9), at(12))) == ["keep"]
    assert find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(9), at(12),
                                     exclude_booking_id=keep.id) == []
    assert find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(9), at(12),
                                     statuses=[BookingStatus.APPROVED, BookingStatus.ACTIVE]) == []


def test_booking_with_two_resources_is_reported_once(app_ctx):
    _, x, _ = _ids()
    a, b = x.components
    _booking("two", at(10), at(11), [(ResourceType.INFRA_COMPONENT, a.id, x.id),
                                     (ResourceType.INFRA_COMPONENT, b.id, x.id)])
    assert _titles(find_overlapping_bookings(ResourceType.ENVIRONMENT_INSTANCE, x.id, at(9), at(12))) == ["two"]


def test_unknown_resource_type():
    with pytest.raises(UnknownResourceType) as ei:
        resource_kind("Server")
    assert ei.value.code == "UNKNOWN_RESOURCE_TYPE"
    assert isinstance(ei.value, ValueError)


def test_find_overlapping_refreshes(app_ctx):
    env, x, y = _ids()
    comp = x.components[0]
    rows = [
        ("inst", ResourceType.ENVIRONMENT_INSTANCE, x.id, RefreshStatus.SCHEDULED, at(10), None),
        ("env", ResourceType.ENVIRONMENT, env.id, RefreshStatus.APPROVED, at(10), at(11)),
        ("comp", ResourceType.INFRA_COMPONENT, comp.id, RefreshStatus.IN_PROGRESS, at(10), at(11)),
        ("other", ResourceType.ENVIRONMENT_INSTANCE, y.id, RefreshStatus.SCHEDULED, at(10), at(11)),
        ("draft", ResourceType.ENVIRONMENT_INSTANCE, x.id, RefreshStatus.DRAFT, at(10), at(11)),
    ]
    for name, et, eid, st, start, end in rows:
        db.session.add(RefreshIntent(entity_type=et, entity_id=eid, entity_name=name, intent_status=st,
                                     planned_date=start, planned_end_date=end,
                                     impact_type=ImpactType.DATA_OVERWRITE, requested_by_user_id="dba"))
    db.session.commit()

    hits = find_overlapping_refreshes(at(10.5), at(12), [x.id])
    assert sorted(h.refresh.entity_name for h in hits) == ["comp", "env", "inst"]
    inst_hit = next(h for h in hits if h.refresh.entity_name == "inst")
    # без planned_end_date окно = 60 минут по умолчанию
    assert inst_hit.window_end == at(11)
    assert inst_hit.overlap_minutes == 30

    # пустой список экземпляров: фильтра по сущности нет
    assert len(find_overlapping_refreshes(at(10.5), at(12))) == 4
    # окно брони после конца рефреша
    assert find_overlapping_refreshes(at(11), at(12), [x.id]) == []


def test_instance_status_fold():
    IN_USE, RES, AV = ComponentBookingStatus.IN_USE, ComponentBookingStatus.RESERVED, ComponentBookingStatus.AVAILABLE
    assert instance_booking_status([IN_USE, IN_USE]) == InstanceBookingStatus.FULLY_BOOKED
    assert instance_booking_status([IN_USE, AV]) == InstanceBookingStatus.PARTIALLY_BOOKED
    assert instance_booking_status([RES, AV]) == InstanceBookingStatus.PARTIALLY_BOOKED
    assert instance_booking_status([AV, AV]) == InstanceBookingStatus.AVAILABLE
    assert instance_booking_status([]) == InstanceBookingStatus.AVAILABLE


def test_recompute_is_idempotent(app_ctx):
    _, x, y = _ids()
    for c in x.components:
        c.booking_status = ComponentBookingStatus.IN_USE
    db.session.commit()

    first = recompute_instance_statuses()
    second = recompute_instance_statuses()
    assert first == second
    assert first[x.id] == InstanceBookingStatus.FULLY_BOOKED
    assert first[y.id] == InstanceBookingStatus.AVAILABLE
    assert recompute_instance_statuses([]) == {}


def test_apply_component_status(app_ctx):
    _, x, _ = _ids()
    a = x.components[0]
    b = _booking("one-comp", at(10), at(11), [(ResourceType.INFRA_COMPONENT, a.id, x.id)])

    statuses = apply_component_status(b, ComponentBookingStatus.RESERVED)
    assert a.booking_status == ComponentBookingStatus.RESERVED
    assert a.current_booking_id == b.id
    assert statuses == {x.id: InstanceBookingStatus.PARTIALLY_BOOKED}

    apply_component_status(b, ComponentBookingStatus.AVAILABLE)
    assert a.current_booking_id is None
    assert x.booking_status == InstanceBookingStatus.AVAILABLE
