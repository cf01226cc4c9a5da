from __future__ import annotations
from datetime import datetime, timedelta

import pytest
from pydantic import ValidationError
from sqlalchemy.exc import SQLAlchemyError

from app import create_app
from extensions import db
from models import (
    Booking, BookingPriority, BookingStatus, Conflict, ImpactType, RefreshIntent,
    RefreshStatus, ResolutionStatus, ResourceType, Severity, UserGroup,
)
from blueprints.audit.services import events_for
from blueprints.conflicts.errors import InvalidResolution, NotFound
from blueprints.conflicts.store import (
    DetectedConflict, get_conflict_details, get_unresolved_conflicts,
    notify_impacted_booking_owners, resolve_conflict, store_conflicts,
)

DAY = datetime(2030, 1, 7)


def at(h: float) -> datetime:
    return DAY + timedelta(hours=h)


@pytest.fixture()
def app_ctx():
    app = create_app("test")
    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


def _booking(title, start, end, group=None):
    b = Booking(title=title, start_datetime=start, end_datetime=end, booking_status=BookingStatus.ACTIVE,
                booking_priority=BookingPriority.NORMAL, requested_by_user_id=f"owner-{title}",
                owning_group_id=group.id if group else None)
    db.session.add(b)
    db.session.commit()
    return b


def _intent(planned: datetime, entity_type=ResourceType.ENVIRONMENT_INSTANCE, name="ri"):
    ri = RefreshIntent(entity_type=entity_type, entity_id="inst-1", entity_name=name,
                       intent_status=RefreshStatus.REQUESTED, planned_date=planned,
                       planned_end_date=planned + timedelta(hours=1),
                       impact_type=ImpactType.DATA_OVERWRITE, requested_by_user_id="dba")
    db.session.add(ri)
    db.session.commit()
    return ri


def _detected(booking: Booking, severity=Severity.HIGH, start=None, end=None):
    start = start or booking.start_datetime
    end = end or booking.end_datetime
    return DetectedConflict(booking_id=booking.id, severity=severity, overlap_start=start, overlap_end=end,
                            overlap_minutes=int((end - start).total_seconds() // 60),
                            booking_priority=booking.booking_priority)


def _rows(intent_id):
    return Conflict.query.filter_by(refresh_intent_id=intent_id).all()


def test_store_twice_keeps_one_row_per_pair(app_ctx):
    b = _booking("a", at(10), at(14))
    ri = _intent(at(12))
    c = _detected(b)

    assert store_conflicts(ri.id, [c, c]) == 1
    assert store_conflicts(ri.id, [c]) == 1
    rows = _rows(ri.id)
    assert len(rows) == 1
    assert rows[0].resolution_status == ResolutionStatus.UNRESOLVED
    assert rows[0].auto_detected is True


def test_full_replace_drops_stale_and_resolution(app_ctx):
    a = _booking("a", at(10), at(14))
    b = _booking("b", at(11), at(13))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a), _detected(b)])
    resolve_conflict(_rows(ri.id)[0].id, "ACKNOWLEDGED", "lead")

    store_conflicts(ri.id, [_detected(a)])
    rows = _rows(ri.id)
    assert [r.booking_id for r in rows] == [a.id]
    assert rows[0].resolution_status == ResolutionStatus.UNRESOLVED


def test_preserve_option_keeps_resolution_for_same_window(app_ctx):
    app_ctx.config["CONFLICT_PRESERVE_RESOLUTIONS"] = True
    a = _booking("a", at(10), at(14))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a, start=at(12), end=at(13))])
    resolve_conflict(_rows(ri.id)[0].id, ResolutionStatus.DISMISSED, "lead", "known")

    store_conflicts(ri.id, [_detected(a, start=at(12), end=at(13))])
    [row] = _rows(ri.id)
    assert row.resolution_status == ResolutionStatus.DISMISSED
    assert row.resolved_by_user_id == "lead"
    assert row.resolution_notes == "known"

    # окно пересечения сдвинулось: решение сбрасывается
    store_conflicts(ri.id, [_detected(a, start=at(12.5), end=at(13.5))])
    [row] = _rows(ri.id)
    assert row.resolution_status == ResolutionStatus.UNRESOLVED


def test_failed_store_rolls_back_to_previous_set(app_ctx):
    a = _booking("a", at(10), at(14))
    b = _booking("b", at(11), at(13))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a)])

    broken = _detected(b)
    broken.severity = None  # NOT NULL
    with pytest.raises(SQLAlchemyError):
        store_conflicts(ri.id, [_detected(a, severity=Severity.LOW), broken])

    rows = _rows(ri.id)
    assert [r.booking_id for r in rows] == [a.id]
    assert rows[0].severity == Severity.HIGH


def test_store_for_missing_intent(app_ctx):
    with pytest.raises(NotFound):
        store_conflicts("nope", [])


def test_resolve_validates_before_touching_row(app_ctx):
    a = _booking("a", at(10), at(14))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a)])
    cid = _rows(ri.id)[0].id

    for bad in ("UNRESOLVED", "BOGUS", None):
        with pytest.raises(InvalidResolution) as ei:
            resolve_conflict(cid, bad, "lead")
        assert ei.value.code == "INVALID_RESOLUTION"
    assert db.session.get(Conflict, cid).resolution_status == ResolutionStatus.UNRESOLVED

    with pytest.raises(NotFound):
        resolve_conflict("missing", "ACKNOWLEDGED", "lead")


def test_resolve_sets_fields_and_audits(app_ctx):
    a = _booking("a", at(10), at(14))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a)])
    cid = _rows(ri.id)[0].id

    c = resolve_conflict(cid, "BOOKING_MOVED", "lead", "moved to Friday")
    assert c.resolution_status == ResolutionStatus.BOOKING_MOVED
    assert c.resolved_by_user_id == "lead"
    assert c.resolved_at is not None
    assert c.resolution_notes == "moved to Friday"

    [ev] = events_for("Conflict", cid)
    assert ev.action == "CONFLICT_RESOLVED"
    assert ev.payload["to"] == "BOOKING_MOVED"
    assert ev.user_id == "lead"


def test_unresolved_projection_filters_and_order(app_ctx):
    qa = UserGroup(name="QA")
    db.session.add(qa)
    db.session.commit()
    a = _booking("a", at(10), at(14), group=qa)
    b = _booking("b", at(11), at(13))
    early = _intent(at(12), name="early")
    late = _intent(at(20), entity_type=ResourceType.ENVIRONMENT, name="late")
    store_conflicts(early.id, [_detected(a, Severity.LOW), _detected(b, Severity.HIGH)])
    store_conflicts(late.id, [_detected(a, Severity.MEDIUM)])

    rows = get_unresolved_conflicts()
    assert [(r["entity_name"], r["severity"]) for r in rows] == [
        ("early", "HIGH"), ("early", "LOW"), ("late", "MEDIUM"),
    ]
    assert rows[0]["booking_title"] == "b"
    assert rows[1]["booking_group_name"] == "QA"

    assert [r["severity"] for r in get_unresolved_conflicts(severity="HIGH")] == ["HIGH"]
    assert [r["entity_name"] for r in get_unresolved_conflicts(entity_type="Environment")] == ["late"]
    assert {r["booking_id"] for r in get_unresolved_conflicts(group_id=qa.id)} == {a.id}

    resolve_conflict(rows[0]["conflict_id"], "ACKNOWLEDGED", "lead")
    assert len(get_unresolved_conflicts()) == 2

    with pytest.raises(ValidationError):
        get_unresolved_conflicts(severity="CRITICAL")
    with pytest.raises(ValidationError):
        get_unresolved_conflicts(entity_type="Server")


def test_conflict_details_ordered_by_booking_start(app_ctx):
    late = _booking("late", at(11), at(13))
    early = _booking("early", at(9), at(13))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(late), _detected(early)])

    rows = get_conflict_details(ri.id)
    assert [r["booking_title"] for r in rows] == ["early", "late"]
    assert rows[0]["impact_type"] == "DATA_OVERWRITE"
    with pytest.raises(NotFound):
        get_conflict_details("missing")


def test_notify_marks_owners_and_survives_dispatcher_failure(app_ctx):
    a = _booking("a", at(10), at(14))
    b = _booking("b", at(11), at(13))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a), _detected(b)])
    dismissed = next(r for r in _rows(ri.id) if r.booking_id == b.id)
    resolve_conflict(dismissed.id, "DISMISSED", "lead")

    calls = []

    def dispatcher(intent, recipients):
        calls.append((intent.id, recipients))
        raise RuntimeError("smtp down")

    out = notify_impacted_booking_owners(ri.id, dispatcher)
    assert out["notified"] == 1
    assert out["recipients"][0]["user_id"] == "owner-a"
    assert calls and calls[0][0] == ri.id

    row = next(r for r in _rows(ri.id) if r.booking_id == a.id)
    assert row.booking_owner_notified is True
    assert row.notification_sent_at is not None

    assert notify_impacted_booking_owners(ri.id)["notified"] == 0


def test_conflicts_cascade_with_intent(app_ctx):
    a = _booking("a", at(10), at(14))
    ri = _intent(at(12))
    store_conflicts(ri.id, [_detected(a)])
    db.session.delete(ri)
    db.session.commit()
    assert Conflict.query.count() == 0
    assert db.session.get(Booking, a.id) is not None
