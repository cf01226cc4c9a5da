from __future__ import annotations
import json
import logging

from app import create_app
from blueprints.core.routes import JSONFormatter


def test_health_ok():
    app = create_app("test")
    with app.test_client() as c:
        rv = c.get("/health")
        assert rv.status_code == 200
        data = rv.get_json()
        assert data["status"] == "ok"
        assert data["ts"].endswith("Z")


def test_json_formatter_keeps_domain_extras():
    rec = logging.LogRecord("blueprints.conflicts", logging.WARNING, __file__, 1, "unknown impact %s", ("X",), None)
    rec.event = "unknown_impact_type"
    rec.refresh_intent_id = "ri-1"
    line = json.loads(JSONFormatter().format(rec))
    assert line["level"] == "WARNING"
    assert line["msg"] == "unknown impact X"
    assert line["event"] == "unknown_impact_type"
    assert line["refresh_intent_id"] == "ri-1"
    assert "booking_id" not in line
