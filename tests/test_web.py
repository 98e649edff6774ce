"""Tests for web.app: JSON API."""

import pytest

from screentime.config import ConfigManager
from web.app import create_app

from .conftest import BASE, TODAY


@pytest.fixture
def config_manager(tmp_path):
    return ConfigManager(tmp_path / "config.yaml")


@pytest.fixture
def client(engine, config_manager):
    app = create_app(engine, config_manager)
    app.config["TESTING"] = True
    return app.test_client()


def post_event(client, kind, timestamp=None):
    body = {"kind": kind}
    if timestamp is not None:
        body["timestamp"] = timestamp
    return client.post("/api/lifecycle", json=body)


def test_today_initially_zero(client):
    data = client.get("/api/usage/today").get_json()
    assert data == {"date": TODAY, "todayScreenTime": 0.0, "sessions": 0, "isTracking": False}


def test_lifecycle_session(client):
    resp = post_event(client, "foreground", BASE)
    assert resp.status_code == 202
    assert resp.get_json()["isTracking"] is True

    post_event(client, "background", BASE + 120)
    data = client.get("/api/usage/today").get_json()
    assert data["todayScreenTime"] == 2.0
    assert data["sessions"] == 1
    assert data["isTracking"] is False


def test_lifecycle_defaults_to_clock_time(client, clock):
    post_event(client, "foreground")
    clock.advance(300)
    post_event(client, "background")
    assert client.get("/api/usage/today").get_json()["todayScreenTime"] == 5.0


@pytest.mark.parametrize("body", [
    {"kind": "sideways"},
    {},
    {"kind": "foreground", "timestamp": "soon"},
    {"kind": "foreground", "timestamp": "nan"},
    {"kind": "foreground", "timestamp": 1e20},
    {"kind": "foreground", "timestamp": -1e20},
    {"kind": "foreground", "timestamp": True},
    {"kind": "foreground", "timestamp": [BASE]},
])
def test_lifecycle_bad_request(client, body):
    assert client.post("/api/lifecycle", json=body).status_code == 400


def test_week(client, engine):
    engine.ledger.apply_delta("2025-12-05", 20.0, 1)
    data = client.get("/api/usage/week").get_json()
    assert data["start_date"] == "2025-12-03"
    assert data["end_date"] == TODAY
    assert len(data["weeklyData"]) == 7
    assert data["weeklyData"][2]["screenTime"] == 20.0
    assert data["weeklyData"][2]["focusTime"] == 6.0


def test_week_with_reference(client):
    data = client.get("/api/usage/week/2025-11-30").get_json()
    assert data["end_date"] == "2025-11-30"
    data = client.get("/api/usage/week/yesterday").get_json()
    assert data["end_date"] == "2025-12-08"


def test_week_bad_reference(client):
    assert client.get("/api/usage/week/last%20week").status_code == 400


def test_average_and_data(client, engine):
    engine.ledger.apply_delta("2025-12-08", 9.0, 1)
    engine.ledger.apply_delta(TODAY, 3.0, 1)
    assert client.get("/api/usage/average").get_json() == {
        "averageDailyScreenTime": 6.0,
        "averageFocusTime": 0.0,
    }
    data = client.get("/api/usage/data").get_json()["screenTimeData"]
    assert set(data) == {"2025-12-08", TODAY}
    assert data[TODAY]["sessions"] == 1


def test_reset(client, engine):
    engine.ledger.apply_delta(TODAY, 8.0, 2)
    data = client.post("/api/usage/reset").get_json()
    assert data["success"] is True
    assert data["todayScreenTime"] == 0.0
    assert data["persisted"] is True
    assert engine.session_count_today == 0


def test_report(client, engine):
    engine.ledger.apply_delta(TODAY, 30.0, 2)
    data = client.get("/api/reports?range=today").get_json()
    assert data["total_minutes"] == 30.0
    assert data["busiest_day"] == TODAY
    assert client.get("/api/reports?range=gibberish%20xyz").status_code == 400


def test_config_get_and_patch(client, config_manager):
    assert client.get("/api/config").get_json()["web"]["port"] == 55556

    resp = client.patch("/api/config", json={
        "section": "notifications", "key": "daily_limit_minutes", "value": 30,
    })
    data = resp.get_json()
    assert data["success"] is True
    assert data["requires_restart"] is False
    assert config_manager.config.notifications.daily_limit_minutes == 30

    resp = client.patch("/api/config", json={"section": "web", "key": "port", "value": 8000})
    assert resp.get_json()["requires_restart"] is True

    assert client.patch("/api/config", json={"section": "web"}).status_code == 400


def test_config_unavailable(engine):
    client = create_app(engine).test_client()
    assert client.get("/api/config").status_code == 404


def test_out_of_range_timestamp_does_not_start_tracking(client, engine):
    resp = post_event(client, "foreground", 1e20)
    assert resp.status_code == 400
    assert "timestamp" in resp.get_json()["error"]
    assert not engine.is_tracking
    assert not engine.tracker.ticker.armed

    assert post_event(client, "foreground", BASE).status_code == 202
    post_event(client, "background", BASE + 60)
    assert client.get("/api/usage/today").get_json()["todayScreenTime"] == 1.0


@pytest.mark.parametrize("path, method", [
    ("/api/lifecycle", "post"),
    ("/api/focus/start", "post"),
    ("/api/config", "patch"),
])
def test_non_object_body_rejected(client, path, method):
    resp = getattr(client, method)(path, json=["foreground", BASE])
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "Request body must be a JSON object"


def test_report_range_too_long(client):
    assert client.get("/api/reports?range=last%2099999999%20days").status_code == 400
    assert client.get("/api/reports?range=last%2020000%20days").status_code == 400


def test_unexpected_error_is_json_500(client, engine, monkeypatch):
    def broken():
        raise RuntimeError("disk on fire")

    monkeypatch.setattr(engine.ledger, "snapshot", broken)
    resp = client.get("/api/usage/average")
    assert resp.status_code == 500
    assert resp.get_json() == {"error": "Internal server error"}


def test_unknown_route_is_json_404(client):
    resp = client.get("/api/nothing-here")
    assert resp.status_code == 404
    assert "error" in resp.get_json()
    assert client.delete("/api/usage/today").status_code == 405


@pytest.mark.parametrize("body", [
    {"section": "notifications", "key": "daily_limit_minutes", "value": "lots"},
    {"section": "notifications", "key": "daily_limit_minutes", "value": -1},
    {"section": "notifications", "key": "enabled", "value": "no"},
    {"section": "web", "key": "port", "value": 0},
    {"section": "tracking", "key": "focus_fraction", "value": 2},
    {"section": "web", "key": "bogus", "value": 1},
    {"section": ["web"], "key": "port", "value": 1},
])
def test_config_patch_rejects_bad_values(client, config_manager, body):
    before = config_manager.to_dict()
    resp = client.patch("/api/config", json=body)
    assert resp.status_code == 400
    assert "error" in resp.get_json()
    assert config_manager.to_dict() == before


class TestFocus:
    def test_start_and_end(self, client, clock):
        resp = client.post("/api/focus/start", json={"category": "reading"})
        assert resp.status_code == 202
        assert resp.get_json()["isFocusing"] is True

        clock.advance(20 * 60)
        data = client.get("/api/focus").get_json()
        assert data["date"] == TODAY
        assert data["activeSession"]["category"] == "reading"
        assert data["activeSession"]["duration"] == 20.0
        assert data["todayFocusTime"] == 20.0
        assert data["sessions"] == []

        resp = client.post("/api/focus/end")
        assert resp.status_code == 202
        assert resp.get_json()["isFocusing"] is False
        assert resp.get_json()["todayFocusTime"] == 20.0

        data = client.get("/api/focus").get_json()
        assert data["activeSession"] is None
        assert [s["category"] for s in data["sessions"]] == ["reading"]

    def test_percentage_and_average(self, client):
        post_event(client, "foreground", BASE)
        client.post("/api/focus/start", json={"timestamp": BASE})
        client.post("/api/focus/end", json={"timestamp": BASE + 30 * 60})
        post_event(client, "background", BASE + 60 * 60)

        data = client.get("/api/focus").get_json()
        assert data["focusPercentage"] == 50
        assert data["averageFocusTime"] == 30.0
        assert client.get("/api/usage/average").get_json()["averageFocusTime"] == 30.0

    def test_default_category(self, client, engine):
        client.post("/api/focus/start")
        assert engine.active_focus_session["category"] == "general"

    @pytest.mark.parametrize("body", [
        {"category": ""},
        {"category": "   "},
        {"category": 7},
        {"category": "x" * 65},
        {"timestamp": float("1e20")},
        {"timestamp": "later"},
    ])
    def test_start_bad_request(self, client, engine, body):
        assert client.post("/api/focus/start", json=body).status_code == 400
        assert not engine.is_focusing

    def test_end_bad_timestamp(self, client, engine):
        client.post("/api/focus/start", json={"timestamp": BASE})
        assert client.post("/api/focus/end", json={"timestamp": "nan"}).status_code == 400
        assert engine.is_focusing
