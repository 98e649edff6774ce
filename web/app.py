#!/usr/bin/env python3
"""JSON API over a running ScreenTimeEngine.

Routes:
    GET   /api/usage/today                today's live usage and tracking state
    GET   /api/usage/week[/<reference>]   rolling 7-day window
    GET   /api/usage/average              average daily minutes
    GET   /api/usage/data                 raw ledger mapping
    POST  /api/usage/reset                zero today's usage
    POST  /api/lifecycle                  push a foreground/background event
    GET   /api/focus                      today's focus time and open focus session
    POST  /api/focus/start                start a focus session
    POST  /api/focus/end                  end the open focus session
    GET   /api/reports?range=...          usage report for a date range
    GET   /api/config                     current configuration
    PATCH /api/config                     update one configuration value

Errors are returned as {"error": "..."}: 400 for bad input, 404/405 from
routing, 500 for anything unexpected.
"""

import logging
from typing import Optional

from flask import Flask, jsonify, request
from werkzeug.exceptions import HTTPException

from screentime.config import ConfigManager
from screentime.engine import ScreenTimeEngine
from screentime.lifecycle import EVENT_KINDS, LifecycleEvent, ManualLifecycleSource
from screentime.reports import UsageReportGenerator
from screentime.timeparser import TimeParser

logger = logging.getLogger(__name__)

# Config keys that only take effect after the daemon restarts
RESTART_KEYS = {
    'tracking': ['tick_interval_seconds', 'idle_timeout_seconds', 'idle_poll_seconds'],
    'web': ['host', 'port'],
    'storage': ['data_dir', 'storage_key'],
}

MAX_CATEGORY_LENGTH = 64


class BadRequest(ValueError):
    """Client input that the API rejects with a 400."""


def create_app(engine: ScreenTimeEngine, config_manager: Optional[ConfigManager] = None) -> Flask:
    """Build the Flask app bound to an engine.

    Args:
        engine: Engine to query and drive.
        config_manager: Enables the /api/config routes when given.
    """
    app = Flask(__name__)
    manual_source = ManualLifecycleSource(time_fn=engine.clock.now)
    manual_source.subscribe(engine.handle_lifecycle)

    def json_body() -> dict:
        data = request.get_json(silent=True)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise BadRequest("Request body must be a JSON object")
        return data

    def timestamp_from(data: dict) -> float:
        """Epoch seconds from the body, or now; must map to a calendar date."""
        timestamp = data.get('timestamp')
        if timestamp is None:
            return engine.clock.now()
        if isinstance(timestamp, bool):
            raise BadRequest("timestamp must be a number of epoch seconds")
        try:
            timestamp = float(timestamp)
            engine.clock.date_key_for(timestamp)
        except (TypeError, ValueError):
            raise BadRequest("timestamp must be a finite number of epoch seconds in range") from None
        return timestamp

    @app.errorhandler(BadRequest)
    def handle_bad_request(e):
        return jsonify({"error": str(e)}), 400

    @app.errorhandler(HTTPException)
    def handle_http_error(e):
        return jsonify({"error": e.description}), e.code

    @app.errorhandler(Exception)
    def handle_unexpected(e):
        logger.error(f"Unhandled error on {request.method} {request.path}: {e}", exc_info=True)
        return jsonify({"error": "Internal server error"}), 500

    @app.route('/api/usage/today')
    def api_today():
        return jsonify({
            "date": engine.clock.today_key(),
            "todayScreenTime": engine.today_screen_time,
            "sessions": engine.session_count_today,
            "isTracking": engine.is_tracking,
        })

    @app.route('/api/usage/week')
    @app.route('/api/usage/week/<reference>')
    def api_week(reference=None):
        """Rolling week ending at reference (YYYY-MM-DD or a phrase like 'yesterday')."""
        try:
            end = TimeParser(engine.clock.today()).parse_date(reference) if reference else None
        except ValueError as e:
            return jsonify({"error": str(e)}), 400

        entries = engine.weekly_data(end)
        return jsonify({
            "start_date": entries[0].date,
            "end_date": entries[-1].date,
            "weeklyData": [e.to_dict() for e in entries],
        })

    @app.route('/api/usage/average')
    def api_average():
        return jsonify({
            "averageDailyScreenTime": engine.average_daily_screen_time,
            "averageFocusTime": engine.average_focus_time,
        })

    @app.route('/api/usage/data')
    def api_data():
        return jsonify({"screenTimeData": engine.screen_time_data})

    @app.route('/api/usage/reset', methods=['POST'])
    def api_reset():
        applied = engine.reset_today_screen_time()
        if not applied:
            return jsonify({"error": "Reset was not applied in time"}), 503
        return jsonify({
            "success": True,
            "todayScreenTime": engine.today_screen_time,
            "persisted": not engine.ledger.needs_flush,
        })

    @app.route('/api/lifecycle', methods=['POST'])
    def api_lifecycle():
        """Forward a lifecycle transition.

        Request body:
            {"kind": "foreground" | "background", "timestamp": 1733760000.0}
        """
        data = json_body()
        kind = data.get('kind')
        if kind not in EVENT_KINDS:
            raise BadRequest(f"kind must be one of {list(EVENT_KINDS)}")

        manual_source.emit(LifecycleEvent(kind, timestamp_from(data)))
        return jsonify({"accepted": True, "isTracking": engine.is_tracking}), 202

    @app.route('/api/focus')
    def api_focus():
        return jsonify({
            "date": engine.clock.today_key(),
            "todayFocusTime": engine.today_focus_time,
            "focusPercentage": engine.focus_percentage,
            "averageFocusTime": engine.average_focus_time,
            "activeSession": engine.active_focus_session,
            "sessions": engine.focus_sessions_today,
        })

    @app.route('/api/focus/start', methods=['POST'])
    def api_focus_start():
        """Start a focus session.

        Request body (all optional):
            {"category": "reading", "timestamp": 1733760000.0}
        """
        data = json_body()
        category = data.get('category', 'general')
        if not isinstance(category, str) or not category.strip():
            raise BadRequest("category must be a non-empty string")
        if len(category) > MAX_CATEGORY_LENGTH:
            raise BadRequest(f"category must be at most {MAX_CATEGORY_LENGTH} characters")

        engine.start_focus_session(category.strip(), timestamp_from(data))
        return jsonify({"accepted": True, "isFocusing": engine.is_focusing}), 202

    @app.route('/api/focus/end', methods=['POST'])
    def api_focus_end():
        engine.end_focus_session(timestamp_from(json_body()))
        return jsonify({
            "accepted": True,
            "isFocusing": engine.is_focusing,
            "todayFocusTime": engine.today_focus_time,
        }), 202

    @app.route('/api/reports')
    def api_report():
        time_range = request.args.get('range', 'last 7 days')
        generator = UsageReportGenerator(engine.ledger.snapshot, reference=engine.clock.today())
        try:
            report = generator.generate(time_range)
        except ValueError as e:
            return jsonify({"error": str(e)}), 400
        return jsonify(report.to_dict())

    @app.route('/api/config', methods=['GET'])
    def get_config():
        if config_manager is None:
            return jsonify({"error": "Configuration not available"}), 404
        return jsonify(config_manager.to_dict())

    @app.route('/api/config', methods=['PATCH'])
    def update_config():
        """Update configuration values.

        Request body:
            {"section": "notifications", "key": "daily_limit_minutes", "value": 90}
        """
        if config_manager is None:
            return jsonify({"error": "Configuration not available"}), 404

        data = json_body()
        if not all(k in data for k in ['section', 'key', 'value']):
            raise BadRequest("Missing required fields: section, key, value")

        section, key, value = data['section'], data['key'], data['value']
        if not config_manager.has_key(section, key):
            raise BadRequest(f"Unknown config key: {section}.{key}")
        try:
            changed = config_manager.update(section, key, value)
        except ValueError as e:
            raise BadRequest(str(e)) from None
        except OSError as e:
            return jsonify({"error": f"Failed to update config: {e}"}), 500

        return jsonify({
            "success": changed,
            "requires_restart": key in RESTART_KEYS.get(section, []),
            "config": config_manager.to_dict(),
        })

    return app
