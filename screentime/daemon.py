"""Screen Time Tracking Daemon.

Runs the screen time engine in the background on a desktop session: input
activity opens and closes sessions, a timer keeps the live estimate fresh,
and usage is written through to SQLite after every closed session.

The daemon provides:
- Input-activity based session boundaries (pynput)
- Daily limit warnings in the log
- Optional JSON API (Flask) in a separate thread
- Graceful signal handling (SIGTERM, SIGINT) for systemd

Example:
    $ python -m screentime.daemon --web
"""

import argparse
import logging
import signal
import threading
import time
from pathlib import Path
from typing import Optional

from .config import ConfigManager, get_config_manager
from .engine import ScreenTimeEngine
from .lifecycle import BACKGROUND, InputActivitySource, LifecycleEvent, LifecycleSource
from .notifications import ThresholdNotifier
from .storage import KeyValueStore, SQLiteKeyValueStore

logger = logging.getLogger(__name__)


class ScreenTimeDaemon:
    """Background process owning the engine, input source and web server.

    Attributes:
        running (bool): Controls the main loop
        config_manager (ConfigManager): Loaded configuration
        engine (ScreenTimeEngine): Session tracking engine
        source (InputActivitySource): Keyboard/mouse lifecycle source
    """

    def __init__(self, config_manager: Optional[ConfigManager] = None, enable_web: bool = False,
                 web_port: Optional[int] = None, idle_timeout: Optional[int] = None,
                 store: Optional[KeyValueStore] = None, source: Optional[LifecycleSource] = None):
        """
        Args:
            config_manager: Configuration (defaults to the shared manager)
            enable_web: Whether to start the JSON API
            web_port: Override for web.port
            idle_timeout: Override for tracking.idle_timeout_seconds
            store: Storage override (defaults to SQLite under storage.data_dir)
            source: Lifecycle source override (defaults to InputActivitySource)
        """
        self.running = True
        self.config_manager = config_manager or get_config_manager()
        cfg = self.config_manager.config

        self.enable_web = enable_web
        self.web_host = cfg.web.host
        self.web_port = web_port or cfg.web.port
        self.web_thread = None

        if store is None:
            db_path = cfg.storage.db_path
            db_path.parent.mkdir(parents=True, exist_ok=True)
            store = SQLiteKeyValueStore(db_path)
        self.store = store

        self.source = source or InputActivitySource(
            timeout=idle_timeout or cfg.tracking.idle_timeout_seconds,
            poll_time=cfg.tracking.idle_poll_seconds,
        )
        self.engine = ScreenTimeEngine(
            self.store,
            source=self.source,
            focus_fraction=cfg.tracking.focus_fraction,
            tick_interval=cfg.tracking.tick_interval_seconds,
            storage_key=cfg.storage.storage_key,
        )

        if cfg.notifications.enabled:
            self.engine.add_listener(ThresholdNotifier(
                cfg.notifications.daily_limit_minutes, self._warn_limit_reached
            ))

        signal.signal(signal.SIGTERM, self._signal_handler)
        signal.signal(signal.SIGINT, self._signal_handler)

    def _signal_handler(self, signum, frame):
        logger.info(f"Received signal {signum}, shutting down gracefully...")
        self.running = False

    @staticmethod
    def _warn_limit_reached(minutes: float, limit: float):
        logger.warning(f"Screen time today is {minutes:.0f} minutes (limit {limit:.0f})")

    def _session_end_time(self) -> float:
        """When the open session should end on shutdown.

        The last input time while input tracking is live, so the idle tail
        before shutdown is not counted; otherwise now.
        """
        if isinstance(self.source, InputActivitySource) and self.source.listening:
            last_input = self.source.last_activity
            start = self.engine.tracker.session_start
            # A session opened through the API after the last input keeps now
            if start is None or last_input >= start:
                return last_input
        return time.time()

    def _start_web_server(self):
        from web.app import create_app

        app = create_app(self.engine, self.config_manager)
        logger.info(f"Starting web server on http://{self.web_host}:{self.web_port}")
        app.run(host=self.web_host, port=self.web_port, debug=False, use_reloader=False)

    def run(self):
        """Run until SIGTERM/SIGINT."""
        logger.info("Screen time daemon starting")
        self.engine.start()
        self.source.start()

        if self.enable_web:
            self.web_thread = threading.Thread(target=self._start_web_server, daemon=True)
            self.web_thread.start()

        while self.running:
            time.sleep(1)

        logger.info("Shutting down...")
        end_time = self._session_end_time()
        self.source.stop()

        # Close the open session so it is committed instead of dropped.
        # A background while idle is ignored, so this is posted unconditionally.
        self.engine.handle_lifecycle(LifecycleEvent(BACKGROUND, end_time))
        self.engine.stop()

        if self.engine.ledger.needs_flush and not self.engine.ledger.flush():
            logger.error("Final flush failed, latest usage was not saved")
        logger.info("Screen time daemon stopped")


def main(argv=None):
    parser = argparse.ArgumentParser(description="Screen time tracking daemon")
    parser.add_argument("--web", action="store_true", help="Enable JSON API server")
    parser.add_argument("--web-port", type=int, default=None, help="Web server port (default: from config)")
    parser.add_argument("--idle-timeout", type=int, default=None,
                        help="Seconds of inactivity before a session ends (default: from config)")
    parser.add_argument("--config", type=Path, default=None, help="Config file path")
    parser.add_argument("--verbose", "-v", action="store_true", help="Debug logging")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="[%(asctime)s] %(levelname)s %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    daemon = ScreenTimeDaemon(
        config_manager=get_config_manager(args.config),
        enable_web=args.web,
        web_port=args.web_port,
        idle_timeout=args.idle_timeout,
    )
    daemon.run()


if __name__ == "__main__":
    main()
