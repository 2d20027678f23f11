"""
Feed Watcher - command-line runner for the feed blocker engine.

Usage:
    python feed_watcher.py watch [--config blocker.json] [--debug]
    python feed_watcher.py replay capture.jsonl [--state-file feed_state.json]

watch   - Poll a real device over ADB + Appium and block feeds live.
replay  - Feed a recorded JSONL capture through the engine on a virtual
          clock; exit actions are only logged.
"""
import os
import sys
import time
import signal
import logging
import argparse
from typing import List, Optional

from selenium.common.exceptions import WebDriverException

from blocker_config import BlockerConfig, load_blocker_config, load_device_settings
from device_bridge import AdbAppiumHost, DevicePoller, HostEnvironment, create_appium_driver
from event_recorder import DecisionRecorder, VirtualClock, load_capture, replay_capture
from feed_blocker_engine import FeedBlockerEngine, monotonic_ms
from research_dashboard import ResearchStateFileSink

logger = logging.getLogger("feed_watcher")

_shutdown_requested = False


def setup_signal_handlers():
    """Set up signal handlers for clean shutdown."""
    def handle_signal(signum, frame):
        global _shutdown_requested
        _shutdown_requested = True
        logger.info(f"Received signal {signum}, requesting shutdown...")

    if sys.platform == 'win32':
        signal.signal(signal.SIGBREAK, handle_signal)
    signal.signal(signal.SIGTERM, handle_signal)
    signal.signal(signal.SIGINT, handle_signal)


def setup_logging(debug: bool = False, log_file: Optional[str] = "feed_watcher.log") -> None:
    """File + console logging. DEBUG shows every transient query failure."""
    level = logging.DEBUG if debug else logging.INFO
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers = []

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding='utf-8')
        fh.setFormatter(logging.Formatter('%(asctime)s %(levelname)s [%(name)s] %(message)s'))
        root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setFormatter(logging.Formatter('%(asctime)s %(levelname)s %(message)s', datefmt='%H:%M:%S'))
    root.addHandler(ch)


class ReplayHost(HostEnvironment):
    """Host for replays: no live queries, exit actions are only counted."""

    def __init__(self):
        self.exit_actions = 0
        self.notifications: List[str] = []

    def get_current_ui_snapshot(self):
        return None

    def query_recent_foreground_activity(self, app_id, window_ms):
        return None

    def query_active_media_playback(self, app_id):
        return None

    def perform_exit_action(self):
        self.exit_actions += 1
        logger.info("[replay] BACK")

    def present_notification(self, app_display_name):
        self.notifications.append(app_display_name)
        logger.info(f"[replay] notification: feed blocked in {app_display_name}")


def build_sinks(args) -> list:
    sinks = []
    if args.state_file:
        sinks.append(ResearchStateFileSink(args.state_file))
    if args.decision_log:
        sinks.append(DecisionRecorder(args.decision_log, session_name=args.command))
    return sinks


def close_sinks(sinks: list) -> None:
    for sink in sinks:
        if isinstance(sink, DecisionRecorder):
            sink.log_session_end()
            sink.close()


def run_watch(config: BlockerConfig, args) -> int:
    """Live loop against a connected device."""
    settings = load_device_settings(args.env_file)
    logger.info(f"Device: {settings.device_serial or '(default)'}  Appium: {settings.appium_url}")

    driver = None
    if not args.no_appium:
        try:
            driver = create_appium_driver(settings.appium_url, settings.device_serial)
        except WebDriverException as e:
            # Still useful: dwell fallback works without any snapshot
            logger.warning(f"Appium unavailable, running without UI snapshots: {e}")

    host = AdbAppiumHost(settings.device_serial, settings.adb_path, driver=driver)
    poller = DevicePoller(host, interval_ms=args.poll_ms)
    sinks = build_sinks(args)
    engine = FeedBlockerEngine(host, config, diagnostics=sinks, clock=monotonic_ms)

    setup_signal_handlers()
    logger.info(f"Watching {len(config.monitored_apps)} apps (poll every {args.poll_ms}ms)")
    try:
        while not _shutdown_requested:
            for raw in poller.poll(monotonic_ms()):
                engine.on_raw_event(raw)
            engine.tick()
            time.sleep(poller.interval_ms / 1000)
    finally:
        close_sinks(sinks)
        if driver is not None:
            try:
                driver.quit()
            except WebDriverException as e:
                logger.debug(f"Appium quit failed: {e}")
        logger.info(f"Stopped. Blocks: {engine.gate.state.block_count}")
    return 0


def run_replay(config: BlockerConfig, args) -> int:
    """Replay a capture file."""
    events = load_capture(args.capture)
    clock = VirtualClock()
    host = ReplayHost()
    sinks = build_sinks(args)
    engine = FeedBlockerEngine(host, config, diagnostics=sinks, clock=clock)
    try:
        blocks = replay_capture(engine, events, clock)
    finally:
        close_sinks(sinks)

    logger.info("=" * 50)
    logger.info(f"Replayed {len(events)} events: {len(blocks)} blocks, {host.exit_actions} back presses")
    for block in blocks:
        logger.info(f"  {block['timestamp_ms']:>8}ms  {block['app']}  ({block['reason']})")
    logger.info("=" * 50)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(description='Short-video feed blocker')
    parser.add_argument('--config', help='JSON file with BlockerConfig overrides')
    parser.add_argument('--debug', action='store_true', help='Log transient failures (DEBUG)')
    parser.add_argument('--log-file', default='feed_watcher.log', help='Log file path')
    parser.add_argument('--state-file', help='Write diagnostics state for research_dashboard.py')
    parser.add_argument('--decision-log', help='Directory for JSONL decision logs')

    subparsers = parser.add_subparsers(dest='command', required=True)

    watch = subparsers.add_parser('watch', help='Watch a live device')
    watch.add_argument('--env-file', help='.env file with ADB_PATH / APPIUM_URL / DEVICE_SERIAL')
    watch.add_argument('--poll-ms', type=int, default=500, help='Device poll interval in ms (default: 500)')
    watch.add_argument('--no-appium', action='store_true', help='Skip UI snapshots (fallback signals only)')

    replay = subparsers.add_parser('replay', help='Replay a JSONL capture')
    replay.add_argument('capture', help='Capture file (one raw event per line)')

    args = parser.parse_args(argv)
    setup_logging(args.debug, args.log_file)

    try:
        config = load_blocker_config(args.config)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Invalid configuration: {e}")
        return 2

    if args.command == 'watch':
        return run_watch(config, args)
    try:
        return run_replay(config, args)
    except (FileNotFoundError, ValueError) as e:
        logger.error(f"Cannot replay: {e}")
        return 2


if __name__ == "__main__":
    sys.exit(main())
