"""
Device Bridge - the host capabilities the engine consumes.

HostEnvironment is the contract. AdbAppiumHost implements it against a real
Android device:
- UI snapshot: Appium UiAutomator2 page_source
- Recent foreground activity: `dumpsys activity activities`
- Active media playback: `dumpsys media_session`
- Exit action: `input keyevent 4` (BACK)
- Blocked notification: `cmd notification post`

DevicePoller turns periodic foreground/screen polls into raw events for the
live watcher (scroll events are not observable by polling).

Every capability is best-effort. Callers treat a None result as "signal
unavailable" and catch exceptions at the call site.
"""
import re
import shlex
import logging
import subprocess
import time
from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Any

from appium import webdriver
from appium.options.android import UiAutomator2Options
from selenium.common.exceptions import WebDriverException

from event_normalizer import TYPE_WINDOW_CONTENT_CHANGED, TYPE_WINDOW_STATE_CHANGED, make_app_entered
from fallback_signals import MediaPlayback
from ui_snapshot import UiSnapshot

logger = logging.getLogger(__name__)

KEYCODE_BACK = 4

# android.media.session.PlaybackState constants
PLAYBACK_STATES = {
    0: "none",
    1: "stopped",
    2: "paused",
    3: "playing",
    4: "fast_forwarding",
    5: "rewinding",
    6: "buffering",
    7: "error",
    8: "connecting",
}


class HostEnvironment(ABC):
    """Capabilities the feed blocker needs from the device."""

    @abstractmethod
    def get_current_ui_snapshot(self) -> Optional[UiSnapshot]:
        """Current UI hierarchy, or None if introspection is unavailable."""
        pass

    @abstractmethod
    def query_recent_foreground_activity(self, app_id: str, window_ms: int) -> Optional[str]:
        """Activity class the app showed within window_ms, or None."""
        pass

    @abstractmethod
    def query_active_media_playback(self, app_id: str) -> Optional[MediaPlayback]:
        """Active media session of the app, or None.

        Raises:
            PermissionError: If media session access is not granted.
        """
        pass

    @abstractmethod
    def perform_exit_action(self) -> None:
        """Navigate back. Return value, if any, is not trusted."""
        pass

    @abstractmethod
    def present_notification(self, app_display_name: str) -> None:
        """Show the user-visible "blocked" notification."""
        pass


# ==================== dumpsys parsers ====================

_FOCUS_RE = re.compile(r'mCurrentFocus=Window\{\S+\s+\S+\s+([\w.]+)(?:/[\w.$]+)?\}')
_RESUMED_RE = re.compile(r'(?:mResumedActivity|ResumedActivity|topResumedActivity)[:=]\s*ActivityRecord\{\S+\s+\S+\s+([\w.]+)/([\w.$]+)')
_PLAYBACK_RE = re.compile(r'state=PlaybackState \{state=(-?\d+), position=(-?\d+)')
_METADATA_RE = re.compile(r'metadata:\s*size=\d+,\s*description=(.*)')


def parse_focused_package(output: str) -> Optional[str]:
    """Package of the focused window from `dumpsys window` output."""
    for line in output.splitlines():
        m = _FOCUS_RE.search(line)
        if m:
            return m.group(1)
    return None


def parse_resumed_activity(output: str) -> Optional[Dict[str, str]]:
    """Resumed activity from `dumpsys activity activities` output.

    Returns:
        {'package': ..., 'activity': fully qualified class} or None.
    """
    for line in output.splitlines():
        m = _RESUMED_RE.search(line)
        if m:
            package, activity = m.groups()
            if activity.startswith('.'):
                activity = package + activity
            return {'package': package, 'activity': activity}
    return None


def parse_media_sessions(output: str, app_id: str) -> Optional[MediaPlayback]:
    """Playback state of app_id's session from `dumpsys media_session`.

    The dump carries no track length, so duration_ms stays 0 (unknown).

    Returns:
        MediaPlayback for the first session owned by app_id, or None.
    """
    if 'Permission Denial' in output:
        raise PermissionError("media_session dump not permitted")

    in_block = False
    playback = None
    for raw_line in output.splitlines():
        line = raw_line.strip()
        if line.startswith('package='):
            if playback is not None:
                break
            in_block = line[len('package='):] == app_id
            continue
        if not in_block:
            continue

        m = _PLAYBACK_RE.search(line)
        if m:
            state_code, position = int(m.group(1)), int(m.group(2))
            playback = MediaPlayback(
                state=PLAYBACK_STATES.get(state_code, str(state_code)),
                position_ms=max(0, position),
            )
            continue

        m = _METADATA_RE.search(line)
        if m and playback is not None:
            description = m.group(1).strip()
            title = description.split(',')[0].strip()
            playback.title = '' if title == 'null' else title

    return playback


# ==================== Appium ====================

def create_appium_driver(appium_url: str, device_serial: Optional[str], retries: int = 3) -> webdriver.Remote:
    """Open a UiAutomator2 session for page_source snapshots.

    Raises:
        WebDriverException: If the session cannot be created.
    """
    options = UiAutomator2Options()
    options.platform_name = "Android"
    options.automation_name = "UiAutomator2"
    if device_serial:
        options.device_name = device_serial
        options.udid = device_serial
    options.no_reset = True
    options.new_command_timeout = 600
    # Do not wait for the app to go idle - feeds never do
    options.set_capability("appium:waitForIdleTimeout", 0)

    last_error = None
    for attempt in range(retries):
        try:
            driver = webdriver.Remote(command_executor=appium_url, options=options)
            platform_ver = driver.capabilities.get('platformVersion', 'unknown')
            logger.info(f"Appium connected (Android {platform_ver})")
            return driver
        except WebDriverException as e:
            last_error = e
            logger.warning(f"Appium connection failed (attempt {attempt + 1}/{retries}): {e}")
            if attempt < retries - 1:
                time.sleep(2)

    raise last_error


# ==================== ADB + Appium host ====================

class AdbAppiumHost(HostEnvironment):
    """HostEnvironment backed by ADB shell commands and an Appium session."""

    def __init__(self, device_serial: Optional[str] = None, adb_path: str = "adb",
                 driver: Optional[webdriver.Remote] = None, adb_timeout: int = 10):
        self.device_serial = device_serial
        self.adb_path = adb_path
        self.driver = driver
        self.adb_timeout = adb_timeout

    def _adb(self, *args: str) -> List[str]:
        cmd = [self.adb_path]
        if self.device_serial:
            cmd += ["-s", self.device_serial]
        return cmd + list(args)

    def shell(self, command: str) -> str:
        """Run a shell command on the device.

        Raises:
            subprocess.TimeoutExpired: If the command hangs.
            RuntimeError: If adb exits with an error.
        """
        result = subprocess.run(
            self._adb("shell", command),
            capture_output=True, text=True, timeout=self.adb_timeout
        )
        if result.returncode != 0:
            raise RuntimeError(f"adb shell failed ({result.returncode}): {result.stderr.strip()}")
        return result.stdout

    # ---- HostEnvironment ----

    def get_current_ui_snapshot(self) -> Optional[UiSnapshot]:
        if self.driver is None:
            return None
        xml_str = self.driver.page_source
        if not xml_str or '<' not in xml_str:
            return None
        return UiSnapshot.from_xml(xml_str)

    def query_recent_foreground_activity(self, app_id: str, window_ms: int) -> Optional[str]:
        # The resumed activity is by definition inside any window
        resumed = parse_resumed_activity(self.shell("dumpsys activity activities | grep -i ResumedActivity"))
        if resumed and resumed['package'] == app_id:
            return resumed['activity']
        return None

    def query_active_media_playback(self, app_id: str) -> Optional[MediaPlayback]:
        return parse_media_sessions(self.shell("dumpsys media_session"), app_id)

    def perform_exit_action(self) -> None:
        self.shell(f"input keyevent {KEYCODE_BACK}")

    def present_notification(self, app_display_name: str) -> None:
        title = shlex.quote("Feed blocked")
        text = shlex.quote(f"Closed the short-video feed in {app_display_name}")
        self.shell(f"cmd notification post -S bigtext -t {title} feed_blocker {text}")

    def get_focused_package(self) -> Optional[str]:
        """Package of the currently focused window."""
        return parse_focused_package(self.shell("dumpsys window | grep mCurrentFocus"))


class DevicePoller:
    """Synthesizes raw UI events from periodic device polls."""

    def __init__(self, host: AdbAppiumHost, interval_ms: int = 500):
        self.host = host
        self.interval_ms = interval_ms
        self._last_package: Optional[str] = None

    def poll(self, now_ms: int) -> List[Dict[str, Any]]:
        """Poll the device once.

        Returns:
            Raw notifications: an APP_ENTERED plus a screen change when the
            foreground package changed, a content change otherwise.
        """
        try:
            package = self.host.get_focused_package()
        except (subprocess.SubprocessError, RuntimeError, OSError) as e:
            logger.debug(f"Focus poll failed: {e}")
            return []
        if not package:
            return []

        if package != self._last_package:
            self._last_package = package
            return [
                make_app_entered(package, now_ms),
                {'package': package, 'event_type': TYPE_WINDOW_STATE_CHANGED, 'timestamp_ms': now_ms},
            ]
        return [{'package': package, 'event_type': TYPE_WINDOW_CONTENT_CHANGED, 'timestamp_ms': now_ms}]
