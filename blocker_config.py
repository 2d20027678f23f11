"""
Centralized Configuration Module.

This is the SINGLE SOURCE OF TRUTH for every detection threshold and device
setting. Other modules receive a BlockerConfig instance instead of defining
their own constants.

Usage:
    from blocker_config import load_blocker_config, load_device_settings

    config = load_blocker_config("blocker.json")   # or None for defaults
    device = load_device_settings()

    grace = config.grace_period_ms
"""

import os
import json
from dataclasses import dataclass, field, fields, replace
from typing import Optional, Tuple, FrozenSet, Dict, Any

from dotenv import load_dotenv

from feed_id_map import list_monitored_apps


SELF_PACKAGE = "com.derot.videoblocker"


@dataclass(frozen=True)
class BlockerConfig:
    """
    Detection and enforcement tuning.

    Every number used by the decision logic lives here and nowhere else;
    the engine only ever reads them from a BlockerConfig instance.
    """

    # ==================== GRACE PERIOD / SWIPES ====================

    # First item after entering a feed is always allowed to settle
    grace_period_ms: int = 2000

    # Distinct items after grace needed to block (1 = second item blocks)
    swipe_threshold: int = 1

    # ==================== ENFORCEMENT ====================

    # Minimum interval between two blocks, across ALL apps and signals
    global_cooldown_ms: int = 3000

    # Back presses after a block (some apps need two)
    exit_action_delays_ms: Tuple[int, ...] = (450, 550)

    # ==================== FALLBACK SIGNALS ====================

    # Classifier must report only UNKNOWN this long before fallbacks arm
    structural_starvation_ms: int = 3000

    # Scroll bursts
    scroll_burst_threshold: int = 3
    scroll_window_ms: int = 30000
    scroll_debounce_ms: int = 500

    # Dwell time in a feed-capable app
    dwell_ceiling_ms: int = 120000
    dwell_cooldown_ms: int = 60000

    # Played position jumping back this far counts as "next item"
    media_backward_jump_ms: int = 1500

    # ==================== EXTERNAL QUERY RATE LIMITS ====================

    snapshot_query_interval_ms: int = 500
    activity_query_interval_ms: int = 1000
    media_query_interval_ms: int = 1000

    # Window passed to the recent-foreground-activity query
    activity_window_ms: int = 5000

    # ==================== STRUCTURE ====================

    # Pager must cover this share of the screen to count as full-screen
    full_screen_coverage: float = 0.9

    # ==================== APPS ====================

    monitored_apps: FrozenSet[str] = field(
        default_factory=lambda: frozenset(list_monitored_apps())
    )
    self_package: str = SELF_PACKAGE

    # ==================== METHODS ====================

    def validate(self) -> 'BlockerConfig':
        """
        Check value ranges and cross-field constraints.

        Returns:
            self, so calls can be chained

        Raises:
            ValueError: If a value is out of range
        """
        positive = [
            'grace_period_ms', 'swipe_threshold', 'global_cooldown_ms',
            'structural_starvation_ms', 'scroll_burst_threshold',
            'scroll_window_ms', 'dwell_ceiling_ms', 'media_backward_jump_ms',
            'activity_window_ms',
        ]
        for name in positive:
            if getattr(self, name) <= 0:
                raise ValueError(f"{name} must be positive, got {getattr(self, name)}")

        non_negative = [
            'scroll_debounce_ms', 'dwell_cooldown_ms',
            'snapshot_query_interval_ms', 'activity_query_interval_ms',
            'media_query_interval_ms',
        ]
        for name in non_negative:
            if getattr(self, name) < 0:
                raise ValueError(f"{name} must not be negative, got {getattr(self, name)}")

        if not self.exit_action_delays_ms:
            raise ValueError("exit_action_delays_ms must contain at least one delay")
        if any(d < 0 for d in self.exit_action_delays_ms):
            raise ValueError(f"exit_action_delays_ms must not be negative: {self.exit_action_delays_ms}")

        # Pending back presses from one block must finish before the next block
        # is allowed, otherwise a second trigger could queue extra actions.
        if self.global_cooldown_ms <= max(self.exit_action_delays_ms):
            raise ValueError(
                f"global_cooldown_ms ({self.global_cooldown_ms}) must exceed the "
                f"exit action delay span ({max(self.exit_action_delays_ms)})"
            )

        if not 0.0 < self.full_screen_coverage <= 1.0:
            raise ValueError(f"full_screen_coverage must be in (0, 1], got {self.full_screen_coverage}")

        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'BlockerConfig':
        """
        Build a config from a plain dict (e.g. parsed JSON).

        Unknown keys are rejected so that typos do not silently fall back
        to defaults.

        Raises:
            ValueError: On unknown keys or invalid values
        """
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(data) - known)
        if unknown:
            raise ValueError(f"Unknown config keys: {', '.join(unknown)}")

        overrides = dict(data)
        if 'exit_action_delays_ms' in overrides:
            overrides['exit_action_delays_ms'] = tuple(int(d) for d in overrides['exit_action_delays_ms'])
        if 'monitored_apps' in overrides:
            overrides['monitored_apps'] = frozenset(overrides['monitored_apps'])

        return replace(cls(), **overrides).validate()

    def to_dict(self) -> Dict[str, Any]:
        """Plain-dict view for logging and the diagnostics page."""
        out = {f.name: getattr(self, f.name) for f in fields(self)}
        out['exit_action_delays_ms'] = list(self.exit_action_delays_ms)
        out['monitored_apps'] = sorted(self.monitored_apps)
        return out


def load_blocker_config(path: Optional[str] = None) -> BlockerConfig:
    """
    Load configuration, applying overrides from a JSON file if given.

    Args:
        path: Path to a JSON object with BlockerConfig field overrides

    Returns:
        Validated BlockerConfig

    Raises:
        FileNotFoundError: If the file does not exist
        ValueError: If the JSON is invalid or holds bad values
    """
    if path is None:
        return BlockerConfig().validate()

    if not os.path.exists(path):
        raise FileNotFoundError(f"Config file not found: {path}")

    with open(path, 'r', encoding='utf-8') as f:
        try:
            data = json.load(f)
        except json.JSONDecodeError as e:
            raise ValueError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object in {path}")

    return BlockerConfig.from_dict(data)


# ==================== DEVICE SETTINGS ====================

@dataclass(frozen=True)
class DeviceSettings:
    """Where the device and the Appium server live."""

    adb_path: str = "adb"
    appium_url: str = "http://127.0.0.1:4723"
    device_serial: Optional[str] = None


def load_device_settings(dotenv_path: Optional[str] = None) -> DeviceSettings:
    """
    Read device settings from the environment (and a .env file if present).

    Recognised variables: ADB_PATH, APPIUM_URL, DEVICE_SERIAL.
    """
    load_dotenv(dotenv_path)
    defaults = DeviceSettings()
    return DeviceSettings(
        adb_path=os.environ.get('ADB_PATH') or defaults.adb_path,
        appium_url=os.environ.get('APPIUM_URL') or defaults.appium_url,
        device_serial=os.environ.get('DEVICE_SERIAL') or defaults.device_serial,
    )
