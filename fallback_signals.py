"""
Fallback Signal Aggregators - lower-confidence detectors.

Some apps hand back no usable UI hierarchy at all, so the structural
classifier only ever says UNKNOWN there. These detectors take over once that
has gone on long enough (the app is "starved"):

- ScrollBurstCounter: several debounced vertical scrolls inside a window
- DwellTimeFallback: too long in a feed-capable app
- MediaPositionResetDetector: playback position jumped back / title changed.
  Corroboration only: shown in diagnostics, never a trigger or a scroll.

All state sits on the app's AppSessionState and goes away with it.
"""
import logging
from dataclasses import dataclass
from typing import Optional

from content_fingerprint import EMPTY_FINGERPRINT, fingerprint_text

logger = logging.getLogger(__name__)


def is_starved(app_state, now_ms: int, starvation_ms: int) -> bool:
    """True if the app has only reported UNKNOWN for at least starvation_ms."""
    if app_state.unknown_since_ms is None:
        return False
    return now_ms - app_state.unknown_since_ms >= starvation_ms


@dataclass
class ScrollWindow:
    """Rolling scroll count for one app."""
    window_start_ms: Optional[int] = None
    count: int = 0
    last_scroll_ms: Optional[int] = None


@dataclass
class MediaPlayback:
    """Snapshot of the app's active media session."""
    state: str = "none"
    position_ms: int = 0
    duration_ms: int = 0
    title: str = ""


@dataclass
class MediaTrack:
    """What the media detector remembers about the app's playback.

    Titles are kept as fingerprints only.
    """
    last_position_ms: Optional[int] = None
    last_title_fingerprint: int = EMPTY_FINGERPRINT
    reset_count: int = 0
    last_state: str = "none"
    last_duration_ms: int = 0


class ScrollBurstCounter:
    """Counts debounced vertical scrolls in a rolling window."""

    def __init__(self, threshold: int = 3, window_ms: int = 30000, debounce_ms: int = 500):
        self.threshold = threshold
        self.window_ms = window_ms
        self.debounce_ms = debounce_ms

    def _roll(self, window: ScrollWindow, now_ms: int) -> None:
        if window.window_start_ms is None or now_ms - window.window_start_ms >= self.window_ms:
            window.window_start_ms = now_ms
            window.count = 0

    def record_scroll(self, app_state, delta_y: Optional[int], now_ms: int, armed: bool) -> bool:
        """Register a scroll event.

        Args:
            app_state: AppSessionState of the app.
            delta_y: Vertical scroll delta; horizontal-only scrolls are ignored.
            now_ms: Event time.
            armed: Whether the fallback may fire (app is starved).

        Returns:
            True if the burst threshold was reached (window is then reset).
        """
        if not delta_y:
            return False

        window: ScrollWindow = app_state.scroll_window
        if window.last_scroll_ms is not None and now_ms - window.last_scroll_ms < self.debounce_ms:
            return False
        window.last_scroll_ms = now_ms

        self._roll(window, now_ms)
        window.count += 1
        logger.debug(f"Scroll {window.count}/{self.threshold} (armed={armed})")

        if armed and window.count >= self.threshold:
            window.window_start_ms = None
            window.count = 0
            return True
        return False

    def reset(self, app_state) -> None:
        """Forget counted scrolls, e.g. once the classifier can see the screen again."""
        app_state.scroll_window = ScrollWindow()

    def current_count(self, app_state, now_ms: int) -> int:
        window: ScrollWindow = app_state.scroll_window
        if window.window_start_ms is None or now_ms - window.window_start_ms >= self.window_ms:
            return 0
        return window.count


class DwellTimeFallback:
    """Fires when foreground time in a feed-capable app passes a ceiling."""

    def __init__(self, ceiling_ms: int = 120000, cooldown_ms: int = 60000):
        self.ceiling_ms = ceiling_ms
        self.cooldown_ms = cooldown_ms

    def check(self, app_state, dwell_ms: int, now_ms: int) -> bool:
        """Return True if the dwell warning should fire now.

        Does not start the cooldown; call record_warning() once a block
        actually happened.
        """
        if dwell_ms < self.ceiling_ms:
            return False
        last = app_state.last_dwell_warning_ms
        if last is not None and now_ms - last < self.cooldown_ms:
            return False
        logger.debug(f"Dwell ceiling passed ({dwell_ms}ms)")
        return True

    def record_warning(self, app_state, now_ms: int) -> None:
        app_state.last_dwell_warning_ms = now_ms


class MediaPositionResetDetector:
    """Detects 'moved to the next item' from media session updates."""

    def __init__(self, backward_jump_ms: int = 1500):
        self.backward_jump_ms = backward_jump_ms

    def observe(self, app_state, playback: Optional[MediaPlayback]) -> bool:
        """Compare playback to the last one seen for this app.

        Returns:
            True if the position jumped backward past the threshold or the
            playing title changed.
        """
        track: MediaTrack = app_state.media
        if playback is None:
            return False

        moved = False
        if track.last_position_ms is not None:
            if track.last_position_ms - playback.position_ms > self.backward_jump_ms:
                moved = True

        title_fingerprint = fingerprint_text(playback.title)
        if (track.last_title_fingerprint != EMPTY_FINGERPRINT
                and title_fingerprint != EMPTY_FINGERPRINT
                and title_fingerprint != track.last_title_fingerprint):
            moved = True

        track.last_position_ms = playback.position_ms
        if title_fingerprint != EMPTY_FINGERPRINT:
            track.last_title_fingerprint = title_fingerprint
        track.last_state = playback.state
        track.last_duration_ms = playback.duration_ms
        if moved:
            track.reset_count += 1
        return moved
