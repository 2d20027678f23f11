"""
App Session Tracker + Session Store.

SessionStore owns ALL per-app keyed state in one AppSessionState record per
app: feed episode, scroll window, fingerprint, fallback timers, media track.
Resetting an app is a single reset_app() call, so no map can be forgotten
on an app switch.

AppSessionTracker owns the foreground app. On every event it checks whether
the foreground app changed and, if so, resets the previous and the new app.
"""
import logging
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional

from content_fingerprint import EMPTY_FINGERPRINT
from fallback_signals import MediaTrack, ScrollWindow
from feed_state_machine import PerAppFeedState

logger = logging.getLogger(__name__)


@dataclass
class ForegroundApp:
    app_id: str
    entry_time_ms: int


@dataclass
class AppSessionState:
    """Everything the engine knows about one monitored app."""
    feed_state: Optional[PerAppFeedState] = None
    scroll_window: ScrollWindow = field(default_factory=ScrollWindow)
    last_fingerprint: int = EMPTY_FINGERPRINT
    unknown_since_ms: Optional[int] = None
    last_structural_ms: Optional[int] = None
    last_dwell_warning_ms: Optional[int] = None
    media: MediaTrack = field(default_factory=MediaTrack)
    last_activity: Optional[str] = None
    feed_activity_hint: bool = False


class SessionStore:
    """Per-app state, created only for monitored apps."""

    def __init__(self, monitored_apps: Iterable[str]):
        self.monitored_apps = frozenset(monitored_apps)
        self._states: Dict[str, AppSessionState] = {}

    def is_monitored(self, app_id: str) -> bool:
        return app_id in self.monitored_apps

    def state_for(self, app_id: str) -> Optional[AppSessionState]:
        """Get (or lazily create) the state for a monitored app.

        Returns:
            AppSessionState, or None if the app is not monitored.
        """
        if app_id not in self.monitored_apps:
            return None
        state = self._states.get(app_id)
        if state is None:
            state = AppSessionState()
            self._states[app_id] = state
        return state

    def peek(self, app_id: str) -> Optional[AppSessionState]:
        """Get existing state without creating it."""
        return self._states.get(app_id)

    def reset_app(self, app_id: Optional[str]) -> None:
        """Drop every piece of state held for an app."""
        if app_id and self._states.pop(app_id, None) is not None:
            logger.debug(f"Reset state for {app_id}")

    def reset_all(self) -> None:
        self._states.clear()

    def tracked_apps(self) -> List[str]:
        return sorted(self._states.keys())


class AppSessionTracker:
    """Detects foreground-app transitions."""

    def __init__(self, store: SessionStore):
        self.store = store
        self._foreground: Optional[ForegroundApp] = None

    @property
    def foreground(self) -> Optional[ForegroundApp]:
        return self._foreground

    def on_event(self, app_id: str, now_ms: int) -> bool:
        """Note an event from app_id.

        Returns:
            True if the foreground app changed.
        """
        current = self._foreground
        if current is not None and current.app_id == app_id:
            return False

        previous = current.app_id if current else None
        self._foreground = ForegroundApp(app_id=app_id, entry_time_ms=now_ms)
        self.store.reset_app(previous)
        self.store.reset_app(app_id)
        logger.info(f"App changed: {previous} -> {app_id}")
        return True

    def dwell_ms(self, now_ms: int) -> int:
        """Continuous foreground time of the current app."""
        if self._foreground is None:
            return 0
        return max(0, now_ms - self._foreground.entry_time_ms)
