"""
Feed Blocker Engine - wires the detectors together.

One event in, at most one block out:

    UIEvent -> AppSessionTracker -> FeedScreenDetector (+ fingerprint)
            -> GracePeriodStateMachine / fallback signals -> DecisionGate

Everything runs synchronously on the caller's thread, strictly in event
order. External queries (snapshot, recent activity, media session) are
rate-limited per type and best-effort: a failing query means "signal
unavailable", never an exception out of on_event().
"""
import time
import logging
from typing import Any, Callable, Dict, Optional, Tuple

from app_session import AppSessionState, AppSessionTracker, SessionStore
from block_gate import DecisionGate, ScheduledActionQueue
from blocker_config import BlockerConfig
from content_fingerprint import ContentFingerprintTracker
from event_normalizer import EventKind, UIEvent, normalize_event
from fallback_signals import (
    DwellTimeFallback, MediaPlayback, MediaPositionResetDetector, ScrollBurstCounter, is_starved,
)
from feed_id_map import matches_feed_activity
from feed_screen_detector import DetectionResult, FeedScreenDetector, FeedVerdict, GenericFeedStrategy
from feed_state_machine import FeedPhase, GracePeriodStateMachine
from research_dashboard import ResearchState, Verdict
from ui_snapshot import UiSnapshot

logger = logging.getLogger(__name__)

REASON_SWIPE = "swipe"
REASON_SCROLL_BURST = "scroll_burst"
REASON_DWELL = "dwell_time"


def monotonic_ms() -> int:
    return int(time.monotonic() * 1000)


class QueryThrottle:
    """Minimum interval between two calls of one external query type."""

    def __init__(self, min_interval_ms: int):
        self.min_interval_ms = min_interval_ms
        self._last_ms: Optional[int] = None

    def allow(self, now_ms: int) -> bool:
        """Return True (and start a new interval) if a query may run now."""
        if self._last_ms is not None and now_ms - self._last_ms < self.min_interval_ms:
            return False
        self._last_ms = now_ms
        return True


class FeedBlockerEngine:
    """Per-event feed detection and enforcement."""

    def __init__(self, host, config: Optional[BlockerConfig] = None,
                 detector: Optional[FeedScreenDetector] = None,
                 scheduler: Optional[ScheduledActionQueue] = None,
                 diagnostics=None,
                 clock: Optional[Callable[[], int]] = None):
        """
        Args:
            host: HostEnvironment implementation.
            config: Tunables; defaults to BlockerConfig().
            detector: Structural classifier; defaults to the built-in table.
            scheduler: Queue for delayed exit actions.
            diagnostics: A sink with update(state), a list of them, or None.
            clock: Returns the current time in ms; used for events that
                carry no timestamp and for tick().
        """
        self.host = host
        self.config = (config or BlockerConfig()).validate()
        self.clock = clock or monotonic_ms
        self.detector = detector or FeedScreenDetector(
            generic=GenericFeedStrategy(self.config.full_screen_coverage)
        )
        self.scheduler = scheduler or ScheduledActionQueue()

        if diagnostics is None:
            self.diagnostics = []
        elif isinstance(diagnostics, (list, tuple)):
            self.diagnostics = list(diagnostics)
        else:
            self.diagnostics = [diagnostics]

        cfg = self.config
        self.store = SessionStore(cfg.monitored_apps)
        self.tracker = AppSessionTracker(self.store)
        self.fingerprints = ContentFingerprintTracker()
        self.state_machine = GracePeriodStateMachine(cfg.grace_period_ms, cfg.swipe_threshold)
        self.scroll_counter = ScrollBurstCounter(
            cfg.scroll_burst_threshold, cfg.scroll_window_ms, cfg.scroll_debounce_ms
        )
        self.dwell = DwellTimeFallback(cfg.dwell_ceiling_ms, cfg.dwell_cooldown_ms)
        self.media_detector = MediaPositionResetDetector(cfg.media_backward_jump_ms)
        self.gate = DecisionGate(
            host, self.scheduler,
            cooldown_ms=cfg.global_cooldown_ms,
            exit_action_delays_ms=cfg.exit_action_delays_ms,
        )

        self.snapshot_throttle = QueryThrottle(cfg.snapshot_query_interval_ms)
        self.activity_throttle = QueryThrottle(cfg.activity_query_interval_ms)
        self.media_throttle = QueryThrottle(cfg.media_query_interval_ms)
        self.media_enabled = True
        self.activity_enabled = True

    # ==================== ENTRY POINTS ====================

    def on_raw_event(self, raw: Dict[str, Any]) -> Optional[str]:
        """Normalize a raw notification and process it."""
        event = normalize_event(raw, self.config.self_package)
        if event is None:
            return None
        return self.on_event(event)

    def on_event(self, event: UIEvent) -> Optional[str]:
        """Process one normalized event.

        Returns:
            Trigger reason if this event caused a block, else None.
        """
        now = event.timestamp_ms if event.timestamp_ms is not None else self.clock()
        self.scheduler.run_due(now)

        app_id = event.app_id
        self.tracker.on_event(app_id, now)

        app_state = self.store.state_for(app_id)
        if app_state is None:
            # Not a feed app: the switch above already reset whatever we left
            return None

        result, snapshot = self._classify(event, now)
        fingerprint = self._apply_structure(app_state, event, result, snapshot, now)

        playback = self._observe_media(app_id, app_state, now)
        self._observe_activity(app_id, app_state, now)

        starved = is_starved(app_state, now, self.config.structural_starvation_ms)
        scroll_burst = False
        # Scrolls only count while the classifier cannot see the screen
        if event.kind == EventKind.SCROLLED and app_state.unknown_since_ms is not None:
            scroll_burst = self.scroll_counter.record_scroll(
                app_state, event.scroll_delta_y, now, armed=starved
            )

        reason = None
        if fingerprint is not None and self._swipe_reached(app_state):
            reason = REASON_SWIPE
        elif scroll_burst:
            reason = REASON_SCROLL_BURST
        elif starved and self.dwell.check(app_state, self.tracker.dwell_ms(now), now):
            reason = REASON_DWELL

        blocked = False
        if reason is not None:
            blocked = self.gate.consider_trigger(app_id, reason, now)
            if reason == REASON_SWIPE:
                # Start over whether or not the gate let it through
                self.state_machine.reset(app_state)
            elif reason == REASON_DWELL and blocked:
                self.dwell.record_warning(app_state, now)

        self._publish(event, app_state, result, snapshot is not None, fingerprint,
                      playback, starved, now, reason if blocked else None)
        return reason if blocked else None

    def tick(self, now_ms: Optional[int] = None) -> int:
        """Run scheduled actions that are due. Returns how many ran."""
        return self.scheduler.run_due(self.clock() if now_ms is None else now_ms)

    # ==================== STRUCTURE ====================

    def _classify(self, event: UIEvent, now: int) -> Tuple[Optional[DetectionResult], Optional[UiSnapshot]]:
        """Structural verdict and the snapshot it came from.

        The verdict is None if no snapshot query was allowed for this event.
        """
        snapshot = event.snapshot
        if snapshot is None:
            if not self.snapshot_throttle.allow(now):
                return None, None
            snapshot = self._query_snapshot()
        return self.detector.detect(event.app_id, snapshot), snapshot

    def _query_snapshot(self):
        try:
            return self.host.get_current_ui_snapshot()
        except Exception as e:
            logger.debug(f"Snapshot query failed: {e}")
            return None

    def _apply_structure(self, app_state: AppSessionState, event: UIEvent,
                         result: Optional[DetectionResult], snapshot: Optional[UiSnapshot],
                         now: int) -> Optional[int]:
        """Update per-app state from the verdict.

        Returns:
            The fingerprint fed to the state machine, or None if the
            verdict was not IN_FEED.
        """
        if result is None:
            return None

        if result.verdict == FeedVerdict.UNKNOWN:
            # Keeps the feed episode; UNKNOWN is never IN_FEED
            if app_state.unknown_since_ms is None:
                app_state.unknown_since_ms = now
            return None

        app_state.unknown_since_ms = None
        app_state.last_structural_ms = now
        self.scroll_counter.reset(app_state)

        if result.verdict == FeedVerdict.NOT_IN_FEED:
            self.state_machine.reset(app_state)
            return None

        fingerprint = self.fingerprints.update(app_state, snapshot, event.content_descriptor)
        self.state_machine.observe_in_feed(app_state, fingerprint, now)
        return fingerprint

    @staticmethod
    def _swipe_reached(app_state: AppSessionState) -> bool:
        return app_state.feed_state is not None and app_state.feed_state.phase == FeedPhase.TRIGGERED

    # ==================== EXTERNAL SIGNALS ====================

    def _observe_media(self, app_id: str, app_state: AppSessionState, now: int) -> Optional[MediaPlayback]:
        if not self.media_enabled or not self.media_throttle.allow(now):
            return None
        try:
            playback = self.host.query_active_media_playback(app_id)
        except PermissionError:
            self.media_enabled = False
            logger.info("Media session access not granted - media signal disabled")
            return None
        except Exception as e:
            logger.debug(f"Media query failed: {e}")
            return None

        if self.media_detector.observe(app_state, playback):
            # Corroboration only: surfaces in diagnostics, never counts as a scroll
            logger.debug(f"Media position reset in {app_id} ({app_state.media.reset_count})")
        return playback

    def _observe_activity(self, app_id: str, app_state: AppSessionState, now: int) -> None:
        if not self.activity_enabled or not self.activity_throttle.allow(now):
            return
        try:
            activity = self.host.query_recent_foreground_activity(app_id, self.config.activity_window_ms)
        except PermissionError:
            self.activity_enabled = False
            logger.info("Usage access not granted - activity hint disabled")
            return
        except Exception as e:
            logger.debug(f"Activity query failed: {e}")
            return
        if activity:
            app_state.last_activity = activity
            app_state.feed_activity_hint = matches_feed_activity(activity)

    # ==================== DIAGNOSTICS ====================

    def _publish(self, event: UIEvent, app_state: AppSessionState,
                 result: Optional[DetectionResult], snapshot_available: bool,
                 fingerprint: Optional[int], playback: Optional[MediaPlayback], starved: bool, now: int,
                 reason: Optional[str]) -> None:
        if not self.diagnostics:
            return

        phase = self.state_machine.phase_of(app_state, now)
        feed_state = app_state.feed_state
        signals = []
        if starved:
            signals.append("starved")
        if app_state.feed_activity_hint:
            signals.append("feed_activity")
        if app_state.media.reset_count:
            signals.append("media_reset")
        scroll_count = self.scroll_counter.current_count(app_state, now)
        if scroll_count:
            signals.append("scrolling")

        state = ResearchState(
            app=event.app_id,
            timestamp_ms=now,
            event_kind=event.kind.value,
            activity=app_state.last_activity,
            verdict=self._research_verdict(result, phase, signals, reason),
            matched_rule=result.matched_rule if result else "throttled",
            media_state=playback.state if playback else app_state.media.last_state,
            media_position_ms=playback.position_ms if playback else (app_state.media.last_position_ms or 0),
            media_duration_ms=playback.duration_ms if playback else app_state.media.last_duration_ms,
            media_title=playback.title if playback else "",
            position_reset_count=app_state.media.reset_count,
            scroll_count=scroll_count,
            snapshot_available=snapshot_available,
            signals=signals,
            feed_phase=phase.value,
            swipe_count=feed_state.swipe_count if feed_state else 0,
            fingerprint=fingerprint or 0,
            trigger_reason=reason,
            blocked=reason is not None,
        )

        for sink in self.diagnostics:
            try:
                sink.update(state)
            except Exception as e:
                logger.debug(f"Diagnostics sink {type(sink).__name__} failed: {e}")

    @staticmethod
    def _research_verdict(result: Optional[DetectionResult], phase: FeedPhase,
                          signals, reason: Optional[str]) -> Verdict:
        if reason is not None:
            return Verdict.FEED_DETECTED
        if result is not None and result.verdict == FeedVerdict.NOT_IN_FEED:
            return Verdict.SAFE
        if phase == FeedPhase.ENTERED:
            return Verdict.WATCHING
        if phase in (FeedPhase.ACTIVE, FeedPhase.TRIGGERED):
            return Verdict.FEED_DETECTED
        if "starved" in signals and ("scrolling" in signals or "media_reset" in signals):
            return Verdict.FEED_LIKELY
        return Verdict.UNKNOWN
