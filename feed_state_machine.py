"""
Grace-Period / Swipe-Count State Machine.

Per app:

    NOT_WATCHING --(IN_FEED)--> ENTERED --(grace elapsed)--> ACTIVE
         ^                                                     |
         |            (swipe_count reaches threshold)          v
         +---- RESET (NOT_IN_FEED / app switch) <-------- TRIGGERED

The first item of a feed is always allowed: during the grace period content
changes only move last_fingerprint forward (the first video is still
loading / laying out). After grace, every distinct nonzero fingerprint is a
swipe, and enough swipes prove the user is browsing the feed rather than
watching the one video they opened.
"""
import logging
from enum import Enum
from dataclasses import dataclass
from typing import Optional

from content_fingerprint import EMPTY_FINGERPRINT

logger = logging.getLogger(__name__)


class FeedPhase(Enum):
    NOT_WATCHING = "not_watching"
    ENTERED = "entered"        # Inside grace period
    ACTIVE = "active"          # Counting swipes
    TRIGGERED = "triggered"


@dataclass
class PerAppFeedState:
    """One feed-entry episode. Exists only between feed entry and reset."""
    entry_time_ms: int
    last_fingerprint: int = EMPTY_FINGERPRINT
    swipe_count: int = 0
    phase: FeedPhase = FeedPhase.ENTERED


class GracePeriodStateMachine:
    """Turns a stream of IN_FEED fingerprints into a block decision."""

    def __init__(self, grace_period_ms: int = 2000, swipe_threshold: int = 1):
        self.grace_period_ms = grace_period_ms
        self.swipe_threshold = swipe_threshold

    def phase_of(self, app_state, now_ms: int) -> FeedPhase:
        """Current phase; ENTERED becomes ACTIVE implicitly once grace elapses."""
        state: Optional[PerAppFeedState] = app_state.feed_state
        if state is None:
            return FeedPhase.NOT_WATCHING
        if state.phase == FeedPhase.TRIGGERED:
            return FeedPhase.TRIGGERED
        if now_ms - state.entry_time_ms < self.grace_period_ms:
            return FeedPhase.ENTERED
        return FeedPhase.ACTIVE

    def observe_in_feed(self, app_state, fingerprint: int, now_ms: int) -> bool:
        """Feed one IN_FEED observation into the machine.

        Args:
            app_state: AppSessionState owning the feed state.
            fingerprint: Current content fingerprint (0 = unknown).
            now_ms: Observation time.

        Returns:
            True if this observation reached the swipe threshold.
        """
        state: Optional[PerAppFeedState] = app_state.feed_state

        if state is None:
            # NOT_WATCHING -> ENTERED. Never a block, whatever the fingerprint.
            app_state.feed_state = PerAppFeedState(
                entry_time_ms=now_ms,
                last_fingerprint=fingerprint,
            )
            logger.debug(f"Feed entered at {now_ms}")
            return False

        if fingerprint == EMPTY_FINGERPRINT or fingerprint == state.last_fingerprint:
            return False

        if state.last_fingerprint == EMPTY_FINGERPRINT:
            # 0 -> H is not a change either, it only tells us where we are
            state.last_fingerprint = fingerprint
            return False

        phase = self.phase_of(app_state, now_ms)
        state.phase = phase

        if phase == FeedPhase.ENTERED:
            state.last_fingerprint = fingerprint
            return False

        state.swipe_count += 1
        state.last_fingerprint = fingerprint
        logger.debug(f"Swipe {state.swipe_count}/{self.swipe_threshold} at {now_ms}")

        if state.swipe_count >= self.swipe_threshold:
            state.phase = FeedPhase.TRIGGERED
            return True
        return False

    def reset(self, app_state) -> None:
        """Back to NOT_WATCHING; all episode fields are dropped."""
        if app_state.feed_state is not None:
            logger.debug("Feed state reset")
        app_state.feed_state = None
