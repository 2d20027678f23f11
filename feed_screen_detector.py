"""
FeedScreenDetector - Structural detection of short-video feed screens.

Decides from a UI snapshot whether the foreground screen is a swipeable
short-video feed (Reels, Shorts, For You, Spotlight...) or some other screen
of the same app (profile, search, a single opened video page).

Detection is a strategy table:
- App-specific strategy when the app has an entry in feed_id_map
  (allow-list of FEED marker IDs, deny-list of NOT_FEED marker IDs)
- Generic strategy for monitored apps without an entry (broad resource-id
  patterns, full-screen scrollable pagers)
- UNKNOWN when there is no snapshot to look at (the app blocks introspection)

UNKNOWN is NOT a feed. Callers must never block on it.
"""
import logging
from enum import Enum
from dataclasses import dataclass, field
from typing import List, Dict, Optional

from feed_id_map import (
    FEED_APPS,
    get_feed_markers,
    get_not_feed_markers,
    matches_generic_feed_id,
    matches_generic_pager_id,
    matches_generic_not_feed_id,
)
from ui_snapshot import UiSnapshot

logger = logging.getLogger(__name__)


class FeedVerdict(Enum):
    """Result of structural classification."""
    IN_FEED = "in_feed"            # Feed container present
    NOT_IN_FEED = "not_in_feed"    # Snapshot available, no feed (or denied)
    UNKNOWN = "unknown"            # No snapshot - introspection unavailable


@dataclass
class DetectionResult:
    """Verdict plus which rule produced it."""
    verdict: FeedVerdict
    matched_rule: str  # Which rule matched
    key_elements: List[str] = field(default_factory=list)  # Markers that triggered the match


class AppFeedStrategy:
    """Allow-list / deny-list of structural markers for one app."""

    def __init__(self, feed_markers: List[str], not_feed_markers: Optional[List[str]] = None):
        self.feed_markers = list(feed_markers)
        self.not_feed_markers = list(not_feed_markers or [])

    def detect(self, snapshot: UiSnapshot) -> DetectionResult:
        # Deny-list first: a profile/search screen wins even if a feed
        # container is still attached in the background
        denied = [m for m in self.not_feed_markers if snapshot.find_markers(m)]
        if denied:
            return DetectionResult(FeedVerdict.NOT_IN_FEED, 'not_feed_marker', denied)

        found = [m for m in self.feed_markers if snapshot.find_markers(m)]
        if found:
            return DetectionResult(FeedVerdict.IN_FEED, 'feed_marker', found)

        return DetectionResult(FeedVerdict.NOT_IN_FEED, 'no_feed_marker', [])


class GenericFeedStrategy:
    """Broad structural patterns for apps without their own marker table."""

    def __init__(self, full_screen_coverage: float = 0.9):
        self.full_screen_coverage = full_screen_coverage

    def detect(self, snapshot: UiSnapshot) -> DetectionResult:
        denied = [n.resource_id for n in snapshot.nodes if matches_generic_not_feed_id(n.resource_id)]
        if denied:
            return DetectionResult(FeedVerdict.NOT_IN_FEED, 'generic_not_feed', denied[:5])

        found = [n.resource_id for n in snapshot.nodes if matches_generic_feed_id(n.resource_id)]
        if found:
            return DetectionResult(FeedVerdict.IN_FEED, 'generic_feed_id', found[:5])

        # Swipeable full-screen media container: a scrollable pager taking
        # up the whole window
        for node in snapshot.nodes:
            if not node.scrollable:
                continue
            is_pager = matches_generic_pager_id(node.resource_id) or 'pager' in node.class_name.lower()
            if is_pager and snapshot.is_full_screen(node, self.full_screen_coverage):
                return DetectionResult(
                    FeedVerdict.IN_FEED, 'generic_full_screen_pager',
                    [node.resource_id or node.class_name]
                )

        return DetectionResult(FeedVerdict.NOT_IN_FEED, 'generic_no_match', [])


class FeedScreenDetector:
    """Classifies UI snapshots as feed / not feed / unknown per app."""

    def __init__(self, strategies: Optional[Dict[str, AppFeedStrategy]] = None,
                 generic: Optional[GenericFeedStrategy] = None):
        """Initialize detector with the strategy table.

        Args:
            strategies: app id -> strategy. Defaults to one strategy per
                entry in feed_id_map.
            generic: Fallback for apps without a registered strategy.
        """
        if strategies is None:
            strategies = {
                app_id: AppFeedStrategy(get_feed_markers(app_id), get_not_feed_markers(app_id))
                for app_id in FEED_APPS
            }
        self.strategies = dict(strategies)
        self.generic = generic or GenericFeedStrategy()

    def register(self, app_id: str, strategy: AppFeedStrategy) -> None:
        """Register (or replace) the strategy for an app."""
        self.strategies[app_id] = strategy

    def detect(self, app_id: str, snapshot: Optional[UiSnapshot]) -> DetectionResult:
        """Classify a snapshot for an app.

        Args:
            app_id: Foreground app id.
            snapshot: Current UI snapshot, or None if unavailable.

        Returns:
            DetectionResult with verdict and matched rule.
        """
        if snapshot is None:
            return DetectionResult(FeedVerdict.UNKNOWN, 'no_snapshot', [])
        if snapshot.is_empty():
            # Apps that block introspection hand back an empty tree
            return DetectionResult(FeedVerdict.UNKNOWN, 'empty_snapshot', [])

        strategy = self.strategies.get(app_id)
        if strategy is not None:
            return strategy.detect(snapshot)
        return self.generic.detect(snapshot)

    def classify(self, app_id: str, snapshot: Optional[UiSnapshot]) -> FeedVerdict:
        """Shorthand for detect(...).verdict."""
        return self.detect(app_id, snapshot).verdict
