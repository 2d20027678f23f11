"""
Feed ID Map - Structural Marker Table for Feed-Capable Apps

Each monitored app renders its short-video feed inside a container with a
known resource ID (e.g. Instagram's clips_viewer_view_pager). This module is
the table of those IDs, split into:
- FEED markers: presence means "this screen is the swipeable video feed"
- NOT_FEED markers: presence means "explicitly not the feed" (profile,
  search). A NOT_FEED marker wins over a FEED marker.

Apps without an entry fall back to the generic patterns at the bottom.

IMPORTANT: IDs are full resource IDs ("package:id/name"). Apps ship renamed
IDs between releases, so keep old IDs in the lists when adding new ones.

Usage:
    from feed_id_map import get_feed_markers, get_not_feed_markers

    feed_ids = get_feed_markers("com.instagram.android")
    deny_ids = get_not_feed_markers("com.zhiliaoapp.musically")
"""

import logging
from typing import List, Dict

logger = logging.getLogger(__name__)

# =============================================================================
# Per-App Marker Table
# =============================================================================

FEED_APPS: Dict[str, Dict] = {
    # X / Twitter - immersive full-screen video player
    "com.twitter.android": {
        "display_name": "X",
        "feed": [
            "com.twitter.android:id/immersive_player_container",
            "com.twitter.android:id/immersive_video_pager",
        ],
        "not_feed": [],
    },
    "com.twitter.android.lite": {
        "display_name": "X Lite",
        "feed": [
            "com.twitter.android:id/immersive_player_container",
            "com.twitter.android:id/immersive_video_pager",
        ],
        "not_feed": [],
    },

    # Instagram - Reels viewer
    "com.instagram.android": {
        "display_name": "Instagram",
        "feed": [
            "com.instagram.android:id/clips_viewer_view_pager",
            "com.instagram.android:id/reel_viewer_view_pager",
        ],
        "not_feed": [
            "com.instagram.android:id/action_bar_username_container",
            "com.instagram.android:id/profile_header_container",
        ],
    },

    # YouTube - Shorts
    "com.google.android.youtube": {
        "display_name": "YouTube",
        "feed": [
            "com.google.android.youtube:id/reel_recycler",
            "com.google.android.youtube:id/reel_player_page_container",
            "com.google.android.youtube:id/shorts_player_container",
        ],
        "not_feed": [],
    },

    # TikTok (global + trill builds) - For You feed
    "com.zhiliaoapp.musically": {
        "display_name": "TikTok",
        "feed": [
            "com.zhiliaoapp.musically:id/rl",
        ],
        "not_feed": [
            "com.zhiliaoapp.musically:id/profile_fragment",
            "com.zhiliaoapp.musically:id/search_bar",
        ],
    },
    "com.ss.android.ugc.trill": {
        "display_name": "TikTok",
        "feed": [
            "com.ss.android.ugc.trill:id/rl",
        ],
        "not_feed": [
            "com.ss.android.ugc.trill:id/profile_fragment",
        ],
    },

    # Facebook - Reels
    "com.facebook.katana": {
        "display_name": "Facebook",
        "feed": [
            "com.facebook.katana:id/reels_viewer_fragment",
            "com.facebook.katana:id/reels_surface_view",
        ],
        "not_feed": [],
    },
    "com.facebook.lite": {
        "display_name": "Facebook Lite",
        "feed": [
            "com.facebook.lite:id/reels_viewer_fragment",
        ],
        "not_feed": [],
    },

    # Snapchat - Spotlight
    "com.snapchat.android": {
        "display_name": "Snapchat",
        "feed": [
            "com.snapchat.android:id/spotlight_feed_container",
            "com.snapchat.android:id/spotlight_viewer",
        ],
        "not_feed": [],
    },
}

# =============================================================================
# Generic Patterns (apps without a table entry)
# Matched case-insensitively as substrings of resource IDs.
# =============================================================================

GENERIC_FEED_PATTERNS = [
    "reel", "reels", "shorts", "stories", "vertical_video", "video_feed",
    "full_screen_video", "immersive", "tiktok", "fyp", "for_you", "foryou",
    "trending_video",
]

# Too broad on their own (every carousel is a pager); only count when the
# node is a scrollable container covering the whole screen.
GENERIC_PAGER_PATTERNS = ["pager", "viewpager"]

GENERIC_NOT_FEED_PATTERNS = [
    "profile_header", "profile_fragment", "search_bar", "search_box",
    "settings",
]

# Activity / fragment names that indicate a video feed. Only used as a hint
# from the recent-foreground-activity query, never to trigger on their own.
FEED_ACTIVITY_PATTERNS = [
    "ReelActivity", "ReelsActivity", "ShortsActivity", "ImmersiveActivity",
    "FullScreenVideoActivity", "VideoFeedActivity", "StoriesActivity",
    "ReelViewerFragment", "ShortsFragment", "VerticalFeedFragment",
    "ImmersiveViewerActivity", "MediaViewerActivity",
]


# =============================================================================
# Helper Functions
# =============================================================================

def has_app_strategy(app_id: str) -> bool:
    """Check whether an app has its own marker table entry."""
    return app_id in FEED_APPS


def get_feed_markers(app_id: str) -> List[str]:
    """
    Get the FEED marker IDs for an app.

    Returns:
        List of full resource IDs. Empty list if app not in the table.
    """
    return list(FEED_APPS.get(app_id, {}).get("feed", []))


def get_not_feed_markers(app_id: str) -> List[str]:
    """Get the NOT_FEED marker IDs for an app (empty if none)."""
    return list(FEED_APPS.get(app_id, {}).get("not_feed", []))


def get_app_display_name(app_id: str) -> str:
    """Human-readable app name for notifications; falls back to the app id."""
    entry = FEED_APPS.get(app_id)
    if entry:
        return entry["display_name"]
    return app_id


def list_monitored_apps() -> List[str]:
    """List all app ids with a marker table entry (the default monitored set)."""
    return sorted(FEED_APPS.keys())


def matches_generic_feed_id(resource_id: str) -> bool:
    """Check a resource ID against the broad feed patterns (pagers excluded)."""
    if not resource_id:
        return False
    name = resource_id.lower()
    return any(pattern in name for pattern in GENERIC_FEED_PATTERNS)


def matches_generic_pager_id(resource_id: str) -> bool:
    """Check a resource ID against the pager patterns."""
    if not resource_id:
        return False
    name = resource_id.lower()
    return any(pattern in name for pattern in GENERIC_PAGER_PATTERNS)


def matches_generic_not_feed_id(resource_id: str) -> bool:
    """Check a resource ID against the generic non-feed patterns."""
    if not resource_id:
        return False
    name = resource_id.lower()
    return any(pattern in name for pattern in GENERIC_NOT_FEED_PATTERNS)


def matches_feed_activity(activity_name: str) -> bool:
    """Check an activity/fragment class name against known feed screens."""
    if not activity_name:
        return False
    name = activity_name.lower()
    return any(pattern.lower() in name for pattern in FEED_ACTIVITY_PATTERNS)


# =============================================================================
# Module Testing
# =============================================================================

if __name__ == "__main__":
    logging.basicConfig(level=logging.DEBUG)

    print("Feed ID Map")
    print("=" * 60)
    print(f"\nMonitored apps: {list_monitored_apps()}")
    for app in list_monitored_apps():
        print(f"\n{get_app_display_name(app)} ({app})")
        print(f"  feed:     {get_feed_markers(app)}")
        print(f"  not_feed: {get_not_feed_markers(app)}")
