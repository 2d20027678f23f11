"""Snapshot and event builders plus a scriptable host for the tests."""
from device_bridge import HostEnvironment
from event_normalizer import EventKind, UIEvent
from ui_snapshot import UiNode, UiSnapshot

INSTAGRAM = "com.instagram.android"
YOUTUBE = "com.google.android.youtube"
REELS_PAGER = "com.instagram.android:id/clips_viewer_view_pager"
PROFILE_HEADER = "com.instagram.android:id/profile_header_container"

SCREEN = (0, 0, 1080, 2400)


def feed_snapshot(caption="", marker=REELS_PAGER):
    """Reels viewer with one caption line (no caption = no visible text)."""
    nodes = [UiNode(resource_id=marker, class_name="androidx.viewpager.widget.ViewPager",
                    bounds=SCREEN, scrollable=True)]
    if caption:
        nodes.append(UiNode(resource_id="com.instagram.android:id/clips_caption",
                            class_name="android.widget.TextView",
                            text=caption, bounds=(40, 2000, 1040, 2100)))
    return UiSnapshot(nodes)


def profile_snapshot():
    return UiSnapshot([
        UiNode(resource_id=PROFILE_HEADER, class_name="android.widget.LinearLayout",
               bounds=(0, 200, 1080, 900)),
        UiNode(resource_id="com.instagram.android:id/row_profile_header_textview_biography",
               class_name="android.widget.TextView", text="bio", bounds=(40, 700, 1040, 800)),
    ])


def ui_event(app_id, t, snapshot=None, kind=EventKind.CONTENT_CHANGED, dy=None, text=None):
    return UIEvent(app_id=app_id, kind=kind, content_descriptor=text,
                   scroll_delta_y=dy, snapshot=snapshot, timestamp_ms=t)


class FakeHost(HostEnvironment):
    """Scriptable host: set attributes, then count what the engine did."""

    def __init__(self):
        self.snapshot = None
        self.snapshot_error = None
        self.activity = None
        self.playback = None
        self.media_error = None
        self.snapshot_calls = 0
        self.activity_calls = 0
        self.media_calls = 0
        self.exit_actions = 0
        self.notifications = []

    def get_current_ui_snapshot(self):
        self.snapshot_calls += 1
        if self.snapshot_error:
            raise self.snapshot_error
        return self.snapshot

    def query_recent_foreground_activity(self, app_id, window_ms):
        self.activity_calls += 1
        return self.activity

    def query_active_media_playback(self, app_id):
        self.media_calls += 1
        if self.media_error:
            raise self.media_error
        return self.playback

    def perform_exit_action(self):
        self.exit_actions += 1

    def present_notification(self, app_display_name):
        self.notifications.append(app_display_name)
