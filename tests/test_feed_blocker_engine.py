from blocker_config import BlockerConfig
from content_fingerprint import compute_fingerprint
from event_normalizer import EventKind
from fallback_signals import MediaPlayback
from feed_blocker_engine import QueryThrottle
from feed_state_machine import FeedPhase
from research_dashboard import InMemoryDiagnosticsSink, Verdict
from ui_snapshot import UiNode, UiSnapshot

from helpers import INSTAGRAM, YOUTUBE, SCREEN, feed_snapshot, profile_snapshot, ui_event


# ==================== scenarios ====================

def test_swipe_after_grace_blocks(make_engine, host):
    engine = make_engine()

    assert engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("first"))) is None
    assert engine.on_event(ui_event(INSTAGRAM, 500, feed_snapshot("second"))) is None

    state = engine.store.peek(INSTAGRAM)
    assert state.feed_state.last_fingerprint == compute_fingerprint(feed_snapshot("second"))
    assert state.feed_state.swipe_count == 0

    assert engine.on_event(ui_event(INSTAGRAM, 2200, feed_snapshot("third"))) == "swipe"
    assert host.notifications == ["Instagram"]

    # Back presses are delayed
    assert host.exit_actions == 0
    engine.tick(2200 + 450)
    assert host.exit_actions == 1
    engine.tick(2200 + 550)
    assert host.exit_actions == 2


def test_not_in_feed_resets_and_restarts_grace(make_engine):
    engine = make_engine()

    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    engine.on_event(ui_event(INSTAGRAM, 100, profile_snapshot()))
    assert engine.store.peek(INSTAGRAM).feed_state is None

    engine.on_event(ui_event(INSTAGRAM, 1000, feed_snapshot("b")))
    assert engine.store.peek(INSTAGRAM).feed_state.entry_time_ms == 1000

    # 2500 is past the old entry's grace but inside the new one
    assert engine.on_event(ui_event(INSTAGRAM, 2500, feed_snapshot("c"))) is None
    assert engine.on_event(ui_event(INSTAGRAM, 3100, feed_snapshot("d"))) == "swipe"


def test_second_trigger_inside_cooldown_is_dropped(make_engine, host):
    engine = make_engine(BlockerConfig(grace_period_ms=500))

    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    assert engine.on_event(ui_event(INSTAGRAM, 600, feed_snapshot("b"))) == "swipe"

    shorts = "com.google.android.youtube:id/reel_recycler"
    engine.on_event(ui_event(YOUTUBE, 700, feed_snapshot("x", marker=shorts)))
    # Computed 800ms after the first block: dropped
    assert engine.on_event(ui_event(YOUTUBE, 1400, feed_snapshot("y", marker=shorts))) is None

    engine.tick(10000)
    assert host.exit_actions == 2
    assert host.notifications == ["Instagram"]
    assert engine.gate.state.block_count == 1


def test_scroll_burst_fires_once_while_unknown(make_engine):
    engine = make_engine()

    results = [engine.on_event(ui_event(INSTAGRAM, 0))]
    for t in (5000, 10000, 15000, 20000):
        results.append(engine.on_event(ui_event(INSTAGRAM, t, kind=EventKind.SCROLLED, dy=900)))
    for t in (25000, 30000, 35000):
        results.append(engine.on_event(ui_event(INSTAGRAM, t)))

    assert [r for r in results if r] == ["scroll_burst"]
    assert results[3] == "scroll_burst"
    # Window restarted after firing: only the 4th scroll is in it
    assert engine.scroll_counter.current_count(engine.store.peek(INSTAGRAM), 20000) == 1


# ==================== invariants ====================

def test_non_monitored_app_gets_no_state(make_engine, host):
    engine = make_engine()
    other = "com.example.notes"

    for t in (0, 500, 3000, 130000):
        assert engine.on_event(ui_event(other, t, feed_snapshot(f"n{t}"))) is None

    assert engine.store.tracked_apps() == []
    assert host.snapshot_calls == 0
    assert host.media_calls == 0


def test_system_and_own_packages_are_discarded(make_engine):
    engine = make_engine()
    assert engine.on_raw_event({'package': 'com.android.systemui', 'event_type': 2048}) is None
    assert engine.on_raw_event({'package': engine.config.self_package, 'event_type': 2048}) is None
    assert engine.tracker.foreground is None


def test_first_item_never_blocks_even_long_after_entry(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, profile_snapshot()))
    assert engine.on_event(ui_event(INSTAGRAM, 60000, feed_snapshot("opened"))) is None
    assert engine.store.peek(INSTAGRAM).feed_state.phase == FeedPhase.ENTERED


def test_app_switch_resets_both_apps(make_engine):
    engine = make_engine()

    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    engine.on_event(ui_event(YOUTUBE, 100))
    assert engine.store.peek(INSTAGRAM) is None

    engine.on_event(ui_event(INSTAGRAM, 200, feed_snapshot("b")))
    assert engine.store.peek(YOUTUBE) is None
    assert engine.store.peek(INSTAGRAM).feed_state.entry_time_ms == 200

    # Grace counts from the re-entry
    assert engine.on_event(ui_event(INSTAGRAM, 2100, feed_snapshot("c"))) is None
    assert engine.on_event(ui_event(INSTAGRAM, 2300, feed_snapshot("d"))) == "swipe"


def test_zero_fingerprint_only_seeds(make_engine):
    engine = make_engine()

    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("")))
    assert engine.store.peek(INSTAGRAM).feed_state.last_fingerprint == 0

    assert engine.on_event(ui_event(INSTAGRAM, 2500, feed_snapshot("loaded"))) is None
    assert engine.on_event(ui_event(INSTAGRAM, 2600, feed_snapshot(""))) is None
    assert engine.on_event(ui_event(INSTAGRAM, 2700, feed_snapshot("next"))) == "swipe"


def test_event_text_fingerprints_a_pager_without_text(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot(), text="clip one"))
    assert engine.on_event(ui_event(INSTAGRAM, 500, feed_snapshot(), text="clip two")) is None
    assert engine.on_event(ui_event(INSTAGRAM, 2200, feed_snapshot(), text="clip three")) == "swipe"

def test_feed_state_is_reset_after_a_swipe_trigger(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    engine.on_event(ui_event(INSTAGRAM, 2500, feed_snapshot("b")))
    assert engine.store.peek(INSTAGRAM).feed_state is None


def test_unknown_does_not_reset_feed_state(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    engine.on_event(ui_event(INSTAGRAM, 1000, UiSnapshot([])))

    state = engine.store.peek(INSTAGRAM)
    assert state.feed_state is not None
    assert state.unknown_since_ms == 1000


# ==================== generic strategy ====================

def test_monitored_app_without_table_entry_uses_generic_strategy(make_engine):
    app = "com.example.clips"
    engine = make_engine(BlockerConfig(monitored_apps=frozenset({app})))

    def pager(caption):
        return UiSnapshot([
            UiNode(resource_id=f"{app}:id/main_pager", class_name="androidx.viewpager2.widget.ViewPager2",
                   bounds=SCREEN, scrollable=True),
            UiNode(resource_id=f"{app}:id/title", text=caption, bounds=(0, 2000, 1080, 2100)),
        ])

    engine.on_event(ui_event(app, 0, pager("one")))
    assert engine.on_event(ui_event(app, 2500, pager("two"))) == "swipe"


# ==================== fallbacks ====================

def test_scroll_counts_before_starvation_but_fires_only_when_armed(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0))

    for t in (100, 700, 1300):
        assert engine.on_event(ui_event(INSTAGRAM, t, kind=EventKind.SCROLLED, dy=500)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 3500, kind=EventKind.SCROLLED, dy=500)) == "scroll_burst"


def test_scroll_burst_needs_structural_starvation(make_engine):
    engine = make_engine()
    reasons = []
    for t in range(0, 8000, 1000):
        engine.on_event(ui_event(INSTAGRAM, t, profile_snapshot()))
        reasons.append(engine.on_event(ui_event(INSTAGRAM, t + 600, kind=EventKind.SCROLLED, dy=700,
                                                snapshot=profile_snapshot())))
    assert not any(reasons)


def test_scrolls_on_a_visible_screen_do_not_carry_over(make_engine):
    engine = make_engine()
    for t in (0, 600, 1200):
        engine.on_event(ui_event(INSTAGRAM, t, profile_snapshot(), kind=EventKind.SCROLLED, dy=700))
    for t in range(1300, 4000, 500):
        assert engine.on_event(ui_event(INSTAGRAM, t)) is None

    # Starved now, but only this scroll counts
    assert engine.on_event(ui_event(INSTAGRAM, 4400, kind=EventKind.SCROLLED, dy=700)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 5000, kind=EventKind.SCROLLED, dy=700)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 5600, kind=EventKind.SCROLLED, dy=700)) == "scroll_burst"


def test_structural_verdict_clears_counted_scrolls(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0))
    for t in (100, 700):
        engine.on_event(ui_event(INSTAGRAM, t, kind=EventKind.SCROLLED, dy=500))
    assert engine.scroll_counter.current_count(engine.store.peek(INSTAGRAM), 700) == 2

    engine.on_event(ui_event(INSTAGRAM, 800, feed_snapshot("a")))
    assert engine.scroll_counter.current_count(engine.store.peek(INSTAGRAM), 800) == 0

def test_dwell_time_fallback(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0))

    assert engine.on_event(ui_event(INSTAGRAM, 60000)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 120000)) == "dwell_time"
    assert engine.on_event(ui_event(INSTAGRAM, 150000)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 180000)) == "dwell_time"


def test_dropped_dwell_warning_is_retried_after_cooldown(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0))
    results = [engine.on_event(ui_event(INSTAGRAM, t, kind=EventKind.SCROLLED, dy=600))
               for t in (118000, 118500, 119000)]
    assert results == [None, None, "scroll_burst"]

    # Dwell ceiling reached inside the global cooldown: dropped, not remembered
    assert engine.on_event(ui_event(INSTAGRAM, 120000)) is None
    assert engine.store.peek(INSTAGRAM).last_dwell_warning_ms is None
    assert engine.on_event(ui_event(INSTAGRAM, 122500)) == "dwell_time"

def test_dwell_time_ignored_while_structure_is_available(make_engine):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, profile_snapshot()))
    assert engine.on_event(ui_event(INSTAGRAM, 130000, profile_snapshot())) is None


def test_media_resets_corroborate_but_never_fire(make_engine, host):
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0))

    for t, title in ((4000, "a"), (5000, "b"), (6000, "c"), (7000, "d")):
        host.playback = MediaPlayback(state="playing", position_ms=1000, duration_ms=15000, title=title)
        assert engine.on_event(ui_event(INSTAGRAM, t)) is None

    state = engine.store.peek(INSTAGRAM)
    assert state.media.reset_count == 3
    assert state.media.last_title_fingerprint != 0

    # Media resets never stand in for scrolls: the burst still needs three of them
    assert engine.on_event(ui_event(INSTAGRAM, 7600, kind=EventKind.SCROLLED, dy=800)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 8200, kind=EventKind.SCROLLED, dy=800)) is None
    assert engine.on_event(ui_event(INSTAGRAM, 8800, kind=EventKind.SCROLLED, dy=800)) == "scroll_burst"


def test_media_permission_denied_disables_feature(make_engine, host):
    host.media_error = PermissionError("denied")
    engine = make_engine()

    for t in (0, 1000, 2000, 3000):
        engine.on_event(ui_event(INSTAGRAM, t))

    assert host.media_calls == 1
    assert engine.media_enabled is False


def test_failing_queries_become_unknown(make_engine, host):
    host.snapshot_error = RuntimeError("session gone")
    host.media_error = OSError("adb offline")
    engine = make_engine()

    assert engine.on_event(ui_event(INSTAGRAM, 0)) is None
    assert engine.store.peek(INSTAGRAM).unknown_since_ms == 0
    assert engine.media_enabled is True


def test_snapshot_queries_are_throttled(make_engine, host):
    engine = make_engine()
    for t in (0, 100, 200, 499, 500):
        engine.on_event(ui_event(INSTAGRAM, t))
    assert host.snapshot_calls == 2


def test_activity_hint_is_recorded(make_engine, host):
    host.activity = "com.instagram.android.clips.ReelsActivity"
    engine = make_engine()
    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))

    state = engine.store.peek(INSTAGRAM)
    assert state.last_activity == host.activity
    assert state.feed_activity_hint is True


def test_query_throttle():
    throttle = QueryThrottle(1000)
    assert throttle.allow(0)
    assert not throttle.allow(999)
    assert throttle.allow(1000)


# ==================== diagnostics ====================

def test_diagnostics_sink_sees_verdicts(make_engine):
    sink = InMemoryDiagnosticsSink()
    engine = make_engine(diagnostics=sink)

    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    assert sink.latest.verdict == Verdict.WATCHING
    assert sink.latest.snapshot_available

    engine.on_event(ui_event(INSTAGRAM, 100, profile_snapshot()))
    assert sink.latest.verdict == Verdict.SAFE

    engine.on_event(ui_event(INSTAGRAM, 200, feed_snapshot("b")))
    engine.on_event(ui_event(INSTAGRAM, 2300, feed_snapshot("c")))
    assert sink.latest.blocked
    assert sink.latest.trigger_reason == "swipe"
    assert sink.latest.verdict == Verdict.FEED_DETECTED


def test_broken_sink_does_not_change_decisions(make_engine):
    class BrokenSink:
        def update(self, state):
            raise IOError("disk full")

    engine = make_engine(diagnostics=[BrokenSink()])
    engine.on_event(ui_event(INSTAGRAM, 0, feed_snapshot("a")))
    assert engine.on_event(ui_event(INSTAGRAM, 2500, feed_snapshot("b"))) == "swipe"
