"""Tests for the recognizer state machine, voting and cooldown."""

import math

import numpy as np
import pytest

from jestures.dtw import DtwMatcher
from jestures.listeners import RecognitionListener
from jestures.recognizer import Recognizer, RecognitionState, vote
from jestures.serialization import UserManager
from jestures.settings import RecognitionSettings, SettingsError


class FakeClock:
    def __init__(self, start=0.0):
        self.now = start

    def __call__(self):
        return self.now


class EventCollector(RecognitionListener):
    def __init__(self):
        super().__init__()
        self.gestures = []
        self.frames = 0
        self.windows = 0
        self.settings = []

    def on_frame(self, frame_index, derivative, distance_vector):
        self.frames += 1

    def on_window_ready(self):
        self.windows += 1

    def on_gesture_recognized(self, name):
        self.gestures.append(name)

    def on_settings_changed(self, settings):
        self.settings.append(settings)


def offset_template(n, dx):
    """n points at (dx, 0): DTW against an all-zero window of length m >= n is m * dx."""
    t = np.zeros((n, 2))
    t[:, 0] = dx
    return t


def make_settings(**overrides):
    values = dict(
        window_length=10,
        update_rate=5,
        dtw_radius=3,
        min_dtw_threshold=0,
        max_dtw_threshold=10,
        match_number=1,
        min_time_separation=1000,
    )
    values.update(overrides)
    return RecognitionSettings(**values)


WINDOW = np.zeros((10, 2))


class TestVote:
    def test_majority_wins(self):
        assert vote([("wave", 1.0), ("wave", 2.0), ("push", 1.0)], match_number=1) == "wave"

    def test_count_must_exceed_match_number(self):
        assert vote([("wave", 1.0), ("wave", 2.0)], match_number=2) is None

    def test_empty(self):
        assert vote([], match_number=0) is None

    def test_tie_broken_by_distance_sum(self):
        candidates = [("wave", 3.0), ("wave", 3.0), ("push", 2.0), ("push", 2.5)]
        assert vote(candidates, match_number=0) == "push"

    def test_tie_broken_by_name(self):
        candidates = [("wave", 1.0), ("push", 1.0)]
        assert vote(candidates, match_number=0) == "push"


class TestMatching:
    def test_scenario_two_of_three_templates_vote(self):
        templates = {"wave": [offset_template(10, 0.5), offset_template(10, 0.6), offset_template(10, 5.0)]}
        rec = Recognizer(settings=make_settings(), templates=templates, clock=FakeClock())
        events = EventCollector()
        rec.add_listener(events)

        result = rec.recognize(WINDOW, now=0)

        assert sorted(round(d, 6) for _, d in result.candidates) == [5.0, 6.0]
        assert result.votes == {"wave": 2}
        assert result.gesture == "wave"
        assert events.gestures == ["wave"]
        assert rec.state is RecognitionState.HOLDING

    def test_thresholds_are_exclusive(self):
        templates = {"wave": [offset_template(10, 0.5), offset_template(10, 1.0)]}
        settings = make_settings(min_dtw_threshold=5, max_dtw_threshold=10, match_number=0)
        rec = Recognizer(settings=settings, templates=templates)
        result = rec.match(WINDOW)
        assert result.candidates == []
        assert result.gesture is None

    def test_zero_distance_ignored_by_min_threshold(self):
        templates = {"still": [np.zeros((10, 2))] * 3}
        rec = Recognizer(settings=make_settings(match_number=0), templates=templates)
        assert rec.recognize(WINDOW, now=0).gesture is None

    def test_not_enough_votes(self):
        templates = {"wave": [offset_template(10, 0.5), offset_template(10, 5.0)]}
        rec = Recognizer(settings=make_settings(match_number=1), templates=templates)
        result = rec.recognize(WINDOW, now=0)
        assert result.votes == {"wave": 1}
        assert result.gesture is None
        assert rec.state is RecognitionState.IDLE

    def test_most_votes_win(self):
        templates = {
            "wave": [offset_template(10, 0.5)] * 2,
            "push": [offset_template(10, 0.2)] * 3,
        }
        rec = Recognizer(settings=make_settings(), templates=templates)
        assert rec.recognize(WINDOW, now=0).gesture == "push"

    def test_empty_library_never_fires(self):
        rec = Recognizer(settings=make_settings(match_number=0))
        events = EventCollector()
        rec.add_listener(events)
        for i in range(100):
            rec.on_sample([math.sin(i / 3.0), math.cos(i / 5.0)])
        assert events.gestures == []
        assert rec.state is RecognitionState.IDLE
        assert rec.stats.passes > 0

    def test_scores_through_matcher_with_settings_radius(self):
        calls = []

        class RecordingMatcher(DtwMatcher):
            def distance(self, template, candidate, radius=None):
                calls.append(radius)
                return super().distance(template, candidate, radius)

        templates = {"wave": [offset_template(10, 0.5)] * 2}
        rec = Recognizer(settings=make_settings(dtw_radius=2), templates=templates,
                         matcher=RecordingMatcher(radius=9))
        assert rec.recognize(WINDOW, now=0).gesture == "wave"
        assert calls == [2, 2]

    def test_pass_timing_recorded(self):
        templates = {"wave": [offset_template(10, 0.5)] * 4}
        rec = Recognizer(settings=make_settings(), templates=templates)
        rec.recognize(WINDOW, now=0)
        summary = rec.stats.profiler_summary
        assert summary["passes"] == 1
        assert set(summary["stages"]) == {"matching", "voting", "dispatch"}
        assert summary["per_template_ms"] is not None

    def test_window_not_mutated(self):
        templates = {"wave": [offset_template(10, 0.5)] * 2}
        rec = Recognizer(settings=make_settings(), templates=templates)
        window = np.zeros((10, 2))
        rec.recognize(window, now=0)
        np.testing.assert_array_equal(window, np.zeros((10, 2)))


class TestCooldown:
    def make(self, **overrides):
        templates = {"wave": [offset_template(10, 0.5)] * 2}
        clock = FakeClock()
        rec = Recognizer(settings=make_settings(**overrides), templates=templates, clock=clock)
        events = EventCollector()
        rec.add_listener(events)
        return rec, events, clock

    def test_held_gesture_fires_once(self):
        rec, events, _ = self.make(min_time_separation=1000)
        assert rec.recognize(WINDOW, now=0).gesture == "wave"
        assert rec.recognize(WINDOW, now=100) is None
        assert events.gestures == ["wave"]
        assert rec.stats.skipped_passes == 1

    def test_fires_again_after_separation(self):
        rec, events, _ = self.make(min_time_separation=1000)
        rec.recognize(WINDOW, now=0)
        assert rec.recognize(WINDOW, now=1000) is None  # separation is exclusive
        assert rec.recognize(WINDOW, now=1001).gesture == "wave"
        assert events.gestures == ["wave", "wave"]
        assert rec.last_fire_time == 1001

    def test_no_match_returns_to_idle(self):
        rec, events, _ = self.make(min_time_separation=1000)
        rec.recognize(WINDOW, now=0)
        rec.set_templates({})
        # Cooldown is over, pass runs but finds nothing
        assert rec.recognize(WINDOW, now=2000).gesture is None
        assert rec.state is RecognitionState.IDLE
        rec.set_templates({"wave": [offset_template(10, 0.5)] * 2})
        # Idle matches immediately, regardless of the last fire time
        assert rec.recognize(WINDOW, now=2010).gesture == "wave"

    def test_streamed_windows_100ms_apart(self):
        rec, events, clock = self.make(min_time_separation=1000)
        # 20 ms per sample: windows ready at samples 5, 10 and 15. The first is
        # warm-up, the other two are 100 ms apart.
        for i in range(15):
            clock.now = i * 20.0
            rec.on_sample([0.0, 0.0])
        assert events.windows == 3
        assert events.gestures == ["wave"]

    def test_zero_separation_fires_every_window(self):
        rec, events, clock = self.make(min_time_separation=0)
        for i in range(30):
            clock.now = i * 20.0
            rec.on_sample([0.0, 0.0])
        assert events.windows == 6
        assert len(events.gestures) == 5


class TestWindowReadiness:
    def test_one_ready_window_every_update_rate_samples(self):
        rec = Recognizer(settings=make_settings(window_length=30, update_rate=5))
        fired_at = []

        class Marker(RecognitionListener):
            def on_window_ready(self):
                fired_at.append(rec.tracker.accepted_samples)

        rec.add_listener(Marker())
        for i in range(60):
            rec.on_sample([i, 0])
        assert fired_at == list(range(5, 65, 5))
        assert rec.stats.passes == 7

    def test_ready_windows_counted_from_first_sample(self):
        rec = Recognizer(settings=make_settings(window_length=30, update_rate=5))
        events = EventCollector()
        rec.add_listener(events)
        for i in range(30):
            rec.on_sample([i, 0])
        assert events.windows == 6
        # Only the full window is matched
        assert rec.stats.passes == 1

    def test_rejected_samples_do_not_count(self):
        rec = Recognizer(settings=make_settings(window_length=10, update_rate=5))
        events = EventCollector()
        rec.add_listener(events)
        for i in range(10):
            rec.on_sample([i, 0])
            rec.on_sample([math.nan, 0])
        assert events.windows == 2
        assert events.frames == 10
        assert rec.stats.rejected_samples == 10

    def test_update_rate_change_applies_to_next_window(self):
        rec = Recognizer(settings=make_settings(window_length=10, update_rate=5))
        events = EventCollector()
        rec.add_listener(events)
        for i in range(10):
            rec.on_sample([i, 0])
        rec.set_update_rate(2)
        for i in range(10):
            rec.on_sample([i, 0])
        assert events.windows == 2 + 5

    def test_skeleton_samples(self):
        rec = Recognizer(settings=make_settings(window_length=10, update_rate=10))
        events = EventCollector()
        rec.add_listener(events)
        for i in range(10):
            rec.on_skeleton_sample([0.5 + i * 0.01, 0.5], [0.5, 0.5])
        assert events.windows == 1


class TestConfiguration:
    def test_invalid_update_rate_rejected(self):
        rec = Recognizer(settings=make_settings(window_length=30, update_rate=5))
        with pytest.raises(SettingsError):
            rec.set_update_rate(7)
        assert rec.settings.update_rate == 5

    def test_setters(self):
        rec = Recognizer(settings=make_settings())
        rec.set_dtw_radius(2)
        rec.set_max_dtw_threshold(50)
        rec.set_min_dtw_threshold(1)
        rec.set_min_time_separation(250)
        rec.set_match_number(3)
        s = rec.settings
        assert (s.dtw_radius, s.min_dtw_threshold, s.max_dtw_threshold) == (2, 1, 50)
        assert (s.min_time_separation, s.match_number) == (250, 3)

    def test_settings_property_is_snapshot(self):
        rec = Recognizer(settings=make_settings())
        rec.settings.set_match_number(9)
        assert rec.settings.match_number == 1

    def test_window_length_resizes_tracker(self):
        rec = Recognizer(settings=make_settings(window_length=10, update_rate=5))
        rec.set_window_length(20)
        assert rec.tracker.window_length == 20
        with pytest.raises(SettingsError):
            rec.set_window_length(12)
        assert rec.tracker.window_length == 20

    def test_profile_operations_need_serializer(self):
        rec = Recognizer()
        with pytest.raises(RuntimeError):
            rec.load_user_profile("alice")
        assert rec.get_user_name() is None


class TestProfiles:
    def test_load_user_profile(self, tmp_path):
        manager = UserManager(tmp_path)
        manager.load_or_create_user("alice")
        manager.set_recognition_settings(make_settings(window_length=20, update_rate=4))
        manager.add_all_feature_vectors("wave", [offset_template(20, 0.2)] * 2)

        rec = Recognizer(serializer=UserManager(tmp_path))
        events = EventCollector()
        rec.add_listener(events)

        assert rec.load_user_profile("alice") is True
        assert rec.get_user_name() == "alice"
        assert rec.tracker.window_length == 20
        assert rec.settings.update_rate == 4
        assert list(rec.templates) == ["wave"]
        assert rec.get_all_user_gestures() == ["wave"]
        assert len(rec.get_gesture_dataset("wave")) == 2
        assert events.settings[0].window_length == 20

    def test_new_user_starts_empty(self, tmp_path):
        rec = Recognizer(serializer=UserManager(tmp_path))
        assert rec.load_user_profile("bob") is False
        assert len(rec.templates) == 0

    def test_save_settings(self, tmp_path):
        rec = Recognizer(serializer=UserManager(tmp_path))
        rec.load_user_profile("alice")
        rec.set_match_number(5)
        rec.save_settings()

        other = UserManager(tmp_path)
        other.load_or_create_user("alice")
        assert other.get_recognition_settings().match_number == 5

    def test_reload_templates_after_new_recording(self, tmp_path):
        manager = UserManager(tmp_path)
        rec = Recognizer(serializer=manager)
        rec.load_user_profile("alice")
        manager.add_feature_vector("push", offset_template(30, 0.1))
        assert len(rec.templates) == 0
        rec.reload_templates()
        assert list(rec.templates) == ["push"]

    def test_storage_failure_propagates(self, tmp_path):
        (tmp_path / "alice.json").write_text("[broken")
        rec = Recognizer(serializer=UserManager(tmp_path))
        with pytest.raises(ValueError):
            rec.load_user_profile("alice")


class TestEndToEnd:
    def test_recorded_gesture_recognized_in_stream(self):
        # A horizontal sweep recorded three times with slight variations
        base = np.column_stack([np.linspace(0, 1, 30), np.zeros(30)])
        templates = {
            "swipe": [base, base + [0.0, 0.02], base * 1.05],
            "lift": [np.column_stack([np.zeros(30), np.linspace(0, 1, 30)])] * 3,
        }
        settings = RecognitionSettings(
            window_length=30, update_rate=5, dtw_radius=5,
            min_dtw_threshold=0.0, max_dtw_threshold=3.0,
            match_number=1, min_time_separation=1000,
        )
        clock = FakeClock()
        rec = Recognizer(settings=settings, templates=templates, clock=clock)
        got = []
        rec.on_gesture(got.append)

        for i, point in enumerate(base):
            clock.now = i * 33.0
            rec.on_sample(point)

        assert got == ["swipe"]
        assert rec.metrics.gesture_counts == {"swipe": 1}

    def test_background_passes(self):
        templates = {"wave": [offset_template(10, 0.5)] * 2}
        clock = FakeClock()
        got = []
        with Recognizer(settings=make_settings(min_time_separation=0), templates=templates,
                        clock=clock, background=True) as rec:
            rec.on_gesture(got.append)
            for i in range(20):
                clock.now = i * 20.0
                rec.on_sample([0.0, 0.0])
            rec.flush(timeout=10)
        assert got == ["wave", "wave", "wave"]

    def test_background_failure_logged_with_traceback(self, caplog):
        class BrokenMatcher(DtwMatcher):
            def distance(self, template, candidate, radius=None):
                raise RuntimeError("matcher exploded")

        templates = {"wave": [offset_template(10, 0.5)]}
        with Recognizer(settings=make_settings(), templates=templates,
                        background=True, matcher=BrokenMatcher()) as rec:
            with caplog.at_level("ERROR", logger="jestures.recognizer"):
                for _ in range(10):
                    rec.on_sample([0.0, 0.0])
                rec.flush(timeout=10)

        failures = [r for r in caplog.records if "Background recognition pass failed" in r.getMessage()]
        assert len(failures) == 1
        assert failures[0].exc_info is not None
        assert failures[0].exc_info[0] is RuntimeError
