"""Template-matching gesture recognizer.

Owns a ``Tracker`` and watches its frames. Every ``update_rate`` accepted
frames listeners get ``on_window_ready``; once the window is full, that window
is also scored against every template of the active user with DTW. Templates whose distance falls strictly between
the min and max thresholds vote for their gesture; the gesture with the most
votes wins if it has more than ``match_number`` votes.

After a win the recognizer is *holding*: further windows are ignored until
``min_time_separation`` ms have passed, so a gesture that is still being
performed does not fire on every window. A pass without a winner drops back
to *idle*, where every ready window is matched.

Usage:
    recognizer = Recognizer(serializer=UserManager("profiles/"))
    recognizer.load_user_profile("alice")
    recognizer.on_gesture(lambda name: print("Recognized", name))
    # In the sensor loop:
    recognizer.on_skeleton_sample(hand, shoulder)
"""

from __future__ import annotations

import logging
import threading
import time
from abc import ABC, abstractmethod
from collections import Counter
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Mapping, Optional

import numpy as np

from jestures.codifier import FeatureCodifier
from jestures.dtw import DtwMatcher
from jestures.listeners import CallbackListener, FrameObserver, ListenerRegistry, RecognitionListener
from jestures.metrics import MetricsCollector
from jestures.profiler import PassTiming, RecognitionProfiler
from jestures.serialization import Serializer
from jestures.settings import RecognitionSettings
from jestures.templates import TemplateLibrary, TemplateStore
from jestures.tracker import Tracker

logger = logging.getLogger("jestures.recognizer")


class RecognitionState(Enum):
    IDLE = "idle"
    HOLDING = "holding"


@dataclass
class RecognitionResult:
    """Outcome of one matching pass."""
    gesture: Optional[str]
    votes: dict[str, int]
    distance_sums: dict[str, float]
    candidates: list[tuple[str, float]]
    timestamp: float

    @property
    def recognized(self) -> bool:
        return self.gesture is not None


@dataclass
class RecognizerStats:
    """Runtime counters."""
    state: RecognitionState
    accepted_samples: int
    rejected_samples: int
    passes: int
    skipped_passes: int
    gestures: dict[str, int] = field(default_factory=dict)
    profiler_summary: dict = field(default_factory=dict)


def vote(candidates: list[tuple[str, float]], match_number: int) -> Optional[str]:
    """Pick the winning gesture from (name, distance) candidates.

    Each candidate is one vote. The most-voted name wins only if its count is
    strictly greater than ``match_number``. Equal counts go to the lower sum
    of candidate distances, then to the alphabetically first name.
    """
    if not candidates:
        return None
    votes: Counter = Counter()
    sums: dict[str, float] = {}
    for name, dist in candidates:
        votes[name] += 1
        sums[name] = sums.get(name, 0.0) + dist

    best = min(votes, key=lambda name: (-votes[name], sums[name], name))
    if votes[best] > match_number:
        return best
    return None


def _monotonic_ms() -> float:
    return time.monotonic() * 1000.0


class Recognition(ABC):
    """Capability interface of a recognizer, as seen by sensors and UIs."""

    @abstractmethod
    def on_skeleton_sample(self, primary_joint, secondary_joint) -> bool:
        ...

    @abstractmethod
    def on_acceleration_sample(self, acceleration) -> bool:
        ...

    @abstractmethod
    def recognize(self, window: np.ndarray, now: Optional[float] = None) -> Optional[RecognitionResult]:
        ...

    @abstractmethod
    def load_user_profile(self, name: str) -> bool:
        ...

    @abstractmethod
    def save_settings(self):
        ...

    @abstractmethod
    def get_all_user_gestures(self) -> list[str]:
        ...

    @abstractmethod
    def add_listener(self, listener: RecognitionListener) -> RecognitionListener:
        ...

    @abstractmethod
    def remove_listener(self, listener: RecognitionListener) -> bool:
        ...

    @abstractmethod
    def set_dtw_radius(self, radius: float):
        ...

    @abstractmethod
    def set_min_dtw_threshold(self, threshold: float):
        ...

    @abstractmethod
    def set_max_dtw_threshold(self, threshold: float):
        ...

    @abstractmethod
    def set_update_rate(self, update_rate: int):
        ...

    @abstractmethod
    def set_min_time_separation(self, millis: float):
        ...

    @abstractmethod
    def set_match_number(self, match_number: int):
        ...


class Recognizer(FrameObserver, Recognition):
    """Tracker-driven DTW recognizer with vote thresholds and cooldown.

    Args:
        serializer: Profile storage; needed for profile loading and saving.
        settings: Initial settings (copied). Defaults to ``RecognitionSettings()``.
        templates: Initial template library, e.g. when running without a serializer.
        codifier: Raw-sample codifier handed to the tracker.
        clock: Returns the current time in milliseconds.
        background: Run matching passes on a single worker thread instead of
            inline. Passes stay ordered and never overlap.
        metrics: Optional collector for counters.
        enable_profiling: Keep per-pass stage timings for ``stats``.
        matcher: DTW scorer. The band radius always comes from the settings.
    """

    def __init__(
        self,
        serializer: Optional[Serializer] = None,
        settings: Optional[RecognitionSettings] = None,
        templates: Optional[Mapping] = None,
        codifier: Optional[FeatureCodifier] = None,
        clock: Optional[Callable[[], float]] = None,
        background: bool = False,
        metrics: Optional[MetricsCollector] = None,
        enable_profiling: bool = True,
        matcher: Optional[DtwMatcher] = None,
    ):
        self._serializer = serializer
        self._settings = settings.copy() if settings is not None else RecognitionSettings()
        self._settings_lock = threading.Lock()
        self._store = TemplateStore(
            templates if isinstance(templates, TemplateLibrary) or templates is None
            else TemplateLibrary(templates)
        )
        self._listeners: ListenerRegistry[RecognitionListener] = ListenerRegistry("recognizer")
        self._clock = clock or _monotonic_ms
        self.metrics = metrics or MetricsCollector()
        self.matcher = matcher or DtwMatcher()
        self.profiler = RecognitionProfiler()
        self.profiler.enabled = enable_profiling

        self._state = RecognitionState.IDLE
        self._last_fire_time: Optional[float] = None
        self._pass_lock = threading.Lock()
        self._executor = (
            ThreadPoolExecutor(max_workers=1, thread_name_prefix="jestures-recognizer")
            if background else None
        )

        self.tracker = Tracker(self._settings.window_length, codifier)
        self.tracker.add_observer(self)

    # --- Sensor input ---

    def on_skeleton_sample(self, primary_joint, secondary_joint) -> bool:
        return self.tracker.on_skeleton_sample(primary_joint, secondary_joint)

    def on_acceleration_sample(self, acceleration) -> bool:
        return self.tracker.on_acceleration_sample(acceleration)

    def on_sample(self, feature) -> bool:
        return self.tracker.on_sample(feature)

    # --- Tracker callbacks ---

    def on_frame_change(self, frame_index, window, derivative, distance_vector):
        self.metrics.record_sample(accepted=True)
        self._listeners.dispatch("on_frame", frame_index, derivative, distance_vector)

        if (frame_index + 1) % self.settings.update_rate == 0:
            self._on_window_ready(window)

    def on_sample_rejected(self, sample):
        self.metrics.record_sample(accepted=False)

    def _on_window_ready(self, window: np.ndarray):
        self._listeners.dispatch("on_window_ready")
        # Partial windows during warm-up are announced but not matched
        if len(window) < self.tracker.window_length:
            return
        now = self._clock()
        if self._executor is None:
            self.recognize(window, now)
        else:
            future = self._executor.submit(self.recognize, window, now)
            future.add_done_callback(_log_failure)

    # --- Recognition ---

    def recognize(self, window: np.ndarray, now: Optional[float] = None) -> Optional[RecognitionResult]:
        """Run one recognition step on a window.

        Returns None if the step was skipped because a held gesture is still
        cooling down, otherwise the pass result (recognized or not).
        """
        now = self._clock() if now is None else now
        window = np.array(window, dtype=np.float64)
        window.setflags(write=False)
        settings = self.settings

        with self._pass_lock:
            if self._state is RecognitionState.HOLDING and not (
                now - self._last_fire_time > settings.min_time_separation
            ):
                self.metrics.record_skipped()
                logger.debug(
                    "Skipping window: %.0f ms since last gesture (< %.0f)",
                    now - self._last_fire_time, settings.min_time_separation,
                )
                return None

            timing = PassTiming()
            result = self.match(
                window, settings=settings, library=self._store.library, now=now, timing=timing
            )

            if result.recognized:
                self._state = RecognitionState.HOLDING
                self._last_fire_time = now
            else:
                self._state = RecognitionState.IDLE

        if result.recognized:
            logger.info(
                "Recognized %s (%d votes of %d candidates)",
                result.gesture, result.votes[result.gesture], len(result.candidates),
            )
            self.metrics.record_gesture(result.gesture)
            with timing.stage("dispatch"):
                self._listeners.dispatch("on_gesture_recognized", result.gesture)

        self.metrics.record_pass(timing.total_ms / 1000.0)
        self.profiler.record(timing)
        return result

    def match(
        self,
        window: np.ndarray,
        settings: Optional[RecognitionSettings] = None,
        library: Optional[TemplateLibrary] = None,
        now: float = 0.0,
        timing: Optional[PassTiming] = None,
    ) -> RecognitionResult:
        """Score a window against a library and vote. Does not change state."""
        settings = settings or self.settings
        library = library if library is not None else self._store.library
        timing = timing if timing is not None else PassTiming()

        candidates: list[tuple[str, float]] = []
        with timing.stage("matching"):
            for name, template in library.pairs():
                dist = self.matcher.distance(template, window, settings.dtw_radius)
                if settings.min_dtw_threshold < dist < settings.max_dtw_threshold:
                    candidates.append((name, dist))
        timing.templates = library.template_count

        with timing.stage("voting"):
            winner = vote(candidates, settings.match_number)
            votes = dict(Counter(name for name, _ in candidates))
            sums: dict[str, float] = {}
            for name, dist in candidates:
                sums[name] = sums.get(name, 0.0) + dist

        logger.debug(
            "Pass over %d templates: %d candidates %s -> %s",
            library.template_count, len(candidates), votes, winner,
        )
        return RecognitionResult(
            gesture=winner,
            votes=votes,
            distance_sums=sums,
            candidates=candidates,
            timestamp=now,
        )

    def flush(self, timeout: Optional[float] = None):
        """Wait until queued background passes have finished."""
        if self._executor is not None:
            self._executor.submit(lambda: None).result(timeout=timeout)

    # --- Listeners ---

    def add_listener(self, listener: RecognitionListener) -> RecognitionListener:
        return self._listeners.add(listener)

    def remove_listener(self, listener: RecognitionListener) -> bool:
        return self._listeners.remove(listener)

    def on_gesture(self, callback: Callable[[str], None]) -> RecognitionListener:
        """Register ``callback(name)`` for recognized gestures. Returns its listener."""
        return self.add_listener(CallbackListener(callback))

    # --- Profiles and templates ---

    def load_user_profile(self, name: str) -> bool:
        """Activate a user: load settings and templates. Returns True if the user existed."""
        serializer = self._require_serializer()
        existed = serializer.load_or_create_user(name)
        settings = serializer.get_recognition_settings()
        library = serializer.get_dataset_for_recognition()

        with self._settings_lock:
            self._settings = settings.copy()
        if self.tracker.window_length != settings.window_length:
            self.tracker.resize(settings.window_length)
        self._store.swap(library)
        with self._pass_lock:
            self._state = RecognitionState.IDLE
            self._last_fire_time = None

        logger.info("Activated profile %s (%d gestures)", name, len(library))
        self._listeners.dispatch("on_settings_changed", settings.copy())
        return existed

    def save_settings(self):
        """Persist the current settings to the active profile."""
        self._require_serializer().set_recognition_settings(self.settings)

    def reload_templates(self):
        """Swap in the serializer's current dataset, e.g. after a new recording."""
        self._store.swap(self._require_serializer().get_dataset_for_recognition())

    def set_templates(self, library: Mapping):
        self._store.swap(library)

    def get_all_user_gestures(self) -> list[str]:
        return self._require_serializer().get_all_user_gestures()

    def get_gesture_dataset(self, gesture_name: str) -> list[np.ndarray]:
        return self._require_serializer().get_gesture_dataset(gesture_name)

    def get_user_name(self) -> Optional[str]:
        return self._serializer.get_user_name() if self._serializer else None

    def _require_serializer(self) -> Serializer:
        if self._serializer is None:
            raise RuntimeError("Recognizer has no serializer")
        return self._serializer

    # --- Configuration ---

    @property
    def settings(self) -> RecognitionSettings:
        """Snapshot of the current settings."""
        with self._settings_lock:
            return self._settings.copy()

    def set_dtw_radius(self, radius: float):
        with self._settings_lock:
            self._settings.set_dtw_radius(radius)

    def set_min_dtw_threshold(self, threshold: float):
        with self._settings_lock:
            self._settings.set_min_dtw_threshold(threshold)

    def set_max_dtw_threshold(self, threshold: float):
        with self._settings_lock:
            self._settings.set_max_dtw_threshold(threshold)

    def set_update_rate(self, update_rate: int):
        with self._settings_lock:
            self._settings.set_update_rate(update_rate)

    def set_min_time_separation(self, millis: float):
        with self._settings_lock:
            self._settings.set_min_time_separation(millis)

    def set_match_number(self, match_number: int):
        with self._settings_lock:
            self._settings.set_match_number(match_number)

    def set_window_length(self, window_length: int):
        """Change the window length. Clears the tracker's buffer."""
        with self._settings_lock:
            self._settings.set_window_length(window_length)
        self.tracker.resize(window_length)

    # --- State ---

    @property
    def state(self) -> RecognitionState:
        return self._state

    @property
    def last_fire_time(self) -> Optional[float]:
        return self._last_fire_time

    @property
    def templates(self) -> TemplateLibrary:
        return self._store.library

    @property
    def stats(self) -> RecognizerStats:
        return RecognizerStats(
            state=self._state,
            accepted_samples=self.tracker.accepted_samples,
            rejected_samples=self.tracker.rejected_samples,
            passes=self.metrics.passes_total,
            skipped_passes=self.metrics.skipped_total,
            gestures=self.metrics.gesture_counts,
            profiler_summary=self.profiler.summary(),
        )

    def reset(self):
        """Clear the window and return to idle."""
        self.tracker.reset()
        with self._pass_lock:
            self._state = RecognitionState.IDLE
            self._last_fire_time = None

    def close(self):
        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

    def __enter__(self):
        return self

    def __exit__(self, *args):
        self.close()


def _log_failure(future: Future):
    if future.cancelled():
        return
    exc = future.exception()
    if exc is not None:
        logger.error("Background recognition pass failed: %s", exc, exc_info=exc)
