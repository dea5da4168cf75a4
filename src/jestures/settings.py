"""Recognition settings: validated value object shared by tracker and recognizer.

Settings are mutated through setters so that invalid combinations (e.g. an
update rate that does not divide the window length) are rejected at the call
site, before the next recognition pass ever sees them.

Load/save as YAML:
    settings = RecognitionSettings.from_yaml("settings.yml")
    settings.set_update_rate(UpdateRate.FPS_10)
    settings.to_yaml("settings.yml")
"""

from __future__ import annotations

import math
from dataclasses import dataclass, asdict
from enum import IntEnum
from pathlib import Path

import yaml


class SettingsError(ValueError):
    """Raised when a setting is rejected. The settings object is left unchanged."""


class UpdateRate(IntEnum):
    """Frames between recognition attempts, named by attempts/second at 30 FPS."""
    FPS_2 = 15
    FPS_3 = 10
    FPS_5 = 6
    FPS_6 = 5
    FPS_10 = 3
    FPS_15 = 2
    FPS_30 = 1


class GestureLength(IntEnum):
    """Window length presets in frames."""
    FRAMES_20 = 20
    FRAMES_30 = 30
    FRAMES_45 = 45
    FRAMES_60 = 60


@dataclass
class RecognitionSettings:
    """Tunable parameters of a recognition pass.

    Attributes:
        dtw_radius: Sakoe-Chiba band half-width, in frames.
        min_dtw_threshold: Distances at or below this are ignored (near-static windows).
        max_dtw_threshold: Distances at or above this are not a match.
        update_rate: Frames between recognition attempts. Must divide window_length.
        min_time_separation: Milliseconds before a held gesture may fire again.
        match_number: Votes required, exclusive: a winner needs more than this.
        window_length: Number of frames in a window.
    """
    dtw_radius: float = 5.0
    min_dtw_threshold: float = 0.0
    max_dtw_threshold: float = 100.0
    update_rate: int = int(UpdateRate.FPS_10)
    min_time_separation: float = 1000.0
    match_number: int = 1
    window_length: int = int(GestureLength.FRAMES_30)

    def __post_init__(self):
        _check_positive_int("window_length", self.window_length)
        _check_positive_int("update_rate", self.update_rate)
        if self.window_length % self.update_rate != 0:
            raise SettingsError(
                f"update_rate {self.update_rate} must divide window_length {self.window_length}"
            )
        _check_non_negative("dtw_radius", self.dtw_radius)
        _check_non_negative("min_time_separation", self.min_time_separation)
        _check_non_negative_int("match_number", self.match_number)
        _check_thresholds(self.min_dtw_threshold, self.max_dtw_threshold)
        self.update_rate = int(self.update_rate)
        self.window_length = int(self.window_length)

    # --- Setters ---

    def set_dtw_radius(self, radius: float):
        _check_non_negative("dtw_radius", radius)
        self.dtw_radius = float(radius)

    def set_min_dtw_threshold(self, threshold: float):
        _check_thresholds(threshold, self.max_dtw_threshold)
        self.min_dtw_threshold = float(threshold)

    def set_max_dtw_threshold(self, threshold: float):
        _check_thresholds(self.min_dtw_threshold, threshold)
        self.max_dtw_threshold = float(threshold)

    def set_update_rate(self, update_rate: int):
        """Set frames per recognition attempt. Must evenly divide the window length."""
        _check_positive_int("update_rate", update_rate)
        if self.window_length % update_rate != 0:
            raise SettingsError(
                f"update_rate {update_rate} must divide window_length {self.window_length}"
            )
        self.update_rate = int(update_rate)

    def set_window_length(self, window_length: int):
        _check_positive_int("window_length", window_length)
        if window_length % self.update_rate != 0:
            raise SettingsError(
                f"window_length {window_length} is not a multiple of update_rate {self.update_rate}"
            )
        self.window_length = int(window_length)

    def set_min_time_separation(self, millis: float):
        _check_non_negative("min_time_separation", millis)
        self.min_time_separation = float(millis)

    def set_match_number(self, match_number: int):
        _check_non_negative_int("match_number", match_number)
        self.match_number = int(match_number)

    # --- Serialization ---

    def copy(self) -> RecognitionSettings:
        return RecognitionSettings(**self.to_dict())

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> RecognitionSettings:
        """Build settings from a mapping, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        return cls(**known)

    @classmethod
    def from_yaml(cls, path: str | Path) -> RecognitionSettings:
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        return cls.from_dict(data.get("recognition", data))

    def to_yaml(self, path: str | Path):
        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)
        with open(path, "w") as f:
            yaml.dump({"recognition": self.to_dict()}, f, default_flow_style=False, sort_keys=False)


def _check_positive_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise SettingsError(f"{name} must be a positive integer, got {value!r}")


def _check_non_negative_int(name: str, value) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or value < 0:
        raise SettingsError(f"{name} must be a non-negative integer, got {value!r}")


def _check_non_negative(name: str, value) -> None:
    if not isinstance(value, (int, float)) or math.isnan(value) or value < 0:
        raise SettingsError(f"{name} must be non-negative, got {value!r}")


def _check_thresholds(lo, hi) -> None:
    for value in (lo, hi):
        if not isinstance(value, (int, float)) or math.isnan(value):
            raise SettingsError(f"DTW thresholds must be numbers, got {value!r}")
    if lo >= hi:
        raise SettingsError(f"min_dtw_threshold ({lo}) must be below max_dtw_threshold ({hi})")
