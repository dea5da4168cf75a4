"""Gesture templates: the read-only library a recognition pass matches against.

A ``TemplateLibrary`` maps gesture names to one or more recorded feature
sequences. Libraries are immutable; ``TemplateStore`` replaces the whole
library reference at once, so a matching pass never sees a half-updated one.
"""

from __future__ import annotations

import threading
from collections.abc import Mapping
from typing import Iterable, Iterator, Optional

import numpy as np


def as_template(points) -> np.ndarray:
    """Coerce a sequence of 2D points to a read-only (N, 2) float64 array."""
    arr = np.array(points, dtype=np.float64)
    if arr.size == 0:
        arr = np.zeros((0, 2), dtype=np.float64)
    if arr.ndim != 2 or arr.shape[1] < 2:
        raise ValueError(f"template must have shape (N, 2), got {arr.shape}")
    arr = np.ascontiguousarray(arr[:, :2])
    arr.setflags(write=False)
    return arr


class TemplateLibrary(Mapping):
    """Immutable mapping of gesture name -> tuple of templates.

    Gesture names must be non-empty strings. Names whose template list is
    empty are dropped, so every name present has at least one template.
    """

    def __init__(self, data: Optional[Mapping[str, Iterable]] = None):
        entries: dict[str, tuple[np.ndarray, ...]] = {}
        for name, templates in (data or {}).items():
            if not isinstance(name, str) or not name:
                raise ValueError(f"gesture name must be a non-empty string, got {name!r}")
            converted = tuple(as_template(t) for t in templates)
            converted = tuple(t for t in converted if len(t) > 0)
            if converted:
                entries[name] = converted
        self._entries = entries

    def __getitem__(self, name: str) -> tuple[np.ndarray, ...]:
        return self._entries[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __repr__(self) -> str:
        counts = {name: len(t) for name, t in self._entries.items()}
        return f"TemplateLibrary({counts})"

    def pairs(self) -> Iterator[tuple[str, np.ndarray]]:
        """Iterate (gesture_name, template) over every template."""
        for name, templates in self._entries.items():
            for template in templates:
                yield name, template

    @property
    def template_count(self) -> int:
        return sum(len(t) for t in self._entries.values())


class TemplateStore:
    """Holds the active library; swaps it atomically."""

    def __init__(self, library: Optional[TemplateLibrary] = None):
        self._library = library if library is not None else TemplateLibrary()
        self._lock = threading.Lock()

    @property
    def library(self) -> TemplateLibrary:
        with self._lock:
            return self._library

    def swap(self, library: Mapping) -> TemplateLibrary:
        """Install a new library. Returns the previous one."""
        if not isinstance(library, TemplateLibrary):
            library = TemplateLibrary(library)
        with self._lock:
            previous, self._library = self._library, library
        return previous
