"""Observer interfaces and the publish/subscribe registry behind them.

Anything that wants to follow the engine (a UI, a logger, downstream
consumers) subclasses one of the listener bases and overrides the methods
it cares about:

    class Printer(RecognitionListener):
        def on_gesture_recognized(self, name):
            print(f"Got gesture: {name}")

    recognizer.add_listener(Printer())

Or use the decorator API for per-gesture handlers:

    listener = RecognitionListener()

    @listener.handler("wave")
    def on_wave(name):
        print("Wave!")
"""

from __future__ import annotations

import logging
import threading
from typing import Any, Callable, Generic, TypeVar

import numpy as np

logger = logging.getLogger("jestures.listeners")

L = TypeVar("L")


class FrameObserver:
    """Receives tracker output. All methods are no-ops by default."""

    def on_frame_change(
        self,
        frame_index: int,
        window: np.ndarray,
        derivative: np.ndarray,
        distance_vector: np.ndarray,
    ):
        """Called for every accepted sample with a read-only window snapshot."""
        pass

    def on_window_complete(self, window: np.ndarray):
        """Called when every frame of the window has been refreshed."""
        pass

    def on_sample_rejected(self, sample: np.ndarray):
        """Called when a non-finite sample is dropped."""
        pass


class RecognitionListener:
    """Receives recognizer output. All methods are no-ops by default."""

    def __init__(self):
        self._handlers: dict[str, list[Callable[[str], Any]]] = {}

    def on_frame(self, frame_index: int, derivative: np.ndarray, distance_vector: np.ndarray):
        pass

    def on_window_ready(self):
        pass

    def on_gesture_recognized(self, name: str):
        """Called when a gesture wins a recognition pass."""
        handlers = self._handlers.get(name, []) + self._handlers.get("*", [])
        for handler in handlers:
            try:
                handler(name)
            except Exception as e:
                logger.error("Gesture handler for %s failed: %s", name, e)

    def on_settings_changed(self, settings):
        """Called after a user profile load replaced the recognition settings."""
        pass

    def handler(self, gesture_name: str = "*"):
        """Decorator to register a handler for a specific gesture name."""
        def decorator(fn: Callable[[str], Any]):
            self._handlers.setdefault(gesture_name, []).append(fn)
            return fn
        return decorator


class CallbackListener(RecognitionListener):
    """Adapts a plain ``fn(name)`` callable to the listener interface."""

    def __init__(self, callback: Callable[[str], Any]):
        super().__init__()
        self._callback = callback

    def on_gesture_recognized(self, name: str):
        self._callback(name)


class ListenerRegistry(Generic[L]):
    """Identity-keyed set of listeners with snapshot dispatch.

    Registration and removal may happen from inside a callback: dispatch
    iterates over a copy taken before the first listener is called. A listener
    that raises is logged and skipped; the others still get the event.
    """

    def __init__(self, name: str = "listeners"):
        self._name = name
        self._listeners: dict[int, L] = {}
        self._lock = threading.Lock()

    def add(self, listener: L) -> L:
        with self._lock:
            if id(listener) in self._listeners:
                logger.warning("%s: listener %r already registered", self._name, listener)
            self._listeners[id(listener)] = listener
        return listener

    def remove(self, listener: L) -> bool:
        with self._lock:
            return self._listeners.pop(id(listener), None) is not None

    def snapshot(self) -> list[L]:
        with self._lock:
            return list(self._listeners.values())

    def dispatch(self, method_name: str, *args):
        """Call ``method_name(*args)`` on every registered listener."""
        for listener in self.snapshot():
            method = getattr(listener, method_name, None)
            if method is None:
                continue
            try:
                method(*args)
            except Exception as e:
                logger.error("%s: %r.%s failed: %s", self._name, listener, method_name, e)

    def __len__(self) -> int:
        with self._lock:
            return len(self._listeners)
