"""User profiles: the serializer interface and a JSON-file implementation.

The recognizer never touches storage itself. It talks to a ``Serializer``
when a profile is activated or settings are saved, and storage errors
(``OSError``, ``json.JSONDecodeError``) reach the caller unchanged.

Profile layout (one file per user):
    <root>/<user>.json
    {
      "version": 1,
      "user": "alice",
      "settings": {"dtw_radius": 5.0, ...},
      "gestures": {"wave": [[[x, y], ...], ...]}
    }
"""

from __future__ import annotations

import json
import logging
import os
import re
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

import numpy as np

from jestures.settings import RecognitionSettings
from jestures.templates import TemplateLibrary, as_template

logger = logging.getLogger("jestures.serialization")

PROFILE_VERSION = 1
_VALID_NAME = re.compile(r"^[\w\-. ]+$")


class Serializer(ABC):
    """Storage collaborator consumed by the recognizer."""

    @abstractmethod
    def get_user_name(self) -> Optional[str]:
        ...

    @abstractmethod
    def load_or_create_user(self, name: str) -> bool:
        """Activate ``name``'s profile, creating it if needed. Returns True if it existed."""

    @abstractmethod
    def create_user_profile(self, name: str) -> bool:
        """Create an empty profile. Returns False if it already exists."""

    @abstractmethod
    def delete_user_profile(self):
        ...

    @abstractmethod
    def get_recognition_settings(self) -> RecognitionSettings:
        ...

    @abstractmethod
    def set_recognition_settings(self, settings: RecognitionSettings):
        ...

    @abstractmethod
    def get_all_user_gestures(self) -> list[str]:
        ...

    @abstractmethod
    def get_dataset_for_recognition(self) -> TemplateLibrary:
        ...

    @abstractmethod
    def get_gesture_dataset(self, gesture_name: str) -> list[np.ndarray]:
        ...

    @abstractmethod
    def add_feature_vector(self, gesture_name: str, feature_vector):
        ...

    @abstractmethod
    def add_all_feature_vectors(self, gesture_name: str, feature_vectors):
        ...

    @abstractmethod
    def delete_gesture_dataset(self, gesture_name: str):
        ...

    @abstractmethod
    def delete_gesture_feature_vector(self, gesture_name: str, index: int):
        ...


class UserManager(Serializer):
    """Stores each user profile as a JSON file under ``root``.

    Usage:
        manager = UserManager("profiles/")
        existed = manager.load_or_create_user("alice")
        manager.add_feature_vector("wave", points)
        library = manager.get_dataset_for_recognition()
    """

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self._user: Optional[str] = None
        self._settings = RecognitionSettings()
        self._gestures: dict[str, list[list[list[float]]]] = {}

    # --- Profiles ---

    def get_user_name(self) -> Optional[str]:
        return self._user

    def profile_path(self, name: str) -> Path:
        if not _VALID_NAME.match(name or "") or name.startswith("."):
            raise ValueError(f"Invalid user name: {name!r}")
        return self.root / f"{name}.json"

    def list_users(self) -> list[str]:
        if not self.root.exists():
            return []
        return sorted(p.stem for p in self.root.glob("*.json"))

    def create_user_profile(self, name: str) -> bool:
        path = self.profile_path(name)
        if path.exists():
            return False
        settings = RecognitionSettings()
        self._write(name, settings, {})
        self._user, self._settings, self._gestures = name, settings, {}
        logger.info("Created profile %s", name)
        return True

    def load_or_create_user(self, name: str) -> bool:
        path = self.profile_path(name)
        if not path.exists():
            self.create_user_profile(name)
            return False

        with open(path) as f:
            data = json.load(f)

        self._settings = RecognitionSettings.from_dict(data.get("settings", {}))
        self._gestures = {
            gesture: [list(map(list, t)) for t in templates]
            for gesture, templates in data.get("gestures", {}).items()
        }
        self._user = name
        logger.info(
            "Loaded profile %s (%d gestures, %d templates)",
            name, len(self._gestures), sum(len(t) for t in self._gestures.values()),
        )
        return True

    def delete_user_profile(self):
        path = self.profile_path(self._require_user())
        path.unlink(missing_ok=True)
        logger.info("Deleted profile %s", self._user)
        self._user = None
        self._settings = RecognitionSettings()
        self._gestures = {}

    # --- Settings ---

    def get_recognition_settings(self) -> RecognitionSettings:
        return self._settings.copy()

    def set_recognition_settings(self, settings: RecognitionSettings):
        self._commit(settings=settings.copy())

    # --- Gestures ---

    def get_all_user_gestures(self) -> list[str]:
        return [name for name, templates in self._gestures.items() if templates]

    def get_dataset_for_recognition(self) -> TemplateLibrary:
        return TemplateLibrary(self._gestures)

    def get_gesture_dataset(self, gesture_name: str) -> list[np.ndarray]:
        return [as_template(t) for t in self._gestures.get(gesture_name, [])]

    def add_feature_vector(self, gesture_name: str, feature_vector):
        self.add_all_feature_vectors(gesture_name, [feature_vector])

    def add_all_feature_vectors(self, gesture_name: str, feature_vectors):
        self._require_user()
        if not gesture_name:
            raise ValueError("gesture name must be non-empty")
        converted = [as_template(fv).tolist() for fv in feature_vectors]
        if not converted:
            return
        gestures = dict(self._gestures)
        gestures[gesture_name] = gestures.get(gesture_name, []) + converted
        self._commit(gestures=gestures)

    def delete_gesture_dataset(self, gesture_name: str):
        self._require_user()
        if gesture_name not in self._gestures:
            return
        self._commit(gestures={k: v for k, v in self._gestures.items() if k != gesture_name})

    def delete_gesture_feature_vector(self, gesture_name: str, index: int):
        self._require_user()
        templates = self._gestures.get(gesture_name)
        if templates is None or not 0 <= index < len(templates):
            raise IndexError(f"No template {index} for gesture {gesture_name!r}")
        gestures = dict(self._gestures)
        remaining = templates[:index] + templates[index + 1:]
        if remaining:
            gestures[gesture_name] = remaining
        else:
            del gestures[gesture_name]
        self._commit(gestures=gestures)

    # --- Internals ---

    def _require_user(self) -> str:
        if self._user is None:
            raise RuntimeError("No user profile loaded")
        return self._user

    def _commit(self, settings: Optional[RecognitionSettings] = None, gestures: Optional[dict] = None):
        """Write the profile with the given changes, then adopt them.

        In-memory state is only replaced once the file is on disk, so a failed
        write leaves both as they were.
        """
        user = self._require_user()
        settings = settings if settings is not None else self._settings
        gestures = gestures if gestures is not None else self._gestures
        self._write(user, settings, gestures)
        self._settings, self._gestures = settings, gestures

    def _write(self, user: str, settings: RecognitionSettings, gestures: dict):
        path = self.profile_path(user)
        path.parent.mkdir(parents=True, exist_ok=True)
        data = {
            "version": PROFILE_VERSION,
            "user": user,
            "settings": settings.to_dict(),
            "gestures": gestures,
        }
        tmp = path.with_suffix(".json.tmp")
        try:
            with open(tmp, "w") as f:
                json.dump(data, f)
            os.replace(tmp, path)
        finally:
            tmp.unlink(missing_ok=True)
