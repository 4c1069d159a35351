from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path

from zinemaker.constants import DEFAULT_SETTINGS_FILENAME, SETTINGS_PATH_ENV
from zinemaker.log import log_event
from zinemaker.paper import LayoutSettings, Orientation

_LOGGER = logging.getLogger("zinemaker.settings")


def default_settings_path() -> Path:
    override = os.environ.get(SETTINGS_PATH_ENV)
    if override:
        return Path(override)
    return Path.home() / ".config" / "zinemaker" / DEFAULT_SETTINGS_FILENAME


class PreferenceStore:
    """Key-value persistence for the paper format and orientation preferences."""

    def __init__(self, path: Path | None = None) -> None:
        self.path = path or default_settings_path()

    def _read_raw(self) -> dict[str, object]:
        try:
            payload = json.loads(self.path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return {}
        except (OSError, ValueError) as exc:
            log_event(_LOGGER, logging.WARNING, "settings.read_failed", path=str(self.path), error=str(exc))
            return {}

        if not isinstance(payload, dict):
            return {}
        return payload

    def load(self) -> LayoutSettings:
        settings = LayoutSettings()
        raw = self._read_raw()

        paper_size = raw.get("paper_size")
        if isinstance(paper_size, str):
            try:
                settings = settings.with_changes(paper_size=paper_size)
            except ValueError:
                log_event(_LOGGER, logging.WARNING, "settings.invalid_paper_size", value=paper_size)

        orientation = raw.get("orientation")
        if isinstance(orientation, str):
            try:
                settings = settings.with_changes(orientation=orientation)
            except ValueError:
                log_event(_LOGGER, logging.WARNING, "settings.invalid_orientation", value=orientation)

        return settings

    def save(self, settings: LayoutSettings) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(json.dumps(settings.as_dict(), indent=2), encoding="utf-8")


class SettingsState:
    """Process-wide holder for the current settings snapshot.

    ``update`` is the only way to change it and always swaps in a new
    ``LayoutSettings``; ``snapshot`` hands out the pair as one value.
    """

    def __init__(self, store: PreferenceStore | None = None) -> None:
        self._store = store
        self._lock = threading.Lock()
        self._current = store.load() if store is not None else LayoutSettings()

    def snapshot(self) -> LayoutSettings:
        with self._lock:
            return self._current

    def update(
        self,
        *,
        paper_size: str | None = None,
        orientation: str | Orientation | None = None,
    ) -> LayoutSettings:
        with self._lock:
            updated = self._current.with_changes(paper_size=paper_size, orientation=orientation)
            if self._store is not None:
                self._store.save(updated)
            self._current = updated

        log_event(_LOGGER, logging.INFO, "settings.updated", **updated.as_dict())
        return updated
