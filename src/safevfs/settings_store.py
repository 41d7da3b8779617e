"""
Settings record -- the persisted list of registered external domains.

Stored as ``settings.json`` in the application root. The backend cannot
update an object in place, so every change deletes the record and
creates it again with the full new contents.
"""

from __future__ import annotations

import logging
import threading
from typing import List, Optional

from pydantic import ValidationError

from .backend import StorageBackend
from .errors import BackendError, BackendNotFoundError, StagedFlushError
from .models import Settings
from .router import SETTINGS_ROOT

logger = logging.getLogger("safevfs.settings")

SETTINGS_FILE = "settings.json"


class SettingsStore:
    """Owns the in-memory copy of ``settings.json``.

    Args:
        backend: Storage client.
    """

    def __init__(self, backend: StorageBackend) -> None:
        self._backend = backend
        # Re-entrant: add/remove hold it across the read and the rewrite.
        self._lock = threading.RLock()
        self._settings: Optional[Settings] = None

    def load(self) -> Settings:
        """Read the record from the backend, creating the default if absent."""
        with self._lock:
            try:
                self._settings = self._fetch()
            except BackendNotFoundError:
                logger.info("No %s found; creating the default record", SETTINGS_FILE)
                self._backend.create_file(
                    SETTINGS_FILE,
                    Settings().model_dump_json().encode("utf-8"),
                    SETTINGS_ROOT,
                    True,
                )
                self._settings = self._fetch()
            return self._settings

    def alien_items(self) -> List[str]:
        """Registered external-domain names, in registration order."""
        with self._lock:
            if self._settings is None:
                self.load()
            return list(self._settings.alien_items)

    def add(self, name: str) -> None:
        """Register ``name`` and rewrite the record."""
        with self._lock:
            items = self.alien_items()
            if name not in items:
                items.append(name)
            self._rewrite(items)

    def remove(self, name: str) -> None:
        """Unregister ``name`` and rewrite the record."""
        with self._lock:
            self._rewrite([item for item in self.alien_items() if item != name])

    def _fetch(self) -> Settings:
        body = self._backend.get_file(SETTINGS_FILE, SETTINGS_ROOT)
        try:
            return Settings.model_validate_json(body)
        except ValidationError as exc:
            logger.warning("Corrupt %s (%s); starting from an empty registry", SETTINGS_FILE, exc)
            return Settings()

    def _rewrite(self, items: List[str]) -> None:
        body = Settings(alien_items=items).model_dump_json().encode("utf-8")
        with self._lock:
            try:
                self._backend.delete_file(SETTINGS_FILE, SETTINGS_ROOT)
            except BackendNotFoundError:
                logger.debug("%s was already absent before rewrite", SETTINGS_FILE)
            try:
                self._backend.create_file(SETTINGS_FILE, body, SETTINGS_ROOT, True)
            except BackendError as exc:
                logger.error("%s deleted but not recreated: %s", SETTINGS_FILE, exc)
                raise StagedFlushError(SETTINGS_FILE, exc) from exc
            self._settings = self._fetch()
        logger.info("Settings rewritten: %d registered domain(s)", len(items))
