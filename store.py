from __future__ import annotations

import json
import logging
import os
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Dict, Iterator, Optional

from domain import FacilityState

logger = logging.getLogger(__name__)


class PersistenceError(RuntimeError):
    """Raised when the state blob cannot be loaded or saved."""


class StateStore:
    """
    Loads and saves the whole FacilityState as one JSON blob.

    With no ``path`` the blob lives in memory, which is what tests and the
    simulation use. Mutations go through ``begin`` / ``commit`` (or the
    ``transaction`` context manager); ``rollback`` drops the working copy.
    One transaction is open at a time; other threads block in ``begin``
    until it is committed or rolled back.
    """

    def __init__(self, path: Optional[str] = None) -> None:
        self.path = Path(path) if path else None
        self._blob: Optional[Dict] = None
        self._working: Optional[FacilityState] = None
        # Held from begin() until commit() or rollback().
        self._lock = threading.RLock()

    def load(self) -> FacilityState:
        if self.path is None:
            return FacilityState.from_dict(self._blob) if self._blob else FacilityState()

        if not self.path.exists():
            return FacilityState()
        try:
            with self.path.open("r", encoding="utf-8") as fh:
                return FacilityState.from_dict(json.load(fh))
        except (OSError, ValueError, KeyError, TypeError) as exc:
            logger.error(f"Failed to load state from {self.path}: {exc}")
            raise PersistenceError(f"Failed to load state from {self.path}") from exc

    def save(self, state: FacilityState) -> None:
        blob = state.to_dict()
        if self.path is None:
            self._blob = json.loads(json.dumps(blob))
            return

        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with tmp_path.open("w", encoding="utf-8") as fh:
                json.dump(blob, fh, indent=2)
            os.replace(tmp_path, self.path)
        except (OSError, TypeError, ValueError) as exc:
            logger.error(f"Failed to save state to {self.path}: {exc}")
            raise PersistenceError(f"Failed to save state to {self.path}") from exc

    def snapshot(self) -> FacilityState:
        """Fresh copy of the committed state, for read-only use."""
        with self._lock:
            return self.load()

    def begin(self) -> FacilityState:
        self._lock.acquire()
        if self._working is not None:
            self._lock.release()
            raise RuntimeError("A transaction is already open")
        try:
            self._working = self.load()
        except BaseException:
            self._lock.release()
            raise
        return self._working

    def commit(self) -> None:
        if self._working is None:
            raise RuntimeError("No open transaction to commit")
        try:
            self.save(self._working)
        finally:
            self._working = None
            self._lock.release()

    def rollback(self) -> None:
        if self._working is None:
            return
        self._working = None
        self._lock.release()

    @contextmanager
    def transaction(self) -> Iterator[FacilityState]:
        state = self.begin()
        try:
            yield state
        except BaseException:
            self.rollback()
            raise
        self.commit()
