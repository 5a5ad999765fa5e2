"""Persists the whole orchestrator snapshot as one JSON file."""

from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path

from pydantic import ValidationError as PydanticValidationError

from hybridqa.errors import PersistenceError
from hybridqa.models.system_state import TestingSystem

logger = logging.getLogger(__name__)


class StateStore:
    """Loads and saves the full :class:`TestingSystem` snapshot.

    Saves are whole-file overwrites. The new content is written to a
    temporary file beside the target and renamed over it, so a reader never
    observes a half-written snapshot.
    """

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> TestingSystem | None:
        """Return the stored snapshot, or ``None`` when no snapshot exists yet."""
        if not self.path.exists():
            logger.debug("No state file at %s", self.path)
            return None
        try:
            with open(self.path, encoding="utf-8") as f:
                data = json.load(f)
            return TestingSystem.model_validate(data)
        except (OSError, json.JSONDecodeError, PydanticValidationError) as e:
            raise PersistenceError(f"Failed to load state from {self.path}: {e}") from e

    def save(self, snapshot: TestingSystem) -> None:
        """Overwrite the stored snapshot."""
        self.write_payload(snapshot.to_wire())

    def write_payload(self, payload: dict) -> None:
        """Write an already-serialized snapshot dict."""
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2)
                os.replace(tmp_name, self.path)
            except BaseException:
                Path(tmp_name).unlink(missing_ok=True)
                raise
        except OSError as e:
            raise PersistenceError(f"Failed to save state to {self.path}: {e}") from e
        logger.debug("Saved state snapshot to %s", self.path)

    def reset(self) -> None:
        """Delete the stored snapshot."""
        if self.path.exists():
            self.path.unlink()
        logger.info("State file %s removed", self.path)
