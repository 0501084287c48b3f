"""JSON-file persistence for the organization record.

Writes are debounced: repeated saves inside the debounce window collapse
into a single write of the latest document. Without a running event loop
(scripts, sync tests) a save is written immediately.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)


class StateStore:
    """Load / save the persisted organization record."""

    def __init__(self, path: Path, debounce_seconds: float = 1.0):
        self.path = Path(path)
        self.debounce_seconds = debounce_seconds
        self._pending: Optional[dict] = None
        self._handle: Optional[asyncio.TimerHandle] = None

    def load(self) -> Optional[dict]:
        """Return the stored record, or None on first run or unreadable file."""
        if not self.path.exists():
            return None
        try:
            with open(self.path) as f:
                return json.load(f)
        except (json.JSONDecodeError, IOError) as e:
            logger.warning("Ignoring unreadable organization state %s: %s", self.path, e)
            return None

    def save(self, document: dict) -> None:
        """Write the record now, replacing the file atomically."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.path.with_suffix(self.path.suffix + ".tmp")
        with open(tmp_path, "w") as f:
            json.dump(document, f, indent=2)
        os.replace(tmp_path, self.path)

    def save_debounced(self, document: dict) -> None:
        """Schedule a write of `document`, superseding any pending one."""
        self._pending = document
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            self.flush()
            return

        if self._handle is not None:
            self._handle.cancel()
        self._handle = loop.call_later(self.debounce_seconds, self.flush)

    def flush(self) -> None:
        """Write any pending document immediately."""
        if self._handle is not None:
            self._handle.cancel()
            self._handle = None
        if self._pending is None:
            return
        document, self._pending = self._pending, None
        try:
            self.save(document)
        except OSError as e:
            logger.warning("Failed to save organization state to %s: %s", self.path, e)
