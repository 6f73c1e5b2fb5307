"""JSON-backed cache snapshot with atomic writes."""

from __future__ import annotations

import contextlib
import json
import logging
import os
import tempfile
import threading
from pathlib import Path

from pydantic import ValidationError

from .exceptions import CacheCorruptionError
from .models import CacheSnapshot, ResolvedOccurrence, SnapshotSource

logger = logging.getLogger(__name__)

DEFAULT_SNAPSHOT_NAME = "memochron-cache.json"


def default_snapshot_path() -> Path:
    """Per-user snapshot location (~/.cache/memochron/memochron-cache.json)."""
    return Path.home() / ".cache" / "memochron" / DEFAULT_SNAPSHOT_NAME


class SnapshotStore:
    """Persist the last merged event list to one JSON file.

    On-disk format::

        {"timestamp": <epoch ms>, "sources": [{"url": ..., "name": ...}],
         "events": [<occurrence with ISO-8601 start/end>, ...]}
    """

    def __init__(self, path: str | Path | None = None) -> None:
        """Create a SnapshotStore.

        Args:
            path: JSON file location. Defaults to DEFAULT_SNAPSHOT_NAME in the
                current directory.
        """
        self._path = Path(path) if path else Path.cwd() / DEFAULT_SNAPSHOT_NAME
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    def load(self) -> CacheSnapshot:
        """Read and validate the snapshot.

        Individual events that fail validation are skipped; the snapshot itself
        must carry a numeric timestamp and an event list.

        Raises:
            CacheCorruptionError: File missing, unreadable or structurally invalid
        """
        with self._lock:
            if not self._path.exists():
                raise CacheCorruptionError(f"Snapshot not found: {self._path}")
            try:
                with self._path.open("r", encoding="utf-8") as fh:
                    data = json.load(fh)
            except (OSError, ValueError) as exc:
                raise CacheCorruptionError(f"Unreadable snapshot {self._path}: {exc}") from exc

        if not isinstance(data, dict):
            raise CacheCorruptionError("Snapshot root must be an object")
        timestamp = data.get("timestamp")
        raw_events = data.get("events")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise CacheCorruptionError("Snapshot has no numeric timestamp")
        if not isinstance(raw_events, list):
            raise CacheCorruptionError("Snapshot has no event list")

        try:
            sources = [SnapshotSource.model_validate(s) for s in data.get("sources") or []]
        except ValidationError as exc:
            raise CacheCorruptionError(f"Invalid snapshot sources: {exc}") from exc

        events: list[ResolvedOccurrence] = []
        for raw in raw_events:
            try:
                event = ResolvedOccurrence.model_validate(raw)
            except ValidationError as exc:
                logger.debug("Skipping malformed snapshot event: %s", exc)
                continue
            if event.start.tzinfo is None or event.end.tzinfo is None:
                logger.debug("Skipping snapshot event %s without UTC offset", event.id)
                continue
            events.append(event)

        snapshot = CacheSnapshot(timestamp=int(timestamp), sources=sources, events=events)
        logger.debug("Loaded snapshot %s (%d events)", self._path, len(events))
        return snapshot

    def save(self, snapshot: CacheSnapshot) -> None:
        """Write the snapshot atomically.

        Writes to a temporary file in the same directory then replaces the target.

        Raises:
            OSError: If the file cannot be written
        """
        payload = snapshot.model_dump(mode="json")
        with self._lock:
            self._path.parent.mkdir(parents=True, exist_ok=True)
            tmp_path = None
            try:
                with tempfile.NamedTemporaryFile(
                    "w", dir=self._path.parent, delete=False, encoding="utf-8", suffix=".tmp"
                ) as tf:
                    tmp_path = Path(tf.name)
                    json.dump(payload, tf, ensure_ascii=False)
                    tf.flush()
                    with contextlib.suppress(OSError):
                        os.fsync(tf.fileno())
                tmp_path.replace(self._path)
            except OSError:
                if tmp_path is not None and tmp_path.exists():
                    with contextlib.suppress(OSError):
                        tmp_path.unlink()
                raise
        logger.debug("Saved snapshot %s (%d events)", self._path, len(snapshot.events))

    def clear(self) -> None:
        """Remove the snapshot file if present."""
        with self._lock:
            with contextlib.suppress(FileNotFoundError):
                self._path.unlink()
