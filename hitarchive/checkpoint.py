"""
Resumable backfill bookkeeping.

The search API returns at most 1000 results per query, so the historical
backfill is split into fixed-width date windows fetched one at a time. Each
completed (window, partition) pair is appended to a JSON progress file that
is rewritten atomically, so a crash loses at most the window in flight.
"""

import json
import os
from dataclasses import dataclass
from datetime import date, timedelta
from pathlib import Path
from typing import Dict, List, Optional, Set, Tuple

from .logger import get_logger
from .normalize import utcnow
from .retry import StorageError

RESULT_CAP = 1000


@dataclass(frozen=True)
class Window:
    """Half-open date range ``[start, end)``."""

    start: date
    end: date

    @property
    def days(self) -> int:
        return (self.end - self.start).days

    @property
    def last_day(self) -> date:
        return self.end - timedelta(days=1)

    def query_range(self) -> str:
        """Inclusive range in search query syntax, e.g. ``2024-01-01..2024-01-07``."""
        return f"{self.start.isoformat()}..{self.last_day.isoformat()}"

    def __str__(self) -> str:
        return self.query_range()


# Full windows start on a chunk_days grid counted from this Monday.
GRID_EPOCH = date(1970, 1, 5)


def generate_windows(total_days: int, chunk_days: int, today: Optional[date] = None) -> List[Window]:
    """
    Split the last ``total_days`` days (today included) into windows.

    Windows are contiguous and non-overlapping, most recent first. Full
    windows start on a ``chunk_days`` grid, so only the newest window (still
    growing) and the oldest one (clipped to ``total_days``) differ between
    runs on consecutive days.
    """
    if total_days < 1:
        raise ValueError("total_days must be >= 1")
    if chunk_days < 1:
        raise ValueError("chunk_days must be >= 1")

    today = today or utcnow().date()
    first_day = today - timedelta(days=total_days - 1)
    end = today + timedelta(days=1)

    windows = []
    partial = (end - GRID_EPOCH).days % chunk_days
    if partial:
        start = max(end - timedelta(days=partial), first_day)
        windows.append(Window(start, end))
        end = start
    while end > first_day:
        start = max(end - timedelta(days=chunk_days), first_day)
        windows.append(Window(start, end))
        end = start
    return windows


def hit_result_cap(total_count: int, fetched: int, cap: int = RESULT_CAP) -> bool:
    """True when a window may have lost results to the search cap."""
    return total_count > cap or fetched >= cap


class CheckpointTracker:
    """
    Persisted list of completed windows per partition key.

    File layout::

        {"completed_ranges": [
            {"start": "2024-01-01", "end": "2024-01-08",
             "partition": "python", "count": 412, "completed_at": "..."}
        ]}
    """

    def __init__(self, path: Path):
        self.path = Path(path)
        self._logger = get_logger()
        self._entries: List[Dict] = []
        self._completed: Set[Tuple[str, str, str]] = set()
        self._load()

    def _load(self) -> None:
        if not self.path.exists():
            return
        try:
            with self.path.open("r", encoding="utf-8") as f:
                data = json.load(f) or {}
        except (OSError, json.JSONDecodeError) as e:
            raise StorageError(f"Unreadable checkpoint file {self.path}: {e}") from e

        for entry in data.get("completed_ranges", []):
            self._entries.append(entry)
            self._completed.add((entry["start"], entry["end"], entry["partition"]))

        self._logger.info(
            f"Loaded {len(self._entries)} completed windows",
            path=str(self.path),
        )

    def _save(self) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        tmp = self.path.with_name(self.path.name + ".tmp")
        try:
            with tmp.open("w", encoding="utf-8") as f:
                json.dump({"completed_ranges": self._entries}, f, indent=2)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp, self.path)
        except OSError as e:
            raise StorageError(f"Could not write checkpoint file {self.path}: {e}") from e

    @staticmethod
    def _key(window: Window, partition_key: str) -> Tuple[str, str, str]:
        return (window.start.isoformat(), window.end.isoformat(), partition_key)

    def is_complete(self, window: Window, partition_key: str) -> bool:
        return self._key(window, partition_key) in self._completed

    def mark_complete(self, window: Window, partition_key: str, item_count: int) -> None:
        """Record a fully fetched window and flush the file."""
        key = self._key(window, partition_key)
        if key in self._completed:
            return
        self._entries.append({
            "start": key[0],
            "end": key[1],
            "partition": partition_key,
            "count": item_count,
            "completed_at": utcnow().isoformat(),
        })
        self._completed.add(key)
        self._save()

    @property
    def completed_count(self) -> int:
        return len(self._entries)
