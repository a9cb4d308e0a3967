# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: append-only log of every change the monitor saw, whether or not it was notified.
stored as one JSON document ({"version", "entries": [...]}) written atomically like the baseline.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for load/write diagnostics
import threading  # writers share one file
import uuid  # stable ids for entries
from dataclasses import asdict, dataclass, field  # for the entry record
from datetime import datetime, timedelta  # timestamps and pruning
from pathlib import Path  # file location
from typing import Any, Protocol  # store interface

from agent.baseline import read_json, write_json_atomic
from agent.change_detector import MonitorChange
from agent.errors import StoreError
from agent.serialization import parse_ts
from algorithm.models import utcnow

log = logging.getLogger("persistwatch.store")


@dataclass
class ChangeHistoryEntry:
    change_type: str
    category: str
    identifier: str
    name: str
    relevance_score: int
    details: list[str] = field(default_factory=list)
    acknowledged: bool = False
    timestamp: datetime = field(default_factory=utcnow)
    id: str = field(default_factory=lambda: uuid.uuid4().hex)

    @classmethod
    def from_change(cls, change: MonitorChange, relevance: int) -> ChangeHistoryEntry:
        return cls(
            change_type=change.type.value,
            category=change.category.value,
            identifier=change.identifier,
            name=change.name,
            relevance_score=int(relevance),
            details=change.describe_details(),
            timestamp=change.timestamp,
        )

    def to_dict(self) -> dict[str, Any]:
        d = asdict(self)
        d["timestamp"] = self.timestamp.isoformat()
        return d

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ChangeHistoryEntry:
        return cls(
            id=str(data["id"]),
            change_type=str(data["change_type"]),
            category=str(data["category"]),
            identifier=str(data["identifier"]),
            name=str(data.get("name", "")),
            relevance_score=int(data.get("relevance_score", 0)),
            details=list(data.get("details") or []),
            acknowledged=bool(data.get("acknowledged", False)),
            timestamp=parse_ts(data.get("timestamp")) or utcnow(),
        )


class HistoryStore(Protocol):
    def save_change_history(self, entry: ChangeHistoryEntry) -> None: ...

    def get_change_history(self, limit: int = 100) -> list[ChangeHistoryEntry]: ...

    def get_unacknowledged_count(self) -> int: ...

    def acknowledge_all(self) -> None: ...

    def prune_older_than(self, days: int) -> int: ...


class JsonHistoryStore:
    def __init__(self, path: str | Path, max_entries: int = 5000) -> None:
        self.path = Path(path)
        self.max_entries = max_entries  # oldest entries fall off past this
        self._lock = threading.RLock()

    def _load(self) -> list[ChangeHistoryEntry]:
        data = read_json(self.path)
        if data is None:
            return []
        raw = data.get("entries") if isinstance(data, dict) else None
        if not isinstance(raw, list):
            raise StoreError(f"{self.path} has an unexpected layout")
        try:
            return [ChangeHistoryEntry.from_dict(d) for d in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"corrupt history entry in {self.path}: {exc}") from exc

    def _save(self, entries: list[ChangeHistoryEntry]) -> None:
        try:
            write_json_atomic(self.path, {"version": 1, "entries": [e.to_dict() for e in entries]})
        except OSError as exc:
            raise StoreError(f"cannot write {self.path}: {exc}") from exc

    def save_change_history(self, entry: ChangeHistoryEntry) -> None:
        with self._lock:
            entries = self._load()
            entries.append(entry)
            if len(entries) > self.max_entries:
                entries = entries[-self.max_entries :]
            self._save(entries)

    def get_change_history(self, limit: int = 100) -> list[ChangeHistoryEntry]:
        """Newest first."""
        with self._lock:
            entries = self._load()
        entries.sort(key=lambda e: e.timestamp, reverse=True)
        return entries[: max(0, limit)]

    def get_unacknowledged_count(self) -> int:
        with self._lock:
            return sum(1 for e in self._load() if not e.acknowledged)

    def acknowledge_all(self) -> None:
        with self._lock:
            entries = self._load()
            if not any(not e.acknowledged for e in entries):
                return
            for e in entries:
                e.acknowledged = True
            self._save(entries)

    def prune_older_than(self, days: int) -> int:
        """Drop entries older than `days`; 0 clears everything. Returns how many were removed."""
        with self._lock:
            entries = self._load()
            if days <= 0:
                kept: list[ChangeHistoryEntry] = []
            else:
                cutoff = utcnow() - timedelta(days=days)
                kept = [e for e in entries if e.timestamp >= cutoff]
            removed = len(entries) - len(kept)
            if removed:
                self._save(kept)
        if removed:
            log.info("pruned %d history entries", removed)
        return removed
