# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: keep the last accepted item list per category on disk so the monitor has something to diff against.
one JSON file holds every category. writes go to a temp file in the same directory and are swapped in
with os.replace, so a reader (or a crash) never sees half a file. a lock serializes writers.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # baseline file format
import logging  # for reporting load problems
import os  # for atomic replace and fsync
import tempfile  # for the write-then-rename dance
import threading  # for serializing writers
from dataclasses import dataclass  # for the stats record
from datetime import datetime  # baseline creation/update times
from pathlib import Path  # file location
from typing import Any, Protocol  # store interface and raw JSON values

from agent.errors import StoreError
from agent.serialization import item_from_dict, item_to_dict, parse_ts
from algorithm.models import Category, PersistenceItem, utcnow

log = logging.getLogger("persistwatch.store")

FORMAT_VERSION = 1  # bump when the file layout changes


@dataclass(frozen=True)
class BaselineStats:
    created_at: datetime | None
    updated_at: datetime | None
    item_count: int
    category_counts: dict[str, int]


class BaselineStore(Protocol):
    def has_baseline(self) -> bool: ...

    def create_baseline(self, items: list[PersistenceItem]) -> None: ...

    def get_baseline(self, category: Category | None = None) -> list[PersistenceItem] | None: ...

    def update_baseline(self, items: list[PersistenceItem], category: Category) -> None: ...

    def reset(self) -> None: ...

    def get_stats(self) -> BaselineStats | None: ...


def write_json_atomic(path: Path, payload: Any) -> None:
    """Write JSON next to the target and swap it in; shared with the history store."""
    path.parent.mkdir(parents=True, exist_ok=True)  # make sure data/ exists
    fd, tmp = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(payload, f, indent=2)
            f.flush()
            os.fsync(f.fileno())  # data on disk before the rename
        os.replace(tmp, path)  # atomic on the same filesystem
    except BaseException:
        try:
            os.unlink(tmp)  # don't leave temp files behind
        except OSError:
            pass
        raise


def read_json(path: Path) -> Any | None:
    """Return the parsed file, None if it doesn't exist; anything unreadable is a StoreError."""
    try:
        text = path.read_text(encoding="utf-8")
    except FileNotFoundError:
        return None
    except OSError as exc:
        raise StoreError(f"cannot read {path}: {exc}") from exc
    if not text.strip():  # empty file counts as missing
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError as exc:
        raise StoreError(f"{path} is not valid JSON: {exc}") from exc


class JsonBaselineStore:
    """Per-category baseline snapshot in a single JSON document."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path)
        self._lock = threading.RLock()  # one writer at a time, reentrant for update-inside-create

    # raw document

    def _load(self) -> dict[str, Any] | None:
        data = read_json(self.path)
        if data is None:
            return None
        if not isinstance(data, dict) or not isinstance(data.get("categories"), dict):
            raise StoreError(f"{self.path} has an unexpected layout")
        return data

    def _save(self, doc: dict[str, Any]) -> None:
        try:
            write_json_atomic(self.path, doc)
        except OSError as exc:
            raise StoreError(f"cannot write {self.path}: {exc}") from exc

    # store interface

    def has_baseline(self) -> bool:
        with self._lock:
            return self._load() is not None

    def create_baseline(self, items: list[PersistenceItem]) -> None:
        """Replace the whole baseline with `items`, grouped by their category."""
        now = utcnow().isoformat()
        grouped: dict[str, list[dict[str, Any]]] = {}
        for it in items:
            grouped.setdefault(it.category.value, []).append(item_to_dict(it))
        with self._lock:
            self._save({"version": FORMAT_VERSION, "created_at": now, "updated_at": now, "categories": grouped})
        log.info("baseline created with %d items across %d categories", len(items), len(grouped))

    def get_baseline(self, category: Category | None = None) -> list[PersistenceItem] | None:
        """
        Items for one category (or all of them). None means no baseline exists at all, which is
        different from an empty list: a category that was captured with zero items.
        """
        with self._lock:
            doc = self._load()
        if doc is None:
            return None
        cats: dict[str, list[dict[str, Any]]] = doc["categories"]
        if category is not None:
            raw = cats.get(Category(category).value, [])
        else:
            raw = [d for group in cats.values() for d in group]
        try:
            return [item_from_dict(d) for d in raw]
        except (KeyError, TypeError, ValueError) as exc:
            raise StoreError(f"corrupt baseline entry in {self.path}: {exc}") from exc

    def update_baseline(self, items: list[PersistenceItem], category: Category) -> None:
        """Swap in a fresh list for one category, leaving the others alone."""
        cat = Category(category)
        with self._lock:
            doc = self._load()
            if doc is None:  # first write ever, start a new document
                now = utcnow().isoformat()
                doc = {"version": FORMAT_VERSION, "created_at": now, "categories": {}}
            doc["categories"][cat.value] = [item_to_dict(it) for it in items]
            doc["updated_at"] = utcnow().isoformat()
            self._save(doc)
        log.debug("baseline for %s updated (%d items)", cat.value, len(items))

    def reset(self) -> None:
        with self._lock:
            try:
                self.path.unlink()
            except FileNotFoundError:
                pass
            except OSError as exc:
                raise StoreError(f"cannot remove {self.path}: {exc}") from exc
        log.info("baseline reset")

    def get_stats(self) -> BaselineStats | None:
        with self._lock:
            doc = self._load()
        if doc is None:
            return None
        counts = {k: len(v) for k, v in doc["categories"].items()}
        return BaselineStats(
            created_at=parse_ts(doc.get("created_at")),
            updated_at=parse_ts(doc.get("updated_at")),
            item_count=sum(counts.values()),
            category_counts=counts,
        )
