# SPDX-License-Identifier: GPL-3.0-or-later
"""goal: the current, scored set of persistence items, shared by the monitor, the AI loop and the console."""

from __future__ import annotations

import threading
from datetime import datetime

from algorithm.models import Category, PersistenceItem, utcnow


class ItemInventory:
    def __init__(self, items: list[PersistenceItem] | None = None) -> None:
        self._lock = threading.Lock()
        self._items: list[PersistenceItem] = list(items or [])
        self._last_scan_at: datetime | None = utcnow() if items else None

    def items(self) -> list[PersistenceItem]:
        with self._lock:
            return list(self._items)  # snapshot, callers can't mutate ours

    def by_category(self, category: Category) -> list[PersistenceItem]:
        cat = Category(category)
        with self._lock:
            return [it for it in self._items if it.category == cat]

    def replace_all(self, items: list[PersistenceItem]) -> None:
        with self._lock:
            self._items = list(items)
            self._last_scan_at = utcnow()

    def replace_category(self, category: Category, items: list[PersistenceItem]) -> None:
        cat = Category(category)
        with self._lock:
            kept = [it for it in self._items if it.category != cat]
            self._items = kept + [it for it in items if it.category == cat]
            self._last_scan_at = utcnow()

    @property
    def last_scan_at(self) -> datetime | None:
        with self._lock:
            return self._last_scan_at

    def __len__(self) -> int:
        with self._lock:
            return len(self._items)

    def is_empty(self) -> bool:
        return len(self) == 0
