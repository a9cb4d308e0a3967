# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: give the monitor fresh item lists per category.
discovery itself (plist parsing, codesign checks, entitlement extraction) lives outside this project;
an external tool exports what it found as JSON and SnapshotScanner reads that export.
the file is reloaded on every call so a new export takes effect without restarting.
a scan either returns the complete list for its category or raises ScanError: an export that vanished
after it was seen, or an entry that cannot be read, must never look like items were removed.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # export format
import logging  # for unreadable-entry diagnostics
from pathlib import Path  # export location
from typing import Any, Protocol  # scanner interface

from agent.errors import ScanError
from agent.serialization import item_from_dict
from algorithm.models import Category, PersistenceItem
from algorithm.risk_engine import RiskEngine

log = logging.getLogger("persistwatch.scanner")

ANY_CATEGORY = None  # marks a bad entry whose category can't be told


class CategoryScanner(Protocol):
    def scan(self, category: Category) -> list[PersistenceItem]: ...

    def scan_all(self) -> list[PersistenceItem]: ...


def _entry_category(raw: Any) -> Category | None:
    # best guess at which category a broken entry belonged to
    if isinstance(raw, dict):
        try:
            return Category(raw.get("category"))
        except ValueError:
            pass
    return ANY_CATEGORY


class SnapshotScanner:
    """Reads a discovery export (a JSON list of items, or {"items": [...]}) and scores each item."""

    def __init__(self, items_path: str | Path, engine: RiskEngine | None = None) -> None:
        self.items_path = Path(items_path)  # where the discovery tool drops its export
        self.engine = engine  # None means items are used exactly as exported
        self._seen_export = False  # once an export has been read, its absence is an error

    def _load(self) -> tuple[list[PersistenceItem], set[Category | None]]:
        """Parse the export. Returns the readable items and the categories that had unreadable entries."""
        if not self.items_path.exists():
            if self._seen_export:
                raise ScanError(f"{self.items_path} disappeared")
            return [], set()  # nothing exported yet
        try:
            content = self.items_path.read_text(encoding="utf-8").strip()
        except OSError as exc:
            raise ScanError(f"cannot read {self.items_path}: {exc}") from exc
        self._seen_export = True
        if not content:  # empty file means no items
            return [], set()
        try:
            data: Any = json.loads(content)
        except json.JSONDecodeError as exc:
            # a half-written export must not look like "every item was removed"
            raise ScanError(f"{self.items_path} is not valid JSON: {exc}") from exc
        if isinstance(data, dict):
            data = data.get("items", [])
        if not isinstance(data, list):
            raise ScanError(f"{self.items_path} does not contain an item list")

        items: list[PersistenceItem] = []
        tainted: set[Category | None] = set()
        for i, raw in enumerate(data):
            try:
                items.append(item_from_dict(raw))
            except (KeyError, TypeError, ValueError, AttributeError) as exc:
                log.warning("unreadable export entry %d: %s", i, exc)
                tainted.add(_entry_category(raw))
        return items, tainted

    def _score(self, items: list[PersistenceItem]) -> list[PersistenceItem]:
        if self.engine is None:
            return items
        return [self.engine.enrich(it) for it in items]

    def scan(self, category: Category) -> list[PersistenceItem]:
        cat = Category(category)
        items, tainted = self._load()
        if cat in tainted or ANY_CATEGORY in tainted:
            raise ScanError(f"{self.items_path} has unreadable entries for {cat.display_name}")
        return self._score([it for it in items if it.category == cat])

    def scan_all(self) -> list[PersistenceItem]:
        items, tainted = self._load()
        if tainted:
            raise ScanError(f"{self.items_path} has {len(tainted)} category(ies) with unreadable entries")
        return self._score(items)
