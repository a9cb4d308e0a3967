# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: compare a baseline item list with a fresh scan and say what was added, removed, or modified.
pure functions only: no I/O, no clocks except the timestamp stamped on MonitorChange records.
items are matched by identifier; common items are compared on trust level, enabled flag, risk score,
and executable path.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from dataclasses import dataclass, field  # for the diff records
from datetime import datetime  # when a change was observed
from enum import Enum  # closed set of change types
from typing import Any  # old/new field values

from algorithm.models import Category, PersistenceItem, TrustLevel, utcnow


@dataclass(frozen=True)
class FieldChange:
    field: str  # attribute name on PersistenceItem
    old_value: Any
    new_value: Any

    def describe(self) -> str:
        if self.field == "executable_path":
            return "Executable path changed"
        label = _FIELD_LABELS.get(self.field, self.field)
        return f"{label}: {_fmt(self.old_value)} → {_fmt(self.new_value)}"


_FIELD_LABELS = {"trust_level": "Trust level", "is_enabled": "Enabled", "risk_score": "Risk score"}


def _fmt(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, TrustLevel):
        return value.value
    return str(value)


def field_changes(old: PersistenceItem, new: PersistenceItem) -> list[FieldChange]:
    out: list[FieldChange] = []
    if old.trust_level != new.trust_level:
        out.append(FieldChange("trust_level", old.trust_level, new.trust_level))
    if old.is_enabled != new.is_enabled:
        out.append(FieldChange("is_enabled", old.is_enabled, new.is_enabled))
    if old.risk_score != new.risk_score:
        out.append(FieldChange("risk_score", old.risk_score or 0, new.risk_score or 0))  # unknown reads as 0
    if old.executable_path != new.executable_path:
        out.append(FieldChange("executable_path", old.executable_path, new.executable_path))
    return out


@dataclass(frozen=True)
class ModifiedItem:
    identifier: str
    name: str
    changes: list[str]


@dataclass
class DiffResult:
    """One cycle's difference. Built fresh every time and never persisted."""

    added: list[PersistenceItem] = field(default_factory=list)
    removed: list[PersistenceItem] = field(default_factory=list)
    modified: list[ModifiedItem] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.added or self.removed or self.modified)

    @property
    def summary(self) -> str:
        parts: list[str] = []
        if self.added:
            parts.append(f"+{len(self.added)} added")
        if self.removed:
            parts.append(f"-{len(self.removed)} removed")
        if self.modified:
            parts.append(f"~{len(self.modified)} modified")
        return ", ".join(parts) if parts else "No changes"


class ChangeType(str, Enum):
    ADDED = "added"
    REMOVED = "removed"
    MODIFIED = "modified"
    ENABLED = "enabled"
    DISABLED = "disabled"


@dataclass
class MonitorChange:
    type: ChangeType
    category: Category
    item: PersistenceItem | None  # the current item (the old one for removals)
    previous: PersistenceItem | None = None  # baseline version for modifications
    details: list[FieldChange] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)

    @property
    def identifier(self) -> str:
        return self.item.identifier if self.item is not None else "unknown"

    @property
    def name(self) -> str:
        return self.item.name if self.item is not None else "unknown"

    def describe_details(self) -> list[str]:
        return [d.describe() for d in self.details]


def _by_id(items: list[PersistenceItem]) -> dict[str, PersistenceItem]:
    # later duplicates win, same as a dict literal would
    return {it.identifier: it for it in items}


class ChangeDetector:
    """Identifier-keyed diffing between a baseline and a fresh scan."""

    def compute_diff(self, baseline: list[PersistenceItem], current: list[PersistenceItem]) -> DiffResult:
        old, new = _by_id(baseline), _by_id(current)
        added = [new[k] for k in sorted(new.keys() - old.keys())]
        removed = [old[k] for k in sorted(old.keys() - new.keys())]
        modified: list[ModifiedItem] = []
        for k in sorted(old.keys() & new.keys()):
            changes = field_changes(old[k], new[k])
            if changes:
                modified.append(ModifiedItem(k, new[k].name, [c.describe() for c in changes]))
        return DiffResult(added=added, removed=removed, modified=modified)

    def detect_changes(
        self, baseline: list[PersistenceItem], current: list[PersistenceItem], category: Category
    ) -> list[MonitorChange]:
        old, new = _by_id(baseline), _by_id(current)
        out: list[MonitorChange] = []
        for k in sorted(new.keys() - old.keys()):
            out.append(MonitorChange(ChangeType.ADDED, category, new[k]))
        for k in sorted(old.keys() - new.keys()):
            out.append(MonitorChange(ChangeType.REMOVED, category, old[k]))
        for k in sorted(old.keys() & new.keys()):
            details = field_changes(old[k], new[k])
            if not details:
                continue
            if old[k].is_enabled != new[k].is_enabled:  # an enable flip names the change
                kind = ChangeType.ENABLED if new[k].is_enabled else ChangeType.DISABLED
            else:
                kind = ChangeType.MODIFIED
            out.append(MonitorChange(kind, category, new[k], previous=old[k], details=details))
        return out


# relevance scoring (deterministic, no AI)

_CHANGE_BASE = {
    ChangeType.ADDED: 40,
    ChangeType.ENABLED: 30,
    ChangeType.MODIFIED: 25,
    ChangeType.REMOVED: 20,
    ChangeType.DISABLED: 10,
}
_CATEGORY_WEIGHT = {
    Category.LAUNCH_DAEMONS: 20,
    Category.PRIVILEGED_HELPERS: 20,
    Category.KERNEL_EXTENSIONS: 20,
    Category.SYSTEM_EXTENSIONS: 15,
    Category.AUTHORIZATION_PLUGINS: 15,
    Category.LAUNCH_AGENTS: 10,
    Category.LOGIN_ITEMS: 10,
    Category.LOGIN_HOOKS: 10,
    Category.CRON_JOBS: 10,
}
_TRUST_ADJUST = {
    TrustLevel.SUSPICIOUS: 30,
    TrustLevel.UNSIGNED: 20,
    TrustLevel.UNKNOWN: 10,
    TrustLevel.SIGNED: 0,
    TrustLevel.KNOWN_VENDOR: -10,
    TrustLevel.APPLE: -30,
}


def calculate_relevance(change: MonitorChange) -> int:
    """0..100 score of how much a user should care about one change."""
    score = _CHANGE_BASE[change.type]
    score += _CATEGORY_WEIGHT.get(change.category, 0)
    item = change.item
    if item is not None:
        score += _TRUST_ADJUST.get(item.trust_level, 0)
        score += int((item.risk_score or 0) * 0.3)  # a risky item matters more whatever happened to it
        if change.type == ChangeType.MODIFIED and any(d.field == "executable_path" for d in change.details):
            score += 10  # repointed binaries are how swaps show up
    return max(0, min(100, score))
