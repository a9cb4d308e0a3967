from __future__ import annotations

import time
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from algorithm.models import Category, PersistenceItem, SignatureInfo, TrustLevel
from app.config import Config

NOW = datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc)  # fixed reference clock for analyzers


def make_item(identifier: str = "com.example.agent", **kw: Any) -> PersistenceItem:
    """Build a PersistenceItem with quiet defaults; anything passed overrides them."""
    kw.setdefault("name", identifier.rsplit(".", 1)[-1])
    kw.setdefault("category", Category.LAUNCH_AGENTS)
    kw.setdefault("executable_path", f"/Applications/Example.app/Contents/MacOS/{kw['name']}")
    kw.setdefault("trust_level", TrustLevel.SIGNED)
    kw.setdefault("discovered_at", NOW)
    return PersistenceItem(identifier=identifier, **kw)


def signed_by_vendor(**kw: Any) -> SignatureInfo:
    base = {
        "is_signed": True,
        "is_valid": True,
        "is_notarized": True,
        "has_hardened_runtime": True,
        "team_identifier": "ABCDE12345",
        "organization_name": "Example Corp",
    }
    base.update(kw)
    return SignatureInfo(**base)


def make_config(base: Path, **overrides: Any) -> Config:
    values: dict[str, Any] = {
        "base_dir": base,
        "baseline_path": base / "data" / "baseline.json",
        "history_path": base / "data" / "change_history.json",
        "items_path": base / "data" / "items.json",
        "risk_weights_path": base / "data" / "risk_weights.json",
        "debounce_sec": 0.05,
        "watch_interval_sec": 0.05,
        "minimum_relevance_score": 50,
        "notification_cooldown_hours": 2.0,
        "enabled_categories": (Category.LAUNCH_AGENTS.value, Category.LAUNCH_DAEMONS.value),
        "notify_on_add": True,
        "notify_on_remove": True,
        "notify_on_modify": True,
        "use_ai": False,
        "api_key": "",
        "model": "claude-sonnet-4-20250514",
        "api_url": "https://api.anthropic.com/v1/messages",
        "api_timeout_sec": 30.0,
        "ai_check_interval_sec": 300.0,
        "ai_notification_threshold": "medium",
        "ai_ignore_apple_signed": True,
        "ai_ignore_system_paths": True,
        "ai_prioritize_unsigned": True,
        "ai_focus_lolbins": True,
        "ai_minimum_risk_score": 0,
        "ai_ignored_paths": "",
        "ai_custom_prompt": "",
    }
    values.update(overrides)
    return Config(**values)


class FakeScanner:
    """In-memory CategoryScanner; set `items` or `error` between calls."""

    def __init__(self, items: list[PersistenceItem] | None = None) -> None:
        self.items = list(items or [])
        self.error: Exception | None = None
        self.scanned: list[Category] = []
        self.scanned_at: list[float] = []  # time.monotonic() of each category scan

    def scan(self, category: Category) -> list[PersistenceItem]:
        self.scanned.append(category)
        self.scanned_at.append(time.monotonic())
        if self.error is not None:
            raise self.error
        return [it for it in self.items if it.category == category]

    def scan_all(self) -> list[PersistenceItem]:
        if self.error is not None:
            raise self.error
        return list(self.items)


class FakeNotifier:
    """Records what would have been shown to the user."""

    def __init__(self, permitted: bool = True) -> None:
        self.permitted = permitted
        self.sent: list[tuple[Any, int]] = []
        self.alerts: list[tuple[str, str, str, str]] = []

    def request_permission(self) -> bool:
        return self.permitted

    def send(self, change: Any, relevance: int) -> None:
        self.sent.append((change, relevance))

    def send_alert(self, title: str, subtitle: str, body: str, severity: str = "info") -> None:
        self.alerts.append((title, subtitle, body, severity))


class FakeWatcher:
    """DirectoryWatcher stand-in that never starts threads."""

    def __init__(self) -> None:
        self.on_change = None
        self._watched: list[Category] = []
        self.stopped = 0

    @property
    def watched_categories(self) -> list[Category]:
        return list(self._watched)

    def start_watching(self, category: Category, config: Any = None) -> bool:
        if not category.monitored_paths:
            return False
        self._watched.append(category)
        return True

    def stop_all(self) -> None:
        self._watched.clear()
        self.stopped += 1


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def config(tmp_path) -> Config:
    return make_config(tmp_path)
