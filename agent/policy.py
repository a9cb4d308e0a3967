# SPDX-License-Identifier: GPL-3.0-or-later
"""goal: decide whether a change may produce a user alert right now (cooldown plus per-type toggles)."""

from __future__ import annotations

import threading
from datetime import datetime, timedelta
from typing import Any

from agent.change_detector import ChangeType
from algorithm.models import utcnow


class NotificationPolicy:
    """Per-identifier cooldown map. Shared between debounce timer threads, so every access takes the lock."""

    def __init__(
        self,
        cooldown_hours: float = 2.0,
        notify_on_add: bool = True,
        notify_on_remove: bool = True,
        notify_on_modify: bool = True,
    ) -> None:
        self.cooldown = timedelta(hours=cooldown_hours)
        self.notify_on_add = notify_on_add
        self.notify_on_remove = notify_on_remove
        self.notify_on_modify = notify_on_modify
        self._last: dict[str, datetime] = {}  # identifier -> last alert time
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Any) -> NotificationPolicy:
        return cls(
            cooldown_hours=float(config.notification_cooldown_hours),
            notify_on_add=bool(config.notify_on_add),
            notify_on_remove=bool(config.notify_on_remove),
            notify_on_modify=bool(config.notify_on_modify),
        )

    def can_notify(self, identifier: str, now: datetime | None = None) -> bool:
        now = now or utcnow()
        with self._lock:
            last = self._last.get(identifier)
        return last is None or now - last >= self.cooldown

    def record_notification(self, identifier: str, now: datetime | None = None) -> None:
        with self._lock:
            self._last[identifier] = now or utcnow()

    def cleanup(self, now: datetime | None = None) -> int:
        # forget identifiers whose cooldown has run out so the map doesn't grow forever
        now = now or utcnow()
        with self._lock:
            stale = [k for k, ts in self._last.items() if now - ts >= self.cooldown]
            for k in stale:
                del self._last[k]
        return len(stale)

    def should_notify_for(self, change_type: ChangeType) -> bool:
        if change_type == ChangeType.ADDED:
            return self.notify_on_add
        if change_type == ChangeType.REMOVED:
            return self.notify_on_remove
        return self.notify_on_modify  # modified, enabled, disabled
