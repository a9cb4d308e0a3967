# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: deliver user-facing alerts. the monitor only knows the NotificationSink protocol; the console
build ships ConsoleNotifier, which prints colored one-liners through the persistwatch.notify logger
and optionally mirrors every alert onto the event bus.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # alerts go out through a named logger
from collections.abc import Callable  # publish callback type
from typing import Any, Protocol  # sink interface

from colorama import Fore, Style  # terminal colors for severities

from agent.change_detector import ChangeType, MonitorChange

log = logging.getLogger("persistwatch.notify")

# type alias for the publish callback, takes an event dict and returns nothing
PublishFn = Callable[[dict[str, Any]], None]

_CHANGE_TITLES = {
    ChangeType.ADDED: "New persistence item",
    ChangeType.REMOVED: "Persistence item removed",
    ChangeType.MODIFIED: "Persistence item modified",
    ChangeType.ENABLED: "Persistence item enabled",
    ChangeType.DISABLED: "Persistence item disabled",
}

_SEVERITY_COLORS = {
    "critical": Fore.RED + Style.BRIGHT,
    "high": Fore.RED,
    "medium": Fore.YELLOW,
    "low": Fore.CYAN,
    "info": Fore.WHITE,
}


def relevance_label(relevance: int) -> str:
    # coarse bucket used for coloring change alerts
    if relevance >= 80:
        return "critical"
    if relevance >= 60:
        return "high"
    if relevance >= 40:
        return "medium"
    return "low"


class NotificationSink(Protocol):
    def request_permission(self) -> bool: ...

    def send(self, change: MonitorChange, relevance: int) -> None: ...

    def send_alert(self, title: str, subtitle: str, body: str, severity: str = "info") -> None: ...


class ConsoleNotifier:
    """Prints alerts to the terminal. Delivery problems are logged, never raised."""

    def __init__(self, publish: PublishFn | None = None, use_color: bool = True) -> None:
        self.publish = publish  # optional event bus mirror
        self.use_color = use_color
        self.granted = False

    def request_permission(self) -> bool:
        # a terminal is always allowed to print; other sinks may refuse here
        self.granted = True
        return True

    def _emit(self, title: str, subtitle: str, body: str, severity: str) -> None:
        if self.use_color:
            color = _SEVERITY_COLORS.get(severity, "")
            head = f"{color}[{severity.upper()}]{Style.RESET_ALL} {Style.BRIGHT}{title}{Style.RESET_ALL}"
        else:
            head = f"[{severity.upper()}] {title}"
        line = f"{head} - {subtitle}" if subtitle else head
        if body:
            line += f"\n    {body}"
        level = logging.WARNING if severity in ("high", "critical") else logging.INFO
        log.log(level, line)
        if self.publish is not None:
            try:
                self.publish(
                    {
                        "source": "notifier",
                        "kind": "alert",
                        "title": title,
                        "subtitle": subtitle,
                        "body": body,
                        "severity": severity,
                    }
                )
            except Exception:
                log.exception("could not mirror alert onto the event bus")

    def send(self, change: MonitorChange, relevance: int) -> None:
        title = _CHANGE_TITLES.get(change.type, "Persistence change")
        subtitle = f"{change.name} ({change.category.display_name})"
        details = "; ".join(change.describe_details())
        body = f"relevance {relevance}/100" + (f" | {details}" if details else "")
        try:
            self._emit(title, subtitle, body, relevance_label(relevance))
        except Exception:
            log.exception("failed to deliver alert for %s", change.identifier)

    def send_alert(self, title: str, subtitle: str, body: str, severity: str = "info") -> None:
        try:
            self._emit(title, subtitle, body, severity)
        except Exception:
            log.exception("failed to deliver alert %r", title)
