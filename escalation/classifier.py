# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: decide whether one detected change deserves a user alert.
two strategies share one protocol: a local relevance threshold, and the remote analyst. the monitor
doesn't know which one it has. a remote failure never drops a change; it degrades to a plain alert
at a fixed relevance so the user still hears about it.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # decision diagnostics
from dataclasses import dataclass  # decision record
from typing import Any, Protocol  # strategy interface

from agent.change_detector import ChangeType, MonitorChange
from escalation.api_client import AnalystAPIError, AnalystClient
from escalation.payloads import AISeverity, DetailedItemAnalysis

log = logging.getLogger("persistwatch.escalation")


@dataclass(frozen=True)
class Decision:
    should_notify: bool
    relevance: int
    title: str | None = None  # analyst-written alert text, when there is one
    body: str | None = None
    severity: str | None = None
    fallback: bool = False  # True when the analyst failed and we alerted anyway


class ChangeClassifier(Protocol):
    def classify(self, change: MonitorChange, relevance: int) -> Decision: ...


class RelevanceClassifier:
    def __init__(self, min_relevance: int = 50) -> None:
        self.min_relevance = min_relevance

    def classify(self, change: MonitorChange, relevance: int) -> Decision:
        if relevance < self.min_relevance:
            log.debug("change below threshold (%d < %d): %s", relevance, self.min_relevance, change.name)
        return Decision(should_notify=relevance >= self.min_relevance, relevance=relevance)


class RemoteAnalystClassifier:
    def __init__(
        self,
        client: AnalystClient,
        threshold: AISeverity = AISeverity.MEDIUM,
        fallback_relevance: int = 50,
    ) -> None:
        self.client = client
        self.threshold = threshold  # minimum analyst severity that alerts
        self.fallback_relevance = fallback_relevance

    def _fallback(self) -> Decision:
        return Decision(should_notify=True, relevance=self.fallback_relevance, fallback=True)

    def classify(self, change: MonitorChange, relevance: int) -> Decision:
        item = change.item
        if item is None:
            log.info("change without an item, skipping analyst")
            return Decision(should_notify=False, relevance=relevance)

        try:
            details = change.describe_details() if change.type == ChangeType.MODIFIED and change.details else None
            analysis = DetailedItemAnalysis.from_item(item, change.type.value, details)
            resp = self.client.analyze_item(analysis)
        except AnalystAPIError as exc:
            log.warning("analyst failed for %s, falling back to a plain alert: %s", item.identifier, exc)
            return self._fallback()
        except Exception:
            log.exception("unexpected analyst failure for %s, falling back to a plain alert", item.identifier)
            return self._fallback()

        level = resp.level
        notify = bool(resp.should_notify) and level >= self.threshold
        if not notify:
            log.info("analyst says no alert for %s (%s)", item.identifier, level.value)
        return Decision(
            should_notify=notify,
            relevance=relevance,
            title=resp.title,
            body=resp.explanation,
            severity=level.value,
        )


def build_classifier(config: Any, client: AnalystClient | None = None) -> ChangeClassifier:
    """Remote analyst when AI is active, the relevance threshold otherwise."""
    if config.is_ai_active:
        return RemoteAnalystClassifier(
            client or AnalystClient.from_config(config),
            threshold=AISeverity.parse(config.ai_notification_threshold),
        )
    return RelevanceClassifier(int(config.minimum_relevance_score))
