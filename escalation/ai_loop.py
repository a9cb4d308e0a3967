# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: every N seconds, diff the whole inventory against the last analyzed snapshot and, if anything
changed, send the change set to the remote analyst. the snapshot only advances after an analysis
succeeded, so a failed call is retried with the same (growing) diff on the next tick.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # loop diagnostics
import threading  # background thread, stop signal, check lock
from collections.abc import Callable  # publish callback type
from dataclasses import dataclass, field  # analysis record
from datetime import datetime  # check timestamps
from typing import Any  # event payloads and config

from agent.change_detector import ChangeDetector
from agent.inventory import ItemInventory
from agent.notifier import NotificationSink
from algorithm.models import PersistenceItem, utcnow
from escalation.api_client import AnalystAPIError, AnalystClient
from escalation.payloads import AIFinding, AISeverity, AnalysisRequest, SystemInfo

log = logging.getLogger("persistwatch.escalation")

PublishFn = Callable[[dict[str, Any]], None]


@dataclass
class AnalysisResult:
    severity: AISeverity
    summary: str
    diff_summary: str
    findings: list[AIFinding] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)
    timestamp: datetime = field(default_factory=utcnow)


class AIMonitoringLoop:
    def __init__(
        self,
        client: AnalystClient,
        inventory: ItemInventory,
        notifier: NotificationSink,
        config: Any,
        publish: PublishFn | None = None,
        system_info: SystemInfo | None = None,
    ) -> None:
        self.client = client
        self.inventory = inventory
        self.notifier = notifier
        self.config = config
        self.publish = publish
        self.system_info = system_info  # None means read it from the host on every check
        self.interval = float(config.ai_check_interval_sec)
        self.threshold = AISeverity.parse(config.ai_notification_threshold)
        self.detector = ChangeDetector()

        self._baseline: list[PersistenceItem] = []
        self._check_lock = threading.Lock()  # a timer tick and check_now never overlap
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None
        self.last_check_at: datetime | None = None
        self.last_analysis: AnalysisResult | None = None
        self.check_count = 0
        self.error_message: str | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> bool:
        if not self.config.is_ai_active:
            self.error_message = "AI analysis is not enabled"
            return False
        if self.is_running:
            return True
        self.error_message = None
        self.check_count = 0
        self._baseline = self.inventory.items()  # changes are measured from here
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="ai-loop", daemon=True)
        self._thread.start()
        log.info("AI loop started, interval %.0fs", self.interval)
        return True

    def stop(self) -> None:
        self._stop.set()
        t = self._thread
        self._thread = None
        if t is not None and t is not threading.current_thread():
            t.join(timeout=5.0)
        log.info("AI loop stopped")

    def _run(self) -> None:
        while not self._stop.wait(self.interval):
            try:
                self.check_now()
            except Exception:
                log.exception("AI check crashed")  # keep ticking

    def check_now(self) -> AnalysisResult | None:
        """Run one check. Returns the new analysis, or None when nothing changed or the call failed."""
        with self._check_lock:
            return self._check()

    def _check(self) -> AnalysisResult | None:
        self.last_check_at = utcnow()
        self.check_count += 1
        current = self.inventory.items()
        diff = self.detector.compute_diff(self._baseline, current)
        if not diff.has_changes:
            log.debug("AI check #%d: no changes", self.check_count)
            return None

        log.info("AI check #%d: %s", self.check_count, diff.summary)
        request = AnalysisRequest.build(diff, current, self.system_info)
        try:
            resp = self.client.analyze_diff(request)
        except AnalystAPIError as exc:
            self.error_message = str(exc)
            log.warning("AI analysis failed: %s", exc)
            return None

        result = AnalysisResult(
            severity=resp.level,
            summary=resp.summary,
            diff_summary=diff.summary,
            findings=list(resp.findings),
            recommendations=list(resp.recommendations),
        )
        self.last_analysis = result
        self.error_message = None
        self._baseline = current  # analysed, move on

        if result.severity >= self.threshold:
            try:
                self.notifier.send_alert(
                    "Persistence Changes Detected",
                    f"Severity: {result.severity.display_name}",
                    result.summary,
                    result.severity.value,
                )
            except Exception:
                log.exception("AI alert delivery failed")
        if self.publish is not None:
            try:
                self.publish(
                    {
                        "source": "ai",
                        "kind": "analysis",
                        "severity": result.severity.value,
                        "summary": result.summary,
                        "diff_summary": result.diff_summary,
                        "findings": len(result.findings),
                    }
                )
            except Exception:
                log.exception("event publish failed")
        return result
