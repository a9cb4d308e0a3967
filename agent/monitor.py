# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: watch persistence locations and turn directory activity into scored, deduplicated alerts.
lifecycle is stopped -> starting -> running -> stopping -> stopped, with error(message) when start fails.
a filesystem event only schedules work: each category gets one debounce timer, restarted by every new
event, and when it finally fires the category is rescanned, diffed against its baseline, every change is
written to history, and the ones that survive cooldown, the per-type toggles and the classifier are sent
to the notifier. the category baseline only moves forward after a rescan that actually succeeded.
every state transition is published on the event bus as {"source": "monitor", "kind": "state", ...}.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for scan and delivery diagnostics
import threading  # debounce timers and the state lock
from collections.abc import Callable  # type hint for the publish callback
from concurrent.futures import Future, ThreadPoolExecutor  # start() runs off the caller's thread
from dataclasses import dataclass  # state record
from datetime import datetime  # for the baseline description
from enum import Enum  # lifecycle phases
from typing import Any  # event payloads and config

from agent.baseline import BaselineStore
from agent.change_detector import ChangeDetector, MonitorChange, calculate_relevance
from agent.history import ChangeHistoryEntry, HistoryStore
from agent.inventory import ItemInventory
from agent.notifier import NotificationSink
from agent.policy import NotificationPolicy
from agent.scanner import CategoryScanner
from agent.watcher import DirectoryChangeEvent, DirectoryWatcher
from algorithm.models import Category, PersistenceItem, utcnow
from escalation.classifier import ChangeClassifier, RelevanceClassifier

log = logging.getLogger("persistwatch.monitor")

# type alias for the publish callback, takes an event dict and returns nothing
PublishFn = Callable[[dict[str, Any]], None]


class Phase(str, Enum):
    STOPPED = "stopped"
    STARTING = "starting"
    RUNNING = "running"
    STOPPING = "stopping"
    ERROR = "error"


@dataclass(frozen=True)
class MonitorState:
    phase: Phase
    message: str | None = None  # only set for ERROR

    @classmethod
    def error(cls, message: str) -> MonitorState:
        return cls(Phase.ERROR, message)


STOPPED = MonitorState(Phase.STOPPED)
STARTING = MonitorState(Phase.STARTING)
RUNNING = MonitorState(Phase.RUNNING)
STOPPING = MonitorState(Phase.STOPPING)


def _ago(then: datetime, now: datetime) -> str:
    # short relative time, "3h ago" style
    secs = int((now - then).total_seconds())
    if secs < 60:
        return "just now"
    for unit, size in (("d", 86400), ("h", 3600), ("m", 60)):
        if secs >= size:
            return f"{secs // size}{unit} ago"
    return "just now"


class PersistenceMonitor:
    """Owns the watch -> debounce -> rescan -> diff -> alert loop. Every collaborator is injected."""

    def __init__(
        self,
        scanner: CategoryScanner,
        baseline: BaselineStore,
        history: HistoryStore,
        notifier: NotificationSink,
        watcher: DirectoryWatcher,
        inventory: ItemInventory,
        config: Any,
        policy: NotificationPolicy | None = None,
        classifier: ChangeClassifier | None = None,
        publish: PublishFn | None = None,
    ) -> None:
        self.scanner = scanner
        self.baseline = baseline
        self.history = history
        self.notifier = notifier
        self.watcher = watcher
        self.inventory = inventory
        self.config = config
        self.policy = policy or NotificationPolicy.from_config(config)
        self.classifier = classifier or RelevanceClassifier(int(config.minimum_relevance_score))
        self.publish = publish
        self.detector = ChangeDetector()
        self.debounce_sec = float(getattr(config, "debounce_sec", 2.0))

        self._lock = threading.Lock()  # guards state, counters and the timer map
        self._scan_locks: dict[Category, threading.Lock] = {}  # one targeted scan per category at a time
        self._pending: dict[Category, threading.Timer] = {}  # category -> debounce timer
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="monitor")
        self._state = STOPPED
        self._change_count = 0
        self._last_change: MonitorChange | None = None
        self._unacknowledged = self._load_unacknowledged()

    # observable state

    @property
    def state(self) -> MonitorState:
        with self._lock:
            return self._state

    @property
    def is_monitoring(self) -> bool:
        return self.state.phase == Phase.RUNNING

    @property
    def change_count(self) -> int:
        with self._lock:
            return self._change_count

    @property
    def last_change(self) -> MonitorChange | None:
        with self._lock:
            return self._last_change

    @property
    def unacknowledged_count(self) -> int:
        with self._lock:
            return self._unacknowledged

    @property
    def status_description(self) -> str:
        st = self.state
        if st.phase == Phase.STOPPED:
            return "Monitoring stopped"
        if st.phase == Phase.STARTING:
            return "Starting monitoring..."
        if st.phase == Phase.RUNNING:
            return f"Monitoring {len(self.watcher.watched_categories)} categories"
        if st.phase == Phase.STOPPING:
            return "Stopping monitoring..."
        return f"Error: {st.message}"

    @property
    def baseline_description(self) -> str:
        stats = self.baseline.get_stats()
        if stats is None or stats.item_count == 0:
            return "No baseline"
        created = _ago(stats.created_at, utcnow()) if stats.created_at else "unknown"
        return f"{stats.item_count} items (created {created})"

    def _set_state(self, state: MonitorState) -> None:
        with self._lock:
            self._state = state
        self._emit({"kind": "state", "state": state.phase.value, "message": state.message, "status": self.status_description})

    def _emit(self, event: dict[str, Any]) -> None:
        if self.publish is None:
            return
        try:
            self.publish({"source": "monitor", **event})
        except Exception:
            log.exception("event publish failed")

    def _load_unacknowledged(self) -> int:
        try:
            return self.history.get_unacknowledged_count()
        except Exception:
            log.exception("could not read unacknowledged change count")
            return 0

    # lifecycle

    def start(self) -> Future[bool]:
        """Kick off startup on the monitor's worker. The future resolves True once running."""
        with self._lock:
            if self._state.phase not in (Phase.STOPPED, Phase.ERROR):
                log.info("cannot start, current state is %s", self._state.phase.value)
                done: Future[bool] = Future()
                done.set_result(self._state.phase == Phase.RUNNING)
                return done
            self._state = STARTING
        self._emit({"kind": "state", "state": Phase.STARTING.value, "message": None, "status": "Starting monitoring..."})
        return self._executor.submit(self._start)

    def _start(self) -> bool:
        log.info("starting monitoring")
        try:
            if not self.notifier.request_permission():
                log.warning("notifications not permitted, monitoring continues without alerts")
        except Exception:
            log.exception("notification permission request failed, monitoring continues without alerts")

        try:
            self._ensure_baseline()
            self.watcher.on_change = self.handle_directory_change
            count = 0
            for category in self._enabled_categories():
                if category.monitored_paths and self.watcher.start_watching(category, self.config):
                    count += 1
        except Exception as exc:
            log.exception("failed to start monitoring")
            self.watcher.stop_all()
            self._set_state(MonitorState.error(str(exc) or exc.__class__.__name__))
            return False

        self._set_state(RUNNING)
        log.info("monitoring started for %d categories", count)
        self._send_startup_notice(count)
        return True

    def _enabled_categories(self) -> list[Category]:
        raw = getattr(self.config, "enabled_categories", None)
        if not raw:
            return Category.watchable()
        out: list[Category] = []
        for c in raw:
            try:
                out.append(Category(c))
            except ValueError:
                log.warning("ignoring unknown category %r in configuration", c)
        return out

    def _ensure_baseline(self) -> None:
        if self.baseline.has_baseline():
            return
        items = self.inventory.items()
        if not items:
            log.info("no baseline and no items, running initial scan")
            items = self.scanner.scan_all()
            self.inventory.replace_all(items)
        self.baseline.create_baseline(items)

    def _send_startup_notice(self, count: int) -> None:
        if getattr(self.config, "is_ai_active", False):
            title = "Monitoring Started (AI Mode)"
            body = (
                f"Claude AI will analyze changes. Check: {int(self.config.ai_check_interval_sec)}s, "
                f"Notify: ≥{str(self.config.ai_notification_threshold).capitalize()}"
            )
        else:
            title = "Monitoring Started (Standard Mode)"
            body = (
                f"Real-time monitoring active. {count} categories, "
                f"Relevance threshold: {self.config.minimum_relevance_score}"
            )
        try:
            self.notifier.send_alert(title, "", body, "info")
        except Exception:
            log.exception("startup notice failed")

    def stop(self) -> None:
        with self._lock:
            if self._state.phase != Phase.RUNNING:
                return
            self._state = STOPPING
            pending = list(self._pending.values())
            self._pending.clear()
        self._emit({"kind": "state", "state": Phase.STOPPING.value, "message": None, "status": "Stopping monitoring..."})
        for timer in pending:  # cancel before detaching so nothing fires into a stopped monitor
            timer.cancel()
        self.watcher.stop_all()
        self._set_state(STOPPED)
        log.info("monitoring stopped")

    def shutdown(self) -> None:
        self.stop()
        self._executor.shutdown(wait=False)

    # event handling

    def handle_directory_change(self, event: DirectoryChangeEvent) -> None:
        """Restart the category's debounce timer; the scan runs once events go quiet."""
        log.debug("%s in %s: %s", event.event_type, event.category.display_name, event.path)
        with self._lock:
            if self._state.phase != Phase.RUNNING:
                return
            old = self._pending.pop(event.category, None)
            if old is not None:
                old.cancel()
            timer = threading.Timer(self.debounce_sec, self._debounced_scan, args=(event.category,))
            timer.daemon = True
            self._pending[event.category] = timer
        timer.start()

    def _debounced_scan(self, category: Category) -> None:
        with self._lock:
            if self._pending.get(category) is threading.current_thread():  # a newer timer keeps its slot
                del self._pending[category]
            if self._state.phase != Phase.RUNNING:
                return
        self.perform_targeted_scan(category)

    def perform_targeted_scan(self, category: Category) -> list[MonitorChange]:
        """Rescan one category and process whatever changed. Returns the changes that were found."""
        category = Category(category)
        with self._scan_lock_for(category):
            return self._targeted_scan(category)

    def _scan_lock_for(self, category: Category) -> threading.Lock:
        # categories never wait on each other, a slow analyst call only holds up its own category
        with self._lock:
            lock = self._scan_locks.get(category)
            if lock is None:
                lock = self._scan_locks[category] = threading.Lock()
            return lock

    def _targeted_scan(self, category: Category) -> list[MonitorChange]:
        try:
            baseline_items = self.baseline.get_baseline(category)
        except Exception:
            log.exception("could not read baseline for %s", category.display_name)
            return []

        try:
            new_items = self.scanner.scan(category)
        except Exception:
            log.exception("scan of %s failed, baseline left untouched", category.display_name)
            return []

        if baseline_items is None:
            # no baseline at all: accept what we see without alerting on every item
            log.info("no baseline for %s, recording current state", category.display_name)
            self._commit(category, new_items)
            return []

        changes = self.detector.detect_changes(baseline_items, new_items, category)
        if changes:
            log.info("%d change(s) in %s", len(changes), category.display_name)
        for change in changes:
            self._process_change(change)

        self._commit(category, new_items)
        self.policy.cleanup()
        return changes

    def _commit(self, category: Category, items: list[PersistenceItem]) -> bool:
        # the inventory only follows a baseline that was actually written
        try:
            self.baseline.update_baseline(items, category)
        except Exception:
            log.exception("could not update baseline for %s, inventory left as it was", category.display_name)
            return False
        self.inventory.replace_category(category, items)
        return True

    def _process_change(self, change: MonitorChange) -> None:
        relevance = calculate_relevance(change)
        log.info("%s: %s (relevance %d)", change.type.value, change.name, relevance)

        try:  # history keeps every change, alerted or not
            self.history.save_change_history(ChangeHistoryEntry.from_change(change, relevance))
        except Exception:
            log.exception("could not record history for %s", change.identifier)

        if not self.policy.can_notify(change.identifier):
            log.info("cooldown active for %s, no alert", change.identifier)
            return
        if not self.policy.should_notify_for(change.type):
            log.debug("alerts for %s changes are turned off", change.type.value)
            return

        try:
            decision = self.classifier.classify(change, relevance)
        except Exception:
            log.exception("classifier failed for %s", change.identifier)
            return
        if not decision.should_notify:
            return

        try:
            if decision.title:
                subtitle = f"{change.category.display_name} - {change.type.value}"
                self.notifier.send_alert(decision.title, subtitle, decision.body or "", decision.severity or "info")
            else:
                self.notifier.send(change, decision.relevance)
        except Exception:
            log.exception("alert delivery failed for %s", change.identifier)

        if not decision.fallback:  # a fallback alert leaves the analyst free to look again next time
            self.policy.record_notification(change.identifier)
        with self._lock:
            self._last_change = change
            self._change_count += 1
            self._unacknowledged += 1
        self._emit(
            {
                "kind": "change",
                "change_type": change.type.value,
                "category": change.category.value,
                "identifier": change.identifier,
                "name": change.name,
                "relevance": decision.relevance,
            }
        )

    # baseline and history maintenance

    def update_baseline(self) -> None:
        """Accept the current inventory as the new baseline."""
        items = self.inventory.items()
        self.baseline.create_baseline(items)
        log.info("baseline updated with %d items", len(items))

    def reset_baseline(self) -> None:
        self.baseline.reset()
        self.history.prune_older_than(0)  # clears everything
        with self._lock:
            self._change_count = 0
            self._last_change = None
            self._unacknowledged = 0
        log.info("baseline and history reset")

    def acknowledge_all_changes(self) -> None:
        try:
            self.history.acknowledge_all()
        except Exception:
            log.exception("could not acknowledge changes")
            return
        with self._lock:
            self._unacknowledged = 0

    def get_change_history(self, limit: int = 100) -> list[ChangeHistoryEntry]:
        try:
            return self.history.get_change_history(limit)
        except Exception:
            log.exception("could not read change history")
            return []
