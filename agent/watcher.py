# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: tell the monitor when something changes inside a category's directories.
polls each directory's entries and their mtimes, compares against the previous snapshot, and only
calls back when an entry was created, modified or deleted. one daemon thread per watched category.
the first poll just records the snapshot, so startup doesn't look like everything was created.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import logging  # for watcher diagnostics
import os  # for listing directories and reading mtimes
import threading  # poll threads and stop signals
from collections.abc import Callable  # callback types
from dataclasses import dataclass  # event record
from typing import Any  # watch config is opaque here

from algorithm.models import Category

log = logging.getLogger("persistwatch.watcher")

CREATED = "created"
MODIFIED = "modified"
DELETED = "deleted"


@dataclass(frozen=True)
class DirectoryChangeEvent:
    category: Category
    path: str
    event_type: str  # created | modified | deleted


ChangeCallback = Callable[[DirectoryChangeEvent], None]
PathsFn = Callable[[Category], tuple[str, ...]]


def _default_paths(category: Category) -> tuple[str, ...]:
    return tuple(os.path.expanduser(p) for p in category.monitored_paths)


def _snapshot(dirs: tuple[str, ...]) -> dict[str, float]:
    # path -> mtime for every direct entry; unreadable or missing directories just contribute nothing
    out: dict[str, float] = {}
    for d in dirs:
        try:
            with os.scandir(d) as it:
                for entry in it:
                    try:
                        out[entry.path] = entry.stat(follow_symlinks=False).st_mtime
                    except OSError:
                        continue  # vanished between listing and stat
        except OSError:
            continue
    return out


class DirectoryWatcher:
    """Polling watcher. `on_change` must be set before start_watching for events to go anywhere."""

    def __init__(self, interval_sec: float = 1.0, paths_for: PathsFn | None = None) -> None:
        self.interval = interval_sec  # seconds between polls
        self.paths_for = paths_for or _default_paths  # tests point this at tmp dirs
        self.on_change: ChangeCallback | None = None
        self._lock = threading.Lock()
        self._threads: dict[Category, tuple[threading.Thread, threading.Event]] = {}
        self._snapshots: dict[Category, dict[str, float]] = {}

    @property
    def watched_categories(self) -> list[Category]:
        with self._lock:
            return list(self._threads)

    def poll_once(self, category: Category) -> list[DirectoryChangeEvent]:
        """Compare the directories against the last snapshot and emit one event per difference."""
        current = _snapshot(self.paths_for(category))
        with self._lock:
            previous = self._snapshots.get(category)
            self._snapshots[category] = current
        if previous is None:  # first look, nothing to compare to
            return []

        events: list[DirectoryChangeEvent] = []
        for path in sorted(current.keys() - previous.keys()):
            events.append(DirectoryChangeEvent(category, path, CREATED))
        for path in sorted(previous.keys() - current.keys()):
            events.append(DirectoryChangeEvent(category, path, DELETED))
        for path in sorted(current.keys() & previous.keys()):
            if current[path] != previous[path]:
                events.append(DirectoryChangeEvent(category, path, MODIFIED))

        cb = self.on_change
        for ev in events:
            if cb is None:
                break
            try:
                cb(ev)
            except Exception:
                log.exception("change callback failed for %s", ev.path)  # keep polling
        return events

    def _run(self, category: Category, stop: threading.Event) -> None:
        self.poll_once(category)  # prime the snapshot
        while not stop.wait(self.interval):  # wait() returns True once stop is set
            self.poll_once(category)

    def start_watching(self, category: Category, config: Any = None) -> bool:
        """Begin polling one category. Returns False when it has no directories to watch."""
        cat = Category(category)
        if not self.paths_for(cat):
            log.debug("%s has no monitored paths, not watching", cat.value)
            return False
        with self._lock:
            if cat in self._threads:  # already running
                return True
            stop = threading.Event()
            t = threading.Thread(target=self._run, args=(cat, stop), name=f"watch-{cat.value}", daemon=True)
            self._threads[cat] = (t, stop)
        t.start()
        log.info("watching %s", cat.display_name)
        return True

    def stop_all(self) -> None:
        with self._lock:
            running = list(self._threads.values())
            self._threads.clear()
            self._snapshots.clear()
        for _, stop in running:
            stop.set()
        for t, _ in running:
            if t is not threading.current_thread():
                t.join(timeout=max(1.0, self.interval * 2))
