# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: behavioral / reputation checks on a single persistence item.
ten independent point-in-time checks, each raising at most one finding. nothing escalates anything else:
the overall severity is simply the highest one found (low when clean).
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import os  # default file-existence probe
import posixpath  # item paths are macOS (posix) paths
from collections.abc import Callable  # type hint for the injectable existence probe

from algorithm.models import AnalyzerReport, Category, Finding, PersistenceItem, Severity, TrustLevel

ExistsFn = Callable[[str], bool]

_WATCHDOG_TOKENS = ("updater", "helper", "agent", "service", "daemon", "sync", "backup", "monitor")
_UI_TOKENS = ("app", "ui", "gui", "menu")
SUSPICIOUS_PATH_FRAGMENTS = ("/tmp/", "/var/tmp/", "/private/tmp/", "/Users/Shared/", "/.hidden", "/.")
_PRIV_TOKENS = ("sudo", "as root", "admin", "privilege")
_NETWORK_TOKENS = (
    "http://",
    "https://",
    "curl",
    "wget",
    "nc ",
    "netcat",
    "socket",
    "connect",
    "listen",
    ":443",
    ":80",
    ":8080",
)
_INTERPRETERS = ("python", "python3", "perl", "ruby", "osascript", "bash", "sh", "zsh")
_IMPERSONATION_TOKENS = ("system", "apple", "com.apple", "macos", "darwin", "kernel", "core")


def _joined_args(item: PersistenceItem) -> str:
    return " ".join(item.program_arguments or []).lower()


def suspicious_path_fragment(path: str | None) -> str | None:
    # first suspicious fragment found in the path, shared with the risk engine's location signal
    if not path:
        return None
    for frag in SUSPICIOUS_PATH_FRAGMENTS:
        if frag in path:
            return frag
    return None


class BehaviorAnalyzer:
    """Runs the ten behavioral checks against one item."""

    def __init__(self, exists: ExistsFn = os.path.exists) -> None:
        self.exists = exists  # injectable so tests never depend on the real disk

    def analyze(self, item: PersistenceItem) -> AnalyzerReport:
        checks = (
            self._hidden_persistence_guard,
            self._aggressive_persistence,
            self._stealthy_auto_start,
            self._orphaned_persistence,
            self._suspicious_location,
            self._privilege_escalation,
            self._network_persistence,
            self._script_persistence,
            self._system_impersonation,
            self._frequent_restart,
        )
        findings = [f for f in (check(item) for check in checks) if f is not None]
        if findings:
            n = len(findings)
            summary = f"Behavioral anomalies detected - {n} suspicious pattern{'s' if n > 1 else ''} found"
        else:
            summary = "No behavioral anomalies detected"
        return AnalyzerReport(findings=findings, summary=summary)

    # individual checks

    @staticmethod
    def _finding(
        type_: str, title: str, description: str, severity: Severity, points: int, *tags: str
    ) -> Finding:
        return Finding(type_, title, description, severity, points, evidence={"tags": list(tags)})

    def _hidden_persistence_guard(self, item: PersistenceItem) -> Finding | None:
        # KeepAlive agent whose name does not explain why it must never die
        if item.keep_alive is not True or item.category != Category.LAUNCH_AGENTS:
            return None
        name = item.name.lower()
        if any(tok in name for tok in _WATCHDOG_TOKENS):
            return None
        return self._finding(
            "hidden_persistence_guard",
            "Hidden Persistence Guard",
            "KeepAlive agent without obvious watchdog purpose. KeepAlive ensures auto-restart on crash/kill. "
            "Legitimate for services, suspicious for hidden agents. Malware uses this to survive termination attempts.",
            Severity.MEDIUM,
            10,
            "Launch Behavior",
            "Persistence",
        )

    def _aggressive_persistence(self, item: PersistenceItem) -> Finding | None:
        if not (item.run_at_load is True and item.keep_alive is True):
            return None
        name = item.name.lower()
        looks_like_service = (
            "service" in name or "daemon" in name or ".d." in name or item.category == Category.LAUNCH_DAEMONS
        )
        if looks_like_service:
            return None
        return self._finding(
            "aggressive_persistence",
            "Aggressive Persistence",
            "RunAtLoad + KeepAlive on non-service. This agent starts at boot and auto-restarts if killed. "
            "For services this is normal, for other agents it indicates aggressive persistence.",
            Severity.MEDIUM,
            15,
            "Launch Behavior",
            "Auto-Start",
        )

    def _stealthy_auto_start(self, item: PersistenceItem) -> Finding | None:
        if item.run_at_load is not True or item.category != Category.LAUNCH_AGENTS:
            return None
        name = item.name.lower()
        if any(tok in name for tok in _UI_TOKENS):
            return None
        if item.is_apple_signed or item.trust_level == TrustLevel.KNOWN_VENDOR:
            return None
        return self._finding(
            "stealthy_auto_start",
            "Stealthy Auto-Start",
            "Background process with RunAtLoad from unknown vendor. Starts silently at login with no visible UI.",
            Severity.LOW,
            5,
            "Auto-Start",
            "Background",
        )

    def _orphaned_persistence(self, item: PersistenceItem) -> Finding | None:
        if not item.executable_path or self.exists(item.executable_path):
            return None
        return self._finding(
            "orphaned_persistence",
            "Orphaned Persistence",
            "Persistence plist points to non-existent executable. Could be leftover from uninstalled software "
            "or malware that deleted itself.",
            Severity.MEDIUM,
            10,
            "Broken",
            "Suspicious",
        )

    def _suspicious_location(self, item: PersistenceItem) -> Finding | None:
        path = item.executable_path
        if not path:
            return None
        frag = suspicious_path_fragment(path)
        if frag is not None:
            return self._finding(
                "suspicious_location",
                "Suspicious Executable Location",
                f"Executable located in suspicious path: {frag}. Legitimate software rarely uses temporary "
                "or hidden directories.",
                Severity.HIGH,
                15,
                "Location",
                "Suspicious Path",
            )
        if posixpath.basename(path).startswith("."):
            return self._finding(
                "suspicious_location",
                "Hidden Executable",
                "Executable is a hidden file (starts with dot). Common malware evasion technique.",
                Severity.HIGH,
                15,
                "Hidden",
                "Evasion",
            )
        return None

    def _privilege_escalation(self, item: PersistenceItem) -> Finding | None:
        if item.category != Category.LAUNCH_AGENTS or not item.program_arguments:
            return None
        args = _joined_args(item)
        if not any(tok in args for tok in _PRIV_TOKENS):
            return None
        return self._finding(
            "privilege_escalation",
            "Privilege Escalation Attempt",
            "User-level agent attempting privileged operations. May prompt for admin credentials or exploit "
            "vulnerabilities.",
            Severity.HIGH,
            15,
            "Privilege",
            "Escalation",
        )

    def _network_persistence(self, item: PersistenceItem) -> Finding | None:
        if item.program_arguments is None:
            return None
        args = _joined_args(item)
        if not any(tok in args for tok in _NETWORK_TOKENS):
            return None
        return self._finding(
            "network_persistence",
            "Network-Enabled Persistence",
            "Persistence item with network capabilities. May download payloads, exfiltrate data, or "
            "establish C2 channel.",
            Severity.MEDIUM,
            10,
            "Network",
            "C2",
        )

    def _script_persistence(self, item: PersistenceItem) -> Finding | None:
        args = item.program_arguments
        if not args:
            return None
        first = posixpath.basename(args[0]).lower()
        interpreter = next((i for i in _INTERPRETERS if i in first), None)
        if interpreter is None:
            return None
        if any("-c" in a or "-e" in a for a in args):  # inline script flag anywhere
            return self._finding(
                "script_persistence",
                "Inline Script Persistence",
                f"Persistence runs inline script via {interpreter}. Harder to audit than standalone "
                "executables. Common malware technique.",
                Severity.HIGH,
                15,
                "Script",
                "Obfuscation",
            )
        return self._finding(
            "script_persistence",
            "Script-Based Persistence",
            f"Persistence uses {interpreter} interpreter. Script-based persistence is easier to modify "
            "without detection.",
            Severity.LOW,
            5,
            "Script",
            "Interpreter",
        )

    def _system_impersonation(self, item: PersistenceItem) -> Finding | None:
        if item.is_apple_signed:
            return None
        name = item.name.lower()
        if not any(tok in name for tok in _IMPERSONATION_TOKENS):
            return None
        return self._finding(
            "system_impersonation",
            "System Process Impersonation",
            "Non-Apple item using system-like naming. May be attempting to blend in with legitimate system "
            "processes.",
            Severity.HIGH,
            15,
            "Impersonation",
            "Evasion",
        )

    def _frequent_restart(self, item: PersistenceItem) -> Finding | None:
        interval = item.start_interval
        if interval is None or interval >= 60:
            return None
        return self._finding(
            "frequent_restart",
            "Frequent Restart Pattern",
            f"StartInterval of {interval} seconds. Very frequent execution may indicate watchdog behavior or "
            "polling for C2 commands.",
            Severity.MEDIUM,
            10,
            "Frequency",
            "Watchdog",
        )
