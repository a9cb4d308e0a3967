# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: spot legitimate macOS system binaries ("living off the land" binaries) being used from a persistence item.

how it works
1. take the lowercased last path component of the executable (falls back to the plist path) and look it up.
2. walk every program argument: look up its last path component, and also search the whole argument text
   for any known binary name so inline invocations like `bash -c "curl ..."` are caught.
3. keep one detection per binary name.

each detection starts at the table's base severity and then runs through an ordered table of combo rules
(binary + launch context). rules are evaluated top to bottom and the LAST matching rule sets the severity,
while every matching rule contributes its reason. points come straight from the final severity.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import posixpath  # macOS paths are posix paths regardless of where we run
from collections.abc import Callable  # type hint for combo rule predicates
from dataclasses import dataclass  # for table entries and rules

from algorithm.models import Category, Finding, PersistenceItem, Severity

DEFAULT_REASON = "LOLBin detected in persistence context"


@dataclass(frozen=True)
class LOLBin:
    category: str  # Scripting | Network/Downloader | Execution | Discovery | Persistence
    severity: Severity  # base severity before any context is applied
    description: str
    mitre: str | None = None  # ATT&CK technique id, informational only


_S, _N, _E, _D, _P = "Scripting", "Network/Downloader", "Execution", "Discovery", "Persistence"
_low, _med, _high, _crit = Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL

# insertion order matters: inline substring matching walks the table in this order
LOLBINS: dict[str, LOLBin] = {
    # scripting
    "osascript": LOLBin(_S, _high, "AppleScript execution - can control GUI, access keychain, execute arbitrary commands", "T1059.002"),
    "python": LOLBin(_S, _med, "Python interpreter - arbitrary code execution", "T1059.006"),
    "python3": LOLBin(_S, _med, "Python3 interpreter - arbitrary code execution", "T1059.006"),
    "perl": LOLBin(_S, _med, "Perl interpreter - arbitrary code execution", "T1059"),
    "ruby": LOLBin(_S, _med, "Ruby interpreter - arbitrary code execution", "T1059"),
    "bash": LOLBin(_S, _med, "Bash shell - command execution", "T1059.004"),
    "sh": LOLBin(_S, _low, "Shell - command execution", "T1059.004"),
    "zsh": LOLBin(_S, _low, "Zsh shell - command execution", "T1059.004"),
    # network / downloaders
    "curl": LOLBin(_N, _high, "HTTP client - can download and execute payloads", "T1105"),
    "wget": LOLBin(_N, _high, "HTTP client - can download payloads", "T1105"),
    "nc": LOLBin(_N, _crit, "Netcat - reverse shells, data exfiltration", "T1095"),
    "netcat": LOLBin(_N, _crit, "Netcat - reverse shells, data exfiltration", "T1095"),
    "nscurl": LOLBin(_N, _med, "macOS native curl - network requests", "T1105"),
    "sftp": LOLBin(_N, _med, "SFTP client - file transfer", "T1105"),
    "scp": LOLBin(_N, _med, "Secure copy - file transfer", "T1105"),
    # execution helpers
    "open": LOLBin(_E, _low, "Open command - can launch apps/URLs", "T1204"),
    "xattr": LOLBin(_E, _med, "Extended attributes - can remove quarantine flag", "T1553.001"),
    "launchctl": LOLBin(_P, _high, "Launchd control - persistence manipulation", "T1569.001"),
    "defaults": LOLBin(_E, _low, "Defaults command - plist manipulation", "T1647"),
    "plutil": LOLBin(_E, _low, "Plist utility - plist manipulation", "T1647"),
    "sqlite3": LOLBin(_D, _med, "SQLite - can access TCC.db, browser data", "T1005"),
    # discovery / recon
    "security": LOLBin(_D, _high, "Security command - keychain access, certificate manipulation", "T1555.001"),
    "dscl": LOLBin(_D, _med, "Directory Services - user enumeration", "T1087.001"),
    "systemsetup": LOLBin(_D, _low, "System configuration", "T1082"),
    "sw_vers": LOLBin(_D, _low, "System version info", "T1082"),
    "ioreg": LOLBin(_D, _low, "I/O Registry - hardware enumeration", "T1082"),
    "diskutil": LOLBin(_D, _low, "Disk utility - volume enumeration", "T1082"),
    # potentially dangerous
    "dd": LOLBin(_E, _med, "Data duplicator - disk operations", "T1561"),
    "tar": LOLBin(_E, _low, "Archive utility - can extract payloads", "T1560"),
    "unzip": LOLBin(_E, _low, "Unzip - can extract payloads", "T1560"),
    "base64": LOLBin(_E, _med, "Base64 - encode/decode payloads (obfuscation)", "T1027"),
    "xxd": LOLBin(_E, _med, "Hex dump - payload manipulation", "T1027"),
    "openssl": LOLBin(_E, _high, "OpenSSL - encryption, C2 communication", "T1573"),
    "ssh": LOLBin(_N, _med, "SSH client - remote access, tunneling", "T1021.004"),
    "screen": LOLBin(_E, _low, "Terminal multiplexer - session persistence", "T1505"),
    "tmux": LOLBin(_E, _low, "Terminal multiplexer - session persistence", "T1505"),
    "caffeinate": LOLBin(_E, _low, "Prevent sleep - keep malware running", "T1497"),
    "pmset": LOLBin(_E, _med, "Power management - prevent sleep/shutdown", "T1497"),
}


def _auto_start(item: PersistenceItem) -> bool:
    return item.run_at_load is True or item.keep_alive is True


@dataclass(frozen=True)
class ComboRule:
    binaries: frozenset[str]  # which detected binaries the rule applies to
    when: Callable[[PersistenceItem], bool]  # launch context that must hold
    severity: Severity  # severity the rule assigns (overwrites earlier rules)
    reason: str

    def matches(self, binary: str, item: PersistenceItem) -> bool:
        return binary in self.binaries and self.when(item)


_NET = frozenset({"curl", "wget", "nc", "netcat"})
_INTERP = frozenset({"python", "python3", "perl", "ruby"})

# evaluated top to bottom; last match wins for severity, every match adds its reason
COMBO_RULES: tuple[ComboRule, ...] = (
    ComboRule(frozenset({"osascript"}), _auto_start, _crit, "AppleScript with persistence - can automate malicious GUI actions"),
    ComboRule(_NET, lambda i: i.run_at_load is True, _crit, "Network tool with auto-start - classic download & execute pattern"),
    ComboRule(_NET, lambda i: i.keep_alive is True, _crit, "Network tool with KeepAlive - persistent C2 channel"),
    ComboRule(_INTERP, lambda i: i.category == Category.PRIVILEGED_HELPERS, _crit, "Script interpreter as privileged helper - elevated code execution"),
    ComboRule(_INTERP, lambda i: i.category == Category.LAUNCH_DAEMONS, _high, "Script interpreter in LaunchDaemon - runs as root"),
    ComboRule(frozenset({"security"}), _auto_start, _crit, "Keychain tool with persistence - credential harvesting risk"),
    ComboRule(frozenset({"launchctl"}), lambda i: i.run_at_load is True, _high, "Launchctl with auto-start - can install additional persistence"),
    ComboRule(frozenset({"xattr"}), lambda i: i.run_at_load is True, _high, "Xattr with auto-start - may remove quarantine from downloads"),
    ComboRule(frozenset({"sqlite3"}), _auto_start, _high, "SQLite with persistence - can access TCC.db, browser data, cookies"),
    ComboRule(frozenset({"openssl"}), _auto_start, _high, "OpenSSL with persistence - encrypted command & control"),
    ComboRule(frozenset({"base64"}), lambda i: i.run_at_load is True, _med, "Base64 with auto-start - payload obfuscation technique"),
)


def _last_component(path: str) -> str:
    return posixpath.basename(path.rstrip("/")) or path


class LOLBinDetector:
    """Finds LOLBin usage in an item's executable and arguments."""

    def __init__(
        self,
        table: dict[str, LOLBin] | None = None,
        rules: tuple[ComboRule, ...] = COMBO_RULES,
    ) -> None:
        self.table = table if table is not None else LOLBINS  # binary name -> base info
        self.rules = rules  # ordered combo rules

    def analyze(self, item: PersistenceItem) -> list[Finding]:
        path = item.executable_path or item.plist_path
        if not path:  # nothing to look at
            return []

        detections: list[Finding] = []
        seen: set[str] = set()

        def _add(binary: str) -> None:
            if binary in seen or binary not in self.table:
                return
            seen.add(binary)
            detections.append(self._detect(binary, item))

        exe_name = _last_component(path).lower()
        _add(exe_name)  # the executable itself

        for arg in item.program_arguments or []:
            arg_lower = arg.lower()
            name = _last_component(arg_lower)
            if name != exe_name:
                _add(name)
            # inline use, e.g. `sh -c "curl http://x | sh"`
            for binary in self.table:
                if binary in arg_lower:
                    _add(binary)

        return detections

    def contextual_severity(self, binary: str, item: PersistenceItem) -> tuple[Severity, str]:
        severity = self.table[binary].severity
        reasons: list[str] = []
        for rule in self.rules:
            if rule.matches(binary, item):
                severity = rule.severity  # last match wins
                reasons.append(rule.reason)
        return severity, "; ".join(reasons) if reasons else DEFAULT_REASON

    def _detect(self, binary: str, item: PersistenceItem) -> Finding:
        info = self.table[binary]
        severity, reason = self.contextual_severity(binary, item)
        return Finding(
            type="lolbin",
            title=binary,
            description=info.description,
            severity=severity,
            risk_points=severity.points,
            evidence={
                "binary": binary,
                "category": info.category,
                "reason": reason,
                "mitre_technique": info.mitre,
            },
        )


def total_risk_points(detections: list[Finding]) -> int:
    return sum(d.risk_points for d in detections)
