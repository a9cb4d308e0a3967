# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: catch items whose plist looks harmless while the binary behind it holds heavy capabilities.
this is the dropper pattern: an innocent-looking launch config pointing at a binary with dangerous entitlements.

two profiles are built per item
• plist intent: how simple / passive / watchdog-like the launch config looks, plus a 0..10 complexity score
• binary reality: the typed capability flags resolved once from the entitlement keys (see algorithm.entitlements)

then four mismatch checks run (the last one also raises a separate keychain flag). no entitlement data
means no findings at all, so a missing extraction never turns into a false positive.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from dataclasses import dataclass  # for the plist profile record

from algorithm.entitlements import Capabilities
from algorithm.models import AnalyzerReport, Finding, PersistenceItem, Severity

_BACKGROUND_TOKENS = ("helper", "agent", "service", "daemon", "updater", "sync")
_NETWORK_ARG_TOKENS = ("http", "url", "curl", "download", "upload", "server")
_SCRIPT_ARG_TOKENS = ("python", "ruby", "perl", "osascript", "bash", "-c ")
MAX_COMPLEXITY = 10


@dataclass(frozen=True)
class PlistProfile:
    is_simple: bool  # just runs a binary with at most two arguments
    is_passive: bool  # neither RunAtLoad nor KeepAlive
    is_watchdog: bool  # KeepAlive or a StartInterval under five minutes
    is_background: bool  # name reads like a background service
    has_network_args: bool
    has_script_args: bool
    complexity: int  # 0..10
    arg_count: int

    @classmethod
    def from_item(cls, item: PersistenceItem) -> PlistProfile:
        complexity = 0
        args = item.program_arguments or []
        arg_count = len(args)
        if arg_count > 3:
            complexity += 2
        if item.run_at_load is True:
            complexity += 1
        if item.keep_alive is True:
            complexity += 2
        joined = " ".join(args).lower()
        has_network = any(tok in joined for tok in _NETWORK_ARG_TOKENS)
        if has_network:
            complexity += 2
        has_script = any(tok in joined for tok in _SCRIPT_ARG_TOKENS)
        if has_script:
            complexity += 2
        complexity += len(item.environment_variables or {})  # each env var adds one
        name = item.name.lower()
        return cls(
            is_simple=arg_count <= 2,
            is_passive=item.run_at_load is not True and item.keep_alive is not True,
            is_watchdog=item.keep_alive is True
            or (item.start_interval is not None and item.start_interval < 300),
            is_background=any(tok in name for tok in _BACKGROUND_TOKENS),
            has_network_args=has_network,
            has_script_args=has_script,
            complexity=max(0, min(complexity, MAX_COMPLEXITY)),
            arg_count=arg_count,
        )


class IntentMismatchAnalyzer:
    """Compares what the plist declares with what the binary is entitled to do."""

    def analyze(self, item: PersistenceItem) -> AnalyzerReport:
        caps = item.capabilities
        if caps is None or caps.is_empty:
            return AnalyzerReport(findings=[], summary="No intent mismatches detected")

        plist = PlistProfile.from_item(item)
        findings: list[Finding] = []
        for check in (self._innocent_plist_heavy_binary, self._passive_helper_network, self._helper_dylib):
            hit = check(plist, caps)
            if hit is not None:
                findings.append(hit)
        findings.extend(self._minimal_plist_full_entitlements(plist, caps, item))

        summary = (
            "Intent mismatch detected - plist declares one thing, binary does another"
            if findings
            else "No intent mismatches detected"
        )
        return AnalyzerReport(findings=findings, summary=summary)

    @staticmethod
    def _mismatch(
        type_: str,
        title: str,
        description: str,
        severity: Severity,
        points: int,
        plist_intent: str,
        binary_reality: str,
    ) -> Finding:
        return Finding(
            type_,
            title,
            description,
            severity,
            points,
            evidence={"plist_intent": plist_intent, "binary_reality": binary_reality},
        )

    def _innocent_plist_heavy_binary(self, plist: PlistProfile, caps: Capabilities) -> Finding | None:
        innocent = plist.is_simple and plist.complexity <= 3
        heavy = caps.dangerous or caps.tcc or len(caps.heavy) >= 3
        if not (innocent and heavy):
            return None
        heavy_list = ", ".join(h.description for h in caps.heavy) or "multiple heavy entitlements"
        return self._mismatch(
            "innocent_plist_heavy_binary",
            "Innocent Plist, Heavy Binary",
            "The plist appears simple and benign, but the binary has powerful entitlements. This is a classic "
            "dropper pattern - hide malicious capabilities behind innocent-looking configuration.",
            Severity.CRITICAL,
            25,
            f"Simple launch configuration with {plist.arg_count} arguments",
            f"Binary has: {heavy_list}",
        )

    def _passive_helper_network(self, plist: PlistProfile, caps: Capabilities) -> Finding | None:
        passive_helper = plist.is_passive and plist.is_background and not plist.has_network_args
        if not (passive_helper and caps.network):
            return None
        return self._mismatch(
            "passive_helper_network",
            "Passive Helper with Network Access",
            "Helper declared as passive background service but has network entitlements. Legitimate helpers "
            "rarely need network access unless explicitly for sync/update purposes.",
            Severity.HIGH,
            15,
            "Passive background helper with no network arguments",
            "Binary has network client/server entitlements",
        )

    def _helper_dylib(self, plist: PlistProfile, caps: Capabilities) -> Finding | None:
        if not (plist.is_background and plist.complexity <= 4 and caps.dangerous):
            return None
        return self._mismatch(
            "helper_dylib_loading",
            "Helper with Dynamic Library Loading",
            "Helper has entitlements to load unsigned code or manipulate libraries. This allows code injection "
            "and is commonly abused by malware to load malicious dylibs.",
            Severity.CRITICAL,
            20,
            "Simple helper service",
            "Can load unsigned code or manipulate DYLD environment",
        )

    def _minimal_plist_full_entitlements(
        self, plist: PlistProfile, caps: Capabilities, item: PersistenceItem
    ) -> list[Finding]:
        out: list[Finding] = []
        minimal = plist.is_simple and plist.is_passive
        full = (
            caps.count >= 5
            or (caps.keychain and caps.automation)
            or (caps.network and caps.privacy)
        )
        if minimal and full:
            out.append(
                self._mismatch(
                    "minimal_plist_full_entitlements",
                    "Minimal Config, Maximum Capabilities",
                    "The plist is minimal but the binary has extensive entitlements across multiple categories. "
                    "Legitimate software usually has entitlements that match its declared purpose.",
                    Severity.HIGH,
                    15,
                    "Minimal configuration, appears to be simple background task",
                    f"Binary has {caps.count} entitlements spanning multiple capability areas",
                )
            )
        # separate flag: keychain on a simple task that does not say it is about keychains
        if plist.is_simple and caps.keychain and "keychain" not in item.name.lower():
            out.append(
                self._mismatch(
                    "simple_task_keychain",
                    "Simple Task with Keychain Access",
                    "A simple-looking task has keychain access entitlements. This could be used for credential "
                    "harvesting.",
                    Severity.HIGH,
                    15,
                    "Simple task with no keychain-related arguments",
                    "Binary can access keychain data",
                )
            )
        return out
