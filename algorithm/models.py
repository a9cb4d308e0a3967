# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: shared data model for everything that scores or watches persistence items.
a PersistenceItem is what the discovery layer hands us (already populated), plus an optional
analysis snapshot that only the risk engine fills in. analyzers all return the same Finding shape
so the aggregator, the monitor, and the remote analyst payloads can treat them uniformly.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import dataclasses  # for copying items with a fresh analysis snapshot
from collections.abc import Iterable  # type hint for severity aggregation
from dataclasses import dataclass, field  # for the record types below
from datetime import datetime, timezone  # all item timestamps are timezone-aware
from enum import Enum  # closed sets (category, trust, severity)
from typing import Any  # free-form evidence values

from algorithm.entitlements import Capabilities


def utcnow() -> datetime:
    # single place to read the clock so tests can reason about "now"
    return datetime.now(timezone.utc)


class Category(str, Enum):
    LAUNCH_DAEMONS = "launch_daemons"
    LAUNCH_AGENTS = "launch_agents"
    LOGIN_ITEMS = "login_items"
    PRIVILEGED_HELPERS = "privileged_helpers"
    KERNEL_EXTENSIONS = "kernel_extensions"
    SYSTEM_EXTENSIONS = "system_extensions"
    CRON_JOBS = "cron_jobs"
    PERIODIC_SCRIPTS = "periodic_scripts"
    SHELL_STARTUP_FILES = "shell_startup_files"
    LOGIN_HOOKS = "login_hooks"
    AUTHORIZATION_PLUGINS = "authorization_plugins"
    SPOTLIGHT_IMPORTERS = "spotlight_importers"
    QUICKLOOK_PLUGINS = "quicklook_plugins"
    DIRECTORY_SERVICES_PLUGINS = "directory_services_plugins"
    CONFIGURATION_PROFILES = "configuration_profiles"

    @property
    def display_name(self) -> str:
        return _DISPLAY_NAMES[self]

    @property
    def monitored_paths(self) -> tuple[str, ...]:
        # directories a watcher should look at; empty means the category cannot be watched
        return _MONITORED_PATHS.get(self, ())

    @property
    def is_core(self) -> bool:
        return self in CORE_CATEGORIES

    @classmethod
    def watchable(cls) -> list[Category]:
        return [c for c in cls if c.monitored_paths]


_DISPLAY_NAMES: dict[Category, str] = {
    Category.LAUNCH_DAEMONS: "Launch Daemons",
    Category.LAUNCH_AGENTS: "Launch Agents",
    Category.LOGIN_ITEMS: "Login Items",
    Category.PRIVILEGED_HELPERS: "Privileged Helpers",
    Category.KERNEL_EXTENSIONS: "Kernel Extensions",
    Category.SYSTEM_EXTENSIONS: "System Extensions",
    Category.CRON_JOBS: "Cron Jobs",
    Category.PERIODIC_SCRIPTS: "Periodic Scripts",
    Category.SHELL_STARTUP_FILES: "Shell Startup Files",
    Category.LOGIN_HOOKS: "Login Hooks",
    Category.AUTHORIZATION_PLUGINS: "Authorization Plugins",
    Category.SPOTLIGHT_IMPORTERS: "Spotlight Importers",
    Category.QUICKLOOK_PLUGINS: "Quick Look Plugins",
    Category.DIRECTORY_SERVICES_PLUGINS: "Directory Services Plugins",
    Category.CONFIGURATION_PROFILES: "Configuration Profiles",
}

_MONITORED_PATHS: dict[Category, tuple[str, ...]] = {
    Category.LAUNCH_DAEMONS: ("/Library/LaunchDaemons", "/System/Library/LaunchDaemons"),
    Category.LAUNCH_AGENTS: (
        "/Library/LaunchAgents",
        "~/Library/LaunchAgents",
        "/System/Library/LaunchAgents",
    ),
    Category.LOGIN_ITEMS: ("~/Library/Application Support/com.apple.backgroundtaskmanagementagent",),
    Category.PRIVILEGED_HELPERS: ("/Library/PrivilegedHelperTools",),
    Category.KERNEL_EXTENSIONS: ("/Library/Extensions",),
    Category.SYSTEM_EXTENSIONS: ("/Library/SystemExtensions",),
    Category.CRON_JOBS: ("/usr/lib/cron/tabs",),
    Category.PERIODIC_SCRIPTS: ("/etc/periodic/daily", "/etc/periodic/weekly", "/etc/periodic/monthly"),
    Category.AUTHORIZATION_PLUGINS: ("/Library/Security/SecurityAgentPlugins",),
    Category.SPOTLIGHT_IMPORTERS: ("/Library/Spotlight", "~/Library/Spotlight"),
    Category.QUICKLOOK_PLUGINS: ("/Library/QuickLook", "~/Library/QuickLook"),
    Category.DIRECTORY_SERVICES_PLUGINS: ("/Library/DirectoryServices/PlugIns",),
}

CORE_CATEGORIES: frozenset[Category] = frozenset(
    {
        Category.LAUNCH_DAEMONS,
        Category.LAUNCH_AGENTS,
        Category.LOGIN_ITEMS,
        Category.PRIVILEGED_HELPERS,
        Category.KERNEL_EXTENSIONS,
        Category.SYSTEM_EXTENSIONS,
    }
)


class TrustLevel(str, Enum):
    APPLE = "apple"
    KNOWN_VENDOR = "known_vendor"
    SIGNED = "signed"
    UNKNOWN = "unknown"
    UNSIGNED = "unsigned"
    SUSPICIOUS = "suspicious"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _SEVERITY_ORDER.index(self)

    @property
    def points(self) -> int:
        # default risk points per severity; analyzers may override per finding
        return _SEVERITY_POINTS[self]

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def highest(cls, severities: Iterable[Severity]) -> Severity:
        # maximum by rank, and "low" when there is nothing to compare
        best = cls.LOW
        for sev in severities:
            if sev.rank > best.rank:
                best = sev
        return best


_SEVERITY_ORDER = (Severity.LOW, Severity.MEDIUM, Severity.HIGH, Severity.CRITICAL)
_SEVERITY_POINTS = {Severity.LOW: 5, Severity.MEDIUM: 10, Severity.HIGH: 15, Severity.CRITICAL: 20}


@dataclass(frozen=True)
class SignatureInfo:
    """Code-signing snapshot as reported by the discovery layer."""

    is_signed: bool = False
    is_valid: bool = False
    is_apple_signed: bool = False
    is_notarized: bool = False
    has_hardened_runtime: bool = False
    is_ad_hoc: bool = False
    team_identifier: str | None = None
    organization_name: str | None = None
    common_name: str | None = None
    signing_authority: str | None = None
    certificate_expiration: datetime | None = None

    def is_certificate_expired(self, now: datetime | None = None) -> bool:
        if self.certificate_expiration is None:
            return False
        return self.certificate_expiration < (now or utcnow())


@dataclass(frozen=True)
class Finding:
    """One thing an analyzer noticed about an item."""

    type: str  # closed tag per analyzer, e.g. "frequent_restart"
    title: str
    description: str
    severity: Severity
    risk_points: int
    evidence: dict[str, Any] = field(default_factory=dict)  # analyzer-specific context

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "title": self.title,
            "description": self.description,
            "severity": self.severity.value,
            "risk_points": self.risk_points,
            "evidence": dict(self.evidence),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Finding:
        return cls(
            type=str(data["type"]),
            title=str(data["title"]),
            description=str(data.get("description", "")),
            severity=Severity(data["severity"]),
            risk_points=int(data.get("risk_points", 0)),
            evidence=dict(data.get("evidence") or {}),
        )


@dataclass(frozen=True)
class RiskFactor:
    factor: str  # short machine-ish name of the signal
    description: str
    points: int

    def describe(self) -> str:
        return f"{self.factor}: {self.description} (+{self.points})"


@dataclass
class AnalyzerReport:
    """What a multi-check analyzer returns: its findings plus a one-line summary."""

    findings: list[Finding]
    summary: str

    @property
    def has_findings(self) -> bool:
        return bool(self.findings)

    @property
    def overall_severity(self) -> Severity:
        return Severity.highest(f.severity for f in self.findings)

    @property
    def total_risk_points(self) -> int:
        return sum(f.risk_points for f in self.findings)


_TIMESTAMP_FIELDS = (
    "plist_created_at",
    "plist_modified_at",
    "binary_created_at",
    "binary_modified_at",
    "last_executed_at",
    "discovered_at",
)


@dataclass
class PersistenceItem:
    """
    One auto-start mechanism. `identifier` is the diff key: two scans of the same category must
    give the same mechanism the same identifier, or change detection sees a remove plus an add.
    Analysis fields are owned by the risk engine; everyone else copies with `with_analysis`.
    """

    identifier: str
    name: str
    category: Category

    # state
    is_enabled: bool = True
    is_loaded: bool = False

    # paths
    plist_path: str | None = None
    executable_path: str | None = None
    parent_app_path: str | None = None

    # launch configuration
    program_arguments: list[str] | None = None
    run_at_load: bool | None = None
    keep_alive: bool | None = None
    start_interval: int | None = None
    start_calendar_interval: list[dict[str, int]] | None = None
    environment_variables: dict[str, str] | None = None
    working_directory: str | None = None

    # trust / signature snapshot
    trust_level: TrustLevel = TrustLevel.UNKNOWN
    signature_info: SignatureInfo | None = None
    entitlements: list[str] | None = None  # opaque keys, None when never extracted

    # analysis snapshot
    risk_score: int | None = None
    risk_details: list[RiskFactor] | None = None
    lolbins_detections: list[Finding] | None = None
    lolbins_risk: int | None = None
    behavioral_anomalies: list[Finding] | None = None
    behavioral_severity: Severity | None = None
    behavioral_risk_points: int | None = None
    intent_mismatches: list[Finding] | None = None
    intent_mismatch_severity: Severity | None = None
    intent_mismatch_risk_points: int | None = None
    age_anomalies: list[Finding] | None = None
    age_anomaly_severity: Severity | None = None
    age_anomaly_risk_points: int | None = None

    # timestamps
    plist_created_at: datetime | None = None
    plist_modified_at: datetime | None = None
    binary_created_at: datetime | None = None
    binary_modified_at: datetime | None = None
    last_executed_at: datetime | None = None
    discovered_at: datetime = field(default_factory=utcnow)  # set once, at first observation

    capabilities: Capabilities | None = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        self.category = Category(self.category)  # accept raw strings from JSON
        self.trust_level = TrustLevel(self.trust_level)
        for name in _TIMESTAMP_FIELDS:  # naive timestamps are taken as UTC
            ts = getattr(self, name)
            if ts is not None and ts.tzinfo is None:
                setattr(self, name, ts.replace(tzinfo=timezone.utc))
        self.capabilities = Capabilities.from_entitlements(self.entitlements)

    @property
    def is_apple_signed(self) -> bool:
        return bool(self.signature_info and self.signature_info.is_apple_signed)

    @property
    def has_lolbins(self) -> bool:
        return bool(self.lolbins_detections)

    def with_analysis(self, **fields: Any) -> PersistenceItem:
        # copy, never mutate: the monitor and the stores may still hold the old object
        return dataclasses.replace(self, **fields)
