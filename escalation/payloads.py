# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: the JSON shapes exchanged with the remote analyst.
python attributes are snake_case, the wire is camelCase; fields that are None are left off the wire.
requests are built from PersistenceItem / DiffResult, responses are parsed back from the model's JSON.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import dataclasses  # generic field walking for the wire mixin
import platform  # hostname and OS version for SystemInfo
from dataclasses import dataclass, field  # DTO declarations
from datetime import datetime  # timestamps become ISO strings
from enum import Enum  # AISeverity
from typing import Any, ClassVar  # wire values and the nested-type map

from agent.change_detector import DiffResult, ModifiedItem
from algorithm.models import Finding, PersistenceItem, TrustLevel, utcnow


TITLE_MAX_CHARS = 50  # notification title limit the item prompt asks for


def _camel(name: str) -> str:
    head, *rest = name.split("_")
    return head + "".join(p.capitalize() for p in rest)


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


class _WireModel:
    """Mixin for dataclasses: camelCase to_dict without None fields, and a from_dict that follows `_nested`."""

    _nested: ClassVar[dict[str, type]] = {}  # field name -> DTO class for nested objects or lists of them

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {}
        for f in dataclasses.fields(self):  # type: ignore[arg-type]
            value = getattr(self, f.name)
            if value is None:
                continue
            if isinstance(value, _WireModel):
                value = value.to_dict()
            elif isinstance(value, list):
                value = [v.to_dict() if isinstance(v, _WireModel) else v for v in value]
            out[_camel(f.name)] = value
        return out

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Any:
        kwargs: dict[str, Any] = {}
        for f in dataclasses.fields(cls):  # type: ignore[arg-type]
            key = _camel(f.name)
            if key not in data:
                continue  # let the dataclass default apply
            value = data[key]
            sub = cls._nested.get(f.name)
            if sub is not None and value is not None:
                if isinstance(value, list):
                    value = [sub.from_dict(v) for v in value]  # type: ignore[attr-defined]
                else:
                    value = sub.from_dict(value)  # type: ignore[attr-defined]
            kwargs[f.name] = value
        return cls(**kwargs)


# AI severity


class AISeverity(str, Enum):
    INFO = "info"
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"

    @property
    def rank(self) -> int:
        return _AI_ORDER.index(self)

    def __lt__(self, other: object) -> bool:
        if not isinstance(other, AISeverity):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other: object) -> bool:
        if not isinstance(other, AISeverity):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other: object) -> bool:
        if not isinstance(other, AISeverity):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other: object) -> bool:
        if not isinstance(other, AISeverity):
            return NotImplemented
        return self.rank >= other.rank

    @property
    def display_name(self) -> str:
        return self.value.capitalize()

    @classmethod
    def parse(cls, raw: Any) -> AISeverity:
        # the model sometimes answers "High" or something off-schema; unknown means info
        try:
            return cls(str(raw).strip().lower())
        except ValueError:
            return cls.INFO


_AI_ORDER = (AISeverity.INFO, AISeverity.LOW, AISeverity.MEDIUM, AISeverity.HIGH, AISeverity.CRITICAL)


# diff analysis request


@dataclass
class ItemSummary(_WireModel):
    identifier: str
    name: str
    category: str
    trust_level: str
    risk_score: int
    is_apple_signed: bool
    has_lolbins: bool
    executable_path: str | None = None

    @classmethod
    def from_item(cls, item: PersistenceItem) -> ItemSummary:
        return cls(
            identifier=item.identifier,
            name=item.name,
            category=item.category.value,
            trust_level=item.trust_level.value,
            risk_score=item.risk_score or 0,
            is_apple_signed=item.is_apple_signed,
            has_lolbins=item.has_lolbins,
            executable_path=item.executable_path,
        )


@dataclass
class ModifiedItemSummary(_WireModel):
    identifier: str
    name: str
    changes: list[str] = field(default_factory=list)

    @classmethod
    def from_modified(cls, m: ModifiedItem) -> ModifiedItemSummary:
        return cls(identifier=m.identifier, name=m.name, changes=list(m.changes))


@dataclass
class SystemStats(_WireModel):
    total_items: int
    unsigned_count: int
    critical_risk_count: int
    high_risk_count: int
    lolbin_item_count: int

    @classmethod
    def from_items(cls, items: list[PersistenceItem]) -> SystemStats:
        scores = [it.risk_score or 0 for it in items]
        return cls(
            total_items=len(items),
            unsigned_count=sum(1 for it in items if it.trust_level == TrustLevel.UNSIGNED),
            critical_risk_count=sum(1 for s in scores if s >= 75),
            high_risk_count=sum(1 for s in scores if 50 <= s < 75),
            lolbin_item_count=sum(1 for it in items if it.has_lolbins),
        )


@dataclass
class SystemInfo(_WireModel):
    hostname: str
    macos_version: str

    @classmethod
    def current(cls) -> SystemInfo:
        mac = platform.mac_ver()[0]  # empty string off macOS
        return cls(
            hostname=platform.node() or "Unknown",
            macos_version=f"macOS {mac}" if mac else platform.platform(),
        )


@dataclass
class AnalysisRequest(_WireModel):
    diff_summary: str
    added_items: list[ItemSummary]
    removed_items: list[ItemSummary]
    modified_items: list[ModifiedItemSummary]
    current_stats: SystemStats
    system_info: SystemInfo

    _nested: ClassVar[dict[str, type]] = {
        "added_items": ItemSummary,
        "removed_items": ItemSummary,
        "modified_items": ModifiedItemSummary,
        "current_stats": SystemStats,
        "system_info": SystemInfo,
    }

    @classmethod
    def build(cls, diff: DiffResult, current: list[PersistenceItem], system_info: SystemInfo | None = None) -> AnalysisRequest:
        return cls(
            diff_summary=diff.summary,
            added_items=[ItemSummary.from_item(it) for it in diff.added],
            removed_items=[ItemSummary.from_item(it) for it in diff.removed],
            modified_items=[ModifiedItemSummary.from_modified(m) for m in diff.modified],
            current_stats=SystemStats.from_items(current),
            system_info=system_info or SystemInfo.current(),
        )


# single item analysis request


@dataclass
class SignatureDetails(_WireModel):
    is_signed: bool
    is_valid: bool
    is_apple_signed: bool
    is_notarized: bool
    has_hardened_runtime: bool
    is_certificate_expired: bool
    team_identifier: str | None = None
    organization_name: str | None = None
    common_name: str | None = None
    signing_authority: str | None = None
    certificate_expiration_date: str | None = None


@dataclass
class LOLBinDetail(_WireModel):
    binary: str
    category: str
    severity: str
    description: str
    reason: str
    risk_points: int
    mitre_technique: str | None = None

    @classmethod
    def from_finding(cls, f: Finding) -> LOLBinDetail:
        ev = f.evidence
        return cls(
            binary=str(ev.get("binary", f.title)),
            category=str(ev.get("category", "")),
            severity=f.severity.value,
            description=f.description,
            reason=str(ev.get("reason", "")),
            risk_points=f.risk_points,
            mitre_technique=ev.get("mitre_technique"),
        )


@dataclass
class BehavioralDetail(_WireModel):
    type: str
    title: str
    description: str
    severity: str
    risk_points: int
    tags: list[str] = field(default_factory=list)

    @classmethod
    def from_finding(cls, f: Finding) -> BehavioralDetail:
        return cls(f.type, f.title, f.description, f.severity.value, f.risk_points, list(f.evidence.get("tags", [])))


@dataclass
class IntentMismatchDetail(_WireModel):
    type: str
    title: str
    description: str
    severity: str
    risk_points: int
    plist_intent: str
    binary_reality: str

    @classmethod
    def from_finding(cls, f: Finding) -> IntentMismatchDetail:
        ev = f.evidence
        return cls(
            f.type, f.title, f.description, f.severity.value, f.risk_points,
            str(ev.get("plist_intent", "")), str(ev.get("binary_reality", "")),
        )


@dataclass
class AgeAnomalyDetail(_WireModel):
    type: str
    title: str
    description: str
    severity: str
    risk_points: int
    plist_age: str
    binary_age: str
    time_difference: str

    @classmethod
    def from_finding(cls, f: Finding) -> AgeAnomalyDetail:
        ev = f.evidence
        return cls(
            f.type, f.title, f.description, f.severity.value, f.risk_points,
            str(ev.get("plist_age", "")), str(ev.get("binary_age", "")), str(ev.get("time_difference", "")),
        )


@dataclass
class DetailedItemAnalysis(_WireModel):
    """Everything known about one changed item, sent so the analyst can decide whether to alert."""

    change_type: str
    identifier: str
    name: str
    category: str
    is_enabled: bool
    is_loaded: bool
    trust_level: str
    discovered_at: str
    system_info: SystemInfo
    changes: list[str] | None = None
    plist_path: str | None = None
    executable_path: str | None = None
    parent_app_path: str | None = None
    working_directory: str | None = None
    program_arguments: list[str] | None = None
    run_at_load: bool | None = None
    keep_alive: bool | None = None
    environment_variables: dict[str, str] | None = None
    start_interval: int | None = None
    start_calendar_interval: list[dict[str, int]] | None = None
    signature: SignatureDetails | None = None
    risk_score: int | None = None
    risk_details: list[str] | None = None
    lolbins_detections: list[LOLBinDetail] | None = None
    lolbins_risk: int | None = None
    behavioral_anomalies: list[BehavioralDetail] | None = None
    behavioral_risk_points: int | None = None
    intent_mismatches: list[IntentMismatchDetail] | None = None
    intent_mismatch_risk_points: int | None = None
    age_anomalies: list[AgeAnomalyDetail] | None = None
    age_anomaly_risk_points: int | None = None
    plist_created_at: str | None = None
    plist_modified_at: str | None = None
    binary_created_at: str | None = None
    binary_modified_at: str | None = None

    _nested: ClassVar[dict[str, type]] = {
        "system_info": SystemInfo,
        "signature": SignatureDetails,
        "lolbins_detections": LOLBinDetail,
        "behavioral_anomalies": BehavioralDetail,
        "intent_mismatches": IntentMismatchDetail,
        "age_anomalies": AgeAnomalyDetail,
    }

    @classmethod
    def from_item(
        cls,
        item: PersistenceItem,
        change_type: str,
        changes: list[str] | None = None,
        system_info: SystemInfo | None = None,
        now: datetime | None = None,
    ) -> DetailedItemAnalysis:
        sig = item.signature_info
        signature = None
        if sig is not None:
            signature = SignatureDetails(
                is_signed=sig.is_signed,
                is_valid=sig.is_valid,
                is_apple_signed=sig.is_apple_signed,
                is_notarized=sig.is_notarized,
                has_hardened_runtime=sig.has_hardened_runtime,
                is_certificate_expired=sig.is_certificate_expired(now or utcnow()),
                team_identifier=sig.team_identifier,
                organization_name=sig.organization_name,
                common_name=sig.common_name,
                signing_authority=sig.signing_authority,
                certificate_expiration_date=_iso(sig.certificate_expiration),
            )

        def _details(findings: list[Finding] | None, conv: Any) -> list[Any] | None:
            return None if findings is None else [conv(f) for f in findings]

        return cls(
            change_type=change_type,
            changes=changes,
            identifier=item.identifier,
            name=item.name,
            category=item.category.value,
            is_enabled=item.is_enabled,
            is_loaded=item.is_loaded,
            trust_level=item.trust_level.value,
            discovered_at=item.discovered_at.isoformat(),
            system_info=system_info or SystemInfo.current(),
            plist_path=item.plist_path,
            executable_path=item.executable_path,
            parent_app_path=item.parent_app_path,
            working_directory=item.working_directory,
            program_arguments=item.program_arguments,
            run_at_load=item.run_at_load,
            keep_alive=item.keep_alive,
            environment_variables=item.environment_variables,
            start_interval=item.start_interval,
            start_calendar_interval=item.start_calendar_interval,
            signature=signature,
            risk_score=item.risk_score,
            risk_details=[r.describe() for r in item.risk_details] if item.risk_details is not None else None,
            lolbins_detections=_details(item.lolbins_detections, LOLBinDetail.from_finding),
            lolbins_risk=item.lolbins_risk,
            behavioral_anomalies=_details(item.behavioral_anomalies, BehavioralDetail.from_finding),
            behavioral_risk_points=item.behavioral_risk_points,
            intent_mismatches=_details(item.intent_mismatches, IntentMismatchDetail.from_finding),
            intent_mismatch_risk_points=item.intent_mismatch_risk_points,
            age_anomalies=_details(item.age_anomalies, AgeAnomalyDetail.from_finding),
            age_anomaly_risk_points=item.age_anomaly_risk_points,
            plist_created_at=_iso(item.plist_created_at),
            plist_modified_at=_iso(item.plist_modified_at),
            binary_created_at=_iso(item.binary_created_at),
            binary_modified_at=_iso(item.binary_modified_at),
        )


# responses


@dataclass
class AIFinding(_WireModel):
    severity: str
    title: str
    description: str
    affected_items: list[str] = field(default_factory=list)
    mitre_techniques: list[str] | None = None

    @property
    def level(self) -> AISeverity:
        return AISeverity.parse(self.severity)


@dataclass
class DiffAnalysisResponse(_WireModel):
    severity: str
    summary: str
    findings: list[AIFinding] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    _nested: ClassVar[dict[str, type]] = {"findings": AIFinding}

    @property
    def level(self) -> AISeverity:
        return AISeverity.parse(self.severity)


@dataclass
class SingleItemAnalysisResponse(_WireModel):
    should_notify: bool
    severity: str
    title: str
    explanation: str
    recommendation: str | None = None
    mitre_techniques: list[str] | None = None

    def __post_init__(self) -> None:
        # "false" as a string is truthy, so only a real JSON boolean is accepted
        if not isinstance(self.should_notify, bool):
            raise TypeError(f"shouldNotify must be a boolean, got {self.should_notify!r}")
        self.title = str(self.title)[:TITLE_MAX_CHARS]

    @property
    def level(self) -> AISeverity:
        return AISeverity.parse(self.severity)
