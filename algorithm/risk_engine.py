# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: fold every analyzer plus the base signature/location signals into one 0..100 risk score and a tier.

how it decides
the engine starts at zero and adds points:
1. base signals: unsigned, invalid or ad-hoc signature, missing hardened runtime, expired certificate,
   suspicious executable location, RunAtLoad+KeepAlive together, and an explicit "suspicious" trust level.
2. analyzer contributions: LOLBin detections, behavioral anomalies, intent mismatches and age anomalies,
   each added as its own total.
the sum is clamped to [0, 100] and mapped to a tier through fixed bands (low < 30, medium < 60, high < 80,
critical >= 80).

config
• weights JSON is optional. every knob has a default so the engine runs out of the box.
• an analyzer that blows up is logged and counted as zero; assess() never raises on partial input.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

import json  # for loading the optional weights override file
import logging  # for reporting analyzer failures without breaking the pipeline
from collections.abc import Callable  # type hint for the guarded analyzer calls
from dataclasses import dataclass, field  # for the assessment record
from datetime import datetime  # reference time for age and certificate checks
from typing import Any, TypeVar  # flexible weight values

from algorithm.behavior import BehaviorAnalyzer, suspicious_path_fragment
from algorithm.binary_age import BinaryAgeAnalyzer
from algorithm.intent import IntentMismatchAnalyzer
from algorithm.lolbins import LOLBinDetector, total_risk_points
from algorithm.models import (
    AnalyzerReport,
    Finding,
    PersistenceItem,
    RiskFactor,
    Severity,
    TrustLevel,
    utcnow,
)

log = logging.getLogger("persistwatch.risk")

T = TypeVar("T")


def default_weights() -> dict[str, Any]:
    return {
        # tier bands on the final 0..100 score (lower bound of each tier)
        "bands": {"medium": 30, "high": 60, "critical": 80},
        # base signals
        "unsigned": 30,  # no code signature at all
        "invalid_signature": 20,  # signed but the signature does not verify
        "ad_hoc_signature": 15,  # signed with no identity behind it
        "no_hardened_runtime": 5,  # signed third-party binary without the hardened runtime
        "expired_certificate": 10,
        "suspicious_location": 20,  # tmp, shared, or hidden paths
        "aggressive_autostart": 10,  # RunAtLoad and KeepAlive together
        "suspicious_trust": 25,  # discovery already flagged the item
        # analyzer multipliers, 1.0 means "take the analyzer's points as-is"
        "analyzer_scale": {"lolbins": 1.0, "behavior": 1.0, "intent": 1.0, "age": 1.0},
    }


def tier_for_score(score: int, bands: dict[str, Any] | None = None) -> Severity:
    b = bands or default_weights()["bands"]
    if score >= int(b.get("critical", 80)):
        return Severity.CRITICAL
    if score >= int(b.get("high", 60)):
        return Severity.HIGH
    if score >= int(b.get("medium", 30)):
        return Severity.MEDIUM
    return Severity.LOW


@dataclass
class RiskAssessment:
    score: int  # 0..100
    severity: Severity  # tier from the score bands
    factors: list[RiskFactor] = field(default_factory=list)  # base signals plus analyzer totals
    lolbins: list[Finding] = field(default_factory=list)
    behavior: AnalyzerReport | None = None
    intent: AnalyzerReport | None = None
    age: AnalyzerReport | None = None


class RiskEngine:
    """Runs every analyzer over an item and aggregates the result."""

    def __init__(
        self,
        weights_path: str | None = None,
        lolbins: LOLBinDetector | None = None,
        behavior: BehaviorAnalyzer | None = None,
        intent: IntentMismatchAnalyzer | None = None,
        age: BinaryAgeAnalyzer | None = None,
    ) -> None:
        self.weights_path = weights_path  # optional JSON overrides
        self.weights = self._load_weights()
        self.lolbins = lolbins or LOLBinDetector()
        self.behavior = behavior or BehaviorAnalyzer()
        self.intent = intent or IntentMismatchAnalyzer()
        self.age = age or BinaryAgeAnalyzer()

    # config

    def _load_weights(self) -> dict[str, Any]:
        defaults = default_weights()
        if not self.weights_path:
            return defaults
        try:
            with open(self.weights_path, encoding="utf-8") as f:
                overrides = json.load(f) or {}
        except FileNotFoundError:
            return defaults  # no override file is the normal case
        except (OSError, ValueError) as exc:
            log.warning("ignoring unreadable risk weights %s: %s", self.weights_path, exc)
            return defaults
        if isinstance(overrides, dict):
            # nested dicts get a shallow update, everything else is replaced
            for k, v in overrides.items():
                if isinstance(v, dict) and isinstance(defaults.get(k), dict):
                    defaults[k].update(v)
                else:
                    defaults[k] = v
        return defaults

    # scoring

    def _guard(self, name: str, fn: Callable[[], T], empty: T) -> T:
        # analyzers are pure, but a bad field from discovery must not take the whole scan down
        try:
            return fn()
        except Exception:
            log.exception("%s analyzer failed, counting it as zero", name)
            return empty

    def _base_factors(self, item: PersistenceItem, now: datetime) -> list[RiskFactor]:
        w = self.weights
        out: list[RiskFactor] = []
        sig = item.signature_info

        unsigned = (sig is not None and not sig.is_signed) or (sig is None and item.trust_level == TrustLevel.UNSIGNED)
        if unsigned:
            out.append(RiskFactor("unsigned", "Binary is not code-signed", int(w["unsigned"])))
        elif sig is not None:
            if not sig.is_valid:
                out.append(RiskFactor("invalid_signature", "Code signature does not verify", int(w["invalid_signature"])))
            if sig.is_ad_hoc:
                out.append(RiskFactor("ad_hoc_signature", "Ad-hoc signature with no signing identity", int(w["ad_hoc_signature"])))
            if not sig.is_apple_signed and not sig.has_hardened_runtime:
                out.append(RiskFactor("no_hardened_runtime", "Hardened runtime is not enabled", int(w["no_hardened_runtime"])))
            if sig.is_certificate_expired(now):
                out.append(RiskFactor("expired_certificate", "Signing certificate has expired", int(w["expired_certificate"])))

        frag = suspicious_path_fragment(item.executable_path)
        if frag is not None:
            out.append(RiskFactor("suspicious_location", f"Executable under {frag}", int(w["suspicious_location"])))

        if item.run_at_load is True and item.keep_alive is True:
            out.append(RiskFactor("aggressive_autostart", "RunAtLoad and KeepAlive both set", int(w["aggressive_autostart"])))

        if item.trust_level == TrustLevel.SUSPICIOUS:
            out.append(RiskFactor("suspicious_trust", "Discovery flagged the item as suspicious", int(w["suspicious_trust"])))
        return out

    def assess(self, item: PersistenceItem, now: datetime | None = None) -> RiskAssessment:
        now = now or utcnow()
        scale = self.weights.get("analyzer_scale", {})
        factors = self._guard("base signal", lambda: self._base_factors(item, now), [])

        lolbins = self._guard("lolbin", lambda: self.lolbins.analyze(item), [])
        behavior = self._guard("behavior", lambda: self.behavior.analyze(item), None)
        intent = self._guard("intent", lambda: self.intent.analyze(item), None)
        age = self._guard("binary age", lambda: self.age.analyze(item, now=now), None)

        contributions = (
            ("lolbins", "LOLBin usage", total_risk_points(lolbins)),
            ("behavior", "Behavioral anomalies", behavior.total_risk_points if behavior else 0),
            ("intent", "Intent mismatches", intent.total_risk_points if intent else 0),
            ("age", "Binary age anomalies", age.total_risk_points if age else 0),
        )
        for key, label, points in contributions:
            scaled = int(round(points * float(scale.get(key, 1.0))))
            if scaled > 0:
                factors.append(RiskFactor(key, label, scaled))

        score = max(0, min(100, sum(f.points for f in factors)))  # clamp to 0..100
        return RiskAssessment(
            score=score,
            severity=tier_for_score(score, self.weights.get("bands")),
            factors=factors,
            lolbins=lolbins,
            behavior=behavior,
            intent=intent,
            age=age,
        )

    def enrich(self, item: PersistenceItem, now: datetime | None = None) -> PersistenceItem:
        """Return a copy of the item with its analysis snapshot filled in."""
        a = self.assess(item, now=now)

        def _report_fields(report: AnalyzerReport | None) -> tuple[list[Finding] | None, Severity | None, int | None]:
            if report is None:
                return None, None, None
            return list(report.findings), report.overall_severity, report.total_risk_points

        b_list, b_sev, b_pts = _report_fields(a.behavior)
        i_list, i_sev, i_pts = _report_fields(a.intent)
        g_list, g_sev, g_pts = _report_fields(a.age)
        return item.with_analysis(
            risk_score=a.score,
            risk_details=list(a.factors),
            lolbins_detections=list(a.lolbins),
            lolbins_risk=total_risk_points(a.lolbins),
            behavioral_anomalies=b_list,
            behavioral_severity=b_sev,
            behavioral_risk_points=b_pts,
            intent_mismatches=i_list,
            intent_mismatch_severity=i_sev,
            intent_mismatch_risk_points=i_pts,
            age_anomalies=g_list,
            age_anomaly_severity=g_sev,
            age_anomaly_risk_points=g_pts,
        )
