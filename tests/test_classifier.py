"""
Tests for escalation.classifier - relevance threshold and remote analyst strategies
"""

from __future__ import annotations

from unittest.mock import MagicMock

import pytest

from agent.change_detector import ChangeType, FieldChange, MonitorChange
from algorithm.models import Category
from conftest import make_config, make_item
from escalation.api_client import APIStatusError, AnalystClient
from escalation.classifier import RelevanceClassifier, RemoteAnalystClassifier, build_classifier
from escalation.payloads import AISeverity, SingleItemAnalysisResponse


def _change(type_=ChangeType.ADDED, details=None):
    return MonitorChange(type_, Category.LAUNCH_DAEMONS, make_item("com.x.d", category=Category.LAUNCH_DAEMONS), details=details or [])


def _answer(notify=True, severity="high"):
    return SingleItemAnalysisResponse(
        should_notify=notify, severity=severity, title="Unsigned daemon", explanation="Looks bad"
    )


class TestRelevanceClassifier:
    """Tests for RelevanceClassifier"""

    @pytest.mark.parametrize("relevance,notify", [(49, False), (50, True), (90, True)])
    def test_threshold(self, relevance, notify):
        """Test that relevance at or above the minimum notifies"""
        decision = RelevanceClassifier(50).classify(_change(), relevance)
        assert decision.should_notify is notify
        assert decision.relevance == relevance
        assert decision.title is None
        assert not decision.fallback


class TestRemoteAnalystClassifier:
    """Tests for RemoteAnalystClassifier"""

    @pytest.fixture
    def client(self):
        return MagicMock(spec=AnalystClient)

    def test_analyst_says_notify(self, client):
        """Test that an analyst alert carries its own text and severity"""
        client.analyze_item.return_value = _answer()
        decision = RemoteAnalystClassifier(client).classify(_change(), 40)

        assert decision.should_notify
        assert decision.relevance == 40
        assert decision.title == "Unsigned daemon"
        assert decision.body == "Looks bad"
        assert decision.severity == "high"

    def test_below_threshold_is_silent(self, client):
        """Test that a low analyst severity doesn't alert even when asked to"""
        client.analyze_item.return_value = _answer(severity="low")
        assert not RemoteAnalystClassifier(client, threshold=AISeverity.MEDIUM).classify(_change(), 40).should_notify

    def test_analyst_says_no(self, client):
        """Test that should_notify=false wins over a high severity"""
        client.analyze_item.return_value = _answer(notify=False, severity="critical")
        assert not RemoteAnalystClassifier(client).classify(_change(), 40).should_notify

    def test_failure_falls_back_to_plain_alert(self, client):
        """Test that an API failure still alerts at the fallback relevance"""
        client.analyze_item.side_effect = APIStatusError(500, "boom")
        decision = RemoteAnalystClassifier(client).classify(_change(), 10)

        assert decision.should_notify
        assert decision.relevance == 50
        assert decision.fallback
        assert decision.title is None

    def test_unexpected_error_also_falls_back(self, client):
        """Test that a non-API exception from the client still alerts at the fallback relevance"""
        client.analyze_item.side_effect = RuntimeError("socket closed mid-read")
        decision = RemoteAnalystClassifier(client).classify(_change(), 10)

        assert decision.should_notify
        assert decision.relevance == 50
        assert decision.fallback

    def test_payload_build_failure_falls_back(self, client, monkeypatch):
        """Test that a failure while building the request falls back instead of dropping the change"""
        def broken(*args, **kwargs):
            raise ValueError("bad timestamp")

        monkeypatch.setattr("escalation.classifier.DetailedItemAnalysis.from_item", broken)
        decision = RemoteAnalystClassifier(client).classify(_change(), 10)

        assert decision.fallback
        client.analyze_item.assert_not_called()

    def test_details_sent_only_for_modifications(self, client):
        """Test that field changes are included for modified items only"""
        client.analyze_item.return_value = _answer()
        details = [FieldChange("risk_score", 0, 40)]

        RemoteAnalystClassifier(client).classify(_change(ChangeType.MODIFIED, details), 40)
        sent = client.analyze_item.call_args[0][0]
        assert sent.change_type == "modified"
        assert sent.changes == ["Risk score: 0 → 40"]

        RemoteAnalystClassifier(client).classify(_change(ChangeType.ENABLED, [FieldChange("is_enabled", False, True)]), 40)
        assert client.analyze_item.call_args[0][0].changes is None

    def test_change_without_item_is_skipped(self, client):
        """Test that the analyst isn't asked about a change with no item"""
        change = MonitorChange(ChangeType.REMOVED, Category.LAUNCH_AGENTS, None)
        decision = RemoteAnalystClassifier(client).classify(change, 30)
        assert not decision.should_notify
        client.analyze_item.assert_not_called()


class TestBuildClassifier:
    """Tests for build_classifier"""

    def test_relevance_without_ai(self, tmp_path):
        """Test that the local threshold is used when AI is off"""
        classifier = build_classifier(make_config(tmp_path, minimum_relevance_score=35))
        assert isinstance(classifier, RelevanceClassifier)
        assert classifier.min_relevance == 35

    def test_relevance_when_key_is_invalid(self, tmp_path):
        """Test that use_ai without a plausible key stays local"""
        classifier = build_classifier(make_config(tmp_path, use_ai=True, api_key="nope"))
        assert isinstance(classifier, RelevanceClassifier)

    def test_remote_when_ai_active(self, tmp_path):
        """Test that an active AI config gets the remote analyst with its threshold"""
        cfg = make_config(tmp_path, use_ai=True, api_key="sk-ant-" + "x" * 30, ai_notification_threshold="high")
        client = MagicMock(spec=AnalystClient)
        classifier = build_classifier(cfg, client)

        assert isinstance(classifier, RemoteAnalystClassifier)
        assert classifier.client is client
        assert classifier.threshold == AISeverity.HIGH
