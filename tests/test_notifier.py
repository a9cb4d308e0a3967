"""
Tests for agent.notifier - ConsoleNotifier
"""

from __future__ import annotations

import logging
from unittest.mock import MagicMock

import pytest

from agent.change_detector import ChangeType, FieldChange, MonitorChange
from agent.notifier import ConsoleNotifier, relevance_label
from algorithm.models import Category
from conftest import make_item


@pytest.mark.parametrize("relevance,label", [(100, "critical"), (80, "critical"), (79, "high"), (60, "high"), (59, "medium"), (40, "medium"), (39, "low"), (0, "low")])
def test_relevance_label(relevance, label):
    """Test the relevance buckets"""
    assert relevance_label(relevance) == label


class TestConsoleNotifier:
    """Tests for ConsoleNotifier"""

    @pytest.fixture
    def publish(self):
        return MagicMock()

    @pytest.fixture
    def notifier(self, publish):
        return ConsoleNotifier(publish=publish, use_color=False)

    def test_permission_is_always_granted(self, notifier):
        """Test that a terminal never refuses"""
        assert notifier.request_permission()
        assert notifier.granted

    def test_send_logs_and_mirrors(self, notifier, publish, caplog):
        """Test that a change alert is logged and published"""
        change = MonitorChange(
            ChangeType.MODIFIED,
            Category.LAUNCH_DAEMONS,
            make_item("com.x.d", name="Helper", category=Category.LAUNCH_DAEMONS),
            details=[FieldChange("is_enabled", False, True)],
        )
        with caplog.at_level(logging.INFO, logger="persistwatch.notify"):
            notifier.send(change, 85)

        assert "[CRITICAL] Persistence item modified - Helper (Launch Daemons)" in caplog.text
        assert "relevance 85/100 | Enabled: false → true" in caplog.text
        assert caplog.records[-1].levelno == logging.WARNING
        event = publish.call_args[0][0]
        assert event["source"] == "notifier"
        assert event["kind"] == "alert"
        assert event["severity"] == "critical"

    def test_low_severity_logs_at_info(self, notifier, caplog):
        """Test that informational alerts use INFO"""
        with caplog.at_level(logging.INFO, logger="persistwatch.notify"):
            notifier.send_alert("Monitoring Started (Standard Mode)", "", "ok")
        assert caplog.records[-1].levelno == logging.INFO
        assert "[INFO] Monitoring Started (Standard Mode)" in caplog.text

    def test_publish_failure_is_logged(self, notifier, publish, caplog):
        """Test that a broken event bus never breaks alerting"""
        publish.side_effect = RuntimeError("bus down")
        with caplog.at_level(logging.INFO, logger="persistwatch.notify"):
            notifier.send_alert("t", "s", "b", "high")
        assert "could not mirror alert" in caplog.text

    def test_works_without_publish(self, caplog):
        """Test that the bus mirror is optional"""
        with caplog.at_level(logging.INFO, logger="persistwatch.notify"):
            ConsoleNotifier(use_color=True).send_alert("Title", "Sub", "", "medium")
        assert "Title" in caplog.text
