"""
Tests for algorithm.binary_age - BinaryAgeAnalyzer
Tests each timestamp anomaly and the human-readable age helper.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from algorithm.binary_age import BinaryAgeAnalyzer, format_age
from algorithm.models import Severity
from conftest import NOW, make_item


def _days(n: float) -> datetime:
    return NOW - timedelta(days=n)


class TestBinaryAgeAnalyzer:
    """Tests for BinaryAgeAnalyzer.analyze"""

    @pytest.fixture
    def analyzer(self):
        """Analyzer whose local zone is UTC so hour checks are deterministic"""
        return BinaryAgeAnalyzer(local_tz=timezone.utc)

    def _types(self, analyzer, **kw):
        report = analyzer.analyze(make_item(**kw), now=NOW)
        return [f.type for f in report.findings], report

    def test_no_timestamps_no_findings(self, analyzer):
        """Test that an item without timestamps is clean"""
        types, report = self._types(analyzer)
        assert types == []
        assert report.summary == "No age-related anomalies detected"

    def test_old_plist_new_binary(self, analyzer):
        """Test that a fresh binary behind an old plist is critical"""
        types, report = self._types(analyzer, plist_created_at=_days(60), binary_created_at=_days(2))

        assert types == ["old_plist_new_binary"]
        hit = report.findings[0]
        assert hit.severity == Severity.CRITICAL
        assert hit.risk_points == 25
        assert hit.evidence["time_difference"] == "58 days difference"
        assert report.summary.startswith("Suspicious timestamp pattern detected")

    def test_silent_binary_swap(self, analyzer):
        """Test that a recently modified binary with an untouched plist is flagged"""
        types, _ = self._types(analyzer, plist_modified_at=_days(45), binary_modified_at=_days(1))
        assert types == ["silent_binary_swap"]

    def test_significant_age_mismatch(self, analyzer):
        """Test that a creation gap over ninety days is worth a look"""
        types, report = self._types(analyzer, plist_created_at=_days(200), binary_created_at=_days(100))
        assert types == ["significant_age_mismatch"]
        assert report.findings[0].severity == Severity.MEDIUM

    def test_timestamp_manipulation(self, analyzer):
        """Test that modified-before-created is reported"""
        types, report = self._types(analyzer, binary_created_at=_days(10), binary_modified_at=_days(20))
        assert types == ["timestamp_manipulation"]
        assert report.findings[0].risk_points == 30

    def test_suspicious_modification_time(self, analyzer):
        """Test that a recent 3 AM modification is flagged"""
        types, report = self._types(analyzer, binary_modified_at=datetime(2025, 6, 14, 3, 0, tzinfo=timezone.utc))
        assert types == ["suspicious_modification_time"]
        assert report.findings[0].evidence["time_difference"] == "Modified at 3:00"

    def test_daytime_modification_is_fine(self, analyzer):
        """Test that a recent midday modification is not flagged"""
        types, _ = self._types(analyzer, binary_modified_at=datetime(2025, 6, 14, 13, 0, tzinfo=timezone.utc))
        assert types == []

    def test_modified_post_install(self, analyzer):
        """Test that a binary modified long after install is high severity"""
        types, report = self._types(analyzer, plist_created_at=_days(100), binary_modified_at=_days(20))
        assert types == ["binary_modified_post_install"]
        assert report.findings[0].severity == Severity.HIGH

    def test_updater_may_modify_post_install(self, analyzer):
        """Test that updaters are expected to change their binary"""
        types, _ = self._types(
            analyzer, name="SoftwareUpdater", plist_created_at=_days(100), binary_modified_at=_days(20)
        )
        assert types == []

    def test_checks_are_independent(self, analyzer):
        """Test that several anomalies add up"""
        _, report = self._types(
            analyzer,
            plist_created_at=_days(60),
            binary_created_at=_days(2),
            binary_modified_at=_days(3),
        )
        types = {f.type for f in report.findings}
        assert {"old_plist_new_binary", "timestamp_manipulation", "binary_modified_post_install"} <= types
        assert report.total_risk_points >= 25 + 30 + 15


class TestFormatAge:
    """Tests for format_age"""

    @pytest.mark.parametrize(
        "delta,expected",
        [
            (timedelta(hours=5), "5 hours ago"),
            (timedelta(days=3), "3 days ago"),
            (timedelta(days=8), "1 week ago"),
            (timedelta(days=14), "2 weeks ago"),
            (timedelta(days=35), "1 month ago"),
            (timedelta(days=800), "2 years ago"),
        ],
    )
    def test_format_age_buckets(self, delta, expected):
        """Test each age bucket and its pluralisation"""
        assert format_age(NOW - delta, NOW) == expected
