"""
Tests for algorithm.intent and algorithm.entitlements
Tests plist profiling, capability resolution, and the four mismatch checks.
"""

from __future__ import annotations

import pytest

from algorithm.entitlements import Capabilities
from algorithm.intent import IntentMismatchAnalyzer, PlistProfile
from algorithm.models import Severity
from conftest import make_item

DYLIB = "com.apple.security.cs.disable-library-validation"
NET_CLIENT = "com.apple.security.network.client"
KEYCHAIN = "keychain-access-groups"


def _types(report):
    return [f.type for f in report.findings]


class TestCapabilities:
    """Tests for Capabilities.from_entitlements"""

    def test_none_means_not_extracted(self):
        """Test that None input stays None"""
        assert Capabilities.from_entitlements(None) is None

    def test_empty_list_is_empty(self):
        """Test that an empty key list is a known-empty capability set"""
        caps = Capabilities.from_entitlements([])
        assert caps is not None
        assert caps.is_empty

    def test_flags_and_heavy_entries(self):
        """Test that keys map onto flags and the heavy table"""
        caps = Capabilities.from_entitlements([DYLIB, NET_CLIENT, "com.apple.private.tcc.allow", NET_CLIENT])

        assert caps.count == 3  # duplicates collapse
        assert caps.dangerous and caps.network and caps.tcc
        assert not caps.keychain
        assert {h.description for h in caps.heavy} == {
            "Disabled library validation",
            "Network client access",
            "TCC bypass",
        }

    def test_unknown_keys_still_count(self):
        """Test that keys outside the heavy table count but add no heavy entry"""
        caps = Capabilities.from_entitlements(["com.example.custom"])
        assert caps.count == 1
        assert caps.heavy == ()


class TestPlistProfile:
    """Tests for PlistProfile.from_item"""

    def test_simple_passive_profile(self):
        """Test the profile of a bare launch config"""
        profile = PlistProfile.from_item(make_item("com.x.sync-helper"))
        assert profile.is_simple
        assert profile.is_passive
        assert profile.is_background
        assert not profile.is_watchdog
        assert profile.complexity == 0

    def test_complexity_is_clamped(self):
        """Test that complexity never exceeds ten"""
        item = make_item(
            program_arguments=["/bin/bash", "-c", "curl", "http://203.0.113.5", "x"],
            run_at_load=True,
            keep_alive=True,
            environment_variables={f"V{i}": "1" for i in range(5)},
        )
        profile = PlistProfile.from_item(item)
        assert profile.complexity == 10
        assert profile.has_network_args and profile.has_script_args
        assert profile.arg_count == 5

    def test_short_start_interval_is_watchdog(self):
        """Test that a StartInterval under five minutes counts as a watchdog"""
        assert PlistProfile.from_item(make_item(start_interval=120)).is_watchdog
        assert not PlistProfile.from_item(make_item(start_interval=300)).is_watchdog


class TestIntentMismatchAnalyzer:
    """Tests for IntentMismatchAnalyzer.analyze"""

    @pytest.fixture
    def analyzer(self):
        return IntentMismatchAnalyzer()

    @pytest.mark.parametrize("entitlements", [None, []])
    def test_no_entitlement_data_means_no_findings(self, analyzer, entitlements):
        """Test that missing or empty entitlements never produce findings"""
        report = analyzer.analyze(make_item(entitlements=entitlements))
        assert report.findings == []
        assert report.summary == "No intent mismatches detected"

    def test_innocent_plist_heavy_binary(self, analyzer):
        """Test the dropper pattern: trivial plist, dangerous binary"""
        report = analyzer.analyze(make_item("com.x.widget", entitlements=[DYLIB]))

        assert _types(report) == ["innocent_plist_heavy_binary"]
        hit = report.findings[0]
        assert hit.severity == Severity.CRITICAL
        assert hit.risk_points == 25
        assert hit.evidence["binary_reality"] == "Binary has: Disabled library validation"
        assert report.summary.startswith("Intent mismatch detected")

    def test_background_helper_with_dylib_loading(self, analyzer):
        """Test that a helper-named item with dangerous entitlements gets both critical checks"""
        report = analyzer.analyze(make_item("com.x.agent", entitlements=[DYLIB]))
        assert set(_types(report)) == {"innocent_plist_heavy_binary", "helper_dylib_loading"}
        assert report.overall_severity == Severity.CRITICAL

    def test_passive_helper_with_network(self, analyzer):
        """Test that a passive helper with network entitlements is flagged"""
        report = analyzer.analyze(make_item("com.x.sync-helper", entitlements=[NET_CLIENT]))
        assert _types(report) == ["passive_helper_network"]
        assert report.findings[0].severity == Severity.HIGH

    def test_simple_task_with_keychain(self, analyzer):
        """Test that keychain access on a simple task is its own flag"""
        report = analyzer.analyze(make_item("com.x.widget", entitlements=[KEYCHAIN]))
        assert _types(report) == ["simple_task_keychain"]

    def test_keychain_named_task_is_not_flagged(self, analyzer):
        """Test that a task that says it is about keychains may use them"""
        report = analyzer.analyze(make_item("com.x.keychain-widget", entitlements=[KEYCHAIN]))
        assert "simple_task_keychain" not in _types(report)

    def test_minimal_plist_full_entitlements(self, analyzer):
        """Test that five or more entitlements on a minimal plist are flagged"""
        keys = [
            NET_CLIENT,
            "com.apple.security.files.all",
            "com.apple.security.personal-information.location",
            "com.apple.security.device.camera",
            "com.apple.security.device.usb",
        ]
        report = analyzer.analyze(make_item("com.x.widget", entitlements=keys))
        types = _types(report)

        assert "minimal_plist_full_entitlements" in types
        hit = next(f for f in report.findings if f.type == "minimal_plist_full_entitlements")
        assert "5 entitlements" in hit.evidence["binary_reality"]

    def test_complex_plist_explains_capabilities(self, analyzer):
        """Test that a busy launch config is not called innocent"""
        item = make_item(
            "com.x.widget",
            program_arguments=["/opt/w/run", "--a", "--b", "--c"],
            run_at_load=True,
            keep_alive=True,
            entitlements=[DYLIB, KEYCHAIN],
        )
        assert analyzer.analyze(item).findings == []
