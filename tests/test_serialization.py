"""
Tests for agent.serialization - item JSON conversion
"""

from __future__ import annotations

from datetime import datetime, timezone

import pytest

from agent.serialization import item_from_dict, item_to_dict, json_copy, parse_ts
from algorithm.behavior import BehaviorAnalyzer
from algorithm.models import Category, TrustLevel
from algorithm.risk_engine import RiskEngine
from conftest import NOW, make_item, signed_by_vendor


class TestItemToDict:
    """Tests for item_to_dict"""

    def test_enums_and_timestamps_become_plain_values(self):
        """Test that the dict is JSON-shaped"""
        d = item_to_dict(make_item(plist_created_at=NOW))

        assert d["category"] == "launch_agents"
        assert d["trust_level"] == "signed"
        assert d["plist_created_at"] == "2025-06-15T12:00:00+00:00"
        assert d["discovered_at"] == "2025-06-15T12:00:00+00:00"

    def test_none_fields_are_left_out(self):
        """Test that unset optional fields are omitted"""
        d = item_to_dict(make_item())
        assert "program_arguments" not in d
        assert "risk_score" not in d
        assert "capabilities" not in d

    def test_lists_are_detached(self):
        """Test that the dict doesn't share lists with the item"""
        item = make_item(program_arguments=["/bin/x", "-a"])
        d = item_to_dict(item)
        d["program_arguments"].append("-b")
        assert item.program_arguments == ["/bin/x", "-a"]


class TestItemFromDict:
    """Tests for item_from_dict"""

    def test_minimal_export_entry(self):
        """Test that identifier, name and category are enough"""
        item = item_from_dict({"identifier": "com.x.a", "name": "a", "category": "launch_daemons"})
        assert item.category == Category.LAUNCH_DAEMONS
        assert item.trust_level == TrustLevel.UNKNOWN
        assert item.capabilities is None

    def test_missing_identifier_raises(self):
        """Test that entries without an identifier are rejected"""
        with pytest.raises(KeyError):
            item_from_dict({"name": "a", "category": "launch_agents"})

    def test_unknown_category_raises(self):
        """Test that an unknown category value is rejected"""
        with pytest.raises(ValueError):
            item_from_dict({"identifier": "x", "name": "x", "category": "browser_extensions"})

    def test_unknown_keys_are_ignored(self):
        """Test that extra export keys don't break loading"""
        item = item_from_dict({"identifier": "x", "name": "x", "category": "launch_agents", "vendor_note": "hi"})
        assert item.identifier == "x"

    def test_entitlement_dict_becomes_key_list(self):
        """Test that a raw entitlements dict is reduced to its keys and resolved to capabilities"""
        item = item_from_dict(
            {
                "identifier": "x",
                "name": "x",
                "category": "launch_agents",
                "entitlements": {"com.apple.security.network.client": True},
            }
        )
        assert item.entitlements == ["com.apple.security.network.client"]
        assert item.capabilities.network

    def test_signature_and_timestamps_are_parsed(self):
        """Test nested signature info and Z-suffixed timestamps"""
        item = item_from_dict(
            {
                "identifier": "x",
                "name": "x",
                "category": "launch_agents",
                "binary_modified_at": "2025-06-14T03:00:00Z",
                "signature_info": {"is_signed": True, "certificate_expiration": "2026-01-01T00:00:00+00:00"},
            }
        )
        assert item.binary_modified_at == datetime(2025, 6, 14, 3, 0, tzinfo=timezone.utc)
        assert item.signature_info.is_signed
        assert item.signature_info.certificate_expiration.year == 2026

    def test_enriched_item_survives_the_trip(self):
        """Test that a fully analysed item comes back equal"""
        engine = RiskEngine(behavior=BehaviorAnalyzer(exists=lambda p: True))
        item = engine.enrich(
            make_item(
                executable_path="/usr/bin/curl",
                run_at_load=True,
                signature_info=signed_by_vendor(),
                entitlements=["keychain-access-groups"],
                binary_modified_at=NOW,
            ),
            now=NOW,
        )
        assert item_from_dict(item_to_dict(item)) == item


def test_parse_ts_handles_empty_values():
    """Test that empty and None timestamps parse to None"""
    assert parse_ts(None) is None
    assert parse_ts("") is None
    assert parse_ts(NOW) is NOW


def test_json_copy_is_deep():
    """Test that nested structures are copied"""
    src = {"a": [{"b": 1}]}
    out = json_copy(src)
    out["a"][0]["b"] = 2
    assert src["a"][0]["b"] == 1
