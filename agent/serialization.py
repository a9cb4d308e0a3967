# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: plain-JSON conversion for PersistenceItem, shared by the baseline/history stores and the snapshot scanner.
timestamps are ISO-8601 strings, enums are their values, findings use Finding.to_dict/from_dict.
"""

from __future__ import annotations

import dataclasses
from datetime import datetime
from typing import Any

from algorithm.models import Finding, PersistenceItem, RiskFactor, Severity, SignatureInfo

_FINDING_LISTS = ("lolbins_detections", "behavioral_anomalies", "intent_mismatches", "age_anomalies")
_SEVERITIES = ("behavioral_severity", "intent_mismatch_severity", "age_anomaly_severity")
_TIMESTAMPS = (
    "plist_created_at",
    "plist_modified_at",
    "binary_created_at",
    "binary_modified_at",
    "last_executed_at",
    "discovered_at",
)


def _iso(ts: datetime | None) -> str | None:
    return ts.isoformat() if ts is not None else None


def parse_ts(raw: Any) -> datetime | None:
    if raw in (None, ""):
        return None
    if isinstance(raw, datetime):
        return raw
    return datetime.fromisoformat(str(raw).replace("Z", "+00:00"))  # tolerate the "Z" suffix


def item_to_dict(item: PersistenceItem) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for f in dataclasses.fields(item):
        if not f.init:  # derived fields (capabilities) are rebuilt on load
            continue
        value = getattr(item, f.name)
        if value is None:
            continue
        if f.name in ("category", "trust_level") or f.name in _SEVERITIES:
            value = value.value
        elif f.name in _TIMESTAMPS:
            value = _iso(value)
        elif f.name == "signature_info":
            value = dataclasses.asdict(value)
            value["certificate_expiration"] = _iso(value["certificate_expiration"])
        elif f.name == "risk_details":
            value = [dataclasses.asdict(r) for r in value]
        elif f.name in _FINDING_LISTS:
            value = [d.to_dict() for d in value]
        elif isinstance(value, (list, dict)):
            value = json_copy(value)
        out[f.name] = value
    return out


def item_from_dict(data: dict[str, Any]) -> PersistenceItem:
    """Build an item from its JSON form. Unknown keys are ignored; missing required keys raise KeyError."""
    known = {f.name for f in dataclasses.fields(PersistenceItem) if f.init}
    kwargs: dict[str, Any] = {k: v for k, v in data.items() if k in known and v is not None}
    for name in _TIMESTAMPS:
        if name in kwargs:
            kwargs[name] = parse_ts(kwargs[name])
    for name in _SEVERITIES:
        if name in kwargs:
            kwargs[name] = Severity(kwargs[name])
    for name in _FINDING_LISTS:
        if name in kwargs:
            kwargs[name] = [Finding.from_dict(d) for d in kwargs[name]]
    if "signature_info" in kwargs:
        sig = dict(kwargs["signature_info"])
        sig["certificate_expiration"] = parse_ts(sig.get("certificate_expiration"))
        allowed = {f.name for f in dataclasses.fields(SignatureInfo)}
        kwargs["signature_info"] = SignatureInfo(**{k: v for k, v in sig.items() if k in allowed})
    if "risk_details" in kwargs:
        kwargs["risk_details"] = [RiskFactor(**r) for r in kwargs["risk_details"]]
    if "entitlements" in kwargs and isinstance(kwargs["entitlements"], dict):
        kwargs["entitlements"] = list(kwargs["entitlements"])  # raw entitlement plists arrive as dicts
    return PersistenceItem(
        identifier=str(data["identifier"]),
        name=str(data["name"]),
        category=data["category"],
        **{k: v for k, v in kwargs.items() if k not in ("identifier", "name", "category")},
    )


def json_copy(value: Any) -> Any:
    # detached copy of a JSON-shaped structure so stored items never share lists with live ones
    if isinstance(value, dict):
        return {k: json_copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [json_copy(v) for v in value]
    return value
