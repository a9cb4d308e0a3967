# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: flag timestamp patterns that suggest the binary was swapped after the persistence item was installed.
works on four optional timestamps (plist created/modified, binary created/modified) and "now".
all six checks are independent: none suppresses another, severity is the max, points are the sum.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from datetime import datetime, tzinfo  # timestamps and the zone used for hour-of-day

from algorithm.models import AnalyzerReport, Finding, PersistenceItem, Severity, utcnow

OLD_THRESHOLD_DAYS = 30.0  # plist older than this counts as "old"
RECENT_THRESHOLD_DAYS = 7.0  # binary younger than this counts as "new"
NOTARIZATION_WINDOW_DAYS = 7.0  # binaries are normally built and notarized close to install time
AGE_GAP_DAYS = 90.0  # creation gap that is worth a look on its own
SUSPICIOUS_HOURS = range(2, 6)  # 02:00 through 05:59 local time

_DAY = 86400.0


def _days_between(later: datetime, earlier: datetime) -> float:
    return (later - earlier).total_seconds() / _DAY


def format_age(then: datetime, now: datetime | None = None) -> str:
    """Human age of a timestamp: '5 hours ago', '3 days ago', '2 weeks ago', '1 month ago', '2 years ago'."""
    now = now or utcnow()
    days = _days_between(now, then)
    if days < 1:
        return f"{int(days * 24)} hours ago"
    if days < 7:
        return f"{int(days)} days ago"
    if days < 30:
        weeks = int(days / 7)
        return f"{weeks} week{'s' if weeks > 1 else ''} ago"
    if days < 365:
        months = int(days / 30)
        return f"{months} month{'s' if months > 1 else ''} ago"
    years = int(days / 365)
    return f"{years} year{'s' if years > 1 else ''} ago"


def _format_date(ts: datetime) -> str:
    return ts.strftime("%Y-%m-%d %H:%M")


class BinaryAgeAnalyzer:
    """Timestamp anomaly checks. `local_tz` decides what "2 AM" means; None uses the host zone."""

    def __init__(self, local_tz: tzinfo | None = None) -> None:
        self.local_tz = local_tz

    def analyze(self, item: PersistenceItem, now: datetime | None = None) -> AnalyzerReport:
        now = now or utcnow()
        pc, pm = item.plist_created_at, item.plist_modified_at
        bc, bm = item.binary_created_at, item.binary_modified_at

        candidates = (
            self._old_plist_new_binary(pc, bc, now),
            self._silent_binary_swap(pm, bm, now),
            self._age_mismatch(pc, bc, now),
            self._timestamp_manipulation(bc, bm),
            self._suspicious_modification_time(bm, now),
            self._modified_post_install(pc, bm, item.name, now),
        )
        findings = [f for f in candidates if f is not None]
        summary = (
            "Suspicious timestamp pattern detected - possible binary swap or post-install modification"
            if findings
            else "No age-related anomalies detected"
        )
        return AnalyzerReport(findings=findings, summary=summary)

    @staticmethod
    def _anomaly(
        type_: str,
        title: str,
        description: str,
        severity: Severity,
        points: int,
        plist_age: str,
        binary_age: str,
        time_difference: str,
    ) -> Finding:
        return Finding(
            type_,
            title,
            description,
            severity,
            points,
            evidence={"plist_age": plist_age, "binary_age": binary_age, "time_difference": time_difference},
        )

    def _old_plist_new_binary(
        self, plist_created: datetime | None, binary_created: datetime | None, now: datetime
    ) -> Finding | None:
        if plist_created is None or binary_created is None:
            return None
        plist_age = _days_between(now, plist_created)
        binary_age = _days_between(now, binary_created)
        if not (plist_age > OLD_THRESHOLD_DAYS and binary_age < RECENT_THRESHOLD_DAYS):
            return None
        return self._anomaly(
            "old_plist_new_binary",
            "Old Plist, New Binary",
            f"The persistence plist was created {int(plist_age)} days ago, but the binary is only "
            f"{int(binary_age)} days old. This is a classic 'malicious update post-install' pattern where "
            "malware replaces a legitimate binary with a malicious one.",
            Severity.CRITICAL,
            25,
            format_age(plist_created, now),
            format_age(binary_created, now),
            f"{int(plist_age - binary_age)} days difference",
        )

    def _silent_binary_swap(
        self, plist_modified: datetime | None, binary_modified: datetime | None, now: datetime
    ) -> Finding | None:
        if plist_modified is None or binary_modified is None:
            return None
        bin_days = _days_between(now, binary_modified)
        plist_days = _days_between(now, plist_modified)
        if not (bin_days < RECENT_THRESHOLD_DAYS and plist_days > OLD_THRESHOLD_DAYS):
            return None
        return self._anomaly(
            "silent_binary_swap",
            "Silent Binary Swap",
            f"Binary was modified recently ({int(bin_days)} days ago) but plist hasn't changed in "
            f"{int(plist_days)} days. This suggests the binary was silently replaced without updating the "
            "configuration - a common malware tactic.",
            Severity.CRITICAL,
            25,
            f"Modified {int(plist_days)} days ago",
            f"Modified {int(bin_days)} days ago",
            "Binary updated without plist change",
        )

    def _age_mismatch(
        self, plist_created: datetime | None, binary_created: datetime | None, now: datetime
    ) -> Finding | None:
        if plist_created is None or binary_created is None:
            return None
        gap = _days_between(now, plist_created) - _days_between(now, binary_created)
        if gap <= AGE_GAP_DAYS:
            return None
        return self._anomaly(
            "significant_age_mismatch",
            "Significant Age Mismatch",
            f"There's a {int(gap)} day gap between plist creation and binary creation. While legitimate "
            "updates can cause this, such large gaps warrant investigation.",
            Severity.MEDIUM,
            10,
            format_age(plist_created, now),
            format_age(binary_created, now),
            f"{int(gap)} days gap",
        )

    def _timestamp_manipulation(
        self, binary_created: datetime | None, binary_modified: datetime | None
    ) -> Finding | None:
        if binary_created is None or binary_modified is None or binary_modified >= binary_created:
            return None
        return self._anomaly(
            "timestamp_manipulation",
            "Timestamp Manipulation Detected",
            "Binary's modification date is before its creation date. This indicates timestamp manipulation, "
            "a technique used by malware to appear legitimate or hide recent changes.",
            Severity.CRITICAL,
            30,
            "N/A",
            f"Created: {_format_date(binary_created)}, Modified: {_format_date(binary_modified)}",
            "Impossible timestamp (modified before created)",
        )

    def _suspicious_modification_time(self, binary_modified: datetime | None, now: datetime) -> Finding | None:
        if binary_modified is None:
            return None
        local = binary_modified.astimezone(self.local_tz)  # None -> host zone
        if not (_days_between(now, binary_modified) < RECENT_THRESHOLD_DAYS and local.hour in SUSPICIOUS_HOURS):
            return None
        return self._anomaly(
            "suspicious_modification_time",
            "Suspicious Modification Time",
            f"Binary was modified at {local.hour}:00 (late night/early morning). Malware often performs "
            "modifications during hours when users are unlikely to notice. This is especially suspicious for "
            "recently modified binaries.",
            Severity.MEDIUM,
            10,
            "N/A",
            format_age(binary_modified, now),
            f"Modified at {local.hour}:00",
        )

    def _modified_post_install(
        self, plist_created: datetime | None, binary_modified: datetime | None, name: str, now: datetime
    ) -> Finding | None:
        if plist_created is None or binary_modified is None:
            return None
        days_after = _days_between(binary_modified, plist_created)
        lowered = name.lower()
        if days_after <= NOTARIZATION_WINDOW_DAYS or "update" in lowered or "upgrade" in lowered:
            return None
        return self._anomaly(
            "binary_modified_post_install",
            "Binary Modified Post-Install",
            f"Binary was modified {int(days_after)} days after initial installation (plist creation). For "
            "non-updater services, this could indicate a malicious binary replacement.",
            Severity.HIGH,
            15,
            format_age(plist_created, now),
            f"Modified {format_age(binary_modified, now)}",
            f"{int(days_after)} days after install",
        )
