# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: turn a raw entitlement key set into typed capability flags exactly once, when an item is built.
analyzers read the flags instead of re-matching substrings at every check site.
keys are opaque strings handed to us by the discovery layer; we only look at their text.
"""

from __future__ import annotations  # lets us use string annotations before classes are defined

from collections.abc import Iterable  # type hint for the raw key collection
from dataclasses import dataclass, field  # for the immutable capability record

# curated table of entitlements that are "heavy" when the plist looks innocent
# key -> (human description, severity name)
HEAVY_ENTITLEMENTS: dict[str, tuple[str, str]] = {
    # network
    "com.apple.security.network.client": ("Network client access", "medium"),
    "com.apple.security.network.server": ("Network server access", "high"),
    # file system
    "com.apple.security.files.all": ("Full file system access", "critical"),
    "com.apple.security.files.user-selected.read-write": ("User file access", "medium"),
    "com.apple.security.temporary-exception.files.absolute-path.read-write": (
        "Absolute path file access",
        "high",
    ),
    # keychain
    "keychain-access-groups": ("Keychain access", "high"),
    "com.apple.security.keychain": ("Keychain access", "high"),
    # automation
    "com.apple.security.automation.apple-events": ("Apple Events automation", "high"),
    "com.apple.security.scripting-targets": ("Scripting targets", "high"),
    # code signing relaxations
    "com.apple.security.cs.allow-unsigned-executable-memory": ("Unsigned executable memory", "critical"),
    "com.apple.security.cs.disable-library-validation": ("Disabled library validation", "critical"),
    "com.apple.security.cs.allow-dyld-environment-variables": ("DYLD environment variables", "critical"),
    "com.apple.security.get-task-allow": ("Task port access (debugging)", "high"),
    # privacy
    "com.apple.security.personal-information.location": ("Location access", "medium"),
    "com.apple.security.personal-information.addressbook": ("Contacts access", "medium"),
    "com.apple.security.personal-information.calendars": ("Calendar access", "medium"),
    "com.apple.security.personal-information.photos-library": ("Photos access", "medium"),
    # devices
    "com.apple.security.device.camera": ("Camera access", "medium"),
    "com.apple.security.device.microphone": ("Microphone access", "high"),
    "com.apple.security.device.usb": ("USB access", "medium"),
    # TCC
    "com.apple.private.tcc.allow": ("TCC bypass", "critical"),
    "com.apple.private.tcc.manager": ("TCC management", "critical"),
    # mach services
    "com.apple.security.temporary-exception.mach-lookup.global-name": ("Mach service lookup", "medium"),
    "com.apple.security.temporary-exception.mach-register.global-name": (
        "Mach service registration",
        "high",
    ),
}

# substring buckets, a key can land in several buckets at once
_AUTOMATION_TOKENS = ("automation", "apple-events", "scripting")
_DANGEROUS_TOKENS = (
    "disable-library-validation",
    "allow-unsigned",
    "dyld-environment",
    "get-task-allow",
)
_PRIVACY_TOKENS = ("personal-information", "camera", "microphone", "photos")


@dataclass(frozen=True)
class HeavyEntitlement:
    key: str  # raw entitlement key
    description: str  # what the entitlement grants, in plain words
    severity: str  # low | medium | high | critical


@dataclass(frozen=True)
class Capabilities:
    """Typed view of what a binary is allowed to do, resolved from its entitlement keys."""

    network: bool = False
    keychain: bool = False
    automation: bool = False
    dangerous: bool = False  # can load unsigned code or be debugged
    privacy: bool = False
    tcc: bool = False
    count: int = 0  # number of distinct entitlement keys
    heavy: tuple[HeavyEntitlement, ...] = field(default_factory=tuple)

    @property
    def is_empty(self) -> bool:
        return self.count == 0

    @classmethod
    def from_entitlements(cls, keys: Iterable[str] | None) -> Capabilities | None:
        # None means "we never looked", which is different from "the binary has none"
        if keys is None:
            return None
        unique = sorted({str(k) for k in keys})  # dict input iterates its keys, which is what we want
        flags = {
            "network": False,
            "keychain": False,
            "automation": False,
            "dangerous": False,
            "privacy": False,
            "tcc": False,
        }
        heavy: list[HeavyEntitlement] = []
        for key in unique:
            info = HEAVY_ENTITLEMENTS.get(key)
            if info is not None:
                heavy.append(HeavyEntitlement(key=key, description=info[0], severity=info[1]))
            if "network" in key:
                flags["network"] = True
            if "keychain" in key:
                flags["keychain"] = True
            if any(tok in key for tok in _AUTOMATION_TOKENS):
                flags["automation"] = True
            if any(tok in key for tok in _DANGEROUS_TOKENS):
                flags["dangerous"] = True
            if any(tok in key for tok in _PRIVACY_TOKENS):
                flags["privacy"] = True
            if "tcc" in key:
                flags["tcc"] = True
        return cls(count=len(unique), heavy=tuple(heavy), **flags)
