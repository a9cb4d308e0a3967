# SPDX-License-Identifier: GPL-3.0-or-later
"""
goal: configuration loader for PersistWatch. loads settings from a JSON file and environment
      variables, with sensible defaults. handles PyInstaller frozen executables by detecting
      the base directory correctly. returns a frozen Config dataclass with every path, monitoring
      knob and AI setting the launcher hands to the monitor and the escalation layer.
"""

from __future__ import annotations

import dataclasses
import json
import logging
import os
from dataclasses import dataclass
from pathlib import Path

from algorithm.models import CORE_CATEGORIES, Category

log = logging.getLogger("persistwatch.config")

ENV_PREFIX = "PERSISTWATCH_"


# figure out where the app is running from (handles PyInstaller bundles)
def _resolve_base_dir() -> Path:
    import sys

    # if we are frozen (PyInstaller), use the executable's directory
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    # otherwise, go up one level from this file (app/config.py -> project root)
    return Path(__file__).resolve().parents[1]


# frozen dataclass to hold all config values (immutable once created)
@dataclass(frozen=True)
class Config:
    base_dir: Path  # root directory of the project
    baseline_path: Path  # per-category baseline snapshot JSON
    history_path: Path  # change history JSON
    items_path: Path  # discovery export the snapshot scanner reads
    risk_weights_path: Path  # optional risk engine overrides
    debounce_sec: float  # quiet time before a category is rescanned
    watch_interval_sec: float  # directory poll interval
    minimum_relevance_score: int  # local classifier threshold (0..100)
    notification_cooldown_hours: float  # no repeat alert for the same item inside this window
    enabled_categories: tuple[str, ...]  # category values to watch
    notify_on_add: bool
    notify_on_remove: bool
    notify_on_modify: bool
    # remote analyst
    use_ai: bool
    api_key: str
    model: str
    api_url: str
    api_timeout_sec: float
    ai_check_interval_sec: float
    ai_notification_threshold: str  # info | low | medium | high | critical
    ai_ignore_apple_signed: bool
    ai_ignore_system_paths: bool
    ai_prioritize_unsigned: bool
    ai_focus_lolbins: bool
    ai_minimum_risk_score: int
    ai_ignored_paths: str
    ai_custom_prompt: str

    @property
    def is_api_key_valid(self) -> bool:
        return self.api_key.startswith("sk-ant-") and len(self.api_key) > 20

    @property
    def is_ai_active(self) -> bool:
        # AI is only on when asked for and a plausible key is present
        return self.use_ai and self.is_api_key_valid


_TRUTHY = {"1", "true", "yes", "on"}


# get a config value with priority: environment variable > JSON file > default
def _get(obj: dict, key: str, default):
    # check for environment variable first (PERSISTWATCH_* prefix)
    env = os.getenv(f"{ENV_PREFIX}{key.upper()}")
    if env is not None:
        # bool has to come before int, bool is an int subclass
        if isinstance(default, bool):
            return env.strip().lower() in _TRUTHY
        # try to coerce to int/float when default is numeric
        if isinstance(default, int):
            try:
                return int(env)
            except ValueError:
                return default
        if isinstance(default, float):
            try:
                return float(env)
            except ValueError:
                return default
        if isinstance(default, tuple):
            return tuple(p.strip() for p in env.split(",") if p.strip())
        # for strings, just return the env var as-is
        return env
    # fall back to JSON file value, or default if not found
    value = obj.get(key, default)
    if isinstance(default, tuple) and isinstance(value, (list, tuple)):
        return tuple(str(v) for v in value)
    if isinstance(default, float) and isinstance(value, int) and not isinstance(value, bool):
        return float(value)
    return value


PRESETS: dict[str, dict] = {
    # only the loudest categories, high threshold
    "minimal": {
        "enabled_categories": (
            Category.LAUNCH_DAEMONS.value,
            Category.LAUNCH_AGENTS.value,
            Category.PRIVILEGED_HELPERS.value,
        ),
        "minimum_relevance_score": 60,
        "debounce_sec": 10.0,
        "notify_on_remove": False,
    },
    # core categories, moderate threshold
    "balanced": {
        "enabled_categories": tuple(c.value for c in Category if c in CORE_CATEGORIES),
        "minimum_relevance_score": 30,
        "debounce_sec": 5.0,
        "notify_on_add": True,
        "notify_on_remove": True,
        "notify_on_modify": True,
    },
    # everything watchable, low threshold
    "paranoid": {
        "enabled_categories": tuple(c.value for c in Category.watchable()),
        "minimum_relevance_score": 10,
        "debounce_sec": 2.0,
        "notify_on_add": True,
        "notify_on_remove": True,
        "notify_on_modify": True,
    },
}


def apply_preset(cfg: Config, name: str) -> Config:
    """Return a copy of cfg with one of the named presets applied."""
    try:
        overrides = PRESETS[name.strip().lower()]
    except KeyError:
        raise ValueError(f"unknown preset {name!r}, expected one of {', '.join(PRESETS)}") from None
    return dataclasses.replace(cfg, **overrides)


# load configuration from JSON file and environment variables
def load_config() -> Config:
    # base directory can be overridden by env var, otherwise auto-detect
    base = Path(os.getenv(f"{ENV_PREFIX}BASE_DIR") or _resolve_base_dir())
    # config file lives in data/config.json
    cfg_file = base / "data" / "config.json"
    obj: dict = {}
    # try to load the JSON config file if it exists
    if cfg_file.exists():
        try:
            obj = json.loads(cfg_file.read_text(encoding="utf-8") or "{}")
        except (OSError, ValueError) as exc:
            # if JSON is broken, just use empty dict (all defaults)
            log.warning("ignoring unreadable %s: %s", cfg_file, exc)
            obj = {}
    if not isinstance(obj, dict):
        obj = {}

    # build the Config object with all paths and settings
    # each value checks: env var > JSON file > default
    cfg = Config(
        base_dir=base,
        baseline_path=base / _get(obj, "baseline_path", "data/baseline.json"),
        history_path=base / _get(obj, "history_path", "data/change_history.json"),
        items_path=base / _get(obj, "items_path", "data/items.json"),
        risk_weights_path=base / _get(obj, "risk_weights_path", "data/risk_weights.json"),
        debounce_sec=_get(obj, "debounce_sec", 2.0),
        watch_interval_sec=_get(obj, "watch_interval_sec", 1.0),
        minimum_relevance_score=_get(obj, "minimum_relevance_score", 50),
        notification_cooldown_hours=_get(obj, "notification_cooldown_hours", 2.0),
        enabled_categories=_get(obj, "enabled_categories", tuple(c.value for c in Category.watchable())),
        notify_on_add=_get(obj, "notify_on_add", True),
        notify_on_remove=_get(obj, "notify_on_remove", True),
        notify_on_modify=_get(obj, "notify_on_modify", True),
        use_ai=_get(obj, "use_ai", False),
        api_key=_get(obj, "api_key", ""),
        model=_get(obj, "model", "claude-sonnet-4-20250514"),
        api_url=_get(obj, "api_url", "https://api.anthropic.com/v1/messages"),
        api_timeout_sec=_get(obj, "api_timeout_sec", 30.0),
        ai_check_interval_sec=_get(obj, "ai_check_interval_sec", 300.0),
        ai_notification_threshold=_get(obj, "ai_notification_threshold", "medium"),
        ai_ignore_apple_signed=_get(obj, "ai_ignore_apple_signed", True),
        ai_ignore_system_paths=_get(obj, "ai_ignore_system_paths", True),
        ai_prioritize_unsigned=_get(obj, "ai_prioritize_unsigned", True),
        ai_focus_lolbins=_get(obj, "ai_focus_lolbins", True),
        ai_minimum_risk_score=_get(obj, "ai_minimum_risk_score", 0),
        ai_ignored_paths=_get(obj, "ai_ignored_paths", ""),
        ai_custom_prompt=_get(obj, "ai_custom_prompt", ""),
    )

    # a preset named in env or JSON is applied on top of everything else
    preset = _get(obj, "preset", "")
    if preset:
        cfg = apply_preset(cfg, preset)
    return cfg
