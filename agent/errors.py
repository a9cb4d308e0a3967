# SPDX-License-Identifier: GPL-3.0-or-later
"""goal: exceptions the monitoring runtime raises where callers need to branch on them."""

from __future__ import annotations


class MonitorError(Exception):
    """Base class for monitoring-runtime failures."""


class ScanError(MonitorError):
    """A category scan could not produce a trustworthy item list."""


class StoreError(MonitorError):
    """The baseline or history file could not be read or written."""
