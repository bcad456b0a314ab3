"""Enumerations for CLI exit codes."""
from __future__ import annotations

from enum import IntEnum


class ExitCode(IntEnum):
    """Well-known exit codes returned by ``dbdoctor check``."""

    OK = 0
    DEGRADED = 1
    CONFIGURATION = 2
    UNHEALTHY = 3
