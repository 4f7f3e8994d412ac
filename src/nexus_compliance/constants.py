"""Stable constants shared across the validator, enforcer and manager."""

from __future__ import annotations

from typing import Final

# Schema version for configuration documents.
CONFIG_SCHEMA_VERSION: Final[int] = 1

# Environment variable prefix for configuration overrides.
ENV_PREFIX: Final[str] = "NEXUS_COMPLIANCE_"

# Operation history retained by the compliance manager.
HISTORY_CAPACITY: Final[int] = 100

# Enforcement passes retained by the enforcer.
ENFORCEMENT_HISTORY_CAPACITY: Final[int] = 50

# Reconciliation loop defaults.
DEFAULT_ENFORCEMENT_INTERVAL_SECONDS: Final[float] = 60.0
DEFAULT_SOFT_COMPLIANCE_TOLERANCE: Final[float] = 0.10
DEFAULT_OVERDUE_FACTOR: Final[float] = 2.0
DEFAULT_COMPONENT_TIMEOUT_SECONDS: Final[float] = 5.0

CHANGE_REASON: Final[str] = "Configuration enforcement"

__all__ = [
    "CHANGE_REASON",
    "CONFIG_SCHEMA_VERSION",
    "DEFAULT_COMPONENT_TIMEOUT_SECONDS",
    "DEFAULT_ENFORCEMENT_INTERVAL_SECONDS",
    "DEFAULT_OVERDUE_FACTOR",
    "DEFAULT_SOFT_COMPLIANCE_TOLERANCE",
    "ENFORCEMENT_HISTORY_CAPACITY",
    "ENV_PREFIX",
    "HISTORY_CAPACITY",
]
