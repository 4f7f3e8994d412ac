"""
nexus-compliance config package public API.

File: src/nexus_compliance/config/__init__.py

Purpose
- Export the validator (schema, defaults, verdict types) and the override loader.
- No runtime components or side effects at import time.
"""

from nexus_compliance.config.loader import (
    DEFAULT_CONFIG_FILE,
    ConfigLoadError,
    collect_env_overrides,
    load_config_file,
    load_overrides,
)
from nexus_compliance.config.schema import (
    DEFAULT_CONFIG,
    ConfigSchemaVersion,
    ConfigValidationError,
    ConfigValidationIssue,
    ConfigValidationResult,
    ConfigValidationWarning,
    Recommendation,
    SystemConfig,
    assert_valid_config,
    default_config,
    estimate_memory_usage_mb,
    merge_config,
    migration_guidance,
    normalize_config,
    recommend,
    validate_config,
)

__all__ = [
    "ConfigLoadError",
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ConfigValidationWarning",
    "DEFAULT_CONFIG",
    "DEFAULT_CONFIG_FILE",
    "Recommendation",
    "SystemConfig",
    "assert_valid_config",
    "collect_env_overrides",
    "default_config",
    "estimate_memory_usage_mb",
    "load_config_file",
    "load_overrides",
    "merge_config",
    "migration_guidance",
    "normalize_config",
    "recommend",
    "validate_config",
]
