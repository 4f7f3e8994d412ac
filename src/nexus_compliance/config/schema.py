"""
nexus-compliance — configuration schema and validation.

File: src/nexus_compliance/config/schema.py

Purpose
- Define authoritative configuration defaults and validation rules for the
  compliance control loop.
- Turn any JSON-like candidate into a structured verdict: normalized config,
  field-level errors and advisory warnings.

Validation stages (all run; nothing short-circuits)
1. Per-field type and range checks.
2. Intra-section consistency.
3. Inter-section consistency.
4. Resource estimate and performance checks.
5. Security posture checks.

A cross-field rule runs whenever every input it reads parsed successfully, so
a caller sees every problem in one pass. Missing optional leaves are filled
from defaults before stages 2-5 run.

Non-functional requirements
- Pure functions; never raise on malformed input (``validate_config``).
- Deterministic issue ordering and messages.
"""

from __future__ import annotations

import copy
import math
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Final, Literal, TypedDict

from nexus_compliance.constants import CONFIG_SCHEMA_VERSION

ConfigSchemaVersion: Final[int] = CONFIG_SCHEMA_VERSION

Severity = Literal["error", "warning", "info"]
RecommendationCategory = Literal["performance", "memory", "security"]
RecommendationPriority = Literal["high", "medium", "low"]

_BYTES_PER_MB: Final[int] = 1024 * 1024
_BYTES_PER_MESSAGE: Final[int] = 500
_BYTES_PER_CACHE_ENTRY: Final[int] = 1000
_SYSTEM_OVERHEAD_MB: Final[float] = 50.0

# Stage 4 and 5 thresholds.
RESOURCE_ESTIMATE_RATIO: Final[float] = 0.8
CACHE_MEMORY_RATIO: Final[float] = 0.1
MAX_CONCURRENT_THINKING_LOAD: Final[int] = 100
HIGH_BUDGET_TOKENS: Final[int] = 16384
SAFE_MAX_CONVERSATIONS: Final[int] = 5000
SAFE_MAX_SERVER_TIMEOUT_MS: Final[int] = 300_000
SAFE_MIN_CORRELATION_ID_LENGTH: Final[int] = 12

# Recommendation thresholds.
RECOMMENDED_BUDGET_TOKENS: Final[int] = 8192
RECOMMENDED_MAX_TTL_MS: Final[int] = 7_200_000


class ThinkingFallbackConfig(TypedDict):
    max_thinking_blocks: int
    max_budget_tokens: int


class ExtendedThinkingConfig(TypedDict):
    enabled: bool
    auto_trigger_threshold: float
    max_thinking_blocks: int
    max_thinking_block_size: int
    thinking_block_ttl_ms: int
    budget_tokens: int
    fallback: ThinkingFallbackConfig


class MemoryConfig(TypedDict):
    max_total_memory_mb: int
    max_conversations: int
    conversation_ttl_ms: int
    max_messages_per_conversation: int
    max_thinking_blocks: int
    max_thinking_block_size: int
    thinking_block_ttl_ms: int
    cleanup_interval_ms: int
    graceful_degradation_threshold: int
    max_cache_entries: int
    cache_ttl_ms: int


class ResourcesConfig(TypedDict):
    max_memory_mb: int
    max_heap_usage_mb: int
    max_cpu_percent: float
    max_active_handles: int
    max_event_loop_delay_ms: int
    memory_growth_rate_mb_per_min: float
    monitoring_interval_ms: int


class MemoryThresholds(TypedDict):
    warning: float
    degraded: float
    critical: float


class DegradationActions(TypedDict):
    reduce_thinking_blocks: bool
    limit_conversations: bool
    disable_complex_features: bool
    enable_aggressive_cleanup: bool


class RecoveryThresholds(TypedDict):
    memory_recovery_threshold: float
    stability_required_ms: int


class DegradationConfig(TypedDict):
    memory_thresholds: MemoryThresholds
    actions: DegradationActions
    recovery: RecoveryThresholds


class CorrelationConfig(TypedDict):
    enabled: bool
    max_request_history: int
    request_ttl_ms: int
    cleanup_interval_ms: int
    correlation_id_length: int
    enable_performance_tracking: bool
    enable_metrics_collection: bool


class ServerConfig(TypedDict):
    timeout_ms: int
    max_concurrent_requests: int
    enable_extended_thinking: bool
    enable_task_master: bool
    retry_attempts: int
    retry_delay_ms: int


class EnvironmentConfig(TypedDict):
    name: Literal["development", "staging", "production"]
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"]
    debug: bool


class MetaConfig(TypedDict):
    schema_version: int


class SystemConfig(TypedDict):
    meta: MetaConfig
    extended_thinking: ExtendedThinkingConfig
    memory: MemoryConfig
    resources: ResourcesConfig
    degradation: DegradationConfig
    correlation: CorrelationConfig
    server: ServerConfig
    environment: EnvironmentConfig


DEFAULT_CONFIG: Final[SystemConfig] = {
    "meta": {
        "schema_version": ConfigSchemaVersion,
    },
    "extended_thinking": {
        "enabled": True,
        "auto_trigger_threshold": 0.7,
        "max_thinking_blocks": 10,
        "max_thinking_block_size": 50_000,
        "thinking_block_ttl_ms": 1_800_000,
        "budget_tokens": 8192,
        "fallback": {
            "max_thinking_blocks": 5,
            "max_budget_tokens": 4096,
        },
    },
    "memory": {
        "max_total_memory_mb": 500,
        "max_conversations": 1000,
        "conversation_ttl_ms": 3_600_000,
        "max_messages_per_conversation": 100,
        "max_thinking_blocks": 10,
        "max_thinking_block_size": 50_000,
        "thinking_block_ttl_ms": 1_800_000,
        "cleanup_interval_ms": 300_000,
        "graceful_degradation_threshold": 80,
        "max_cache_entries": 500,
        "cache_ttl_ms": 1_800_000,
    },
    "resources": {
        "max_memory_mb": 1024,
        "max_heap_usage_mb": 512,
        "max_cpu_percent": 80.0,
        "max_active_handles": 1000,
        "max_event_loop_delay_ms": 100,
        "memory_growth_rate_mb_per_min": 50.0,
        "monitoring_interval_ms": 30_000,
    },
    "degradation": {
        "memory_thresholds": {
            "warning": 70.0,
            "degraded": 80.0,
            "critical": 90.0,
        },
        "actions": {
            "reduce_thinking_blocks": True,
            "limit_conversations": True,
            "disable_complex_features": True,
            "enable_aggressive_cleanup": True,
        },
        "recovery": {
            "memory_recovery_threshold": 60.0,
            "stability_required_ms": 30_000,
        },
    },
    "correlation": {
        "enabled": True,
        "max_request_history": 1000,
        "request_ttl_ms": 3_600_000,
        "cleanup_interval_ms": 300_000,
        "correlation_id_length": 16,
        "enable_performance_tracking": True,
        "enable_metrics_collection": True,
    },
    "server": {
        "timeout_ms": 120_000,
        "max_concurrent_requests": 10,
        "enable_extended_thinking": True,
        "enable_task_master": False,
        "retry_attempts": 3,
        "retry_delay_ms": 1000,
    },
    "environment": {
        "name": "development",
        "log_level": "INFO",
        "debug": False,
    },
}

REQUIRED_SECTIONS: Final[tuple[str, ...]] = (
    "extended_thinking",
    "memory",
    "resources",
    "degradation",
    "correlation",
    "server",
)
OPTIONAL_SECTIONS: Final[tuple[str, ...]] = ("meta", "environment")
_SECTION_ORDER: Final[tuple[str, ...]] = ("meta", *REQUIRED_SECTIONS, "environment")


@dataclass(frozen=True, slots=True)
class _Leaf:
    kind: Literal["int", "float", "bool", "enum"]
    minimum: float | None = None
    maximum: float | None = None
    allowed: tuple[str, ...] = ()


def _int(minimum: int | None = None, maximum: int | None = None) -> _Leaf:
    return _Leaf("int", minimum, maximum)


def _float(minimum: float | None = None, maximum: float | None = None) -> _Leaf:
    return _Leaf("float", minimum, maximum)


_BOOL: Final[_Leaf] = _Leaf("bool")

_SectionRules = Mapping[str, "_Leaf | _SectionRules"]

_RULES: Final[dict[str, _SectionRules]] = {
    "meta": {
        "schema_version": _int(1),
    },
    "extended_thinking": {
        "enabled": _BOOL,
        "auto_trigger_threshold": _float(0, 1),
        "max_thinking_blocks": _int(1, 50),
        "max_thinking_block_size": _int(1000, 500_000),
        "thinking_block_ttl_ms": _int(300_000),
        "budget_tokens": _int(1024, 32768),
        "fallback": {
            "max_thinking_blocks": _int(1, 10),
            "max_budget_tokens": _int(512, 8192),
        },
    },
    "memory": {
        "max_total_memory_mb": _int(50, 2048),
        "max_conversations": _int(10, 10_000),
        "conversation_ttl_ms": _int(300_000),
        "max_messages_per_conversation": _int(10, 1000),
        "max_thinking_blocks": _int(1, 50),
        "max_thinking_block_size": _int(1000, 500_000),
        "thinking_block_ttl_ms": _int(300_000),
        "cleanup_interval_ms": _int(60_000),
        "graceful_degradation_threshold": _int(50, 95),
        "max_cache_entries": _int(100, 5000),
        "cache_ttl_ms": _int(300_000),
    },
    "resources": {
        "max_memory_mb": _int(100, 4096),
        "max_heap_usage_mb": _int(50, 2048),
        "max_cpu_percent": _float(10, 100),
        "max_active_handles": _int(100, 10_000),
        "max_event_loop_delay_ms": _int(10, 1000),
        "memory_growth_rate_mb_per_min": _float(1, 500),
        "monitoring_interval_ms": _int(5000, 300_000),
    },
    "degradation": {
        "memory_thresholds": {
            "warning": _float(50, 95),
            "degraded": _float(60, 95),
            "critical": _float(70, 98),
        },
        "actions": {
            "reduce_thinking_blocks": _BOOL,
            "limit_conversations": _BOOL,
            "disable_complex_features": _BOOL,
            "enable_aggressive_cleanup": _BOOL,
        },
        "recovery": {
            "memory_recovery_threshold": _float(30, 80),
            "stability_required_ms": _int(5000, 300_000),
        },
    },
    "correlation": {
        "enabled": _BOOL,
        "max_request_history": _int(100, 10_000),
        "request_ttl_ms": _int(300_000),
        "cleanup_interval_ms": _int(60_000),
        "correlation_id_length": _int(8, 64),
        "enable_performance_tracking": _BOOL,
        "enable_metrics_collection": _BOOL,
    },
    "server": {
        "timeout_ms": _int(30_000, 600_000),
        "max_concurrent_requests": _int(1, 100),
        "enable_extended_thinking": _BOOL,
        "enable_task_master": _BOOL,
        "retry_attempts": _int(0, 10),
        "retry_delay_ms": _int(100, 30_000),
    },
    "environment": {
        "name": _Leaf("enum", allowed=("development", "staging", "production")),
        "log_level": _Leaf("enum", allowed=("DEBUG", "INFO", "WARNING", "ERROR")),
        "debug": _BOOL,
    },
}


@dataclass(frozen=True, slots=True)
class ConfigValidationIssue:
    """Single structured validation failure."""

    path: str
    message: str
    severity: Severity = "error"

    def to_dict(self) -> dict[str, str]:
        return {"path": self.path, "message": self.message, "severity": self.severity}


@dataclass(frozen=True, slots=True)
class ConfigValidationWarning:
    """Advisory finding that never affects validity."""

    path: str
    message: str
    recommendation: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "path": self.path,
            "message": self.message,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True, slots=True)
class ConfigValidationResult:
    """Validation verdict with the normalized config when no errors were found."""

    config: dict[str, Any] | None
    errors: tuple[ConfigValidationIssue, ...]
    warnings: tuple[ConfigValidationWarning, ...] = ()

    @property
    def is_valid(self) -> bool:
        return not self.errors

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "config": copy.deepcopy(self.config),
            "errors": [item.to_dict() for item in self.errors],
            "warnings": [item.to_dict() for item in self.warnings],
        }


@dataclass(frozen=True, slots=True)
class Recommendation:
    """Suggestion for a legal but sub-optimal setting."""

    category: RecommendationCategory
    priority: RecommendationPriority
    recommendation: str
    impact: str

    def to_dict(self) -> dict[str, str]:
        return {
            "category": self.category,
            "priority": self.priority,
            "recommendation": self.recommendation,
            "impact": self.impact,
        }


class ConfigValidationError(ValueError):
    """Raised when strict config validation fails."""

    def __init__(self, issues: Sequence[ConfigValidationIssue]) -> None:
        self.issues = tuple(issues)
        if not self.issues:
            rendered = "unknown validation failure"
        else:
            rendered = "\n".join(f"- {item.path}: {item.message}" for item in self.issues)
        super().__init__(f"invalid config:\n{rendered}")


class _IssueCollector:
    __slots__ = ("_errors", "_warnings")

    def __init__(self) -> None:
        self._errors: list[ConfigValidationIssue] = []
        self._warnings: list[ConfigValidationWarning] = []

    def add(self, path: str, message: str, severity: Severity = "error") -> None:
        self._errors.append(ConfigValidationIssue(path=path, message=message, severity=severity))

    def warn(self, path: str, message: str, recommendation: str | None = None) -> None:
        self._warnings.append(
            ConfigValidationWarning(path=path, message=message, recommendation=recommendation)
        )

    def errors(self) -> tuple[ConfigValidationIssue, ...]:
        return tuple(self._errors)

    def warnings(self) -> tuple[ConfigValidationWarning, ...]:
        return tuple(self._warnings)

    @property
    def has_errors(self) -> bool:
        return bool(self._errors)


def default_config() -> SystemConfig:
    """Return a deep copy of deterministic built-in defaults."""

    return copy.deepcopy(DEFAULT_CONFIG)


def migration_guidance(found_version: int) -> str:
    """Return deterministic migration guidance for schema version mismatch."""

    if found_version < ConfigSchemaVersion:
        return (
            f"schema version {found_version} is older than supported {ConfigSchemaVersion}; "
            "upgrade the configuration document to the current schema"
        )
    if found_version > ConfigSchemaVersion:
        return (
            f"schema version {found_version} is newer than supported {ConfigSchemaVersion}; "
            "upgrade the nexus-compliance runtime"
        )
    return "schema version is current"


def merge_config(base: Mapping[str, object], overlay: Mapping[str, object]) -> dict[str, Any]:
    """Deep-merge ``overlay`` onto ``base``; the overlay wins leaf by leaf."""

    merged = _deep_copy_mapping(base)
    _merge_into(merged, overlay)
    return merged


def validate_config(candidate: object) -> ConfigValidationResult:
    """Validate a candidate document and return errors, warnings and the normalized config."""

    issues = _IssueCollector()
    root = _as_object(candidate, "<root>", issues)
    if root is None:
        return ConfigValidationResult(config=None, errors=issues.errors())

    normalized = _validate_root(root, issues)
    _check_intra_section(normalized, issues)
    _check_inter_section(normalized, issues)
    _check_resource_estimates(normalized, issues)
    _check_security_posture(normalized, issues)

    if issues.has_errors:
        return ConfigValidationResult(
            config=None, errors=issues.errors(), warnings=issues.warnings()
        )
    return ConfigValidationResult(config=normalized, errors=(), warnings=issues.warnings())


def normalize_config(candidate: object) -> dict[str, Any] | None:
    """Return the defaults-filled document for a valid candidate, ``None`` otherwise."""

    return validate_config(candidate).config


def assert_valid_config(candidate: object) -> dict[str, Any]:
    """Validate config and raise ``ConfigValidationError`` on failure."""

    result = validate_config(candidate)
    if result.config is None:
        raise ConfigValidationError(result.errors)
    return result.config


def estimate_memory_usage_mb(config: Mapping[str, object]) -> float | None:
    """Estimate peak memory from conversation, thinking block and cache limits.

    Returns ``None`` when any input is missing.
    """

    inputs = [
        _get_number(config, "memory", key)
        for key in (
            "max_conversations",
            "max_messages_per_conversation",
            "max_thinking_blocks",
            "max_thinking_block_size",
            "max_cache_entries",
        )
    ]
    present = [value for value in inputs if value is not None]
    if len(present) != len(inputs):
        return None
    conversations, messages, blocks, block_size, cache_entries = present

    per_conversation = messages * _BYTES_PER_MESSAGE + blocks * block_size
    conversation_mb = conversations * per_conversation / _BYTES_PER_MB
    cache_mb = cache_entries * _BYTES_PER_CACHE_ENTRY / _BYTES_PER_MB
    return conversation_mb + cache_mb + _SYSTEM_OVERHEAD_MB


def recommend(config: object) -> tuple[Recommendation, ...]:
    """Return categorized suggestions for a valid configuration.

    Raises ``ConfigValidationError`` when ``config`` does not validate.
    """

    target = assert_valid_config(config)
    items: list[Recommendation] = []

    if target["extended_thinking"]["budget_tokens"] > RECOMMENDED_BUDGET_TOKENS:
        items.append(
            Recommendation(
                category="performance",
                priority="medium",
                recommendation=(
                    "Consider reducing the extended thinking token budget for faster responses"
                ),
                impact="Improved response time, reduced resource usage",
            )
        )
    if target["memory"]["conversation_ttl_ms"] > RECOMMENDED_MAX_TTL_MS:
        items.append(
            Recommendation(
                category="memory",
                priority="low",
                recommendation="Consider a shorter conversation TTL to reduce memory usage",
                impact="Lower memory consumption, more frequent cleanup",
            )
        )
    if target["memory"]["cache_ttl_ms"] > RECOMMENDED_MAX_TTL_MS:
        items.append(
            Recommendation(
                category="memory",
                priority="low",
                recommendation="Consider a shorter cache TTL to release stale entries sooner",
                impact="Lower steady-state cache footprint",
            )
        )
    if not target["correlation"]["enabled"]:
        items.append(
            Recommendation(
                category="security",
                priority="high",
                recommendation="Enable correlation tracking for better debugging and auditing",
                impact="Enhanced debugging, security auditing, and system monitoring",
            )
        )
    return tuple(items)


# ------------------------
# Stage 1: structure
# ------------------------


def _validate_root(payload: Mapping[str, object], issues: _IssueCollector) -> dict[str, Any]:
    allowed = set(REQUIRED_SECTIONS) | set(OPTIONAL_SECTIONS)
    _reject_unknown_keys(payload, allowed, "", issues)

    out: dict[str, Any] = {}
    for section in _SECTION_ORDER:
        raw = payload.get(section)
        if raw is None:
            if section in REQUIRED_SECTIONS:
                issues.add(section, "missing required section")
            else:
                default_section = DEFAULT_CONFIG[section]  # type: ignore[literal-required]
                out[section] = copy.deepcopy(default_section)
            continue
        section_obj = _as_object(raw, section, issues)
        if section_obj is None:
            continue
        out[section] = _validate_group(
            section_obj,
            section,
            _RULES[section],
            DEFAULT_CONFIG[section],  # type: ignore[literal-required]
            issues,
        )

    meta = out.get("meta")
    if isinstance(meta, dict):
        version = meta.get("schema_version")
        if isinstance(version, int) and version != ConfigSchemaVersion:
            issues.add("meta.schema_version", migration_guidance(version))
    return out


def _validate_group(
    payload: Mapping[str, object],
    path: str,
    rules: _SectionRules,
    defaults: Mapping[str, Any],
    issues: _IssueCollector,
) -> dict[str, Any]:
    _reject_unknown_keys(payload, set(rules), path, issues)

    out: dict[str, Any] = {}
    for key, rule in rules.items():
        key_path = _join(path, key)
        default = defaults[key]
        if key not in payload:
            out[key] = copy.deepcopy(default)
            continue
        raw = payload[key]
        if raw is None:
            issues.add(key_path, "must not be null")
            continue
        if isinstance(rule, _Leaf):
            parsed = _parse_leaf(raw, key_path, rule, issues)
            if parsed is not None:
                out[key] = parsed
            continue
        nested = _as_object(raw, key_path, issues)
        if nested is not None:
            out[key] = _validate_group(nested, key_path, rule, default, issues)
    return out


def _parse_leaf(value: object, path: str, rule: _Leaf, issues: _IssueCollector) -> object | None:
    if rule.kind == "bool":
        return _as_bool(value, path, issues)
    if rule.kind == "enum":
        return _as_enum(value, path, issues, allowed_values=rule.allowed)
    if rule.kind == "int":
        return _as_int(value, path, issues, minimum=rule.minimum, maximum=rule.maximum)
    return _as_float(value, path, issues, minimum=rule.minimum, maximum=rule.maximum)


# ------------------------
# Stage 2: intra-section
# ------------------------


def _check_intra_section(config: Mapping[str, object], issues: _IssueCollector) -> None:
    warning = _get_number(config, "degradation", "memory_thresholds", "warning")
    degraded = _get_number(config, "degradation", "memory_thresholds", "degraded")
    critical = _get_number(config, "degradation", "memory_thresholds", "critical")
    if warning is not None and degraded is not None and warning >= degraded:
        issues.add(
            "degradation.memory_thresholds.warning",
            f"warning threshold ({_fmt(warning)}) must be less than "
            f"degraded threshold ({_fmt(degraded)})",
        )
    if degraded is not None and critical is not None and degraded >= critical:
        issues.add(
            "degradation.memory_thresholds.degraded",
            f"degraded threshold ({_fmt(degraded)}) must be less than "
            f"critical threshold ({_fmt(critical)})",
        )

    ttl = _get_number(config, "memory", "conversation_ttl_ms")
    cleanup = _get_number(config, "memory", "cleanup_interval_ms")
    if ttl is not None and cleanup is not None and ttl < cleanup * 2:
        issues.warn(
            "memory.conversation_ttl_ms",
            "conversation TTL should be at least 2x the cleanup interval",
            "Increase memory.conversation_ttl_ms or decrease memory.cleanup_interval_ms",
        )

    budget = _get_number(config, "extended_thinking", "budget_tokens")
    fallback_budget = _get_number(config, "extended_thinking", "fallback", "max_budget_tokens")
    if budget is not None and fallback_budget is not None and fallback_budget > budget:
        issues.warn(
            "extended_thinking.fallback.max_budget_tokens",
            f"fallback token budget ({_fmt(fallback_budget)}) exceeds "
            f"primary budget ({_fmt(budget)})",
            "Keep the fallback budget at or below extended_thinking.budget_tokens",
        )


# ------------------------
# Stage 3: inter-section
# ------------------------


def _check_inter_section(config: Mapping[str, object], issues: _IssueCollector) -> None:
    total_memory = _get_number(config, "memory", "max_total_memory_mb")
    resource_memory = _get_number(config, "resources", "max_memory_mb")
    if total_memory is not None and resource_memory is not None and total_memory > resource_memory:
        issues.add(
            "memory.max_total_memory_mb",
            f"memory.max_total_memory_mb ({_fmt(total_memory)}) exceeds "
            f"resources.max_memory_mb ({_fmt(resource_memory)})",
        )

    for leaf, label in (
        ("max_thinking_blocks", "block count"),
        ("max_thinking_block_size", "block size"),
    ):
        subsystem = _get_number(config, "extended_thinking", leaf)
        ceiling = _get_number(config, "memory", leaf)
        if subsystem is not None and ceiling is not None and subsystem > ceiling:
            issues.warn(
                f"extended_thinking.{leaf}",
                f"extended_thinking.{leaf} ({_fmt(subsystem)}) exceeds "
                f"memory.{leaf} ({_fmt(ceiling)}); thinking {label} is capped by memory limits",
                f"Align extended_thinking.{leaf} with memory.{leaf}",
            )


# ------------------------
# Stage 4: resource estimates and performance
# ------------------------


def _check_resource_estimates(config: Mapping[str, object], issues: _IssueCollector) -> None:
    estimate = estimate_memory_usage_mb(config)
    resource_memory = _get_number(config, "resources", "max_memory_mb")
    if (
        estimate is not None
        and resource_memory is not None
        and estimate > resource_memory * RESOURCE_ESTIMATE_RATIO
    ):
        issues.warn(
            "memory",
            f"estimated memory usage ({round(estimate)}MB) may exceed "
            f"{int(RESOURCE_ESTIMATE_RATIO * 100)}% of resources.max_memory_mb "
            f"({_fmt(resource_memory)})",
            "Consider reducing conversation limits or increasing resource limits",
        )

    cache_entries = _get_number(config, "memory", "max_cache_entries")
    total_memory = _get_number(config, "memory", "max_total_memory_mb")
    if (
        cache_entries is not None
        and total_memory is not None
        and cache_entries * _BYTES_PER_CACHE_ENTRY
        > total_memory * _BYTES_PER_MB * CACHE_MEMORY_RATIO
    ):
        issues.warn(
            "memory.max_cache_entries",
            "cache size may consume significant memory",
            "Reduce cache entries or increase memory limits",
        )

    concurrent = _get_number(config, "server", "max_concurrent_requests")
    blocks = _get_number(config, "extended_thinking", "max_thinking_blocks")
    if (
        concurrent is not None
        and blocks is not None
        and concurrent * blocks > MAX_CONCURRENT_THINKING_LOAD
    ):
        issues.warn(
            "server.max_concurrent_requests",
            "high concurrent requests x thinking blocks may cause performance issues",
            "Consider reducing concurrent requests or thinking block limits",
        )

    budget = _get_number(config, "extended_thinking", "budget_tokens")
    if budget is not None and budget > HIGH_BUDGET_TOKENS:
        issues.warn(
            "extended_thinking.budget_tokens",
            "high token budget may cause slow responses",
            f"Consider token budgets <= {HIGH_BUDGET_TOKENS} for better performance",
        )


# ------------------------
# Stage 5: security posture
# ------------------------


def _check_security_posture(config: Mapping[str, object], issues: _IssueCollector) -> None:
    conversations = _get_number(config, "memory", "max_conversations")
    if conversations is not None and conversations > SAFE_MAX_CONVERSATIONS:
        issues.warn(
            "memory.max_conversations",
            "very high conversation limits may be exploitable",
            f"Consider conversation limits <= {SAFE_MAX_CONVERSATIONS}",
        )

    timeout = _get_number(config, "server", "timeout_ms")
    if timeout is not None and timeout > SAFE_MAX_SERVER_TIMEOUT_MS:
        issues.warn(
            "server.timeout_ms",
            "long timeouts may cause resource exhaustion",
            "Consider timeouts <= 5 minutes",
        )

    id_length = _get_number(config, "correlation", "correlation_id_length")
    if id_length is not None and id_length < SAFE_MIN_CORRELATION_ID_LENGTH:
        issues.warn(
            "correlation.correlation_id_length",
            "short correlation ids may be predictable",
            f"Use correlation id length >= {SAFE_MIN_CORRELATION_ID_LENGTH} characters",
        )


# ------------------------
# Primitive parsers
# ------------------------


def _as_object(value: object, path: str, issues: _IssueCollector) -> dict[str, object] | None:
    if not isinstance(value, Mapping):
        issues.add(path, f"expected object, got {type(value).__name__}")
        return None
    out: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            issues.add(path, f"object key must be string, got {type(key).__name__}")
            continue
        out[key] = item
    return out


def _as_str(value: object, path: str, issues: _IssueCollector) -> str | None:
    if not isinstance(value, str):
        issues.add(path, f"expected string, got {type(value).__name__}")
        return None
    parsed = value.strip()
    if not parsed:
        issues.add(path, "must not be empty")
        return None
    return parsed


def _as_bool(value: object, path: str, issues: _IssueCollector) -> bool | None:
    if isinstance(value, bool):
        return value
    issues.add(path, f"expected boolean, got {type(value).__name__}")
    return None


def _as_int(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> int | None:
    if isinstance(value, bool) or not isinstance(value, int):
        issues.add(path, f"expected integer, got {type(value).__name__}")
        return None
    if not _in_range(value, path, issues, minimum=minimum, maximum=maximum):
        return None
    return value


def _as_float(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None = None,
    maximum: float | None = None,
) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        issues.add(path, f"expected number, got {type(value).__name__}")
        return None
    try:
        parsed = float(value)
    except OverflowError:
        issues.add(path, "must be finite")
        return None
    if not math.isfinite(parsed):
        issues.add(path, "must be finite")
        return None
    if not _in_range(parsed, path, issues, minimum=minimum, maximum=maximum):
        return None
    return parsed


def _in_range(
    value: float,
    path: str,
    issues: _IssueCollector,
    *,
    minimum: float | None,
    maximum: float | None,
) -> bool:
    if minimum is not None and value < minimum:
        issues.add(path, f"must be >= {_fmt(minimum)}")
        return False
    if maximum is not None and value > maximum:
        issues.add(path, f"must be <= {_fmt(maximum)}")
        return False
    return True


def _as_enum(
    value: object,
    path: str,
    issues: _IssueCollector,
    *,
    allowed_values: tuple[str, ...],
) -> str | None:
    parsed = _as_str(value, path, issues)
    if parsed is None:
        return None
    if parsed not in allowed_values:
        expected = ", ".join(sorted(allowed_values))
        issues.add(path, f"invalid value {parsed!r}; expected one of: {expected}")
        return None
    return parsed


def _reject_unknown_keys(
    payload: Mapping[str, object],
    allowed: set[str],
    path: str,
    issues: _IssueCollector,
) -> None:
    for key in sorted(payload):
        if key not in allowed:
            issues.add(_join(path, key), "unknown field")


def _get_number(config: Mapping[str, object], *path: str) -> float | None:
    cursor: object = config
    for part in path:
        if not isinstance(cursor, Mapping) or part not in cursor:
            return None
        cursor = cursor[part]
    if isinstance(cursor, bool) or not isinstance(cursor, (int, float)):
        return None
    return cursor


def _fmt(value: float) -> str:
    if float(value).is_integer():
        return str(int(value))
    return str(value)


def _join(path: str, key: str) -> str:
    if not path:
        return key
    return f"{path}.{key}"


def _merge_into(target: dict[str, Any], overlay: Mapping[str, object]) -> None:
    for key in sorted(overlay):
        value = overlay[key]
        if isinstance(value, Mapping):
            existing = target.get(key)
            if isinstance(existing, dict):
                _merge_into(existing, value)
            else:
                nested: dict[str, Any] = {}
                _merge_into(nested, value)
                target[key] = nested
        else:
            target[key] = copy.deepcopy(value)


def _deep_copy_mapping(value: Mapping[str, object]) -> dict[str, Any]:
    out: dict[str, Any] = {}
    for key in sorted(value):
        item = value[key]
        if isinstance(item, Mapping):
            out[key] = _deep_copy_mapping(item)
        else:
            out[key] = copy.deepcopy(item)
    return out


__all__ = [
    "ConfigSchemaVersion",
    "ConfigValidationError",
    "ConfigValidationIssue",
    "ConfigValidationResult",
    "ConfigValidationWarning",
    "DEFAULT_CONFIG",
    "OPTIONAL_SECTIONS",
    "REQUIRED_SECTIONS",
    "Recommendation",
    "SystemConfig",
    "assert_valid_config",
    "default_config",
    "estimate_memory_usage_mb",
    "merge_config",
    "migration_guidance",
    "normalize_config",
    "recommend",
    "validate_config",
]
