"""
Compliance manager: validate, enforce, report.

This module is the entry point callers use to change and inspect the running
configuration:
- `update` validates, enforces only valid documents, then refreshes the loop
- loop ticks always re-enforce the current active configuration
- `status` combines the compliance check with runtime health probes
- `health_report` derives an overall verdict with deduplicated recommendations
- operation history is capped and never retains configuration payloads

Mutating operations and reconciliation ticks share one `asyncio.Lock`, so at
most one enforcement cycle is in flight and the last scheduled update wins.
Every public operation returns a result value; validation, enforcement, probe
and precondition failures are reported as data.
"""

from __future__ import annotations

import copy
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

import structlog

from nexus_compliance.config.loader import collect_env_overrides
from nexus_compliance.config.schema import (
    ConfigValidationResult,
    default_config,
    merge_config,
    validate_config,
)
from nexus_compliance.constants import HISTORY_CAPACITY
from nexus_compliance.control_plane.components import (
    COMPONENT_ORDER,
    ComponentName,
    ManagedComponent,
    SyncState,
)
from nexus_compliance.control_plane.enforcer import (
    ConfigurationEnforcer,
    EnforcementOutcome,
    EnforcerSettings,
)
from nexus_compliance.domain.ids import resolve_correlation_id
from nexus_compliance.observability.logging import correlation_scope
from nexus_compliance.utils.concurrency import resolve_maybe_awaitable

Operation = Literal["validate", "enforce", "update"]
IssueType = Literal["validation", "enforcement", "runtime"]
Overall = Literal["healthy", "degraded", "critical"]

NO_ACTIVE_CONFIGURATION = "no_active_configuration"
VALIDATION_FAILED = "validation_failed"
ENFORCEMENT_FAILED = "enforcement_failed"

_RESTART_RECOMMENDATION = "Consider system restart if issues persist"
_MAINTENANCE_RECOMMENDATION = "Schedule maintenance window to resolve warnings"


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


def _iso(value: datetime | None) -> str | None:
    return None if value is None else value.isoformat()


@dataclass(frozen=True, slots=True)
class StatusIssue:
    type: IssueType
    severity: str
    component: str
    message: str
    recommendation: str | None = None

    def to_dict(self) -> dict[str, str | None]:
        return {
            "type": self.type,
            "severity": self.severity,
            "component": self.component,
            "message": self.message,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True, slots=True)
class SystemStatus:
    """Point-in-time view of validity, enforcement and runtime health."""

    is_valid: bool
    is_enforced: bool
    last_validated: datetime | None
    last_enforced: datetime | None
    active_config: dict[str, Any] | None
    issues: tuple[StatusIssue, ...]
    component_state: dict[ComponentName, SyncState]
    checked_at: datetime

    def issues_with_severity(self, severity: str) -> tuple[StatusIssue, ...]:
        return tuple(issue for issue in self.issues if issue.severity == severity)

    def to_dict(self) -> dict[str, object]:
        return {
            "is_valid": self.is_valid,
            "is_enforced": self.is_enforced,
            "last_validated": _iso(self.last_validated),
            "last_enforced": _iso(self.last_enforced),
            "active_config": copy.deepcopy(self.active_config),
            "issues": [issue.to_dict() for issue in self.issues],
            "component_state": {
                name.value: state.value for name, state in self.component_state.items()
            },
            "checked_at": self.checked_at.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class HealthReport:
    overall: Overall
    summary: str
    details: dict[str, str]
    recommendations: tuple[str, ...]
    last_checked: datetime
    status: SystemStatus

    def to_dict(self) -> dict[str, object]:
        return {
            "overall": self.overall,
            "summary": self.summary,
            "details": dict(self.details),
            "recommendations": list(self.recommendations),
            "last_checked": self.last_checked.isoformat(),
        }


@dataclass(frozen=True, slots=True)
class HistoryEntry:
    """One recorded operation; deliberately carries no configuration payload."""

    timestamp: datetime
    correlation_id: str
    operation: Operation
    success: bool

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "operation": self.operation,
            "success": self.success,
        }


@dataclass(frozen=True, slots=True)
class UpdateResult:
    success: bool
    correlation_id: str
    validation: ConfigValidationResult | None = None
    enforcement: EnforcementOutcome | None = None
    status: SystemStatus | None = None
    failure_reason: str | None = None

    def to_dict(self) -> dict[str, object]:
        return {
            "success": self.success,
            "correlation_id": self.correlation_id,
            "failure_reason": self.failure_reason,
            "validation": None if self.validation is None else self.validation.to_dict(),
            "enforcement": None if self.enforcement is None else self.enforcement.to_dict(),
            "status": None if self.status is None else self.status.to_dict(),
        }


@dataclass(frozen=True, slots=True)
class QuickHealth:
    healthy: bool
    issues: int
    critical_issues: int

    def to_dict(self) -> dict[str, object]:
        return {
            "healthy": self.healthy,
            "issues": self.issues,
            "critical_issues": self.critical_issues,
        }


@dataclass(frozen=True, slots=True)
class _ProbeRule:
    component: ComponentName
    metric: str
    high: dict[str, tuple[str, str]] = field(default_factory=dict)
    medium: dict[str, tuple[str, str]] = field(default_factory=dict)


class ComplianceManager:
    """
    Owns the active configuration and coordinates validation and enforcement.

    Construction/teardown contract: build one manager per process with its
    components, call `initialize` (or `update`), and `await shutdown()` before
    the event loop closes.
    """

    def __init__(
        self,
        components: Mapping[ComponentName | str, ManagedComponent],
        *,
        settings: EnforcerSettings | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._components = {ComponentName(name): item for name, item in components.items()}
        self._clock = clock or _utc_now
        self._logger = logger or structlog.get_logger(__name__)
        self._enforcer = ConfigurationEnforcer(
            self._components,
            settings=settings,
            clock=self._clock,
            logger=self._logger,
            config_source=lambda: self._active_config,
        )
        self._lock = self._enforcer.lock

        self._active_config: dict[str, Any] | None = None
        self._last_validated: datetime | None = None
        self._last_rejection: ConfigValidationResult | None = None
        self._last_status: SystemStatus | None = None
        self._history: deque[HistoryEntry] = deque(maxlen=HISTORY_CAPACITY)

    @property
    def enforcer(self) -> ConfigurationEnforcer:
        return self._enforcer

    @property
    def last_status(self) -> SystemStatus | None:
        return copy.deepcopy(self._last_status)

    @property
    def active_config(self) -> dict[str, Any] | None:
        return copy.deepcopy(self._active_config)

    async def initialize(
        self,
        partial_config: Mapping[str, Any] | None = None,
        correlation_id: str | None = None,
    ) -> UpdateResult:
        """Merge ``partial_config`` onto the defaults leaf by leaf and apply it via `update`."""
        merged = merge_config(dict(default_config()), partial_config or {})
        return await self.update(merged, correlation_id)

    async def initialize_from_environment(
        self,
        environ: Mapping[str, str],
        correlation_id: str | None = None,
    ) -> UpdateResult:
        """`initialize` with overrides read from ``NEXUS_COMPLIANCE_*`` variables.

        Raises ``ConfigLoadError`` when a variable cannot be coerced.
        """
        return await self.initialize(collect_env_overrides(environ), correlation_id)

    async def update(
        self,
        config: Mapping[str, Any],
        correlation_id: str | None = None,
    ) -> UpdateResult:
        cid = resolve_correlation_id(correlation_id)
        async with self._lock:
            with correlation_scope(correlation_id=cid, operation="update"):
                return await self._apply(config, cid)

    async def revalidate(self, correlation_id: str | None = None) -> UpdateResult:
        """Re-run `update` with the active configuration."""
        cid = resolve_correlation_id(correlation_id)
        async with self._lock:
            with correlation_scope(correlation_id=cid, operation="update"):
                if self._active_config is None:
                    self._logger.warning("revalidate_rejected", reason=NO_ACTIVE_CONFIGURATION)
                    return UpdateResult(
                        success=False,
                        correlation_id=cid,
                        failure_reason=NO_ACTIVE_CONFIGURATION,
                    )
                return await self._apply(copy.deepcopy(self._active_config), cid)

    async def enforce_now(self, correlation_id: str | None = None) -> UpdateResult:
        """Re-apply the active configuration without re-validating it."""
        cid = resolve_correlation_id(correlation_id)
        async with self._lock:
            with correlation_scope(correlation_id=cid, operation="enforce"):
                if self._active_config is None:
                    return UpdateResult(
                        success=False,
                        correlation_id=cid,
                        failure_reason=NO_ACTIVE_CONFIGURATION,
                    )
                outcome = await self._enforcer.enforce(self._active_config, cid)
                self._record(cid, "enforce", outcome.enforced)
                return UpdateResult(
                    success=outcome.enforced,
                    correlation_id=cid,
                    enforcement=outcome,
                    status=await self._compute_status(),
                    failure_reason=None if outcome.enforced else ENFORCEMENT_FAILED,
                )

    def validate(
        self,
        config: object,
        correlation_id: str | None = None,
    ) -> ConfigValidationResult:
        """Validate without enforcing; records a ``validate`` history entry."""
        cid = resolve_correlation_id(correlation_id)
        verdict = validate_config(config)
        if verdict.is_valid:
            self._last_validated = self._clock()
        self._record(cid, "validate", verdict.is_valid)
        self._logger.info(
            "configuration_validated",
            correlation_id=cid,
            is_valid=verdict.is_valid,
            error_count=len(verdict.errors),
            warning_count=len(verdict.warnings),
        )
        return verdict

    async def status(self) -> SystemStatus:
        return await self._compute_status()

    async def health_report(self) -> HealthReport:
        status = await self._compute_status()
        high = status.issues_with_severity("high")
        medium = status.issues_with_severity("medium")

        overall: Overall
        if high:
            overall = "critical"
            summary = f"System has {len(high)} critical issues requiring immediate attention"
        elif medium or not status.is_enforced:
            overall = "degraded"
            summary = f"System operational with {len(medium)} warnings requiring attention"
        else:
            overall = "healthy"
            summary = "All system components are properly configured and operating normally"

        if status.is_enforced:
            enforcement = "compliant"
        elif any(issue.type == "enforcement" for issue in high):
            enforcement = "error"
        else:
            enforcement = "drift"

        if any(issue.type == "runtime" for issue in high):
            runtime = "critical"
        elif any(issue.type == "runtime" for issue in medium):
            runtime = "warning"
        else:
            runtime = "healthy"

        recommendations = [
            issue.recommendation for issue in status.issues if issue.recommendation is not None
        ]
        if overall == "critical":
            recommendations.append(_RESTART_RECOMMENDATION)
        elif overall == "degraded":
            recommendations.append(_MAINTENANCE_RECOMMENDATION)

        return HealthReport(
            overall=overall,
            summary=summary,
            details={
                "configuration": "valid" if status.is_valid else "invalid",
                "enforcement": enforcement,
                "runtime": runtime,
            },
            recommendations=tuple(dict.fromkeys(recommendations)),
            last_checked=status.checked_at,
            status=status,
        )

    async def quick_health_check(self) -> QuickHealth:
        status = await self._compute_status()
        critical = status.issues_with_severity("high")
        return QuickHealth(
            healthy=status.is_valid and status.is_enforced and not critical,
            issues=len(status.issues),
            critical_issues=len(critical),
        )

    def history(self, limit: int = 20) -> list[HistoryEntry]:
        """Most recent ``limit`` entries, oldest first."""
        if limit <= 0:
            return []
        entries = list(self._history)
        return entries[-limit:]

    async def shutdown(self) -> None:
        self._enforcer.stop_loop()
        await self._enforcer.wait_stopped()

    async def _apply(self, config: Mapping[str, Any], cid: str) -> UpdateResult:
        verdict = validate_config(config)
        if not verdict.is_valid or verdict.config is None:
            self._last_rejection = verdict
            self._record(cid, "update", False)
            self._logger.warning(
                "configuration_rejected",
                correlation_id=cid,
                errors=[f"{issue.path}: {issue.message}" for issue in verdict.errors],
            )
            return UpdateResult(
                success=False,
                correlation_id=cid,
                validation=verdict,
                status=await self._compute_status(),
                failure_reason=VALIDATION_FAILED,
            )

        accepted = verdict.config
        self._active_config = copy.deepcopy(accepted)
        self._last_validated = self._clock()
        self._last_rejection = None

        outcome = await self._enforcer.enforce(accepted, cid)
        if outcome.enforced or not self._enforcer.is_loop_running:
            self._enforcer.schedule_loop(accepted, correlation_id=cid)

        self._record(cid, "update", outcome.enforced)
        self._logger.info(
            "configuration_updated",
            correlation_id=cid,
            success=outcome.enforced,
            change_count=len(outcome.changes),
            warning_count=len(verdict.warnings) + len(outcome.warnings),
        )
        return UpdateResult(
            success=outcome.enforced,
            correlation_id=cid,
            validation=verdict,
            enforcement=outcome,
            status=await self._compute_status(),
            failure_reason=None if outcome.enforced else ENFORCEMENT_FAILED,
        )

    def _record(self, cid: str, operation: Operation, success: bool) -> None:
        self._history.append(
            HistoryEntry(
                timestamp=self._clock(),
                correlation_id=cid,
                operation=operation,
                success=success,
            )
        )

    async def _compute_status(self) -> SystemStatus:
        issues: list[StatusIssue] = []

        check = self._enforcer.check_compliance()
        for violation in check.violations:
            issues.append(
                StatusIssue(
                    type="enforcement",
                    severity=violation.severity,
                    component=violation.component,
                    message=violation.violation,
                    recommendation=violation.recommendation,
                )
            )

        if self._last_rejection is not None:
            issues.append(
                StatusIssue(
                    type="validation",
                    severity="low",
                    component="configuration",
                    message=(
                        "Last submitted configuration was rejected with "
                        f"{len(self._last_rejection.errors)} error(s)"
                    ),
                    recommendation="Correct the reported configuration errors and resubmit",
                )
            )

        for rule in _PROBE_RULES:
            issues.extend(await self._probe(rule))

        state = self._enforcer.get_state()
        status = SystemStatus(
            is_valid=self._active_config is not None,
            is_enforced=check.compliant,
            last_validated=self._last_validated,
            last_enforced=None if state is None else state.last_enforced_at,
            active_config=copy.deepcopy(self._active_config),
            issues=tuple(issues),
            component_state=_derive_component_state(
                issues, None if state is None else state.component_state
            ),
            checked_at=self._clock(),
        )
        self._last_status = status
        return copy.deepcopy(status)

    async def _probe(self, rule: _ProbeRule) -> list[StatusIssue]:
        component = self._components[rule.component]
        timeout = self._enforcer.settings.component_timeout_seconds
        try:
            metrics = await resolve_maybe_awaitable(component.metrics(), timeout)
            value = (metrics or {}).get(rule.metric)
            message = str((metrics or {}).get("message", ""))
        except Exception as exc:  # noqa: BLE001 - downgraded to a status issue.
            self._logger.error(
                "health_probe_failed",
                component=rule.component.value,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return [
                StatusIssue(
                    type="runtime",
                    severity="high",
                    component="system",
                    message=f"Failed to check {rule.component.value} health: {exc}",
                    recommendation="Check system component status manually",
                )
            ]

        key = str(value)
        for severity, table in (("high", rule.high), ("medium", rule.medium)):
            match = table.get(key)
            if match is None and key not in _NEUTRAL_LEVELS:
                match = table.get("*")
            if match is None:
                continue
            text, recommendation = match
            return [
                StatusIssue(
                    type="runtime",
                    severity=severity,
                    component=rule.component.value,
                    message=text.format(level=value, message=message),
                    recommendation=recommendation,
                )
            ]
        return []


_NEUTRAL_LEVELS = frozenset({"normal", "low", "moderate", "healthy", "None"})

_PROBE_RULES: tuple[_ProbeRule, ...] = (
    _ProbeRule(
        component=ComponentName.MEMORY,
        metric="memory_pressure",
        high={
            "critical": (
                "System under critical memory pressure",
                "Perform immediate cleanup or restart system",
            )
        },
        medium={
            "high": (
                "System under high memory pressure",
                "Monitor memory usage and consider cleanup",
            )
        },
    ),
    _ProbeRule(
        component=ComponentName.DEGRADATION,
        metric="level",
        high={
            "critical": (
                "System in critical degradation mode: {message}",
                "Investigate system resource constraints",
            )
        },
        medium={"*": ("System in {level} degradation mode", "Monitor system resources")},
    ),
    _ProbeRule(
        component=ComponentName.RESOURCE_MONITOR,
        metric="status",
        high={"critical": ("Resource leaks detected", "Investigate memory and handle leaks")},
        medium={
            "warning": ("Resource usage warnings detected", "Monitor resource consumption")
        },
    ),
)


def _derive_component_state(
    issues: list[StatusIssue],
    enforced_state: Mapping[ComponentName, SyncState] | None,
) -> dict[ComponentName, SyncState]:
    result: dict[ComponentName, SyncState] = {}
    for name in COMPONENT_ORDER:
        own = [issue for issue in issues if issue.component == name.value]
        if any(issue.severity == "high" for issue in own):
            result[name] = SyncState.ERROR
        elif enforced_state is not None and name in enforced_state:
            result[name] = enforced_state[name]
        elif any(issue.severity == "medium" for issue in own):
            result[name] = SyncState.DRIFT
        else:
            result[name] = SyncState.SYNCHRONIZED
    return result


__all__ = [
    "ENFORCEMENT_FAILED",
    "NO_ACTIVE_CONFIGURATION",
    "VALIDATION_FAILED",
    "ComplianceManager",
    "HealthReport",
    "HistoryEntry",
    "QuickHealth",
    "StatusIssue",
    "SystemStatus",
    "UpdateResult",
]
