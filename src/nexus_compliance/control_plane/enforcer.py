"""
Configuration enforcement and the periodic reconciliation loop.

This module pushes a validated configuration to the dependent components:
- per-component diff of live configuration against the target slice
- update only when the diff is non-empty, one change record per changed leaf
- soft-compliance warnings from live metrics, independent of the diff
- per-component failure isolation with a bounded call timeout
- a periodic loop that re-applies the current configuration
- a capped, payload-free history of enforcement passes

It integrates with:
- `ManagedComponent` for reads, updates and metrics
- `PeriodicRunner` for the reconciliation timer
- `structlog` for machine-parseable enforcement logs

The enforcer does not acquire its lock inside `enforce` or `start_loop`;
loop ticks do. Callers that mutate while a loop runs hold `lock` themselves.
"""

from __future__ import annotations

import asyncio
import copy
from collections import deque
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import structlog

from nexus_compliance.constants import (
    CHANGE_REASON,
    DEFAULT_COMPONENT_TIMEOUT_SECONDS,
    DEFAULT_ENFORCEMENT_INTERVAL_SECONDS,
    DEFAULT_OVERDUE_FACTOR,
    DEFAULT_SOFT_COMPLIANCE_TOLERANCE,
    ENFORCEMENT_HISTORY_CAPACITY,
)
from nexus_compliance.control_plane.components import (
    COMPONENT_ORDER,
    COMPONENT_SECTIONS,
    ComponentName,
    ManagedComponent,
    SyncState,
)
from nexus_compliance.domain.ids import resolve_correlation_id
from nexus_compliance.utils.concurrency import PeriodicRunner, resolve_maybe_awaitable

_BYTES_PER_MB = 1024 * 1024


def _utc_now() -> datetime:
    return datetime.now(tz=UTC)


@dataclass(frozen=True, slots=True)
class EnforcerSettings:
    """Tunable enforcement constants."""

    interval_seconds: float = DEFAULT_ENFORCEMENT_INTERVAL_SECONDS
    soft_tolerance: float = DEFAULT_SOFT_COMPLIANCE_TOLERANCE
    overdue_factor: float = DEFAULT_OVERDUE_FACTOR
    component_timeout_seconds: float = DEFAULT_COMPONENT_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        if self.interval_seconds <= 0:
            raise ValueError("interval_seconds must be > 0")
        if self.soft_tolerance < 0:
            raise ValueError("soft_tolerance must be >= 0")
        if self.overdue_factor <= 0:
            raise ValueError("overdue_factor must be > 0")
        if self.component_timeout_seconds <= 0:
            raise ValueError("component_timeout_seconds must be > 0")


@dataclass(frozen=True, slots=True)
class ConfigChange:
    """One changed leaf pushed to a component."""

    component: str
    property: str
    old_value: Any
    new_value: Any
    reason: str = CHANGE_REASON

    def to_dict(self) -> dict[str, object]:
        return {
            "component": self.component,
            "property": self.property,
            "old_value": copy.deepcopy(self.old_value),
            "new_value": copy.deepcopy(self.new_value),
            "reason": self.reason,
        }


@dataclass(frozen=True, slots=True)
class ComponentOutcome:
    """Result of enforcing one component."""

    component: ComponentName
    changes: tuple[ConfigChange, ...] = ()
    warnings: tuple[str, ...] = ()
    error: str | None = None

    @property
    def state(self) -> SyncState:
        if self.error is not None:
            return SyncState.ERROR
        if self.changes:
            return SyncState.DRIFT
        return SyncState.SYNCHRONIZED

    def to_dict(self) -> dict[str, object]:
        return {
            "component": self.component.value,
            "state": self.state.value,
            "changes": [change.to_dict() for change in self.changes],
            "warnings": list(self.warnings),
            "error": self.error,
        }


@dataclass(frozen=True, slots=True)
class EnforcementOutcome:
    """Aggregate result of one enforcement pass."""

    correlation_id: str
    components: tuple[ComponentOutcome, ...]

    @property
    def enforced(self) -> bool:
        return not self.errors

    @property
    def changes(self) -> tuple[ConfigChange, ...]:
        return tuple(change for outcome in self.components for change in outcome.changes)

    @property
    def warnings(self) -> tuple[str, ...]:
        return tuple(warning for outcome in self.components for warning in outcome.warnings)

    @property
    def errors(self) -> tuple[str, ...]:
        return tuple(outcome.error for outcome in self.components if outcome.error is not None)

    def to_dict(self) -> dict[str, object]:
        return {
            "correlation_id": self.correlation_id,
            "enforced": self.enforced,
            "changes": [change.to_dict() for change in self.changes],
            "warnings": list(self.warnings),
            "errors": list(self.errors),
            "components": [outcome.to_dict() for outcome in self.components],
        }


@dataclass(frozen=True, slots=True)
class RuntimeComplianceState:
    """Snapshot of what was last enforced."""

    active_config: dict[str, Any]
    last_enforced_at: datetime
    enforcement_count: int
    component_state: dict[ComponentName, SyncState] = field(default_factory=dict)

    def to_dict(self) -> dict[str, object]:
        return {
            "active_config": copy.deepcopy(self.active_config),
            "last_enforced_at": self.last_enforced_at.isoformat(),
            "enforcement_count": self.enforcement_count,
            "component_state": {
                name.value: state.value for name, state in self.component_state.items()
            },
        }


@dataclass(frozen=True, slots=True)
class EnforcementRecord:
    """Summary of one enforcement pass; carries no configuration payload."""

    timestamp: datetime
    correlation_id: str
    enforced: bool
    change_count: int
    warning_count: int
    error_count: int

    def to_dict(self) -> dict[str, object]:
        return {
            "timestamp": self.timestamp.isoformat(),
            "correlation_id": self.correlation_id,
            "enforced": self.enforced,
            "change_count": self.change_count,
            "warning_count": self.warning_count,
            "error_count": self.error_count,
        }


@dataclass(frozen=True, slots=True)
class ComplianceViolation:
    component: str
    violation: str
    severity: str
    recommendation: str

    def to_dict(self) -> dict[str, str]:
        return {
            "component": self.component,
            "violation": self.violation,
            "severity": self.severity,
            "recommendation": self.recommendation,
        }


@dataclass(frozen=True, slots=True)
class ComplianceCheck:
    compliant: bool
    violations: tuple[ComplianceViolation, ...]
    last_enforcement_age_seconds: float | None

    def to_dict(self) -> dict[str, object]:
        return {
            "compliant": self.compliant,
            "violations": [violation.to_dict() for violation in self.violations],
            "last_enforcement_age_seconds": self.last_enforcement_age_seconds,
        }


def diff_configuration(
    current: Mapping[str, Any],
    target: Mapping[str, Any],
    *,
    component: str,
    prefix: str = "",
) -> list[ConfigChange]:
    """Recursive key-by-key diff of ``target`` against ``current`` with dot-path properties.

    Only keys present in ``target`` are compared; nested mappings are walked,
    every other value is compared as a leaf.
    """

    changes: list[ConfigChange] = []
    for key in target:
        path = f"{prefix}.{key}" if prefix else str(key)
        new_value = target[key]
        old_value = current.get(key)
        if isinstance(new_value, Mapping) and isinstance(old_value, Mapping):
            changes.extend(
                diff_configuration(old_value, new_value, component=component, prefix=path)
            )
            continue
        if isinstance(new_value, Mapping):
            changes.extend(diff_configuration({}, new_value, component=component, prefix=path))
            continue
        if key not in current or old_value != new_value:
            changes.append(
                ConfigChange(
                    component=component,
                    property=path,
                    old_value=copy.deepcopy(old_value),
                    new_value=copy.deepcopy(new_value),
                )
            )
    return changes


class ConfigurationEnforcer:
    """Push validated configuration to components and keep them reconciled."""

    def __init__(
        self,
        components: Mapping[ComponentName | str, ManagedComponent],
        *,
        settings: EnforcerSettings | None = None,
        lock: asyncio.Lock | None = None,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
        config_source: Callable[[], Mapping[str, Any] | None] | None = None,
    ) -> None:
        """``config_source``, when given, supplies the document each loop tick enforces."""
        resolved = {ComponentName(name): component for name, component in components.items()}
        missing = [name.value for name in COMPONENT_ORDER if name not in resolved]
        if missing:
            raise ValueError(f"missing components: {', '.join(missing)}")
        self._components = resolved
        self._settings = settings or EnforcerSettings()
        self._lock = lock or asyncio.Lock()
        self._clock = clock or _utc_now
        self._logger = logger or structlog.get_logger(__name__)
        self._config_source = config_source

        self._state: RuntimeComplianceState | None = None
        self._history: deque[EnforcementRecord] = deque(maxlen=ENFORCEMENT_HISTORY_CAPACITY)
        self._loop_config: dict[str, Any] | None = None
        self._loop_interval = self._settings.interval_seconds
        self._runner: PeriodicRunner | None = None
        self._retired: list[PeriodicRunner] = []
        self._generation = 0

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock

    @property
    def settings(self) -> EnforcerSettings:
        return self._settings

    @property
    def is_loop_running(self) -> bool:
        return self._runner is not None and self._runner.running

    @property
    def loop_interval_seconds(self) -> float:
        return self._loop_interval

    async def enforce(
        self,
        config: Mapping[str, Any],
        correlation_id: str | None = None,
    ) -> EnforcementOutcome:
        """Apply ``config`` to every component in order and record the resulting state."""

        cid = resolve_correlation_id(correlation_id)
        outcomes: list[ComponentOutcome] = []
        for name in COMPONENT_ORDER:
            outcomes.append(await self._enforce_component(name, config))

        outcome = EnforcementOutcome(correlation_id=cid, components=tuple(outcomes))
        previous_count = self._state.enforcement_count if self._state is not None else 0
        enforced_at = self._clock()
        self._state = RuntimeComplianceState(
            active_config=copy.deepcopy(dict(config)),
            last_enforced_at=enforced_at,
            enforcement_count=previous_count + 1,
            component_state={item.component: item.state for item in outcomes},
        )
        self._history.append(
            EnforcementRecord(
                timestamp=enforced_at,
                correlation_id=cid,
                enforced=outcome.enforced,
                change_count=len(outcome.changes),
                warning_count=len(outcome.warnings),
                error_count=len(outcome.errors),
            )
        )

        log = self._logger.info if outcome.enforced else self._logger.warning
        log(
            "configuration_enforced",
            correlation_id=cid,
            enforced=outcome.enforced,
            change_count=len(outcome.changes),
            warning_count=len(outcome.warnings),
            errors=list(outcome.errors),
            enforcement_count=previous_count + 1,
        )
        return outcome

    async def start_loop(
        self,
        config: Mapping[str, Any],
        interval_seconds: float | None = None,
        *,
        correlation_id: str | None = None,
    ) -> EnforcementOutcome:
        """Enforce ``config`` once, then re-enforce every interval.

        A loop that is already running is replaced, never stacked. Ticks
        enforce the document from ``config_source`` when one was given and
        it returns a document, otherwise ``config``.
        """

        interval = self._resolve_interval(interval_seconds)
        self._retire_runner()
        self._loop_config = copy.deepcopy(dict(config))
        self._loop_interval = interval
        outcome = await self.enforce(self._loop_config, correlation_id)
        self._start_runner(interval, outcome.correlation_id)
        return outcome

    def schedule_loop(
        self,
        config: Mapping[str, Any],
        interval_seconds: float | None = None,
        *,
        correlation_id: str | None = None,
    ) -> None:
        """Like `start_loop` without the immediate pass: the first tick comes one interval later."""
        interval = self._resolve_interval(interval_seconds)
        self._retire_runner()
        self._loop_config = copy.deepcopy(dict(config))
        self._loop_interval = interval
        self._start_runner(interval, resolve_correlation_id(correlation_id))

    def stop_loop(self) -> None:
        """Stop the loop at the next tick boundary; an in-flight enforcement completes."""
        if self._runner is None:
            return
        self._retire_runner()
        self._logger.info("reconciliation_loop_stopped")

    async def wait_stopped(self) -> None:
        """Wait until every stopped loop task has exited."""
        retired, self._retired = self._retired, []
        for runner in retired:
            await runner.wait_stopped()

    @property
    def stopping_loop_count(self) -> int:
        """Stopped loops whose task has not exited yet."""
        self._prune_retired()
        return len(self._retired)

    def enforcement_history(self, limit: int = 10) -> list[EnforcementRecord]:
        """Most recent ``limit`` enforcement passes, oldest first."""
        if limit <= 0:
            return []
        return list(self._history)[-limit:]

    def get_state(self) -> RuntimeComplianceState | None:
        """Deep copy of the runtime state, or ``None`` before the first enforcement."""
        if self._state is None:
            return None
        return copy.deepcopy(self._state)

    def check_compliance(self, *, now: datetime | None = None) -> ComplianceCheck:
        state = self._state
        if state is None:
            violation = ComplianceViolation(
                component="system",
                violation="No configuration enforcement state available",
                severity="high",
                recommendation="Initialize configuration enforcement",
            )
            return ComplianceCheck(
                compliant=False,
                violations=(violation,),
                last_enforcement_age_seconds=None,
            )

        violations: list[ComplianceViolation] = []
        for name in COMPONENT_ORDER:
            component_state = state.component_state.get(name)
            if component_state is SyncState.ERROR:
                violations.append(
                    ComplianceViolation(
                        component=name.value,
                        violation="Component configuration enforcement failed",
                        severity="high",
                        recommendation=f"Check {name.value} configuration and resolve errors",
                    )
                )
            elif component_state is SyncState.DRIFT:
                violations.append(
                    ComplianceViolation(
                        component=name.value,
                        violation="Configuration drift detected",
                        severity="medium",
                        recommendation=f"Re-enforce configuration for {name.value}",
                    )
                )

        current = now or self._clock()
        age = max((current - state.last_enforced_at).total_seconds(), 0.0)
        if age >= self._loop_interval * self._settings.overdue_factor:
            violations.append(
                ComplianceViolation(
                    component="system",
                    violation="Configuration enforcement is overdue",
                    severity="high",
                    recommendation="Run configuration enforcement check",
                )
            )

        return ComplianceCheck(
            compliant=not violations,
            violations=tuple(violations),
            last_enforcement_age_seconds=age,
        )

    async def _reconcile(self, generation: int) -> None:
        async with self._lock:
            if generation != self._generation:
                return
            target = self._config_source() if self._config_source is not None else None
            if target is None:
                target = self._loop_config
            if target is None:
                return
            await self.enforce(target)

    def _resolve_interval(self, interval_seconds: float | None) -> float:
        interval = self._settings.interval_seconds if interval_seconds is None else interval_seconds
        if interval <= 0:
            raise ValueError("interval_seconds must be > 0")
        return interval

    def _start_runner(self, interval: float, correlation_id: str) -> None:
        generation = self._generation

        async def _tick() -> None:
            await self._reconcile(generation)

        self._runner = PeriodicRunner(
            _tick,
            interval,
            name="configuration-reconciliation",
            logger=self._logger,
        )
        self._runner.start()
        self._logger.info(
            "reconciliation_loop_started",
            correlation_id=correlation_id,
            interval_seconds=interval,
        )

    def _retire_runner(self) -> None:
        self._generation += 1
        self._prune_retired()
        runner, self._runner = self._runner, None
        if runner is not None:
            runner.stop()
            self._retired.append(runner)

    def _prune_retired(self) -> None:
        self._retired = [runner for runner in self._retired if not runner.finished]

    async def _enforce_component(
        self,
        name: ComponentName,
        config: Mapping[str, Any],
    ) -> ComponentOutcome:
        component = self._components[name]
        raw_target = config.get(COMPONENT_SECTIONS[name], {})
        target: Mapping[str, Any] = raw_target if isinstance(raw_target, Mapping) else {}
        timeout = self._settings.component_timeout_seconds

        try:
            current = await resolve_maybe_awaitable(component.get_configuration(), timeout)
            baseline = current if isinstance(current, Mapping) else {}
            changes = diff_configuration(baseline, target, component=name.value)
            if changes:
                await resolve_maybe_awaitable(
                    component.update_configuration(copy.deepcopy(dict(target))),
                    timeout,
                )
            metrics = await resolve_maybe_awaitable(component.metrics(), timeout)
            warnings = self._soft_compliance_warnings(name, target, metrics or {})
        except Exception as exc:  # noqa: BLE001 - converted to a per-component error.
            message = str(exc) or type(exc).__name__
            self._logger.error(
                "component_enforcement_failed",
                component=name.value,
                error=message,
                error_type=type(exc).__name__,
            )
            return ComponentOutcome(component=name, error=f"{name.value}: {message}")

        for change in changes:
            self._logger.debug(
                "configuration_changed",
                component=name.value,
                property=change.property,
                old_value=change.old_value,
                new_value=change.new_value,
            )
        return ComponentOutcome(component=name, changes=tuple(changes), warnings=warnings)

    def _soft_compliance_warnings(
        self,
        name: ComponentName,
        target: Mapping[str, Any],
        metrics: Mapping[str, Any],
    ) -> tuple[str, ...]:
        factor = 1.0 + self._settings.soft_tolerance
        percent = round(self._settings.soft_tolerance * 100)
        warnings: list[str] = []

        if name is ComponentName.MEMORY:
            conversations = _number(metrics.get("total_conversations"))
            limit = _number(target.get("max_conversations"))
            if conversations is not None and limit is not None and conversations > limit * factor:
                warnings.append(
                    f"Memory manager has {_fmt(conversations)} conversations, "
                    f"exceeding limit of {_fmt(limit)}"
                )
            usage = _number(metrics.get("estimated_memory_bytes"))
            ceiling_mb = _number(target.get("max_total_memory_mb"))
            if (
                usage is not None
                and ceiling_mb is not None
                and usage > ceiling_mb * _BYTES_PER_MB * factor
            ):
                warnings.append(f"Memory usage exceeds configured limit by more than {percent}%")

        elif name is ComponentName.RESOURCE_MONITOR:
            heap_mb = _number(metrics.get("heap_used_mb"))
            heap_limit = _number(target.get("max_heap_usage_mb"))
            if heap_mb is not None and heap_limit is not None and heap_mb > heap_limit * factor:
                warnings.append(
                    f"Current heap usage ({round(heap_mb)}MB) exceeds configured limit "
                    f"({_fmt(heap_limit)}MB)"
                )
            handles = _number(metrics.get("active_handles"))
            handle_limit = _number(target.get("max_active_handles"))
            if handles is not None and handle_limit is not None and handles > handle_limit * factor:
                warnings.append(
                    f"Active handles ({_fmt(handles)}) exceed configured limit "
                    f"({_fmt(handle_limit)})"
                )

        elif name is ComponentName.DEGRADATION:
            if metrics.get("healthy") is False:
                level = metrics.get("level", "unknown")
                message = metrics.get("message", "")
                warnings.append(f"System currently in {level} degradation mode: {message}")

        else:
            history = _number(metrics.get("total_history_size"))
            limit = _number(target.get("max_request_history"))
            if history is not None and limit is not None and history > limit * factor:
                warnings.append(
                    f"Correlation tracker has {_fmt(history)} requests, exceeding history limit"
                )

        return tuple(warnings)


def _number(value: object) -> float | None:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return None
    return float(value)


def _fmt(value: float) -> str:
    return str(int(value)) if float(value).is_integer() else str(value)


__all__ = [
    "ComplianceCheck",
    "ComplianceViolation",
    "ComponentOutcome",
    "ConfigChange",
    "ConfigurationEnforcer",
    "EnforcementOutcome",
    "EnforcementRecord",
    "EnforcerSettings",
    "RuntimeComplianceState",
    "diff_configuration",
]
