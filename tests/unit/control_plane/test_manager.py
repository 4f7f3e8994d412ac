"""
nexus-compliance — unit tests for the compliance manager

File: tests/unit/control_plane/test_manager.py

Purpose
- Validate update/initialize/revalidate semantics, status assembly from
  compliance checks and health probes, health reports and history capping.

What this test file should cover
- Invalid documents are never enforced and leave the active config untouched.
- Every update appends exactly one history entry; history never exceeds 100
  entries and never carries configuration payloads.
- Probe failures become a single high-severity ``system`` issue each.
- Concurrent updates are serialized; the last scheduled one wins.
- A failed enforcement is retried by the loop against the latest accepted config.

Non-functional requirements
- Deterministic; every manager is shut down so no loop task outlives a test.
"""

from __future__ import annotations

import asyncio
import json
from typing import TYPE_CHECKING, Any

import pytest

from nexus_compliance.config.loader import ConfigLoadError
from nexus_compliance.config.schema import default_config, merge_config
from nexus_compliance.control_plane.components import (
    ComponentName,
    InMemoryComponent,
    SyncState,
    build_in_memory_components,
)
from nexus_compliance.control_plane.enforcer import EnforcerSettings
from nexus_compliance.control_plane.manager import (
    ENFORCEMENT_FAILED,
    NO_ACTIVE_CONFIGURATION,
    VALIDATION_FAILED,
    ComplianceManager,
)

if TYPE_CHECKING:
    from collections.abc import AsyncIterator


@pytest.fixture
def components() -> dict[ComponentName, InMemoryComponent]:
    return build_in_memory_components()


@pytest.fixture
async def manager(
    components: dict[ComponentName, InMemoryComponent],
) -> AsyncIterator[ComplianceManager]:
    instance = ComplianceManager(components)
    yield instance
    await instance.shutdown()


def _config(**sections: Any) -> dict[str, Any]:
    return merge_config(dict(default_config()), sections)


def _raise_metrics() -> dict[str, Any]:
    raise RuntimeError("metrics endpoint down")


async def test_initialize_with_defaults_is_valid_and_enforced(manager: ComplianceManager) -> None:
    result = await manager.initialize()

    assert result.success
    assert result.failure_reason is None
    assert result.validation is not None and result.validation.is_valid
    assert result.enforcement is not None and result.enforcement.enforced

    status = await manager.status()
    assert status.is_valid
    assert status.is_enforced
    assert status.last_validated is not None
    assert status.last_enforced is not None
    assert status.active_config is not None
    assert status.active_config["memory"]["max_conversations"] == 1000
    assert set(status.component_state.values()) == {SyncState.SYNCHRONIZED}
    assert manager.enforcer.is_loop_running


async def test_initialize_merges_partial_override_at_leaf_level(
    manager: ComplianceManager,
) -> None:
    result = await manager.initialize({"memory": {"max_conversations": 250}})

    assert result.success
    active = manager.active_config
    assert active is not None
    assert active["memory"]["max_conversations"] == 250
    assert active["memory"]["max_cache_entries"] == 500


async def test_invalid_update_is_rejected_without_enforcement(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize()
    before = (await manager.status()).active_config
    updates_before = components[ComponentName.MEMORY].update_count

    result = await manager.update(_config(memory={"max_conversations": -1}))

    assert not result.success
    assert result.failure_reason == VALIDATION_FAILED
    assert result.enforcement is None
    assert result.validation is not None
    assert result.validation.errors[0].path == "memory.max_conversations"
    assert components[ComponentName.MEMORY].update_count == updates_before

    status = await manager.status()
    assert status.active_config == before
    assert any(issue.type == "validation" for issue in status.issues)
    assert manager.history()[-1].operation == "update"
    assert manager.history()[-1].success is False


async def test_sequential_updates_keep_the_last_value_and_cap_history(
    manager: ComplianceManager,
) -> None:
    for count in range(100, 1100, 100):
        result = await manager.update(_config(memory={"max_conversations": count}))
        assert result.success

    status = await manager.status()
    assert status.active_config is not None
    assert status.active_config["memory"]["max_conversations"] == 1000
    assert len(manager.history(150)) <= 100
    assert len(manager.history(150)) == 10


async def test_history_is_capped_and_carries_no_payload(manager: ComplianceManager) -> None:
    for index in range(120):
        manager.validate(_config(), correlation_id=f"cor-{index:03d}")

    entries = manager.history(150)

    assert len(entries) == 100
    assert entries[0].correlation_id == "cor-020"
    assert entries[-1].correlation_id == "cor-119"
    for entry in entries:
        assert not hasattr(entry, "config")
        assert set(entry.to_dict()) == {"timestamp", "correlation_id", "operation", "success"}


async def test_history_limit_returns_most_recent_entries(manager: ComplianceManager) -> None:
    for index in range(5):
        manager.validate(_config(), correlation_id=f"cor-{index}")

    assert [entry.correlation_id for entry in manager.history(2)] == ["cor-3", "cor-4"]
    assert manager.history(0) == []
    assert len(manager.history()) == 5


async def test_validate_does_not_change_active_configuration(manager: ComplianceManager) -> None:
    verdict = manager.validate(_config(memory={"max_conversations": 10_001}))

    assert not verdict.is_valid
    assert manager.active_config is None
    assert [(entry.operation, entry.success) for entry in manager.history()] == [
        ("validate", False)
    ]


async def test_revalidate_without_active_configuration_fails_as_a_value(
    manager: ComplianceManager,
) -> None:
    result = await manager.revalidate(correlation_id="cor-revalidate")

    assert not result.success
    assert result.failure_reason == NO_ACTIVE_CONFIGURATION
    assert result.correlation_id == "cor-revalidate"
    assert manager.history() == []


async def test_revalidate_reapplies_the_active_configuration(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize({"memory": {"max_conversations": 300}})
    components[ComponentName.MEMORY].update_configuration({"max_conversations": 1})

    result = await manager.revalidate()

    assert result.success
    assert components[ComponentName.MEMORY].get_configuration()["max_conversations"] == 300
    assert [entry.operation for entry in manager.history()] == ["update", "update"]


async def test_enforce_now_requires_and_reapplies_active_configuration(
    manager: ComplianceManager,
) -> None:
    missing = await manager.enforce_now()
    assert missing.failure_reason == NO_ACTIVE_CONFIGURATION

    await manager.initialize()
    result = await manager.enforce_now()

    assert result.success
    assert result.enforcement is not None
    assert result.enforcement.changes == ()
    assert manager.history()[-1].operation == "enforce"


async def test_enforcement_failure_keeps_validated_config_and_schedules_retries(
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    monitor = components[ComponentName.RESOURCE_MONITOR]
    monitor.get_configuration = _raise_metrics  # type: ignore[method-assign]
    manager = ComplianceManager(components)
    try:
        result = await manager.initialize()

        assert not result.success
        assert result.failure_reason == ENFORCEMENT_FAILED
        assert result.enforcement is not None
        assert result.enforcement.errors == ("resource_monitor: metrics endpoint down",)
        assert manager.active_config is not None
        assert manager.enforcer.is_loop_running

        status = await manager.status()
        assert status.is_valid
        assert not status.is_enforced
        assert status.component_state[ComponentName.RESOURCE_MONITOR] is SyncState.ERROR
        assert manager.history()[-1].success is False
    finally:
        await manager.shutdown()


async def test_failed_initialization_is_repaired_by_the_loop_once_the_component_recovers(
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    monitor = components[ComponentName.RESOURCE_MONITOR]
    monitor.get_configuration = _raise_metrics  # type: ignore[method-assign]
    manager = ComplianceManager(components, settings=EnforcerSettings(interval_seconds=0.02))
    try:
        result = await manager.initialize()
        assert not result.success

        del monitor.get_configuration
        await asyncio.sleep(0.1)

        state = manager.enforcer.get_state()
        assert state is not None
        assert set(state.component_state.values()) == {SyncState.SYNCHRONIZED}
    finally:
        await manager.shutdown()


async def test_loop_reapplies_the_latest_accepted_config_after_a_failed_update(
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    manager = ComplianceManager(components, settings=EnforcerSettings(interval_seconds=0.02))
    memory = components[ComponentName.MEMORY]
    monitor = components[ComponentName.RESOURCE_MONITOR]
    try:
        assert (await manager.initialize({"memory": {"max_conversations": 300}})).success

        monitor.get_configuration = _raise_metrics  # type: ignore[method-assign]
        result = await manager.update(_config(memory={"max_conversations": 400}))
        assert not result.success
        assert result.failure_reason == ENFORCEMENT_FAILED

        del monitor.get_configuration
        await asyncio.sleep(0.1)

        assert memory.get_configuration()["max_conversations"] == 400
        state = manager.enforcer.get_state()
        assert state is not None
        assert state.active_config["memory"]["max_conversations"] == 400
        assert state.component_state[ComponentName.RESOURCE_MONITOR] is SyncState.SYNCHRONIZED
    finally:
        await manager.shutdown()


async def test_each_update_enforces_once_and_stopped_loops_do_not_accumulate(
    manager: ComplianceManager,
) -> None:
    for count in range(100, 2100, 100):
        assert (await manager.update(_config(memory={"max_conversations": count}))).success
        await asyncio.sleep(0.001)

    assert manager.enforcer.is_loop_running
    assert manager.enforcer.stopping_loop_count <= 1
    records = manager.enforcer.enforcement_history(50)
    assert len(records) == 20
    assert all(record.enforced for record in records)


async def test_probe_failures_are_isolated_and_reported_as_system_issues(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize()
    components[ComponentName.MEMORY].metrics = _raise_metrics  # type: ignore[method-assign]
    components[ComponentName.DEGRADATION].set_metrics(level="degraded", healthy=False)

    status = await manager.status()

    system_issues = [issue for issue in status.issues if issue.component == "system"]
    assert len(system_issues) == 1
    assert system_issues[0].severity == "high"
    assert system_issues[0].type == "runtime"
    assert "metrics endpoint down" in system_issues[0].message
    assert any(
        issue.component == "degradation" and issue.severity == "medium" for issue in status.issues
    )


async def test_health_report_is_healthy_for_a_clean_system(manager: ComplianceManager) -> None:
    await manager.initialize()

    report = await manager.health_report()

    assert report.overall == "healthy"
    assert report.summary == "All system components are properly configured and operating normally"
    assert report.details == {
        "configuration": "valid",
        "enforcement": "compliant",
        "runtime": "healthy",
    }
    assert report.recommendations == ()


async def test_health_report_is_degraded_for_medium_issues(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize()
    components[ComponentName.RESOURCE_MONITOR].set_metrics(status="warning")

    report = await manager.health_report()

    assert report.overall == "degraded"
    assert report.details["runtime"] == "warning"
    assert report.recommendations == (
        "Monitor resource consumption",
        "Schedule maintenance window to resolve warnings",
    )


async def test_health_report_is_critical_before_initialization(
    manager: ComplianceManager,
) -> None:
    report = await manager.health_report()

    assert report.overall == "critical"
    assert report.details["configuration"] == "invalid"
    assert report.details["enforcement"] == "error"


async def test_health_report_is_critical_and_deduplicates_recommendations(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize()
    components[ComponentName.MEMORY].metrics = _raise_metrics  # type: ignore[method-assign]
    components[ComponentName.DEGRADATION].metrics = _raise_metrics  # type: ignore[method-assign]

    report = await manager.health_report()

    assert report.overall == "critical"
    assert report.summary == "System has 2 critical issues requiring immediate attention"
    assert report.details["runtime"] == "critical"
    assert report.recommendations == (
        "Check system component status manually",
        "Consider system restart if issues persist",
    )


async def test_runtime_probe_levels_map_to_severities(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    await manager.initialize()
    components[ComponentName.MEMORY].set_metrics(memory_pressure="critical")
    components[ComponentName.DEGRADATION].set_metrics(level="critical", message="heap exhausted")
    components[ComponentName.RESOURCE_MONITOR].set_metrics(status="critical")

    status = await manager.status()

    runtime = {(issue.component, issue.severity, issue.message) for issue in status.issues}
    assert ("memory", "high", "System under critical memory pressure") in runtime
    assert (
        "degradation",
        "high",
        "System in critical degradation mode: heap exhausted",
    ) in runtime
    assert ("resource_monitor", "high", "Resource leaks detected") in runtime
    assert status.component_state[ComponentName.MEMORY] is SyncState.ERROR


async def test_quick_health_check_counts_issues(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    assert not (await manager.quick_health_check()).healthy

    await manager.initialize()
    assert (await manager.quick_health_check()).to_dict() == {
        "healthy": True,
        "issues": 0,
        "critical_issues": 0,
    }

    components[ComponentName.MEMORY].set_metrics(memory_pressure="high")
    quick = await manager.quick_health_check()
    assert quick.healthy
    assert quick.issues == 1
    assert quick.critical_issues == 0


async def test_initialize_from_environment_applies_env_overrides(
    manager: ComplianceManager,
) -> None:
    result = await manager.initialize_from_environment(
        {
            "NEXUS_COMPLIANCE_MEMORY_MAX_CONVERSATIONS": "400",
            "NEXUS_COMPLIANCE_ENVIRONMENT_DEBUG": "true",
        }
    )

    assert result.success
    active = manager.active_config
    assert active is not None
    assert active["memory"]["max_conversations"] == 400
    assert active["environment"]["debug"] is True


async def test_initialize_from_environment_propagates_load_errors(
    manager: ComplianceManager,
) -> None:
    with pytest.raises(ConfigLoadError):
        await manager.initialize_from_environment(
            {"NEXUS_COMPLIANCE_MEMORY_MAX_CONVERSATIONS": "plenty"}
        )


async def test_concurrent_updates_are_serialized_and_last_scheduled_wins(
    manager: ComplianceManager,
    components: dict[ComponentName, InMemoryComponent],
) -> None:
    values = [150, 250, 350, 450, 550]

    results = await asyncio.gather(
        *(manager.update(_config(memory={"max_conversations": value})) for value in values)
    )

    assert all(result.success for result in results)
    active = manager.active_config
    assert active is not None
    assert active["memory"]["max_conversations"] == 550
    assert components[ComponentName.MEMORY].get_configuration()["max_conversations"] == 550
    assert [entry.correlation_id for entry in manager.history()] == [
        result.correlation_id for result in results
    ]


async def test_results_render_as_json(manager: ComplianceManager) -> None:
    result = await manager.initialize(correlation_id="cor-json")
    report = await manager.health_report()

    payload = json.loads(json.dumps({"result": result.to_dict(), "report": report.to_dict()}))

    assert payload["result"]["correlation_id"] == "cor-json"
    assert payload["result"]["status"]["component_state"]["memory"] == "synchronized"
    assert payload["report"]["overall"] == "healthy"


async def test_last_status_is_a_copy(manager: ComplianceManager) -> None:
    assert manager.last_status is None
    await manager.initialize()

    snapshot = manager.last_status
    assert snapshot is not None
    assert snapshot.active_config is not None
    snapshot.active_config["memory"]["max_conversations"] = 1

    again = manager.last_status
    assert again is not None
    assert again.active_config is not None
    assert again.active_config["memory"]["max_conversations"] == 1000


async def test_shutdown_stops_the_reconciliation_loop(manager: ComplianceManager) -> None:
    await manager.initialize()
    assert manager.enforcer.is_loop_running

    await manager.shutdown()

    assert not manager.enforcer.is_loop_running
