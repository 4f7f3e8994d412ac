"""
nexus-compliance — dependent component contract.

File: src/nexus_compliance/control_plane/components.py

Purpose
- Define the minimal contract the enforcer and manager consume from the four
  dependent components (memory, resource monitor, degradation, correlation).
- Provide ``InMemoryComponent``, a reference implementation used by the CLI
  and by tests.

Functional requirements
- Each contract method may be synchronous or return an awaitable.
- ``metrics()`` reports live operational state, never configuration.
- Component order and the config section each component receives are fixed.
"""

from __future__ import annotations

import copy
from collections.abc import Awaitable, Mapping
from enum import StrEnum
from typing import Any, Final, Protocol, runtime_checkable


class ComponentName(StrEnum):
    """Dependent components, in enforcement order."""

    MEMORY = "memory"
    RESOURCE_MONITOR = "resource_monitor"
    DEGRADATION = "degradation"
    CORRELATION = "correlation"


class SyncState(StrEnum):
    """Per-component synchronization state after enforcement."""

    SYNCHRONIZED = "synchronized"
    DRIFT = "drift"
    ERROR = "error"


COMPONENT_ORDER: Final[tuple[ComponentName, ...]] = (
    ComponentName.MEMORY,
    ComponentName.RESOURCE_MONITOR,
    ComponentName.DEGRADATION,
    ComponentName.CORRELATION,
)

COMPONENT_SECTIONS: Final[dict[ComponentName, str]] = {
    ComponentName.MEMORY: "memory",
    ComponentName.RESOURCE_MONITOR: "resources",
    ComponentName.DEGRADATION: "degradation",
    ComponentName.CORRELATION: "correlation",
}

ComponentConfig = Mapping[str, Any]


@runtime_checkable
class ManagedComponent(Protocol):
    """Contract implemented by every dependent component."""

    def get_configuration(self) -> ComponentConfig | Awaitable[ComponentConfig]: ...

    def update_configuration(self, configuration: ComponentConfig) -> None | Awaitable[None]: ...

    def metrics(self) -> Mapping[str, Any] | Awaitable[Mapping[str, Any]]: ...


def default_metrics(name: ComponentName | str) -> dict[str, Any]:
    """Idle, healthy metrics for ``name``."""
    component = ComponentName(name)
    if component is ComponentName.MEMORY:
        return {
            "total_conversations": 0,
            "estimated_memory_bytes": 0,
            "memory_pressure": "low",
        }
    if component is ComponentName.RESOURCE_MONITOR:
        return {"heap_used_mb": 0.0, "active_handles": 0, "status": "healthy"}
    if component is ComponentName.DEGRADATION:
        return {"healthy": True, "level": "normal", "message": "Operating normally"}
    return {"total_history_size": 0}


class InMemoryComponent:
    """Component that stores its configuration in memory and reports settable metrics."""

    def __init__(
        self,
        name: ComponentName | str,
        *,
        configuration: Mapping[str, Any] | None = None,
        metrics: Mapping[str, Any] | None = None,
    ) -> None:
        self.name = ComponentName(name)
        self._configuration: dict[str, Any] = copy.deepcopy(dict(configuration or {}))
        self._metrics: dict[str, Any] = default_metrics(self.name)
        if metrics is not None:
            self._metrics.update(copy.deepcopy(dict(metrics)))
        self.update_count = 0

    def get_configuration(self) -> dict[str, Any]:
        return copy.deepcopy(self._configuration)

    def update_configuration(self, configuration: ComponentConfig) -> None:
        self._configuration = copy.deepcopy(dict(configuration))
        self.update_count += 1

    def metrics(self) -> dict[str, Any]:
        return copy.deepcopy(self._metrics)

    def set_metrics(self, **values: Any) -> None:
        self._metrics.update(values)

    def __repr__(self) -> str:
        return f"InMemoryComponent(name={self.name.value!r}, updates={self.update_count})"


def build_in_memory_components() -> dict[ComponentName, InMemoryComponent]:
    """One unconfigured ``InMemoryComponent`` per component name."""
    return {name: InMemoryComponent(name) for name in COMPONENT_ORDER}


__all__ = [
    "COMPONENT_ORDER",
    "COMPONENT_SECTIONS",
    "ComponentConfig",
    "ComponentName",
    "InMemoryComponent",
    "ManagedComponent",
    "SyncState",
    "build_in_memory_components",
    "default_metrics",
]
