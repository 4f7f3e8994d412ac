"""Control-plane public API."""

from nexus_compliance.control_plane.components import (
    COMPONENT_ORDER,
    ComponentName,
    InMemoryComponent,
    ManagedComponent,
    SyncState,
    build_in_memory_components,
)
from nexus_compliance.control_plane.enforcer import (
    ComplianceCheck,
    ComplianceViolation,
    ComponentOutcome,
    ConfigChange,
    ConfigurationEnforcer,
    EnforcementOutcome,
    EnforcerSettings,
    RuntimeComplianceState,
    diff_configuration,
)
from nexus_compliance.control_plane.manager import (
    ComplianceManager,
    HealthReport,
    HistoryEntry,
    QuickHealth,
    StatusIssue,
    SystemStatus,
    UpdateResult,
)

__all__ = [
    "COMPONENT_ORDER",
    "ComplianceCheck",
    "ComplianceManager",
    "ComplianceViolation",
    "ComponentName",
    "ComponentOutcome",
    "ConfigChange",
    "ConfigurationEnforcer",
    "EnforcementOutcome",
    "EnforcerSettings",
    "HealthReport",
    "HistoryEntry",
    "InMemoryComponent",
    "ManagedComponent",
    "QuickHealth",
    "RuntimeComplianceState",
    "StatusIssue",
    "SyncState",
    "SystemStatus",
    "UpdateResult",
    "build_in_memory_components",
    "diff_configuration",
]
