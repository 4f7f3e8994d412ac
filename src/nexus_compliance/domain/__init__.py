"""Domain identifiers shared by the compliance control loop."""

from nexus_compliance.domain.ids import (
    CORRELATION_ID_PREFIX,
    generate_correlation_id,
    validate_correlation_id,
)

__all__ = [
    "CORRELATION_ID_PREFIX",
    "generate_correlation_id",
    "validate_correlation_id",
]
