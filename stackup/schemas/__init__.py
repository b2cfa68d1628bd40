"""
stackup.schemas - Data model for the orchestration layer.

Manifest -> ServiceSpec -> BuildRecord -> ServiceInstance -> BatchResult

Lifecycle:
1. Manifest: Parsed once per invocation, immutable
2. ServiceSpec/NetworkSpec: Owned by the Manifest
3. BuildRecord: Derived per service, persisted across invocations
4. ServiceInstance: Created on "up", discarded on removal
5. BatchResult: Per-service outcomes of one batch operation
"""

from .manifest import (
    Manifest,
    ServiceSpec,
    BuildSpec,
    NetworkSpec,
    PortBinding,
)
from .build_record import BuildRecord
from .instance import (
    ServiceInstance,
    ServiceState,
    can_transition,
)
from .result import (
    BatchResult,
    BuildAction,
    OutcomeKind,
    ServiceOutcome,
)

__all__ = [
    # Manifest
    "Manifest",
    "ServiceSpec",
    "BuildSpec",
    "NetworkSpec",
    "PortBinding",
    # Build cache
    "BuildRecord",
    # Instances
    "ServiceInstance",
    "ServiceState",
    "can_transition",
    # Results
    "BatchResult",
    "BuildAction",
    "OutcomeKind",
    "ServiceOutcome",
]
