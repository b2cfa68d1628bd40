"""
ServiceInstance schema - the running or stopped realization of a ServiceSpec.

Instances are owned by the orchestrator. They are created on "up" and
discarded on removal; the ServiceState of each service is tracked
separately so that a removed service still reports a state.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class ServiceState(str, Enum):
    """Lifecycle state of a single service."""
    UNDEFINED = "undefined"
    BUILT = "built"
    RUNNING = "running"
    STOPPED = "stopped"
    REMOVED = "removed"


# Allowed (from, to) transitions. Anything may go to REMOVED.
TRANSITIONS: frozenset[tuple[ServiceState, ServiceState]] = frozenset({
    (ServiceState.UNDEFINED, ServiceState.BUILT),
    (ServiceState.REMOVED, ServiceState.BUILT),
    (ServiceState.BUILT, ServiceState.BUILT),
    (ServiceState.BUILT, ServiceState.RUNNING),
    (ServiceState.RUNNING, ServiceState.STOPPED),
    (ServiceState.STOPPED, ServiceState.RUNNING),
})


def can_transition(current: ServiceState, target: ServiceState) -> bool:
    if target == ServiceState.REMOVED:
        return True
    return (current, target) in TRANSITIONS


@dataclass
class ServiceInstance:
    """
    A container realizing one service.

    Attributes:
        service: Name of the realized service
        handle: Opaque runtime handle (container id or name)
        image_id: Image the container was created from
        state: RUNNING or STOPPED while the instance exists
        bound_ports: Host ports currently held for this instance
        networks: Network names this instance is attached to
    """
    service: str
    handle: str
    image_id: Optional[str] = None
    state: ServiceState = ServiceState.RUNNING
    bound_ports: list[int] = field(default_factory=list)
    networks: set[str] = field(default_factory=set)

    def to_dict(self) -> dict[str, Any]:
        return {
            "service": self.service,
            "handle": self.handle,
            "image_id": self.image_id,
            "state": self.state.value,
            "bound_ports": sorted(self.bound_ports),
            "networks": sorted(self.networks),
        }
