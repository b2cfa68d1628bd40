"""
Batch result schemas.

A batch operation ("up", "build", "down", "stop", "start") applies to every
service in a manifest and never aborts on a single service failure. The
BatchResult enumerates one ServiceOutcome per service and an overall
success flag.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional


class OutcomeKind(str, Enum):
    """What happened to a service during a batch."""
    REUSED_BUILD = "reused-build"
    REBUILT = "rebuilt"
    STARTED = "started"
    ALREADY_RUNNING = "already-running"
    STOPPED = "stopped"
    REMOVED = "removed"
    PLANNED = "planned"
    CANCELLED = "cancelled"
    FAILED = "failed"


class BuildAction(str, Enum):
    """Build Planner decision taken for a service, if any."""
    REUSE = "reuse"
    REBUILD = "rebuild"


@dataclass(frozen=True)
class ServiceOutcome:
    """
    Per-service result of a batch operation.

    Attributes:
        service: Service name
        kind: Outcome category
        build: Build decision applied during this batch (None if not planned)
        image_id: Image the service ended up with
        error_type: Exception class name when kind is FAILED
        error: Error message when kind is FAILED or CANCELLED
    """
    service: str
    kind: OutcomeKind
    build: Optional[BuildAction] = None
    image_id: Optional[str] = None
    error_type: Optional[str] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.kind not in (OutcomeKind.FAILED, OutcomeKind.CANCELLED)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "service": self.service,
            "outcome": self.kind.value,
        }
        if self.build is not None:
            result["build"] = self.build.value
        if self.image_id:
            result["image_id"] = self.image_id
        if self.error is not None:
            result["error_type"] = self.error_type
            result["error"] = self.error
        return result


@dataclass
class BatchResult:
    """
    Result of applying one operation to every service.

    Attributes:
        operation: "up", "build", "down", "stop" or "start"
        outcomes: One ServiceOutcome per service, in manifest order
        network_errors: Network removal failures (down only)
        cancelled: True if the batch was interrupted
        duration_ms: Wall time of the batch
    """
    operation: str
    outcomes: list[ServiceOutcome] = field(default_factory=list)
    network_errors: list[str] = field(default_factory=list)
    cancelled: bool = False
    duration_ms: int = 0

    @property
    def success(self) -> bool:
        """True iff every service succeeded and no network error occurred."""
        return (
            not self.cancelled
            and not self.network_errors
            and all(o.succeeded for o in self.outcomes)
        )

    @property
    def failures(self) -> list[ServiceOutcome]:
        return [o for o in self.outcomes if not o.succeeded]

    def outcome_for(self, service: str) -> ServiceOutcome:
        for outcome in self.outcomes:
            if outcome.service == service:
                return outcome
        raise KeyError(service)

    def to_dict(self) -> dict[str, Any]:
        result: dict[str, Any] = {
            "operation": self.operation,
            "success": self.success,
            "outcomes": [o.to_dict() for o in self.outcomes],
            "duration_ms": self.duration_ms,
        }
        if self.network_errors:
            result["network_errors"] = self.network_errors
        if self.cancelled:
            result["cancelled"] = True
        return result
