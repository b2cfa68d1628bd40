"""
Error classes for stackup.

The error taxonomy mirrors the orchestration boundaries:
- ParseError: malformed or inconsistent manifest. Fatal, raised before
  any side effect occurs.
- BuildError: the external build tool failed for one service.
- NetworkError: network creation failed or a network is still in use.
- PortError: a host port could not be granted to a service.
- ContainerError: the container runtime failed to start/stop/remove.
- DependencyError: a dependency of the service failed in the same batch.

Everything except ParseError and ConfigError is isolated to a single
service: the orchestrator catches these at the per-service pipeline
boundary and reports them in the batch result.

Error handling contract:
- Errors are exceptions, not values
- BatchResult carries the per-service outcome of a caught error
"""

from enum import Enum
from typing import Optional


class StackupError(Exception):
    """Base exception for stackup."""
    pass


class ConfigError(StackupError):
    """Configuration validation error."""
    pass


class ParseErrorKind(str, Enum):
    MALFORMED_SYNTAX = "MalformedSyntax"
    DANGLING_NETWORK_REFERENCE = "DanglingNetworkReference"
    DUPLICATE_HOST_PORT = "DuplicateHostPort"
    INVALID_SERVICE_NAME = "InvalidServiceName"
    UNKNOWN_DEPENDENCY = "UnknownDependency"
    DEPENDENCY_CYCLE = "DependencyCycle"


class ParseError(StackupError):
    """
    Manifest could not be turned into a valid model.

    Attributes:
        kind: Which validation rule was violated
    """

    def __init__(self, kind: ParseErrorKind, message: str):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


class BuildErrorKind(str, Enum):
    BUILD_TOOL_FAILED = "BuildToolFailed"
    CONTEXT_MISSING = "ContextMissing"


class BuildError(StackupError):
    """
    Image build failed.

    Attributes:
        kind: Failure category
        exit_code: Exit code of the build tool (None if it never ran)
    """

    def __init__(
        self,
        kind: BuildErrorKind,
        message: str,
        exit_code: Optional[int] = None,
    ):
        self.kind = kind
        self.exit_code = exit_code
        super().__init__(f"{kind.value}: {message}")


class NetworkErrorKind(str, Enum):
    CREATION_FAILED = "CreationFailed"
    IN_USE = "InUse"
    NOT_FOUND = "NotFound"


class NetworkError(StackupError):
    """Network creation, lookup or removal failed."""

    def __init__(self, kind: NetworkErrorKind, message: str):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


class PortErrorKind(str, Enum):
    ALREADY_IN_USE = "AlreadyInUse"
    INVALID_PORT = "InvalidPort"


class PortError(StackupError):
    """
    A host port could not be bound.

    Attributes:
        kind: Failure category
        host_port: The host port that was requested
    """

    def __init__(self, kind: PortErrorKind, host_port: int, message: str):
        self.kind = kind
        self.host_port = host_port
        super().__init__(f"{kind.value}: {message}")


class ContainerErrorKind(str, Enum):
    START_FAILED = "StartFailed"
    STOP_FAILED = "StopFailed"
    REMOVE_FAILED = "RemoveFailed"


class ContainerError(StackupError):
    """The container runtime rejected an operation."""

    def __init__(self, kind: ContainerErrorKind, message: str):
        self.kind = kind
        super().__init__(f"{kind.value}: {message}")


class DependencyError(StackupError):
    """A service could not proceed because a dependency failed."""

    def __init__(self, service: str, dependency: str):
        self.service = service
        self.dependency = dependency
        super().__init__(
            f"Service '{service}' depends on '{dependency}', which did not reach its target state"
        )
