"""
Network Manager - create/resolve named networks and track membership.

ensure() is idempotent and safe to call concurrently: creation happens
under a lock with create-if-absent semantics, so two services sharing a
network name in the same batch end up with one network, not two.

Membership is recorded by attach() and dropped by detach(); a network
with members cannot be removed.
"""

import logging
import threading
from dataclasses import dataclass
from typing import Optional

from stackup.errors import NetworkError, NetworkErrorKind
from stackup.tools.base import ContainerRuntime

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NetworkHandle:
    """
    A created network.

    Attributes:
        name: Network name as declared in the manifest
        runtime_name: Project-scoped name used with the runtime
        network_id: Identifier returned by the runtime
    """
    name: str
    runtime_name: str
    network_id: str


class NetworkManager:
    """Registry of project networks and their attached services."""

    def __init__(self, runtime: ContainerRuntime, project_name: str):
        self.runtime = runtime
        self.project_name = project_name
        self._lock = threading.Lock()
        self._handles: dict[str, NetworkHandle] = {}
        self._members: dict[str, set[str]] = {}

    def runtime_name(self, name: str) -> str:
        return f"{self.project_name}_{name}"

    def ensure(self, name: str, driver: str = "bridge") -> NetworkHandle:
        """
        Return the handle for a network, creating it on first use.

        Raises:
            NetworkError: CreationFailed
        """
        with self._lock:
            handle = self._handles.get(name)
            if handle is not None:
                return handle

            runtime_name = self.runtime_name(name)
            try:
                network_id = self.runtime.create_network(runtime_name, driver)
            except NetworkError:
                raise
            except Exception as e:
                raise NetworkError(
                    NetworkErrorKind.CREATION_FAILED,
                    f"Could not create network {runtime_name}: {e}",
                )

            handle = NetworkHandle(name=name, runtime_name=runtime_name, network_id=network_id)
            self._handles[name] = handle
            self._members.setdefault(name, set())
            logger.info(
                f"Network ready: {runtime_name}",
                extra={"event": "network_ready", "metadata": {"network": name, "id": network_id}},
            )
            return handle

    def attach(self, service: str, handle: NetworkHandle) -> None:
        """Record that a service is attached to a network."""
        with self._lock:
            if handle.name not in self._handles:
                raise NetworkError(NetworkErrorKind.NOT_FOUND, f"Network {handle.name} was never ensured")
            self._members[handle.name].add(service)

    def detach(self, service: str, name: str) -> None:
        """Drop a service's membership of a network. Unknown pairs are ignored."""
        with self._lock:
            self._members.get(name, set()).discard(service)

    def detach_all(self, service: str) -> list[str]:
        """Detach a service from every network; returns the names it left."""
        with self._lock:
            left = []
            for name, members in self._members.items():
                if service in members:
                    members.discard(service)
                    left.append(name)
            return sorted(left)

    def members(self, name: str) -> set[str]:
        with self._lock:
            return set(self._members.get(name, set()))

    def attachments_of(self, service: str) -> set[str]:
        with self._lock:
            return {name for name, members in self._members.items() if service in members}

    def get(self, name: str) -> Optional[NetworkHandle]:
        with self._lock:
            return self._handles.get(name)

    def handles(self) -> list[NetworkHandle]:
        with self._lock:
            return list(self._handles.values())

    def remove(self, name: str) -> None:
        """
        Remove a network.

        Raises:
            NetworkError: InUse if services are still attached,
                NotFound if the runtime has no such network
        """
        with self._lock:
            members = self._members.get(name, set())
            if members:
                raise NetworkError(
                    NetworkErrorKind.IN_USE,
                    f"Network {name} still has attached services: {', '.join(sorted(members))}",
                )
            self.runtime.remove_network(self.runtime_name(name))
            self._handles.pop(name, None)
            self._members.pop(name, None)
            logger.info(
                f"Network removed: {self.runtime_name(name)}",
                extra={"event": "network_removed", "metadata": {"network": name}},
            )
