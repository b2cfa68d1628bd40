"""
Port Publisher - grant host ports to services.

The publisher holds the authoritative set of host ports granted in this
process. bind() checks and records a port under one lock, so two services
brought up in the same batch can never both be granted the same host
port, even if the port was free when the manifest was parsed. Optionally
a test bind on the host catches ports held by unrelated processes.
"""

import logging
import socket
import sys
import threading
from dataclasses import dataclass
from typing import Optional

from stackup.errors import PortError, PortErrorKind

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BoundPort:
    """A host port granted to a service."""
    host_port: int
    container_port: int
    service: Optional[str] = None


def is_port_free(port: int, host: str = "0.0.0.0") -> bool:
    """Return True if a TCP listener could bind host:port right now."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    try:
        if sys.platform != "win32":
            sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.bind((host, port))
        return True
    except OSError:
        return False
    finally:
        sock.close()


class PortPublisher:
    """Thread-safe registry of granted host ports."""

    def __init__(self, probe: bool = True, probe_host: str = "0.0.0.0"):
        """
        Initialize PortPublisher.

        Args:
            probe: Test-bind each port on the host before granting it
            probe_host: Interface used for the test bind
        """
        self.probe = probe
        self.probe_host = probe_host
        self._lock = threading.Lock()
        self._bound: dict[int, BoundPort] = {}

    def bind(self, host_port: int, container_port: int, service: Optional[str] = None) -> BoundPort:
        """
        Grant a host port.

        Raises:
            PortError: InvalidPort if out of range, AlreadyInUse if the port
                is held by another service or by a process on the host
        """
        if not 1 <= host_port <= 65535:
            raise PortError(PortErrorKind.INVALID_PORT, host_port, f"Host port {host_port} out of range")

        with self._lock:
            holder = self._bound.get(host_port)
            if holder is not None:
                raise PortError(
                    PortErrorKind.ALREADY_IN_USE,
                    host_port,
                    f"Host port {host_port} is already bound to '{holder.service}'",
                )
            if self.probe and not is_port_free(host_port, self.probe_host):
                raise PortError(
                    PortErrorKind.ALREADY_IN_USE,
                    host_port,
                    f"Host port {host_port} is in use on the host",
                )
            bound = BoundPort(host_port=host_port, container_port=container_port, service=service)
            self._bound[host_port] = bound

        logger.debug(
            f"Bound host port {host_port} -> {container_port} for {service}",
            extra={"service": service, "event": "port_bound"},
        )
        return bound

    def adopt(self, host_port: int, container_port: int, service: str) -> BoundPort:
        """Record a port already published by an existing container (no probe)."""
        with self._lock:
            bound = BoundPort(host_port=host_port, container_port=container_port, service=service)
            self._bound[host_port] = bound
            return bound

    def unbind(self, bound: BoundPort) -> None:
        """Release a granted port. Always succeeds."""
        with self._lock:
            if self._bound.get(bound.host_port) == bound:
                del self._bound[bound.host_port]

    def release_service(self, service: str) -> list[int]:
        """Release every port held by a service; returns the released ports."""
        with self._lock:
            ports = sorted(p for p, b in self._bound.items() if b.service == service)
            for port in ports:
                del self._bound[port]
            return ports

    def holder(self, host_port: int) -> Optional[str]:
        with self._lock:
            bound = self._bound.get(host_port)
            return bound.service if bound else None

    def bound_ports(self, service: Optional[str] = None) -> list[int]:
        with self._lock:
            return sorted(
                p for p, b in self._bound.items()
                if service is None or b.service == service
            )
