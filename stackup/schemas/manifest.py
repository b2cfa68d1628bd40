"""
Manifest schema - the parsed service topology.

A Manifest is produced once per orchestration invocation by the manifest
parser and is immutable thereafter. It owns its ServiceSpecs and
NetworkSpecs; cross-references (networks, depends_on, host ports) are
validated by the parser before a Manifest is ever constructed.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional


@dataclass(frozen=True)
class PortBinding:
    """
    A host-port -> container-port mapping.

    Attributes:
        host_port: Port published on the host
        container_port: Port the service listens on inside its container
        protocol: Transport protocol (only "tcp" is published)
    """
    host_port: int
    container_port: int
    protocol: str = "tcp"

    def __str__(self) -> str:
        return f"{self.host_port}:{self.container_port}"


@dataclass(frozen=True)
class BuildSpec:
    """
    Where and how to build a service image.

    Attributes:
        context: Build context directory (absolute once parsed)
        dockerfile: Build recipe filename, relative to the context
    """
    context: Path
    dockerfile: str = "Dockerfile"

    @property
    def recipe_path(self) -> Path:
        return self.context / self.dockerfile


@dataclass(frozen=True)
class NetworkSpec:
    """A named virtual network. The name is its identity."""
    name: str
    driver: str = "bridge"


@dataclass(frozen=True)
class ServiceSpec:
    """
    One declared service.

    Attributes:
        name: Service name, unique within the manifest
        build: Build context, or None for image-only services
        image: Image reference (the build tag when build is set)
        ports: Port bindings, unique by host port
        networks: Names of networks this service attaches to
        depends_on: Names of services that must be running first
        environment: Environment variables passed to the container
    """
    name: str
    build: Optional[BuildSpec] = None
    image: Optional[str] = None
    ports: tuple[PortBinding, ...] = ()
    networks: frozenset[str] = frozenset()
    depends_on: tuple[str, ...] = ()
    environment: tuple[tuple[str, str], ...] = ()

    @property
    def host_ports(self) -> list[int]:
        return [p.host_port for p in self.ports]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON output."""
        result: dict[str, Any] = {"name": self.name}
        if self.build is not None:
            result["build"] = {
                "context": str(self.build.context),
                "dockerfile": self.build.dockerfile,
            }
        if self.image:
            result["image"] = self.image
        if self.ports:
            result["ports"] = [str(p) for p in self.ports]
        if self.networks:
            result["networks"] = sorted(self.networks)
        if self.depends_on:
            result["depends_on"] = list(self.depends_on)
        if self.environment:
            result["environment"] = dict(self.environment)
        return result


@dataclass(frozen=True)
class Manifest:
    """
    The root document.

    Attributes:
        version: Schema version marker
        services: Service name -> ServiceSpec, in declaration order
        networks: Network name -> NetworkSpec
        base_dir: Directory relative build contexts were resolved against
    """
    version: str
    services: dict[str, ServiceSpec] = field(default_factory=dict)
    networks: dict[str, NetworkSpec] = field(default_factory=dict)
    base_dir: Optional[Path] = None

    def service_order(self) -> list[str]:
        """
        Return service names with dependencies before dependents.

        Ties keep declaration order. Cycles are rejected by the parser,
        so every service appears exactly once.
        """
        ordered: list[str] = []
        placed: set[str] = set()
        remaining = list(self.services)
        while remaining:
            for name in remaining:
                if all(dep in placed for dep in self.services[name].depends_on):
                    ordered.append(name)
                    placed.add(name)
                    remaining.remove(name)
                    break
            else:
                raise ValueError(f"Dependency cycle among: {', '.join(remaining)}")
        return ordered

    def dependents_of(self, name: str) -> list[str]:
        """Services that list `name` in their depends_on."""
        return [s.name for s in self.services.values() if name in s.depends_on]

    def to_dict(self) -> dict[str, Any]:
        """Serialize to dictionary for JSON/YAML output."""
        return {
            "version": self.version,
            "services": {
                name: {k: v for k, v in spec.to_dict().items() if k != "name"}
                for name, spec in self.services.items()
            },
            "networks": {
                name: {"driver": net.driver} for name, net in self.networks.items()
            },
        }
