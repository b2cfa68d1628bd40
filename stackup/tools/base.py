"""Base classes for external tool adapters."""

from abc import ABC, abstractmethod
from pathlib import Path
from typing import Optional

from stackup.schemas import PortBinding


class BuildTool(ABC):
    """
    Adapter for the external image build tool.

    Builds may block for an arbitrary, externally-bounded duration; no
    timeout is imposed unless the caller passes one.
    """

    @abstractmethod
    def build(
        self,
        context: Path,
        dockerfile: str,
        tag: str,
        timeout: Optional[float] = None,
    ) -> str:
        """
        Build an image from a context directory.

        Args:
            context: Build context directory
            dockerfile: Recipe filename relative to the context
            tag: Tag to apply to the resulting image
            timeout: Optional limit in seconds

        Returns:
            The image identifier

        Raises:
            BuildError: BuildToolFailed with the tool's exit code
        """
        pass


class ContainerRuntime(ABC):
    """
    Adapter for the container runtime.

    Handles returned by run() are opaque to the orchestrator.
    """

    @abstractmethod
    def create_network(self, name: str, driver: str = "bridge") -> str:
        """
        Create a network, or return the id of an existing one.

        Raises:
            NetworkError: CreationFailed
        """
        pass

    @abstractmethod
    def remove_network(self, name: str) -> None:
        """
        Remove a network.

        Raises:
            NetworkError: InUse or NotFound
        """
        pass

    @abstractmethod
    def run(
        self,
        name: str,
        image: str,
        ports: list[PortBinding],
        networks: list[str],
        environment: dict[str, str],
        labels: dict[str, str],
    ) -> str:
        """
        Create and start a container.

        Returns:
            Container handle

        Raises:
            ContainerError: StartFailed
        """
        pass

    @abstractmethod
    def stop(self, handle: str) -> None:
        """Stop a running container. Raises ContainerError(StopFailed)."""
        pass

    @abstractmethod
    def start(self, handle: str) -> None:
        """Start a stopped container. Raises ContainerError(StartFailed)."""
        pass

    @abstractmethod
    def remove(self, handle: str) -> None:
        """Force-remove a container. Raises ContainerError(RemoveFailed)."""
        pass

    @abstractmethod
    def inspect(self, name: str) -> Optional[str]:
        """
        Look up a container by name.

        Returns:
            Runtime status string ("running", "exited", ...) or None if absent
        """
        pass

    @abstractmethod
    def image_of(self, name: str) -> Optional[str]:
        """Image id the named container was created from, or None if absent."""
        pass
