"""External tool adapters (build tool, container runtime)."""

from stackup.tools.base import BuildTool, ContainerRuntime
from stackup.tools.docker import DockerCLI

__all__ = ["BuildTool", "ContainerRuntime", "DockerCLI"]
