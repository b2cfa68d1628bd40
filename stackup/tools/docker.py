"""Docker CLI adapter for stackup."""

import logging
import subprocess
from pathlib import Path
from typing import Optional

from stackup.errors import (
    BuildError,
    BuildErrorKind,
    ContainerError,
    ContainerErrorKind,
    NetworkError,
    NetworkErrorKind,
)
from stackup.schemas import PortBinding
from stackup.tools.base import BuildTool, ContainerRuntime

logger = logging.getLogger(__name__)


class DockerCLI(BuildTool, ContainerRuntime):
    """
    Build tool and container runtime backed by the `docker` executable.

    Every call is a single subprocess invocation; stdout/stderr are
    captured so failures can be reported per service.
    """

    def __init__(self, docker_bin: str = "docker"):
        """
        Initialize DockerCLI.

        Args:
            docker_bin: Name or path of the docker executable
        """
        self.docker_bin = docker_bin

    def _run(self, *args: str, timeout: Optional[float] = None) -> subprocess.CompletedProcess:
        cmd = [self.docker_bin, *args]
        logger.debug(f"exec: {' '.join(cmd)}")
        return subprocess.run(
            cmd,
            capture_output=True,
            text=True,
            timeout=timeout,
        )

    @staticmethod
    def _detail(result: subprocess.CompletedProcess) -> str:
        return (result.stderr or result.stdout or "").strip()

    # -- BuildTool -------------------------------------------------------

    def build(
        self,
        context: Path,
        dockerfile: str,
        tag: str,
        timeout: Optional[float] = None,
    ) -> str:
        try:
            result = self._run(
                "build", "--quiet",
                "--tag", tag,
                "--file", str(context / dockerfile),
                str(context),
                timeout=timeout,
            )
        except subprocess.TimeoutExpired:
            raise BuildError(
                BuildErrorKind.BUILD_TOOL_FAILED,
                f"Build of {tag} timed out after {timeout}s",
            )
        except OSError as e:
            raise BuildError(
                BuildErrorKind.BUILD_TOOL_FAILED,
                f"Could not execute {self.docker_bin}: {e}",
            )

        if result.returncode != 0:
            raise BuildError(
                BuildErrorKind.BUILD_TOOL_FAILED,
                f"Build of {tag} failed with exit code {result.returncode}: {self._detail(result)}",
                exit_code=result.returncode,
            )

        # --quiet prints only the image id
        image_id = result.stdout.strip().splitlines()[-1] if result.stdout.strip() else tag
        return image_id

    # -- ContainerRuntime ------------------------------------------------

    def create_network(self, name: str, driver: str = "bridge") -> str:
        existing = self._run("network", "inspect", "--format", "{{.Id}}", name)
        if existing.returncode == 0 and existing.stdout.strip():
            return existing.stdout.strip()

        result = self._run("network", "create", "--driver", driver, name)
        if result.returncode != 0:
            raise NetworkError(
                NetworkErrorKind.CREATION_FAILED,
                f"Could not create network {name}: {self._detail(result)}",
            )
        return result.stdout.strip()

    def remove_network(self, name: str) -> None:
        result = self._run("network", "rm", name)
        if result.returncode != 0:
            detail = self._detail(result)
            if "active endpoints" in detail:
                raise NetworkError(NetworkErrorKind.IN_USE, f"Network {name} is in use: {detail}")
            if "not found" in detail.lower():
                raise NetworkError(NetworkErrorKind.NOT_FOUND, f"Network {name} not found")
            raise NetworkError(NetworkErrorKind.CREATION_FAILED, f"Could not remove network {name}: {detail}")

    def run(
        self,
        name: str,
        image: str,
        ports: list[PortBinding],
        networks: list[str],
        environment: dict[str, str],
        labels: dict[str, str],
    ) -> str:
        args = ["run", "--detach", "--name", name]
        for key, value in labels.items():
            args += ["--label", f"{key}={value}"]
        for binding in ports:
            args += ["--publish", f"{binding.host_port}:{binding.container_port}/{binding.protocol}"]
        for key, value in environment.items():
            args += ["--env", f"{key}={value}"]
        if networks:
            args += ["--network", networks[0]]
        args.append(image)

        result = self._run(*args)
        if result.returncode != 0:
            raise ContainerError(
                ContainerErrorKind.START_FAILED,
                f"Could not start {name}: {self._detail(result)}",
            )
        handle = result.stdout.strip() or name

        # docker run accepts a single --network; connect the rest afterwards
        for network in networks[1:]:
            connect = self._run("network", "connect", network, handle)
            if connect.returncode != 0:
                self._run("rm", "--force", handle)
                raise ContainerError(
                    ContainerErrorKind.START_FAILED,
                    f"Could not connect {name} to {network}: {self._detail(connect)}",
                )
        return handle

    def stop(self, handle: str) -> None:
        result = self._run("stop", handle)
        if result.returncode != 0:
            raise ContainerError(ContainerErrorKind.STOP_FAILED, f"Could not stop {handle}: {self._detail(result)}")

    def start(self, handle: str) -> None:
        result = self._run("start", handle)
        if result.returncode != 0:
            raise ContainerError(ContainerErrorKind.START_FAILED, f"Could not start {handle}: {self._detail(result)}")

    def remove(self, handle: str) -> None:
        result = self._run("rm", "--force", handle)
        if result.returncode != 0 and "no such container" not in self._detail(result).lower():
            raise ContainerError(ContainerErrorKind.REMOVE_FAILED, f"Could not remove {handle}: {self._detail(result)}")

    def inspect(self, name: str) -> Optional[str]:
        result = self._run("container", "inspect", "--format", "{{.State.Status}}", name)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def image_of(self, name: str) -> Optional[str]:
        result = self._run("container", "inspect", "--format", "{{.Image}}", name)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None
