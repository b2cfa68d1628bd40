import itertools
import threading
from pathlib import Path
from typing import Optional

import pytest

from stackup.build_store import InMemoryBuildStore
from stackup.errors import (
    BuildError,
    BuildErrorKind,
    ContainerError,
    ContainerErrorKind,
    NetworkError,
    NetworkErrorKind,
)
from stackup.manifest import parse
from stackup.orchestrator import Orchestrator
from stackup.tools.base import BuildTool, ContainerRuntime


SHOP_MANIFEST = """
version: "3"
services:
  product-service:
    build: ./products
    ports:
      - "8000:80"
    networks:
      - microservices
  review-service:
    build: ./reviews
    ports:
      - "8001:80"
    networks:
      - microservices
networks:
  microservices:
"""


class FakeDocker(BuildTool, ContainerRuntime):
    """In-memory build tool + container runtime."""

    def __init__(self):
        self._lock = threading.Lock()
        self._ids = itertools.count(1)
        self.builds: list[str] = []
        self.build_failures: dict[str, int] = {}
        self.run_failures: set[str] = set()
        self.leave_created_on_failure = False
        self.remove_failures: set[str] = set()
        self.networks: dict[str, str] = {}
        self.network_creates = 0
        self.containers: dict[str, dict] = {}
        self.on_run = None

    def build(self, context: Path, dockerfile: str, tag: str, timeout: Optional[float] = None) -> str:
        with self._lock:
            self.builds.append(tag)
            n = next(self._ids)
        if tag in self.build_failures:
            raise BuildError(
                BuildErrorKind.BUILD_TOOL_FAILED,
                f"build of {tag} failed",
                exit_code=self.build_failures[tag],
            )
        return f"sha256:{tag}-{n}"

    def create_network(self, name: str, driver: str = "bridge") -> str:
        with self._lock:
            if name not in self.networks:
                self.networks[name] = f"net-{next(self._ids)}"
                self.network_creates += 1
            return self.networks[name]

    def remove_network(self, name: str) -> None:
        with self._lock:
            if name not in self.networks:
                raise NetworkError(NetworkErrorKind.NOT_FOUND, f"{name} not found")
            if any(name in c["networks"] for c in self.containers.values()):
                raise NetworkError(NetworkErrorKind.IN_USE, f"{name} has active endpoints")
            del self.networks[name]

    def run(self, name, image, ports, networks, environment, labels) -> str:
        if self.on_run is not None:
            self.on_run(name)
        with self._lock:
            if name in self.run_failures:
                if self.leave_created_on_failure:
                    # Like `docker run` failing after create: the container stays behind
                    self.containers[name] = {
                        "status": "created",
                        "image": image,
                        "ports": [],
                        "networks": list(networks),
                        "labels": dict(labels),
                        "environment": dict(environment),
                    }
                raise ContainerError(ContainerErrorKind.START_FAILED, f"cannot start {name}")
            if name in self.containers:
                raise ContainerError(ContainerErrorKind.START_FAILED, f"name {name} in use")
            for network in networks:
                if network not in self.networks:
                    raise ContainerError(ContainerErrorKind.START_FAILED, f"network {network} not found")
            self.containers[name] = {
                "status": "running",
                "image": image,
                "ports": [p.host_port for p in ports],
                "networks": list(networks),
                "labels": dict(labels),
                "environment": dict(environment),
            }
        return name

    def stop(self, handle: str) -> None:
        with self._lock:
            self.containers[handle]["status"] = "exited"

    def start(self, handle: str) -> None:
        with self._lock:
            self.containers[handle]["status"] = "running"

    def remove(self, handle: str) -> None:
        with self._lock:
            if handle in self.remove_failures:
                raise ContainerError(ContainerErrorKind.REMOVE_FAILED, f"cannot remove {handle}")
            self.containers.pop(handle, None)

    def inspect(self, name: str) -> Optional[str]:
        with self._lock:
            container = self.containers.get(name)
            return container["status"] if container else None

    def image_of(self, name: str) -> Optional[str]:
        with self._lock:
            container = self.containers.get(name)
            return container.get("image") if container else None


def write_context(directory: Path, body: str = "FROM scratch\n") -> Path:
    """Create a build context with a Dockerfile and one source file."""
    directory.mkdir(parents=True, exist_ok=True)
    (directory / "Dockerfile").write_text(body)
    (directory / "app.txt").write_text(f"service in {directory.name}\n")
    return directory


@pytest.fixture(autouse=True)
def isolated_home(monkeypatch, tmp_path):
    """Keep config, logs and build state out of the real home directory."""
    home = tmp_path / "stackup_home"
    monkeypatch.setenv("STACKUP_HOME", str(home))
    for var in ("STACKUP_PROJECT_NAME", "STACKUP_DOCKER_BIN", "STACKUP_MAX_WORKERS"):
        monkeypatch.delenv(var, raising=False)
    return home


@pytest.fixture
def shop_dir(tmp_path) -> Path:
    """Project directory with products/ and reviews/ build contexts."""
    project = tmp_path / "shop"
    write_context(project / "products")
    write_context(project / "reviews")
    (project / "stackup.yaml").write_text(SHOP_MANIFEST)
    return project


@pytest.fixture
def manifest(shop_dir):
    return parse(SHOP_MANIFEST, base_dir=shop_dir)


@pytest.fixture
def docker() -> FakeDocker:
    return FakeDocker()


@pytest.fixture
def build_store() -> InMemoryBuildStore:
    return InMemoryBuildStore()


@pytest.fixture
def make_orchestrator(docker, build_store):
    """Factory for orchestrators sharing the fake runtime and build store."""
    def _make(manifest, **kwargs):
        kwargs.setdefault("probe_ports", False)
        return Orchestrator(
            manifest,
            runtime=docker,
            build_tool=docker,
            build_store=build_store,
            project_name="shop",
            **kwargs,
        )
    return _make


@pytest.fixture
def orchestrator(make_orchestrator, manifest) -> Orchestrator:
    return make_orchestrator(manifest)
