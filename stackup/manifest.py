"""
Manifest parser - turn a service-topology document into a Manifest.

Document shape (YAML):

    version: "3"
    services:
      product-service:
        build: ./products
        ports:
          - "8000:80"
        networks:
          - microservices
      review-service:
        build:
          context: ./reviews
          dockerfile: Dockerfile
        ports:
          - "8001:80"
        networks:
          - microservices
        depends_on:
          - product-service
    networks:
      microservices:

parse() is a pure function of its input: it never touches the
filesystem beyond resolving relative build contexts to absolute paths.
Every rule violation raises ParseError before any orchestration begins.
"""

import re
from pathlib import Path
from typing import Any, Optional

import yaml

from stackup.errors import ParseError, ParseErrorKind
from stackup.schemas import (
    BuildSpec,
    Manifest,
    NetworkSpec,
    PortBinding,
    ServiceSpec,
)


DEFAULT_VERSION = "3"

SERVICE_NAME_PATTERN = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9_.-]*$")
PORT_PATTERN = re.compile(r"^(\d+):(\d+)(?:/(tcp))?$")

DEFAULT_MANIFEST_NAMES = ("stackup.yaml", "stackup.yml", "docker-compose.yaml", "docker-compose.yml")


def _malformed(message: str) -> ParseError:
    return ParseError(ParseErrorKind.MALFORMED_SYNTAX, message)


def _parse_port(service: str, raw: Any) -> PortBinding:
    """Parse a single "host:container" entry."""
    if not isinstance(raw, str):
        raise _malformed(f"Service '{service}': port entry must be a 'host:container' string, got {raw!r}")

    match = PORT_PATTERN.match(raw.strip())
    if not match:
        raise _malformed(f"Service '{service}': invalid port mapping '{raw}'")

    host_port, container_port = int(match.group(1)), int(match.group(2))
    for port in (host_port, container_port):
        if not 1 <= port <= 65535:
            raise _malformed(f"Service '{service}': port {port} out of range in '{raw}'")

    return PortBinding(host_port=host_port, container_port=container_port)


def _parse_build(service: str, raw: Any, base_dir: Path) -> BuildSpec:
    """Parse `build` as either a context path or a {context, dockerfile} mapping."""
    if isinstance(raw, str):
        context, dockerfile = raw, "Dockerfile"
    elif isinstance(raw, dict):
        context = raw.get("context")
        dockerfile = raw.get("dockerfile", "Dockerfile")
        if not isinstance(context, str) or not context:
            raise _malformed(f"Service '{service}': build.context is required")
        if not isinstance(dockerfile, str) or not dockerfile:
            raise _malformed(f"Service '{service}': build.dockerfile must be a string")
    else:
        raise _malformed(f"Service '{service}': build must be a path or a mapping")

    context_path = Path(context).expanduser()
    if not context_path.is_absolute():
        context_path = base_dir / context_path
    return BuildSpec(context=context_path.resolve(), dockerfile=dockerfile)


def _parse_name_list(service: str, key: str, raw: Any) -> list[str]:
    """Accept a list of names, or a mapping whose keys are names."""
    if raw is None:
        return []
    if isinstance(raw, dict):
        raw = list(raw.keys())
    if not isinstance(raw, list) or not all(isinstance(n, str) for n in raw):
        raise _malformed(f"Service '{service}': {key} must be a list of names")
    return raw


def _parse_environment(service: str, raw: Any) -> tuple[tuple[str, str], ...]:
    """Accept a mapping or a list of KEY=VALUE strings."""
    if raw is None:
        return ()
    if isinstance(raw, dict):
        return tuple((str(k), "" if v is None else str(v)) for k, v in raw.items())
    if isinstance(raw, list):
        pairs = []
        for entry in raw:
            if not isinstance(entry, str):
                raise _malformed(f"Service '{service}': environment entries must be strings")
            key, _, value = entry.partition("=")
            pairs.append((key, value))
        return tuple(pairs)
    raise _malformed(f"Service '{service}': environment must be a mapping or a list")


def _parse_service(name: str, raw: Any, base_dir: Path) -> ServiceSpec:
    if not SERVICE_NAME_PATTERN.match(name):
        raise ParseError(
            ParseErrorKind.INVALID_SERVICE_NAME,
            f"Invalid service name '{name}'",
        )
    if not isinstance(raw, dict):
        raise _malformed(f"Service '{name}': definition must be a mapping")

    build = _parse_build(name, raw["build"], base_dir) if raw.get("build") is not None else None
    image = raw.get("image")
    if image is not None and not isinstance(image, str):
        raise _malformed(f"Service '{name}': image must be a string")
    if build is None and not image:
        raise _malformed(f"Service '{name}': either build or image is required")

    raw_ports = raw.get("ports") or []
    if not isinstance(raw_ports, list):
        raise _malformed(f"Service '{name}': ports must be a list")
    ports = [_parse_port(name, p) for p in raw_ports]

    seen: set[int] = set()
    for binding in ports:
        if binding.host_port in seen:
            raise ParseError(
                ParseErrorKind.DUPLICATE_HOST_PORT,
                f"Service '{name}' binds host port {binding.host_port} more than once",
            )
        seen.add(binding.host_port)

    return ServiceSpec(
        name=name,
        build=build,
        image=image,
        ports=tuple(ports),
        networks=frozenset(_parse_name_list(name, "networks", raw.get("networks"))),
        depends_on=tuple(_parse_name_list(name, "depends_on", raw.get("depends_on"))),
        environment=_parse_environment(name, raw.get("environment")),
    )


def _parse_networks(raw: Any) -> dict[str, NetworkSpec]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise _malformed("networks must be a mapping")

    networks: dict[str, NetworkSpec] = {}
    for name, definition in raw.items():
        if not isinstance(name, str) or not name:
            raise _malformed(f"Invalid network name {name!r}")
        if definition is None:
            networks[name] = NetworkSpec(name=name)
        elif isinstance(definition, dict):
            driver = definition.get("driver", "bridge")
            if not isinstance(driver, str) or not driver:
                raise _malformed(f"Network '{name}': driver must be a non-empty string")
            networks[name] = NetworkSpec(name=name, driver=driver)
        else:
            raise _malformed(f"Network '{name}': definition must be a mapping or empty")
    return networks


def _check_dependencies(services: dict[str, ServiceSpec]) -> None:
    """Reject unknown depends_on targets and dependency cycles."""
    for spec in services.values():
        for dep in spec.depends_on:
            if dep not in services:
                raise ParseError(
                    ParseErrorKind.UNKNOWN_DEPENDENCY,
                    f"Service '{spec.name}' depends on undefined service '{dep}'",
                )

    # Iterative DFS with colouring: 0=unvisited, 1=in progress, 2=done
    colour = {name: 0 for name in services}
    for root in services:
        if colour[root]:
            continue
        stack = [(root, iter(services[root].depends_on))]
        colour[root] = 1
        while stack:
            node, deps = stack[-1]
            for dep in deps:
                if colour[dep] == 1:
                    raise ParseError(
                        ParseErrorKind.DEPENDENCY_CYCLE,
                        f"Dependency cycle through '{node}' -> '{dep}'",
                    )
                if colour[dep] == 0:
                    colour[dep] = 1
                    stack.append((dep, iter(services[dep].depends_on)))
                    break
            else:
                colour[node] = 2
                stack.pop()


def parse(document_text: str, base_dir: Optional[Path] = None) -> Manifest:
    """
    Parse a manifest document.

    Args:
        document_text: The YAML document
        base_dir: Directory relative build contexts resolve against
                  (defaults to the current working directory)

    Returns:
        A validated, immutable Manifest

    Raises:
        ParseError: MalformedSyntax, DanglingNetworkReference,
            DuplicateHostPort, InvalidServiceName, UnknownDependency or
            DependencyCycle
    """
    base_dir = Path(base_dir) if base_dir is not None else Path.cwd()

    try:
        data = yaml.safe_load(document_text)
    except yaml.YAMLError as e:
        raise _malformed(f"Invalid YAML syntax: {e}")

    if not isinstance(data, dict):
        raise _malformed("Manifest must be a mapping at the top level")

    version = data.get("version", DEFAULT_VERSION)
    if not isinstance(version, (str, int, float)):
        raise _malformed("version must be a string")

    raw_services = data.get("services")
    if not isinstance(raw_services, dict) or not raw_services:
        raise _malformed("services must be a non-empty mapping")

    networks = _parse_networks(data.get("networks"))

    services: dict[str, ServiceSpec] = {}
    for name, definition in raw_services.items():
        if not isinstance(name, str):
            raise ParseError(ParseErrorKind.INVALID_SERVICE_NAME, f"Invalid service name {name!r}")
        services[name] = _parse_service(name, definition, base_dir)

    for spec in services.values():
        for network in sorted(spec.networks):
            if network not in networks:
                raise ParseError(
                    ParseErrorKind.DANGLING_NETWORK_REFERENCE,
                    f"Service '{spec.name}' references undefined network '{network}'",
                )

    claimed: dict[int, str] = {}
    for spec in services.values():
        for port in spec.host_ports:
            if port in claimed:
                raise ParseError(
                    ParseErrorKind.DUPLICATE_HOST_PORT,
                    f"Host port {port} is claimed by both '{claimed[port]}' and '{spec.name}'",
                )
            claimed[port] = spec.name

    _check_dependencies(services)

    return Manifest(
        version=str(version),
        services=services,
        networks=networks,
        base_dir=base_dir,
    )


def find_manifest(directory: Optional[Path] = None) -> Path:
    """
    Locate the default manifest file in a directory.

    Raises:
        ParseError: If none of the default names exist
    """
    directory = Path(directory) if directory is not None else Path.cwd()
    for name in DEFAULT_MANIFEST_NAMES:
        candidate = directory / name
        if candidate.exists():
            return candidate
    raise _malformed(
        f"No manifest found in {directory} (looked for {', '.join(DEFAULT_MANIFEST_NAMES)})"
    )


def load_manifest(path: Path | str) -> Manifest:
    """
    Read and parse a manifest file.

    Relative build contexts resolve against the file's directory.

    Raises:
        ParseError: If the file is missing or invalid
    """
    path = Path(path)
    if not path.exists():
        raise _malformed(f"Manifest file not found: {path}")
    with open(path, "r") as f:
        text = f.read()
    return parse(text, base_dir=path.resolve().parent)
