"""
CLI interface for stackup.

Provides commands: up, build, down, stop, start, ps, config, init.

Every batch command reports one line per service and exits with:
  0   every service succeeded
  1   at least one service failed (details on stderr)
  2   the manifest or configuration is invalid (nothing was touched)
  130 the batch was interrupted
"""

import json
import re
from pathlib import Path
from typing import Optional

import click
import yaml
from rich.table import Table

from stackup import __version__
from stackup.build_store import FileBuildStore
from stackup.config import (
    StackupConfig,
    default_config_dict,
    get_stackup_home,
    load_config,
)
from stackup.errors import ConfigError, ParseError, StackupError
from stackup.manifest import find_manifest, load_manifest
from stackup.orchestrator import Orchestrator
from stackup.schemas import BatchResult, Manifest, OutcomeKind
from stackup.tools.docker import DockerCLI
from stackup.utils import (
    console,
    format_duration,
    print_banner,
    print_error,
    print_info,
    print_success,
    print_warning,
    setup_logging,
)

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID = 2
EXIT_CANCELLED = 130


def _default_project_name(manifest: Manifest) -> str:
    """Project name derived from the manifest directory."""
    base = manifest.base_dir.name if manifest.base_dir else "stackup"
    name = re.sub(r"[^a-z0-9_-]", "", base.lower())
    return name or "stackup"


@click.group()
@click.version_option(version=__version__, prog_name="stackup")
@click.option(
    "-f", "--file", "manifest_file",
    type=click.Path(path_type=Path),
    help="Manifest file (default: stackup.yaml or docker-compose.yml in the current directory)",
)
@click.option("-p", "--project-name", help="Project name used to prefix containers and networks")
@click.option("--verbose", is_flag=True, help="Enable debug logging on stderr")
@click.pass_context
def main(ctx, manifest_file: Optional[Path], project_name: Optional[str], verbose: bool):
    """
    stackup - build and run multi-service stacks from a manifest.
    """
    ctx.ensure_object(dict)
    try:
        config = load_config()
    except FileNotFoundError:
        config = StackupConfig().apply_env_overrides()
    except ConfigError as e:
        click.echo(f"✗ Invalid configuration: {e}", err=True)
        raise SystemExit(EXIT_INVALID)

    ctx.obj["config"] = config
    ctx.obj["manifest_file"] = manifest_file
    ctx.obj["project_name"] = project_name
    ctx.obj["verbose"] = verbose


def _load_manifest(ctx) -> Manifest:
    manifest_file = ctx.obj.get("manifest_file")
    try:
        path = manifest_file if manifest_file else find_manifest()
        return load_manifest(path)
    except ParseError as e:
        print_error(f"Invalid manifest: {e}")
        raise SystemExit(EXIT_INVALID)


def _make_orchestrator(ctx) -> Orchestrator:
    """Load manifest + config and build an orchestrator adopting existing containers."""
    config: StackupConfig = ctx.obj["config"]
    verbose = ctx.obj.get("verbose", False)
    manifest = _load_manifest(ctx)

    project_name = ctx.obj.get("project_name") or config.project_name or _default_project_name(manifest)

    setup_logging(
        config.get_log_file_path(),
        "DEBUG" if verbose else config.log_level,
        config.log_format,
        config.log_console or verbose,
    )

    docker = DockerCLI(config.docker_bin)
    orchestrator = Orchestrator(
        manifest,
        runtime=docker,
        build_tool=docker,
        build_store=FileBuildStore(config.get_state_dir() / project_name),
        project_name=project_name,
        max_workers=config.max_workers,
        probe_ports=config.probe_ports,
    )
    try:
        orchestrator.refresh()
    except StackupError as e:
        print_error(f"Could not inspect existing containers: {e}")
        raise SystemExit(EXIT_FAILURE)
    return orchestrator


def _report(result: BatchResult) -> None:
    """Print one line per service, then a summary; exit with the batch status."""
    for outcome in result.outcomes:
        detail = outcome.kind.value
        if outcome.build is not None:
            detail += f" (build: {outcome.build.value})"
        if outcome.kind == OutcomeKind.FAILED:
            print_error(f"{outcome.service}: failed ({outcome.error_type}) {outcome.error}")
        elif outcome.kind == OutcomeKind.CANCELLED:
            print_warning(f"{outcome.service}: cancelled")
        else:
            print_success(f"{outcome.service}: {detail}")

    for network_error in result.network_errors:
        print_error(f"network {network_error}")

    duration = format_duration(result.duration_ms / 1000)
    if result.cancelled:
        print_warning(f"{result.operation} interrupted after {duration}")
        raise SystemExit(EXIT_CANCELLED)
    if result.success:
        print_info(f"{result.operation} completed in {duration}")
        raise SystemExit(EXIT_OK)

    failed = ", ".join(o.service for o in result.failures) or "networks"
    print_error(f"{result.operation} finished with failures: {failed}")
    raise SystemExit(EXIT_FAILURE)


@main.command()
@click.option("--build", "rebuild", is_flag=True, help="Re-plan existing services and recreate changed ones")
@click.option("--dry-run", is_flag=True, help="Show the build plan without side effects")
@click.pass_context
def up(ctx, rebuild: bool, dry_run: bool):
    """
    Build images as needed and start every service.

    Examples:

      # Start the stack
      stackup up

      # Rebuild changed images and recreate their containers
      stackup up --build

      # Show what would be built
      stackup up --dry-run
    """
    orchestrator = _make_orchestrator(ctx)
    if dry_run:
        print_banner("DRY RUN")
        _report(orchestrator.plan(include_running=rebuild))
    _report(orchestrator.up(build=rebuild))


@main.command()
@click.pass_context
def build(ctx):
    """Rebuild every service image, ignoring the build cache."""
    _report(_make_orchestrator(ctx).build())


@main.command()
@click.pass_context
def down(ctx):
    """Stop and remove every service and the project networks."""
    _report(_make_orchestrator(ctx).down())


@main.command()
@click.pass_context
def stop(ctx):
    """Stop running services without removing them."""
    _report(_make_orchestrator(ctx).stop())


@main.command()
@click.pass_context
def start(ctx):
    """Start previously stopped services."""
    _report(_make_orchestrator(ctx).start())


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Output as JSON")
@click.pass_context
def ps(ctx, as_json: bool):
    """List services with their state, ports and networks."""
    rows = _make_orchestrator(ctx).status()
    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return

    table = Table(title="Services")
    for column in ("Service", "State", "Image", "Ports", "Networks"):
        table.add_column(column)
    for row in rows:
        table.add_row(
            row["service"],
            row["state"],
            row["image"] or "-",
            ", ".join(row["ports"]) or "-",
            ", ".join(row["networks"]) or "-",
        )
    console.print(table)


@main.command("config")
@click.pass_context
def show_config(ctx):
    """Validate the manifest and print the normalized model."""
    manifest = _load_manifest(ctx)
    click.echo(yaml.safe_dump(manifest.to_dict(), sort_keys=False))


@main.command("init")
@click.option("--force", is_flag=True, help="Overwrite existing configuration")
def init(force: bool):
    """Initialize stackup configuration."""
    home = get_stackup_home()
    if not home.exists():
        home.mkdir(parents=True)

    cfg_path = home / "config.yaml"
    if cfg_path.exists() and not force:
        click.echo(f"Config already exists at {cfg_path}. Use --force to overwrite.", err=True)
        raise SystemExit(EXIT_FAILURE)

    cfg_path.write_text(yaml.safe_dump(default_config_dict(home), sort_keys=False))

    env_path = home / ".env"
    if not env_path.exists():
        env_path.write_text("# STACKUP_PROJECT_NAME=...\n# STACKUP_DOCKER_BIN=...\n")

    click.echo(f"Initialized stackup config at {cfg_path}")


if __name__ == "__main__":
    main()
