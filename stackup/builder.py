"""
Build Planner - decide whether a service image must be (re)built, then build it.

Deciding and executing are separate steps:
- plan() is side-effect free: it fingerprints the build context and
  compares it with the previous BuildRecord
- execute() invokes the external build tool and records the result

This lets the orchestrator offer a plan-only (dry-run) mode and lets tests
exercise reuse logic without a real build.
"""

import logging
import time
from dataclasses import dataclass
from typing import Optional

from stackup.build_store import BuildStore
from stackup.errors import BuildError, BuildErrorKind
from stackup.schemas import BuildAction, BuildRecord, ServiceSpec
from stackup.tools.base import BuildTool
from stackup.utils import compute_fingerprint

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class BuildDecision:
    """
    Outcome of planning one service build.

    Attributes:
        service: Service name
        action: REUSE or REBUILD
        fingerprint: Current fingerprint of the build context
        image_id: Image to reuse (REUSE only)
        reason: Why this decision was taken
    """
    service: str
    action: BuildAction
    fingerprint: str
    image_id: Optional[str] = None
    reason: str = ""

    @property
    def is_reuse(self) -> bool:
        return self.action == BuildAction.REUSE


class BuildPlanner:
    """
    Plans and executes image builds against a persistent BuildStore.

    Example:
        planner = BuildPlanner(store, DockerCLI(), project_name="shop")
        decision = planner.plan(spec, store.get(spec.name))
        if not decision.is_reuse:
            record = planner.execute(spec, decision)
    """

    def __init__(self, store: BuildStore, tool: BuildTool, project_name: str):
        self.store = store
        self.tool = tool
        self.project_name = project_name

    def image_tag(self, spec: ServiceSpec) -> str:
        """Tag for a service's built image."""
        return spec.image or f"{self.project_name}-{spec.name}"

    def fingerprint(self, spec: ServiceSpec) -> str:
        """
        Fingerprint a service's build context, including its recipe.

        Raises:
            BuildError: ContextMissing if the context directory or recipe is absent
        """
        if spec.build is None:
            raise ValueError(f"Service '{spec.name}' has no build context")

        context = spec.build.context
        if not context.is_dir():
            raise BuildError(
                BuildErrorKind.CONTEXT_MISSING,
                f"Build context for '{spec.name}' does not exist: {context}",
            )
        if not spec.build.recipe_path.is_file():
            raise BuildError(
                BuildErrorKind.CONTEXT_MISSING,
                f"Build recipe for '{spec.name}' not found: {spec.build.recipe_path}",
            )
        return compute_fingerprint(context, spec.build.recipe_path)

    def plan(
        self,
        spec: ServiceSpec,
        previous: Optional[BuildRecord],
        force: bool = False,
    ) -> BuildDecision:
        """
        Decide between reusing the previous image and rebuilding.

        Args:
            spec: Service to plan
            previous: Last BuildRecord for this service, if any
            force: Always rebuild

        Returns:
            REUSE iff a previous record exists and its fingerprint matches
            the current one (and force is False); REBUILD otherwise
        """
        current = self.fingerprint(spec)

        if force:
            return BuildDecision(spec.name, BuildAction.REBUILD, current, reason="forced")
        if previous is None:
            return BuildDecision(spec.name, BuildAction.REBUILD, current, reason="no previous build")
        if not previous.matches(current):
            return BuildDecision(spec.name, BuildAction.REBUILD, current, reason="build context changed")
        return BuildDecision(
            spec.name,
            BuildAction.REUSE,
            current,
            image_id=previous.image_id,
            reason="fingerprint unchanged",
        )

    def execute(
        self,
        spec: ServiceSpec,
        decision: BuildDecision,
        timeout: Optional[float] = None,
    ) -> BuildRecord:
        """
        Run the build tool for a REBUILD decision and persist the record.

        Args:
            spec: Service to build
            decision: A REBUILD decision from plan()
            timeout: Optional build time limit in seconds

        Returns:
            The new BuildRecord

        Raises:
            BuildError: BuildToolFailed when the tool exits abnormally
        """
        if decision.is_reuse:
            raise ValueError(f"execute() called with a reuse decision for '{spec.name}'")

        tag = self.image_tag(spec)
        logger.info(
            f"Building {spec.name} ({decision.reason})",
            extra={"service": spec.name, "event": "build_started", "metadata": {"tag": tag}},
        )
        start_time = time.time()

        image_id = self.tool.build(spec.build.context, spec.build.dockerfile, tag, timeout=timeout)

        record = BuildRecord(
            service=spec.name,
            fingerprint=decision.fingerprint,
            image_id=image_id,
        )
        self.store.put(record)

        logger.info(
            f"Built {spec.name} -> {image_id}",
            extra={
                "service": spec.name,
                "event": "build_completed",
                "metadata": {"image_id": image_id, "duration_seconds": time.time() - start_time},
            },
        )
        return record
