"""
Lifecycle Orchestrator - drive every service through its state machine.

Per-service states:

    Undefined -> Built -> Running -> Stopped -> Removed
                            \\______________________/   (forced teardown)

Transitions:
- Undefined -> Built: plan the build; reuse the previous image or rebuild.
  On failure the service stays Undefined.
- Built -> Running: ensure + attach every declared network, then bind every
  declared host port, then start the container. Any failure rolls back
  bound ports, network attachments and any container the runtime left
  behind; the service stays Built.
- Running -> Stopped: stop the container and release its host ports.
  Network attachments are kept so a later start needs no reconfiguration.
- Stopped -> Running: re-bind host ports (fails if one was taken) and resume.
- * -> Removed: remove the container, detach all networks, release all ports.
  Networks and ports are released even if the runtime fails to remove it.

Batch operations ("up", "build", "down", "stop", "start") run one pipeline
per service on a thread pool. Pipelines are isolated: a failure is caught
at the pipeline boundary and reported in the BatchResult while sibling
services continue. Shared resources (networks, host ports) are serialized
inside NetworkManager and PortPublisher. depends_on is honoured by making
a pipeline wait for its dependencies before its run transition (and for
its dependents before teardown).

Cancellation: cancel() sets a flag that pipelines check between steps;
a pipeline either completes its current transition or rolls it back, so
no half-bound ports or orphaned attachments are left behind.
"""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Optional

from stackup.build_store import BuildStore
from stackup.builder import BuildDecision, BuildPlanner
from stackup.errors import (
    ContainerError,
    DependencyError,
    NetworkError,
    NetworkErrorKind,
    StackupError,
)
from stackup.networks import NetworkHandle, NetworkManager
from stackup.ports import BoundPort, PortPublisher
from stackup.schemas import (
    BatchResult,
    BuildAction,
    Manifest,
    OutcomeKind,
    ServiceInstance,
    ServiceOutcome,
    ServiceSpec,
    ServiceState,
    can_transition,
)
from stackup.tools.base import BuildTool, ContainerRuntime

logger = logging.getLogger(__name__)

PROJECT_LABEL = "com.stackup.project"
SERVICE_LABEL = "com.stackup.service"

# Runtime statuses that mean the container holds its ports
ACTIVE_STATUSES = {"running", "restarting", "paused"}


class BatchCancelled(StackupError):
    """Raised inside a pipeline when the batch has been cancelled."""
    pass


class IllegalTransition(StackupError):
    """A state change not allowed by the lifecycle."""

    def __init__(self, service: str, current: ServiceState, target: ServiceState):
        self.service = service
        self.current = current
        self.target = target
        super().__init__(f"Service '{service}' cannot go from {current.value} to {target.value}")


WaitFn = Callable[[], None]


class Orchestrator:
    """
    Owns ServiceInstances and sequences lifecycle transitions.

    Example:
        orchestrator = Orchestrator(manifest, runtime=docker, build_tool=docker,
                                    build_store=FileBuildStore(state_dir),
                                    project_name="shop")
        result = orchestrator.up()
        if not result.success:
            for failure in result.failures:
                print(failure.service, failure.error)
    """

    def __init__(
        self,
        manifest: Manifest,
        runtime: ContainerRuntime,
        build_tool: BuildTool,
        build_store: BuildStore,
        project_name: str,
        max_workers: int = 4,
        probe_ports: bool = True,
    ):
        self.manifest = manifest
        self.runtime = runtime
        self.build_store = build_store
        self.project_name = project_name
        self.max_workers = max_workers

        self.planner = BuildPlanner(build_store, build_tool, project_name)
        self.networks = NetworkManager(runtime, project_name)
        self.ports = PortPublisher(probe=probe_ports)

        self._lock = threading.RLock()
        self._cancel = threading.Event()
        self._states: dict[str, ServiceState] = {
            name: ServiceState.UNDEFINED for name in manifest.services
        }
        self._images: dict[str, str] = {}
        self._instances: dict[str, ServiceInstance] = {}

    # ------------------------------------------------------------------
    # State accessors
    # ------------------------------------------------------------------

    def state(self, service: str) -> ServiceState:
        with self._lock:
            return self._states[service]

    def instance(self, service: str) -> Optional[ServiceInstance]:
        with self._lock:
            return self._instances.get(service)

    def image_for(self, service: str) -> Optional[str]:
        with self._lock:
            return self._images.get(service)

    def container_name(self, service: str) -> str:
        return f"{self.project_name}-{service}-1"

    def _set_state(self, service: str, target: ServiceState) -> None:
        with self._lock:
            current = self._states[service]
            if not can_transition(current, target):
                raise IllegalTransition(service, current, target)
            self._states[service] = target
        logger.debug(
            f"{service}: {current.value} -> {target.value}",
            extra={"service": service, "event": "state_changed",
                   "metadata": {"from": current.value, "to": target.value}},
        )

    def cancel(self) -> None:
        """Ask in-flight pipelines to stop at their next safe point."""
        logger.warning("Cancellation requested", extra={"event": "batch_cancel_requested"})
        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def _check_cancel(self) -> None:
        if self._cancel.is_set():
            raise BatchCancelled("Batch cancelled")

    # ------------------------------------------------------------------
    # Runtime discovery
    # ------------------------------------------------------------------

    def refresh(self) -> None:
        """
        Adopt containers left by a previous invocation.

        Each declared service with an existing container is recorded as
        Running or Stopped, with its networks attached and (when running)
        its host ports held.
        """
        for name, spec in self.manifest.services.items():
            status = self.runtime.inspect(self.container_name(name))
            if status is None:
                continue

            state = ServiceState.RUNNING if status in ACTIVE_STATUSES else ServiceState.STOPPED
            attached = set()
            for network in sorted(spec.networks):
                handle = self.networks.ensure(network, self.manifest.networks[network].driver)
                self.networks.attach(name, handle)
                attached.add(network)

            bound = []
            if state == ServiceState.RUNNING:
                for binding in spec.ports:
                    self.ports.adopt(binding.host_port, binding.container_port, name)
                    bound.append(binding.host_port)

            image_id = self.runtime.image_of(self.container_name(name))
            if image_id is None:
                record = self.build_store.get(name)
                image_id = record.image_id if record else spec.image
            with self._lock:
                self._instances[name] = ServiceInstance(
                    service=name,
                    handle=self.container_name(name),
                    image_id=image_id,
                    state=state,
                    bound_ports=bound,
                    networks=attached,
                )
                self._states[name] = state
                if image_id:
                    self._images[name] = image_id

            logger.info(
                f"Adopted existing container for {name} ({status})",
                extra={"service": name, "event": "service_adopted"},
            )

    # ------------------------------------------------------------------
    # Single-service transitions
    # ------------------------------------------------------------------

    def _build(self, spec: ServiceSpec) -> tuple[Optional[BuildAction], str]:
        """Undefined/Removed/Built -> Built. Returns (build action, image id)."""
        if spec.build is None:
            self._set_state(spec.name, ServiceState.BUILT)
            with self._lock:
                self._images[spec.name] = spec.image
            return None, spec.image

        decision = self.planner.plan(spec, self.build_store.get(spec.name))
        image_id = self._apply_decision(spec, decision)

        with self._lock:
            self._images[spec.name] = image_id
        if self.state(spec.name) != ServiceState.BUILT:
            self._set_state(spec.name, ServiceState.BUILT)
        return decision.action, image_id

    def _apply_decision(self, spec: ServiceSpec, decision: BuildDecision) -> str:
        if decision.is_reuse:
            logger.info(
                f"Reusing image for {spec.name}: {decision.image_id}",
                extra={"service": spec.name, "event": "build_reused"},
            )
            return decision.image_id
        self._check_cancel()
        return self.planner.execute(spec, decision).image_id

    def _start(self, spec: ServiceSpec) -> ServiceInstance:
        """Built -> Running, rolling back to Built on any failure."""
        name = spec.name
        image_id = self.image_for(name)
        attached: list[NetworkHandle] = []
        bound: list[BoundPort] = []
        launched = False

        try:
            self._check_cancel()
            for network in sorted(spec.networks):
                handle = self.networks.ensure(network, self.manifest.networks[network].driver)
                self.networks.attach(name, handle)
                attached.append(handle)

            self._check_cancel()
            for binding in spec.ports:
                bound.append(self.ports.bind(binding.host_port, binding.container_port, name))

            self._check_cancel()
            launched = True
            container = self.runtime.run(
                self.container_name(name),
                image_id,
                list(spec.ports),
                [h.runtime_name for h in attached],
                dict(spec.environment),
                {PROJECT_LABEL: self.project_name, SERVICE_LABEL: name},
            )
        except Exception as e:
            # A failed run can still leave a created container behind
            if launched:
                try:
                    self.runtime.remove(self.container_name(name))
                except ContainerError as cleanup_error:
                    logger.warning(
                        f"Could not remove leftover container for {name}: {cleanup_error}",
                        extra={"service": name, "event": "start_cleanup_failed"},
                    )
            for port in bound:
                self.ports.unbind(port)
            for handle in attached:
                self.networks.detach(name, handle.name)
            logger.warning(
                f"Start of {name} rolled back: {e}",
                extra={"service": name, "event": "start_rolled_back",
                       "metadata": {"ports_released": [p.host_port for p in bound],
                                    "networks_detached": [h.name for h in attached]}},
            )
            raise

        instance = ServiceInstance(
            service=name,
            handle=container,
            image_id=image_id,
            state=ServiceState.RUNNING,
            bound_ports=[p.host_port for p in bound],
            networks={h.name for h in attached},
        )
        with self._lock:
            self._instances[name] = instance
            self._set_state(name, ServiceState.RUNNING)

        logger.info(
            f"Started {name} ({container})",
            extra={"service": name, "event": "service_started",
                   "metadata": {"ports": instance.bound_ports, "networks": sorted(instance.networks)}},
        )
        return instance

    def _stop(self, spec: ServiceSpec) -> None:
        """Running -> Stopped. Ports are released, networks are kept."""
        instance = self.instance(spec.name)
        self.runtime.stop(instance.handle)
        released = self.ports.release_service(spec.name)
        with self._lock:
            instance.bound_ports = []
            instance.state = ServiceState.STOPPED
            self._set_state(spec.name, ServiceState.STOPPED)
        logger.info(
            f"Stopped {spec.name}",
            extra={"service": spec.name, "event": "service_stopped",
                   "metadata": {"ports_released": released}},
        )

    def _resume(self, spec: ServiceSpec) -> None:
        """Stopped -> Running. Re-binds ports; the service stays Stopped on failure."""
        instance = self.instance(spec.name)
        bound: list[BoundPort] = []
        try:
            self._check_cancel()
            for binding in spec.ports:
                bound.append(self.ports.bind(binding.host_port, binding.container_port, spec.name))
            self._check_cancel()
            self.runtime.start(instance.handle)
        except Exception:
            for port in bound:
                self.ports.unbind(port)
            raise

        with self._lock:
            instance.bound_ports = [p.host_port for p in bound]
            instance.state = ServiceState.RUNNING
            self._set_state(spec.name, ServiceState.RUNNING)
        logger.info(
            f"Resumed {spec.name}",
            extra={"service": spec.name, "event": "service_resumed"},
        )

    def _remove(self, spec: ServiceSpec) -> None:
        """Any state -> Removed."""
        name = spec.name
        instance = self.instance(name)
        try:
            if instance is not None:
                self.runtime.remove(instance.handle)
        finally:
            # Bookkeeping is torn down even when the runtime refuses
            detached = self.networks.detach_all(name)
            released = self.ports.release_service(name)
            with self._lock:
                self._instances.pop(name, None)
                self._set_state(name, ServiceState.REMOVED)
        logger.info(
            f"Removed {name}",
            extra={"service": name, "event": "service_removed",
                   "metadata": {"networks_detached": detached, "ports_released": released}},
        )

    # ------------------------------------------------------------------
    # Per-service pipelines
    # ------------------------------------------------------------------

    def _up_service(self, name: str, wait_dependencies: WaitFn, rebuild: bool) -> ServiceOutcome:
        spec = self.manifest.services[name]
        state = self.state(name)

        if state in (ServiceState.RUNNING, ServiceState.STOPPED) and rebuild and spec.build is not None:
            decision = self.planner.plan(spec, self.build_store.get(name))
            current = self.instance(name)
            if decision.is_reuse and current is not None and current.image_id == decision.image_id:
                if state == ServiceState.RUNNING:
                    return ServiceOutcome(name, OutcomeKind.ALREADY_RUNNING, BuildAction.REUSE, current.image_id)
            else:
                # Image changed: build first, then replace the container
                image_id = self._apply_decision(spec, decision)
                self._check_cancel()
                self._remove(spec)
                with self._lock:
                    self._images[name] = image_id
                self._set_state(name, ServiceState.BUILT)
                wait_dependencies()
                self._start(spec)
                return ServiceOutcome(name, OutcomeKind.STARTED, decision.action, image_id)

        if state == ServiceState.RUNNING:
            return ServiceOutcome(name, OutcomeKind.ALREADY_RUNNING, image_id=self.image_for(name))

        if state == ServiceState.STOPPED:
            wait_dependencies()
            self._resume(spec)
            return ServiceOutcome(name, OutcomeKind.STARTED, image_id=self.image_for(name))

        build_action = None
        if state in (ServiceState.UNDEFINED, ServiceState.REMOVED):
            self._check_cancel()
            build_action, _ = self._build(spec)

        wait_dependencies()
        instance = self._start(spec)
        return ServiceOutcome(name, OutcomeKind.STARTED, build_action, instance.image_id)

    def _build_service(self, name: str, wait_dependencies: WaitFn) -> ServiceOutcome:
        spec = self.manifest.services[name]
        if spec.build is None:
            return ServiceOutcome(name, OutcomeKind.REUSED_BUILD, image_id=spec.image)

        self._check_cancel()
        decision = self.planner.plan(spec, self.build_store.get(name), force=True)
        record = self.planner.execute(spec, decision)
        with self._lock:
            self._images[name] = record.image_id
            if self._states[name] in (ServiceState.UNDEFINED, ServiceState.REMOVED, ServiceState.BUILT):
                self._set_state(name, ServiceState.BUILT)
        return ServiceOutcome(name, OutcomeKind.REBUILT, BuildAction.REBUILD, record.image_id)

    def _down_service(self, name: str, wait_dependents: WaitFn) -> ServiceOutcome:
        spec = self.manifest.services[name]
        wait_dependents()
        image_id = self.image_for(name)
        self._remove(spec)
        return ServiceOutcome(name, OutcomeKind.REMOVED, image_id=image_id)

    def _stop_service(self, name: str, wait_dependents: WaitFn) -> ServiceOutcome:
        spec = self.manifest.services[name]
        wait_dependents()
        if self.state(name) == ServiceState.RUNNING:
            self._check_cancel()
            self._stop(spec)
        return ServiceOutcome(name, OutcomeKind.STOPPED, image_id=self.image_for(name))

    def _start_service(self, name: str, wait_dependencies: WaitFn) -> ServiceOutcome:
        spec = self.manifest.services[name]
        state = self.state(name)
        if state == ServiceState.RUNNING:
            return ServiceOutcome(name, OutcomeKind.ALREADY_RUNNING, image_id=self.image_for(name))
        if state != ServiceState.STOPPED:
            raise IllegalTransition(name, state, ServiceState.RUNNING)
        wait_dependencies()
        self._resume(spec)
        return ServiceOutcome(name, OutcomeKind.STARTED, image_id=self.image_for(name))

    # ------------------------------------------------------------------
    # Batch execution
    # ------------------------------------------------------------------

    def _run_batch(
        self,
        operation: str,
        pipeline: Callable[[str, WaitFn], ServiceOutcome],
        reverse: bool = False,
    ) -> BatchResult:
        """
        Run one pipeline per service concurrently and join the outcomes.

        Pipelines are submitted in dependency order (reversed for
        teardown), so a pipeline blocked on its prerequisites never holds
        back a prerequisite still waiting in the queue.
        """
        self._cancel.clear()
        start_time = time.time()

        order = self.manifest.service_order()
        if reverse:
            order.reverse()

        done = {name: threading.Event() for name in order}
        succeeded: dict[str, bool] = {}

        def prerequisites(name: str) -> list[str]:
            if reverse:
                return self.manifest.dependents_of(name)
            return list(self.manifest.services[name].depends_on)

        def make_wait(name: str) -> WaitFn:
            def wait() -> None:
                for other in prerequisites(name):
                    done[other].wait()
                    self._check_cancel()
                    if not succeeded.get(other):
                        raise DependencyError(name, other)
            return wait

        def task(name: str) -> ServiceOutcome:
            try:
                self._check_cancel()
                outcome = pipeline(name, make_wait(name))
            except BatchCancelled as e:
                outcome = ServiceOutcome(name, OutcomeKind.CANCELLED, error_type=type(e).__name__, error=str(e))
            except StackupError as e:
                logger.error(
                    f"{operation} failed for {name}: {e}",
                    extra={"service": name, "event": "service_failed",
                           "metadata": {"operation": operation, "error_type": type(e).__name__}},
                )
                outcome = ServiceOutcome(name, OutcomeKind.FAILED, error_type=type(e).__name__, error=str(e))
            except Exception as e:
                logger.error(
                    f"{operation} crashed for {name}: {e}",
                    extra={"service": name, "event": "service_crashed"},
                    exc_info=True,
                )
                outcome = ServiceOutcome(name, OutcomeKind.FAILED, error_type=type(e).__name__, error=str(e))
            succeeded[name] = outcome.succeeded
            done[name].set()
            return outcome

        logger.info(
            f"Starting batch: {operation} ({len(order)} services)",
            extra={"event": "batch_started", "metadata": {"operation": operation, "services": order}},
        )

        outcomes: dict[str, ServiceOutcome] = {}
        interrupted = False
        with ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="stackup") as pool:
            futures = {pool.submit(task, name): name for name in order}
            try:
                for future in as_completed(futures):
                    outcomes[futures[future]] = future.result()
            except KeyboardInterrupt:
                interrupted = True
                self.cancel()
                for future, name in futures.items():
                    outcomes[name] = future.result()

        result = BatchResult(
            operation=operation,
            outcomes=[outcomes[name] for name in self.manifest.services],
            cancelled=interrupted or self._cancel.is_set(),
            duration_ms=int((time.time() - start_time) * 1000),
        )
        logger.info(
            f"Batch {operation} finished: {'ok' if result.success else 'with failures'}",
            extra={"event": "batch_completed", "metadata": result.to_dict()},
        )
        return result

    # ------------------------------------------------------------------
    # Public batch operations
    # ------------------------------------------------------------------

    def up(self, build: bool = False) -> BatchResult:
        """
        Build-if-needed then run every service.

        Args:
            build: Also re-plan services that already exist and replace
                   their containers when the image changed

        Returns:
            BatchResult; already-running services report ALREADY_RUNNING
        """
        return self._run_batch(
            "up",
            lambda name, wait: self._up_service(name, wait, rebuild=build),
        )

    def build(self) -> BatchResult:
        """Force a rebuild of every service that has a build context."""
        return self._run_batch("build", self._build_service)

    def down(self) -> BatchResult:
        """Remove every service, then remove the project's networks."""
        result = self._run_batch("down", self._down_service, reverse=True)
        if result.cancelled:
            return result

        for name in self.manifest.networks:
            try:
                self.networks.remove(name)
            except NetworkError as e:
                if e.kind == NetworkErrorKind.NOT_FOUND:
                    continue
                logger.error(
                    f"Could not remove network {name}: {e}",
                    extra={"event": "network_remove_failed", "metadata": {"network": name}},
                )
                result.network_errors.append(f"{name}: {e}")
        return result

    def stop(self) -> BatchResult:
        """Stop every running service (dependents first)."""
        return self._run_batch("stop", self._stop_service, reverse=True)

    def start(self) -> BatchResult:
        """Resume every stopped service (dependencies first)."""
        return self._run_batch("start", self._start_service)

    def plan(self, include_running: bool = False) -> BatchResult:
        """
        Report what "up" would build without any side effects.

        Running services report ALREADY_RUNNING unless include_running is
        set (the "up --build" case); others report PLANNED with the
        REUSE/REBUILD decision.
        """
        start_time = time.time()
        outcomes = []
        for name, spec in self.manifest.services.items():
            if self.state(name) == ServiceState.RUNNING and not include_running:
                outcomes.append(ServiceOutcome(name, OutcomeKind.ALREADY_RUNNING, image_id=self.image_for(name)))
                continue
            if spec.build is None:
                outcomes.append(ServiceOutcome(name, OutcomeKind.PLANNED, image_id=spec.image))
                continue
            try:
                decision = self.planner.plan(spec, self.build_store.get(name))
            except StackupError as e:
                outcomes.append(ServiceOutcome(name, OutcomeKind.FAILED, error_type=type(e).__name__, error=str(e)))
                continue
            outcomes.append(ServiceOutcome(name, OutcomeKind.PLANNED, decision.action, decision.image_id))
        return BatchResult(
            operation="plan",
            outcomes=outcomes,
            duration_ms=int((time.time() - start_time) * 1000),
        )

    def status(self) -> list[dict]:
        """One row per service for `stackup ps`."""
        rows = []
        for name, spec in self.manifest.services.items():
            instance = self.instance(name)
            rows.append({
                "service": name,
                "state": self.state(name).value,
                "container": instance.handle if instance else None,
                "image": self.image_for(name),
                "ports": [str(p) for p in spec.ports if instance and p.host_port in instance.bound_ports],
                "networks": sorted(instance.networks) if instance else [],
            })
        return rows
