"""Deployment orchestrator: walks the unit registry and provisions each unit in order."""

import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Callable, Dict, List, Optional, Sequence, Set

from fargate_deploy.config.models import Configuration
from fargate_deploy.orchestrator.build import BuildHandle, BuildTrigger
from fargate_deploy.orchestrator.registry import (
    BUILD_PROJECT_SUFFIX,
    InfrastructureUnit,
    UnitRegistry,
)
from fargate_deploy.provisioners.base import (
    NoOpSignal,
    OperationHandle,
    OperationKind,
    Outcome,
    OutcomeStatus,
    ProvisioningClient,
)
from fargate_deploy.utils.errors import (
    BuildError,
    CreateFailedError,
    DependencyError,
    DeploymentError,
    ErrorContext,
    OperationTimeoutError,
    UpdateFailedError,
    error_handler,
)
from fargate_deploy.utils.logging import LogContext, get_logger

logger = get_logger(__name__)


class UnitStatus(Enum):
    """Lifecycle of one unit within a run."""
    PENDING = "pending"
    VALIDATING = "validating"
    CREATING = "creating"
    UPDATING = "updating"
    SKIPPING = "skipping"
    WAITING = "waiting"
    DONE = "done"
    FAILED = "failed"
    SKIPPED = "skipped"


class Operation(Enum):
    """What the run did to a unit."""
    CREATE = "create"
    UPDATE = "update"
    NO_OP = "no_op"


class RunStatus(Enum):
    """Overall status of a run."""
    SUCCESS = "success"
    FAILED = "failed"


@dataclass
class DeployedUnitState:
    """Runtime record of one unit, created fresh for every run."""

    unit_id: str
    full_name: str
    exists: bool = False
    operation: Optional[Operation] = None
    status: UnitStatus = UnitStatus.PENDING
    outputs: Dict[str, str] = field(default_factory=dict)
    error: Optional[DeploymentError] = None
    duration: float = 0.0  # seconds

    def is_done(self) -> bool:
        return self.status == UnitStatus.DONE

    def is_failed(self) -> bool:
        return self.status == UnitStatus.FAILED


@dataclass
class DeploymentResult:
    """Complete result of one orchestrator run."""

    status: RunStatus
    dry_run: bool = False
    units: List[DeployedUnitState] = field(default_factory=list)
    build: Optional[BuildHandle] = None
    build_error: Optional[BuildError] = None
    error: Optional[DeploymentError] = None
    config: Optional[Configuration] = None  # View including every collected output
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        """Check if deployment was successful."""
        return self.status == RunStatus.SUCCESS

    def is_failed(self) -> bool:
        """Check if deployment failed."""
        return self.status == RunStatus.FAILED

    def get_state(self, unit_id: str) -> Optional[DeployedUnitState]:
        for state in self.units:
            if state.unit_id == unit_id:
                return state
        return None

    def failed_unit(self) -> Optional[DeployedUnitState]:
        for state in self.units:
            if state.is_failed():
                return state
        return None

    def operations(self) -> Dict[str, Optional[Operation]]:
        """Operation applied to each attempted unit, in run order."""
        return {state.unit_id: state.operation for state in self.units}


# Type alias for progress callback: (unit_id, status, message)
ProgressCallback = Callable[[str, UnitStatus, Optional[str]], None]


class DeploymentOrchestrator:
    """Deploys units strictly in dependency order, halting at the first failure.

    Units are processed one at a time. Every unit sees the configuration plus
    the outputs of all units deployed before it in the same run. Nothing is
    retried: a failed or timed-out backend operation ends the run and leaves
    already-completed units deployed.
    """

    def __init__(
        self,
        client: ProvisioningClient,
        registry: Optional[UnitRegistry] = None,
        build_trigger: Optional[BuildTrigger] = None,
        progress_callback: Optional[ProgressCallback] = None
    ):
        """Initialize deployment orchestrator.

        Args:
            client: Provisioning backend
            registry: Unit registry (the canonical stack by default)
            build_trigger: Started once after a successful non-dry-run deploy
            progress_callback: Optional callback for unit status changes
        """
        self.client = client
        self.registry = registry or UnitRegistry()
        self.build_trigger = build_trigger
        self.progress_callback = progress_callback
        self.logger = get_logger(__name__)

    def deploy(
        self,
        units: Optional[Sequence[InfrastructureUnit]],
        config: Configuration,
        dry_run: bool = False
    ) -> DeploymentResult:
        """Deploy units in the given order.

        Args:
            units: Units to deploy, ``None`` for every registry unit
            config: Resolved configuration
            dry_run: Validate only, never mutate the backend

        Returns:
            DeploymentResult; FAILED as soon as one unit fails
        """
        if units is None:
            units = self.registry.ordered_units()

        mode = "dry run" if dry_run else "deployment"
        self.logger.info(f"Starting {mode} of {len(units)} units for {config.environment.value}")

        result = DeploymentResult(
            status=RunStatus.SUCCESS,
            dry_run=dry_run,
            start_time=datetime.now(timezone.utc)
        )
        started = time.monotonic()
        done: Set[str] = set()
        view = config

        for unit in units:
            state = DeployedUnitState(unit_id=unit.id, full_name=config.full_name(unit.id))
            result.units.append(state)

            view = self._run_unit(unit, state, view, done, dry_run)
            if state.is_failed():
                result.status = RunStatus.FAILED
                result.error = state.error
                self.logger.error(f"Aborting {mode}: unit {unit.id} failed")
                break

        result.config = view

        if result.is_success() and not dry_run and self.build_trigger:
            project_id = config.full_name(BUILD_PROJECT_SUFFIX)
            try:
                result.build = self.build_trigger.start(project_id)
            except BuildError as e:
                # Deployment and build are separate stages
                result.build_error = e
                self.logger.warning(f"Could not trigger build {project_id}: {e.message}")

        result.end_time = datetime.now(timezone.utc)
        result.duration = time.monotonic() - started

        if result.is_success():
            self.logger.info(f"{mode.capitalize()} completed in {result.duration:.1f}s")
        return result

    def deploy_single(self, unit_id: str, config: Configuration) -> DeploymentResult:
        """Deploy one unit against the live outputs of its dependencies.

        Dependencies are not deployed; each must already exist in the
        backend. No build is triggered.

        Raises:
            UnitNotFoundError: If ``unit_id`` is not in the registry
        """
        unit = self.registry.unit_by_id(unit_id)
        state = DeployedUnitState(unit_id=unit.id, full_name=config.full_name(unit.id))
        result = DeploymentResult(
            status=RunStatus.SUCCESS,
            units=[state],
            start_time=datetime.now(timezone.utc)
        )
        started = time.monotonic()

        try:
            view = self._load_dependency_outputs(unit, config)
        except DeploymentError as e:
            self._fail(unit, state, e)
            view = config
        else:
            done = {dep.id for dep in self.registry.dependencies_of(unit.id)}
            view = self._run_unit(unit, state, view, done, dry_run=False)

        if state.is_failed():
            result.status = RunStatus.FAILED
            result.error = state.error

        result.config = view
        result.end_time = datetime.now(timezone.utc)
        result.duration = time.monotonic() - started
        return result

    def _load_dependency_outputs(self, unit: InfrastructureUnit, config: Configuration) -> Configuration:
        view = config
        for dep in self.registry.dependencies_of(unit.id):
            full_name = config.full_name(dep.id)
            if not self.client.exists(full_name):
                raise DependencyError(
                    f"Unit '{unit.id}' requires '{dep.id}' ({full_name}), which is not deployed",
                    context=ErrorContext(unit_id=unit.id, full_name=full_name),
                    suggestions=[f"Deploy '{dep.id}' first, or run a full deploy"]
                )
            view = view.with_outputs(dep.id, self.client.outputs(full_name))
        return view

    def _run_unit(
        self,
        unit: InfrastructureUnit,
        state: DeployedUnitState,
        view: Configuration,
        done: Set[str],
        dry_run: bool
    ) -> Configuration:
        """Drive one unit through its state machine.

        Returns:
            The configuration view for the next unit
        """
        started = time.monotonic()
        fields = {"environment": view.environment.value, "unit_id": unit.id, "full_name": state.full_name}
        with LogContext(self.logger, **fields):
            try:
                view = self._provision_unit(unit, state, view, done, dry_run)
            except DeploymentError as e:
                self._fail(unit, state, e)
            except Exception as e:
                self._fail(unit, state, error_handler.handle_exception(
                    e, ErrorContext(unit_id=unit.id, full_name=state.full_name)
                ))
            state.duration = time.monotonic() - started
        return view

    def _provision_unit(
        self,
        unit: InfrastructureUnit,
        state: DeployedUnitState,
        view: Configuration,
        done: Set[str],
        dry_run: bool
    ) -> Configuration:
        if not self.client.has_definition(unit.definition_ref):
            self.logger.warning(f"Definition {unit.definition_ref} not found, skipping {unit.id}")
            self._transition(state, UnitStatus.SKIPPED, f"{unit.definition_ref} not found")
            return view

        self._transition(state, UnitStatus.VALIDATING)
        self._check_dependencies(unit, done)
        self.client.validate_definition(unit.definition_ref)

        if dry_run:
            state.exists = self.client.exists(state.full_name)
            state.operation = Operation.NO_OP
            self._transition(state, UnitStatus.SKIPPING, "dry run")
            self._transition(state, UnitStatus.DONE, "validated")
            done.add(unit.id)
            return view

        state.exists = self.client.exists(state.full_name)
        if state.exists:
            self._transition(state, UnitStatus.UPDATING)
            response = self.client.update(state.full_name, unit.definition_ref, view)
        else:
            self._transition(state, UnitStatus.CREATING)
            response = self.client.create(state.full_name, unit.definition_ref, view)

        if isinstance(response, NoOpSignal):
            self.logger.info(f"No updates required for {state.full_name}")
            state.operation = Operation.NO_OP
        else:
            state.operation = Operation.UPDATE if state.exists else Operation.CREATE
            self._transition(state, UnitStatus.WAITING)
            outcome = self.client.await_completion(response)
            if not outcome.succeeded:
                raise self._outcome_error(unit, response, outcome)

        # Outputs are re-read after a no-op too
        state.outputs = dict(self.client.outputs(state.full_name))
        view = view.with_outputs(unit.id, state.outputs)

        self._transition(state, UnitStatus.DONE, state.operation.value)
        done.add(unit.id)
        return view

    def _check_dependencies(self, unit: InfrastructureUnit, done: Set[str]) -> None:
        missing = [dep_id for dep_id in unit.depends_on if dep_id not in done]
        if missing:
            raise DependencyError(
                f"Unit '{unit.id}' depends on {', '.join(missing)}, which did not complete in this run",
                context=ErrorContext(unit_id=unit.id, operation="validate"),
                suggestions=[
                    "Make sure every dependency's definition exists and deploys first",
                ]
            )

    def _outcome_error(
        self,
        unit: InfrastructureUnit,
        handle: OperationHandle,
        outcome: Outcome
    ) -> DeploymentError:
        reason = outcome.reason or "no reason reported"
        context = ErrorContext(unit_id=unit.id, full_name=handle.full_name, operation=handle.kind.value)
        if outcome.status == OutcomeStatus.TIMED_OUT:
            return OperationTimeoutError(
                f"Timed out waiting for {handle.kind.value} of {handle.full_name}: {reason}",
                reason=reason,
                context=context
            )
        error_cls = CreateFailedError if handle.kind == OperationKind.CREATE else UpdateFailedError
        return error_cls(
            f"{handle.kind.value.capitalize()} of {handle.full_name} failed: {reason}",
            reason=reason,
            context=context
        )

    def _fail(self, unit: InfrastructureUnit, state: DeployedUnitState, error: DeploymentError) -> None:
        if error.context.unit_id is None:
            error.context.unit_id = unit.id
        if error.context.full_name is None:
            error.context.full_name = state.full_name
        state.error = error
        self.logger.error(f"Unit {unit.id} failed: {error.message}", extra={"error": error.to_dict()})
        self._transition(state, UnitStatus.FAILED, error.message)

    def _transition(self, state: DeployedUnitState, status: UnitStatus, message: Optional[str] = None) -> None:
        state.status = status
        self.logger.debug(f"{state.unit_id} -> {status.value}")
        if self.progress_callback:
            self.progress_callback(state.unit_id, status, message)
