"""Teardown of deployed units and revision rollback of the running service."""

import re
import time
from typing import Callable, Iterable, List, Optional, Set
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum

from fargate_deploy.config.models import Configuration
from fargate_deploy.orchestrator.registry import (
    CLUSTER_UNIT_ID,
    SERVICE_UNIT_ID,
    InfrastructureUnit,
    UnitRegistry,
)
from fargate_deploy.provisioners.base import (
    OutcomeStatus,
    ProvisioningClient,
    ServiceRevisionBackend,
)
from fargate_deploy.utils.errors import (
    DeleteFailedError,
    DeploymentError,
    ErrorContext,
    OperationTimeoutError,
    UserAbort,
    ValidationError,
    error_handler,
)
from fargate_deploy.utils.logging import LogContext, get_logger
from fargate_deploy.utils.waiter import Waiter, WaitTimeoutError

logger = get_logger(__name__)

DEFAULT_MAX_REVISIONS = 5

_REVISION_NUMBER = re.compile(r"^[0-9]+$")


class TeardownStatus(Enum):
    """Status of one unit during teardown."""
    DELETING = "deleting"
    DELETED = "deleted"
    ABSENT = "absent"  # Nothing to delete
    FAILED = "failed"
    BLOCKED = "blocked"  # A dependent failed to delete, still in use


@dataclass
class UnitTeardown:
    """Teardown record for one unit."""

    unit_id: str
    full_name: str
    status: TeardownStatus = TeardownStatus.DELETING
    error: Optional[DeploymentError] = None
    duration: float = 0.0  # seconds


@dataclass
class TeardownResult:
    """Result of a teardown run."""

    units: List[UnitTeardown] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    duration: float = 0.0  # seconds

    def is_success(self) -> bool:
        """True when every selected unit is gone."""
        return all(u.status in (TeardownStatus.DELETED, TeardownStatus.ABSENT) for u in self.units)

    def with_status(self, status: TeardownStatus) -> List[str]:
        return [u.unit_id for u in self.units if u.status == status]

    def get(self, unit_id: str) -> Optional[UnitTeardown]:
        for record in self.units:
            if record.unit_id == unit_id:
                return record
        return None


@dataclass
class RevisionRollbackResult:
    """Result of pinning the service to an earlier revision."""

    service: str
    cluster: str
    previous_revision: str
    target_revision: str
    new_revision: str
    candidates: List[str] = field(default_factory=list)
    stable: Optional[bool] = None  # None when stability was not awaited


# (current revision, recent revisions) -> operator's choice
RevisionSelector = Callable[[str, List[str]], str]
# target revision -> go ahead?
Confirmation = Callable[[str], bool]
TeardownCallback = Callable[[str, TeardownStatus, Optional[str]], None]


class RollbackController:
    """Operator-initiated teardown and service revision rollback.

    Neither operation runs automatically after a failed deployment.
    """

    def __init__(
        self,
        client: ProvisioningClient,
        config: Configuration,
        registry: Optional[UnitRegistry] = None,
        revisions: Optional[ServiceRevisionBackend] = None,
        waiter: Optional[Waiter] = None,
        max_revisions: int = DEFAULT_MAX_REVISIONS,
        progress_callback: Optional[TeardownCallback] = None
    ):
        """Initialize rollback controller.

        Args:
            client: Provisioning backend used for teardown
            config: Resolved configuration, used for naming
            registry: Unit registry (the canonical stack by default)
            revisions: Service revision backend, required for ``rollback_service``
            waiter: Waiter used to await service stability
            max_revisions: How many recent revisions to offer
            progress_callback: Optional callback for teardown status changes
        """
        self.client = client
        self.config = config
        self.registry = registry or UnitRegistry()
        self.revisions = revisions
        self.waiter = waiter or Waiter(interval=15.0, timeout=600.0)
        self.max_revisions = max_revisions
        self.progress_callback = progress_callback
        self.logger = get_logger(__name__)

    @property
    def service_name(self) -> str:
        return self.config.full_name(SERVICE_UNIT_ID)

    @property
    def cluster_name(self) -> str:
        return self.config.full_name(CLUSTER_UNIT_ID)

    @property
    def task_family(self) -> str:
        return f"{self.config.stack_prefix}-{self.config.environment.value}"

    def teardown(self, unit_ids: Optional[Iterable[str]] = None) -> TeardownResult:
        """Delete units in reverse dependency order.

        Each delete is awaited before the next starts. A failed delete is
        recorded and only the failed unit's dependencies are left in place;
        everything else is still attempted.

        Args:
            unit_ids: Units to delete, ``None`` for all

        Returns:
            TeardownResult

        Raises:
            UnitNotFoundError: If any requested unit id is unknown
        """
        units = self.registry.reverse_order(unit_ids)
        self.logger.info(f"Tearing down {len(units)} units: {', '.join(u.id for u in units)}")

        result = TeardownResult(start_time=datetime.now(timezone.utc))
        started = time.monotonic()
        failed: Set[str] = set()

        for unit in units:
            record = UnitTeardown(unit_id=unit.id, full_name=self.config.full_name(unit.id))
            result.units.append(record)

            if failed.intersection(dep.id for dep in self.registry.dependents_of(unit.id)):
                self._set(record, TeardownStatus.BLOCKED, "a dependent unit failed to delete")
                self.logger.warning(f"Not deleting {unit.id}: still in use by a unit that failed to delete")
                continue

            unit_started = time.monotonic()
            with LogContext(
                self.logger,
                environment=self.config.environment.value,
                unit_id=unit.id,
                full_name=record.full_name,
                operation="delete"
            ):
                self._delete_unit(unit, record)
            record.duration = time.monotonic() - unit_started

            if record.status == TeardownStatus.FAILED:
                failed.add(unit.id)

        result.end_time = datetime.now(timezone.utc)
        result.duration = time.monotonic() - started

        if result.is_success():
            self.logger.info(f"Teardown completed in {result.duration:.1f}s")
        else:
            failed = result.with_status(TeardownStatus.FAILED)
            self.logger.warning(f"Teardown completed with failures: {', '.join(failed)}")
        return result

    def _delete_unit(self, unit: InfrastructureUnit, record: UnitTeardown) -> None:
        try:
            if not self.client.exists(record.full_name):
                self.logger.info(f"Stack does not exist: {record.full_name}")
                self._set(record, TeardownStatus.ABSENT)
                return

            self._set(record, TeardownStatus.DELETING)
            handle = self.client.delete(record.full_name)
            outcome = self.client.await_completion(handle)
        except DeploymentError as e:
            self._fail(unit, record, e)
            return
        except Exception as e:
            self._fail(unit, record, error_handler.handle_exception(
                e, ErrorContext(unit_id=unit.id, full_name=record.full_name, operation="delete")
            ))
            return

        if outcome.succeeded:
            self.logger.info(f"Stack deleted: {record.full_name}")
            self._set(record, TeardownStatus.DELETED)
            return

        reason = outcome.reason or "no reason reported"
        context = ErrorContext(unit_id=unit.id, full_name=record.full_name, operation="delete")
        if outcome.status == OutcomeStatus.TIMED_OUT:
            error = OperationTimeoutError(
                f"Timed out deleting {record.full_name}: {reason}", reason=reason, context=context
            )
        else:
            error = DeleteFailedError(
                f"Delete of {record.full_name} failed: {reason}", reason=reason, context=context
            )
        self._fail(unit, record, error)

    def _fail(self, unit: InfrastructureUnit, record: UnitTeardown, error: DeploymentError) -> None:
        if error.context.unit_id is None:
            error.context.unit_id = unit.id
        record.error = error
        self.logger.error(f"Failed to delete {unit.id}: {error.message}", extra={"error": error.to_dict()})
        self._set(record, TeardownStatus.FAILED, error.message)

    def _set(self, record: UnitTeardown, status: TeardownStatus, message: Optional[str] = None) -> None:
        record.status = status
        if self.progress_callback:
            self.progress_callback(record.unit_id, status, message)

    def list_revisions(self) -> List[str]:
        """Recent revisions of the service's task family, most recent first."""
        return self._revisions().recent_revisions(self.task_family, self.max_revisions)

    def rollback_service(
        self,
        select_revision: RevisionSelector,
        confirm: Confirmation,
        wait: bool = False
    ) -> RevisionRollbackResult:
        """Pin the running service to an earlier task revision.

        Args:
            select_revision: Called with the current revision and the recent
                ones; returns a revision number or one of the listed identifiers
            confirm: Called with the resolved target; False cancels
            wait: Block until the service settles on the new revision

        Returns:
            RevisionRollbackResult

        Raises:
            ValidationError: If the selected target is malformed
            UserAbort: If the operator declines
        """
        backend = self._revisions()
        service, cluster = self.service_name, self.cluster_name

        self.logger.info(f"Getting current task definition for {service}")
        current = backend.current_revision(cluster, service)
        candidates = self.list_revisions()

        target = self._resolve_target(select_revision(current, list(candidates)), candidates)

        if not confirm(target):
            self.logger.info("Rollback cancelled")
            raise UserAbort("Rollback cancelled")

        self.logger.warning(f"Rolling back {service} to {target}")
        new_revision = backend.pin_revision(cluster, service, target)

        result = RevisionRollbackResult(
            service=service,
            cluster=cluster,
            previous_revision=current,
            target_revision=target,
            new_revision=new_revision,
            candidates=list(candidates)
        )

        if wait:
            result.stable = self._wait_until_stable(backend, cluster, service)
        return result

    def _resolve_target(self, selection: str, candidates: List[str]) -> str:
        selection = (selection or "").strip()
        if _REVISION_NUMBER.match(selection) and int(selection) > 0:
            return f"{self.task_family}:{int(selection)}"
        if selection in candidates:
            return selection
        raise ValidationError(
            f"Invalid revision: '{selection}'",
            context=ErrorContext(unit_id=SERVICE_UNIT_ID, operation="rollback"),
            suggestions=["Enter a revision number (e.g. 3) or one of the listed task definitions"]
        )

    def _wait_until_stable(self, backend: ServiceRevisionBackend, cluster: str, service: str) -> bool:
        try:
            self.waiter.wait_for(
                lambda: True if backend.is_stable(cluster, service) else None,
                description=f"service {service} to stabilize"
            )
        except WaitTimeoutError as e:
            self.logger.warning(str(e))
            return False
        self.logger.info(f"Service {service} is stable")
        return True

    def _revisions(self) -> ServiceRevisionBackend:
        if self.revisions is None:
            raise DeploymentError("No service revision backend configured")
        return self.revisions
