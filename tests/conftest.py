"""Shared fixtures: in-memory backends, a fake clock and a resolved configuration."""

from typing import Dict, List, Optional, Set, Tuple

import pytest

from fargate_deploy.config.models import Configuration, Environment
from fargate_deploy.orchestrator.registry import CANONICAL_UNITS
from fargate_deploy.provisioners.base import (
    BuildBackend,
    BuildRecord,
    DefinitionReport,
    NoOpSignal,
    OperationHandle,
    OperationKind,
    Outcome,
    ProvisioningClient,
    ServiceRevisionBackend,
)
from fargate_deploy.utils.errors import ValidationError
from fargate_deploy.utils.waiter import Waiter

PREFIX = "myapp"
MUTATING = ("create", "update", "delete")


class FakeProvisioningClient(ProvisioningClient):
    """In-memory stack backend.

    ``stacks`` maps full names to their published outputs. Updates report no
    drift unless the stack name is in ``drifted``.
    """

    def __init__(self, definitions: Optional[Set[str]] = None):
        if definitions is None:
            definitions = {unit.definition_ref for unit in CANONICAL_UNITS}
        self.definitions = set(definitions)
        self.stacks: Dict[str, Dict[str, str]] = {}
        self.published: Dict[str, Dict[str, str]] = {}
        self.invalid: Set[str] = set()
        self.drifted: Set[str] = set()
        self.outcomes: Dict[str, Outcome] = {}
        self.calls: List[Tuple[str, str]] = []
        self.configs: Dict[str, Configuration] = {}

    def publish(self, full_name: str, **outputs: str) -> None:
        """Outputs a stack will expose once it exists."""
        self.published[full_name] = dict(outputs)

    def mutations(self) -> List[Tuple[str, str]]:
        return [call for call in self.calls if call[0] in MUTATING]

    def mutated_names(self, operation: str) -> List[str]:
        return [name for op, name in self.calls if op == operation]

    def exists(self, full_name: str) -> bool:
        self.calls.append(("exists", full_name))
        return full_name in self.stacks

    def has_definition(self, definition_ref: str) -> bool:
        return definition_ref in self.definitions

    def validate_definition(self, definition_ref: str) -> DefinitionReport:
        self.calls.append(("validate", definition_ref))
        if definition_ref in self.invalid:
            raise ValidationError(f"Template validation failed for {definition_ref}: bad syntax")
        return DefinitionReport(definition_ref=definition_ref)

    def create(self, full_name: str, definition_ref: str, config: Configuration) -> OperationHandle:
        self.calls.append(("create", full_name))
        self.configs[full_name] = config
        return OperationHandle(full_name, OperationKind.CREATE, f"id/{full_name}")

    def update(self, full_name: str, definition_ref: str, config: Configuration):
        self.calls.append(("update", full_name))
        self.configs[full_name] = config
        if full_name not in self.drifted:
            return NoOpSignal(full_name)
        return OperationHandle(full_name, OperationKind.UPDATE, f"id/{full_name}")

    def delete(self, full_name: str) -> OperationHandle:
        self.calls.append(("delete", full_name))
        return OperationHandle(full_name, OperationKind.DELETE, f"id/{full_name}")

    def await_completion(self, handle: OperationHandle) -> Outcome:
        self.calls.append(("await", handle.full_name))
        outcome = self.outcomes.get(handle.full_name, Outcome.success())
        if outcome.succeeded:
            if handle.kind == OperationKind.DELETE:
                self.stacks.pop(handle.full_name, None)
            else:
                self.stacks[handle.full_name] = dict(self.published.get(handle.full_name, {}))
        return outcome

    def outputs(self, full_name: str) -> Dict[str, str]:
        self.calls.append(("outputs", full_name))
        return dict(self.stacks.get(full_name, {}))


class FakeClock:
    """Monotonic clock advanced only by ``sleep``."""

    def __init__(self, start: float = 0.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


class FakeBuildBackend(BuildBackend):
    """Build backend replaying a fixed sequence of statuses."""

    def __init__(self, statuses: Optional[List[str]] = None, logs_url: Optional[str] = None):
        self.statuses = list(statuses or ["IN_PROGRESS"])
        self.logs_url = logs_url
        self.started: List[str] = []
        self.start_error: Optional[Exception] = None

    def start_build(self, project_id: str) -> BuildRecord:
        if self.start_error:
            raise self.start_error
        self.started.append(project_id)
        return BuildRecord(build_id=f"{project_id}:0001", status="IN_PROGRESS")

    def get_build(self, build_id: str) -> BuildRecord:
        status = self.statuses.pop(0) if len(self.statuses) > 1 else self.statuses[0]
        return BuildRecord(build_id=build_id, status=status, logs_url=self.logs_url)


class FakeRevisionBackend(ServiceRevisionBackend):
    """Task revisions of a single service."""

    def __init__(self, family: str, revisions: int = 7, current: Optional[int] = None):
        self.arns = [
            f"arn:aws:ecs:us-east-1:123456789012:task-definition/{family}:{n}"
            for n in range(revisions, 0, -1)
        ]
        self.current = self.arns[0] if current is None else self.arns[revisions - current]
        self.pinned: List[Tuple[str, str, str]] = []
        self.stable_after = 0
        self.stability_checks = 0

    def current_revision(self, cluster: str, service: str) -> str:
        return self.current

    def recent_revisions(self, family: str, limit: int) -> List[str]:
        return self.arns[:limit]

    def pin_revision(self, cluster: str, service: str, revision: str) -> str:
        self.pinned.append((cluster, service, revision))
        self.current = revision
        return revision

    def is_stable(self, cluster: str, service: str) -> bool:
        self.stability_checks += 1
        return self.stability_checks > self.stable_after


@pytest.fixture
def base_values():
    return {
        "StackNamePrefix": PREFIX,
        "Environment": "staging",
        "ProjectName": "demo",
        "ContainerPort": 8080,
    }


@pytest.fixture
def config(base_values):
    return Configuration(Environment.STAGING, base_values, source="cloudformation/parameters/staging.json")


@pytest.fixture
def fake_client():
    return FakeProvisioningClient()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fast_waiter(clock):
    return Waiter(interval=5.0, timeout=60.0, clock=clock, sleep=clock.sleep)
