"""Provisioning backend interface consumed by the orchestrator."""

from abc import ABC, abstractmethod
from typing import Dict, List, Optional, Union
from dataclasses import dataclass, field
from enum import Enum

from fargate_deploy.config.models import Configuration


class OperationKind(Enum):
    """Kind of mutating backend operation."""
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


class OutcomeStatus(Enum):
    """Terminal status of a backend operation."""
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class OperationHandle:
    """Reference to an in-flight backend operation on one unit instance."""
    full_name: str
    kind: OperationKind
    operation_id: Optional[str] = None


@dataclass(frozen=True)
class NoOpSignal:
    """Returned by ``update`` when the backend reports no drift.

    This is a successful zero-diff outcome, not an error.
    """
    full_name: str
    message: str = "No updates are to be performed"


@dataclass(frozen=True)
class Outcome:
    """Result of waiting for an operation."""
    status: OutcomeStatus
    reason: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.status == OutcomeStatus.SUCCEEDED

    @classmethod
    def success(cls) -> "Outcome":
        return cls(OutcomeStatus.SUCCEEDED)

    @classmethod
    def failure(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.FAILED, reason)

    @classmethod
    def timeout(cls, reason: str) -> "Outcome":
        return cls(OutcomeStatus.TIMED_OUT, reason)


@dataclass
class DefinitionReport:
    """Result of a successful definition syntax/schema check."""
    definition_ref: str
    parameters: List[str] = field(default_factory=list)
    capabilities: List[str] = field(default_factory=list)
    description: Optional[str] = None


class ProvisioningClient(ABC):
    """Thin interface to the external provisioning backend.

    Every call is scoped to one unit instance identified by its full name.
    Calls are synchronous from the caller's side: ``await_completion`` blocks
    until the backend reaches a terminal state.
    """

    @abstractmethod
    def exists(self, full_name: str) -> bool:
        """Check whether a unit instance currently exists in the backend."""

    @abstractmethod
    def has_definition(self, definition_ref: str) -> bool:
        """Check whether a unit definition has been authored yet."""

    @abstractmethod
    def validate_definition(self, definition_ref: str) -> DefinitionReport:
        """Syntax/schema check of a definition, without side effects.

        Raises:
            ValidationError: If the definition is invalid
        """

    @abstractmethod
    def create(
        self,
        full_name: str,
        definition_ref: str,
        config: Configuration
    ) -> OperationHandle:
        """Start creating a unit instance."""

    @abstractmethod
    def update(
        self,
        full_name: str,
        definition_ref: str,
        config: Configuration
    ) -> Union[OperationHandle, NoOpSignal]:
        """Start updating a unit instance, or signal that nothing changed."""

    @abstractmethod
    def delete(self, full_name: str) -> OperationHandle:
        """Start deleting a unit instance."""

    @abstractmethod
    def await_completion(self, handle: OperationHandle) -> Outcome:
        """Block until the operation reaches a terminal state."""

    @abstractmethod
    def outputs(self, full_name: str) -> Dict[str, str]:
        """Named string outputs published by a unit instance."""


@dataclass(frozen=True)
class BuildRecord:
    """Backend view of one build."""
    build_id: str
    status: str
    logs_url: Optional[str] = None


class BuildBackend(ABC):
    """External build service (e.g. CodeBuild)."""

    @abstractmethod
    def start_build(self, project_id: str) -> BuildRecord:
        """Start a build of ``project_id`` and return its initial record."""

    @abstractmethod
    def get_build(self, build_id: str) -> BuildRecord:
        """Fetch the current record of a build."""


class ServiceRevisionBackend(ABC):
    """Reads and pins the task revision a running service uses."""

    @abstractmethod
    def current_revision(self, cluster: str, service: str) -> str:
        """Identifier of the revision the service currently runs."""

    @abstractmethod
    def recent_revisions(self, family: str, limit: int) -> List[str]:
        """Most-recent-first revision identifiers of ``family``, at most ``limit``."""

    @abstractmethod
    def pin_revision(self, cluster: str, service: str, revision: str) -> str:
        """Update the service to run ``revision``; returns the revision now set."""

    @abstractmethod
    def is_stable(self, cluster: str, service: str) -> bool:
        """True once the service has a single deployment at its desired count."""
