"""Start and follow the external image build after a deployment."""

from dataclasses import dataclass, replace
from enum import Enum
from typing import Callable, Optional

from fargate_deploy.provisioners.base import BuildBackend
from fargate_deploy.utils.errors import BuildStartError, ErrorContext, error_handler
from fargate_deploy.utils.logging import get_logger
from fargate_deploy.utils.waiter import Waiter, WaitTimeoutError

logger = get_logger(__name__)

DEFAULT_POLL_INTERVAL = 5.0
DEFAULT_BUILD_TIMEOUT = 3600.0


class BuildStatus(Enum):
    """Status of a started build."""
    IN_PROGRESS = "in_progress"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMED_OUT = "timed_out"

    @property
    def is_terminal(self) -> bool:
        return self != BuildStatus.IN_PROGRESS


# Backend status strings, anything else (including UNKNOWN) is still running
_BACKEND_STATUS = {
    "SUCCEEDED": BuildStatus.SUCCEEDED,
    "FAILED": BuildStatus.FAILED,
    "FAULT": BuildStatus.FAILED,
    "STOPPED": BuildStatus.FAILED,
    "TIMED_OUT": BuildStatus.TIMED_OUT,
}


@dataclass(frozen=True)
class BuildHandle:
    """Reference to a started build."""
    build_id: str
    project_id: str
    logs_url: Optional[str] = None


class BuildTrigger:
    """Starts a build of a project and optionally waits for it to finish."""

    def __init__(self, backend: BuildBackend, waiter: Optional[Waiter] = None):
        """Initialize build trigger.

        Args:
            backend: Build backend
            waiter: Bounded waiter used by ``poll`` (5s interval, 1h timeout by default)
        """
        self.backend = backend
        self.waiter = waiter or Waiter(interval=DEFAULT_POLL_INTERVAL, timeout=DEFAULT_BUILD_TIMEOUT)
        self.logger = get_logger(__name__)

    def start(self, project_id: str) -> BuildHandle:
        """Start a build.

        Args:
            project_id: Build project name

        Returns:
            BuildHandle for the started build

        Raises:
            BuildStartError: If the backend refuses to start the build
        """
        self.logger.info(f"Starting build: {project_id}")
        try:
            record = self.backend.start_build(project_id)
        except BuildStartError:
            raise
        except Exception as e:
            error = error_handler.handle_exception(e, ErrorContext(operation="start_build"))
            raise BuildStartError(
                f"Failed to start build for {project_id}: {error.message}",
                context=error.context,
                cause=e,
                suggestions=error.suggestions
            ) from e

        handle = BuildHandle(build_id=record.build_id, project_id=project_id, logs_url=record.logs_url)
        self.logger.info(f"Build started: {handle.build_id}")
        return handle

    def status(self, handle: BuildHandle) -> BuildStatus:
        """Single non-blocking status check."""
        record = self.backend.get_build(handle.build_id)
        return _BACKEND_STATUS.get(record.status, BuildStatus.IN_PROGRESS)

    def describe(self, handle: BuildHandle) -> BuildHandle:
        """Return ``handle`` refreshed with the latest logs link."""
        record = self.backend.get_build(handle.build_id)
        if record.logs_url and record.logs_url != handle.logs_url:
            return replace(handle, logs_url=record.logs_url)
        return handle

    def poll(
        self,
        handle: BuildHandle,
        on_poll: Optional[Callable[[int], None]] = None
    ) -> BuildStatus:
        """Wait until the build reaches a terminal status.

        Args:
            handle: Build to follow
            on_poll: Optional hook called after each in-progress check

        Returns:
            SUCCEEDED, FAILED or TIMED_OUT; the local deadline also yields TIMED_OUT
        """
        def check() -> Optional[BuildStatus]:
            current = self.status(handle)
            return current if current.is_terminal else None

        try:
            result = self.waiter.wait_for(check, description=f"build {handle.build_id}", on_poll=on_poll)
        except WaitTimeoutError as e:
            self.logger.error(str(e))
            return BuildStatus.TIMED_OUT

        log = self.logger.info if result == BuildStatus.SUCCEEDED else self.logger.error
        log(f"Build {handle.build_id} finished: {result.value}")
        return result
