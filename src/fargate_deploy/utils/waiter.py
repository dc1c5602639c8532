"""Bounded polling primitive for long-running backend operations."""

import time
from typing import Callable, TypeVar, Optional
from fargate_deploy.utils.logging import get_logger

logger = get_logger(__name__)

T = TypeVar('T')


class WaitTimeoutError(Exception):
    """Raised when a polled condition does not settle before the deadline."""

    def __init__(self, description: str, timeout: float, attempts: int):
        self.description = description
        self.timeout = timeout
        self.attempts = attempts
        super().__init__(
            f"Timed out after {timeout:.0f}s waiting for {description} ({attempts} checks)"
        )


class Waiter:
    """Polls a check function at a fixed interval until it yields a value.

    The clock and sleep functions are injectable so tests can drive the
    loop without real delays.
    """

    def __init__(
        self,
        interval: float = 5.0,
        timeout: float = 3600.0,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], None] = time.sleep
    ):
        """Initialize waiter.

        Args:
            interval: Seconds between checks
            timeout: Maximum seconds to wait before giving up
            clock: Monotonic clock returning seconds
            sleep: Function used to pause between checks
        """
        if interval <= 0:
            raise ValueError("interval must be positive")
        if timeout < 0:
            raise ValueError("timeout must not be negative")
        self.interval = interval
        self.timeout = timeout
        self.clock = clock
        self.sleep = sleep

    def wait_for(
        self,
        check: Callable[[], Optional[T]],
        description: str = "operation",
        on_poll: Optional[Callable[[int], None]] = None
    ) -> T:
        """Call ``check`` until it returns something other than None.

        Args:
            check: Returns None while the condition is pending, otherwise the result
            description: What is being waited for, used in logs and errors
            on_poll: Optional hook called with the attempt number after each pending check

        Returns:
            The first non-None value returned by ``check``

        Raises:
            WaitTimeoutError: If the deadline passes first
        """
        deadline = self.clock() + self.timeout
        attempts = 0

        while True:
            attempts += 1
            result = check()
            if result is not None:
                logger.debug(f"{description} settled after {attempts} checks")
                return result

            if on_poll:
                on_poll(attempts)

            remaining = deadline - self.clock()
            if remaining <= 0:
                raise WaitTimeoutError(description, self.timeout, attempts)

            self.sleep(min(self.interval, remaining))
