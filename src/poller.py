"""
Generic state poller for asynchronous provider resources.
"""

import logging
import time
from typing import Any, Callable, Optional, Union

from errors import PollTimeoutError

logger = logging.getLogger(__name__)


class StatePoller:
    """Repeatedly queries a state function until it reaches a desired state."""

    def __init__(
        self,
        timeout: float,
        interval: float,
        backoff: float = 1.0,
        max_interval: Optional[float] = None,
        max_attempts: Optional[int] = None,
    ):
        """
        Initialize the poller.

        Args:
            timeout: Maximum time to wait for the desired state (seconds)
            interval: Time between queries (seconds)
            backoff: Multiplier applied to the interval after every attempt
            max_interval: Upper bound for the interval when backing off
            max_attempts: Optional cap on the number of queries
        """
        self.timeout = timeout
        self.interval = interval
        self.backoff = backoff
        self.max_interval = max_interval
        self.max_attempts = max_attempts

    def wait(
        self,
        query: Callable[[], Any],
        desired: Union[Any, Callable[[Any], bool]],
        description: str = "resource",
    ) -> Any:
        """
        Poll until the query reports the desired state.

        Exceptions raised by the query are not caught: they abort the wait
        immediately.

        Args:
            query: No-argument function returning the current state
            desired: Terminal state to wait for, or a predicate over the state
            description: What is being waited for (used in logs and errors)

        Returns:
            The state that satisfied the wait

        Raises:
            PollTimeoutError: If the timeout or attempt budget is exhausted
        """
        matches = desired if callable(desired) else (lambda state: state == desired)
        start = time.time()
        interval = self.interval
        attempt = 0

        while True:
            attempt += 1
            state = query()
            elapsed = time.time() - start

            if matches(state):
                logger.debug(f"{description} reached {state} after {elapsed:.0f}s")
                return state

            if elapsed >= self.timeout or (
                self.max_attempts is not None and attempt >= self.max_attempts
            ):
                logger.error(
                    f"Timeout waiting for {description} after {elapsed:.0f}s "
                    f"({attempt} attempts, last state={state})"
                )
                raise PollTimeoutError(description, elapsed, state)

            logger.debug(
                f"  waiting for {description}: state={state} ({elapsed:.0f}s elapsed)"
            )
            time.sleep(interval)
            interval = interval * self.backoff
            if self.max_interval is not None:
                interval = min(interval, self.max_interval)
