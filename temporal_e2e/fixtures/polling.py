"""Polling utilities for K8s-native e2e tests.

This module provides the retry-until-satisfied loop used for every readiness
wait in the harness. A wait is one observation call plus one predicate: the
state is fetched fresh on every tick and the predicate decides whether we
are done.

Functions:
    await_condition: Poll an observation until a condition holds or timeout
    wait_for_condition: Poll a zero-argument check until it returns True

Example:
    from temporal_e2e.fixtures.polling import PollingConfig, await_condition

    deployment = await_condition(
        lambda: source.get(ref),
        deployment_available(),
        PollingConfig(timeout=300.0, interval=2.0),
    )
"""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Any, TypeVar

import structlog
from pydantic import BaseModel, ConfigDict, Field, model_validator

from temporal_e2e.errors import ObservationError, PollingTimeoutError

logger = structlog.get_logger(__name__)

T = TypeVar("T")


class PollingConfig(BaseModel):
    """Configuration for polling utilities.

    Attributes:
        timeout: Maximum wait time in seconds. Defaults to 600.0.
        interval: Poll interval in seconds. Defaults to 5.0.
        description: Description for error messages. Defaults to "condition".
        retry_observation_errors: If True, ObservationError raised by the
            observation call is retried until the deadline instead of
            propagating. Defaults to False.

    Example:
        config = PollingConfig(timeout=60.0, interval=1.0)
        await_condition(observe, resource_ready(), config)
    """

    model_config = ConfigDict(frozen=True)

    timeout: float = Field(
        default=600.0,
        gt=0.0,
        description="Maximum wait time in seconds",
    )
    interval: float = Field(
        default=5.0,
        gt=0.0,
        description="Poll interval in seconds",
    )
    description: str = Field(
        default="condition",
        min_length=1,
        description="Description for error messages",
    )
    retry_observation_errors: bool = Field(
        default=False,
        description="Retry observation errors until the deadline",
    )

    @model_validator(mode="after")
    def _interval_within_timeout(self) -> PollingConfig:
        if self.interval > self.timeout:
            msg = (
                f"interval ({self.interval}s) must not exceed timeout ({self.timeout}s), "
                "otherwise the condition is checked only once"
            )
            raise ValueError(msg)
        return self


def await_condition(
    observe: Callable[[], T],
    condition: Callable[[T], bool],
    config: PollingConfig | None = None,
) -> T:
    """Poll ``observe`` until ``condition`` holds for the observed state.

    The first check happens immediately. Between checks the loop sleeps for
    the poll interval, but never past the deadline, so a timeout is raised
    no earlier than ``config.timeout`` and no later than one interval after.

    Args:
        observe: Callable returning the current state of the resource.
            Called once per tick; its result is never cached.
        condition: Predicate over the observed state (usually a Condition).
        config: Polling configuration. Uses defaults if not provided.

    Returns:
        The observed state that satisfied the condition.

    Raises:
        PollingTimeoutError: If the condition is not met within the timeout.
        ObservationError: If observation fails and
            ``config.retry_observation_errors`` is False.
    """
    if config is None:
        config = PollingConfig()

    description = getattr(condition, "description", None) or config.description
    log = logger.bind(condition=description, timeout=config.timeout)

    start_time = time.monotonic()
    last_state: Any = None
    last_error: ObservationError | None = None
    attempt = 0

    while True:
        attempt += 1
        try:
            state = observe()
        except ObservationError as e:
            if not config.retry_observation_errors:
                raise
            last_error = e
            log.debug("observation_failed", attempt=attempt, error=str(e))
        else:
            last_state = state
            last_error = None
            if condition(state):
                log.debug(
                    "condition_met",
                    attempt=attempt,
                    elapsed=round(time.monotonic() - start_time, 3),
                )
                return state
            log.debug("condition_not_met", attempt=attempt)

        elapsed = time.monotonic() - start_time
        if elapsed >= config.timeout:
            log.warning("condition_timeout", attempts=attempt, elapsed=round(elapsed, 3))
            raise PollingTimeoutError(description, config.timeout, last_state, last_error)

        # Sleep for interval, but don't exceed remaining time
        remaining = config.timeout - elapsed
        sleep_time = min(config.interval, remaining)
        if sleep_time > 0:
            time.sleep(sleep_time)


def wait_for_condition(
    condition: Callable[[], bool],
    timeout: float = 30.0,
    interval: float = 0.5,
    description: str = "condition",
    *,
    raise_on_timeout: bool = True,
) -> bool:
    """Poll until a zero-argument check returns True or timeout.

    Args:
        condition: Callable returning True when the condition is met.
        timeout: Maximum wait time in seconds. Defaults to 30.0.
        interval: Poll interval in seconds. Defaults to 0.5.
        description: Description for error messages. Defaults to "condition".
        raise_on_timeout: If True, raise PollingTimeoutError on timeout.
            If False, return False on timeout. Defaults to True.

    Returns:
        True if condition was met within timeout.
        False if raise_on_timeout=False and timeout occurred.

    Raises:
        PollingTimeoutError: If condition not met within timeout and
            raise_on_timeout=True.

    Example:
        wait_for_condition(
            lambda: job_status(job_id) == "complete",
            timeout=30.0,
            description="job completion",
        )
    """
    config = PollingConfig(
        timeout=timeout,
        interval=min(interval, timeout),
        description=description,
    )
    try:
        await_condition(condition, bool, config)
    except PollingTimeoutError:
        if raise_on_timeout:
            raise
        return False
    return True


# Module exports
__all__ = [
    "PollingConfig",
    "PollingTimeoutError",
    "await_condition",
    "wait_for_condition",
]
