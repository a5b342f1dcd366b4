"""Unit tests for the polling engine.

Tests for temporal_e2e.fixtures.polling including PollingConfig,
await_condition() and wait_for_condition().
"""

from __future__ import annotations

import time

import pytest
from pydantic import ValidationError

from temporal_e2e.errors import ObservationError
from temporal_e2e.fixtures.conditions import Condition
from temporal_e2e.fixtures.polling import (
    PollingConfig,
    PollingTimeoutError,
    await_condition,
    wait_for_condition,
)


class TestPollingConfig:
    """Tests for PollingConfig Pydantic model."""

    def test_default_values(self) -> None:
        """Test PollingConfig defaults to the ten minute e2e deadline."""
        config = PollingConfig()
        assert config.timeout == pytest.approx(600.0)
        assert config.interval == pytest.approx(5.0)
        assert config.description == "condition"
        assert config.retry_observation_errors is False

    def test_frozen_model(self) -> None:
        """Test PollingConfig is immutable."""
        config = PollingConfig()
        with pytest.raises(ValidationError):
            config.timeout = 100.0

    def test_timeout_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            PollingConfig(timeout=0.0)

    def test_interval_must_be_positive(self) -> None:
        with pytest.raises(ValidationError):
            PollingConfig(interval=0.0)

    def test_interval_cannot_exceed_timeout(self) -> None:
        """Test an interval longer than the timeout is rejected."""
        with pytest.raises(ValidationError, match="must not exceed timeout"):
            PollingConfig(timeout=1.0, interval=2.0)


class TestAwaitCondition:
    """Tests for await_condition()."""

    def test_returns_within_one_interval_when_true_at_first_tick(self) -> None:
        """A condition true on the first check never waits an interval."""
        config = PollingConfig(timeout=5.0, interval=1.0)
        start = time.monotonic()

        state = await_condition(lambda: {"ready": True}, lambda s: s["ready"], config)

        assert state == {"ready": True}
        assert time.monotonic() - start < 1.0

    def test_counter_reaches_five_at_fifth_tick(self) -> None:
        """Test success on tick 5, not at the timeout."""
        counter = 0

        def observe() -> int:
            nonlocal counter
            counter += 1
            return counter

        config = PollingConfig(timeout=10.0, interval=0.05)
        start = time.monotonic()

        result = await_condition(observe, Condition("counter reaches 5", lambda c: c >= 5), config)

        elapsed = time.monotonic() - start
        assert result == 5
        assert counter == 5
        assert elapsed >= 4 * 0.05
        assert elapsed < 10.0

    def test_observes_fresh_state_every_tick(self) -> None:
        """Test the observation call runs once per evaluation."""
        observed: list[int] = []

        def observe() -> int:
            observed.append(len(observed))
            return observed[-1]

        await_condition(observe, lambda n: n == 3, PollingConfig(timeout=5.0, interval=0.01))

        assert observed == [0, 1, 2, 3]

    def test_timeout_fires_between_timeout_and_timeout_plus_interval(self) -> None:
        """Test a never-true condition times out no earlier than the timeout."""
        config = PollingConfig(timeout=0.3, interval=0.1)
        start = time.monotonic()

        with pytest.raises(PollingTimeoutError):
            await_condition(lambda: None, lambda _: False, config)

        elapsed = time.monotonic() - start
        assert elapsed >= 0.3
        assert elapsed < 0.3 + 0.1 + 0.2  # scheduling slack

    def test_timeout_error_carries_description_and_last_state(self) -> None:
        """Test the timeout error is diagnosable."""
        states = iter([{"phase": "Pending"}, {"phase": "Pending"}, {"phase": "Starting"}])
        last = {"phase": "Starting"}

        def observe() -> dict[str, str]:
            return next(states, last)

        never = Condition("phase Running", lambda s: s["phase"] == "Running")

        with pytest.raises(PollingTimeoutError) as exc_info:
            await_condition(observe, never, PollingConfig(timeout=0.2, interval=0.05))

        error = exc_info.value
        assert error.description == "phase Running"
        assert error.timeout == pytest.approx(0.2)
        assert error.last_state == {"phase": "Starting"}
        assert error.last_error is None
        assert "phase Running" in str(error)
        assert "condition not satisfied" in str(error)

    def test_timeout_error_is_builtin_timeout_error(self) -> None:
        with pytest.raises(TimeoutError):
            await_condition(lambda: 0, lambda _: False, PollingConfig(timeout=0.1, interval=0.05))

    def test_uses_config_description_for_plain_predicates(self) -> None:
        config = PollingConfig(timeout=0.1, interval=0.05, description="job completion")

        with pytest.raises(PollingTimeoutError, match="job completion"):
            await_condition(lambda: 0, lambda _: False, config)

    def test_observation_error_propagates_immediately(self) -> None:
        """Test observation failures are not retried by default."""
        calls = 0

        def observe() -> None:
            nonlocal calls
            calls += 1
            raise ObservationError("Deployment e2e/postgres", "Service Unavailable (HTTP 503)")

        start = time.monotonic()
        with pytest.raises(ObservationError):
            await_condition(observe, lambda _: True, PollingConfig(timeout=5.0, interval=0.1))

        assert calls == 1
        assert time.monotonic() - start < 1.0

    def test_observation_error_retried_when_enabled(self) -> None:
        """Test transient observation failures are retried until success."""
        outcomes: list[object] = [
            ObservationError("Deployment e2e/postgres", "connection refused"),
            ObservationError("Deployment e2e/postgres", "connection refused"),
            {"ready": True},
        ]

        def observe() -> object:
            outcome = outcomes.pop(0)
            if isinstance(outcome, Exception):
                raise outcome
            return outcome

        config = PollingConfig(timeout=5.0, interval=0.01, retry_observation_errors=True)
        assert await_condition(observe, lambda s: s["ready"], config) == {"ready": True}

    def test_retried_observation_error_reported_on_timeout(self) -> None:
        """Test the timeout message names the observation error, not the predicate."""

        def observe() -> None:
            raise ObservationError("TemporalCluster e2e/test", "Service Unavailable (HTTP 503)")

        config = PollingConfig(timeout=0.2, interval=0.05, retry_observation_errors=True)
        with pytest.raises(PollingTimeoutError) as exc_info:
            await_condition(observe, lambda _: True, config)

        assert isinstance(exc_info.value.last_error, ObservationError)
        assert "last observation error" in str(exc_info.value)
        assert "condition not satisfied" not in str(exc_info.value)

    def test_predicate_errors_propagate(self) -> None:
        """Test bugs in a predicate are not mistaken for 'not ready yet'."""

        def broken(_: object) -> bool:
            raise KeyError("status")

        with pytest.raises(KeyError):
            await_condition(lambda: {}, broken, PollingConfig(timeout=5.0, interval=0.1))


class TestWaitForCondition:
    """Tests for wait_for_condition()."""

    def test_returns_true_when_condition_true(self) -> None:
        assert wait_for_condition(lambda: True, timeout=5.0) is True

    def test_polls_until_condition_true(self) -> None:
        call_count = 0

        def condition() -> bool:
            nonlocal call_count
            call_count += 1
            return call_count >= 3

        assert wait_for_condition(condition, timeout=5.0, interval=0.05) is True
        assert call_count == 3

    def test_raises_timeout_error(self) -> None:
        with pytest.raises(PollingTimeoutError) as exc_info:
            wait_for_condition(lambda: False, timeout=0.2, interval=0.05, description="never true")

        assert "never true" in str(exc_info.value)

    def test_no_raise_on_timeout_returns_false(self) -> None:
        result = wait_for_condition(
            lambda: False,
            timeout=0.2,
            interval=0.05,
            raise_on_timeout=False,
        )
        assert result is False

    def test_interval_longer_than_timeout_is_clamped(self) -> None:
        assert wait_for_condition(lambda: False, timeout=0.1, interval=1.0, raise_on_timeout=False) is False
