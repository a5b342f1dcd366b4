"""Exception hierarchy for the e2e harness.

All exceptions inherit from HarnessError, so a test can catch every harness
failure with a single except clause and turn it into a test failure.

Exception Hierarchy:
    HarnessError (base)
    ├── PollingTimeoutError  # Condition not satisfied before the deadline
    ├── ObservationError     # Observation source (K8s API) unreachable or failing
    ├── NotFoundError        # Label query matched no candidate resource
    ├── TunnelError          # Port-forward failed to establish or died
    └── ManifestError        # Test manifest could not be parsed or created

Example:
    >>> from temporal_e2e.errors import NotFoundError
    >>> raise NotFoundError("Pod", "app.kubernetes.io/component in (frontend)", "e2e")
    Traceback (most recent call last):
        ...
    NotFoundError: No Pod matches app.kubernetes.io/component in (frontend) in namespace e2e
"""

from __future__ import annotations

from typing import Any


class HarnessError(Exception):
    """Base exception for all harness errors."""

    pass


class PollingTimeoutError(HarnessError, TimeoutError):
    """Raised when a polling operation times out.

    Attributes:
        description: What was being waited for.
        timeout: How long we waited, in seconds.
        last_state: Last observed state (None if nothing was observed).
        last_error: Last observation error, when observation errors were
            being retried.
    """

    def __init__(
        self,
        description: str,
        timeout: float,
        last_state: Any = None,
        last_error: Exception | None = None,
    ) -> None:
        self.description = description
        self.timeout = timeout
        self.last_state = last_state
        self.last_error = last_error
        message = f"Timeout waiting for {description} after {timeout:.1f}s"
        if last_error is not None:
            message += f" (last observation error: {last_error})"
        else:
            message += " (condition not satisfied)"
        super().__init__(message)


class ObservationError(HarnessError):
    """Raised when the observation source cannot return a resource's state.

    Attributes:
        resource: Human-readable identity of the resource being observed.
        reason: Sanitized failure reason (never the response body).
    """

    def __init__(self, resource: str, reason: str) -> None:
        self.resource = resource
        self.reason = reason
        super().__init__(f"Failed to observe {resource}: {reason}")


class NotFoundError(HarnessError):
    """Raised when a label query selects no resource.

    Attributes:
        kind: Resource kind that was listed.
        selector: The label selector that matched nothing.
        namespace: Namespace that was searched.
    """

    def __init__(self, kind: str, selector: str, namespace: str) -> None:
        self.kind = kind
        self.selector = selector
        self.namespace = namespace
        super().__init__(f"No {kind} matches {selector} in namespace {namespace}")


class TunnelError(HarnessError):
    """Raised when a port-forward tunnel cannot be established or dies.

    Attributes:
        target: The remote target, e.g. "e2e/test-frontend-0:7233".
        reason: Why the tunnel failed.
    """

    def __init__(self, target: str, reason: str) -> None:
        self.target = target
        self.reason = reason
        super().__init__(f"Port-forward to {target} failed: {reason}")


class ManifestError(HarnessError):
    """Raised when a test manifest is invalid or cannot be applied.

    Attributes:
        source: File (or resource) the manifest came from.
        reason: What went wrong.
    """

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Cannot apply manifest {source}: {reason}")


__all__ = [
    "HarnessError",
    "ManifestError",
    "NotFoundError",
    "ObservationError",
    "PollingTimeoutError",
    "TunnelError",
]
