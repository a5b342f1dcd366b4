"""Readiness conditions over observed Kubernetes resource state.

A Condition is a named predicate over the JSON form of a resource (a plain
dict as returned by the API server, or None when the resource does not exist
yet). Conditions are pure, so the poller can evaluate them as often as it
likes. Listing-based conditions take a list of resource dicts instead.

Functions:
    status_condition_match: Typed status condition has the given status
    deployment_available: Deployment reports Available=True
    resource_ready: Custom resource reports Ready=True
    pod_ready: Pod reports Ready=True
    field_non_empty: A dotted field path holds a non-empty value
    secret_ref_issued: status.secretRef.name has been filled in
    resources_found: A listing contains every named resource
    all_of / any_of: Combine conditions

Example:
    from temporal_e2e.fixtures.conditions import Condition, all_of, resource_ready

    replicas_up = Condition(
        "three ready replicas",
        lambda state: (state or {}).get("status", {}).get("readyReplicas") == 3,
    )
    await_condition(observe, all_of(resource_ready(), replicas_up))
"""

from __future__ import annotations

from collections.abc import Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any

ObservedState = Any

CONDITION_TRUE = "True"


@dataclass(frozen=True)
class Condition:
    """A named boolean predicate over observed state.

    Attributes:
        description: Human-readable name used in logs and timeout errors.
        predicate: Pure function of the observed state.
    """

    description: str
    predicate: Callable[[ObservedState], bool]

    def __call__(self, state: ObservedState) -> bool:
        return bool(self.predicate(state))

    def __and__(self, other: Condition) -> Condition:
        return all_of(self, other)

    def __or__(self, other: Condition) -> Condition:
        return any_of(self, other)

    def __invert__(self) -> Condition:
        return Condition(f"not ({self.description})", lambda state: not self(state))

    def __str__(self) -> str:
        return self.description


def all_of(*conditions: Condition) -> Condition:
    """Condition that holds when every given condition holds."""
    description = " and ".join(c.description for c in conditions)
    return Condition(description, lambda state: all(c(state) for c in conditions))


def any_of(*conditions: Condition) -> Condition:
    """Condition that holds when at least one given condition holds."""
    description = " or ".join(c.description for c in conditions)
    return Condition(description, lambda state: any(c(state) for c in conditions))


def get_field(state: ObservedState, path: str) -> Any:
    """Read a dotted field path (e.g. "status.secretRef.name") from a resource dict.

    Returns None when any segment along the path is missing.
    """
    current: Any = state
    for segment in path.split("."):
        if not isinstance(current, Mapping):
            return None
        current = current.get(segment)
    return current


def status_conditions(state: ObservedState) -> list[Mapping[str, Any]]:
    """Return the typed ``status.conditions`` entries of a resource."""
    conditions = get_field(state, "status.conditions")
    if not isinstance(conditions, list):
        return []
    return [c for c in conditions if isinstance(c, Mapping)]


def status_condition_match(condition_type: str, status: str = CONDITION_TRUE) -> Condition:
    """Condition that holds when a ``{type, status}`` entry matches.

    Args:
        condition_type: Condition type, e.g. "Available" or "Ready".
        status: Expected status string. Defaults to "True".
    """

    def _matches(state: ObservedState) -> bool:
        return any(
            c.get("type") == condition_type and c.get("status") == status
            for c in status_conditions(state)
        )

    return Condition(f"{condition_type}={status} status condition", _matches)


def deployment_available() -> Condition:
    """Deployment has an Available condition with status True."""
    return status_condition_match("Available")


def resource_ready() -> Condition:
    """Custom resource has a Ready condition with status True."""
    return status_condition_match("Ready")


def pod_ready() -> Condition:
    """Pod has a Ready condition with status True."""
    return status_condition_match("Ready")


def field_non_empty(path: str) -> Condition:
    """Condition that holds once ``path`` holds a non-empty value."""
    return Condition(f"{path} is set", lambda state: bool(get_field(state, path)))


def secret_ref_issued() -> Condition:
    """Credentials were issued: ``status.secretRef.name`` is non-empty."""
    return field_non_empty("status.secretRef.name")


def resources_found(names: Iterable[str]) -> Condition:
    """Listing contains a resource for every given name.

    Evaluated against a list of resource dicts rather than a single resource.
    """
    expected = frozenset(names)

    def _found(listing: ObservedState) -> bool:
        present = {get_field(item, "metadata.name") for item in listing or []}
        return expected <= present

    return Condition(f"resources {sorted(expected)} exist", _found)


__all__ = [
    "CONDITION_TRUE",
    "Condition",
    "ObservedState",
    "all_of",
    "any_of",
    "deployment_available",
    "field_non_empty",
    "get_field",
    "pod_ready",
    "resource_ready",
    "resources_found",
    "secret_ref_issued",
    "status_condition_match",
    "status_conditions",
]
