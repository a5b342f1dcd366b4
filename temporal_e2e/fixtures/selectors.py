"""Label-based endpoint selection.

An EndpointQuery is a set of label requirements: every key must be present
(AND), and its value must be one of the accepted values for that key (OR).
It renders to a set-based Kubernetes label selector for server-side
filtering and is also evaluated in-process, so results do not depend on the
observation source honouring the selector.

When several resources match, the one with the lowest ``metadata.name``
wins. API listing order carries no guarantee, so the tie-break is explicit.

Example:
    query = EndpointQuery.from_labels(
        {"app.kubernetes.io/name": "test", "app.kubernetes.io/component": "frontend"}
    )
    endpoint = select_endpoint(source, query, namespace="e2e-test")
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from typing import Any

import structlog

from temporal_e2e.errors import NotFoundError
from temporal_e2e.fixtures.conditions import get_field
from temporal_e2e.fixtures.observation import ObservationSource

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class EndpointQuery:
    """Label requirements for selecting one workload.

    Attributes:
        required_labels: Label key to the set of accepted values.
    """

    required_labels: Mapping[str, frozenset[str]] = field(default_factory=dict)

    def __post_init__(self) -> None:
        normalized: dict[str, frozenset[str]] = {}
        for key, values in self.required_labels.items():
            accepted = frozenset([values] if isinstance(values, str) else values)
            if not accepted:
                msg = f"label {key!r} needs at least one accepted value"
                raise ValueError(msg)
            normalized[key] = accepted
        object.__setattr__(self, "required_labels", normalized)

    @classmethod
    def from_labels(cls, labels: Mapping[str, str | Iterable[str]]) -> EndpointQuery:
        """Build a query from ``{key: value}`` or ``{key: [values]}``."""
        return cls(dict(labels))  # type: ignore[arg-type]

    def matches(self, labels: Mapping[str, str] | None) -> bool:
        """Check a resource's labels against every requirement."""
        labels = labels or {}
        return all(labels.get(key) in accepted for key, accepted in self.required_labels.items())

    def to_label_selector(self) -> str:
        """Render as a set-based selector, e.g. ``role in (frontend)``."""
        return ",".join(
            f"{key} in ({','.join(sorted(accepted))})"
            for key, accepted in sorted(self.required_labels.items())
        )

    def __str__(self) -> str:
        return self.to_label_selector() or "<everything>"


@dataclass(frozen=True)
class SelectedEndpoint:
    """The workload chosen by select_endpoint.

    Attributes:
        name: metadata.name of the resource.
        namespace: metadata.namespace of the resource.
        labels: metadata.labels at selection time.
        state: Full resource dict as listed.
    """

    name: str
    namespace: str
    labels: Mapping[str, str] = field(default_factory=dict)
    state: Mapping[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_resource(cls, resource: Mapping[str, Any], namespace: str) -> SelectedEndpoint:
        return cls(
            name=get_field(resource, "metadata.name"),
            namespace=get_field(resource, "metadata.namespace") or namespace,
            labels=dict(get_field(resource, "metadata.labels") or {}),
            state=resource,
        )

    def __str__(self) -> str:
        return f"{self.namespace}/{self.name}"


def select_endpoint(
    source: ObservationSource,
    query: EndpointQuery,
    namespace: str,
    *,
    api_version: str = "v1",
    kind: str = "Pod",
) -> SelectedEndpoint:
    """Select exactly one resource matching ``query``.

    Args:
        source: Observation source used to list candidates.
        query: Label requirements.
        namespace: Namespace to search.
        api_version: API version of the candidates. Defaults to "v1".
        kind: Kind of the candidates. Defaults to "Pod".

    Returns:
        The matching resource with the lowest name.

    Raises:
        NotFoundError: If nothing matches the query.
        ObservationError: If the listing fails.
    """
    selector = query.to_label_selector()
    listing = source.list(api_version, kind, namespace=namespace, label_selector=selector or None)
    candidates = [r for r in listing if query.matches(get_field(r, "metadata.labels"))]
    if not candidates:
        raise NotFoundError(kind, str(query), namespace)

    chosen = min(candidates, key=lambda r: get_field(r, "metadata.name") or "")
    endpoint = SelectedEndpoint.from_resource(chosen, namespace)
    logger.info(
        "endpoint_selected",
        kind=kind,
        endpoint=str(endpoint),
        selector=selector,
        candidates=len(candidates),
    )
    return endpoint


__all__ = [
    "EndpointQuery",
    "SelectedEndpoint",
    "select_endpoint",
]
