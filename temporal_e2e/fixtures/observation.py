"""Resource observation for readiness polling.

The poller never talks to the cluster itself; it calls an *observation
source* that returns the current JSON form of a resource. The default source
uses the kubernetes dynamic client, so Deployments, Pods and Temporal custom
resources all go through the same code path.

Classes:
    ResourceRef: Identity of one resource (apiVersion, kind, name, namespace)
    ObservationSource: Protocol for get/list access to resource state
    KubernetesObservationSource: ObservationSource backed by the K8s API

Functions:
    observe_resource: Bind a source and a ref into a poller observation call
    observe_listing: Bind a source and a listing query into an observation call

Example:
    source = KubernetesObservationSource(api_client)
    ref = ResourceRef.deployment("postgres", "e2e-test")
    await_condition(observe_resource(source, ref), deployment_available())
"""

from __future__ import annotations

import threading
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any, Protocol

import structlog
import urllib3
from kubernetes import dynamic
from kubernetes.client.exceptions import ApiException
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError
from kubernetes.dynamic.exceptions import NotFoundError as ApiNotFoundError

from temporal_e2e.errors import ObservationError

if TYPE_CHECKING:
    from kubernetes.client import ApiClient

logger = structlog.get_logger(__name__)

TEMPORAL_API_VERSION = "temporal.io/v1beta1"


@dataclass(frozen=True)
class ResourceRef:
    """Identity of a single namespaced resource.

    Attributes:
        api_version: Group/version, e.g. "apps/v1" or "v1".
        kind: Resource kind, e.g. "Deployment".
        name: metadata.name of the resource.
        namespace: metadata.namespace of the resource.
    """

    api_version: str
    kind: str
    name: str
    namespace: str

    @classmethod
    def deployment(cls, name: str, namespace: str) -> ResourceRef:
        return cls("apps/v1", "Deployment", name, namespace)

    @classmethod
    def pod(cls, name: str, namespace: str) -> ResourceRef:
        return cls("v1", "Pod", name, namespace)

    @classmethod
    def temporal_cluster(cls, name: str, namespace: str) -> ResourceRef:
        return cls(TEMPORAL_API_VERSION, "TemporalCluster", name, namespace)

    @classmethod
    def temporal_cluster_client(cls, name: str, namespace: str) -> ResourceRef:
        return cls(TEMPORAL_API_VERSION, "TemporalClusterClient", name, namespace)

    @classmethod
    def from_manifest(cls, manifest: dict[str, Any]) -> ResourceRef:
        """Build a ref from a resource dict (apiVersion, kind, metadata)."""
        metadata = manifest.get("metadata", {})
        return cls(
            manifest["apiVersion"],
            manifest["kind"],
            metadata["name"],
            metadata.get("namespace", "default"),
        )

    def __str__(self) -> str:
        return f"{self.kind} {self.namespace}/{self.name}"


class ObservationSource(Protocol):
    """Read-only access to the current state of cluster resources."""

    def get(self, ref: ResourceRef) -> dict[str, Any] | None:
        """Return the resource as a dict, or None if it does not exist."""
        ...

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        """Return every matching resource as a dict."""
        ...


def describe_api_error(exc: Exception) -> str:
    """Sanitize a Kubernetes client exception for messages and logs.

    Keeps only status code and reason; response bodies and headers may carry
    tokens or secret data.
    """
    status = getattr(exc, "status", None)
    reason = getattr(exc, "reason", None)

    if status is not None and reason is not None:
        return f"{reason} (HTTP {status})"
    if reason is not None:
        return str(reason)
    return type(exc).__name__


class KubernetesObservationSource:
    """ObservationSource backed by the kubernetes dynamic client.

    API discovery runs on first use, not at construction, so creating the
    source never touches the network.
    """

    def __init__(self, api_client: ApiClient) -> None:
        self._api_client = api_client
        self._client: dynamic.DynamicClient | None = None
        self._lock = threading.Lock()

    @property
    def client(self) -> dynamic.DynamicClient:
        """The underlying dynamic client (created lazily)."""
        with self._lock:
            if self._client is None:
                try:
                    self._client = dynamic.DynamicClient(self._api_client)
                except (ApiException, urllib3.exceptions.HTTPError) as e:
                    raise ObservationError("API discovery", describe_api_error(e)) from e
            return self._client

    def _resource(self, api_version: str, kind: str, what: str) -> Any:
        try:
            return self.client.resources.get(api_version=api_version, kind=kind)
        except ResourceNotFoundError as e:
            raise ObservationError(what, f"kind {kind} not served by {api_version}") from e
        except (DynamicApiError, urllib3.exceptions.HTTPError) as e:
            # resources.get() runs API discovery on first use of a group
            raise ObservationError(what, describe_api_error(e)) from e

    def get(self, ref: ResourceRef) -> dict[str, Any] | None:
        api = self._resource(ref.api_version, ref.kind, str(ref))
        try:
            result = api.get(name=ref.name, namespace=ref.namespace)
        except ApiNotFoundError:
            return None
        except (DynamicApiError, urllib3.exceptions.HTTPError) as e:
            raise ObservationError(str(ref), describe_api_error(e)) from e
        state: dict[str, Any] = result.to_dict()
        return state

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        what = f"{kind} list in {namespace or 'all namespaces'}"
        api = self._resource(api_version, kind, what)
        try:
            result = api.get(namespace=namespace, label_selector=label_selector)
        except (DynamicApiError, urllib3.exceptions.HTTPError) as e:
            raise ObservationError(what, describe_api_error(e)) from e
        items: list[dict[str, Any]] = result.to_dict().get("items") or []
        logger.debug("resources_listed", kind=kind, namespace=namespace, count=len(items))
        return items


def observe_resource(
    source: ObservationSource, ref: ResourceRef
) -> Callable[[], dict[str, Any] | None]:
    """Return an observation call that fetches ``ref`` fresh on every tick."""

    def _observe() -> dict[str, Any] | None:
        return source.get(ref)

    return _observe


def observe_listing(
    source: ObservationSource,
    api_version: str,
    kind: str,
    namespace: str | None = None,
    label_selector: str | None = None,
) -> Callable[[], list[dict[str, Any]]]:
    """Return an observation call that re-lists matching resources on every tick."""

    def _observe() -> list[dict[str, Any]]:
        return source.list(api_version, kind, namespace=namespace, label_selector=label_selector)

    return _observe


__all__ = [
    "KubernetesObservationSource",
    "ObservationSource",
    "ResourceRef",
    "TEMPORAL_API_VERSION",
    "describe_api_error",
    "observe_listing",
    "observe_resource",
]
