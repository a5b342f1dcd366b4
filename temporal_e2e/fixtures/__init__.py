"""Readiness polling and tunneling fixtures for Temporal e2e tests.

Utilities:
    await_condition: Poll an observed resource until a Condition holds
    wait_for_condition: Poll a zero-argument check until it returns True
    select_endpoint: Pick exactly one pod matching a label query
    TunnelManager: Port-forward to a pod and hand back a local address
    apply_manifest_dir: Create test dependencies from YAML manifests
    generate_unique_namespace: Create an isolated namespace name for a test

Example:
    from temporal_e2e.fixtures import (
        ResourceRef,
        await_condition,
        deployment_available,
        observe_resource,
    )

    ref = ResourceRef.deployment("postgres", namespace)
    await_condition(observe_resource(source, ref), deployment_available())
"""

from __future__ import annotations

from temporal_e2e.fixtures.conditions import (
    Condition,
    all_of,
    any_of,
    deployment_available,
    field_non_empty,
    pod_ready,
    resource_ready,
    resources_found,
    secret_ref_issued,
    status_condition_match,
)
from temporal_e2e.fixtures.manifests import (
    apply_manifest_dir,
    create_resource,
    load_manifests,
)
from temporal_e2e.fixtures.namespaces import (
    InvalidNamespaceError,
    create_namespace,
    delete_namespace,
    generate_unique_namespace,
    validate_namespace,
)
from temporal_e2e.fixtures.observation import (
    KubernetesObservationSource,
    ObservationSource,
    ResourceRef,
    observe_listing,
    observe_resource,
)
from temporal_e2e.fixtures.polling import (
    PollingConfig,
    PollingTimeoutError,
    await_condition,
    wait_for_condition,
)
from temporal_e2e.fixtures.selectors import (
    EndpointQuery,
    SelectedEndpoint,
    select_endpoint,
)
from temporal_e2e.fixtures.tunnel import (
    PodPortForwarder,
    PortAllocator,
    StreamForwarder,
    TcpForwarder,
    Tunnel,
    TunnelManager,
    TunnelState,
)

__all__ = [
    # Conditions
    "Condition",
    "all_of",
    "any_of",
    "deployment_available",
    "field_non_empty",
    "pod_ready",
    "resource_ready",
    "resources_found",
    "secret_ref_issued",
    "status_condition_match",
    # Manifests
    "apply_manifest_dir",
    "create_resource",
    "load_manifests",
    # Namespaces
    "InvalidNamespaceError",
    "create_namespace",
    "delete_namespace",
    "generate_unique_namespace",
    "validate_namespace",
    # Observation
    "KubernetesObservationSource",
    "ObservationSource",
    "ResourceRef",
    "observe_listing",
    "observe_resource",
    # Polling
    "PollingConfig",
    "PollingTimeoutError",
    "await_condition",
    "wait_for_condition",
    # Selection
    "EndpointQuery",
    "SelectedEndpoint",
    "select_endpoint",
    # Tunnels
    "PodPortForwarder",
    "PortAllocator",
    "StreamForwarder",
    "TcpForwarder",
    "Tunnel",
    "TunnelManager",
    "TunnelState",
]
