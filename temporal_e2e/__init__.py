"""End-to-end test harness for Temporal clusters on Kubernetes.

Deploys test dependencies and Temporal clusters into an ephemeral cluster,
waits for them to become ready and port-forwards to the Temporal frontend so
tests can talk gRPC to it directly.

Components:
    fixtures: Polling engine, readiness conditions, endpoint selection,
        port-forward tunnels, manifests and namespaces
    harness: TemporalHarness, the named operations tests call
    config: HarnessConfig and Kubernetes client loading
    logs: structlog configuration and the tunnel log sink

Usage:
    from temporal_e2e.harness import TemporalHarness

    harness = TemporalHarness()
    cluster = harness.deploy_and_wait_for_temporal_with_postgres(namespace, "1.23.0")
    harness.wait_for_cluster(cluster)
    address, close = harness.forward_port_to_temporal_frontend(cluster)
"""

from __future__ import annotations

__version__ = "0.1.0"
