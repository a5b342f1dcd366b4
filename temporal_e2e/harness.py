"""Named e2e operations for Temporal clusters.

TemporalHarness composes the fixtures into the steps an e2e test performs:
deploy a database from ``testdata/``, create a TemporalCluster on top of it,
wait for the cluster (or a TemporalClusterClient's credentials) to become
ready, and port-forward to the frontend service.

Every wait uses the deadline and poll interval from HarnessConfig and raises
PollingTimeoutError on expiry. Nothing here retries a failed create or
cleans up after itself; tests delete their namespace instead.

Example:
    harness = TemporalHarness()
    cluster = harness.deploy_and_wait_for_temporal_with_postgres(namespace)
    harness.wait_for_cluster(cluster)
    address, close = harness.forward_port_to_temporal_frontend(cluster)
    try:
        ...  # talk gRPC to address
    finally:
        close()
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Any, TypeVar

import structlog
from kubernetes import client as k8s_client
from kubernetes import dynamic

from temporal_e2e.config import HarnessConfig, load_kubernetes_config
from temporal_e2e.fixtures.conditions import (
    Condition,
    deployment_available,
    pod_ready,
    resource_ready,
    resources_found,
    secret_ref_issued,
)
from temporal_e2e.fixtures.manifests import apply_manifest_dir, create_resource
from temporal_e2e.fixtures.observation import (
    TEMPORAL_API_VERSION,
    KubernetesObservationSource,
    ObservationSource,
    ResourceRef,
    observe_listing,
    observe_resource,
)
from temporal_e2e.fixtures.polling import await_condition
from temporal_e2e.fixtures.selectors import EndpointQuery, select_endpoint
from temporal_e2e.fixtures.tunnel import PodPortForwarder, TunnelManager

if TYPE_CHECKING:
    from kubernetes.client import ApiClient

    from temporal_e2e.logs import LogSink

logger = structlog.get_logger(__name__)

T = TypeVar("T")

FRONTEND_SERVICE_NAME = "frontend"
FRONTEND_GRPC_PORT = 7233
JOB_TTL_SECONDS_AFTER_FINISHED = 300
CERT_MANAGER_MTLS_PROVIDER = "cert-manager"

POSTGRES_PORT = 5432
POSTGRES_PASSWORD_SECRET = "postgres-password"
POSTGRES_PASSWORD_KEY = "PASSWORD"

LABEL_NAME = "app.kubernetes.io/name"
LABEL_COMPONENT = "app.kubernetes.io/component"
LABEL_VERSION = "app.kubernetes.io/version"


def _sql_store(database: str, connect_addr: str) -> dict[str, Any]:
    return {
        "sql": {
            "user": "temporal",
            "pluginName": "postgres",
            "databaseName": database,
            "connectAddr": connect_addr,
            "connectProtocol": "tcp",
        },
        "passwordSecretRef": {
            "name": POSTGRES_PASSWORD_SECRET,
            "key": POSTGRES_PASSWORD_KEY,
        },
    }


def build_temporal_cluster(
    name: str,
    namespace: str,
    version: str,
    connect_addr: str,
    *,
    num_history_shards: int = 1,
    job_ttl_seconds: int = JOB_TTL_SECONDS_AFTER_FINISHED,
) -> dict[str, Any]:
    """Build a TemporalCluster manifest persisting to PostgreSQL.

    mTLS is enabled for both internode and frontend traffic, with
    certificates issued by cert-manager. The default and visibility stores
    use the ``temporal`` and ``temporal_visibility`` databases.

    Args:
        name: Cluster name.
        namespace: Namespace to create the cluster in.
        version: Temporal server version.
        connect_addr: ``host:port`` of the PostgreSQL server.
        num_history_shards: Number of history shards. Defaults to 1.
        job_ttl_seconds: TTL of the operator's setup jobs after they finish.

    Returns:
        The TemporalCluster resource as a dict.
    """
    return {
        "apiVersion": TEMPORAL_API_VERSION,
        "kind": "TemporalCluster",
        "metadata": {"name": name, "namespace": namespace},
        "spec": {
            "numHistoryShards": num_history_shards,
            "jobTtlSecondsAfterFinished": job_ttl_seconds,
            "version": version,
            "mTLS": {
                "provider": CERT_MANAGER_MTLS_PROVIDER,
                "internode": {"enabled": True},
                "frontend": {"enabled": True},
            },
            "persistence": {
                "defaultStore": _sql_store("temporal", connect_addr),
                "visibilityStore": _sql_store("temporal_visibility", connect_addr),
            },
        },
    }


def frontend_query(cluster: dict[str, Any]) -> EndpointQuery:
    """Label query selecting the frontend pods of ``cluster``'s version."""
    return EndpointQuery.from_labels(
        {
            LABEL_NAME: cluster["metadata"]["name"],
            LABEL_COMPONENT: FRONTEND_SERVICE_NAME,
            LABEL_VERSION: cluster["spec"]["version"],
        }
    )


class TemporalHarness:
    """The e2e operations tests call, bound to one cluster connection.

    Every collaborator is created lazily from the config, and each can be
    injected instead, which is how the unit tests run without a cluster.

    Args:
        config: Harness configuration. Uses defaults if not provided.
        api_client: Kubernetes API client.
        source: Observation source for readiness waits.
        dynamic_client: Dynamic client used to create resources.
        tunnels: TunnelManager used for port-forwards.
    """

    def __init__(
        self,
        config: HarnessConfig | None = None,
        *,
        api_client: ApiClient | None = None,
        source: ObservationSource | None = None,
        dynamic_client: dynamic.DynamicClient | None = None,
        tunnels: TunnelManager | None = None,
    ) -> None:
        self.config = config or HarnessConfig()
        self._api_client = api_client
        self._source = source
        self._dynamic_client = dynamic_client
        self._tunnels = tunnels

    @property
    def api_client(self) -> ApiClient:
        if self._api_client is None:
            self._api_client = load_kubernetes_config(self.config)
        return self._api_client

    @property
    def source(self) -> ObservationSource:
        if self._source is None:
            self._source = KubernetesObservationSource(self.api_client)
        return self._source

    @property
    def dynamic_client(self) -> dynamic.DynamicClient:
        if self._dynamic_client is None:
            if isinstance(self.source, KubernetesObservationSource):
                self._dynamic_client = self.source.client
            else:
                self._dynamic_client = dynamic.DynamicClient(self.api_client)
        return self._dynamic_client

    @property
    def tunnels(self) -> TunnelManager:
        if self._tunnels is None:
            self._tunnels = TunnelManager(
                PodPortForwarder(k8s_client.CoreV1Api(self.api_client)),
                ready_timeout=self.config.tunnel_ready_timeout,
            )
        return self._tunnels

    # ------------------------------------------------------------------
    # Waits
    # ------------------------------------------------------------------

    def wait(self, observe: Callable[[], T], condition: Condition) -> T:
        """Poll ``observe`` until ``condition`` holds, with the configured deadline."""
        return await_condition(observe, condition, self.config.polling(condition.description))

    def wait_for_resource(self, ref: ResourceRef, condition: Condition) -> dict[str, Any]:
        """Wait until ``condition`` holds for the resource ``ref``."""
        log = logger.bind(resource=str(ref), condition=condition.description)
        log.info("waiting_for_resource")
        described = Condition(f"{ref}: {condition.description}", condition.predicate)
        state: dict[str, Any] = self.wait(observe_resource(self.source, ref), described)
        log.info("resource_condition_met")
        return state

    def wait_for_deployment(self, name: str, namespace: str) -> dict[str, Any]:
        """Wait for a Deployment to exist, then to report Available.

        Returns:
            The available Deployment.
        """
        listing = observe_listing(self.source, "apps/v1", "Deployment", namespace=namespace)
        self.wait(listing, resources_found([name]))
        return self.wait_for_resource(ResourceRef.deployment(name, namespace), deployment_available())

    def wait_for_pod_ready(self, name: str, namespace: str) -> dict[str, Any]:
        return self.wait_for_resource(ResourceRef.pod(name, namespace), pod_ready())

    def wait_for_cluster(self, cluster: dict[str, Any]) -> dict[str, Any]:
        """Wait for the TemporalCluster's components to be up (Ready condition)."""
        return self.wait_for_resource(ResourceRef.from_manifest(cluster), resource_ready())

    def wait_for_cluster_client(self, cluster_client: dict[str, Any]) -> dict[str, Any]:
        """Wait for a TemporalClusterClient's credentials secret to be issued."""
        return self.wait_for_resource(ResourceRef.from_manifest(cluster_client), secret_ref_issued())

    # ------------------------------------------------------------------
    # Deployments
    # ------------------------------------------------------------------

    def deploy_test_manifest(self, name: str, namespace: str) -> list[dict[str, Any]]:
        """Create the manifests in ``testdata/<name>`` in ``namespace``."""
        return apply_manifest_dir(self.dynamic_client, self.config.testdata_dir / name, namespace)

    def deploy_and_wait_for(self, name: str, namespace: str) -> dict[str, Any]:
        """Deploy ``testdata/<name>`` and wait for Deployment ``name`` to be available."""
        self.deploy_test_manifest(name, namespace)
        return self.wait_for_deployment(name, namespace)

    def deploy_and_wait_for_postgres(self, namespace: str) -> dict[str, Any]:
        return self.deploy_and_wait_for("postgres", namespace)

    def deploy_and_wait_for_mysql(self, namespace: str) -> dict[str, Any]:
        return self.deploy_and_wait_for("mysql", namespace)

    def deploy_and_wait_for_cassandra(self, namespace: str) -> dict[str, Any]:
        """Deploy the cassandra StatefulSet and wait for its first pod to be Ready."""
        name = "cassandra"
        self.deploy_test_manifest(name, namespace)
        return self.wait_for_pod_ready(f"{name}-0", namespace)

    def deploy_and_wait_for_temporal_with_postgres(
        self,
        namespace: str,
        version: str | None = None,
        name: str = "test",
    ) -> dict[str, Any]:
        """Deploy PostgreSQL, wait for it, then create a TemporalCluster using it.

        The cluster itself is only created; call ``wait_for_cluster`` to wait
        for it to become ready.

        Returns:
            The created TemporalCluster.
        """
        self.deploy_and_wait_for_postgres(namespace)

        connect_addr = f"postgres.{namespace}:{POSTGRES_PORT}"
        cluster = build_temporal_cluster(
            name,
            namespace,
            version or self.config.temporal_version,
            connect_addr,
        )
        return create_resource(self.dynamic_client, cluster, namespace)

    # ------------------------------------------------------------------
    # Network access
    # ------------------------------------------------------------------

    def forward_port_to_temporal_frontend(
        self,
        cluster: dict[str, Any],
        log_sink: LogSink | None = None,
    ) -> tuple[str, Callable[[], None]]:
        """Port-forward a local port to one of the cluster's frontend pods.

        Returns:
            ``("localhost:<port>", close)``; the forward accepts connections
            when this returns and stops when ``close`` is called.

        Raises:
            NotFoundError: If no frontend pod matches the cluster and version.
            TunnelError: If the forward cannot be established.
        """
        namespace = cluster["metadata"]["namespace"]
        endpoint = select_endpoint(self.source, frontend_query(cluster), namespace)
        address, close = self.tunnels.forward(endpoint, FRONTEND_GRPC_PORT, log_sink)
        logger.info("port_forward_ready", address=address, pod=str(endpoint))
        return address, close


__all__ = [
    "FRONTEND_GRPC_PORT",
    "FRONTEND_SERVICE_NAME",
    "TemporalHarness",
    "build_temporal_cluster",
    "frontend_query",
]
