"""Harness configuration.

Settings are read from environment variables when the config is created, so
a CI job can tune timeouts or point at a different cluster without code
changes.

Environment Variables:
    KUBECONFIG: Path to a kubeconfig file (default: in-cluster, then ~/.kube/config)
    E2E_KUBE_CONTEXT: Kubeconfig context to use
    E2E_WAIT_TIMEOUT: Default wait deadline in seconds (default: 600)
    E2E_POLL_INTERVAL: Default poll interval in seconds (default: 5)
    E2E_TUNNEL_READY_TIMEOUT: Max seconds to wait for a port-forward (default: 30)
    TEMPORAL_VERSION: Temporal server version under test (default: 1.23.0)
    E2E_TESTDATA_DIR: Directory holding test manifests (default: packaged testdata)

Example:
    from temporal_e2e.config import HarnessConfig, load_kubernetes_config

    config = HarnessConfig(wait_timeout=120.0)
    api_client = load_kubernetes_config(config)
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import TYPE_CHECKING

import structlog
from pydantic import BaseModel, ConfigDict, Field

from temporal_e2e.fixtures.polling import PollingConfig

if TYPE_CHECKING:
    from kubernetes.client import ApiClient

logger = structlog.get_logger(__name__)

DEFAULT_TESTDATA_DIR = Path(__file__).parent / "testdata"


def _optional_env(name: str) -> str | None:
    return os.environ.get(name) or None


def _kubeconfig_from_env() -> Path | None:
    value = _optional_env("KUBECONFIG")
    return Path(value) if value else None


class HarnessConfig(BaseModel):
    """Configuration for the e2e harness.

    Attributes:
        kubeconfig: Optional path to a kubeconfig file.
        context: Optional kubeconfig context.
        wait_timeout: Default deadline for readiness waits, in seconds.
        poll_interval: Default re-check interval for readiness waits, in seconds.
        tunnel_ready_timeout: How long to wait for a port-forward to accept
            connections, in seconds.
        temporal_version: Temporal server version deployed by the tests.
        testdata_dir: Directory with one sub-directory of manifests per
            test dependency (postgres, mysql, cassandra).
    """

    model_config = ConfigDict(frozen=True)

    kubeconfig: Path | None = Field(
        default_factory=_kubeconfig_from_env,
    )
    context: str | None = Field(
        default_factory=lambda: _optional_env("E2E_KUBE_CONTEXT"),
    )
    wait_timeout: float = Field(
        default_factory=lambda: float(os.environ.get("E2E_WAIT_TIMEOUT", "600")),
        gt=0.0,
    )
    poll_interval: float = Field(
        default_factory=lambda: float(os.environ.get("E2E_POLL_INTERVAL", "5")),
        ge=0.1,
    )
    tunnel_ready_timeout: float = Field(
        default_factory=lambda: float(os.environ.get("E2E_TUNNEL_READY_TIMEOUT", "30")),
        gt=0.0,
    )
    temporal_version: str = Field(
        default_factory=lambda: os.environ.get("TEMPORAL_VERSION", "1.23.0"),
        min_length=1,
    )
    testdata_dir: Path = Field(
        default_factory=lambda: Path(os.environ.get("E2E_TESTDATA_DIR", str(DEFAULT_TESTDATA_DIR))),
    )

    def polling(self, description: str) -> PollingConfig:
        """Build the PollingConfig for one wait.

        The interval is clamped to the timeout so short test timeouts still
        get more than one check.
        """
        return PollingConfig(
            timeout=self.wait_timeout,
            interval=min(self.poll_interval, self.wait_timeout),
            description=description,
        )


def load_kubernetes_config(config: HarnessConfig | None = None) -> ApiClient:
    """Load Kubernetes client configuration and return an API client.

    An explicit kubeconfig wins. Otherwise the in-cluster service account is
    tried first (tests running as a Job), then the default kubeconfig.

    Args:
        config: Harness configuration. Uses defaults if not provided.

    Returns:
        A configured kubernetes ApiClient.
    """
    from kubernetes import client as k8s_client
    from kubernetes import config as k8s_config

    if config is None:
        config = HarnessConfig()

    if config.kubeconfig:
        k8s_config.load_kube_config(config_file=str(config.kubeconfig), context=config.context)
        source = "kubeconfig"
    else:
        try:
            k8s_config.load_incluster_config()
            source = "in-cluster"
        except k8s_config.ConfigException:
            k8s_config.load_kube_config(context=config.context)
            source = "default-kubeconfig"

    logger.debug("kubernetes_config_loaded", source=source, context=config.context)
    return k8s_client.ApiClient()


__all__ = [
    "DEFAULT_TESTDATA_DIR",
    "HarnessConfig",
    "load_kubernetes_config",
]
