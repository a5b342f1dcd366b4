"""Per-test namespaces.

Every e2e test deploys its own database and Temporal cluster, so each one
runs in a fresh namespace named ``<prefix>-<random suffix>``. Deleting the
namespace afterwards garbage-collects everything the test created.

Example:
    namespace = generate_unique_namespace("temporal_postgres")
    create_namespace(core_v1, namespace)
    try:
        ...
    finally:
        delete_namespace(core_v1, namespace)
"""

from __future__ import annotations

import re
import uuid
from typing import TYPE_CHECKING

import structlog
from kubernetes import client as k8s_client
from kubernetes.client.exceptions import ApiException

from temporal_e2e.errors import HarnessError
from temporal_e2e.fixtures.observation import describe_api_error

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api

logger = structlog.get_logger(__name__)

# DNS-1123 label rules
MAX_NAMESPACE_LENGTH = 63
NAMESPACE_PATTERN = re.compile(r"^[a-z0-9]([-a-z0-9]*[a-z0-9])?$")

MANAGED_BY_LABEL = "app.kubernetes.io/managed-by"
MANAGED_BY_VALUE = "temporal-e2e"


class InvalidNamespaceError(HarnessError, ValueError):
    """Raised when a namespace name is invalid for Kubernetes."""

    def __init__(self, namespace: str, reason: str) -> None:
        self.namespace = namespace
        self.reason = reason
        super().__init__(f"Invalid namespace '{namespace}': {reason}")


def validate_namespace(namespace: str) -> bool:
    """Check a namespace name against the DNS-1123 label rules.

    Example:
        >>> validate_namespace("e2e-postgres-1a2b3c4d")
        True
        >>> validate_namespace("E2E_Postgres")
        False
    """
    if not namespace or len(namespace) > MAX_NAMESPACE_LENGTH:
        return False
    return bool(NAMESPACE_PATTERN.match(namespace))


def generate_unique_namespace(prefix: str = "e2e") -> str:
    """Generate a unique, valid namespace name from ``prefix``.

    The prefix is lowercased, underscores become hyphens, other invalid
    characters are dropped and the result is truncated so that the 8-char
    random suffix still fits in 63 characters.

    Raises:
        InvalidNamespaceError: If the generated name is still invalid.
    """
    normalized = re.sub(r"[^a-z0-9-]", "", prefix.lower().replace("_", "-")).strip("-")

    suffix = uuid.uuid4().hex[:8]
    max_prefix_length = MAX_NAMESPACE_LENGTH - len(suffix) - 1
    normalized = normalized[:max_prefix_length].rstrip("-") or "e2e"

    namespace = f"{normalized}-{suffix}"
    if not validate_namespace(namespace):
        raise InvalidNamespaceError(namespace, "does not match K8s naming rules")
    return namespace


def create_namespace(core_v1: CoreV1Api, namespace: str) -> None:
    """Create ``namespace``, labelled as owned by the e2e harness.

    Raises:
        InvalidNamespaceError: If the name is invalid.
        HarnessError: If the API server rejects the request.
    """
    if not validate_namespace(namespace):
        raise InvalidNamespaceError(namespace, "does not match K8s naming rules")

    body = k8s_client.V1Namespace(
        metadata=k8s_client.V1ObjectMeta(
            name=namespace,
            labels={MANAGED_BY_LABEL: MANAGED_BY_VALUE},
        )
    )
    try:
        core_v1.create_namespace(body)
    except ApiException as e:
        msg = f"Failed to create namespace {namespace}: {describe_api_error(e)}"
        raise HarnessError(msg) from e
    logger.info("namespace_created", namespace=namespace)


def delete_namespace(core_v1: CoreV1Api, namespace: str) -> None:
    """Delete ``namespace``; a namespace that is already gone is not an error."""
    try:
        core_v1.delete_namespace(namespace)
    except ApiException as e:
        if e.status == 404:
            return
        msg = f"Failed to delete namespace {namespace}: {describe_api_error(e)}"
        raise HarnessError(msg) from e
    logger.info("namespace_deleted", namespace=namespace)


__all__ = [
    "InvalidNamespaceError",
    "MAX_NAMESPACE_LENGTH",
    "create_namespace",
    "delete_namespace",
    "generate_unique_namespace",
    "validate_namespace",
]
