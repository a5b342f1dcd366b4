"""Test manifest loading and submission.

Test dependencies (databases the Temporal cluster persists to) ship as plain
YAML manifests under ``testdata/<name>/``. ``apply_manifest_dir`` creates all
of them in the test namespace, overriding whatever namespace the files name.
This is a one-shot create: nothing is updated, retried or cleaned up here;
deleting the test namespace removes everything.

Functions:
    load_manifests: Parse and validate every YAML document in a directory
    create_resource: Create one resource dict in a namespace
    apply_manifest_dir: load_manifests + create_resource for each document

Example:
    created = apply_manifest_dir(source.client, Path("testdata/postgres"), "e2e-test")
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
import urllib3
import yaml
from kubernetes.dynamic.exceptions import DynamicApiError, ResourceNotFoundError

from temporal_e2e.errors import ManifestError
from temporal_e2e.fixtures.observation import describe_api_error

if TYPE_CHECKING:
    from kubernetes.dynamic import DynamicClient

logger = structlog.get_logger(__name__)


def _parse_manifest_file(file_path: Path) -> list[dict[str, Any]]:
    """Parse a single YAML manifest file into resource dictionaries.

    Args:
        file_path: Path to the YAML manifest file.

    Returns:
        List of non-empty resource dictionaries from the file.

    Raises:
        ManifestError: If the file is not valid YAML or a document is not a
            K8s resource.
    """
    content = file_path.read_text()
    if not content.strip():
        return []

    try:
        docs = list(yaml.safe_load_all(content))
    except yaml.YAMLError as e:
        raise ManifestError(str(file_path), f"invalid YAML: {e}") from e

    validated_docs = []
    for doc in docs:
        if doc is None:
            continue
        if not isinstance(doc, dict):
            raise ManifestError(str(file_path), f"expected mapping, got {type(doc).__name__}")
        if "apiVersion" not in doc:
            raise ManifestError(str(file_path), "missing apiVersion")
        if "kind" not in doc:
            raise ManifestError(str(file_path), "missing kind")
        if not doc.get("metadata", {}).get("name"):
            raise ManifestError(str(file_path), f"{doc['kind']} without metadata.name")
        validated_docs.append(doc)
    return validated_docs


def load_manifests(path: Path, pattern: str = "*") -> list[dict[str, Any]]:
    """Load every resource from the files in ``path`` matching ``pattern``.

    Files are read in name order so dependencies (e.g. a Secret in
    ``00-secret.yaml``) can be created before the workloads using them.

    Raises:
        ManifestError: If the directory does not exist or a file is invalid.
    """
    if not path.is_dir():
        raise ManifestError(str(path), "manifest directory does not exist")

    resources: list[dict[str, Any]] = []
    for file_path in sorted(p for p in path.glob(pattern) if p.is_file()):
        resources.extend(_parse_manifest_file(file_path))
    return resources


def create_resource(
    client: DynamicClient,
    manifest: dict[str, Any],
    namespace: str,
) -> dict[str, Any]:
    """Create one resource in ``namespace``.

    Namespaced resources get ``metadata.namespace`` overwritten with
    ``namespace``; cluster-scoped ones are created as-is.

    Returns:
        The created resource as returned by the API server.

    Raises:
        ManifestError: If the kind is unknown or the API server rejects it.
    """
    kind = manifest["kind"]
    name = manifest["metadata"]["name"]
    what = f"{kind}/{name}"
    try:
        api = client.resources.get(api_version=manifest["apiVersion"], kind=kind)
    except ResourceNotFoundError as e:
        raise ManifestError(what, f"kind not served by {manifest['apiVersion']}") from e
    except (DynamicApiError, urllib3.exceptions.HTTPError) as e:
        raise ManifestError(what, f"API discovery failed: {describe_api_error(e)}") from e

    body = dict(manifest)
    body["metadata"] = dict(manifest["metadata"])
    target_namespace: str | None = None
    if api.namespaced:
        body["metadata"]["namespace"] = namespace
        target_namespace = namespace

    try:
        created = api.create(body=body, namespace=target_namespace)
    except (DynamicApiError, urllib3.exceptions.HTTPError) as e:
        raise ManifestError(what, describe_api_error(e)) from e

    logger.info("resource_created", kind=kind, name=name, namespace=target_namespace)
    result: dict[str, Any] = created.to_dict()
    return result


def apply_manifest_dir(
    client: DynamicClient,
    path: Path,
    namespace: str,
    pattern: str = "*",
) -> list[dict[str, Any]]:
    """Create every resource defined under ``path`` in ``namespace``.

    Args:
        client: Dynamic client for the target cluster.
        path: Directory holding YAML manifests.
        namespace: Namespace to create namespaced resources in.
        pattern: Glob selecting the files to apply. Defaults to "*".

    Returns:
        The created resources, in creation order.

    Raises:
        ManifestError: If a file is invalid or a resource cannot be created.
    """
    manifests = load_manifests(path, pattern)
    logger.info("applying_manifests", path=str(path), namespace=namespace, count=len(manifests))
    return [create_resource(client, manifest, namespace) for manifest in manifests]


__all__ = [
    "apply_manifest_dir",
    "create_resource",
    "load_manifests",
]
