"""Pytest configuration for harness tests.

Unit tests run against in-memory observation sources and real loopback
sockets; nothing here needs a Kubernetes cluster.
"""

from __future__ import annotations

import socket
import sys
import threading
from collections.abc import Generator
from pathlib import Path
from typing import Any

import pytest

# Allow running from a checkout without installing the package
package_root = Path(__file__).parent.parent.parent
if str(package_root) not in sys.path:
    sys.path.insert(0, str(package_root))

from temporal_e2e.fixtures.observation import ResourceRef  # noqa: E402


def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest markers."""
    config.addinivalue_line(
        "markers",
        "integration: Tests requiring a K8s cluster with the Temporal operator installed",
    )


class FakeObservationSource:
    """In-memory ObservationSource.

    ``get`` replays the states queued for a ref, repeating the last one
    forever. ``list`` ignores the label selector on purpose, so callers'
    in-process filtering is exercised.
    """

    def __init__(self) -> None:
        self._states: dict[ResourceRef, list[Any]] = {}
        self._listings: dict[tuple[str, str, str | None], list[Any]] = {}
        self.get_calls: list[ResourceRef] = []
        self.list_calls: list[dict[str, Any]] = []

    def set_states(self, ref: ResourceRef, *states: Any) -> None:
        self._states[ref] = list(states)

    def set_listing(
        self, api_version: str, kind: str, namespace: str | None, *listings: list[dict[str, Any]]
    ) -> None:
        self._listings[(api_version, kind, namespace)] = list(listings)

    def get(self, ref: ResourceRef) -> dict[str, Any] | None:
        self.get_calls.append(ref)
        queue = self._states.get(ref)
        if not queue:
            return None
        state = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(state, Exception):
            raise state
        return state

    def list(
        self,
        api_version: str,
        kind: str,
        namespace: str | None = None,
        label_selector: str | None = None,
    ) -> list[dict[str, Any]]:
        self.list_calls.append(
            {
                "api_version": api_version,
                "kind": kind,
                "namespace": namespace,
                "label_selector": label_selector,
            }
        )
        queue = self._listings.get((api_version, kind, namespace))
        if not queue:
            return []
        listing = queue.pop(0) if len(queue) > 1 else queue[0]
        return list(listing)


def make_resource(
    name: str,
    namespace: str = "e2e",
    *,
    kind: str = "Pod",
    api_version: str = "v1",
    labels: dict[str, str] | None = None,
    conditions: list[dict[str, str]] | None = None,
    status: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Build a resource dict shaped like an API server response."""
    resource_status = dict(status or {})
    if conditions is not None:
        resource_status["conditions"] = conditions
    return {
        "apiVersion": api_version,
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "labels": labels or {}},
        "status": resource_status,
    }


class EchoServer:
    """TCP server on 127.0.0.1 that echoes everything it receives."""

    def __init__(self) -> None:
        self._listener = socket.create_server(("127.0.0.1", 0))
        self._listener.settimeout(0.1)
        self.port: int = self._listener.getsockname()[1]
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._serve, daemon=True)
        self._thread.start()

    def _serve(self) -> None:
        with self._listener:
            while not self._stop.is_set():
                try:
                    conn, _ = self._listener.accept()
                except socket.timeout:
                    continue
                threading.Thread(target=self._echo, args=(conn,), daemon=True).start()

    @staticmethod
    def _echo(conn: socket.socket) -> None:
        conn.setblocking(True)
        with conn:
            try:
                while data := conn.recv(4096):
                    conn.sendall(data)
            except OSError:
                return

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2.0)


@pytest.fixture
def fake_source() -> FakeObservationSource:
    return FakeObservationSource()


@pytest.fixture
def echo_server() -> Generator[EchoServer, None, None]:
    server = EchoServer()
    yield server
    server.stop()


@pytest.fixture
def closed_port() -> int:
    """A local port nothing listens on."""
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        port: int = s.getsockname()[1]
    return port
