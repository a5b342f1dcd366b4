"""Port-forward tunnels from the test process to workloads in the cluster.

A tunnel binds a local port and relays every connection made to it to a
remote workload port. The forward runs in a background thread; the caller
of ``TunnelManager.open`` is blocked until that thread reports the local
listener is accepting connections, and gets back a Tunnel whose ``close``
stops the forward.

Lifecycle:
    STARTING -> READY      the transport called ready() (exactly once)
    STARTING -> FAILED     the transport raised or exited before ready();
                           open() raises TunnelError
    READY    -> CLOSED     the caller closed the tunnel
    READY    -> FAILED     the forward died on its own; see Tunnel.check()

Classes:
    PortAllocator: Hands out free local ports, never twice while held
    StreamForwarder: Local listener relaying connections to a remote stream
    PodPortForwarder: StreamForwarder over the K8s pod port-forward API
    TcpForwarder: StreamForwarder to a directly reachable host (e.g. a pod IP)
    Tunnel: One open forward and its close handle
    TunnelManager: Opens tunnels with a given transport

Example:
    manager = TunnelManager(PodPortForwarder(CoreV1Api(api_client)))
    with manager.open(endpoint, 7233) as tunnel:
        client = connect(tunnel.address)
"""

from __future__ import annotations

import select
import socket
import threading
import time
from collections.abc import Callable
from concurrent.futures import Future
from concurrent.futures import TimeoutError as FutureTimeoutError
from enum import Enum
from typing import TYPE_CHECKING, Any, Protocol

import structlog
from kubernetes.client.exceptions import ApiException
from kubernetes.stream import portforward

from temporal_e2e.errors import TunnelError
from temporal_e2e.fixtures.observation import describe_api_error
from temporal_e2e.logs import LogSink, StructlogSink

if TYPE_CHECKING:
    from kubernetes.client import CoreV1Api

    from temporal_e2e.fixtures.selectors import SelectedEndpoint

logger = structlog.get_logger(__name__)

LOCALHOST = "127.0.0.1"

# How often blocking loops wake up to check the stop signal
_STOP_POLL_INTERVAL = 0.1
_RELAY_BUFFER_SIZE = 64 * 1024
_MAX_PORT_ATTEMPTS = 32


class TunnelState(str, Enum):
    """Lifecycle state of a Tunnel."""

    STARTING = "starting"
    READY = "ready"
    CLOSED = "closed"
    FAILED = "failed"


class PortAllocator:
    """Reserves free local ports for tunnels.

    The OS picks a free ephemeral port; the allocator additionally refuses
    ports already held by another tunnel in this process, so two tunnels
    opened concurrently never race for the same port.
    """

    def __init__(self, host: str = LOCALHOST) -> None:
        self._host = host
        self._lock = threading.Lock()
        self._reserved: set[int] = set()

    @property
    def reserved(self) -> frozenset[int]:
        with self._lock:
            return frozenset(self._reserved)

    def acquire(self) -> int:
        """Reserve and return a free local port.

        Raises:
            TunnelError: If no unreserved port could be found.
        """
        with self._lock:
            for _ in range(_MAX_PORT_ATTEMPTS):
                with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
                    s.bind((self._host, 0))
                    port: int = s.getsockname()[1]
                if port not in self._reserved:
                    self._reserved.add(port)
                    return port
        raise TunnelError(self._host, "could not reserve a free local port")

    def release(self, port: int) -> None:
        with self._lock:
            self._reserved.discard(port)


_default_ports = PortAllocator()


class ForwardTransport(Protocol):
    """Establishes one forward and keeps it running until stopped.

    ``serve`` must call ``ready()`` once the local listener accepts
    connections, return after ``stop`` is set, and raise if the forward
    cannot be established.
    """

    def serve(
        self,
        local_port: int,
        endpoint: SelectedEndpoint,
        remote_port: int,
        log_sink: LogSink,
        ready: Callable[[], None],
        stop: threading.Event,
    ) -> None: ...


class StreamForwarder:
    """Listens on a local port and relays each connection to a remote stream.

    Subclasses provide ``open_remote``, which returns a connected socket-like
    stream to the remote port. Before reporting ready the forwarder probes the
    remote once, so an unreachable target fails ``open`` instead of the first
    client connection.
    """

    def open_remote(self, endpoint: SelectedEndpoint, remote_port: int) -> socket.socket:
        raise NotImplementedError

    def probe(self, endpoint: SelectedEndpoint, remote_port: int) -> None:
        """Check the remote port is reachable; raise if it is not."""
        self.open_remote(endpoint, remote_port).close()

    def serve(
        self,
        local_port: int,
        endpoint: SelectedEndpoint,
        remote_port: int,
        log_sink: LogSink,
        ready: Callable[[], None],
        stop: threading.Event,
    ) -> None:
        self.probe(endpoint, remote_port)

        relays: list[threading.Thread] = []
        with socket.create_server((LOCALHOST, local_port)) as listener:
            listener.settimeout(_STOP_POLL_INTERVAL)
            log_sink.write(f"Forwarding from {LOCALHOST}:{local_port} -> {remote_port}\n")
            ready()

            while not stop.is_set():
                try:
                    conn, _ = listener.accept()
                except socket.timeout:
                    continue
                log_sink.write(f"Handling connection for {remote_port}\n")
                relay = threading.Thread(
                    target=self._relay,
                    args=(conn, endpoint, remote_port, log_sink, stop),
                    name=f"port-forward relay {endpoint}:{remote_port}",
                    daemon=True,
                )
                relay.start()
                relays.append(relay)
                relays = [r for r in relays if r.is_alive()]

        for relay in relays:
            relay.join(timeout=1.0)
        log_sink.write(f"Stopped forwarding {LOCALHOST}:{local_port} -> {remote_port}\n")

    def _relay(
        self,
        conn: socket.socket,
        endpoint: SelectedEndpoint,
        remote_port: int,
        log_sink: LogSink,
        stop: threading.Event,
    ) -> None:
        try:
            remote = self.open_remote(endpoint, remote_port)
        except (OSError, TunnelError) as e:
            log_sink.write(f"error creating stream for port {remote_port}: {e}\n")
            conn.close()
            return

        with conn, remote:
            conn.setblocking(True)
            peers = {conn: remote, remote: conn}
            # Each direction ends on its own EOF; the relay ends when both have
            reading = [conn, remote]
            try:
                while reading and not stop.is_set():
                    readable, _, _ = select.select(reading, [], [], _STOP_POLL_INTERVAL)
                    for sock in readable:
                        data = sock.recv(_RELAY_BUFFER_SIZE)
                        if data:
                            peers[sock].sendall(data)
                            continue
                        reading.remove(sock)
                        peers[sock].shutdown(socket.SHUT_WR)
            except OSError as e:
                log_sink.write(f"error copying data for port {remote_port}: {e}\n")


class TcpForwarder(StreamForwarder):
    """Relays to a host reachable over plain TCP.

    With no explicit host the endpoint's pod IP (``status.podIP``) is used,
    which works when the tests themselves run inside the cluster.
    """

    def __init__(self, host: str | None = None, connect_timeout: float = 5.0) -> None:
        self._host = host
        self._connect_timeout = connect_timeout

    def _remote_host(self, endpoint: SelectedEndpoint) -> str:
        if self._host:
            return self._host
        pod_ip = (endpoint.state.get("status") or {}).get("podIP")
        if not pod_ip:
            raise TunnelError(str(endpoint), "endpoint has no pod IP yet")
        return str(pod_ip)

    def open_remote(self, endpoint: SelectedEndpoint, remote_port: int) -> socket.socket:
        sock = socket.create_connection(
            (self._remote_host(endpoint), remote_port), timeout=self._connect_timeout
        )
        sock.settimeout(None)
        return sock


class PodPortForwarder(StreamForwarder):
    """Relays to a pod port through the Kubernetes port-forward API.

    Each local connection gets its own port-forward stream, as kubectl does.
    The probe waits briefly for the kubelet to report a dial error, since
    that arrives asynchronously on the stream's error channel.
    """

    def __init__(self, core_v1: CoreV1Api, probe_grace: float = 0.5) -> None:
        self._core_v1 = core_v1
        self._probe_grace = probe_grace

    def _connect(self, endpoint: SelectedEndpoint, remote_port: int) -> Any:
        try:
            return portforward(
                self._core_v1.connect_get_namespaced_pod_portforward,
                endpoint.name,
                endpoint.namespace,
                ports=str(remote_port),
            )
        except ApiException as e:
            raise TunnelError(f"{endpoint}:{remote_port}", describe_api_error(e)) from e

    def open_remote(self, endpoint: SelectedEndpoint, remote_port: int) -> socket.socket:
        forward = self._connect(endpoint, remote_port)
        try:
            sock: socket.socket = forward.socket(remote_port)
            sock.setblocking(True)
        except Exception:
            forward.close()
            raise
        return sock

    def probe(self, endpoint: SelectedEndpoint, remote_port: int) -> None:
        forward = self._connect(endpoint, remote_port)
        try:
            forward.socket(remote_port)
            deadline = time.monotonic() + self._probe_grace
            while time.monotonic() < deadline:
                error = forward.error(remote_port)
                if error:
                    raise TunnelError(f"{endpoint}:{remote_port}", str(error).strip())
                time.sleep(_STOP_POLL_INTERVAL / 2)
        finally:
            # Closing the local port sockets ends the forward's websocket
            forward.close()


class Tunnel:
    """One open port-forward, owned by the caller that opened it.

    Attributes:
        local_port: Local port the forward listens on.
        endpoint: The workload being forwarded to.
        remote_port: Port on the workload.
        state: Current TunnelState.
        error: The TunnelError that failed the forward, if any.
    """

    def __init__(
        self,
        local_port: int,
        endpoint: SelectedEndpoint,
        remote_port: int,
        grace_period: float = 5.0,
    ) -> None:
        self.local_port = local_port
        self.endpoint = endpoint
        self.remote_port = remote_port
        self.state = TunnelState.STARTING
        self.error: TunnelError | None = None
        self._grace_period = grace_period
        self._ready: Future[None] = Future()
        self._stop = threading.Event()
        self._lock = threading.Lock()
        self._closing = False
        self._thread: threading.Thread | None = None

    @property
    def address(self) -> str:
        """``host:port`` a client should connect to."""
        return f"localhost:{self.local_port}"

    @property
    def target(self) -> str:
        return f"{self.endpoint}:{self.remote_port}"

    def check(self) -> None:
        """Raise the TunnelError that failed this tunnel, if any."""
        if self.error is not None:
            raise self.error

    def start(
        self,
        transport: ForwardTransport,
        log_sink: LogSink,
        on_exit: Callable[[], None],
    ) -> None:
        """Run ``transport`` in a daemon thread owned by this tunnel.

        ``on_exit`` runs in that thread after the forward stops and before
        its outcome is recorded.
        """
        self._thread = threading.Thread(
            target=self._run,
            args=(transport, log_sink, on_exit),
            name=f"port-forward {self.target}",
            daemon=True,
        )
        self._thread.start()

    def wait_ready(self, timeout: float) -> None:
        """Block until the forward accepts connections.

        Raises:
            TunnelError: If the forward failed, or is not ready within
                ``timeout``. The tunnel is closed in both cases.
        """
        try:
            self._ready.result(timeout=timeout)
        except FutureTimeoutError:
            error = TunnelError(self.target, f"not ready after {timeout:.1f}s")
            self._fail(error)
            self.close()
            raise error from None
        except TunnelError:
            self.close()
            raise

    def close(self) -> None:
        """Stop the forward and wait for it to release the local port.

        Safe to call more than once; only the first call has an effect.
        """
        with self._lock:
            if self._closing:
                return
            self._closing = True
            if self.state is not TunnelState.FAILED:
                self.state = TunnelState.CLOSED

        self._stop.set()
        if self._thread is not None and self._thread is not threading.current_thread():
            self._thread.join(timeout=self._grace_period)
            if self._thread.is_alive():
                logger.warning(
                    "tunnel_stop_timeout", target=self.target, grace_period=self._grace_period
                )
        logger.info("tunnel_closed", target=self.target, local_port=self.local_port)

    def _mark_ready(self) -> None:
        with self._lock:
            if self.state is not TunnelState.STARTING:
                return
            self.state = TunnelState.READY
            self._ready.set_result(None)

    def _fail(self, error: TunnelError) -> None:
        with self._lock:
            self.error = error
            if not self._closing:
                self.state = TunnelState.FAILED
            if not self._ready.done():
                self._ready.set_exception(error)

    def _run(
        self,
        transport: ForwardTransport,
        log_sink: LogSink,
        on_exit: Callable[[], None],
    ) -> None:
        exc: Exception | None = None
        try:
            transport.serve(
                self.local_port,
                self.endpoint,
                self.remote_port,
                log_sink,
                self._mark_ready,
                self._stop,
            )
        except Exception as e:  # noqa: BLE001 - handed to the tunnel owner
            exc = e
            log_sink.write(f"error: {e}\n")
        finally:
            on_exit()
            self._finish(exc)

    def _finish(self, exc: Exception | None) -> None:
        """Record how the forward thread ended."""
        if exc is None:
            if self._stop.is_set():
                with self._lock:
                    if not self._ready.done():
                        self._ready.set_exception(
                            TunnelError(self.target, "stopped before becoming ready")
                        )
                return
            reason = (
                "forward exited before becoming ready"
                if self.state is TunnelState.STARTING
                else "forward exited unexpectedly"
            )
            error = TunnelError(self.target, reason)
        elif isinstance(exc, TunnelError):
            error = exc
        else:
            error = TunnelError(self.target, str(exc) or type(exc).__name__)
            error.__cause__ = exc

        logger.error("tunnel_failed", target=self.target, error=str(error))
        self._fail(error)

    def __enter__(self) -> Tunnel:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"Tunnel({self.address} -> {self.target}, {self.state.value})"


class TunnelManager:
    """Opens port-forward tunnels with a given transport.

    Args:
        transport: Transport that runs the forward, e.g. PodPortForwarder.
        ready_timeout: Max seconds ``open`` waits for the forward to be ready.
        grace_period: Max seconds ``Tunnel.close`` waits for the forward to stop.
        ports: Port allocator. Defaults to the process-wide allocator.
    """

    def __init__(
        self,
        transport: ForwardTransport,
        *,
        ready_timeout: float = 30.0,
        grace_period: float = 5.0,
        ports: PortAllocator | None = None,
    ) -> None:
        self._transport = transport
        self._ready_timeout = ready_timeout
        self._grace_period = grace_period
        self._ports = ports or _default_ports

    def open(
        self,
        endpoint: SelectedEndpoint,
        remote_port: int,
        log_sink: LogSink | None = None,
    ) -> Tunnel:
        """Start a forward to ``endpoint:remote_port`` and wait until it is ready.

        Args:
            endpoint: Workload to forward to.
            remote_port: Port on the workload.
            log_sink: Receives progress and error lines from the transport.
                Defaults to a StructlogSink.

        Returns:
            A READY tunnel. The caller must close it.

        Raises:
            TunnelError: If the forward fails or is not ready within
                ``ready_timeout``.
        """
        tunnel = Tunnel(self._ports.acquire(), endpoint, remote_port, self._grace_period)
        sink = log_sink or StructlogSink(tunnel.target)
        log = logger.bind(target=tunnel.target, local_port=tunnel.local_port)

        log.info("tunnel_starting")
        tunnel.start(self._transport, sink, on_exit=lambda: self._ports.release(tunnel.local_port))
        tunnel.wait_ready(self._ready_timeout)

        log.info("tunnel_ready", address=tunnel.address)
        return tunnel

    def forward(
        self,
        endpoint: SelectedEndpoint,
        remote_port: int,
        log_sink: LogSink | None = None,
    ) -> tuple[str, Callable[[], None]]:
        """Like ``open``, but return ``(address, close)``."""
        tunnel = self.open(endpoint, remote_port, log_sink)
        return tunnel.address, tunnel.close


__all__ = [
    "ForwardTransport",
    "LOCALHOST",
    "PodPortForwarder",
    "PortAllocator",
    "StreamForwarder",
    "TcpForwarder",
    "Tunnel",
    "TunnelManager",
    "TunnelState",
]
