"""Assembly and lifecycle of a runnable, shutdownable set of WSGI servers.

A service owns a primary server, optional extra servers and an optional admin
application. The admin application is either mounted under a path prefix of
the primary server or served on a standalone server of its own.
"""

from __future__ import annotations

import contextlib
import os
import signal
import socket
import socketserver
import threading
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Iterable, Optional, Sequence
from wsgiref.simple_server import WSGIRequestHandler, WSGIServer

from opskit.chain import WSGIApp
from opskit.mounting import mount_prefix

DEFAULT_SHUTDOWN_TIMEOUT = 30.0
DEFAULT_IDLE_TIMEOUT = 60.0
DEFAULT_ADMIN_MOUNT_PREFIX = "/-/"

_POLL_INTERVAL = 0.05

StartHook = Callable[[threading.Event], Any]
ShutdownHook = Callable[[Optional[float]], Any]
ServeErrorObserver = Callable[[str, BaseException, bool], Any]


class ServiceError(Exception):
    """A runtime failure of a service; ``errors`` holds joined causes, if any."""

    def __init__(self, message: str, errors: Iterable[BaseException] = ()) -> None:
        super().__init__(message)
        self.errors = tuple(errors)


class AlreadyStartedError(ServiceError):
    """Start or run was called more than once."""

    def __init__(self, message: str = "service already started") -> None:
        super().__init__(message)


class NotStartedError(ServiceError):
    """Wait was called before start."""

    def __init__(self, message: str = "service not started") -> None:
        super().__init__(message)


class StopRequestedError(ServiceError):
    """The stop event given to run was set."""

    def __init__(self, message: str = "stop requested") -> None:
        super().__init__(message)


def default_signals() -> list[signal.Signals]:
    """Signals that run listens for by default: SIGINT, plus SIGTERM on POSIX."""
    if os.name == "posix":
        return [signal.SIGINT, signal.SIGTERM]
    return [signal.SIGINT]


@dataclass
class HTTPServerSpec:
    """Describes one managed server.

    An empty name is replaced by a default (primary, extra#N or admin).
    ``critical`` defaults to True: an unexpected serve failure then shuts the
    whole service down; otherwise it is only reported to ``on_serve_error``.
    """

    addr: str = ""
    app: Optional[WSGIApp] = None
    name: str = ""
    critical: Optional[bool] = None


@dataclass
class ServiceSpec:
    """Configures new_default_service. Every field is optional.

    ``admin`` is the admin WSGI application; when set it is mounted on the
    primary server under ``admin_mount_prefix`` (default "/-/") or served on
    ``admin_standalone_server``. The two modes are mutually exclusive.
    ``shutdown_timeout`` is in seconds; zero or less means 30.
    On-start hooks receive an event that is set once shutdown begins;
    on-shutdown hooks receive the seconds left before the shutdown deadline.
    """

    signals_disable: bool = False
    signals: Sequence[int] = ()
    shutdown_timeout: float = 0.0
    primary: Optional[HTTPServerSpec] = None
    extra: Sequence[Optional[HTTPServerSpec]] = ()
    admin: Optional[WSGIApp] = None
    admin_mount_prefix: str = ""
    admin_standalone_server: Optional[HTTPServerSpec] = None
    on_start: Sequence[Optional[StartHook]] = ()
    on_shutdown: Sequence[Optional[ShutdownHook]] = ()
    on_serve_error: Optional[ServeErrorObserver] = None


@dataclass(eq=False)
class ManagedServer:
    """An assembled server; ``bound_address`` is set once it is listening."""

    name: str
    critical: bool
    addr: str
    app: WSGIApp
    bound_address: Optional[tuple] = None


class _QuietHandler(WSGIRequestHandler):
    timeout = DEFAULT_IDLE_TIMEOUT

    def log_message(self, format: str, *args: Any) -> None:
        pass


class _ThreadingWSGIServer(socketserver.ThreadingMixIn, WSGIServer):
    daemon_threads = False
    block_on_close = True

    def server_bind(self) -> None:
        socketserver.TCPServer.server_bind(self)
        host, port = self.server_address[:2]
        self.server_name = host or "localhost"
        self.server_port = port
        self.setup_environ()


class _ThreadingWSGIServer6(_ThreadingWSGIServer):
    address_family = socket.AF_INET6


def _split_addr(addr: str) -> tuple[str, int]:
    host, sep, port_text = addr.rpartition(":")
    if not sep:
        raise ValueError(f"address {addr}: missing port in address")
    if host.startswith("[") and host.endswith("]"):
        host = host[1:-1]
    if not port_text:
        return host, 0
    try:
        port = int(port_text)
    except ValueError:
        raise ValueError(f"address {addr}: invalid port") from None
    if not 0 <= port <= 65535:
        raise ValueError(f"address {addr}: invalid port")
    return host, port


def _listen(ms: ManagedServer) -> _ThreadingWSGIServer:
    host, port = _split_addr(ms.addr)
    server_class = _ThreadingWSGIServer6 if ":" in host else _ThreadingWSGIServer
    server = server_class((host, port), _QuietHandler)
    server.set_app(ms.app)
    return server


def _remaining(deadline: Optional[float]) -> Optional[float]:
    if deadline is None:
        return None
    return max(0.0, deadline - time.monotonic())


def _wrap(message: str, cause: BaseException) -> ServiceError:
    error = ServiceError(message)
    error.__cause__ = cause
    return error


def _join(errors: Sequence[BaseException]) -> Optional[BaseException]:
    present = [e for e in errors if e is not None]
    if not present:
        return None
    if len(present) == 1:
        return present[0]
    return ServiceError("\n".join(str(e) for e in present), present)


def _stop_server(server: _ThreadingWSGIServer, deadline: Optional[float]) -> Optional[str]:
    def close() -> None:
        server.shutdown()
        server.server_close()

    worker = threading.Thread(target=close, name="server-close", daemon=True)
    worker.start()
    worker.join(_remaining(deadline))
    if worker.is_alive():
        with contextlib.suppress(OSError):
            server.socket.close()
        return "timed out"
    return None


class Service:
    """A set of managed servers with start, wait, shutdown and run."""

    def __init__(self, spec: ServiceSpec) -> None:
        self.primary_server: Optional[ManagedServer] = None
        self.extra_servers: list[ManagedServer] = []
        self.admin_server: Optional[ManagedServer] = None
        self.admin_app: Optional[WSGIApp] = spec.admin
        self.shutdown_timeout = (
            spec.shutdown_timeout if spec.shutdown_timeout > 0 else DEFAULT_SHUTDOWN_TIMEOUT
        )

        self._on_start = tuple(spec.on_start)
        self._on_shutdown = tuple(spec.on_shutdown)
        self._on_serve_error = spec.on_serve_error
        self._signals_disable = spec.signals_disable
        self._signals = tuple(spec.signals)
        self._servers: list[ManagedServer] = []

        self._lock = threading.Lock()
        self._started = False
        self._stopping = False
        self._shutdown_initiated = False
        self._listeners: dict[ManagedServer, _ThreadingWSGIServer] = {}
        self._primary_error: Optional[BaseException] = None
        self._shutdown_error: Optional[BaseException] = None
        self._wait_error: Optional[BaseException] = None
        self._stop_requested = threading.Event()
        self._done = threading.Event()

    @property
    def servers(self) -> list[ManagedServer]:
        return list(self._servers)

    def start(self) -> None:
        """Run the on-start hooks and start listening on every managed server.

        Not idempotent: a second call raises AlreadyStartedError. On failure
        the service begins shutting down and the error is raised.
        """
        with self._lock:
            if self._started:
                raise AlreadyStartedError()
            self._started = True

        for index, hook in enumerate(self._on_start):
            if hook is None:
                continue
            try:
                hook(self._stop_requested)
            except Exception as exc:
                self._record_primary(_wrap(f"OnStart[{index}]: {exc}", exc))
                self._initiate_shutdown()
                raise

        for ms in self._servers:
            try:
                self._start_one(ms)
            except ServiceError as exc:
                self._record_primary(exc)
                self._initiate_shutdown()
                raise

    def wait(self, timeout: Optional[float] = None) -> None:
        """Block until the service has fully stopped, raising its error if any.

        Raises NotStartedError before start and TimeoutError when ``timeout``
        seconds pass first.
        """
        with self._lock:
            if not self._started:
                raise NotStartedError()
        if not self._done.wait(timeout):
            raise TimeoutError("timed out waiting for the service to stop")
        with self._lock:
            error = self._wait_error
        if error is not None:
            raise error

    def shutdown(self, timeout: Optional[float] = None) -> None:
        """Trigger shutdown and wait for it, raising the shutdown error if any.

        Idempotent; does nothing before start. Raises TimeoutError when
        ``timeout`` seconds pass before shutdown completes.
        """
        with self._lock:
            if not self._started:
                return
        self._initiate_shutdown()
        if not self._done.wait(timeout):
            raise TimeoutError("timed out waiting for shutdown")
        with self._lock:
            error = self._shutdown_error
        if error is not None:
            raise error

    def run(self, stop_event: Optional[threading.Event] = None) -> None:
        """Start, wait for an exit condition, shut down and wait.

        Exit conditions: the service stops by itself, ``stop_event`` is set
        (recorded as StopRequestedError), or one of the watched signals arrives.
        """
        self.start()
        received = threading.Event()
        restore = self._install_signal_handlers(received)
        try:
            while not self._done.wait(_POLL_INTERVAL):
                if stop_event is not None and stop_event.is_set():
                    self._record_primary(StopRequestedError())
                    break
                if received.is_set():
                    break
            if not self._done.is_set():
                with contextlib.suppress(Exception):
                    self.shutdown()
        finally:
            restore()
        self.wait()

    def _install_signal_handlers(self, received: threading.Event) -> Callable[[], None]:
        if self._signals_disable:
            return lambda: None
        signals = self._signals or tuple(default_signals())
        if not signals or threading.current_thread() is not threading.main_thread():
            return lambda: None

        def handler(signum: int, frame: Any) -> None:
            received.set()

        previous = {sig: signal.signal(sig, handler) for sig in signals}

        def restore() -> None:
            for sig, old in previous.items():
                signal.signal(sig, old)

        return restore

    def _start_one(self, ms: ManagedServer) -> None:
        if not ms.addr:
            raise ServiceError(f'server "{ms.name}" has empty addr')
        try:
            server = _listen(ms)
        except (OSError, OverflowError, ValueError) as exc:
            raise ServiceError(f'server "{ms.name}" listen "{ms.addr}": {exc}') from exc
        with self._lock:
            self._listeners[ms] = server
            ms.bound_address = tuple(server.server_address[:2])
        thread = threading.Thread(
            target=self._serve, args=(ms, server), name=f"serve-{ms.name}", daemon=True
        )
        thread.start()

    def _serve(self, ms: ManagedServer, server: _ThreadingWSGIServer) -> None:
        try:
            server.serve_forever()
        except Exception as exc:
            self._on_serve_exit(ms, exc)

    def _on_serve_exit(self, ms: ManagedServer, error: BaseException) -> None:
        with self._lock:
            stopping = self._stopping
        if stopping:
            return
        if ms.critical:
            self._record_primary(_wrap(f'server "{ms.name}": {error}', error))
            if self._on_serve_error is not None:
                self._on_serve_error(ms.name, error, True)
            self._initiate_shutdown()
            return
        if self._on_serve_error is not None:
            self._on_serve_error(ms.name, error, False)

    def _record_primary(self, error: BaseException) -> None:
        with self._lock:
            if self._primary_error is None:
                self._primary_error = error

    def _initiate_shutdown(self) -> None:
        with self._lock:
            if self._shutdown_initiated:
                return
            self._shutdown_initiated = True
        threading.Thread(target=self._do_shutdown, name="service-shutdown", daemon=True).start()

    def _do_shutdown(self) -> None:
        with self._lock:
            self._stopping = True
            listeners = dict(self._listeners)
        self._stop_requested.set()

        deadline = (
            time.monotonic() + self.shutdown_timeout if self.shutdown_timeout > 0 else None
        )
        errors: list[BaseException] = []
        errors_lock = threading.Lock()

        def shutdown_one(ms: ManagedServer, server: _ThreadingWSGIServer) -> None:
            problem = _stop_server(server, deadline)
            if problem is not None:
                with errors_lock:
                    errors.append(ServiceError(f'server "{ms.name}" shutdown: {problem}'))

        workers = [
            threading.Thread(target=shutdown_one, args=(ms, listeners[ms]), daemon=True)
            for ms in self._servers
            if ms in listeners and ms is not self.admin_server
        ]
        for worker in workers:
            worker.start()
        for worker in workers:
            worker.join()

        for index, hook in enumerate(self._on_shutdown):
            if hook is None:
                continue
            try:
                hook(_remaining(deadline))
            except Exception as exc:
                errors.append(_wrap(f"OnShutdown[{index}]: {exc}", exc))

        admin = self.admin_server
        if admin is not None and admin in listeners:
            problem = _stop_server(listeners[admin], deadline)
            if problem is not None:
                name = admin.name.strip() or "admin"
                errors.append(ServiceError(f'admin server "{name}" shutdown: {problem}'))

        shutdown_error = _join(errors)
        with self._lock:
            self._shutdown_error = shutdown_error
            self._wait_error = _join([self._primary_error, shutdown_error])
        self._done.set()


def _assemble(
    spec: HTTPServerSpec, default_name: str, force_app: Optional[WSGIApp] = None
) -> ManagedServer:
    name = spec.name.strip() or default_name
    critical = True if spec.critical is None else spec.critical
    addr = spec.addr.strip()
    if not addr:
        raise ValueError(f"server {name}: empty addr")
    app = force_app if force_app is not None else spec.app
    if app is None:
        raise ValueError(f"server {name}: nil application")
    return ManagedServer(name=name, critical=critical, addr=addr, app=app)


def new_default_service(spec: Optional[ServiceSpec] = None) -> Service:
    """Assemble a Service from ``spec``; assembly mistakes raise ValueError."""
    spec = spec if spec is not None else ServiceSpec()
    admin = spec.admin
    standalone = spec.admin_standalone_server
    mount: Optional[str] = None
    if admin is not None:
        if standalone is not None and spec.admin_mount_prefix.strip():
            raise ValueError("admin_standalone_server and admin_mount_prefix are mutually exclusive")
        if standalone is None and spec.primary is None:
            raise ValueError("worker-only service requires admin_standalone_server")
        if standalone is None:
            mount = spec.admin_mount_prefix.strip() or DEFAULT_ADMIN_MOUNT_PREFIX

    service = Service(spec)

    if spec.primary is not None:
        ms = _assemble(spec.primary, "primary")
        if mount is not None:
            ms.app = mount_prefix(mount, admin, ms.app)
        service.primary_server = ms
        service._servers.append(ms)

    for index, extra in enumerate(spec.extra):
        if extra is None:
            raise ValueError(f"extra[{index}] is nil")
        ms = _assemble(extra, f"extra#{index}")
        service.extra_servers.append(ms)
        service._servers.append(ms)

    if admin is not None and standalone is not None:
        ms = _assemble(standalone, "admin", admin)
        service.admin_server = ms
        service._servers.append(ms)

    return service