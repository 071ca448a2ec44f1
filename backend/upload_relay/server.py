"""
Server lifecycle for the upload relay.

States: STARTING -> SERVING -> DRAINING -> STOPPED

- STARTING: the listening socket is bound (failure is fatal) and uvicorn starts
- SERVING: every request runs as its own task under the upload timeout
- DRAINING: entered once, on the first SIGINT/SIGTERM. The listener stops
  accepting and in-flight requests get one upload timeout to finish
- STOPPED: exit 0 after a clean drain, 1 if the drain window ran out

Usage:
    upload-relay            # console script
    python -m upload_relay.server
"""
import asyncio
import contextlib
import enum
import logging
import signal
import socket
import sys
from typing import Callable, Optional

import uvicorn
from prometheus_client import start_http_server

from upload_relay.config import Settings, settings
from upload_relay.exceptions import ShutdownError, StartupError
from upload_relay.utils.logging import configure_logging

logger = logging.getLogger(__name__)

SHUTDOWN_SIGNALS = (signal.SIGINT, signal.SIGTERM)


class ServerState(str, enum.Enum):
    """Lifecycle states of the relay server."""
    STARTING = "starting"
    SERVING = "serving"
    DRAINING = "draining"
    STOPPED = "stopped"


class _RelayServer(uvicorn.Server):
    """uvicorn server that leaves signal handling to ServerLifecycle."""

    def __init__(self, config: uvicorn.Config, on_started: Callable[[], None]):
        super().__init__(config)
        self._on_started = on_started

    @contextlib.contextmanager
    def capture_signals(self):
        yield

    def install_signal_handlers(self) -> None:
        pass

    async def startup(self, sockets=None) -> None:
        await super().startup(sockets=sockets)
        if self.started:
            self._on_started()


def bind_socket(host: str, port: int) -> socket.socket:
    """
    Bind the listening socket.

    Raises:
        StartupError: If the address can't be bound
    """
    family = socket.AF_INET6 if ":" in host else socket.AF_INET
    sock = socket.socket(family, socket.SOCK_STREAM)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind((host, port))
    except OSError as e:
        sock.close()
        raise StartupError(f"Could not bind {host}:{port}: {e}") from e
    sock.set_inheritable(True)
    return sock


class ServerLifecycle:
    """
    Owns the listening socket, the shutdown token and the drain window.

    Args:
        app: ASGI application to serve
        app_settings: Listener address, idle timeout and drain window
    """

    def __init__(self, app, app_settings: Settings):
        self.app = app
        self.settings = app_settings
        self.state = ServerState.STARTING
        self._stop = asyncio.Event()
        self._sock: Optional[socket.socket] = None

    @property
    def port(self) -> Optional[int]:
        """Port actually bound (useful when configured with port 0)."""
        if self._sock is None:
            return None
        return self._sock.getsockname()[1]

    @property
    def shutdown_requested(self) -> bool:
        return self._stop.is_set()

    def request_shutdown(self, sig: Optional[int] = None) -> None:
        """Start draining. Only the first call has any effect."""
        if self._stop.is_set():
            return
        name = signal.Signals(sig).name if sig is not None else "shutdown request"
        logger.warning(f"Received signal {name!r}. Exiting as soon as possible!")
        self._stop.set()

    def _install_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.add_signal_handler(sig, self.request_shutdown, sig)
            except NotImplementedError:
                # Windows event loops don't support add_signal_handler
                signal.signal(
                    sig,
                    lambda s, _frame: loop.call_soon_threadsafe(self.request_shutdown, s)
                )

    def _remove_signal_handlers(self, loop: asyncio.AbstractEventLoop) -> None:
        for sig in SHUTDOWN_SIGNALS:
            try:
                loop.remove_signal_handler(sig)
            except NotImplementedError:
                signal.signal(sig, signal.SIG_DFL)

    def _mark_serving(self) -> None:
        self.state = ServerState.SERVING
        logger.info(f"Listening on {self.settings.host}:{self.port}")

    async def serve(self, install_signal_handlers: bool = True) -> None:
        """
        Run the server until a shutdown is requested and drained.

        Raises:
            StartupError: If the socket can't be bound or uvicorn fails to start
            ShutdownError: If in-flight requests outlive the drain window
        """
        self.state = ServerState.STARTING
        self._sock = bind_socket(self.settings.host, self.settings.http_port)

        config = uvicorn.Config(
            self.app,
            timeout_keep_alive=int(self.settings.request_timeout),
            log_config=None,
            lifespan="on"
        )
        server = _RelayServer(config, on_started=self._mark_serving)

        if install_signal_handlers:
            self._install_signal_handlers(asyncio.get_running_loop())

        serve_task = asyncio.create_task(server.serve(sockets=[self._sock]))
        stop_task = asyncio.create_task(self._stop.wait())
        try:
            done, _ = await asyncio.wait(
                {serve_task, stop_task},
                return_when=asyncio.FIRST_COMPLETED
            )

            if serve_task in done:
                stop_task.cancel()
                if not server.started:
                    raise StartupError("HTTP server failed to start") from serve_task.exception()
                # uvicorn exited on its own after a successful start
                serve_task.result()
                return

            self.state = ServerState.DRAINING
            server.should_exit = True
            grace = self.settings.upload_timeout
            try:
                await asyncio.wait_for(serve_task, timeout=grace)
            except asyncio.TimeoutError as e:
                raise ShutdownError(
                    f"In-flight requests did not finish within {grace}s"
                ) from e
        finally:
            stop_task.cancel()
            self.state = ServerState.STOPPED
            self._sock.close()
            if install_signal_handlers:
                self._remove_signal_handlers(asyncio.get_running_loop())


def start_metrics_server(port: int) -> None:
    """
    Start the Prometheus metrics endpoint on its own port.

    Args:
        port: Port to listen on
    """
    start_http_server(port)
    logger.info(f"Metrics server started on port {port}")


def main() -> None:
    """Console entry point."""
    from upload_relay.main import SERVICE_NAME, app

    configure_logging(SERVICE_NAME, settings.log_level)

    if settings.metrics_port:
        try:
            start_metrics_server(settings.metrics_port)
        except OSError as e:
            logger.critical(f"Metrics server failed to start: {e}")
            sys.exit(1)

    lifecycle = ServerLifecycle(app, settings)
    try:
        asyncio.run(lifecycle.serve())
    except StartupError as e:
        logger.critical(f"HTTP server failed to start: {e}")
        sys.exit(1)
    except ShutdownError as e:
        logger.critical(f"HTTP server exited with error: {e}")
        sys.exit(1)

    logger.info("HTTP server stopped")


if __name__ == "__main__":
    main()
