"""
Webhook server lifecycle.

The server moves through ``CREATED -> LISTENING -> SHUTTING_DOWN -> STOPPED``.
A termination signal takes the graceful path: stop accepting connections and
drain in-flight requests. A transport failure goes straight to ``STOPPED``
and becomes the terminal result. A stopped server is never restarted; create
a new instance instead.
"""

import asyncio
import logging
import signal
import ssl
from collections.abc import Iterable
from enum import StrEnum

from aiohttp import web

from admission_server.constants import (
    DEFAULT_HTTP_PORT,
    DEFAULT_HTTPS_PORT,
    DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
    SHUTDOWN_MARGIN_SECONDS,
)
from admission_server.dispatcher import AdmissionDispatcher
from admission_server.errors import ServerStateError, TransportError
from admission_server.settings import Settings
from admission_server.tls.provisioner import TlsAssets
from admission_server.utils.kubernetes import KubernetesContext
from admission_server.webhooks.base import AdmissionWebhook

logger = logging.getLogger(__name__)

TERMINATION_SIGNALS = (signal.SIGINT, signal.SIGTERM)


def drain_timeout(handler_timeout: float | None) -> float:
    """How long a graceful stop waits for requests already being handled."""
    if not handler_timeout:
        return DEFAULT_SHUTDOWN_TIMEOUT_SECONDS
    return handler_timeout + SHUTDOWN_MARGIN_SECONDS


class ServerState(StrEnum):
    CREATED = "Created"
    LISTENING = "Listening"
    SHUTTING_DOWN = "ShuttingDown"
    STOPPED = "Stopped"


class WebhookServer:
    """HTTP(S) listener serving an admission dispatcher."""

    def __init__(
        self,
        dispatcher: AdmissionDispatcher,
        host: str = "0.0.0.0",
        port: int = 0,
        ssl_context: ssl.SSLContext | None = None,
        shutdown_timeout: float = DEFAULT_SHUTDOWN_TIMEOUT_SECONDS,
    ):
        """
        Initialize the server.

        Args:
            dispatcher: Dispatcher whose application is served
            host: Host interface to bind to
            port: Port to bind (0 = 443 with TLS, 80 without)
            ssl_context: Server SSL context, None for plaintext
            shutdown_timeout: Seconds a graceful stop waits for in-flight requests
        """
        self.dispatcher = dispatcher
        self.host = host
        self.ssl_context = ssl_context
        self.port = port or (DEFAULT_HTTPS_PORT if ssl_context else DEFAULT_HTTP_PORT)
        self.shutdown_timeout = shutdown_timeout
        self.state = ServerState.CREATED
        self.error: TransportError | None = None
        self.runner: web.AppRunner | None = None
        self.site: web.TCPSite | None = None
        self._stopped: asyncio.Future[TransportError | None] | None = None
        self._terminate = asyncio.Event()

    @classmethod
    def from_settings(
        cls,
        settings: Settings,
        webhooks: Iterable[AdmissionWebhook],
        tls: TlsAssets,
        kubernetes: KubernetesContext | None = None,
    ) -> "WebhookServer":
        """
        Assemble a server from settings, webhooks and provisioned TLS assets.

        Raises:
            ConfigurationError: If the webhooks cannot be registered or the
                certificate chain cannot be loaded
        """
        dispatcher = AdmissionDispatcher(
            webhooks,
            mode=settings.dispatch_mode,
            handler_timeout=settings.handler_timeout,
            kubernetes=kubernetes,
        )
        return cls(
            dispatcher,
            host=settings.host,
            port=settings.listen_port,
            ssl_context=tls.ssl_context(),
            shutdown_timeout=drain_timeout(settings.handler_timeout),
        )

    @property
    def secure(self) -> bool:
        return self.ssl_context is not None

    @property
    def scheme(self) -> str:
        return "https" if self.secure else "http"

    async def start(self) -> None:
        """
        Bind the listener and start accepting connections.

        Raises:
            ServerStateError: If the server is not in the CREATED state
            TransportError: If the listener cannot bind
        """
        if self.state is not ServerState.CREATED:
            raise ServerStateError(self.state, "start")

        self._stopped = asyncio.get_running_loop().create_future()
        self.runner = web.AppRunner(
            self.dispatcher.app,
            handle_signals=False,
            shutdown_timeout=self.shutdown_timeout,
        )
        try:
            await self.runner.setup()
            self.site = web.TCPSite(
                self.runner, self.host, self.port, ssl_context=self.ssl_context
            )
            await self.site.start()
        except OSError as e:
            error = TransportError(
                f"Failed to start HTTP(S) server on {self.host}:{self.port}: {e}",
                cause=e,
            )
            logger.error(str(error))
            await self.runner.cleanup()
            self.runner = None
            self.site = None
            self._finish(error)
            raise error from e

        self.state = ServerState.LISTENING
        logger.info(
            f"Listening for clients at ({self.host}:{self.port}) using "
            f"{self.scheme.upper()}"
        )

    async def stop(self) -> None:
        """
        Stop accepting connections and wait for in-flight requests.

        Stopping a CREATED server marks it STOPPED without binding anything;
        stopping a STOPPED server is a no-op.
        """
        if self.state is ServerState.STOPPED:
            return
        if self.state is ServerState.SHUTTING_DOWN:
            await self.wait_stopped()
            return
        if self.state is ServerState.CREATED:
            self._finish(None)
            return

        self.state = ServerState.SHUTTING_DOWN
        logger.info("Shutting down webhook server gracefully...")
        try:
            if self.runner:
                await self.runner.cleanup()
        finally:
            self.runner = None
            self.site = None
            self._finish(self.error)
        logger.info("Webhook server stopped")

    async def abort(self, error: BaseException) -> None:
        """
        Report a transport failure while listening.

        The server becomes STOPPED immediately with the failure as its result;
        the listener is then released without waiting for a graceful drain.

        aiohttp reports bind failures from ``start()`` but has no callback
        for a listener that breaks after binding. Code that supervises the
        listener (for example a watchdog on the bound socket) calls
        this method to turn such a failure into the terminal result of
        ``run_until_terminated()``.
        """
        if self.state is ServerState.STOPPED:
            return

        transport_error = (
            error
            if isinstance(error, TransportError)
            else TransportError(f"Listener failed: {error}", cause=error)  # type: ignore[arg-type]
        )
        logger.error(f"Server stopped unexpectedly: {transport_error.message}")
        self._finish(transport_error)

        runner, self.runner, self.site = self.runner, None, None
        if runner:
            await runner.cleanup()

    def _finish(self, error: TransportError | None) -> None:
        self.state = ServerState.STOPPED
        self.error = error
        if self._stopped is not None and not self._stopped.done():
            self._stopped.set_result(error)

    async def wait_stopped(self) -> TransportError | None:
        """Wait until the server is STOPPED and return its terminal error, if any."""
        if self._stopped is None:
            return self.error
        return await asyncio.shield(self._stopped)

    def request_shutdown(self) -> None:
        """Ask a server running ``run_until_terminated`` to stop gracefully."""
        self._terminate.set()

    async def run_until_terminated(
        self, signals: Iterable[signal.Signals] = TERMINATION_SIGNALS
    ) -> None:
        """
        Serve until a termination signal or a transport failure.

        Returns:
            None after a graceful shutdown

        Raises:
            TransportError: If the listener failed to bind or failed while running
        """
        await self.start()

        loop = asyncio.get_running_loop()
        installed: list[signal.Signals] = []
        for sig in signals:
            try:
                loop.add_signal_handler(sig, self.request_shutdown)
                installed.append(sig)
            except (NotImplementedError, RuntimeError, ValueError):
                logger.warning(f"Cannot install handler for {sig!r}")

        terminate_task = asyncio.ensure_future(self._terminate.wait())
        stopped_task = asyncio.ensure_future(self.wait_stopped())
        try:
            done, _ = await asyncio.wait(
                {terminate_task, stopped_task}, return_when=asyncio.FIRST_COMPLETED
            )
            if stopped_task not in done:
                logger.info("Got shutdown signal, shutting down webhook server gracefully...")
                await self.stop()
        finally:
            terminate_task.cancel()
            stopped_task.cancel()
            for sig in installed:
                loop.remove_signal_handler(sig)

        if self.error is not None:
            raise self.error

    async def __aenter__(self) -> "WebhookServer":
        """Async context manager entry."""
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.stop()
