"""
Local distribution server.

Serves one repackaged archive and an install trigger page on localhost
for the duration of a single install.
"""
import asyncio
import errno
import inspect
from typing import Any, Callable, Optional

from aiohttp import web

from .manifest import (
    build_fetch_url,
    build_install_url,
    build_manifest_url,
    render_install_page,
)
from ..api.config import EndpointConfig, ServerConfig
from ..exceptions import BindFailedError, PortInUseError, ServerError
from ..logging import get_logger
from ..repackage.models import RepackagedArtifact

ARTIFACT_ROUTE = '/signed.ipa'
INSTALL_ROUTE = '/install'


class DistributionServer:
    """
    aiohttp server for one install.

    Routes:
    - GET /signed.ipa: the artifact bytes
    - GET /install: page that redirects to the install URL

    Example:
        >>> async with DistributionServer(artifact) as server:
        ...     opener(server.page_url)
        ...     await server.wait_stopped()
    """

    def __init__(
        self,
        artifact: RepackagedArtifact,
        config: Optional[ServerConfig] = None,
        endpoints: Optional[EndpointConfig] = None
    ):
        """
        Initialize distribution server.

        Args:
            artifact: Repackaged archive to serve
            config: Host, port and timeout (defaults to 127.0.0.1:9090, no timeout)
            endpoints: Endpoint config providing the manifest service
        """
        self._artifact = artifact
        self._config = config or ServerConfig()
        self._endpoints = endpoints or EndpointConfig()
        self._runner: Optional[web.AppRunner] = None
        self._port = self._config.port
        self._stopped = asyncio.Event()
        self._stopped.set()
        self._requests = 0
        self._logger = get_logger('ipadown.server')

    @property
    def is_running(self) -> bool:
        return self._runner is not None

    @property
    def port(self) -> int:
        """Bound port (the configured one until started)."""
        return self._port

    @property
    def artifact(self) -> RepackagedArtifact:
        return self._artifact

    @property
    def artifact_requests(self) -> int:
        """Number of times the artifact has been requested."""
        return self._requests

    @property
    def fetch_url(self) -> str:
        return build_fetch_url(self._config.host, self._port, ARTIFACT_ROUTE)

    @property
    def page_url(self) -> str:
        return f"http://{self._config.host}:{self._port}{INSTALL_ROUTE}"

    @property
    def manifest_url(self) -> str:
        return build_manifest_url(
            self._endpoints.manifest_service,
            self._artifact.bundle_id,
            self._artifact.bundle_version,
            self.fetch_url,
        )

    @property
    def install_url(self) -> str:
        return build_install_url(self.manifest_url)

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_get(ARTIFACT_ROUTE, self._handle_artifact)
        app.router.add_get(INSTALL_ROUTE, self._handle_install)
        return app

    async def _handle_artifact(self, request: web.Request) -> web.StreamResponse:
        self._requests += 1
        self._logger.info(f"Serving {ARTIFACT_ROUTE} to {request.remote}")
        return web.FileResponse(
            self._artifact.path,
            chunk_size=self._config.chunk_size,
            headers={'Content-Type': 'application/octet-stream'},
        )

    async def _handle_install(self, request: web.Request) -> web.Response:
        self._logger.info(f"Serving {INSTALL_ROUTE} to {request.remote}")
        return web.Response(
            text=render_install_page(self.install_url),
            content_type='text/html',
        )

    async def start(self) -> 'DistributionServer':
        """
        Bind and start serving.

        Raises:
            PortInUseError: The port is already bound
            BindFailedError: Binding failed for another reason
            ServerError: Already running, or the artifact is missing
        """
        if self.is_running:
            raise ServerError("Distribution server is already running")
        if not self._artifact.path.is_file():
            raise ServerError(f"Artifact {self._artifact.path} does not exist")

        runner = web.AppRunner(self._build_app())
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        try:
            await site.start()
        except OSError as e:
            await runner.cleanup()
            if e.errno == errno.EADDRINUSE:
                raise PortInUseError(
                    f"Port {self._config.port} is already in use", str(e)
                )
            raise BindFailedError(
                f"Cannot bind {self._config.host}:{self._config.port}", str(e)
            )

        self._runner = runner
        addresses = runner.addresses
        if addresses:
            self._port = addresses[0][1]
        self._stopped.clear()
        self._logger.info(f"Server has started listening on {self._config.host}:{self._port}")
        return self

    async def stop(self) -> None:
        """Stop serving and release the port. Safe to call twice."""
        runner, self._runner = self._runner, None
        if runner is not None:
            await runner.cleanup()
            self._logger.info("Server has stopped")
        self._stopped.set()

    async def wait_stopped(self, timeout: Optional[float] = None) -> bool:
        """
        Wait until stop() is called.

        Args:
            timeout: Seconds to wait; None waits forever. When it elapses
                the server is stopped.

        Returns:
            True if stopped by stop(), False if the timeout stopped it
        """
        try:
            await asyncio.wait_for(self._stopped.wait(), timeout)
            return True
        except asyncio.TimeoutError:
            self._logger.warning(f"No stop after {timeout}s, shutting down")
            await self.stop()
            return False

    async def serve(
        self,
        opener: Callable[[str], Any],
        use_install_page: bool = True,
        timeout: Optional[float] = None
    ) -> bool:
        """
        Start, trigger the install, and block until stopped.

        Args:
            opener: Opens a URL on the device (may be sync or async)
            use_install_page: Open the /install page (newer OS) rather than
                the install URL itself (older OS)
            timeout: Overrides ServerConfig.timeout; None serves until stopped

        Returns:
            Same as wait_stopped()
        """
        await self.start()
        try:
            url = self.page_url if use_install_page else self.install_url
            self._logger.info(f"Requesting app install via {url}")
            result = opener(url)
            if inspect.isawaitable(result):
                await result
        except BaseException:
            await self.stop()
            raise
        return await self.wait_stopped(timeout if timeout is not None else self._config.timeout)

    async def __aenter__(self) -> 'DistributionServer':
        return await self.start()

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.stop()
