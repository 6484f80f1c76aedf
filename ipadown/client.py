"""
DowngradeClient - High-level async client.

Example:
    >>> async with DowngradeClient(vault) as client:
    ...     await client.login('me@example.com', 'password', code='123456')
    ...     versions = await client.list_versions('544007664')
    ...     await client.downgrade('544007664', versions[-1].external_id, work_dir, opener)
"""
import asyncio
from pathlib import Path
from typing import Any, Callable, List, Optional, Union

from .core.api import APIConfig, AsyncAuthService, AsyncStoreClient, ProxyConfig, RetryConfig, ServerConfig, SSLConfig, TimeoutConfig
from .core.catalog import CatalogClient, VersionDescriptor
from .core.download import DownloadDescriptor, PackageFetcher
from .core.logging import get_logger
from .core.repackage import PackageRepackager, RepackagedArtifact
from .core.server import DistributionServer
from .core.session import Credential, CredentialVault, SessionContext

VERSION_SOURCES = ('store', 'mirror')


class DowngradeClient:
    """
    High-level client chaining sign-in, version lookup, download,
    repackaging and local distribution.

    One identity and one in-flight install per client.
    """

    def __init__(
        self,
        vault: CredentialVault,
        *,
        config: Optional[APIConfig] = None
    ):
        """
        Initialize client.

        Args:
            vault: Encrypted identity storage
            config: Optional API configuration
        """
        self._config = config or APIConfig.default()
        self._vault = vault
        self._logger = get_logger('ipadown.client')

        self._api = AsyncStoreClient(self._config)
        self._auth = AsyncAuthService(self._api, vault)
        self._catalog = CatalogClient(self._api)
        self._fetcher = PackageFetcher(self._api)
        self._server: Optional[DistributionServer] = None

    # =========================================================================
    # Configuration helpers
    # =========================================================================

    @staticmethod
    def create_config(
        proxy: Optional[str] = None,
        timeout: float = 1800,
        verify_ssl: bool = True,
        port: int = 9090,
        serve_timeout: Optional[float] = None,
        max_attempts: int = 4
    ) -> APIConfig:
        """
        Create API configuration with common options.

        Args:
            proxy: Proxy URL (e.g., "http://proxy:8080")
            timeout: Request timeout in seconds
            verify_ssl: Whether to verify SSL certificates
            port: Local distribution port
            serve_timeout: Stop serving after this many seconds (None: never)
            max_attempts: Sign-in attempts

        Returns:
            APIConfig instance
        """
        return APIConfig(
            proxy=ProxyConfig(url=proxy) if proxy else None,
            timeout=TimeoutConfig(total=timeout),
            ssl=SSLConfig(verify=verify_ssl),
            retry=RetryConfig(max_attempts=max_attempts),
            server=ServerConfig(port=port, timeout=serve_timeout),
        )

    @property
    def config(self) -> APIConfig:
        return self._config

    @property
    def auth(self) -> AsyncAuthService:
        return self._auth

    @property
    def server(self) -> Optional[DistributionServer]:
        """Distribution server of the install in progress, if any."""
        return self._server

    # =========================================================================
    # Session management
    # =========================================================================

    async def login(
        self,
        apple_id: str,
        password: str,
        code: Optional[str] = None
    ) -> SessionContext:
        """
        Sign in, reusing a stored identity when there is one.

        Raises:
            AuthError: See AsyncAuthService.authenticate
        """
        return await self._auth.authenticate(Credential(apple_id, password), code)

    def resume(self) -> Optional[SessionContext]:
        """Restore the stored identity without contacting the store."""
        return self._auth.restore()

    async def logout(self) -> None:
        """Forget the stored identity and rotate the device key."""
        await self._auth.logout()

    def _require_session(self) -> SessionContext:
        context = self._auth.context
        if context is None:
            context = self._auth.restore()
        if context is None:
            raise RuntimeError("Not logged in. Call login() first.")
        return context

    # =========================================================================
    # Context manager
    # =========================================================================

    async def __aenter__(self) -> 'DowngradeClient':
        await self._api.__aenter__()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    async def close(self):
        if self._server is not None:
            await self._server.stop()
            self._server = None
        await self._api.close()

    # =========================================================================
    # Pipeline
    # =========================================================================

    async def list_versions(self, app_id: str, source: str = 'store') -> List[VersionDescriptor]:
        """
        List historical versions of an app.

        Args:
            app_id: Store id of the app
            source: 'store' (authenticated private query) or 'mirror'

        Raises:
            CatalogError: See CatalogClient
        """
        if source == 'store':
            return await self._catalog.list_versions_private(self._require_session(), app_id)
        if source == 'mirror':
            return await self._catalog.list_versions_public(app_id)
        raise ValueError(f"Unknown version source {source!r}, expected one of {VERSION_SOURCES}")

    async def download(
        self,
        app_id: str,
        version_id: Optional[str],
        work_dir: Union[str, Path],
        progress_callback: Optional[Callable[[int, int], None]] = None
    ) -> RepackagedArtifact:
        """
        Download one version and repackage it for installation.

        Args:
            app_id: Store id of the app
            version_id: External version id (None for current)
            work_dir: Ephemeral working directory
            progress_callback: Optional callback(downloaded_bytes, total_bytes)

        Returns:
            RepackagedArtifact at <work_dir>/signed.ipa

        Raises:
            FetchError, RepackageError
        """
        session = self._require_session()
        work = Path(work_dir)

        descriptor: DownloadDescriptor = await self._fetcher.resolve_download(session, app_id, version_id)
        archive = await self._fetcher.fetch_artifact(descriptor, work / 'app.ipa', progress_callback)

        repackager = PackageRepackager(work)
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            None,
            repackager.repackage,
            archive,
            descriptor,
            self._auth.credential.apple_id,
        )

    async def downgrade(
        self,
        app_id: str,
        version_id: Optional[str],
        work_dir: Union[str, Path],
        opener: Callable[[str], Any],
        use_install_page: bool = True,
        timeout: Optional[float] = None,
        progress_callback: Optional[Callable[[int, int], None]] = None
    ) -> RepackagedArtifact:
        """
        Download, repackage and serve one version until the server stops.

        Args:
            app_id: Store id of the app
            version_id: External version id
            work_dir: Ephemeral working directory
            opener: Opens the install URL on the device
            use_install_page: Open /install (newer OS) instead of the install URL
            timeout: Stop serving after this many seconds (default: config)
            progress_callback: Download progress callback

        Returns:
            The served artifact

        Raises:
            FetchError, RepackageError, ServerError
        """
        if self._server is not None and self._server.is_running:
            raise RuntimeError("An install is already in progress")

        artifact = await self.download(app_id, version_id, work_dir, progress_callback)
        self._logger.info(f"Serving {artifact.bundle_id} {artifact.bundle_version}")

        self._server = DistributionServer(artifact, self._config.server, self._config.endpoints)
        try:
            await self._server.serve(opener, use_install_page=use_install_page, timeout=timeout)
        finally:
            await self._server.stop()
            self._server = None
        return artifact

    async def stop_serving(self) -> None:
        """Stop the distribution server of the current install."""
        if self._server is not None:
            await self._server.stop()
