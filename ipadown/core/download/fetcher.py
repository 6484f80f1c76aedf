"""
Package fetcher.

Resolves download info for an app version and streams the archive
to local storage.
"""
import asyncio
from pathlib import Path
from typing import Callable, Optional, Union

import aiofiles
import aiohttp

from .models import DownloadDescriptor
from ..api.async_client import AsyncStoreClient
from ..exceptions import (
    FetchTransportError,
    RemoteRejectedError,
    StorageError,
    StoreProtocolError,
)
from ..logging import get_logger
from ..session import SessionContext


class PackageFetcher:
    """
    Resolves and downloads app archives.

    No retry: failures are reported to the caller at once.

    Example:
        >>> fetcher = PackageFetcher(client)
        >>> descriptor = await fetcher.resolve_download(session, '544007664', '850000000')
        >>> await fetcher.fetch_artifact(descriptor, Path('app.ipa'))
    """

    def __init__(self, client: AsyncStoreClient, chunk_size: int = 1024 * 1024):
        """
        Initialize fetcher.

        Args:
            client: Async store client
            chunk_size: Download chunk size in bytes
        """
        self._client = client
        self._chunk_size = chunk_size
        self._logger = get_logger('ipadown.download')

    async def resolve_download(
        self,
        session: SessionContext,
        app_id: str,
        version_id: Optional[str] = None
    ) -> DownloadDescriptor:
        """
        Ask the store where to download an app version.

        Args:
            session: Authenticated session context
            app_id: Store id of the app
            version_id: External version id; None for the current version

        Returns:
            DownloadDescriptor for (app_id, version_id)

        Raises:
            RemoteRejectedError: Store refused or returned no usable download info
            FetchTransportError: Store unreachable or reply undecodable
        """
        self._logger.info(f"Resolving download for app {app_id} version {version_id or 'current'}")
        try:
            body = await self._client.volume_store_download_product(
                session.guid, app_id, session.headers, version_id=version_id
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise FetchTransportError("Could not reach the store", str(e))
        except StoreProtocolError as e:
            raise FetchTransportError("Store reply could not be decoded", str(e))

        failure = self._client.failure_message(body)
        if failure:
            raise RemoteRejectedError(f"Store refused download of app {app_id}", failure)

        song_list = body.get('songList')
        if not isinstance(song_list, list) or not song_list or not isinstance(song_list[0], dict):
            raise RemoteRejectedError(f"Store returned no download info for app {app_id}")
        song = song_list[0]

        url = song.get('URL')
        if not isinstance(url, str) or not url:
            raise RemoteRejectedError(f"Download info for app {app_id} has no URL")

        sinfs = song.get('sinfs')
        if not isinstance(sinfs, list):
            raise RemoteRejectedError(f"Download info for app {app_id} has no entitlement data")
        blobs = []
        for entry in sinfs:
            blob = entry.get('sinf') if isinstance(entry, dict) else None
            if not isinstance(blob, bytes):
                raise RemoteRejectedError(f"Download info for app {app_id} has a malformed sinf entry")
            blobs.append(blob)

        metadata = song.get('metadata')
        if not isinstance(metadata, dict):
            metadata = {}

        self._logger.debug(f"Got download URL: {url}")
        return DownloadDescriptor(
            app_id=app_id,
            version_id=version_id,
            url=url,
            entitlement_blobs=blobs,
            metadata=dict(metadata),
        )

    async def fetch_artifact(
        self,
        descriptor: DownloadDescriptor,
        destination: Union[str, Path],
        progress_callback: Optional[Callable[[int, int], None]] = None
    ) -> Path:
        """
        Stream the archive to destination, replacing any existing file.

        Args:
            descriptor: Resolved download
            destination: Local file path
            progress_callback: Optional callback(downloaded_bytes, total_bytes)

        Returns:
            Path to the downloaded archive

        Raises:
            FetchTransportError: Transfer failed
            StorageError: Destination could not be written
        """
        dest = Path(destination)
        try:
            dest.parent.mkdir(parents=True, exist_ok=True)
            if dest.exists():
                self._logger.debug(f"Removing existing file at {dest}")
                dest.unlink()
        except OSError as e:
            raise StorageError(f"Cannot prepare {dest}", str(e))

        downloaded = 0
        try:
            async with aiofiles.open(dest, 'wb') as f:
                async for chunk, total in self._client.iter_download(descriptor.url, self._chunk_size):
                    await f.write(chunk)
                    downloaded += len(chunk)
                    if progress_callback:
                        progress_callback(downloaded, total)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            self._remove_partial(dest)
            raise FetchTransportError(f"Download of app {descriptor.app_id} failed", str(e))
        except OSError as e:
            self._remove_partial(dest)
            raise StorageError(f"Cannot write {dest}", str(e))

        self._logger.info(f"Downloaded {downloaded} bytes to {dest}")
        return dest

    def _remove_partial(self, path: Path) -> None:
        try:
            path.unlink()
        except OSError:
            self._logger.debug(f"No partial file to remove at {path}")
