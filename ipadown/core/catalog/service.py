"""
Version catalog service.

Lists historical version ids from the store's private protocol or
from the public history mirror. Neither source is authoritative.
"""
import asyncio
from typing import Any, Iterable, List, Optional, Tuple
from urllib.parse import quote

import aiohttp

from .models import VersionDescriptor
from ..api.async_client import AsyncStoreClient
from ..exceptions import CatalogTransportError, NoVersionsFoundError, StoreProtocolError
from ..logging import get_logger
from ..session import SessionContext


class CatalogClient:
    """
    Version discovery for one app at a time.

    Example:
        >>> catalog = CatalogClient(client)
        >>> versions = await catalog.list_versions_public('544007664')
    """

    def __init__(self, client: AsyncStoreClient):
        """
        Initialize catalog client.

        Args:
            client: Async store client (shared with auth and download)
        """
        self._client = client
        self._logger = get_logger('ipadown.catalog')

    @staticmethod
    def _unique(pairs: Iterable[Tuple[str, str]]) -> List[VersionDescriptor]:
        """Build descriptors in source order, first occurrence of an id wins."""
        seen = set()
        versions = []
        for external_id, display in pairs:
            if not external_id or external_id in seen:
                continue
            seen.add(external_id)
            versions.append(VersionDescriptor(external_id=external_id, display_version=display or external_id))
        return versions

    async def list_versions_private(
        self,
        session: SessionContext,
        app_id: str
    ) -> List[VersionDescriptor]:
        """
        List versions through the authenticated redownload query.

        Args:
            session: Authenticated session context
            app_id: Store id of the app

        Returns:
            Versions in the order the store lists them

        Raises:
            NoVersionsFoundError: Store knows no versions for the app
            CatalogTransportError: Store unreachable, reply undecodable or refused
        """
        self._logger.info(f"Retrieving version ids for app {app_id}")
        try:
            body = await self._client.volume_store_download_product(
                session.guid, app_id, session.headers
            )
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogTransportError("Could not reach the store", str(e))
        except StoreProtocolError as e:
            raise CatalogTransportError("Store reply could not be decoded", str(e))

        failure = self._client.failure_message(body)
        if failure:
            raise CatalogTransportError(f"Store refused version lookup for app {app_id}", failure)

        song_list = body.get('songList')
        if not isinstance(song_list, list) or not song_list or not isinstance(song_list[0], dict):
            raise NoVersionsFoundError(f"No download info for app {app_id}")

        metadata = song_list[0].get('metadata')
        if not isinstance(metadata, dict):
            raise NoVersionsFoundError(f"No version metadata for app {app_id}")

        ids = metadata.get('softwareVersionExternalIdentifiers')
        if not isinstance(ids, list):
            ids = []

        current_id = self._as_id(metadata.get('softwareVersionExternalIdentifier'))
        current_display = metadata.get('bundleShortVersionString')

        pairs = []
        for raw in ids:
            external_id = self._as_id(raw)
            if external_id is None:
                self._logger.debug(f"Skipping malformed version id {raw!r}")
                continue
            display = current_display if external_id == current_id and current_display else external_id
            pairs.append((external_id, str(display)))

        versions = self._unique(pairs)
        if not versions:
            raise NoVersionsFoundError(f"Store lists no versions for app {app_id}")

        self._logger.info(f"Got {len(versions)} version ids for app {app_id}")
        return versions

    async def list_versions_public(self, app_id: str) -> List[VersionDescriptor]:
        """
        List versions from the public history mirror.

        Args:
            app_id: Store id of the app

        Returns:
            Versions in the order the mirror lists them

        Raises:
            NoVersionsFoundError: Mirror has no entries for the app
            CatalogTransportError: Mirror unreachable or reply malformed
        """
        url = self._client.config.endpoints.mirror_url + quote(app_id, safe='')
        self._logger.info(f"Querying version history mirror for app {app_id}")
        try:
            document = await self._client.get_json(url)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise CatalogTransportError("Could not reach the version mirror", str(e))
        except StoreProtocolError as e:
            raise CatalogTransportError("Version mirror reply could not be decoded", str(e))

        if not isinstance(document, dict):
            raise CatalogTransportError("Version mirror reply has unexpected shape")

        entries = document.get('data')
        if entries is None:
            entries = []
        if not isinstance(entries, list):
            raise CatalogTransportError("Version mirror reply has unexpected shape", "'data' is not a list")

        pairs = []
        for entry in entries:
            if not isinstance(entry, dict):
                continue
            external_id = self._as_id(entry.get('external_identifier'))
            if external_id is None:
                continue
            display = entry.get('bundle_version')
            pairs.append((external_id, str(display) if display is not None else external_id))

        versions = self._unique(pairs)
        if not versions:
            raise NoVersionsFoundError(f"Version mirror has no versions for app {app_id}")

        self._logger.info(f"Mirror lists {len(versions)} versions for app {app_id}")
        return versions

    @staticmethod
    def _as_id(value: Any) -> Optional[str]:
        """Normalize an external id (int or numeric string) to a string."""
        if isinstance(value, bool) or value is None:
            return None
        if isinstance(value, int):
            return str(value)
        if isinstance(value, str) and value.strip():
            return value.strip()
        return None
