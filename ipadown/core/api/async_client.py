"""
Async store client.

Thin transport over aiohttp for the store's plist endpoints, the
version mirror's JSON API and archive downloads.
"""
import json
import logging
import plistlib
from dataclasses import dataclass
from http.cookies import SimpleCookie
from typing import Any, AsyncIterator, Dict, List, Optional
from xml.parsers.expat import ExpatError

import aiohttp
from yarl import URL

from .config import APIConfig
from ..exceptions import StoreProtocolError

REDIRECT_STATUSES = (301, 302, 303, 307, 308)


@dataclass
class StoreResponse:
    """Decoded store reply."""
    status: int
    url: str
    headers: Any
    body: Optional[Dict[str, Any]] = None

    @property
    def is_redirect(self) -> bool:
        return self.status in REDIRECT_STATUSES

    @property
    def location(self) -> Optional[str]:
        """Absolute redirect target, if any."""
        location = self.headers.get('Location')
        if not location:
            return None
        return str(URL(self.url).join(URL(location)))


class AsyncStoreClient:
    """
    Asynchronous store client.

    Features:
    - Shared cookie jar across requests (exportable for persistence)
    - Configurable proxy, SSL, timeouts
    - Property-list request/response handling
    - Chunked streaming downloads

    Every call awaits the full response; there is no polling.

    Example:
        >>> async with AsyncStoreClient() as client:
        ...     reply = await client.post_plist(url, {'guid': guid})
    """

    def __init__(self, config: Optional[APIConfig] = None):
        """
        Initialize async store client.

        Args:
            config: API configuration (uses defaults if not provided)
        """
        self._config = config or APIConfig.default()
        self._session: Optional[aiohttp.ClientSession] = None
        # Cookies set by numeric hosts are kept too (local stores in tests)
        self._cookie_jar = aiohttp.CookieJar(unsafe=True)
        self._closed = False

        from ..logging import get_logger
        self._logger = get_logger('ipadown.api')
        root_logger = logging.getLogger()
        if not root_logger.handlers:
            self._logger.setLevel(self._config.log_level)

    @property
    def config(self) -> APIConfig:
        """Get current configuration."""
        return self._config

    @property
    def cookie_jar(self) -> aiohttp.CookieJar:
        return self._cookie_jar

    async def __aenter__(self) -> 'AsyncStoreClient':
        """Async context manager entry."""
        await self._ensure_session()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        await self.close()

    async def _ensure_session(self) -> aiohttp.ClientSession:
        """Ensure session is created and open."""
        if self._closed:
            raise RuntimeError("Client is closed")
        if self._session is None or self._session.closed:
            connector = aiohttp.TCPConnector(**self._config.get_connector_kwargs())
            self._session = aiohttp.ClientSession(
                connector=connector,
                cookie_jar=self._cookie_jar,
                **self._config.get_session_kwargs()
            )
        return self._session

    async def close(self):
        """Close client and release resources."""
        self._closed = True
        if self._session and not self._session.closed:
            await self._session.close()
        self._session = None

    def _proxy(self) -> Optional[str]:
        return self._config.proxy.to_aiohttp_proxy() if self._config.proxy else None

    # Cookies

    def export_cookies(self) -> List[Dict[str, str]]:
        """Snapshot the cookie jar as plain dicts."""
        cookies = []
        for morsel in self._cookie_jar:
            cookies.append({
                'name': morsel.key,
                'value': morsel.value,
                'domain': morsel['domain'] or '',
                'path': morsel['path'] or '/',
            })
        return cookies

    def load_cookies(self, cookies: List[Dict[str, str]]) -> None:
        """Restore cookies produced by export_cookies()."""
        for item in cookies:
            domain = item.get('domain', '').lstrip('.')
            if not domain or not item.get('name'):
                continue
            cookie = SimpleCookie()
            cookie[item['name']] = item.get('value', '')
            cookie[item['name']]['domain'] = item['domain']
            cookie[item['name']]['path'] = item.get('path') or '/'
            self._cookie_jar.update_cookies(cookie, URL(f"https://{domain}/"))

    # Requests

    @staticmethod
    def _parse_plist(data: bytes) -> Dict[str, Any]:
        """Decode a plist reply into a dict."""
        try:
            body = plistlib.loads(data)
        except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise StoreProtocolError("Store reply is not a property list", str(e))
        if not isinstance(body, dict):
            raise StoreProtocolError(
                "Store reply has unexpected shape",
                f"expected dict, got {type(body).__name__}"
            )
        return body

    async def post_plist(
        self,
        url: str,
        fields: Dict[str, Any],
        headers: Optional[Dict[str, str]] = None,
        allow_redirects: bool = False
    ) -> StoreResponse:
        """
        POST a request to a store endpoint and decode the plist reply.

        Redirects are returned to the caller rather than followed.

        Args:
            url: Endpoint URL
            fields: Request fields (serialized as a JSON object)
            headers: Extra headers (auth context)
            allow_redirects: Follow redirects inside aiohttp

        Returns:
            StoreResponse; body is None for redirects

        Raises:
            aiohttp.ClientError: On transport failure
            asyncio.TimeoutError: On timeout
            StoreProtocolError: If the reply is not a plist dict
        """
        session = await self._ensure_session()
        request_headers = {
            'Accept': '*/*',
            'Content-Type': 'application/x-www-form-urlencoded',
        }
        if headers:
            request_headers.update(headers)

        self._logger.debug(f"POST {url} (fields: {sorted(k for k in fields if k != 'password')})")

        async with session.post(
            url,
            data=json.dumps(fields).encode('utf-8'),
            headers=request_headers,
            allow_redirects=allow_redirects,
            proxy=self._proxy()
        ) as response:
            data = await response.read()
            self._logger.debug(f"Response {response.status} from {response.url} ({len(data)} bytes)")
            reply = StoreResponse(
                status=response.status,
                url=str(response.url),
                headers=response.headers,
            )
            if reply.is_redirect:
                return reply
            reply.body = self._parse_plist(data)
            return reply

    async def get_json(self, url: str) -> Any:
        """
        GET a JSON document.

        Raises:
            aiohttp.ClientError: On transport failure or non-2xx status
            StoreProtocolError: If the body is not JSON
        """
        session = await self._ensure_session()
        self._logger.debug(f"GET {url}")
        async with session.get(url, proxy=self._proxy()) as response:
            response.raise_for_status()
            text = await response.text()
        try:
            return json.loads(text)
        except json.JSONDecodeError as e:
            raise StoreProtocolError("Reply is not JSON", str(e))

    async def iter_download(
        self,
        url: str,
        chunk_size: int = 1024 * 1024
    ) -> AsyncIterator[tuple]:
        """
        Stream a download.

        Yields:
            (chunk, total_size) tuples; total_size is 0 when unknown

        Raises:
            aiohttp.ClientError: On transport failure or non-2xx status
        """
        session = await self._ensure_session()
        self._logger.debug(f"Downloading {url}")
        async with session.get(url, proxy=self._proxy()) as response:
            response.raise_for_status()
            total = response.content_length or 0
            async for chunk in response.content.iter_chunked(chunk_size):
                yield chunk, total

    # Store operations

    @staticmethod
    def failure_message(body: Dict[str, Any]) -> Optional[str]:
        """
        Return the store's refusal message, or None if the reply is not a refusal.

        A refusal carries a cancel-purchase-batch marker or a failureType.
        """
        if 'cancel-purchase-batch' in body or body.get('failureType'):
            return (
                body.get('customerMessage')
                or body.get('failureType')
                or 'Store cancelled the request'
            )
        return None

    async def volume_store_download_product(
        self,
        guid: str,
        app_id: str,
        auth_headers: Dict[str, str],
        version_id: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        Query download info for an app.

        Omitting version_id asks for the current version; the reply then
        also lists every historical external version id.

        Returns:
            Decoded reply dict
        """
        fields = {
            'creditDisplay': '',
            'guid': guid,
            'salableAdamId': app_id,
        }
        if version_id:
            fields['externalVersionId'] = version_id

        url = str(URL(self._config.endpoints.download_url).update_query(guid=guid))
        reply = await self.post_plist(url, fields, headers=auth_headers, allow_redirects=True)
        return reply.body or {}
