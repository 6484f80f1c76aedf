"""Pytest fixtures for ipadown tests."""
import json
import plistlib
import zipfile
from pathlib import Path
from types import SimpleNamespace
from typing import Callable, Dict, List, Optional

import pytest
from aiohttp import web

from ipadown.core.api import APIConfig, EndpointConfig, RetryConfig
from ipadown.core.session import (
    Credential,
    CredentialVault,
    MemorySecretStore,
    SessionContext,
    SessionData,
)

APPLE_ID = 'user@example.com'
STORE_FRONT = '143441-1,29'


def granted_body(dsid: int = 123456789, token: str = 'token-abc') -> dict:
    return {
        'm-allowed': True,
        'download-queue-info': {'dsid': dsid},
        'passwordToken': token,
        'accountInfo': {'address': {'firstName': 'Jane', 'lastName': 'Appleseed'}},
    }


def granted() -> web.Response:
    response = web.Response(
        body=plistlib.dumps(granted_body()),
        headers={'x-set-apple-store-front': STORE_FRONT},
        content_type='application/x-apple-plist',
    )
    response.set_cookie('mz_at0', 'cookie-value')
    return response


def refused(message: str = 'Your Apple ID or password was entered incorrectly.') -> web.Response:
    return web.Response(
        body=plistlib.dumps({'customerMessage': message, 'failureType': '-5000'}),
        content_type='application/x-apple-plist',
    )


def redirect(location: str) -> web.Response:
    return web.Response(status=302, headers={'Location': location})


class FakeStore:
    """
    Local stand-in for the store, the version mirror and the CDN.

    auth_replies holds response factories used in order; the last one
    repeats once the list runs out.
    """

    def __init__(self):
        self.auth_replies: List[Callable[[], web.Response]] = [granted]
        self.auth_requests: List[dict] = []
        self.download_reply: dict = {}
        self.download_requests: List[dict] = []
        self.history: Dict[str, dict] = {}
        self.history_status = 200
        self.archive: bytes = b''
        self.base_url = ''
        self._runner: Optional[web.AppRunner] = None

    def _build_app(self) -> web.Application:
        app = web.Application()
        app.router.add_post('/auth', self._handle_auth)
        app.router.add_post('/auth2', self._handle_auth)
        app.router.add_post('/download', self._handle_download)
        app.router.add_get('/history/{app_id}', self._handle_history)
        app.router.add_get('/archive.ipa', self._handle_archive)
        return app

    async def _handle_auth(self, request: web.Request) -> web.Response:
        fields = json.loads(await request.read())
        self.auth_requests.append({'path': request.path, 'fields': fields})
        index = min(len(self.auth_requests), len(self.auth_replies)) - 1
        return self.auth_replies[index]()

    async def _handle_download(self, request: web.Request) -> web.Response:
        fields = json.loads(await request.read())
        self.download_requests.append({
            'fields': fields,
            'query': dict(request.query),
            'headers': request.headers.copy(),
        })
        return web.Response(body=plistlib.dumps(self.download_reply))

    async def _handle_history(self, request: web.Request) -> web.Response:
        app_id = request.match_info['app_id']
        if self.history_status != 200:
            return web.Response(status=self.history_status, text='mirror unavailable')
        if app_id not in self.history:
            return web.json_response({'data': []})
        return web.json_response(self.history[app_id])

    async def _handle_archive(self, request: web.Request) -> web.Response:
        if not self.archive:
            raise web.HTTPNotFound()
        return web.Response(body=self.archive, content_type='application/octet-stream')

    async def start(self) -> 'FakeStore':
        self._runner = web.AppRunner(self._build_app())
        await self._runner.setup()
        site = web.TCPSite(self._runner, '127.0.0.1', 0)
        await site.start()
        port = self._runner.addresses[0][1]
        self.base_url = f'http://127.0.0.1:{port}'
        return self

    async def stop(self) -> None:
        if self._runner is not None:
            await self._runner.cleanup()


@pytest.fixture
async def fake_store():
    """Running fake store."""
    store = FakeStore()
    await store.start()
    yield store
    await store.stop()


@pytest.fixture
def store_config(fake_store):
    """APIConfig pointing every endpoint at the fake store."""
    return APIConfig(
        endpoints=EndpointConfig(
            auth_url=fake_store.base_url + '/auth',
            download_url=fake_store.base_url + '/download',
            mirror_url=fake_store.base_url + '/history/',
            manifest_service='https://manifest.example.com/genPlist',
        ),
        retry=RetryConfig(max_attempts=4),
    )


@pytest.fixture
def vault(tmp_path):
    """Vault backed by an in-memory key."""
    return CredentialVault(MemorySecretStore(), tmp_path / 'authinfo')


@pytest.fixture
def session_data():
    """Complete persisted identity."""
    credential = Credential(APPLE_ID, 'secret')
    credential.ensure_guid()
    context = SessionContext(
        headers={
            'X-Dsid': '123456789',
            'iCloud-Dsid': '123456789',
            'X-Apple-Store-Front': STORE_FRONT,
            'X-Token': 'token-abc',
        },
        account_name='Jane Appleseed',
        guid=credential.guid,
    )
    return SessionData(credential=credential, context=context)


def build_ipa(
    path: Path,
    bundle_id: str = 'com.example.app',
    version: str = '1.2.3',
    executable: Optional[str] = 'Example',
    sinf_paths: Optional[List[str]] = None,
) -> Path:
    """Write a minimal store archive. sinf_paths adds SC_Info/Manifest.plist."""
    info = {
        'CFBundleIdentifier': bundle_id,
        'CFBundleShortVersionString': version,
    }
    if executable:
        info['CFBundleExecutable'] = executable

    with zipfile.ZipFile(path, 'w', zipfile.ZIP_DEFLATED) as zf:
        zf.writestr('Payload/Example.app/Info.plist', plistlib.dumps(info))
        zf.writestr('Payload/Example.app/Example', b'\xcf\xfa\xed\xfe' + b'\x00' * 64)
        zf.writestr('Payload/Example.app/Assets.car', b'assets')
        if sinf_paths is not None:
            zf.writestr(
                'Payload/Example.app/SC_Info/Manifest.plist',
                plistlib.dumps({'SinfPaths': sinf_paths}),
            )
    return path


def download_reply(url: str, sinfs: Optional[List[bytes]] = None, versions=None) -> dict:
    """Store reply to a volumeStoreDownloadProduct query."""
    return {
        'songList': [{
            'URL': url,
            'sinfs': [{'id': i, 'sinf': blob} for i, blob in enumerate(sinfs or [b'sinf-0'])],
            'metadata': {
                'bundleDisplayName': 'Example',
                'bundleShortVersionString': '1.2.3',
                'softwareVersionExternalIdentifier': 102,
                'softwareVersionExternalIdentifiers': versions if versions is not None else [100, 101, 102],
            },
        }],
    }


@pytest.fixture
def make_ipa():
    """Factory for minimal store archives (see build_ipa)."""
    return build_ipa


@pytest.fixture
def make_download_reply():
    """Factory for store download replies (see download_reply)."""
    return download_reply


@pytest.fixture
def replies():
    """Sign-in response factories for FakeStore.auth_replies."""
    return SimpleNamespace(granted=granted, granted_body=granted_body, refused=refused, redirect=redirect)
