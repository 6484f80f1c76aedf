"""Tests for download resolution and archive streaming."""
import pytest

from ipadown.core.api import AsyncStoreClient
from ipadown.core.download import DownloadDescriptor, PackageFetcher
from ipadown.core.exceptions import FetchTransportError, RemoteRejectedError, StorageError

APP_ID = '544007664'


@pytest.fixture
async def client(store_config):
    async with AsyncStoreClient(store_config) as client:
        yield client


@pytest.fixture
def fetcher(client):
    return PackageFetcher(client, chunk_size=1024)


class TestResolveDownload:
    """Test suite for resolve_download."""

    @pytest.mark.asyncio
    async def test_descriptor(self, fetcher, fake_store, session_data, make_download_reply):
        url = fake_store.base_url + '/archive.ipa'
        fake_store.download_reply = make_download_reply(url, sinfs=[b'first', b'second'])

        descriptor = await fetcher.resolve_download(session_data.context, APP_ID, '101')

        assert descriptor.app_id == APP_ID
        assert descriptor.version_id == '101'
        assert descriptor.url == url
        assert descriptor.entitlement_blobs == [b'first', b'second']
        assert descriptor.bundle_display_name == 'Example'
        assert descriptor.bundle_version == '1.2.3'

    @pytest.mark.asyncio
    async def test_requests_external_version(self, fetcher, fake_store, session_data, make_download_reply):
        fake_store.download_reply = make_download_reply('http://cdn.example/app.ipa')

        await fetcher.resolve_download(session_data.context, APP_ID, '101')

        assert fake_store.download_requests[0]['fields']['externalVersionId'] == '101'

    @pytest.mark.asyncio
    async def test_current_version_omits_external_version(self, fetcher, fake_store, session_data, make_download_reply):
        fake_store.download_reply = make_download_reply('http://cdn.example/app.ipa')

        await fetcher.resolve_download(session_data.context, APP_ID)

        assert 'externalVersionId' not in fake_store.download_requests[0]['fields']

    @pytest.mark.asyncio
    async def test_refusal(self, fetcher, fake_store, session_data):
        """Test a store refusal surfaces its customer message."""
        fake_store.download_reply = {
            'cancel-purchase-batch': True,
            'customerMessage': 'This item is no longer available.',
        }

        with pytest.raises(RemoteRejectedError) as exc_info:
            await fetcher.resolve_download(session_data.context, APP_ID, '101')

        assert exc_info.value.detail == 'This item is no longer available.'

    @pytest.mark.asyncio
    async def test_missing_url(self, fetcher, fake_store, session_data, make_download_reply):
        reply = make_download_reply('')
        fake_store.download_reply = reply

        with pytest.raises(RemoteRejectedError):
            await fetcher.resolve_download(session_data.context, APP_ID, '101')

    @pytest.mark.asyncio
    async def test_malformed_sinf(self, fetcher, fake_store, session_data, make_download_reply):
        reply = make_download_reply('http://cdn.example/app.ipa')
        reply['songList'][0]['sinfs'] = [{'id': 0, 'sinf': 'not-bytes'}]
        fake_store.download_reply = reply

        with pytest.raises(RemoteRejectedError):
            await fetcher.resolve_download(session_data.context, APP_ID, '101')


class TestFetchArtifact:
    """Test suite for fetch_artifact."""

    @pytest.mark.asyncio
    async def test_streams_to_destination(self, fetcher, fake_store, tmp_path):
        """Test the archive lands byte for byte and progress is reported."""
        fake_store.archive = bytes(range(256)) * 20
        descriptor = DownloadDescriptor(APP_ID, '101', fake_store.base_url + '/archive.ipa')
        progress = []

        path = await fetcher.fetch_artifact(
            descriptor,
            tmp_path / 'work' / 'app.ipa',
            progress_callback=lambda done, total: progress.append((done, total)),
        )

        assert path.read_bytes() == fake_store.archive
        assert progress[-1] == (len(fake_store.archive), len(fake_store.archive))
        assert len(progress) > 1

    @pytest.mark.asyncio
    async def test_replaces_existing_file(self, fetcher, fake_store, tmp_path):
        fake_store.archive = b'new archive'
        dest = tmp_path / 'app.ipa'
        dest.write_bytes(b'old archive that is longer')
        descriptor = DownloadDescriptor(APP_ID, '101', fake_store.base_url + '/archive.ipa')

        await fetcher.fetch_artifact(descriptor, dest)

        assert dest.read_bytes() == b'new archive'

    @pytest.mark.asyncio
    async def test_http_error_leaves_no_file(self, fetcher, fake_store, tmp_path):
        """Test a failed transfer is reported and the partial file removed."""
        descriptor = DownloadDescriptor(APP_ID, '101', fake_store.base_url + '/archive.ipa')
        dest = tmp_path / 'app.ipa'

        with pytest.raises(FetchTransportError):
            await fetcher.fetch_artifact(descriptor, dest)

        assert not dest.exists()

    @pytest.mark.asyncio
    async def test_unwritable_destination(self, fetcher, fake_store, tmp_path):
        fake_store.archive = b'archive'
        (tmp_path / 'app.ipa').mkdir()
        descriptor = DownloadDescriptor(APP_ID, '101', fake_store.base_url + '/archive.ipa')

        with pytest.raises(StorageError):
            await fetcher.fetch_artifact(descriptor, tmp_path / 'app.ipa')
