"""Tests for PackageRepackager."""
import plistlib
import zipfile

import pytest

from ipadown.core.download import DownloadDescriptor
from ipadown.core.exceptions import MalformedArchiveError, RepackageError, UnsupportedLayoutError
from ipadown.core.repackage import PackageRepackager

APPLE_ID = 'user@example.com'
BUNDLE = 'Payload/Example.app'


def descriptor(blobs=None, metadata=None) -> DownloadDescriptor:
    return DownloadDescriptor(
        app_id='544007664',
        version_id='101',
        url='http://cdn.example/app.ipa',
        entitlement_blobs=[b'sinf-0'] if blobs is None else blobs,
        metadata={'itemName': 'Example', 'bundleShortVersionString': '1.2.3'} if metadata is None else metadata,
    )


@pytest.fixture
def repackager(tmp_path):
    return PackageRepackager(tmp_path / 'work')


@pytest.fixture
def archive(tmp_path, make_ipa):
    (tmp_path / 'work').mkdir()
    return make_ipa(tmp_path / 'work' / 'app.ipa')


class TestRepackage:
    """Test suite for the full repackaging pipeline."""

    def test_artifact(self, repackager, archive, tmp_path):
        artifact = repackager.repackage(archive, descriptor(), APPLE_ID)

        assert artifact.path == tmp_path / 'work' / 'signed.ipa'
        assert artifact.bundle_id == 'com.example.app'
        assert artifact.bundle_version == '1.2.3'
        assert artifact.size == artifact.path.stat().st_size
        assert zipfile.is_zipfile(artifact.path)

    def test_output_keeps_bundle_content(self, repackager, archive):
        artifact = repackager.repackage(archive, descriptor(), APPLE_ID)

        with zipfile.ZipFile(artifact.path) as zf:
            names = zf.namelist()
            assert f'{BUNDLE}/Info.plist' in names
            assert zf.read(f'{BUNDLE}/Assets.car') == b'assets'

    def test_metadata_records_account(self, repackager, archive):
        """Test iTunesMetadata.plist carries store metadata plus the account."""
        artifact = repackager.repackage(archive, descriptor(), APPLE_ID)

        with zipfile.ZipFile(artifact.path) as zf:
            metadata = plistlib.loads(zf.read('iTunesMetadata.plist'))

        assert metadata['apple-id'] == APPLE_ID
        assert metadata['userName'] == APPLE_ID
        assert metadata['itemName'] == 'Example'

    def test_idempotent(self, repackager, archive):
        """Test repackaging the same input twice yields identical bytes."""
        first = repackager.repackage(archive, descriptor(), APPLE_ID).path.read_bytes()
        second = repackager.repackage(archive, descriptor(), APPLE_ID).path.read_bytes()

        assert first == second

    def test_stale_work_tree_is_replaced(self, repackager, archive, tmp_path):
        """Test leftovers in an existing unpack directory do not reach the output."""
        stale = tmp_path / 'work' / 'app' / BUNDLE / 'stale.txt'
        stale.parent.mkdir(parents=True)
        stale.write_bytes(b'old run')
        (tmp_path / 'work' / 'app' / 'stale.txt').write_bytes(b'old run')

        artifact = repackager.repackage(archive, descriptor(), APPLE_ID)

        with zipfile.ZipFile(artifact.path) as zf:
            names = zf.namelist()
        assert 'stale.txt' not in names
        assert f'{BUNDLE}/stale.txt' not in names

    def test_output_is_deterministic_across_dirs(self, tmp_path, make_ipa):
        outputs = []
        for name in ('a', 'b'):
            work = tmp_path / name
            work.mkdir()
            ipa = make_ipa(work / 'app.ipa')
            outputs.append(PackageRepackager(work).repackage(ipa, descriptor(), APPLE_ID).path.read_bytes())

        assert outputs[0] == outputs[1]

    def test_custom_output_path(self, repackager, archive, tmp_path):
        artifact = repackager.repackage(archive, descriptor(), APPLE_ID, tmp_path / 'out' / 'x.ipa')

        assert artifact.path == tmp_path / 'out' / 'x.ipa'
        assert artifact.path.exists()


class TestInjectSinfs:
    """Test suite for entitlement blob placement."""

    def test_legacy_fallback(self, repackager, archive):
        """Test a bundle without Manifest.plist gets blob 0 at SC_Info/<exe>.sinf."""
        artifact = repackager.repackage(archive, descriptor([b'first', b'second']), APPLE_ID)

        with zipfile.ZipFile(artifact.path) as zf:
            sinfs = [n for n in zf.namelist() if n.endswith('.sinf')]
            assert sinfs == [f'{BUNDLE}/SC_Info/Example.sinf']
            assert zf.read(sinfs[0]) == b'first'

    def test_manifest_paths(self, tmp_path, make_ipa):
        """Test each SinfPaths entry receives the blob at the same index."""
        work = tmp_path / 'work'
        work.mkdir()
        paths = ['SC_Info/Example.sinf', 'PlugIns/Widget.appex/SC_Info/Widget.sinf']
        ipa = make_ipa(work / 'app.ipa', sinf_paths=paths)

        artifact = PackageRepackager(work).repackage(ipa, descriptor([b'main', b'widget']), APPLE_ID)

        with zipfile.ZipFile(artifact.path) as zf:
            assert zf.read(f'{BUNDLE}/SC_Info/Example.sinf') == b'main'
            assert zf.read(f'{BUNDLE}/PlugIns/Widget.appex/SC_Info/Widget.sinf') == b'widget'

    def test_more_paths_than_blobs(self, tmp_path, make_ipa):
        work = tmp_path / 'work'
        work.mkdir()
        ipa = make_ipa(work / 'app.ipa', sinf_paths=['SC_Info/A.sinf', 'SC_Info/B.sinf'])

        with pytest.raises(UnsupportedLayoutError) as exc_info:
            PackageRepackager(work).repackage(ipa, descriptor([b'only-one']), APPLE_ID)

        assert exc_info.value.step == 'inject_sinfs'
        assert not (work / 'signed.ipa').exists()

    def test_manifest_without_paths(self, tmp_path, make_ipa):
        """Test a Manifest.plist listing no sinf paths is rejected."""
        work = tmp_path / 'work'
        work.mkdir()
        ipa = make_ipa(work / 'app.ipa', sinf_paths=[])

        with pytest.raises(UnsupportedLayoutError) as exc_info:
            PackageRepackager(work).repackage(ipa, descriptor(), APPLE_ID)

        assert exc_info.value.step == 'inject_sinfs'
        assert not (work / 'signed.ipa').exists()

    def test_path_escaping_bundle(self, tmp_path, make_ipa):
        work = tmp_path / 'work'
        work.mkdir()
        ipa = make_ipa(work / 'app.ipa', sinf_paths=['../../evil.sinf'])

        with pytest.raises(UnsupportedLayoutError):
            PackageRepackager(work).repackage(ipa, descriptor(), APPLE_ID)

    def test_no_blobs(self, repackager, archive):
        with pytest.raises(UnsupportedLayoutError):
            repackager.repackage(archive, descriptor(blobs=[]), APPLE_ID)

    def test_legacy_without_executable(self, tmp_path, make_ipa):
        work = tmp_path / 'work'
        work.mkdir()
        ipa = make_ipa(work / 'app.ipa', executable=None)

        with pytest.raises(MalformedArchiveError) as exc_info:
            PackageRepackager(work).repackage(ipa, descriptor(), APPLE_ID)

        assert exc_info.value.step == 'inject_sinfs'


class TestMalformedInput:
    """Test suite for archives that cannot be repackaged."""

    def test_not_a_zip(self, repackager, tmp_path):
        bad = tmp_path / 'bad.ipa'
        bad.write_bytes(b'this is not a zip file')

        with pytest.raises(MalformedArchiveError) as exc_info:
            repackager.repackage(bad, descriptor(), APPLE_ID)

        assert exc_info.value.step == 'unpack'
        assert str(exc_info.value).startswith('[unpack]')

    def test_missing_bundle(self, repackager, tmp_path):
        """Test an archive without Payload/*.app is rejected."""
        ipa = tmp_path / 'empty.ipa'
        with zipfile.ZipFile(ipa, 'w') as zf:
            zf.writestr('Payload/readme.txt', b'no bundle here')

        with pytest.raises(MalformedArchiveError) as exc_info:
            repackager.repackage(ipa, descriptor(), APPLE_ID)

        assert exc_info.value.step == 'locate_bundle'

    def test_missing_info_plist(self, repackager, tmp_path):
        ipa = tmp_path / 'noinfo.ipa'
        with zipfile.ZipFile(ipa, 'w') as zf:
            zf.writestr(f'{BUNDLE}/Example', b'binary')

        with pytest.raises(MalformedArchiveError) as exc_info:
            repackager.repackage(ipa, descriptor(), APPLE_ID)

        assert exc_info.value.step == 'read_info'

    def test_missing_bundle_identifier(self, repackager, tmp_path, make_ipa):
        ipa = make_ipa(tmp_path / 'noid.ipa', bundle_id='')

        with pytest.raises(MalformedArchiveError):
            repackager.repackage(ipa, descriptor(), APPLE_ID)

    def test_unsafe_entry(self, repackager, tmp_path):
        ipa = tmp_path / 'slip.ipa'
        with zipfile.ZipFile(ipa, 'w') as zf:
            zf.writestr('../outside.txt', b'x')

        with pytest.raises(MalformedArchiveError):
            repackager.repackage(ipa, descriptor(), APPLE_ID)

        assert not (tmp_path / 'outside.txt').exists()

    def test_missing_archive(self, repackager, tmp_path):
        with pytest.raises(RepackageError):
            repackager.repackage(tmp_path / 'absent.ipa', descriptor(), APPLE_ID)
