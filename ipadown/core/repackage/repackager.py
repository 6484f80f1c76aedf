"""
Package repackager.

Turns a store archive into an installable one: unpacks it, records the
purchasing account, injects the entitlement (sinf) blobs and zips the
result back up.
"""
import os
import plistlib
import shutil
import stat
import tempfile
import zipfile
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple, Union
from xml.parsers.expat import ExpatError

from .models import RepackagedArtifact
from ..download.models import DownloadDescriptor
from ..exceptions import (
    MalformedArchiveError,
    RepackageIOError,
    UnsupportedLayoutError,
)
from ..logging import get_logger

PAYLOAD_DIR = 'Payload'
BUNDLE_SUFFIX = '.app'
METADATA_FILE = 'iTunesMetadata.plist'
SC_INFO_DIR = 'SC_Info'
SC_MANIFEST = 'Manifest.plist'

# ZIP cannot store dates before 1980; a fixed stamp keeps output reproducible
ZIP_DATE_TIME = (1980, 1, 1, 0, 0, 0)


class PackageRepackager:
    """
    Repackages downloaded archives.

    Each step raises a RepackageError subclass tagged with the step
    name. The final archive only appears at its output path once it is
    complete.

    Example:
        >>> repackager = PackageRepackager(Path('/tmp/work'))
        >>> artifact = repackager.repackage(Path('/tmp/work/app.ipa'), descriptor, 'me@example.com')
    """

    def __init__(self, work_dir: Union[str, Path]):
        """
        Initialize repackager.

        Args:
            work_dir: Directory holding unpacked trees and the output archive
        """
        self._work_dir = Path(work_dir)
        self._logger = get_logger('ipadown.repackage')

    @property
    def work_dir(self) -> Path:
        return self._work_dir

    def repackage(
        self,
        archive_path: Union[str, Path],
        descriptor: DownloadDescriptor,
        apple_id: str,
        output_path: Optional[Union[str, Path]] = None
    ) -> RepackagedArtifact:
        """
        Run every step on one archive.

        Args:
            archive_path: Downloaded store archive
            descriptor: Download info (metadata and sinf blobs)
            apple_id: Account the app is recorded as purchased by
            output_path: Where to write the result (default: <work_dir>/signed.ipa)

        Returns:
            RepackagedArtifact describing the output archive

        Raises:
            MalformedArchiveError: Archive or bundle lacks required content
            UnsupportedLayoutError: Signature manifest has an unknown shape
            RepackageIOError: Filesystem failure
        """
        archive_path = Path(archive_path)
        output = Path(output_path) if output_path else self._work_dir / 'signed.ipa'

        root = self.unpack(archive_path)
        bundle = self.locate_bundle(root)
        info = self.read_info(bundle)
        bundle_id, bundle_version = self.bundle_identity(info)
        self.write_metadata(root, descriptor.metadata, apple_id)
        written = self.inject_sinfs(bundle, info, descriptor.entitlement_blobs)
        self.archive(root, output)

        self._logger.info(
            f"Repackaged {bundle_id} {bundle_version} with {len(written)} sinf(s) -> {output}"
        )
        return RepackagedArtifact(
            path=output,
            bundle_id=bundle_id,
            bundle_version=bundle_version,
        )

    # Step 1

    def unpack(self, archive_path: Path) -> Path:
        """Extract the archive into a fresh <work_dir>/<archive stem> directory."""
        step = 'unpack'
        root = self._work_dir / archive_path.stem
        try:
            if root.exists():
                self._logger.debug(f"Removing existing folder at {root}")
                shutil.rmtree(root)
            root.mkdir(parents=True)
        except OSError as e:
            raise RepackageIOError(f"Cannot prepare {root}", step, str(e))

        try:
            with zipfile.ZipFile(archive_path) as zf:
                self._safe_extract(zf, root)
        except (zipfile.BadZipFile, NotImplementedError, RuntimeError) as e:
            raise MalformedArchiveError(f"{archive_path.name} is not a valid archive", step, str(e))
        except FileNotFoundError as e:
            raise RepackageIOError(f"Archive {archive_path} does not exist", step, str(e))
        except OSError as e:
            raise RepackageIOError(f"Cannot extract {archive_path}", step, str(e))

        self._logger.debug(f"Unpacked {archive_path} to {root}")
        return root

    def _safe_extract(self, zf: zipfile.ZipFile, root: Path) -> None:
        base = root.resolve()
        for member in zf.infolist():
            name = member.filename.replace('\\', '/')
            parts = Path(name).parts
            if name.startswith('/') or '..' in parts or (parts and ':' in parts[0]):
                raise MalformedArchiveError(f"Unsafe archive entry: {member.filename}", 'unpack')
            if stat.S_ISLNK(member.external_attr >> 16):
                raise MalformedArchiveError(f"Symlink entries are not supported: {member.filename}", 'unpack')
            if not (base / name).resolve().is_relative_to(base):
                raise MalformedArchiveError(f"Unsafe archive entry: {member.filename}", 'unpack')

        for member in zf.infolist():
            path = Path(zf.extract(member, root))
            mode = (member.external_attr >> 16) & 0o777
            if mode and not member.is_dir():
                os.chmod(path, mode)

    # Step 2

    def locate_bundle(self, root: Path) -> Path:
        """Find the app bundle directory under Payload/."""
        payload = root / PAYLOAD_DIR
        if not payload.is_dir():
            raise MalformedArchiveError(f"Archive has no {PAYLOAD_DIR} directory", 'locate_bundle')

        for entry in sorted(payload.iterdir()):
            if entry.name.endswith(BUNDLE_SUFFIX) and entry.is_dir():
                self._logger.debug(f"Found app content dir: {entry.name}")
                return entry

        raise MalformedArchiveError(f"No {BUNDLE_SUFFIX} bundle in {PAYLOAD_DIR}", 'locate_bundle')

    # Step 3

    def read_info(self, bundle: Path) -> Dict[str, Any]:
        """Read the bundle's Info.plist."""
        return self._read_plist(bundle / 'Info.plist', 'read_info', required=True)

    @staticmethod
    def bundle_identity(info: Dict[str, Any]) -> Tuple[str, str]:
        """Return (CFBundleIdentifier, CFBundleShortVersionString)."""
        bundle_id = info.get('CFBundleIdentifier')
        bundle_version = info.get('CFBundleShortVersionString')
        if not isinstance(bundle_id, str) or not bundle_id:
            raise MalformedArchiveError("Info.plist has no CFBundleIdentifier", 'read_info')
        if not isinstance(bundle_version, str) or not bundle_version:
            raise MalformedArchiveError("Info.plist has no CFBundleShortVersionString", 'read_info')
        return bundle_id, bundle_version

    # Step 4

    def write_metadata(self, root: Path, metadata: Dict[str, Any], apple_id: str) -> Path:
        """Write iTunesMetadata.plist next to Payload/, recording the account."""
        step = 'write_metadata'
        merged = dict(metadata)
        merged['apple-id'] = apple_id
        merged['userName'] = apple_id

        path = root / METADATA_FILE
        try:
            with open(path, 'wb') as f:
                plistlib.dump(merged, f)
        except (TypeError, OverflowError) as e:
            raise MalformedArchiveError("Store metadata cannot be written as a property list", step, str(e))
        except OSError as e:
            raise RepackageIOError(f"Cannot write {path}", step, str(e))

        self._logger.debug(f"Wrote {METADATA_FILE}")
        return path

    # Step 5

    def inject_sinfs(self, bundle: Path, info: Dict[str, Any], blobs: List[bytes]) -> List[Path]:
        """
        Write entitlement blobs into the bundle.

        SC_Info/Manifest.plist lists one path per blob. Bundles without
        that manifest get the first blob at SC_Info/<CFBundleExecutable>.sinf.

        Returns:
            Paths written
        """
        step = 'inject_sinfs'
        if not blobs:
            raise UnsupportedLayoutError("Store returned no entitlement blobs", step)

        manifest_path = bundle / SC_INFO_DIR / SC_MANIFEST
        manifest = self._read_plist(manifest_path, step, required=False)

        if manifest is None:
            self._logger.info(f"{SC_MANIFEST} does not exist, assuming an old app without one")
            executable = info.get('CFBundleExecutable')
            if not isinstance(executable, str) or not executable:
                raise MalformedArchiveError("Info.plist has no CFBundleExecutable", step)
            targets = [(Path(SC_INFO_DIR) / f"{executable}.sinf", blobs[0])]
        else:
            sinf_paths = manifest.get('SinfPaths')
            if not isinstance(sinf_paths, list) or not all(isinstance(p, str) for p in sinf_paths):
                raise UnsupportedLayoutError(f"{SC_MANIFEST} has no SinfPaths list", step)
            if not sinf_paths:
                raise UnsupportedLayoutError(f"{SC_MANIFEST} lists no sinf paths", step)
            if len(sinf_paths) > len(blobs):
                raise UnsupportedLayoutError(
                    f"{SC_MANIFEST} lists {len(sinf_paths)} sinf paths but only {len(blobs)} blobs were supplied",
                    step
                )
            targets = [(Path(p), blobs[i]) for i, p in enumerate(sinf_paths)]

        base = bundle.resolve()
        written = []
        for relative, blob in targets:
            target = bundle / relative
            if relative.is_absolute() or not target.resolve().is_relative_to(base):
                raise UnsupportedLayoutError(f"sinf path escapes the bundle: {relative}", step)
            try:
                target.parent.mkdir(parents=True, exist_ok=True)
                target.write_bytes(blob)
            except OSError as e:
                raise RepackageIOError(f"Cannot write {target}", step, str(e))
            self._logger.debug(f"Wrote sinf to {relative}")
            written.append(target)
        return written

    # Step 6

    def archive(self, root: Path, output: Path) -> Path:
        """
        Zip the unpacked tree into output.

        Entries are sorted and stamped with a fixed date so the same tree
        always yields the same bytes.
        """
        step = 'archive'
        try:
            output.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix='.ipadown-', suffix='.ipa', dir=output.parent)
            os.close(fd)
        except OSError as e:
            raise RepackageIOError(f"Cannot create archive next to {output}", step, str(e))

        tmp = Path(tmp_name)
        try:
            with zipfile.ZipFile(tmp, 'w', zipfile.ZIP_DEFLATED) as zf:
                for path in self._iter_tree(root):
                    arcname = path.relative_to(root).as_posix()
                    mode = path.stat().st_mode
                    if path.is_dir():
                        info = zipfile.ZipInfo(arcname + '/', date_time=ZIP_DATE_TIME)
                        info.external_attr = ((stat.S_IFDIR | 0o755) << 16) | 0x10
                        zf.writestr(info, b'')
                    else:
                        info = zipfile.ZipInfo(arcname, date_time=ZIP_DATE_TIME)
                        info.compress_type = zipfile.ZIP_DEFLATED
                        info.external_attr = (stat.S_IFREG | (mode & 0o777)) << 16
                        zf.writestr(info, path.read_bytes())
            os.replace(tmp, output)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise RepackageIOError(f"Cannot write {output}", step, str(e))

        self._logger.debug(f"Zipped {root} to {output}")
        return output

    @staticmethod
    def _iter_tree(root: Path):
        """Yield directories and files under root in a stable order."""
        for current, dirs, files in os.walk(root):
            dirs.sort()
            current_path = Path(current)
            if current_path != root:
                yield current_path
            for name in sorted(files):
                yield current_path / name

    def _read_plist(self, path: Path, step: str, required: bool) -> Optional[Dict[str, Any]]:
        try:
            with open(path, 'rb') as f:
                data = plistlib.load(f)
        except FileNotFoundError:
            if required:
                raise MalformedArchiveError(f"{path.name} is missing", step)
            return None
        except (plistlib.InvalidFileException, ExpatError, ValueError) as e:
            raise MalformedArchiveError(f"{path.name} is not a valid property list", step, str(e))
        except OSError as e:
            raise RepackageIOError(f"Cannot read {path}", step, str(e))

        if not isinstance(data, dict):
            raise MalformedArchiveError(f"{path.name} is not a dictionary", step)
        return data
