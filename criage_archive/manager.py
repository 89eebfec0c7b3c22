"""Archive manager: the entry point other components talk to.

One manager owns the long-lived Zstandard compressor/decompressor used for
the default ``tar.zst`` format. python-zstandard contexts must not drive two
streams at once, so every ``tar.zst`` session holds ``_zstd_lock`` for its
whole duration. All other codecs are created per call and need no locking.
"""

from __future__ import annotations

import logging
import os
import tempfile
import threading
from typing import Any, Iterable, List, Mapping, Optional

from . import __version__
from .codec import clamp_level, new_zstd_compressor, new_zstd_decompressor
from .constants import COMPRESSION_NORMAL, COMPRESSION_PRESETS, CREATED_BY, MANIFEST_FILE_NAME, METADATA_ENTRY_NAME
from .entryutil import ArchiveEntry
from .errors import ArchiveError, ConfigError, MetadataMissing
from .formats import DEFAULT_FORMAT, FormatTag, detect_format
from .metadata import PackageMetadata
from .reader import extract_archive, list_entries
from .writer import create_archive

log = logging.getLogger(__name__)


def _parse_level(value) -> int:
    """Accept 1-9 (clamped), a digit string, or a preset name such as ``best``."""
    if isinstance(value, str):
        key = value.strip().lower()
        if key in COMPRESSION_PRESETS:
            return COMPRESSION_PRESETS[key]
    try:
        return clamp_level(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid compression level {value!r}; use 1-9 or fast/normal/best") from exc


class ArchiveManager:
    def __init__(
        self,
        compression_level: Optional[int] = COMPRESSION_NORMAL,
        preferred_format=DEFAULT_FORMAT,
        version: str = __version__,
    ):
        self.compression_level = _parse_level(compression_level)
        self.preferred_format = FormatTag.parse(preferred_format)
        self.version = version
        self._zstd_lock = threading.Lock()
        self._zstd_compressor = new_zstd_compressor(self.compression_level)
        self._zstd_decompressor = new_zstd_decompressor()
        self._closed = False

    @classmethod
    def from_config(cls, config: Mapping[str, Any], version: str = __version__) -> "ArchiveManager":
        """Build from an already-parsed config mapping (``compressionLevel``, ``preferredFormat``)."""
        return cls(
            compression_level=config.get("compressionLevel") or COMPRESSION_NORMAL,
            preferred_format=config.get("preferredFormat") or DEFAULT_FORMAT,
            version=version,
        )

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self):
        """Release the shared codec contexts; later calls are no-ops."""
        with self._zstd_lock:
            if self._closed:
                return
            self._zstd_compressor = None
            self._zstd_decompressor = None
            self._closed = True

    @property
    def closed(self) -> bool:
        return self._closed

    def _check_open(self):
        if self._closed:
            raise ArchiveError("archive manager is closed")

    def detect_format(self, file_name) -> FormatTag:
        return detect_format(file_name)

    def _resolve(self, archive_path, fmt) -> FormatTag:
        if fmt is None:
            return detect_format(archive_path)
        return FormatTag.parse(fmt)

    def extract_archive(self, archive_path, dest_dir, fmt=None) -> None:
        self._check_open()
        tag = self._resolve(archive_path, fmt)
        if tag is FormatTag.TAR_ZST:
            with self._zstd_lock:
                self._check_open()
                extract_archive(
                    os.fspath(archive_path), os.fspath(dest_dir), tag, zstd_decompressor=self._zstd_decompressor
                )
        else:
            extract_archive(os.fspath(archive_path), os.fspath(dest_dir), tag)

    def list_entries(self, archive_path, fmt=None) -> List[ArchiveEntry]:
        self._check_open()
        tag = self._resolve(archive_path, fmt)
        if tag is FormatTag.TAR_ZST:
            with self._zstd_lock:
                self._check_open()
                return list_entries(os.fspath(archive_path), tag, zstd_decompressor=self._zstd_decompressor)
        return list_entries(os.fspath(archive_path), tag)

    def extract_metadata_from_archive(self, archive_path, fmt=None) -> PackageMetadata:
        """Read the embedded metadata record.

        The archive is unpacked into a scratch directory that is removed on
        every exit path. Archives without the reserved entry but with a
        ``criage.yaml`` get a minimal record (creator and version only).
        """
        self._check_open()
        with tempfile.TemporaryDirectory(prefix="criage-metadata-") as scratch:
            self.extract_archive(archive_path, scratch, fmt)
            metadata_path = os.path.join(scratch, METADATA_ENTRY_NAME)
            if os.path.isfile(metadata_path):
                with open(metadata_path, "rb") as fh:
                    return PackageMetadata.from_json(fh.read())
            if os.path.isfile(os.path.join(scratch, MANIFEST_FILE_NAME)):
                return self._metadata_from_manifest()
        raise MetadataMissing(f"no metadata found in archive {archive_path}")

    def _metadata_from_manifest(self) -> PackageMetadata:
        # TODO: populate ``package`` from the manifest once the fallback's
        # contract is settled; until then only creator/version are known.
        log.warning("archive has no %s; using minimal metadata from %s", METADATA_ENTRY_NAME, MANIFEST_FILE_NAME)
        return PackageMetadata(created_by=CREATED_BY, version=self.version)

    def create_archive_with_metadata(
        self,
        source_dir,
        output_path,
        fmt=None,
        include: Optional[Iterable[str]] = None,
        exclude: Optional[Iterable[str]] = None,
        metadata: Optional[PackageMetadata] = None,
    ) -> None:
        """Pack ``source_dir`` with ``metadata`` as the first entry.

        A failed call leaves ``output_path`` in an undefined state; the caller
        must remove it.
        """
        self._check_open()
        tag = self.preferred_format if fmt is None else FormatTag.parse(fmt)
        if metadata is None:
            metadata = PackageMetadata(compression_type=tag.value, version=self.version)
        payload = metadata.to_json()
        args = (os.fspath(source_dir), os.fspath(output_path), tag, include, exclude, payload)
        if tag is FormatTag.TAR_ZST:
            with self._zstd_lock:
                self._check_open()
                create_archive(*args, level=self.compression_level, zstd_compressor=self._zstd_compressor)
        else:
            create_archive(*args, level=self.compression_level)
