"""Format registry and detection.

Every supported container is one row in ``FORMATS``: the canonical file
suffix, the magic bytes the container starts with, and the streaming
compressor/decompressor pair (``None`` for zip, where entries are deflated
individually by :mod:`zipfile`). Adding a format means adding a tag, a row,
and nothing else.
"""

from __future__ import annotations

import enum
import logging
import os
from dataclasses import dataclass
from typing import Callable, Dict, Optional, Tuple

from . import codec
from .constants import (
    GZIP_MAGIC,
    HEADER_WINDOW,
    LZ4_MAGIC,
    PACKAGE_SUFFIX,
    XZ_MAGIC,
    ZIP_EOCD_MAGIC,
    ZIP_LOCAL_MAGIC,
    ZSTD_MAGIC,
)
from .errors import UnsupportedFormat

log = logging.getLogger(__name__)


class FormatTag(str, enum.Enum):
    TAR_ZST = "tar.zst"
    TAR_LZ4 = "tar.lz4"
    TAR_XZ = "tar.xz"
    TAR_GZ = "tar.gz"
    ZIP = "zip"

    def __str__(self) -> str:
        return self.value

    @property
    def is_tar(self) -> bool:
        return self is not FormatTag.ZIP

    @classmethod
    def parse(cls, value) -> "FormatTag":
        """Accept a tag, its value, or a common spelling such as ``tar+gzip``."""
        if isinstance(value, cls):
            return value
        key = str(value).strip().lower().lstrip(".")
        tag = _ALIASES.get(key)
        if tag is None:
            raise UnsupportedFormat(f"unsupported archive format: {value!r}")
        return tag


_ALIASES: Dict[str, FormatTag] = {}
for _tag, _names in (
    (FormatTag.TAR_ZST, ("tar.zst", "tar+zstd", "tar+zst", "tar.zstd", "zstd", "zst")),
    (FormatTag.TAR_LZ4, ("tar.lz4", "tar+lz4", "lz4")),
    (FormatTag.TAR_XZ, ("tar.xz", "tar+xz", "xz")),
    (FormatTag.TAR_GZ, ("tar.gz", "tar+gzip", "tar+gz", "tar.gzip", "gzip", "gz")),
    (FormatTag.ZIP, ("zip",)),
):
    for _name in _names:
        _ALIASES[_name] = _tag


@dataclass(frozen=True)
class FormatSpec:
    tag: FormatTag
    suffix: str
    magic: Tuple[bytes, ...]
    compressor: Optional[Callable] = None
    decompressor: Optional[Callable] = None


# Ordered by sniffing priority
FORMATS: Dict[FormatTag, FormatSpec] = {
    FormatTag.TAR_ZST: FormatSpec(
        FormatTag.TAR_ZST, ".tar.zst", (ZSTD_MAGIC,), codec.open_zstd_writer, codec.open_zstd_reader
    ),
    FormatTag.TAR_LZ4: FormatSpec(
        FormatTag.TAR_LZ4, ".tar.lz4", (LZ4_MAGIC,), codec.open_lz4_writer, codec.open_lz4_reader
    ),
    FormatTag.TAR_XZ: FormatSpec(
        FormatTag.TAR_XZ, ".tar.xz", (XZ_MAGIC,), codec.open_xz_writer, codec.open_xz_reader
    ),
    FormatTag.TAR_GZ: FormatSpec(
        FormatTag.TAR_GZ, ".tar.gz", (GZIP_MAGIC,), codec.open_gzip_writer, codec.open_gzip_reader
    ),
    FormatTag.ZIP: FormatSpec(FormatTag.ZIP, ".zip", (ZIP_LOCAL_MAGIC, ZIP_EOCD_MAGIC)),
}

DEFAULT_FORMAT = FormatTag.TAR_ZST


def get_spec(fmt) -> FormatSpec:
    return FORMATS[FormatTag.parse(fmt)]


def format_from_suffix(file_name: str) -> Optional[FormatTag]:
    """Longest matching canonical suffix, or None."""
    name = os.fspath(file_name).lower()
    best: Optional[FormatSpec] = None
    for spec in FORMATS.values():
        if name.endswith(spec.suffix) and (best is None or len(spec.suffix) > len(best.suffix)):
            best = spec
    return best.tag if best is not None else None


def sniff_header(header: bytes) -> Optional[FormatTag]:
    for spec in FORMATS.values():
        for magic in spec.magic:
            if header.startswith(magic):
                return spec.tag
    return None


def sniff_format(path) -> Optional[FormatTag]:
    """Match the first ``HEADER_WINDOW`` bytes of ``path`` against known magics.

    Returns None when nothing matches or the file cannot be read.
    """
    try:
        with open(path, "rb") as fh:
            header = fh.read(HEADER_WINDOW)
    except OSError as exc:
        log.debug("cannot sniff %s: %s", path, exc)
        return None
    return sniff_header(header)


def detect_format(file_name) -> FormatTag:
    """Resolve the container format of ``file_name``.

    Canonical suffixes are trusted without touching the file. The generic
    package suffix is resolved from the file's leading bytes. Anything that
    stays ambiguous falls back to ``DEFAULT_FORMAT``; a wrong guess surfaces
    later as a decode error.
    """
    tag = format_from_suffix(file_name)
    if tag is not None:
        return tag
    if os.fspath(file_name).lower().endswith(PACKAGE_SUFFIX):
        tag = sniff_format(file_name)
        if tag is not None:
            return tag
    log.debug("format of %s not recognised; assuming %s", file_name, DEFAULT_FORMAT)
    return DEFAULT_FORMAT
