from __future__ import annotations

import gzip
import lzma
import tarfile
import zipfile
import zlib
from typing import BinaryIO, Optional

import lz4.frame
import zstandard

from .constants import COMPRESSION_FASTEST, COMPRESSION_BEST, COMPRESSION_NORMAL


# 1-9 scale -> native zstd levels (1..19; 20+ need ultra mode)
_ZSTD_LEVELS = {1: 1, 2: 2, 3: 3, 4: 5, 5: 7, 6: 9, 7: 12, 8: 15, 9: 19}


class LZ4FrameError(Exception):
    """A damaged LZ4 frame; lz4.frame itself only raises RuntimeError."""


class _LZ4FrameReader(lz4.frame.LZ4FrameFile):
    def read(self, size=-1):
        try:
            return super().read(size)
        except RuntimeError as exc:
            raise LZ4FrameError(str(exc)) from exc


# Errors a decompressor or container parser raises on damaged input
DECODE_ERRORS = (
    tarfile.TarError,
    zipfile.BadZipFile,
    lzma.LZMAError,
    zlib.error,
    gzip.BadGzipFile,
    zstandard.ZstdError,
    EOFError,
    LZ4FrameError,
)


def clamp_level(level: Optional[int]) -> int:
    if level is None:
        return COMPRESSION_NORMAL
    return max(COMPRESSION_FASTEST, min(COMPRESSION_BEST, int(level)))


def zstd_level(level: Optional[int]) -> int:
    return _ZSTD_LEVELS[clamp_level(level)]


def lz4_level(level: Optional[int]) -> int:
    lvl = clamp_level(level)
    # 0 selects the fast (non-HC) compressor; 4+ are HC levels
    return 0 if lvl <= 3 else lvl


def new_zstd_compressor(level: Optional[int] = None) -> zstandard.ZstdCompressor:
    return zstandard.ZstdCompressor(level=zstd_level(level))


def new_zstd_decompressor() -> zstandard.ZstdDecompressor:
    return zstandard.ZstdDecompressor()


# Writers: wrap an open binary file; closing the wrapper ends the compressed
# stream but leaves ``fh`` open.

def open_zstd_writer(fh: BinaryIO, level: Optional[int] = None, context=None) -> BinaryIO:
    cctx = context if context is not None else new_zstd_compressor(level)
    return cctx.stream_writer(fh, closefd=False)


def open_lz4_writer(fh: BinaryIO, level: Optional[int] = None, context=None) -> BinaryIO:
    return lz4.frame.LZ4FrameFile(fh, mode="wb", compression_level=lz4_level(level))


def open_xz_writer(fh: BinaryIO, level: Optional[int] = None, context=None) -> BinaryIO:
    return lzma.LZMAFile(fh, mode="wb", format=lzma.FORMAT_XZ, preset=clamp_level(level))


def open_gzip_writer(fh: BinaryIO, level: Optional[int] = None, context=None) -> BinaryIO:
    return gzip.GzipFile(fileobj=fh, mode="wb", compresslevel=clamp_level(level))


# Readers

def open_zstd_reader(fh: BinaryIO, context=None) -> BinaryIO:
    dctx = context if context is not None else new_zstd_decompressor()
    return dctx.stream_reader(fh, closefd=False)


def open_lz4_reader(fh: BinaryIO, context=None) -> BinaryIO:
    return _LZ4FrameReader(fh, mode="rb")


def open_xz_reader(fh: BinaryIO, context=None) -> BinaryIO:
    return lzma.LZMAFile(fh, mode="rb")


def open_gzip_reader(fh: BinaryIO, context=None) -> BinaryIO:
    return gzip.GzipFile(fileobj=fh, mode="rb")
