from __future__ import annotations

import io
import logging
import os
import stat
import tarfile
import time
import zipfile
from typing import BinaryIO, Iterable, Iterator, List, Optional, Tuple

from .codec import clamp_level
from .constants import DEFAULT_FILE_MODE, METADATA_ENTRY_NAME
from .errors import ArchiveError, UnreadableSource, WriteFailure
from .filters import should_exclude
from .formats import FormatSpec, FormatTag, get_spec

log = logging.getLogger(__name__)


def _io_error(exc: OSError, fs_path: str) -> ArchiveError:
    # open()/read() failures on the source carry its name; anything else hit the output
    if exc.filename is not None and os.fspath(exc.filename) == fs_path:
        return UnreadableSource(f"cannot read {fs_path}: {exc}")
    return WriteFailure(f"failed writing entry for {fs_path}: {exc}")


def _list_children(dir_path: str, rel_dir: str) -> List[Tuple[str, str]]:
    try:
        names = sorted(os.listdir(dir_path))
    except OSError as exc:
        raise UnreadableSource(f"cannot list {dir_path}: {exc}") from exc
    return [
        (os.path.join(dir_path, name), f"{rel_dir}/{name}" if rel_dir else name)
        for name in names
    ]


def _stat_entry(fs_path: str, rel: str) -> Tuple[Optional[os.stat_result], bool]:
    """Stat ``fs_path`` through a symlink; returns ``(stat, descend)``.

    A symlink is packed as what it points at, but a linked directory is never
    descended into. ``(None, False)`` means the entry is skipped.
    """
    try:
        lst = os.lstat(fs_path)
    except OSError as exc:
        raise UnreadableSource(f"cannot stat {fs_path}: {exc}") from exc
    st = lst
    if stat.S_ISLNK(lst.st_mode):
        try:
            st = os.stat(fs_path)
        except OSError as exc:
            log.warning("skipping %s: cannot follow symlink: %s", rel, exc)
            return None, False
    if not (stat.S_ISDIR(st.st_mode) or stat.S_ISREG(st.st_mode)):
        log.warning("skipping %s: not a regular file or directory", rel)
        return None, False
    return st, stat.S_ISDIR(lst.st_mode)


def iter_source_tree(
    source_root: str,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> Iterator[Tuple[str, str, os.stat_result]]:
    """Yield ``(fs_path, rel_path, stat)`` for every entry to be packed.

    Depth-first, lexical within a directory, root itself omitted. An excluded
    directory is never listed, so its whole subtree is pruned. Only regular
    files and directories are yielded; symlinks are resolved to their target
    (a linked directory becomes an empty directory entry).
    """
    include = list(include or ())
    exclude = list(exclude or ())
    stack = list(reversed(_list_children(source_root, "")))
    while stack:
        fs_path, rel = stack.pop()
        st, descend = _stat_entry(fs_path, rel)
        if st is None:
            continue
        if should_exclude(rel, include, exclude):
            continue
        if rel == METADATA_ENTRY_NAME:
            log.warning("skipping %s: name is reserved for archive metadata", fs_path)
            continue
        yield fs_path, rel, st
        if descend:
            stack.extend(reversed(_list_children(fs_path, rel)))


class TarContainerWriter:
    """Sequential tar stream piped through one of the streaming compressors."""

    def __init__(self, fh: BinaryIO, spec: FormatSpec, level: Optional[int] = None, context=None):
        self.fh = fh
        self.spec = spec
        self.level = level
        self.context = context
        self._stream: Optional[BinaryIO] = None
        self._tar: Optional[tarfile.TarFile] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
            return
        try:
            self.close()
        except (ArchiveError, ValueError, tarfile.TarError):
            log.debug("close after failed write also failed", exc_info=True)

    def open(self):
        if self._tar is not None:
            return
        self._stream = self.spec.compressor(self.fh, self.level, self.context)
        self._tar = tarfile.open(fileobj=self._stream, mode="w|", format=tarfile.PAX_FORMAT)

    def close(self):
        try:
            if self._tar is not None:
                self._tar.close()
            if self._stream is not None:
                self._stream.close()
        except OSError as exc:
            raise WriteFailure(f"failed finishing archive: {exc}") from exc
        finally:
            self._tar = None
            self._stream = None

    def _info(self, name: str, mode: int, mtime: float) -> tarfile.TarInfo:
        ti = tarfile.TarInfo(name)
        ti.mode = mode
        ti.mtime = int(mtime)
        ti.uid = ti.gid = 0
        ti.uname = ti.gname = ""
        return ti

    def add_bytes(self, name: str, data: bytes, mode: int = DEFAULT_FILE_MODE, mtime: Optional[float] = None):
        if self._tar is None:
            raise RuntimeError("Archive not open")
        ti = self._info(name, mode, time.time() if mtime is None else mtime)
        ti.size = len(data)
        try:
            self._tar.addfile(ti, io.BytesIO(data))
        except OSError as exc:
            raise WriteFailure(f"failed writing {name}: {exc}") from exc

    def add_dir(self, rel: str, fs_path: str, st: os.stat_result):
        if self._tar is None:
            raise RuntimeError("Archive not open")
        ti = self._info(rel + "/", stat.S_IMODE(st.st_mode), st.st_mtime)
        ti.type = tarfile.DIRTYPE
        try:
            self._tar.addfile(ti)
        except OSError as exc:
            raise WriteFailure(f"failed writing {rel}: {exc}") from exc

    def add_file(self, rel: str, fs_path: str, st: os.stat_result):
        """Stream one file into the tar; its bytes never sit in memory whole."""
        if self._tar is None:
            raise RuntimeError("Archive not open")
        ti = self._info(rel, stat.S_IMODE(st.st_mode), st.st_mtime)
        ti.size = st.st_size
        try:
            with open(fs_path, "rb") as src:
                self._tar.addfile(ti, src)
        except OSError as exc:
            raise _io_error(exc, fs_path) from exc


class ZipContainerWriter:
    """Indexed zip container; each member is deflated on its own."""

    def __init__(self, fh: BinaryIO, level: Optional[int] = None):
        self.fh = fh
        self.level = clamp_level(level)
        self._zip: Optional[zipfile.ZipFile] = None

    def __enter__(self):
        self.open()
        return self

    def __exit__(self, exc_type, exc, tb):
        if exc_type is None:
            self.close()
            return
        try:
            self.close()
        except (ArchiveError, ValueError):
            log.debug("close after failed write also failed", exc_info=True)

    def open(self):
        if self._zip is not None:
            return
        self._zip = zipfile.ZipFile(
            self.fh,
            mode="w",
            compression=zipfile.ZIP_DEFLATED,
            compresslevel=self.level,
            strict_timestamps=False,
        )

    def close(self):
        try:
            if self._zip is not None:
                self._zip.close()
        except OSError as exc:
            raise WriteFailure(f"failed finishing archive: {exc}") from exc
        finally:
            self._zip = None

    def add_bytes(self, name: str, data: bytes, mode: int = DEFAULT_FILE_MODE, mtime: Optional[float] = None):
        if self._zip is None:
            raise RuntimeError("Archive not open")
        zi = zipfile.ZipInfo(name, time.localtime(time.time() if mtime is None else mtime)[:6])
        zi.external_attr = (stat.S_IFREG | mode) << 16
        zi.compress_type = zipfile.ZIP_DEFLATED
        try:
            self._zip.writestr(zi, data, compresslevel=self.level)
        except OSError as exc:
            raise WriteFailure(f"failed writing {name}: {exc}") from exc

    def add_dir(self, rel: str, fs_path: str, st: os.stat_result):
        self._write(rel, fs_path)

    def add_file(self, rel: str, fs_path: str, st: os.stat_result):
        self._write(rel, fs_path)

    def _write(self, rel: str, fs_path: str):
        if self._zip is None:
            raise RuntimeError("Archive not open")
        # ZipFile.write records mode and mtime and streams file content
        try:
            self._zip.write(fs_path, arcname=rel)
        except OSError as exc:
            raise _io_error(exc, fs_path) from exc


def open_container_writer(fh: BinaryIO, fmt, level: Optional[int] = None, context=None):
    spec = get_spec(fmt)
    if spec.tag is FormatTag.ZIP:
        return ZipContainerWriter(fh, level)
    return TarContainerWriter(fh, spec, level, context)


def create_archive(
    source_root: str,
    output_path: str,
    fmt,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
    metadata_json: bytes = b"{}",
    *,
    level: Optional[int] = None,
    zstd_compressor=None,
) -> int:
    """Pack ``source_root`` into ``output_path``; returns the number of tree entries.

    The metadata document is always written first. On failure the output
    file is left as it is; callers must discard it.
    """
    spec = get_spec(fmt)
    if not os.path.isdir(source_root):
        raise UnreadableSource(f"source directory not found: {source_root}")
    context = zstd_compressor if spec.tag is FormatTag.TAR_ZST else None
    try:
        out = open(output_path, "wb")
    except OSError as exc:
        raise WriteFailure(f"cannot create {output_path}: {exc}") from exc
    count = 0
    with out:
        with open_container_writer(out, spec.tag, level, context) as w:
            w.add_bytes(METADATA_ENTRY_NAME, metadata_json)
            for fs_path, rel, st in iter_source_tree(source_root, include, exclude):
                if stat.S_ISDIR(st.st_mode):
                    w.add_dir(rel, fs_path, st)
                else:
                    w.add_file(rel, fs_path, st)
                count += 1
    log.info("packed %d entries from %s into %s (%s)", count, source_root, output_path, spec.tag)
    return count
