from __future__ import annotations

import logging
import os
import tarfile
import zipfile
from typing import BinaryIO, Iterator, List, Optional, Tuple

from .codec import DECODE_ERRORS
from .constants import COPY_BUFFER_SIZE, DEFAULT_DIR_MODE
from .entryutil import ArchiveEntry, KIND_DIR, KIND_FILE, entry_from_tarinfo, entry_from_zipinfo
from .errors import ArchiveError, MalformedContainer, UnreadableSource, WriteFailure
from .formats import FormatSpec, FormatTag, get_spec
from .pathutil import resolve_entry_path

log = logging.getLogger(__name__)


def _safe_chmod(path: str, mode: Optional[int]) -> None:
    """Best-effort chmod; failures are logged, never raised."""
    if mode is None:
        return
    try:
        os.chmod(path, mode)
    except OSError as exc:
        log.warning("failed to set mode on %s: %s", path, exc)


def _safe_utime(path: str, mtime: Optional[float]) -> None:
    if mtime is None:
        return
    try:
        os.utime(path, (mtime, mtime))
    except OSError as exc:
        log.warning("failed to set timestamps on %s: %s", path, exc)


def _makedirs(path: str) -> None:
    try:
        os.makedirs(path, mode=DEFAULT_DIR_MODE, exist_ok=True)
    except OSError as exc:
        raise WriteFailure(f"cannot create directory {path}: {exc}") from exc


def _write_stream(src: BinaryIO, dst_path: str) -> int:
    """Copy ``src`` into a created/truncated ``dst_path``.

    Reads are left unwrapped so decoder errors keep their own type; only the
    destination side is reported as a write failure.
    """
    _makedirs(os.path.dirname(dst_path))
    try:
        out = open(dst_path, "wb")
    except OSError as exc:
        raise WriteFailure(f"cannot create {dst_path}: {exc}") from exc
    written = 0
    with out:
        while True:
            buf = src.read(COPY_BUFFER_SIZE)
            if not buf:
                break
            try:
                out.write(buf)
            except OSError as exc:
                raise WriteFailure(f"failed writing {dst_path}: {exc}") from exc
            written += len(buf)
    return written


def _open_archive(archive_path: str) -> BinaryIO:
    try:
        return open(archive_path, "rb")
    except OSError as exc:
        raise UnreadableSource(f"cannot open archive {archive_path}: {exc}") from exc


class _Extraction:
    """State of one extraction run; directory attributes are applied last."""

    def __init__(self, dest_root: str):
        self.dest_root = dest_root
        self.root = os.path.normpath(os.path.abspath(dest_root))
        self.pending_dirs: List[Tuple[str, ArchiveEntry]] = []
        self.files = 0
        self.dirs = 0

    def handle(self, entry: ArchiveEntry, open_content) -> None:
        # Resolve before any side effect for this entry
        target = resolve_entry_path(self.dest_root, entry.path)
        if entry.kind == KIND_DIR:
            if target == self.root:
                # Root entries (".", "a/..") never touch the destination itself
                log.debug("skipping %s: resolves to the destination root", entry.path)
                return
            _makedirs(target)
            self.pending_dirs.append((target, entry))
            self.dirs += 1
        elif entry.kind == KIND_FILE:
            with open_content() as src:
                _write_stream(src, target)
            _safe_chmod(target, entry.mode)
            _safe_utime(target, entry.mtime)
            self.files += 1
        else:
            log.debug("skipping %s: unsupported entry type", entry.path)

    def finish(self) -> None:
        # Deepest first so restricting a parent never blocks its children
        for target, entry in sorted(self.pending_dirs, key=lambda item: item[0], reverse=True):
            _safe_chmod(target, entry.mode)
            _safe_utime(target, entry.mtime)


def _iter_tar(fh: BinaryIO, spec: FormatSpec, context=None) -> Iterator[Tuple[ArchiveEntry, tarfile.TarInfo, tarfile.TarFile]]:
    stream = spec.decompressor(fh, context)
    try:
        with tarfile.open(fileobj=stream, mode="r|") as tf:
            for ti in tf:
                yield entry_from_tarinfo(ti), ti, tf
    finally:
        stream.close()


class _TarMember:
    def __init__(self, tf: tarfile.TarFile, ti: tarfile.TarInfo):
        self.tf = tf
        self.ti = ti

    def __call__(self):
        src = self.tf.extractfile(self.ti)
        if src is None:
            raise MalformedContainer(f"no data for regular entry {self.ti.name}")
        return src


def _run(archive_path: str, fmt, visit, context=None) -> None:
    spec = get_spec(fmt)
    fh = _open_archive(archive_path)
    with fh:
        try:
            if spec.tag is FormatTag.ZIP:
                with zipfile.ZipFile(fh) as zf:
                    for zi in zf.infolist():
                        visit(entry_from_zipinfo(zi), lambda zi=zi: zf.open(zi))
            else:
                for entry, ti, tf in _iter_tar(fh, spec, context):
                    visit(entry, _TarMember(tf, ti))
        except ArchiveError:
            raise
        except DECODE_ERRORS as exc:
            raise MalformedContainer(f"cannot decode {archive_path} as {spec.tag}: {exc}") from exc
        except OSError as exc:
            raise UnreadableSource(f"failed reading {archive_path}: {exc}") from exc


def extract_archive(archive_path: str, dest_root: str, fmt, *, zstd_decompressor=None) -> Tuple[int, int]:
    """Unpack every directory and regular file of ``archive_path`` into ``dest_root``.

    Returns ``(files, dirs)`` written. Aborts on the first unsafe entry name;
    entries written before a failure stay on disk.
    """
    spec = get_spec(fmt)
    _makedirs(dest_root)
    run = _Extraction(dest_root)
    context = zstd_decompressor if spec.tag is FormatTag.TAR_ZST else None
    _run(archive_path, spec.tag, run.handle, context)
    run.finish()
    log.info("extracted %d files, %d dirs from %s into %s", run.files, run.dirs, archive_path, dest_root)
    return run.files, run.dirs


def list_entries(archive_path: str, fmt, *, zstd_decompressor=None) -> List[ArchiveEntry]:
    """Entry headers in archive order; nothing is written."""
    spec = get_spec(fmt)
    entries: List[ArchiveEntry] = []
    context = zstd_decompressor if spec.tag is FormatTag.TAR_ZST else None
    _run(archive_path, spec.tag, lambda entry, _content: entries.append(entry), context)
    return entries
