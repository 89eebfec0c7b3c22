from __future__ import annotations

import stat
import tarfile
import time
import zipfile
from dataclasses import dataclass
from typing import Optional

from .constants import DEFAULT_DIR_MODE, DEFAULT_FILE_MODE

KIND_FILE = "file"
KIND_DIR = "dir"
KIND_OTHER = "other"  # symlinks, hard links, devices: listed, never written


@dataclass
class ArchiveEntry:
    path: str
    kind: str
    mode: int = DEFAULT_FILE_MODE
    mtime: Optional[float] = None
    size: int = 0

    @property
    def is_dir(self) -> bool:
        return self.kind == KIND_DIR

    @property
    def is_file(self) -> bool:
        return self.kind == KIND_FILE


def entry_from_tarinfo(ti: tarfile.TarInfo) -> ArchiveEntry:
    if ti.isdir():
        kind = KIND_DIR
    elif ti.isreg():
        kind = KIND_FILE
    else:
        kind = KIND_OTHER
    return ArchiveEntry(
        path=ti.name.rstrip("/") if kind == KIND_DIR else ti.name,
        kind=kind,
        mode=stat.S_IMODE(ti.mode),
        mtime=float(ti.mtime),
        size=ti.size if kind == KIND_FILE else 0,
    )


def entry_from_zipinfo(zi: zipfile.ZipInfo) -> ArchiveEntry:
    unix_mode = (zi.external_attr >> 16) & 0xFFFF
    if zi.is_dir():
        kind = KIND_DIR
    elif unix_mode and not stat.S_ISREG(unix_mode):
        kind = KIND_OTHER
    else:
        kind = KIND_FILE
    mode = stat.S_IMODE(unix_mode)
    if not mode:
        # Archives from non-unix producers carry no permission bits
        mode = DEFAULT_DIR_MODE if kind == KIND_DIR else DEFAULT_FILE_MODE
    return ArchiveEntry(
        path=zi.filename.rstrip("/") if kind == KIND_DIR else zi.filename,
        kind=kind,
        mode=mode,
        mtime=time.mktime(zi.date_time + (0, 0, -1)),
        size=zi.file_size if kind == KIND_FILE else 0,
    )
