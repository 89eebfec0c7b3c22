from __future__ import annotations

import ntpath
import os
import re

from .errors import PathTraversal

# "C:", "C:\\x", "C:/x"; a bare "x:name" is an ordinary POSIX file name
_DRIVE_ROOT_RE = re.compile(r"[A-Za-z]:(?:[\\/]|$)")


def _is_absolute(raw: str) -> bool:
    if raw.startswith(("/", "\\")):
        return True
    if os.name == "nt":
        drive, _ = ntpath.splitdrive(raw)
        return bool(drive) or os.path.isabs(raw)
    return _DRIVE_ROOT_RE.match(raw) is not None


def resolve_entry_path(dest_root: str, raw_path: str) -> str:
    """Map an archive entry name to an absolute path under ``dest_root``.

    The joined, normalized path must be ``dest_root`` itself or lie below it,
    compared on whole path components so that ``/x/dest-evil`` is not taken
    for a child of ``/x/dest``. Raises :class:`PathTraversal` otherwise;
    callers must resolve before creating anything for the entry.
    """
    if not raw_path or "\x00" in raw_path:
        raise PathTraversal(raw_path, dest_root)
    if _is_absolute(raw_path):
        raise PathTraversal(raw_path, dest_root)
    root = os.path.normpath(os.path.abspath(dest_root))
    rel = raw_path.replace("\\", "/")
    target = os.path.normpath(os.path.join(root, *rel.split("/")))
    if target == root:
        return target
    prefix = root if root.endswith(os.sep) else root + os.sep
    if not target.startswith(prefix):
        raise PathTraversal(raw_path, dest_root)
    return target
