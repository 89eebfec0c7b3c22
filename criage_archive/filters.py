from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Optional


def _matches_any(path: str, patterns: Iterable[str]) -> bool:
    return any(fnmatchcase(path, pat) for pat in patterns)


def should_exclude(
    rel_path: str,
    include: Optional[Iterable[str]] = None,
    exclude: Optional[Iterable[str]] = None,
) -> bool:
    """Decide whether ``rel_path`` is left out of an archive.

    Patterns are shell globs matched against the whole forward-slash path,
    so ``*`` also spans ``/``. Exclusions win; a non-empty include list then
    acts as an allow-list.
    """
    path = rel_path.replace("\\", "/")
    if exclude and _matches_any(path, exclude):
        return True
    include = list(include or ())
    if include:
        return not _matches_any(path, include)
    return False
