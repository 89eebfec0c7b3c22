from typing import Optional


class ArchiveError(Exception):
    """Base class for archive-manager errors."""


# I/O
class UnreadableSource(ArchiveError):
    pass


class WriteFailure(ArchiveError):
    pass


# Configuration
class ConfigError(ArchiveError):
    pass


# Format selection / decoding
class UnsupportedFormat(ArchiveError):
    pass


class MalformedContainer(ArchiveError):
    pass


class PathTraversal(ArchiveError):
    """An entry name would land outside the extraction root."""

    def __init__(self, entry_path: str, dest_root: Optional[str] = None):
        self.entry_path = entry_path
        self.dest_root = dest_root
        if dest_root is not None:
            msg = f"Entry path escapes destination {dest_root!r}: {entry_path!r}"
        else:
            msg = f"Unsafe entry path: {entry_path!r}"
        super().__init__(msg)


# Metadata
class MetadataMissing(ArchiveError):
    pass


class MetadataCorrupt(ArchiveError):
    pass
