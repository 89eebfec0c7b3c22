"""
criage-archive: package archive packing and unpacking for criage.

Features:

- Five container formats: tar.zst (default), tar.lz4, tar.xz, tar.gz and zip.
- Format detection by file suffix, with magic-byte sniffing for opaque
  ``.criage`` package files.
- Package metadata embedded as the first entry (``.criage-metadata.json``) of
  every archive, with a ``criage.yaml`` fallback when reading foreign archives.
- Glob include/exclude filters applied while walking the source tree.
- Extraction treats archives as untrusted: any entry whose name would land
  outside the destination aborts the whole run before anything is written
  for it.
"""

__version__ = "0.1"

__all__ = [
    "constants",
    "errors",
    "formats",
    "filters",
    "metadata",
    "writer",
    "reader",
    "manager",
]

# Programmatic API: criage_archive.manager.ArchiveManager wraps the module
# level functions in criage_archive.writer/reader; criage_archive.cli exposes
# the same operations on the command line.
