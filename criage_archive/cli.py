from __future__ import annotations

import argparse
import logging
import os
import stat
import sys
import tempfile
import time
from typing import List, Optional

from criage_archive import __version__
from criage_archive.constants import COMPRESSION_NORMAL, COMPRESSION_PRESETS, DEFAULT_FILE_MODE, MANIFEST_FILE_NAME
from criage_archive.errors import ArchiveError
from criage_archive.formats import FORMATS, FormatTag
from criage_archive.manager import ArchiveManager
from criage_archive.metadata import PackageMetadata, load_manifest


def _parse_level(value: str) -> int:
    if value.lower() in COMPRESSION_PRESETS:
        return COMPRESSION_PRESETS[value.lower()]
    try:
        return int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"invalid level {value!r}; use 1-9 or fast/normal/best")


def cmd_pack(
    output: str,
    source: str,
    *,
    fmt: Optional[str] = None,
    include: Optional[List[str]] = None,
    exclude: Optional[List[str]] = None,
    level: int = COMPRESSION_NORMAL,
    manifest: Optional[str] = None,
    quiet: bool = False,
) -> bool:
    """Pack a source directory into a package archive.

    Args:
        output: Archive path to write.
        source: Directory to pack.
        fmt: Container format; defaults to the suffix of ``output`` when it is
            a canonical one, else tar.zst.
        include: Allow-list globs; defaults to the manifest's ``files``.
        exclude: Deny-list globs, added to the manifest's ``exclude``.
        level: Compression level on the 1-9 scale.
        manifest: Package manifest to embed; defaults to ``source/criage.yaml``
            when present.

    The archive is built in a staging file beside ``output`` and moved over
    it only once complete, so a failed run leaves any existing ``output`` as
    it was.
    """
    tag = FormatTag.parse(fmt) if fmt else None
    if tag is None:
        lowered = output.lower()
        tag = next((s.tag for s in FORMATS.values() if lowered.endswith(s.suffix)), None)
    manifest_path = manifest or os.path.join(source, MANIFEST_FILE_NAME)
    package = None
    if manifest or os.path.isfile(manifest_path):
        package = load_manifest(manifest_path)
    include = list(include or (package.files if package else []))
    exclude = list(exclude or []) + (list(package.exclude) if package else [])

    t0 = time.time()
    out_dir = os.path.dirname(os.path.abspath(output))
    fd, staging = tempfile.mkstemp(prefix=".criage-pack-", suffix=".partial", dir=out_dir)
    os.close(fd)
    try:
        with ArchiveManager(compression_level=level) as mgr:
            tag = tag or mgr.preferred_format
            metadata = PackageMetadata(package=package, compression_type=tag.value, version=mgr.version)
            mgr.create_archive_with_metadata(source, staging, tag, include, exclude, metadata)
        # mkstemp files are 0600; keep an existing archive's mode, else the default
        mode = stat.S_IMODE(os.stat(output).st_mode) if os.path.exists(output) else DEFAULT_FILE_MODE
        os.chmod(staging, mode)
        os.replace(staging, output)
    except BaseException:
        if os.path.exists(staging):
            os.remove(staging)
        raise
    if not quiet:
        size = os.path.getsize(output)
        print(f"Done: {output} ({tag}, {size} bytes) in {time.time() - t0:.1f}s")
    return True


def cmd_unpack(archive: str, *, outdir: str = ".", fmt: Optional[str] = None, quiet: bool = False) -> bool:
    """Unpack an archive into ``outdir``."""
    with ArchiveManager() as mgr:
        tag = FormatTag.parse(fmt) if fmt else mgr.detect_format(archive)
        mgr.extract_archive(archive, outdir, tag)
    if not quiet:
        print(f"Unpacked {archive} ({tag}) into {outdir}")
    return True


def cmd_metadata(archive: str, *, fmt: Optional[str] = None) -> bool:
    """Print the archive's metadata record as JSON."""
    with ArchiveManager() as mgr:
        md = mgr.extract_metadata_from_archive(archive, fmt)
    print(md.to_json().decode("utf-8"))
    return True


def cmd_list(archive: str, *, fmt: Optional[str] = None) -> bool:
    """List archive entries."""
    with ArchiveManager() as mgr:
        entries = mgr.list_entries(archive, fmt)
    for e in entries:
        if e.is_file:
            print(f"{e.kind}\t{e.mode:04o}\t{e.size}\t{e.path}")
        else:
            print(f"{e.kind}\t{e.mode:04o}\t-\t{e.path}")
    return True


def cmd_detect(archive: str) -> bool:
    """Print the detected container format."""
    with ArchiveManager() as mgr:
        print(mgr.detect_format(archive))
    return True


def main(argv: List[str] | None = None):
    ap = argparse.ArgumentParser(
        prog="criage-archive",
        description="Pack and unpack criage package archives",
        epilog="Formats: " + ", ".join(t.value for t in FormatTag),
    )
    ap.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    ap.add_argument("--verbose", "-v", action="store_true", help="Log debug details to stderr")
    sub = ap.add_subparsers(dest="cmd", required=True)

    ap_pack = sub.add_parser("pack", help="Pack a directory")
    ap_pack.add_argument("output", help="Output archive path")
    ap_pack.add_argument("source", help="Source directory")
    ap_pack.add_argument("--format", dest="fmt", help="Container format (default: from output suffix, else tar.zst)")
    ap_pack.add_argument("--include", action="append", default=[], help="Glob to include (repeatable)")
    ap_pack.add_argument("--exclude", action="append", default=[], help="Glob to exclude (repeatable)")
    ap_pack.add_argument(
        "--level",
        type=_parse_level,
        default=COMPRESSION_NORMAL,
        help="Compression level 1-9 or fast/normal/best (default: normal)",
    )
    ap_pack.add_argument("--manifest", help=f"Package manifest (default: SOURCE/{MANIFEST_FILE_NAME} if present)")
    ap_pack.add_argument("--quiet", help="limit outputs to errors only", action="store_true")

    ap_unpack = sub.add_parser("unpack", help="Unpack an archive")
    ap_unpack.add_argument("archive", help="Archive path")
    ap_unpack.add_argument("--outdir", default=".", help="Output directory")
    ap_unpack.add_argument("--format", dest="fmt", help="Container format (default: detect)")
    ap_unpack.add_argument("--quiet", help="limit outputs to errors only", action="store_true")

    ap_meta = sub.add_parser("metadata", help="Show embedded package metadata")
    ap_meta.add_argument("archive", help="Archive path")
    ap_meta.add_argument("--format", dest="fmt", help="Container format (default: detect)")

    ap_list = sub.add_parser("list", help="List archive contents")
    ap_list.add_argument("archive", help="Archive path")
    ap_list.add_argument("--format", dest="fmt", help="Container format (default: detect)")

    ap_detect = sub.add_parser("detect", help="Detect archive format")
    ap_detect.add_argument("archive", help="Archive path")

    args = ap.parse_args(argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    try:
        if args.cmd == "pack":
            cmd_pack(
                args.output,
                args.source,
                fmt=args.fmt,
                include=args.include,
                exclude=args.exclude,
                level=args.level,
                manifest=args.manifest,
                quiet=args.quiet,
            )
        elif args.cmd == "unpack":
            cmd_unpack(args.archive, outdir=args.outdir, fmt=args.fmt, quiet=args.quiet)
        elif args.cmd == "metadata":
            cmd_metadata(args.archive, fmt=args.fmt)
        elif args.cmd == "list":
            cmd_list(args.archive, fmt=args.fmt)
        elif args.cmd == "detect":
            cmd_detect(args.archive)
        else:
            raise RuntimeError("Unknown command")
    except (ArchiveError, OSError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(2)


if __name__ == "__main__":
    main()
