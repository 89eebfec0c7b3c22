# Reserved in-archive names
METADATA_ENTRY_NAME = ".criage-metadata.json"
MANIFEST_FILE_NAME = "criage.yaml"

# Generic package suffix; the container format behind it must be sniffed
PACKAGE_SUFFIX = ".criage"

# Creator identifier written into metadata records
CREATED_BY = "criage"

# Compression levels (1-9 scale shared by every codec)
COMPRESSION_FASTEST = 1
COMPRESSION_NORMAL = 5
COMPRESSION_BEST = 9

COMPRESSION_PRESETS = {
    "fast": COMPRESSION_FASTEST,
    "normal": COMPRESSION_NORMAL,
    "best": COMPRESSION_BEST,
}

# Magic signatures (leading bytes of each container)
ZSTD_MAGIC = b"\x28\xb5\x2f\xfd"
LZ4_MAGIC = b"\x04\x22\x4d\x18"
XZ_MAGIC = b"\xfd\x37\x7a\x58\x5a\x00"
GZIP_MAGIC = b"\x1f\x8b"
ZIP_LOCAL_MAGIC = b"PK\x03\x04"
ZIP_EOCD_MAGIC = b"PK\x05\x06"  # empty zip

HEADER_WINDOW = 16  # bytes read when sniffing

COPY_BUFFER_SIZE = 1_048_576  # 1 MiB

# Modes used when an entry carries none
DEFAULT_FILE_MODE = 0o644
DEFAULT_DIR_MODE = 0o755
