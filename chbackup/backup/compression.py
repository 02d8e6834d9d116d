"""
Compression codecs for backup archives.

Archives are always tar streams; the format only selects the codec wrapped
around the tar stream:
- tar: No compression
- gzip: .tar.gz
- bzip2: .tar.bz2
- xz: .tar.xz (LZMA)
- lz4: .tar.lz4
- zstd: .tar.zst

Writers and readers wrap a caller supplied file object and never close it,
so the caller decides when the underlying stream ends.
"""

import bz2
import gzip
import lzma
from typing import Optional

import lz4.frame
import zstandard


class CompressionError(Exception):
    """Raised when an archive codec cannot be created or fails."""
    pass


# format -> (extension, (min level, max level), default level)
FORMATS = {
    'tar': ('tar', None, None),
    'gzip': ('tar.gz', (0, 9), 6),
    'bzip2': ('tar.bz2', (1, 9), 9),
    'xz': ('tar.xz', (0, 9), 6),
    'lz4': ('tar.lz4', (0, 16), 0),
    'zstd': ('tar.zst', (1, 22), 3),
}

# Names accepted for compatibility with older configuration files
FORMAT_ALIASES = {
    'none': 'tar',
    'tar.gz': 'gzip',
    'gz': 'gzip',
    'tar.bz2': 'bzip2',
    'bz2': 'bzip2',
    'tar.xz': 'xz',
    'tar.lz4': 'lz4',
    'tar.zst': 'zstd',
    'zst': 'zstd',
}

# Every single-file archive extension a remote listing may contain. 'tar.sz'
# (snappy) archives are recognised in listings but cannot be read here.
ARCHIVE_EXTENSIONS = ('tar', 'tar.lz4', 'tar.bz2', 'tar.gz', 'tar.sz', 'tar.xz', 'tar.zst')


def normalize_format(compression_format: str) -> str:
    """
    Resolve aliases and validate a compression format name.

    Raises:
        ValueError: If compression_format is invalid
    """
    name = (compression_format or 'tar').lower()
    name = FORMAT_ALIASES.get(name, name)
    if name not in FORMATS:
        raise ValueError(
            f"Invalid compression format: {compression_format}. "
            f"Valid options: {list(FORMATS.keys())}"
        )
    return name


def get_extension(compression_format: str) -> str:
    """
    Map a compression format to the archive file extension (without dot).

    Raises:
        ValueError: If compression_format is invalid
    """
    return FORMATS[normalize_format(compression_format)][0]


def strip_archive_extension(filename: str) -> Optional[str]:
    """
    Strip a known archive extension from filename.

    Handles multi-part extensions like .tar.gz, .tar.lz4, .tar.zst

    Args:
        filename: Archive filename with extension

    Returns:
        Filename without extension, or None if no known extension matches
    """
    # Longest first so 'x.tar.gz' does not match plain 'tar'
    for extension in sorted(ARCHIVE_EXTENSIONS, key=len, reverse=True):
        suffix = '.' + extension
        if filename.endswith(suffix) and len(filename) > len(suffix):
            return filename[:-len(suffix)]
    return None


def _resolve_level(name: str, level: Optional[int]) -> Optional[int]:
    _, level_range, default = FORMATS[name]
    if level_range is None:
        return None
    if level is None:
        return default
    low, high = level_range
    if not low <= level <= high:
        raise ValueError(f"Compression level {level} out of range {low}..{high} for {name}")
    return level


class _PassThroughWriter:
    """Uncompressed writer; close() only flushes."""

    def __init__(self, fileobj):
        self._fileobj = fileobj

    def write(self, data) -> int:
        return self._fileobj.write(data)

    def flush(self):
        self._fileobj.flush()

    def close(self):
        self.flush()


def get_archive_writer(compression_format: str, compression_level: Optional[int], fileobj):
    """
    Open a compressing writer on top of fileobj.

    Args:
        compression_format: Format name (see FORMATS)
        compression_level: Codec level, None for the codec default
        fileobj: Binary file object receiving compressed bytes

    Returns:
        Writable file object; closing it writes the codec trailer but leaves
        fileobj open

    Raises:
        ValueError: If the format or level is invalid
        CompressionError: If the codec cannot be initialised
    """
    name = normalize_format(compression_format)
    level = _resolve_level(name, compression_level)

    try:
        if name == 'tar':
            return _PassThroughWriter(fileobj)
        elif name == 'gzip':
            return gzip.GzipFile(fileobj=fileobj, mode='wb', compresslevel=level, mtime=0)
        elif name == 'bzip2':
            return bz2.BZ2File(fileobj, mode='wb', compresslevel=level)
        elif name == 'xz':
            return lzma.LZMAFile(fileobj, mode='wb', preset=level)
        elif name == 'lz4':
            return lz4.frame.LZ4FrameFile(fileobj, mode='wb', compression_level=level)
        else:
            return zstandard.ZstdCompressor(level=level).stream_writer(fileobj, closefd=False)
    except (OSError, lzma.LZMAError, zstandard.ZstdError, RuntimeError) as e:
        raise CompressionError(f"Failed to create {name} writer: {e}")


def get_archive_reader(compression_format: str, fileobj):
    """
    Open a decompressing reader on top of fileobj.

    Args:
        compression_format: Format name (see FORMATS)
        fileobj: Binary file object yielding compressed bytes

    Returns:
        Readable file object producing the plain tar stream

    Raises:
        ValueError: If the format is invalid
        CompressionError: If the codec cannot be initialised
    """
    name = normalize_format(compression_format)

    try:
        if name == 'tar':
            return fileobj
        elif name == 'gzip':
            return gzip.GzipFile(fileobj=fileobj, mode='rb')
        elif name == 'bzip2':
            return bz2.BZ2File(fileobj, mode='rb')
        elif name == 'xz':
            return lzma.LZMAFile(fileobj, mode='rb')
        elif name == 'lz4':
            return lz4.frame.LZ4FrameFile(fileobj, mode='rb')
        else:
            return zstandard.ZstdDecompressor().stream_reader(fileobj, closefd=False)
    except (OSError, lzma.LZMAError, zstandard.ZstdError, RuntimeError) as e:
        raise CompressionError(f"Failed to create {name} reader: {e}")
