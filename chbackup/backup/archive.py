"""
Streaming archive pipeline.

Upload: a producer thread walks a local directory and writes a compressed tar
stream into a bounded pipe while the storage backend reads the other end and
uploads it. Download: a producer thread copies the remote object into a
bounded pipe while the caller decompresses and extracts from the other end.
Neither side ever holds more than the pipe capacity of archive data.
"""

import io
import os
import stat
import errno
import shutil
import logging
import tarfile
import threading
import time
from typing import Iterator, List, Optional, Tuple

from chbackup.storage import RemoteStorage, NotFoundError, StorageError
from .compression import get_archive_writer, get_archive_reader
from .metafile import MetaFile, META_FILE_NAME
from .stream import pipe, BUFFER_SIZE, StreamClosedError

logger = logging.getLogger(__name__)

# Read size when copying remote objects into the pipe
COPY_CHUNK_SIZE = 1024 * 1024

# errno values meaning "this filesystem will not hardlink here"
_LINK_UNSUPPORTED = {errno.EXDEV, errno.EPERM, errno.EMLINK, errno.ENOTSUP, errno.EOPNOTSUPP}


class ArchiveError(Exception):
    """Base class for archive pipeline failures."""

    def __init__(self, message: str, backup_name: str = None, key: str = None, path: str = None):
        super().__init__(message)
        self.backup_name = backup_name
        self.key = key
        self.path = path


class UploadError(ArchiveError):
    """Raised when a backup archive cannot be uploaded."""
    pass


class DownloadError(ArchiveError):
    """Raised when a backup archive cannot be downloaded or extracted."""
    pass


class ChainCorruptionError(DownloadError):
    """Raised when an incremental chain references data that does not exist."""
    pass


def same_file(a: os.stat_result, b: os.stat_result) -> bool:
    """
    True when both stat results describe the same physical file.

    Filesystems that report inode 0 have no usable identity; nothing is
    considered identical there, which disables hardlink detection.
    """
    if a.st_ino == 0 or b.st_ino == 0:
        return False
    return a.st_dev == b.st_dev and a.st_ino == b.st_ino


def _raise_walk_error(error: OSError):
    raise error


def iter_regular_files(local_root: str) -> Iterator[Tuple[str, str, os.stat_result]]:
    """
    Walk local_root depth-first and yield every regular file.

    Symlinks and special files are skipped. Directory entries are visited in
    name order so archives are reproducible.

    Yields:
        (relative POSIX path, full path, lstat result)

    Raises:
        OSError: If any directory or file cannot be read
    """
    for root, dirs, files in os.walk(local_root, onerror=_raise_walk_error):
        dirs.sort()
        for name in sorted(files):
            full_path = os.path.join(root, name)
            info = os.lstat(full_path)
            if not stat.S_ISREG(info.st_mode):
                continue
            relative_path = os.path.relpath(full_path, local_root).replace(os.sep, '/')
            yield relative_path, full_path, info


def estimate_size(local_root: str) -> int:
    """Total size of regular files under local_root, for progress logging."""
    total = 0
    for root, _, files in os.walk(local_root):
        for name in files:
            try:
                info = os.lstat(os.path.join(root, name))
            except OSError:
                continue
            if stat.S_ISREG(info.st_mode):
                total += info.st_size
    return total


def _safe_join(base: str, relative_path: str) -> str:
    """Join relative_path below base, refusing absolute paths and '..'."""
    base_path = os.path.abspath(base)
    target = os.path.abspath(os.path.join(base_path, relative_path))
    if os.path.isabs(relative_path) or os.path.commonpath([base_path, target]) != base_path:
        raise ValueError(f"Path escapes {base}: {relative_path}")
    return target


def _hardlink_candidate(relative_path: str, info: os.stat_result, diff_from_root: str) -> bool:
    try:
        previous = os.stat(os.path.join(diff_from_root, relative_path))
    except (FileNotFoundError, NotADirectoryError):
        return False
    return same_file(info, previous)


def write_archive(
    fileobj,
    local_root: str,
    compression_format: str,
    compression_level: Optional[int] = None,
    diff_from_root: Optional[str] = None
) -> MetaFile:
    """
    Write local_root as a compressed tar stream into fileobj.

    Files that are the same physical file under diff_from_root are left out
    and listed in a trailing meta.json entry instead.

    Returns:
        The MetaFile describing the archive (empty for a full backup)

    Raises:
        OSError: If a local file cannot be read
        ValueError: If the tree contains the reserved meta.json at its root
    """
    hardlinks: List[str] = []
    compressor = get_archive_writer(compression_format, compression_level, fileobj)

    with tarfile.open(fileobj=compressor, mode='w|', format=tarfile.PAX_FORMAT) as tar:
        for relative_path, full_path, info in iter_regular_files(local_root):
            if relative_path == META_FILE_NAME:
                raise ValueError(f"'{META_FILE_NAME}' is reserved and cannot be backed up: {full_path}")

            if diff_from_root and _hardlink_candidate(relative_path, info, diff_from_root):
                hardlinks.append(relative_path)
                continue

            tarinfo = tarfile.TarInfo(name=relative_path)
            tarinfo.size = info.st_size
            tarinfo.mtime = int(info.st_mtime)
            tarinfo.mode = info.st_mode & 0o7777
            with open(full_path, 'rb') as f:
                tar.addfile(tarinfo, f)

        metafile = MetaFile()
        if hardlinks:
            metafile = MetaFile(
                required_backup=os.path.basename(os.path.normpath(diff_from_root)),
                hardlinks=hardlinks
            )
            content = metafile.to_json()
            tarinfo = tarfile.TarInfo(name=META_FILE_NAME)
            tarinfo.size = len(content)
            tarinfo.mtime = int(time.time())
            tarinfo.mode = 0o644
            tar.addfile(tarinfo, io.BytesIO(content))

    compressor.close()
    return metafile


def upload_archive(
    storage: RemoteStorage,
    key: str,
    local_root: str,
    backup_name: str,
    compression_format: str,
    compression_level: Optional[int] = None,
    diff_from_root: Optional[str] = None,
    buffer_size: int = BUFFER_SIZE
) -> MetaFile:
    """
    Stream local_root to storage under key.

    The archive is produced in a background thread and consumed by
    storage.put_file through a bounded pipe.

    Returns:
        MetaFile written into the archive (empty for a full backup)

    Raises:
        UploadError: If archiving or the upload fails
    """
    reader, writer = pipe(buffer_size)
    result = {}

    def _produce():
        try:
            result['metafile'] = write_archive(
                writer, local_root, compression_format, compression_level, diff_from_root
            )
        except BaseException as e:
            result['error'] = e
            writer.close(error=e)
        else:
            writer.close()

    producer = threading.Thread(target=_produce, name=f'archive-writer-{backup_name}', daemon=True)
    producer.start()

    upload_error = None
    try:
        storage.put_file(key, reader)
    except StorageError as e:
        upload_error = e
    finally:
        # Unblocks the producer if put_file stopped reading early
        reader.close()
        producer.join()

    producer_error = _producer_error(result)
    if producer_error is not None:
        raise UploadError(
            f"Failed to archive {local_root} for backup '{backup_name}': {producer_error}",
            backup_name=backup_name, key=key, path=local_root
        ) from producer_error
    if upload_error is not None:
        raise UploadError(
            f"Failed to upload backup '{backup_name}' to {key}: {upload_error}",
            backup_name=backup_name, key=key, path=local_root
        ) from upload_error
    if 'metafile' not in result:
        raise UploadError(
            f"Upload of backup '{backup_name}' stopped before the archive was complete",
            backup_name=backup_name, key=key, path=local_root
        )

    logger.info(f"Streamed {writer.bytes_written} bytes of backup '{backup_name}' to {key}")
    return result['metafile']


def _producer_error(result):
    # The consumer closing its end is a consequence, not a cause
    error = result.get('error')
    if isinstance(error, StreamClosedError):
        return None
    return error


def _copy_remote(source, writer, result):
    try:
        while True:
            chunk = source.read(COPY_CHUNK_SIZE)
            if not chunk:
                break
            writer.write(chunk)
    except BaseException as e:
        result['error'] = e
        writer.close(error=e)
    else:
        writer.close()
    finally:
        source.close()


def _extract_member(tar: tarfile.TarFile, member: tarfile.TarInfo, local_root: str):
    target = _safe_join(local_root, member.name)
    os.makedirs(os.path.dirname(target), exist_ok=True)

    # Never write through a hardlink shared with another backup
    if os.path.lexists(target):
        os.unlink(target)

    src = tar.extractfile(member)
    with open(target, 'wb') as dst:
        shutil.copyfileobj(src, dst, COPY_CHUNK_SIZE)
    os.utime(target, (member.mtime, member.mtime))


def download_archive(
    storage: RemoteStorage,
    key: str,
    local_root: str,
    backup_name: str,
    compression_format: str,
    buffer_size: int = BUFFER_SIZE
) -> MetaFile:
    """
    Download the archive stored under key and extract it into local_root.

    meta.json is parsed and returned rather than extracted. Hardlinks it
    lists are not created here; see apply_hardlinks.

    Returns:
        MetaFile found in the archive (empty for a full backup)

    Raises:
        DownloadError: If the archive is missing, unreadable or malformed
    """
    try:
        remote = storage.stat_file(key)
    except NotFoundError as e:
        raise DownloadError(
            f"Backup '{backup_name}' not found on remote storage: {key}",
            backup_name=backup_name, key=key
        ) from e
    except StorageError as e:
        raise DownloadError(
            f"Failed to stat {key} for backup '{backup_name}': {e}",
            backup_name=backup_name, key=key
        ) from e

    logger.info(f"Downloading {key} ({remote.size} bytes) to {local_root}")

    try:
        os.makedirs(local_root, exist_ok=True)
        source = storage.get_file_reader(key)
    except (OSError, StorageError) as e:
        raise DownloadError(
            f"Failed to open {key} for backup '{backup_name}': {e}",
            backup_name=backup_name, key=key, path=local_root
        ) from e

    reader, writer = pipe(buffer_size)
    result = {}
    producer = threading.Thread(
        target=_copy_remote, args=(source, writer, result),
        name=f'archive-reader-{backup_name}', daemon=True
    )
    producer.start()

    metafile = MetaFile()
    failure = None
    try:
        decompressor = get_archive_reader(compression_format, reader)
        with tarfile.open(fileobj=decompressor, mode='r|') as tar:
            for member in tar:
                if member.name == META_FILE_NAME:
                    metafile = MetaFile.from_json(tar.extractfile(member).read())
                    continue
                if not member.isreg():
                    raise DownloadError(
                        f"Unexpected entry type {member.type!r} for '{member.name}' in {key}",
                        backup_name=backup_name, key=key, path=member.name
                    )
                _extract_member(tar, member, local_root)
        # Consume codec trailer and tar padding so the copier ends cleanly
        while reader.read(COPY_CHUNK_SIZE):
            pass
    except DownloadError:
        raise
    except Exception as e:
        failure = e
    finally:
        reader.close()
        producer.join()

    cause = _producer_error(result) or failure
    if cause is not None:
        raise DownloadError(
            f"Failed to extract {key} for backup '{backup_name}': {cause}",
            backup_name=backup_name, key=key, path=local_root
        ) from cause

    logger.info(f"Read {reader.bytes_read} bytes of {key}")
    logger.debug(f"Extracted {key}: {len(metafile.hardlinks)} hardlinks pending")
    return metafile


def link_or_copy(source: str, target: str):
    """Hardlink source to target, copying where the filesystem refuses links."""
    try:
        os.link(source, target)
    except OSError as e:
        if e.errno not in _LINK_UNSUPPORTED:
            raise
        logger.debug(f"Hardlink {source} -> {target} not supported ({e}), copying")
        shutil.copy2(source, target)


def apply_hardlinks(metafile: MetaFile, local_root: str, parent_root: str, backup_name: str):
    """
    Recreate the files an incremental backup shares with its parent.

    Args:
        metafile: MetaFile of the backup extracted into local_root
        local_root: Directory of the incremental backup
        parent_root: Directory the required backup was materialized in
        backup_name: Name of the incremental backup (for error context)

    Raises:
        ChainCorruptionError: If a listed file is missing from the parent
        DownloadError: If a link cannot be created
    """
    for relative_path in metafile.hardlinks:
        try:
            source = _safe_join(parent_root, relative_path)
            target = _safe_join(local_root, relative_path)
        except ValueError as e:
            raise ChainCorruptionError(
                f"Backup '{backup_name}' lists invalid hardlink: {e}",
                backup_name=backup_name, path=relative_path
            ) from e

        if not os.path.isfile(source):
            raise ChainCorruptionError(
                f"Backup '{backup_name}' requires '{relative_path}' from "
                f"'{metafile.required_backup}', but {source} does not exist",
                backup_name=backup_name, path=source
            )

        try:
            os.makedirs(os.path.dirname(target), exist_ok=True)
            if os.path.lexists(target):
                if same_file(os.stat(source), os.lstat(target)):
                    continue
                os.unlink(target)
            link_or_copy(source, target)
        except OSError as e:
            raise DownloadError(
                f"Failed to link {source} -> {target} for backup '{backup_name}': {e}",
                backup_name=backup_name, path=target
            ) from e
