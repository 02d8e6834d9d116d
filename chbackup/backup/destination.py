"""
Backup destination - a remote storage plus the settings used to read and
write backups on it.

Layout on the remote side:
    {path}/{backup_name}.{extension}
"""

import os
import logging
import posixpath
from typing import List, Optional

from chbackup.storage import (
    RemoteStorage,
    NotFoundError,
    StorageError,
    new_remote_storage,
)
from .archive import (
    UploadError,
    ChainCorruptionError,
    upload_archive,
    download_archive,
    apply_hardlinks,
    estimate_size,
)
from .catalog import Backup, build_backup_list, list_prefix
from .compression import ARCHIVE_EXTENSIONS, get_extension, normalize_format
from .metafile import MetaFile
from .retention import get_backups_to_delete
from .stream import BUFFER_SIZE

logger = logging.getLogger(__name__)


class BackupDestination:
    """
    Uploads, downloads, lists and prunes backups on one remote storage.
    """

    def __init__(
        self,
        storage: RemoteStorage,
        path: str = '',
        compression_format: str = 'gzip',
        compression_level: Optional[int] = None,
        backups_to_keep: int = 0,
        buffer_size: int = BUFFER_SIZE
    ):
        """
        Initialize backup destination.

        Args:
            storage: Remote storage backend
            path: Key prefix all backups live under ('' for the root)
            compression_format: Archive format (see compression.FORMATS)
            compression_level: Codec level, None for the codec default
            backups_to_keep: Default keep count for remove_old_backups
            buffer_size: Capacity of the pipe between archiver and transport
        """
        self.storage = storage
        self.path = (path or '').strip('/')
        self.compression_format = normalize_format(compression_format)
        self.compression_level = compression_level
        self.backups_to_keep = backups_to_keep
        self.buffer_size = buffer_size

    def kind(self) -> str:
        return self.storage.kind()

    def connect(self):
        self.storage.connect()

    def close(self):
        self.storage.close()

    def archive_key(self, backup_name: str) -> str:
        """Remote key of a backup's single-file archive."""
        return posixpath.join(self.path, f"{backup_name}.{get_extension(self.compression_format)}")

    def backup_list(self) -> List[Backup]:
        """
        List valid backups, oldest first.

        Raises:
            TransportError: If the listing fails
        """
        return build_backup_list(self.storage, self.path)

    def get_backup(self, backup_name: str) -> Backup:
        """
        Look up one backup in the catalog.

        Raises:
            NotFoundError: If no valid backup has that name
        """
        for backup in self.backup_list():
            if backup.name == backup_name:
                return backup
        raise NotFoundError(
            f"'{backup_name}' is not found on remote storage",
            key=posixpath.join(self.path, backup_name)
        )

    def compressed_stream_upload(
        self,
        local_root: str,
        remote_name: str,
        diff_from_root: Optional[str] = None
    ) -> MetaFile:
        """
        Archive local_root and upload it as backup remote_name.

        With diff_from_root, files hardlinked to the same relative path there
        are recorded in meta.json instead of being archived.

        Args:
            local_root: Directory to back up
            remote_name: Backup name on remote storage
            diff_from_root: Local directory of the backup to diff against

        Returns:
            MetaFile written into the archive (empty for a full backup)

        Raises:
            UploadError: If the archive already exists, a local file cannot be
                read or the upload fails
        """
        key = self.archive_key(remote_name)

        if not os.path.isdir(local_root):
            raise UploadError(
                f"'{local_root}' is not a directory",
                backup_name=remote_name, key=key, path=local_root
            )
        if diff_from_root and not os.path.isdir(diff_from_root):
            raise UploadError(
                f"'{diff_from_root}' is not a directory",
                backup_name=remote_name, key=key, path=diff_from_root
            )

        # Only a confirmed absence lets the upload go ahead
        try:
            self.storage.stat_file(key)
        except NotFoundError:
            pass
        except StorageError as e:
            raise UploadError(
                f"Cannot check whether {key} exists: {e}",
                backup_name=remote_name, key=key
            ) from e
        else:
            raise UploadError(
                f"Backup '{remote_name}' already exists on {self.kind()}: {key}",
                backup_name=remote_name, key=key
            )

        total_bytes = estimate_size(local_root)
        logger.info(
            f"Uploading {local_root} to {self.kind()}:{key} "
            f"({total_bytes} bytes before compression, format {self.compression_format})"
        )

        metafile = upload_archive(
            self.storage,
            key,
            local_root,
            remote_name,
            self.compression_format,
            self.compression_level,
            diff_from_root=diff_from_root,
            buffer_size=self.buffer_size
        )

        if metafile.is_incremental:
            logger.info(
                f"Backup '{remote_name}' uploaded as increment of '{metafile.required_backup}' "
                f"({len(metafile.hardlinks)} files hardlinked)"
            )
        else:
            logger.info(f"Backup '{remote_name}' uploaded")
        return metafile

    def compressed_stream_download(self, remote_name: str, local_root: str) -> List[str]:
        """
        Download backup remote_name into local_root.

        Required backups are downloaded into sibling directories named after
        them, then hardlinks are replayed oldest ancestor first so every
        level links against a fully materialized parent.

        Args:
            remote_name: Backup name on remote storage
            local_root: Directory to extract into

        Returns:
            Names of the downloaded backups, requested backup first

        Raises:
            DownloadError: If any archive in the chain cannot be restored
            ChainCorruptionError: If the chain loops or references missing files
        """
        local_root = os.path.abspath(local_root)
        parent_dir = os.path.dirname(local_root)

        # (backup name, local directory, metafile), newest first
        chain = []
        name, root = remote_name, local_root

        while True:
            metafile = download_archive(
                self.storage,
                self.archive_key(name),
                root,
                name,
                self.compression_format,
                buffer_size=self.buffer_size
            )
            chain.append((name, root, metafile))

            required = metafile.required_backup
            if not required:
                break

            if required in (b[0] for b in chain):
                raise ChainCorruptionError(
                    f"Backup '{name}' requires '{required}', which is already part of its chain",
                    backup_name=name
                )
            if required in ('.', '..') or '/' in required or os.sep in required:
                raise ChainCorruptionError(
                    f"Backup '{name}' requires invalid backup name '{required}'",
                    backup_name=name
                )

            logger.info(f"Backup '{name}' required '{required}'. Downloading.")
            name, root = required, os.path.join(parent_dir, required)

        for index in range(len(chain) - 1, -1, -1):
            name, root, metafile = chain[index]
            if metafile.hardlinks:
                parent_root = chain[index + 1][1]
                apply_hardlinks(metafile, root, parent_root, name)
                logger.debug(f"Linked {len(metafile.hardlinks)} files of '{name}' from '{metafile.required_backup}'")

        logger.info(f"Backup '{remote_name}' downloaded to {local_root}")
        return [b[0] for b in chain]

    def _belongs_to(self, key: str, backup_name: str) -> bool:
        base = list_prefix(self.path) + backup_name
        if key.startswith(base + '/'):
            return True
        return any(key == f"{base}.{extension}" for extension in ARCHIVE_EXTENSIONS)

    def remove_backup(self, backup_name: str) -> int:
        """
        Delete every object belonging to backup_name, in either layout.

        Returns:
            Number of deleted objects

        Raises:
            StorageError: If listing or any deletion fails; earlier deletions
                are not rolled back
        """
        keys = []
        self.storage.walk(
            list_prefix(self.path) + backup_name,
            lambda f: keys.append(f.name) if self._belongs_to(f.name, backup_name) else None
        )

        if not keys:
            logger.warning(f"No objects found for backup '{backup_name}' on {self.kind()}")

        for key in keys:
            self.storage.delete_file(key)
            logger.debug(f"Deleted {key}")

        return len(keys)

    def remove_old_backups(self, keep: int) -> List[Backup]:
        """
        Delete all but the newest `keep` backups. keep < 1 is a no-op.

        Returns:
            Backups that were deleted

        Raises:
            StorageError: On the first failed listing or deletion
        """
        if keep < 1:
            return []

        backups_to_delete = get_backups_to_delete(self.backup_list(), keep)
        for backup in backups_to_delete:
            logger.info(f"Removing old backup '{backup.name}'")
            self.remove_backup(backup.name)
        return backups_to_delete


def new_backup_destination(cfg) -> BackupDestination:
    """
    Build the destination described by cfg.REMOTE_STORAGE.

    Args:
        cfg: Configuration object (see chbackup.config)

    Returns:
        BackupDestination (not yet connected)

    Raises:
        ValueError: If the storage type is 'none' or unknown
    """
    storage = new_remote_storage(cfg)
    prefix = cfg.REMOTE_STORAGE.upper()

    return BackupDestination(
        storage,
        path=getattr(cfg, f'{prefix}_PATH'),
        compression_format=getattr(cfg, f'{prefix}_COMPRESSION_FORMAT'),
        compression_level=getattr(cfg, f'{prefix}_COMPRESSION_LEVEL'),
        backups_to_keep=cfg.BACKUPS_TO_KEEP_REMOTE,
        buffer_size=cfg.BUFFER_SIZE
    )
