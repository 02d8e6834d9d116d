"""
Backup module for chbackup.

This module handles the remote backup functionality including:
- Streaming archive upload and download
- Compression
- Incremental chains (meta.json + hardlinks)
- Backup catalog built from remote listings
- Retention policy enforcement
"""

from .archive import ArchiveError, UploadError, DownloadError, ChainCorruptionError
from .catalog import Backup, build_backup_list, format_backup_list, format_bytes
from .compression import CompressionError, get_archive_writer, get_archive_reader
from .destination import BackupDestination, new_backup_destination
from .metafile import MetaFile, META_FILE_NAME
from .retention import RetentionManager, get_backups_to_delete
from .stream import StreamBuffer, pipe

__all__ = [
    'ArchiveError',
    'UploadError',
    'DownloadError',
    'ChainCorruptionError',
    'Backup',
    'build_backup_list',
    'format_backup_list',
    'format_bytes',
    'CompressionError',
    'get_archive_writer',
    'get_archive_reader',
    'BackupDestination',
    'new_backup_destination',
    'MetaFile',
    'META_FILE_NAME',
    'RetentionManager',
    'get_backups_to_delete',
    'StreamBuffer',
    'pipe',
]
