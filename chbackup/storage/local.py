"""
Local filesystem backend.

Maps keys onto files below a base directory. Useful for NFS mounts and for
tests; behaves like an object store (no empty directories are reported).
"""

import os
import shutil
import logging
from pathlib import Path
from datetime import datetime, timezone
from typing import Callable

from .base import (
    RemoteStorage,
    RemoteFile,
    StorageConnectionError,
    TransportError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class LocalStorage(RemoteStorage):
    """
    Handler for keeping backups in a local directory.

    Key 'a/b/c.tar.gz' is stored at {base_path}/a/b/c.tar.gz.
    """

    def __init__(self, base_path: str):
        """
        Initialize local storage handler.

        Args:
            base_path: Base directory for stored objects
        """
        self.base_path = Path(base_path)

    def kind(self) -> str:
        return 'local'

    def connect(self):
        # Create base directory if it doesn't exist
        try:
            self.base_path.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise StorageConnectionError(f"Failed to create local storage directory: {e}")

    def _full_path(self, key: str) -> Path:
        full_path = (self.base_path / key.lstrip('/')).resolve()
        if not full_path.is_relative_to(self.base_path.resolve()):
            raise TransportError(f"Key escapes storage directory: {key}", key=key)
        return full_path

    def _to_remote_file(self, key: str, full_path: Path) -> RemoteFile:
        stat = full_path.stat()
        return RemoteFile(
            name=key,
            size=stat.st_size,
            last_modified=datetime.fromtimestamp(stat.st_mtime, tz=timezone.utc)
        )

    def walk(self, prefix: str, visit: Callable[[RemoteFile], None]):
        if not self.base_path.exists():
            return

        try:
            for root, dirs, files in os.walk(self.base_path):
                dirs.sort()
                for name in sorted(files):
                    full_path = Path(root) / name
                    key = full_path.relative_to(self.base_path).as_posix()
                    if key.startswith(prefix):
                        visit(self._to_remote_file(key, full_path))
        except OSError as e:
            raise TransportError(f"Failed to list local files: {e}", key=prefix)

    def get_file_reader(self, key: str):
        full_path = self._full_path(key)
        try:
            return open(full_path, 'rb')
        except FileNotFoundError:
            raise NotFoundError(f"Local file not found: {key}", key=key)
        except OSError as e:
            raise TransportError(f"Failed to open local file {key}: {e}", key=key)

    def put_file(self, key: str, stream):
        dest_path = self._full_path(key)
        tmp_path = dest_path.with_name(dest_path.name + '.part')

        try:
            # Create directory structure
            dest_path.parent.mkdir(parents=True, exist_ok=True)

            with open(tmp_path, 'wb') as f:
                shutil.copyfileobj(stream, f, 1024 * 1024)
            os.replace(tmp_path, dest_path)

        except Exception as e:
            if tmp_path.exists():
                tmp_path.unlink()
            raise TransportError(f"Failed to store {key} locally: {e}", key=key) from e

    def stat_file(self, key: str) -> RemoteFile:
        full_path = self._full_path(key)
        if not full_path.is_file():
            raise NotFoundError(f"Local file not found: {key}", key=key)
        return self._to_remote_file(key, full_path)

    def delete_file(self, key: str):
        full_path = self._full_path(key)

        try:
            full_path.unlink()
        except FileNotFoundError:
            raise NotFoundError(f"Local file not found: {key}", key=key)
        except PermissionError as e:
            raise TransportError(f"Permission denied deleting {full_path}: {e}", key=key)
        except OSError as e:
            raise TransportError(f"Failed to delete local file: {e}", key=key)

        # Drop directories left empty so the tree mirrors an object store
        parent = full_path.parent
        base = self.base_path.resolve()
        while parent != base and parent.is_relative_to(base):
            try:
                parent.rmdir()
            except OSError:
                break
            parent = parent.parent
