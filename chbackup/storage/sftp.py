"""
SFTP backend.

Stores objects as files in a directory tree on an SSH server. Keys map to
paths below root_path; parent directories are created on upload.
"""

import stat
import logging
import posixpath
from pathlib import Path
from datetime import datetime, timezone
from typing import Callable

import paramiko
from paramiko import SSHClient, AutoAddPolicy

from .base import (
    RemoteStorage,
    RemoteFile,
    StorageConnectionError,
    TransportError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class SFTPStorage(RemoteStorage):
    """
    RemoteStorage on a remote filesystem reached over SSH/SFTP.
    """

    def __init__(
        self,
        host: str,
        username: str,
        port: int = 22,
        password: str = None,
        private_key: str = None,
        root_path: str = '/',
        timeout: int = 30
    ):
        """
        Initialize SFTP storage handler.

        Args:
            host: SSH hostname or IP
            username: SSH username
            port: SSH port (default 22)
            password: SSH password (optional if using key)
            private_key: Path to private key file (optional)
            root_path: Remote directory every key is relative to
            timeout: Connection timeout in seconds
        """
        self.host = host
        self.port = port
        self.username = username
        self.password = password
        self.private_key_path = private_key
        self.root_path = root_path or '/'
        self.timeout = timeout

        self.ssh_client = None
        self.sftp_client = None

    def kind(self) -> str:
        return 'SFTP'

    def connect(self):
        if self.sftp_client is not None:
            try:
                self.sftp_client.stat(self.root_path)
                return
            except (OSError, paramiko.SSHException, EOFError):
                logger.info(f"SFTP session to {self.host} went stale, reconnecting")
                self.close()

        connect_kwargs = {
            'hostname': self.host,
            'port': self.port,
            'username': self.username,
            'timeout': self.timeout
        }

        # Use password or private key
        if self.password:
            connect_kwargs['password'] = self.password
        elif self.private_key_path:
            key_path = Path(self.private_key_path).expanduser()
            if not key_path.exists():
                raise StorageConnectionError(f"Private key not found: {self.private_key_path}")
            connect_kwargs['key_filename'] = str(key_path)
        else:
            raise StorageConnectionError("Either password or private_key must be provided")

        try:
            self.ssh_client = SSHClient()
            self.ssh_client.set_missing_host_key_policy(AutoAddPolicy())
            self.ssh_client.connect(**connect_kwargs)
            self.sftp_client = self.ssh_client.open_sftp()

        except paramiko.AuthenticationException as e:
            self.close()
            raise StorageConnectionError(f"SSH authentication failed: {e}")
        except (paramiko.SSHException, OSError) as e:
            self.close()
            raise StorageConnectionError(f"Failed to connect to {self.host}: {e}")

        logger.debug(f"Connected to sftp://{self.username}@{self.host}:{self.port}{self.root_path}")

    def close(self):
        """Close SSH/SFTP connections."""
        if self.sftp_client:
            self.sftp_client.close()
            self.sftp_client = None

        if self.ssh_client:
            self.ssh_client.close()
            self.ssh_client = None

    def _sftp(self):
        if self.sftp_client is None:
            self.connect()
        return self.sftp_client

    def _remote_path(self, key: str) -> str:
        return posixpath.join(self.root_path, key.lstrip('/'))

    def _key(self, remote_path: str) -> str:
        return posixpath.relpath(remote_path, self.root_path)

    def _mkdirs(self, remote_dir: str):
        sftp = self._sftp()
        missing = []
        while remote_dir not in ('', '/'):
            try:
                sftp.stat(remote_dir)
                break
            except FileNotFoundError:
                missing.append(remote_dir)
                remote_dir = posixpath.dirname(remote_dir)
        for directory in reversed(missing):
            sftp.mkdir(directory)

    def walk(self, prefix: str, visit: Callable[[RemoteFile], None]):
        sftp = self._sftp()

        # Start from the deepest directory fully covered by the prefix
        start = self._remote_path(posixpath.dirname(prefix))

        def _walk_directory(remote_dir):
            try:
                entries = sftp.listdir_attr(remote_dir)
            except FileNotFoundError:
                return
            for item in sorted(entries, key=lambda a: a.filename):
                remote_item = posixpath.join(remote_dir, item.filename)
                key = self._key(remote_item)
                if stat.S_ISDIR(item.st_mode):
                    if key.startswith(prefix) or prefix.startswith(key + '/'):
                        _walk_directory(remote_item)
                elif key.startswith(prefix):
                    visit(RemoteFile(
                        name=key,
                        size=item.st_size,
                        last_modified=datetime.fromtimestamp(item.st_mtime, tz=timezone.utc)
                    ))

        try:
            _walk_directory(start)
        except (OSError, paramiko.SSHException) as e:
            raise TransportError(f"SFTP list failed under {start}: {e}", key=prefix)

    def get_file_reader(self, key: str):
        remote_path = self._remote_path(key)
        try:
            reader = self._sftp().open(remote_path, 'rb')
            reader.prefetch()
            return reader
        except FileNotFoundError:
            raise NotFoundError(f"Remote file not found: {remote_path}", key=key)
        except (OSError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to open {remote_path}: {e}", key=key)

    def put_file(self, key: str, stream):
        remote_path = self._remote_path(key)
        # The final key only appears once the whole stream is stored
        part_path = remote_path + '.part'
        try:
            self._mkdirs(posixpath.dirname(remote_path))
            # putfo would stat the source for its size, which a stream lacks
            with self._sftp().open(part_path, 'wb') as remote_file:
                remote_file.set_pipelined(True)
                while True:
                    chunk = stream.read(1024 * 1024)
                    if not chunk:
                        break
                    remote_file.write(chunk)
            self._sftp().posix_rename(part_path, remote_path)
        except Exception as e:
            self._remove_partial(part_path)
            raise TransportError(f"Failed to upload {remote_path}: {e}", key=key) from e

    def _remove_partial(self, part_path: str):
        try:
            self.sftp_client.remove(part_path)
        except (OSError, paramiko.SSHException, AttributeError) as e:
            logger.warning(f"Could not remove partial upload {part_path}: {e}")

    def stat_file(self, key: str) -> RemoteFile:
        remote_path = self._remote_path(key)
        try:
            attrs = self._sftp().stat(remote_path)
        except FileNotFoundError:
            raise NotFoundError(f"Remote file not found: {remote_path}", key=key)
        except (OSError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to stat {remote_path}: {e}", key=key)

        return RemoteFile(
            name=key,
            size=attrs.st_size,
            last_modified=datetime.fromtimestamp(attrs.st_mtime, tz=timezone.utc)
        )

    def delete_file(self, key: str):
        remote_path = self._remote_path(key)
        try:
            self._sftp().remove(remote_path)
        except FileNotFoundError:
            raise NotFoundError(f"Remote file not found: {remote_path}", key=key)
        except PermissionError:
            raise TransportError(f"Permission denied deleting remote file: {remote_path}", key=key)
        except (OSError, paramiko.SSHException) as e:
            raise TransportError(f"Failed to delete {remote_path}: {e}", key=key)
