"""
Shared pytest fixtures for chbackup tests.

This module provides fixtures for:
- In-memory remote storage test double
- Local directory storage and destinations
- Mock fixtures for external services (S3, SSH)
- Sample backup trees
"""

import io
import os
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from chbackup.storage import (
    RemoteStorage,
    RemoteFile,
    LocalStorage,
    NotFoundError,
    TransportError,
)
from chbackup.backup import BackupDestination


class MemoryStorage(RemoteStorage):
    """
    RemoteStorage keeping objects in a dict.

    Dates increase by one second per put so listing order is predictable.
    Set fail_on_put / fail_on_delete to a key to simulate transport errors.
    """

    def __init__(self):
        self.objects = {}
        self.dates = {}
        self.clock = datetime(2024, 1, 1, tzinfo=timezone.utc)
        self.connected = False
        self.fail_on_put = None
        self.fail_on_delete = None
        self.deleted = []

    def kind(self) -> str:
        return 'memory'

    def connect(self):
        self.connected = True

    def add(self, key: str, data: bytes = b'x', date: datetime = None):
        """Store an object directly, bypassing put_file."""
        self.objects[key] = data
        self.dates[key] = date or self._tick()

    def _tick(self) -> datetime:
        self.clock += timedelta(seconds=1)
        return self.clock

    def walk(self, prefix, visit):
        for key in list(self.objects):
            if key.startswith(prefix):
                visit(RemoteFile(name=key, size=len(self.objects[key]), last_modified=self.dates[key]))

    def get_file_reader(self, key):
        if key not in self.objects:
            raise NotFoundError(f"missing {key}", key=key)
        return io.BytesIO(self.objects[key])

    def put_file(self, key, stream):
        if key == self.fail_on_put:
            raise TransportError(f"put refused for {key}", key=key)
        chunks = []
        try:
            while True:
                chunk = stream.read(64 * 1024)
                if not chunk:
                    break
                chunks.append(chunk)
        except Exception as e:
            raise TransportError(f"stream failed: {e}", key=key) from e
        self.add(key, b''.join(chunks))

    def stat_file(self, key):
        if key not in self.objects:
            raise NotFoundError(f"missing {key}", key=key)
        return RemoteFile(name=key, size=len(self.objects[key]), last_modified=self.dates[key])

    def delete_file(self, key):
        if key == self.fail_on_delete:
            raise TransportError(f"delete refused for {key}", key=key)
        if key not in self.objects:
            raise NotFoundError(f"missing {key}", key=key)
        del self.objects[key]
        del self.dates[key]
        self.deleted.append(key)


@pytest.fixture
def memory_storage():
    """Connected in-memory storage."""
    storage = MemoryStorage()
    storage.connect()
    return storage


@pytest.fixture
def memory_destination(memory_storage):
    """Destination on in-memory storage under path 'backups' (gzip)."""
    return BackupDestination(
        memory_storage,
        path='backups',
        compression_format='gzip',
        buffer_size=64 * 1024
    )


@pytest.fixture
def local_storage(tmp_path):
    """LocalStorage rooted in a temporary directory."""
    storage = LocalStorage(str(tmp_path / 'remote'))
    storage.connect()
    return storage


@pytest.fixture
def backup_tree(tmp_path):
    """
    Create a backup directory laid out like a database backup.

    Creates under <tmp>/local/bk1:
    - metadata/db/table.sql
    - shadow/db/table/all_1_1_0/data.bin (64 KiB)
    - shadow/db/table/all_1_1_0/columns.txt
    """
    root = tmp_path / 'local' / 'bk1'
    (root / 'metadata' / 'db').mkdir(parents=True)
    (root / 'metadata' / 'db' / 'table.sql').write_text('CREATE TABLE db.table (x UInt64)')

    part = root / 'shadow' / 'db' / 'table' / 'all_1_1_0'
    part.mkdir(parents=True)
    (part / 'data.bin').write_bytes(os.urandom(64 * 1024))
    (part / 'columns.txt').write_text('columns format version: 1\n1 columns:\n`x` UInt64\n')

    return root


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        # Create mock S3 resource
        s3 = boto3.resource('s3', region_name='us-east-1')

        # Create test bucket
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def mock_ssh_client():
    """
    Mock paramiko SSHClient for SFTP testing.

    Returns a MagicMock that simulates SSH connections.
    """
    with patch('chbackup.storage.sftp.SSHClient') as mock_ssh:
        # Mock SFTP client
        mock_sftp = MagicMock()
        mock_ssh.return_value.open_sftp.return_value = mock_sftp

        # Mock connection success
        mock_ssh.return_value.connect.return_value = None

        yield mock_ssh
