"""
Unit tests for retention policy management (chbackup/backup/retention.py).

Tests get_backups_to_delete and RetentionManager for pruning old backups.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

import pytest
from freezegun import freeze_time

from chbackup.backup import BackupDestination
from chbackup.backup.catalog import Backup
from chbackup.backup.retention import RetentionManager, get_backups_to_delete
from chbackup.storage import TransportError


def _backups(*names):
    start = datetime(2024, 1, 1, tzinfo=timezone.utc)
    return [Backup(name, 1, start + timedelta(days=i)) for i, name in enumerate(names)]


class TestGetBackupsToDelete:

    @pytest.mark.parametrize("keep", [0, -1])
    def test_keep_below_one_selects_nothing(self, keep):
        assert get_backups_to_delete(_backups('a', 'b', 'c'), keep) == []

    def test_fewer_backups_than_keep(self):
        assert get_backups_to_delete(_backups('a', 'b'), 2) == []
        assert get_backups_to_delete(_backups('a'), 5) == []

    def test_oldest_selected(self):
        selected = get_backups_to_delete(_backups('a', 'b', 'c', 'd'), 2)

        assert [b.name for b in selected] == ['a', 'b']

    def test_input_order_does_not_matter(self):
        backups = _backups('a', 'b', 'c')

        selected = get_backups_to_delete(list(reversed(backups)), 1)

        assert [b.name for b in selected] == ['a', 'b']


class TestRetentionManager:
    """Test RetentionManager against a destination."""

    def _destination(self, memory_storage, keep=2):
        for name in ['bk1', 'bk2', 'bk3', 'bk4']:
            memory_storage.add(f'backups/{name}.tar.gz')
        memory_storage.add('backups/bk2/metadata/x.sql')
        memory_storage.add('backups/bk2/shadow/y.bin')
        return BackupDestination(memory_storage, path='backups', backups_to_keep=keep)

    def test_retention_manager_initialization(self):
        manager = RetentionManager(MagicMock())

        assert manager.logs == []

    def test_no_retention_configured(self, memory_storage):
        destination = self._destination(memory_storage, keep=0)

        result = RetentionManager(destination).enforce()

        assert result['deleted'] == []
        assert memory_storage.deleted == []
        assert 'skipping' in result['logs'][0]

    def test_enforce_uses_configured_keep(self, memory_storage):
        destination = self._destination(memory_storage, keep=2)

        result = RetentionManager(destination).enforce()

        assert result['deleted'] == ['bk1', 'bk2']
        assert result['kept'] == ['bk3', 'bk4']
        # Both layouts of bk2 go
        assert sorted(memory_storage.deleted) == [
            'backups/bk1.tar.gz',
            'backups/bk2.tar.gz',
            'backups/bk2/metadata/x.sql',
            'backups/bk2/shadow/y.bin',
        ]

    def test_enforce_explicit_keep(self, memory_storage):
        destination = self._destination(memory_storage, keep=0)

        result = RetentionManager(destination).enforce(keep=3)

        assert result['deleted'] == ['bk1']

    def test_first_failure_aborts(self, memory_storage):
        destination = self._destination(memory_storage, keep=1)
        memory_storage.fail_on_delete = 'backups/bk2.tar.gz'
        manager = RetentionManager(destination)

        with pytest.raises(TransportError):
            manager.enforce()

        # bk1 stays deleted, bk3 was never attempted
        assert 'backups/bk1.tar.gz' in memory_storage.deleted
        assert 'backups/bk3.tar.gz' in memory_storage.objects
        assert any('Failed to delete backup bk2' in line for line in manager.logs)

    @freeze_time("2024-01-15 12:00:00")
    def test_log_lines_are_timestamped(self, memory_storage):
        destination = self._destination(memory_storage, keep=4)

        result = RetentionManager(destination).enforce()

        assert result['deleted'] == []
        assert all(line.startswith('[2024-01-15 12:00:00 UTC]') for line in result['logs'])
