"""
Unit tests for the Azure Blob backend (chbackup/storage/azblob.py).

The SDK client is mocked; only error translation and reading are covered.
"""

import io
from datetime import datetime, timezone
from types import SimpleNamespace
from unittest.mock import patch

import pytest

pytest.importorskip('azure.storage.blob')

from azure.core.exceptions import ResourceNotFoundError, ServiceRequestError  # noqa: E402

from chbackup.storage import NotFoundError, TransportError, StorageConnectionError  # noqa: E402
from chbackup.storage.azblob import AzureBlobStorage  # noqa: E402


@pytest.fixture
def mock_blob_service():
    with patch('chbackup.storage.azblob.BlobServiceClient') as mock_service:
        yield mock_service


def _storage(mock_blob_service):
    storage = AzureBlobStorage(container='backups', connection_string='UseDevelopmentStorage=true')
    return storage, storage.container_client


class TestAzureBlobStorage:

    def test_requires_credentials(self, mock_blob_service):
        with pytest.raises(StorageConnectionError):
            AzureBlobStorage(container='backups')

    def test_account_key_uses_account_url(self, mock_blob_service):
        AzureBlobStorage(container='backups', account_name='acct', account_key='key')

        mock_blob_service.assert_called_once_with(
            account_url='https://acct.blob.core.windows.net', credential='key'
        )

    def test_connect_missing_container(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        container.get_container_properties.side_effect = ResourceNotFoundError('gone')

        with pytest.raises(StorageConnectionError):
            storage.connect()

    def test_walk(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        date = datetime(2024, 1, 1, tzinfo=timezone.utc)
        container.list_blobs.return_value = [
            SimpleNamespace(name='bk1.tar.gz', size=10, last_modified=date),
        ]

        found = []
        storage.walk('bk', found.append)

        container.list_blobs.assert_called_once_with(name_starts_with='bk')
        assert [(f.name, f.size, f.last_modified) for f in found] == [('bk1.tar.gz', 10, date)]

    def test_walk_error_is_transport_error(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        container.list_blobs.side_effect = ServiceRequestError('network down')

        with pytest.raises(TransportError):
            storage.walk('', lambda f: None)

    def test_reader_joins_chunks(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        container.download_blob.return_value.chunks.return_value = iter([b'abc', b'defg', b'h'])

        reader = storage.get_file_reader('bk1.tar')

        assert reader.read(5) == b'abcde'
        assert reader.read() == b'fgh'
        assert reader.read(1) == b''

    def test_not_found_translation(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        container.download_blob.side_effect = ResourceNotFoundError('missing')
        container.delete_blob.side_effect = ResourceNotFoundError('missing')
        container.get_blob_client.return_value.get_blob_properties.side_effect = ResourceNotFoundError('missing')

        with pytest.raises(NotFoundError):
            storage.get_file_reader('bk1.tar')
        with pytest.raises(NotFoundError):
            storage.delete_file('bk1.tar')
        with pytest.raises(NotFoundError):
            storage.stat_file('bk1.tar')

    def test_put_file_streams_data(self, mock_blob_service):
        storage, container = _storage(mock_blob_service)
        stream = io.BytesIO(b'archive')

        storage.put_file('bk1.tar', stream)

        container.upload_blob.assert_called_once_with(
            name='bk1.tar', data=stream, overwrite=True, max_concurrency=1
        )

    def test_kind(self, mock_blob_service):
        storage, _ = _storage(mock_blob_service)
        assert storage.kind() == 'azblob'
