"""
Azure Blob Storage backend.

Requires the 'azure' extra (azure-storage-blob).
"""

import logging
from typing import Callable, Optional

from azure.core.exceptions import AzureError, ClientAuthenticationError, ResourceNotFoundError
from azure.storage.blob import BlobServiceClient

from .base import (
    RemoteStorage,
    RemoteFile,
    StorageConnectionError,
    TransportError,
    NotFoundError,
)

logger = logging.getLogger(__name__)


class _BlobReader:
    """File-like wrapper over a StorageStreamDownloader."""

    def __init__(self, downloader):
        self._chunks = downloader.chunks()
        self._pending = b''

    def read(self, size: int = -1) -> bytes:
        while size < 0 or len(self._pending) < size:
            chunk = next(self._chunks, None)
            if chunk is None:
                break
            self._pending += chunk
        if size < 0:
            data, self._pending = self._pending, b''
        else:
            data, self._pending = self._pending[:size], self._pending[size:]
        return data

    def close(self):
        self._chunks = iter(())
        self._pending = b''


class AzureBlobStorage(RemoteStorage):
    """
    RemoteStorage on an Azure blob container.
    """

    def __init__(
        self,
        container: str,
        account_name: Optional[str] = None,
        account_key: Optional[str] = None,
        connection_string: Optional[str] = None,
        max_concurrency: int = 1
    ):
        """
        Initialize Azure Blob Storage backend.

        Args:
            container: Azure blob container name
            account_name: Storage account name (required if not using connection_string)
            account_key: Storage account key (required if not using connection_string)
            connection_string: Full connection string (alternative to account_name/key)
            max_concurrency: Parallel block uploads per blob
        """
        self.container = container
        self.account_name = account_name
        self.max_concurrency = max_concurrency

        if connection_string:
            self.blob_service_client = BlobServiceClient.from_connection_string(connection_string)
        elif account_name and account_key:
            account_url = f"https://{account_name}.blob.core.windows.net"
            self.blob_service_client = BlobServiceClient(
                account_url=account_url, credential=account_key
            )
        else:
            raise StorageConnectionError(
                "Must provide either connection_string or both account_name and account_key"
            )
        self.container_client = self.blob_service_client.get_container_client(container)

    def kind(self) -> str:
        return 'azblob'

    def connect(self):
        try:
            self.container_client.get_container_properties()
        except ResourceNotFoundError:
            raise StorageConnectionError(f"Container does not exist: {self.container}")
        except ClientAuthenticationError as e:
            raise StorageConnectionError(f"Access denied to container {self.container}: {e}")
        except AzureError as e:
            raise StorageConnectionError(f"Failed to connect to Azure Blob Storage: {e}")

    def walk(self, prefix: str, visit: Callable[[RemoteFile], None]):
        try:
            for blob in self.container_client.list_blobs(name_starts_with=prefix or None):
                visit(RemoteFile(
                    name=blob.name,
                    size=blob.size,
                    last_modified=blob.last_modified
                ))
        except AzureError as e:
            raise TransportError(f"Azure list failed: {e}", key=prefix)

    def get_file_reader(self, key: str):
        try:
            downloader = self.container_client.download_blob(key)
        except ResourceNotFoundError:
            raise NotFoundError(f"Blob not found: {key}", key=key)
        except AzureError as e:
            raise TransportError(f"Azure download failed: {e}", key=key)
        return _BlobReader(downloader)

    def put_file(self, key: str, stream):
        try:
            self.container_client.upload_blob(
                name=key,
                data=stream,
                overwrite=True,
                max_concurrency=self.max_concurrency
            )
        except Exception as e:
            raise TransportError(f"Azure upload failed: {e}", key=key) from e

    def stat_file(self, key: str) -> RemoteFile:
        try:
            properties = self.container_client.get_blob_client(key).get_blob_properties()
        except ResourceNotFoundError:
            raise NotFoundError(f"Blob not found: {key}", key=key)
        except AzureError as e:
            raise TransportError(f"Azure stat failed: {e}", key=key)

        return RemoteFile(
            name=key,
            size=properties.size,
            last_modified=properties.last_modified
        )

    def delete_file(self, key: str):
        try:
            self.container_client.delete_blob(key)
        except ResourceNotFoundError:
            raise NotFoundError(f"Blob not found: {key}", key=key)
        except AzureError as e:
            raise TransportError(f"Azure delete failed: {e}", key=key)

    def close(self):
        self.blob_service_client.close()
