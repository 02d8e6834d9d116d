"""
Remote storage backends for backup archives.

Supports:
- S3Storage: AWS S3 and S3 compatible stores
- AzureBlobStorage: Azure Blob Storage (needs the 'azure' extra)
- SFTPStorage: Directory tree on an SSH server
- LocalStorage: Local or mounted directory
"""

from .base import (
    RemoteStorage,
    RemoteFile,
    StorageError,
    StorageConnectionError,
    TransportError,
    NotFoundError,
)
from .local import LocalStorage
from .s3 import S3Storage
from .sftp import SFTPStorage


def new_remote_storage(cfg) -> RemoteStorage:
    """
    Factory function to create the backend named by cfg.REMOTE_STORAGE.

    Args:
        cfg: Configuration object (see chbackup.config)

    Returns:
        RemoteStorage instance (not yet connected)

    Raises:
        ValueError: If the storage type is 'none' or unknown
    """
    storage_type = (cfg.REMOTE_STORAGE or 'none').lower()

    if storage_type == 's3':
        return S3Storage(
            access_key=cfg.S3_ACCESS_KEY,
            secret_key=cfg.S3_SECRET_KEY,
            bucket_name=cfg.S3_BUCKET,
            region=cfg.S3_REGION,
            endpoint_url=cfg.S3_ENDPOINT,
            storage_class=cfg.S3_STORAGE_CLASS
        )
    elif storage_type == 'azblob':
        from .azblob import AzureBlobStorage
        return AzureBlobStorage(
            container=cfg.AZBLOB_CONTAINER,
            account_name=cfg.AZBLOB_ACCOUNT_NAME,
            account_key=cfg.AZBLOB_ACCOUNT_KEY,
            connection_string=cfg.AZBLOB_CONNECTION_STRING
        )
    elif storage_type == 'sftp':
        return SFTPStorage(
            host=cfg.SFTP_HOST,
            port=cfg.SFTP_PORT,
            username=cfg.SFTP_USERNAME,
            password=cfg.SFTP_PASSWORD,
            private_key=cfg.SFTP_PRIVATE_KEY,
            timeout=cfg.SFTP_TIMEOUT
        )
    elif storage_type == 'local':
        return LocalStorage(cfg.LOCAL_ROOT)
    elif storage_type == 'none':
        raise ValueError("Remote storage is 'none'")
    else:
        raise ValueError(f"Storage type '{storage_type}' not supported")


__all__ = [
    'RemoteStorage',
    'RemoteFile',
    'StorageError',
    'StorageConnectionError',
    'TransportError',
    'NotFoundError',
    'LocalStorage',
    'S3Storage',
    'SFTPStorage',
    'new_remote_storage',
]
