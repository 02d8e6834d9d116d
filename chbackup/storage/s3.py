"""
S3 backend.

Works with AWS S3 and with S3 compatible stores through a custom endpoint.
Keys are used verbatim; the configured path prefix is applied by the caller.
"""

import logging
from typing import Optional, Callable

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.exceptions import ClientError, BotoCoreError

from .base import (
    RemoteStorage,
    RemoteFile,
    StorageConnectionError,
    TransportError,
    NotFoundError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = ('404', 'NoSuchKey', 'NotFound')


def _error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage(RemoteStorage):
    """
    RemoteStorage on top of an S3 bucket.

    Uploads are streamed with multipart upload, so put_file never needs to
    know the total size up front.
    """

    def __init__(
        self,
        access_key: str,
        secret_key: str,
        bucket_name: str,
        region: str = 'us-east-1',
        endpoint_url: Optional[str] = None,
        storage_class: str = 'STANDARD',
        part_size: int = 16 * 1024 * 1024
    ):
        """
        Initialize S3 storage handler.

        Args:
            access_key: AWS access key ID
            secret_key: AWS secret access key
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3 compatible stores
            storage_class: Storage class applied to uploaded archives
            part_size: Multipart chunk size used by put_file
        """
        self.bucket_name = bucket_name
        self.region = region
        self.endpoint_url = endpoint_url or None
        self.storage_class = storage_class
        self.transfer_config = TransferConfig(
            multipart_threshold=part_size,
            multipart_chunksize=part_size,
            use_threads=False
        )

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=self.endpoint_url
            )
        except Exception as e:
            raise StorageConnectionError(f"Failed to initialize S3 client: {e}")

    def kind(self) -> str:
        return 'S3'

    def connect(self):
        try:
            # Try to head the bucket
            self.s3_client.head_bucket(Bucket=self.bucket_name)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code == '404':
                raise StorageConnectionError(f"Bucket does not exist: {self.bucket_name}")
            elif error_code == '403':
                raise StorageConnectionError(f"Access denied to bucket: {self.bucket_name}")
            else:
                raise StorageConnectionError(f"S3 connection test failed ({error_code}): {e}")
        except BotoCoreError as e:
            raise StorageConnectionError(f"Failed to connect to S3: {e}")

        logger.debug(f"Connected to S3 bucket {self.bucket_name} ({self.region})")

    def walk(self, prefix: str, visit: Callable[[RemoteFile], None]):
        try:
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    visit(RemoteFile(
                        name=obj['Key'],
                        size=obj['Size'],
                        last_modified=obj['LastModified']
                    ))

        except ClientError as e:
            raise TransportError(f"S3 list failed ({_error_code(e)}): {e}", key=prefix)
        except BotoCoreError as e:
            raise TransportError(f"S3 list failed: {e}", key=prefix)

    def get_file_reader(self, key: str):
        try:
            response = self.s3_client.get_object(Bucket=self.bucket_name, Key=key)
            return response['Body']
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 object not found: {key}", key=key)
            raise TransportError(f"S3 download failed ({error_code}): {e}", key=key)
        except BotoCoreError as e:
            raise TransportError(f"S3 download failed: {e}", key=key)

    def put_file(self, key: str, stream):
        try:
            self.s3_client.upload_fileobj(
                stream,
                self.bucket_name,
                key,
                ExtraArgs={'StorageClass': self.storage_class},
                Config=self.transfer_config
            )
        except ClientError as e:
            raise TransportError(f"S3 upload failed ({_error_code(e)}): {e}", key=key) from e
        except Exception as e:
            # upload_fileobj re-raises whatever the source stream raised
            raise TransportError(f"Failed to upload to S3: {e}", key=key) from e

    def stat_file(self, key: str) -> RemoteFile:
        try:
            response = self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            error_code = _error_code(e)
            if error_code in _NOT_FOUND_CODES:
                raise NotFoundError(f"S3 object not found: {key}", key=key)
            raise TransportError(f"S3 head failed ({error_code}): {e}", key=key)
        except BotoCoreError as e:
            raise TransportError(f"S3 head failed: {e}", key=key)

        return RemoteFile(
            name=key,
            size=response['ContentLength'],
            last_modified=response['LastModified']
        )

    def delete_file(self, key: str):
        # delete_object succeeds silently for missing keys
        self.stat_file(key)

        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
        except ClientError as e:
            raise TransportError(f"S3 delete failed ({_error_code(e)}): {e}", key=key)
        except BotoCoreError as e:
            raise TransportError(f"Failed to delete from S3: {e}", key=key)
