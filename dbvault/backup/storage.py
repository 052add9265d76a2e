"""
S3 storage handler for backup archives.

Archives are stored under a fixed scope prefix: {prefix}/{filename}.
File names embed the dump timestamp, so a re-upload of the same archive
overwrites the same key.
"""

import os
from datetime import datetime
from typing import List

import boto3
from boto3.s3.transfer import TransferConfig
from botocore.config import Config as BotoConfig
from botocore.exceptions import ClientError, BotoCoreError

from dbvault.models import RemoteObject


class StorageError(Exception):
    """Raised when a storage operation fails."""
    pass


class UploadError(StorageError):
    """Raised when an archive cannot be uploaded."""
    pass


class RemoteListError(StorageError):
    """Raised when the remote object list cannot be read."""
    pass


class RemoteDeleteError(StorageError):
    """Raised when a single remote object cannot be deleted."""
    pass


def _client_error_code(e: ClientError) -> str:
    return e.response.get('Error', {}).get('Code', 'Unknown')


class S3Storage:
    """
    Handler for storing backups in AWS S3 or an S3-compatible service.
    """

    def __init__(self, bucket_name: str, prefix: str = '', access_key: str = None, secret_key: str = None,
                 region: str = 'us-east-1', endpoint_url: str = None, timeout: int = 300):
        """
        Initialize S3 storage handler.

        Args:
            bucket_name: S3 bucket name
            prefix: Scope prefix for all keys written and swept by this handler
            access_key: AWS access key ID (default: boto3 credential chain)
            secret_key: AWS secret access key
            region: AWS region (default: us-east-1)
            endpoint_url: Custom endpoint for S3-compatible services
            timeout: Connect/read timeout in seconds for each request
        """
        self.bucket_name = bucket_name
        self.prefix = prefix.strip('/')
        self.region = region

        # Multipart above 100MB, 10MB parts
        self.transfer_config = TransferConfig(
            multipart_threshold=100 * 1024 * 1024,
            multipart_chunksize=10 * 1024 * 1024
        )

        try:
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=region,
                endpoint_url=endpoint_url,
                config=BotoConfig(
                    connect_timeout=timeout,
                    read_timeout=timeout,
                    retries={'max_attempts': 3, 'mode': 'standard'}
                )
            )
        except Exception as e:
            raise StorageError(f"Failed to initialize S3 client: {e}")

    @classmethod
    def from_config(cls, storage_config) -> 'S3Storage':
        """Create a handler from a StorageConfig."""
        return cls(
            bucket_name=storage_config.bucket,
            prefix=storage_config.prefix,
            access_key=storage_config.access_key,
            secret_key=storage_config.secret_key,
            region=storage_config.region,
            endpoint_url=storage_config.endpoint_url,
            timeout=storage_config.timeout
        )

    def key_for(self, local_path: str) -> str:
        """
        Build the object key for a local archive.

        Args:
            local_path: Path to local archive file

        Returns:
            {prefix}/{basename}, or just the basename when no prefix is set
        """
        filename = os.path.basename(local_path)
        if self.prefix:
            return f"{self.prefix}/{filename}"
        return filename

    def upload(self, local_path: str) -> RemoteObject:
        """
        Upload archive to S3.

        Args:
            local_path: Path to local archive file

        Returns:
            RemoteObject describing the uploaded object

        Raises:
            UploadError: If upload fails
        """
        if not os.path.exists(local_path):
            raise UploadError(f"Local file not found: {local_path}")

        s3_key = self.key_for(local_path)

        try:
            file_size = os.path.getsize(local_path)
            self.s3_client.upload_file(
                local_path,
                self.bucket_name,
                s3_key,
                Config=self.transfer_config
            )
        except ClientError as e:
            raise UploadError(f"S3 upload failed ({_client_error_code(e)}): {e}")
        except BotoCoreError as e:
            raise UploadError(f"S3 upload failed: {e}")
        except Exception as e:
            raise UploadError(f"Failed to upload to S3: {e}")

        return RemoteObject(key=s3_key, last_modified=datetime.utcnow(), size=file_size)

    def delete(self, s3_key: str):
        """
        Delete an object from S3.

        Args:
            s3_key: S3 object key to delete

        Raises:
            RemoteDeleteError: If deletion fails
        """
        try:
            self.s3_client.delete_object(
                Bucket=self.bucket_name,
                Key=s3_key
            )
        except ClientError as e:
            raise RemoteDeleteError(f"S3 delete failed ({_client_error_code(e)}): {e}")
        except Exception as e:
            raise RemoteDeleteError(f"Failed to delete from S3: {e}")

    def list_objects(self) -> List[RemoteObject]:
        """
        List all objects under the scope prefix.

        Returns:
            List of RemoteObject

        Raises:
            RemoteListError: If listing fails
        """
        prefix = f"{self.prefix}/" if self.prefix else ''

        try:
            objects = []
            paginator = self.s3_client.get_paginator('list_objects_v2')

            for page in paginator.paginate(Bucket=self.bucket_name, Prefix=prefix):
                for obj in page.get('Contents', []):
                    objects.append(RemoteObject(
                        key=obj['Key'],
                        last_modified=obj['LastModified'],
                        size=obj['Size']
                    ))

            return objects

        except ClientError as e:
            raise RemoteListError(f"S3 list failed ({_client_error_code(e)}): {e}")
        except Exception as e:
            raise RemoteListError(f"Failed to list S3 objects: {e}")

