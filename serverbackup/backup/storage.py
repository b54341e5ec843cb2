"""
Upload handlers for backup archives.

Supports:
- YandexDiskUploader: two-step upload (negotiate an upload URL, then PUT)
- DropboxUploader: single POST with a JSON metadata header
- S3Uploader: put_object to an AWS S3 bucket

Every uploader makes one best-effort attempt: no retry, no chunking.
"""

import json
import os
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Tuple

import boto3
import httpx
from botocore.exceptions import BotoCoreError, ClientError

from ..notifier import BackupError

YANDEX_UPLOAD_URL = 'https://cloud-api.yandex.net/v1/disk/resources/upload'
DROPBOX_UPLOAD_URL = 'https://content.dropboxapi.com/2/files/upload'


class StorageError(BackupError):
    """Raised when storage operation fails."""
    pass


class NoArchiveError(StorageError):
    """Raised when an upload is requested before any archive exists."""
    pass


class UploadNegotiationError(StorageError):
    """Raised when the provider refuses to hand out an upload location."""
    pass


class UploadTransferError(StorageError):
    """Raised when sending the file body fails."""
    pass


@dataclass
class UploadResult:
    """
    Result of an upload operation.

    Attributes:
        success: Whether the upload completed successfully
        provider_metadata: Whatever the provider returned about the stored file
        error: Error message if upload failed (None if success)
    """
    success: bool
    provider_metadata: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


def _response_body(response: httpx.Response) -> str:
    try:
        return response.text
    except (httpx.ResponseNotRead, UnicodeDecodeError):
        return ''


class HTTPUploader:
    """Base class for uploaders talking to an HTTP API."""

    provider = 'http'

    def __init__(self, client: Optional[httpx.Client] = None):
        """
        Args:
            client: httpx client to use; one is created per upload otherwise
        """
        self._client = client

    def _get_client(self) -> Tuple[httpx.Client, bool]:
        if self._client is not None:
            return self._client, False
        return httpx.Client(), True

    def upload(self, local_path: str, credential: str, remote_path: str) -> UploadResult:
        """
        Upload a local file.

        Args:
            local_path: Path to local archive file
            credential: Access token
            remote_path: Destination path on the provider

        Returns:
            UploadResult on success

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}", {'path': local_path})

        client, owned = self._get_client()
        try:
            return self._upload(client, local_path, credential, remote_path)
        except httpx.HTTPError as e:
            raise UploadTransferError(
                f"{self.provider} upload failed: {e}",
                {'path': local_path, 'remote_path': remote_path}
            )
        finally:
            if owned:
                client.close()

    def _upload(self, client: httpx.Client, local_path: str, credential: str, remote_path: str) -> UploadResult:
        raise NotImplementedError


class YandexDiskUploader(HTTPUploader):
    """
    Upload to Yandex Disk.

    Step 1 asks the REST API for an upload href, step 2 PUTs the raw bytes
    there and expects 201 Created.
    """

    provider = 'yandex'

    def __init__(self, client: Optional[httpx.Client] = None, api_url: str = YANDEX_UPLOAD_URL, overwrite: bool = True):
        super().__init__(client)
        self.api_url = api_url
        self.overwrite = overwrite

    def _upload(self, client, local_path, credential, remote_path):
        response = client.get(
            self.api_url,
            params={'path': remote_path, 'overwrite': 'true' if self.overwrite else 'false'},
            headers={'Authorization': f"OAuth {credential}"}
        )

        href = None
        if response.is_success:
            try:
                href = response.json().get('href')
            except (ValueError, AttributeError):
                href = None

        if not href:
            raise UploadNegotiationError(
                f"Yandex Disk did not return an upload URL (HTTP {response.status_code})",
                {'status_code': response.status_code, 'body': _response_body(response), 'remote_path': remote_path}
            )

        with open(local_path, 'rb') as f:
            put_response = client.put(href, content=f)

        if put_response.status_code != 201:
            raise UploadTransferError(
                f"Yandex Disk upload failed (HTTP {put_response.status_code})",
                {'status_code': put_response.status_code, 'body': _response_body(put_response), 'remote_path': remote_path}
            )

        return UploadResult(True, {'href': href, 'path': remote_path, 'status_code': put_response.status_code})


class DropboxUploader(HTTPUploader):
    """
    Upload to Dropbox.

    The destination travels in the Dropbox-API-Arg header; success is decided
    by the presence of path_display in the JSON response.
    """

    provider = 'dropbox'

    def __init__(self, client: Optional[httpx.Client] = None, api_url: str = DROPBOX_UPLOAD_URL, mode: str = 'overwrite'):
        super().__init__(client)
        self.api_url = api_url
        self.mode = mode

    def _upload(self, client, local_path, credential, remote_path):
        if not remote_path.startswith('/'):
            remote_path = f"/{remote_path}"

        headers = {
            'Authorization': f"Bearer {credential}",
            'Content-Type': 'application/octet-stream',
            'Dropbox-API-Arg': json.dumps({'path': remote_path, 'mode': self.mode}),
        }

        with open(local_path, 'rb') as f:
            response = client.post(self.api_url, headers=headers, content=f)

        try:
            metadata = response.json()
        except ValueError:
            metadata = None

        if not isinstance(metadata, dict) or 'path_display' not in metadata:
            raise UploadTransferError(
                f"Dropbox upload failed (HTTP {response.status_code})",
                {'status_code': response.status_code, 'body': _response_body(response), 'remote_path': remote_path}
            )

        return UploadResult(True, metadata)


class S3Uploader:
    """
    Upload to AWS S3.

    The credential is an (access_key, secret_key) pair; remote_path is the
    object key inside the bucket.
    """

    provider = 's3'

    def __init__(self, bucket_name: str, region: str = 'us-east-1'):
        """
        Initialize S3 uploader.

        Args:
            bucket_name: S3 bucket name
            region: AWS region (default: us-east-1)
        """
        self.bucket_name = bucket_name
        self.region = region

    def _create_client(self, credential):
        access_key, secret_key = credential
        try:
            return boto3.client(
                's3',
                aws_access_key_id=access_key,
                aws_secret_access_key=secret_key,
                region_name=self.region
            )
        except (BotoCoreError, ValueError) as e:
            raise StorageError(f"Failed to initialize S3 client: {e}", {'bucket': self.bucket_name})

    def upload(self, local_path: str, credential, remote_path: str) -> UploadResult:
        """
        Upload archive to S3.

        Raises:
            StorageError: If upload fails
        """
        if not os.path.exists(local_path):
            raise StorageError(f"Local file not found: {local_path}", {'path': local_path})

        s3_client = self._create_client(credential)
        s3_key = remote_path.lstrip('/')

        try:
            with open(local_path, 'rb') as f:
                response = s3_client.put_object(
                    Bucket=self.bucket_name,
                    Key=s3_key,
                    Body=f
                )
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code', 'Unknown')
            raise UploadTransferError(
                f"S3 upload failed ({error_code}): {e}",
                {'bucket': self.bucket_name, 'key': s3_key}
            )
        except BotoCoreError as e:
            raise UploadTransferError(f"S3 upload failed: {e}", {'bucket': self.bucket_name, 'key': s3_key})

        return UploadResult(True, {
            'bucket': self.bucket_name,
            'key': s3_key,
            'etag': response.get('ETag')
        })


def create_uploader(provider: str, **kwargs):
    """
    Factory function to create an uploader.

    Args:
        provider: 'yandex', 'dropbox' or 's3'
        **kwargs: Passed to the uploader constructor

    Returns:
        Uploader instance

    Raises:
        ValueError: If provider is invalid
    """
    if provider == 'yandex':
        return YandexDiskUploader(**kwargs)
    elif provider == 'dropbox':
        return DropboxUploader(**kwargs)
    elif provider == 's3':
        return S3Uploader(**kwargs)
    else:
        raise ValueError(f"Invalid upload provider: {provider}")
