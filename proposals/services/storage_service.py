"""
Artifact storage for generated PDFs.

Two backends share one interface:
- S3ArtifactStore: boto3 against any S3-compatible endpoint (MinIO, AWS S3,
  DigitalOcean Spaces). Download links are presigned GET URLs.
- LocalArtifactStore: plain filesystem, for development and tests. Download
  links carry an itsdangerous-signed, time-limited token served read-only by
  the artifacts blueprint.

Paths are object keys; a finalized quote lives at
{quote_number}/v{version}/{quote_number}.pdf so versions never overwrite
each other.
"""
import logging
import os
from datetime import timedelta
from typing import List, Optional

import boto3
from botocore.client import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError
from flask import current_app
from itsdangerous import URLSafeTimedSerializer, BadSignature, SignatureExpired

from proposals.exceptions import DependencyError, ArtifactMissingError

logger = logging.getLogger(__name__)

PDF_CONTENT_TYPE = 'application/pdf'
DOWNLOAD_TOKEN_SALT = 'artifact-download'


def artifact_path(quote_number: str, version: int) -> str:
    """Deterministic, versioned object key for a quote PDF."""
    return f"{quote_number}/v{version}/{quote_number}.pdf"


class ArtifactStore:
    """Interface for artifact backends."""

    def store(self, path: str, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        raise NotImplementedError

    def retrieve(self, path: str) -> Optional[bytes]:
        raise NotImplementedError

    def exists(self, path: str) -> bool:
        raise NotImplementedError

    def list(self, prefix: str = '') -> List[str]:
        raise NotImplementedError

    def delete(self, path: str) -> bool:
        raise NotImplementedError

    def issue_download_link(self, path: str, ttl: timedelta) -> str:
        raise NotImplementedError


class S3ArtifactStore(ArtifactStore):
    """
    S3-compatible artifact store.

    Usage:
        store = S3ArtifactStore(client, 'generated-pdfs')
        ref = store.store('Q-20260101-ABCD1234/v1/Q-20260101-ABCD1234.pdf', pdf_bytes)
        url = store.issue_download_link(ref, timedelta(hours=24))
    """

    def __init__(self, client, bucket: str, ensure_bucket: bool = True):
        self.client = client
        self.bucket = bucket
        if ensure_bucket:
            self._ensure_bucket_exists()

    @classmethod
    def from_config(cls, config) -> 'S3ArtifactStore':
        client = boto3.client(
            's3',
            endpoint_url=config['S3_ENDPOINT'],
            aws_access_key_id=config['S3_ACCESS_KEY'],
            aws_secret_access_key=config['S3_SECRET_KEY'],
            region_name=config['S3_REGION'],
            config=BotoConfig(signature_version='s3v4')
        )
        return cls(client, config['S3_BUCKET'])

    def _ensure_bucket_exists(self):
        """Create the bucket if it doesn't exist. Objects stay private."""
        try:
            self.client.head_bucket(Bucket=self.bucket)
            logger.info(f"[STORAGE] Bucket '{self.bucket}' exists")
        except ClientError as e:
            error_code = e.response.get('Error', {}).get('Code')
            if error_code in ('404', 'NoSuchBucket'):
                try:
                    self.client.create_bucket(Bucket=self.bucket)
                    logger.info(f"[STORAGE] Bucket '{self.bucket}' created")
                except ClientError as create_error:
                    logger.error(f"[STORAGE] Failed to create bucket: {create_error}")
                    raise DependencyError('Artifact storage is unavailable') from create_error
            else:
                logger.error(f"[STORAGE] Failed to check bucket: {e}")
                raise DependencyError('Artifact storage is unavailable') from e
        except BotoCoreError as e:
            logger.error(f"[STORAGE] Failed to reach storage endpoint: {e}")
            raise DependencyError('Artifact storage is unavailable') from e

    def store(self, path: str, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        try:
            logger.info(f"[STORAGE] Uploading '{path}' to bucket '{self.bucket}' ({len(data)} bytes)")
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
            return path
        except (ClientError, BotoCoreError) as e:
            logger.exception(f"[STORAGE] Upload failed for '{path}': {e}")
            raise DependencyError('Could not store the generated document') from e

    def retrieve(self, path: str) -> Optional[bytes]:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=path)
            return response['Body'].read()
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('NoSuchKey', '404'):
                return None
            logger.exception(f"[STORAGE] Download failed for '{path}': {e}")
            raise DependencyError('Could not read the stored document') from e
        except BotoCoreError as e:
            logger.exception(f"[STORAGE] Download failed for '{path}': {e}")
            raise DependencyError('Could not read the stored document') from e

    def exists(self, path: str) -> bool:
        try:
            self.client.head_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError:
            return False

    def list(self, prefix: str = '') -> List[str]:
        keys = []
        try:
            paginator = self.client.get_paginator('list_objects_v2')
            for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
                keys.extend(item['Key'] for item in page.get('Contents', []))
        except (ClientError, BotoCoreError) as e:
            logger.exception(f"[STORAGE] Listing '{prefix}' failed: {e}")
            raise DependencyError('Could not list stored documents') from e
        return keys

    def delete(self, path: str) -> bool:
        try:
            logger.info(f"[STORAGE] Deleting '{path}' from bucket '{self.bucket}'")
            self.client.delete_object(Bucket=self.bucket, Key=path)
            return True
        except ClientError as e:
            logger.exception(f"[STORAGE] Delete failed: {e}")
            return False

    def issue_download_link(self, path: str, ttl: timedelta) -> str:
        """Presigned GET URL; grants read access only."""
        if not self.exists(path):
            raise ArtifactMissingError(f"Artifact '{path}' is missing")
        return self.client.generate_presigned_url(
            'get_object',
            Params={'Bucket': self.bucket, 'Key': path},
            ExpiresIn=int(ttl.total_seconds())
        )


class LocalArtifactStore(ArtifactStore):
    """Filesystem artifact store rooted at base_path."""

    def __init__(self, base_path: str, secret_key: str, public_url: str = 'http://localhost:5000'):
        self.base_path = os.path.abspath(base_path)
        self.serializer = URLSafeTimedSerializer(secret_key, salt=DOWNLOAD_TOKEN_SALT)
        self.public_url = public_url.rstrip('/')
        os.makedirs(self.base_path, exist_ok=True)

    def _full_path(self, path: str) -> str:
        full = os.path.abspath(os.path.join(self.base_path, path))
        if os.path.commonpath([full, self.base_path]) != self.base_path:
            raise ValueError(f"Invalid artifact path: {path}")
        return full

    def store(self, path: str, data: bytes, content_type: str = PDF_CONTENT_TYPE) -> str:
        full = self._full_path(path)
        try:
            os.makedirs(os.path.dirname(full), exist_ok=True)
            tmp = f"{full}.part"
            with open(tmp, 'wb') as fh:
                fh.write(data)
            os.replace(tmp, full)
        except OSError as e:
            logger.exception(f"[STORAGE] Local write failed for '{path}': {e}")
            raise DependencyError('Could not store the generated document') from e
        logger.info(f"[STORAGE] File saved locally: {full} ({len(data)} bytes)")
        return path

    def retrieve(self, path: str) -> Optional[bytes]:
        full = self._full_path(path)
        if not os.path.isfile(full):
            return None
        with open(full, 'rb') as fh:
            return fh.read()

    def exists(self, path: str) -> bool:
        return os.path.isfile(self._full_path(path))

    def list(self, prefix: str = '') -> List[str]:
        keys = []
        for root, _dirs, files in os.walk(self.base_path):
            for name in files:
                if name.endswith('.part'):
                    continue
                rel = os.path.relpath(os.path.join(root, name), self.base_path).replace(os.sep, '/')
                if rel.startswith(prefix):
                    keys.append(rel)
        return sorted(keys)

    def delete(self, path: str) -> bool:
        full = self._full_path(path)
        if os.path.isfile(full):
            os.remove(full)
            logger.info(f"[STORAGE] File deleted: {path}")
            return True
        return False

    def issue_download_link(self, path: str, ttl: timedelta) -> str:
        if not self.exists(path):
            raise ArtifactMissingError(f"Artifact '{path}' is missing")
        token = self.serializer.dumps({'path': path, 'ttl': int(ttl.total_seconds())})
        return f"{self.public_url}/api/artifacts/{token}"

    def resolve_token(self, token: str) -> str:
        """Return the artifact path of a valid, unexpired token."""
        try:
            data = self.serializer.loads(token)
            self.serializer.loads(token, max_age=data['ttl'])
        except SignatureExpired:
            raise ArtifactMissingError('Download link has expired')
        except (BadSignature, KeyError, TypeError):
            raise ArtifactMissingError('Invalid download link')
        return data['path']


# Singleton instance per process
_artifact_store: Optional[ArtifactStore] = None


def init_artifact_store(app) -> ArtifactStore:
    """Build the configured backend and register it on the app."""
    global _artifact_store
    backend = app.config.get('ARTIFACT_BACKEND', 's3')
    if backend == 'local':
        _artifact_store = LocalArtifactStore(
            app.config['ARTIFACT_LOCAL_PATH'],
            app.config['SECRET_KEY'],
            app.config.get('PUBLIC_BASE_URL', 'http://localhost:5000')
        )
    else:
        _artifact_store = None  # S3 connects lazily on first use
    app.extensions['artifact_store_backend'] = backend
    return _artifact_store


def get_artifact_store() -> ArtifactStore:
    """
    Get or create the ArtifactStore singleton.

    Returns:
        ArtifactStore instance
    """
    global _artifact_store
    if _artifact_store is None:
        _artifact_store = S3ArtifactStore.from_config(current_app.config)
    return _artifact_store


def set_artifact_store(store: Optional[ArtifactStore]) -> None:
    """Swap the process-wide store (used by tests and CLI tooling)."""
    global _artifact_store
    _artifact_store = store
