"""
Unit tests for the artifact store backends.
"""

import io
import pytest
import time
from datetime import timedelta

import boto3
from botocore.client import Config as BotoConfig
from botocore.response import StreamingBody
from botocore.stub import Stubber, ANY

from proposals.exceptions import ArtifactMissingError, DependencyError
from proposals.services.storage_service import (
    S3ArtifactStore, LocalArtifactStore, artifact_path
)

BUCKET = 'generated-pdfs'
KEY = 'Q-20260105-0A1B2C3D/v1/Q-20260105-0A1B2C3D.pdf'


def test_artifact_path_is_versioned():
    assert artifact_path('Q-20260105-0A1B2C3D', 1) == KEY
    assert artifact_path('Q-20260105-0A1B2C3D', 2) != KEY


@pytest.fixture
def s3_client():
    return boto3.client(
        's3',
        region_name='us-east-1',
        endpoint_url='http://minio:9000',
        aws_access_key_id='test',
        aws_secret_access_key='test',
        config=BotoConfig(signature_version='s3v4')
    )


class TestS3ArtifactStore:

    def test_creates_missing_bucket(self, s3_client):
        with Stubber(s3_client) as stub:
            stub.add_client_error('head_bucket', service_error_code='404', http_status_code=404,
                                  expected_params={'Bucket': BUCKET})
            stub.add_response('create_bucket', {}, {'Bucket': BUCKET})
            S3ArtifactStore(s3_client, BUCKET)
            stub.assert_no_pending_responses()

    def test_bucket_check_failure_is_dependency_error(self, s3_client):
        with Stubber(s3_client) as stub:
            stub.add_client_error('head_bucket', service_error_code='AccessDenied', http_status_code=403)
            with pytest.raises(DependencyError):
                S3ArtifactStore(s3_client, BUCKET)

    def test_store_puts_object(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response('put_object', {}, {
                'Bucket': BUCKET, 'Key': KEY, 'Body': b'%PDF-1.4', 'ContentType': 'application/pdf'
            })
            assert store.store(KEY, b'%PDF-1.4') == KEY
            stub.assert_no_pending_responses()

    def test_store_failure_is_dependency_error(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error('put_object', service_error_code='InternalError', http_status_code=500)
            with pytest.raises(DependencyError):
                store.store(KEY, b'%PDF-1.4')

    def test_retrieve(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        body = StreamingBody(io.BytesIO(b'%PDF-1.4 data'), len(b'%PDF-1.4 data'))
        with Stubber(s3_client) as stub:
            stub.add_response('get_object', {'Body': body}, {'Bucket': BUCKET, 'Key': KEY})
            assert store.retrieve(KEY) == b'%PDF-1.4 data'

    def test_retrieve_missing_returns_none(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error('get_object', service_error_code='NoSuchKey', http_status_code=404)
            assert store.retrieve(KEY) is None

    def test_list_uses_prefix(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response(
                'list_objects_v2',
                {'Contents': [{'Key': KEY}], 'IsTruncated': False},
                {'Bucket': BUCKET, 'Prefix': 'Q-20260105-0A1B2C3D/'}
            )
            assert store.list('Q-20260105-0A1B2C3D/') == [KEY]

    def test_download_link_is_presigned_get(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_response('head_object', {}, {'Bucket': BUCKET, 'Key': KEY})
            url = store.issue_download_link(KEY, timedelta(hours=1))

        assert KEY in url
        assert 'X-Amz-Expires=3600' in url

    def test_download_link_for_missing_artifact(self, s3_client):
        store = S3ArtifactStore(s3_client, BUCKET, ensure_bucket=False)
        with Stubber(s3_client) as stub:
            stub.add_client_error('head_object', service_error_code='404', http_status_code=404,
                                  expected_params={'Bucket': BUCKET, 'Key': ANY})
            with pytest.raises(ArtifactMissingError):
                store.issue_download_link(KEY, timedelta(hours=1))


class TestLocalArtifactStore:

    @pytest.fixture
    def store(self, tmp_path):
        return LocalArtifactStore(str(tmp_path / 'artifacts'), 'test-secret', 'http://testserver/')

    def test_store_and_retrieve(self, store):
        assert store.store(KEY, b'%PDF-1.4') == KEY
        assert store.exists(KEY)
        assert store.retrieve(KEY) == b'%PDF-1.4'
        assert store.list('Q-20260105') == [KEY]

    def test_missing_artifact(self, store):
        assert store.retrieve(KEY) is None
        assert not store.exists(KEY)
        assert store.delete(KEY) is False

    def test_rejects_paths_outside_root(self, store):
        with pytest.raises(ValueError):
            store.store('../escape.pdf', b'x')

    def test_download_link_round_trip(self, store):
        store.store(KEY, b'%PDF-1.4')
        url = store.issue_download_link(KEY, timedelta(minutes=5))

        assert url.startswith('http://testserver/api/artifacts/')
        token = url.rsplit('/', 1)[1]
        assert store.resolve_token(token) == KEY

    def test_expired_link(self, store):
        store.store(KEY, b'%PDF-1.4')
        token = store.issue_download_link(KEY, timedelta(seconds=1)).rsplit('/', 1)[1]
        time.sleep(2.1)
        with pytest.raises(ArtifactMissingError):
            store.resolve_token(token)

    def test_tampered_link(self, store):
        store.store(KEY, b'%PDF-1.4')
        token = store.issue_download_link(KEY, timedelta(minutes=5)).rsplit('/', 1)[1]
        with pytest.raises(ArtifactMissingError):
            store.resolve_token('x' + token)

    def test_link_for_missing_artifact(self, store):
        with pytest.raises(ArtifactMissingError):
            store.issue_download_link(KEY, timedelta(minutes=5))
