import asyncio

import boto3
import pytest
from botocore.client import Config
from botocore.stub import ANY, Stubber

from oralprep.errors import ConfigurationError, StorageError
from oralprep.settings import Settings
from oralprep.storage import S3RecordingStore, recording_key


@pytest.fixture
def s3_client():
	return boto3.client(
		"s3",
		region_name="us-east-1",
		aws_access_key_id="test",
		aws_secret_access_key="test",
		config=Config(signature_version="s3v4"),
	)


def test_recording_key_layout():
	assert recording_key("alice", "sess1", "q3", now_ms=1700000000000) == "alice/sess1/q3-1700000000000.webm"


def test_bucket_is_required():
	with pytest.raises(ConfigurationError) as info:
		S3RecordingStore(Settings(_env_file=None, RECORDINGS_BUCKET=""))
	assert "RECORDINGS_BUCKET" in str(info.value)


class TestS3RecordingStore:
	def test_put_uploads_webm(self, settings, s3_client):
		store = S3RecordingStore(settings, client=s3_client)
		with Stubber(s3_client) as stub:
			stub.add_response(
				"put_object",
				{},
				{"Bucket": "recordings", "Key": ANY, "Body": b"opus-bytes", "ContentType": "audio/webm"},
			)
			handle = asyncio.run(store.put("alice", "sess1", "q1", b"opus-bytes"))
			stub.assert_no_pending_responses()
		assert handle.startswith("alice/sess1/q1-")
		assert handle.endswith(".webm")

	def test_put_error_becomes_storage_error(self, settings, s3_client):
		store = S3RecordingStore(settings, client=s3_client)
		with Stubber(s3_client) as stub:
			stub.add_client_error("put_object", service_error_code="AccessDenied", http_status_code=403)
			with pytest.raises(StorageError):
				asyncio.run(store.put("alice", "sess1", "q1", b"opus-bytes"))

	def test_get_returns_presigned_url(self, settings, s3_client):
		store = S3RecordingStore(settings, client=s3_client)
		url = asyncio.run(store.get("alice/sess1/q1-1.webm"))
		assert "alice/sess1/q1-1.webm" in url
		assert "X-Amz-Expires=3600" in url

	def test_delete_prefix_removes_every_page(self, settings, s3_client):
		store = S3RecordingStore(settings, client=s3_client)
		with Stubber(s3_client) as stub:
			stub.add_response(
				"list_objects_v2",
				{
					"Contents": [{"Key": "alice/s1/q1-1.webm"}, {"Key": "alice/s2/q1-2.webm"}],
					"IsTruncated": True,
					"NextContinuationToken": "next",
				},
				{"Bucket": "recordings", "Prefix": "alice/"},
			)
			stub.add_response(
				"delete_objects",
				{"Deleted": []},
				{
					"Bucket": "recordings",
					"Delete": {"Objects": [{"Key": "alice/s1/q1-1.webm"}, {"Key": "alice/s2/q1-2.webm"}], "Quiet": True},
				},
			)
			stub.add_response(
				"list_objects_v2",
				{"Contents": [{"Key": "alice/s3/q2-3.webm"}], "IsTruncated": False},
				{"Bucket": "recordings", "Prefix": "alice/", "ContinuationToken": "next"},
			)
			stub.add_response(
				"delete_objects",
				{"Deleted": []},
				{"Bucket": "recordings", "Delete": {"Objects": [{"Key": "alice/s3/q2-3.webm"}], "Quiet": True}},
			)
			assert asyncio.run(store.delete_prefix("alice/")) == 3
			stub.assert_no_pending_responses()
