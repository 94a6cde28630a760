from __future__ import annotations

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Any, Optional

import boto3
from botocore.client import Config
from botocore.exceptions import BotoCoreError, ClientError

from .errors import StorageError
from .settings import Settings

logger = logging.getLogger(__name__)

RECORDING_CONTENT_TYPE = "audio/webm"

# owner ids are the first key segment and erasure deletes by that prefix
OWNER_ID_PATTERN = r"^[^/]+$"


def check_owner_id(owner_id: str) -> None:
	if not owner_id or "/" in owner_id:
		raise ValueError("owner_id must be a non-empty id without '/'")


def recording_key(owner_id: str, session_id: str, question_id: str, *, now_ms: Optional[int] = None) -> str:
	stamp = now_ms if now_ms is not None else int(time.time() * 1000)
	return f"{owner_id}/{session_id}/{question_id}-{stamp}.webm"


class RecordingStore(ABC):
	"""Durable blob storage for recorded answers, one object per answered question.

	Errors surface as StorageError; the store never retries on its own.
	"""

	@abstractmethod
	async def put(self, owner_id: str, session_id: str, question_id: str, data: bytes) -> str:
		"""Store the recording and return its storage handle."""
		...

	@abstractmethod
	async def get(self, handle: str) -> str:
		"""Temporary readable URL for the recording."""
		...

	@abstractmethod
	async def delete(self, handle: str) -> None:
		...

	@abstractmethod
	async def delete_prefix(self, prefix: str) -> int:
		"""Delete every recording whose handle starts with prefix; returns the count."""
		...


class S3RecordingStore(RecordingStore):
	"""S3-compatible (R2, MinIO, AWS) recording store."""

	def __init__(self, settings: Settings, *, client: Any = None) -> None:
		settings.require("recordings_bucket")
		self.bucket = settings.recordings_bucket
		self.url_ttl_seconds = settings.recording_url_ttl_seconds
		self._s3 = client or boto3.client(
			"s3",
			region_name=settings.s3_region,
			endpoint_url=settings.s3_endpoint_url,
			aws_access_key_id=settings.s3_access_key,
			aws_secret_access_key=settings.s3_secret_key,
			config=Config(
				signature_version="s3v4",
				s3={"addressing_style": "path"},
				# Retries are decided by the orchestrator, not botocore
				retries={"max_attempts": 1, "mode": "standard"},
				connect_timeout=10,
				read_timeout=settings.provider_timeout_seconds,
			),
		)

	async def put(self, owner_id: str, session_id: str, question_id: str, data: bytes) -> str:
		key = recording_key(owner_id, session_id, question_id)
		try:
			await asyncio.to_thread(
				self._s3.put_object,
				Bucket=self.bucket,
				Key=key,
				Body=data,
				ContentType=RECORDING_CONTENT_TYPE,
			)
		except (ClientError, BotoCoreError) as e:
			raise StorageError(f"upload of {key} failed: {e}") from e
		logger.debug("stored recording %s (%d bytes)", key, len(data))
		return key

	async def get(self, handle: str) -> str:
		try:
			return await asyncio.to_thread(
				self._s3.generate_presigned_url,
				ClientMethod="get_object",
				Params={"Bucket": self.bucket, "Key": handle},
				ExpiresIn=self.url_ttl_seconds,
			)
		except (ClientError, BotoCoreError) as e:
			raise StorageError(f"signing {handle} failed: {e}") from e

	async def delete(self, handle: str) -> None:
		try:
			await asyncio.to_thread(self._s3.delete_object, Bucket=self.bucket, Key=handle)
		except (ClientError, BotoCoreError) as e:
			raise StorageError(f"delete of {handle} failed: {e}") from e

	async def delete_prefix(self, prefix: str) -> int:
		def _delete_all() -> int:
			removed = 0
			paginator = self._s3.get_paginator("list_objects_v2")
			for page in paginator.paginate(Bucket=self.bucket, Prefix=prefix):
				keys = [{"Key": obj["Key"]} for obj in page.get("Contents") or []]
				if not keys:
					continue
				self._s3.delete_objects(Bucket=self.bucket, Delete={"Objects": keys, "Quiet": True})
				removed += len(keys)
			return removed

		try:
			return await asyncio.to_thread(_delete_all)
		except (ClientError, BotoCoreError) as e:
			raise StorageError(f"delete of prefix {prefix} failed: {e}") from e
