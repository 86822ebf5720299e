"""
Document storage for uploaded grade reports.

Two interchangeable backends with the same contract:
- store(data, path) -> handle
- fetch(handle) -> bytes

Any failure raises DocumentStorageError, which is fatal for the request.
"""
import logging
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from scorecard.config import Config
from scorecard.services.score_pipeline.errors import DocumentStorageError

logger = logging.getLogger(__name__)


class S3DocumentStorage:
    """Stores documents in an S3 bucket; handles are object keys."""

    def __init__(self, bucket: Optional[str] = None, client=None):
        """
        Initialize S3 storage.

        Args:
            bucket: Bucket name (defaults to Config.REPORT_BUCKET)
            client: Optional pre-configured boto3 S3 client
        """
        self.bucket = bucket or Config.REPORT_BUCKET
        if not self.bucket:
            raise ValueError("REPORT_BUCKET is required for S3 document storage.")

        if client is not None:
            self.client = client
        else:
            config = Config.get_boto3_config()
            if 'profile_name' in config:
                session = boto3.Session(profile_name=config['profile_name'])
                self.client = session.client('s3', region_name=config['region_name'])
            else:
                self.client = boto3.client('s3', **config)

        logger.info(f"Initialized S3 document storage (bucket={self.bucket})")

    def store(self, data: bytes, path: str, content_type: str = 'application/pdf') -> str:
        try:
            self.client.put_object(Bucket=self.bucket, Key=path, Body=data, ContentType=content_type)
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to store s3://{self.bucket}/{path}: {e}")
            raise DocumentStorageError(f"Failed to store document '{path}': {e}", path) from e

        logger.info(f"Stored s3://{self.bucket}/{path} ({len(data)} bytes)")
        return path

    def fetch(self, handle: str) -> bytes:
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=handle)
            return response['Body'].read()
        except (ClientError, BotoCoreError) as e:
            logger.error(f"Failed to fetch s3://{self.bucket}/{handle}: {e}")
            raise DocumentStorageError(f"Failed to fetch document '{handle}': {e}", handle) from e


class LocalDocumentStorage:
    """Stores documents under a local directory; handles are relative paths."""

    def __init__(self, root: Optional[str] = None):
        self.root = Path(root or Config.LOCAL_STORAGE_DIR).resolve()

    def _resolve(self, handle: str) -> Path:
        target = (self.root / handle).resolve()
        if self.root != target and self.root not in target.parents:
            raise DocumentStorageError(f"Document handle escapes storage root: '{handle}'", handle)
        return target

    def store(self, data: bytes, path: str, content_type: str = 'application/pdf') -> str:
        target = self._resolve(path)
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Failed to store {target}: {e}")
            raise DocumentStorageError(f"Failed to store document '{path}': {e}", path) from e

        logger.info(f"Stored {target} ({len(data)} bytes)")
        return path

    def fetch(self, handle: str) -> bytes:
        target = self._resolve(handle)
        try:
            return target.read_bytes()
        except OSError as e:
            logger.error(f"Failed to fetch {target}: {e}")
            raise DocumentStorageError(f"Failed to fetch document '{handle}': {e}", handle) from e


def create_storage():
    """Storage backend for the current configuration."""
    if Config.REPORT_BUCKET:
        return S3DocumentStorage()
    return LocalDocumentStorage()
