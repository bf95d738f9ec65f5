"""
Signed read URLs for meal photos in the object store.
"""
from __future__ import annotations

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from ..config import Settings, settings
from ..exceptions import SignedUrlError
from ..logger import logger


def make_s3_client(cfg: Settings = settings):
    return boto3.client(
        "s3",
        aws_access_key_id=cfg.AWS_ACCESS_KEY_ID,
        aws_secret_access_key=cfg.AWS_SECRET_ACCESS_KEY,
        region_name=cfg.AWS_REGION_NAME,
        endpoint_url=cfg.AWS_ENDPOINT_URL,
    )


def storage_key(storage_path: str, bucket: str) -> str:
    """Accept bare keys as well as `s3://bucket/key` and `bucket/key` forms."""
    path = storage_path.strip()
    if path.startswith("s3://"):
        path = path[len("s3://"):].split("/", 1)[-1]
    path = path.lstrip("/")
    if path.startswith(f"{bucket}/"):
        path = path[len(bucket) + 1:]
    return path


class S3UrlSigner:
    """Creates time-limited GET URLs in the meal image bucket."""

    def __init__(self, cfg: Settings = settings, client=None):
        self.bucket = cfg.S3_BUCKET_NAME
        self.expires = cfg.SIGNED_URL_EXPIRES_SECONDS
        self._client = client or make_s3_client(cfg)

    def sign(self, storage_path: str) -> str:
        if not storage_path or not storage_path.strip():
            raise SignedUrlError("failed to sign url: empty storage_path")
        key = storage_key(storage_path, self.bucket)
        try:
            url = self._client.generate_presigned_url(
                "get_object",
                Params={"Bucket": self.bucket, "Key": key},
                ExpiresIn=self.expires,
            )
        except (BotoCoreError, ClientError) as e:
            logger.error(f"Failed to sign S3 url: {key}, error: {e}")
            raise SignedUrlError(f"failed to sign url: {e}") from e
        if not url:
            raise SignedUrlError()
        logger.debug(f"Signed S3 url: bucket={self.bucket}, key={key}, expires={self.expires}")
        return url
