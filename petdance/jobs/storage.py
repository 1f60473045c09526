"""
Blob storage helpers (Cloudflare R2 over the S3 API).

Keys:
  user-uploads/{user_id}/{job_id}-prepared.jpg      9:16 input sent to the provider
  user-generations/{user_id}/{job_id}-{ts}.mp4      permanent copy of the result
"""

import time
import logging
from typing import Optional
from urllib.parse import urlparse

import boto3
import httpx
from botocore.config import Config as BotoConfig

from ..config import Settings
from ..errors import StorageError

logger = logging.getLogger(__name__)

# Provider CDNs whose links expire (Replicate deletes outputs after ~1h-24h)
TEMPORARY_HOSTS = ("replicate.delivery", "replicate.com")

DOWNLOAD_TIMEOUT = 120


def is_temporary_url(url: str) -> bool:
    host = urlparse(url).hostname or ""
    return any(host == h or host.endswith(f".{h}") for h in TEMPORARY_HOSTS)


def generation_key(user_id: str, job_id: str) -> str:
    return f"user-generations/{user_id}/{job_id}-{int(time.time() * 1000)}.mp4"


def prepared_image_key(user_id: str, job_id: str) -> str:
    return f"user-uploads/{user_id}/{job_id}-prepared.jpg"


class BlobStorage:
    def __init__(self, s3_client, bucket: str, public_url: str, http: Optional[httpx.Client] = None):
        self.s3 = s3_client
        self.bucket = bucket
        self.public_url = public_url.rstrip("/")
        self.http = http or httpx.Client(timeout=DOWNLOAD_TIMEOUT, follow_redirects=True)

    @classmethod
    def from_settings(cls, settings: Settings) -> "BlobStorage":
        s3 = boto3.client(
            "s3",
            endpoint_url=f"https://{settings.r2_account_id}.r2.cloudflarestorage.com",
            aws_access_key_id=settings.r2_access_key_id,
            aws_secret_access_key=settings.r2_secret_access_key,
            config=BotoConfig(signature_version="s3v4"),
            region_name="auto",
        )
        return cls(s3, settings.r2_bucket_name, settings.r2_public_url)

    def upload_bytes(self, key: str, data: bytes, content_type: str) -> str:
        """Upload bytes and return the public URL."""
        try:
            self.s3.put_object(Bucket=self.bucket, Key=key, Body=data, ContentType=content_type)
        except Exception as e:
            raise StorageError(f"R2 upload failed for key={key}: {e}") from e
        url = f"{self.public_url}/{key}"
        logger.info(f"Uploaded to R2: {url}")
        return url

    def download(self, url: str) -> tuple[bytes, str]:
        """Fetch a remote file; returns (bytes, content type)."""
        try:
            resp = self.http.get(url)
            resp.raise_for_status()
        except httpx.HTTPError as e:
            raise StorageError(f"Download failed for {url}: {e}") from e
        return resp.content, resp.headers.get("content-type", "application/octet-stream")

    def persist_remote_video(self, url: str, user_id: str, job_id: str) -> str:
        """Copy a provider-hosted video into our bucket and return the stable URL."""
        data, content_type = self.download(url)
        if not content_type.startswith("video/"):
            content_type = "video/mp4"
        return self.upload_bytes(generation_key(user_id, job_id), data, content_type)
