"""
GENESIS R2 Asset Storage
═══════════════════════════════════════════════════════════════════════════════
Durable object store behind every generated voiceover, poster and clip.

Cloudflare R2 speaks the S3 API, so uploads go through a boto3 S3 client
pointed at the account's R2 endpoint. Keys are partitioned by day under a
prefix; the returned URL is the object's address on the public bucket domain.

Settings (argument or environment):
    account_id         R2_ACCOUNT_ID
    access_key_id      R2_ACCESS_KEY_ID
    secret_access_key  R2_SECRET_ACCESS_KEY
    bucket_name        R2_BUCKET_NAME   (default "genesis-assets")
    public_url         R2_PUBLIC_URL    (public bucket domain)

Without credentials the store still hands out URLs but uploads nothing, which
keeps local runs working with the real adapters.

Author: Barrios A2I
Version: 3.0.0
═══════════════════════════════════════════════════════════════════════════════
"""

import asyncio
import logging
import os
import uuid
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from agents.base import AdapterError, ObjectStore, extension_for
from schemas.generation_schema import ErrorCode

logger = logging.getLogger("genesis.r2_storage")

DEFAULT_BUCKET = "genesis-assets"
DEFAULT_PUBLIC_URL = "https://assets.barriosa2i.com"

# boto3 is blocking; uploads run here
_upload_pool = ThreadPoolExecutor(max_workers=4, thread_name_prefix="r2-upload")


def object_key(content_type: str, prefix: str = "generations") -> str:
    """Date-partitioned, collision-free key for a new object"""
    day = datetime.now(timezone.utc).strftime("%Y/%m/%d")
    return f"{prefix}/{day}/{uuid.uuid4().hex}{extension_for(content_type)}"


class R2ObjectStore(ObjectStore):
    """
    Cloudflare R2 storage for generated assets.

    boto3's adaptive retry mode absorbs transient upload errors; whatever
    still fails surfaces as a retryable upstream_unavailable AdapterError.
    """

    name = "r2_storage"

    def __init__(
        self,
        account_id: Optional[str] = None,
        access_key_id: Optional[str] = None,
        secret_access_key: Optional[str] = None,
        bucket_name: Optional[str] = None,
        public_url: Optional[str] = None,
        key_prefix: str = "generations"
    ):
        self.credentials: Dict[str, Optional[str]] = {
            "R2_ACCOUNT_ID": account_id or os.getenv("R2_ACCOUNT_ID"),
            "R2_ACCESS_KEY_ID": access_key_id or os.getenv("R2_ACCESS_KEY_ID"),
            "R2_SECRET_ACCESS_KEY": secret_access_key or os.getenv("R2_SECRET_ACCESS_KEY"),
        }
        self.bucket_name = bucket_name or os.getenv("R2_BUCKET_NAME", DEFAULT_BUCKET)
        self.public_url = (public_url or os.getenv("R2_PUBLIC_URL", DEFAULT_PUBLIC_URL)).rstrip("/")
        self.key_prefix = key_prefix

        self.client = None
        missing = self.missing_settings()
        if missing:
            logger.warning(f"[R2Storage] Missing {missing}; objects will not be uploaded")
        else:
            self.client = self._make_client()

        logger.info(f"[R2Storage] bucket={self.bucket_name} configured={self.is_configured}")

    def missing_settings(self) -> List[str]:
        missing = [name for name, value in self.credentials.items() if not value]
        if not self.bucket_name:
            missing.append("R2_BUCKET_NAME")
        return missing

    @property
    def is_configured(self) -> bool:
        return not self.missing_settings()

    def health(self) -> Dict[str, Any]:
        return {
            "backend": self.name,
            "configured": self.is_configured,
            "bucket": self.bucket_name,
            "missing": self.missing_settings(),
        }

    def _make_client(self):
        return boto3.client(
            "s3",
            endpoint_url=f"https://{self.credentials['R2_ACCOUNT_ID']}.r2.cloudflarestorage.com",
            aws_access_key_id=self.credentials["R2_ACCESS_KEY_ID"],
            aws_secret_access_key=self.credentials["R2_SECRET_ACCESS_KEY"],
            config=Config(signature_version="s3v4", retries={"max_attempts": 3, "mode": "adaptive"}),
        )

    async def store(self, data: bytes, content_type: str) -> str:
        """Upload bytes and return their public URL"""
        key = object_key(content_type, self.key_prefix)
        url = f"{self.public_url}/{key}"

        if not self.is_configured:
            logger.warning(f"[R2Storage] Not configured, {len(data)} bytes not uploaded ({key})")
            return url

        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(_upload_pool, self._put_object, data, key, content_type)
        except (ClientError, BotoCoreError) as e:
            raise AdapterError(
                ErrorCode.UPSTREAM_UNAVAILABLE,
                f"R2 upload failed for {key}: {e}",
                retryable=True
            ) from e

        logger.info(f"[R2Storage] Stored {len(data)} bytes at {url}")
        return url

    def _put_object(self, data: bytes, key: str, content_type: str) -> None:
        self.client.put_object(
            Bucket=self.bucket_name,
            Key=key,
            Body=data,
            ContentType=content_type,
            CacheControl="public, max-age=31536000",
        )
