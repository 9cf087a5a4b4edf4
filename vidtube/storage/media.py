"""
VidTube — storage/media.py
─────────────────────────────────────────────────────────────────
AWS S3 Media Store

What it does:
  1. Take a staged local file (avatar, cover image, video, thumbnail)
  2. Upload it to the S3 bucket as a public-read object
  3. Return the public URL + the object key (the deletable asset id)

Flow:
  auth.py / videos.py → UploadStaging.stage(upload)  → local path
                      → media.upload(local_path, "avatars")
                      → UploadedAsset(url, asset_id) → saved on the row

Expected failures never raise out of this module:
  upload()      → None
  remove*()     → {"deleted": [...], "failed": [...]}
Callers decide whether a failure is fatal (upload) or just reported
(cleanup after the primary write succeeded).
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
import mimetypes
import os
import secrets
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Iterable, Optional

import boto3
from botocore.config import Config as BotoConfig
from botocore.exceptions import BotoCoreError, ClientError

logger = logging.getLogger("vidtube.media")


# ─────────────────────────────────────────────
# Exceptions
# ─────────────────────────────────────────────
class MediaStoreError(Exception):
    """Base media store exception."""

class MediaNotConfiguredError(MediaStoreError):
    """AWS credentials missing in .env"""


# ─────────────────────────────────────────────
# Data classes
# ─────────────────────────────────────────────
@dataclass
class UploadedAsset:
    url:      str
    asset_id: str                     # S3 object key
    duration: Optional[float] = None  # S3 does not probe media


# ─────────────────────────────────────────────
# Key / URL helpers
# ─────────────────────────────────────────────
def make_object_key(folder: str, local_path: str) -> str:
    """
    Date-based key with a random stem, keeping the file extension.

    Example output:
        avatars/2025/01/Xk2m9QpL0aTz.png
    """
    now  = datetime.now(timezone.utc)
    ext  = os.path.splitext(local_path)[1].lower()
    stem = secrets.token_urlsafe(9)
    return f"{folder.strip('/')}/{now:%Y}/{now:%m}/{stem}{ext}"


def make_public_url(key: str, bucket: str, region: str, cdn_url: str = "") -> str:
    """
    If CDN configured:
        https://cdn.vidtube.dev/avatars/2025/01/abc.png
    Else S3 direct:
        https://vidtube-media.s3.ap-south-1.amazonaws.com/avatars/2025/01/abc.png
    """
    if cdn_url:
        return f"{cdn_url.rstrip('/')}/{key}"
    return f"https://{bucket}.s3.{region}.amazonaws.com/{key}"


# ─────────────────────────────────────────────
# MediaStore
# ─────────────────────────────────────────────
class MediaStore:
    """
    Thin async wrapper over a boto3 S3 client.
    boto3 is blocking, so every call runs in a worker thread.
    """

    def __init__(
        self,
        bucket:            str,
        region:            str,
        access_key_id:     str,
        secret_access_key: str,
        cdn_url:           str = "",
        timeout:           int = 30,
    ):
        self.bucket            = bucket
        self.region            = region
        self.access_key_id     = access_key_id
        self.secret_access_key = secret_access_key
        self.cdn_url           = cdn_url
        self.timeout           = timeout
        self._client           = None

    @classmethod
    def from_config(cls, cfg) -> "MediaStore":
        return cls(
            bucket            = cfg.AWS_S3_BUCKET,
            region            = cfg.AWS_REGION,
            access_key_id     = cfg.AWS_ACCESS_KEY_ID,
            secret_access_key = cfg.AWS_SECRET_ACCESS_KEY,
            cdn_url           = cfg.AWS_CDN_URL,
            timeout           = cfg.AWS_TIMEOUT_SECONDS,
        )

    # ─── Client ───────────────────────────────

    def _get_client(self):
        """
        Lazily create the boto3 S3 client.
        Raises MediaNotConfiguredError if credentials missing.
        """
        if not self.access_key_id or not self.secret_access_key:
            raise MediaNotConfiguredError(
                "AWS credentials missing! "
                "Set AWS_ACCESS_KEY_ID and AWS_SECRET_ACCESS_KEY in .env"
            )
        if self._client is None:
            self._client = boto3.client(
                "s3",
                region_name           = self.region,
                aws_access_key_id     = self.access_key_id,
                aws_secret_access_key = self.secret_access_key,
                config                = BotoConfig(
                    connect_timeout = self.timeout,
                    read_timeout    = self.timeout,
                    retries         = {"max_attempts": 0},
                ),
            )
        return self._client

    # ─── Upload ───────────────────────────────

    def _upload_file(self, local_path: str, key: str) -> None:
        content_type = mimetypes.guess_type(local_path)[0] or "application/octet-stream"
        self._get_client().upload_file(
            local_path,
            self.bucket,
            key,
            ExtraArgs = {
                "ContentType":  content_type,
                # Public read, clients stream media directly
                "ACL":          "public-read",
                # Objects are immutable: a replaced avatar gets a new key
                "CacheControl": "public, max-age=31536000, immutable",
            },
        )

    async def upload(self, local_path: str, folder: str = "uploads") -> Optional[UploadedAsset]:
        """
        Upload one staged file.

        Returns:
            UploadedAsset, or None if the file is missing or S3 refused it.
        """
        if not local_path or not os.path.isfile(local_path):
            logger.warning(f"Upload skipped, no such file: {local_path}")
            return None

        key = make_object_key(folder, local_path)
        try:
            await asyncio.to_thread(self._upload_file, local_path, key)
        except MediaNotConfiguredError as e:
            logger.error(str(e))
            return None
        except (ClientError, BotoCoreError) as e:
            logger.error(f"S3 upload failed for {key}: {e}")
            return None

        logger.info(f"✓ Uploaded to S3: {key}")
        return UploadedAsset(
            url      = make_public_url(key, self.bucket, self.region, self.cdn_url),
            asset_id = key,
        )

    # ─── Remove ───────────────────────────────

    def _delete_objects(self, keys: list[str]) -> dict:
        resp = self._get_client().delete_objects(
            Bucket = self.bucket,
            Delete = {"Objects": [{"Key": k} for k in keys], "Quiet": False},
        )
        deleted = [d["Key"] for d in resp.get("Deleted", [])]
        failed  = [e["Key"] for e in resp.get("Errors", [])]
        return {"deleted": deleted, "failed": failed}

    async def remove_many(self, asset_ids: Iterable[Optional[str]]) -> dict:
        """
        Best-effort bulk delete. Blank ids are ignored.

        Returns:
            {"deleted": [keys], "failed": [keys]}
        """
        keys = [k for k in asset_ids if k]
        if not keys:
            return {"deleted": [], "failed": []}

        try:
            status = await asyncio.to_thread(self._delete_objects, keys)
        except (MediaStoreError, ClientError, BotoCoreError) as e:
            logger.warning(f"S3 delete failed for {len(keys)} object(s): {e}")
            return {"deleted": [], "failed": keys}

        if status["failed"]:
            logger.warning(f"S3 could not delete: {status['failed']}")
        else:
            logger.info(f"Deleted {len(status['deleted'])} S3 object(s)")
        return status

    async def remove(self, asset_id: Optional[str]) -> dict:
        return await self.remove_many([asset_id])

    # ─── Health ───────────────────────────────

    def check_connection(self) -> dict:
        """
        S3 connection test, run from the app lifespan (main.check_media).

        Returns:
            {"ok": True, "bucket": "vidtube-media", "region": "ap-south-1"}
            or
            {"ok": False, "error": "...reason..."}
        """
        try:
            self._get_client().head_bucket(Bucket=self.bucket)
            return {
                "ok":     True,
                "bucket": self.bucket,
                "region": self.region,
                "cdn":    self.cdn_url or "none (using S3 direct URL)",
            }
        except MediaNotConfiguredError as e:
            return {"ok": False, "error": str(e)}
        except ClientError as e:
            error_code = e.response["Error"]["Code"]
            if error_code == "404":
                return {"ok": False, "error": f"Bucket '{self.bucket}' does not exist"}
            if error_code == "403":
                return {"ok": False, "error": "Access denied — check IAM permissions"}
            return {"ok": False, "error": str(e)}
        except BotoCoreError as e:
            return {"ok": False, "error": str(e)}
