"""
VidTube — storage/uploads.py
─────────────────────────────────────────────────────────────────
Multipart upload staging.

Files arrive as FastAPI UploadFile objects. Before they go to S3
they are written to UPLOAD_TEMP_DIR, and every staged file MUST be
removed once the request is done — success or failure.

Usage:
    async with UploadStaging(cfg.UPLOAD_TEMP_DIR) as staging:
        path  = await staging.stage(avatar, "avatar")
        asset = await media.upload(path, "avatars")
    # staged files are gone here
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
import os
import secrets
import shutil
import time
from pathlib import Path
from typing import Optional

from fastapi import UploadFile

logger = logging.getLogger("vidtube.uploads")


IMAGE_TYPES = ("jpeg", "jpg", "png", "webp", "gif")
VIDEO_TYPES = ("mp4", "mkv", "mov", "flv", "webm", "avi", "wmv", "quicktime")


def is_present(upload: Optional[UploadFile]) -> bool:
    """Browsers send an empty part for an untouched file input."""
    return upload is not None and bool(upload.filename)


def has_allowed_type(upload: UploadFile, allowed: tuple) -> bool:
    """Both the extension and the declared mime type must match."""
    filename = (upload.filename or "").lower()
    ext = filename.rsplit(".", 1)[-1] if "." in filename else ""
    mime = (upload.content_type or "").lower()
    return ext in allowed and any(t in mime for t in allowed)


class UploadStaging:
    """Scoped temp-file holder. Leaving the block deletes every staged file."""

    def __init__(self, temp_dir: str):
        self.temp_dir = Path(temp_dir)
        self.paths: list[str] = []

    def _write(self, upload: UploadFile, path: Path) -> None:
        self.temp_dir.mkdir(parents=True, exist_ok=True)
        upload.file.seek(0)
        with open(path, "wb") as out:
            shutil.copyfileobj(upload.file, out)

    async def stage(self, upload: UploadFile, field: str) -> str:
        """
        Write one upload to disk. Name is <field>-<ms>-<random><ext>,
        so two users uploading "me.png" never collide.
        """
        ext  = os.path.splitext(upload.filename or "")[1].lower()
        name = f"{field}-{int(time.time() * 1000)}-{secrets.token_hex(4)}{ext}"
        path = self.temp_dir / name
        # Track before writing so a half-written file is still cleaned up
        self.paths.append(str(path))
        await asyncio.to_thread(self._write, upload, path)
        return str(path)

    def cleanup(self) -> None:
        for path in self.paths:
            try:
                os.remove(path)
            except FileNotFoundError:
                pass
            except OSError as e:
                logger.warning(f"Could not remove staged file {path}: {e}")
        self.paths.clear()

    async def __aenter__(self) -> "UploadStaging":
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        self.cleanup()
