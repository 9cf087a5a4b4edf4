"""
VidTube — videos.py
─────────────────────────────────────────────────────────────────
Video catalogue: upload + lookup.

Endpoints:
  POST /videos/upload       → upload video + thumbnail (session required)
  GET  /videos/{video_id}   → video with owner; a signed-in viewer gets
                              the view counted and added to their history

Owner is always a single object {fullName, username, avatar},
never a list, even though it comes from a join.
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile

from vidtube.core.database import get_db, new_id, now_utc
from vidtube.core.errors import ApiResponse, DependencyFailure, NotFoundError, ValidationError
from vidtube.core.security import get_session, require_user
from vidtube.models.user import User
from vidtube.models.video import Video
from vidtube.storage.uploads import (
    IMAGE_TYPES, VIDEO_TYPES, UploadStaging, has_allowed_type, is_present,
)

logger = logging.getLogger("vidtube.videos")


# Joined onto videos as alias `o`
OWNER_COLUMNS = "o.full_name AS owner_full_name, o.username AS owner_username, o.avatar AS owner_avatar"


def owner_from_row(row: aiosqlite.Row) -> Optional[dict]:
    if row["owner_username"] is None:
        return None
    return {
        "fullName": row["owner_full_name"],
        "username": row["owner_username"],
        "avatar":   row["owner_avatar"],
    }


def video_with_owner(row: aiosqlite.Row) -> dict:
    data = Video.from_row(row).to_public()
    data["owner"] = owner_from_row(row)
    return data


# ─────────────────────────────────────────────
# VideoService
# ─────────────────────────────────────────────
class VideoService:

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def create(
        self,
        owner_id:           str,
        title:              str,
        description:        str,
        duration:           float,
        video_url:          str,
        video_asset_id:     str,
        thumbnail_url:      str,
        thumbnail_asset_id: str,
    ) -> Video:
        video_id = new_id()
        ts = now_utc()
        async with get_db(self.db_path) as db:
            await db.execute(
                """INSERT INTO videos
                   (id, video_url, video_asset_id, thumbnail_url, thumbnail_asset_id,
                    title, description, duration, views, is_published, owner_id,
                    created_at, updated_at)
                   VALUES (?,?,?,?,?,?,?,?,0,1,?,?,?)""",
                (video_id, video_url, video_asset_id, thumbnail_url, thumbnail_asset_id,
                 title, description, duration, owner_id, ts, ts)
            )
            await db.commit()
        return await self.find_by_id(video_id)

    async def find_by_id(self, video_id: str) -> Optional[Video]:
        async with get_db(self.db_path) as db:
            async with db.execute("SELECT * FROM videos WHERE id = ?", (video_id,)) as cur:
                row = await cur.fetchone()
        return Video.from_row(row) if row else None

    async def get_with_owner(self, video_id: str) -> Optional[dict]:
        async with get_db(self.db_path) as db:
            async with db.execute(
                f"""SELECT v.*, {OWNER_COLUMNS}
                    FROM videos v
                    LEFT JOIN users o ON o.id = v.owner_id
                    WHERE v.id = ?""",
                (video_id,)
            ) as cur:
                row = await cur.fetchone()
        return video_with_owner(row) if row else None

    async def record_view(self, video_id: str, viewer_id: str) -> None:
        """Bump the counter and append to the viewer's watch history."""
        async with get_db(self.db_path) as db:
            await db.execute(
                "UPDATE videos SET views = views + 1 WHERE id = ?", (video_id,)
            )
            await db.execute(
                "INSERT INTO watch_history (user_id, video_id, watched_at) VALUES (?,?,?)",
                (viewer_id, video_id, now_utc())
            )
            await db.commit()

    async def asset_ids_for_owner(self, owner_id: str) -> list[str]:
        async with get_db(self.db_path) as db:
            async with db.execute(
                "SELECT video_asset_id, thumbnail_asset_id FROM videos WHERE owner_id = ?",
                (owner_id,)
            ) as cur:
                rows = await cur.fetchall()
        return [a for r in rows for a in (r["video_asset_id"], r["thumbnail_asset_id"]) if a]


# ─────────────────────────────────────────────
# Router
# ─────────────────────────────────────────────
router = APIRouter(prefix="/videos", tags=["videos"])


@router.post("/upload", status_code=201)
async def upload_video(
    request:     Request,
    title:       str                  = Form(""),
    description: Optional[str]        = Form(None),
    duration:    float                = Form(0.0),
    video:       Optional[UploadFile] = File(None),
    thumbnail:   Optional[UploadFile] = File(None),
    user:        User                 = Depends(require_user),
):
    services = request.app.state.services

    title = title.strip()
    if not title:
        raise ValidationError("video title required")
    description = (description or "").strip() or title
    if duration < 0:
        raise ValidationError("duration cannot be negative")

    if not is_present(video):
        raise ValidationError("no video uploaded")
    if not is_present(thumbnail):
        raise ValidationError("no thumbnail was uploaded")
    if not has_allowed_type(video, VIDEO_TYPES):
        raise ValidationError("unsupported video type")
    if not has_allowed_type(thumbnail, IMAGE_TYPES):
        raise ValidationError("thumbnail must be a JPEG, PNG, WEBP or GIF image")

    async with UploadStaging(services.config.UPLOAD_TEMP_DIR) as staging:
        video_path     = await staging.stage(video, "video")
        thumbnail_path = await staging.stage(thumbnail, "thumbnail")

        video_asset = await services.media.upload(video_path, "videos")
        if not video_asset:
            raise DependencyFailure("failed to upload video")

        thumbnail_asset = await services.media.upload(thumbnail_path, "thumbnails")
        if not thumbnail_asset:
            await services.media.remove(video_asset.asset_id)
            raise DependencyFailure("failed to upload thumbnail")

        try:
            created = await services.videos.create(
                owner_id           = user.id,
                title              = title,
                description        = description,
                duration           = video_asset.duration or duration,
                video_url          = video_asset.url,
                video_asset_id     = video_asset.asset_id,
                thumbnail_url      = thumbnail_asset.url,
                thumbnail_asset_id = thumbnail_asset.asset_id,
            )
        except aiosqlite.Error as e:
            logger.error(f"Video insert failed for {user.id}: {e}")
            await services.media.remove_many([video_asset.asset_id, thumbnail_asset.asset_id])
            raise DependencyFailure("failed to save video")

    logger.info(f"Video {created.id} uploaded by {user.username}")
    return ApiResponse(201, created.to_public(), "video uploaded successfully").to_dict()


@router.get("/{video_id}")
async def get_video(
    video_id: str,
    request:  Request,
    viewer:   Optional[User] = Depends(get_session),
):
    services = request.app.state.services

    if viewer:
        exists = await services.videos.find_by_id(video_id)
        if exists:
            await services.videos.record_view(video_id, viewer.id)

    video = await services.videos.get_with_owner(video_id)
    if not video:
        raise NotFoundError("no such video exists")
    return ApiResponse(200, video, "video fetched successfully").to_dict()
