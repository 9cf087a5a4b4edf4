"""
VidTube — channels.py
─────────────────────────────────────────────────────────────────
Read-side aggregations over users / subscriptions / videos.

Endpoints:
  GET    /users/channel/{username}            → channel profile + counts
  POST   /users/channel/{username}/subscribe  → subscribe (idempotent)
  DELETE /users/channel/{username}/subscribe  → unsubscribe (idempotent)
  GET    /users/history                       → requester's watch history

Channel profile shape:
  {_id, fullName, username, avatar, coverImage,
   subscriberCount, subscribedToCount, isSubscribedByRequester}
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request

from vidtube.core.database import get_db, new_id, now_utc
from vidtube.core.errors import ApiResponse, NotFoundError, ValidationError
from vidtube.core.security import get_session, require_user
from vidtube.models.user import User
from vidtube.users import normalize_username
from vidtube.videos import OWNER_COLUMNS, video_with_owner

logger = logging.getLogger("vidtube.channels")


CHANNEL_PROFILE_SQL = """
    SELECT
        u.id,
        u.full_name,
        u.username,
        u.avatar,
        u.cover_image,
        (SELECT COUNT(*) FROM subscriptions s
          WHERE s.channel_id = u.id)                        AS subscriber_count,
        (SELECT COUNT(*) FROM subscriptions s
          WHERE s.subscriber_id = u.id)                     AS subscribed_to_count,
        EXISTS (SELECT 1 FROM subscriptions s
                 WHERE s.channel_id = u.id
                   AND s.subscriber_id = ?)                 AS is_subscribed
    FROM users u
    WHERE u.username = ?
"""

WATCH_HISTORY_SQL = f"""
    SELECT v.*, {OWNER_COLUMNS}, h.watched_at
    FROM watch_history h
    JOIN videos v     ON v.id = h.video_id
    LEFT JOIN users o ON o.id = v.owner_id
    WHERE h.user_id = ?
    ORDER BY h.id ASC
"""


# ─────────────────────────────────────────────
# ChannelService
# ─────────────────────────────────────────────
class ChannelService:

    def __init__(self, db_path: str):
        self.db_path = db_path

    async def get_channel_profile(self, username: str, requester_id: Optional[str] = None) -> dict:
        """
        Raises:
            ValidationError: blank username
            NotFoundError:   no such channel
        """
        username = normalize_username(username)
        if not username:
            raise ValidationError("no username provided")

        async with get_db(self.db_path) as db:
            async with db.execute(CHANNEL_PROFILE_SQL, (requester_id, username)) as cur:
                row = await cur.fetchone()

        if not row:
            raise NotFoundError("no such channel exists")

        return {
            "_id":                     row["id"],
            "fullName":                row["full_name"],
            "username":                row["username"],
            "avatar":                  row["avatar"],
            "coverImage":              row["cover_image"],
            "subscriberCount":         row["subscriber_count"],
            "subscribedToCount":       row["subscribed_to_count"],
            "isSubscribedByRequester": bool(row["is_subscribed"]),
        }

    async def get_watch_history(self, user_id: str) -> list[dict]:
        """Stored order, most recent last. owner is one object per video."""
        async with get_db(self.db_path) as db:
            async with db.execute(WATCH_HISTORY_SQL, (user_id,)) as cur:
                rows = await cur.fetchall()

        history = []
        for row in rows:
            entry = video_with_owner(row)
            entry["watchedAt"] = row["watched_at"]
            history.append(entry)
        return history

    async def _channel_id(self, username: str) -> str:
        async with get_db(self.db_path) as db:
            async with db.execute(
                "SELECT id FROM users WHERE username = ?", (normalize_username(username),)
            ) as cur:
                row = await cur.fetchone()
        if not row:
            raise NotFoundError("no such channel exists")
        return row["id"]

    async def subscribe(self, subscriber_id: str, username: str) -> None:
        channel_id = await self._channel_id(username)
        if channel_id == subscriber_id:
            raise ValidationError("cannot subscribe to your own channel")
        async with get_db(self.db_path) as db:
            await db.execute(
                """INSERT OR IGNORE INTO subscriptions
                   (id, subscriber_id, channel_id, created_at) VALUES (?,?,?,?)""",
                (new_id(), subscriber_id, channel_id, now_utc())
            )
            await db.commit()

    async def unsubscribe(self, subscriber_id: str, username: str) -> None:
        channel_id = await self._channel_id(username)
        async with get_db(self.db_path) as db:
            await db.execute(
                "DELETE FROM subscriptions WHERE subscriber_id = ? AND channel_id = ?",
                (subscriber_id, channel_id)
            )
            await db.commit()


# ─────────────────────────────────────────────
# Router
# ─────────────────────────────────────────────
router = APIRouter(prefix="/users", tags=["channels"])


@router.get("/channel/{username}")
async def channel_profile(
    username:  str,
    request:   Request,
    requester: Optional[User] = Depends(get_session),
):
    channels = request.app.state.services.channels
    profile = await channels.get_channel_profile(username, requester.id if requester else None)
    return ApiResponse(200, profile, "channel fetched successfully").to_dict()


@router.post("/channel/{username}/subscribe")
async def subscribe(username: str, request: Request, user: User = Depends(require_user)):
    channels = request.app.state.services.channels
    await channels.subscribe(user.id, username)
    profile = await channels.get_channel_profile(username, user.id)
    return ApiResponse(200, profile, "subscribed successfully").to_dict()


@router.delete("/channel/{username}/subscribe")
async def unsubscribe(username: str, request: Request, user: User = Depends(require_user)):
    channels = request.app.state.services.channels
    await channels.unsubscribe(user.id, username)
    profile = await channels.get_channel_profile(username, user.id)
    return ApiResponse(200, profile, "unsubscribed successfully").to_dict()


@router.get("/history")
async def watch_history(request: Request, user: User = Depends(require_user)):
    channels = request.app.state.services.channels
    history = await channels.get_watch_history(user.id)
    return ApiResponse(200, history, "user watch history fetched successfully").to_dict()
