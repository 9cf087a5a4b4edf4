"""
VidTube — models/video.py
─────────────────────────────────────────────────────────────────
Videos table definition + dataclass.
No logic here — only structure.
─────────────────────────────────────────────────────────────────
"""

from dataclasses import dataclass

import aiosqlite


# ─────────────────────────────────────────────
# SQL
# ─────────────────────────────────────────────
VIDEOS_TABLE = """
    CREATE TABLE IF NOT EXISTS videos (
        id                 TEXT PRIMARY KEY,
        video_url          TEXT NOT NULL,
        video_asset_id     TEXT NOT NULL,
        thumbnail_url      TEXT NOT NULL,
        thumbnail_asset_id TEXT NOT NULL,
        title              TEXT NOT NULL,
        description        TEXT NOT NULL,
        duration           REAL NOT NULL DEFAULT 0,
        views              INTEGER NOT NULL DEFAULT 0,
        is_published       INTEGER NOT NULL DEFAULT 1,
        owner_id           TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        created_at         TEXT NOT NULL,
        updated_at         TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_videos_owner
        ON videos(owner_id, created_at DESC);
"""


# ─────────────────────────────────────────────
# Dataclass
# ─────────────────────────────────────────────
@dataclass
class Video:
    id:                 str
    video_url:          str
    video_asset_id:     str
    thumbnail_url:      str
    thumbnail_asset_id: str
    title:              str
    description:        str
    duration:           float
    views:              int
    is_published:       bool
    owner_id:           str
    created_at:         str
    updated_at:         str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "Video":
        data = {k: row[k] for k in cls.__dataclass_fields__}
        data["is_published"] = bool(data["is_published"])
        return cls(**data)

    def to_public(self) -> dict:
        return {
            "_id":         self.id,
            "videoUrl":    self.video_url,
            "thumbnailUrl": self.thumbnail_url,
            "title":       self.title,
            "description": self.description,
            "duration":    self.duration,
            "views":       self.views,
            "isPublished": self.is_published,
            "owner":       self.owner_id,
            "createdAt":   self.created_at,
            "updatedAt":   self.updated_at,
        }
