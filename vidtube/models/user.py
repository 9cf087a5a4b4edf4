"""
VidTube — models/user.py
─────────────────────────────────────────────────────────────────
Users + watch history table definitions + dataclass.
No logic here — only structure.
─────────────────────────────────────────────────────────────────
"""

from dataclasses import dataclass
from typing import Optional

import aiosqlite


# ─────────────────────────────────────────────
# SQL
# ─────────────────────────────────────────────
USERS_TABLE = """
    CREATE TABLE IF NOT EXISTS users (
        id                   TEXT PRIMARY KEY,
        username             TEXT UNIQUE NOT NULL,
        email                TEXT UNIQUE NOT NULL,
        full_name            TEXT NOT NULL,
        password_hash        TEXT NOT NULL,
        avatar               TEXT NOT NULL,
        avatar_asset_id      TEXT NOT NULL,
        cover_image          TEXT NOT NULL DEFAULT '',
        cover_image_asset_id TEXT,
        refresh_token        TEXT,
        created_at           TEXT NOT NULL,
        updated_at           TEXT NOT NULL
    );
"""

# Autoincrement id is the stored order: most recent watch last.
WATCH_HISTORY_TABLE = """
    CREATE TABLE IF NOT EXISTS watch_history (
        id          INTEGER PRIMARY KEY AUTOINCREMENT,
        user_id     TEXT NOT NULL REFERENCES users(id) ON DELETE CASCADE,
        video_id    TEXT NOT NULL REFERENCES videos(id) ON DELETE CASCADE,
        watched_at  TEXT NOT NULL
    );

    CREATE INDEX IF NOT EXISTS idx_history_user
        ON watch_history(user_id, id);
"""


# ─────────────────────────────────────────────
# Dataclass
# ─────────────────────────────────────────────
@dataclass
class User:
    id:                   str
    username:             str
    email:                str
    full_name:            str
    password_hash:        str
    avatar:               str
    avatar_asset_id:      str
    cover_image:          str
    cover_image_asset_id: Optional[str]
    refresh_token:        Optional[str]
    created_at:           str
    updated_at:           str

    @classmethod
    def from_row(cls, row: aiosqlite.Row) -> "User":
        return cls(**{k: row[k] for k in cls.__dataclass_fields__})

    @property
    def asset_ids(self) -> list[str]:
        return [a for a in (self.avatar_asset_id, self.cover_image_asset_id) if a]

    def to_public(self) -> dict:
        """Profile as sent to clients — no password hash, no refresh token."""
        return {
            "_id":        self.id,
            "username":   self.username,
            "email":      self.email,
            "fullName":   self.full_name,
            "avatar":     self.avatar,
            "coverImage": self.cover_image,
            "createdAt":  self.created_at,
            "updatedAt":  self.updated_at,
        }
