"""
VidTube — users.py
─────────────────────────────────────────────────────────────────
Credential store: every read/write on the users table.

- Lookups return None on a miss, never raise for "not found"
- Usernames and emails are normalised (trim + lower) on the way in
- Refresh-token rotation is a single conditional UPDATE
  (compare-and-swap), so two concurrent refreshes cannot both win

Usage:
    users = UserService(db_path, hasher)
    user  = await users.find_by_username_or_email(username="alice")
    ok    = await users.swap_refresh_token(user.id, old, new)
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import Optional

import aiosqlite

from vidtube.core.database import get_db, new_id, now_utc
from vidtube.core.errors import ConflictError
from vidtube.core.security import PasswordHasher
from vidtube.models.user import User

logger = logging.getLogger("vidtube.users")


# Columns a profile patch may touch
PATCHABLE_FIELDS = ("full_name", "email", "username", "avatar", "avatar_asset_id",
                    "cover_image", "cover_image_asset_id")


def normalize_username(username: Optional[str]) -> str:
    return (username or "").strip().lower()

def normalize_email(email: Optional[str]) -> str:
    return (email or "").strip().lower()


class UserService:
    """
    All users-table operations.
    Every method opens its own connection.
    """

    def __init__(self, db_path: str, hasher: PasswordHasher):
        self.db_path = db_path
        self.hasher  = hasher

    # ─── Read ─────────────────────────────────

    async def _fetch_one(self, sql: str, params: tuple) -> Optional[User]:
        async with get_db(self.db_path) as db:
            async with db.execute(sql, params) as cur:
                row = await cur.fetchone()
        return User.from_row(row) if row else None

    async def find_by_id(self, user_id: Optional[str]) -> Optional[User]:
        if not user_id:
            return None
        return await self._fetch_one("SELECT * FROM users WHERE id = ?", (user_id,))

    async def find_by_username(self, username: Optional[str]) -> Optional[User]:
        return await self._fetch_one(
            "SELECT * FROM users WHERE username = ?", (normalize_username(username),)
        )

    async def find_by_username_or_email(
        self,
        username: Optional[str] = None,
        email:    Optional[str] = None,
    ) -> Optional[User]:
        """Either identifier may be blank; blank ones never match."""
        username = normalize_username(username) or None
        email    = normalize_email(email) or None
        if not username and not email:
            return None
        return await self._fetch_one(
            "SELECT * FROM users WHERE username = ? OR email = ? LIMIT 1",
            (username, email),
        )

    async def find_conflict(
        self,
        username:   Optional[str] = None,
        email:      Optional[str] = None,
        exclude_id: Optional[str] = None,
    ) -> Optional[str]:
        """
        Which unique field is already taken by another user.

        Returns:
            "username", "email" or None
        """
        if username:
            taken = await self.find_by_username(username)
            if taken and taken.id != exclude_id:
                return "username"
        if email:
            taken = await self._fetch_one(
                "SELECT * FROM users WHERE email = ?", (normalize_email(email),)
            )
            if taken and taken.id != exclude_id:
                return "email"
        return None

    # ─── Write ────────────────────────────────

    async def create(
        self,
        username:             str,
        email:                str,
        full_name:            str,
        password:             str,
        avatar:               str,
        avatar_asset_id:      str,
        cover_image:          str = "",
        cover_image_asset_id: Optional[str] = None,
    ) -> User:
        """
        Insert a user. Hashes the password.

        Raises:
            ConflictError:  username/email taken (lost a uniqueness race)
            aiosqlite.Error: any other DB failure
        """
        user_id = new_id()
        ts = now_utc()
        try:
            async with get_db(self.db_path) as db:
                await db.execute(
                    """INSERT INTO users
                       (id, username, email, full_name, password_hash,
                        avatar, avatar_asset_id, cover_image, cover_image_asset_id,
                        refresh_token, created_at, updated_at)
                       VALUES (?,?,?,?,?,?,?,?,?,?,?,?)""",
                    (user_id, normalize_username(username), normalize_email(email),
                     full_name.strip(), self.hasher.hash(password),
                     avatar, avatar_asset_id, cover_image or "", cover_image_asset_id,
                     None, ts, ts)
                )
                await db.commit()
        except aiosqlite.IntegrityError:
            raise ConflictError("username or email already taken")

        logger.info(f"✓ User created: {normalize_username(username)} ({user_id})")
        return await self.find_by_id(user_id)

    async def update_fields(self, user_id: str, **fields) -> Optional[User]:
        """
        Patch only the given columns. Unknown columns are rejected.

        Returns:
            Updated User, or None if the user doesn't exist.
        """
        unknown = set(fields) - set(PATCHABLE_FIELDS)
        if unknown:
            raise ValueError(f"Not patchable: {sorted(unknown)}")
        if "username" in fields:
            fields["username"] = normalize_username(fields["username"])
        if "email" in fields:
            fields["email"] = normalize_email(fields["email"])
        if not fields:
            return await self.find_by_id(user_id)

        assignments = ", ".join(f"{col} = ?" for col in fields)
        try:
            async with get_db(self.db_path) as db:
                cur = await db.execute(
                    f"UPDATE users SET {assignments}, updated_at = ? WHERE id = ?",
                    (*fields.values(), now_utc(), user_id)
                )
                await db.commit()
                if cur.rowcount == 0:
                    return None
        except aiosqlite.IntegrityError:
            raise ConflictError("username or email already taken")
        return await self.find_by_id(user_id)

    async def update_password(self, user_id: str, new_password: str) -> bool:
        async with get_db(self.db_path) as db:
            cur = await db.execute(
                "UPDATE users SET password_hash = ?, updated_at = ? WHERE id = ?",
                (self.hasher.hash(new_password), now_utc(), user_id)
            )
            await db.commit()
            return cur.rowcount == 1

    async def delete(self, user_id: str) -> bool:
        """Delete the row. Subscriptions, history and videos cascade."""
        async with get_db(self.db_path) as db:
            cur = await db.execute("DELETE FROM users WHERE id = ?", (user_id,))
            await db.commit()
            return cur.rowcount == 1

    # ─── Refresh token ────────────────────────

    async def set_refresh_token(self, user_id: str, token: str) -> bool:
        async with get_db(self.db_path) as db:
            cur = await db.execute(
                "UPDATE users SET refresh_token = ?, updated_at = ? WHERE id = ?",
                (token, now_utc(), user_id)
            )
            await db.commit()
            return cur.rowcount == 1

    async def swap_refresh_token(self, user_id: str, expected: str, token: str) -> bool:
        """
        Atomic rotation: only overwrites if the stored token still equals
        `expected`. Returns False when another request rotated it first.
        """
        async with get_db(self.db_path) as db:
            cur = await db.execute(
                """UPDATE users SET refresh_token = ?, updated_at = ?
                   WHERE id = ? AND refresh_token = ?""",
                (token, now_utc(), user_id, expected)
            )
            await db.commit()
            return cur.rowcount == 1

    async def clear_refresh_token(self, user_id: str) -> None:
        async with get_db(self.db_path) as db:
            await db.execute(
                "UPDATE users SET refresh_token = NULL, updated_at = ? WHERE id = ?",
                (now_utc(), user_id)
            )
            await db.commit()
