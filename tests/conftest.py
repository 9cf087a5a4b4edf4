"""Pytest configuration and fixtures for vidtube tests."""

import os
from typing import Optional

import httpx
import pytest
import pytest_asyncio

from vidtube.core.config import Config
from vidtube.core.database import init_all_tables
from vidtube.main import create_app
from vidtube.storage.media import UploadedAsset


PASSWORD = "s3cret-pass"
PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 32


class FakeMediaStore:
    """In-memory stand-in for the S3 media store."""

    def __init__(self):
        self.uploaded: list[str] = []
        self.removed:  list[str] = []
        self.seen_paths: list[str] = []
        self.fail_uploads_for: set[str] = set()
        self.fail_removals = False

    async def upload(self, local_path: str, folder: str = "uploads") -> Optional[UploadedAsset]:
        if not local_path or not os.path.isfile(local_path):
            return None
        self.seen_paths.append(local_path)
        if folder in self.fail_uploads_for:
            return None
        asset_id = f"{folder}/asset-{len(self.uploaded) + 1}"
        self.uploaded.append(asset_id)
        return UploadedAsset(url=f"https://media.test/{asset_id}", asset_id=asset_id)

    async def remove_many(self, asset_ids) -> dict:
        keys = [k for k in asset_ids if k]
        if self.fail_removals:
            return {"deleted": [], "failed": keys}
        self.removed.extend(keys)
        return {"deleted": keys, "failed": []}

    async def remove(self, asset_id) -> dict:
        return await self.remove_many([asset_id])


@pytest.fixture
def config(tmp_path) -> Config:
    """Config pointing at a throwaway DB and temp dir."""
    config = Config()
    config.DB_PATH = str(tmp_path / "test.db")
    config.UPLOAD_TEMP_DIR = str(tmp_path / "temp")
    config.ACCESS_TOKEN_SECRET = "test-access-secret"
    config.REFRESH_TOKEN_SECRET = "test-refresh-secret"
    config.BCRYPT_ROUNDS = 4
    config.ENV = "test"
    return config


@pytest.fixture
def media() -> FakeMediaStore:
    return FakeMediaStore()


@pytest_asyncio.fixture
async def app(config, media):
    app = create_app(config, media=media)
    # ASGITransport does not run the lifespan
    await init_all_tables(config.DB_PATH)
    return app


@pytest.fixture
def services(app):
    return app.state.services


@pytest_asyncio.fixture
async def client(app):
    # https, so Secure cookies are sent back
    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="https://testserver") as c:
        yield c


# ==================== Helpers ====================

def set_cookies(response: httpx.Response) -> dict:
    """Set-Cookie headers as {name: full header}."""
    found = {}
    for header in response.headers.get_list("set-cookie"):
        name = header.split("=", 1)[0].strip()
        found[name] = header
    return found


def cookie_value(header: str) -> str:
    return header.split(";", 1)[0].split("=", 1)[1].strip('"')


def cookie_header(access: Optional[str] = None, refresh: Optional[str] = None) -> dict:
    parts = []
    if access:
        parts.append(f"accessToken={access}")
    if refresh:
        parts.append(f"refreshToken={refresh}")
    return {"Cookie": "; ".join(parts)}


async def register(
    client: httpx.AsyncClient,
    username: str,
    email: Optional[str] = None,
    password: str = PASSWORD,
    full_name: Optional[str] = None,
    cover: bool = False,
) -> httpx.Response:
    files = {"avatar": ("avatar.png", PNG_BYTES, "image/png")}
    if cover:
        files["coverImage"] = ("cover.png", PNG_BYTES, "image/png")
    return await client.post(
        "/users/register",
        data={
            "fullName": full_name or username.title(),
            "email":    email or f"{username}@example.com",
            "username": username,
            "password": password,
        },
        files=files,
    )


async def login(client: httpx.AsyncClient, username: str, password: str = PASSWORD) -> dict:
    resp = await client.post("/users/login", json={"username": username, "password": password})
    assert resp.status_code == 200, resp.text
    return resp.json()["data"]


MP4_BYTES = b"\x00\x00\x00\x18ftypmp42" + b"\x00" * 64


async def upload_video(
    client: httpx.AsyncClient,
    title: str = "First video",
    description: Optional[str] = None,
    thumbnail: bool = True,
) -> httpx.Response:
    data = {"title": title, "duration": "12.5"}
    if description is not None:
        data["description"] = description
    files = {"video": ("clip.mp4", MP4_BYTES, "video/mp4")}
    if thumbnail:
        files["thumbnail"] = ("thumb.png", PNG_BYTES, "image/png")
    return await client.post("/videos/upload", data=data, files=files)
