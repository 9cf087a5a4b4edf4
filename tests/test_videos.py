"""Video upload and fetch routes."""

import pytest_asyncio

from conftest import login, register, upload_video


@pytest_asyncio.fixture
async def signed_in(client):
    await register(client, "alice")
    return await login(client, "alice")


async def test_upload_requires_session(client):
    resp = await upload_video(client)
    assert resp.status_code == 401


async def test_upload_video(client, signed_in, media):
    resp = await upload_video(client, description="A short clip")
    assert resp.status_code == 201, resp.text

    video = resp.json()["data"]
    assert video["title"] == "First video"
    assert video["description"] == "A short clip"
    assert video["duration"] == 12.5
    assert video["views"] == 0
    assert video["isPublished"] is True
    assert video["owner"] == signed_in["user"]["_id"]
    assert video["videoUrl"].startswith("https://media.test/videos/")
    assert video["thumbnailUrl"].startswith("https://media.test/thumbnails/")


async def test_description_defaults_to_title(client, signed_in):
    resp = await upload_video(client, title="Only a title")
    assert resp.status_code == 201
    assert resp.json()["data"]["description"] == "Only a title"


async def test_upload_requires_title(client, signed_in, media):
    resp = await upload_video(client, title="   ")
    assert resp.status_code == 400
    assert media.uploaded == ["avatars/asset-1"]


async def test_upload_requires_thumbnail(client, signed_in):
    resp = await upload_video(client, thumbnail=False)
    assert resp.status_code == 400


async def test_thumbnail_failure_removes_video_asset(client, signed_in, media):
    media.fail_uploads_for.add("thumbnails")
    resp = await upload_video(client)
    assert resp.status_code == 500
    assert media.removed == ["videos/asset-2"]


async def test_get_video_with_owner(client, signed_in):
    video_id = (await upload_video(client)).json()["data"]["_id"]
    client.cookies.clear()

    resp = await client.get(f"/videos/{video_id}")
    assert resp.status_code == 200
    video = resp.json()["data"]
    assert video["owner"] == {
        "fullName": "Alice",
        "username": "alice",
        "avatar":   "https://media.test/avatars/asset-1",
    }
    # anonymous views are not counted
    assert video["views"] == 0


async def test_signed_in_view_is_counted(client, signed_in):
    video_id = (await upload_video(client)).json()["data"]["_id"]

    resp = await client.get(f"/videos/{video_id}")
    assert resp.json()["data"]["views"] == 1


async def test_unknown_video(client):
    resp = await client.get("/videos/does-not-exist")
    assert resp.status_code == 404
    assert resp.json()["message"] == "no such video exists"
