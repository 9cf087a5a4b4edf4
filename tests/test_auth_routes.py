"""Register, login, logout, refresh and account routes."""

import os
from datetime import datetime, timedelta, timezone

from jose import jwt

from conftest import (
    PASSWORD,
    PNG_BYTES,
    cookie_header,
    cookie_value,
    login,
    register,
    set_cookies,
)


def expired_access(config, user_id: str) -> str:
    past = datetime.now(timezone.utc) - timedelta(minutes=1)
    return jwt.encode({"sub": user_id, "type": "access", "exp": past},
                      config.ACCESS_TOKEN_SECRET, algorithm="HS256")


# ==================== Register ====================

async def test_register_returns_sanitized_profile(client, media):
    resp = await register(client, "Alice", email="Alice@Example.com", cover=True)
    assert resp.status_code == 201, resp.text

    body = resp.json()
    assert body["success"] is True
    assert body["statusCode"] == 201
    user = body["data"]
    assert user["username"] == "alice"
    assert user["email"] == "alice@example.com"
    assert user["avatar"].startswith("https://media.test/avatars/")
    assert user["coverImage"].startswith("https://media.test/covers/")
    assert "password" not in str(user).lower()
    assert "refreshToken" not in user
    assert len(media.uploaded) == 2


async def test_register_cleans_temp_dir(client, media, config):
    resp = await register(client, "alice")
    assert resp.status_code == 201

    assert media.seen_paths
    for path in media.seen_paths:
        assert not os.path.exists(path)
    assert os.listdir(config.UPLOAD_TEMP_DIR) == []


async def test_register_without_cover_has_empty_cover(client):
    resp = await register(client, "alice")
    assert resp.json()["data"]["coverImage"] == ""


async def test_register_conflict_writes_nothing(client, media, services):
    assert (await register(client, "alice")).status_code == 201
    uploaded_before = list(media.uploaded)

    resp = await register(client, "alice", email="other@example.com")
    assert resp.status_code == 409
    assert resp.json()["success"] is False
    assert "username" in resp.json()["message"]

    resp = await register(client, "bob", email="alice@example.com")
    assert resp.status_code == 409
    assert media.uploaded == uploaded_before
    assert await services.users.find_by_username("bob") is None


async def test_register_requires_fields(client):
    resp = await client.post(
        "/users/register",
        data={"username": "alice", "password": PASSWORD},
        files={"avatar": ("a.png", PNG_BYTES, "image/png")},
    )
    assert resp.status_code == 400
    assert "fullName" in resp.json()["message"]


async def test_register_requires_avatar(client, services):
    resp = await client.post(
        "/users/register",
        data={"fullName": "Alice", "email": "alice@example.com",
              "username": "alice", "password": PASSWORD},
    )
    assert resp.status_code == 400
    assert resp.json()["message"] == "avatar is required"
    assert await services.users.find_by_username("alice") is None


async def test_register_rejects_bad_email(client):
    resp = await register(client, "alice", email="not-an-email")
    assert resp.status_code == 400


async def test_register_rejects_short_password(client):
    resp = await register(client, "alice", password="short")
    assert resp.status_code == 400


async def test_register_rejects_non_image_avatar(client):
    resp = await client.post(
        "/users/register",
        data={"fullName": "Alice", "email": "alice@example.com",
              "username": "alice", "password": PASSWORD},
        files={"avatar": ("notes.txt", b"hello", "text/plain")},
    )
    assert resp.status_code == 400


async def test_register_avatar_upload_failure(client, media, services):
    media.fail_uploads_for.add("avatars")
    resp = await register(client, "alice")
    assert resp.status_code == 400
    assert resp.json()["message"] == "avatar not uploaded"
    assert await services.users.find_by_username("alice") is None


async def test_register_survives_cover_upload_failure(client, media):
    media.fail_uploads_for.add("covers")
    resp = await register(client, "alice", cover=True)
    assert resp.status_code == 201
    assert resp.json()["data"]["coverImage"] == ""


# ==================== Login ====================

async def test_login_sets_secure_cookies(client, services):
    await register(client, "alice")
    resp = await client.post("/users/login", json={"username": "alice", "password": PASSWORD})
    assert resp.status_code == 200

    cookies = set_cookies(resp)
    assert set(cookies) >= {"accessToken", "refreshToken"}
    for header in cookies.values():
        lowered = header.lower()
        assert "httponly" in lowered
        assert "secure" in lowered

    data = resp.json()["data"]
    assert cookie_value(cookies["accessToken"]) == data["accessToken"]
    assert cookie_value(cookies["refreshToken"]) == data["refreshToken"]

    user_id = data["user"]["_id"]
    assert services.issuer.access_subject(data["accessToken"]) == user_id
    assert services.issuer.refresh_subject(data["refreshToken"]) == user_id

    stored = await services.users.find_by_id(user_id)
    assert stored.refresh_token == data["refreshToken"]


async def test_login_by_email(client):
    await register(client, "alice")
    resp = await client.post("/users/login", json={"email": "alice@example.com", "password": PASSWORD})
    assert resp.status_code == 200


async def test_login_wrong_password_keeps_token(client, services):
    await register(client, "alice")
    data = await login(client, "alice")

    resp = await client.post("/users/login", json={"username": "alice", "password": "nope-nope"})
    assert resp.status_code == 401
    assert resp.json()["message"] == "wrong password"

    stored = await services.users.find_by_username("alice")
    assert stored.refresh_token == data["refreshToken"]


async def test_login_unknown_user(client):
    resp = await client.post("/users/login", json={"username": "ghost", "password": PASSWORD})
    assert resp.status_code == 404


async def test_login_requires_identifier(client):
    resp = await client.post("/users/login", json={"password": PASSWORD})
    assert resp.status_code == 400


# ==================== Current / logout ====================

async def test_current_user_requires_session(client):
    resp = await client.get("/users/current")
    assert resp.status_code == 401
    assert resp.json()["success"] is False


async def test_current_user_with_cookie(client):
    await register(client, "alice")
    await login(client, "alice")

    resp = await client.get("/users/current")
    assert resp.status_code == 200
    assert resp.json()["data"]["username"] == "alice"


async def test_current_user_with_bearer_header(client):
    await register(client, "alice")
    data = await login(client, "alice")
    client.cookies.clear()

    resp = await client.get("/users/current", headers={"Authorization": f"Bearer {data['accessToken']}"})
    assert resp.status_code == 200


async def test_garbage_access_token_without_refresh(client):
    resp = await client.get("/users/current", headers={"Authorization": "Bearer garbage"})
    assert resp.status_code == 401


async def test_logout_invalidates_refresh(client, services):
    await register(client, "alice")
    data = await login(client, "alice")

    resp = await client.post("/users/logout")
    assert resp.status_code == 200
    assert set(set_cookies(resp)) >= {"accessToken", "refreshToken"}

    stored = await services.users.find_by_username("alice")
    assert stored.refresh_token is None

    client.cookies.clear()
    resp = await client.post("/users/refresh-token", json={"refreshToken": data["refreshToken"]})
    assert resp.status_code == 401


# ==================== Refresh ====================

async def test_refresh_rotation_is_chainable(client, services):
    await register(client, "alice")
    first = (await login(client, "alice"))["refreshToken"]
    client.cookies.clear()

    resp = await client.post("/users/refresh-token", headers=cookie_header(refresh=first))
    assert resp.status_code == 200
    second = resp.json()["data"]["refreshToken"]
    assert second != first
    assert cookie_value(set_cookies(resp)["refreshToken"]) == second
    client.cookies.clear()

    resp = await client.post("/users/refresh-token", headers=cookie_header(refresh=second))
    assert resp.status_code == 200
    third = resp.json()["data"]["refreshToken"]
    client.cookies.clear()

    # Rotated-away tokens are rejected
    for stale in (first, second):
        resp = await client.post("/users/refresh-token", headers=cookie_header(refresh=stale))
        assert resp.status_code == 401

    stored = await services.users.find_by_username("alice")
    assert stored.refresh_token == third


async def test_refresh_from_body(client):
    await register(client, "alice")
    token = (await login(client, "alice"))["refreshToken"]
    client.cookies.clear()

    resp = await client.post("/users/refresh-token", json={"refreshToken": token})
    assert resp.status_code == 200
    assert resp.json()["data"]["accessToken"]


async def test_refresh_without_token(client):
    resp = await client.post("/users/refresh-token")
    assert resp.status_code == 401


async def test_refresh_rejects_access_token(client):
    await register(client, "alice")
    access = (await login(client, "alice"))["accessToken"]
    client.cookies.clear()

    resp = await client.post("/users/refresh-token", json={"refreshToken": access})
    assert resp.status_code == 401


# ==================== Session auto-refresh ====================

async def test_expired_access_refreshes_session(client, services, config):
    await register(client, "alice")
    data = await login(client, "alice")
    user_id = data["user"]["_id"]
    client.cookies.clear()

    resp = await client.get(
        "/users/current",
        headers=cookie_header(access=expired_access(config, user_id), refresh=data["refreshToken"]),
    )
    assert resp.status_code == 200
    assert resp.json()["data"]["_id"] == user_id

    cookies = set_cookies(resp)
    new_refresh = cookie_value(cookies["refreshToken"])
    assert new_refresh != data["refreshToken"]
    assert services.issuer.access_subject(cookie_value(cookies["accessToken"])) == user_id

    stored = await services.users.find_by_id(user_id)
    assert stored.refresh_token == new_refresh


async def test_rotated_cookies_survive_route_error(client, services, config):
    await register(client, "alice")
    data = await login(client, "alice")
    user_id = data["user"]["_id"]
    client.cookies.clear()

    resp = await client.patch(
        "/users/update-account",
        json={},
        headers=cookie_header(access=expired_access(config, user_id), refresh=data["refreshToken"]),
    )
    assert resp.status_code == 400

    cookies = set_cookies(resp)
    assert set(cookies) >= {"accessToken", "refreshToken"}
    new_refresh = cookie_value(cookies["refreshToken"])
    stored = await services.users.find_by_id(user_id)
    assert stored.refresh_token == new_refresh != data["refreshToken"]
    client.cookies.clear()

    resp = await client.get(
        "/users/current",
        headers=cookie_header(access=cookie_value(cookies["accessToken"]), refresh=new_refresh),
    )
    assert resp.status_code == 200


async def test_rotated_cookies_survive_body_validation_error(client, config):
    await register(client, "alice")
    data = await login(client, "alice")
    client.cookies.clear()

    resp = await client.patch(
        "/users/update-account",
        json={"fullName": ["not", "a", "string"]},
        headers=cookie_header(
            access=expired_access(config, data["user"]["_id"]), refresh=data["refreshToken"]
        ),
    )
    assert resp.status_code == 400
    assert "refreshToken" in set_cookies(resp)


async def test_refresh_cookie_alone_refreshes_session(client):
    await register(client, "alice")
    data = await login(client, "alice")
    client.cookies.clear()

    resp = await client.get("/users/current", headers=cookie_header(refresh=data["refreshToken"]))
    assert resp.status_code == 200
    assert "accessToken" in set_cookies(resp)


async def test_expired_access_with_stale_refresh(client, services, config):
    await register(client, "alice")
    data = await login(client, "alice")
    await login(client, "alice")  # rotates the stored refresh token
    client.cookies.clear()

    resp = await client.get(
        "/users/current",
        headers=cookie_header(
            access=expired_access(config, data["user"]["_id"]), refresh=data["refreshToken"]
        ),
    )
    assert resp.status_code == 401


# ==================== Password change ====================

async def test_change_password_rotates_tokens(client, services):
    await register(client, "alice")
    old = await login(client, "alice")

    resp = await client.post(
        "/users/change-password",
        json={"currentPassword": PASSWORD, "newPassword": "brand-new-pass"},
    )
    assert resp.status_code == 200
    new_refresh = cookie_value(set_cookies(resp)["refreshToken"])
    assert new_refresh != old["refreshToken"]
    client.cookies.clear()

    resp = await client.post("/users/refresh-token", json={"refreshToken": old["refreshToken"]})
    assert resp.status_code == 401

    assert (await client.post(
        "/users/login", json={"username": "alice", "password": PASSWORD}
    )).status_code == 401
    await login(client, "alice", "brand-new-pass")


async def test_change_password_wrong_current(client):
    await register(client, "alice")
    await login(client, "alice")

    resp = await client.post(
        "/users/change-password",
        json={"currentPassword": "not-it-at-all", "newPassword": "brand-new-pass"},
    )
    assert resp.status_code == 401


# ==================== Account patch ====================

async def test_update_account(client):
    await register(client, "alice")
    await login(client, "alice")

    resp = await client.patch("/users/update-account", json={"fullName": "Alice Liddell"})
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["fullName"] == "Alice Liddell"
    assert data["email"] == "alice@example.com"


async def test_update_account_empty_patch(client):
    await register(client, "alice")
    await login(client, "alice")

    resp = await client.patch("/users/update-account", json={})
    assert resp.status_code == 400


async def test_update_account_email_conflict(client):
    await register(client, "alice")
    await register(client, "bob")
    await login(client, "alice")

    resp = await client.patch("/users/update-account", json={"email": "bob@example.com"})
    assert resp.status_code == 409


async def test_replace_avatar_removes_old_asset(client, media):
    created = (await register(client, "alice")).json()["data"]
    await login(client, "alice")

    resp = await client.patch(
        "/users/avatar", files={"avatar": ("new.png", PNG_BYTES, "image/png")}
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["user"]["avatar"] != created["avatar"]
    assert data["avatarDeleteStatus"]["deleted"] == ["avatars/asset-1"]
    assert media.removed == ["avatars/asset-1"]


async def test_replace_cover_without_previous(client):
    await register(client, "alice")
    await login(client, "alice")

    resp = await client.patch(
        "/users/cover-image", files={"coverImage": ("c.png", PNG_BYTES, "image/png")}
    )
    assert resp.status_code == 200
    data = resp.json()["data"]
    assert data["user"]["coverImage"].startswith("https://media.test/covers/")
    assert data["coverImageDeleteStatus"] is None


# ==================== Delete account ====================

async def test_delete_account_reports_cleanup(client, media, services):
    await register(client, "alice", cover=True)
    await login(client, "alice")

    resp = await client.delete("/users/delete-account")
    assert resp.status_code == 200
    status = resp.json()["data"]["cleanupStatus"]
    assert status["ok"] is True
    assert sorted(status["deleted"]) == sorted(media.uploaded)
    assert await services.users.find_by_username("alice") is None


async def test_delete_account_cleanup_failure_still_deletes(client, media, services):
    await register(client, "alice")
    await login(client, "alice")
    media.fail_removals = True

    resp = await client.delete("/users/delete-account")
    assert resp.status_code == 200
    status = resp.json()["data"]["cleanupStatus"]
    assert status["ok"] is False
    assert status["failed"] == ["avatars/asset-1"]
    assert await services.users.find_by_username("alice") is None


async def test_deleted_user_token_rejected(client):
    await register(client, "alice")
    data = await login(client, "alice")
    await client.delete("/users/delete-account")
    client.cookies.clear()

    resp = await client.get("/users/current", headers={"Authorization": f"Bearer {data['accessToken']}"})
    assert resp.status_code == 401
