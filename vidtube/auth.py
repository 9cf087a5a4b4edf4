"""
VidTube — auth.py
─────────────────────────────────────────────────────────────────
Account + session routes: register, login, logout, refresh,
current user, password change, profile patch, avatar / cover
replacement, account deletion.

Endpoints (all under /users):
  POST   /register          multipart: fullName email username password
                            + avatar (required) + coverImage (optional)
  POST   /login             {email | username, password}
  POST   /logout            session required
  POST   /refresh-token     refresh token from cookie, else body
  GET    /current           session required
  POST   /change-password   {currentPassword, newPassword}
  PATCH  /update-account    {fullName?, email?, username?}
  PATCH  /avatar            multipart: avatar
  PATCH  /cover-image       multipart: coverImage
  DELETE /delete-account    session required

Cookies: accessToken + refreshToken, httpOnly + secure, set and
cleared with the same attributes.
─────────────────────────────────────────────────────────────────
"""

import logging
from typing import Optional

import aiosqlite
from fastapi import APIRouter, Body, Depends, File, Form, Request, Response, UploadFile
from pydantic import BaseModel, EmailStr, TypeAdapter
from pydantic import ValidationError as PydanticValidationError

from vidtube.core.cookies import clear_token_cookies, set_token_cookies
from vidtube.core.errors import (
    ApiResponse,
    AuthenticationError,
    ConflictError,
    DependencyFailure,
    NotFoundError,
    ValidationError,
)
from vidtube.core.security import get_refresh_token_from_request, require_user
from vidtube.models.user import User
from vidtube.storage.uploads import IMAGE_TYPES, UploadStaging, has_allowed_type, is_present

logger = logging.getLogger("vidtube.auth")

_email_adapter = TypeAdapter(EmailStr)

# Rejected anywhere in a password
FORBIDDEN_PASSWORD_CHARS = set("<>")


# ─────────────────────────────────────────────
# Schemas
# ─────────────────────────────────────────────
class LoginRequest(BaseModel):
    email:    Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None


class RefreshRequest(BaseModel):
    refreshToken: Optional[str] = None


class ChangePasswordRequest(BaseModel):
    currentPassword: Optional[str] = None
    newPassword:     Optional[str] = None


class UpdateAccountRequest(BaseModel):
    fullName: Optional[str] = None
    email:    Optional[str] = None
    username: Optional[str] = None


# ─────────────────────────────────────────────
# Validation helpers
# ─────────────────────────────────────────────
def validate_required(**fields: Optional[str]) -> None:
    missing = [name for name, value in fields.items() if not (value or "").strip()]
    if missing:
        raise ValidationError(f"{', '.join(missing)} required")


def validate_email(email: str) -> None:
    try:
        _email_adapter.validate_python(email.strip())
    except PydanticValidationError:
        raise ValidationError("invalid email address")


def validate_password(password: Optional[str], min_length: int) -> None:
    if not password or not password.strip():
        raise ValidationError("password required")
    if len(password) < min_length:
        raise ValidationError(f"password must be at least {min_length} characters")
    if FORBIDDEN_PASSWORD_CHARS & set(password):
        raise ValidationError("password contains forbidden characters")


def conflict_message(field: str) -> str:
    if field == "username":
        return "username already taken"
    return "another account with this email already exists"


# ─────────────────────────────────────────────
# Router
# ─────────────────────────────────────────────
router = APIRouter(prefix="/users", tags=["auth"])


# ── Register ──────────────────────────────────
@router.post("/register", status_code=201)
async def register(
    request:     Request,
    full_name:   str                  = Form("", alias="fullName"),
    email:       str                  = Form(""),
    username:    str                  = Form(""),
    password:    str                  = Form(""),
    avatar:      Optional[UploadFile] = File(None),
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
):
    services = request.app.state.services

    # Nothing is written or uploaded before validation passes
    validate_required(fullName=full_name, email=email, username=username, password=password)
    validate_email(email)
    validate_password(password, services.config.PASSWORD_MIN_LENGTH)

    taken = await services.users.find_conflict(username=username, email=email)
    if taken:
        raise ConflictError(conflict_message(taken))

    if not is_present(avatar):
        raise ValidationError("avatar is required")
    if not has_allowed_type(avatar, IMAGE_TYPES):
        raise ValidationError("avatar must be a JPEG, PNG, WEBP or GIF image")
    has_cover = is_present(cover_image)
    if has_cover and not has_allowed_type(cover_image, IMAGE_TYPES):
        raise ValidationError("cover image must be a JPEG, PNG, WEBP or GIF image")

    async with UploadStaging(services.config.UPLOAD_TEMP_DIR) as staging:
        avatar_path = await staging.stage(avatar, "avatar")
        cover_path  = await staging.stage(cover_image, "coverImage") if has_cover else None

        avatar_asset = await services.media.upload(avatar_path, "avatars")
        if not avatar_asset:
            raise ValidationError("avatar not uploaded")

        cover_asset = None
        if cover_path:
            cover_asset = await services.media.upload(cover_path, "covers")
            if not cover_asset:
                logger.warning(f"Cover image upload failed for '{username}', continuing without it")

        uploaded = [avatar_asset.asset_id] + ([cover_asset.asset_id] if cover_asset else [])
        try:
            user = await services.users.create(
                username             = username,
                email                = email,
                full_name            = full_name,
                password             = password,
                avatar               = avatar_asset.url,
                avatar_asset_id      = avatar_asset.asset_id,
                cover_image          = cover_asset.url if cover_asset else "",
                cover_image_asset_id = cover_asset.asset_id if cover_asset else None,
            )
        except ConflictError:
            await services.media.remove_many(uploaded)
            raise
        except aiosqlite.Error as e:
            logger.error(f"User insert failed for '{username}': {e}")
            await services.media.remove_many(uploaded)
            raise DependencyFailure("failed to create new user")

    logger.info(f"account '{user.username}' created successfully")
    return ApiResponse(201, user.to_public(), "User created successfully").to_dict()


# ── Login ─────────────────────────────────────
@router.post("/login")
async def login(body: LoginRequest, request: Request, response: Response):
    services = request.app.state.services

    if not ((body.email or "").strip() or (body.username or "").strip()):
        raise ValidationError("please provide email or username")
    if not body.password:
        raise ValidationError("password required")

    user = await services.users.find_by_username_or_email(
        username=body.username, email=body.email
    )
    if not user:
        raise NotFoundError("User does not exist")

    if not services.users.hasher.verify(body.password, user.password_hash):
        raise AuthenticationError("wrong password")

    pair = await services.issuer.issue_pair(user.id)
    set_token_cookies(response, pair)

    logger.info(f"User {user.username} logged in")
    return ApiResponse(
        200,
        {
            "user":         user.to_public(),
            "accessToken":  pair.access_token,
            "refreshToken": pair.refresh_token,
        },
        "user logged in successfully",
    ).to_dict()


# ── Logout ────────────────────────────────────
@router.post("/logout")
async def logout(request: Request, response: Response, user: User = Depends(require_user)):
    services = request.app.state.services
    # Clearing the stored token kills every outstanding refresh token at once
    await services.users.clear_refresh_token(user.id)
    clear_token_cookies(response)
    return ApiResponse(200, {}, "user logged out successfully").to_dict()


# ── Explicit refresh ──────────────────────────
@router.post("/refresh-token")
async def refresh_token(
    request:  Request,
    response: Response,
    body:     Optional[RefreshRequest] = Body(None),
):
    services = request.app.state.services

    presented = get_refresh_token_from_request(request) or (body.refreshToken if body else None)
    if not presented:
        raise AuthenticationError("unauthorized request")

    claims = services.issuer.verify_refresh(presented)

    user = await services.users.find_by_id(claims["sub"])
    if not user:
        raise AuthenticationError("Invalid refresh token")
    if user.refresh_token != presented:
        raise AuthenticationError("refresh token expired or invalid")

    pair = await services.issuer.issue_pair(user.id, replacing=presented)
    set_token_cookies(response, pair)

    return ApiResponse(
        200,
        {"accessToken": pair.access_token, "refreshToken": pair.refresh_token},
        "access token refreshed",
    ).to_dict()


# ── Current user ──────────────────────────────
@router.get("/current")
async def current_user(user: User = Depends(require_user)):
    return ApiResponse(200, user.to_public(), "user fetched successfully").to_dict()


# ── Password change ───────────────────────────
@router.post("/change-password")
async def change_password(
    body:     ChangePasswordRequest,
    request:  Request,
    response: Response,
    user:     User = Depends(require_user),
):
    services = request.app.state.services

    if not services.users.hasher.verify(body.currentPassword, user.password_hash):
        raise AuthenticationError("entered password is incorrect")
    validate_password(body.newPassword, services.config.PASSWORD_MIN_LENGTH)

    await services.users.update_password(user.id, body.newPassword)

    # Rotate so refresh tokens issued before the change stop working;
    # this client gets the new pair and stays signed in
    pair = await services.issuer.issue_pair(user.id)
    set_token_cookies(response, pair)

    logger.info(f"Password changed for {user.username}, sessions rotated")
    return ApiResponse(200, {}, "password changed successfully").to_dict()


# ── Profile patch ─────────────────────────────
@router.patch("/update-account")
async def update_account(
    body:    UpdateAccountRequest,
    request: Request,
    user:    User = Depends(require_user),
):
    services = request.app.state.services

    patch = {}
    if body.fullName is not None and body.fullName.strip():
        patch["full_name"] = body.fullName.strip()
    if body.email is not None and body.email.strip():
        validate_email(body.email)
        patch["email"] = body.email
    if body.username is not None and body.username.strip():
        patch["username"] = body.username

    if not patch:
        raise ValidationError("none of the details are changed")

    taken = await services.users.find_conflict(
        username=patch.get("username"), email=patch.get("email"), exclude_id=user.id
    )
    if taken:
        raise ConflictError(conflict_message(taken))

    updated = await services.users.update_fields(user.id, **patch)
    if not updated:
        raise NotFoundError("user does not exist")
    return ApiResponse(200, updated.to_public(), "user details updated").to_dict()


# ── Avatar / cover replacement ────────────────
async def _replace_image(
    request:  Request,
    user:     User,
    upload:   Optional[UploadFile],
    field:    str,
    folder:   str,
    label:    str,
) -> tuple[User, dict]:
    """
    Upload the new image, point the user row at it, then drop the old
    asset. Old-asset removal is best effort and only reported.
    """
    services = request.app.state.services

    if not is_present(upload):
        raise ValidationError(f"no {label} was uploaded")
    if not has_allowed_type(upload, IMAGE_TYPES):
        raise ValidationError(f"{label} must be a JPEG, PNG, WEBP or GIF image")

    old_asset_id = getattr(user, f"{field}_asset_id")

    async with UploadStaging(services.config.UPLOAD_TEMP_DIR) as staging:
        path  = await staging.stage(upload, folder)
        asset = await services.media.upload(path, folder)
        if not asset:
            raise DependencyFailure(f"unable to upload {label}")

        try:
            updated = await services.users.update_fields(
                user.id, **{field: asset.url, f"{field}_asset_id": asset.asset_id}
            )
        except aiosqlite.Error as e:
            logger.error(f"{label} update failed for {user.id}: {e}")
            updated = None
        if not updated:
            await services.media.remove(asset.asset_id)
            raise DependencyFailure(f"failed to update {label}")

    delete_status = await services.media.remove(old_asset_id) if old_asset_id else None
    return updated, delete_status


@router.patch("/avatar")
async def update_avatar(
    request: Request,
    avatar:  Optional[UploadFile] = File(None),
    user:    User                 = Depends(require_user),
):
    updated, status = await _replace_image(request, user, avatar, "avatar", "avatars", "avatar")
    return ApiResponse(
        200,
        {"user": updated.to_public(), "avatarDeleteStatus": status},
        "avatar updated successfully",
    ).to_dict()


@router.patch("/cover-image")
async def update_cover_image(
    request:     Request,
    cover_image: Optional[UploadFile] = File(None, alias="coverImage"),
    user:        User                 = Depends(require_user),
):
    updated, status = await _replace_image(
        request, user, cover_image, "cover_image", "covers", "cover image"
    )
    return ApiResponse(
        200,
        {"user": updated.to_public(), "coverImageDeleteStatus": status},
        "cover image updated successfully",
    ).to_dict()


# ── Delete account ────────────────────────────
@router.delete("/delete-account")
async def delete_account(request: Request, response: Response, user: User = Depends(require_user)):
    """
    Row deletion is the primary operation. Asset cleanup runs after it
    and its failure only shows up in cleanupStatus.
    """
    services = request.app.state.services

    asset_ids = user.asset_ids + await services.videos.asset_ids_for_owner(user.id)

    try:
        deleted = await services.users.delete(user.id)
    except aiosqlite.Error as e:
        logger.error(f"User delete failed for {user.id}: {e}")
        raise DependencyFailure("failed to delete user")
    if not deleted:
        raise NotFoundError("user does not exist")

    removal = await services.media.remove_many(asset_ids)
    cleanup_status = {
        "ok":      not removal["failed"],
        "deleted": removal["deleted"],
        "failed":  removal["failed"],
    }
    if removal["failed"]:
        logger.warning(f"Asset cleanup incomplete for deleted user {user.id}: {removal['failed']}")

    clear_token_cookies(response)
    logger.info(f"account '{user.username}' deleted successfully")
    return ApiResponse(
        200,
        {"user": user.to_public(), "cleanupStatus": cleanup_status},
        "user deleted successfully",
    ).to_dict()
