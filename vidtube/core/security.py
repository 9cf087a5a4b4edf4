"""
VidTube — core/security.py
─────────────────────────────────────────────────────────────────
All password, JWT, session and cookie helpers in one place.

Token pair:
    access  → short-lived, stateless, {sub, type, username, email, exp}
    refresh → long-lived, {sub, type, jti, exp}, and the ONLY valid one
              is the value stored on users.refresh_token

Session resolution per request (pure, see resolve_session):
    NO_CREDENTIALS                  → anonymous
    ACCESS_VALID                    → identity from access token
    ACCESS_EXPIRED_REFRESH_VALID    → rotate pair, set cookies, continue
    ACCESS_EXPIRED_REFRESH_INVALID  → 401, log in again

Usage in a route:
    @router.get("/current")
    async def current(user: User = Depends(require_user)):
        ...
─────────────────────────────────────────────────────────────────
"""

import logging
import secrets
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Optional

import aiosqlite
from fastapi import Depends, Request, Response
from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from vidtube.core.cookies import ACCESS_COOKIE, REFRESH_COOKIE, remember_rotation, set_token_cookies
from vidtube.core.errors import (
    AuthenticationError,
    TokenExpiredError,
    TokenInvalidError,
    TokenIssuanceError,
)
from vidtube.models.user import User

logger = logging.getLogger("vidtube.security")


# ─────────────────────────────────────────────
# Passwords
# ─────────────────────────────────────────────
class PasswordHasher:
    """bcrypt via passlib. Rounds come from config so tests can go fast."""

    def __init__(self, rounds: int = 12):
        self.context = CryptContext(
            schemes        = ["bcrypt"],
            deprecated     = "auto",
            bcrypt__rounds = rounds,
        )

    def hash(self, password: str) -> str:
        return self.context.hash(password)

    def verify(self, password: Optional[str], hashed: Optional[str]) -> bool:
        if not password or not hashed:
            return False
        try:
            return self.context.verify(password, hashed)
        except ValueError:
            # Unrecognised / corrupt hash in the DB
            logger.warning("Stored password hash could not be parsed")
            return False


# ─────────────────────────────────────────────
# Tokens
# ─────────────────────────────────────────────
@dataclass(frozen=True)
class TokenPair:
    access_token:  str
    refresh_token: str


class TokenIssuer:
    """
    Signs, verifies and rotates token pairs.

    Secrets and lifetimes are passed in once at construction —
    nothing here reads the environment.
    """

    def __init__(
        self,
        users,
        access_secret:  str,
        refresh_secret: str,
        access_ttl:     timedelta,
        refresh_ttl:    timedelta,
        algorithm:      str = "HS256",
    ):
        self.users          = users
        self.access_secret  = access_secret
        self.refresh_secret = refresh_secret
        self.access_ttl     = access_ttl
        self.refresh_ttl    = refresh_ttl
        self.algorithm      = algorithm

    @classmethod
    def from_config(cls, cfg, users) -> "TokenIssuer":
        return cls(
            users          = users,
            access_secret  = cfg.ACCESS_TOKEN_SECRET,
            refresh_secret = cfg.REFRESH_TOKEN_SECRET,
            access_ttl     = timedelta(minutes=cfg.ACCESS_TOKEN_EXPIRY_MINUTES),
            refresh_ttl    = timedelta(days=cfg.REFRESH_TOKEN_EXPIRY_DAYS),
            algorithm      = cfg.ALGORITHM,
        )

    # ─── Sign ─────────────────────────────────

    def _sign(self, claims: dict, secret: str, ttl: timedelta) -> str:
        now = datetime.now(timezone.utc)
        data = {**claims, "iat": now, "exp": now + ttl}
        return jwt.encode(data, secret, algorithm=self.algorithm)

    def sign_access(self, user: User) -> str:
        return self._sign(
            {"sub": user.id, "type": "access", "username": user.username, "email": user.email},
            self.access_secret,
            self.access_ttl,
        )

    def sign_refresh(self, user_id: str) -> str:
        # jti keeps two refresh tokens issued in the same second distinct
        return self._sign(
            {"sub": user_id, "type": "refresh", "jti": secrets.token_urlsafe(12)},
            self.refresh_secret,
            self.refresh_ttl,
        )

    # ─── Verify ───────────────────────────────

    def _verify(self, token: Optional[str], secret: str, expected_type: str) -> dict:
        if not token:
            raise TokenInvalidError(f"{expected_type} token missing")
        try:
            claims = jwt.decode(token, secret, algorithms=[self.algorithm])
        except ExpiredSignatureError:
            raise TokenExpiredError(f"{expected_type} token expired")
        except JWTError:
            raise TokenInvalidError(f"{expected_type} token invalid")

        if claims.get("type") != expected_type or not claims.get("sub"):
            raise TokenInvalidError(f"{expected_type} token invalid")
        return claims

    def verify_access(self, token: Optional[str]) -> dict:
        return self._verify(token, self.access_secret, "access")

    def verify_refresh(self, token: Optional[str]) -> dict:
        return self._verify(token, self.refresh_secret, "refresh")

    def access_subject(self, token: Optional[str]) -> Optional[str]:
        try:
            return self.verify_access(token)["sub"]
        except AuthenticationError:
            return None

    def refresh_subject(self, token: Optional[str]) -> Optional[str]:
        try:
            return self.verify_refresh(token)["sub"]
        except AuthenticationError:
            return None

    # ─── Issue ────────────────────────────────

    async def issue_pair(self, user_id: str, replacing: Optional[str] = None) -> TokenPair:
        """
        Sign a new pair and persist the refresh token on the user.

        replacing=None  → unconditional write (login, password change)
        replacing=token → compare-and-swap: only succeeds if the stored
                          token still equals `replacing` (rotation)

        Raises:
            TokenIssuanceError:  user missing, signing or DB write failed
            AuthenticationError: CAS lost — `replacing` was already rotated away
        """
        try:
            user = await self.users.find_by_id(user_id)
        except aiosqlite.Error as e:
            logger.error(f"Token issuance lookup failed for {user_id}: {e}")
            raise TokenIssuanceError()
        if user is None:
            raise TokenIssuanceError()

        try:
            pair = TokenPair(
                access_token  = self.sign_access(user),
                refresh_token = self.sign_refresh(user.id),
            )
        except JWTError as e:
            logger.error(f"Token signing failed for {user_id}: {e}")
            raise TokenIssuanceError()

        try:
            if replacing is None:
                stored = await self.users.set_refresh_token(user.id, pair.refresh_token)
            else:
                stored = await self.users.swap_refresh_token(user.id, replacing, pair.refresh_token)
        except aiosqlite.Error as e:
            logger.error(f"Refresh token write failed for {user_id}: {e}")
            raise TokenIssuanceError()

        if not stored:
            if replacing is not None:
                logger.info(f"Refresh rotation lost race for user {user_id}")
                raise AuthenticationError("refresh token expired or invalid")
            raise TokenIssuanceError()

        return pair


# ─────────────────────────────────────────────
# Session state machine
# ─────────────────────────────────────────────
class SessionState(str, Enum):
    NO_CREDENTIALS                 = "no_credentials"
    ACCESS_VALID                   = "access_valid"
    ACCESS_EXPIRED_REFRESH_VALID   = "access_expired_refresh_valid"
    ACCESS_EXPIRED_REFRESH_INVALID = "access_expired_refresh_invalid"


@dataclass(frozen=True)
class SessionResolution:
    state:   SessionState
    user_id: Optional[str] = None


def resolve_session(
    access_token:         Optional[str],
    refresh_token:        Optional[str],
    issuer:               TokenIssuer,
    stored_refresh_token: Optional[str],
) -> SessionResolution:
    """
    Decide the session state from the presented tokens and the refresh
    token currently stored for the refresh token's user. No I/O.

    A missing access token with a refresh cookie present is treated the
    same as an expired access token.
    """
    if not access_token and not refresh_token:
        return SessionResolution(SessionState.NO_CREDENTIALS)

    user_id = issuer.access_subject(access_token)
    if user_id:
        return SessionResolution(SessionState.ACCESS_VALID, user_id)

    user_id = issuer.refresh_subject(refresh_token)
    if user_id and stored_refresh_token and stored_refresh_token == refresh_token:
        return SessionResolution(SessionState.ACCESS_EXPIRED_REFRESH_VALID, user_id)

    return SessionResolution(SessionState.ACCESS_EXPIRED_REFRESH_INVALID)


# ─────────────────────────────────────────────
# Request helpers
# ─────────────────────────────────────────────
def get_access_token_from_request(request: Request) -> Optional[str]:
    """
    Access token from:
    1. Cookie: accessToken
    2. Header: Authorization: Bearer <token>
    """
    token = request.cookies.get(ACCESS_COOKIE)
    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[len("Bearer "):].strip()
    return token or None


def get_refresh_token_from_request(request: Request) -> Optional[str]:
    # Cookie only
    return request.cookies.get(REFRESH_COOKIE) or None


# ─────────────────────────────────────────────
# FastAPI dependencies
# ─────────────────────────────────────────────
async def get_session(request: Request, response: Response) -> Optional[User]:
    """
    Returns the authenticated User, or None when no tokens were sent.

    Raises 401 if:
        - access token is bad and the refresh token is missing / bad / stale
        - the token's user no longer exists
    """
    services = request.app.state.services
    access_token  = get_access_token_from_request(request)
    refresh_token = get_refresh_token_from_request(request)

    stored = None
    if refresh_token and not services.issuer.access_subject(access_token):
        owner_id = services.issuer.refresh_subject(refresh_token)
        if owner_id:
            owner = await services.users.find_by_id(owner_id)
            stored = owner.refresh_token if owner else None

    resolution = resolve_session(access_token, refresh_token, services.issuer, stored)

    if resolution.state is SessionState.NO_CREDENTIALS:
        return None

    if resolution.state is SessionState.ACCESS_EXPIRED_REFRESH_INVALID:
        raise AuthenticationError("refresh token expired or invalid")

    if resolution.state is SessionState.ACCESS_EXPIRED_REFRESH_VALID:
        pair = await services.issuer.issue_pair(resolution.user_id, replacing=refresh_token)
        set_token_cookies(response, pair)
        remember_rotation(request, pair)
        logger.info(f"Session refreshed for user {resolution.user_id}")

    user = await services.users.find_by_id(resolution.user_id)
    if user is None:
        raise AuthenticationError("Invalid access token")
    return user


async def require_user(user: Optional[User] = Depends(get_session)) -> User:
    if user is None:
        raise AuthenticationError("unauthorized request")
    return user
