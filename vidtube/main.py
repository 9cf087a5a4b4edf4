"""
VidTube — main.py
─────────────────────────────────────────────────────────────────
App factory. Services are built once per app and hung on app.state.

Start server:
    uvicorn vidtube.main:app --reload --port 8000

File map:
    auth.py      → /users/*  (register, login, logout, refresh, account)
    channels.py  → /users/channel/*, /users/history
    videos.py    → /videos/*
    users.py     → service only (credential store)
    storage/     → S3 media store + upload staging
─────────────────────────────────────────────────────────────────
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Optional

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from vidtube.auth import router as auth_router
from vidtube.channels import ChannelService, router as channels_router
from vidtube.core.config import Config, cfg
from vidtube.core.database import init_all_tables
from vidtube.core.errors import install_error_handlers
from vidtube.core.security import PasswordHasher, TokenIssuer
from vidtube.storage.media import MediaStore
from vidtube.users import UserService
from vidtube.videos import VideoService, router as videos_router

# ── Logging ───────────────────────────────────
logging.basicConfig(
    level   = logging.INFO,
    format  = "%(asctime)s | %(levelname)s | %(name)s | %(message)s",
    datefmt = "%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("vidtube.main")


# ─────────────────────────────────────────────
# Services
# ─────────────────────────────────────────────
@dataclass
class Services:
    """Everything a route needs, built once per app from one Config."""
    config:   Config
    users:    UserService
    issuer:   TokenIssuer
    media:    MediaStore
    videos:   VideoService
    channels: ChannelService


def build_services(config: Config, media: Optional[MediaStore] = None) -> Services:
    users = UserService(config.DB_PATH, PasswordHasher(config.BCRYPT_ROUNDS))
    return Services(
        config   = config,
        users    = users,
        issuer   = TokenIssuer.from_config(config, users),
        media    = media or MediaStore.from_config(config),
        videos   = VideoService(config.DB_PATH),
        channels = ChannelService(config.DB_PATH),
    )


async def check_media(media) -> Optional[dict]:
    """S3 reachability, logged once at startup. Stores without a probe are skipped."""
    check = getattr(media, "check_connection", None)
    if check is None:
        return None
    status = await asyncio.to_thread(check)
    if status.get("ok"):
        logger.info(f"✅ S3 connected → {status['bucket']} ({status['region']})")
    else:
        logger.warning(f"⚠️  S3 not ready: {status.get('error')}")
    return status


# ─────────────────────────────────────────────
# Startup / Shutdown
# ─────────────────────────────────────────────
@asynccontextmanager
async def lifespan(app: FastAPI):
    """
    Startup: log config warnings, create tables, probe S3.
    Shutdown: nothing held open, connections are per call.
    """
    config = app.state.services.config
    logger.info(f"🚀 VidTube starting [{config.ENV}]")

    for warning in config.warnings():
        logger.warning(f"⚠️  {warning}")

    await init_all_tables(config.DB_PATH)
    await check_media(app.state.services.media)
    logger.info("✅ All tables initialized. VidTube is live.")

    yield  # App runs here

    logger.info("VidTube shutting down.")


# ─────────────────────────────────────────────
# App
# ─────────────────────────────────────────────
def create_app(config: Config = cfg, media: Optional[MediaStore] = None) -> FastAPI:
    app = FastAPI(
        title       = "VidTube API",
        description = "Backend for VidTube — video sharing platform",
        version     = "1.0.0",
        docs_url    = "/docs"   if not config.is_production else None,  # hide in prod
        redoc_url   = "/redoc"  if not config.is_production else None,
        lifespan    = lifespan,
    )
    app.state.services = build_services(config, media)

    app.add_middleware(
        CORSMiddleware,
        allow_origins     = [config.CORS_ORIGIN],
        allow_credentials = True,
        allow_methods     = ["*"],
        allow_headers     = ["*"],
    )

    install_error_handlers(app)

    app.include_router(auth_router)
    app.include_router(channels_router)
    app.include_router(videos_router)

    @app.get("/health", tags=["system"])
    async def health():
        """Liveness probe."""
        return {
            "status":  "ok",
            "app":     "VidTube",
            "version": "1.0.0",
            "env":     config.ENV,
        }

    return app


app = create_app()


# ─────────────────────────────────────────────
# Run
# ─────────────────────────────────────────────
if __name__ == "__main__":
    import uvicorn
    uvicorn.run(
        "vidtube.main:app",
        host    = "0.0.0.0",
        port    = 8000,
        reload  = not cfg.is_production,
    )
