"""
VidTube — core/config.py
─────────────────────────────────────────────────────────────────
Single source of truth for ALL environment variables.

Nothing else in the package calls os.getenv() — token secrets,
DB path and S3 credentials are read once here and handed to the
services that need them when the app is built.

Usage:
    from vidtube.core.config import cfg

    print(cfg.DB_PATH)
    print(cfg.ACCESS_TOKEN_EXPIRY_MINUTES)
─────────────────────────────────────────────────────────────────
"""

import os
from dotenv import load_dotenv

load_dotenv()


DEFAULT_ACCESS_SECRET  = "dev-access-secret-change-in-prod!"
DEFAULT_REFRESH_SECRET = "dev-refresh-secret-change-in-prod!"


class Config:
    # ── App ───────────────────────────────────
    ENV:         str = os.getenv("ENV", "development")   # "production" in prod
    DB_PATH:     str = os.getenv("DB_PATH", "vidtube.db")
    CORS_ORIGIN: str = os.getenv("CORS_ORIGIN", "http://localhost:3000")

    # ── Tokens ────────────────────────────────
    ACCESS_TOKEN_SECRET:  str = os.getenv("ACCESS_TOKEN_SECRET", DEFAULT_ACCESS_SECRET)
    REFRESH_TOKEN_SECRET: str = os.getenv("REFRESH_TOKEN_SECRET", DEFAULT_REFRESH_SECRET)
    ACCESS_TOKEN_EXPIRY_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRY_MINUTES", "60"))
    REFRESH_TOKEN_EXPIRY_DAYS:   int = int(os.getenv("REFRESH_TOKEN_EXPIRY_DAYS", "10"))
    ALGORITHM: str = "HS256"

    # ── Passwords ─────────────────────────────
    BCRYPT_ROUNDS:       int = int(os.getenv("BCRYPT_ROUNDS", "12"))
    PASSWORD_MIN_LENGTH: int = 8

    # ── Uploads ───────────────────────────────
    UPLOAD_TEMP_DIR: str = os.getenv("UPLOAD_TEMP_DIR", "./public/temp")

    # ── S3 ────────────────────────────────────
    AWS_ACCESS_KEY_ID:     str = os.getenv("AWS_ACCESS_KEY_ID", "")
    AWS_SECRET_ACCESS_KEY: str = os.getenv("AWS_SECRET_ACCESS_KEY", "")
    AWS_S3_BUCKET:         str = os.getenv("AWS_S3_BUCKET", "vidtube-media")
    AWS_REGION:            str = os.getenv("AWS_REGION", "ap-south-1")
    AWS_CDN_URL:           str = os.getenv("AWS_CDN_URL", "").rstrip("/")
    AWS_TIMEOUT_SECONDS:   int = 30

    # ── Shortcuts ─────────────────────────────
    @property
    def is_production(self) -> bool:
        return self.ENV == "production"

    @property
    def s3_ready(self) -> bool:
        return bool(self.AWS_ACCESS_KEY_ID and self.AWS_SECRET_ACCESS_KEY)

    def warnings(self) -> list[str]:
        """Config problems worth shouting about on startup."""
        found = []
        if self.ACCESS_TOKEN_SECRET == DEFAULT_ACCESS_SECRET:
            found.append("Using default ACCESS_TOKEN_SECRET - INSECURE!")
        if self.REFRESH_TOKEN_SECRET == DEFAULT_REFRESH_SECRET:
            found.append("Using default REFRESH_TOKEN_SECRET - INSECURE!")
        if not self.s3_ready:
            found.append("AWS credentials not set - uploads will fail")
        return found

    def __repr__(self):
        return (
            f"<Config env={self.ENV} "
            f"db={self.DB_PATH} "
            f"s3={'✓' if self.s3_ready else '✗'}>"
        )


# Single global instance, import this everywhere
cfg = Config()
