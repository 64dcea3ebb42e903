import os
from typing import Final

basedir = os.path.abspath(os.path.dirname(__file__))

class Config:
    SECRET_KEY: Final[str] = os.getenv("SECRET_KEY", "change-me-in-production")
    try:
        SQLALCHEMY_DATABASE_URI: Final[str] = os.environ["DATABASE_URL"]
    except KeyError:
        raise RuntimeError("DATABASE_URL environment variable is required (no sqlite fallback)")
    SQLALCHEMY_TRACK_MODIFICATIONS: Final[bool] = False
    # Discord application credentials
    DISCORD_BOT_TOKEN: Final[str] = os.getenv("DISCORD_BOT_TOKEN", "")
    DISCORD_APPLICATION_ID: Final[str] = os.getenv("DISCORD_APPLICATION_ID", "")
    # Hex-encoded Ed25519 key used to verify incoming interaction requests
    DISCORD_PUBLIC_KEY: Final[str] = os.getenv("DISCORD_PUBLIC_KEY", "")
    DISCORD_API_BASE: Final[str] = os.getenv("DISCORD_API_BASE", "https://discord.com/api/v10")
    DISCORD_HTTP_TIMEOUT: Final[int] = int(os.getenv("DISCORD_HTTP_TIMEOUT", "10"))
    VERIFY_SIGNATURES: Final[bool] = bool(os.getenv("VERIFY_SIGNATURES", "True") == "True")
    # Teardown retry queue: wake interval (seconds) and number of retries after the first
    # rate-limited delete before an item is abandoned.
    TEARDOWN_RETRY_SECONDS: Final[int] = int(os.getenv("TEARDOWN_RETRY_SECONDS", "5"))
    TEARDOWN_MAX_RETRIES: Final[int] = int(os.getenv("TEARDOWN_MAX_RETRIES", "3"))
    # When False, background side effects (provisioning, announcements) run inline in the request.
    BACKGROUND_ENABLED: Final[bool] = bool(os.getenv("BACKGROUND_ENABLED", "True") == "True")
    # Used for communities that never ran the setup command
    DEFAULT_TIMEZONE: Final[str] = os.getenv("DEFAULT_TIMEZONE", "Europe/Paris")
