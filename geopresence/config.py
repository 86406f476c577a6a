import logging
import os
import sys
from typing import Optional, Union


class Settings:
    APP_NAME: str = "GeoPresence"
    VERSION: str = "1.0.0"
    DEBUG: bool = os.getenv("DEBUG", "False").lower() == "true"
    ALLOWED_ORIGINS: list = ["*"]
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

    SECRET_KEY: str = os.getenv("SECRET_KEY", "your-secret-key-change-in-production")
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = int(os.getenv("ACCESS_TOKEN_EXPIRE_MINUTES", "1440"))

    # "json" keeps everything in a single document on disk, "sql" goes through SQLAlchemy
    STORAGE_BACKEND: str = os.getenv("STORAGE_BACKEND", "json")
    DB_PATH: str = os.getenv("DB_PATH", "./db.json")
    DATABASE_URL: str = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./geopresence.db")
    STORAGE_TIMEOUT_SECONDS: float = float(os.getenv("STORAGE_TIMEOUT_SECONDS", "5"))

    CONVERSATION_LIMIT: int = int(os.getenv("CONVERSATION_LIMIT", "50"))
    DEFAULT_LAT: float = float(os.getenv("DEFAULT_LAT", "-6.2088"))
    DEFAULT_LNG: float = float(os.getenv("DEFAULT_LNG", "106.8456"))
    AVATAR_URL_TEMPLATE: str = os.getenv(
        "AVATAR_URL_TEMPLATE",
        "https://ui-avatars.com/api/?name={username}&background=1DB954&color=fff",
    )


settings = Settings()

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


def setup_logging(level: Optional[Union[str, int]] = None) -> None:
    if level is None:
        level = settings.LOG_LEVEL
    if isinstance(level, str):
        name = level.strip().upper()
        level = int(name) if name.isdigit() else logging.getLevelName(name)
        if not isinstance(level, int):
            level = logging.INFO

    # no-op when the server or the test runner already installed handlers
    logging.basicConfig(stream=sys.stdout, format=LOG_FORMAT)
    logging.captureWarnings(True)
    logging.getLogger().setLevel(level)
