import os
from pathlib import Path
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Library
    LIBRARY_DIR: Optional[Path] = None

    # Bookkeeping files live relative to the working directory by default
    DATA_DIR: Path = Path(os.getenv("RIVERTONE_DATA_DIR", "."))
    INDEX_FILE_NAME: str = ".db.json"
    STREAM_DIR_NAME: str = ".stream"

    @property
    def INDEX_PATH(self) -> Path:
        return self.DATA_DIR / self.INDEX_FILE_NAME

    @property
    def STREAM_DIR(self) -> Path:
        return self.DATA_DIR / self.STREAM_DIR_NAME

    # Identifiers
    ID_LENGTH: int = 8

    # Probing: ffprobe reports probe_score in 0..100
    PROBE_SCORE_THRESHOLD: int = 25

    # External tools (explicit path overrides PATH lookup)
    FFMPEG_PATH: Optional[str] = None
    FFPROBE_PATH: Optional[str] = None

    # Server
    HOST: str = "0.0.0.0"
    PORT: int = 21313
    SSL_CERTFILE: Optional[Path] = None
    SSL_KEYFILE: Optional[Path] = None
    RELOAD_ON_STARTUP: bool = True
    SLOW_REQUEST_THRESHOLD: float = 5.0

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_RETENTION: str = "10 days"
    LOG_ROTATION: str = "10 MB"
    LOG_TO_FILE: bool = True


settings = Settings()
