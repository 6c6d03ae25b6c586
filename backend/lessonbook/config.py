"""Application settings and validation."""

import os
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse


class Settings:
    ENV: str
    DATA_DIR: Path
    DATABASE_URL: Optional[str]
    STORE_TIMEOUT_SECONDS: float
    LOG_LEVEL: str
    ALLOW_DEV_CORS: bool

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
        self.DATABASE_URL = os.getenv("DATABASE_URL") or None
        self.STORE_TIMEOUT_SECONDS = float(os.getenv("STORE_TIMEOUT_SECONDS", "10"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        self._validate()

    @property
    def use_remote_store(self) -> bool:
        return self.DATABASE_URL is not None

    def _validate(self):
        if self.STORE_TIMEOUT_SECONDS <= 0:
            raise RuntimeError("STORE_TIMEOUT_SECONDS must be positive")
        if self.DATABASE_URL and not urlparse(self.DATABASE_URL).scheme:
            raise RuntimeError("DATABASE_URL must include a scheme (e.g. postgresql://)")
