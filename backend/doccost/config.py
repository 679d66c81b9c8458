from __future__ import annotations

import os


def _split_names(raw: str) -> list[str]:
    return [name.strip() for name in raw.split(",") if name.strip()]


class Config:
    # Signs the session cookie that carries the client id and signed-in user.
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-change-me")
    DATABASE_URL = os.getenv("DATABASE_URL", "").strip()
    LOCAL_STATE_PATH = os.getenv("LOCAL_STATE_PATH", ".doccost/state.json").strip()
    DEFAULT_PRICE_PER_PAGE = os.getenv("DEFAULT_PRICE_PER_PAGE", "2.00")
    # Payers created for every saved batch unless the request names its own.
    DEFAULT_PAYERS = _split_names(os.getenv("DEFAULT_PAYERS", ""))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_UPLOAD_MB", "50")) * 1024 * 1024
