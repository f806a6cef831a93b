# backend/tillpoint/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/tillpoint.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///tillpoint.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bounded retry for lock/serialization failures
    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF_BASE = float(os.environ.get("DB_RETRY_BACKOFF_BASE", "0.1"))

    DEFAULT_SALE_LOCATION = os.environ.get("DEFAULT_SALE_LOCATION", "Main POS")

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
