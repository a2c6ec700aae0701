# backend/shopledger/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/shopledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///shopledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # All stored totals and balances are kept in this currency
    BASE_CURRENCY = os.environ.get("BASE_CURRENCY", "AFN").strip().upper()

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # Retries for lock/stale-version conflicts at the persistence layer
    COMMAND_RETRY_ATTEMPTS = int(os.environ.get("COMMAND_RETRY_ATTEMPTS", "3"))
