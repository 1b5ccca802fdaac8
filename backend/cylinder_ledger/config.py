# backend/cylinder_ledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # SQLite DB stored next to the instance by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cylinder_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # "text" or "json"
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "text")

    # Best-effort GR side effects are retried through the outbox
    OUTBOX_MAX_ATTEMPTS = int(os.environ.get("OUTBOX_MAX_ATTEMPTS", "5"))
    OUTBOX_BACKOFF_BASE_SECONDS = float(os.environ.get("OUTBOX_BACKOFF_BASE_SECONDS", "2"))
    OUTBOX_BACKOFF_MAX_SECONDS = float(os.environ.get("OUTBOX_BACKOFF_MAX_SECONDS", "300"))
    OUTBOX_DISPATCH_INLINE = _env_bool("OUTBOX_DISPATCH_INLINE", True)

    MOVEMENT_LOG_MAX_LIMIT = int(os.environ.get("MOVEMENT_LOG_MAX_LIMIT", "1000"))
    LARGE_INITIALIZATION_THRESHOLD = int(os.environ.get("LARGE_INITIALIZATION_THRESHOLD", "50"))
