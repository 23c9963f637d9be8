# backend/vault_ledger/config.py
from __future__ import annotations
import os


def _face_values(raw: str) -> tuple[int, ...]:
    values = sorted({int(part) for part in raw.split(",") if part.strip()}, reverse=True)
    if not values or any(v <= 0 for v in values):
        raise ValueError("VAULT_DENOMINATIONS must list positive face values")
    return tuple(values)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/vault_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///vault_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Bill face values a count must cover (largest first)
    VAULT_DENOMINATIONS = _face_values(os.environ.get("VAULT_DENOMINATIONS", "100,50,20,10,5,1"))

    # Single audit comment policy (manual reconciliation, shift rejection)
    VAULT_AUDIT_COMMENT_MIN_LENGTH = int(os.environ.get("VAULT_AUDIT_COMMENT_MIN_LENGTH", "10"))

    # Writer serialisation
    VAULT_LOCK_TIMEOUT_SECONDS = float(os.environ.get("VAULT_LOCK_TIMEOUT_SECONDS", "5"))
    VAULT_RETRY_ATTEMPTS = int(os.environ.get("VAULT_RETRY_ATTEMPTS", "3"))
    VAULT_RETRY_BACKOFF_SECONDS = float(os.environ.get("VAULT_RETRY_BACKOFF_SECONDS", "0.1"))
