# backend/cylinder_ledger/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/cylinder_ledger.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///cylinder_ledger.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Customer receivables fall due this many days after the settlement date
    RECEIVABLE_GRACE_DAYS = int(os.environ.get("RECEIVABLE_GRACE_DAYS", "30"))

    # Eager mode runs ledger recomputes inline right after the settlement commits
    LEDGER_WORKER_EAGER = _env_bool("LEDGER_WORKER_EAGER", False)
    LEDGER_WORKER_THREADS = int(os.environ.get("LEDGER_WORKER_THREADS", "4"))
    LEDGER_RECOMPUTE_MAX_ATTEMPTS = int(os.environ.get("LEDGER_RECOMPUTE_MAX_ATTEMPTS", "5"))
    LEDGER_RECOMPUTE_BACKOFF_SECONDS = float(os.environ.get("LEDGER_RECOMPUTE_BACKOFF_SECONDS", "2.0"))
