# backend/settlement/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    # Optional "SECRET_KEY", with default dev key. Also keys card tokenization.
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/settlement.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///settlement.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    CURRENCY = os.environ.get("CURRENCY", "UGX")

    # Invoice numbering
    INVOICE_PREFIX = os.environ.get("INVOICE_PREFIX", "INV")
    INVOICE_MAX_ATTEMPTS = int(os.environ.get("INVOICE_MAX_ATTEMPTS", "3"))
    INVOICE_RETRY_DELAY_SECONDS = float(os.environ.get("INVOICE_RETRY_DELAY_SECONDS", "0.1"))

    # Cash drawer
    DRAWER_DISCREPANCY_TOLERANCE = os.environ.get("DRAWER_DISCREPANCY_TOLERANCE", "0.01")
    REQUIRE_DRAWER_FOR_CASH_CHANGE = _env_bool("REQUIRE_DRAWER_FOR_CASH_CHANGE", True)
