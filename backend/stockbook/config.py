# backend/stockbook/config.py
from __future__ import annotations
import os


def _env_flag(name: str, default: bool = False) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/stockbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///stockbook.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # "depleting" tracks per-batch consumption; "recompute" re-walks full receipt history per sale
    FIFO_COSTING_STRATEGY = os.environ.get("FIFO_COSTING_STRATEGY", "depleting")

    # When FIFO history cannot cover a sale: False rejects it, True costs it at zero
    ZERO_COST_FALLBACK = _env_flag("ZERO_COST_FALLBACK", False)

    MAX_LINES_PER_CARTON = int(os.environ.get("MAX_LINES_PER_CARTON", "8"))

    CURRENCY_SYMBOL = os.environ.get("CURRENCY_SYMBOL", "GH₵")


class TestingConfig(Config):
    TESTING = True
    SQLALCHEMY_DATABASE_URI = "sqlite:///:memory:"
    FIFO_COSTING_STRATEGY = "depleting"
    ZERO_COST_FALLBACK = False
