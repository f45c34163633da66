# backend/pharmapos/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/pharmapos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///pharmapos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Lots expiring within this many days show up in stock alerts
    NEAR_EXPIRY_DAYS = int(os.environ.get("NEAR_EXPIRY_DAYS", "30"))

    # Allowed gap between a client-supplied theoretical total and the recomputed one
    CASH_CLOSING_TOLERANCE_CENTS = int(os.environ.get("CASH_CLOSING_TOLERANCE_CENTS", "1"))

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Committed mutations go to app.logger through audit_hooks.log_listener
    AUDIT_LOG_ENABLED = os.environ.get("AUDIT_LOG_ENABLED", "1") != "0"

    CORS_ALLOWED_ORIGINS = {
        "http://localhost:5173",
        "http://127.0.0.1:5173",
    }
