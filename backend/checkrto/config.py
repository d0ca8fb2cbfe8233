# backend/checkrto/config.py
from __future__ import annotations
import os


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/checkrto.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///checkrto.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Days after the first inspection during which a Condicional result
    # may still be followed by a second inspection
    SECOND_INSPECTION_WINDOW_DAYS = int(os.environ.get("SECOND_INSPECTION_WINDOW_DAYS", "60"))

    # 0 = try every candidate of the snapshot read by auto-assign
    STICKER_AUTO_ASSIGN_MAX_ATTEMPTS = int(os.environ.get("STICKER_AUTO_ASSIGN_MAX_ATTEMPTS", "0"))

    # "certificate" -> Emitir CRT, "queue" -> A Inspeccionar
    FIRST_RESULT_ROUTING = os.environ.get("FIRST_RESULT_ROUTING", "certificate")

    DB_RETRY_ATTEMPTS = int(os.environ.get("DB_RETRY_ATTEMPTS", "3"))
    DB_RETRY_BACKOFF = float(os.environ.get("DB_RETRY_BACKOFF", "0.05"))
