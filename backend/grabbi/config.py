# backend/grabbi/config.py
from __future__ import annotations
import os

from dotenv import load_dotenv

load_dotenv()


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


class Config:
    # Used to key token hashes; override in every deployed environment
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",
        "sqlite:///grabbi.sqlite3",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Object store (GCS through its S3-compatible interoperability API)
    STORAGE_BUCKET = os.environ.get("STORAGE_BUCKET", "")
    STORAGE_ENDPOINT_URL = os.environ.get("STORAGE_ENDPOINT_URL", "https://storage.googleapis.com")
    STORAGE_ACCESS_KEY_ID = os.environ.get("STORAGE_ACCESS_KEY_ID")
    STORAGE_SECRET_ACCESS_KEY = os.environ.get("STORAGE_SECRET_ACCESS_KEY")
    STORAGE_REGION = os.environ.get("STORAGE_REGION", "auto")

    # Outbound email
    RESEND_API_KEY = os.environ.get("RESEND_API_KEY")
    MAIL_FROM = os.environ.get("MAIL_FROM", "Grabbi <orders@grabbi.local>")

    # Per-role frontends (password reset links, CORS)
    FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:5173")
    ADMIN_URL = os.environ.get("ADMIN_URL", "http://localhost:5174")
    FRANCHISE_URL = os.environ.get("FRANCHISE_URL", "http://localhost:5175")
    CORS_ORIGINS = [
        o.strip()
        for o in os.environ.get("CORS_ORIGINS", f"{FRONTEND_URL},{ADMIN_URL},{FRANCHISE_URL}").split(",")
        if o.strip()
    ]

    # Batch import concurrency bounds
    IMPORT_WORKERS = _env_int("IMPORT_WORKERS", 5)
    IMAGE_UPLOAD_CONCURRENCY = _env_int("IMAGE_UPLOAD_CONCURRENCY", 3)
    DELETE_CONCURRENCY = _env_int("DELETE_CONCURRENCY", 5)
    BATCH_JOB_TTL_SECONDS = _env_int("BATCH_JOB_TTL_SECONDS", 3600)
    IMAGE_DOWNLOAD_TIMEOUT = _env_float("IMAGE_DOWNLOAD_TIMEOUT", 30.0)

    # Delivery defaults when an order has no franchise
    DEFAULT_DELIVERY_FEE = _env_float("DEFAULT_DELIVERY_FEE", 3.75)
    DEFAULT_FREE_DELIVERY_MIN = _env_float("DEFAULT_FREE_DELIVERY_MIN", 20.0)

    # IANA zone the store hours are kept in; blank means the server's local time
    STORE_TIMEZONE = os.environ.get("STORE_TIMEZONE", "")

    ACCESS_TOKEN_TTL_MINUTES = _env_int("ACCESS_TOKEN_TTL_MINUTES", 60)
    REFRESH_TOKEN_TTL_DAYS = _env_int("REFRESH_TOKEN_TTL_DAYS", 7)
    PASSWORD_RESET_TTL_MINUTES = _env_int("PASSWORD_RESET_TTL_MINUTES", 60)

    # Requests per window per client address on the sensitive auth routes
    AUTH_RATE_LIMIT = _env_int("AUTH_RATE_LIMIT", 10)
    AUTH_RATE_WINDOW_SECONDS = _env_int("AUTH_RATE_WINDOW_SECONDS", 60)

    PORT = _env_int("PORT", 8080)
