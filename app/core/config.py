from __future__ import annotations

import os
from datetime import timedelta


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret-key")
    SQLALCHEMY_DATABASE_URI = os.getenv(
        "DATABASE_URL",
        "sqlite:///maintenance.db",
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    # Persisted tenant choice lives in the permanent session cookie.
    PERMANENT_SESSION_LIFETIME = timedelta(days=int(os.getenv("SESSION_DAYS", "30")))

    STORAGE_ROOT = os.getenv("STORAGE_ROOT")
    PUBLIC_BASE_URL = os.getenv("PUBLIC_BASE_URL", "")
    REMITO_TEMPLATE_PATH = os.getenv("REMITO_TEMPLATE_PATH")

    BUSINESS_TIMEZONE = os.getenv("BUSINESS_TIMEZONE", "America/Argentina/Buenos_Aires")
    # Shared snapshot cache; disabled when REDIS_URL is unset
    REDIS_URL = os.getenv("REDIS_URL")
    SNAPSHOT_CACHE_SECONDS = float(os.getenv("SNAPSHOT_CACHE_SECONDS", "5"))
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
