"""
Configuration loader.
Reads settings from the .env file and makes them available to the rest of the app.
"""

import os
from dotenv import load_dotenv

load_dotenv()
# Fallback: .env at the repository root when running from backend/
load_dotenv(os.path.join(os.path.dirname(__file__), "../../.env"))


def _int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _list(name: str, default: str = "") -> list[str]:
    raw = os.getenv(name, default)
    return [item.strip() for item in raw.split(",") if item.strip()]


# Database — a hosted Postgres (e.g. Supabase) in production, SQLite file locally
DATABASE_URL = os.getenv("DATABASE_URL") or "sqlite:///./profreviews.db"

# Tokens
SECRET_KEY = os.getenv("JWT_SECRET", "change-me-please-this-is-not-a-secret-key")
ALGORITHM = os.getenv("ALGORITHM", "HS256")
ACCESS_TOKEN_DAYS = _int("ACCESS_TOKEN_DAYS", 30)

# Review access quota (anonymous and authenticated limits are independent)
REVIEW_ANON_LIMIT = _int("REVIEW_ANON_LIMIT", 3)
REVIEW_AUTHED_LIMIT = _int("REVIEW_AUTHED_LIMIT", 3)
REVIEW_WINDOW_HOURS = _int("REVIEW_WINDOW_HOURS", 24)

# Moderation
REPORT_HIDE_THRESHOLD = _int("REPORT_HIDE_THRESHOLD", 3)
ADMIN_EMAILS = {e.lower() for e in _list("ADMIN_EMAILS")}

# Only university accounts may register
ALLOWED_EMAIL_DOMAIN = os.getenv("ALLOWED_EMAIL_DOMAIN", "correo.unimet.edu.ve").lower()

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

CORS_ORIGINS = _list("CORS_ORIGINS", "http://localhost:8081,http://localhost:19006")
