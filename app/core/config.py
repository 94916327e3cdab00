"""
Runtime configuration read from the environment (.env is loaded first).
Secrets are looked up through these module attributes at request time, so
tests and deployments can change them without re-importing route modules.
"""
import os
from pathlib import Path

from dotenv import load_dotenv

project_root = Path(__file__).resolve().parent.parent.parent
load_dotenv(project_root / ".env")


def _normalize_db_url(url: str) -> str:
    # Heroku/Render style URLs use the postgres:// scheme SQLAlchemy no longer accepts
    if url.startswith("postgres://"):
        return "postgresql://" + url[len("postgres://"):]
    return url


DATABASE_URL = _normalize_db_url(os.getenv("DATABASE_URL", "sqlite:///./assistant.db"))

# Razorpay (subscriptions + webhooks)
RAZORPAY_KEY_ID = os.getenv("RAZORPAY_KEY_ID", "").strip()
RAZORPAY_KEY_SECRET = os.getenv("RAZORPAY_KEY_SECRET", "").strip()
RAZORPAY_WEBHOOK_SECRET = os.getenv("RAZORPAY_WEBHOOK_SECRET", "").strip()
RAZORPAY_PLAN_ID = os.getenv("RAZORPAY_PLAN_ID", "").strip()
RAZORPAY_BASE_URL = os.getenv("RAZORPAY_BASE_URL", "https://api.razorpay.com/v1").rstrip("/")
RAZORPAY_TOTAL_COUNT = int(os.getenv("RAZORPAY_TOTAL_COUNT", "12"))

# Free tier
FREE_CREDITS_PER_DAY = int(os.getenv("FREE_CREDITS_PER_DAY", "15"))
PRELIMINARY_PERIOD_HOURS = int(os.getenv("PRELIMINARY_PERIOD_HOURS", "24"))

# Session tokens from the identity provider
AUTH_JWKS_URL = os.getenv("AUTH_JWKS_URL", "").strip()
AUTH_JWT_SECRET = os.getenv("AUTH_JWT_SECRET", "").strip()

# OpenAI-compatible completion backend
AI_API_URL = os.getenv("AI_API_URL", "").rstrip("/")
AI_API_KEY = os.getenv("AI_API_KEY", "")
AI_MODEL = os.getenv("AI_MODEL", "gemini-2.0-flash")

# Browser origins allowed by CORS
FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:3000")
CORS_ORIGINS = [origin.strip() for origin in os.getenv("CORS_ORIGINS", FRONTEND_URL).split(",") if origin.strip()]

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")


def razorpay_configured() -> bool:
    return bool(RAZORPAY_KEY_ID and RAZORPAY_KEY_SECRET and RAZORPAY_PLAN_ID)


def razorpay_missing_config_message() -> str:
    """Human-readable message listing which Razorpay env vars are missing."""
    missing_parts: list[str] = []
    if not RAZORPAY_KEY_ID:
        missing_parts.append("KEY_ID")
    if not RAZORPAY_KEY_SECRET:
        missing_parts.append("KEY_SECRET")
    if not RAZORPAY_PLAN_ID:
        missing_parts.append("PLAN_ID")
    missing = " ".join(missing_parts) if missing_parts else "UNKNOWN"
    return f"Payment system not configured. Missing: {missing}"
