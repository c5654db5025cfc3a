# carmarket/config.py
import os

# Load .env as early as possible so every module sees the same values
from dotenv import load_dotenv
load_dotenv()


def _bool(name: str, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


def _int(name: str, default: int) -> int:
    try:
        return int(os.getenv(name, default))
    except (TypeError, ValueError):
        return default


class Config:
    # =========================
    # Core
    # =========================
    SECRET_KEY = os.getenv("SECRET_KEY", "dev-secret")
    BASE_URL = (os.getenv("BASE_URL") or "http://localhost:8000").rstrip("/")
    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

    # =========================
    # Database
    # =========================
    DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./carmarket.db")

    # =========================
    # Payments (Stripe)
    # =========================
    STRIPE_SECRET_KEY = (os.getenv("STRIPE_SECRET_KEY") or "").strip()
    STRIPE_PUBLISHABLE_KEY = (os.getenv("STRIPE_PUBLISHABLE_KEY") or "").strip()
    STRIPE_WEBHOOK_SECRET = (os.getenv("STRIPE_WEBHOOK_SECRET") or "").strip()
    PAYMENT_CURRENCY = (os.getenv("PAYMENT_CURRENCY") or "mad").lower()

    # =========================
    # Email
    # =========================
    # sendgrid | smtp | mock
    EMAIL_PROVIDER = (os.getenv("EMAIL_PROVIDER") or "smtp").lower()
    SENDGRID_API_KEY = os.getenv("SENDGRID_API_KEY", "")
    SMTP_HOST = os.getenv("SMTP_HOST", "")
    SMTP_PORT = _int("SMTP_PORT", 587)
    SMTP_USER = os.getenv("SMTP_USER", "")
    SMTP_PASSWORD = os.getenv("SMTP_PASSWORD", "")
    SMTP_USE_TLS = _bool("SMTP_USE_TLS", True)
    FROM_EMAIL = os.getenv("FROM_EMAIL", "noreply@carmarket.local")
    FROM_NAME = os.getenv("FROM_NAME", "CarMarket")
    ADMIN_EMAIL = os.getenv("ADMIN_EMAIL", "")
    SUPPORT_EMAIL = os.getenv("SUPPORT_EMAIL", "")

    # =========================
    # Maps / media
    # =========================
    GOOGLE_MAPS_API_KEY = os.getenv("GOOGLE_MAPS_API_KEY", "")
    CLOUDINARY_CLOUD_NAME = os.getenv("CLOUDINARY_CLOUD_NAME", "")
    CLOUDINARY_API_KEY = os.getenv("CLOUDINARY_API_KEY", "")
    CLOUDINARY_API_SECRET = os.getenv("CLOUDINARY_API_SECRET", "")

    # Seeded on startup when both are set
    ADMIN_SEED_EMAIL = os.getenv("ADMIN_SEED_EMAIL", "")
    ADMIN_SEED_PASSWORD = os.getenv("ADMIN_SEED_PASSWORD", "")


config = Config()
