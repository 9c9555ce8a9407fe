import os
from dotenv import load_dotenv

load_dotenv()


def _database_url() -> str:
    raw_url = os.getenv("DATABASE_URL", "").strip()
    if not raw_url:
        raise RuntimeError("DATABASE_URL must be set to connect to the database.")
    if raw_url.startswith("postgres://"):
        raw_url = raw_url.replace("postgres://", "postgresql://", 1)
    return raw_url


def _flag(name: str, default: str = "1") -> bool:
    return (os.getenv(name, default) or "").strip().lower() in {"1", "true", "yes", "on"}


class Config:
    SECRET_KEY = os.getenv("SECRET_KEY", "devkey")
    SQLALCHEMY_DATABASE_URI = _database_url()
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    MAX_CONTENT_LENGTH = int(os.getenv("MAX_CONTENT_LENGTH", 10 * 1024 * 1024))
    JSON_SORT_KEYS = False
    # Apply pending Alembic migrations when the app starts
    AUTO_MIGRATE = _flag("AUTO_MIGRATE", "1")

    # Bearer tokens
    JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY") or SECRET_KEY
    JWT_EXPIRES_HOURS = int(os.getenv("JWT_EXPIRES_HOURS", 24 * 7))

    # Bookkeeping defaults (UAE)
    DEFAULT_CURRENCY = os.getenv("DEFAULT_CURRENCY", "AED")
    DEFAULT_VAT_RATE = float(os.getenv("DEFAULT_VAT_RATE", 0.05))
    BALANCE_TOLERANCE = float(os.getenv("BALANCE_TOLERANCE", 0.01))

    # English is the primary UI language; Arabic is the secondary translation
    BABEL_DEFAULT_LOCALE = os.getenv("BABEL_DEFAULT_LOCALE", "en")
    BABEL_SUPPORTED_LOCALES = os.getenv("BABEL_SUPPORTED_LOCALES", "en,ar").split(",")

    MAIL_SERVER = os.getenv("MAIL_SERVER")
    MAIL_PORT = int(os.getenv("MAIL_PORT", 25) or 25)
    MAIL_USERNAME = os.getenv("MAIL_USERNAME")
    MAIL_PASSWORD = os.getenv("MAIL_PASSWORD")
    MAIL_USE_TLS = _flag("MAIL_USE_TLS", "0")
    MAIL_DEFAULT_SENDER = os.getenv("MAIL_DEFAULT_SENDER", "no-reply@bookkeeper.local")
    MAIL_SUPPRESS_SEND = _flag("MAIL_SUPPRESS_SEND", "0")

    # Optional off-site copies of backup archives
    B2_BUCKET_NAME = os.getenv("B2_BUCKET_NAME")
    B2_ENDPOINT = os.getenv("B2_ENDPOINT")
    B2_KEY_ID = os.getenv("B2_KEY_ID")
    B2_APPLICATION_KEY = os.getenv("B2_APPLICATION_KEY")
    B2_PUBLIC_URL = os.getenv("B2_PUBLIC_URL")

    LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")
    LOG_FILE = os.getenv("LOG_FILE")
