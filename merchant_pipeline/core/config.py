import os
import logging
from dotenv import load_dotenv

load_dotenv()

logger = logging.getLogger(__name__)


def _int_env(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        raise RuntimeError(f"Invalid integer for {name}: {raw!r}")


def _float_env(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return float(raw)
    except ValueError:
        raise RuntimeError(f"Invalid number for {name}: {raw!r}")


class Settings:
    PROJECT_NAME: str = "Merchant Onboarding Pipeline"

    MONGODB_URI: str = os.getenv("MONGODB_URI")
    MONGODB_DB_NAME: str = os.getenv("MONGODB_DB_NAME")

    SUPABASE_URL: str = os.getenv("SUPABASE_URL")
    SUPABASE_SERVICE_ROLE: str = os.getenv("SUPABASE_SERVICE_ROLE")
    SUPABASE_ANON_PUBLIC: str = os.getenv("SUPABASE_ANON_PUBLIC")
    STORAGE_BUCKET: str = os.getenv("STORAGE_BUCKET", "merchant-uploads")

    AIRTABLE_API_KEY: str = os.getenv("AIRTABLE_API_KEY")
    AIRTABLE_BASE_ID: str = os.getenv("AIRTABLE_BASE_ID")
    AIRTABLE_TABLE_ID: str = os.getenv("AIRTABLE_TABLE_ID")
    AIRTABLE_API_ROOT: str = os.getenv("AIRTABLE_API_ROOT", "https://api.airtable.com/v0")

    WEBHOOK_URL: str = os.getenv("WEBHOOK_URL")

    RESEND_API_KEY: str = os.getenv("RESEND_API_KEY")
    RESEND_API_ROOT: str = os.getenv("RESEND_API_ROOT", "https://api.resend.com")
    EMAIL_FROM: str = os.getenv("EMAIL_FROM", "Lumino <no-reply@golumino.com>")
    ADMIN_NOTIFICATION_EMAIL: str = os.getenv("ADMIN_NOTIFICATION_EMAIL", "apps@golumino.com")
    INVITE_BASE_URL: str = os.getenv("INVITE_BASE_URL", "https://apply.golumino.com")

    JWT_SECRET_KEY: str = os.getenv("JWT_SECRET_KEY")
    JWT_ALGORITHM: str = "HS256"
    JWT_ACCESS_TOKEN_EXPIRE_MINUTES: int = 30
    ADMIN_EMAIL_DOMAIN: str = os.getenv("ADMIN_EMAIL_DOMAIN", "golumino.com")

    CLIENT_URL: str = os.getenv("CLIENT_URL", "http://localhost:3000")

    # Upload coordinator
    MAX_UPLOAD_BYTES: int = _int_env("MAX_UPLOAD_BYTES", 8 * 1024 * 1024)
    UPLOAD_MAX_ATTEMPTS: int = _int_env("UPLOAD_MAX_ATTEMPTS", 3)
    UPLOAD_BACKOFF_SECONDS: float = _float_env("UPLOAD_BACKOFF_SECONDS", 1.0)
    UPLOAD_PACING_SECONDS: float = _float_env("UPLOAD_PACING_SECONDS", 0.1)

    # Batch invites
    INVITE_BATCH_SIZE: int = _int_env("INVITE_BATCH_SIZE", 10)
    INVITE_BATCH_DELAY_SECONDS: float = _float_env("INVITE_BATCH_DELAY_SECONDS", 0.1)
    EMAIL_MAX_ATTEMPTS: int = _int_env("EMAIL_MAX_ATTEMPTS", 3)
    EMAIL_BACKOFF_SECONDS: float = _float_env("EMAIL_BACKOFF_SECONDS", 1.0)

    # Outbound HTTP
    HTTP_TIMEOUT_SECONDS: float = _float_env("HTTP_TIMEOUT_SECONDS", 30.0)
    DOWNLOAD_TIMEOUT_SECONDS: float = _float_env("DOWNLOAD_TIMEOUT_SECONDS", 10.0)

    REQUIRED = (
        "MONGODB_URI",
        "MONGODB_DB_NAME",
        "SUPABASE_URL",
        "AIRTABLE_API_KEY",
        "AIRTABLE_BASE_ID",
        "AIRTABLE_TABLE_ID",
        "WEBHOOK_URL",
        "RESEND_API_KEY",
        "JWT_SECRET_KEY",
    )

    def missing(self) -> list:
        missing = [name for name in self.REQUIRED if not getattr(self, name, None)]
        if not (self.SUPABASE_SERVICE_ROLE or self.SUPABASE_ANON_PUBLIC):
            missing.append("SUPABASE_SERVICE_ROLE")
        return missing

    def validate(self) -> "Settings":
        """Fail fast when any external service is not configured.

        Called once at process start, before any client is built.
        """
        missing = self.missing()
        if missing:
            logger.error(f"Missing required configuration: {', '.join(missing)}")
            raise RuntimeError(f"Configuration missing: set {', '.join(missing)}")
        if self.MAX_UPLOAD_BYTES <= 0 or self.UPLOAD_MAX_ATTEMPTS <= 0 or self.INVITE_BATCH_SIZE <= 0:
            raise RuntimeError("Upload limits and batch size must be positive")
        return self

    def describe(self) -> dict:
        """Redacted view of the loaded settings for startup logs."""
        return {
            "SUPABASE_URL": _mask_url(self.SUPABASE_URL) if self.SUPABASE_URL else None,
            "SUPABASE_SERVICE_ROLE": _mask_secret(self.SUPABASE_SERVICE_ROLE),
            "AIRTABLE_API_KEY": _mask_secret(self.AIRTABLE_API_KEY),
            "RESEND_API_KEY": _mask_secret(self.RESEND_API_KEY),
            "JWT_SECRET_KEY": _mask_secret(self.JWT_SECRET_KEY),
            "WEBHOOK_URL": _mask_url(self.WEBHOOK_URL) if self.WEBHOOK_URL else None,
            "STORAGE_BUCKET": self.STORAGE_BUCKET,
        }


def _mask_secret(val: str) -> str:
    if not val:
        return "<missing>"
    if len(val) <= 8:
        return "*" * len(val)
    return f"{val[:4]}...{val[-4:]}"


def _mask_url(url: str) -> str:
    # Keep scheme and host, but strip credentials and path for safety
    try:
        from urllib.parse import urlparse
        p = urlparse(url)
        netloc = p.hostname or ""
        if p.port:
            netloc = f"{netloc}:{p.port}"
        return f"{p.scheme}://{netloc}"
    except Exception:
        return _mask_secret(url)


settings = Settings()
