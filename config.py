"""
Configuration Module for EduGenie
=================================

Manages environment variables and application settings for:
- Anthropic model selection
- Supabase database/auth access
- Google Calendar OAuth
- SMTP delivery of verification codes
- Document upload limits

Author: EduGenie Team
"""

import os
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


def _env_bool(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes"}


class Config:
    """Application configuration from environment variables"""

    # ===== Anthropic API =====
    ANTHROPIC_API_KEY = os.getenv("ANTHROPIC_API_KEY")
    ANTHROPIC_MODEL = os.getenv("ANTHROPIC_MODEL", "claude-sonnet-4-5-20250929")
    # Used where latency matters more than depth (notes, reminder parsing)
    ANTHROPIC_FAST_MODEL = os.getenv("ANTHROPIC_FAST_MODEL", "claude-haiku-4-5-20251001")

    # ===== Supabase =====
    SUPABASE_URL = os.getenv("SUPABASE_URL")
    SUPABASE_ANON_KEY = os.getenv("SUPABASE_ANON_KEY")
    SUPABASE_SERVICE_ROLE_KEY = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

    # ===== Google Calendar =====
    GOOGLE_CLIENT_ID = os.getenv("GOOGLE_CLIENT_ID")
    GOOGLE_CLIENT_SECRET = os.getenv("GOOGLE_CLIENT_SECRET")
    GOOGLE_REDIRECT_URI = os.getenv("GOOGLE_REDIRECT_URI")
    GOOGLE_OAUTH_STATE_SECRET = os.getenv("GOOGLE_OAUTH_STATE_SECRET")
    APP_URL = os.getenv("APP_URL", "http://localhost:3000")

    # ===== SMTP (verification codes) =====
    SMTP_HOST = os.getenv("SMTP_HOST")
    SMTP_PORT = int(os.getenv("SMTP_PORT", "587"))
    SMTP_USER = os.getenv("SMTP_USER")
    SMTP_PASS = os.getenv("SMTP_PASS")
    SMTP_SECURE = _env_bool("SMTP_SECURE")  # true for 465, false for STARTTLS
    SMTP_FROM = os.getenv("SMTP_FROM", "EduGenie <noreply@edugenie.com>")
    OTP_TTL_MINUTES = int(os.getenv("OTP_TTL_MINUTES", "10"))

    # ===== Course search =====
    COURSE_FETCHER_URL = os.getenv("COURSE_FETCHER_URL", "http://localhost:4000")

    # ===== File Size Limits (in bytes) =====
    MAX_DOCUMENT_SIZE = int(os.getenv("MAX_DOCUMENT_SIZE_MB", "50")) * 1024 * 1024  # Default: 50MB

    # ===== Supported File Formats =====
    DOCUMENT_FORMATS = {".pdf", ".docx", ".pptx", ".txt"}

    # ===== HTTP =====
    CORS_ORIGINS = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    @classmethod
    def smtp_configured(cls) -> bool:
        return bool(cls.SMTP_HOST and cls.SMTP_USER and cls.SMTP_PASS)

    @classmethod
    def supabase_configured(cls) -> bool:
        return bool(cls.SUPABASE_URL and cls.SUPABASE_ANON_KEY)

    @classmethod
    def require(cls, name: str) -> str:
        """
        Return a configuration value that a route cannot work without

        Raises:
            RuntimeError: If the value is not set
        """
        value = getattr(cls, name, None)
        if not value:
            raise RuntimeError(f"Missing {name} environment variable")
        return value

    # ===== Validation =====
    @classmethod
    def validate(cls):
        """Validate configuration on startup"""
        errors = []

        # Check Anthropic API key
        if not cls.ANTHROPIC_API_KEY:
            errors.append("ANTHROPIC_API_KEY is not set in .env file")

        # Supabase is optional, but a half-configured client is a mistake
        if bool(cls.SUPABASE_URL) != bool(cls.SUPABASE_ANON_KEY):
            errors.append("SUPABASE_URL and SUPABASE_ANON_KEY must be set together")

        # OAuth state can't be verified without a signing secret
        if cls.GOOGLE_CLIENT_ID and not cls.GOOGLE_OAUTH_STATE_SECRET:
            errors.append("GOOGLE_OAUTH_STATE_SECRET is required when GOOGLE_CLIENT_ID is set")

        if errors:
            error_msg = "Configuration errors:\n" + "\n".join(f"  - {err}" for err in errors)
            raise ValueError(error_msg)

        return True


# Singleton configuration instance
config = Config()
