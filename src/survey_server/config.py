"""Server configuration, read from environment variables.

All settings have sensible defaults for local development.  Quotas, windows
and the session horizon are SDK constants (see ``survey_intake.constants``)
and are overridden through their own environment variables.
"""

import os
from dataclasses import dataclass, field


def _flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


@dataclass(frozen=True)
class ServerSettings:
    """Immutable server configuration read from environment at startup."""

    # Network
    host: str = "0.0.0.0"
    port: int = 8080

    # CORS: comma-separated origins, or "*" for local development
    cors_origins: list[str] = field(default_factory=lambda: ["*"])

    # Questionnaire YAML directory (None means questionnaires/ at repo root)
    questionnaire_dir: str | None = None

    # Logging
    log_level: str = "INFO"

    # Rate limiting applies to every path under this prefix
    rate_limit_prefix: str = "/api/"
    # limits storage URI such as "redis://redis:6379"; None keeps
    # counters in process memory (single instance only)
    rate_limit_storage_uri: str | None = None

    # Use the first X-Forwarded-For hop as client IP (behind a proxy)
    trust_forwarded_for: bool = True

    # Secure flag on the CSRF cookie (enable behind HTTPS)
    secure_cookies: bool = False

    # Object storage (uploads answer 500 when unset)
    supabase_url: str | None = None
    supabase_service_key: str | None = None

    # Admin notification mail (skipped when smtp_host or admin_email is unset)
    smtp_host: str | None = None
    smtp_port: int = 587
    smtp_username: str | None = None
    smtp_password: str | None = None
    smtp_from: str = "noreply@localhost"
    smtp_starttls: bool = True
    admin_email: str | None = None


def load_settings() -> ServerSettings:
    """Build settings from ``SERVER_*`` and service-specific environment variables."""
    raw_origins = os.getenv("SERVER_CORS_ORIGINS", "*")
    origins = [o.strip() for o in raw_origins.split(",") if o.strip()]

    return ServerSettings(
        host=os.getenv("SERVER_HOST", "0.0.0.0"),
        port=int(os.getenv("SERVER_PORT", "8080")),
        cors_origins=origins,
        questionnaire_dir=os.getenv("SERVER_QUESTIONNAIRE_DIR") or None,
        log_level=os.getenv("SERVER_LOG_LEVEL", "INFO").upper(),
        rate_limit_prefix=os.getenv("RATE_LIMIT_PREFIX", "/api/"),
        rate_limit_storage_uri=os.getenv("RATE_LIMIT_STORAGE_URI") or None,
        trust_forwarded_for=_flag("TRUST_FORWARDED_FOR", "true"),
        secure_cookies=_flag("SECURE_COOKIES"),
        supabase_url=os.getenv("SUPABASE_URL") or None,
        supabase_service_key=os.getenv("SUPABASE_SERVICE_ROLE_KEY") or None,
        smtp_host=os.getenv("SMTP_HOST") or None,
        smtp_port=int(os.getenv("SMTP_PORT", "587")),
        smtp_username=os.getenv("SMTP_USER") or None,
        smtp_password=os.getenv("SMTP_PASSWORD") or None,
        smtp_from=os.getenv("SMTP_FROM", "noreply@localhost"),
        smtp_starttls=_flag("SMTP_STARTTLS", "true"),
        admin_email=os.getenv("ADMIN_EMAIL") or None,
    )
