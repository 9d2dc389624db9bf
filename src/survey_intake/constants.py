"""Intake constants shared across the SDK.

Every limit can be overridden via an environment variable so deployments
can tune quotas and windows without code changes.
"""

import os

_MIB = 1024 * 1024

# --- Sessions ---
# Horizon between session creation and expiry.
SESSION_TTL_HOURS = int(os.getenv("SESSION_TTL_HOURS", "48"))

# Locales with translated questionnaires; anything else falls back to DEFAULT_LOCALE.
SUPPORTED_LOCALES: tuple[str, ...] = tuple(
    loc.strip()
    for loc in os.getenv("SUPPORTED_LOCALES", "en,cs,de").split(",")
    if loc.strip()
)
DEFAULT_LOCALE = os.getenv("DEFAULT_LOCALE", "en")

# Salt mixed into the SHA-256 of client IPs before storage.
IP_HASH_SALT = os.getenv("IP_HASH_SALT", "")

# --- Rate limiting (fixed window) ---
RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("RATE_LIMIT_WINDOW_SECONDS", "60"))
RATE_LIMIT_MAX_REQUESTS = int(os.getenv("RATE_LIMIT_MAX_REQUESTS", "10"))
RATE_LIMIT_SWEEP_SECONDS = int(os.getenv("RATE_LIMIT_SWEEP_SECONDS", "300"))

# --- CSRF (double-submit cookie) ---
CSRF_COOKIE_NAME = os.getenv("CSRF_COOKIE_NAME", "csrf_token")
CSRF_HEADER_NAME = os.getenv("CSRF_HEADER_NAME", "x-csrf-token")
CSRF_TOKEN_BYTES = 32
CSRF_COOKIE_MAX_AGE = 24 * 60 * 60

# --- Uploads: images attached to answers ---
ANSWER_IMAGE_MAX_FILE_SIZE = int(os.getenv("ANSWER_IMAGE_MAX_FILE_SIZE", str(5 * _MIB)))
ANSWER_IMAGE_SESSION_CAP = int(os.getenv("ANSWER_IMAGE_SESSION_CAP", str(50 * _MIB)))
ANSWER_IMAGE_BUCKET = os.getenv("ANSWER_IMAGE_BUCKET", "form-uploads")
ALLOWED_IMAGE_TYPES: frozenset[str] = frozenset({
    "image/jpeg",
    "image/jpg",
    "image/png",
    "image/gif",
    "image/webp",
    "image/svg+xml",
})

# --- Uploads: client project files ---
CLIENT_UPLOAD_MAX_FILE_SIZE = int(os.getenv("CLIENT_UPLOAD_MAX_FILE_SIZE", str(5 * _MIB)))
CLIENT_UPLOAD_SESSION_CAP = int(os.getenv("CLIENT_UPLOAD_SESSION_CAP", str(100 * _MIB)))
CLIENT_UPLOAD_MAX_FILES = int(os.getenv("CLIENT_UPLOAD_MAX_FILES", "20"))
CLIENT_UPLOAD_BUCKET = os.getenv("CLIENT_UPLOAD_BUCKET", "client-uploads")
ALLOWED_CLIENT_UPLOAD_TYPES: frozenset[str] = ALLOWED_IMAGE_TYPES - {"image/svg+xml"} | {
    "application/pdf",
    "application/msword",
    "application/vnd.openxmlformats-officedocument.wordprocessingml.document",
    "text/plain",
}

# --- Backend calls ---
# Upper bound for any single persistence/object-storage call.
BACKEND_TIMEOUT_SECONDS = float(os.getenv("BACKEND_TIMEOUT_SECONDS", "60"))

# --- Text answers ---
MAX_TEXT_LENGTH = int(os.getenv("MAX_TEXT_LENGTH", "10000"))

# Bounds applied to rating questions that do not declare their own.
DEFAULT_RATING_MIN = 1
DEFAULT_RATING_MAX = 5

# --- Client cache ---
CLIENT_CACHE_TTL_HOURS = int(os.getenv("CLIENT_CACHE_TTL_HOURS", "24"))
