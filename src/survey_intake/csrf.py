"""Double-submit-cookie CSRF protection.

A random token is handed to the browser in a cookie that page scripts can
read; every mutating request must echo the same value in a custom header.
No server-side registry exists: a cross-site attacker cannot read the
cookie, so it cannot forge the header.
"""

import hmac
import logging
import secrets

from survey_intake.constants import (
    CSRF_COOKIE_MAX_AGE,
    CSRF_COOKIE_NAME,
    CSRF_HEADER_NAME,
    CSRF_TOKEN_BYTES,
)
from survey_intake.errors import CsrfError

logger = logging.getLogger(__name__)


class CsrfGuard:
    """Issues and verifies double-submit tokens.

    Args:
        cookie_name: cookie that carries the token
        header_name: request header that must echo it
        secure_cookie: set the ``Secure`` flag (production over HTTPS)
    """

    def __init__(
        self,
        cookie_name: str = CSRF_COOKIE_NAME,
        header_name: str = CSRF_HEADER_NAME,
        secure_cookie: bool = False,
    ) -> None:
        self.cookie_name = cookie_name
        self.header_name = header_name
        self.secure_cookie = secure_cookie

    @staticmethod
    def generate_token() -> str:
        """Return a fresh 64-character hex token."""
        return secrets.token_hex(CSRF_TOKEN_BYTES)

    @staticmethod
    def validate(header_token: str | None, cookie_token: str | None) -> bool:
        """True only when both tokens are present and identical."""
        if not header_token or not cookie_token:
            return False
        # Constant-time comparison to prevent timing side-channels.
        return hmac.compare_digest(
            header_token.encode("utf-8"), cookie_token.encode("utf-8"),
        )

    def require(self, header_token: str | None, cookie_token: str | None) -> None:
        """Raise :class:`CsrfError` unless :meth:`validate` passes."""
        if not self.validate(header_token, cookie_token):
            logger.warning(
                "CSRF validation failed (header=%s, cookie=%s)",
                "present" if header_token else "missing",
                "present" if cookie_token else "missing",
            )
            raise CsrfError()

    def cookie_kwargs(self) -> dict:
        """Keyword arguments for ``Response.set_cookie``.

        Not HttpOnly: page scripts must read the value to copy it into the
        header.
        """
        return {
            "key": self.cookie_name,
            "httponly": False,
            "secure": self.secure_cookie,
            "samesite": "strict",
            "max_age": CSRF_COOKIE_MAX_AGE,
            "path": "/",
        }
