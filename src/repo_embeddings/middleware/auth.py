"""
Shared-secret authentication for the HTTP surface.

- Webhooks: X-Gitlab-Token compared with WEBHOOK_SECRET
- API routes: X-API-Key compared with API_KEY

An unset secret disables the corresponding check (logged once at startup).
"""

import hmac
import logging
from typing import Callable, Optional

from fastapi import HTTPException, Request

logger = logging.getLogger(__name__)

WEBHOOK_TOKEN_HEADER = "X-Gitlab-Token"
API_KEY_HEADER = "X-API-Key"


class AuthenticationError(Exception):
    """Raised when authentication fails."""

    pass


class AuthMiddleware:
    """
    Validates a header value against a configured secret.

    Usage:
        auth = AuthMiddleware(secret=settings.api_key, header_name="X-API-Key")
        auth.authenticate(request.headers.get("X-API-Key"))
    """

    def __init__(self, secret: Optional[str], header_name: str):
        """
        Initialize authentication middleware.

        Args:
            secret: Expected header value (None disables the check)
            header_name: Request header carrying the credential
        """
        self.secret = secret
        self.header_name = header_name

        if not self.secret:
            logger.warning(f"No secret configured for {header_name}; requests are not authenticated")

    @property
    def enabled(self) -> bool:
        return bool(self.secret)

    def authenticate(self, value: Optional[str]) -> None:
        """
        Check a credential.

        Raises:
            AuthenticationError: If the credential is missing or wrong
        """
        if not self.enabled:
            return

        if not value:
            raise AuthenticationError(f"Missing {self.header_name} header")

        if not self._constant_time_compare(value, self.secret):
            raise AuthenticationError(f"Invalid {self.header_name}")

    @staticmethod
    def _constant_time_compare(a: str, b: str) -> bool:
        return hmac.compare_digest(a.encode("utf-8"), b.encode("utf-8"))

    def dependency(self) -> Callable[[Request], None]:
        """FastAPI dependency that rejects unauthenticated requests with 401."""

        def verify(request: Request) -> None:
            try:
                self.authenticate(request.headers.get(self.header_name))
            except AuthenticationError as e:
                logger.warning(f"Authentication failed for {request.url.path}: {e}")
                raise HTTPException(status_code=401, detail={"error": "Unauthorized"})

        return verify


def webhook_auth(secret: Optional[str]) -> AuthMiddleware:
    return AuthMiddleware(secret, WEBHOOK_TOKEN_HEADER)


def api_key_auth(api_key: Optional[str]) -> AuthMiddleware:
    return AuthMiddleware(api_key, API_KEY_HEADER)
