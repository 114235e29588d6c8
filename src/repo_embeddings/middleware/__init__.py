"""
Middleware package.

Shared-secret authentication for webhook deliveries and API routes.
"""

from .auth import AuthenticationError, AuthMiddleware, api_key_auth, webhook_auth

__all__ = ["AuthenticationError", "AuthMiddleware", "api_key_auth", "webhook_auth"]
