"""
Webhook intake for repository change events.
"""

from .webhook_handler import (
    ChangeEvent,
    DispatchResult,
    EventState,
    WebhookError,
    WebhookHandler,
    setup_webhook_routes,
)

__all__ = [
    "ChangeEvent",
    "DispatchResult",
    "EventState",
    "WebhookError",
    "WebhookHandler",
    "setup_webhook_routes",
]
