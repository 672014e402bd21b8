"""Webhook ingress: verify, normalize, apply, broadcast."""

from .runtime import IGNORED_OUTCOME, IngestState, WebhookRuntime, WebhookState
from .router import create_webhook_router

__all__ = [
    "IGNORED_OUTCOME",
    "IngestState",
    "WebhookRuntime",
    "WebhookState",
    "create_webhook_router",
]
