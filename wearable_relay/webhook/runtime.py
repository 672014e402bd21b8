from __future__ import annotations

from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict

from ..registrar import WebhookRegistrar
from ..sessions import SessionRegistry
from ..state_store import UserStateStore


class IngestState(str, Enum):
    """Per-request lifecycle of an inbound webhook.

    An unknown event type ends the request early with a 200. It is counted under the
    separate outcome ``IGNORED_OUTCOME`` rather than ``FAILED`` so that /health keeps
    forward-compatible skips apart from real failures.
    """

    RECEIVED = "received"
    VERIFIED = "verified"
    NORMALIZED = "normalized"
    APPLIED = "applied"
    BROADCAST = "broadcast"
    ACKNOWLEDGED = "acknowledged"
    REJECTED = "rejected"
    FAILED = "failed"


# Terminal outcome for acknowledged-but-skipped deliveries (unknown event types).
IGNORED_OUTCOME = "ignored"


@dataclass
class WebhookState:
    # Terminal outcomes seen since startup, keyed by IngestState value or IGNORED_OUTCOME.
    outcomes: Counter = field(default_factory=Counter)

    def record(self, outcome: str) -> None:
        self.outcomes[outcome] += 1

    def as_dict(self) -> Dict[str, int]:
        return dict(self.outcomes)


@dataclass
class WebhookRuntime:
    # Core dependencies (injected from wearable_relay.main)
    store: UserStateStore
    sessions: SessionRegistry
    registrar: WebhookRegistrar

    # Webhook verification/config
    webhook_secret: bytes
    signature_header: str
    webhook_path: str
    public_base_url: str

    state: WebhookState = field(default_factory=WebhookState)

    def callback_url(self) -> str:
        base = (self.public_base_url or "").strip().rstrip("/")
        return f"{base}{self.webhook_path}" if base else ""
