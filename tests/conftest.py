import json
import os
import pytest

# Configure before the app module reads its environment.
os.environ["WHOOP_WEBHOOK_SECRET"] = "test-secret"
os.environ["WEBHOOK_BASE_URL"] = "https://relay.example.com"
os.environ.setdefault("LOG_LEVEL", "DEBUG")

from wearable_relay import main
from wearable_relay.sessions import SessionRegistry
from wearable_relay.signature import compute_signature
from wearable_relay.state_store import InMemoryUserStateStore
from wearable_relay.webhook import WebhookState

SECRET = b"test-secret"


@pytest.fixture(autouse=True)
def runtime(monkeypatch):
    """Fresh store/registry/counters for every test; the app keeps its routes."""
    rt = main.webhook_runtime
    monkeypatch.setattr(rt, "store", InMemoryUserStateStore())
    monkeypatch.setattr(rt, "sessions", SessionRegistry(max_queue=16))
    monkeypatch.setattr(rt, "state", WebhookState())
    monkeypatch.setattr(rt, "webhook_secret", SECRET)
    return rt


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    with TestClient(main.app) as c:
        yield c


@pytest.fixture
def post_webhook(client):
    def _post(payload, *, sign: bool = True, signature: str | None = None):
        body = payload if isinstance(payload, bytes) else json.dumps(payload).encode("utf-8")
        headers = {"Content-Type": "application/json"}
        if signature is not None:
            headers["X-WHOOP-Signature"] = signature
        elif sign:
            headers["X-WHOOP-Signature"] = compute_signature(body, SECRET)
        return client.post("/webhooks/whoop", content=body, headers=headers)
    return _post
