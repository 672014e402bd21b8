from __future__ import annotations

import json
import logging

from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse

from ..events import WebhookEnvelope, event_to_dict
from ..metrics import derive_metrics
from ..normalizer import MalformedField, UnknownEventType, normalize
from ..observability.context import reset_user_id, set_user_id
from ..signature import signature_debug_info, verify_webhook_signature
from .runtime import IGNORED_OUTCOME, IngestState, WebhookRuntime

log = logging.getLogger(__name__)


def _reply(rt: WebhookRuntime, outcome: str, status_code: int, content: dict) -> JSONResponse:
    rt.state.record(outcome)
    return JSONResponse(content, status_code=status_code)


def create_webhook_router(rt: WebhookRuntime) -> APIRouter:
    router = APIRouter()

    @router.post(rt.webhook_path)
    async def webhook(request: Request):
        """WHOOP webhook endpoint (ingress).

        Received -> Verified -> Normalized -> Applied -> Broadcast -> Acknowledged,
        or Rejected (bad signature) / Failed (bad payload) on the way.
        """
        stage = IngestState.RECEIVED
        body_bytes = await request.body()
        sig_header = request.headers.get(rt.signature_header)

        if not verify_webhook_signature(body_bytes, sig_header, rt.webhook_secret):
            if not rt.webhook_secret:
                log.error("Webhook rejected: WHOOP_WEBHOOK_SECRET is not configured")
            else:
                log.warning("Webhook rejected: invalid signature %s", signature_debug_info(body_bytes, sig_header))
            return _reply(rt, IngestState.REJECTED.value, 401, {"ok": False, "reason": "invalid_signature"})
        stage = IngestState.VERIFIED

        try:
            data = json.loads(body_bytes.decode("utf-8") or "{}")
        except (UnicodeDecodeError, ValueError):
            data = None
        if not isinstance(data, dict):
            log.warning("Webhook failed at %s: body is not a JSON object (body_len=%s)", stage.value, len(body_bytes))
            return _reply(rt, IngestState.FAILED.value, 400, {"ok": False, "reason": "invalid_json"})

        envelope = WebhookEnvelope.from_payload(data)
        user_token = set_user_id(str(envelope.user_id) if envelope.user_id is not None else None)
        try:
            try:
                event = normalize(envelope)
            except UnknownEventType as exc:
                # Forward compatibility: new provider event types are acknowledged and ignored.
                log.info("Webhook ignored: unknown event_type=%s", exc.event_type)
                return _reply(rt, IGNORED_OUTCOME, 200, {"ok": True, "ignored": "unknown_event_type"})
            except MalformedField as exc:
                log.warning(
                    "Webhook failed: malformed field=%s event_type=%s user_id=%s",
                    exc.field,
                    envelope.event_type,
                    envelope.user_id,
                )
                return _reply(
                    rt, IngestState.FAILED.value, 400, {"ok": False, "reason": "malformed_field", "field": exc.field}
                )
            stage = IngestState.NORMALIZED

            try:
                state = await rt.store.apply(event)
                stage = IngestState.APPLIED
                message = {
                    "type": event.message_type,
                    "data": {
                        "user_id": event.user_id,
                        "event": event_to_dict(event),
                        "metrics": derive_metrics(state).to_dict(),
                    },
                }
                delivered = rt.sessions.broadcast(event.user_id, message)
                stage = IngestState.BROADCAST
            except Exception:
                log.exception("Webhook failed at %s event_type=%s", stage.value, event.event_type)
                return _reply(rt, IngestState.FAILED.value, 500, {"ok": False, "reason": "internal_error"})

            log.info(
                "Webhook %s event_type=%s sessions=%s workouts=%s",
                IngestState.ACKNOWLEDGED.value,
                event.event_type,
                delivered,
                len(state.workouts),
            )
            return _reply(rt, IngestState.ACKNOWLEDGED.value, 200, {"ok": True})
        finally:
            reset_user_id(user_token)

    return router
