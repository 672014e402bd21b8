import asyncio
import contextlib
import json
import logging
import os
from datetime import datetime, timezone

from dotenv import load_dotenv
from fastapi import Body, FastAPI, HTTPException, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator
from starlette.requests import Request as StarletteRequest
from starlette.responses import Response as StarletteResponse

from .metrics import derive_metrics
from .observability.context import (
    get_connection_id as _get_connection_id,
    get_request_id as _get_request_id,
    get_user_id as _get_user_id,
    reset_connection_id as _reset_connection_id,
    reset_request_id as _reset_request_id,
    set_connection_id as _set_connection_id,
    set_request_id as _set_request_id,
)
from .observability.logging import configure_logging as _configure_logging
from .registrar import DEFAULT_REGISTRATION_URL, RegistrationError, WebhookRegistrar
from .sessions import Session, SessionRegistry
from .signature import strip_wrapping_quotes
from .state_store import InMemoryUserStateStore
from .webhook import WebhookRuntime, create_webhook_router

# Load environment variables early so defaults below can be overridden by a local `.env`.
# In managed platforms (Cloud Run/Render), environment variables are injected directly and this is a no-op.
load_dotenv()

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", "3001"))
# Public base URL of this service; the provider calls back <WEBHOOK_BASE_URL>/webhooks/whoop.
WEBHOOK_BASE_URL = (os.getenv("WEBHOOK_BASE_URL", "") or "").strip()
WEBHOOK_PATH = "/webhooks/whoop"
# Empty secret means every webhook is rejected (fail closed).
WHOOP_WEBHOOK_SECRET = strip_wrapping_quotes(os.getenv("WHOOP_WEBHOOK_SECRET", ""))
WEBHOOK_SIGNATURE_HEADER = os.getenv("WEBHOOK_SIGNATURE_HEADER", "X-WHOOP-Signature")
WHOOP_WEBHOOK_REGISTRATION_URL = os.getenv("WHOOP_WEBHOOK_REGISTRATION_URL", DEFAULT_REGISTRATION_URL)
WHOOP_HTTP_TIMEOUT_SECONDS = float(os.getenv("WHOOP_HTTP_TIMEOUT_SECONDS", "10"))
# Per-connection outbound buffer; a slow client loses its oldest pending updates.
WS_SEND_QUEUE_MAXSIZE = int(os.getenv("WS_SEND_QUEUE_MAXSIZE", "100"))
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Build/version identifiers
APP_BUILD_ID = os.getenv("APP_BUILD_ID") or datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
APP_STARTED_AT = datetime.now(timezone.utc).isoformat()

_configure_logging(
    level=LOG_LEVEL,
    request_id_getter=_get_request_id,
    user_id_getter=_get_user_id,
    connection_id_getter=_get_connection_id,
)
log = logging.getLogger(__name__)

webhook_runtime = WebhookRuntime(
    store=InMemoryUserStateStore(),
    sessions=SessionRegistry(max_queue=WS_SEND_QUEUE_MAXSIZE),
    registrar=WebhookRegistrar(WHOOP_WEBHOOK_REGISTRATION_URL, timeout=WHOOP_HTTP_TIMEOUT_SECONDS),
    webhook_secret=WHOOP_WEBHOOK_SECRET.encode("utf-8"),
    signature_header=WEBHOOK_SIGNATURE_HEADER,
    webhook_path=WEBHOOK_PATH,
    public_base_url=WEBHOOK_BASE_URL,
)

app = FastAPI(title="wearable-relay")
app.include_router(create_webhook_router(webhook_runtime))


# ── Request context: request_id (for tracing) ──────────────────────
@app.middleware("http")
async def request_id_middleware(request: StarletteRequest, call_next):
    incoming = (request.headers.get("x-request-id") or "").strip()
    rid, tok = _set_request_id(incoming or None)
    try:
        resp: StarletteResponse = await call_next(request)
        resp.headers["X-Request-Id"] = rid
        return resp
    finally:
        _reset_request_id(tok)


# Expose Prometheus metrics
Instrumentator().instrument(app).expose(app, endpoint="/metrics")

# Configure CORS via environment (comma-separated list). Default to '*'.
_allowed_origins = os.getenv("ALLOWED_ORIGINS", "*")
allowed_origins = [o.strip() for o in _allowed_origins.split(",") if o.strip()]
app.add_middleware(
    CORSMiddleware,
    allow_origins=allowed_origins if allowed_origins else ["*"],
    allow_methods=["GET", "POST"],
    allow_headers=["*"],
)


@app.on_event("startup")
async def startup():
    logging.getLogger("httpx").setLevel(logging.WARNING)
    if not webhook_runtime.webhook_secret:
        log.warning("WHOOP_WEBHOOK_SECRET is not set: every webhook will be rejected with 401")
    if not webhook_runtime.public_base_url:
        log.warning("WEBHOOK_BASE_URL is not set: /api/register-webhook is disabled")
    log.info("Webhook endpoint: %s (port %s)", WEBHOOK_PATH, PORT)


# ── Per-user read API ──────────────────────────────────────────────
@app.get("/api/user/{user_id}/data")
async def get_user_data(user_id: str):
    state = await webhook_runtime.store.get(user_id)
    if state is None:
        return JSONResponse({"error": "User not found"}, status_code=404)
    return {**state.to_dict(), "metrics": derive_metrics(state).to_dict()}


# ── Webhook registration with WHOOP ────────────────────────────────
@app.post("/api/register-webhook")
async def register_webhook(payload: dict = Body(...)):
    access_token = str(payload.get("accessToken") or payload.get("access_token") or "").strip()
    if not access_token:
        raise HTTPException(status_code=400, detail="missing accessToken")
    callback_url = webhook_runtime.callback_url()
    if not callback_url:
        raise HTTPException(status_code=500, detail="WEBHOOK_BASE_URL not configured")

    try:
        receipt = await webhook_runtime.registrar.register(access_token, callback_url)
    except RegistrationError as exc:
        log.error("Webhook registration error for user_id=%s: %s", payload.get("userId"), exc)
        return JSONResponse(
            {"error": "registration_failed", "status": exc.status_code, "body": exc.body},
            status_code=502,
        )
    return {"success": True, "webhook": receipt.webhook, "callback_url": receipt.callback_url}


# ── Live updates over WebSocket ────────────────────────────────────
@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket):
    """Client connects, sends {"type": "join_user", "user_id": ...}, then receives pushes."""
    await websocket.accept()
    sessions = webhook_runtime.sessions
    session = sessions.open(websocket.send_json)
    conn_token = _set_connection_id(session.connection_id)
    writer = asyncio.create_task(session.run_writer(on_failure=lambda s: sessions.close(s.connection_id)))
    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000))
            raw = message.get("text")
            if raw is None:
                raw = message.get("bytes") or b""
            try:
                if isinstance(raw, (bytes, bytearray)):
                    raw = raw.decode("utf-8")
                data = json.loads(raw)
            except ValueError:
                # UnicodeDecodeError is a ValueError too
                data = None
            if not isinstance(data, dict):
                session.offer({"type": "error", "data": {"code": "invalid_json"}})
                continue
            await handle_websocket_message(session, data)
    except WebSocketDisconnect:
        pass
    finally:
        # Leave promptly so broadcasts stop targeting this socket.
        sessions.close(session.connection_id)
        writer.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await writer
        _reset_connection_id(conn_token)


async def handle_websocket_message(session: Session, data: dict):
    """Handle incoming WebSocket messages from client"""
    message_type = data.get("type")
    sessions = webhook_runtime.sessions

    if message_type in ("join_user", "join"):
        user_id = data.get("user_id")
        if user_id is None:
            user_id = data.get("userId")
        if isinstance(user_id, int) and not isinstance(user_id, bool):
            user_id = str(user_id)
        if not isinstance(user_id, str) or not user_id.strip():
            session.offer({"type": "error", "data": {"code": "invalid_user_id"}})
            return
        user_id = user_id.strip()
        sessions.join(session.connection_id, user_id)
        state = await webhook_runtime.store.get(user_id)
        session.offer({
            "type": "joined",
            "data": {
                "user_id": user_id,
                "connection_id": session.connection_id,
                "state": state.to_dict() if state else None,
                "metrics": derive_metrics(state).to_dict() if state else None,
            },
        })

    elif message_type == "leave":
        left = sessions.leave(session.connection_id)
        session.offer({"type": "left", "data": {"user_id": left}})

    elif message_type == "ping":
        session.offer({"type": "pong", "ts": data.get("ts")})

    else:
        session.offer({"type": "error", "data": {"code": "unknown_message", "type": message_type}})


@app.get("/health")
async def health_check():
    """Health check endpoint"""
    rt = webhook_runtime
    return {
        "status": "healthy",
        "signature_configured": bool(rt.webhook_secret),
        "registration_configured": bool(rt.callback_url()),
        "users": rt.store.user_count(),
        "sessions": rt.sessions.session_count(),
        "groups": rt.sessions.group_count(),
        "webhooks": rt.state.as_dict(),
    }


@app.get("/version")
async def get_version():
    commit = os.getenv("GIT_COMMIT", "")
    return {
        "build_id": APP_BUILD_ID,
        "started_at": APP_STARTED_AT,
        **({"commit": commit} if commit else {}),
    }


def run() -> None:
    import uvicorn
    uvicorn.run("wearable_relay.main:app", host=HOST, port=PORT, reload=False)


if __name__ == "__main__":
    run()
