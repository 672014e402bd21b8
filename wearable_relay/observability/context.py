from __future__ import annotations

from contextvars import ContextVar, Token
from typing import Optional
import uuid

# NOTE: request_id is request-scoped for HTTP handlers. user_id is bound by the webhook route once the
# envelope is parsed; connection_id is bound for the lifetime of a WebSocket handler.
_REQUEST_ID: ContextVar[Optional[str]] = ContextVar("request_id", default=None)
_USER_ID: ContextVar[Optional[str]] = ContextVar("user_id", default=None)
_CONNECTION_ID: ContextVar[Optional[str]] = ContextVar("connection_id", default=None)


def get_request_id() -> Optional[str]:
    return _REQUEST_ID.get()


def set_request_id(value: Optional[str] = None) -> tuple[str, Token[Optional[str]]]:
    rid = (value or "").strip() or uuid.uuid4().hex
    tok = _REQUEST_ID.set(rid)
    return rid, tok


def reset_request_id(token: Token[Optional[str]]) -> None:
    _REQUEST_ID.reset(token)


def get_user_id() -> Optional[str]:
    return _USER_ID.get()


def set_user_id(value: Optional[str]) -> Token[Optional[str]]:
    v = (value or "").strip() if value else None
    return _USER_ID.set(v or None)


def reset_user_id(token: Token[Optional[str]]) -> None:
    _USER_ID.reset(token)


def get_connection_id() -> Optional[str]:
    return _CONNECTION_ID.get()


def set_connection_id(value: Optional[str]) -> Token[Optional[str]]:
    return _CONNECTION_ID.set(value or None)


def reset_connection_id(token: Token[Optional[str]]) -> None:
    _CONNECTION_ID.reset(token)
