from __future__ import annotations

import logging
from typing import Callable, Optional


class _ContextFilter(logging.Filter):
    def __init__(
        self,
        *,
        request_id_getter: Optional[Callable[[], Optional[str]]] = None,
        user_id_getter: Optional[Callable[[], Optional[str]]] = None,
        connection_id_getter: Optional[Callable[[], Optional[str]]] = None,
    ) -> None:
        super().__init__()
        self._request_id_getter = request_id_getter
        self._user_id_getter = user_id_getter
        self._connection_id_getter = connection_id_getter

    def filter(self, record: logging.LogRecord) -> bool:
        # Inject defaults so formatters can always reference these fields.
        record.request_id = None
        record.user_id = None
        record.connection_id = None
        if self._request_id_getter:
            record.request_id = self._request_id_getter()
        if self._user_id_getter:
            record.user_id = self._user_id_getter()
        if self._connection_id_getter:
            record.connection_id = self._connection_id_getter()
        return True


def configure_logging(
    *,
    level: str = "INFO",
    request_id_getter: Optional[Callable[[], Optional[str]]] = None,
    user_id_getter: Optional[Callable[[], Optional[str]]] = None,
    connection_id_getter: Optional[Callable[[], Optional[str]]] = None,
) -> None:
    """Configure root logging with consistent contextual fields.

    Contextual fields come from contextvars (see ``observability.context``), so every
    record emitted while handling a webhook or a socket carries its request/user/connection.
    """
    lvl = getattr(logging, (level or "INFO").upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(lvl)

    # If something already configured handlers (uvicorn), avoid duplicating them.
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setLevel(lvl)
        handler.setFormatter(
            logging.Formatter(
                fmt="%(asctime)s %(levelname)s %(name)s "
                "request_id=%(request_id)s user_id=%(user_id)s connection_id=%(connection_id)s "
                "%(message)s"
            )
        )
        root.addHandler(handler)

    ctx_filter = _ContextFilter(
        request_id_getter=request_id_getter,
        user_id_getter=user_id_getter,
        connection_id_getter=connection_id_getter,
    )
    # Filters on the root logger do not see records propagated from child loggers,
    # so attach to the handlers as well.
    for h in root.handlers:
        for old in [f for f in h.filters if isinstance(f, _ContextFilter)]:
            h.removeFilter(old)
        h.addFilter(ctx_filter)
