from __future__ import annotations

import asyncio
import logging
import uuid
from collections import defaultdict
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Dict, List, Optional, Set

log = logging.getLogger(__name__)

Sender = Callable[[dict], Awaitable[None]]


class Session:
    """One live client connection with its own bounded outbound buffer.

    ``offer`` never blocks: when the buffer is full the oldest pending message is dropped.
    """

    def __init__(self, send: Sender, *, connection_id: Optional[str] = None, max_queue: int = 100):
        self.connection_id = connection_id or uuid.uuid4().hex
        self.user_id: Optional[str] = None
        self.is_open = True
        self.connected_at = datetime.now(timezone.utc)
        self.dropped = 0
        self._send = send
        self._outbox: "asyncio.Queue[dict]" = asyncio.Queue(maxsize=max(1, int(max_queue)))

    def offer(self, message: dict) -> bool:
        if not self.is_open:
            return False
        if self._outbox.full():
            self._outbox.get_nowait()
            self.dropped += 1
            if self.dropped == 1 or self.dropped % 100 == 0:
                log.warning(
                    "WS outbox full, dropping oldest connection_id=%s dropped_total=%s",
                    self.connection_id,
                    self.dropped,
                )
        self._outbox.put_nowait(message)
        return True

    def pending(self) -> int:
        return self._outbox.qsize()

    def close(self) -> None:
        self.is_open = False

    async def run_writer(self, on_failure: Optional[Callable[["Session"], Any]] = None) -> None:
        """Drain the outbox to the socket until the session closes or a send fails."""
        while self.is_open:
            message = await self._outbox.get()
            if not self.is_open:
                return
            try:
                await self._send(message)
            except Exception as exc:
                # Closed sockets are expected (tab close, network change); not an error.
                log.info("WS send failed connection_id=%s: %s", self.connection_id, exc)
                self.close()
                if on_failure is not None:
                    on_failure(self)
                return


class SessionRegistry:
    """Live connections grouped by user id.

    Every method is synchronous with no await points, so on the event loop each call is
    atomic: a broadcast reaches exactly the sessions whose join completed before it.
    """

    def __init__(self, max_queue: int = 100):
        self.max_queue = max_queue
        self._sessions: Dict[str, Session] = {}
        self._groups: Dict[str, Set[str]] = defaultdict(set)

    def open(self, send: Sender, connection_id: Optional[str] = None) -> Session:
        session = Session(send, connection_id=connection_id, max_queue=self.max_queue)
        self._sessions[session.connection_id] = session
        log.info("WS connected connection_id=%s sessions=%s", session.connection_id, len(self._sessions))
        return session

    def get(self, connection_id: str) -> Optional[Session]:
        return self._sessions.get(connection_id)

    def join(self, connection_id: str, user_id: str) -> None:
        """Add the connection to ``user_id``'s group; moves it if it was in another group."""
        session = self._sessions.get(connection_id)
        if session is None:
            raise KeyError(connection_id)
        if session.user_id == user_id:
            return
        if session.user_id is not None:
            self._discard(connection_id, session.user_id)
        session.user_id = user_id
        self._groups[user_id].add(connection_id)
        log.info(
            "WS joined user_id=%s connection_id=%s connections_for_user=%s",
            user_id,
            connection_id,
            len(self._groups[user_id]),
        )

    def leave(self, connection_id: str) -> Optional[str]:
        """Remove the connection from its group; returns the user id it left, if any."""
        session = self._sessions.get(connection_id)
        if session is None or session.user_id is None:
            return None
        user_id = session.user_id
        self._discard(connection_id, user_id)
        session.user_id = None
        log.info("WS left user_id=%s connection_id=%s", user_id, connection_id)
        return user_id

    def close(self, connection_id: str) -> None:
        """Forget a connection entirely (called on disconnect)."""
        self.leave(connection_id)
        session = self._sessions.pop(connection_id, None)
        if session is not None:
            session.close()
            log.info("WS disconnected connection_id=%s", connection_id)

    def broadcast(self, user_id: str, message: dict) -> int:
        """Queue ``message`` for every open session in the group; returns how many accepted it."""
        delivered = 0
        for connection_id in list(self._groups.get(user_id) or ()):
            session = self._sessions.get(connection_id)
            if session is not None and session.offer(message):
                delivered += 1
        return delivered

    def group_members(self, user_id: str) -> List[str]:
        return sorted(self._groups.get(user_id) or ())

    def session_count(self) -> int:
        return len(self._sessions)

    def group_count(self) -> int:
        return len(self._groups)

    def _discard(self, connection_id: str, user_id: str) -> None:
        group = self._groups.get(user_id)
        if group is None:
            return
        group.discard(connection_id)
        if not group:
            del self._groups[user_id]
