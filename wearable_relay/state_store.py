from __future__ import annotations

import asyncio
import logging
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Callable, Dict, Optional

from .events import CanonicalEvent, RecoveryUpdated, SleepUpdated, UserState, WorkoutUpdated

log = logging.getLogger(__name__)


class UserStateStore(ABC):
    """Latest aggregated state per user.

    ``apply`` calls for the same user are totally ordered; different users never contend.
    Both methods return snapshots, never the stored object.
    """

    @abstractmethod
    async def apply(self, event: CanonicalEvent) -> UserState: ...

    @abstractmethod
    async def get(self, user_id: str) -> Optional[UserState]: ...

    @abstractmethod
    def user_count(self) -> int: ...


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class InMemoryUserStateStore(UserStateStore):
    """Process-wide dict, no persistence and no eviction.

    Workout history is append-only and not deduplicated: delivering the same workout
    twice counts it twice.
    """

    def __init__(self, clock: Callable[[], datetime] = _utcnow) -> None:
        self._states: Dict[str, UserState] = {}
        self._locks: Dict[str, asyncio.Lock] = {}
        self._clock = clock

    def _lock_for(self, user_id: str) -> asyncio.Lock:
        lock = self._locks.get(user_id)
        if lock is None:
            lock = self._locks[user_id] = asyncio.Lock()
        return lock

    async def apply(self, event: CanonicalEvent) -> UserState:
        if not isinstance(event, (RecoveryUpdated, WorkoutUpdated, SleepUpdated)):
            raise TypeError(f"unsupported event: {type(event).__name__}")
        async with self._lock_for(event.user_id):
            state = self._states.get(event.user_id)
            if state is None:
                state = self._states[event.user_id] = UserState(user_id=event.user_id)
            if isinstance(event, RecoveryUpdated):
                state.recovery = event
            elif isinstance(event, WorkoutUpdated):
                state.workouts.append(event)
            else:
                state.sleep = event
            state.last_update = self._clock()
            log.debug("State applied event_type=%s workouts=%s", event.event_type, len(state.workouts))
            return state.snapshot()

    async def get(self, user_id: str) -> Optional[UserState]:
        state = self._states.get(user_id)
        return state.snapshot() if state else None

    def user_count(self) -> int:
        return len(self._states)
