"""Canonical wearable events and per-user state."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

RECOVERY_UPDATED = "recovery.updated"
WORKOUT_UPDATED = "workout.updated"
SLEEP_UPDATED = "sleep.updated"


@dataclass(frozen=True)
class WebhookEnvelope:
    """Parsed provider payload; lives only for the duration of one request."""

    event_type: Any
    user_id: Any
    data: Any

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "WebhookEnvelope":
        return cls(
            event_type=payload.get("event_type"),
            user_id=payload.get("user_id"),
            data=payload.get("data"),
        )


@dataclass(frozen=True)
class RecoveryUpdated:
    user_id: str
    occurred_at: datetime
    recovery_score_percent: Optional[float] = None
    resting_heart_rate_bpm: Optional[float] = None
    hrv_millis: Optional[float] = None

    event_type = RECOVERY_UPDATED
    message_type = "recovery_update"


@dataclass(frozen=True)
class WorkoutUpdated:
    user_id: str
    occurred_at: datetime
    sport_id: Optional[int] = None
    distance_meters: Optional[float] = None
    energy_kilojoules: Optional[float] = None
    strain: Optional[float] = None

    event_type = WORKOUT_UPDATED
    message_type = "workout_update"


@dataclass(frozen=True)
class SleepUpdated:
    user_id: str
    occurred_at: datetime
    in_bed_time_millis: Optional[float] = None

    event_type = SLEEP_UPDATED
    message_type = "sleep_update"


CanonicalEvent = Union[RecoveryUpdated, WorkoutUpdated, SleepUpdated]


def event_to_dict(event: CanonicalEvent) -> Dict[str, Any]:
    out = asdict(event)
    out["event_type"] = event.event_type
    out["occurred_at"] = event.occurred_at.isoformat()
    return out


@dataclass
class UserState:
    user_id: str
    recovery: Optional[RecoveryUpdated] = None
    workouts: List[WorkoutUpdated] = field(default_factory=list)
    sleep: Optional[SleepUpdated] = None
    last_update: Optional[datetime] = None

    def snapshot(self) -> "UserState":
        """Copy safe to hand out; later applies do not show through it."""
        return replace(self, workouts=list(self.workouts))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "user_id": self.user_id,
            "recovery": event_to_dict(self.recovery) if self.recovery else None,
            "workouts": [event_to_dict(w) for w in self.workouts],
            "sleep": event_to_dict(self.sleep) if self.sleep else None,
            "last_update": self.last_update.isoformat() if self.last_update else None,
        }
