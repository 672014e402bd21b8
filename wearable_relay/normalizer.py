"""Parse WHOOP webhook envelopes into canonical events.

Payload shapes handled (``data`` of the envelope):

- ``recovery.updated``: ``score.recovery_score``, ``score.resting_heart_rate``, ``score.hrv_rmssd_milli``
- ``workout.updated``: ``sport_id``, ``score.distance_meter``, ``score.kilojoule``, ``score.strain``
- ``sleep.updated``: ``score.stage_summary.total_in_bed_time_milli``

Every metric is optional; a missing value stays ``None``. A value that is present but not a
non-negative number is rejected with ``MalformedField``. No derived metrics are computed here.
"""

from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from .events import (
    RECOVERY_UPDATED,
    SLEEP_UPDATED,
    WORKOUT_UPDATED,
    CanonicalEvent,
    RecoveryUpdated,
    SleepUpdated,
    WebhookEnvelope,
    WorkoutUpdated,
)


class NormalizationError(ValueError):
    """Envelope could not be turned into a canonical event."""


class UnknownEventType(NormalizationError):
    def __init__(self, event_type: str):
        super().__init__(f"unknown event type: {event_type}")
        self.event_type = event_type


class MalformedField(NormalizationError):
    def __init__(self, field: str):
        super().__init__(f"malformed field: {field}")
        self.field = field


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _section(container: Mapping[str, Any], key: str, path: str) -> Mapping[str, Any]:
    value = container.get(key)
    if value is None:
        return {}
    if not isinstance(value, Mapping):
        raise MalformedField(path)
    return value


def _number(container: Mapping[str, Any], key: str, path: str) -> Optional[float]:
    value = container.get(key)
    if value is None:
        return None
    # bool is an int subclass; a flag is never a metric
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise MalformedField(path)
    try:
        number = float(value)
    except OverflowError:
        raise MalformedField(path) from None
    if not math.isfinite(number) or number < 0:
        raise MalformedField(path)
    return number


def _integer(container: Mapping[str, Any], key: str, path: str) -> Optional[int]:
    value = _number(container, key, path)
    if value is None:
        return None
    if not value.is_integer():
        raise MalformedField(path)
    return int(value)


def _recovery(user_id: str, data: Mapping[str, Any], now: datetime) -> RecoveryUpdated:
    score = _section(data, "score", "score")
    percent = _number(score, "recovery_score", "score.recovery_score")
    if percent is not None and percent > 100:
        raise MalformedField("score.recovery_score")
    return RecoveryUpdated(
        user_id=user_id,
        occurred_at=now,
        recovery_score_percent=percent,
        resting_heart_rate_bpm=_number(score, "resting_heart_rate", "score.resting_heart_rate"),
        hrv_millis=_number(score, "hrv_rmssd_milli", "score.hrv_rmssd_milli"),
    )


def _workout(user_id: str, data: Mapping[str, Any], now: datetime) -> WorkoutUpdated:
    score = _section(data, "score", "score")
    return WorkoutUpdated(
        user_id=user_id,
        occurred_at=now,
        sport_id=_integer(data, "sport_id", "sport_id"),
        distance_meters=_number(score, "distance_meter", "score.distance_meter"),
        energy_kilojoules=_number(score, "kilojoule", "score.kilojoule"),
        strain=_number(score, "strain", "score.strain"),
    )


def _sleep(user_id: str, data: Mapping[str, Any], now: datetime) -> SleepUpdated:
    score = _section(data, "score", "score")
    stages = _section(score, "stage_summary", "score.stage_summary")
    return SleepUpdated(
        user_id=user_id,
        occurred_at=now,
        in_bed_time_millis=_number(
            stages, "total_in_bed_time_milli", "score.stage_summary.total_in_bed_time_milli"
        ),
    )


_PARSERS: Dict[str, Callable[[str, Mapping[str, Any], datetime], CanonicalEvent]] = {
    RECOVERY_UPDATED: _recovery,
    WORKOUT_UPDATED: _workout,
    SLEEP_UPDATED: _sleep,
}


def normalize(envelope: WebhookEnvelope, *, now: Optional[datetime] = None) -> CanonicalEvent:
    """Return the canonical event for ``envelope``.

    Raises:
        MalformedField: ``event_type`` missing, or a known type with a bad field.
        UnknownEventType: ``event_type`` is a string this service does not handle.
    """
    event_type = envelope.event_type
    if not isinstance(event_type, str) or not event_type.strip():
        raise MalformedField("event_type")
    parser = _PARSERS.get(event_type)
    if parser is None:
        raise UnknownEventType(event_type)

    user_id = envelope.user_id
    # WHOOP sends numeric user ids; keep them as opaque strings
    if isinstance(user_id, int) and not isinstance(user_id, bool):
        user_id = str(user_id)
    if not isinstance(user_id, str) or not user_id.strip():
        raise MalformedField("user_id")

    data = envelope.data if envelope.data is not None else {}
    if not isinstance(data, Mapping):
        raise MalformedField("data")

    return parser(user_id.strip(), data, now or _utcnow())
