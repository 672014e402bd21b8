from __future__ import annotations

import math
from dataclasses import asdict, dataclass
from typing import Any, Dict, Optional

from .events import UserState

# Rough conversion: 1 meter ≈ 1.3 steps
STEPS_PER_METER = 1.3
KCAL_PER_KILOJOULE = 0.239
MILLIS_PER_HOUR = 3_600_000


@dataclass(frozen=True)
class DerivedMetrics:
    estimated_steps: int
    total_distance_km: float
    total_calories: float
    max_strain: Optional[float]
    sleep_hours: Optional[float]

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def derive_metrics(state: UserState) -> DerivedMetrics:
    """Recompute fitness figures from a user's state; nothing here is stored."""
    distance = sum(w.distance_meters for w in state.workouts if w.distance_meters is not None)
    energy = sum(w.energy_kilojoules for w in state.workouts if w.energy_kilojoules is not None)
    strains = [w.strain for w in state.workouts if w.strain is not None]
    in_bed = state.sleep.in_bed_time_millis if state.sleep else None
    return DerivedMetrics(
        estimated_steps=_round_half_up(distance * STEPS_PER_METER),
        total_distance_km=distance / 1000,
        total_calories=energy * KCAL_PER_KILOJOULE,
        max_strain=max(strains) if strains else None,
        sleep_hours=(in_bed / MILLIS_PER_HOUR) if in_bed is not None else None,
    )
