from datetime import datetime, timezone

import pytest

from wearable_relay.events import SleepUpdated, UserState, WorkoutUpdated
from wearable_relay.metrics import derive_metrics

T0 = datetime(2026, 3, 1, tzinfo=timezone.utc)


def _state(*workouts, sleep=None):
    return UserState(user_id="u1", workouts=list(workouts), sleep=sleep)


def _w(distance=None, kj=None, strain=None):
    return WorkoutUpdated(user_id="u1", occurred_at=T0, distance_meters=distance, energy_kilojoules=kj, strain=strain)


@pytest.mark.parametrize("distance,steps", [(0, 0), (1, 1), (5, 7), (1000, 1300), (1234.5, 1605), (42195, 54854)])
def test_estimated_steps_for_a_single_workout(distance, steps):
    assert derive_metrics(_state(_w(distance=distance))).estimated_steps == steps


def test_totals_across_workouts():
    m = derive_metrics(_state(_w(1000, 500, 8.0), _w(2500, 250, 14.2), _w(None, None, None)))
    assert m.estimated_steps == 4550
    assert m.total_distance_km == pytest.approx(3.5)
    assert m.total_calories == pytest.approx(750 * 0.239)
    assert m.max_strain == 14.2


def test_empty_state_has_no_strain_or_sleep():
    m = derive_metrics(_state())
    assert m.estimated_steps == 0
    assert m.total_distance_km == 0
    assert m.total_calories == 0
    assert m.max_strain is None
    assert m.sleep_hours is None


def test_sleep_hours_from_in_bed_time():
    m = derive_metrics(_state(sleep=SleepUpdated(user_id="u1", occurred_at=T0, in_bed_time_millis=27_000_000)))
    assert m.sleep_hours == pytest.approx(7.5)
