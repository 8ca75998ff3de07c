from datetime import datetime, timedelta, timezone

import pytest

from linguaflow.config import DEFAULT_FSRS_WEIGHTS, Settings
from linguaflow.models.review_item import Grade, MemorySchedule
from linguaflow.services.memory_model import (
    D_MAX,
    D_MIN,
    MemoryModelParams,
    apply_memory_model,
    elapsed_days,
    initial_difficulty,
    next_difficulty,
    next_interval,
    retrievability,
    stability_after_lapse,
    stability_after_recall,
    target_retention,
)

T0 = datetime(2024, 3, 1, 9, 0, tzinfo=timezone.utc)
PARAMS = MemoryModelParams(weights=tuple(DEFAULT_FSRS_WEIGHTS))
FIXED_RETENTION = MemoryModelParams(weights=tuple(DEFAULT_FSRS_WEIGHTS), adaptive_retention=False)


def _reviewed(stability=5.0, difficulty=5.0, reps=1, lapses=0) -> MemorySchedule:
    return MemorySchedule(
        interval=5, stability=stability, difficulty=difficulty, reps=reps, lapses=lapses, last_grade=3
    )


@pytest.mark.parametrize("grade", list(Grade))
def test_first_review_seeds_from_grade_constants(grade):
    result = apply_memory_model(MemorySchedule(), grade, None, T0, PARAMS)

    assert result.schedule.stability == pytest.approx(DEFAULT_FSRS_WEIGHTS[grade - 1])
    assert result.schedule.difficulty == pytest.approx(initial_difficulty(grade, PARAMS))
    assert result.schedule.last_grade == int(grade)
    assert result.retrievability is None
    assert result.schedule.interval >= 1
    assert result.next_review_date == T0 + timedelta(days=result.schedule.interval)


def test_first_review_counters():
    forgot = apply_memory_model(MemorySchedule(), Grade.AGAIN, None, T0, PARAMS).schedule
    assert (forgot.lapses, forgot.reps) == (1, 0)

    good = apply_memory_model(MemorySchedule(), Grade.GOOD, None, T0, PARAMS).schedule
    assert (good.lapses, good.reps) == (0, 1)


def test_initial_difficulty_falls_with_grade():
    values = [initial_difficulty(g, PARAMS) for g in Grade]
    assert values == sorted(values, reverse=True)
    assert all(D_MIN <= v <= D_MAX for v in values)


def test_retrievability_decays_with_time_and_rises_with_stability():
    assert retrievability(0, 5.0, PARAMS) == 1.0
    decay = [retrievability(t, 5.0, PARAMS) for t in (1, 5, 20, 100)]
    assert all(a > b for a, b in zip(decay, decay[1:]))
    assert retrievability(10, 2.0, PARAMS) < retrievability(10, 20.0, PARAMS)


def test_interval_lands_on_target_retention():
    stability = 12.0
    interval = next_interval(stability, 0.9, FIXED_RETENTION)
    assert retrievability(interval, stability, FIXED_RETENTION) == pytest.approx(0.9, abs=0.01)


def test_interval_has_one_day_floor():
    assert next_interval(0.1, 0.9, FIXED_RETENTION) == 1


def test_interval_has_configured_ceiling():
    params = MemoryModelParams(weights=tuple(DEFAULT_FSRS_WEIGHTS), max_interval_days=30)
    assert next_interval(700.0, 0.9, params) == 30


def test_difficulty_moves_with_grade():
    again = next_difficulty(5.0, Grade.AGAIN, PARAMS)
    hard = next_difficulty(5.0, Grade.HARD, PARAMS)
    good = next_difficulty(5.0, Grade.GOOD, PARAMS)
    easy = next_difficulty(5.0, Grade.EASY, PARAMS)

    assert again > 5.0
    assert easy < 5.0
    assert abs(hard - 5.0) < abs(again - 5.0)
    assert abs(good - 5.0) < abs(easy - 5.0)


def test_difficulty_stays_in_range():
    assert next_difficulty(D_MAX, Grade.AGAIN, PARAMS) <= D_MAX
    assert next_difficulty(D_MIN, Grade.EASY, PARAMS) >= D_MIN


def test_recall_growth_increases_with_grade():
    last = T0
    now = T0 + timedelta(days=6)
    grown = {
        g: apply_memory_model(_reviewed(), g, last, now, PARAMS).schedule.stability
        for g in (Grade.HARD, Grade.GOOD, Grade.EASY)
    }
    assert 5.0 < grown[Grade.HARD] < grown[Grade.GOOD] < grown[Grade.EASY]


def test_recall_growth_diminishes_at_high_stability():
    low = stability_after_recall(5.0, 2.0, 0.9, Grade.GOOD, PARAMS) / 2.0
    high = stability_after_recall(5.0, 200.0, 0.9, Grade.GOOD, PARAMS) / 200.0
    assert low > high > 1.0


def test_same_day_recall_keeps_stability():
    # R is 1 at zero elapsed time, so the recall growth term vanishes.
    result = apply_memory_model(_reviewed(stability=5.0), Grade.EASY, T0, T0, PARAMS)
    assert result.retrievability == 1.0
    assert result.schedule.stability == 5.0
    assert result.schedule.reps == 2
    assert result.schedule.difficulty < 5.0


def test_recall_stability_is_capped():
    assert stability_after_recall(1.0, 700.0, 0.5, Grade.EASY, PARAMS) == PARAMS.max_stability


def test_lapse_shrinks_stability_and_counts():
    result = apply_memory_model(
        _reviewed(stability=20.0, reps=4, lapses=2), Grade.AGAIN, T0, T0 + timedelta(days=15), PARAMS
    )
    assert result.schedule.stability < 20.0
    assert result.schedule.lapses == 3
    assert result.schedule.reps == 4
    assert result.schedule.difficulty > 5.0
    assert 0.0 < result.retrievability < 1.0


def test_lapse_hits_harder_items_harder():
    assert stability_after_lapse(2.0, 20.0, 0.9, PARAMS) > stability_after_lapse(9.0, 20.0, 0.9, PARAMS)


def test_lapses_equal_number_of_grade_one_reviews():
    grades = [3, 1, 3, 4, 1, 1, 2, 3]
    schedule = MemorySchedule()
    last, now = None, T0
    previous_lapses = 0
    for g in grades:
        result = apply_memory_model(schedule, Grade(g), last, now, PARAMS)
        schedule = result.schedule
        assert schedule.lapses >= previous_lapses
        assert schedule.stability is not None and schedule.difficulty is not None
        assert schedule.interval >= 1
        assert result.next_review_date > now
        previous_lapses = schedule.lapses
        last, now = now, now + timedelta(days=3)

    assert schedule.lapses == grades.count(1)
    assert schedule.reps == len(grades) - grades.count(1)


def test_elapsed_days_never_negative():
    assert elapsed_days(None, T0) == 0.0
    assert elapsed_days(T0 + timedelta(days=1), T0) == 0.0
    assert elapsed_days(T0, T0 + timedelta(hours=36)) == pytest.approx(1.5)


def test_adaptive_retention_shifts_with_difficulty():
    assert target_retention(5.0, PARAMS) == pytest.approx(0.9)
    assert target_retention(10.0, PARAMS) == pytest.approx(0.85)
    assert target_retention(1.0, PARAMS) == pytest.approx(0.94)
    assert target_retention(10.0, FIXED_RETENTION) == pytest.approx(0.9)


def test_invalid_grade_rejected():
    with pytest.raises(ValueError):
        apply_memory_model(MemorySchedule(), 5, None, T0, PARAMS)


@pytest.mark.parametrize(
    "overrides",
    [
        {"weights": (1.0,) * 5},
        {"desired_retention": 1.0},
        {"decay_exponent": 0.5},
        {"min_stability": 0.0},
        {"max_interval_days": 0},
    ],
)
def test_params_validation(overrides):
    kwargs = {"weights": tuple(DEFAULT_FSRS_WEIGHTS), **overrides}
    with pytest.raises(ValueError):
        MemoryModelParams(**kwargs)


def test_params_from_settings():
    params = MemoryModelParams.from_settings(Settings(desired_retention=0.85))
    assert params.weights == tuple(DEFAULT_FSRS_WEIGHTS)
    assert params.desired_retention == 0.85
