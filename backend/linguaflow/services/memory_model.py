"""
Memory-model (FSRS) scheduling.

Implements the DSR model from the Free Spaced Repetition Scheduler
(open-spaced-repetition, v4.5 formula shape):

  R(t, S)   = (1 + F * t / S) ^ C                       power-law forgetting curve
  S0(G)     = w[G-1]                                     first review
  D0(G)     = w4 - exp(w5 * (G - 1)) + 1
  D'        = w7 * D0(4) + (1 - w7) * (D - w6 * (G - 3) * (10 - D) / 9)
  S'recall  = S * (1 + e^w8 * (11 - D) * S^-w9 * (e^(w10 * (1 - R)) - 1) * h * b)
  S'lapse   = min(S, w11 * D^-w12 * ((S + 1)^w13 - 1) * e^(w14 * (1 - R)))
  I(Rd)     = S / F * (Rd^(1/C) - 1)

h is the hard penalty (w15) and b the easy bonus (w16). All constants come
from MemoryModelParams so they can be tuned without touching the transition.
Every function here is pure: callers pass `now` explicitly.
"""
from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timedelta

from linguaflow.models.review_item import Grade, MemorySchedule

D_MIN = 1.0
D_MAX = 10.0


@dataclass(frozen=True)
class MemoryModelParams:
    weights: tuple[float, ...]
    decay_factor: float = 0.25      # F
    decay_exponent: float = -0.45   # C
    desired_retention: float = 0.9
    adaptive_retention: bool = True
    min_stability: float = 0.1
    max_stability: float = 730.0
    max_interval_days: int = 36500

    def __post_init__(self) -> None:
        if len(self.weights) < 17:
            raise ValueError(f"FSRS needs at least 17 weights, got {len(self.weights)}")
        if not 0.0 < self.desired_retention < 1.0:
            raise ValueError(f"desired_retention must be in (0, 1), got {self.desired_retention}")
        if self.decay_factor <= 0 or self.decay_exponent >= 0:
            raise ValueError("decay_factor must be positive and decay_exponent negative")
        if not 0 < self.min_stability <= self.max_stability:
            raise ValueError("min_stability must be positive and <= max_stability")
        if self.max_interval_days < 1:
            raise ValueError("max_interval_days must be at least 1")

    @classmethod
    def from_settings(cls, settings) -> MemoryModelParams:
        return cls(
            weights=tuple(settings.fsrs_weights),
            decay_factor=settings.fsrs_decay_factor,
            decay_exponent=settings.fsrs_decay_exponent,
            desired_retention=settings.desired_retention,
            adaptive_retention=settings.adaptive_retention,
            min_stability=settings.min_stability,
            max_stability=settings.max_stability,
            max_interval_days=settings.max_interval_days,
        )


@dataclass(frozen=True)
class MemoryTransition:
    schedule: MemorySchedule
    next_review_date: datetime
    retrievability: float | None  # at review time; None for a first review


def _clamp(value: float, lo: float, hi: float) -> float:
    return max(lo, min(hi, value))


def elapsed_days(last_reviewed: datetime | None, now: datetime) -> float:
    if last_reviewed is None:
        return 0.0
    return max(0.0, (now - last_reviewed).total_seconds() / 86400.0)


def retrievability(elapsed: float, stability: float, params: MemoryModelParams) -> float:
    """Probability of recall after `elapsed` days at the given stability."""
    if stability <= 0:
        return 0.0
    if elapsed <= 0:
        return 1.0
    r = (1.0 + params.decay_factor * elapsed / stability) ** params.decay_exponent
    return _clamp(r, 0.0, 1.0)


def initial_stability(grade: Grade, params: MemoryModelParams) -> float:
    return max(params.min_stability, params.weights[grade - 1])


def initial_difficulty(grade: Grade, params: MemoryModelParams) -> float:
    w = params.weights
    return _clamp(w[4] - math.exp(w[5] * (grade - 1)) + 1.0, D_MIN, D_MAX)


def next_difficulty(difficulty: float, grade: Grade, params: MemoryModelParams) -> float:
    w = params.weights
    delta = -w[6] * (grade - 3)
    damped = difficulty + delta * ((D_MAX - difficulty) / 9.0)
    reverted = w[7] * initial_difficulty(Grade.EASY, params) + (1.0 - w[7]) * damped
    return _clamp(reverted, D_MIN, D_MAX)


def stability_after_recall(
    difficulty: float,
    stability: float,
    r: float,
    grade: Grade,
    params: MemoryModelParams,
) -> float:
    w = params.weights
    hard_penalty = w[15] if grade == Grade.HARD else 1.0
    easy_bonus = w[16] if grade == Grade.EASY else 1.0
    growth = (
        math.exp(w[8])
        * (11.0 - difficulty)
        * stability ** -w[9]
        * (math.exp(w[10] * (1.0 - r)) - 1.0)
        * hard_penalty
        * easy_bonus
    )
    new_stability = stability * (1.0 + max(0.0, growth))
    return _clamp(new_stability, params.min_stability, params.max_stability)


def stability_after_lapse(
    difficulty: float,
    stability: float,
    r: float,
    params: MemoryModelParams,
) -> float:
    w = params.weights
    lapsed = (
        w[11]
        * difficulty ** -w[12]
        * ((stability + 1.0) ** w[13] - 1.0)
        * math.exp(w[14] * (1.0 - r))
    )
    return max(params.min_stability, min(lapsed, stability))


def target_retention(difficulty: float, params: MemoryModelParams) -> float:
    """Retention the next interval aims for; harder items aim a little lower."""
    if not params.adaptive_retention:
        return params.desired_retention
    return _clamp(params.desired_retention - (difficulty - 5.0) * 0.01, 0.80, 0.95)


def next_interval(stability: float, retention: float, params: MemoryModelParams) -> int:
    """Whole days until predicted retrievability falls to `retention`."""
    raw = stability / params.decay_factor * (retention ** (1.0 / params.decay_exponent) - 1.0)
    return max(1, min(params.max_interval_days, round(raw)))


def apply_memory_model(
    schedule: MemorySchedule,
    grade: Grade,
    last_reviewed: datetime | None,
    now: datetime,
    params: MemoryModelParams,
) -> MemoryTransition:
    grade = Grade(grade)
    reps = schedule.reps
    lapses = schedule.lapses
    if grade == Grade.AGAIN:
        lapses += 1
    else:
        reps += 1

    if schedule.stability is None or schedule.difficulty is None:
        # Nothing to decay from yet.
        r = None
        stability = initial_stability(grade, params)
        difficulty = initial_difficulty(grade, params)
    else:
        r = retrievability(elapsed_days(last_reviewed, now), schedule.stability, params)
        if grade == Grade.AGAIN:
            stability = stability_after_lapse(schedule.difficulty, schedule.stability, r, params)
        else:
            stability = stability_after_recall(
                schedule.difficulty, schedule.stability, r, grade, params
            )
        difficulty = next_difficulty(schedule.difficulty, grade, params)

    interval = next_interval(stability, target_retention(difficulty, params), params)
    new_schedule = MemorySchedule(
        interval=interval,
        stability=stability,
        difficulty=difficulty,
        reps=reps,
        lapses=lapses,
        last_grade=int(grade),
    )
    return MemoryTransition(
        schedule=new_schedule,
        next_review_date=now + timedelta(days=interval),
        retrievability=r,
    )
