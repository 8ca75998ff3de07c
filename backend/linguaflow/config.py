from pathlib import Path

from pydantic_settings import BaseSettings

# FSRS weight vector tuned for vocabulary and sentence review.
# 0-3 initial stability per grade, 4-7 difficulty, 8-10 recall stability,
# 11-14 lapse stability, 15 hard penalty, 16 easy bonus, 17-18 unused.
DEFAULT_FSRS_WEIGHTS = [
    0.35, 1.25, 3.5, 18.0, 7.2, 0.55, 1.5, 0.005, 1.6, 0.12, 1.05,
    2.0, 0.12, 0.32, 2.4, 0.25, 3.2, 0.55, 0.7,
]


class Settings(BaseSettings):
    data_dir: Path = Path.home() / ".linguaflow" / "data"
    sqlite_filename: str = "linguaflow.db"
    log_level: str = "info"

    # Geometric mode (minutes)
    base_interval_minutes: int = 15
    max_interval_minutes: int | None = None  # None = only the 100-year hard ceiling

    # Memory-model mode (days)
    desired_retention: float = 0.9
    adaptive_retention: bool = True
    max_interval_days: int = 36500
    min_stability: float = 0.1
    max_stability: float = 730.0
    fsrs_weights: list[float] = DEFAULT_FSRS_WEIGHTS
    fsrs_decay_factor: float = 0.25
    fsrs_decay_exponent: float = -0.45

    max_grade_retries: int = 5

    model_config = {"env_prefix": "LINGUAFLOW_"}


settings = Settings()
