"""Environment-driven runtime settings."""

from __future__ import annotations

import os
from dataclasses import dataclass
from functools import lru_cache
from pathlib import Path
from typing import Optional


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return float(raw)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def _env_optional_int(name: str, default: Optional[int]) -> Optional[int]:
    raw = os.getenv(name)
    if raw is None:
        return default
    if not raw.strip():
        return None
    return int(raw)


def _env_days(name: str, default: tuple[str, ...]) -> tuple[str, ...]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    return tuple(item.strip().capitalize() for item in raw.split(",") if item.strip())


@dataclass(frozen=True)
class Settings:
    app_name: str
    app_version: str
    log_level: str
    database_path: Path
    time_regex: str

    booking_working_hours_start: str
    booking_working_hours_end: str
    booking_reject_past_dates: bool

    generation_default_algorithm: str
    generation_max_iterations: int
    generation_working_days: tuple[str, ...]
    generation_working_hours_start: str
    generation_working_hours_end: str
    generation_slot_duration_minutes: int
    generation_break_minutes: int
    generation_backtrack_depth: int
    generation_teacher_availability_mode: str
    generation_default_enrollment: int
    generation_default_teacher_max_hours: int

    genetic_population_size: int
    genetic_mutation_rate: float
    genetic_crossover_rate: float
    genetic_elite_fraction: float
    genetic_tournament_size: int
    genetic_stagnation_limit: int
    genetic_hard_penalty: float
    genetic_random_seed: Optional[int]

    optimizer_max_passes: int

    job_max_workers: int
    job_retention_seconds: int

    seed_demo_catalog: bool


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Build settings once per process from environment variables."""
    return Settings(
        app_name=os.getenv("APP_NAME", "Academic Scheduling Core"),
        app_version=os.getenv("APP_VERSION", "1.0.0"),
        log_level=os.getenv("LOG_LEVEL", "INFO"),
        database_path=Path(os.getenv("SCHEDULER_DATABASE_PATH", "data/scheduler.db")),
        time_regex=r"^([0-1]\d|2[0-3]):[0-5]\d$",
        booking_working_hours_start=os.getenv("BOOKING_WORKING_HOURS_START", "07:00"),
        booking_working_hours_end=os.getenv("BOOKING_WORKING_HOURS_END", "21:00"),
        booking_reject_past_dates=_env_bool("BOOKING_REJECT_PAST_DATES", True),
        generation_default_algorithm=os.getenv("GENERATION_DEFAULT_ALGORITHM", "greedy"),
        generation_max_iterations=_env_int("GENERATION_MAX_ITERATIONS", 1000),
        generation_working_days=_env_days(
            "GENERATION_WORKING_DAYS",
            ("Monday", "Tuesday", "Wednesday", "Thursday", "Friday"),
        ),
        generation_working_hours_start=os.getenv("GENERATION_WORKING_HOURS_START", "08:00"),
        generation_working_hours_end=os.getenv("GENERATION_WORKING_HOURS_END", "18:00"),
        generation_slot_duration_minutes=_env_int("GENERATION_SLOT_DURATION_MINUTES", 60),
        generation_break_minutes=_env_int("GENERATION_BREAK_MINUTES", 0),
        generation_backtrack_depth=_env_int("GENERATION_BACKTRACK_DEPTH", 3),
        generation_teacher_availability_mode=os.getenv(
            "GENERATION_TEACHER_AVAILABILITY_MODE", "hard"
        ),
        generation_default_enrollment=_env_int("GENERATION_DEFAULT_ENROLLMENT", 30),
        generation_default_teacher_max_hours=_env_int("GENERATION_DEFAULT_TEACHER_MAX_HOURS", 18),
        genetic_population_size=_env_int("GENETIC_POPULATION_SIZE", 50),
        genetic_mutation_rate=_env_float("GENETIC_MUTATION_RATE", 0.1),
        genetic_crossover_rate=_env_float("GENETIC_CROSSOVER_RATE", 0.8),
        genetic_elite_fraction=_env_float("GENETIC_ELITE_FRACTION", 0.1),
        genetic_tournament_size=_env_int("GENETIC_TOURNAMENT_SIZE", 3),
        genetic_stagnation_limit=_env_int("GENETIC_STAGNATION_LIMIT", 100),
        genetic_hard_penalty=_env_float("GENETIC_HARD_PENALTY", 1000.0),
        genetic_random_seed=_env_optional_int("GENETIC_RANDOM_SEED", 42),
        optimizer_max_passes=_env_int("OPTIMIZER_MAX_PASSES", 5),
        job_max_workers=_env_int("JOB_MAX_WORKERS", 2),
        job_retention_seconds=_env_int("JOB_RETENTION_SECONDS", 3600),
        seed_demo_catalog=_env_bool("SEED_DEMO_CATALOG", True),
    )
