"""Domain-level validation rules for timetable generation."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping, Optional

from backend.domain.errors import ValidationError
from backend.domain.intervals import TimeInterval
from backend.domain.models import DayOfWeek
from backend.utils.config import Settings


ALGORITHMS = ("greedy", "constraint_satisfaction", "genetic")
AVAILABILITY_MODES = ("hard", "soft")


@dataclass(frozen=True)
class GenerationConfig:
    algorithm: str
    max_iterations: int
    working_days: tuple[str, ...]
    working_hours_start: str
    working_hours_end: str
    slot_duration_minutes: int
    break_minutes: int
    backtrack_depth: int
    teacher_availability_mode: str
    population_size: int
    mutation_rate: float
    crossover_rate: float
    elite_fraction: float
    tournament_size: int
    stagnation_limit: int
    hard_penalty: float
    random_seed: Optional[int]

    @property
    def days(self) -> tuple[DayOfWeek, ...]:
        return tuple(DayOfWeek.parse(day) for day in self.working_days)

    @property
    def working_window(self) -> TimeInterval:
        return TimeInterval.from_strings(self.working_hours_start, self.working_hours_end)

    def to_dict(self) -> dict[str, Any]:
        return {
            "algorithm": self.algorithm,
            "max_iterations": self.max_iterations,
            "working_days": list(self.working_days),
            "working_hours": {
                "start": self.working_hours_start,
                "end": self.working_hours_end,
            },
            "slot_duration_minutes": self.slot_duration_minutes,
            "break_minutes": self.break_minutes,
            "backtrack_depth": self.backtrack_depth,
            "teacher_availability_mode": self.teacher_availability_mode,
            "population_size": self.population_size,
            "mutation_rate": self.mutation_rate,
            "crossover_rate": self.crossover_rate,
            "random_seed": self.random_seed,
        }


def _coerce(values: Mapping[str, Any], key: str, default: Any, kind: type, label: str) -> Any:
    value = values.get(key)
    if value is None:
        value = default
    if value is None:
        return None
    if kind is int and isinstance(value, bool):
        raise ValidationError(f"{key} must be {label}, got {value!r}")
    if kind is int and isinstance(value, float) and not value.is_integer():
        raise ValidationError(f"{key} must be {label}, got {value!r}")
    try:
        return kind(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(f"{key} must be {label}, got {value!r}") from exc


def build_generation_config(
    settings: Settings,
    overrides: Optional[Mapping[str, Any]] = None,
) -> GenerationConfig:
    """Merge request overrides over settings defaults and validate the result.

    Raises ValidationError when an override cannot be coerced to its field type.
    """
    values = {key: value for key, value in (overrides or {}).items() if value is not None}
    working_hours = values.get("working_hours") or {}
    if not isinstance(working_hours, Mapping):
        raise ValidationError("working_hours must be an object with start and end")
    working_days = values.get("working_days", settings.generation_working_days)
    if isinstance(working_days, str) or not isinstance(working_days, (list, tuple)):
        raise ValidationError("working_days must be a list of day names")
    config = GenerationConfig(
        algorithm=_coerce(values, "algorithm", settings.generation_default_algorithm, str, "a string"),
        max_iterations=_coerce(values, "max_iterations", settings.generation_max_iterations, int, "an integer"),
        working_days=tuple(str(day) for day in working_days),
        working_hours_start=_coerce(
            working_hours, "start", settings.generation_working_hours_start, str, "a time string"
        ),
        working_hours_end=_coerce(
            working_hours, "end", settings.generation_working_hours_end, str, "a time string"
        ),
        slot_duration_minutes=_coerce(
            values, "slot_duration_minutes", settings.generation_slot_duration_minutes, int, "an integer"
        ),
        break_minutes=_coerce(values, "break_minutes", settings.generation_break_minutes, int, "an integer"),
        backtrack_depth=_coerce(values, "backtrack_depth", settings.generation_backtrack_depth, int, "an integer"),
        teacher_availability_mode=_coerce(
            values,
            "teacher_availability_mode",
            settings.generation_teacher_availability_mode,
            str,
            "a string",
        ),
        population_size=_coerce(values, "population_size", settings.genetic_population_size, int, "an integer"),
        mutation_rate=_coerce(values, "mutation_rate", settings.genetic_mutation_rate, float, "a number"),
        crossover_rate=_coerce(values, "crossover_rate", settings.genetic_crossover_rate, float, "a number"),
        elite_fraction=_coerce(values, "elite_fraction", settings.genetic_elite_fraction, float, "a number"),
        tournament_size=_coerce(values, "tournament_size", settings.genetic_tournament_size, int, "an integer"),
        stagnation_limit=_coerce(values, "stagnation_limit", settings.genetic_stagnation_limit, int, "an integer"),
        hard_penalty=float(settings.genetic_hard_penalty),
        random_seed=_coerce(values, "random_seed", settings.genetic_random_seed, int, "an integer"),
    )
    validate_generation_config(config)
    return config


def validate_generation_config(config: GenerationConfig) -> None:
    if config.algorithm not in ALGORITHMS:
        raise ValidationError(
            f"algorithm must be one of {', '.join(ALGORITHMS)}, got {config.algorithm!r}"
        )
    if config.max_iterations <= 0:
        raise ValidationError("max_iterations must be > 0")
    if not config.working_days:
        raise ValidationError("working_days must not be empty")
    days = config.days
    if len(set(days)) != len(days):
        raise ValidationError("working_days must not contain duplicates")
    try:
        window = config.working_window
    except ValidationError as exc:
        raise ValidationError(f"working_hours are invalid: {exc}") from exc
    if config.slot_duration_minutes <= 0:
        raise ValidationError("slot_duration_minutes must be > 0")
    if config.slot_duration_minutes > window.duration:
        raise ValidationError("slot_duration_minutes must fit inside the working hours")
    if config.break_minutes < 0:
        raise ValidationError("break_minutes must be >= 0")
    if config.backtrack_depth < 0:
        raise ValidationError("backtrack_depth must be >= 0")
    if config.teacher_availability_mode not in AVAILABILITY_MODES:
        raise ValidationError("teacher_availability_mode must be 'hard' or 'soft'")
    if config.population_size < 2:
        raise ValidationError("population_size must be >= 2")
    if not 0.0 <= config.mutation_rate <= 1.0:
        raise ValidationError("mutation_rate must be between 0 and 1")
    if not 0.0 <= config.crossover_rate <= 1.0:
        raise ValidationError("crossover_rate must be between 0 and 1")
    if not 0.0 <= config.elite_fraction < 1.0:
        raise ValidationError("elite_fraction must be in [0, 1)")
    if config.tournament_size < 1:
        raise ValidationError("tournament_size must be >= 1")
    if config.stagnation_limit <= 0:
        raise ValidationError("stagnation_limit must be > 0")
    if config.random_seed is not None and config.random_seed < 0:
        raise ValidationError("random_seed must be >= 0")
