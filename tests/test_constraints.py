"""Tests for generation config validation.

Covers every validation branch in validate_generation_config().
"""

from __future__ import annotations

from dataclasses import replace

import pytest

from backend.domain.constraints import (
    GenerationConfig,
    build_generation_config,
    validate_generation_config,
)
from backend.domain.errors import ValidationError
from backend.utils.config import get_settings


def valid_config(**overrides) -> GenerationConfig:
    """Return a valid baseline GenerationConfig, optionally overriding fields."""
    get_settings.cache_clear()
    return replace(build_generation_config(get_settings()), **overrides)


# --- Baseline pass ---

def test_valid_config_passes() -> None:
    validate_generation_config(valid_config())


def test_defaults_come_from_settings() -> None:
    config = valid_config()
    assert config.algorithm == "greedy"
    assert config.days[0].value == "Monday"
    assert config.working_window.start_time == "08:00"
    assert config.teacher_availability_mode == "hard"


def test_overrides_replace_defaults() -> None:
    get_settings.cache_clear()
    config = build_generation_config(
        get_settings(),
        {
            "algorithm": "genetic",
            "working_days": ["monday", "Wednesday"],
            "working_hours": {"start": "09:00", "end": "12:00"},
            "random_seed": 3,
            "max_iterations": None,
        },
    )
    assert config.algorithm == "genetic"
    assert [day.value for day in config.days] == ["Monday", "Wednesday"]
    assert config.working_window.end_time == "12:00"
    assert config.random_seed == 3
    assert config.max_iterations == get_settings().generation_max_iterations


def test_validation_error_is_a_value_error() -> None:
    with pytest.raises(ValueError):
        validate_generation_config(valid_config(algorithm="tabu"))


@pytest.mark.parametrize(
    "overrides",
    [
        {"algorithm": "simulated_annealing"},
        {"max_iterations": 0},
        {"working_days": ()},
        {"working_days": ("Monday", "Funday")},
        {"working_days": ("Monday", "monday")},
        {"working_hours_start": "18:00", "working_hours_end": "08:00"},
        {"working_hours_start": "8am"},
        {"slot_duration_minutes": 0},
        {"slot_duration_minutes": 11 * 60},
        {"break_minutes": -5},
        {"backtrack_depth": -1},
        {"teacher_availability_mode": "maybe"},
        {"population_size": 1},
        {"mutation_rate": 1.5},
        {"crossover_rate": -0.1},
        {"elite_fraction": 1.0},
        {"tournament_size": 0},
        {"stagnation_limit": 0},
        {"random_seed": -1},
    ],
)
def test_invalid_fields_raise(overrides) -> None:
    with pytest.raises(ValidationError):
        validate_generation_config(valid_config(**overrides))


@pytest.mark.parametrize(
    "overrides, field",
    [
        ({"max_iterations": "lots"}, "max_iterations"),
        ({"max_iterations": 2.5}, "max_iterations"),
        ({"population_size": [10]}, "population_size"),
        ({"mutation_rate": "often"}, "mutation_rate"),
        ({"tournament_size": True}, "tournament_size"),
        ({"random_seed": "five"}, "random_seed"),
        ({"working_hours": "08:00-18:00"}, "working_hours"),
        ({"working_days": "Monday"}, "working_days"),
    ],
)
def test_uncoercible_overrides_raise_validation_error(overrides, field: str) -> None:
    get_settings.cache_clear()
    with pytest.raises(ValidationError, match=field):
        build_generation_config(get_settings(), overrides)


def test_numeric_strings_are_coerced() -> None:
    get_settings.cache_clear()
    config = build_generation_config(
        get_settings(),
        {"algorithm": "genetic", "random_seed": "5", "max_iterations": "200", "mutation_rate": "0.2"},
    )
    assert config.random_seed == 5
    assert config.max_iterations == 200
    assert config.mutation_rate == 0.2


def test_unseeded_genetic_config_is_allowed() -> None:
    validate_generation_config(valid_config(algorithm="genetic", random_seed=None))
