"""Placement strategies: greedy, constraint satisfaction and genetic search."""

from __future__ import annotations

import math
import threading
from collections import Counter, defaultdict
from dataclasses import dataclass
from typing import Optional, Sequence

import numpy as np

from backend.domain.constraints import GenerationConfig
from backend.domain.errors import GenerationCancelledError, ValidationError
from backend.domain.intervals import TimeInterval
from backend.services.conflict_service import SchedulingCatalog
from backend.services.placement import Candidate, PlacementState, RequestSpace, SessionRequest
from backend.utils.logger import get_logger


logger = get_logger(__name__)

LUNCH_HOUR = TimeInterval.from_strings("12:00", "13:00")


@dataclass
class StrategyContext:
    spaces: list[RequestSpace]
    catalog: SchedulingCatalog
    config: GenerationConfig
    cancel_event: Optional[threading.Event] = None

    def checkpoint(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise GenerationCancelledError("Generation cancelled")


@dataclass(frozen=True)
class StrategyOutcome:
    placements: dict[str, Candidate]
    unscheduled: list[SessionRequest]
    iterations: int
    reasons: dict[str, str]


def greedy_order(space: RequestSpace, state: PlacementState) -> list[Candidate]:
    """Candidates with the course's least-loaded days first.

    The sort is stable, so within a day the fixed (slot, room, teacher)
    order is kept.
    """
    course_id = space.request.course.course_id
    return sorted(
        space.candidates,
        key=lambda candidate: (state.course_day_load(course_id, candidate.day), candidate.day.index),
    )


def _failure_reason(space: RequestSpace, state: PlacementState) -> str:
    if not space.room_ids:
        return "no room satisfies capacity, type and equipment requirements"
    if not space.teacher_ids:
        return "no qualified teacher"
    if not space.candidates:
        return "no qualified teacher is available in the working hours"
    counts = Counter(state.violation(space.request, candidate) for candidate in space.candidates)
    worst = max(counts, key=lambda item: counts[item] if item else -1)
    return f"every candidate slot is blocked ({worst} constraint)"


def _place_greedily(space: RequestSpace, state: PlacementState) -> tuple[bool, int]:
    attempts = 0
    for candidate in greedy_order(space, state):
        attempts += 1
        if state.is_feasible(space.request, candidate):
            state.commit(space.request, candidate)
            return True, attempts
    return False, attempts


def _outcome(context: StrategyContext, state: PlacementState, iterations: int) -> StrategyOutcome:
    unscheduled = [space.request for space in context.spaces if space.request.request_id not in state.placements]
    reasons = {
        space.request.request_id: _failure_reason(space, state)
        for space in context.spaces
        if space.request.request_id not in state.placements
    }
    return StrategyOutcome(
        placements=dict(state.placements),
        unscheduled=unscheduled,
        iterations=iterations,
        reasons=reasons,
    )


class PlacementStrategy:
    name = ""
    description = ""
    parameters: tuple[str, ...] = ()

    def run(self, context: StrategyContext) -> StrategyOutcome:
        raise NotImplementedError

    def describe(self) -> dict:
        return {
            "id": self.name,
            "description": self.description,
            "parameters": list(self.parameters),
        }


class GreedyStrategy(PlacementStrategy):
    name = "greedy"
    description = (
        "Places the scarcest sessions first. Each session takes the first feasible slot, room "
        "and teacher, trying the days its course uses least before the rest."
    )
    parameters = ("working_days", "working_hours", "slot_duration_minutes")

    def run(self, context: StrategyContext) -> StrategyOutcome:
        state = PlacementState(context.catalog)
        iterations = 0
        for space in context.spaces:
            context.checkpoint()
            placed, attempts = _place_greedily(space, state)
            iterations += attempts
            if not placed:
                logger.warning(
                    "Session unplaceable | session=%s | course=%s",
                    space.request.request_id,
                    space.request.course.code,
                )
        return _outcome(context, state, iterations)


class ConstraintSatisfactionStrategy(PlacementStrategy):
    name = "constraint_satisfaction"
    description = (
        "Greedy search with bounded chronological backtracking: a session that cannot be "
        "placed undoes the most recent placements and retries their alternatives."
    )
    parameters = ("max_iterations", "backtrack_depth", "working_days", "working_hours")

    def run(self, context: StrategyContext) -> StrategyOutcome:
        spaces = context.spaces
        budget = context.config.max_iterations
        depth = context.config.backtrack_depth
        state = PlacementState(context.catalog)
        orders: dict[int, list[Candidate]] = {}
        cursors: dict[int, int] = defaultdict(int)
        backtracks: dict[int, int] = defaultdict(int)
        placed_stack: list[int] = []
        iterations = 0
        index = 0

        while index < len(spaces) and iterations < budget:
            context.checkpoint()
            space = spaces[index]
            ordered = orders.get(index)
            if ordered is None:
                ordered = greedy_order(space, state)
                orders[index] = ordered
            found: Optional[Candidate] = None
            position = cursors[index]
            while position < len(ordered) and iterations < budget:
                iterations += 1
                candidate = ordered[position]
                position += 1
                if state.is_feasible(space.request, candidate):
                    found = candidate
                    break
            cursors[index] = position

            if found is not None:
                state.commit(space.request, found)
                placed_stack.append(index)
                index += 1
                continue
            if iterations >= budget:
                break
            if placed_stack and backtracks[index] < depth:
                backtracks[index] += 1
                previous = placed_stack.pop()
                state.undo(spaces[previous].request)
                for skipped in range(previous + 1, index + 1):
                    orders.pop(skipped, None)
                    cursors[skipped] = 0
                logger.debug(
                    "Backtracking | failed=%s | retry=%s | attempt=%s",
                    space.request.request_id,
                    spaces[previous].request.request_id,
                    backtracks[index],
                )
                index = previous
                continue
            logger.warning(
                "Session unplaceable | session=%s | course=%s",
                space.request.request_id,
                space.request.course.code,
            )
            index += 1

        if index < len(spaces):
            logger.info(
                "Iteration budget exhausted | iterations=%s | remaining=%s",
                iterations,
                len(spaces) - index,
            )
            for space in spaces[index:]:
                context.checkpoint()
                _, attempts = _place_greedily(space, state)
                iterations += attempts
        return _outcome(context, state, iterations)


class GeneticStrategy(PlacementStrategy):
    name = "genetic"
    description = (
        "Evolves complete assignments with tournament selection, single-point crossover "
        "and mutation; hard violations dominate, soft preferences break ties."
    )
    parameters = (
        "max_iterations",
        "population_size",
        "mutation_rate",
        "crossover_rate",
        "random_seed",
    )

    def run(self, context: StrategyContext) -> StrategyOutcome:
        config = context.config
        spaces = context.spaces
        rng = np.random.default_rng(config.random_seed)
        sizes = np.array([len(space.candidates) for space in spaces], dtype=np.int64)
        neighbours = [self._neighbour_index(space) for space in spaces]

        seed = self._seed_chromosome(context, rng, sizes)
        population = [seed] + [self._random_chromosome(rng, sizes) for _ in range(config.population_size - 1)]
        elite_count = max(1, int(math.ceil(config.elite_fraction * config.population_size)))

        best = seed.copy()
        best_score = self._penalty(best, context)
        stagnation = 0
        generation = 0
        for generation in range(1, config.max_iterations + 1):
            context.checkpoint()
            scores = np.array([self._penalty(chromosome, context) for chromosome in population])
            ranking = np.argsort(scores, kind="stable")
            if scores[ranking[0]] < best_score:
                best_score = float(scores[ranking[0]])
                best = population[ranking[0]].copy()
                stagnation = 0
            else:
                stagnation += 1
            if best_score == 0.0 or stagnation >= config.stagnation_limit:
                break

            next_population = [population[position].copy() for position in ranking[:elite_count]]
            while len(next_population) < config.population_size:
                first = self._tournament(population, scores, rng, config.tournament_size)
                second = self._tournament(population, scores, rng, config.tournament_size)
                if len(spaces) > 1 and rng.random() < config.crossover_rate:
                    point = int(rng.integers(1, len(spaces)))
                    child = np.concatenate([first[:point], second[point:]])
                else:
                    child = first.copy()
                self._mutate(child, rng, config.mutation_rate, spaces, neighbours)
                next_population.append(child)
            population = next_population

        logger.info(
            "Genetic search finished | generations=%s | best_penalty=%.2f",
            generation,
            best_score,
        )
        state = PlacementState(context.catalog)
        for position, space in enumerate(spaces):
            gene = int(best[position])
            if gene >= 0:
                candidate = space.candidates[gene]
                if state.is_feasible(space.request, candidate):
                    state.commit(space.request, candidate)
                    continue
            _place_greedily(space, state)
        return _outcome(context, state, generation)

    @staticmethod
    def _random_chromosome(rng: np.random.Generator, sizes: np.ndarray) -> np.ndarray:
        genes = np.full(len(sizes), -1, dtype=np.int64)
        mask = sizes > 0
        genes[mask] = rng.integers(0, sizes[mask])
        return genes

    def _seed_chromosome(
        self,
        context: StrategyContext,
        rng: np.random.Generator,
        sizes: np.ndarray,
    ) -> np.ndarray:
        genes = self._random_chromosome(rng, sizes)
        outcome = GreedyStrategy().run(context)
        for position, space in enumerate(context.spaces):
            candidate = outcome.placements.get(space.request.request_id)
            if candidate is not None:
                genes[position] = space.candidates.index(candidate)
        return genes

    @staticmethod
    def _neighbour_index(space: RequestSpace) -> dict[str, dict[tuple, list[int]]]:
        by_room: dict[tuple, list[int]] = defaultdict(list)
        by_slot: dict[tuple, list[int]] = defaultdict(list)
        by_teacher: dict[tuple, list[int]] = defaultdict(list)
        for position, candidate in enumerate(space.candidates):
            by_room[(candidate.slot_index, candidate.teacher_id)].append(position)
            by_slot[(candidate.room_id, candidate.teacher_id)].append(position)
            by_teacher[(candidate.slot_index, candidate.room_id)].append(position)
        return {"room": by_room, "slot": by_slot, "teacher": by_teacher}

    @staticmethod
    def _mutate(
        chromosome: np.ndarray,
        rng: np.random.Generator,
        rate: float,
        spaces: Sequence[RequestSpace],
        neighbours: Sequence[dict[str, dict[tuple, list[int]]]],
    ) -> None:
        """Change the room, slot or teacher of randomly chosen genes."""
        for position in np.flatnonzero(rng.random(len(chromosome)) < rate):
            gene = int(chromosome[position])
            if gene < 0:
                continue
            candidate = spaces[position].candidates[gene]
            aspect = ("room", "slot", "teacher")[int(rng.integers(0, 3))]
            if aspect == "room":
                options = neighbours[position]["room"][(candidate.slot_index, candidate.teacher_id)]
            elif aspect == "slot":
                options = neighbours[position]["slot"][(candidate.room_id, candidate.teacher_id)]
            else:
                options = neighbours[position]["teacher"][(candidate.slot_index, candidate.room_id)]
            chromosome[position] = options[int(rng.integers(0, len(options)))]

    @staticmethod
    def _tournament(
        population: Sequence[np.ndarray],
        scores: np.ndarray,
        rng: np.random.Generator,
        size: int,
    ) -> np.ndarray:
        contestants = rng.integers(0, len(population), size=size)
        winner = contestants[int(np.argmin(scores[contestants]))]
        return population[int(winner)]

    @staticmethod
    def _penalty(chromosome: np.ndarray, context: StrategyContext) -> float:
        """Hard violations weighted by ``hard_penalty`` plus soft objective terms."""
        catalog = context.catalog
        hard = 0
        rooms: Counter = Counter()
        teachers: Counter = Counter()
        groups: Counter = Counter()
        minutes: dict[str, int] = defaultdict(int)
        group_days: dict[tuple, list[int]] = defaultdict(list)
        preference_misses = 0
        lunch_sessions = 0
        for position, space in enumerate(context.spaces):
            gene = int(chromosome[position])
            if gene < 0:
                hard += 1
                continue
            candidate = space.candidates[gene]
            group = space.request.course.group_key
            rooms[(candidate.slot_index, candidate.room_id)] += 1
            teachers[(candidate.slot_index, candidate.teacher_id)] += 1
            groups[(candidate.slot_index, group)] += 1
            minutes[candidate.teacher_id] += candidate.interval.duration
            group_days[(group, candidate.day)].append(candidate.slot_index)
            teacher = catalog.teachers[candidate.teacher_id]
            if LUNCH_HOUR.start_minutes <= candidate.interval.start_minutes < LUNCH_HOUR.end_minutes:
                lunch_sessions += 1
            if teacher.preferred_slots and not teacher.prefers(candidate.day, candidate.interval.start_time):
                preference_misses += 1
        for counter in (rooms, teachers, groups):
            hard += sum(count - 1 for count in counter.values() if count > 1)
        for teacher_id, total in minutes.items():
            if total > catalog.teachers[teacher_id].max_weekly_hours * 60:
                hard += 1
        load = np.array([total / 60.0 for total in minutes.values()]) if minutes else np.zeros(1)
        gaps = sum(max(indices) - min(indices) + 1 - len(set(indices)) for indices in group_days.values())
        soft = preference_misses + 2.0 * float(np.std(load)) + 0.5 * gaps + 0.5 * lunch_sessions
        return hard * context.config.hard_penalty + soft


STRATEGY_REGISTRY: dict[str, PlacementStrategy] = {
    strategy.name: strategy
    for strategy in (GreedyStrategy(), ConstraintSatisfactionStrategy(), GeneticStrategy())
}


def resolve_strategy(name: str) -> PlacementStrategy:
    try:
        return STRATEGY_REGISTRY[name]
    except KeyError as exc:
        raise ValidationError(
            f"Unknown algorithm {name!r}; expected one of {', '.join(STRATEGY_REGISTRY)}"
        ) from exc
