"""Pareto front tracking for multi-objective calibration."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Callable, Sequence

from turbocalm.config import FitnessMetrics, QuantProfile

_OBJECTIVES: tuple[Callable[[FitnessMetrics], float], ...] = (
    lambda f: f.memory_gain,
    lambda f: f.delta_brier_lm,
    lambda f: f.cosine_penalty,
    lambda f: f.latency_penalty,
)


@dataclass
class ParetoSolution:
    """A profile together with its fitness and scalar objective value."""

    profile: QuantProfile
    fitness: FitnessMetrics
    objective_value: float


def dominates(a: FitnessMetrics, b: FitnessMetrics) -> bool:
    """True if ``a`` dominates ``b``: memory gain is maximised, all else minimised."""
    better_or_equal = (
        a.memory_gain >= b.memory_gain
        and a.delta_brier_lm <= b.delta_brier_lm
        and a.cosine_penalty <= b.cosine_penalty
        and a.latency_penalty <= b.latency_penalty
    )
    strictly_better = (
        a.memory_gain > b.memory_gain
        or a.delta_brier_lm < b.delta_brier_lm
        or a.cosine_penalty < b.cosine_penalty
        or a.latency_penalty < b.latency_penalty
    )
    return better_or_equal and strictly_better


def _quality_loss(solution: ParetoSolution) -> float:
    return solution.fitness.delta_brier_lm + solution.fitness.cosine_penalty


class ParetoFront:
    """A set of mutually non-dominated solutions, optionally bounded in size."""

    def __init__(self, max_size: int | None = None) -> None:
        self._solutions: list[ParetoSolution] = []
        self.max_size = max_size

    def add_solution(self, solution: ParetoSolution) -> None:
        """Insert ``solution`` unless dominated, evicting what it dominates."""
        if self.is_dominated(solution.fitness):
            return
        self._solutions = [
            existing
            for existing in self._solutions
            if not dominates(solution.fitness, existing.fitness)
        ]
        self._solutions.append(solution)
        if self.max_size is not None and len(self._solutions) > self.max_size:
            self._trim_to_size(self.max_size)

    def is_dominated(self, fitness: FitnessMetrics) -> bool:
        """True if any solution in the front dominates ``fitness``."""
        return any(dominates(sol.fitness, fitness) for sol in self._solutions)

    @property
    def solutions(self) -> list[ParetoSolution]:
        """The non-dominated solutions, in insertion order."""
        return list(self._solutions)

    def best_by_objective(self) -> ParetoSolution | None:
        """The solution with the lowest objective value (first on ties)."""
        return min(self._solutions, key=lambda s: s.objective_value, default=None)

    def best_memory_gain(self) -> ParetoSolution | None:
        """The solution with the highest memory gain (last on ties)."""
        return max(
            reversed(self._solutions), key=lambda s: s.fitness.memory_gain, default=None
        )

    def best_quality(self) -> ParetoSolution | None:
        """The solution with the lowest Brier delta plus cosine penalty."""
        return min(self._solutions, key=_quality_loss, default=None)

    def __len__(self) -> int:
        return len(self._solutions)

    def clear(self) -> None:
        """Remove every solution."""
        self._solutions.clear()

    def _trim_to_size(self, target_size: int) -> None:
        if len(self._solutions) <= target_size:
            return
        distances = self._crowding_distances()
        ranked = sorted(range(len(distances)), key=lambda i: distances[i], reverse=True)
        keep = sorted(ranked[:target_size])
        self._solutions = [self._solutions[i] for i in keep]

    def _crowding_distances(self) -> list[float]:
        n = len(self._solutions)
        if n <= 2:
            return [math.inf] * n

        distances = [0.0] * n
        for objective in _OBJECTIVES:
            values = [objective(s.fitness) for s in self._solutions]
            order = sorted(range(n), key=lambda i: values[i])
            distances[order[0]] = math.inf
            distances[order[-1]] = math.inf
            span = values[order[-1]] - values[order[0]]
            if span > 0.0:
                for prev, mid, nxt in zip(order, order[1:], order[2:]):
                    distances[mid] += (values[nxt] - values[prev]) / span
        return distances


def non_dominated_sort(solutions: Sequence[ParetoSolution]) -> list[list[int]]:
    """Partition solution indices into successive non-dominated fronts."""
    n = len(solutions)
    domination_counts = [0] * n
    dominated: list[list[int]] = [[] for _ in range(n)]

    for i, first in enumerate(solutions):
        for j, second in enumerate(solutions):
            if i == j:
                continue
            if dominates(first.fitness, second.fitness):
                dominated[i].append(j)
            elif dominates(second.fitness, first.fitness):
                domination_counts[i] += 1

    fronts: list[list[int]] = []
    current = [i for i, count in enumerate(domination_counts) if count == 0]
    while current:
        fronts.append(current)
        following: list[int] = []
        for idx in current:
            for other in dominated[idx]:
                domination_counts[other] -= 1
                if domination_counts[other] == 0:
                    following.append(other)
        current = following
    return fronts