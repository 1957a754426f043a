"""Two-level calibration search: discrete enumeration with CMA-ES refinement."""

from __future__ import annotations

import itertools
import logging
import math
import time
from dataclasses import dataclass
from typing import Callable

from turbocalm.baseline import create_reference_metrics
from turbocalm.cmaes import CmaEs
from turbocalm.config import CalibrationConfig, ContinuousParams, FitnessMetrics, QuantProfile
from turbocalm.dataset import ProcessedDataset
from turbocalm.objective import BatchEvaluator
from turbocalm.pareto import ParetoFront, ParetoSolution

logger = logging.getLogger(__name__)

PARETO_FRONT_LIMIT = 100
CMAES_SEED_OFFSET = 12345
SCALE_MODE = "per_token"


@dataclass
class SearchProgress:
    """Progress reported after each discrete configuration."""

    iteration: int
    total_iterations: int
    current_discrete_config: str
    pareto_size: int
    best_objective: float
    best_fitness: FitnessMetrics


@dataclass
class SearchStatistics:
    """Performance figures of a finished search."""

    total_iterations: int
    discrete_configs_explored: int
    avg_cmaes_iterations: float
    total_time_ms: float
    evaluations_per_second: float


@dataclass
class SearchResults:
    """Outcome of a calibration search."""

    pareto_solutions: list[ParetoSolution]
    best_solution: ParetoSolution
    statistics: SearchStatistics


ProgressCallback = Callable[[SearchProgress], None]


def _config_name(bit_width: int, qjl_dim: int, rotation_seed: int) -> str:
    return f"{bit_width}bit_{qjl_dim}qjl_{rotation_seed}seed"


class CalibrationSearch:
    """Orchestrates the outer discrete loop and the inner CMA-ES loop."""

    def __init__(self, config: CalibrationConfig) -> None:
        self.config = config
        self._evaluator = BatchEvaluator(config.weights)
        self._pareto_front = ParetoFront(PARETO_FRONT_LIMIT)
        self._iteration_count = 0
        self._best_solutions: dict[str, ParetoSolution] = {}

    def run_search(
        self,
        dataset: ProcessedDataset,
        progress_callback: ProgressCallback | None = None,
    ) -> SearchResults:
        """Run the full search over ``dataset`` and return the Pareto results."""
        logger.info(
            "Starting calibration search with %d discrete configurations",
            self.discrete_config_count(),
        )
        start = time.perf_counter()

        self._evaluator.set_reference(create_reference_metrics(dataset))

        total_evaluations = 0
        configs_explored = 0
        cmaes_iterations_sum = 0
        discrete = self.config.discrete

        for bit_width, qjl_dim, rotation_seed in itertools.product(
            list(discrete.bit_widths), list(discrete.qjl_dims), list(discrete.rotation_seeds)
        ):
            if self._iteration_count >= self.config.max_total_iterations:
                logger.warning("Reached maximum total iterations, stopping search")
                break

            name = _config_name(bit_width, qjl_dim, rotation_seed)
            logger.info("Exploring discrete config: %s", name)

            best, cmaes_iters = self._optimize_continuous(
                bit_width, qjl_dim, rotation_seed, dataset
            )
            total_evaluations += cmaes_iters * self.config.cmaes_population_size
            configs_explored += 1
            cmaes_iterations_sum += cmaes_iters
            self._best_solutions[name] = best

            if progress_callback is not None:
                front_best = self._pareto_front.best_by_objective()
                progress_callback(
                    SearchProgress(
                        iteration=self._iteration_count,
                        total_iterations=total_evaluations,
                        current_discrete_config=name,
                        pareto_size=len(self._pareto_front),
                        best_objective=(
                            math.inf if front_best is None else front_best.objective_value
                        ),
                        best_fitness=(
                            FitnessMetrics(0.0, math.inf, 1.0, 1.0)
                            if front_best is None
                            else front_best.fitness
                        ),
                    )
                )

        elapsed = time.perf_counter() - start

        best_solution = self._pareto_front.best_by_objective()
        if best_solution is None:
            raise RuntimeError("No solutions found")
        pareto_solutions = self._pareto_front.solutions

        if elapsed > 0.0:
            rate = total_evaluations / elapsed
        else:
            rate = math.inf if total_evaluations else 0.0

        statistics = SearchStatistics(
            total_iterations=total_evaluations,
            discrete_configs_explored=configs_explored,
            avg_cmaes_iterations=(
                cmaes_iterations_sum / configs_explored if configs_explored else 0.0
            ),
            total_time_ms=float(int(elapsed * 1000.0)),
            evaluations_per_second=rate,
        )
        logger.info(
            "Search completed: %d solutions in Pareto front, %d total evaluations in %.2fs",
            len(pareto_solutions),
            total_evaluations,
            elapsed,
        )
        return SearchResults(pareto_solutions, best_solution, statistics)

    def _optimize_continuous(
        self,
        bit_width: int,
        qjl_dim: int,
        rotation_seed: int,
        dataset: ProcessedDataset,
    ) -> tuple[ParetoSolution, int]:
        logger.debug(
            "Starting CMA-ES for bit_width=%d, qjl_dim=%d, rotation_seed=%d",
            bit_width,
            qjl_dim,
            rotation_seed,
        )
        cmaes = CmaEs(
            ContinuousParams(),
            self.config.cmaes_population_size,
            rotation_seed + CMAES_SEED_OFFSET,
        )
        best: ParetoSolution | None = None
        completed = 0

        for iteration in range(self.config.max_cmaes_iterations):
            if self._iteration_count >= self.config.max_total_iterations:
                break

            population = cmaes.ask()
            profiles = [
                QuantProfile(
                    bit_width=bit_width,
                    qjl_dim=qjl_dim,
                    rotation_seed=rotation_seed,
                    qjl_threshold=params.qjl_threshold,
                    scale_mode=SCALE_MODE,
                    clipping_percentile=params.clipping_percentile,
                    scale_multiplier=params.scale_multiplier,
                )
                for params in population
            ]
            evaluations = self._evaluator.evaluate_batch(profiles, dataset)
            cmaes.tell(population, [objective for _, objective in evaluations])

            for profile, (fitness, objective) in zip(profiles, evaluations):
                solution = ParetoSolution(profile, fitness, objective)
                self._pareto_front.add_solution(solution)
                if best is None or objective < best.objective_value:
                    best = solution

            self._iteration_count += self.config.cmaes_population_size
            completed = iteration + 1

            if cmaes.has_converged():
                logger.debug("CMA-ES converged after %d iterations", completed)
                break

        if best is None:
            raise RuntimeError("No valid solutions found in CMA-ES")
        logger.debug(
            "CMA-ES completed: %d iterations, best objective = %.6f",
            completed,
            best.objective_value,
        )
        return best, completed

    def discrete_config_count(self) -> int:
        """Number of discrete configurations in the search space."""
        return self.config.discrete.count()

    @property
    def pareto_front(self) -> ParetoFront:
        """The live Pareto front."""
        return self._pareto_front

    @property
    def best_solutions(self) -> dict[str, ParetoSolution]:
        """Best solution found for each explored discrete configuration."""
        return self._best_solutions


class SearchResume:
    """Seeds a new search with the Pareto solutions of an earlier one."""

    def __init__(self, previous_solutions: list[ParetoSolution]) -> None:
        self.previous_solutions = previous_solutions

    @classmethod
    def from_results(cls, results: SearchResults) -> SearchResume:
        return cls(list(results.pareto_solutions))

    def initialize_search(self, search: CalibrationSearch) -> None:
        """Add the previous solutions to ``search``'s Pareto front."""
        for solution in self.previous_solutions:
            search.pareto_front.add_solution(solution)
        logger.info("Resumed search with %d previous solutions", len(self.previous_solutions))


def create_exhaustive_search(max_iterations: int | None = None) -> CalibrationSearch:
    """Search the full default space, optionally with a smaller iteration budget."""
    config = CalibrationConfig()
    if max_iterations is not None:
        config.max_total_iterations = max_iterations
    return CalibrationSearch(config)


def create_focused_search(
    target_bit_width: int | None = None,
    target_qjl_dim: int | None = None,
) -> CalibrationSearch:
    """Search a narrowed space with a reduced budget."""
    config = CalibrationConfig()
    if target_bit_width is not None:
        config.discrete.bit_widths = [target_bit_width]
    if target_qjl_dim is not None:
        config.discrete.qjl_dims = [target_qjl_dim]
    config.max_cmaes_iterations = 30
    config.max_total_iterations = 500
    return CalibrationSearch(config)


def create_rapid_search() -> CalibrationSearch:
    """A single-configuration search with a minimal budget."""
    config = CalibrationConfig()
    config.discrete.bit_widths = [4]
    config.discrete.qjl_dims = [32]
    config.discrete.rotation_seeds = [42]
    config.max_cmaes_iterations = 10
    config.cmaes_population_size = 6
    config.max_total_iterations = 100
    return CalibrationSearch(config)