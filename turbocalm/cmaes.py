"""Covariance Matrix Adaptation Evolution Strategy over continuous parameters."""

from __future__ import annotations

import math
from typing import Sequence

import numpy as np

from turbocalm.config import ContinuousParams

DIMENSION = 3  # clipping_percentile, scale_multiplier, qjl_threshold
INITIAL_SIGMA = 0.3
MAX_GENERATIONS = 1000
MIN_SIGMA = 1e-12

_LOWER = np.array([0.01, 0.1, 1e-6])
_UPPER = np.array([0.99, 10.0, 1e-2])


def _to_vector(params: ContinuousParams) -> np.ndarray:
    return np.array(
        [params.clipping_percentile, params.scale_multiplier, params.qjl_threshold],
        dtype=np.float64,
    )


def _to_params(vector: np.ndarray) -> ContinuousParams:
    clipped = np.minimum(np.maximum(vector, _LOWER), _UPPER)
    return ContinuousParams(
        clipping_percentile=float(clipped[0]),
        scale_multiplier=float(clipped[1]),
        qjl_threshold=float(clipped[2]),
    )


def recombination_weights(mu: int) -> np.ndarray:
    """Normalised log-rank weights ``ln(mu + 0.5) - ln(rank)`` for ranks 1..mu."""
    if mu < 1:
        raise ValueError("mu must be at least 1")
    ranks = np.arange(1, mu + 1, dtype=np.float64)
    raw = math.log(mu + 0.5) - np.log(ranks)
    return raw / raw.sum()


def cholesky(matrix: Sequence[Sequence[float]] | np.ndarray) -> np.ndarray:
    """Lower-triangular ``L`` with ``L @ L.T == matrix`` for a symmetric matrix.

    A matrix that is not positive definite yields NaN entries rather than an error.
    """
    c = np.asarray(matrix, dtype=np.float64)
    if c.ndim != 2 or c.shape[0] != c.shape[1]:
        raise ValueError("matrix must be square")
    n = c.shape[0]
    lower = np.zeros((n, n), dtype=np.float64)
    with np.errstate(invalid="ignore", divide="ignore"):
        for i in range(n):
            for j in range(i + 1):
                partial = float(np.dot(lower[i, :j], lower[j, :j]))
                if i == j:
                    lower[i, j] = np.sqrt(c[i, i] - partial)
                else:
                    lower[i, j] = (c[i, j] - partial) / lower[j, j]
    return lower


class CmaEs:
    """CMA-ES minimiser for :class:`ContinuousParams`."""

    def __init__(
        self,
        initial_params: ContinuousParams,
        population_size: int,
        seed: int | None = None,
    ) -> None:
        if population_size < 1:
            raise ValueError("population_size must be at least 1")
        d = float(DIMENSION)
        self.dimension = DIMENSION
        self.lambda_ = population_size
        self.mu = max(population_size // 2, 1)
        self.mean = _to_vector(initial_params)
        self.sigma = INITIAL_SIGMA

        self.weights = recombination_weights(self.mu)
        self.mu_eff = 1.0 / float(np.sum(self.weights**2))
        mu_eff = self.mu_eff

        self.cc = (4.0 + mu_eff / d) / (d + 4.0 + 2.0 * mu_eff / d)
        self.cs = (mu_eff + 2.0) / (d + mu_eff + 5.0)
        self.c1 = 2.0 / ((d + 1.3) ** 2 + mu_eff)
        self.cmu = 2.0 * (mu_eff - 2.0 + 1.0 / mu_eff) / ((d + 2.0) ** 2 + mu_eff)
        self.damps = 1.0 + 2.0 * math.sqrt(max(0.0, (mu_eff - 1.0) / (d + 1.0) - 1.0)) + self.cs
        self.chi_n = math.sqrt(d) * (1.0 - 1.0 / (4.0 * d) + 1.0 / (21.0 * d * d))

        self.covariance = np.eye(DIMENSION, dtype=np.float64)
        self.pc = np.zeros(DIMENSION, dtype=np.float64)
        self.ps = np.zeros(DIMENSION, dtype=np.float64)
        self.generation = 0
        self._rng = np.random.default_rng(seed)

    def ask(self) -> list[ContinuousParams]:
        """Sample a population from ``N(mean, sigma^2 C)``, clipped to bounds."""
        root = cholesky(self.covariance)
        population = []
        for _ in range(self.lambda_):
            z = self._rng.standard_normal(self.dimension)
            population.append(_to_params(self.mean + self.sigma * (root @ z)))
        return population

    def tell(self, population: Sequence[ContinuousParams], fitness: Sequence[float]) -> None:
        """Update the search distribution from evaluated fitness (lower is better)."""
        if len(population) != self.lambda_ or len(fitness) != self.lambda_:
            raise ValueError("Population size mismatch")
        if any(math.isnan(f) for f in fitness):
            raise ValueError("fitness values must not be NaN")

        order = sorted(range(self.lambda_), key=lambda i: fitness[i])
        vectors = np.array([_to_vector(p) for p in population])
        selected = vectors[order[: self.mu]]

        old_mean = self.mean.copy()
        self.mean = self.weights @ selected
        mean_diff = (self.mean - old_mean) / self.sigma

        c_sigma = math.sqrt(self.cs * (2.0 - self.cs) * self.mu_eff)
        self.ps = (1.0 - self.cs) * self.ps + c_sigma * mean_diff

        decay = math.sqrt(1.0 - (1.0 - self.cs) ** (2 * (self.generation + 1)))
        h_sig = 1.0 if np.linalg.norm(self.ps) / decay < 1.4 + 2.0 / (self.dimension + 1.0) else 0.0

        c_cov = math.sqrt(self.cc * (2.0 - self.cc) * self.mu_eff)
        self.pc = (1.0 - self.cc) * self.pc + h_sig * c_cov * mean_diff

        steps = (selected - old_mean) / self.sigma
        updated = (
            (1.0 - self.c1 - self.cmu) * self.covariance
            + self.c1 * np.outer(self.pc, self.pc)
            + self.cmu * (steps.T @ (self.weights[:, None] * steps))
        )
        self.covariance = np.tril(updated) + np.tril(updated, -1).T

        ps_norm = float(np.linalg.norm(self.ps))
        self.sigma *= math.exp(self.cs / self.damps * (ps_norm / self.chi_n - 1.0))
        self.generation += 1

    def current_best(self) -> ContinuousParams:
        """The current mean, clipped to parameter bounds."""
        return _to_params(self.mean)

    def has_converged(self) -> bool:
        """True once the step size collapses or the generation budget is spent."""
        return self.sigma < MIN_SIGMA or self.generation > MAX_GENERATIONS