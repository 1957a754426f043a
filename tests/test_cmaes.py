import math

import numpy as np
import pytest

from turbocalm.cmaes import CmaEs, cholesky, recombination_weights
from turbocalm.config import ContinuousParams


def _in_bounds(p: ContinuousParams) -> bool:
    return (
        0.01 <= p.clipping_percentile <= 0.99
        and 0.1 <= p.scale_multiplier <= 10.0
        and 1e-6 <= p.qjl_threshold <= 1e-2
    )


def _all_finite(values) -> bool:
    return bool(np.all(np.isfinite(np.asarray(values))))


def test_recombination_weights_properties():
    cmaes = CmaEs(ContinuousParams(), 10, seed=42)
    assert cmaes.mu == 5
    assert len(cmaes.weights) == 5
    assert all(w > 0 for w in cmaes.weights)
    assert sum(cmaes.weights) == pytest.approx(1.0, abs=1e-12)
    assert all(a > b for a, b in zip(cmaes.weights, cmaes.weights[1:]))
    assert 1.0 < cmaes.mu_eff < cmaes.mu


def test_recombination_weights_single():
    assert list(recombination_weights(1)) == pytest.approx([1.0], abs=1e-12)


def test_recombination_weights_rejects_zero():
    with pytest.raises(ValueError):
        recombination_weights(0)


def test_cholesky_known_matrix():
    lower = cholesky([[4.0, 2.0], [2.0, 3.0]])
    assert lower == pytest.approx(np.array([[2.0, 0.0], [1.0, math.sqrt(2.0)]]))


def test_cholesky_reconstructs_matrix():
    matrix = np.array([[2.0, 0.5, 0.1], [0.5, 1.5, 0.2], [0.1, 0.2, 1.0]])
    lower = cholesky(matrix)
    assert np.allclose(lower @ lower.T, matrix)
    assert np.allclose(np.triu(lower, 1), 0.0)


def test_cholesky_identity():
    assert np.array_equal(cholesky(np.eye(3)), np.eye(3))


def test_cholesky_rejects_non_square():
    with pytest.raises(ValueError):
        cholesky([[1.0, 2.0, 3.0]])


def test_basic_functionality():
    cmaes = CmaEs(ContinuousParams(), 10, seed=42)
    population = cmaes.ask()
    assert len(population) == 10
    assert all(_in_bounds(p) for p in population)

    fitness = [
        p.clipping_percentile + p.scale_multiplier + p.qjl_threshold * 1e4 for p in population
    ]
    cmaes.tell(population, fitness)
    assert cmaes.generation == 1

    assert len(cmaes.ask()) == 10
    assert _in_bounds(cmaes.current_best())


def test_mu_equals_one():
    cmaes = CmaEs(ContinuousParams(), 2, seed=42)
    assert cmaes.mu == 1
    assert len(cmaes.weights) == 1
    assert cmaes.weights[0] == pytest.approx(1.0, abs=1e-12)

    population = cmaes.ask()
    assert len(population) == 2
    cmaes.tell(population, [1.0, 2.0])

    assert math.isfinite(cmaes.sigma)
    assert _all_finite(cmaes.mean)
    assert _all_finite(cmaes.pc)
    assert _all_finite(cmaes.ps)
    best = cmaes.current_best()
    assert all(
        math.isfinite(v)
        for v in (best.clipping_percentile, best.scale_multiplier, best.qjl_threshold)
    )


def test_convergence_detection():
    cmaes = CmaEs(ContinuousParams(), 4, seed=42)
    assert not cmaes.has_converged()

    cmaes.sigma = 1e-13
    assert cmaes.has_converged()

    cmaes.sigma = 1.0
    cmaes.generation = 1001
    assert cmaes.has_converged()


def test_hundred_iterations_stay_finite():
    cmaes = CmaEs(ContinuousParams(), 6, seed=42)
    for _ in range(100):
        population = cmaes.ask()
        assert len(population) == 6
        fitness = [
            (p.clipping_percentile - 0.95) ** 2
            + (p.scale_multiplier - 1.0) ** 2
            + (p.qjl_threshold - 1e-4) ** 2 * 1e8
            for p in population
        ]
        cmaes.tell(population, fitness)

        assert math.isfinite(cmaes.sigma)
        assert _all_finite(cmaes.mean)
        assert _all_finite(cmaes.pc)
        assert _all_finite(cmaes.ps)
        assert _all_finite(cmaes.covariance)
        assert _in_bounds(cmaes.current_best())


def test_extreme_parameter_values():
    initial = ContinuousParams(clipping_percentile=0.01, scale_multiplier=10.0, qjl_threshold=1e-6)
    cmaes = CmaEs(initial, 4, seed=42)
    population = cmaes.ask()
    assert len(population) == 4
    cmaes.tell(population, [1e-10, 1e10, -1e10, np.finfo(float).eps])
    assert math.isfinite(cmaes.sigma)
    assert _all_finite(cmaes.mean)
    assert _in_bounds(cmaes.current_best())

    extreme = ContinuousParams(clipping_percentile=0.99, scale_multiplier=0.1, qjl_threshold=1e-2)
    other = CmaEs(extreme, 4, seed=123)
    pop = other.ask()
    tiny = np.finfo(float).tiny
    other.tell(pop, [np.finfo(float).max / 1e10, tiny * 1e10, 1.0, 0.0])
    assert math.isfinite(other.sigma)
    assert _all_finite(other.mean)
    assert _in_bounds(other.current_best())


def test_tell_rejects_size_mismatch():
    cmaes = CmaEs(ContinuousParams(), 4, seed=1)
    population = cmaes.ask()
    with pytest.raises(ValueError, match="Population size mismatch"):
        cmaes.tell(population[:3], [1.0, 2.0, 3.0])
    with pytest.raises(ValueError, match="Population size mismatch"):
        cmaes.tell(population, [1.0, 2.0])


def test_tell_rejects_nan_fitness():
    cmaes = CmaEs(ContinuousParams(), 4, seed=1)
    population = cmaes.ask()
    with pytest.raises(ValueError):
        cmaes.tell(population, [1.0, math.nan, 2.0, 3.0])


def test_same_seed_is_deterministic():
    a = CmaEs(ContinuousParams(), 6, seed=7).ask()
    b = CmaEs(ContinuousParams(), 6, seed=7).ask()
    assert a == b


def test_current_best_starts_at_initial_mean():
    initial = ContinuousParams(clipping_percentile=0.9, scale_multiplier=2.0, qjl_threshold=5e-4)
    assert CmaEs(initial, 4, seed=3).current_best() == initial


def test_current_best_is_clipped():
    initial = ContinuousParams(clipping_percentile=1.5, scale_multiplier=0.0, qjl_threshold=1.0)
    best = CmaEs(initial, 4, seed=3).current_best()
    assert best == ContinuousParams(clipping_percentile=0.99, scale_multiplier=0.1, qjl_threshold=1e-2)


def test_covariance_stays_symmetric():
    cmaes = CmaEs(ContinuousParams(), 8, seed=11)
    for _ in range(5):
        population = cmaes.ask()
        cmaes.tell(population, [p.scale_multiplier for p in population])
    assert np.array_equal(cmaes.covariance, cmaes.covariance.T)


def test_rejects_empty_population():
    with pytest.raises(ValueError):
        CmaEs(ContinuousParams(), 0, seed=1)