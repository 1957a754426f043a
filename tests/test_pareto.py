import pytest

from turbocalm.config import FitnessMetrics, QuantProfile
from turbocalm.pareto import ParetoFront, ParetoSolution, dominates, non_dominated_sort


def make_solution(memory_gain, delta_brier, cosine_penalty, latency_penalty, objective=0.0):
    return ParetoSolution(
        profile=QuantProfile(
            bit_width=4,
            qjl_dim=32,
            rotation_seed=42,
            qjl_threshold=0.0001,
            scale_mode="per_token",
            clipping_percentile=0.95,
            scale_multiplier=1.0,
        ),
        fitness=FitnessMetrics(memory_gain, delta_brier, cosine_penalty, latency_penalty),
        objective_value=objective,
    )


def test_dominance():
    a = FitnessMetrics(2.0, 0.1, 0.05, 0.02)
    b = FitnessMetrics(1.8, 0.12, 0.05, 0.02)
    assert dominates(a, b)
    assert not dominates(b, a)


def test_equal_fitness_does_not_dominate():
    a = FitnessMetrics(1.0, 0.1, 0.1, 0.1)
    assert not dominates(a, FitnessMetrics(1.0, 0.1, 0.1, 0.1))


def test_trade_off_is_not_dominance():
    a = FitnessMetrics(2.0, 0.2, 0.1, 0.1)
    b = FitnessMetrics(1.0, 0.1, 0.1, 0.1)
    assert not dominates(a, b)
    assert not dominates(b, a)


def test_pareto_front_maintenance():
    front = ParetoFront(5)
    front.add_solution(make_solution(2.0, 0.1, 0.05, 0.02))
    front.add_solution(make_solution(1.8, 0.08, 0.04, 0.01))
    front.add_solution(make_solution(1.5, 0.05, 0.02, 0.008))
    assert len(front) == 3

    front.add_solution(make_solution(1.0, 0.2, 0.1, 0.05))
    assert len(front) == 3

    front.add_solution(make_solution(2.5, 0.05, 0.02, 0.01))
    assert len(front) <= 3
    assert any(s.fitness.memory_gain == 2.5 for s in front.solutions)


def test_is_dominated():
    front = ParetoFront()
    front.add_solution(make_solution(2.0, 0.1, 0.05, 0.02))
    assert front.is_dominated(FitnessMetrics(1.0, 0.2, 0.1, 0.05))
    assert not front.is_dominated(FitnessMetrics(3.0, 0.1, 0.05, 0.02))


def test_trim_keeps_boundary_solutions():
    front = ParetoFront(3)
    for i in range(1, 5):
        front.add_solution(make_solution(float(i), float(i), 0.0, 0.0))
    assert len(front) == 3
    assert [s.fitness.memory_gain for s in front.solutions] == [1.0, 2.0, 4.0]


def test_trim_with_two_solutions_keeps_first():
    front = ParetoFront(1)
    front.add_solution(make_solution(1.0, 0.1, 0.0, 0.0))
    front.add_solution(make_solution(2.0, 0.2, 0.0, 0.0))
    assert [s.fitness.memory_gain for s in front.solutions] == [1.0]


def test_best_selectors():
    front = ParetoFront()
    front.add_solution(make_solution(1.0, 0.01, 0.01, 0.0, objective=0.5))
    front.add_solution(make_solution(3.0, 0.3, 0.3, 0.0, objective=-1.0))
    front.add_solution(make_solution(2.0, 0.1, 0.1, 0.0, objective=0.2))
    assert front.best_by_objective().objective_value == -1.0
    assert front.best_memory_gain().fitness.memory_gain == 3.0
    assert front.best_quality().fitness.memory_gain == 1.0


def test_empty_front_selectors_and_clear():
    front = ParetoFront()
    assert front.best_by_objective() is None
    assert front.best_memory_gain() is None
    assert front.best_quality() is None
    front.add_solution(make_solution(1.0, 0.1, 0.1, 0.1))
    assert len(front) == 1
    front.clear()
    assert len(front) == 0
    assert front.solutions == []


def test_solutions_is_a_copy():
    front = ParetoFront()
    front.add_solution(make_solution(1.0, 0.1, 0.1, 0.1))
    front.solutions.clear()
    assert len(front) == 1


def test_non_dominated_sorting():
    solutions = [
        make_solution(2.0, 0.1, 0.05, 0.02),
        make_solution(1.8, 0.08, 0.04, 0.01),
        make_solution(1.5, 0.12, 0.06, 0.03),
        make_solution(1.0, 0.15, 0.08, 0.04),
    ]
    fronts = non_dominated_sort(solutions)
    assert len(fronts) >= 2
    assert len(fronts[0]) >= 1
    assert fronts == [[0, 1], [2], [3]]


@pytest.mark.parametrize("count", [0, 1])
def test_non_dominated_sort_small(count):
    solutions = [make_solution(1.0, 0.1, 0.1, 0.1)] * count
    assert non_dominated_sort(solutions) == [[0]] * count