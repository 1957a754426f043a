import pytest

from turbocalm.config import (
    CalibrationConfig,
    ContinuousParams,
    DiscreteConfig,
    FitnessMetrics,
    ObjectiveWeights,
    QuantProfile,
)


def _profile():
    return QuantProfile(
        bit_width=4,
        qjl_dim=32,
        rotation_seed=42,
        qjl_threshold=0.0001,
        scale_mode="per_token",
        clipping_percentile=0.95,
        scale_multiplier=1.0,
    )


def test_discrete_defaults():
    config = DiscreteConfig()
    assert config.bit_widths == [2, 3, 4]
    assert config.qjl_dims == [16, 32, 64]
    assert config.rotation_seeds == [42, 137, 256, 512]
    assert config.count() == 36


def test_discrete_count_single():
    config = DiscreteConfig(bit_widths=[4], qjl_dims=[32])
    assert config.count() == 4


def test_discrete_defaults_not_shared():
    a = DiscreteConfig()
    b = DiscreteConfig()
    a.bit_widths.append(8)
    assert b.bit_widths == [2, 3, 4]


def test_weights_defaults():
    weights = ObjectiveWeights()
    assert (weights.lambda1, weights.lambda2, weights.lambda3) == (1.0, 0.5, 0.3)


def test_calibration_defaults():
    config = CalibrationConfig()
    assert config.max_cmaes_iterations == 50
    assert config.cmaes_population_size == 10
    assert config.max_total_iterations == 1000
    assert config.discrete == DiscreteConfig()
    assert config.weights == ObjectiveWeights()


def test_continuous_params_defaults_match_profile_values():
    params = ContinuousParams()
    profile = _profile()
    assert params.clipping_percentile == profile.clipping_percentile
    assert params.scale_multiplier == profile.scale_multiplier
    assert params.qjl_threshold == profile.qjl_threshold


def test_quant_profile_round_trip():
    profile = _profile()
    data = profile.to_dict()
    assert data["scale_mode"] == "per_token"
    assert QuantProfile.from_dict(data) == profile


def test_quant_profile_missing_field():
    data = _profile().to_dict()
    del data["qjl_dim"]
    with pytest.raises(ValueError):
        QuantProfile.from_dict(data)


def test_fitness_round_trip():
    fitness = FitnessMetrics(0.6, 0.02, 0.05, 0.1)
    data = fitness.to_dict()
    assert set(data) == {
        "memory_gain",
        "delta_brier_lm",
        "cosine_penalty",
        "latency_penalty",
    }
    assert FitnessMetrics.from_dict(data) == fitness


def test_fitness_missing_field():
    with pytest.raises(ValueError):
        FitnessMetrics.from_dict({"memory_gain": 0.6})