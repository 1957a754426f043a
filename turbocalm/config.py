"""Parameter spaces, fitness metrics and calibration settings."""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any, Mapping


@dataclass
class ContinuousParams:
    """Continuous quantization parameters tuned by the inner optimizer."""

    clipping_percentile: float = 0.95
    scale_multiplier: float = 1.0
    qjl_threshold: float = 1e-4


@dataclass
class QuantProfile:
    """A complete quantization configuration."""

    bit_width: int
    qjl_dim: int
    rotation_seed: int
    qjl_threshold: float
    scale_mode: str
    clipping_percentile: float
    scale_multiplier: float

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> QuantProfile:
        try:
            return cls(
                bit_width=int(data["bit_width"]),
                qjl_dim=int(data["qjl_dim"]),
                rotation_seed=int(data["rotation_seed"]),
                qjl_threshold=float(data["qjl_threshold"]),
                scale_mode=str(data["scale_mode"]),
                clipping_percentile=float(data["clipping_percentile"]),
                scale_multiplier=float(data["scale_multiplier"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing profile field: {exc.args[0]}") from exc


@dataclass
class DiscreteConfig:
    """Discrete parameter values enumerated by the outer search loop."""

    bit_widths: list[int] = field(default_factory=lambda: [2, 3, 4])
    qjl_dims: list[int] = field(default_factory=lambda: [16, 32, 64])
    rotation_seeds: list[int] = field(default_factory=lambda: [42, 137, 256, 512])

    def count(self) -> int:
        """Number of discrete combinations."""
        return len(self.bit_widths) * len(self.qjl_dims) * len(self.rotation_seeds)


@dataclass
class FitnessMetrics:
    """Multi-objective fitness of a profile."""

    memory_gain: float
    delta_brier_lm: float
    cosine_penalty: float
    latency_penalty: float

    def to_dict(self) -> dict[str, float]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> FitnessMetrics:
        try:
            return cls(
                memory_gain=float(data["memory_gain"]),
                delta_brier_lm=float(data["delta_brier_lm"]),
                cosine_penalty=float(data["cosine_penalty"]),
                latency_penalty=float(data["latency_penalty"]),
            )
        except KeyError as exc:
            raise ValueError(f"missing fitness field: {exc.args[0]}") from exc


@dataclass
class ObjectiveWeights:
    """Weights of the penalty terms in the scalar objective."""

    lambda1: float = 1.0  # Brier LM
    lambda2: float = 0.5  # cosine penalty
    lambda3: float = 0.3  # latency penalty


@dataclass
class CalibrationConfig:
    """Settings for a full calibration search."""

    discrete: DiscreteConfig = field(default_factory=DiscreteConfig)
    weights: ObjectiveWeights = field(default_factory=ObjectiveWeights)
    max_cmaes_iterations: int = 50
    cmaes_population_size: int = 10
    max_total_iterations: int = 1000