"""Multi-objective fitness: memory gain against quality and latency penalties."""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Sequence

import numpy as np

from turbocalm.baseline import ReferenceMetrics
from turbocalm.config import FitnessMetrics, ObjectiveWeights, QuantProfile
from turbocalm.dataset import KvTrace, ProcessedDataset
from turbocalm.heuristics import (
    estimate_cosine_similarity,
    estimate_quality_degradation,
    latency_factor,
)

QUANTIZABLE_FRACTION = 0.7
FLOAT_BYTES = 4


@dataclass
class QuantizationResult:
    """Outcome of evaluating a quantized configuration."""

    quantized_memory: int
    quantized_brier_lm: float
    quantized_latency_ms: float
    cosine_similarity: float
    metrics: FitnessMetrics


def _cosine_similarity(a: np.ndarray, b: np.ndarray) -> float:
    x = a.ravel().astype(np.float64)
    y = b.ravel().astype(np.float64)
    denom = float(np.linalg.norm(x) * np.linalg.norm(y))
    return float(x @ y) / denom if denom > 0.0 else 0.0


def _quantize_round_trip(tensor: np.ndarray, bits: int, scale_mode: str) -> tuple[np.ndarray, int]:
    """Symmetric uniform quantize/dequantize; returns the result and scale count."""
    if tensor.size == 0:
        return tensor.copy(), 0
    qmax = max((1 << (bits - 1)) - 1, 1)
    magnitude = np.abs(tensor)
    if scale_mode == "per_tensor":
        amax = magnitude.max(keepdims=True)
    else:
        amax = magnitude.max(axis=-1, keepdims=True)
    scale = amax / qmax
    safe = np.where(scale > 0, scale, 1.0)
    codes = np.clip(np.round(tensor / safe), -qmax, qmax)
    return (codes * scale).astype(np.float32), int(scale.size)


def _qjl_correction(
    residual: np.ndarray, qjl_dim: int, seed: int, threshold: float
) -> tuple[np.ndarray, int, int]:
    """Sign-sketch reconstruction of ``residual``; returns it, sign and scale counts."""
    projection = np.random.default_rng(seed).standard_normal((qjl_dim, residual.shape[-1]))
    signs = np.where(residual @ projection.T >= 0, 1.0, -1.0)
    norms = np.linalg.norm(residual, axis=-1)
    norms = np.where(norms >= threshold, norms, 0.0)
    reconstructed = math.sqrt(math.pi / 2.0) / qjl_dim * norms[:, None] * (signs @ projection)
    return reconstructed.astype(np.float32), int(signs.size), int(norms.size)


def _latency_penalty(quantized_ms: float, baseline_ms: float) -> float:
    return max((quantized_ms - baseline_ms) / baseline_ms, 0.0)


class ObjectiveFunction:
    """Scores quantization profiles against reference metrics."""

    def __init__(self, weights: ObjectiveWeights) -> None:
        self.weights = weights
        self.reference_metrics: ReferenceMetrics | None = None
        self._rng = np.random.default_rng()

    def set_reference(self, reference: ReferenceMetrics) -> None:
        """Set the unquantized metrics that profiles are compared with."""
        self.reference_metrics = reference

    def evaluate(
        self, profile: QuantProfile, dataset: ProcessedDataset
    ) -> tuple[FitnessMetrics, float]:
        """Return fitness metrics and the weighted objective (lower is better)."""
        reference = self.reference_metrics
        if reference is None:
            raise RuntimeError("Reference metrics not set")
        if profile.bit_width < 1:
            raise ValueError("bit_width must be at least 1")

        if dataset.kv_traces:
            result = self._evaluate_traces(profile, dataset.kv_traces, reference)
        else:
            result = self._evaluate_analytic(profile, reference)

        fitness = result.metrics
        w = self.weights
        objective_value = (
            -fitness.memory_gain
            + w.lambda1 * fitness.delta_brier_lm
            + w.lambda2 * fitness.cosine_penalty
            + w.lambda3 * fitness.latency_penalty
        )
        return fitness, objective_value

    def _evaluate_traces(
        self,
        profile: QuantProfile,
        traces: Sequence[KvTrace],
        reference: ReferenceMetrics,
    ) -> QuantizationResult:
        bits = profile.bit_width
        original_memory = 0
        quantized_memory = 0
        similarities: list[float] = []

        for trace in traces:
            width = trace.num_heads * trace.head_dim
            shape = (trace.seq_len, width)
            pairs = (
                (trace.key_stats.std_dev, profile.rotation_seed),
                (trace.value_stats.std_dev, profile.rotation_seed + 1),
            )
            use_qjl = profile.qjl_threshold > 0.0 and 0 < profile.qjl_dim < width

            for std_dev, seed in pairs:
                original = (self._rng.standard_normal(shape) * std_dev).astype(np.float32)
                original_memory += original.size * FLOAT_BYTES

                restored, scale_count = _quantize_round_trip(original, bits, profile.scale_mode)
                quantized_memory += (original.size * bits + 7) // 8 + scale_count * FLOAT_BYTES

                if use_qjl:
                    correction, sign_count, qjl_scales = _qjl_correction(
                        original - restored, profile.qjl_dim, seed, profile.qjl_threshold
                    )
                    restored = restored + correction
                    quantized_memory += sign_count + qjl_scales * FLOAT_BYTES

                similarities.append(_cosine_similarity(original, restored))

        if quantized_memory > original_memory:
            raise ValueError("quantized memory exceeds original memory")

        avg_similarity = sum(similarities) / len(similarities)
        quantized_latency_ms = reference.baseline_latency_ms * latency_factor(profile)
        quantized_brier_lm = reference.baseline_brier_lm * (
            1.0 + estimate_quality_degradation(profile)
        )

        metrics = FitnessMetrics(
            memory_gain=(original_memory - quantized_memory) / original_memory,
            delta_brier_lm=quantized_brier_lm - reference.baseline_brier_lm,
            cosine_penalty=1.0 - avg_similarity,
            latency_penalty=_latency_penalty(quantized_latency_ms, reference.baseline_latency_ms),
        )
        return QuantizationResult(
            quantized_memory=quantized_memory,
            quantized_brier_lm=quantized_brier_lm,
            quantized_latency_ms=quantized_latency_ms,
            cosine_similarity=avg_similarity,
            metrics=metrics,
        )

    def _evaluate_analytic(
        self, profile: QuantProfile, reference: ReferenceMetrics
    ) -> QuantizationResult:
        bits_reduction = 32.0 / profile.bit_width
        quantized_memory = int(
            reference.memory_usage
            * (1.0 - QUANTIZABLE_FRACTION + QUANTIZABLE_FRACTION / bits_reduction)
        )
        if quantized_memory > reference.memory_usage:
            raise ValueError("quantized memory exceeds original memory")

        quantized_brier_lm = reference.baseline_brier_lm * (
            1.0 + estimate_quality_degradation(profile)
        )
        quantized_latency_ms = reference.baseline_latency_ms * latency_factor(profile)
        cosine_similarity = estimate_cosine_similarity(profile)

        metrics = FitnessMetrics(
            memory_gain=(reference.memory_usage - quantized_memory) / reference.memory_usage,
            delta_brier_lm=quantized_brier_lm - reference.baseline_brier_lm,
            cosine_penalty=1.0 - cosine_similarity,
            latency_penalty=_latency_penalty(quantized_latency_ms, reference.baseline_latency_ms),
        )
        return QuantizationResult(
            quantized_memory=quantized_memory,
            quantized_brier_lm=quantized_brier_lm,
            quantized_latency_ms=quantized_latency_ms,
            cosine_similarity=cosine_similarity,
            metrics=metrics,
        )


class BatchEvaluator:
    """Evaluates many profiles with one objective function."""

    def __init__(self, weights: ObjectiveWeights) -> None:
        self.objective_fn = ObjectiveFunction(weights)

    def set_reference(self, reference: ReferenceMetrics) -> None:
        """Set the unquantized reference metrics."""
        self.objective_fn.set_reference(reference)

    def evaluate_batch(
        self, profiles: Sequence[QuantProfile], dataset: ProcessedDataset
    ) -> list[tuple[FitnessMetrics, float]]:
        """Evaluate every profile, in order."""
        return [self.objective_fn.evaluate(profile, dataset) for profile in profiles]