"""Reference (unquantized) metrics that quantized profiles are compared against."""

from __future__ import annotations

import math
import time
from dataclasses import dataclass, field

import numpy as np

from turbocalm.dataset import ProcessedDataset, TensorStats

BASELINE_BITS = 32
MODEL_PARAMETERS = 7.0e9
BASE_BRIER = 0.25
BASE_LATENCY_MS = 50.0
MAX_LATENCY_SAMPLES = 32

_BRIER_DEGRADATION = {2: 0.08, 3: 0.04, 4: 0.015, 8: 0.001}
_LATENCY_SPEEDUP = {2: 0.7, 3: 0.85, 4: 0.95, 8: 1.0}


@dataclass
class ReferenceMetrics:
    """Metrics of the unquantized model."""

    memory_usage: int
    baseline_brier_lm: float
    baseline_latency_ms: float
    reference_kv_stats: list[TensorStats] = field(default_factory=list)


def _check_bits(bits: int) -> None:
    if bits < 1:
        raise ValueError("bits must be at least 1")


def estimate_model_memory_usage(bits: int) -> int:
    """Bytes needed by a 7B-parameter model stored at ``bits`` per parameter."""
    return int(MODEL_PARAMETERS * (bits / 8.0))


def estimate_brier_score(dataset: ProcessedDataset, bits: int) -> float:
    """Brier score estimate for the given precision."""
    _check_bits(bits)
    factor = _BRIER_DEGRADATION.get(bits)
    if factor is None:
        factor = (32.0 / bits - 1.0) * 0.02
    return BASE_BRIER * (1.0 + factor)


def measure_inference_latency(
    dataset: ProcessedDataset,
    bits: int,
    rng: np.random.Generator | None = None,
) -> float:
    """Baseline latency in ms plus the timed cost of quantizing sample tensors."""
    _check_bits(bits)
    rng = rng if rng is not None else np.random.default_rng()
    max_quant = np.float32((1 << (bits - 1)) - 1)

    total_quant_ms = 0.0
    for ids in dataset.input_ids[:MAX_LATENCY_SAMPLES]:
        if not ids:
            raise ValueError("cannot time quantization of an empty sequence")
        tensor = rng.standard_normal(len(ids), dtype=np.float32)

        start = time.perf_counter()
        with np.errstate(invalid="ignore", divide="ignore"):
            scale = np.abs(tensor).max()
            quantized = np.round(tensor / scale * max_quant)
            _ = quantized / max_quant * scale
        total_quant_ms += (time.perf_counter() - start) * 1000.0

    speedup = _LATENCY_SPEEDUP.get(bits)
    if speedup is None:
        speedup = math.sqrt(bits / 32.0)
    return BASE_LATENCY_MS * speedup + total_quant_ms


def create_reference_metrics(
    dataset: ProcessedDataset,
    rng: np.random.Generator | None = None,
) -> ReferenceMetrics:
    """Build full-precision reference metrics for ``dataset``."""
    return ReferenceMetrics(
        memory_usage=estimate_model_memory_usage(BASELINE_BITS),
        baseline_brier_lm=estimate_brier_score(dataset, BASELINE_BITS),
        baseline_latency_ms=measure_inference_latency(dataset, BASELINE_BITS, rng),
        reference_kv_stats=[trace.key_stats for trace in dataset.kv_traces],
    )