"""Analytical estimates of quality and latency effects of a quantization profile."""

from __future__ import annotations

import math

from turbocalm.config import QuantProfile

QJL_REFERENCE_DIM = 64.0
REFERENCE_QJL_THRESHOLD = 1e-4

_BIT_DEGRADATION = {2: 0.15, 3: 0.08, 4: 0.03}
_DEFAULT_BIT_DEGRADATION = 0.01

_BASE_SIMILARITY = {2: 0.85, 3: 0.92, 4: 0.97}
_DEFAULT_SIMILARITY = 0.99

_PRECISION_SPEEDUP = {2: 0.3, 3: 0.15, 4: 0.05}
_DEFAULT_SPEEDUP = 0.0


def _qjl_coverage(profile: QuantProfile) -> float:
    return min(profile.qjl_dim / QJL_REFERENCE_DIM, 1.0)


def estimate_quality_degradation(profile: QuantProfile) -> float:
    """Relative Brier score degradation expected from ``profile``."""
    bit_degradation = _BIT_DEGRADATION.get(profile.bit_width, _DEFAULT_BIT_DEGRADATION)
    qjl_factor = 1.0 - _qjl_coverage(profile) * 0.3

    clipping_impact = (1.0 - profile.clipping_percentile) * 0.5
    scale_impact = abs(profile.scale_multiplier - 1.0) * 0.1
    threshold_impact = abs(profile.qjl_threshold - REFERENCE_QJL_THRESHOLD) * 1000.0

    return bit_degradation * qjl_factor + clipping_impact + scale_impact + threshold_impact


def estimate_cosine_similarity(profile: QuantProfile) -> float:
    """Cosine similarity between original and quantized activations, in [0, 1]."""
    base = _BASE_SIMILARITY.get(profile.bit_width, _DEFAULT_SIMILARITY)
    qjl_boost = _qjl_coverage(profile) * 0.05
    clipping_penalty = (1.0 - profile.clipping_percentile) * 0.1
    return min(max(base + qjl_boost - clipping_penalty, 0.0), 1.0)


def latency_factor(profile: QuantProfile) -> float:
    """Multiplier on baseline latency: precision speedup offset by QJL overhead."""
    if profile.qjl_dim > 0:
        qjl_overhead = math.log(profile.qjl_dim) * 0.01
    else:
        qjl_overhead = -math.inf
    speedup = _PRECISION_SPEEDUP.get(profile.bit_width, _DEFAULT_SPEEDUP)
    return 1.0 - speedup + qjl_overhead