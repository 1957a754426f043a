"""Evolutionary calibration of KV-cache quantization profiles with CMA-ES and Pareto fronts."""

__version__ = "0.1.0"