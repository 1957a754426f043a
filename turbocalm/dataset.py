"""Calibration corpus loading, tokenization and KV trace statistics."""

from __future__ import annotations

import json
import logging
import math
from dataclasses import dataclass, field
from os import PathLike
from typing import Any, Callable, Iterable, Sequence

import numpy as np

logger = logging.getLogger(__name__)

NUM_HEADS = 32
HEAD_DIM = 128
DEFAULT_MAX_LENGTH = 512
PAD_TOKEN = 0


@dataclass
class CalibrationSample:
    """A single calibration text with optional metadata."""

    text: str
    metadata: Any = None


@dataclass
class CalibrationDataset:
    """An ordered collection of calibration samples."""

    samples: list[CalibrationSample] = field(default_factory=list)

    @classmethod
    def from_jsonl(cls, path: str | PathLike[str]) -> CalibrationDataset:
        """Load samples from a JSON Lines file, skipping blank lines."""
        samples: list[CalibrationSample] = []
        with open(path, encoding="utf-8") as handle:
            for line_num, line in enumerate(handle, start=1):
                if not line.strip():
                    continue
                try:
                    record = json.loads(line)
                except json.JSONDecodeError as exc:
                    raise ValueError(f"Failed to parse JSON on line {line_num}") from exc
                if not isinstance(record, dict) or not isinstance(record.get("text"), str):
                    raise ValueError(f"Failed to parse JSON on line {line_num}")
                samples.append(CalibrationSample(record["text"], record.get("metadata")))

        if not samples:
            raise ValueError("Dataset is empty")

        logger.info("Loaded %d samples from %s", len(samples), path)
        return cls(samples)

    def subset(self, max_samples: int | None) -> CalibrationDataset:
        """Return a dataset holding at most the first ``max_samples`` samples."""
        if max_samples is not None and max_samples < len(self.samples):
            return CalibrationDataset(list(self.samples[:max_samples]))
        return CalibrationDataset(list(self.samples))

    def __len__(self) -> int:
        return len(self.samples)


@dataclass
class TensorStats:
    """Summary statistics of a tensor's values."""

    mean_abs: float
    std_dev: float
    min_val: float
    max_val: float
    l2_norm: float

    @classmethod
    def from_array(cls, values: Iterable[float] | np.ndarray) -> TensorStats:
        """Compute statistics over all elements, using population variance."""
        flat = np.asarray(values, dtype=np.float64).ravel()
        if flat.size == 0:
            return cls(math.nan, math.nan, math.inf, -math.inf, 0.0)
        mean = flat.mean()
        return cls(
            mean_abs=float(np.abs(flat).mean()),
            std_dev=float(math.sqrt(((flat - mean) ** 2).mean())),
            min_val=float(flat.min()),
            max_val=float(flat.max()),
            l2_norm=float(math.sqrt(float((flat * flat).sum()))),
        )


@dataclass
class KvTrace:
    """Shape and statistics of a sequence's key and value cache."""

    seq_len: int
    num_heads: int
    head_dim: int
    key_stats: TensorStats
    value_stats: TensorStats


@dataclass
class DataBatch:
    """A batch of padded token ids, masks and traces."""

    input_ids: np.ndarray
    attention_mask: np.ndarray
    kv_traces: list[KvTrace]


def _synthetic_kv_trace(seq_len: int, rng: np.random.Generator) -> KvTrace:
    shape = (seq_len, NUM_HEADS * HEAD_DIM)
    keys = rng.standard_normal(shape, dtype=np.float32)
    values = rng.standard_normal(shape, dtype=np.float32)
    return KvTrace(
        seq_len=seq_len,
        num_heads=NUM_HEADS,
        head_dim=HEAD_DIM,
        key_stats=TensorStats.from_array(keys),
        value_stats=TensorStats.from_array(values),
    )


@dataclass
class ProcessedDataset:
    """Tokenized, padded dataset ready for evaluation."""

    input_ids: list[list[int]]
    attention_masks: list[list[int]]
    kv_traces: list[KvTrace]

    @classmethod
    def from_dataset(
        cls,
        dataset: CalibrationDataset,
        tokenize: Callable[[str], Sequence[int]],
        max_length: int | None = None,
        rng: np.random.Generator | None = None,
    ) -> ProcessedDataset:
        """Tokenize each sample, truncate or pad to ``max_length`` and build traces."""
        max_len = DEFAULT_MAX_LENGTH if max_length is None else max_length
        rng = rng if rng is not None else np.random.default_rng()

        input_ids: list[list[int]] = []
        attention_masks: list[list[int]] = []
        kv_traces: list[KvTrace] = []

        for sample in dataset.samples:
            try:
                tokens = [int(t) for t in tokenize(sample.text)][:max_len]
            except Exception as exc:
                raise ValueError(f"Tokenization failed: {exc}") from exc
            seq_len = len(tokens)
            padding = max_len - seq_len
            input_ids.append(tokens + [PAD_TOKEN] * padding)
            attention_masks.append([1] * seq_len + [0] * padding)
            kv_traces.append(_synthetic_kv_trace(seq_len, rng))

        return cls(input_ids, attention_masks, kv_traces)

    def get_batch(self, batch_indices: Sequence[int]) -> DataBatch:
        """Stack the selected samples into ``(batch, seq_len)`` arrays."""
        if any(i < 0 or i >= len(self.input_ids) for i in batch_indices) or not self.input_ids:
            raise IndexError("Batch index out of bounds")

        seq_len = len(self.input_ids[0])
        shape = (len(batch_indices), seq_len)
        ids = np.array([self.input_ids[i] for i in batch_indices], dtype=np.uint32)
        masks = np.array([self.attention_masks[i] for i in batch_indices], dtype=np.uint32)
        return DataBatch(
            input_ids=ids.reshape(shape),
            attention_mask=masks.reshape(shape),
            kv_traces=[self.kv_traces[i] for i in batch_indices],
        )

    def __len__(self) -> int:
        return len(self.input_ids)