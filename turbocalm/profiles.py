"""Export, import and analysis of calibrated quantization profiles."""

from __future__ import annotations

import json
import logging
import math
from collections import Counter
from dataclasses import dataclass, field
from datetime import datetime, timezone
from os import PathLike
from pathlib import Path
from typing import Any, Mapping

from turbocalm.config import FitnessMetrics, QuantProfile
from turbocalm.search import SearchResults

logger = logging.getLogger(__name__)

BEST_PROFILE_FILENAME = "best_profile.json"
_TIMESTAMP_FORMAT = "%Y%m%d_%H%M%S"


def _missing(kind: str, exc: KeyError) -> ValueError:
    return ValueError(f"missing {kind} field: {exc.args[0]}")


@dataclass
class DatasetInfo:
    """Description of the calibration dataset."""

    num_samples: int
    avg_seq_length: float
    source: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "num_samples": self.num_samples,
            "avg_seq_length": self.avg_seq_length,
            "source": self.source,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> DatasetInfo:
        try:
            source = data.get("source")
            return cls(
                num_samples=int(data["num_samples"]),
                avg_seq_length=float(data["avg_seq_length"]),
                source=None if source is None else str(source),
            )
        except KeyError as exc:
            raise _missing("dataset info", exc) from exc


@dataclass
class SearchStats:
    """Summary figures of a calibration search."""

    total_evaluations: int
    pareto_solutions: int
    search_time_seconds: float

    def to_dict(self) -> dict[str, Any]:
        return {
            "total_evaluations": self.total_evaluations,
            "pareto_solutions": self.pareto_solutions,
            "search_time_seconds": self.search_time_seconds,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> SearchStats:
        try:
            return cls(
                total_evaluations=int(data["total_evaluations"]),
                pareto_solutions=int(data["pareto_solutions"]),
                search_time_seconds=float(data["search_time_seconds"]),
            )
        except KeyError as exc:
            raise _missing("search stats", exc) from exc


@dataclass
class CalibrationMetadata:
    """Metadata describing a calibration run."""

    timestamp: str
    config_summary: str
    dataset_info: DatasetInfo
    search_stats: SearchStats

    def to_dict(self) -> dict[str, Any]:
        return {
            "timestamp": self.timestamp,
            "config_summary": self.config_summary,
            "dataset_info": self.dataset_info.to_dict(),
            "search_stats": self.search_stats.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> CalibrationMetadata:
        try:
            return cls(
                timestamp=str(data["timestamp"]),
                config_summary=str(data["config_summary"]),
                dataset_info=DatasetInfo.from_dict(data["dataset_info"]),
                search_stats=SearchStats.from_dict(data["search_stats"]),
            )
        except KeyError as exc:
            raise _missing("metadata", exc) from exc


@dataclass
class ProfileEntry:
    """A profile with its fitness, objective value and rank."""

    profile: QuantProfile
    fitness: FitnessMetrics
    objective_value: float
    pareto_rank: int
    profile_id: str

    @property
    def quality_loss(self) -> float:
        """Brier delta plus cosine penalty."""
        return self.fitness.delta_brier_lm + self.fitness.cosine_penalty

    def to_dict(self) -> dict[str, Any]:
        return {
            "profile": self.profile.to_dict(),
            "fitness": self.fitness.to_dict(),
            "objective_value": self.objective_value,
            "pareto_rank": self.pareto_rank,
            "profile_id": self.profile_id,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProfileEntry:
        try:
            return cls(
                profile=QuantProfile.from_dict(data["profile"]),
                fitness=FitnessMetrics.from_dict(data["fitness"]),
                objective_value=float(data["objective_value"]),
                pareto_rank=int(data["pareto_rank"]),
                profile_id=str(data["profile_id"]),
            )
        except KeyError as exc:
            raise _missing("profile entry", exc) from exc


@dataclass
class ProfileCollection:
    """Pareto-optimal profiles of a calibration run and its best profile."""

    metadata: CalibrationMetadata
    profiles: list[ProfileEntry]
    best_profile: ProfileEntry

    def to_dict(self) -> dict[str, Any]:
        return {
            "metadata": self.metadata.to_dict(),
            "profiles": [entry.to_dict() for entry in self.profiles],
            "best_profile": self.best_profile.to_dict(),
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> ProfileCollection:
        try:
            return cls(
                metadata=CalibrationMetadata.from_dict(data["metadata"]),
                profiles=[ProfileEntry.from_dict(item) for item in data["profiles"]],
                best_profile=ProfileEntry.from_dict(data["best_profile"]),
            )
        except KeyError as exc:
            raise _missing("collection", exc) from exc


def generate_profile_id(profile: QuantProfile) -> str:
    """A readable identifier built from the profile's parameters."""
    return (
        f"{profile.bit_width}b_{profile.qjl_dim}q_{profile.rotation_seed}s_"
        f"{profile.clipping_percentile:.3f}c_{profile.scale_multiplier:.2f}m_"
        f"{profile.qjl_threshold * 1e6:.0f}t"
    )


def _write_text(path: Path, text: str) -> None:
    try:
        path.write_text(text, encoding="utf-8")
    except OSError as exc:
        raise OSError(f"Failed to write {path}: {exc}") from exc


class ProfileExporter:
    """Writes calibration results to a directory and reads them back."""

    def __init__(self, output_dir: str | PathLike[str]) -> None:
        self.output_dir = Path(output_dir)
        self.output_dir.mkdir(parents=True, exist_ok=True)

    def export_results(
        self,
        results: SearchResults,
        dataset_info: DatasetInfo,
        config_summary: str,
    ) -> Path:
        """Write pretty, compact and best-profile JSON files; return the compact path."""
        timestamp = datetime.now(timezone.utc).strftime(_TIMESTAMP_FORMAT)
        collection = self._collection_from(results, dataset_info, config_summary, timestamp)
        data = collection.to_dict()

        _write_text(
            self.output_dir / f"profiles_{timestamp}.json", json.dumps(data, indent=2)
        )
        compact_path = self.output_dir / f"profiles_{timestamp}_compact.json"
        _write_text(compact_path, json.dumps(data, separators=(",", ":")))
        _write_text(
            self.output_dir / BEST_PROFILE_FILENAME,
            json.dumps(collection.best_profile.to_dict(), indent=2),
        )

        logger.info("Exported %d profiles to %s", len(collection.profiles), compact_path)
        return compact_path

    @staticmethod
    def import_profiles(path: str | PathLike[str]) -> ProfileCollection:
        """Load a collection written by :meth:`export_results`."""
        path = Path(path)
        kind = "JSON" if path.suffix == ".json" else "profile data"
        try:
            raw = path.read_bytes()
        except OSError as exc:
            raise OSError(f"Failed to read file: {path}: {exc}") from exc
        try:
            data = json.loads(raw)
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise ValueError(f"Failed to deserialize {kind}") from exc
        if not isinstance(data, dict):
            raise ValueError(f"Failed to deserialize {kind}")
        return ProfileCollection.from_dict(data)

    @staticmethod
    def _collection_from(
        results: SearchResults,
        dataset_info: DatasetInfo,
        config_summary: str,
        timestamp: str,
    ) -> ProfileCollection:
        metadata = CalibrationMetadata(
            timestamp=timestamp,
            config_summary=config_summary,
            dataset_info=dataset_info,
            search_stats=SearchStats(
                total_evaluations=results.statistics.total_iterations,
                pareto_solutions=len(results.pareto_solutions),
                search_time_seconds=results.statistics.total_time_ms / 1000.0,
            ),
        )
        profiles = [
            ProfileEntry(
                profile=solution.profile,
                fitness=solution.fitness,
                objective_value=solution.objective_value,
                pareto_rank=rank,
                profile_id=generate_profile_id(solution.profile),
            )
            for rank, solution in enumerate(results.pareto_solutions)
        ]
        best = results.best_solution
        best_profile = ProfileEntry(
            profile=best.profile,
            fitness=best.fitness,
            objective_value=best.objective_value,
            pareto_rank=0,
            profile_id=generate_profile_id(best.profile),
        )
        return ProfileCollection(metadata, profiles, best_profile)


@dataclass
class ProfileAnalysis:
    """Aggregate statistics over a profile collection."""

    total_profiles: int
    avg_memory_gain: float
    max_memory_gain: float
    avg_quality_degradation: float
    min_quality_degradation: float
    bit_width_distribution: dict[int, int] = field(default_factory=dict)
    qjl_dim_distribution: dict[int, int] = field(default_factory=dict)


def _mean(values: list[float]) -> float:
    return sum(values) / len(values) if values else math.nan


def analyze_collection(collection: ProfileCollection) -> ProfileAnalysis:
    """Summarise memory gains, quality losses and parameter distributions."""
    profiles = collection.profiles
    gains = [entry.fitness.memory_gain for entry in profiles]
    losses = [entry.quality_loss for entry in profiles]
    return ProfileAnalysis(
        total_profiles=len(profiles),
        avg_memory_gain=_mean(gains),
        max_memory_gain=max(gains, default=-math.inf),
        avg_quality_degradation=_mean(losses),
        min_quality_degradation=min(losses, default=math.inf),
        bit_width_distribution=dict(Counter(e.profile.bit_width for e in profiles)),
        qjl_dim_distribution=dict(Counter(e.profile.qjl_dim for e in profiles)),
    )


def find_profiles_by_criteria(
    collection: ProfileCollection,
    min_memory_gain: float | None = None,
    max_quality_degradation: float | None = None,
    preferred_bit_width: int | None = None,
) -> list[ProfileEntry]:
    """Profiles meeting every criterion that is given."""

    def accepted(entry: ProfileEntry) -> bool:
        if min_memory_gain is not None and entry.fitness.memory_gain < min_memory_gain:
            return False
        if max_quality_degradation is not None and entry.quality_loss > max_quality_degradation:
            return False
        if preferred_bit_width is not None and entry.profile.bit_width != preferred_bit_width:
            return False
        return True

    return [entry for entry in collection.profiles if accepted(entry)]