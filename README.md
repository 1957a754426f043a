# turbocalm

Evolutionary calibration of quantization profiles for transformer KV caches.

The search works on two levels:

1. **Outer loop**: every combination of the discrete parameters (bit width,
   QJL dimension, rotation seed) in a `DiscreteConfig`.
2. **Inner loop**: CMA-ES tunes the continuous parameters (clipping
   percentile, scale multiplier, QJL threshold) for that combination.

Every candidate is scored with a multi-objective fitness (`FitnessMetrics`:
memory gain, Brier delta, cosine penalty, latency penalty). Non-dominated
candidates are kept in a `ParetoFront`. The weighted objective

```
objective = -memory_gain + lambda1·ΔBrierLM + lambda2·cosine_penalty + lambda3·latency_penalty
```

is minimised to choose the best profile. The default weights
(`ObjectiveWeights`) are 1.0, 0.5 and 0.3.

## Installation

```
pip install .
```

Running the tests needs the `test` extra:

```
pip install .[test]
pytest
```

## Usage

Load a JSONL corpus in which each line holds a `"text"` field and may hold a
`"metadata"` field. Blank lines are skipped. A malformed line or an empty file
raises `ValueError`. Process the corpus with any tokenizer callable that maps a
string to a sequence of token ids, then run a search:

```python
import numpy as np

from turbocalm.dataset import CalibrationDataset, ProcessedDataset
from turbocalm.search import create_rapid_search
from turbocalm.profiles import DatasetInfo, ProfileExporter

corpus = CalibrationDataset.from_jsonl("calibration.jsonl").subset(16)

def tokenize(text):
    return [ord(ch) for ch in text]

processed = ProcessedDataset.from_dataset(
    corpus, tokenize, max_length=128, rng=np.random.default_rng(0)
)

search = create_rapid_search()
results = search.run_search(processed, lambda progress: print(progress.current_discrete_config))

exporter = ProfileExporter("calibration-output")
path = exporter.export_results(
    results,
    DatasetInfo(num_samples=len(corpus), avg_seq_length=128.0, source="calibration.jsonl"),
    "rapid search",
)
collection = ProfileExporter.import_profiles(path)
print(collection.best_profile.profile_id)
```

`ProcessedDataset.from_dataset` truncates or pads every sequence to
`max_length` (512 by default) with pad id 0, and builds attention masks.
`get_batch(indices)` stacks chosen samples into `(batch, seq_len)` numpy
arrays. An index out of range raises `IndexError`.

### Search presets (`turbocalm.search`)

- `create_exhaustive_search(max_iterations)`: the full default space
  (3 bit widths × 3 QJL dimensions × 4 seeds, 36 configurations).
- `create_focused_search(target_bit_width, target_qjl_dim)`: fixes one or both
  discrete axes, with 30 CMA-ES iterations and a budget of 500 evaluations.
- `create_rapid_search()`: one 4-bit / 32-dim / seed-42 configuration, with
  population 6, 10 CMA-ES iterations and a budget of 100 evaluations.

`CalibrationSearch.run_search` returns `SearchResults`, which hold the Pareto
solutions, the best solution and `SearchStatistics`. The front is capped at 100
solutions by crowding distance. `SearchResume.from_results(results).initialize_search(search)`
seeds a new search's front with earlier solutions.

### Exported files (`turbocalm.profiles`)

`ProfileExporter.export_results` writes three files into its output directory:
`profiles_<timestamp>.json` (indented), `profiles_<timestamp>_compact.json`
and `best_profile.json`. It returns the path of the compact file.
`ProfileExporter.import_profiles` reads either collection file back into a
`ProfileCollection`.

`generate_profile_id`, `analyze_collection` (averages, extremes and bit-width /
QJL-dimension counts) and `find_profiles_by_criteria` (minimum memory gain,
maximum quality loss, bit width) work on collections.

### Building blocks

- `turbocalm.cmaes.CmaEs`: an ask/tell CMA-ES over `ContinuousParams`, with
  samples clipped to their bounds. `tell` raises `ValueError` on a size
  mismatch or NaN fitness. `recombination_weights` and `cholesky` are exposed
  as well.
- `turbocalm.pareto`: `ParetoFront`, `ParetoSolution`, `dominates` and
  `non_dominated_sort`.
- `turbocalm.objective`: `ObjectiveFunction` and `BatchEvaluator`. Evaluating
  before `set_reference` raises `RuntimeError`.
- `turbocalm.baseline`: `ReferenceMetrics` and `create_reference_metrics`.
- `turbocalm.heuristics`: the analytical quality, cosine-similarity and
  latency estimates.
- `turbocalm.config`: the parameter, fitness and configuration dataclasses.

## What it does not do

- It never loads or runs a model. KV traces are random tensors with the
  statistics of a 32-head, 128-dimension cache. Brier scores, latencies and
  baseline memory (a 7B-parameter model) are analytical estimates.
- When a dataset has KV traces, memory gain and cosine penalty come from a
  real numpy quantize/dequantize round trip with a sign-sketch residual
  correction. Without traces they are estimated as well.
- There is no command-line interface and no formatted report. Use the Python
  API and `analyze_collection` instead.