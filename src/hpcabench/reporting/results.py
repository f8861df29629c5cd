"""
Result parsing module for the HPCA Benchmark Scheduler.

This module reads the output files experiments leave in the run directory
and extracts one metric per experiment:
- latency tests: latency of the smallest message size
- bandwidth tests: peak bandwidth
- SMB MPI overhead: mean application availability
- non-blocking collectives and overlap tests: mean overlap
- anything else: number of data points
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional

import numpy as np

from hpcabench.core.classifier import classify_experiment
from hpcabench.errors import ReportError
from hpcabench.models.experiment import ExperimentKind

OUTPUT_SUFFIX = ".out"

OVERLAP_PREFIX = "overlap_"

# OSU non-blocking collectives; they report an overlap percentage
OSU_NONBLOCKING_COLLECTIVES = frozenset([
    "osu_iallgather",
    "osu_iallgatherv",
    "osu_iallreduce",
    "osu_ialltoall",
    "osu_ialltoallv",
    "osu_ialltoallw",
    "osu_ibarrier",
    "osu_ibcast",
    "osu_igather",
    "osu_igatherv",
    "osu_ireduce",
    "osu_ireduce_scatter",
    "osu_iscatter",
    "osu_iscatterv",
])


@dataclass
class ExperimentResult:
    """Metric extracted from the output of one experiment."""
    name: str
    output_file: str
    kind: ExperimentKind = ExperimentKind.GENERIC
    metric: str = "data points"
    value: Optional[float] = None  # None when the output holds no data
    unit: str = ""
    num_rows: int = 0

    @property
    def has_data(self) -> bool:
        return self.value is not None

    def __str__(self) -> str:
        if not self.has_data:
            return f"{self.name}: no data"
        if self.metric == "data points":
            return f"{self.name}: {int(self.value)} data points"
        return f"{self.name}: {self.metric} {self.value:.2f} {self.unit}".rstrip()


def experiment_kind(name: str) -> ExperimentKind:
    """Guess the kind of an experiment from its ``<suite>_<sub-benchmark>`` name."""
    for i, char in enumerate(name):
        if char != "_":
            continue
        kind = classify_experiment(name[:i], name[i + 1:])
        if kind is not ExperimentKind.GENERIC:
            return kind
    return ExperimentKind.GENERIC


def is_overlap_experiment(name: str) -> bool:
    """Tell whether an experiment (bare or ``<suite>_`` prefixed name) measures overlap."""
    _, _, sub_benchmark = name.partition("_")
    for candidate in (name, sub_benchmark):
        if candidate.startswith(OVERLAP_PREFIX) or candidate in OSU_NONBLOCKING_COLLECTIVES:
            return True
    return False


def find_output_files(run_dir: Path) -> Dict[str, Path]:
    """
    Map experiment names to their output file.

    Output files are named ``<experiment>-<job id>.out``; when an experiment
    ran more than once, the most recent file wins.
    """
    outputs: Dict[str, Path] = {}
    for path in run_dir.glob(f"*{OUTPUT_SUFFIX}"):
        if not path.is_file():
            continue
        stem = path.name[: -len(OUTPUT_SUFFIX)]
        name = stem.rsplit("-", 1)[0] if "-" in stem else stem
        current = outputs.get(name)
        if current is None or path.stat().st_mtime > current.stat().st_mtime:
            outputs[name] = path
    return outputs


def load_rows(text: str) -> np.ndarray:
    """
    Extract the numeric table of a benchmark output.

    Data rows are lines starting with a number; comments and text lines are
    ignored. Only rows as wide as the first data row are kept.

    Returns:
        2-D array, empty when there is no data
    """
    rows: List[List[float]] = []
    width = None
    for line in text.splitlines():
        tokens = line.split()
        if not tokens or tokens[0].startswith("#"):
            continue
        values = []
        for token in tokens:
            try:
                values.append(float(token))
            except ValueError:
                break
        if not values:
            continue
        if width is None:
            width = len(values)
        if len(values) == width:
            rows.append(values)

    if not rows:
        return np.empty((0, 0))
    return np.array(rows, dtype=float)


def extract_result(name: str, rows: np.ndarray, output_file: str = "") -> ExperimentResult:
    """
    Compute the metric of one experiment.

    Args:
        name: Experiment name
        rows: Numeric table returned by ``load_rows``
        output_file: Path of the output the rows come from

    Returns:
        ExperimentResult
    """
    kind = experiment_kind(name)
    result = ExperimentResult(name=name, output_file=output_file, kind=kind, num_rows=len(rows))
    if len(rows) == 0:
        return result

    last = rows[:, -1]
    if kind.is_latency and rows.shape[1] >= 2:
        result.metric, result.unit = "latency", "us"
        result.value = float(rows[np.argmin(rows[:, 0]), 1])
    elif kind.is_bandwidth and rows.shape[1] >= 2:
        result.metric, result.unit = "peak bandwidth", "MB/s"
        result.value = float(np.max(rows[:, 1]))
    elif kind is ExperimentKind.SMB_MPI_OVERHEAD:
        result.metric, result.unit = "availability", "%"
        result.value = float(np.mean(last))
    elif is_overlap_experiment(name):
        result.metric, result.unit = "overlap", "%"
        result.value = float(np.mean(last))
    else:
        result.value = float(len(rows))
    return result


def collect_results(run_dir: str) -> List[ExperimentResult]:
    """
    Parse every experiment output of a run directory.

    Args:
        run_dir: Run directory

    Returns:
        Results sorted by experiment name

    Raises:
        ReportError: If the run directory or an output file cannot be read
    """
    path = Path(run_dir)
    if not path.is_dir():
        raise ReportError(f"run directory {run_dir} does not exist")

    results = []
    for name, output in sorted(find_output_files(path).items()):
        try:
            text = output.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            raise ReportError(f"unable to read {output}: {e}") from e
        results.append(extract_result(name, load_rows(text), str(output)))
    return results


def headline_metrics(results: List[ExperimentResult]) -> Dict[str, str]:
    """
    Compute the final metrics of a run.

    Only metrics for which some data exists are returned.
    """
    latencies = [r.value for r in results if r.has_data and r.metric == "latency"]
    bandwidths = [r.value for r in results if r.has_data and r.metric == "peak bandwidth"]
    overlaps = [r.value for r in results if r.has_data and r.metric == "overlap"]
    availability = [r.value for r in results if r.has_data and r.metric == "availability"]

    metrics = {}
    if latencies:
        metrics["Point-to-point latency"] = f"{min(latencies):.2f} us"
    if bandwidths:
        metrics["Point-to-point bandwidth"] = f"{max(bandwidths):.2f} MB/s"
    if overlaps:
        metrics["Overlap"] = f"{np.mean(overlaps):.2f} %"
    if availability:
        metrics["SMB availability"] = f"{np.mean(availability):.2f} %"
    return metrics
