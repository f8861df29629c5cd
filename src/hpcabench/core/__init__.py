"""
Core business logic of the benchmark scheduler.

Contains:
- selection: required-subset filtering of the catalog
- classifier: point-to-point classification of experiments
- planner: experiment set construction
- runner: concurrency-bounded execution
- catalog: discovery of installed benchmarks
- pipeline: orchestration of a whole invocation
"""

from .classifier import classify_experiment, is_strictly_point_to_point
from .planner import build_experiment, build_experiments
from .runner import ExperimentRunner
from .selection import DEFAULT_REQUIRED_BENCHMARKS, filter_required, select_benchmarks
