"""
Data models for the benchmark scheduler.

Contains:
- benchmark: installed suites and sub-benchmarks
- experiment: experiments, experiment sets and runner accounting
"""

from .benchmark import BenchmarkInstall, Catalog, SubBenchmarkInfo
from .experiment import (
    DEFAULT_MAX_EXEC_TIME,
    POINT_TO_POINT_NODES,
    POINT_TO_POINT_PPN,
    ExperimentDescriptor,
    ExperimentKind,
    ExperimentSet,
    ExperimentState,
    ExperimentStatus,
    RuntimeParams,
    Topology,
    TopologyPolicy,
)
