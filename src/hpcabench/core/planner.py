"""
Planner module for the HPCA Benchmark Scheduler.

Turns the selected benchmarks into an ``ExperimentSet``: one experiment per
sub-benchmark, named ``<suite>_<sub-benchmark>``, with the point-to-point
topology forced where the experiment kind requires it.
"""

import logging

from hpcabench.core.classifier import classify_experiment
from hpcabench.models.benchmark import Catalog, SubBenchmarkInfo
from hpcabench.models.experiment import (
    DEFAULT_MAX_EXEC_TIME,
    POINT_TO_POINT_NODES,
    POINT_TO_POINT_PPN,
    ExperimentDescriptor,
    ExperimentSet,
    Topology,
    TopologyPolicy,
)

logger = logging.getLogger(__name__)


def experiment_name(suite: str, sub_benchmark: str) -> str:
    return f"{suite}_{sub_benchmark}"


def build_experiment(suite: str, sub: SubBenchmarkInfo, platform: Topology) -> ExperimentDescriptor:
    """
    Build the experiment running one sub-benchmark.

    Args:
        suite: Name of the suite the sub-benchmark belongs to
        sub: Installed sub-benchmark
        platform: Run-wide topology; only device and partition are reused
            when the experiment needs a point-to-point placement

    Returns:
        ExperimentDescriptor with a topology override for point-to-point kinds
    """
    kind = classify_experiment(suite, sub.name)
    override = None
    if kind.policy is TopologyPolicy.POINT_TO_POINT:
        override = Topology(
            num_nodes=POINT_TO_POINT_NODES,
            ppn=POINT_TO_POINT_PPN,
            device=platform.device,
            partition=platform.partition,
        )

    return ExperimentDescriptor(
        name=experiment_name(suite, sub.name),
        suite=suite,
        sub_benchmark=sub.name,
        bin_path=sub.bin_path,
        bin_name=sub.bin_name,
        bin_args=sub.bin_args,
        kind=kind,
        platform=override,
    )


def build_experiments(
    benchmarks: Catalog,
    platform: Topology,
    mpi_dir: str = "",
    run_dir: str = "",
    max_exec_time: str = DEFAULT_MAX_EXEC_TIME,
) -> ExperimentSet:
    """
    Build the experiment set for a run.

    Experiments are appended suite by suite, in catalog order, then in
    sub-benchmark order within a suite.

    Args:
        benchmarks: Benchmarks selected for the run
        platform: Run-wide topology (partition, device, ppn, number of nodes)
        mpi_dir: MPI installation directory
        run_dir: Directory where experiments run and write their results
        max_exec_time: Wall-time limit of each experiment

    Returns:
        ExperimentSet ready to be submitted
    """
    exps = ExperimentSet(
        platform=platform,
        mpi_dir=mpi_dir,
        run_dir=run_dir,
        results_dir=run_dir,
        max_exec_time=max_exec_time,
    )

    for suite, install in benchmarks.items():
        for sub in install.sub_benchmarks:
            exps.append(build_experiment(suite, sub, platform))

    logger.info("%d experiment(s) planned", len(exps))
    for e in exps:
        logger.info(" - %s (%s)", e.name, "point-to-point" if e.platform else "default topology")
    return exps
