#!/usr/bin/env python3
"""
Pipeline module for the HPCA Benchmark Scheduler.

One invocation goes through the following steps:
1. Check the workspace and the run options
2. Discover the installed benchmarks
3. Select the benchmarks to run (required subset or everything)
4. Build the experiment set
5. Create the run directory
6. Submit the experiments and wait for them under the concurrency bound
7. Render and save the results

Every fatal condition is raised as an ``HpcaBenchError`` subclass; failures
of individual experiments are only reported in the logs.
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from hpcabench.config import Config, Workspace
from hpcabench.core.catalog import detect_from_config
from hpcabench.core.planner import build_experiments
from hpcabench.core.runner import ExperimentRunner
from hpcabench.core.selection import RequiredLists, select_benchmarks
from hpcabench.errors import PreconditionError, RunDirectoryError
from hpcabench.infra.jobmgr import JobBackend, detect_backend
from hpcabench.models.benchmark import Catalog
from hpcabench.models.experiment import ExperimentSet, ExperimentState, RuntimeParams, Topology
from hpcabench.reporting.reporter import Reporter

logger = logging.getLogger(__name__)


@dataclass
class RunOptions:
    """Options of one invocation, as given on the command line."""
    partition: str = ""
    device: str = ""
    max_running_jobs: int = 5
    ppn: int = 1
    num_nodes: int = 1
    long_run: bool = False
    progress_frequency: float = 5.0
    sleep_before_submitting_again: float = 1.0

    @property
    def platform(self) -> Topology:
        return Topology(
            num_nodes=self.num_nodes,
            ppn=self.ppn,
            device=self.device,
            partition=self.partition,
        )


def validate_options(options: RunOptions) -> RuntimeParams:
    """
    Check the run options.

    Returns:
        Runtime parameters of the runner

    Raises:
        PreconditionError: If the concurrency bound or the topology is invalid
    """
    runtime = RuntimeParams(
        max_running_jobs=options.max_running_jobs,
        progress_frequency=options.progress_frequency,
        sleep_before_submitting_again=options.sleep_before_submitting_again,
    )
    if options.ppn <= 0:
        raise PreconditionError(f"the number of ranks per node must be greater than 0 ({options.ppn})")
    if options.num_nodes <= 0:
        raise PreconditionError(f"the number of nodes must be greater than 0 ({options.num_nodes})")
    return runtime


def prepare_run_dir(workspace: Workspace) -> str:
    """
    Make sure the run directory exists.

    Raises:
        RunDirectoryError: If it cannot be created
    """
    run_dir = Path(workspace.run_dir)
    try:
        run_dir.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise RunDirectoryError(f"unable to create the run directory: {e}") from e
    return str(run_dir)


def plan(
    config: Config,
    options: RunOptions,
    catalog: Optional[Catalog] = None,
    required_lists: Optional[RequiredLists] = None,
) -> ExperimentSet:
    """
    Build the experiment set of an invocation without running anything.

    Args:
        config: Loaded configuration
        options: Run options
        catalog: Installed benchmarks (discovered from the workspace if None)
        required_lists: Required sub-benchmarks per suite (configuration or
            built-in lists if None)

    Returns:
        ExperimentSet
    """
    workspace = config.validate()
    if catalog is None:
        catalog = detect_from_config(config)
    if required_lists is None:
        required_lists = config.required_benchmarks

    benchmarks = select_benchmarks(catalog, options.long_run, required_lists)
    return build_experiments(
        benchmarks,
        options.platform,
        mpi_dir=workspace.mpi_dir,
        run_dir=workspace.run_dir,
        max_exec_time=config.max_exec_time,
    )


def run_pipeline(
    config: Config,
    options: RunOptions,
    backend: Optional[JobBackend] = None,
    reporter: Optional[Reporter] = None,
    catalog: Optional[Catalog] = None,
    required_lists: Optional[RequiredLists] = None,
) -> str:
    """
    Run the whole invocation.

    Args:
        config: Loaded configuration
        options: Run options
        backend: Job manager backend (detected from the configuration if None)
        reporter: Result reporter (writes next to ``config.basedir`` if None)
        catalog: Installed benchmarks (discovered if None)
        required_lists: Override of the required sub-benchmarks

    Returns:
        The results summary

    Raises:
        HpcaBenchError: On any fatal condition
        KeyboardInterrupt: After the experiments were cancelled
    """
    workspace = config.validate()
    runtime = validate_options(options)

    exps = plan(config, options, catalog=catalog, required_lists=required_lists)
    run_dir = prepare_run_dir(workspace)

    if backend is None:
        backend = detect_backend(config.job_manager, target=config.target, account=config.account)
    runner = ExperimentRunner(backend, runtime)
    try:
        try:
            runner.run(exps)
            runner.wait()
        except KeyboardInterrupt:
            print("Interrupted, cancelling experiments...")
            runner.cancel()
            runner.wait()
            raise
    finally:
        runner.fini()

    summary = runner.summary()
    logger.info("-> Jobs executed: %s", runner.format_summary())
    if summary[ExperimentState.FAILED.value]:
        for status in runner.statuses():
            if status.state is ExperimentState.FAILED:
                logger.warning("Experiment %s failed%s", status.experiment.name,
                               f": {status.error}" if status.error else "")

    if reporter is None:
        reporter = Reporter(config.basedir)
    return reporter.render_and_persist(run_dir)
