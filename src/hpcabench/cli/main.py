#!/usr/bin/env python3
"""
Command line entry point of the HPCA Benchmark Scheduler.

Runs the installed HPC micro-benchmarks of the workspace described by
``hpcabench.yaml`` (in ``$HPCABENCH_BASEDIR`` or the current directory) and
prints the results.
"""

import argparse
import logging
import sys
from typing import List, Optional

from hpcabench.config import Config, default_basedir
from hpcabench.core.pipeline import RunOptions, run_pipeline
from hpcabench.errors import (
    ConfigurationError,
    PreconditionError,
    ReportError,
    RunDirectoryError,
    SubmissionError,
)
from hpcabench.infra.logs import setup_logging

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="hpcabench-run",
        description="Run the HPCA micro-benchmarks",
    )
    parser.add_argument("-v", dest="verbose", action="store_true",
                        help="Enable verbose mode")
    parser.add_argument("-p", dest="partition", default="",
                        help="Partition to use to submit the jobs (relevant when a job manager such as Slurm is used)")
    parser.add_argument("-d", dest="device", default="",
                        help="Device to use")
    parser.add_argument("--max-running-jobs", type=int, default=5,
                        help="Maximum number of jobs running at any given time "
                             "(other jobs are queued and executed upon completion of running jobs)")
    parser.add_argument("--ppn", type=int, default=1,
                        help="Number of MPI ranks per node")
    parser.add_argument("--num-nodes", type=int, default=1,
                        help="Number of nodes to use")
    parser.add_argument("--long", dest="long_run", action="store_true",
                        help="Run all installed tests, including tests not used to create the final metrics")
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)

    basedir = default_basedir()
    log_path = setup_logging(args.verbose, basedir)
    if log_path:
        logger.info("Logging to %s", log_path)

    try:
        config = Config.load(basedir)
    except ConfigurationError as e:
        print(f"Unable to load the configuration: {e}")
        return 1

    options = RunOptions(
        partition=args.partition,
        device=args.device,
        max_running_jobs=args.max_running_jobs,
        ppn=args.ppn,
        num_nodes=args.num_nodes,
        long_run=args.long_run,
    )

    try:
        results = run_pipeline(config, options)
    except (PreconditionError, RunDirectoryError) as e:
        print(f"ERROR: {e}")
        return 1
    except SubmissionError as e:
        print(f"ERROR: unable to execute experiments: {e}")
        return 1
    except ReportError as e:
        print(f"ERROR: unable to display results: {e}")
        return 1
    except KeyboardInterrupt:
        print("ERROR: interrupted")
        return 1

    print("\nHPCA benchmarks:\n" + results)
    return 0


if __name__ == "__main__":
    sys.exit(main())
