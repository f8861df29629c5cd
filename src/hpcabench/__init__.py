"""
HPCA Benchmark Scheduler

Selects installed HPC micro-benchmarks, plans experiments with the right
topology and runs them on a cluster under a concurrency bound.

Package structure:
- cli/: Command line interface
- core/: Selection, classification, planning, running and orchestration
- models/: Data models (benchmarks, experiments)
- builders/: mpirun command and sbatch script builders
- infra/: Infrastructure (communicator, job managers, logs)
- reporting/: Result parsing and report generation
"""

__version__ = "1.0.0"
