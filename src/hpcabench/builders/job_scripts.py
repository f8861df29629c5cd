#!/usr/bin/env python3
"""
Job script builders for the HPCA Benchmark Scheduler.

Builds the ``mpirun`` command line of an experiment and renders the sbatch
script submitted to Slurm from a Jinja2 template.
"""

import shlex
from pathlib import Path
from typing import List, Optional

from jinja2 import Environment, FileSystemLoader, StrictUndefined

from hpcabench.models.experiment import ExperimentDescriptor, ExperimentSet

TEMPLATE_DIR = Path(__file__).resolve().parent.parent / "templates"
SBATCH_TEMPLATE = "experiment.sbatch.j2"


def mpirun_path(mpi_dir: str) -> str:
    """Return the mpirun executable of an MPI installation, or plain ``mpirun``."""
    if mpi_dir:
        return str(Path(mpi_dir) / "bin" / "mpirun")
    return "mpirun"


def build_mpirun_command(experiment: ExperimentDescriptor, exps: ExperimentSet) -> List[str]:
    """
    Build the command line launching an experiment.

    Args:
        experiment: Experiment to launch
        exps: Experiment set providing the MPI installation and run-wide topology

    Returns:
        Command as a list of arguments
    """
    topology = experiment.topology(exps.platform)
    return [
        mpirun_path(exps.mpi_dir),
        "-np", str(topology.num_ranks),
        "--map-by", f"ppr:{topology.ppn}:node",
        experiment.bin_path or experiment.bin_name,
        *experiment.bin_args,
    ]


class ScriptBuilder:
    """Renders sbatch scripts using the Jinja2 templates"""

    def __init__(self, template_dir: Optional[str] = None, account: str = ""):
        """
        Initialize the builder.

        Args:
            template_dir: Directory containing Jinja2 templates (default: package templates)
            account: Slurm account/project ID, empty to let Slurm pick the default
        """
        self.template_dir = Path(template_dir) if template_dir else TEMPLATE_DIR
        self.account = account
        self.jinja_env = Environment(
            loader=FileSystemLoader(str(self.template_dir)),
            undefined=StrictUndefined,
            keep_trailing_newline=True,
        )

    def render_sbatch(self, experiment: ExperimentDescriptor, exps: ExperimentSet) -> str:
        """
        Render the sbatch script of an experiment.

        Args:
            experiment: Experiment to submit
            exps: Experiment set it belongs to

        Returns:
            Rendered sbatch script as string
        """
        topology = experiment.topology(exps.platform)
        template = self.jinja_env.get_template(SBATCH_TEMPLATE)

        context = {
            "name": experiment.name,
            "time_limit": exps.max_exec_time,
            "partition": topology.partition,
            "account": self.account,
            "device": topology.device,
            "num_nodes": topology.num_nodes,
            "ppn": topology.ppn,
            "num_ranks": topology.num_ranks,
            "run_dir": exps.run_dir,
            "mpi_dir": exps.mpi_dir,
            "command": shlex.join(build_mpirun_command(experiment, exps)),
        }

        return template.render(context)
