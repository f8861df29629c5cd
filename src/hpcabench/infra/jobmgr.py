#!/usr/bin/env python3
"""
Job manager module for the HPCA Benchmark Scheduler.

A job manager backend knows how to start one experiment, report the state
of the resulting job and cancel it. Two backends are provided:
- LocalBackend: runs mpirun directly on the current host
- SlurmBackend: submits sbatch scripts, locally or through SSH

The runner only deals with the ``JobBackend`` interface and never with
the details of a specific job manager.
"""

import logging
import os
import shlex
import shutil
import subprocess
from abc import ABC, abstractmethod
from enum import Enum
from pathlib import Path
from typing import IO, Dict, Optional, Set

from hpcabench.builders.job_scripts import ScriptBuilder, build_mpirun_command, mpirun_path
from hpcabench.errors import SubmissionError
from hpcabench.infra.communicator import Communicator, create_communicator
from hpcabench.models.experiment import ExperimentDescriptor, ExperimentSet

logger = logging.getLogger(__name__)


class JobState(Enum):
    QUEUED = "QUEUED"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.COMPLETED, JobState.FAILED, JobState.CANCELLED)


def output_file_name(experiment_name: str, job_id: str) -> str:
    """Name of the file an experiment's output is written to in the run directory."""
    return f"{experiment_name}-{job_id}.out"


class JobBackend(ABC):
    """Interface between the runner and a job manager."""

    name = "abstract"

    @abstractmethod
    def check(self, exps: ExperimentSet) -> None:
        """
        Make sure experiments can be submitted.

        Raises:
            SubmissionError: If the job manager cannot be used
        """

    @abstractmethod
    def submit(self, experiment: ExperimentDescriptor, exps: ExperimentSet) -> str:
        """
        Start an experiment.

        Returns:
            Job ID

        Raises:
            SubmissionError: If this experiment could not be submitted
        """

    @abstractmethod
    def state(self, job_id: str) -> JobState:
        """Get the current state of a job."""

    @abstractmethod
    def cancel(self, job_id: str) -> bool:
        """
        Cancel a job.

        Returns:
            True if cancellation was successful, False otherwise
        """

    def finalize(self, experiment: ExperimentDescriptor, exps: ExperimentSet, job_id: str) -> None:
        """Called once the job of an experiment reached a terminal state."""

    def close(self) -> None:
        """Release the resources held by the backend."""


class LocalBackend(JobBackend):
    """
    Runs experiments as local mpirun processes.

    Each experiment writes its output to ``<run_dir>/<name>-<job id>.out``;
    job IDs are sequence numbers.
    """

    name = "local"

    def __init__(self):
        self._next_id = 1
        self._procs: Dict[str, subprocess.Popen] = {}
        self._outputs: Dict[str, IO] = {}
        self._cancelled: Set[str] = set()

    def check(self, exps: ExperimentSet) -> None:
        mpirun = mpirun_path(exps.mpi_dir)
        if exps.mpi_dir:
            if not os.access(mpirun, os.X_OK):
                raise SubmissionError(f"mpirun not found or not executable: {mpirun}")
        elif shutil.which(mpirun) is None:
            raise SubmissionError("mpirun not found in PATH")

    def submit(self, experiment: ExperimentDescriptor, exps: ExperimentSet) -> str:
        job_id = str(self._next_id)
        self._next_id += 1

        cmd = build_mpirun_command(experiment, exps)
        output_path = Path(exps.run_dir) / output_file_name(experiment.name, job_id)
        try:
            output = open(output_path, "w")
        except OSError as e:
            raise SubmissionError(f"unable to create {output_path}: {e}") from e

        env = None
        topology = experiment.topology(exps.platform)
        if topology.device:
            env = dict(os.environ, UCX_NET_DEVICES=topology.device)

        logger.debug("Running %s", shlex.join(cmd))
        try:
            proc = subprocess.Popen(
                cmd,
                stdout=output,
                stderr=subprocess.STDOUT,
                cwd=exps.run_dir or None,
                env=env,
            )
        except OSError as e:
            output.close()
            raise SubmissionError(f"unable to start {experiment.name}: {e}") from e

        self._procs[job_id] = proc
        self._outputs[job_id] = output
        return job_id

    def state(self, job_id: str) -> JobState:
        proc = self._procs.get(job_id)
        if proc is None:
            return JobState.FAILED
        rc = proc.poll()
        if rc is None:
            return JobState.RUNNING
        if job_id in self._cancelled:
            return JobState.CANCELLED
        return JobState.COMPLETED if rc == 0 else JobState.FAILED

    def cancel(self, job_id: str) -> bool:
        proc = self._procs.get(job_id)
        if proc is None:
            return False
        self._cancelled.add(job_id)
        if proc.poll() is None:
            proc.terminate()
        return True

    def finalize(self, experiment: ExperimentDescriptor, exps: ExperimentSet, job_id: str) -> None:
        output = self._outputs.pop(job_id, None)
        if output is not None:
            output.close()

    def close(self) -> None:
        for job_id, proc in self._procs.items():
            if proc.poll() is None:
                logger.warning("Terminating local job %s", job_id)
                proc.terminate()
                proc.wait()
        for output in self._outputs.values():
            output.close()
        self._outputs.clear()


# squeue/sacct state -> job state
_SLURM_STATES = {
    "PENDING": JobState.QUEUED,
    "CONFIGURING": JobState.QUEUED,
    "REQUEUED": JobState.QUEUED,
    "RESIZING": JobState.QUEUED,
    "SUSPENDED": JobState.QUEUED,
    "RUNNING": JobState.RUNNING,
    "COMPLETING": JobState.RUNNING,
    "STAGE_OUT": JobState.RUNNING,
    "COMPLETED": JobState.COMPLETED,
    "CANCELLED": JobState.CANCELLED,
    "FAILED": JobState.FAILED,
    "TIMEOUT": JobState.FAILED,
    "NODE_FAIL": JobState.FAILED,
    "OUT_OF_MEMORY": JobState.FAILED,
    "BOOT_FAIL": JobState.FAILED,
    "DEADLINE": JobState.FAILED,
    "PREEMPTED": JobState.FAILED,
}


def parse_slurm_state(raw: str) -> Optional[JobState]:
    """
    Convert a state reported by squeue or sacct.

    sacct may decorate states (e.g., "CANCELLED by 1234"), only the first
    word is considered.

    Returns:
        The job state, or None if the output is empty or unknown
    """
    words = raw.strip().split()
    if not words:
        return None
    return _SLURM_STATES.get(words[0].rstrip("+"))


class SlurmBackend(JobBackend):
    """
    Submits experiments as Slurm batch jobs.

    Commands go through a communicator so the same backend works from a
    login node and from a workstation connected to the cluster over SSH.
    Over SSH, the run directory is expected at the same path on both sides;
    scripts are uploaded before submission and outputs downloaded once the
    job is over.
    """

    name = "slurm"

    def __init__(self, communicator: Communicator, builder: Optional[ScriptBuilder] = None):
        self.communicator = communicator
        self.builder = builder or ScriptBuilder()
        self._last_states: Dict[str, JobState] = {}

    def _run(self, command: str):
        return self.communicator.execute_command(command)

    def check(self, exps: ExperimentSet) -> None:
        if not self.communicator.connect():
            raise SubmissionError(f"unable to connect to {self.communicator.target}")
        result = self._run("command -v sbatch")
        if not result.success:
            raise SubmissionError(f"sbatch is not available on {self.communicator.target}")
        if self.communicator.is_remote:
            scripts_dir = shlex.quote(str(Path(exps.run_dir) / "scripts"))
            result = self._run(f"mkdir -p {scripts_dir}")
            if not result.success:
                raise SubmissionError(f"unable to create the remote run directory: {result.stderr}")

    def _write_script(self, experiment: ExperimentDescriptor, exps: ExperimentSet) -> Path:
        scripts_dir = Path(exps.run_dir) / "scripts"
        scripts_dir.mkdir(parents=True, exist_ok=True)
        script_path = scripts_dir / f"{experiment.name}.sbatch"
        script_path.write_text(self.builder.render_sbatch(experiment, exps))
        os.chmod(script_path, 0o755)
        return script_path

    def submit(self, experiment: ExperimentDescriptor, exps: ExperimentSet) -> str:
        try:
            script_path = self._write_script(experiment, exps)
        except OSError as e:
            raise SubmissionError(f"unable to write the script of {experiment.name}: {e}") from e

        if self.communicator.is_remote:
            if not self.communicator.upload_file(script_path, str(script_path)):
                raise SubmissionError(f"unable to upload {script_path}")

        result = self._run(f"sbatch --parsable {shlex.quote(str(script_path))}")
        if not result.success:
            raise SubmissionError(f"sbatch failed for {experiment.name}: {result.stderr}")

        # --parsable prints "<job id>" or "<job id>;<cluster>"
        job_id = result.stdout.strip().split(";")[0]
        if not job_id.isdigit():
            raise SubmissionError(f"unexpected sbatch output for {experiment.name}: {result.stdout!r}")
        logger.info("%s submitted as job %s", experiment.name, job_id)
        self._last_states[job_id] = JobState.QUEUED
        return job_id

    def _remember(self, job_id: str, state: JobState) -> JobState:
        self._last_states[job_id] = state
        return state

    def state(self, job_id: str) -> JobState:
        """
        Get the state of a job from squeue, then sacct once it left the queue.

        A job is only reported as over when both commands answered and
        neither knows it. When a query fails (connection lost, timeout),
        the last known state is returned so the job keeps its slot.
        """
        last_known = self._last_states.get(job_id, JobState.QUEUED)

        queue = self._run(f"squeue -h -j {job_id} -o %T")
        if queue.success:
            state = parse_slurm_state(queue.stdout)
            if state is not None:
                return self._remember(job_id, state)

        # Job left the queue, or squeue failed - check sacct
        accounting = self._run(f"sacct -j {job_id} -n -X -o State --parsable2")
        if accounting.success and accounting.stdout:
            state = parse_slurm_state(accounting.stdout.splitlines()[0])
            if state is not None:
                return self._remember(job_id, state)

        if not queue.success or not accounting.success:
            logger.warning("Unable to query the state of job %s, assuming %s", job_id, last_known.value)
            return last_known

        # Not queued and no accounting record: the job is over
        return self._remember(job_id, JobState.COMPLETED)

    def cancel(self, job_id: str) -> bool:
        return self._run(f"scancel {job_id}").success

    def finalize(self, experiment: ExperimentDescriptor, exps: ExperimentSet, job_id: str) -> None:
        if not self.communicator.is_remote:
            return
        output = Path(exps.run_dir) / output_file_name(experiment.name, job_id)
        if not self.communicator.download_file(str(output), output):
            logger.warning("Unable to retrieve the output of %s (job %s)", experiment.name, job_id)

    def close(self) -> None:
        self.communicator.disconnect()


def detect_backend(job_manager: str = "auto", target: str = "", account: str = "") -> JobBackend:
    """
    Pick the job manager backend.

    Args:
        job_manager: "local", "slurm" or "auto"
        target: SSH alias of a remote cluster; implies Slurm
        account: Slurm account used for submissions

    Returns:
        JobBackend instance

    Raises:
        ValueError: If the job manager is not supported
    """
    if job_manager not in ("auto", "local", "slurm"):
        raise ValueError(f"Unsupported job manager: {job_manager}")

    use_slurm = job_manager == "slurm" or (
        job_manager == "auto" and (bool(target) or shutil.which("sbatch") is not None)
    )
    if use_slurm:
        logger.info("Using Slurm%s", f" on {target}" if target else "")
        return SlurmBackend(create_communicator(target), ScriptBuilder(account=account))
    logger.info("Using local mpirun")
    return LocalBackend()
