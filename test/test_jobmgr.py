"""
Tests for the job manager backends.
"""

import os
import shutil
import sys
import time
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import make_suite
from hpcabench.core.planner import build_experiments
from hpcabench.core.runner import ExperimentRunner
from hpcabench.errors import SubmissionError
from hpcabench.infra.communicator import CommandResult, Communicator, LocalCommunicator, create_communicator
from hpcabench.infra.jobmgr import (
    JobState,
    LocalBackend,
    SlurmBackend,
    detect_backend,
    output_file_name,
    parse_slurm_state,
)
from hpcabench.models.experiment import ExperimentDescriptor, ExperimentSet, RuntimeParams, Topology


class FakeCommunicator(Communicator):
    """Records commands and answers them from a table of canned results."""

    def __init__(self, responses=None, remote=False):
        super().__init__("cluster")
        self.is_remote = remote
        self.responses = responses or {}
        self.commands = []
        self.uploads = []
        self.downloads = []
        self.connected = False

    def connect(self):
        self.connected = True
        return True

    def disconnect(self):
        self.connected = False

    def execute_command(self, command, working_dir=None):
        self.commands.append(command)
        for prefix, result in self.responses.items():
            if command.startswith(prefix):
                return result
        return CommandResult(stdout="", stderr="", return_code=0)

    def upload_file(self, local_path, remote_path):
        self.uploads.append((str(local_path), remote_path))
        return True

    def download_file(self, remote_path, local_path):
        self.downloads.append((remote_path, str(local_path)))
        return True


def ok(stdout=""):
    return CommandResult(stdout=stdout, stderr="", return_code=0)


def failed(stderr="error"):
    return CommandResult(stdout="", stderr=stderr, return_code=1)


def make_experiment(name="osu_osu_bw"):
    return ExperimentDescriptor(
        name=name,
        suite="osu",
        sub_benchmark="osu_bw",
        bin_path="/opt/osu/osu_bw",
        bin_name="osu_bw",
        platform=Topology(num_nodes=2, ppn=1),
    )


@pytest.fixture
def exps(tmp_path):
    run_dir = tmp_path / "run"
    run_dir.mkdir()
    return ExperimentSet(platform=Topology(num_nodes=4, ppn=4), mpi_dir="/opt/mpi", run_dir=str(run_dir))


@pytest.mark.parametrize("raw,expected", [
    ("PENDING", JobState.QUEUED),
    ("RUNNING\n", JobState.RUNNING),
    ("COMPLETED", JobState.COMPLETED),
    ("CANCELLED by 1234", JobState.CANCELLED),
    ("CANCELLED+", JobState.CANCELLED),
    ("TIMEOUT", JobState.FAILED),
    ("OUT_OF_MEMORY", JobState.FAILED),
    ("", None),
    ("WEIRD", None),
])
def test_parse_slurm_state(raw, expected):
    assert parse_slurm_state(raw) is expected


def test_output_file_name():
    assert output_file_name("osu_osu_bw", "42") == "osu_osu_bw-42.out"


def test_slurm_submit(exps):
    comm = FakeCommunicator({"sbatch": ok("12345")})
    backend = SlurmBackend(comm)
    backend.check(exps)

    job_id = backend.submit(make_experiment(), exps)

    assert job_id == "12345"
    script = Path(exps.run_dir) / "scripts" / "osu_osu_bw.sbatch"
    assert script.exists()
    assert "#SBATCH --nodes=2" in script.read_text()
    assert comm.commands[-1] == f"sbatch --parsable {script}"
    assert comm.uploads == []


def test_slurm_submit_with_cluster_name(exps):
    backend = SlurmBackend(FakeCommunicator({"sbatch": ok("777;cluster1")}))
    assert backend.submit(make_experiment(), exps) == "777"


def test_slurm_submit_failure(exps):
    backend = SlurmBackend(FakeCommunicator({"sbatch": failed("invalid partition")}))
    with pytest.raises(SubmissionError, match="invalid partition"):
        backend.submit(make_experiment(), exps)


def test_slurm_submit_unexpected_output(exps):
    backend = SlurmBackend(FakeCommunicator({"sbatch": ok("Submitted batch job")}))
    with pytest.raises(SubmissionError):
        backend.submit(make_experiment(), exps)


def test_slurm_check_without_sbatch(exps):
    backend = SlurmBackend(FakeCommunicator({"command -v sbatch": failed()}))
    with pytest.raises(SubmissionError, match="sbatch"):
        backend.check(exps)


def test_slurm_remote_uploads_and_downloads(exps):
    comm = FakeCommunicator({"sbatch": ok("99")}, remote=True)
    backend = SlurmBackend(comm)
    backend.check(exps)
    assert any(c.startswith("mkdir -p") for c in comm.commands)

    experiment = make_experiment()
    job_id = backend.submit(experiment, exps)
    assert len(comm.uploads) == 1

    backend.finalize(experiment, exps, job_id)
    assert comm.downloads[0][0] == str(Path(exps.run_dir) / "osu_osu_bw-99.out")


def test_slurm_state_from_squeue():
    backend = SlurmBackend(FakeCommunicator({"squeue": ok("RUNNING")}))
    assert backend.state("1") is JobState.RUNNING


def test_slurm_state_from_sacct():
    backend = SlurmBackend(FakeCommunicator({"squeue": ok(""), "sacct": ok("FAILED\n")}))
    assert backend.state("1") is JobState.FAILED


def test_slurm_state_unknown_job_is_over():
    backend = SlurmBackend(FakeCommunicator({"squeue": ok(""), "sacct": ok("")}))
    assert backend.state("1") is JobState.COMPLETED


@pytest.mark.parametrize("responses", [
    {"squeue": failed("Connection reset"), "sacct": failed("Connection reset")},
    {"squeue": failed("timeout"), "sacct": ok("")},
    {"squeue": ok(""), "sacct": failed("slurmdbd not responding")},
])
def test_slurm_state_failed_query_keeps_job_in_flight(exps, responses):
    comm = FakeCommunicator({"sbatch": ok("42"), "squeue": ok("RUNNING")})
    backend = SlurmBackend(comm)
    job_id = backend.submit(make_experiment(), exps)
    assert backend.state(job_id) is JobState.RUNNING

    comm.responses = responses
    assert backend.state(job_id) is JobState.RUNNING


def test_slurm_state_failed_query_before_first_answer():
    backend = SlurmBackend(FakeCommunicator({"squeue": failed(), "sacct": failed()}))
    assert not backend.state("7").is_terminal


def test_slurm_cancel_and_close():
    comm = FakeCommunicator({"scancel": ok()})
    backend = SlurmBackend(comm)
    comm.connect()

    assert backend.cancel("5")
    assert comm.commands == ["scancel 5"]
    backend.close()
    assert not comm.connected


def write_fake_mpirun(mpi_dir: Path) -> None:
    (mpi_dir / "bin").mkdir(parents=True)
    mpirun = mpi_dir / "bin" / "mpirun"
    mpirun.write_text('#!/bin/sh\necho "mpirun $@"\n')
    os.chmod(mpirun, 0o755)


def wait_for(backend, job_id, timeout=10.0):
    deadline = time.time() + timeout
    while time.time() < deadline:
        state = backend.state(job_id)
        if state.is_terminal:
            return state
        time.sleep(0.05)
    raise AssertionError(f"job {job_id} did not finish")


@pytest.mark.skipif(shutil.which("sh") is None, reason="requires a POSIX shell")
def test_local_backend_runs_mpirun(tmp_path):
    mpi_dir = tmp_path / "mpi"
    write_fake_mpirun(mpi_dir)
    run_dir = tmp_path / "run"
    run_dir.mkdir()
    exps = ExperimentSet(platform=Topology(), mpi_dir=str(mpi_dir), run_dir=str(run_dir))
    experiment = make_experiment()

    backend = LocalBackend()
    backend.check(exps)
    job_id = backend.submit(experiment, exps)

    assert job_id == "1"
    assert wait_for(backend, job_id) is JobState.COMPLETED
    backend.finalize(experiment, exps, job_id)
    backend.close()

    output = (run_dir / "osu_osu_bw-1.out").read_text()
    assert "mpirun -np 2 --map-by ppr:1:node /opt/osu/osu_bw" in output


def test_local_backend_check_missing_mpirun(tmp_path):
    exps = ExperimentSet(mpi_dir=str(tmp_path / "nompi"), run_dir=str(tmp_path))
    with pytest.raises(SubmissionError):
        LocalBackend().check(exps)


def test_local_backend_unknown_job():
    backend = LocalBackend()
    assert backend.state("404") is JobState.FAILED
    assert not backend.cancel("404")


def test_detect_backend_local():
    assert isinstance(detect_backend("local"), LocalBackend)


def test_detect_backend_slurm_forced():
    backend = detect_backend("slurm", account="proj")
    assert isinstance(backend, SlurmBackend)
    assert isinstance(backend.communicator, LocalCommunicator)
    assert backend.builder.account == "proj"


def test_detect_backend_remote_target():
    backend = detect_backend("auto", target="cluster-login")
    assert isinstance(backend, SlurmBackend)
    assert backend.communicator.is_remote
    assert backend.communicator.target == "cluster-login"


def test_detect_backend_auto_without_sbatch(monkeypatch):
    monkeypatch.setattr(shutil, "which", lambda name: None)
    assert isinstance(detect_backend("auto"), LocalBackend)


def test_detect_backend_unsupported():
    with pytest.raises(ValueError):
        detect_backend("pbs")


def test_create_communicator():
    assert isinstance(create_communicator(), LocalCommunicator)
    assert isinstance(create_communicator(""), LocalCommunicator)
    assert create_communicator("login").is_remote


def test_local_communicator_execute():
    result = LocalCommunicator().execute_command("echo hello")
    assert result.success
    assert result.stdout == "hello"
    assert not LocalCommunicator().execute_command("exit 3").success


class FlakyCluster(FakeCommunicator):
    """
    Simulated Slurm cluster whose connection drops on every other poll.

    Each job stays on the cluster for a few successful polls. While the
    connection is down, squeue and sacct both fail.
    """

    def __init__(self, polls_per_job=3):
        super().__init__()
        self.polls_per_job = polls_per_job
        self.remaining = {}
        self.down = False
        self.max_in_flight = 0

    def in_flight(self):
        return sum(1 for polls in self.remaining.values() if polls > 0)

    def execute_command(self, command, working_dir=None):
        self.commands.append(command)
        words = command.split()
        if words[0] == "sbatch":
            job_id = str(len(self.remaining) + 1)
            self.remaining[job_id] = self.polls_per_job
            self.max_in_flight = max(self.max_in_flight, self.in_flight())
            return ok(job_id)
        if words[0] == "squeue":
            self.down = not self.down
            if self.down:
                return CommandResult(stdout="", stderr="Connection reset by peer", return_code=-1)
            job_id = words[3]
            self.remaining[job_id] -= 1
            return ok("RUNNING" if self.remaining[job_id] > 0 else "")
        if words[0] == "sacct":
            if self.down:
                return CommandResult(stdout="", stderr="Connection reset by peer", return_code=-1)
            return ok("COMPLETED" if self.remaining[words[2]] <= 0 else "")
        return ok()


def test_runner_keeps_bound_when_slurm_queries_fail(tmp_path):
    cluster = FlakyCluster()
    exps = build_experiments(
        {"osu": make_suite("osu", ["osu_allreduce", "osu_bcast", "osu_barrier"])},
        Topology(),
        run_dir=str(tmp_path),
    )
    runner = ExperimentRunner(
        SlurmBackend(cluster),
        RuntimeParams(max_running_jobs=1, progress_frequency=0, sleep_before_submitting_again=0),
    )
    try:
        runner.run(exps)
        runner.wait()
    finally:
        runner.fini()

    assert cluster.max_in_flight == 1
    assert cluster.in_flight() == 0
    assert runner.summary()["COMPLETED"] == 3
