"""
Shared fixtures for the hpcabench tests.
"""

import os
import sys
import threading
import time
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from hpcabench.errors import SubmissionError
from hpcabench.infra.jobmgr import JobBackend, JobState
from hpcabench.infra.logs import setup_logging
from hpcabench.models.benchmark import BenchmarkInstall, SubBenchmarkInfo

OSU_LATENCY_OUTPUT = """# OSU MPI Latency Test v7.3
# Size          Latency (us)
1                       1.52
2                       1.50
4                       1.61
1024                    3.80
"""

OSU_BW_OUTPUT = """# OSU MPI Bandwidth Test v7.3
# Size      Bandwidth (MB/s)
1                       3.10
1024                 2950.00
1048576             11800.50
"""


def make_suite(name, sub_names):
    """Build an installed suite whose sub-benchmarks live in a fake bin directory."""
    return BenchmarkInstall(
        name=name,
        install_dir=f"/opt/{name}",
        sub_benchmarks=[
            SubBenchmarkInfo(name=s, bin_path=f"/opt/{name}/bin/{s}", bin_name=s) for s in sub_names
        ],
    )


def write_script(path: Path, body: str) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("#!/bin/sh\n" + body)
    os.chmod(path, 0o755)
    return path


@pytest.fixture
def catalog():
    return {
        "osu": make_suite("osu", ["osu_bw", "osu_latency", "osu_allreduce", "osu_ibcast"]),
        "smb": make_suite("smb", ["mpi_overhead", "msgrate"]),
    }


@pytest.fixture
def workspace_dir(tmp_path):
    """
    A base directory holding a valid hpcabench.yaml.

    The MPI installation is a fake mpirun that drops its placement options
    and runs the benchmark; the installed OSU suite prints canned outputs.
    """
    basedir = tmp_path / "base"
    mpi_dir = tmp_path / "mpi"
    ws_dir = basedir / "ws"

    write_script(mpi_dir / "bin" / "mpirun", 'shift 4\nexec "$@"\n')
    osu_dir = ws_dir / "install" / "osu" / "libexec"
    write_script(osu_dir / "pt2pt" / "osu_latency", f"cat <<'EOF'\n{OSU_LATENCY_OUTPUT}EOF\n")
    write_script(osu_dir / "pt2pt" / "osu_bw", f"cat <<'EOF'\n{OSU_BW_OUTPUT}EOF\n")
    write_script(osu_dir / "collective" / "osu_allreduce", "echo '# no data'\n")

    (basedir / "hpcabench.yaml").write_text(
        "workspace:\n"
        "  basedir: ws\n"
        f"  mpi_dir: {mpi_dir}\n"
        "job_manager: local\n"
    )
    return basedir


@pytest.fixture(autouse=True)
def reset_logging():
    """Drop the handlers a test may have installed on the package logger."""
    yield
    setup_logging(False)


class FakeBackend(JobBackend):
    """
    Job manager double.

    Jobs complete on their first poll unless ``auto_complete`` is False.
    ``interrupt_at`` makes the n-th call to ``submit`` raise
    ``KeyboardInterrupt``, as a Ctrl-C during submission would.
    """

    name = "fake"

    def __init__(self, fail_submit=(), fail_jobs=(), auto_complete=True, interrupt_at=None):
        self.fail_submit = set(fail_submit)
        self.fail_jobs = set(fail_jobs)
        self.auto_complete = auto_complete
        self.interrupt_at = interrupt_at
        self.lock = threading.Lock()
        self.states = {}
        self.names = {}
        self.submit_calls = 0
        self.submitted = []
        self.submit_times = []
        self.cancelled = []
        self.finalized = []
        self.max_in_flight = 0
        self.closed = 0
        self.check_error = None

    def check(self, exps):
        if self.check_error:
            raise SubmissionError(self.check_error)

    def submit(self, experiment, exps):
        self.submit_calls += 1
        self.submit_times.append(time.monotonic())
        if self.submit_calls == self.interrupt_at:
            raise KeyboardInterrupt
        if experiment.name in self.fail_submit:
            raise SubmissionError("rejected")
        with self.lock:
            job_id = str(len(self.submitted) + 1)
            self.submitted.append(experiment.name)
            self.names[job_id] = experiment.name
            self.states[job_id] = JobState.RUNNING
            in_flight = sum(1 for s in self.states.values() if not s.is_terminal)
            self.max_in_flight = max(self.max_in_flight, in_flight)
        return job_id

    def state(self, job_id):
        with self.lock:
            state = self.states[job_id]
            if state is JobState.RUNNING and self.auto_complete:
                failed = self.names[job_id] in self.fail_jobs
                state = JobState.FAILED if failed else JobState.COMPLETED
                self.states[job_id] = state
            return state

    def cancel(self, job_id):
        with self.lock:
            self.cancelled.append(job_id)
            self.states[job_id] = JobState.CANCELLED
        return True

    def finalize(self, experiment, exps, job_id):
        self.finalized.append(experiment.name)

    def close(self):
        self.closed += 1
