"""
Infrastructure for the benchmark scheduler.

Contains:
- communicator: local and SSH command execution
- jobmgr: job manager backends (local mpirun, Slurm)
- logs: logging setup
"""

from .communicator import (
    CommandResult,
    Communicator,
    LocalCommunicator,
    SSHCommunicator,
    create_communicator,
)
from .jobmgr import JobBackend, JobState, LocalBackend, SlurmBackend, detect_backend
from .logs import setup_logging
