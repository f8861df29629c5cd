#!/usr/bin/env python3
"""
Communicator module for the HPCA Benchmark Scheduler.

Job managers run Slurm commands and move scripts and outputs through a
communicator: subprocess on the local host (the usual case on a cluster
login node), or Fabric when the login node is reached over SSH.
"""

import logging
import shutil
import subprocess
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

from fabric import Connection
from invoke.exceptions import UnexpectedExit
from paramiko.ssh_exception import SSHException

logger = logging.getLogger(__name__)


@dataclass
class CommandResult:
    """Output and exit status of a command run through a communicator."""
    stdout: str
    stderr: str
    return_code: int  # -1 when the command could not be started or its transport failed

    @property
    def success(self) -> bool:
        return self.return_code == 0

    @classmethod
    def not_run(cls, reason: str) -> "CommandResult":
        return cls(stdout="", stderr=reason, return_code=-1)


class Communicator(ABC):
    """Where Slurm commands run and how files reach that place."""

    is_remote = False

    def __init__(self, target: str = "localhost"):
        self.target = target

    @abstractmethod
    def connect(self) -> bool:
        """Return False when the target cannot be reached."""

    @abstractmethod
    def disconnect(self) -> None:
        """Release the connection, if any."""

    @abstractmethod
    def execute_command(self, command: str, working_dir: Optional[str] = None) -> CommandResult:
        """
        Run a shell command on the target.

        Failures to run the command at all are reported as a ``CommandResult``
        with return code -1, never raised.
        """

    @abstractmethod
    def upload_file(self, local_path: Path, remote_path: str) -> bool:
        """Copy a local file to ``remote_path`` on the target; False on failure."""

    @abstractmethod
    def download_file(self, remote_path: str, local_path: Path) -> bool:
        """Copy ``remote_path`` from the target to ``local_path``; False on failure."""

    def __enter__(self) -> "Communicator":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.disconnect()


class LocalCommunicator(Communicator):
    """Runs commands on the current host with subprocess."""

    def __init__(self, command_timeout: Optional[int] = 300):
        super().__init__("localhost")
        self.command_timeout = command_timeout

    def connect(self) -> bool:
        return True

    def disconnect(self) -> None:
        pass

    def execute_command(
        self,
        command: str,
        working_dir: Optional[str] = None,
        timeout: Optional[int] = None,
    ) -> CommandResult:
        try:
            proc = subprocess.run(
                command,
                shell=True,
                cwd=working_dir,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                timeout=timeout or self.command_timeout,
            )
        except (OSError, subprocess.TimeoutExpired) as e:
            return CommandResult.not_run(str(e))
        return CommandResult(
            stdout=proc.stdout.decode("utf-8", errors="replace").strip(),
            stderr=proc.stderr.decode("utf-8", errors="replace").strip(),
            return_code=proc.returncode,
        )

    def _copy(self, src: Path, dst: Path) -> bool:
        if src.resolve() == dst.resolve():
            return True
        try:
            dst.parent.mkdir(parents=True, exist_ok=True)
            shutil.copyfile(src, dst)
            return True
        except OSError as e:
            logger.warning("Copy of %s to %s failed: %s", src, dst, e)
            return False

    def upload_file(self, local_path: Path, remote_path: str) -> bool:
        if not local_path.exists():
            return False
        return self._copy(local_path, Path(remote_path))

    def download_file(self, remote_path: str, local_path: Path) -> bool:
        if not Path(remote_path).exists():
            return False
        return self._copy(Path(remote_path), local_path)


class SSHCommunicator(Communicator):
    """
    Drives a cluster login node over SSH with Fabric.

    ``target`` may be an alias from ``~/.ssh/config``; user and port only
    need to be given when the SSH configuration does not provide them.
    The connection is opened lazily and reopened if it dropped.
    """

    is_remote = True

    def __init__(
        self,
        target: str,
        user: Optional[str] = None,
        port: Optional[int] = None,
        connect_timeout: int = 30,
        command_timeout: int = 300
    ):
        super().__init__(target)
        self.user = user
        self.port = port
        self.connect_timeout = connect_timeout
        self.command_timeout = command_timeout
        self._connection: Optional[Connection] = None

    def _open(self) -> Connection:
        return Connection(
            host=self.target,
            user=self.user,
            port=self.port,
            connect_timeout=self.connect_timeout
        )

    @property
    def connection(self) -> Connection:
        if self._connection is None or not self._connection.is_connected:
            self._connection = self._open()
        return self._connection

    def connect(self) -> bool:
        try:
            self._connection = self._open()
            self._connection.open()
        except (SSHException, OSError) as e:
            logger.warning("Connection to %s failed: %s", self.target, e)
            self._connection = None
            return False
        return True

    def disconnect(self) -> None:
        if self._connection is not None:
            self._connection.close()
            self._connection = None

    @staticmethod
    def _to_result(run_result) -> CommandResult:
        return CommandResult(
            stdout=(run_result.stdout or "").strip(),
            stderr=(run_result.stderr or "").strip(),
            return_code=run_result.return_code,
        )

    def execute_command(
        self,
        command: str,
        working_dir: Optional[str] = None,
        timeout: Optional[int] = None
    ) -> CommandResult:
        if working_dir:
            command = f"cd {working_dir} && {command}"

        # warn=True: a non-zero exit is a result, not an exception
        try:
            run_result = self.connection.run(
                command, hide=True, warn=True, timeout=timeout or self.command_timeout,
            )
        except UnexpectedExit as e:
            return self._to_result(e.result)
        except (SSHException, OSError) as e:
            logger.warning("Command on %s failed: %s", self.target, e)
            return CommandResult.not_run(str(e))
        return self._to_result(run_result)

    def upload_file(self, local_path: Path, remote_path: str) -> bool:
        if not local_path.exists():
            return False
        try:
            self.connection.put(str(local_path), remote=remote_path)
        except (SSHException, OSError) as e:
            logger.warning("Upload of %s to %s failed: %s", local_path, self.target, e)
            return False
        return True

    def download_file(self, remote_path: str, local_path: Path) -> bool:
        local_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self.connection.get(remote_path, local=str(local_path))
        except (SSHException, OSError) as e:
            logger.warning("Download of %s from %s failed: %s", remote_path, self.target, e)
            return False
        return True


def create_communicator(target: Optional[str] = None, **kwargs) -> Communicator:
    """
    Factory function to create a communicator instance.

    Args:
        target: SSH alias or hostname; empty or None to run commands locally
        **kwargs: Additional arguments passed to the communicator constructor

    Returns:
        Communicator instance
    """
    if target:
        return SSHCommunicator(target, **kwargs)
    return LocalCommunicator(**kwargs)
