#!/usr/bin/env python3
"""
Configuration module for the HPCA Benchmark Scheduler.

Loads ``hpcabench.yaml`` from the base directory and produces a structured
Python object describing the workspace, the job manager to use and the
benchmark suites to look for.

The base directory defaults to the current working directory and can be
overridden with the ``HPCABENCH_BASEDIR`` environment variable.
"""

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from hpcabench.errors import ConfigurationError, PreconditionError
from hpcabench.models.experiment import DEFAULT_MAX_EXEC_TIME

CONFIG_FILE_NAME = "hpcabench.yaml"
BASEDIR_ENV = "HPCABENCH_BASEDIR"
RUN_DIR_NAME = "run"

DEFAULT_SUITES = ("osu", "smb", "overlap")


def default_basedir() -> str:
    return os.environ.get(BASEDIR_ENV) or os.getcwd()


def _resolve(path: str, basedir: str) -> str:
    if not path:
        return ""
    p = Path(os.path.expanduser(str(path)))
    if not p.is_absolute():
        p = Path(basedir) / p
    return str(p)


@dataclass
class Workspace:
    """Workspace section of the configuration."""
    basedir: str  # Workspace root, the run directory lives below it
    mpi_dir: str = ""  # MPI installation used to run the benchmarks
    install_dir: str = ""  # Where benchmark suites are installed

    @property
    def run_dir(self) -> str:
        return str(Path(self.basedir) / RUN_DIR_NAME)


@dataclass
class SuiteConfig:
    """Where a suite is installed, relative to the install directory, and its arguments."""
    path: str
    args: Dict[str, List[str]] = field(default_factory=dict)


@dataclass
class Config:
    """
    Main configuration object.

    This object represents the parsed hpcabench.yaml file.
    """
    basedir: str  # Directory holding hpcabench.yaml
    workspace: Optional[Workspace] = None
    job_manager: str = "auto"  # "auto", "local" or "slurm"
    target: str = ""  # SSH alias of a remote cluster login node
    account: str = ""  # Slurm account (optional)
    max_exec_time: str = DEFAULT_MAX_EXEC_TIME
    suites: Dict[str, SuiteConfig] = field(
        default_factory=lambda: {name: SuiteConfig(path=name) for name in DEFAULT_SUITES}
    )
    required_benchmarks: Optional[Dict[str, List[str]]] = None  # None: built-in lists
    raw_data: Dict[str, Any] = field(default_factory=dict)  # Original parsed YAML data

    @classmethod
    def from_yaml(cls, yaml_data: Dict[str, Any], basedir: str) -> "Config":
        """
        Create a Config object from parsed YAML data.

        Args:
            yaml_data: Dictionary containing the parsed YAML content
            basedir: Directory relative paths are resolved against

        Returns:
            Config object with all configuration loaded

        Raises:
            ConfigurationError: If a section has the wrong shape
        """
        if not isinstance(yaml_data, dict):
            raise ConfigurationError("the configuration must be a YAML mapping")

        config = cls(basedir=basedir, raw_data=yaml_data)

        # Parse workspace section
        ws_data = yaml_data.get("workspace")
        if ws_data is not None:
            if not isinstance(ws_data, dict) or not ws_data.get("basedir"):
                raise ConfigurationError("'workspace' must define 'basedir'")
            ws_basedir = _resolve(ws_data["basedir"], basedir)
            config.workspace = Workspace(
                basedir=ws_basedir,
                mpi_dir=_resolve(ws_data.get("mpi_dir", ""), basedir),
                install_dir=_resolve(ws_data.get("install_dir", ""), basedir)
                or str(Path(ws_basedir) / "install"),
            )

        config.job_manager = str(yaml_data.get("job_manager") or "auto")
        if config.job_manager not in ("auto", "local", "slurm"):
            raise ConfigurationError(f"unsupported job manager '{config.job_manager}'")
        config.target = str(yaml_data.get("target") or "")
        config.account = str(yaml_data.get("account") or "")
        config.max_exec_time = str(yaml_data.get("max_exec_time") or DEFAULT_MAX_EXEC_TIME)

        # Parse suites section, merged with the default suites
        suites_data = yaml_data.get("suites") or {}
        if not isinstance(suites_data, dict):
            raise ConfigurationError("'suites' must be a mapping")
        for name, suite_data in suites_data.items():
            suite_data = suite_data or {}
            args = suite_data.get("args") or {}
            if not isinstance(args, dict):
                raise ConfigurationError(f"'suites.{name}.args' must be a mapping")
            config.suites[name] = SuiteConfig(
                path=str(suite_data.get("path") or name),
                args={sub: [str(a) for a in (values or [])] for sub, values in args.items()},
            )

        required = yaml_data.get("required_benchmarks")
        if required is not None:
            if not isinstance(required, dict):
                raise ConfigurationError("'required_benchmarks' must be a mapping")
            config.required_benchmarks = {
                suite: [str(n) for n in (names or [])] for suite, names in required.items()
            }

        return config

    @classmethod
    def load(cls, basedir: Optional[str] = None) -> "Config":
        """
        Load the configuration file of a base directory.

        Args:
            basedir: Directory holding hpcabench.yaml (default: see ``default_basedir``)

        Returns:
            Config object

        Raises:
            ConfigurationError: If the file is missing or invalid
        """
        basedir = basedir or default_basedir()
        config_path = Path(basedir) / CONFIG_FILE_NAME
        try:
            with open(config_path) as f:
                yaml_data = yaml.safe_load(f) or {}
        except FileNotFoundError as e:
            raise ConfigurationError(f"{config_path} not found") from e
        except (OSError, yaml.YAMLError) as e:
            raise ConfigurationError(f"unable to read {config_path}: {e}") from e
        return cls.from_yaml(yaml_data, basedir)

    def validate(self) -> Workspace:
        """
        Check the workspace before anything is built.

        Returns:
            The workspace

        Raises:
            PreconditionError: If the workspace or the MPI installation is missing
        """
        if self.workspace is None:
            raise PreconditionError("undefined workspace")
        if not self.workspace.mpi_dir or not Path(self.workspace.mpi_dir).exists():
            raise PreconditionError(
                f"MPI installation directory '{self.workspace.mpi_dir}' is not valid"
            )
        return self.workspace
