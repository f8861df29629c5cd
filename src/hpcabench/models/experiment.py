#!/usr/bin/env python3
"""
Experiment module for the HPCA Benchmark Scheduler.

This module defines the schedulable units of a run:
- Topology: placement of an experiment (nodes, ranks per node, device, partition)
- ExperimentKind: closed set of experiment kinds and their topology policy
- ExperimentDescriptor: one experiment, self-contained
- ExperimentSet: the ordered plan handed to the runner
- RuntimeParams: knobs of the concurrency-bounded runner
- ExperimentStatus: per-experiment accounting kept by the runner
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Sequence

from hpcabench.errors import PreconditionError

DEFAULT_MAX_EXEC_TIME = "1:00:00"


@dataclass(frozen=True)
class Topology:
    """Placement of an experiment on the cluster."""

    num_nodes: int = 1
    ppn: int = 1  # MPI ranks per node
    device: str = ""
    partition: str = ""

    @property
    def num_ranks(self) -> int:
        return self.num_nodes * self.ppn


class TopologyPolicy(Enum):
    """How an experiment kind chooses its topology."""

    DEFAULT = "default"  # Use the run-wide topology
    POINT_TO_POINT = "point-to-point"  # 2 nodes, 1 rank per node


POINT_TO_POINT_NODES = 2
POINT_TO_POINT_PPN = 1


class ExperimentKind(Enum):
    """
    Known experiment kinds.

    The value of each member is the canonical experiment name used to
    recognize it. ``GENERIC`` covers every experiment that is not listed.
    """

    OSU_LATENCY = "osu_latency"
    OSU_NONCONTIG_MEM_LATENCY = "osu_noncontig_mem_latency"
    OSU_BW = "osu_bw"
    OSU_NONCONTIG_MEM_BW = "osu_noncontig_mem_bw"
    SMB_MPI_OVERHEAD = "smb_mpi_overhead"
    GENERIC = "generic"

    @property
    def policy(self) -> TopologyPolicy:
        if self is ExperimentKind.GENERIC:
            return TopologyPolicy.DEFAULT
        return TopologyPolicy.POINT_TO_POINT

    @property
    def is_latency(self) -> bool:
        return self in (ExperimentKind.OSU_LATENCY, ExperimentKind.OSU_NONCONTIG_MEM_LATENCY)

    @property
    def is_bandwidth(self) -> bool:
        return self in (ExperimentKind.OSU_BW, ExperimentKind.OSU_NONCONTIG_MEM_BW)


@dataclass(frozen=True)
class ExperimentDescriptor:
    """
    One schedulable experiment.

    ``platform`` is the topology override. It is only set for experiments
    whose kind requires a point-to-point placement; ``None`` means the
    run-wide topology of the ``ExperimentSet`` applies.
    """

    name: str  # "<suite>_<sub-benchmark>"
    suite: str
    sub_benchmark: str
    bin_path: str
    bin_name: str
    bin_args: Sequence[str] = ()
    kind: ExperimentKind = ExperimentKind.GENERIC
    platform: Optional[Topology] = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "bin_args", tuple(self.bin_args))

    def topology(self, default: Topology) -> Topology:
        """
        Get the topology this experiment runs with.

        Args:
            default: Run-wide topology

        Returns:
            The override when present, ``default`` otherwise
        """
        return self.platform if self.platform is not None else default

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "suite": self.suite,
            "sub_benchmark": self.sub_benchmark,
            "bin_path": self.bin_path,
            "bin_name": self.bin_name,
            "bin_args": list(self.bin_args),
            "kind": self.kind.value,
            "platform": None if self.platform is None else {
                "num_nodes": self.platform.num_nodes,
                "ppn": self.platform.ppn,
                "device": self.platform.device,
                "partition": self.platform.partition,
            },
        }


@dataclass
class ExperimentSet:
    """
    Ordered collection of experiments plus run-wide parameters.

    The set is append-only while it is built and becomes read-only once it
    is handed to a runner (see ``freeze``).
    """

    platform: Topology = field(default_factory=Topology)
    mpi_dir: str = ""
    run_dir: str = ""
    results_dir: str = ""
    max_exec_time: str = DEFAULT_MAX_EXEC_TIME
    experiments: List[ExperimentDescriptor] = field(default_factory=list)
    _frozen: bool = field(default=False, repr=False, compare=False)

    def append(self, experiment: ExperimentDescriptor) -> None:
        if self._frozen:
            raise RuntimeError("Experiment set already submitted; it can no longer be modified")
        self.experiments.append(experiment)

    def freeze(self) -> None:
        self._frozen = True

    @property
    def frozen(self) -> bool:
        return self._frozen

    def names(self) -> List[str]:
        return [e.name for e in self.experiments]

    def __iter__(self) -> Iterator[ExperimentDescriptor]:
        return iter(self.experiments)

    def __len__(self) -> int:
        return len(self.experiments)


@dataclass(frozen=True)
class RuntimeParams:
    """Parameters of the concurrency-bounded runner."""

    max_running_jobs: int = 5
    progress_frequency: float = 5.0  # Seconds between two progress polls
    sleep_before_submitting_again: float = 1.0  # Seconds between two submissions

    def __post_init__(self) -> None:
        if self.max_running_jobs <= 0:
            raise PreconditionError(
                f"the maximum number of active jobs must be greater than 0 ({self.max_running_jobs})"
            )
        if self.progress_frequency < 0:
            raise PreconditionError(f"invalid progress frequency ({self.progress_frequency})")
        if self.sleep_before_submitting_again < 0:
            raise PreconditionError(
                f"invalid delay between submissions ({self.sleep_before_submitting_again})"
            )


class ExperimentState(Enum):
    PENDING = "PENDING"
    RUNNING = "RUNNING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"

    @property
    def is_terminal(self) -> bool:
        return self in (ExperimentState.COMPLETED, ExperimentState.FAILED, ExperimentState.CANCELLED)


@dataclass
class ExperimentStatus:
    """Runner-side accounting for one experiment."""

    experiment: ExperimentDescriptor
    state: ExperimentState = ExperimentState.PENDING
    job_id: Optional[str] = None
    submit_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.experiment.name,
            "state": self.state.value,
            "job_id": self.job_id,
            "submit_time": self.submit_time.isoformat() if self.submit_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "error": self.error,
        }

    def __str__(self) -> str:
        job = f" (job {self.job_id})" if self.job_id else ""
        return f"{self.experiment.name}: {self.state.value}{job}"
