#!/usr/bin/env python3
"""
Benchmark module for the HPCA Benchmark Scheduler.

This module defines the data containers describing what is installed on the
system: a suite (``BenchmarkInstall``) and the runnable variants it ships
(``SubBenchmarkInfo``). Both are produced by discovery and never modified
by the scheduler.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Sequence


@dataclass(frozen=True)
class SubBenchmarkInfo:
    """
    One runnable variant within a benchmark suite.

    This is an immutable record produced by discovery. The scheduler copies
    its executable reference into each experiment built from it.
    """

    name: str  # Sub-benchmark name (e.g., "osu_latency")
    bin_path: str  # Full path to the executable
    bin_name: str  # Executable file name
    bin_args: Sequence[str] = ()  # Arguments passed to the executable

    def __post_init__(self) -> None:
        object.__setattr__(self, "bin_args", tuple(str(a) for a in self.bin_args))

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert the sub-benchmark to a dictionary.

        Returns:
            Dictionary representation of the sub-benchmark
        """
        return {
            "name": self.name,
            "bin_path": self.bin_path,
            "bin_name": self.bin_name,
            "bin_args": list(self.bin_args),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SubBenchmarkInfo":
        """
        Create a SubBenchmarkInfo instance from a dictionary.

        Args:
            data: Dictionary containing sub-benchmark data

        Returns:
            SubBenchmarkInfo instance
        """
        return cls(
            name=data["name"],
            bin_path=data.get("bin_path", ""),
            bin_name=data.get("bin_name", data["name"]),
            bin_args=data.get("bin_args") or (),
        )


@dataclass
class BenchmarkInstall:
    """Installation state of one benchmark suite."""

    name: str  # Suite name (e.g., "osu", "smb", "overlap")
    install_dir: str = ""
    sub_benchmarks: List[SubBenchmarkInfo] = field(default_factory=list)

    def names(self) -> List[str]:
        """Return the names of the installed sub-benchmarks, in order."""
        return [sub.name for sub in self.sub_benchmarks]

    def __len__(self) -> int:
        return len(self.sub_benchmarks)

    def __str__(self) -> str:
        return f"BenchmarkInstall({self.name}: {len(self.sub_benchmarks)} sub-benchmark(s))"


# Suite name -> installation state
Catalog = Dict[str, BenchmarkInstall]
