"""
Selection of the benchmarks to run.

In short mode only the sub-benchmarks needed to compute the final metrics
are kept; in long mode the whole installed catalog is used.
"""

import logging
from typing import Dict, Mapping, Optional, Sequence

from hpcabench.models.benchmark import BenchmarkInstall, Catalog, SubBenchmarkInfo

logger = logging.getLogger(__name__)

# Suite name -> ordered list of the sub-benchmarks required for the final metrics
RequiredLists = Mapping[str, Sequence[str]]

OSU_REQUIRED_BENCHMARKS = [
    "osu_latency",
    "osu_noncontig_mem_latency",
    "osu_bw",
    "osu_noncontig_mem_bw",
    "osu_iallgather",
    "osu_ialltoall",
    "osu_ibcast",
    "osu_ireduce",
]

SMB_REQUIRED_BENCHMARKS = [
    "mpi_overhead",
]

OVERLAP_REQUIRED_BENCHMARKS = [
    "overlap_iallgather",
    "overlap_iallgatherv",
    "overlap_ialltoall",
    "overlap_ialltoallv",
    "overlap_ibcast",
    "overlap_igather",
    "overlap_igatherv",
    "overlap_ireduce",
    "overlap_iscatter",
    "overlap_iscatterv",
]

DEFAULT_REQUIRED_BENCHMARKS: Dict[str, Sequence[str]] = {
    "osu": OSU_REQUIRED_BENCHMARKS,
    "smb": SMB_REQUIRED_BENCHMARKS,
    "overlap": OVERLAP_REQUIRED_BENCHMARKS,
}


def _pick_required(installed: Sequence[SubBenchmarkInfo], required: Sequence[str]) -> list:
    picked = []
    seen = set()
    for name in required:
        if name in seen:
            continue
        for sub in installed:
            if sub.name == name:
                picked.append(sub)
                seen.add(name)
                break
        else:
            logger.debug("Required benchmark %s is not installed, skipping", name)
    return picked


def filter_required(catalog: Catalog, required_lists: RequiredLists) -> Catalog:
    """
    Reduce a catalog to the required sub-benchmarks.

    The output contains one entry per suite of ``required_lists``, with the
    installed sub-benchmarks listed in required-list order. A suite that is
    not installed gets an empty list, and required names without an
    installed match are skipped.

    Args:
        catalog: Installed benchmarks, keyed by suite name
        required_lists: Suite name -> ordered names of required sub-benchmarks

    Returns:
        A new catalog; ``catalog`` is left untouched
    """
    filtered: Catalog = {}
    for suite, required in required_lists.items():
        install = catalog.get(suite)
        installed = install.sub_benchmarks if install is not None else []
        filtered[suite] = BenchmarkInstall(
            name=suite,
            install_dir=install.install_dir if install is not None else "",
            sub_benchmarks=_pick_required(installed, required),
        )
    return filtered


def select_benchmarks(
    catalog: Catalog,
    long_run: bool,
    required_lists: Optional[RequiredLists] = None,
) -> Catalog:
    """
    Choose what to run depending on the execution mode.

    Args:
        catalog: Installed benchmarks
        long_run: Run everything that is installed instead of the required subset
        required_lists: Override of ``DEFAULT_REQUIRED_BENCHMARKS``

    Returns:
        The catalog of benchmarks to run
    """
    if long_run:
        return catalog
    if required_lists is None:
        required_lists = DEFAULT_REQUIRED_BENCHMARKS
    return filter_required(catalog, required_lists)
