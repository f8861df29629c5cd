"""
Classification of experiments.

Point-to-point latency and bandwidth tests only measure something
meaningful with two ranks on two distinct nodes, whatever the run-wide
topology is.
"""

from typing import Dict

from hpcabench.models.experiment import ExperimentKind, TopologyPolicy

_KINDS_BY_NAME: Dict[str, ExperimentKind] = {
    kind.value: kind for kind in ExperimentKind if kind is not ExperimentKind.GENERIC
}


def kind_from_name(name: str) -> ExperimentKind:
    """Return the kind of a canonical experiment name, ``GENERIC`` if unknown."""
    return _KINDS_BY_NAME.get(name, ExperimentKind.GENERIC)


def is_strictly_point_to_point(name: str) -> bool:
    """
    Tell whether an experiment name designates a point-to-point test.

    Matching is exact and case-sensitive; unknown names are simply not
    point-to-point.
    """
    return kind_from_name(name).policy is TopologyPolicy.POINT_TO_POINT


def classify_experiment(suite: str, sub_benchmark: str) -> ExperimentKind:
    """
    Resolve the kind of the experiment running ``sub_benchmark`` from ``suite``.

    Sub-benchmarks may be installed either under their canonical name
    (``osu_latency``) or under a suite-relative one (``latency``), so both
    the bare name and ``<suite>_<name>`` are looked up.

    Args:
        suite: Suite name
        sub_benchmark: Sub-benchmark name

    Returns:
        The experiment kind
    """
    kind = kind_from_name(sub_benchmark)
    if kind is ExperimentKind.GENERIC:
        kind = kind_from_name(f"{suite}_{sub_benchmark}")
    return kind
