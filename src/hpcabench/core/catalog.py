"""
Discovery of the installed benchmark suites.

A suite is installed when its directory exists below the install
directory; its sub-benchmarks are the executable files found in it.
"""

import logging
import os
from pathlib import Path
from typing import Dict, List, Mapping

from hpcabench.config import Config, SuiteConfig
from hpcabench.models.benchmark import BenchmarkInstall, Catalog, SubBenchmarkInfo

logger = logging.getLogger(__name__)


def _is_executable(path: Path) -> bool:
    return path.is_file() and os.access(path, os.X_OK)


def discover_suite(name: str, suite_dir: Path, args: Mapping[str, List[str]]) -> BenchmarkInstall:
    """
    List the sub-benchmarks of one installed suite.

    Executables are searched recursively and sorted by file name; when two
    files share a name, the first one in path order is kept.

    Args:
        name: Suite name
        suite_dir: Installation directory of the suite
        args: Sub-benchmark name -> arguments

    Returns:
        BenchmarkInstall for the suite
    """
    found: Dict[str, SubBenchmarkInfo] = {}
    for path in sorted(suite_dir.rglob("*")):
        if not _is_executable(path) or path.name in found:
            continue
        found[path.name] = SubBenchmarkInfo(
            name=path.name,
            bin_path=str(path),
            bin_name=path.name,
            bin_args=args.get(path.name, ()),
        )

    subs = [found[n] for n in sorted(found)]
    logger.debug("Suite %s: %d sub-benchmark(s) in %s", name, len(subs), suite_dir)
    return BenchmarkInstall(name=name, install_dir=str(suite_dir), sub_benchmarks=subs)


def detect_installed_benchmarks(install_dir: str, suites: Mapping[str, SuiteConfig]) -> Catalog:
    """
    Build the catalog of installed benchmarks.

    Args:
        install_dir: Directory below which suites are installed
        suites: Suite name -> suite configuration

    Returns:
        Catalog with one entry per installed suite
    """
    catalog: Catalog = {}
    for name, suite in suites.items():
        suite_dir = Path(suite.path)
        if not suite_dir.is_absolute():
            suite_dir = Path(install_dir) / suite_dir
        if not suite_dir.is_dir():
            logger.info("Suite %s is not installed (%s)", name, suite_dir)
            continue
        catalog[name] = discover_suite(name, suite_dir, suite.args)
    return catalog


def detect_from_config(config: Config) -> Catalog:
    """Build the catalog for the workspace of a configuration."""
    workspace = config.validate()
    return detect_installed_benchmarks(workspace.install_dir, config.suites)
