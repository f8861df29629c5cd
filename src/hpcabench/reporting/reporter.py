"""
Report generator module for the HPCA Benchmark Scheduler.

This module turns the outputs of a run into a human-readable summary and
keeps a copy of it in a results file next to the base directory.
"""

import logging
import os
from pathlib import Path
from typing import List

from hpcabench.errors import ReportError
from hpcabench.reporting.results import ExperimentResult, collect_results, headline_metrics

logger = logging.getLogger(__name__)

RESULTS_FILE_NAME = "hpcabench_results.txt"
RESULTS_FILE_PERMISSION = 0o644


def format_results(results: List[ExperimentResult]) -> str:
    """
    Format parsed results as a text summary.

    Args:
        results: Results returned by ``collect_results``

    Returns:
        Summary text, one line per experiment followed by the final metrics
    """
    lines = ["Experiments:"]
    if results:
        lines.extend(f"  {result}" for result in results)
    else:
        lines.append("  none")

    metrics = headline_metrics(results)
    lines.append("Metrics:")
    if metrics:
        width = max(len(label) for label in metrics)
        lines.extend(f"  {label:<{width}} : {value}" for label, value in metrics.items())
    else:
        lines.append("  no data")

    return "\n".join(lines) + "\n"


class Reporter:
    """Renders the results of a run and persists them."""

    def __init__(self, basedir: str):
        """
        Initialize the reporter.

        Args:
            basedir: Base directory; the results file is written in its parent
        """
        self.basedir = basedir

    @property
    def results_file(self) -> Path:
        return Path(os.path.normpath(os.path.join(self.basedir, "..", RESULTS_FILE_NAME)))

    def render(self, run_dir: str) -> str:
        return format_results(collect_results(run_dir))

    def persist(self, text: str) -> Path:
        path = self.results_file
        try:
            path.write_text(text)
            os.chmod(path, RESULTS_FILE_PERMISSION)
        except OSError as e:
            raise ReportError(f"unable to write {path}: {e}") from e
        logger.info("Results saved to %s", path)
        return path

    def render_and_persist(self, run_dir: str) -> str:
        """
        Render the summary of a run directory and save it.

        Args:
            run_dir: Run directory holding the experiment outputs

        Returns:
            The summary, identical to the content of the results file

        Raises:
            ReportError: If results cannot be read or the file cannot be written
        """
        text = self.render(run_dir)
        self.persist(text)
        return text
