"""
Reporting and output generation for the benchmark scheduler.

Contains:
- results: parsing of experiment outputs into metrics
- reporter: text summary and results file
"""

from .reporter import RESULTS_FILE_NAME, RESULTS_FILE_PERMISSION, Reporter, format_results
from .results import ExperimentResult, collect_results, headline_metrics
