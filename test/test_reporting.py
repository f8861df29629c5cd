"""
Tests for result parsing and the results file.
"""

import os
import stat
import sys
from pathlib import Path

import pytest

# Add src to path
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

from conftest import OSU_BW_OUTPUT, OSU_LATENCY_OUTPUT
from hpcabench.errors import ReportError
from hpcabench.models.experiment import ExperimentKind
from hpcabench.reporting.reporter import RESULTS_FILE_NAME, Reporter, format_results
from hpcabench.reporting.results import (
    collect_results,
    experiment_kind,
    extract_result,
    find_output_files,
    headline_metrics,
    is_overlap_experiment,
    load_rows,
)

OVERLAP_OUTPUT = """# overlap test
# size  time  overlap(%)
8       1.0   40.0
16      1.1   60.0
"""


def test_load_rows_skips_text():
    rows = load_rows("Experiment: x\n# Size Latency\n1 1.5\n2 1.7\nDone\n")
    assert rows.shape == (2, 2)
    assert rows[1, 1] == pytest.approx(1.7)


def test_load_rows_keeps_first_width():
    rows = load_rows("1 2 3\n4 5\n6 7 8\n")
    assert rows.tolist() == [[1, 2, 3], [6, 7, 8]]


def test_load_rows_empty():
    assert len(load_rows("no numbers here\n")) == 0


def test_experiment_kind():
    assert experiment_kind("osu_osu_latency") is ExperimentKind.OSU_LATENCY
    assert experiment_kind("smb_mpi_overhead") is ExperimentKind.SMB_MPI_OVERHEAD
    assert experiment_kind("osu_osu_ibcast") is ExperimentKind.GENERIC


def test_extract_latency():
    result = extract_result("osu_osu_latency", load_rows(OSU_LATENCY_OUTPUT))
    assert result.metric == "latency"
    assert result.value == pytest.approx(1.52)
    assert str(result) == "osu_osu_latency: latency 1.52 us"


def test_extract_bandwidth():
    result = extract_result("osu_osu_bw", load_rows(OSU_BW_OUTPUT))
    assert result.metric == "peak bandwidth"
    assert result.value == pytest.approx(11800.5)
    assert result.unit == "MB/s"


def test_extract_overlap():
    result = extract_result("overlap_overlap_ibcast", load_rows(OVERLAP_OUTPUT))
    assert result.metric == "overlap"
    assert result.value == pytest.approx(50.0)


def test_extract_generic_counts_rows():
    result = extract_result("osu_osu_allreduce", load_rows("1 2.0\n2 2.5\n4 3.0\n"))
    assert str(result) == "osu_osu_allreduce: 3 data points"


def test_extract_no_data():
    result = extract_result("osu_osu_latency", load_rows("# nothing\n"))
    assert not result.has_data
    assert str(result) == "osu_osu_latency: no data"


def test_find_output_files_newest_wins(tmp_path):
    old = tmp_path / "osu_osu_bw-1.out"
    new = tmp_path / "osu_osu_bw-2.out"
    old.write_text("old")
    new.write_text("new")
    os.utime(old, (1000, 1000))
    (tmp_path / "osu_osu_bw-1.err").write_text("")

    assert find_output_files(tmp_path) == {"osu_osu_bw": new}


def test_collect_results_missing_run_dir(tmp_path):
    with pytest.raises(ReportError):
        collect_results(str(tmp_path / "missing"))


def test_headline_metrics():
    results = [
        extract_result("osu_osu_latency", load_rows(OSU_LATENCY_OUTPUT)),
        extract_result("osu_osu_bw", load_rows(OSU_BW_OUTPUT)),
        extract_result("overlap_overlap_ibcast", load_rows(OVERLAP_OUTPUT)),
    ]
    metrics = headline_metrics(results)

    assert metrics == {
        "Point-to-point latency": "1.52 us",
        "Point-to-point bandwidth": "11800.50 MB/s",
        "Overlap": "50.00 %",
    }


def test_format_results_empty():
    assert format_results([]) == "Experiments:\n  none\nMetrics:\n  no data\n"


def test_reporter_persists_displayed_text(tmp_path):
    basedir = tmp_path / "base"
    run_dir = basedir / "ws" / "run"
    run_dir.mkdir(parents=True)
    (run_dir / "osu_osu_latency-12.out").write_text(OSU_LATENCY_OUTPUT)

    reporter = Reporter(str(basedir))
    text = reporter.render_and_persist(str(run_dir))

    results_file = tmp_path / RESULTS_FILE_NAME
    assert reporter.results_file == results_file
    assert results_file.read_text() == text
    assert stat.S_IMODE(results_file.stat().st_mode) == 0o644
    assert "osu_osu_latency: latency 1.52 us" in text


def test_reporter_write_failure(tmp_path):
    reporter = Reporter(str(tmp_path / "missing" / "base"))
    with pytest.raises(ReportError):
        reporter.persist("results")


def test_overlap_experiments():
    assert is_overlap_experiment("osu_osu_ibcast")
    assert is_overlap_experiment("osu_ireduce_scatter")
    assert is_overlap_experiment("overlap_overlap_ialltoall")
    assert not is_overlap_experiment("osu_osu_init")
    assert not is_overlap_experiment("osu_osu_allreduce")


def test_non_collective_osu_i_program_counts_rows():
    result = extract_result("osu_osu_init", load_rows("1 0.5 10.0\n2 0.6 20.0\n"))
    assert result.metric == "data points"
    assert str(result) == "osu_osu_init: 2 data points"
