import logging
import pathlib

import pytest

from ykm.outcomes import Outcome, RunSummary, Status, report, summarize

PATH = pathlib.Path('/project/secrets/app.yaml')


def test_summarize_counts_each_status():
    outcomes = [
        Outcome.success(PATH),
        Outcome.success(PATH),
        Outcome.skipped(PATH, "unchanged"),
        Outcome.failed(PATH, "broken"),
    ]
    summary = summarize(outcomes)
    assert (summary.succeeded, summary.skipped, summary.failed) == (2, 1, 1)
    assert summary.total == len(outcomes)


@pytest.mark.parametrize('failed, dry_run, exit_code', [
    (0, False, 0),
    (1, False, 1),
    (3, False, 1),
    (0, True, 0),
    (2, True, 0),
])
def test_exit_code(failed, dry_run, exit_code):
    assert RunSummary(succeeded=1, failed=failed, dry_run=dry_run).exit_code == exit_code


def test_summaries_merge():
    merged = RunSummary(succeeded=1, skipped=2) + RunSummary(succeeded=3, failed=1)
    assert merged == RunSummary(succeeded=4, skipped=2, failed=1)
    assert merged.exit_code == 1


def test_report_logs_at_status_level(caplog):
    outcomes = [
        Outcome.success(PATH, "keys updated"),
        Outcome.skipped(PATH, "unchanged"),
        Outcome.failed(PATH, "sops exited with status 1"),
    ]
    with caplog.at_level(logging.INFO):
        report(outcomes, summarize(outcomes))

    levels = [(r.levelno, r.getMessage()) for r in caplog.records]
    assert levels == [
        (logging.INFO, f"[SUCCESS] {PATH}: keys updated"),
        (logging.WARNING, f"[SKIPPED] {PATH}: unchanged"),
        (logging.ERROR, f"[FAILED] {PATH}: sops exited with status 1"),
        (logging.ERROR, "1 succeeded, 1 skipped, 1 failed"),
    ]


def test_dry_run_summary_text():
    assert str(RunSummary(succeeded=2, dry_run=True)) == "Dry run: 2 succeeded, 0 skipped, 0 failed"
