"""
Tests for logdb.run_log — RunReport, RunLogger and the ledger.
"""

import json
import logging

from logdb.run_log import RunLogger, RunReport, append_to_ledger


class TestRunReport:

    def test_skips(self):
        report = RunReport()
        report.add_skip("already_ingested")
        report.add_skip("already_ingested", 4)
        assert report.skips == {"already_ingested": 5}
        assert report.items_skipped == 5

    def test_console_summary(self):
        report = RunReport(units_persisted=1200, lines_persisted=3600, warnings_recorded=2)
        report.add_skip("already_ingested", 3)
        summary = report.console_summary()
        assert summary.startswith("1,200 requests | 3,600 lines")
        assert "2 warnings" in summary
        assert "3 skipped (3 already ingested)" in summary
        assert "errors" not in summary

    def test_to_dict_optional_keys(self):
        assert "skips" not in RunReport().to_dict()
        report = RunReport(request_count=4)
        report.add_error("boom")
        d = report.to_dict()
        assert d["request_count"] == 4
        assert d["errors"] == ["boom"]


class TestRunLogger:

    def test_start_and_finish(self, tmp_path):
        root_handlers = list(logging.getLogger().handlers)
        rl = RunLogger(tmp_path / "logs")
        report = rl.start()
        logging.getLogger("logdb.test").warning("hello from the run")
        report.units_persisted = 3

        summary_path = rl.finish(report)

        log_text = (rl.run_dir / "ingest.log").read_text()
        assert "hello from the run" in log_text
        assert "RUN SUMMARY: completed" in log_text
        summary = json.loads(summary_path.read_text())
        assert summary["run_id"] == rl.run_id
        assert summary["report"]["units_persisted"] == 3
        assert logging.getLogger().handlers == root_handlers

    def test_failed_status_kept(self, tmp_path):
        rl = RunLogger(tmp_path / "logs")
        report = rl.start()
        report.status = "failed"
        rl.finish(report)
        summary = json.loads(rl.summary_path.read_text())
        assert summary["report"]["status"] == "failed"


class TestLedger:

    def test_append_only(self, tmp_path):
        rl = RunLogger(tmp_path / "logs")
        report = RunReport(status="completed", units_persisted=2)

        path = append_to_ledger(rl, report, 0)
        append_to_ledger(rl, report, 1)

        lines = path.read_text().splitlines()
        assert path == tmp_path / "logs" / "ledger.jsonl"
        assert [json.loads(line)["exit_code"] for line in lines] == [0, 1]
        assert json.loads(lines[0])["units_persisted"] == 2
