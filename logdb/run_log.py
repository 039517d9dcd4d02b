"""
Run logging — per-run log file, structured run report and the run ledger.

Provides:
  - RunReport: what one ingestion run persisted, skipped and failed on.
  - RunLogger: manages a ``logs/ingest/<run_id>/`` directory with an
    ``ingest.log`` file attached to the root logger and a ``summary.json``.
  - append_to_ledger(): one JSON line per run in ``logs/ingest/ledger.jsonl``.

Usage inside build_request_db.py::

    rl = RunLogger("logs/ingest")
    report = rl.start()                   # attaches ingest.log
    ...                                   # modules log normally
    rl.finish(report)                     # detaches handler, writes summary
    append_to_ledger(rl, report, exit_code)

Skip categories (for RunReport.add_skip):
    already_ingested   — unit lies at or before its file's stored watermark
"""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any


@dataclass
class RunReport:
    """Structured summary of one ingestion run."""

    status: str = "not_started"        # started | completed | failed
    elapsed_seconds: float = 0.0
    units_persisted: int = 0
    lines_persisted: int = 0
    warnings_recorded: int = 0
    fields_dropped: int = 0
    busy_retries: int = 0
    request_count: int | None = None   # total rows in requests after finalize
    skips: dict[str, int] = field(default_factory=dict)
    errors: list[str] = field(default_factory=list)

    def add_skip(self, category: str, count: int = 1) -> None:
        self.skips[category] = self.skips.get(category, 0) + count

    def add_error(self, message: str) -> None:
        self.errors.append(message)

    @property
    def items_skipped(self) -> int:
        return sum(self.skips.values())

    def console_summary(self) -> str:
        """One-line summary suitable for the terminal."""
        parts: list[str] = [f"{self.units_persisted:,} requests"]
        parts.append(f"{self.lines_persisted:,} lines")
        if self.warnings_recorded:
            parts.append(f"{self.warnings_recorded:,} warnings")
        if self.items_skipped:
            skip_parts = [f"{v} {k.replace('_', ' ')}" for k, v in sorted(self.skips.items())]
            parts.append(f"{self.items_skipped:,} skipped ({', '.join(skip_parts)})")
        if self.fields_dropped:
            parts.append(f"{self.fields_dropped:,} unknown fields dropped")
        if self.busy_retries:
            parts.append(f"{self.busy_retries} busy retries")
        if self.errors:
            parts.append(f"{len(self.errors)} errors")
        return " | ".join(parts)

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {
            "status": self.status,
            "elapsed_seconds": round(self.elapsed_seconds, 2),
            "units_persisted": self.units_persisted,
            "lines_persisted": self.lines_persisted,
            "warnings_recorded": self.warnings_recorded,
            "fields_dropped": self.fields_dropped,
            "busy_retries": self.busy_retries,
        }
        if self.request_count is not None:
            d["request_count"] = self.request_count
        if self.skips:
            d["skips"] = dict(self.skips)
        if self.errors:
            d["errors"] = self.errors
        return d


class RunLogger:
    """Manages the per-run log directory::

        logs/ingest/2026-10-19T14-30-00/
            ingest.log
            summary.json
    """

    def __init__(self, logs_dir: Path | str = "logs/ingest") -> None:
        self.logs_root = Path(logs_dir)
        self.run_id = datetime.now(timezone.utc).strftime("%Y-%m-%dT%H-%M-%S")
        self.run_dir = self.logs_root / self.run_id
        self.run_dir.mkdir(parents=True, exist_ok=True)
        self.args_dict: dict[str, Any] = {}
        self._handler: logging.FileHandler | None = None
        self._start = time.monotonic()

    def start(self, level: int = logging.DEBUG) -> RunReport:
        """Open ``ingest.log`` and attach it to the root logger."""
        handler = logging.FileHandler(self.run_dir / "ingest.log", encoding="utf-8")
        handler.setLevel(level)
        handler.setFormatter(logging.Formatter(
            "%(asctime)s  %(levelname)-7s  %(name)s  %(message)s",
            datefmt="%H:%M:%S",
        ))
        logging.getLogger().addHandler(handler)
        self._handler = handler
        self._start = time.monotonic()
        return RunReport(status="started")

    def finish(self, report: RunReport) -> Path:
        """Detach the log handler and write ``summary.json``."""
        report.elapsed_seconds = time.monotonic() - self._start
        if report.status == "started":
            report.status = "completed"

        if self._handler is not None:
            self._handler.stream.write(f"\n{'=' * 60}\n")
            self._handler.stream.write(f"RUN SUMMARY: {report.status}\n")
            self._handler.stream.write(f"  {report.console_summary()}\n")
            for err in report.errors[:20]:
                self._handler.stream.write(f"    - {err}\n")
            self._handler.stream.write(f"{'=' * 60}\n")
            self._handler.close()
            logging.getLogger().removeHandler(self._handler)
            self._handler = None

        summary = {
            "run_id": self.run_id,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "args": self.args_dict,
            "report": report.to_dict(),
        }
        with open(self.summary_path, "w") as f:
            json.dump(summary, f, indent=2, default=str)
        return self.summary_path

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.json"


def append_to_ledger(rl: RunLogger, report: RunReport, exit_code: int,
                     ledger_path: Path | None = None) -> Path:
    """Append a one-line JSON record summarising this run to the ledger.

    The ledger is append-only and never truncated.

    Returns:
        The path to the ledger file.
    """
    if ledger_path is None:
        ledger_path = rl.logs_root / "ledger.jsonl"

    record = {
        "run_id": rl.run_id,
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "exit_code": exit_code,
        "args": rl.args_dict,
        **report.to_dict(),
    }
    ledger_path.parent.mkdir(parents=True, exist_ok=True)
    with open(ledger_path, "a") as f:
        f.write(json.dumps(record, separators=(",", ":"), default=str) + "\n")
    return ledger_path
