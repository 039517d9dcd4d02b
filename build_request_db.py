"""
Request Log Database Builder

Loads parsed request-log units into a SQLite database whose tables are
derived from the log format description.

Input is a JSON-lines stream produced by the parser.  Each line is one of::

    {"type": "unit", "first_line_number": 10, "last_line_number": 12,
     "filename": "production.log", "watermark": {"line": 9, "pos": 812},
     "lines": [{"line_type": "processing", "lineno": 10, "controller": "Home"}, ...]}

    {"type": "warning", "kind": "unparseable_line", "message": "...", "line_number": 11}

Re-running against an existing database resumes: units whose last line is
at or before their file's stored watermark are skipped.

Usage:
    python build_request_db.py --format rails.json --input parsed.jsonl
    python build_request_db.py --format rails.json --input - --db requests.sqlite
    python build_request_db.py --format rails.json --input parsed.jsonl --rebuild
"""

import argparse
import contextlib
import json
import logging
import sys
from pathlib import Path

from logdb import (
    AggregatorConfig,
    DatabaseAggregator,
    FormatDescription,
    LogDBError,
    ParsedUnit,
)
from logdb.run_log import RunLogger, RunReport, append_to_ledger

logger = logging.getLogger("build_request_db")


def _open_input(path: str):
    if path == "-":
        return contextlib.nullcontext(sys.stdin)
    return open(path, "r", encoding="utf-8")


def _watermark(record: dict, unit: ParsedUnit) -> tuple:
    # Without an explicit watermark the unit's own last line is durable.
    mark = record.get("watermark") or {}
    if not isinstance(mark, dict):
        raise ValueError("'watermark' must be an object")
    return mark.get("line", unit.last_line_number), mark.get("pos")


def ingest_stream(agg: DatabaseAggregator, stream, report: RunReport) -> None:
    """Feed every record of a JSON-lines stream to the aggregator.

    Raises:
        LogDBError: On any fatal persistence error.
        ValueError: On a record that is not valid JSON, not an object, has an
            unknown type or a malformed unit.
    """
    resume_from = agg.existing_files()
    if resume_from:
        logger.info("Resuming: %d file(s) already have committed progress", len(resume_from))

    for input_lineno, raw in enumerate(stream, start=1):
        raw = raw.strip()
        if not raw:
            continue
        try:
            record = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Input line {input_lineno}: invalid JSON ({e})") from e

        if not isinstance(record, dict):
            raise ValueError(f"Input line {input_lineno}: record must be a JSON object")

        kind = record.get("type", "unit")
        if kind == "warning":
            agg.warning(record.get("kind", "warning"), record.get("message"),
                        record.get("line_number"))
            report.warnings_recorded += 1
        elif kind == "unit":
            try:
                unit = ParsedUnit.from_dict(record)
                line, pos = _watermark(record, unit)
            except ValueError as e:
                raise ValueError(f"Input line {input_lineno}: {e}") from e
            done = resume_from.get(unit.filename)
            if done is not None and unit.last_line_number <= done.line_number:
                report.add_skip("already_ingested")
                continue
            result = agg.aggregate(unit, line, pos)
            report.units_persisted += 1
            report.lines_persisted += result.line_count
            report.fields_dropped += sum(len(v) for v in result.dropped_fields.values())
        else:
            raise ValueError(f"Input line {input_lineno}: unknown record type {kind!r}")


def build_database(config: AggregatorConfig, format_path: Path, input_path: str,
                   report: RunReport) -> DatabaseAggregator:
    """Prepare the store, ingest the stream and finalize.

    On a fatal error the progress of committed units is saved, the
    connection is closed without a summary and the error propagates.
    """
    fmt = FormatDescription.load_json(format_path)
    agg = DatabaseAggregator(config, fmt)
    agg.prepare()
    try:
        with _open_input(input_path) as stream:
            ingest_stream(agg, stream, report)
    except BaseException:
        report.busy_retries = agg.retry_policy.retries
        agg.abort()
        raise
    report.request_count = agg.finalize()
    report.busy_retries = agg.retry_policy.retries
    return agg


def main(argv=None) -> int:
    """Parse command-line arguments and run the database build."""
    parser = argparse.ArgumentParser(description="Build a request log database")
    parser.add_argument("--db", type=Path, default=None,
                        help="Database path (default: requests.sqlite or $LOGDB_PATH)")
    parser.add_argument("--format", type=Path, required=True, dest="format_path",
                        help="JSON format description (line types and captures)")
    parser.add_argument("--input", default="-",
                        help="JSON-lines stream of parsed units and warnings (default: stdin)")
    parser.add_argument("--config", type=Path, default=None,
                        help="JSON config file (AggregatorConfig keys)")
    parser.add_argument("--rebuild", action="store_true",
                        help="Delete the existing database before loading")
    parser.add_argument("--debug", action="store_true",
                        help="Log schema creation statements and debug output")
    parser.add_argument("--flush-interval", type=int, default=None, metavar="N",
                        help="Write file progress every N requests (0 = only at the end)")
    parser.add_argument("--max-retries", type=int, default=None, metavar="N",
                        help="Attempts while the database is locked (0 = retry forever)")
    parser.add_argument("--log-dir", type=Path, default=None,
                        help="Write ingest.log, summary.json and ledger.jsonl under this dir")
    args = parser.parse_args(argv)

    config = (AggregatorConfig.load_json(args.config) if args.config
              else AggregatorConfig.from_env())
    if args.db is not None:
        config.db_path = args.db
    if args.rebuild:
        config.rebuild = True
    if args.debug:
        config.debug = True
    if args.flush_interval is not None:
        config.flush_interval = args.flush_interval
    if args.max_retries is not None:
        config.retry_max_attempts = args.max_retries or None

    logging.basicConfig(
        level=logging.DEBUG if config.debug else logging.INFO,
        format="%(asctime)s  %(levelname)-7s  %(name)s  %(message)s",
        datefmt="%H:%M:%S",
    )

    run_logger = None
    if args.log_dir is not None:
        run_logger = RunLogger(args.log_dir)
        run_logger.args_dict = {k: str(v) for k, v in vars(args).items()}
        report = run_logger.start()
    else:
        report = RunReport(status="started")

    exit_code = 0
    try:
        agg = build_database(config, args.format_path, args.input, report)
    except (LogDBError, ValueError, OSError) as e:
        exit_code = 1
        report.status = "failed"
        report.add_error(str(e))
        print(f"ERROR: {e}", file=sys.stderr)
    else:
        print()
        for line in agg.report_lines():
            print(line)
        print(f"\n  {report.console_summary()}")

    if run_logger is not None:
        run_logger.finish(report)
        append_to_ledger(run_logger, report, exit_code)
    return exit_code


if __name__ == "__main__":
    sys.exit(main())
