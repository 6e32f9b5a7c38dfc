#!/usr/bin/env python3
"""
ClinicalDx CLI — Pure Python entry point.

Usage:
    python -m clinicaldx evaluate <record.json> [more.json ...] [--rules PATH ...]
    python -m clinicaldx validate [PATH ...] [--fixtures DIR]
    python -m clinicaldx fields
    python -m clinicaldx help

Global option (any position): --log-level DEBUG|INFO|WARNING|ERROR
"""
from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path
from typing import List, Optional, Sequence

from clinicaldx.utils.exceptions import RecordError
from clinicaldx.utils.logging import setup_logging

_OUTPUT_DIR = Path("outputs") / "dx_reports"
_EXCEL_NAME = "dx_dashboard.xlsx"


def _report_stem(record_paths: Sequence[Path], patient_id: Optional[str]) -> str:
    if patient_id:
        return "".join(ch if ch.isalnum() or ch in "-_" else "_" for ch in patient_id)
    return record_paths[0].stem


def cmd_evaluate(args: List[str]) -> int:
    """Evaluate merged patient records against the bundled or given rules."""
    ap = argparse.ArgumentParser(
        prog="clinicaldx evaluate",
        description="Evaluate patient record JSON files against diagnosis rules",
    )
    ap.add_argument("records", nargs="+", help="Record JSON files, merged in order")
    ap.add_argument("--rules", "-r", action="append", default=[],
                    help="Rule YAML file or directory (repeatable; default: bundled rules)")
    ap.add_argument("--json", action="store_true", help="Also write JSON results")
    ap.add_argument("--excel", action="store_true", help="Update the Excel diagnosis dashboard")
    ap.add_argument("--output-dir", help="Output directory (default: outputs/dx_reports)")
    ap.add_argument("--failure-log", help="Append rule compile failures to this JSONL file")
    opts = ap.parse_args(args)

    from clinicaldx.dx_logic.rules_loader import default_rule_sources, load_rule_sources
    from clinicaldx.dx_logic.ruleset import RuleSet
    from clinicaldx.governance.failure_log import FailureLog, log_compile_failure
    from clinicaldx.ingestion.batch_eval import evaluate_patient, load_record_files, status_counts
    from clinicaldx.reporting.text_report import generate_dx_report

    record_paths = [Path(p) for p in opts.records]
    report_dir = Path(opts.output_dir) if opts.output_dir else _OUTPUT_DIR

    print(f"ClinicalDx -- Evaluating: {', '.join(p.name for p in record_paths)}")
    print()

    try:
        patient_id, record = load_record_files(record_paths)
    except RecordError as e:
        print(f"Error: {e.message}")
        return 1

    sources = load_rule_sources(opts.rules) if opts.rules else default_rule_sources()
    rule_set = RuleSet(sources)
    print(f"  {len(rule_set.compiled_rules)} rule(s) compiled, {len(rule_set.errors)} failed")

    if opts.failure_log and rule_set.errors:
        log = FailureLog(Path(opts.failure_log))
        command = "evaluate " + " ".join(opts.records)
        for entry in rule_set.errors:
            log_compile_failure(log, entry, command)
        print(f"  Failure log: {log.path}")

    evaluation = evaluate_patient(
        record,
        rule_set,
        patient_id=patient_id,
        source_files=[str(p) for p in record_paths],
    )
    print(f"  Known fields: {evaluation['known_fields']}/{evaluation['total_fields']}")
    print(f"  Verdicts: {status_counts(evaluation)}")
    print()

    stem = _report_stem(record_paths, patient_id)
    report_path = report_dir / f"{stem}_dx_report.txt"
    print(generate_dx_report(evaluation, report_path))
    print()
    print(f"  Text:  {report_path}")

    if opts.json:
        json_path = report_dir / f"{stem}_dx_results.json"
        json_path.parent.mkdir(parents=True, exist_ok=True)
        json_path.write_text(json.dumps(evaluation, indent=2, default=str), encoding="utf-8")
        print(f"  JSON:  {json_path}")

    if opts.excel:
        from clinicaldx.reporting.excel_dashboard import update_excel_dashboard
        excel_path = report_dir / _EXCEL_NAME
        update_excel_dashboard(evaluation, excel_path)
        print(f"  Excel: {excel_path}")

    print()
    print("Done.")
    return 0


def cmd_validate(args: List[str]) -> int:
    """Compile rule documents and run fixture cases."""
    from clinicaldx.validation.validate_rules import main as validate_main
    return validate_main(args)


def cmd_fields(args: List[str]) -> int:
    """List every valid field path with its value kind."""
    from clinicaldx.dx_logic.record import field_kind, schema_paths

    for path in schema_paths():
        print(f"  {path:<40} {field_kind(path)}")
    return 0


def cmd_help(args: List[str]) -> int:
    """Show help."""
    print("ClinicalDx Diagnosis Rule Engine")
    print()
    print("Usage: python -m clinicaldx <command> [args]")
    print()
    print("Commands:")
    print("  evaluate <record.json> ...   Evaluate merged records against the rules")
    print("  validate [PATH ...]          Compile rule documents (and run --fixtures)")
    print("  fields                       List every valid field path")
    print("  help                         Show this help message")
    print()
    print("Options:")
    print("  --log-level LEVEL            DEBUG, INFO, WARNING (default) or ERROR")
    print()
    print("Examples:")
    print("  python -m clinicaldx evaluate patient.json labs_update.json --json")
    print("  python -m clinicaldx evaluate patient.json --rules my_rules/ --excel")
    print("  python -m clinicaldx validate my_rules/ --fixtures cases/")
    print()
    return 0


_COMMANDS = {
    "evaluate": cmd_evaluate,
    "validate": cmd_validate,
    "fields": cmd_fields,
    "help": cmd_help,
}


def main(argv: Optional[Sequence[str]] = None) -> int:
    pre = argparse.ArgumentParser(add_help=False, allow_abbrev=False)
    pre.add_argument("--log-level", default="WARNING",
                     choices=["DEBUG", "INFO", "WARNING", "ERROR"], type=str.upper)
    known, args = pre.parse_known_args(list(sys.argv[1:] if argv is None else argv))
    setup_logging(known.log_level)

    if not args:
        return cmd_help([])

    command = args[0].lower()
    handler = _COMMANDS.get(command)
    if handler is None:
        print(f"Unknown command: {command}")
        print()
        return cmd_help([])

    return handler(args[1:])


if __name__ == "__main__":
    raise SystemExit(main())
