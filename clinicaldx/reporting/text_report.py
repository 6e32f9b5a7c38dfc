#!/usr/bin/env python3
"""
ClinicalDx Text Report Generator.

Renders an evaluation dict (see ingestion.batch_eval.evaluate_patient) as a
fixed-width plain-text diagnosis report:

- Header (patient, sources, data completeness)
- Summary counts per verdict
- PRESENT / INDETERMINATE diagnoses with group and criterion breakdown
- ABSENT diagnoses (compact list)
- Rule documents that failed to compile
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from clinicaldx import ENGINE_VERSION, RULE_SCHEMA_VERSION

_RULE = "=" * 70
_THIN = "-" * 70

_STATUS_MARKS = {
    "met": "+",
    "not_met": "-",
    "unknown": "?",
}


def generate_dx_report(
    evaluation: Dict[str, Any],
    output_path: Optional[Path] = None,
) -> str:
    """
    Generate a human-readable diagnosis report.

    Returns the report text. Optionally writes to file.
    """
    lines: List[str] = []
    lines.append(_RULE)
    lines.append("CLINICALDX — DIAGNOSIS RULE REPORT")
    lines.append(_RULE)
    lines.append("")

    sources = evaluation.get("source_files") or []
    lines.append(f"Patient ID:       {evaluation.get('patient_id', 'Unknown')}")
    lines.append(f"Sources:          {', '.join(sources) if sources else 'N/A'}")
    lines.append(
        f"Known fields:     {evaluation.get('known_fields', 0)}"
        f" of {evaluation.get('total_fields', 0)}"
    )
    lines.append("")

    results = evaluation.get("results", [])
    present = [r for r in results if r["status"] == "present"]
    indeterminate = [r for r in results if r["status"] == "indeterminate"]
    absent = [r for r in results if r["status"] == "absent"]
    errors = evaluation.get("rule_errors", [])

    lines.append(_THIN)
    lines.append("SUMMARY")
    lines.append(_THIN)
    lines.append(f"Rules evaluated:      {len(results)}")
    lines.append(f"  PRESENT:            {len(present)}")
    lines.append(f"  INDETERMINATE:      {len(indeterminate)}")
    lines.append(f"  ABSENT:             {len(absent)}")
    if errors:
        lines.append(f"Failed to compile:    {len(errors)}")
    lines.append("")

    if present:
        lines.append(_THIN)
        lines.append("DIAGNOSES PRESENT")
        lines.append(_THIN)
        for r in present:
            _append_rule_detail(lines, r)
        lines.append("")

    # Missing data could still establish these
    if indeterminate:
        lines.append(_THIN)
        lines.append("INDETERMINATE (INSUFFICIENT DATA)")
        lines.append(_THIN)
        for r in indeterminate:
            _append_rule_detail(lines, r)
        lines.append("")

    if absent:
        lines.append(_THIN)
        lines.append("DIAGNOSES ABSENT")
        lines.append(_THIN)
        for r in absent:
            lines.append(f"  [ABSENT] {r['ruleName']}")
            lines.append(f"    {r['summary']}")
        lines.append("")

    if errors:
        lines.append(_THIN)
        lines.append("RULE COMPILE ERRORS")
        lines.append(_THIN)
        for e in errors:
            lines.append(f"  [{e.get('category', 'compile').upper()}] {e.get('message', 'Unknown error')}")
        lines.append("")

    lines.append(_RULE)
    lines.append(f"Report generated: {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}")
    lines.append(f"ClinicalDx engine {ENGINE_VERSION} (rule schema {RULE_SCHEMA_VERSION})")
    lines.append(_RULE)

    report = "\n".join(lines)

    if output_path:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        output_path.write_text(report, encoding="utf-8")

    return report


def _append_rule_detail(lines: List[str], result: Dict[str, Any]) -> None:
    """Append the group and criterion breakdown of one rule result."""
    lines.append(f"  [{result['status'].upper()}] {result['ruleName']}")
    lines.append(f"    {result['summary']}")

    for g in result.get("groups", []):
        if g["met"]:
            state = "MET"
        elif g["indeterminate"]:
            state = "INDETERMINATE"
        else:
            state = "NOT MET"
        count = f"{g['metCount']}/{g['totalCount']}"
        if g.get("requiredCount") is not None:
            count += f", need {g['requiredCount']}"
        lines.append(f"    {g['name']} ({g['id']}): {state} [{count}]")
        for c in g.get("criteria", []):
            mark = _STATUS_MARKS.get(c["status"], "?")
            concept = f" <{c['conceptGroup']}>" if c.get("conceptGroup") else ""
            lines.append(f"      {mark} {c['name']}{concept}: {c['detail']}")
    lines.append("")
