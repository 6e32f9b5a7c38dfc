#!/usr/bin/env python3
"""
ClinicalDx Batch Evaluator.

Loads patient-record JSON files, merges them into one record and runs every
compiled rule of a RuleSet against it. The resulting evaluation dict is the
shared input of the text report, JSON output and Excel dashboard.

Record files are nested mappings in the record schema, e.g.

    {"patient_id": "P-001", "vitals": {"heartRate": 112}, "labs": {"wbc": 14.2}}

``patient_id`` is optional; every other top-level key must be a record section.

Design:
- Field-level merge in file order: later known values win, absent values
  never erase earlier ones
- Rule documents that fail to compile are reported, never evaluated
"""
from __future__ import annotations

import json
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Tuple

from clinicaldx import ENGINE_VERSION, RULE_SCHEMA_VERSION
from clinicaldx.dx_logic.model import DiagnosisStatus
from clinicaldx.dx_logic.record import (
    PatientRecord,
    empty_record,
    known_field_count,
    merge_records,
    schema_paths,
)
from clinicaldx.dx_logic.ruleset import RuleSet
from clinicaldx.utils.exceptions import RecordError
from clinicaldx.utils.logging import get_logger

logger = get_logger(__name__)

PATIENT_ID_KEY = "patient_id"


# ---------------------------------------------------------------------------
# Record loading
# ---------------------------------------------------------------------------

def load_record_file(path: Path) -> Tuple[Optional[str], PatientRecord]:
    """
    Read one record JSON file.

    Returns: (patient_id or None, record)
    Raises: SystemExit if the file is missing, RecordError if it is malformed
    """
    try:
        text = Path(path).read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SystemExit(f"Missing record file: {path}")

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        raise RecordError(f"{path}: invalid JSON ({e})", path=str(path)) from None
    if not isinstance(data, dict):
        raise RecordError(f"{path}: record file must hold a JSON object", path=str(path))

    patient_id = data.pop(PATIENT_ID_KEY, None)
    if patient_id is not None:
        patient_id = str(patient_id)
    return patient_id, PatientRecord.from_dict(data)


def load_record_files(paths: Iterable[Path]) -> Tuple[Optional[str], PatientRecord]:
    """Load and merge several record files; the last declared patient_id wins."""
    patient_id: Optional[str] = None
    record = empty_record()
    for path in paths:
        pid, update = load_record_file(path)
        record = merge_records(record, update)
        if pid is not None:
            patient_id = pid
        logger.debug(f"Merged {path}: {known_field_count(record)} known field(s)")
    return patient_id, record


# ---------------------------------------------------------------------------
# Evaluation
# ---------------------------------------------------------------------------

def evaluate_patient(
    record: PatientRecord,
    rule_set: RuleSet,
    patient_id: Optional[str] = None,
    source_files: Optional[List[str]] = None,
) -> Dict[str, Any]:
    """
    Evaluate every compiled rule against one record.

    Returns a JSON-safe evaluation dict:
        patient_id, source_files, evaluated_at, engine_version,
        rule_schema_version, known_fields, total_fields, record,
        results (DiagnosisResult.to_dict per rule), rule_errors
    """
    results = rule_set.evaluate(record)
    rule_errors = [
        {
            "entry_id": e.entry_id,
            "category": e.error.category,
            "code": e.error.code,
            "message": e.error.message,
        }
        for e in rule_set.errors
    ]
    return {
        "patient_id": patient_id or "Unknown",
        "source_files": list(source_files or []),
        "evaluated_at": datetime.now().isoformat(timespec="seconds"),
        "engine_version": ENGINE_VERSION,
        "rule_schema_version": RULE_SCHEMA_VERSION,
        "known_fields": known_field_count(record),
        "total_fields": len(schema_paths()),
        "record": record.to_dict(),
        "results": [r.to_dict() for r in results],
        "rule_errors": rule_errors,
    }


def status_counts(evaluation: Dict[str, Any]) -> Dict[str, int]:
    """Count rule verdicts, in PRESENT / INDETERMINATE / ABSENT order."""
    counts = {s.value: 0 for s in (
        DiagnosisStatus.PRESENT, DiagnosisStatus.INDETERMINATE, DiagnosisStatus.ABSENT
    )}
    for r in evaluation.get("results", []):
        counts[r["status"]] = counts.get(r["status"], 0) + 1
    return counts
