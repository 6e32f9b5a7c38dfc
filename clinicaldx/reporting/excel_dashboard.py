#!/usr/bin/env python3
"""
ClinicalDx Excel Diagnosis Dashboard.

Generates an Excel workbook with:
- Diagnosis Dashboard (one row per patient, one verdict column per rule)
- Criteria Detail (one row per patient per criterion)

Append-not-overwrite: existing patients are updated, new patients are appended.
"""
from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from openpyxl import Workbook, load_workbook
from openpyxl.styles import Alignment, Border, Font, PatternFill, Side
from openpyxl.utils import get_column_letter

DASHBOARD_SHEET = "Diagnosis Dashboard"
DETAIL_SHEET = "Criteria Detail"

# ---------------------------------------------------------------------------
# Palette (openpyxl uses ARGB hex without #)
# ---------------------------------------------------------------------------
_RED_LIGHT = PatternFill(start_color="FFFEE2E2", end_color="FFFEE2E2", fill_type="solid")
_AMBER_LIGHT = PatternFill(start_color="FFFEF3C7", end_color="FFFEF3C7", fill_type="solid")
_GREEN_LIGHT = PatternFill(start_color="FFD1FAE5", end_color="FFD1FAE5", fill_type="solid")
_GRAY_FILL = PatternFill(start_color="FFF3F4F6", end_color="FFF3F4F6", fill_type="solid")

_HEADER_FONT = Font(name="Calibri", size=11, bold=True, color="FFFFFFFF")
_HEADER_FILL = PatternFill(start_color="FF1E3A8A", end_color="FF1E3A8A", fill_type="solid")
_BODY_FONT = Font(name="Calibri", size=10)
_BOLD_FONT = Font(name="Calibri", size=10, bold=True)
_THIN_BORDER = Border(
    left=Side(style="thin", color="FFE5E7EB"),
    right=Side(style="thin", color="FFE5E7EB"),
    top=Side(style="thin", color="FFE5E7EB"),
    bottom=Side(style="thin", color="FFE5E7EB"),
)

_STATUS_FILLS = {
    "present": _RED_LIGHT,
    "indeterminate": _AMBER_LIGHT,
    "absent": _GREEN_LIGHT,
    "met": _RED_LIGHT,
    "unknown": _AMBER_LIGHT,
    "not_met": _GREEN_LIGHT,
}

# Fixed dashboard columns; rule verdict columns follow
_DASHBOARD_HEADERS = [
    "Patient ID", "Known Fields", "Present", "Indeterminate", "Absent",
    "Compile Errors", "Last Evaluated",
]
_DETAIL_HEADERS = [
    "Patient ID", "Rule", "Verdict", "Group", "Group State", "Criterion",
    "Concept", "Status", "Detail",
]


def _style_header_cell(cell) -> None:
    cell.font = _HEADER_FONT
    cell.fill = _HEADER_FILL
    cell.alignment = Alignment(horizontal="center", vertical="center", wrap_text=True)
    cell.border = _THIN_BORDER


def _style_body_cell(cell, fill: Optional[PatternFill] = None, wrap: bool = False) -> None:
    cell.font = _BODY_FONT
    cell.border = _THIN_BORDER
    cell.alignment = Alignment(vertical="center", wrap_text=wrap)
    if fill is not None:
        cell.fill = fill


def _find_patient_row(ws, patient_id: str) -> Optional[int]:
    """Find existing row for a patient by ID (column A)."""
    for row in range(2, ws.max_row + 1):
        if str(ws.cell(row=row, column=1).value) == str(patient_id):
            return row
    return None


def _rule_column(ws, rule_name: str) -> int:
    """Column of a rule's verdict on the dashboard, adding a header if new."""
    first = len(_DASHBOARD_HEADERS) + 1
    col = first
    while ws.cell(row=1, column=col).value is not None:
        if ws.cell(row=1, column=col).value == rule_name:
            return col
        col += 1
    hdr = ws.cell(row=1, column=col, value=rule_name)
    _style_header_cell(hdr)
    ws.column_dimensions[get_column_letter(col)].width = 18
    return col


# ---------------------------------------------------------------------------
# Sheet builders
# ---------------------------------------------------------------------------

def _build_dashboard_sheet(wb: Workbook, evaluation: Dict[str, Any]) -> None:
    """Add or update the patient row on the Diagnosis Dashboard sheet."""
    ws = wb[DASHBOARD_SHEET]
    patient_id = str(evaluation.get("patient_id", ""))
    row = _find_patient_row(ws, patient_id) or ws.max_row + 1

    results = evaluation.get("results", [])
    counts = {"present": 0, "indeterminate": 0, "absent": 0}
    for r in results:
        counts[r["status"]] = counts.get(r["status"], 0) + 1

    data = [
        patient_id,
        f"{evaluation.get('known_fields', 0)}/{evaluation.get('total_fields', 0)}",
        counts["present"],
        counts["indeterminate"],
        counts["absent"],
        len(evaluation.get("rule_errors", [])),
        datetime.now().strftime("%Y-%m-%d %H:%M:%S"),
    ]
    for col, val in enumerate(data, 1):
        _style_body_cell(ws.cell(row=row, column=col, value=val))
    ws.cell(row=row, column=1).font = _BOLD_FONT

    # Verdicts from an earlier run of this patient
    for col in range(len(_DASHBOARD_HEADERS) + 1, ws.max_column + 1):
        stale = ws.cell(row=row, column=col)
        stale.value = None
        stale.fill = PatternFill()

    for r in results:
        col = _rule_column(ws, r["ruleName"])
        status = r["status"]
        cell = ws.cell(row=row, column=col, value=status.upper())
        _style_body_cell(cell, fill=_STATUS_FILLS.get(status, _GRAY_FILL))
        cell.alignment = Alignment(horizontal="center")


def _build_detail_sheet(wb: Workbook, evaluation: Dict[str, Any]) -> None:
    """Replace the patient's criterion rows on the Criteria Detail sheet."""
    ws = wb[DETAIL_SHEET]
    patient_id = str(evaluation.get("patient_id", ""))

    # Drop previous rows for this patient, bottom-up so indices stay valid
    for row in range(ws.max_row, 1, -1):
        if str(ws.cell(row=row, column=1).value) == patient_id:
            ws.delete_rows(row)

    rows: List[List[Any]] = []
    for r in evaluation.get("results", []):
        for g in r.get("groups", []):
            if g["met"]:
                state = "MET"
            elif g["indeterminate"]:
                state = "INDETERMINATE"
            else:
                state = "NOT MET"
            for c in g.get("criteria", []):
                rows.append([
                    patient_id, r["ruleName"], r["status"].upper(), g["name"], state,
                    c["name"], c.get("conceptGroup", ""), c["status"], c["detail"],
                ])

    start = ws.max_row + 1
    for offset, data in enumerate(rows):
        row = start + offset
        for col, val in enumerate(data, 1):
            _style_body_cell(ws.cell(row=row, column=col, value=val), wrap=(col == 9))
        ws.cell(row=row, column=8).fill = _STATUS_FILLS.get(data[7], _GRAY_FILL)


# ---------------------------------------------------------------------------
# Create workbook
# ---------------------------------------------------------------------------

def _create_workbook() -> Workbook:
    """Create a new workbook with both sheets and header rows."""
    wb = Workbook()

    ws1 = wb.active
    ws1.title = DASHBOARD_SHEET
    for col, h in enumerate(_DASHBOARD_HEADERS, 1):
        _style_header_cell(ws1.cell(row=1, column=col, value=h))
    ws1.freeze_panes = "B2"
    for i, w in enumerate([16, 12, 10, 14, 10, 14, 20], 1):
        ws1.column_dimensions[get_column_letter(i)].width = w

    ws2 = wb.create_sheet(DETAIL_SHEET)
    for col, h in enumerate(_DETAIL_HEADERS, 1):
        _style_header_cell(ws2.cell(row=1, column=col, value=h))
    ws2.freeze_panes = "B2"
    ws2.auto_filter.ref = f"A1:{get_column_letter(len(_DETAIL_HEADERS))}1"
    for i, w in enumerate([16, 26, 14, 26, 14, 30, 14, 10, 60], 1):
        ws2.column_dimensions[get_column_letter(i)].width = w

    return wb


# ---------------------------------------------------------------------------
# Public API
# ---------------------------------------------------------------------------

def update_excel_dashboard(evaluation: Dict[str, Any], output_path: Path) -> Path:
    """
    Add or update a patient in the Excel diagnosis dashboard.

    If the file exists, opens it and updates/appends.
    If not, creates a new workbook with both sheets and formatting.

    Args:
        evaluation: Evaluation dict from batch_eval.evaluate_patient()
        output_path: Path to Excel file

    Returns:
        Path to the Excel file
    """
    if output_path.exists():
        wb = load_workbook(output_path)
    else:
        output_path.parent.mkdir(parents=True, exist_ok=True)
        wb = _create_workbook()

    _build_dashboard_sheet(wb, evaluation)
    _build_detail_sheet(wb, evaluation)

    wb.save(output_path)
    return output_path
