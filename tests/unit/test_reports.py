"""
Unit Tests for Record Loading, Reports and the Failure Log

Batch evaluation dicts, the plain-text report, the Excel dashboard
(update-in-place) and the JSONL compile failure log.
"""
import json

import pytest
from openpyxl import load_workbook

from clinicaldx.dx_logic.ruleset import RuleSet
from clinicaldx.governance.failure_log import FailureEntry, FailureLog, log_compile_failure
from clinicaldx.ingestion.batch_eval import (
    evaluate_patient,
    load_record_file,
    load_record_files,
    status_counts,
)
from clinicaldx.reporting.excel_dashboard import (
    DASHBOARD_SHEET,
    DETAIL_SHEET,
    update_excel_dashboard,
)
from clinicaldx.reporting.text_report import generate_dx_report
from clinicaldx.utils.exceptions import RecordError

BAD_RULE = """\
name: Bad
paths:
  - formula: "g"
    summary: "yes"
absent_summary: "no"
indeterminate_summary: "maybe"
groups:
  - id: g
    name: G
    logic: ANY
    criteria:
      - name: Lactate
        field: labs.lactate
        operator: ">"
        value: 2
"""


@pytest.fixture(scope="module")
def default_rules():
    return RuleSet.from_defaults()


@pytest.fixture
def septic_evaluation(septic_record, default_rules):
    return evaluate_patient(septic_record, default_rules, patient_id="P-1", source_files=["a.json"])


class TestRecordFiles:
    """Tests for loading and merging record JSON files."""

    def test_load_single(self, fixtures_dir):
        pid, record = load_record_file(fixtures_dir / "patient_admission.json")
        assert pid == "P-1001"
        assert record.vitals.heartRate == 110.0
        assert record.labs.wbc is None

    def test_merge_in_order(self, fixtures_dir):
        pid, record = load_record_files([
            fixtures_dir / "patient_admission.json",
            fixtures_dir / "patient_labs.json",
        ])
        assert pid == "P-1001"
        assert record.vitals.heartRate == 110.0
        assert record.labs.wbc == 14.2
        assert record.imaging.pulmonaryInfiltrate is True

    def test_later_file_wins(self, tmp_path):
        first = tmp_path / "first.json"
        second = tmp_path / "second.json"
        first.write_text(json.dumps({"patient_id": "A", "vitals": {"heartRate": 80}}), encoding="utf-8")
        second.write_text(json.dumps({"patient_id": 7, "vitals": {"heartRate": 120}}), encoding="utf-8")
        pid, record = load_record_files([first, second])
        assert pid == "7"
        assert record.vitals.heartRate == 120.0

    def test_missing_file(self, tmp_path):
        with pytest.raises(SystemExit, match="Missing record file"):
            load_record_file(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        path = tmp_path / "bad.json"
        path.write_text("{not json", encoding="utf-8")
        with pytest.raises(RecordError, match="invalid JSON"):
            load_record_file(path)

    def test_not_an_object(self, tmp_path):
        path = tmp_path / "list.json"
        path.write_text("[1, 2]", encoding="utf-8")
        with pytest.raises(RecordError, match="JSON object"):
            load_record_file(path)

    def test_unknown_section(self, tmp_path):
        path = tmp_path / "odd.json"
        path.write_text(json.dumps({"vitalz": {}}), encoding="utf-8")
        with pytest.raises(RecordError):
            load_record_file(path)


class TestEvaluatePatient:
    """Tests for the shared evaluation dict."""

    def test_shape(self, septic_evaluation):
        ev = septic_evaluation
        assert ev["patient_id"] == "P-1"
        assert ev["source_files"] == ["a.json"]
        assert ev["known_fields"] == 6
        assert ev["total_fields"] > ev["known_fields"]
        assert [r["ruleName"] for r in ev["results"]] == [
            "Sepsis", "Acute CHF", "Pneumonia", "Acute Tubular Necrosis",
        ]
        assert ev["rule_errors"] == []
        json.dumps(ev)

    def test_default_patient_id(self, healthy_record, default_rules):
        assert evaluate_patient(healthy_record, default_rules)["patient_id"] == "Unknown"

    def test_status_counts(self, septic_evaluation):
        assert status_counts(septic_evaluation) == {"present": 1, "indeterminate": 3, "absent": 0}

    def test_rule_errors_are_reported(self, septic_record):
        rule_set = RuleSet([BAD_RULE])
        ev = evaluate_patient(septic_record, rule_set)
        assert ev["results"] == []
        (err,) = ev["rule_errors"]
        assert err["category"] == "schema"
        assert err["code"] == "UNKNOWN_FIELD_PATH"
        assert err["message"].startswith("Rule 'Bad' > group 'g' > criterion 'Lactate': ")


class TestTextReport:
    """Tests for the plain-text diagnosis report."""

    def test_sections(self, septic_evaluation):
        report = generate_dx_report(septic_evaluation)
        assert "CLINICALDX — DIAGNOSIS RULE REPORT" in report
        assert "Patient ID:       P-1" in report
        assert "DIAGNOSES PRESENT" in report
        assert "INDETERMINATE (INSUFFICIENT DATA)" in report
        assert "DIAGNOSES ABSENT" not in report
        assert "RULE COMPILE ERRORS" not in report

    def test_criterion_breakdown(self, septic_evaluation):
        report = generate_dx_report(septic_evaluation)
        assert "  [PRESENT] Sepsis" in report
        assert "    SIRS Criteria (sirs): MET [3/4, need 2]" in report
        assert "      + Temperature > 100.4°F <temperature>: 101.5 °F" in report
        assert "      - Respiratory rate > 20: 18 breaths/min" in report

    def test_absent_and_errors(self, healthy_record):
        rule_set = RuleSet.from_defaults()
        rule_set.add(BAD_RULE)
        report = generate_dx_report(evaluate_patient(healthy_record, rule_set))
        assert "  [ABSENT] Sepsis" in report
        assert "RULE COMPILE ERRORS" in report
        assert "  [SCHEMA] Rule 'Bad'" in report
        assert "Failed to compile:    1" in report

    def test_writes_file(self, septic_evaluation, tmp_path):
        out = tmp_path / "reports" / "p1.txt"
        report = generate_dx_report(septic_evaluation, out)
        assert out.read_text(encoding="utf-8") == report


class TestExcelDashboard:
    """Tests for the workbook (append-not-overwrite)."""

    def test_creates_workbook(self, septic_evaluation, tmp_path):
        path = update_excel_dashboard(septic_evaluation, tmp_path / "dash.xlsx")
        wb = load_workbook(path)
        assert wb.sheetnames == [DASHBOARD_SHEET, DETAIL_SHEET]

        ws = wb[DASHBOARD_SHEET]
        headers = [c.value for c in ws[1]]
        assert headers[:3] == ["Patient ID", "Known Fields", "Present"]
        assert headers[7:] == ["Sepsis", "Acute CHF", "Pneumonia", "Acute Tubular Necrosis"]
        assert ws.cell(row=2, column=1).value == "P-1"
        assert ws.cell(row=2, column=3).value == 1
        assert ws.cell(row=2, column=8).value == "PRESENT"

    def test_updates_existing_patient(self, septic_evaluation, healthy_record, default_rules, tmp_path):
        path = tmp_path / "dash.xlsx"
        update_excel_dashboard(septic_evaluation, path)
        detail_rows = load_workbook(path)[DETAIL_SHEET].max_row

        again = evaluate_patient(healthy_record, default_rules, patient_id="P-1")
        update_excel_dashboard(again, path)

        wb = load_workbook(path)
        ws = wb[DASHBOARD_SHEET]
        assert ws.max_row == 2
        assert ws.cell(row=2, column=8).value == "ABSENT"
        assert wb[DETAIL_SHEET].max_row == detail_rows

    def test_rerun_with_fewer_rules_clears_old_verdicts(
        self, septic_evaluation, septic_record, simple_rule_doc, rule_yaml, tmp_path,
    ):
        path = tmp_path / "dash.xlsx"
        update_excel_dashboard(septic_evaluation, path)
        narrower = RuleSet([rule_yaml(simple_rule_doc)])
        update_excel_dashboard(evaluate_patient(septic_record, narrower, patient_id="P-1"), path)

        ws = load_workbook(path)[DASHBOARD_SHEET]
        headers = [c.value for c in ws[1]]
        assert headers[7:] == [
            "Sepsis", "Acute CHF", "Pneumonia", "Acute Tubular Necrosis", "Test Condition",
        ]
        row = [c.value for c in ws[2]]
        assert row[7:11] == [None, None, None, None]
        assert row[11] in ("PRESENT", "INDETERMINATE", "ABSENT")

    def test_appends_new_patient(self, septic_evaluation, healthy_record, default_rules, tmp_path):
        path = tmp_path / "dash.xlsx"
        update_excel_dashboard(septic_evaluation, path)
        update_excel_dashboard(evaluate_patient(healthy_record, default_rules, patient_id="P-2"), path)
        ws = load_workbook(path)[DASHBOARD_SHEET]
        assert [ws.cell(row=r, column=1).value for r in (2, 3)] == ["P-1", "P-2"]

    def test_detail_rows_per_criterion(self, septic_evaluation, tmp_path):
        path = update_excel_dashboard(septic_evaluation, tmp_path / "dash.xlsx")
        ws = load_workbook(path)[DETAIL_SHEET]
        expected = sum(
            len(g["criteria"]) for r in septic_evaluation["results"] for g in r["groups"]
        )
        assert ws.max_row == expected + 1
        first = [c.value for c in ws[2]]
        assert first[:3] == ["P-1", "Sepsis", "PRESENT"]
        assert first[6] == "temperature"


class TestFailureLog:
    """Tests for the append-only JSONL compile failure log."""

    def test_log_compile_failure(self, tmp_path):
        log = FailureLog(tmp_path / "logs" / "failures.jsonl")
        entry = RuleSet([BAD_RULE]).errors[0]
        log_compile_failure(log, entry, "evaluate p.json")

        (logged,) = log.read_all()
        assert logged.category == "schema"
        assert logged.code == "UNKNOWN_FIELD_PATH"
        assert logged.command == "evaluate p.json"
        assert logged.detection_source == "execution"
        assert (logged.rule, logged.group, logged.criterion) == ("Bad", "g", "Lactate")
        assert logged.metadata == {"entry_id": entry.entry_id}

    def test_compiled_entry_is_not_logged(self, tmp_path):
        log = FailureLog(tmp_path / "failures.jsonl")
        log_compile_failure(log, RuleSet.from_defaults().entries[0])
        assert log.count() == 0
        assert log.read_all() == []

    def test_summary_and_malformed_lines(self, tmp_path):
        log = FailureLog(tmp_path / "failures.jsonl")
        for category in ("schema", "grammar", "schema"):
            log.append(FailureEntry(
                timestamp="2026-01-01T00:00:00", category=category, code="X",
                description="d", command="validate", detection_source="validation",
            ))
        with open(log.path, "a", encoding="utf-8") as f:
            f.write("{broken\n")
        assert log.count() == 4
        assert len(log.read_all()) == 3
        assert log.summary() == {"schema": 2, "grammar": 1}
