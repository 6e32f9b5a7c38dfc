"""
Unit Tests for the Command Line and the Rule Validator
"""
import json
import logging

import pytest

from clinicaldx.__main__ import main
from clinicaldx.dx_logic.record import schema_paths
from clinicaldx.dx_logic.ruleset import RuleSet
from clinicaldx.governance.failure_log import FailureLog
from clinicaldx.validation.validate_rules import RuleValidator

UNUSED_GROUP_RULE = """\
name: Lonely
paths:
  - formula: "a"
    summary: "yes"
absent_summary: "no"
indeterminate_summary: "maybe"
groups:
  - id: a
    name: A
    logic: ANY
    criteria:
      - name: Cough
        field: symptoms.cough
        operator: is_true
  - id: spare
    name: Spare
    logic: ANY
    criteria:
      - name: Fever
        field: symptoms.fever
        operator: is_true
"""

BROKEN_RULE = """\
name: Broken
paths:
  - formula: "a OR OR a"
    summary: "yes"
absent_summary: "no"
indeterminate_summary: "maybe"
groups:
  - id: a
    name: A
    logic: ANY
    criteria:
      - name: Cough
        field: symptoms.cough
        operator: is_true
"""


class TestMain:
    """Tests for command dispatch."""

    def test_no_args_shows_help(self, capsys):
        assert main([]) == 0
        assert "Usage: python -m clinicaldx" in capsys.readouterr().out

    def test_unknown_command(self, capsys):
        assert main(["frobnicate"]) == 0
        out = capsys.readouterr().out
        assert "Unknown command: frobnicate" in out
        assert "Commands:" in out

    def test_fields(self, capsys):
        assert main(["fields"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert len(lines) == len(schema_paths())
        assert lines[0].split() == ["vitals.heartRate", "number"]

    def test_log_level_anywhere(self):
        assert main(["fields", "--log-level", "debug"]) == 0
        assert logging.getLogger().level == logging.DEBUG

    def test_bad_log_level(self):
        with pytest.raises(SystemExit):
            main(["--log-level", "LOUD", "fields"])


class TestEvaluateCommand:
    """Tests for ``evaluate``."""

    def test_merged_records(self, fixtures_dir, tmp_path, capsys):
        code = main([
            "evaluate",
            str(fixtures_dir / "patient_admission.json"),
            str(fixtures_dir / "patient_labs.json"),
            "--json", "--excel",
            "--output-dir", str(tmp_path),
        ])
        assert code == 0
        out = capsys.readouterr().out
        assert "4 rule(s) compiled, 0 failed" in out
        assert "Known fields: 9/" in out
        assert "[PRESENT] Sepsis" in out
        assert "[PRESENT] Pneumonia" in out

        assert (tmp_path / "P-1001_dx_report.txt").exists()
        assert (tmp_path / "dx_dashboard.xlsx").exists()
        data = json.loads((tmp_path / "P-1001_dx_results.json").read_text(encoding="utf-8"))
        assert data["patient_id"] == "P-1001"
        statuses = {r["ruleName"]: r["status"] for r in data["results"]}
        assert statuses == {
            "Sepsis": "present",
            "Acute CHF": "indeterminate",
            "Pneumonia": "present",
            "Acute Tubular Necrosis": "indeterminate",
        }

    def test_custom_rules_and_failure_log(self, tmp_path, capsys):
        record = tmp_path / "visit.json"
        record.write_text(json.dumps({"symptoms": {"cough": True}}), encoding="utf-8")
        rules = tmp_path / "rules.yaml"
        rules.write_text(UNUSED_GROUP_RULE + "---\n" + BROKEN_RULE, encoding="utf-8")
        log_path = tmp_path / "failures.jsonl"

        code = main([
            "evaluate", str(record),
            "--rules", str(rules),
            "--output-dir", str(tmp_path / "out"),
            "--failure-log", str(log_path),
        ])
        assert code == 0
        out = capsys.readouterr().out
        assert "1 rule(s) compiled, 1 failed" in out
        assert "[PRESENT] Lonely" in out
        assert "RULE COMPILE ERRORS" in out
        assert (tmp_path / "out" / "visit_dx_report.txt").exists()

        (logged,) = FailureLog(log_path).read_all()
        assert logged.category == "grammar"
        assert logged.rule == "Broken"
        assert logged.command.startswith("evaluate ")

    def test_bad_record_returns_one(self, tmp_path, capsys):
        record = tmp_path / "bad.json"
        record.write_text(json.dumps({"vitals": {"heartRate": "fast"}}), encoding="utf-8")
        assert main(["evaluate", str(record), "--output-dir", str(tmp_path)]) == 1
        assert "Error:" in capsys.readouterr().out

    def test_requires_a_record(self):
        with pytest.raises(SystemExit):
            main(["evaluate"])


class TestValidateCommand:
    """Tests for ``validate`` and the RuleValidator."""

    def test_bundled_rules_with_fixtures(self, fixtures_dir, capsys):
        code = main(["validate", "--fixtures", str(fixtures_dir / "cases")])
        out = capsys.readouterr().out
        assert code == 0, out
        assert "RESULT: ALL CHECKS PASSED" in out
        assert "Found 3 test fixtures" in out

    def test_broken_document_fails(self, tmp_path, capsys):
        rules = tmp_path / "broken.yaml"
        rules.write_text(BROKEN_RULE, encoding="utf-8")
        log_path = tmp_path / "failures.jsonl"
        assert main(["validate", str(rules), "--failure-log", str(log_path)]) == 1
        out = capsys.readouterr().out
        assert "[FAIL] Rule 'Broken': Path #1: Missing operand before 'OR'" in out
        (logged,) = FailureLog(log_path).read_all()
        assert logged.detection_source == "validation"

    def test_unused_group_warns(self, tmp_path):
        rules = tmp_path / "lonely.yaml"
        rules.write_text(UNUSED_GROUP_RULE, encoding="utf-8")
        validator = RuleValidator(rule_paths=[rules])
        validator.load_rules()
        result = validator.validate_entry(validator.rule_set.entries[0])
        assert result.passed
        assert result.warnings == ["Group 'spare' is not used by any diagnostic path"]
        assert (result.group_count, result.criteria_count, result.path_count) == (2, 2, 1)

    def test_duplicate_names_warn(self, tmp_path, capsys):
        rules = tmp_path / "twice.yaml"
        rules.write_text(UNUSED_GROUP_RULE + "---\n" + UNUSED_GROUP_RULE, encoding="utf-8")
        validator = RuleValidator(rule_paths=[rules])
        assert validator.run() == 0
        assert "Rule name 'Lonely' is used by 2 documents" in capsys.readouterr().out

    def test_fixture_mismatch(self, tmp_path):
        fixture = tmp_path / "case.json"
        fixture.write_text(json.dumps({
            "record": {},
            "expected": {"Sepsis": "present", "Nonexistent": "absent"},
        }), encoding="utf-8")
        validator = RuleValidator()
        validator.rule_set = RuleSet.from_defaults()
        sepsis, missing = validator.run_fixture(fixture)
        assert not sepsis.passed
        assert sepsis.actual_status == "indeterminate"
        assert missing.actual_status == "MISSING"

    def test_fixture_with_bad_record(self, tmp_path):
        fixture = tmp_path / "case.json"
        fixture.write_text(json.dumps({"record": {"vitalz": {}}}), encoding="utf-8")
        (result,) = RuleValidator().run_fixture(fixture)
        assert result.actual_status == "ERROR"
        assert not result.passed
