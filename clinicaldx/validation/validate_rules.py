#!/usr/bin/env python3
"""
Validate diagnosis rule documents and test fixtures.

Checks:
1. Every rule document compiles (schema, field paths, operators, formulas)
2. Every declared group is referenced by at least one diagnostic path
3. Rule names are unique across the set
4. Test fixtures produce the expected verdicts
5. Summary report across all rules

Fixture files are JSON objects:

    {"record": {...nested record...}, "expected": {"Sepsis": "present"}}

Usage:
    python -m clinicaldx validate
    python -m clinicaldx validate my_rules/ --fixtures tests/fixtures/cases
"""
from __future__ import annotations

import argparse
import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from clinicaldx.dx_logic.expressions import identifiers
from clinicaldx.dx_logic.model import DiagnosisStatus
from clinicaldx.dx_logic.record import PatientRecord
from clinicaldx.dx_logic.rules_loader import default_rule_sources, load_rule_sources
from clinicaldx.dx_logic.ruleset import RuleEntry, RuleSet
from clinicaldx.governance.failure_log import FailureLog, log_compile_failure
from clinicaldx.utils.exceptions import RecordError


@dataclass
class RuleValidationResult:
    """Result of validating a single rule document."""
    entry_id: str
    rule_name: str
    passed: bool
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    group_count: int = 0
    criteria_count: int = 0
    path_count: int = 0


@dataclass
class FixtureResult:
    """Result of checking one expected verdict of a fixture."""
    fixture_path: str
    rule_name: str
    expected_status: str
    actual_status: str
    passed: bool
    reason: str = ""


class RuleValidator:
    """Validator for diagnosis rule documents."""

    def __init__(
        self,
        rule_paths: Optional[Sequence[Path]] = None,
        fixtures_dir: Optional[Path] = None,
        failure_log: Optional[FailureLog] = None,
    ):
        self.rule_paths = [Path(p) for p in rule_paths or []]
        self.fixtures_dir = fixtures_dir
        self.failure_log = failure_log

        self.rule_set = RuleSet()
        self.results: List[RuleValidationResult] = []
        self.fixture_results: List[FixtureResult] = []

    def load_rules(self) -> int:
        """Compile the given rule files, or the bundled defaults. Returns document count."""
        if self.rule_paths:
            sources = load_rule_sources(self.rule_paths)
        else:
            sources = default_rule_sources()
        self.rule_set = RuleSet(sources)
        return len(self.rule_set)

    def validate_entry(self, entry: RuleEntry) -> RuleValidationResult:
        """Validate a single compiled (or failed) rule document."""
        if entry.rule is None:
            return RuleValidationResult(
                entry_id=entry.entry_id,
                rule_name=entry.name,
                passed=False,
                errors=[entry.error_message or "Unknown compile error"],
            )

        rule = entry.rule
        result = RuleValidationResult(
            entry_id=entry.entry_id,
            rule_name=rule.name,
            passed=True,
            group_count=len(rule.groups),
            criteria_count=sum(len(g.criteria) for g in rule.groups),
            path_count=len(rule.paths),
        )

        referenced = set()
        for p in rule.paths:
            referenced.update(identifiers(p.expression))
        for gid in rule.group_ids:
            if gid not in referenced:
                result.warnings.append(f"Group '{gid}' is not used by any diagnostic path")
        return result

    def run_fixture(self, fixture_path: Path) -> List[FixtureResult]:
        """Evaluate one fixture record and compare each expected verdict."""
        name = fixture_path.name
        try:
            data = json.loads(fixture_path.read_text(encoding="utf-8"))
            record = PatientRecord.from_dict(data.get("record"))
            expected: Dict[str, str] = data.get("expected") or {}
        except (OSError, json.JSONDecodeError, AttributeError, RecordError) as e:
            return [FixtureResult(
                fixture_path=name,
                rule_name="*",
                expected_status="*",
                actual_status="ERROR",
                passed=False,
                reason=str(e),
            )]

        actual = {r.rule_name: r.status.value for r in self.rule_set.evaluate(record)}
        out = []
        for rule_name, want in expected.items():
            got = actual.get(rule_name, "MISSING")
            passed = got == str(want).lower()
            out.append(FixtureResult(
                fixture_path=name,
                rule_name=rule_name,
                expected_status=str(want).lower(),
                actual_status=got,
                passed=passed,
                reason="" if passed else f"Expected {want}, got {got}",
            ))
        return out

    def discover_fixtures(self) -> List[Path]:
        if self.fixtures_dir is None or not self.fixtures_dir.exists():
            return []
        return sorted(self.fixtures_dir.glob("*.json"))

    def run(self) -> int:
        """Run full validation suite."""
        print("=" * 70)
        print("RULE VALIDATION SUITE")
        print("=" * 70)

        print("\n--- Loading Rules ---")
        count = self.load_rules()
        source = ", ".join(str(p) for p in self.rule_paths) if self.rule_paths else "bundled defaults"
        print(f"  {count} rule document(s) from {source}")

        print("\n--- Validating Rule Definitions ---")
        names: Dict[str, int] = {}
        for entry in self.rule_set.entries:
            result = self.validate_entry(entry)
            if entry.rule is not None:
                names[entry.rule.name] = names.get(entry.rule.name, 0) + 1
            self.results.append(result)
            if self.failure_log is not None:
                log_compile_failure(self.failure_log, entry, "validate", detection_source="validation")

        for name, n in names.items():
            if n > 1:
                for r in self.results:
                    if r.rule_name == name:
                        r.warnings.append(f"Rule name '{name}' is used by {n} documents")

        errors_total = sum(len(r.errors) for r in self.results)
        warnings_total = sum(len(r.warnings) for r in self.results)
        failed_count = sum(1 for r in self.results if not r.passed)

        for r in self.results:
            if r.passed:
                print(
                    f"  [OK]   {r.rule_name}: {r.group_count} group(s), "
                    f"{r.criteria_count} criteria, {r.path_count} path(s)"
                )
        print(f"\n  Total documents: {len(self.results)}")
        print(f"  Errors: {errors_total}")
        print(f"  Warnings: {warnings_total}")

        if errors_total > 0:
            print("\n--- Errors ---")
            for r in self.results:
                for err in r.errors:
                    print(f"  [FAIL] {err}")

        if warnings_total > 0:
            print("\n--- Warnings ---")
            for r in self.results:
                for w in r.warnings:
                    print(f"  [WARN] {r.rule_name}: {w}")

        if self.fixtures_dir is not None:
            print("\n--- Running Test Fixtures ---")
            fixtures = self.discover_fixtures()
            if not fixtures:
                print("  No test fixtures found")
            else:
                print(f"  Found {len(fixtures)} test fixtures")
                for fixture_path in fixtures:
                    for fr in self.run_fixture(fixture_path):
                        self.fixture_results.append(fr)
                        status = "PASS" if fr.passed else "FAIL"
                        print(
                            f"  [{status}] {fr.fixture_path} {fr.rule_name}: "
                            f"{fr.actual_status} (expected: {fr.expected_status})"
                        )
                        if not fr.passed:
                            print(f"         {fr.reason}")

                fixture_pass = sum(1 for fr in self.fixture_results if fr.passed)
                print(f"\n  Fixtures: {fixture_pass}/{len(self.fixture_results)} passed")

        print("\n" + "=" * 70)
        fixture_failures = sum(1 for fr in self.fixture_results if not fr.passed)
        overall_pass = failed_count == 0 and fixture_failures == 0

        if overall_pass:
            print("RESULT: ALL CHECKS PASSED")
        else:
            print(f"RESULT: {failed_count} rule document(s) failed validation")
            if fixture_failures:
                print(f"        {fixture_failures} fixture check(s) failed")

        print("=" * 70)
        return 0 if overall_pass else 1


def main(argv: Optional[Sequence[str]] = None) -> int:
    parser = argparse.ArgumentParser(
        prog="clinicaldx validate",
        description="Validate diagnosis rule documents and test fixtures",
    )
    parser.add_argument("paths", nargs="*", help="Rule YAML files or directories (default: bundled rules)")
    parser.add_argument("--fixtures", help="Directory of JSON fixture cases")
    parser.add_argument("--failure-log", help="Append compile failures to this JSONL file")
    args = parser.parse_args(argv)

    validator = RuleValidator(
        rule_paths=[Path(p) for p in args.paths],
        fixtures_dir=Path(args.fixtures) if args.fixtures else None,
        failure_log=FailureLog(Path(args.failure_log)) if args.failure_log else None,
    )
    return validator.run()


if __name__ == "__main__":
    raise SystemExit(main())
