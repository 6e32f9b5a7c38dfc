#!/usr/bin/env python3
"""
ClinicalDx — Rule Set Orchestrator (v1)

Compiles an ordered collection of rule documents independently and
evaluates every successfully compiled rule against one record.

Design:
- One failing document never blocks its siblings; each entry carries either
  a compiled rule or the compile error
- Results come back in document order; failed documents are skipped
- Entries are immutable; edits replace an entry in place
"""
from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from clinicaldx.dx_logic.evaluator import evaluate_all_rules
from clinicaldx.dx_logic.model import DiagnosisResult, RuleDef
from clinicaldx.dx_logic.record import PatientRecord
from clinicaldx.dx_logic.rules_loader import compile_rule_from_yaml, default_rule_sources
from clinicaldx.utils.exceptions import RuleCompileError
from clinicaldx.utils.logging import get_logger

logger = get_logger(__name__)

INVALID_RULE_NAME = "Invalid Rule"


@dataclass(frozen=True)
class RuleEntry:
    """One rule document and its compiled-or-error state.

    Attributes:
        entry_id: Stable identifier for edits and removal
        source: YAML source text of the document
        name: Rule name, or "Invalid Rule" when compilation failed
        rule: Compiled rule (None on failure)
        error: Compile error (None on success)
    """
    entry_id: str
    source: str
    name: str
    rule: Optional[RuleDef] = None
    error: Optional[RuleCompileError] = None

    @property
    def ok(self) -> bool:
        return self.rule is not None

    @property
    def error_message(self) -> Optional[str]:
        return self.error.message if self.error is not None else None


def make_entry(source: str, entry_id: Optional[str] = None) -> RuleEntry:
    """Compile one document, capturing any compile error on the entry."""
    entry_id = entry_id or uuid.uuid4().hex
    try:
        rule = compile_rule_from_yaml(source)
    except RuleCompileError as exc:
        logger.warning(f"Rule document failed to compile: {exc.message}")
        return RuleEntry(entry_id=entry_id, source=source, name=INVALID_RULE_NAME, error=exc)
    return RuleEntry(entry_id=entry_id, source=source, name=rule.name, rule=rule)


def compile_rule_set(sources: Iterable[str]) -> List[RuleEntry]:
    return [make_entry(src) for src in sources]


def evaluate_rule_set(entries: Sequence[RuleEntry], record: PatientRecord) -> List[DiagnosisResult]:
    """Evaluate the compiled entries, in order, dropping the ones that failed."""
    return evaluate_all_rules((e.rule for e in entries if e.rule is not None), record)


class RuleSet:
    """
    Ordered, editable collection of rule documents.

    In-memory only; the compiled rules it hands out are immutable and may be
    evaluated concurrently.
    """

    def __init__(self, sources: Optional[Iterable[str]] = None):
        self._entries: List[RuleEntry] = compile_rule_set(sources or [])

    @classmethod
    def from_defaults(cls) -> "RuleSet":
        return cls(default_rule_sources())

    @property
    def entries(self) -> List[RuleEntry]:
        return list(self._entries)

    @property
    def compiled_rules(self) -> List[RuleDef]:
        return [e.rule for e in self._entries if e.rule is not None]

    @property
    def errors(self) -> List[RuleEntry]:
        return [e for e in self._entries if e.error is not None]

    def get(self, entry_id: str) -> RuleEntry:
        for e in self._entries:
            if e.entry_id == entry_id:
                return e
        raise KeyError(entry_id)

    def add(self, source: str) -> RuleEntry:
        entry = make_entry(source)
        self._entries.append(entry)
        return entry

    def update(self, entry_id: str, source: str) -> RuleEntry:
        """Recompile one document in place, keeping its position and id."""
        for i, e in enumerate(self._entries):
            if e.entry_id == entry_id:
                entry = make_entry(source, entry_id)
                self._entries[i] = entry
                return entry
        raise KeyError(entry_id)

    def remove(self, entry_id: str) -> None:
        before = len(self._entries)
        self._entries = [e for e in self._entries if e.entry_id != entry_id]
        if len(self._entries) == before:
            raise KeyError(entry_id)

    def reset_to_defaults(self) -> None:
        self._entries = compile_rule_set(default_rule_sources())

    def evaluate(self, record: PatientRecord) -> List[DiagnosisResult]:
        return evaluate_rule_set(self._entries, record)

    def __len__(self) -> int:
        return len(self._entries)
