#!/usr/bin/env python3
"""
ClinicalDx — Rule Evaluator (v1)

Applies compiled rules to a PatientRecord.

Group aggregation (after optional concept collapsing):

    ALL         met = metCount == total
                indeterminate = !met and unknown > 0 and met + unknown == total
    ANY         met = metCount > 0
                indeterminate = !met and unknown > 0
    AT_LEAST_N  met = metCount >= required
                indeterminate = !met and met + unknown >= required

Rule verdict: first path true on the strict "met" map -> PRESENT (that path's
summary); else any path true on the optimistic "met or indeterminate" map ->
INDETERMINATE (rule-level summary); else ABSENT.

Design:
- Pure and deterministic: no mutation of rules or records, no I/O
- Never raises on incomplete data; missing values surface as UNKNOWN
"""
from __future__ import annotations

from typing import Dict, Iterable, List, Sequence, Tuple

from clinicaldx.dx_logic.expressions import evaluate_formula
from clinicaldx.dx_logic.model import (
    CriteriaGroupDef,
    CriterionResult,
    CriterionStatus,
    DiagnosisResult,
    DiagnosisStatus,
    GroupLogic,
    GroupResult,
    RuleDef,
)
from clinicaldx.dx_logic.record import PatientRecord


def evaluate_criteria(group: CriteriaGroupDef, record: PatientRecord) -> List[CriterionResult]:
    return [
        CriterionResult(
            name=c.name,
            status=c.evaluate(record),
            detail=c.detail(record),
            concept_group=c.concept_group,
        )
        for c in group.criteria
    ]


def collapse_concepts(results: Iterable[CriterionResult]) -> List[CriterionStatus]:
    """
    Merge criteria sharing a concept tag (or, untagged, their own name).

    A concept is MET if any member is met, NOT_MET only if every member is
    not met, otherwise UNKNOWN. Concepts keep first-seen order.
    """
    concepts: Dict[str, List[CriterionStatus]] = {}
    for r in results:
        key = r.concept_group if r.concept_group is not None else r.name
        concepts.setdefault(key, []).append(r.status)

    collapsed = []
    for statuses in concepts.values():
        if any(s is CriterionStatus.MET for s in statuses):
            collapsed.append(CriterionStatus.MET)
        elif all(s is CriterionStatus.NOT_MET for s in statuses):
            collapsed.append(CriterionStatus.NOT_MET)
        else:
            collapsed.append(CriterionStatus.UNKNOWN)
    return collapsed


def aggregate(
    logic: GroupLogic,
    met_count: int,
    unknown_count: int,
    total_count: int,
    required: int = 1,
) -> Tuple[bool, bool]:
    """Return (met, indeterminate) for the given counts under ``logic``."""
    if logic is GroupLogic.ALL:
        met = met_count == total_count
        indeterminate = (
            not met and unknown_count > 0 and met_count + unknown_count == total_count
        )
    elif logic is GroupLogic.ANY:
        met = met_count > 0
        indeterminate = not met and unknown_count > 0
    else:
        met = met_count >= required
        indeterminate = not met and met_count + unknown_count >= required
    return met, indeterminate


def evaluate_group(group: CriteriaGroupDef, record: PatientRecord) -> GroupResult:
    criteria_results = evaluate_criteria(group, record)

    if group.use_concept_groups:
        statuses = collapse_concepts(criteria_results)
    else:
        statuses = [r.status for r in criteria_results]

    met_count = sum(1 for s in statuses if s is CriterionStatus.MET)
    unknown_count = sum(1 for s in statuses if s is CriterionStatus.UNKNOWN)
    total_count = len(statuses)

    met, indeterminate = aggregate(
        group.logic,
        met_count,
        unknown_count,
        total_count,
        required=group.required_count or 1,
    )

    return GroupResult(
        group_id=group.group_id,
        name=group.name,
        met=met,
        indeterminate=indeterminate,
        criteria=tuple(criteria_results),
        met_count=met_count,
        total_count=total_count,
        required_count=group.required_count if group.logic is GroupLogic.AT_LEAST_N else None,
    )


def select_verdict(rule: RuleDef, group_results: Sequence[GroupResult]) -> Tuple[DiagnosisStatus, str]:
    """Strict pass, then optimistic pass, over the rule's diagnostic paths."""
    met_map: Dict[str, bool] = {}
    optimistic_map: Dict[str, bool] = {}
    for group, result in zip(rule.groups, group_results):
        met_map[group.group_id] = result.met
        optimistic_map[group.group_id] = result.met or result.indeterminate

    for path in rule.paths:
        if evaluate_formula(path.expression, met_map):
            return DiagnosisStatus.PRESENT, path.summary

    for path in rule.paths:
        if evaluate_formula(path.expression, optimistic_map):
            return DiagnosisStatus.INDETERMINATE, rule.indeterminate_summary

    return DiagnosisStatus.ABSENT, rule.absent_summary


def evaluate_rule(rule: RuleDef, record: PatientRecord) -> DiagnosisResult:
    group_results = tuple(evaluate_group(g, record) for g in rule.groups)
    status, summary = select_verdict(rule, group_results)
    return DiagnosisResult(
        rule_name=rule.name,
        status=status,
        groups=group_results,
        summary=summary,
    )


def evaluate_all_rules(rules: Iterable[RuleDef], record: PatientRecord) -> List[DiagnosisResult]:
    """Evaluate each rule independently, preserving input order."""
    return [evaluate_rule(rule, record) for rule in rules]
