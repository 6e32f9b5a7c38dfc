#!/usr/bin/env python3
"""
ClinicalDx — Rule Compiler (v1)

Turns a parsed rule-definition document (plain mapping, usually from YAML)
into an immutable RuleDef:

    document -> groups (criteria compiled) -> paths (formulas parsed) -> RuleDef

Design:
- Compile once per document edit; evaluation never re-parses anything
- Fail-closed: any malformed construct raises a RuleCompileError that names
  the rule, group and criterion it came from
- Structural fields survive compilation so ``rule_to_document`` can
  re-serialize them
"""
from __future__ import annotations

import re
from typing import Any, Dict, List, Mapping, Optional

from clinicaldx.dx_logic.criteria import compile_criterion
from clinicaldx.dx_logic.expressions import parse_formula
from clinicaldx.dx_logic.model import CriteriaGroupDef, DiagnosticPath, GroupLogic, RuleDef
from clinicaldx.utils.exceptions import RuleCompileError, SchemaError
from clinicaldx.utils.logging import get_logger

logger = get_logger(__name__)

_GROUP_ID_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_\-]*$")
_RESERVED_IDS = {"AND", "OR"}


def _req_str(raw: Mapping[str, Any], key: str) -> str:
    val = raw.get(key)
    if val is None:
        raise SchemaError(f"Missing required key '{key}'")
    if not isinstance(val, str) or not val.strip():
        raise SchemaError(f"'{key}' must be a non-empty string, got {val!r}")
    return val


def _req_list(raw: Mapping[str, Any], key: str) -> List[Any]:
    val = raw.get(key)
    if val is None:
        raise SchemaError(f"Missing required key '{key}'")
    if not isinstance(val, list) or not val:
        raise SchemaError(f"'{key}' must be a non-empty list")
    return val


# ---------------------------------------------------------------------------
# Groups
# ---------------------------------------------------------------------------

def compile_group(raw: Any) -> CriteriaGroupDef:
    """
    Compile one group declaration: id, name, logic, required?, concept_groups?, criteria.

    Raises: RuleCompileError naming the group (and criterion, if applicable)
    """
    if not isinstance(raw, Mapping):
        raise SchemaError(f"Group must be a mapping, got {type(raw).__name__}")
    label = raw.get("id") if isinstance(raw.get("id"), str) else None
    try:
        group_id = _req_str(raw, "id")
        if not _GROUP_ID_RE.match(group_id) or group_id in _RESERVED_IDS:
            raise SchemaError(
                f"Invalid group id {group_id!r}: use letters, digits, '_' or '-', "
                "not starting with a digit, and not AND / OR"
            )
        name = _req_str(raw, "name")

        logic_name = raw.get("logic")
        try:
            logic = GroupLogic(logic_name)
        except ValueError:
            raise SchemaError(
                f"Unknown group logic {logic_name!r} (expected ALL, ANY or AT_LEAST_N)"
            ) from None

        declared_required = raw.get("required")
        if declared_required is not None and (
            isinstance(declared_required, bool)
            or not isinstance(declared_required, int)
            or declared_required < 1
        ):
            raise SchemaError(f"'required' must be a positive integer, got {declared_required!r}")
        required_count: Optional[int] = None
        if logic is GroupLogic.AT_LEAST_N:
            required_count = declared_required if declared_required is not None else 1

        concept_groups = raw.get("concept_groups", False)
        if concept_groups is None:
            concept_groups = False
        if not isinstance(concept_groups, bool):
            raise SchemaError(f"'concept_groups' must be true or false, got {concept_groups!r}")

        criteria = []
        for i, c in enumerate(_req_list(raw, "criteria"), 1):
            try:
                criteria.append(compile_criterion(c))
            except RuleCompileError as exc:
                raise exc.located(criterion=f"#{i}") from None
    except RuleCompileError as exc:
        raise exc.located(group=label) from None

    return CriteriaGroupDef(
        group_id=group_id,
        name=name,
        logic=logic,
        required_count=required_count,
        use_concept_groups=concept_groups,
        criteria=tuple(criteria),
        declared_required=declared_required,
    )


# ---------------------------------------------------------------------------
# Rules
# ---------------------------------------------------------------------------

def compile_rule(raw: Any) -> RuleDef:
    """
    Compile a full rule-definition document.

    Expected keys: name, paths[{formula, summary}], absent_summary,
    indeterminate_summary, groups[...].

    Raises: RuleCompileError (SchemaError / GrammarError / subclasses)
    """
    if not isinstance(raw, Mapping):
        raise SchemaError(
            f"Rule document must be a mapping, got {type(raw).__name__}"
        )
    rule_name = raw.get("name") if isinstance(raw.get("name"), str) else None
    try:
        name = _req_str(raw, "name")
        absent_summary = _req_str(raw, "absent_summary")
        indeterminate_summary = _req_str(raw, "indeterminate_summary")

        groups = []
        seen_ids: Dict[str, int] = {}
        for i, g in enumerate(_req_list(raw, "groups"), 1):
            try:
                group = compile_group(g)
            except RuleCompileError as exc:
                raise exc.located(group=f"#{i}") from None
            if group.group_id in seen_ids:
                raise SchemaError(
                    f"Duplicate group id '{group.group_id}' "
                    f"(groups #{seen_ids[group.group_id]} and #{i})"
                )
            seen_ids[group.group_id] = i
            groups.append(group)

        paths = []
        for i, p in enumerate(_req_list(raw, "paths"), 1):
            if not isinstance(p, Mapping):
                raise SchemaError(f"Path #{i} must be a mapping with 'formula' and 'summary'")
            try:
                formula = _req_str(p, "formula")
                summary = _req_str(p, "summary")
                expression = parse_formula(formula, seen_ids)
            except RuleCompileError as exc:
                raise type(exc)(f"Path #{i}: {exc.reason}") from None
            paths.append(DiagnosticPath(formula=formula, summary=summary, expression=expression))
    except RuleCompileError as exc:
        raise exc.located(rule=rule_name) from None

    rule = RuleDef(
        name=name,
        groups=tuple(groups),
        paths=tuple(paths),
        absent_summary=absent_summary,
        indeterminate_summary=indeterminate_summary,
    )
    logger.debug(
        f"Compiled rule '{name}': {len(groups)} group(s), {len(paths)} path(s), "
        f"{sum(len(g.criteria) for g in groups)} criteria"
    )
    return rule


def rule_to_document(rule: RuleDef) -> Dict[str, Any]:
    """Re-serialize the declared structure of a compiled rule to a document mapping."""
    groups = []
    for g in rule.groups:
        doc: Dict[str, Any] = {"id": g.group_id, "name": g.name, "logic": g.logic.value}
        if g.declared_required is not None:
            doc["required"] = g.declared_required
        if g.use_concept_groups:
            doc["concept_groups"] = True
        doc["criteria"] = [c.spec.to_dict() for c in g.criteria]
        groups.append(doc)
    return {
        "name": rule.name,
        "paths": [{"formula": p.formula, "summary": p.summary} for p in rule.paths],
        "absent_summary": rule.absent_summary,
        "indeterminate_summary": rule.indeterminate_summary,
        "groups": groups,
    }
