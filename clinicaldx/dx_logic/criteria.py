#!/usr/bin/env python3
"""
Criterion compilers.

Each criterion declaration is parsed into one of five frozen spec variants
and compiled by exactly one compiler into a CriterionDef holding two pure
functions: ``evaluate(record) -> CriterionStatus`` and ``detail(record) -> str``.

    (no type)      FieldCheckSpec   single field, one comparator
    delta          DeltaSpec        current - reference
    ratio          RatioSpec        numerator / denominator
    all_of         AllOfSpec        every sub-check must hold
    count_fields   CountFieldsSpec  counts of true booleans per named group

Missing data policy differs between kinds: all_of treats an absent
sub-check as blocking (UNKNOWN), count_fields simply leaves absent fields out
of the counts.
"""
from __future__ import annotations

import math
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple, Union

from clinicaldx.dx_logic.accessor import make_accessor
from clinicaldx.dx_logic.comparators import (
    compile_check,
    is_boolean_operator,
    NUMERIC_OPERATORS,
    validate_operator,
)
from clinicaldx.dx_logic.expressions import evaluate_count_expression, parse_count_expression
from clinicaldx.dx_logic.model import CriterionDef, CriterionKind, CriterionStatus
from clinicaldx.dx_logic.record import BOOLEAN, field_kind, NUMBER, PatientRecord
from clinicaldx.utils.exceptions import RuleCompileError, SchemaError, UnknownFieldPath

TOTAL_COUNTER = "total"
CHECK_SEPARATOR = "; "
_COUNTER_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

# YAML ``type`` -> kind; a missing type means a direct field check
_TYPE_NAMES: Dict[str, CriterionKind] = {
    "delta": CriterionKind.DELTA,
    "ratio": CriterionKind.RATIO,
    "all_of": CriterionKind.ALL_OF,
    "count_fields": CriterionKind.COUNT_FIELDS,
}


# ---------------------------------------------------------------------------
# Spec variants
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CheckSpec:
    """One sub-check of an all_of criterion."""
    field: str
    operator: str
    value: Optional[float] = None
    label: Optional[str] = None
    unit: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "label": self.label,
            "unit": self.unit,
        })


@dataclass(frozen=True)
class FieldCheckSpec:
    name: str
    field: str
    operator: str
    value: Optional[float] = None
    unit: Optional[str] = None
    label: Optional[str] = None
    concept: Optional[str] = None
    kind = CriterionKind.FIELD_CHECK

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "field": self.field,
            "operator": self.operator,
            "value": self.value,
            "unit": self.unit,
            "label": self.label,
            "concept": self.concept,
        })


@dataclass(frozen=True)
class DeltaSpec:
    name: str
    fields: Tuple[str, str]
    operator: str
    value: float
    unit: Optional[str] = None
    label: Optional[str] = None
    concept: Optional[str] = None
    kind = CriterionKind.DELTA

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "type": self.kind.value,
            "fields": list(self.fields),
            "operator": self.operator,
            "value": self.value,
            "unit": self.unit,
            "label": self.label,
            "concept": self.concept,
        })


@dataclass(frozen=True)
class RatioSpec(DeltaSpec):
    kind = CriterionKind.RATIO


@dataclass(frozen=True)
class AllOfSpec:
    name: str
    checks: Tuple[CheckSpec, ...]
    concept: Optional[str] = None
    kind = CriterionKind.ALL_OF

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "type": self.kind.value,
            "checks": [c.to_dict() for c in self.checks],
            "concept": self.concept,
        })


@dataclass(frozen=True)
class CountFieldsSpec:
    name: str
    field_groups: Tuple[Tuple[str, Tuple[str, ...]], ...]
    met_when: str
    detail_template: str = ""
    concept: Optional[str] = None
    kind = CriterionKind.COUNT_FIELDS

    @property
    def counters(self) -> List[str]:
        return [group for group, _ in self.field_groups] + [TOTAL_COUNTER]

    def to_dict(self) -> Dict[str, Any]:
        return _drop_none({
            "name": self.name,
            "type": self.kind.value,
            "field_groups": {group: list(paths) for group, paths in self.field_groups},
            "met_when": self.met_when,
            "detail_template": self.detail_template or None,
            "concept": self.concept,
        })


CriterionSpec = Union[FieldCheckSpec, DeltaSpec, RatioSpec, AllOfSpec, CountFieldsSpec]


def _drop_none(d: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in d.items() if v is not None}


# ---------------------------------------------------------------------------
# Declaration parsing (schema validation)
# ---------------------------------------------------------------------------

def _opt_str(raw: Mapping[str, Any], key: str) -> Optional[str]:
    val = raw.get(key)
    if val is None:
        return None
    if not isinstance(val, str):
        raise SchemaError(f"'{key}' must be a string, got {val!r}")
    return val


def _req_str(raw: Mapping[str, Any], key: str) -> str:
    val = raw.get(key)
    if val is None:
        raise SchemaError(f"Missing required key '{key}'")
    if not isinstance(val, str) or not val.strip():
        raise SchemaError(f"'{key}' must be a non-empty string, got {val!r}")
    return val


def _number(raw: Mapping[str, Any], key: str, required: bool) -> Optional[float]:
    val = raw.get(key)
    if val is None:
        if required:
            raise SchemaError(f"Missing required key '{key}' for a numeric comparison")
        return None
    if isinstance(val, bool) or not isinstance(val, (int, float)):
        raise SchemaError(f"'{key}' must be a number, got {val!r}")
    return val


def _field_path(path: Any, expected_kind: str) -> str:
    """Validate a path against the schema and the kind of value it must hold."""
    kind = field_kind(path) if isinstance(path, str) else None
    if kind is None:
        raise UnknownFieldPath(f"Unknown field path: {path!r}")
    if kind != expected_kind:
        raise SchemaError(f"Field {path!r} holds a {kind}, but a {expected_kind} is required here")
    return path


def _check_parts(raw: Mapping[str, Any]) -> Tuple[str, str, Optional[float]]:
    """field / operator / value for a single comparison, kinds cross-checked."""
    op = validate_operator(raw.get("operator"))
    if is_boolean_operator(op):
        return _field_path(raw.get("field"), BOOLEAN), op, None
    return _field_path(raw.get("field"), NUMBER), op, _number(raw, "value", required=True)


def parse_criterion(raw: Any) -> CriterionSpec:
    """Validate one criterion declaration into its spec variant."""
    if not isinstance(raw, Mapping):
        raise SchemaError(f"Criterion must be a mapping, got {type(raw).__name__}")
    name = _req_str(raw, "name")
    try:
        type_name = raw.get("type")
        if type_name is None:
            kind = CriterionKind.FIELD_CHECK
        elif type_name in _TYPE_NAMES:
            kind = _TYPE_NAMES[type_name]
        else:
            raise SchemaError(
                f"Unknown criterion type {type_name!r} "
                f"(expected one of {', '.join(_TYPE_NAMES)}, or omit for a field check)"
            )
        return _PARSERS[kind](name, raw)
    except RuleCompileError as exc:
        raise exc.located(criterion=name) from None


def _parse_field_check(name: str, raw: Mapping[str, Any]) -> FieldCheckSpec:
    field, op, value = _check_parts(raw)
    return FieldCheckSpec(
        name=name,
        field=field,
        operator=op,
        value=value,
        unit=_opt_str(raw, "unit"),
        label=_opt_str(raw, "label"),
        concept=_opt_str(raw, "concept"),
    )


def _parse_two_fields(name: str, raw: Mapping[str, Any], spec_cls: type) -> DeltaSpec:
    paths = raw.get("fields")
    if not isinstance(paths, (list, tuple)) or len(paths) != 2:
        raise SchemaError(
            f"'{spec_cls.kind.value}' requires exactly two field paths in 'fields', got {paths!r}"
        )
    op = validate_operator(raw.get("operator"))
    if op not in NUMERIC_OPERATORS:
        raise SchemaError(f"'{spec_cls.kind.value}' requires a numeric operator, got {op!r}")
    return spec_cls(
        name=name,
        fields=(_field_path(paths[0], NUMBER), _field_path(paths[1], NUMBER)),
        operator=op,
        value=_number(raw, "value", required=True),
        unit=_opt_str(raw, "unit"),
        label=_opt_str(raw, "label"),
        concept=_opt_str(raw, "concept"),
    )


def _parse_delta(name: str, raw: Mapping[str, Any]) -> DeltaSpec:
    return _parse_two_fields(name, raw, DeltaSpec)


def _parse_ratio(name: str, raw: Mapping[str, Any]) -> RatioSpec:
    return _parse_two_fields(name, raw, RatioSpec)


def _parse_all_of(name: str, raw: Mapping[str, Any]) -> AllOfSpec:
    checks = raw.get("checks")
    if not isinstance(checks, (list, tuple)) or not checks:
        raise SchemaError("'all_of' requires a non-empty 'checks' list")
    parsed: List[CheckSpec] = []
    for i, ch in enumerate(checks, 1):
        if not isinstance(ch, Mapping):
            raise SchemaError(f"Check #{i} must be a mapping, got {type(ch).__name__}")
        try:
            field, op, value = _check_parts(ch)
        except SchemaError as exc:
            raise type(exc)(f"Check #{i}: {exc.reason}") from None
        parsed.append(CheckSpec(
            field=field,
            operator=op,
            value=value,
            label=_opt_str(ch, "label"),
            unit=_opt_str(ch, "unit"),
        ))
    return AllOfSpec(name=name, checks=tuple(parsed), concept=_opt_str(raw, "concept"))


def _parse_count_fields(name: str, raw: Mapping[str, Any]) -> CountFieldsSpec:
    groups = raw.get("field_groups")
    if not isinstance(groups, Mapping) or not groups:
        raise SchemaError("'count_fields' requires a non-empty 'field_groups' mapping")
    parsed: List[Tuple[str, Tuple[str, ...]]] = []
    for group, paths in groups.items():
        if not isinstance(group, str) or not _COUNTER_NAME_RE.match(group) or group in ("AND", "OR"):
            raise SchemaError(f"Invalid field group name {group!r}")
        if group == TOTAL_COUNTER:
            raise SchemaError(f"Field group name '{TOTAL_COUNTER}' is reserved")
        if not isinstance(paths, (list, tuple)) or not paths:
            raise SchemaError(f"Field group '{group}' must be a non-empty list of field paths")
        parsed.append((group, tuple(_field_path(p, BOOLEAN) for p in paths)))
    met_when = _req_str(raw, "met_when")
    spec = CountFieldsSpec(
        name=name,
        field_groups=tuple(parsed),
        met_when=met_when,
        detail_template=_opt_str(raw, "detail_template") or "",
        concept=_opt_str(raw, "concept"),
    )
    parse_count_expression(met_when, spec.counters)
    return spec


_PARSERS: Dict[CriterionKind, Callable[[str, Mapping[str, Any]], CriterionSpec]] = {
    CriterionKind.FIELD_CHECK: _parse_field_check,
    CriterionKind.DELTA: _parse_delta,
    CriterionKind.RATIO: _parse_ratio,
    CriterionKind.ALL_OF: _parse_all_of,
    CriterionKind.COUNT_FIELDS: _parse_count_fields,
}


# ---------------------------------------------------------------------------
# Detail formatting helpers
# ---------------------------------------------------------------------------

def fmt_value(val: Any) -> str:
    """Render a leaf value; integral floats drop their ``.0``."""
    if isinstance(val, float) and val.is_integer():
        return str(int(val))
    return str(val)


def _fmt_num(val: Any, unit: Optional[str]) -> str:
    if val is None:
        return "Not available"
    return f"{fmt_value(val)} {unit}" if unit else fmt_value(val)


def _fmt_bool(val: Any, label: str) -> str:
    if val is None:
        return f"{label}: Unknown"
    return f"{label}: Yes" if val else f"{label}: No"


def _leaf_label(path: str) -> str:
    leaf = path.rsplit(".", 1)[-1]
    return leaf[:1].upper() + leaf[1:]


def ieee_divide(numerator: float, denominator: float) -> float:
    """Float division with IEEE-754 results for a zero denominator."""
    try:
        return numerator / denominator
    except ZeroDivisionError:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)


# ---------------------------------------------------------------------------
# Compilers
# ---------------------------------------------------------------------------

def _compile_field_check(spec: FieldCheckSpec) -> CriterionDef:
    get = make_accessor(spec.field)
    check = compile_check(spec.operator, spec.value)

    def evaluate(record: PatientRecord) -> CriterionStatus:
        return check(get(record))

    if is_boolean_operator(spec.operator):
        label = spec.label or spec.name

        def detail(record: PatientRecord) -> str:
            return _fmt_bool(get(record), label)
    elif spec.label:
        def detail(record: PatientRecord) -> str:
            val = get(record)
            return f"{spec.label}: {fmt_value(val)}" if val is not None else "Not available"
    else:
        def detail(record: PatientRecord) -> str:
            return _fmt_num(get(record), spec.unit)

    return CriterionDef(spec.name, evaluate, detail, spec.concept, spec)


def _compile_delta(spec: DeltaSpec) -> CriterionDef:
    current_path, previous_path = spec.fields
    get_current = make_accessor(current_path)
    get_previous = make_accessor(previous_path)
    check = compile_check(spec.operator, spec.value)
    label = spec.label or _leaf_label(current_path)
    previous_label = "48h ago" if "48h" in previous_path else "previous"
    unit = f" {spec.unit}" if spec.unit else ""

    def evaluate(record: PatientRecord) -> CriterionStatus:
        cur = get_current(record)
        prev = get_previous(record)
        if cur is None or prev is None:
            return CriterionStatus.UNKNOWN
        return check(cur - prev)

    def detail(record: PatientRecord) -> str:
        cur = get_current(record)
        prev = get_previous(record)
        if cur is None or prev is None:
            return f"{label} values insufficient"
        delta = cur - prev
        return (
            f"Δ {label}: {delta:.2f}{unit} "
            f"(current: {fmt_value(cur)}, {previous_label}: {fmt_value(prev)})"
        )

    return CriterionDef(spec.name, evaluate, detail, spec.concept, spec)


def _compile_ratio(spec: RatioSpec) -> CriterionDef:
    numerator_path, denominator_path = spec.fields
    get_num = make_accessor(numerator_path)
    get_den = make_accessor(denominator_path)
    check = compile_check(spec.operator, spec.value)
    label = spec.label or _leaf_label(numerator_path)

    def evaluate(record: PatientRecord) -> CriterionStatus:
        num = get_num(record)
        den = get_den(record)
        if num is None or den is None:
            return CriterionStatus.UNKNOWN
        return check(ieee_divide(num, den))

    def detail(record: PatientRecord) -> str:
        num = get_num(record)
        den = get_den(record)
        if num is None or den is None:
            return f"Baseline {label.lower()} not available"
        ratio = ieee_divide(num, den)
        return (
            f"{label} ratio: {ratio:.2f}× baseline "
            f"(current: {fmt_value(num)}, baseline: {fmt_value(den)})"
        )

    return CriterionDef(spec.name, evaluate, detail, spec.concept, spec)


def _compile_all_of(spec: AllOfSpec) -> CriterionDef:
    checks = tuple(
        (
            make_accessor(ch.field),
            compile_check(ch.operator, ch.value),
            is_boolean_operator(ch.operator),
            ch.label or ch.field,
            ch.unit,
        )
        for ch in spec.checks
    )
    total = len(checks)

    def evaluate(record: PatientRecord) -> CriterionStatus:
        met_count = 0
        unknown_count = 0
        for get, check, _, _, _ in checks:
            status = check(get(record))
            if status is CriterionStatus.MET:
                met_count += 1
            elif status is CriterionStatus.UNKNOWN:
                unknown_count += 1
        if met_count == total:
            return CriterionStatus.MET
        if met_count + unknown_count >= total and met_count >= 1:
            return CriterionStatus.UNKNOWN
        return CriterionStatus.NOT_MET

    def detail(record: PatientRecord) -> str:
        parts = []
        for get, _, boolean, label, unit in checks:
            val = get(record)
            if boolean:
                parts.append(_fmt_bool(val, label))
            elif val is not None:
                parts.append(f"{label}: {fmt_value(val)}" + (f" {unit}" if unit else ""))
            else:
                parts.append(f"{label}: Unknown")
        return CHECK_SEPARATOR.join(parts)

    return CriterionDef(spec.name, evaluate, detail, spec.concept, spec)


def _compile_count_fields(spec: CountFieldsSpec) -> CriterionDef:
    groups = tuple(
        (group, tuple(make_accessor(p) for p in paths))
        for group, paths in spec.field_groups
    )
    met_when = parse_count_expression(spec.met_when, spec.counters)
    template = spec.detail_template

    def counts_for(record: PatientRecord) -> Tuple[Dict[str, int], int]:
        counts: Dict[str, int] = {}
        known = 0
        for group, accessors in groups:
            count = 0
            for get in accessors:
                val = get(record)
                if val is not None:
                    known += 1
                    if val:
                        count += 1
            counts[group] = count
        counts[TOTAL_COUNTER] = sum(counts[group] for group, _ in groups)
        return counts, known

    def evaluate(record: PatientRecord) -> CriterionStatus:
        counts, known = counts_for(record)
        if known == 0:
            return CriterionStatus.UNKNOWN
        if evaluate_count_expression(met_when, counts):
            return CriterionStatus.MET
        return CriterionStatus.NOT_MET

    def detail(record: PatientRecord) -> str:
        counts, _ = counts_for(record)
        result = template
        for key, val in counts.items():
            result = result.replace("{" + key + "}", str(val))
        return result

    return CriterionDef(spec.name, evaluate, detail, spec.concept, spec)


_COMPILERS: Dict[CriterionKind, Callable[[Any], CriterionDef]] = {
    CriterionKind.FIELD_CHECK: _compile_field_check,
    CriterionKind.DELTA: _compile_delta,
    CriterionKind.RATIO: _compile_ratio,
    CriterionKind.ALL_OF: _compile_all_of,
    CriterionKind.COUNT_FIELDS: _compile_count_fields,
}


def compile_criterion(raw: Any) -> CriterionDef:
    """
    Compile one criterion declaration (mapping or already-parsed spec).

    Raises: RuleCompileError naming the criterion
    """
    spec = raw if hasattr(raw, "kind") and not isinstance(raw, Mapping) else parse_criterion(raw)
    try:
        return _COMPILERS[spec.kind](spec)
    except RuleCompileError as exc:
        raise exc.located(criterion=spec.name) from None
