#!/usr/bin/env python3
"""
ClinicalDx — Diagnosis Logic Data Models (v1)

Defines the core data structures for the rule engine:
- CriterionStatus / DiagnosisStatus: tri-state outcomes at each layer
- GroupLogic: aggregation policy for a criteria group
- CriterionDef / CriteriaGroupDef / DiagnosticPath / RuleDef: compiled,
  immutable rule definitions
- CriterionResult / GroupResult / DiagnosisResult: per-evaluation results

Design:
- Deterministic
- Fail-closed: missing data -> UNKNOWN / INDETERMINATE, never guessed
- Compiled definitions are frozen and safe to share across threads
"""
from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Tuple

from clinicaldx.dx_logic.record import PatientRecord

if TYPE_CHECKING:
    from clinicaldx.dx_logic.criteria import CriterionSpec
    from clinicaldx.dx_logic.expressions import Node


class CriterionStatus(Enum):
    """Outcome of a single criterion."""
    MET = "met"
    NOT_MET = "not_met"
    UNKNOWN = "unknown"


class DiagnosisStatus(Enum):
    """Final verdict of a rule."""
    PRESENT = "present"
    ABSENT = "absent"
    INDETERMINATE = "indeterminate"


class GroupLogic(Enum):
    """Aggregation policy for a criteria group."""
    ALL = "ALL"
    ANY = "ANY"
    AT_LEAST_N = "AT_LEAST_N"


class CriterionKind(Enum):
    """Closed set of criterion kinds. YAML ``type`` values map onto these."""
    FIELD_CHECK = "field_check"
    DELTA = "delta"
    RATIO = "ratio"
    ALL_OF = "all_of"
    COUNT_FIELDS = "count_fields"


# ---------------------------------------------------------------------------
# Compiled definitions
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CriterionDef:
    """A compiled criterion.

    Attributes:
        name: Display name from the rule document
        evaluate: Pure function record -> CriterionStatus
        detail: Pure function record -> human-readable explanation
        concept_group: Optional tag used to collapse OR-pairs before counting
        spec: The validated declaration this criterion was compiled from
    """
    name: str
    evaluate: Callable[[PatientRecord], CriterionStatus] = field(compare=False, repr=False)
    detail: Callable[[PatientRecord], str] = field(compare=False, repr=False)
    concept_group: Optional[str] = None
    spec: Optional[CriterionSpec] = None


@dataclass(frozen=True)
class CriteriaGroupDef:
    """A compiled criteria group.

    Attributes:
        group_id: Identifier referenced by diagnostic path formulas
        name: Display name
        logic: Aggregation policy
        required_count: Threshold for AT_LEAST_N (None for other logics)
        use_concept_groups: Collapse criteria sharing a concept before counting
        criteria: Ordered compiled criteria
        declared_required: ``required`` exactly as written (for re-serialization)
    """
    group_id: str
    name: str
    logic: GroupLogic
    required_count: Optional[int]
    use_concept_groups: bool
    criteria: Tuple[CriterionDef, ...]
    declared_required: Optional[int] = None


@dataclass(frozen=True)
class DiagnosticPath:
    """One admissible group combination establishing a PRESENT verdict."""
    formula: str
    summary: str
    expression: Optional[Node] = field(compare=False, repr=False, default=None)


@dataclass(frozen=True)
class RuleDef:
    """A compiled diagnostic rule. Immutable once built."""
    name: str
    groups: Tuple[CriteriaGroupDef, ...]
    paths: Tuple[DiagnosticPath, ...]
    absent_summary: str
    indeterminate_summary: str

    @property
    def group_ids(self) -> List[str]:
        return [g.group_id for g in self.groups]


# ---------------------------------------------------------------------------
# Evaluation results
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class CriterionResult:
    name: str
    status: CriterionStatus
    detail: str
    concept_group: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "name": self.name,
            "status": self.status.value,
            "detail": self.detail,
        }
        if self.concept_group is not None:
            out["conceptGroup"] = self.concept_group
        return out


@dataclass(frozen=True)
class GroupResult:
    """Result of evaluating one criteria group.

    Attributes:
        group_id: Identifier of the group within its rule
        name: Display name
        met: Aggregation policy satisfied
        indeterminate: Not met, but missing data could still satisfy it
        criteria: Per-criterion results (raw, before concept collapsing)
        met_count: Satisfied count (concepts when collapsing is enabled)
        total_count: Criteria or concepts counted
        required_count: Threshold, populated only for AT_LEAST_N
    """
    group_id: str
    name: str
    met: bool
    indeterminate: bool
    criteria: Tuple[CriterionResult, ...]
    met_count: int
    total_count: int
    required_count: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.group_id,
            "name": self.name,
            "met": self.met,
            "indeterminate": self.indeterminate,
            "metCount": self.met_count,
            "totalCount": self.total_count,
        }
        if self.required_count is not None:
            out["requiredCount"] = self.required_count
        out["criteria"] = [c.to_dict() for c in self.criteria]
        return out


@dataclass(frozen=True)
class DiagnosisResult:
    """Final result for one rule against one record. Recomputed on every evaluation."""
    rule_name: str
    status: DiagnosisStatus
    groups: Tuple[GroupResult, ...]
    summary: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "ruleName": self.rule_name,
            "status": self.status.value,
            "summary": self.summary,
            "groups": [g.to_dict() for g in self.groups],
        }
