"""
Custom Exception Hierarchy

Compile-time and input errors for the diagnosis engine. Evaluation of a
compiled rule never raises; everything here surfaces before evaluation starts.
"""
from typing import Any, Dict, Optional


class DxEngineError(Exception):
    """Base exception for all diagnosis engine errors."""

    def __init__(
        self,
        message: str,
        code: str = "UNKNOWN_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for reports and logs."""
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details
        }


class RuleCompileError(DxEngineError):
    """A rule-definition document could not be compiled.

    The message is prefixed with whichever of rule / group / criterion is
    known, e.g. ``Rule 'Sepsis' > group 'sirs' > criterion 'HR': ...``.
    """

    category = "compile"

    def __init__(
        self,
        message: str,
        rule: Optional[str] = None,
        group: Optional[str] = None,
        criterion: Optional[str] = None,
        code: str = "COMPILE_ERROR",
        details: Optional[Dict[str, Any]] = None
    ):
        self.reason = message
        self.rule = rule
        self.group = group
        self.criterion = criterion
        context = {k: v for k, v in (("rule", rule), ("group", group), ("criterion", criterion)) if v}
        super().__init__(
            message=_with_location(message, rule, group, criterion),
            code=code,
            details={**context, **(details or {})}
        )

    def located(
        self,
        rule: Optional[str] = None,
        group: Optional[str] = None,
        criterion: Optional[str] = None,
    ) -> "RuleCompileError":
        """Return a copy of this error with missing location parts filled in."""
        return type(self)(
            self.reason,
            rule=self.rule or rule,
            group=self.group or group,
            criterion=self.criterion or criterion,
            code=self.code,
            details={k: v for k, v in self.details.items() if k not in ("rule", "group", "criterion")},
        )


class SchemaError(RuleCompileError):
    """Document does not match the expected shape (missing key, wrong type)."""

    category = "schema"

    def __init__(self, message: str, code: str = "SCHEMA_ERROR", **kwargs: Any):
        super().__init__(message, code=code, **kwargs)


class UnknownOperator(SchemaError):
    """Operator string is not one of the comparator library's operators."""

    def __init__(self, message: str, code: str = "UNKNOWN_OPERATOR", **kwargs: Any):
        super().__init__(message, code=code, **kwargs)


class UnknownFieldPath(SchemaError):
    """Dotted field path does not exist in the patient-data schema."""

    def __init__(self, message: str, code: str = "UNKNOWN_FIELD_PATH", **kwargs: Any):
        super().__init__(message, code=code, **kwargs)


class GrammarError(RuleCompileError):
    """Formula or counting expression is syntactically invalid."""

    category = "grammar"

    def __init__(self, message: str, code: str = "GRAMMAR_ERROR", **kwargs: Any):
        super().__init__(message, code=code, **kwargs)


class RecordError(DxEngineError):
    """Patient-data input does not match the record schema."""

    def __init__(
        self,
        message: str,
        path: str = "unknown",
        details: Optional[Dict[str, Any]] = None
    ):
        super().__init__(
            message=message,
            code="RECORD_ERROR",
            details={"path": path, **(details or {})}
        )
        self.path = path


def _with_location(
    message: str,
    rule: Optional[str],
    group: Optional[str],
    criterion: Optional[str],
) -> str:
    parts = []
    if rule:
        parts.append(f"Rule '{rule}'")
    if group:
        parts.append(f"group '{group}'")
    if criterion:
        parts.append(f"criterion '{criterion}'")
    if not parts:
        return message
    return " > ".join(parts) + f": {message}"
