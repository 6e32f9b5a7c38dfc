"""
Utilities Package - Logging and Exception Handling
"""
from .logging import get_logger, setup_logging
from .exceptions import (
    DxEngineError,
    RuleCompileError,
    SchemaError,
    UnknownOperator,
    UnknownFieldPath,
    GrammarError,
    RecordError,
)

__all__ = [
    "get_logger",
    "setup_logging",
    "DxEngineError",
    "RuleCompileError",
    "SchemaError",
    "UnknownOperator",
    "UnknownFieldPath",
    "GrammarError",
    "RecordError",
]
