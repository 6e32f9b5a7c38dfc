#!/usr/bin/env python3
"""
ClinicalDx — Rule Document Loader (v1)

Loads:
- clinicaldx/rules/*.yaml (bundled default rules)
- any user-supplied .yaml / .yml file or directory

A file may hold several rule documents separated by a line that is exactly
``---``. Splitting happens here, before the compiler sees any text.

Design:
- Deterministic (sorted directory listing, document order preserved)
- YAML syntax errors surface as SchemaError, like any other shape problem
"""
from __future__ import annotations

from pathlib import Path
from typing import Any, Iterable, List

import yaml

from clinicaldx.dx_logic.compiler import compile_rule, rule_to_document
from clinicaldx.dx_logic.model import RuleDef
from clinicaldx.utils.exceptions import SchemaError

RULES_DIR = Path(__file__).resolve().parents[1] / "rules"

# Bundled rule files, in display order
DEFAULT_RULE_FILES = (
    "sepsis.yaml",
    "acute_chf.yaml",
    "pneumonia.yaml",
    "atn.yaml",
)

DOCUMENT_SEPARATOR = "---"
_YAML_SUFFIXES = (".yaml", ".yml")


def split_rule_documents(text: str) -> List[str]:
    """Split a blob on lines that are exactly ``---``; blank chunks are dropped."""
    docs: List[str] = []
    current: List[str] = []
    for line in text.splitlines():
        if line.rstrip("\r") == DOCUMENT_SEPARATOR:
            docs.append("\n".join(current))
            current = []
        else:
            current.append(line)
    docs.append("\n".join(current))
    return [d.strip("\n") + "\n" for d in docs if d.strip()]


def parse_rule_yaml(text: str) -> Any:
    """Parse one YAML rule document into plain Python data."""
    try:
        return yaml.safe_load(text)
    except yaml.YAMLError as e:
        raise SchemaError(f"Invalid YAML: {e}") from None
    except RecursionError:
        raise SchemaError("Invalid YAML: document nested too deeply") from None


def compile_rule_from_yaml(text: str) -> RuleDef:
    return compile_rule(parse_rule_yaml(text))


def dump_rule_yaml(rule: RuleDef) -> str:
    """Re-serialize a compiled rule's declared structure as YAML."""
    return yaml.safe_dump(rule_to_document(rule), sort_keys=False, allow_unicode=True)


def _read_text(path: Path) -> str:
    try:
        return path.read_text(encoding="utf-8")
    except FileNotFoundError:
        raise SystemExit(f"Missing rule file: {path}")


def default_rule_sources() -> List[str]:
    """Source text of every bundled rule document."""
    sources: List[str] = []
    for filename in DEFAULT_RULE_FILES:
        sources.extend(split_rule_documents(_read_text(RULES_DIR / filename)))
    return sources


def rule_files(paths: Iterable[Path]) -> List[Path]:
    """Expand directories to their YAML files (sorted); files pass through."""
    out: List[Path] = []
    for p in paths:
        p = Path(p)
        if p.is_dir():
            out.extend(sorted(f for f in p.iterdir() if f.suffix.lower() in _YAML_SUFFIXES))
        else:
            out.append(p)
    return out


def load_rule_sources(paths: Iterable[Path]) -> List[str]:
    """Read rule files / directories and return one source string per document."""
    sources: List[str] = []
    for path in rule_files(paths):
        sources.extend(split_rule_documents(_read_text(path)))
    return sources
