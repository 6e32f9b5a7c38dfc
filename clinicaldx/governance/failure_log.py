#!/usr/bin/env python3
"""
ClinicalDx Compile Failure Log — append-only observational record.

Records rule documents that failed to compile during a CLI run. Never
modifies execution behavior; a failed document is already excluded from
evaluation by the rule set.

Storage: JSON Lines format (one JSON object per line) at outputs/failure_log.jsonl

Categories (from the compile error):
- schema: document shape problem (missing key, wrong type, unknown operator / field)
- grammar: malformed diagnostic-path formula or counting expression
- compile: any other compile failure

Detection sources:
- execution: detected while loading rules for an evaluation
- validation: detected by the rule validator
"""
from __future__ import annotations

import json
from dataclasses import asdict, dataclass
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional

from clinicaldx.dx_logic.ruleset import RuleEntry


@dataclass
class FailureEntry:
    """A single compile failure record."""
    timestamp: str           # ISO 8601 timestamp
    category: str            # "schema", "grammar", "compile"
    code: str                # Error code, e.g. "UNKNOWN_FIELD_PATH"
    description: str         # Error message, naming rule / group / criterion
    command: str             # Triggering command, e.g. "evaluate patient.json"
    detection_source: str    # "execution", "validation"
    rule: Optional[str] = None      # Rule name if it could be read
    group: Optional[str] = None     # Group id or position if known
    criterion: Optional[str] = None  # Criterion name or position if known
    metadata: Optional[Dict[str, Any]] = None


_DEFAULT_LOG_PATH = Path("outputs") / "failure_log.jsonl"


class FailureLog:
    """
    Append-only compile failure log.

    Safe for single-process usage (file append is atomic on most OSes).
    """

    def __init__(self, log_path: Optional[Path] = None):
        self._path = log_path or _DEFAULT_LOG_PATH

    @property
    def path(self) -> Path:
        return self._path

    def append(self, entry: FailureEntry) -> None:
        """Append a failure entry to the log file."""
        self._path.parent.mkdir(parents=True, exist_ok=True)
        record = {k: v for k, v in asdict(entry).items() if v is not None}
        with open(self._path, "a", encoding="utf-8") as f:
            f.write(json.dumps(record, default=str) + "\n")

    def read_all(self) -> List[FailureEntry]:
        """Read all failure entries; malformed lines are skipped."""
        if not self._path.exists():
            return []

        entries: List[FailureEntry] = []
        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                line = line.strip()
                if not line:
                    continue
                try:
                    data = json.loads(line)
                except json.JSONDecodeError:
                    continue
                entries.append(FailureEntry(
                    timestamp=data.get("timestamp", ""),
                    category=data.get("category", ""),
                    code=data.get("code", ""),
                    description=data.get("description", ""),
                    command=data.get("command", ""),
                    detection_source=data.get("detection_source", ""),
                    rule=data.get("rule"),
                    group=data.get("group"),
                    criterion=data.get("criterion"),
                    metadata=data.get("metadata"),
                ))
        return entries

    def count(self) -> int:
        """Count total entries without loading all into memory."""
        if not self._path.exists():
            return 0
        count = 0
        with open(self._path, "r", encoding="utf-8") as f:
            for line in f:
                if line.strip():
                    count += 1
        return count

    def summary(self) -> Dict[str, int]:
        """Return counts by category."""
        counts: Dict[str, int] = {}
        for entry in self.read_all():
            counts[entry.category] = counts.get(entry.category, 0) + 1
        return counts


def log_compile_failure(
    log: FailureLog,
    entry: RuleEntry,
    command: str = "",
    detection_source: str = "execution",
) -> None:
    """Log a rule-set entry whose document failed to compile. No-op for compiled entries."""
    err = entry.error
    if err is None:
        return
    log.append(FailureEntry(
        timestamp=datetime.now().isoformat(),
        category=err.category,
        code=err.code,
        description=err.message,
        command=command,
        detection_source=detection_source,
        rule=err.rule,
        group=err.group,
        criterion=err.criterion,
        metadata={"entry_id": entry.entry_id},
    ))
