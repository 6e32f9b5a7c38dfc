#!/usr/bin/env python3
"""
Field accessor: dotted path -> reusable lookup function.

Paths are validated against the record schema when the rule is compiled, so
a misspelled field fails compilation instead of silently reading as absent.
"""
from __future__ import annotations

from typing import Any, Callable, Optional

from clinicaldx.dx_logic.record import field_kind, PatientRecord
from clinicaldx.utils.exceptions import UnknownFieldPath

Accessor = Callable[[PatientRecord], Any]


def make_accessor(path: str) -> Accessor:
    """
    Compile a ``section.leaf`` path into a lookup function.

    The returned function yields the leaf value, or ``None`` (absent) if any
    segment along the way is missing.

    Raises: UnknownFieldPath if the path is not part of the schema
    """
    if not isinstance(path, str) or field_kind(path) is None:
        raise UnknownFieldPath(f"Unknown field path: {path!r}")
    keys = tuple(path.split("."))

    def get(record: PatientRecord) -> Optional[Any]:
        val: Any = record
        for key in keys:
            if val is None:
                return None
            val = getattr(val, key, None)
        return val

    return get
